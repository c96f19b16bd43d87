"""Versioned merge engine.

Combines the caller's local snapshot (intended state) with the replica's
remote snapshot (last persisted state) into one record per id.

Policies:
- IdentityPolicy: local always wins for shared ids, no conflicts
- VersionedPolicy: remote wins and a Conflict is reported when its version
  is greater than the local one. If either side has no version, the
  ``updated_at`` timestamps decide the same way. Otherwise local wins

Ids present on only one side are kept as-is under both policies. Ids the
caller deleted are dropped. Output is sorted by id so results are
deterministic.

Signatures (sorted ``id:version`` pairs, SHA-256) give a cheap equality
check between two reads of the same range. Content edits that keep the same
version are invisible to the signature.
"""

from __future__ import annotations

import dataclasses
import hashlib
import logging
from collections.abc import Iterable, Sequence
from datetime import datetime, timezone
from typing import Any, Protocol

from sheetsync.client.sync.codec import UPDATED_AT_FIELD, VERSION_FIELD
from sheetsync.client.sync.types import Conflict, MergeResult
from sheetsync.core.types import MergePolicyName

logger = logging.getLogger(__name__)

_SYNC_FIELDS = frozenset({VERSION_FIELD, UPDATED_AT_FIELD})


def version_of(record: Any) -> int:
    """Version of a record, 0 when it has none."""
    return getattr(record, VERSION_FIELD, None) or 0


def updated_at_of(record: Any) -> datetime | None:
    """Parsed ``updated_at`` of a record, None when missing or unparseable."""
    value = getattr(record, UPDATED_AT_FIELD, None)
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value.strip():
        try:
            parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError:
            return None
    else:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class MergePolicy(Protocol):
    """Decides which side wins for an id present in both snapshots."""

    name: MergePolicyName

    def resolve(self, local: Any, remote: Any) -> tuple[Any, Conflict | None]:
        """Pick the winner for a shared id. Does not modify anything."""
        ...


class IdentityPolicy:
    """Local always wins; conflicts are never reported."""

    name = MergePolicyName.IDENTITY

    def resolve(self, local: Any, remote: Any) -> tuple[Any, Conflict | None]:
        return local, None


class VersionedPolicy:
    """Remote wins when it carries a newer version than local.

    A remote version ahead of the local one means another writer committed
    after the caller loaded its data. Versions are only compared when both
    records have one. Otherwise ``updated_at`` is compared, and remote wins
    only if it is more than ``clock_skew`` seconds newer. With neither,
    local wins.
    """

    name = MergePolicyName.VERSIONED

    def __init__(self, clock_skew: float = 1.0) -> None:
        self.clock_skew = clock_skew

    def resolve(self, local: Any, remote: Any) -> tuple[Any, Conflict | None]:
        local_version = getattr(local, VERSION_FIELD, None)
        remote_version = getattr(remote, VERSION_FIELD, None)
        if local_version is not None and remote_version is not None:
            if remote_version > local_version:
                return remote, Conflict(local=local, remote=remote)
            return local, None

        local_time = updated_at_of(local)
        remote_time = updated_at_of(remote)
        if local_time is not None and remote_time is not None:
            if (remote_time - local_time).total_seconds() > self.clock_skew:
                return remote, Conflict(local=local, remote=remote)
        return local, None


_POLICIES: dict[MergePolicyName, type[IdentityPolicy] | type[VersionedPolicy]] = {
    MergePolicyName.IDENTITY: IdentityPolicy,
    MergePolicyName.VERSIONED: VersionedPolicy,
}


def get_policy(name: MergePolicyName | str) -> MergePolicy:
    """Get a policy instance by name.

    Raises:
        ValueError: If the name is unknown.
    """
    return _POLICIES[MergePolicyName(name)]()


def index_by_id(records: Iterable[Any], side: str = "snapshot") -> dict[str, Any]:
    """Index records by id; for duplicate ids the last occurrence wins."""
    indexed: dict[str, Any] = {}
    duplicates: set[str] = set()
    for record in records:
        record_id = str(record.id)
        if record_id in indexed:
            duplicates.add(record_id)
        indexed[record_id] = record
    if duplicates:
        logger.warning(
            "Duplicate ids in %s snapshot, keeping last occurrence: %s",
            side,
            ", ".join(sorted(duplicates)),
        )
    return indexed


def content_of(record: Any) -> Any:
    """Record content without sync metadata, for change detection."""
    if dataclasses.is_dataclass(record) and not isinstance(record, type):
        return {
            f.name: getattr(record, f.name)
            for f in dataclasses.fields(record)
            if f.name not in _SYNC_FIELDS
        }
    return record


def merge(
    local: Iterable[Any],
    remote: Iterable[Any],
    policy: MergePolicy | None = None,
    deleted: Iterable[str] = (),
) -> MergeResult:
    """Merge local and remote snapshots.

    Args:
        local: Records the caller intends to persist.
        remote: Records currently in the replica.
        policy: Resolution for shared ids (VersionedPolicy by default).
        deleted: Ids the caller removed; dropped from the result unless
            still present locally.

    Returns:
        MergeResult with merged records sorted by id.
    """
    policy = policy or VersionedPolicy()
    local_by_id = index_by_id(local, "local")
    remote_by_id = index_by_id(remote, "remote")

    deleted_ids = set(deleted)
    resurrected = deleted_ids & local_by_id.keys()
    if resurrected:
        logger.warning(
            "Ids marked deleted but still present locally, keeping them: %s",
            ", ".join(sorted(resurrected)),
        )
        deleted_ids -= resurrected

    result = MergeResult()
    for record_id in sorted(local_by_id.keys() | remote_by_id.keys()):
        if record_id in deleted_ids:
            result.removed.append(record_id)
            continue

        local_record = local_by_id.get(record_id)
        remote_record = remote_by_id.get(record_id)

        if remote_record is None:
            result.merged.append(local_record)
            result.added.append(record_id)
            continue
        if local_record is None:
            result.merged.append(remote_record)
            continue

        winner, conflict = policy.resolve(local_record, remote_record)
        if conflict is not None:
            result.conflicts.append(conflict)
        elif winner is local_record and content_of(local_record) != content_of(remote_record):
            result.updated.append(record_id)
        result.merged.append(winner)

    if result.removed:
        logger.info("Dropping %d deleted record(s): %s", len(result.removed), ", ".join(result.removed))
    return result


def signature(records: Iterable[Any]) -> str:
    """Deterministic digest of a snapshot's (id, version) set.

    Invariant under ordering and duplicates; changes iff the set of
    ``id:version`` pairs changes.
    """
    pairs = sorted({f"{record.id}:{version_of(record)}" for record in records})
    return hashlib.sha256("\n".join(pairs).encode("utf-8")).hexdigest()


def utc_timestamp(now: datetime | None = None) -> str:
    """ISO-8601 UTC timestamp with millisecond precision and a Z suffix."""
    now = now or datetime.now(timezone.utc)
    return now.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def stamp_versions(
    result: MergeResult,
    remote: Sequence[Any],
    now: datetime | None = None,
) -> list[Any]:
    """Apply the commit version bump to the records the commit changes.

    New records are written at their own version (1 if they have none).
    Updated records are written at ``max(local, remote) + 1``. Records
    taken unchanged from either side keep their version. Records without a
    version field are returned as-is.

    Args:
        result: Merge result to stamp.
        remote: Remote snapshot the result was merged against.
        now: Timestamp for ``updated_at`` (defaults to the current time).

    Returns:
        New merged list, same order as ``result.merged``.
    """
    remote_by_id = {str(r.id): r for r in remote}
    added = set(result.added)
    updated = set(result.updated)
    timestamp = utc_timestamp(now)

    stamped: list[Any] = []
    for record in result.merged:
        record_id = str(record.id)
        if record_id not in added and record_id not in updated:
            stamped.append(record)
            continue
        names = {f.name for f in dataclasses.fields(record)}
        if VERSION_FIELD not in names:
            stamped.append(record)
            continue

        if record_id in added:
            version = version_of(record) or 1
        else:
            version = max(version_of(record), version_of(remote_by_id.get(record_id))) + 1

        changes: dict[str, Any] = {VERSION_FIELD: version}
        if UPDATED_AT_FIELD in names:
            changes[UPDATED_AT_FIELD] = timestamp
        stamped.append(dataclasses.replace(record, **changes))
    return stamped
