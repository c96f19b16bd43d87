"""Shared types and dataclasses for replica synchronization.

This module provides:
- SyncError and subclasses: RemoteReadError, RemoteWriteError,
  ConflictExhausted, MappingError, LockReentryError
- SyncedRecord: Protocol every synchronized record satisfies
- Snapshot: Decoded records of one range plus read metadata
- Conflict, MergeResult: Merge engine output
- CommitResult: Outcome of a successful commit
- Type aliases for callbacks
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol, TypeVar

if TYPE_CHECKING:
    from sheetsync.client.sync.codec import RowCodec


class SyncError(Exception):
    """Base exception for sync errors."""


class RemoteReadError(SyncError):
    """Replica could not be read.

    The snapshot reader never raises this; it is raised by the committer
    only when no read of a commit succeeded, so writing would be blind.
    """


class RemoteWriteError(SyncError):
    """Final range write failed. Nothing was persisted by the commit."""


class ConflictExhausted(SyncError):
    """Replica kept changing under us for every verify attempt.

    Attributes:
        key: Collection key that could not be committed
        attempts: Number of verify attempts made
    """

    def __init__(self, key: str, attempts: int) -> None:
        self.key = key
        self.attempts = attempts
        super().__init__(
            f"Gave up committing {key!r}: replica changed during each of "
            f"{attempts} attempts"
        )


class MappingError(SyncError):
    """A cell could not be converted to its column type.

    Attributes:
        column: Column name
        value: Offending raw cell value
    """

    def __init__(self, column: str, value: Any, reason: str = "") -> None:
        self.column = column
        self.value = value
        message = f"Cannot map {value!r} to column {column!r}"
        super().__init__(f"{message}: {reason}" if reason else message)


class LockReentryError(SyncError, RuntimeError):
    """A task tried to re-acquire a collection lock it already holds."""


class SyncedRecord(Protocol):
    """A record that can be synchronized with the replica.

    Concrete records are dataclass instances; version stamping relies on
    ``dataclasses.replace``.
    """

    id: str
    version: int | None
    updated_at: str | None


R = TypeVar("R", bound=SyncedRecord)


@dataclass
class Collection:
    """Where and how one collection lives in the replica.

    Ranges should start below the header row; the committer writes data
    rows only.

    Attributes:
        key: Collection key (lock and cache key)
        codec: Record <-> row codec
        read_range: Range read for snapshots
        clear_range: Range cleared by clear() (defaults to read_range)
        write_range: Range overwritten by commits (defaults to read_range)
    """

    key: str
    codec: RowCodec[Any]
    read_range: str
    clear_range: str = ""
    write_range: str = ""

    def __post_init__(self) -> None:
        self.clear_range = self.clear_range or self.read_range
        self.write_range = self.write_range or self.read_range


@dataclass
class Snapshot:
    """Records decoded from one read of a range.

    Attributes:
        records: Decoded records, in sheet order
        row_count: Data rows physically present (header excluded,
            blank-id rows included)
        degraded: True if the read failed and the snapshot is empty
            only because of that
    """

    records: list[Any] = field(default_factory=list)
    row_count: int = 0
    degraded: bool = False

    @classmethod
    def failed(cls) -> Snapshot:
        """Create the empty snapshot returned for a failed read."""
        return cls(records=[], row_count=0, degraded=True)

    @property
    def is_empty(self) -> bool:
        """True if no records were decoded."""
        return not self.records

    def __len__(self) -> int:
        return len(self.records)


@dataclass(frozen=True)
class Conflict:
    """A remote record newer than the local one it would replace.

    Attributes:
        local: Record the caller intended to write
        remote: Record currently persisted by another writer
    """

    local: Any
    remote: Any

    @property
    def id(self) -> str:
        """Record id shared by both sides."""
        return str(self.local.id)

    @property
    def local_version(self) -> int | None:
        return getattr(self.local, "version", None)

    @property
    def remote_version(self) -> int | None:
        return getattr(self.remote, "version", None)


@dataclass
class MergeResult:
    """Result of merging a local and a remote snapshot.

    Attributes:
        merged: One record per id, sorted by id
        conflicts: Conflicts detected (versioned policy only)
        added: Ids present only locally
        updated: Shared ids where local won with differing content
        removed: Ids dropped because the caller deleted them
    """

    merged: list[Any] = field(default_factory=list)
    conflicts: list[Conflict] = field(default_factory=list)
    added: list[str] = field(default_factory=list)
    updated: list[str] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)

    @property
    def has_conflicts(self) -> bool:
        """Check if there are any conflicts."""
        return len(self.conflicts) > 0

    @property
    def ids(self) -> list[str]:
        """Ids of the merged records, in order."""
        return [str(r.id) for r in self.merged]


@dataclass
class CommitResult:
    """Outcome of a successful commit.

    Attributes:
        key: Collection key
        attempts: Verify attempts used
        written: Data rows written
        padding: Blank rows appended to overwrite stale trailing rows
        conflicts: Distinct conflicts reported during the commit
        merged: Records persisted, in written order
    """

    key: str
    attempts: int
    written: int
    padding: int
    conflicts: list[Conflict] = field(default_factory=list)
    merged: list[Any] = field(default_factory=list)

    @property
    def has_conflicts(self) -> bool:
        """Check if there are any conflicts."""
        return len(self.conflicts) > 0


# Type alias for conflict notification callback: (collection key, conflicts)
ConflictCallback = Callable[[str, Sequence[Conflict]], None]
