"""Replica synchronization engine.

Architecture:
    SyncCoordinator → OptimisticCommitter → SnapshotReader → SheetsClient
                           │
                  merge engine, ConflictNotifier, WriteLockManager

Components:
- **RowCodec**: Typed record <-> row mapping per collection
- **SnapshotReader**: Best-effort range reads decoded into records
- **merge / signature**: Identity and versioned merge policies
- **ConflictNotifier**: Single replaceable conflict handler
- **WriteLockManager**: Per-collection asyncio locks
- **OptimisticCommitter**: Read → merge → verify → write with bounded retry
- **SyncCoordinator**: Owns all of the above plus the read-through cache

All public symbols are re-exported here.
"""

from sheetsync.client.sync.batching import (
    DEFAULT_BATCH_SIZE,
    DEFAULT_THROTTLE,
    BatchError,
    BatchStats,
    chunked,
    run_batched,
)
from sheetsync.client.sync.codec import Column, ColumnKind, RowCodec
from sheetsync.client.sync.committer import OptimisticCommitter
from sheetsync.client.sync.coordinator import CoordinatorStats, SyncCoordinator
from sheetsync.client.sync.locks import WriteLockManager
from sheetsync.client.sync.merge import (
    IdentityPolicy,
    MergePolicy,
    VersionedPolicy,
    get_policy,
    merge,
    signature,
    stamp_versions,
)
from sheetsync.client.sync.notifier import ConflictNotifier, format_conflict_message
from sheetsync.client.sync.reader import SnapshotReader, decode_rows
from sheetsync.client.sync.types import (
    Collection,
    CommitResult,
    Conflict,
    ConflictCallback,
    ConflictExhausted,
    LockReentryError,
    MappingError,
    MergeResult,
    RemoteReadError,
    RemoteWriteError,
    Snapshot,
    SyncedRecord,
    SyncError,
)

__all__ = [
    # Types and errors
    "Collection",
    "CommitResult",
    "Conflict",
    "ConflictCallback",
    "ConflictExhausted",
    "LockReentryError",
    "MappingError",
    "MergeResult",
    "RemoteReadError",
    "RemoteWriteError",
    "Snapshot",
    "SyncedRecord",
    "SyncError",
    # Codec
    "Column",
    "ColumnKind",
    "RowCodec",
    # Reader
    "SnapshotReader",
    "decode_rows",
    # Merge engine
    "IdentityPolicy",
    "MergePolicy",
    "VersionedPolicy",
    "get_policy",
    "merge",
    "signature",
    "stamp_versions",
    # Notifier & locks
    "ConflictNotifier",
    "format_conflict_message",
    "WriteLockManager",
    # Committer & coordinator
    "OptimisticCommitter",
    "CoordinatorStats",
    "SyncCoordinator",
    # Batching
    "DEFAULT_BATCH_SIZE",
    "DEFAULT_THROTTLE",
    "BatchError",
    "BatchStats",
    "chunked",
    "run_batched",
]
