"""Core module - Shared configuration and enums."""

from sheetsync.core.config import (
    DEFAULT_BASE_URL,
    ConfigurationError,
    ReplicaConfig,
    SyncSettings,
)
from sheetsync.core.types import CommitState, MergePolicyName

__all__ = [
    # Config
    "DEFAULT_BASE_URL",
    "ConfigurationError",
    "ReplicaConfig",
    "SyncSettings",
    # Types
    "CommitState",
    "MergePolicyName",
]
