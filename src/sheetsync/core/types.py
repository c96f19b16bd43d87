"""Shared types for sheetsync.

This module defines enums used across the client and the CLI.
"""

from __future__ import annotations

from enum import Enum


class MergePolicyName(str, Enum):
    """Merge policy selectable per coordinator."""

    IDENTITY = "identity"
    VERSIONED = "versioned"


class CommitState(str, Enum):
    """State of a single commit call.

    Transitions:
        IDLE -> LOCKED -> READ_0 -> MERGE -> VERIFY
        VERIFY -> WRITE (signatures match)
        VERIFY -> REMERGE -> VERIFY (signatures differ)
        WRITE -> DONE, any -> FAILED, then UNLOCKED
    """

    IDLE = "idle"
    LOCKED = "locked"
    READ_0 = "read_0"
    MERGE = "merge"
    VERIFY = "verify"
    REMERGE = "remerge"
    WRITE = "write"
    DONE = "done"
    FAILED = "failed"
    UNLOCKED = "unlocked"
