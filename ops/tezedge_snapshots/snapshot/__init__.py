"""
Snapshot orchestration for the Tezedge node.

This module decides when to snapshot and sequences each attempt:
- SnapshotScheduler: eligibility loop, error classification, shutdown
- SnapshotExecutor: stop -> evict -> stage -> promote -> start
- SnapshotIdentity: deterministic snapshot naming

Invariants:
    - At most one attempt is in flight
    - Only NodeUnreachableError is retried automatically
"""

from .executor import SnapshotExecutor, SnapshotResult
from .identity import SnapshotIdentity, SnapshotKind, kinds_for
from .scheduler import SchedulerState, SnapshotScheduler

__all__ = [
    "SnapshotExecutor",
    "SnapshotResult",
    "SnapshotIdentity",
    "SnapshotKind",
    "SnapshotScheduler",
    "SchedulerState",
    "kinds_for",
]
