"""
On-disk snapshot storage.

Snapshots live under ``<target>/archive/`` and ``<target>/full/``. There is no
metadata store: the filesystem is the only state, and it is rescanned on every
attempt.

Invariants:
    - Entries ending in ``.temp`` are staging leftovers, never snapshots
    - Capacity is enforced before staging (evict-then-add)
    - Promotion is the only way an entry gets its final name
"""

from .retention import TEMP_SUFFIX, RetentionManager, SnapshotEntry, is_temp, remove_entry
from .staging import (
    ARCHIVE_SUBTREES,
    IDENTITY_FILE,
    LOCK_FILE,
    LOG_FILE_PATTERN,
    StagingArea,
    StagingHandle,
)

__all__ = [
    "RetentionManager",
    "SnapshotEntry",
    "StagingArea",
    "StagingHandle",
    "TEMP_SUFFIX",
    "ARCHIVE_SUBTREES",
    "IDENTITY_FILE",
    "LOCK_FILE",
    "LOG_FILE_PATTERN",
    "is_temp",
    "remove_entry",
]
