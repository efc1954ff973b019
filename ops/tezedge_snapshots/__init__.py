"""
Tezedge Snapshots - automated point-in-time backups of a running Tezedge node.

The service periodically checks whether the node is healthy and due for a new
snapshot, stops it, extracts its database, packages it (a plain directory copy
for "archive" snapshots, a helper-container export for "full" snapshots),
enforces a retention cap and starts the node back up.

Architecture:
    ┌───────────────────┐   can_snapshot   ┌──────────────┐
    │ SnapshotScheduler │─────────────────▶│ HealthProbe  │
    └─────────┬─────────┘                  └──────────────┘
              │ take_snapshot
              ▼
    ┌───────────────────┐  stop / start   ┌─────────────────────────┐
    │ SnapshotExecutor  │────────────────▶│ NodeLifecycleController │
    └─────────┬─────────┘                 └─────────────────────────┘
              │
      ┌───────┼──────────────────┬───────────────────────────┐
      ▼       ▼                  ▼                           ▼
    Retention  StagingArea   HelperProcessSupervisor   ContainerRuntime
    (evict)    (.temp → final)  (full export)            (docker)

Invariants:
    - At most one snapshot attempt is in flight
    - A snapshot is visible under its final name only after promotion
    - The node is started again after every attempt, successful or not
    - Everything needed after a crash is recoverable by scanning the filesystem

How to change safely:
    - Keep the stop -> evict -> stage -> promote -> start order
    - Never count or serve ``.temp`` entries as snapshots
    - Test failure paths with the in-memory container runtime
"""

from ._version import __version__

__all__ = ["__version__"]
