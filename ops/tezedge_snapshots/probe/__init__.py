"""
Node health probing.

Invariants:
    - A failed probe never triggers a snapshot
    - All probe failures are reported as NodeUnreachableError
"""

from .health import HEAD_HEADER_PATH, HeadInfo, HealthProbe

__all__ = ["HealthProbe", "HeadInfo", "HEAD_HEADER_PATH"]
