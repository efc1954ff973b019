"""
Tezedge Snapshots Test Suite.

This package contains:
- unit/: Unit tests (no docker daemon, no node)
- integration/: Whole snapshot attempts against a temporary directory tree,
  using the in-memory container runtime
"""
