"""
Container runtime abstraction for the snapshot service.

This module provides a pluggable runtime interface supporting:
- Docker (production, via the docker SDK)
- In-memory (for testing)

Invariants:
    - The node, its monitor and the helper are addressed by container name
    - Runtime failures never leak library exceptions

How to change safely:
    - New runtimes must implement the ContainerRuntime protocol
    - Test stop/start ordering with the in-memory runtime
"""

from .base import (
    STATUS_CREATED,
    STATUS_EXITED,
    STATUS_RUNNING,
    ContainerMount,
    ContainerRuntime,
)
from .docker import DockerContainerRuntime
from .memory import HelperJob, InMemoryContainer, InMemoryContainerRuntime

__all__ = [
    # Protocol and types
    "ContainerRuntime",
    "ContainerMount",
    "STATUS_CREATED",
    "STATUS_EXITED",
    "STATUS_RUNNING",
    # Implementations
    "DockerContainerRuntime",
    "InMemoryContainerRuntime",
    "InMemoryContainer",
    "HelperJob",
]
