"""
Container runtime protocol.

The snapshot service drives the node, its monitoring companion and the full
snapshot helper through this narrow interface. Implementations:
- DockerContainerRuntime (docker SDK, production)
- InMemoryContainerRuntime (tests and dry runs)

Invariants:
    - Every failure surfaces as ContainerRuntimeError
    - list_names() matches container names exactly, not by substring
    - Bind mounts keep the same path inside and outside the container

How to change safely:
    - Protocol changes require updating all implementations
    - Keep operations idempotent where the runtime allows it
"""

from __future__ import annotations

from abc import abstractmethod
from dataclasses import dataclass
from typing import Protocol, Sequence, runtime_checkable

STATUS_RUNNING = "running"
STATUS_CREATED = "created"
STATUS_EXITED = "exited"


@dataclass(frozen=True)
class ContainerMount:
    """A bind mount for a container.

    Attributes:
        source: Path on the host
        target: Path inside the container
        read_only: Whether the mount is read-only
    """

    source: str
    target: str
    read_only: bool = False

    @property
    def mode(self) -> str:
        return "ro" if self.read_only else "rw"


@runtime_checkable
class ContainerRuntime(Protocol):
    """Protocol for container runtime backends."""

    @abstractmethod
    async def stop(self, name: str) -> None:
        """Stop a running container.

        Raises:
            ContainerRuntimeError: If the container is missing or cannot be stopped
        """
        ...

    @abstractmethod
    async def start(self, name: str) -> None:
        """Start a stopped or created container.

        Raises:
            ContainerRuntimeError: If the container is missing or cannot be started
        """
        ...

    @abstractmethod
    async def create(
        self,
        name: str,
        image: str,
        command: Sequence[str],
        mounts: Sequence[ContainerMount],
    ) -> None:
        """Create (but do not start) a container.

        Args:
            name: Unique container name
            image: Image reference
            command: Arguments passed to the image entrypoint
            mounts: Bind mounts

        Raises:
            ContainerRuntimeError: If creation fails
        """
        ...

    @abstractmethod
    async def list_names(self, name: str, status: str | None = None) -> list[str]:
        """List containers called exactly ``name``, optionally filtered by status."""
        ...

    @abstractmethod
    async def remove(self, name: str, force: bool = False) -> None:
        """Remove a container.

        Raises:
            ContainerRuntimeError: If removal fails
        """
        ...
