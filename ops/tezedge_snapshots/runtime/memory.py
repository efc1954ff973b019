"""
In-memory container runtime for testing.

This module provides a container runtime that keeps all state in memory for:
- Unit tests
- Integration tests of the full snapshot flow
- Local dry runs without a docker daemon

Invariants:
    - Behaves like the docker runtime for the operations the service uses
    - Every call is recorded in ``calls`` in order
    - Injected failures raise ContainerRuntimeError, like the real runtime

How to change safely:
    - This is test-only code, changes don't affect production
    - Keep interface compatible with the ContainerRuntime protocol
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Optional, Sequence

from ..errors import ContainerRuntimeError
from .base import STATUS_CREATED, STATUS_EXITED, STATUS_RUNNING, ContainerMount

logger = logging.getLogger(__name__)


@dataclass
class InMemoryContainer:
    """Container state held by the in-memory runtime."""

    name: str
    image: str = ""
    command: list[str] = field(default_factory=list)
    mounts: list[ContainerMount] = field(default_factory=list)
    status: str = STATUS_CREATED
    polls_left: Optional[int] = None


@dataclass
class HelperJob:
    """Simulated work of a container started from a given image.

    Attributes:
        run: Called with the container when it starts (e.g. to write an export)
        running_polls: Number of "running" status polls before the container
            exits; None keeps it running forever
    """

    run: Optional[Callable[[InMemoryContainer], None]] = None
    running_polls: Optional[int] = 0


class InMemoryContainerRuntime:
    """In-memory implementation of ContainerRuntime for testing.

    Example:
        >>> runtime = InMemoryContainerRuntime()
        >>> runtime.add_container("tezedge-node", status="running")
        >>> await runtime.stop("tezedge-node")
        >>> runtime.status("tezedge-node")
        'exited'
    """

    def __init__(self) -> None:
        self.containers: dict[str, InMemoryContainer] = {}
        self.calls: list[tuple[str, str]] = []
        self.jobs: dict[str, HelperJob] = {}
        self._failures: set[tuple[str, Optional[str]]] = set()

    # Testing helpers

    def add_container(self, name: str, status: str = STATUS_RUNNING, image: str = "") -> None:
        self.containers[name] = InMemoryContainer(name=name, image=image, status=status)

    def add_job(self, image: str, job: HelperJob) -> None:
        self.jobs[image] = job

    def fail(self, operation: str, name: Optional[str] = None) -> None:
        """Make ``operation`` fail, for one container or (name=None) for all."""
        self._failures.add((operation, name))

    def clear_failures(self) -> None:
        self._failures.clear()

    def status(self, name: str) -> Optional[str]:
        container = self.containers.get(name)
        return container.status if container else None

    def operations(self, name: Optional[str] = None) -> list[str]:
        """Recorded operations, optionally for one container only."""
        return [op for op, target in self.calls if name is None or target == name]

    # ContainerRuntime protocol

    async def stop(self, name: str) -> None:
        container = self._get("stop", name)
        container.status = STATUS_EXITED

    async def start(self, name: str) -> None:
        container = self._get("start", name)
        container.status = STATUS_RUNNING

        job = self.jobs.get(container.image)
        if job is not None:
            container.polls_left = job.running_polls
            if job.run is not None:
                job.run(container)

    async def create(
        self,
        name: str,
        image: str,
        command: Sequence[str],
        mounts: Sequence[ContainerMount],
    ) -> None:
        self._record("create", name)
        if name in self.containers:
            raise ContainerRuntimeError(f"Container {name} already exists", container=name)
        self.containers[name] = InMemoryContainer(
            name=name, image=image, command=list(command), mounts=list(mounts)
        )

    async def list_names(self, name: str, status: Optional[str] = None) -> list[str]:
        self._record("list", name)
        container = self.containers.get(name)
        if container is None:
            return []

        if container.status == STATUS_RUNNING and container.polls_left is not None:
            if container.polls_left <= 0:
                container.status = STATUS_EXITED
            else:
                container.polls_left -= 1

        if status is not None and container.status != status:
            return []
        return [container.name]

    async def remove(self, name: str, force: bool = False) -> None:
        container = self._get("remove", name)
        if container.status == STATUS_RUNNING and not force:
            raise ContainerRuntimeError(f"Container {name} is running", container=name)
        del self.containers[name]

    def _record(self, operation: str, name: str) -> None:
        self.calls.append((operation, name))
        if (operation, name) in self._failures or (operation, None) in self._failures:
            raise ContainerRuntimeError(f"Injected {operation} failure for {name}", container=name)

    def _get(self, operation: str, name: str) -> InMemoryContainer:
        self._record(operation, name)
        container = self.containers.get(name)
        if container is None:
            raise ContainerRuntimeError(
                f"Cannot {operation} container {name}: not found", container=name
            )
        return container
