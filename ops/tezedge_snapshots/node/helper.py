"""
Supervision of the full snapshot helper container.

A full snapshot is an export performed by a transient container running the
node image. The supervisor drives it through:

    Created -> Started -> Polling -> Finished -> Removed

Invariants:
    - Each run uses a fresh, uniquely named container
    - The helper sees the source and destination at the same paths as this service
    - The helper container is removed whether the run succeeds or fails
    - Polling stops with HelperTimeoutError once ``timeout_seconds`` has elapsed
"""

from __future__ import annotations

import asyncio
import logging
import os
import uuid
from enum import Enum
from pathlib import Path

from ..errors import ContainerRuntimeError, HelperTimeoutError
from ..runtime import STATUS_RUNNING, ContainerMount, ContainerRuntime

logger = logging.getLogger(__name__)


class HelperState(Enum):
    """Lifecycle of one helper run."""

    PENDING = "pending"
    CREATED = "created"
    STARTED = "started"
    POLLING = "polling"
    FINISHED = "finished"
    REMOVED = "removed"


class HelperProcessSupervisor:
    """Runs the full snapshot export in a helper container.

    Attributes:
        runtime: Container runtime
        image: Image the helper is created from
        network: Tezos network name passed to the helper
        context_type: Context storage type passed to the helper
        poll_interval_seconds: Interval between status polls
        timeout_seconds: Maximum wait for the helper, None waits forever
        host_paths: Mapping of local directories to their host-side paths

    Example:
        >>> supervisor = HelperProcessSupervisor(runtime, "tezedge/tezedge:v3.1.0", "mainnet")
        >>> await supervisor.run(Path("/tmp/tezedge"), Path("/tmp/snapshots/full/x.temp"))
    """

    def __init__(
        self,
        runtime: ContainerRuntime,
        image: str,
        network: str,
        context_type: str = "irmin",
        poll_interval_seconds: float = 1.0,
        timeout_seconds: float | None = None,
        host_paths: dict[str, str] | None = None,
        name_prefix: str = "tezedge-full-snapshot",
    ) -> None:
        self.runtime = runtime
        self.image = image
        self.network = network
        self.context_type = context_type
        self.poll_interval_seconds = poll_interval_seconds
        self.timeout_seconds = timeout_seconds
        self.host_paths = host_paths or {}
        self.name_prefix = name_prefix
        self.state = HelperState.PENDING

    def container_name(self) -> str:
        return f"{self.name_prefix}-{uuid.uuid4().hex[:12]}"

    def build_command(self, source: Path, destination: Path) -> list[str]:
        """Entrypoint arguments of the helper image."""
        return [
            "snapshot",
            "--network",
            self.network,
            "--tezos-context-storage",
            self.context_type,
            "--tezos-data-dir",
            os.fspath(source),
            "--target-path",
            os.fspath(destination),
        ]

    def host_path(self, path: Path) -> str:
        """Translate a local path into the path the docker host knows it by."""
        local = os.fspath(path)
        for local_root, host_root in sorted(self.host_paths.items(), key=lambda kv: -len(kv[0])):
            root = local_root.rstrip("/")
            if local == root or local.startswith(root + "/"):
                return host_root.rstrip("/") + local[len(root):]
        return local

    def build_mounts(self, source: Path, destination: Path) -> list[ContainerMount]:
        return [
            ContainerMount(source=self.host_path(source), target=os.fspath(source)),
            ContainerMount(source=self.host_path(destination), target=os.fspath(destination)),
        ]

    async def run(self, source: Path, destination: Path) -> str:
        """Run one export of ``source`` into ``destination`` and wait for it.

        Returns:
            Name of the (already removed) helper container

        Raises:
            ContainerRuntimeError: If a runtime call fails
            HelperTimeoutError: If the helper is still running at the deadline
        """
        name = self.container_name()
        created = False
        self.state = HelperState.PENDING

        try:
            await self.runtime.create(
                name,
                self.image,
                self.build_command(source, destination),
                self.build_mounts(source, destination),
            )
            created = True
            self.state = HelperState.CREATED
            logger.info(
                "Full snapshot helper created",
                extra={"container": name, "image": self.image, "source": os.fspath(source)},
            )

            await self.runtime.start(name)
            self.state = HelperState.STARTED

            await self._wait_until_finished(name)
            self.state = HelperState.FINISHED
            logger.info("Full snapshot helper finished", extra={"container": name})
        except BaseException:
            if created:
                await self._remove_quietly(name)
            raise

        await self.runtime.remove(name, force=True)
        self.state = HelperState.REMOVED
        return name

    async def _wait_until_finished(self, name: str) -> None:
        self.state = HelperState.POLLING
        loop = asyncio.get_running_loop()
        started = loop.time()

        while await self.runtime.list_names(name, status=STATUS_RUNNING):
            elapsed = loop.time() - started
            if self.timeout_seconds is not None and elapsed >= self.timeout_seconds:
                raise HelperTimeoutError(
                    f"Full snapshot helper {name} still running after {elapsed:.0f}s",
                    container=name,
                    timeout_seconds=self.timeout_seconds,
                )
            await asyncio.sleep(self.poll_interval_seconds)

    async def _remove_quietly(self, name: str) -> None:
        try:
            await self.runtime.remove(name, force=True)
            self.state = HelperState.REMOVED
        except ContainerRuntimeError as e:
            logger.error(f"Failed to remove helper container {name}: {e}")
