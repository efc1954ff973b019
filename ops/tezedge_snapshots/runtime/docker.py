"""
Docker-backed container runtime.

Uses the docker SDK against the daemon reachable from the environment
(normally the mounted /var/run/docker.sock). The SDK is synchronous, so every
call runs in the default executor.
"""

from __future__ import annotations

import asyncio
import functools
import logging
from typing import Any, Callable, Sequence

import docker
from docker.errors import DockerException, NotFound

from ..errors import ContainerRuntimeError
from .base import ContainerMount

logger = logging.getLogger(__name__)


class DockerContainerRuntime:
    """ContainerRuntime implementation using the docker SDK.

    Example:
        >>> runtime = DockerContainerRuntime()
        >>> await runtime.stop("tezedge-node")
        >>> await runtime.start("tezedge-node")
    """

    def __init__(self, client: docker.DockerClient | None = None, stop_timeout: int = 60) -> None:
        """Initialize the runtime.

        Args:
            client: Optional docker client (created from the environment on first use)
            stop_timeout: Seconds the daemon waits before killing a stopping container
        """
        self._client = client
        self.stop_timeout = stop_timeout

    @property
    def client(self) -> docker.DockerClient:
        if self._client is None:
            try:
                self._client = docker.from_env()
            except DockerException as e:
                raise ContainerRuntimeError(f"Cannot connect to docker daemon: {e}") from e
        return self._client

    async def stop(self, name: str) -> None:
        await self._call(name, "stop", lambda c: c.containers.get(name).stop(timeout=self.stop_timeout))
        logger.debug(f"Container {name} stopped")

    async def start(self, name: str) -> None:
        await self._call(name, "start", lambda c: c.containers.get(name).start())
        logger.debug(f"Container {name} started")

    async def create(
        self,
        name: str,
        image: str,
        command: Sequence[str],
        mounts: Sequence[ContainerMount],
    ) -> None:
        volumes = {m.source: {"bind": m.target, "mode": m.mode} for m in mounts}
        await self._call(
            name,
            "create",
            lambda c: c.containers.create(
                image,
                command=list(command),
                name=name,
                volumes=volumes,
                network_mode="host",
                detach=True,
            ),
        )
        logger.debug(f"Container {name} created from {image}")

    async def list_names(self, name: str, status: str | None = None) -> list[str]:
        filters: dict[str, Any] = {"name": name}
        if status:
            filters["status"] = status

        containers = await self._call(
            name, "list", lambda c: c.containers.list(all=True, filters=filters)
        )
        # the name filter is a substring match, keep exact names only
        return [container.name for container in containers if container.name == name]

    async def remove(self, name: str, force: bool = False) -> None:
        await self._call(name, "remove", lambda c: c.containers.get(name).remove(force=force))
        logger.debug(f"Container {name} removed")

    async def _call(self, name: str, operation: str, fn: Callable[[docker.DockerClient], Any]) -> Any:
        client = self.client
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(None, functools.partial(fn, client))
        except NotFound as e:
            raise ContainerRuntimeError(
                f"Cannot {operation} container {name}: not found", container=name
            ) from e
        except DockerException as e:
            raise ContainerRuntimeError(
                f"Cannot {operation} container {name}: {e}", container=name
            ) from e
