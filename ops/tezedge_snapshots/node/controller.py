"""
Node lifecycle control.

The node and its monitoring companion are stopped and started as a pair:

    stop:  node -> monitoring
    start: node -> monitoring

Invariants:
    - Monitoring never runs against a node that has not been started
    - A failed step aborts the rest of the sequence and is re-raised
    - Post-start health verification is informational only
"""

from __future__ import annotations

import logging
from enum import Enum

from ..errors import ContainerRuntimeError
from ..probe import HealthProbe
from ..runtime import ContainerRuntime

logger = logging.getLogger(__name__)


class ControllerState(Enum):
    """Externally relevant node states."""

    RUNNING = "running"
    STOPPED = "stopped"
    UNKNOWN = "unknown"


class NodeLifecycleController:
    """Stops and starts the node and its monitoring container.

    Attributes:
        runtime: Container runtime used for stop/start
        node_container: Name of the node container
        monitoring_container: Name of the monitoring container
        probe: Optional probe used to check the node after start
    """

    def __init__(
        self,
        runtime: ContainerRuntime,
        node_container: str,
        monitoring_container: str,
        probe: HealthProbe | None = None,
    ) -> None:
        self.runtime = runtime
        self.node_container = node_container
        self.monitoring_container = monitoring_container
        self.probe = probe
        self._state = ControllerState.UNKNOWN

    @property
    def state(self) -> ControllerState:
        return self._state

    async def stop(self) -> None:
        """Stop the node, then its monitoring container.

        Raises:
            ContainerRuntimeError: If either container cannot be stopped
        """
        await self._act("stop", self.node_container)
        logger.info("Tezedge node container stopped", extra={"container": self.node_container})

        await self._act("stop", self.monitoring_container)
        logger.info(
            "Tezedge node monitoring container stopped",
            extra={"container": self.monitoring_container},
        )
        self._state = ControllerState.STOPPED

    async def start(self) -> None:
        """Start the node, then its monitoring container.

        Raises:
            ContainerRuntimeError: If either container cannot be started
        """
        await self._act("start", self.node_container)
        logger.info("Tezedge node container started", extra={"container": self.node_container})

        await self._act("start", self.monitoring_container)
        logger.info(
            "Tezedge node monitoring container started",
            extra={"container": self.monitoring_container},
        )
        self._state = ControllerState.RUNNING

        await self._verify_started()

    async def _act(self, operation: str, container: str) -> None:
        try:
            if operation == "stop":
                await self.runtime.stop(container)
            else:
                await self.runtime.start(container)
        except ContainerRuntimeError:
            self._state = ControllerState.UNKNOWN
            logger.error(f"Failed to {operation} container {container}")
            raise

    async def _verify_started(self) -> None:
        if self.probe is None:
            return
        if await self.probe.is_reachable():
            logger.info("Tezedge node answers its head endpoint again")
        else:
            # still opening its databases
            logger.info("Tezedge node is not answering yet after start")
