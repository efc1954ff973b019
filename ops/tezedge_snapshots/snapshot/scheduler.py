"""
Snapshot scheduler.

The scheduler is the service's single worker loop:

    Idle -> Checking -> (Snapshotting) -> Idle ... -> Stopped

Invariants:
    - Attempts run one after another, never concurrently
    - No attempt is made while the node's head endpoint fails
    - The attempt start time is recorded before the attempt runs, so failed
      attempts also count towards the snapshot frequency
    - NodeUnreachableError is retried; any other error stops the loop
    - A stop request is honoured between attempts, never during one
"""

from __future__ import annotations

import asyncio
import logging
import time
from enum import Enum
from typing import Any, Callable

from ..config import SnapshotKindSelector
from ..errors import is_retryable
from ..probe import HealthProbe
from .executor import SnapshotExecutor

logger = logging.getLogger(__name__)


class SchedulerState(Enum):
    """Scheduler loop states."""

    IDLE = "idle"
    CHECKING = "checking"
    SNAPSHOTTING = "snapshotting"
    STOPPED = "stopped"


class SnapshotScheduler:
    """Decides when to snapshot and runs the attempts.

    Attributes:
        probe: Health probe used for eligibility
        executor: Snapshot executor
        kind: Snapshot variants to produce
        capacity: Retention capacity per category
        frequency_seconds: Minimum time between attempt starts
        check_interval_seconds: Sleep between eligibility checks

    Example:
        >>> scheduler = SnapshotScheduler(probe, executor, SnapshotKindSelector.ARCHIVE, 2, 86400, 5)
        >>> task = asyncio.create_task(scheduler.run())
        >>> scheduler.request_stop()
        >>> await task
    """

    def __init__(
        self,
        probe: HealthProbe,
        executor: SnapshotExecutor,
        kind: SnapshotKindSelector,
        capacity: int,
        frequency_seconds: float,
        check_interval_seconds: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.probe = probe
        self.executor = executor
        self.kind = kind
        self.capacity = capacity
        self.frequency_seconds = frequency_seconds
        self.check_interval_seconds = check_interval_seconds
        self._clock = clock

        self._stop_event = asyncio.Event()
        self._state = SchedulerState.IDLE
        self._running = False
        self.last_attempt_at: float | None = None
        self.failure: BaseException | None = None
        self._attempt_count = 0
        self._success_count = 0

    @property
    def state(self) -> SchedulerState:
        return self._state

    async def can_snapshot(self) -> bool:
        """Whether a new attempt may start now.

        False whenever the node does not answer, even if no attempt was ever
        made: a node started on a wiped database is not ready to snapshot.
        """
        if not await self.probe.is_reachable():
            return False
        if self.last_attempt_at is None:
            return True
        return self._clock() - self.last_attempt_at >= self.frequency_seconds

    async def run(self) -> None:
        """Run the scheduler loop until stopped or a fatal error occurs."""
        if self._running:
            logger.warning("Snapshot scheduler already running")
            return

        self._running = True
        logger.info(
            "Starting snapshot scheduler",
            extra={
                "kind": self.kind.value,
                "capacity": self.capacity,
                "frequency_seconds": self.frequency_seconds,
                "check_interval_seconds": self.check_interval_seconds,
            },
        )

        try:
            while not self._stop_event.is_set():
                self._state = SchedulerState.CHECKING
                if await self.can_snapshot() and not self._stop_event.is_set():
                    await self._attempt()
                    if self.failure is not None:
                        break
                    continue

                self._state = SchedulerState.IDLE
                await self._sleep(self.check_interval_seconds)
        finally:
            self._state = SchedulerState.STOPPED
            self._running = False
            logger.info("Snapshot scheduler stopped")

    def request_stop(self) -> None:
        """Ask the loop to stop at the next iteration boundary."""
        self._stop_event.set()
        logger.info("Stopping snapshot scheduler")

    async def _attempt(self) -> None:
        self.last_attempt_at = self._clock()
        self._state = SchedulerState.SNAPSHOTTING
        self._attempt_count += 1

        try:
            result = await self.executor.take_snapshot(self.kind, self.capacity)
        except Exception as e:
            restart_error = getattr(e, "restart_error", None)
            if restart_error is not None:
                logger.error(
                    f"Tezedge containers could not be restarted after the failed attempt: {restart_error}",
                    extra={"error": str(e)},
                )
            if is_retryable(e):
                logger.warning(f"Snapshot attempt skipped, node unreachable: {e}")
                return
            self.failure = e
            logger.error(f"Snapshot attempt failed, stopping scheduler: {e}", exc_info=True)
            return

        self._success_count += 1
        logger.info(
            "Snapshot attempt completed",
            extra={
                "head": result.head,
                "outputs": {kind.value: str(path) for kind, path in result.outputs.items()},
                "evicted": [str(path) for path in result.evicted],
                "duration_ms": result.duration_ms,
            },
        )

    async def _sleep(self, seconds: float) -> None:
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass

    @property
    def stats(self) -> dict[str, Any]:
        """Get scheduler statistics."""
        return {
            "running": self._running,
            "state": self._state.value,
            "attempt_count": self._attempt_count,
            "success_count": self._success_count,
            "failed": self.failure is not None,
        }
