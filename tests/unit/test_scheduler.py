"""
Unit tests for the snapshot scheduler.

Tests cover:
- Eligibility gating on reachability and frequency
- Retry of unreachable nodes, stop on any other error
- One attempt in flight at a time
- Stop requests honoured between attempts only
"""

import asyncio
import logging

import pytest

from ops.tezedge_snapshots.config import SnapshotKindSelector
from ops.tezedge_snapshots.errors import (
    ContainerRuntimeError,
    FilesystemError,
    NodeUnreachableError,
)
from ops.tezedge_snapshots.snapshot import SchedulerState, SnapshotResult, SnapshotScheduler
from tests.conftest import HEAD_HASH, FakeProbe


class FakeClock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


class FakeExecutor:
    """Executor double running scripted outcomes."""

    def __init__(self, outcomes=None, delay: float = 0.0) -> None:
        self.outcomes = list(outcomes or [])
        self.delay = delay
        self.calls = []
        self.in_flight = 0
        self.max_in_flight = 0
        self.on_call = None

    async def take_snapshot(self, selector, capacity):
        self.calls.append((selector, capacity))
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.on_call is not None:
                self.on_call()
            await asyncio.sleep(self.delay)
            outcome = self.outcomes.pop(0) if self.outcomes else None
            if isinstance(outcome, BaseException):
                raise outcome
            return SnapshotResult(head=HEAD_HASH)
        finally:
            self.in_flight -= 1


class StoppingProbe(FakeProbe):
    """Probe that requests a scheduler stop after a number of checks."""

    def __init__(self, stop_after: int, reachable: bool = True) -> None:
        super().__init__(reachable=reachable)
        self.stop_after = stop_after
        self.scheduler = None

    async def get_head(self):
        if self.calls + 1 >= self.stop_after and self.scheduler is not None:
            self.scheduler.request_stop()
        return await super().get_head()


def make_scheduler(probe, executor, clock=None, frequency=60, interval=0.001):
    scheduler = SnapshotScheduler(
        probe=probe,
        executor=executor,
        kind=SnapshotKindSelector.ARCHIVE,
        capacity=2,
        frequency_seconds=frequency,
        check_interval_seconds=interval,
        clock=clock or FakeClock(),
    )
    if isinstance(probe, StoppingProbe):
        probe.scheduler = scheduler
    return scheduler


class TestCanSnapshot:
    """Tests for eligibility."""

    @pytest.mark.asyncio
    async def test_unreachable_on_first_call(self):
        """No snapshot against an unreachable node, even the first time."""
        scheduler = make_scheduler(FakeProbe(reachable=False), FakeExecutor())

        assert await scheduler.can_snapshot() is False

    @pytest.mark.asyncio
    async def test_first_call_reachable(self):
        """A reachable node with no prior attempt is eligible."""
        scheduler = make_scheduler(FakeProbe(), FakeExecutor())

        assert await scheduler.can_snapshot() is True

    @pytest.mark.asyncio
    async def test_frequency(self):
        """Eligibility waits for the frequency since the last attempt start."""
        clock = FakeClock()
        scheduler = make_scheduler(FakeProbe(), FakeExecutor(), clock=clock, frequency=60)
        scheduler.last_attempt_at = clock.now

        clock.now += 59
        assert await scheduler.can_snapshot() is False

        clock.now += 1
        assert await scheduler.can_snapshot() is True

    @pytest.mark.asyncio
    async def test_unreachable_ignores_elapsed_time(self):
        """Elapsed time never overrides a failed probe."""
        clock = FakeClock()
        scheduler = make_scheduler(FakeProbe(reachable=False), FakeExecutor(), clock=clock)
        scheduler.last_attempt_at = clock.now - 10_000

        assert await scheduler.can_snapshot() is False


class TestSchedulerLoop:
    """Tests for the scheduler loop."""

    @pytest.mark.asyncio
    async def test_unreachable_never_attempts(self):
        """Two failed probes mean two sleeps and no attempt."""
        probe = StoppingProbe(stop_after=2, reachable=False)
        executor = FakeExecutor()
        scheduler = make_scheduler(probe, executor)

        await asyncio.wait_for(scheduler.run(), timeout=5)

        assert probe.calls == 2
        assert executor.calls == []
        assert scheduler.state is SchedulerState.STOPPED
        assert scheduler.failure is None

    @pytest.mark.asyncio
    async def test_attempt_then_wait_for_frequency(self):
        """After an attempt the scheduler idles until the frequency elapses."""
        probe = StoppingProbe(stop_after=4)
        executor = FakeExecutor()
        scheduler = make_scheduler(probe, executor, frequency=3600)

        await asyncio.wait_for(scheduler.run(), timeout=5)

        assert executor.calls == [(SnapshotKindSelector.ARCHIVE, 2)]
        assert scheduler.stats["success_count"] == 1

    @pytest.mark.asyncio
    async def test_attempt_start_recorded_before_executor(self):
        """The attempt timestamp exists while the attempt runs."""
        clock = FakeClock(now=42.0)
        probe = StoppingProbe(stop_after=2)
        executor = FakeExecutor()
        scheduler = make_scheduler(probe, executor, clock=clock, frequency=3600)
        seen = []
        executor.on_call = lambda: seen.append(scheduler.last_attempt_at)

        await asyncio.wait_for(scheduler.run(), timeout=5)

        assert seen == [42.0]

    @pytest.mark.asyncio
    async def test_failed_attempt_counts_for_frequency(self):
        """A failed attempt does not cause an immediate retry."""
        probe = StoppingProbe(stop_after=5)
        executor = FakeExecutor(outcomes=[NodeUnreachableError("went away")])
        scheduler = make_scheduler(probe, executor, frequency=3600)

        await asyncio.wait_for(scheduler.run(), timeout=5)

        assert len(executor.calls) == 1
        assert scheduler.failure is None

    @pytest.mark.asyncio
    async def test_unreachable_attempt_continues(self):
        """An unreachable node during an attempt keeps the loop alive."""
        clock = FakeClock()
        probe = StoppingProbe(stop_after=3)
        executor = FakeExecutor(outcomes=[NodeUnreachableError("went away")])
        scheduler = make_scheduler(probe, executor, clock=clock, frequency=0.5)

        def advance():
            clock.now += 1

        executor.on_call = advance

        await asyncio.wait_for(scheduler.run(), timeout=5)

        assert len(executor.calls) >= 2
        assert scheduler.failure is None

    @pytest.mark.asyncio
    async def test_fatal_error_stops_loop(self):
        """Any other error stops the loop after logging it."""
        probe = FakeProbe()
        error = ContainerRuntimeError("cannot stop", container="tezedge-node")
        executor = FakeExecutor(outcomes=[error])
        scheduler = make_scheduler(probe, executor, frequency=0)

        await asyncio.wait_for(scheduler.run(), timeout=5)

        assert scheduler.failure is error
        assert len(executor.calls) == 1
        assert scheduler.state is SchedulerState.STOPPED
        assert scheduler.stats["failed"] is True

    @pytest.mark.asyncio
    async def test_failed_restart_is_reported(self, caplog):
        """A restart failure attached to the attempt error is logged with it."""
        error = FilesystemError("disk full", path="/tmp/snapshots")
        error.restart_error = ContainerRuntimeError("cannot start", container="tezedge-node")
        scheduler = make_scheduler(FakeProbe(), FakeExecutor(outcomes=[error]), frequency=0)

        with caplog.at_level(logging.ERROR):
            await asyncio.wait_for(scheduler.run(), timeout=5)

        assert scheduler.failure is error
        assert any("could not be restarted" in r.getMessage() for r in caplog.records)

    @pytest.mark.asyncio
    async def test_one_attempt_in_flight(self):
        """Attempts never overlap."""
        clock = FakeClock()
        probe = StoppingProbe(stop_after=6)
        executor = FakeExecutor(delay=0.01)
        scheduler = make_scheduler(probe, executor, clock=clock, frequency=0)

        await asyncio.wait_for(scheduler.run(), timeout=5)

        assert len(executor.calls) >= 2
        assert executor.max_in_flight == 1

    @pytest.mark.asyncio
    async def test_stop_waits_for_attempt(self):
        """A stop request during an attempt lets the attempt finish."""
        probe = FakeProbe()
        executor = FakeExecutor(delay=0.05)
        scheduler = make_scheduler(probe, executor, frequency=3600)
        executor.on_call = scheduler.request_stop

        await asyncio.wait_for(scheduler.run(), timeout=5)

        assert len(executor.calls) == 1
        assert executor.in_flight == 0
        assert scheduler.stats["success_count"] == 1

    @pytest.mark.asyncio
    async def test_stop_while_idle(self):
        """A stop request interrupts the idle sleep."""
        scheduler = make_scheduler(FakeProbe(reachable=False), FakeExecutor(), interval=3600)
        task = asyncio.create_task(scheduler.run())
        await asyncio.sleep(0.01)

        scheduler.request_stop()
        await asyncio.wait_for(task, timeout=5)

        assert scheduler.state is SchedulerState.STOPPED
