"""
Unit tests for node lifecycle control and the full snapshot helper.

Tests cover:
- Stop/start ordering of node and monitoring containers
- Abort on the first failing step
- Helper create/start/poll/remove lifecycle
- Helper cleanup on failure and timeout
- Host path translation for bind mounts
"""

from pathlib import Path

import pytest

from ops.tezedge_snapshots.errors import ContainerRuntimeError, HelperTimeoutError
from ops.tezedge_snapshots.node import (
    ControllerState,
    HelperProcessSupervisor,
    HelperState,
    NodeLifecycleController,
)
from ops.tezedge_snapshots.runtime import (
    STATUS_EXITED,
    STATUS_RUNNING,
    ContainerRuntime,
    HelperJob,
    InMemoryContainerRuntime,
)
from tests.conftest import FakeProbe

NODE = "tezedge-node"
MONITOR = "tezedge-node-monitoring"


class TestNodeLifecycleController:
    """Tests for NodeLifecycleController."""

    @pytest.fixture
    def controller(self, runtime):
        return NodeLifecycleController(runtime, NODE, MONITOR)

    def test_runtime_protocol(self, runtime):
        """The in-memory runtime satisfies the protocol."""
        assert isinstance(runtime, ContainerRuntime)

    @pytest.mark.asyncio
    async def test_stop_order(self, controller, runtime):
        """The node is stopped before its monitor."""
        await controller.stop()

        assert runtime.calls == [("stop", NODE), ("stop", MONITOR)]
        assert runtime.status(NODE) == STATUS_EXITED
        assert runtime.status(MONITOR) == STATUS_EXITED
        assert controller.state is ControllerState.STOPPED

    @pytest.mark.asyncio
    async def test_start_order(self, controller, runtime):
        """The node is started before its monitor."""
        await controller.stop()
        runtime.calls.clear()

        await controller.start()

        assert runtime.calls == [("start", NODE), ("start", MONITOR)]
        assert runtime.status(NODE) == STATUS_RUNNING
        assert runtime.status(MONITOR) == STATUS_RUNNING
        assert controller.state is ControllerState.RUNNING

    @pytest.mark.asyncio
    async def test_failed_node_stop_aborts(self, controller, runtime):
        """A failed node stop never proceeds to the monitor."""
        runtime.fail("stop", NODE)

        with pytest.raises(ContainerRuntimeError):
            await controller.stop()

        assert runtime.calls == [("stop", NODE)]
        assert runtime.status(MONITOR) == STATUS_RUNNING
        assert controller.state is ControllerState.UNKNOWN

    @pytest.mark.asyncio
    async def test_failed_node_start_aborts(self, controller, runtime):
        """Monitoring is not started when the node could not be."""
        await controller.stop()
        runtime.fail("start", NODE)

        with pytest.raises(ContainerRuntimeError):
            await controller.start()

        assert runtime.status(MONITOR) == STATUS_EXITED

    @pytest.mark.asyncio
    async def test_missing_container(self, runtime):
        """Unknown containers surface as runtime errors."""
        controller = NodeLifecycleController(runtime, "no-such-node", MONITOR)

        with pytest.raises(ContainerRuntimeError) as exc_info:
            await controller.stop()

        assert exc_info.value.container == "no-such-node"

    @pytest.mark.asyncio
    async def test_post_start_probe_is_best_effort(self, runtime):
        """An unreachable node after start does not fail the start."""
        probe = FakeProbe(reachable=False)
        controller = NodeLifecycleController(runtime, NODE, MONITOR, probe=probe)

        await controller.start()

        assert probe.calls == 1
        assert controller.state is ControllerState.RUNNING


class TestHelperProcessSupervisor:
    """Tests for HelperProcessSupervisor."""

    IMAGE = "tezedge/tezedge:v3.1.0"

    @pytest.fixture
    def runtime(self):
        return InMemoryContainerRuntime()

    def supervisor(self, runtime, **kwargs):
        kwargs.setdefault("poll_interval_seconds", 0.001)
        return HelperProcessSupervisor(runtime, self.IMAGE, "jakarta", "irmin", **kwargs)

    @pytest.mark.asyncio
    async def test_lifecycle(self, runtime):
        """Create, start, poll until not running, then remove."""
        runtime.add_job(self.IMAGE, HelperJob(running_polls=3))
        supervisor = self.supervisor(runtime)

        name = await supervisor.run(Path("/tmp/tezedge"), Path("/tmp/snapshots/full/s.temp"))

        assert runtime.operations(name) == [
            "create", "start", "list", "list", "list", "list", "remove"
        ]
        assert name not in runtime.containers
        assert supervisor.state is HelperState.REMOVED

    @pytest.mark.asyncio
    async def test_unique_names(self, runtime):
        """Every run uses a fresh container."""
        runtime.add_job(self.IMAGE, HelperJob())
        supervisor = self.supervisor(runtime)

        first = await supervisor.run(Path("/a"), Path("/b"))
        second = await supervisor.run(Path("/a"), Path("/b"))

        assert first != second
        assert first.startswith("tezedge-full-snapshot-")

    @pytest.mark.asyncio
    async def test_command_and_mounts(self, runtime):
        """The helper gets network, context type, source and destination."""
        seen = {}
        runtime.add_job(self.IMAGE, HelperJob(run=lambda c: seen.update(command=c.command, mounts=c.mounts)))
        supervisor = self.supervisor(
            runtime,
            host_paths={"/tmp/tezedge": "/srv/tezedge", "/tmp/snapshots": "/srv/snapshots"},
        )

        await supervisor.run(Path("/tmp/tezedge"), Path("/tmp/snapshots/full/s.temp"))

        command = seen["command"]
        assert command[command.index("--network") + 1] == "jakarta"
        assert command[command.index("--tezos-context-storage") + 1] == "irmin"
        assert command[command.index("--tezos-data-dir") + 1] == "/tmp/tezedge"
        assert command[command.index("--target-path") + 1] == "/tmp/snapshots/full/s.temp"
        assert [(m.source, m.target) for m in seen["mounts"]] == [
            ("/srv/tezedge", "/tmp/tezedge"),
            ("/srv/snapshots/full/s.temp", "/tmp/snapshots/full/s.temp"),
        ]

    def test_host_path_defaults_to_local(self, runtime):
        """Without overrides the host path is the local path."""
        supervisor = self.supervisor(runtime)

        assert supervisor.host_path(Path("/tmp/tezedge")) == "/tmp/tezedge"

    def test_host_path_needs_path_boundary(self, runtime):
        """Prefix matches stop at path separators."""
        supervisor = self.supervisor(runtime, host_paths={"/tmp/tezedge": "/srv/tezedge"})

        assert supervisor.host_path(Path("/tmp/tezedge-other")) == "/tmp/tezedge-other"
        assert supervisor.host_path(Path("/tmp/tezedge/context")) == "/srv/tezedge/context"

    @pytest.mark.asyncio
    async def test_timeout_removes_helper(self, runtime):
        """A helper that never finishes times out and is removed."""
        runtime.add_job(self.IMAGE, HelperJob(running_polls=None))
        supervisor = self.supervisor(runtime, timeout_seconds=0.05, poll_interval_seconds=0.01)

        with pytest.raises(HelperTimeoutError) as exc_info:
            await supervisor.run(Path("/a"), Path("/b"))

        name = exc_info.value.container
        assert runtime.operations(name)[-1] == "remove"
        assert name not in runtime.containers

    @pytest.mark.asyncio
    async def test_start_failure_removes_helper(self, runtime):
        """A helper that fails to start is still removed."""
        runtime.fail("start")
        supervisor = self.supervisor(runtime)

        with pytest.raises(ContainerRuntimeError):
            await supervisor.run(Path("/a"), Path("/b"))

        assert runtime.containers == {}
        assert [op for op, _ in runtime.calls] == ["create", "start", "remove"]

    @pytest.mark.asyncio
    async def test_create_failure(self, runtime):
        """Nothing is removed when creation failed."""
        runtime.fail("create")
        supervisor = self.supervisor(runtime)

        with pytest.raises(ContainerRuntimeError):
            await supervisor.run(Path("/a"), Path("/b"))

        assert [op for op, _ in runtime.calls] == ["create"]
