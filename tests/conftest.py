"""
Shared fixtures for the snapshot service tests.
"""

from __future__ import annotations

import shutil
import tempfile
from pathlib import Path

import pytest

from ops.tezedge_snapshots.errors import NodeUnreachableError
from ops.tezedge_snapshots.probe import HeadInfo
from ops.tezedge_snapshots.runtime import HelperJob, InMemoryContainer, InMemoryContainerRuntime

HEAD_HASH = "BLockGenesisGenesisGenesisGenesisGenesisf79b5d1CoW2"
HELPER_IMAGE = "tezedge/tezedge:test"


def make_database(root: Path) -> Path:
    """Create a small node database directory under ``root``."""
    db = root / "tezedge"
    (db / "context" / "index").mkdir(parents=True)
    (db / "context" / "index" / "lock").write_text("pid 1")
    (db / "context" / "index" / "store.pack").write_bytes(b"\x00" * 64)
    (db / "context" / "context.log").write_text("context log")
    (db / "bootstrap_db" / "db").mkdir(parents=True)
    (db / "bootstrap_db" / "db" / "000001.sst").write_bytes(b"\x01" * 64)
    (db / "bootstrap_db" / "LOG").write_text("rocksdb")
    (db / "identity.json").write_text('{"peer_id": "secret"}')
    (db / "tezedge.log").write_text("node log")
    (db / "tezedge.log.1").write_text("rotated node log")
    return db


def command_arg(container: InMemoryContainer, flag: str) -> Path:
    return Path(container.command[container.command.index(flag) + 1])


def export_job(container: InMemoryContainer) -> None:
    """Simulated full export: copy context/ and bootstrap_db/ into the target."""
    source = command_arg(container, "--tezos-data-dir")
    target = command_arg(container, "--target-path")
    for sub in ("context", "bootstrap_db"):
        shutil.copytree(source / sub, target / sub, dirs_exist_ok=True)


class FakeProbe:
    """Health probe double returning scripted results."""

    def __init__(self, reachable: bool = True, head: str = HEAD_HASH) -> None:
        self.reachable = reachable
        self.head = head
        self.calls = 0

    async def get_head(self) -> HeadInfo:
        self.calls += 1
        if not self.reachable:
            raise NodeUnreachableError("node down", url="http://localhost:18732")
        return HeadInfo(hash=self.head, level=100)

    async def is_reachable(self) -> bool:
        try:
            await self.get_head()
        except NodeUnreachableError:
            return False
        return True


@pytest.fixture
def workdir():
    """Create temporary working directory."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def database_dir(workdir):
    """Create a node database directory."""
    return make_database(workdir)


@pytest.fixture
def runtime():
    """In-memory runtime with a running node and monitor."""
    rt = InMemoryContainerRuntime()
    rt.add_container("tezedge-node")
    rt.add_container("tezedge-node-monitoring")
    rt.add_job(HELPER_IMAGE, HelperJob(run=export_job, running_polls=2))
    return rt
