"""
Snapshot executor for the Tezedge node.

The executor runs one snapshot attempt end to end:
1. Query the node head (the snapshot is named after it)
2. Stop the node and its monitoring container
3. Produce the requested artifacts:
   - archive: evict -> stage locally -> extract -> purge -> promote
   - full:    evict -> stage in full/ -> helper export -> purge -> package -> promote
   - all:     archive first, then full exported from the promoted archive
4. Start the node and its monitoring container again

Invariants:
    - No container is touched if the head cannot be read
    - The node is started again after a failure in steps 2-3 (best effort)
    - A failed restart never hides the error that caused it, it is attached
      to that error as ``restart_error``
    - Staging leftovers of a failed step are discarded
    - Both artifacts of an ``all`` attempt share one name stem

How to change safely:
    - Keep stop/start outside of the per-kind handlers
    - Test failure paths with the in-memory container runtime
"""

from __future__ import annotations

import logging
import os
import time
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Awaitable, Callable

from ..config import SnapshotKindSelector
from ..errors import FilesystemError, MalformedInputError, SnapshotError
from ..node import HelperProcessSupervisor, NodeLifecycleController
from ..probe import HealthProbe
from ..storage import RetentionManager, StagingArea, StagingHandle
from .identity import SnapshotIdentity, SnapshotKind, kinds_for

logger = logging.getLogger(__name__)


@dataclass
class SnapshotResult:
    """Outcome of a successful attempt.

    Attributes:
        head: Head block hash the snapshots are named after
        outputs: Promoted path per produced kind
        evicted: Snapshots removed by retention during the attempt
        duration_ms: Wall time of the attempt, stop to start
    """

    head: str
    outputs: dict[SnapshotKind, Path] = field(default_factory=dict)
    evicted: list[Path] = field(default_factory=list)
    duration_ms: int = 0


class SnapshotExecutor:
    """Takes snapshots of a Tezedge node.

    Attributes:
        probe: Health probe used to read the head
        controller: Node lifecycle controller
        retention: Retention manager
        staging: Staging area
        helper: Full snapshot helper supervisor
        target_dir: Snapshot target root (holds archive/ and full/)
        database_dir: Live node database directory
        prefix: Snapshot name prefix
        network: Tezos network name

    Example:
        >>> executor = SnapshotExecutor(probe, controller, retention, staging, helper, ...)
        >>> result = await executor.take_snapshot(SnapshotKindSelector.ALL, capacity=2)
    """

    def __init__(
        self,
        probe: HealthProbe,
        controller: NodeLifecycleController,
        retention: RetentionManager,
        staging: StagingArea,
        helper: HelperProcessSupervisor | None,
        target_dir: Path,
        database_dir: Path,
        prefix: str = "tezedge",
        network: str = "mainnet",
        now: Callable[[], datetime] | None = None,
    ) -> None:
        self.probe = probe
        self.controller = controller
        self.retention = retention
        self.staging = staging
        self.helper = helper
        self.target_dir = target_dir
        self.database_dir = database_dir
        self.prefix = prefix
        self.network = network
        self._now = now

        self._handlers: dict[
            SnapshotKindSelector, Callable[[SnapshotIdentity, int, SnapshotResult], Awaitable[None]]
        ] = {
            SnapshotKindSelector.ARCHIVE: self._take_archive_only,
            SnapshotKindSelector.FULL: self._take_full_only,
            SnapshotKindSelector.ALL: self._take_all,
        }

    def category_dir(self, kind: SnapshotKind) -> Path:
        return self.target_dir / kind.directory

    async def take_snapshot(self, selector: SnapshotKindSelector, capacity: int) -> SnapshotResult:
        """Run one snapshot attempt.

        Args:
            selector: Which artifacts to produce
            capacity: Retention capacity per category

        Returns:
            SnapshotResult describing the promoted snapshots

        Raises:
            NodeUnreachableError: If the head cannot be read (nothing was touched)
            ContainerRuntimeError: If stopping/starting a container or the helper fails
            FilesystemError: If retention, staging or promotion fails
        """
        head = await self.probe.get_head()
        now = self._now() if self._now else None
        identity = SnapshotIdentity.capture(
            self.prefix, self.network, head.hash, kinds_for(selector)[0], now=now
        )
        result = SnapshotResult(head=head.hash)
        started = time.monotonic()

        logger.info(
            "Starting snapshot attempt",
            extra={"kind": selector.value, "head": head.hash, "level": head.level},
        )

        try:
            logger.info("Stopping tezedge containers")
            await self.controller.stop()
            await self._handlers[selector](identity, capacity, result)
        except Exception as e:
            restart_error = await self._recover()
            if restart_error is not None and isinstance(e, SnapshotError):
                e.restart_error = restart_error
            raise

        logger.info("Starting back up the tezedge containers")
        await self.controller.start()

        result.duration_ms = int((time.monotonic() - started) * 1000)
        return result

    async def _take_archive_only(
        self, identity: SnapshotIdentity, capacity: int, result: SnapshotResult
    ) -> None:
        await self._take_archive(identity.with_kind(SnapshotKind.ARCHIVE), capacity, result)

    async def _take_full_only(
        self, identity: SnapshotIdentity, capacity: int, result: SnapshotResult
    ) -> None:
        await self._take_full(
            identity.with_kind(SnapshotKind.FULL), capacity, self.database_dir, result
        )

    async def _take_all(self, identity: SnapshotIdentity, capacity: int, result: SnapshotResult) -> None:
        archive_path = await self._take_archive(
            identity.with_kind(SnapshotKind.ARCHIVE), capacity, result
        )
        # the promoted archive is a stopped-node copy, export from it instead of the live db
        await self._take_full(identity.with_kind(SnapshotKind.FULL), capacity, archive_path, result)

    async def _take_archive(
        self, identity: SnapshotIdentity, capacity: int, result: SnapshotResult
    ) -> Path:
        category = await self._prepare_category(identity.kind)

        logger.info("Checking for rolling", extra={"snapshot": identity.name})
        await self._evict(category, capacity, result)

        handle = await self.staging.begin_staging(identity.name, category, local=True)
        try:
            logger.info("Extracting node databases", extra={"snapshot": identity.name})
            await self.staging.extract(handle, self.database_dir)

            logger.info("Removing unnecessary files (log, identity)", extra={"snapshot": identity.name})
            await self.staging.purge_transient_files(handle)

            logger.info("Moving snapshot to the target directory", extra={"snapshot": identity.name})
            path = await self.staging.promote(handle)
        except Exception:
            await self.staging.discard(handle)
            raise

        result.outputs[identity.kind] = path
        return path

    async def _take_full(
        self,
        identity: SnapshotIdentity,
        capacity: int,
        source: Path,
        result: SnapshotResult,
    ) -> Path:
        if self.helper is None:
            raise MalformedInputError("Full snapshots require a helper supervisor")

        category = await self._prepare_category(identity.kind)

        logger.info("Checking for rolling", extra={"snapshot": identity.name})
        await self._evict(category, capacity, result)

        handle: StagingHandle = await self.staging.begin_staging(identity.name, category, local=False)
        try:
            logger.info(
                "Exporting full snapshot",
                extra={"snapshot": identity.name, "source": os.fspath(source)},
            )
            await self.helper.run(source, handle.path)

            await self.staging.purge_transient_files(handle)

            logger.info("Packaging full snapshot", extra={"snapshot": identity.name})
            await self.staging.archive(handle, identity.name)

            path = await self.staging.promote(handle)
        except Exception:
            await self.staging.discard(handle)
            raise

        result.outputs[identity.kind] = path
        return path

    async def _prepare_category(self, kind: SnapshotKind) -> Path:
        category = self.category_dir(kind)
        try:
            category.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise FilesystemError(f"Cannot create snapshot directory {category}: {e}", path=category) from e
        return category

    async def _evict(self, category: Path, capacity: int, result: SnapshotResult) -> None:
        evicted = await self.retention.evict_oldest_if_at_capacity(category, capacity)
        if evicted is not None:
            result.evicted.append(evicted)

    async def _recover(self) -> Exception | None:
        """Start the containers after a failed step, returning the start error if any."""
        logger.warning("Snapshot attempt failed, starting the tezedge containers back up")
        try:
            await self.controller.start()
        except Exception as e:
            logger.error(f"Failed to restart tezedge containers after a failed snapshot: {e}", exc_info=True)
            return e
        return None
