"""
Tezedge Snapshots - Main entry point.

This module starts the snapshot service with all components:
- Health probe (node RPC)
- Docker container runtime (node, monitoring, full snapshot helper)
- Snapshot executor and retention
- Snapshot scheduler loop

Usage:
    tezedge-snapshots --network mainnet --snapshot-type all

Configuration comes from environment variables (see config.py); command line
flags override them.

Invariants:
    - Stale ``.temp`` staging entries are swept before the first attempt
    - Shutdown waits for an in-flight attempt, the node is left running
    - A fatal scheduler error ends the process with a non-zero status

How to change safely:
    - Add new components with enable/disable flags
    - Test shutdown while an attempt is running
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
from dataclasses import replace
from pathlib import Path
from typing import Sequence

import json_log_formatter

from ._version import __version__
from .config import SnapshotterConfig
from .node import HelperProcessSupervisor, NodeLifecycleController
from .probe import HealthProbe
from .runtime import ContainerRuntime, DockerContainerRuntime
from .snapshot import SnapshotExecutor, SnapshotScheduler
from .storage import RetentionManager, StagingArea

logger = logging.getLogger(__name__)


def setup_logging(config: SnapshotterConfig) -> None:
    """Configure logging based on configuration.

    Args:
        config: Service configuration
    """
    level = getattr(logging, config.observability.log_level.upper(), logging.INFO)

    if config.observability.log_format == "json":
        formatter = json_log_formatter.JSONFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = [handler]

    # Reduce noise from libraries
    logging.getLogger("docker").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


class SnapshotService:
    """Snapshot service orchestrator.

    Builds the components from configuration and manages the scheduler's
    lifecycle.

    Attributes:
        config: Service configuration
        runtime: Container runtime
        probe: Node health probe
        executor: Snapshot executor
        scheduler: Snapshot scheduler

    Example:
        >>> service = SnapshotService(config)
        >>> await service.start()  # Runs until shutdown is requested
    """

    def __init__(
        self,
        config: SnapshotterConfig | None = None,
        runtime: ContainerRuntime | None = None,
    ) -> None:
        """Initialize the service.

        Args:
            config: Optional configuration (loaded from env if not provided)
            runtime: Optional container runtime (docker if not provided)
        """
        self.config = config or SnapshotterConfig.from_env()
        self.runtime = runtime or DockerContainerRuntime()

        node = self.config.node
        storage = self.config.storage
        full = self.config.full_snapshot

        self.target_dir = Path(storage.target_dir)
        self.temp_dir = Path(storage.temp_dir)

        self.probe = HealthProbe(node.url, timeout_seconds=node.request_timeout_seconds)
        self.controller = NodeLifecycleController(
            self.runtime,
            node_container=node.container_name,
            monitoring_container=node.monitoring_container_name,
            probe=self.probe,
        )
        self.retention = RetentionManager()
        self.staging = StagingArea(self.temp_dir)

        host_paths = {}
        if full.host_database_dir:
            host_paths[node.database_dir] = full.host_database_dir
        if full.host_target_dir:
            host_paths[storage.target_dir] = full.host_target_dir

        self.helper = HelperProcessSupervisor(
            self.runtime,
            image=full.image,
            network=node.network,
            context_type=node.context_type,
            poll_interval_seconds=full.poll_interval_seconds,
            timeout_seconds=full.timeout_seconds,
            host_paths=host_paths,
        )
        self.executor = SnapshotExecutor(
            probe=self.probe,
            controller=self.controller,
            retention=self.retention,
            staging=self.staging,
            helper=self.helper,
            target_dir=self.target_dir,
            database_dir=Path(node.database_dir),
            prefix=storage.prefix,
            network=node.network,
        )
        self.scheduler = SnapshotScheduler(
            probe=self.probe,
            executor=self.executor,
            kind=self.config.kind,
            capacity=storage.capacity,
            frequency_seconds=self.config.schedule.frequency_seconds,
            check_interval_seconds=self.config.schedule.check_interval_seconds,
        )

    async def start(self) -> None:
        """Sweep stale staging entries, then run the scheduler until it stops."""
        logger.info(f"Starting Tezedge snapshot service {__version__}")
        self.config.log_config()

        stale = await self.retention.sweep_stale(
            self.target_dir / "archive", self.target_dir / "full", self.temp_dir
        )
        if stale:
            logger.info(f"Removed {len(stale)} stale staging entries")

        await self.scheduler.run()

        if self.scheduler.failure is not None:
            logger.error("Snapshot service stopped on a fatal error")
        else:
            logger.info("Snapshot service stopped")

    def request_shutdown(self) -> None:
        """Request graceful shutdown after the current attempt."""
        self.scheduler.request_stop()

    @property
    def failed(self) -> bool:
        return self.scheduler.failure is not None


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="tezedge-snapshots",
        description="Periodically snapshot a Tezedge node running in docker",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--tezedge-node-url", help="Url of the tezedge node's rpc server")
    parser.add_argument("--container-name", help="Name of the container the tezedge node resides in")
    parser.add_argument("--monitoring-container-name", help="Name of the node's monitoring container")
    parser.add_argument("--network", help="Tezos network the node is running on")
    parser.add_argument("--context-type", choices=["irmin", "tezedge"], help="Context storage type")
    parser.add_argument("--database-directory", help="Tezedge database directory")
    parser.add_argument("--snapshots-target-directory", help="Directory to store snapshots in")
    parser.add_argument("--snapshot-capacity", type=int, help="Maximum snapshots kept per type")
    parser.add_argument("--snapshot-frequency", type=int, help="Seconds between snapshots")
    parser.add_argument("--head-check-interval", type=int, help="Seconds between node head checks")
    parser.add_argument(
        "--snapshot-type", choices=["archive", "full", "all"], help="Snapshot type to produce"
    )
    parser.add_argument("--full-snapshot-image", help="Image used for full snapshot exports")
    parser.add_argument(
        "--log-level",
        choices=["critical", "error", "warn", "info", "debug"],
        help="Logging level",
    )
    return parser


def apply_args(config: SnapshotterConfig, args: argparse.Namespace) -> SnapshotterConfig:
    """Override configuration values with the flags that were given."""

    def pick(section, **overrides):
        given = {key: value for key, value in overrides.items() if value is not None}
        return replace(section, **given) if given else section

    log_level = args.log_level.upper() if args.log_level else None
    if log_level == "WARN":
        log_level = "WARNING"

    updated = replace(
        config,
        node=pick(
            config.node,
            url=args.tezedge_node_url,
            container_name=args.container_name,
            monitoring_container_name=args.monitoring_container_name,
            network=args.network,
            context_type=args.context_type,
            database_dir=args.database_directory,
        ),
        storage=pick(
            config.storage,
            target_dir=args.snapshots_target_directory,
            capacity=args.snapshot_capacity,
        ),
        schedule=pick(
            config.schedule,
            frequency_seconds=args.snapshot_frequency,
            check_interval_seconds=args.head_check_interval,
            kind=args.snapshot_type,
        ),
        full_snapshot=pick(config.full_snapshot, image=args.full_snapshot_image),
        observability=pick(config.observability, log_level=log_level),
    )
    updated.validate()
    return updated


def load_config(argv: Sequence[str] | None = None) -> SnapshotterConfig:
    """Load configuration from the environment and command line.

    Flags are applied before validation, so a valid flag overrides an
    invalid environment value.

    Raises:
        MalformedInputError: If a value is invalid
    """
    args = build_parser().parse_args(argv)
    return apply_args(SnapshotterConfig.from_env(validate=False), args)


def main(argv: Sequence[str] | None = None) -> None:
    """Main entry point."""
    # Load configuration
    try:
        config = load_config(argv)
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    # Setup logging
    setup_logging(config)

    # Create service
    service = SnapshotService(config)

    # Setup signal handlers
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)

    def handle_signal(sig: int) -> None:
        logger.info(f"Received signal {sig}, initiating shutdown")
        service.request_shutdown()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, handle_signal, sig)

    # Run service
    try:
        loop.run_until_complete(service.start())
    finally:
        loop.close()

    sys.exit(1 if service.failed else 0)


if __name__ == "__main__":
    main()
