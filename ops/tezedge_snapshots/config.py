"""
Configuration management for the Tezedge snapshot service.

Configuration comes from environment variables, optionally overridden by
command line flags (see main.py). This module provides typed configuration
classes with validation.

Invariants:
    - All settings have sensible defaults for the reference docker-compose setup
    - Invalid values raise MalformedInputError at startup, never later
    - Host-side mount paths default to the in-container paths

How to change safely:
    - Add new settings with defaults that keep existing deployments working
    - Keep environment variable names stable, they are used in compose files
    - Add new settings to both from_env() and log_config()
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from enum import Enum

import httpx

from .errors import MalformedInputError

logger = logging.getLogger(__name__)


class SnapshotKindSelector(Enum):
    """Which snapshot variants one stop/start cycle produces."""

    ARCHIVE = "archive"
    FULL = "full"
    ALL = "all"


class ContextType(Enum):
    """Context storage backends the node can run with."""

    IRMIN = "irmin"
    TEZEDGE = "tezedge"


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise MalformedInputError(f"{name} must be an integer, got '{raw}'", setting=name)


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise MalformedInputError(f"{name} must be a number, got '{raw}'", setting=name)


@dataclass(frozen=True)
class NodeConfig:
    """Tezedge node configuration.

    Attributes:
        url: Base URL of the node's RPC server
        container_name: Name of the container the node runs in
        monitoring_container_name: Name of the node's monitoring companion container
        network: Tezos network the node is connected to
        context_type: Context storage backend (irmin or tezedge)
        database_dir: Node database directory, as seen by this service
        request_timeout_seconds: Timeout for a single head request
    """

    url: str = "http://localhost:18732"
    container_name: str = "tezedge-node"
    monitoring_container_name: str = "tezedge-node-monitoring"
    network: str = "mainnet"
    context_type: str = "irmin"
    database_dir: str = "/tmp/tezedge"
    request_timeout_seconds: float = 10.0

    @classmethod
    def from_env(cls) -> NodeConfig:
        """Load configuration from environment variables."""
        return cls(
            url=os.getenv("TEZEDGE_NODE_URL", "http://localhost:18732"),
            container_name=os.getenv("TEZEDGE_CONTAINER_NAME", "tezedge-node"),
            monitoring_container_name=os.getenv(
                "TEZEDGE_MONITORING_CONTAINER_NAME", "tezedge-node-monitoring"
            ),
            network=os.getenv("TEZOS_NETWORK", "mainnet"),
            context_type=os.getenv("CONTEXT_TYPE", "irmin").lower(),
            database_dir=os.getenv("TEZEDGE_DATABASE_DIR", "/tmp/tezedge"),
            request_timeout_seconds=_env_float("HEAD_REQUEST_TIMEOUT_SECONDS", 10.0),
        )


@dataclass(frozen=True)
class StorageConfig:
    """Snapshot storage configuration.

    Attributes:
        target_dir: Root directory holding the archive/ and full/ categories
        temp_dir: Local scratch root used to stage archive snapshots
        prefix: First component of every snapshot name
        capacity: Maximum promoted snapshots kept per category
    """

    target_dir: str = "/tmp/snapshots"
    temp_dir: str = "/tmp/tezedge-snapshots-tmp"
    prefix: str = "tezedge"
    capacity: int = 2

    @classmethod
    def from_env(cls) -> StorageConfig:
        """Load configuration from environment variables."""
        return cls(
            target_dir=os.getenv("SNAPSHOTS_TARGET_DIR", "/tmp/snapshots"),
            temp_dir=os.getenv("SNAPSHOTS_TEMP_DIR", "/tmp/tezedge-snapshots-tmp"),
            prefix=os.getenv("SNAPSHOT_PREFIX", "tezedge"),
            capacity=_env_int("SNAPSHOT_CAPACITY", 2),
        )


@dataclass(frozen=True)
class ScheduleConfig:
    """Scheduler configuration.

    Attributes:
        frequency_seconds: Minimum time between the starts of two attempts
        check_interval_seconds: Sleep between eligibility checks
        kind: Snapshot variants to produce (archive, full, all)
    """

    frequency_seconds: int = 86400  # 1 day
    check_interval_seconds: int = 5
    kind: str = "archive"

    @classmethod
    def from_env(cls) -> ScheduleConfig:
        """Load configuration from environment variables."""
        return cls(
            frequency_seconds=_env_int("SNAPSHOT_FREQUENCY_SECONDS", 86400),
            check_interval_seconds=_env_int("HEAD_CHECK_INTERVAL_SECONDS", 5),
            kind=os.getenv("SNAPSHOT_KIND", "archive").lower(),
        )


@dataclass(frozen=True)
class FullSnapshotConfig:
    """Full snapshot helper configuration.

    Attributes:
        image: Image the helper container is created from
        poll_interval_seconds: Interval between helper status polls
        timeout_seconds: Maximum time to wait for the helper to finish
        host_database_dir: Host-side path of the node database (bind mount source)
        host_target_dir: Host-side path of the snapshot target (bind mount source)
    """

    image: str = "tezedge/tezedge:latest"
    poll_interval_seconds: float = 1.0
    timeout_seconds: int = 6 * 3600
    host_database_dir: str | None = None
    host_target_dir: str | None = None

    @classmethod
    def from_env(cls) -> FullSnapshotConfig:
        """Load configuration from environment variables."""
        return cls(
            image=os.getenv("FULL_SNAPSHOT_IMAGE", "tezedge/tezedge:latest"),
            poll_interval_seconds=_env_float("FULL_SNAPSHOT_POLL_INTERVAL_SECONDS", 1.0),
            timeout_seconds=_env_int("FULL_SNAPSHOT_TIMEOUT_SECONDS", 6 * 3600),
            host_database_dir=os.getenv("TEZEDGE_VOLUME_PATH") or None,
            host_target_dir=os.getenv("TEZEDGE_SNAPSHOTS_VOLUME_PATH") or None,
        )


@dataclass(frozen=True)
class ObservabilityConfig:
    """Logging configuration.

    Attributes:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_format: Log format (json, text)
    """

    log_level: str = "INFO"
    log_format: str = "json"

    @classmethod
    def from_env(cls) -> ObservabilityConfig:
        """Load configuration from environment variables."""
        return cls(
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_format=os.getenv("LOG_FORMAT", "json").lower(),
        )


@dataclass(frozen=True)
class SnapshotterConfig:
    """Complete service configuration.

    Attributes:
        node: Tezedge node configuration
        storage: Snapshot storage configuration
        schedule: Scheduler configuration
        full_snapshot: Full snapshot helper configuration
        observability: Logging configuration
    """

    node: NodeConfig = field(default_factory=NodeConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    schedule: ScheduleConfig = field(default_factory=ScheduleConfig)
    full_snapshot: FullSnapshotConfig = field(default_factory=FullSnapshotConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    @classmethod
    def from_env(cls, validate: bool = True) -> SnapshotterConfig:
        """Load complete configuration from environment variables.

        Args:
            validate: Validate the result; pass False when overrides are
                applied first and validated afterwards

        Returns:
            SnapshotterConfig with all sections populated from environment.

        Raises:
            MalformedInputError: If a value cannot be parsed, or (with
                validate) is invalid.
        """
        config = cls(
            node=NodeConfig.from_env(),
            storage=StorageConfig.from_env(),
            schedule=ScheduleConfig.from_env(),
            full_snapshot=FullSnapshotConfig.from_env(),
            observability=ObservabilityConfig.from_env(),
        )

        if validate:
            config.validate()
        return config

    @property
    def kind(self) -> SnapshotKindSelector:
        return SnapshotKindSelector(self.schedule.kind)

    def validate(self) -> None:
        """Validate configuration consistency.

        Raises:
            MalformedInputError: If configuration is invalid.
        """
        try:
            url = httpx.URL(self.node.url)
        except httpx.InvalidURL as e:
            raise MalformedInputError(
                f"Invalid node url '{self.node.url}': {e}", setting="TEZEDGE_NODE_URL"
            ) from e
        if url.scheme not in ("http", "https") or not url.host:
            raise MalformedInputError(
                f"Invalid node url '{self.node.url}'", setting="TEZEDGE_NODE_URL"
            )

        try:
            SnapshotKindSelector(self.schedule.kind)
        except ValueError:
            raise MalformedInputError(
                f"Invalid SNAPSHOT_KIND '{self.schedule.kind}'. Must be one of: archive, full, all",
                setting="SNAPSHOT_KIND",
            )

        try:
            ContextType(self.node.context_type)
        except ValueError:
            raise MalformedInputError(
                f"Invalid CONTEXT_TYPE '{self.node.context_type}'. Must be one of: irmin, tezedge",
                setting="CONTEXT_TYPE",
            )

        if not self.node.network:
            raise MalformedInputError("TEZOS_NETWORK is required", setting="TEZOS_NETWORK")
        if not self.node.container_name or not self.node.monitoring_container_name:
            raise MalformedInputError("Container names must not be empty")
        if not self.storage.prefix:
            raise MalformedInputError("SNAPSHOT_PREFIX is required", setting="SNAPSHOT_PREFIX")

        positive = {
            "SNAPSHOT_CAPACITY": self.storage.capacity,
            "SNAPSHOT_FREQUENCY_SECONDS": self.schedule.frequency_seconds,
            "HEAD_CHECK_INTERVAL_SECONDS": self.schedule.check_interval_seconds,
            "FULL_SNAPSHOT_POLL_INTERVAL_SECONDS": self.full_snapshot.poll_interval_seconds,
            "FULL_SNAPSHOT_TIMEOUT_SECONDS": self.full_snapshot.timeout_seconds,
            "HEAD_REQUEST_TIMEOUT_SECONDS": self.node.request_timeout_seconds,
        }
        for name, value in positive.items():
            if value <= 0:
                raise MalformedInputError(f"{name} must be positive, got {value}", setting=name)

        if not os.path.exists(self.node.database_dir):
            logger.warning(
                f"Database directory does not exist: {self.node.database_dir}. "
                "Snapshots will fail until the node has created it."
            )

    def log_config(self) -> None:
        """Log the effective configuration."""
        logger.info(
            "Snapshot service configuration loaded",
            extra={
                "node_url": self.node.url,
                "node_container": self.node.container_name,
                "monitoring_container": self.node.monitoring_container_name,
                "network": self.node.network,
                "context_type": self.node.context_type,
                "database_dir": self.node.database_dir,
                "target_dir": self.storage.target_dir,
                "capacity": self.storage.capacity,
                "frequency_seconds": self.schedule.frequency_seconds,
                "check_interval_seconds": self.schedule.check_interval_seconds,
                "kind": self.schedule.kind,
                "full_snapshot_image": self.full_snapshot.image,
                "log_level": self.observability.log_level,
            },
        )
