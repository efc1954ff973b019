"""
Error types for the snapshot service.

This module defines the exception taxonomy shared by all components:
- SnapshotError: Base exception
- NodeUnreachableError: Node health/head query failed (retryable)
- MalformedInputError: Configuration or URL parse failure (startup only)
- ContainerRuntimeError: Container runtime call failed
- HelperTimeoutError: Full snapshot helper did not finish in time
- FilesystemError: Copy/move/remove/archive failed
- TransportError: Node answered, but not with a usable head descriptor

Invariants:
    - All errors inherit from SnapshotError
    - Only NodeUnreachableError is retryable by the scheduler
    - Library exceptions are wrapped at the component boundary (``raise ... from``)
"""

from __future__ import annotations

from pathlib import Path


class SnapshotError(Exception):
    """Base exception for all snapshot service errors.

    Attributes:
        restart_error: Set when restarting the node after this error failed
            too; the node may have been left stopped
    """

    restart_error: BaseException | None = None


class NodeUnreachableError(SnapshotError):
    """The node did not answer its head endpoint.

    Raised for any failed head query. The caller can only wait and retry.
    """

    def __init__(self, message: str, url: str | None = None) -> None:
        super().__init__(message)
        self.url = url


class MalformedInputError(SnapshotError, ValueError):
    """Configuration value could not be parsed or validated."""

    def __init__(self, message: str, setting: str | None = None) -> None:
        super().__init__(message)
        self.setting = setting


class ContainerRuntimeError(SnapshotError):
    """A container runtime operation failed."""

    def __init__(self, message: str, container: str | None = None) -> None:
        super().__init__(message)
        self.container = container


class HelperTimeoutError(ContainerRuntimeError):
    """The full snapshot helper container kept running past its deadline."""

    def __init__(self, message: str, container: str, timeout_seconds: float) -> None:
        super().__init__(message, container=container)
        self.timeout_seconds = timeout_seconds


class FilesystemError(SnapshotError):
    """A filesystem operation on a snapshot or staging entry failed."""

    def __init__(self, message: str, path: Path | str | None = None) -> None:
        super().__init__(message)
        self.path = Path(path) if path is not None else None


class TransportError(SnapshotError):
    """The node responded, but the response could not be used."""

    pass


def is_retryable(exc: BaseException) -> bool:
    """Whether the scheduler should keep looping after ``exc``."""
    return isinstance(exc, NodeUnreachableError)
