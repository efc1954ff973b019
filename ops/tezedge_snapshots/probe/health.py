"""
Health probe for the Tezedge node.

The probe performs a single read of the node's head header endpoint:

    GET <node_url>/chains/main/blocks/head/header

Invariants:
    - Exactly one request per call, no retries (retry policy is the caller's)
    - Every failure surfaces as NodeUnreachableError
    - A successful result always carries a non-empty block hash
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import httpx

from ..errors import NodeUnreachableError, TransportError

logger = logging.getLogger(__name__)

HEAD_HEADER_PATH = "chains/main/blocks/head/header"


@dataclass(frozen=True)
class HeadInfo:
    """Head descriptor returned by the node.

    Only ``hash`` is required; the remaining fields are kept when the node
    reports them.

    Attributes:
        hash: Block hash of the current head
        level: Block level, if reported
        timestamp: Block timestamp (RFC 3339), if reported
        predecessor: Hash of the predecessor block, if reported
    """

    hash: str
    level: int | None = None
    timestamp: str | None = None
    predecessor: str | None = None

    @classmethod
    def from_dict(cls, data: Any) -> HeadInfo:
        """Create from the decoded header JSON.

        Raises:
            TransportError: If the payload has no usable hash
        """
        if not isinstance(data, dict):
            raise TransportError(f"Head header is not an object: {type(data).__name__}")
        block_hash = data.get("hash")
        if not isinstance(block_hash, str) or not block_hash:
            raise TransportError("Head header carries no block hash")
        level = data.get("level")
        return cls(
            hash=block_hash,
            level=level if isinstance(level, int) else None,
            timestamp=data.get("timestamp"),
            predecessor=data.get("predecessor"),
        )


class HealthProbe:
    """Queries the node's head and classifies reachability.

    Example:
        >>> probe = HealthProbe("http://localhost:18732")
        >>> head = await probe.get_head()
        >>> print(head.hash)
    """

    def __init__(
        self,
        node_url: str,
        timeout_seconds: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the probe.

        Args:
            node_url: Base URL of the node's RPC server
            timeout_seconds: Timeout for the whole request
            transport: Optional httpx transport (used by tests)
        """
        self.node_url = node_url
        self.timeout_seconds = timeout_seconds
        self._transport = transport
        self._header_url = f"{node_url.rstrip('/')}/{HEAD_HEADER_PATH}"

    async def get_head(self) -> HeadInfo:
        """Fetch the node's current head.

        Returns:
            HeadInfo of the current head

        Raises:
            NodeUnreachableError: On any transport, timeout or decoding failure
        """
        try:
            return await self._fetch_head()
        except (httpx.HTTPError, httpx.InvalidURL, TransportError) as e:
            logger.debug(f"Head request to {self._header_url} failed: {e}")
            raise NodeUnreachableError(
                f"Node at {self.node_url} is unreachable: {e}", url=self.node_url
            ) from e

    async def is_reachable(self) -> bool:
        """Whether the node currently answers its head endpoint."""
        try:
            await self.get_head()
        except NodeUnreachableError:
            return False
        return True

    async def _fetch_head(self) -> HeadInfo:
        async with httpx.AsyncClient(
            timeout=self.timeout_seconds, transport=self._transport
        ) as client:
            response = await client.get(self._header_url)
            response.raise_for_status()
            try:
                payload = response.json()
            except ValueError as e:
                raise TransportError(f"Head header is not valid JSON: {e}") from e
        return HeadInfo.from_dict(payload)
