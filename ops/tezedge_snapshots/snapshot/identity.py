"""
Snapshot identity and naming.

Snapshot names are a pure function of the identity:

    <prefix>_<network>_<YYYYMMDD>-<HHMMSS>_<head>_<kind>

e.g. ``tezedge_mainnet_20220614-083015_BLockHash..._archive``.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime, timezone
from enum import Enum

from ..config import SnapshotKindSelector
from ..storage import TEMP_SUFFIX


class SnapshotKind(Enum):
    """Kind of a single snapshot artifact; also its category directory."""

    ARCHIVE = "archive"
    FULL = "full"

    @property
    def directory(self) -> str:
        return self.value


def kinds_for(selector: SnapshotKindSelector) -> tuple[SnapshotKind, ...]:
    """Artifacts produced for a selector, in production order."""
    if selector is SnapshotKindSelector.ALL:
        return (SnapshotKind.ARCHIVE, SnapshotKind.FULL)
    return (SnapshotKind(selector.value),)


@dataclass(frozen=True)
class SnapshotIdentity:
    """Immutable identity of one snapshot artifact.

    Attributes:
        prefix: Name prefix (e.g. ``tezedge``)
        network: Tezos network name
        date: UTC date, ``YYYYMMDD``
        time: UTC time, ``HHMMSS``
        head: Head block hash at the time of the attempt
        kind: Snapshot kind
    """

    prefix: str
    network: str
    date: str
    time: str
    head: str
    kind: SnapshotKind

    @classmethod
    def capture(
        cls,
        prefix: str,
        network: str,
        head: str,
        kind: SnapshotKind,
        now: datetime | None = None,
    ) -> SnapshotIdentity:
        """Build an identity stamped with the current UTC time (second granularity)."""
        now = now or datetime.now(timezone.utc)
        if now.tzinfo is not None:
            now = now.astimezone(timezone.utc)
        return cls(
            prefix=prefix,
            network=network,
            date=now.strftime("%Y%m%d"),
            time=now.strftime("%H%M%S"),
            head=head,
            kind=kind,
        )

    def with_kind(self, kind: SnapshotKind) -> SnapshotIdentity:
        return replace(self, kind=kind)

    @property
    def name(self) -> str:
        return f"{self.prefix}_{self.network}_{self.date}-{self.time}_{self.head}_{self.kind.value}"

    @property
    def temp_name(self) -> str:
        return self.name + TEMP_SUFFIX

    def __str__(self) -> str:
        return self.name
