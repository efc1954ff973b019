"""
Snapshot retention for the snapshot service.

Each category directory (``archive/``, ``full/``) holds at most ``capacity``
promoted snapshots. Capacity is enforced by evict-then-add: right before a
new snapshot is staged, the single oldest entry is removed if the category is
already full. Peak disk usage is therefore ``capacity`` entries, never
``capacity + 1``.

Invariants:
    - Only direct children of the category directory are considered
    - Entries with the ``.temp`` suffix are never counted nor evicted
    - Ordering is by last-modified time, oldest first, stable on ties
    - Read or delete failures raise FilesystemError (never silently skipped)
"""

from __future__ import annotations

import asyncio
import logging
import os
import shutil
from dataclasses import dataclass
from pathlib import Path

from ..errors import FilesystemError

logger = logging.getLogger(__name__)

TEMP_SUFFIX = ".temp"


def is_temp(path: Path) -> bool:
    """Whether ``path`` is a staging entry that was never promoted."""
    return path.name.endswith(TEMP_SUFFIX)


def remove_entry(path: Path) -> None:
    """Remove a snapshot entry, directory tree or single file."""
    if path.is_dir() and not path.is_symlink():
        shutil.rmtree(path)
    else:
        path.unlink()


@dataclass(frozen=True)
class SnapshotEntry:
    """A promoted snapshot found on disk.

    Attributes:
        path: Location of the snapshot directory or archive file
        modified_ns: Last-modified time in nanoseconds (ordering key)
    """

    path: Path
    modified_ns: int

    @property
    def name(self) -> str:
        return self.path.name


class RetentionManager:
    """Lists and evicts snapshots per category.

    Example:
        >>> retention = RetentionManager()
        >>> evicted = await retention.evict_oldest_if_at_capacity(Path("/tmp/snapshots/archive"), 2)
    """

    def list_entries(self, category_dir: Path) -> list[SnapshotEntry]:
        """List promoted snapshots in ``category_dir``, oldest first.

        Raises:
            FilesystemError: If the directory or an entry cannot be read
        """
        try:
            children = list(category_dir.iterdir())
        except OSError as e:
            raise FilesystemError(f"Cannot list snapshots in {category_dir}: {e}", path=category_dir) from e

        entries = []
        for child in children:
            if is_temp(child):
                continue
            try:
                modified_ns = child.stat().st_mtime_ns
            except OSError as e:
                raise FilesystemError(f"Cannot stat snapshot {child}: {e}", path=child) from e
            entries.append(SnapshotEntry(path=child, modified_ns=modified_ns))

        # sorted() is stable, ties keep enumeration order
        return sorted(entries, key=lambda entry: entry.modified_ns)

    async def evict_oldest_if_at_capacity(self, category_dir: Path, capacity: int) -> Path | None:
        """Delete the oldest snapshot if ``category_dir`` holds ``capacity`` or more.

        Args:
            category_dir: Category directory (``archive/`` or ``full/``)
            capacity: Maximum number of promoted snapshots kept

        Returns:
            Path of the evicted snapshot, or None if nothing was evicted

        Raises:
            FilesystemError: If listing or deletion fails
        """
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._evict_oldest, category_dir, capacity)

    async def sweep_stale(self, *roots: Path) -> list[Path]:
        """Remove ``.temp`` entries left behind by an interrupted attempt.

        Missing roots are skipped, they are created on the first snapshot.

        Returns:
            Paths that were removed
        """
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._sweep_stale, roots)

    def _evict_oldest(self, category_dir: Path, capacity: int) -> Path | None:
        entries = self.list_entries(category_dir)
        if len(entries) < capacity:
            logger.debug(
                f"Retention: {len(entries)}/{capacity} snapshots in {category_dir}, nothing to evict"
            )
            return None

        oldest = entries[0]
        logger.info(
            "Rolling snapshots - removing oldest snapshot",
            extra={"snapshot": oldest.name, "category": category_dir.name, "count": len(entries)},
        )
        try:
            remove_entry(oldest.path)
        except OSError as e:
            raise FilesystemError(f"Cannot remove snapshot {oldest.path}: {e}", path=oldest.path) from e
        return oldest.path

    def _sweep_stale(self, roots: tuple[Path, ...]) -> list[Path]:
        removed = []
        for root in roots:
            if not root.is_dir():
                continue
            try:
                stale = [child for child in root.iterdir() if is_temp(child)]
                for path in stale:
                    remove_entry(path)
                    removed.append(path)
            except OSError as e:
                raise FilesystemError(f"Cannot sweep staging entries in {root}: {e}", path=root) from e

        for path in removed:
            logger.warning("Removed stale staging entry", extra={"path": os.fspath(path)})
        return removed
