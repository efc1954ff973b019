"""
Atomic staging of snapshots.

A snapshot is built under ``<name>.temp`` and only becomes visible under its
final name through a single rename (promotion). Layout:

    archive: <temp_dir>/<name>.temp/               staged copy (local scratch)
             <target>/archive/<name>.temp/         moved next to its final place
             <target>/archive/<name>/              promoted directory
    full:    <target>/full/<name>.temp/            helper export
             <target>/full/<name>.tar.gz.temp      packaged export
             <target>/full/<name>                  promoted gzip tarball

Invariants:
    - Nothing is ever written under a final name, only renamed to it
    - The node's lock file, log files and identity file never reach a snapshot
    - Tarballs contain exactly context/ and bootstrap_db/ under a root named
      after the final snapshot name
    - Promoted entries get a fresh mtime so retention orders them correctly

How to change safely:
    - Keep every intermediate name ending in ``.temp``
    - Keep promotion a same-directory rename
"""

from __future__ import annotations

import asyncio
import fnmatch
import functools
import logging
import os
import shutil
import tarfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable

from ..errors import FilesystemError
from .retention import TEMP_SUFFIX, remove_entry

logger = logging.getLogger(__name__)

LOCK_FILE = Path("context") / "index" / "lock"
IDENTITY_FILE = "identity.json"
LOG_FILE_PATTERN = "*.log*"
ARCHIVE_SUBTREES = ("context", "bootstrap_db")
TARBALL_TEMP_SUFFIX = ".tar.gz" + TEMP_SUFFIX


@dataclass
class StagingHandle:
    """A snapshot being staged.

    Attributes:
        name: Final snapshot name
        category_dir: Category directory the snapshot is promoted into
        path: Staging directory (``<name>.temp``)
        packaged: Temporary tarball, once the staged tree has been archived
        promoted: Final path, once promoted
    """

    name: str
    category_dir: Path
    path: Path
    packaged: Path | None = None
    promoted: Path | None = None

    @property
    def temp_name(self) -> str:
        return self.name + TEMP_SUFFIX

    @property
    def final_path(self) -> Path:
        return self.category_dir / self.name


class StagingArea:
    """Creates, fills, packages and promotes staged snapshots.

    Attributes:
        scratch_root: Local directory used to stage archive snapshots

    Example:
        >>> staging = StagingArea(Path("/tmp/tezedge-snapshots-tmp"))
        >>> handle = await staging.begin_staging(name, archive_dir)
        >>> await staging.extract(handle, Path("/tmp/tezedge"))
        >>> await staging.purge_transient_files(handle)
        >>> await staging.promote(handle)
    """

    def __init__(self, scratch_root: Path) -> None:
        self.scratch_root = scratch_root

    async def begin_staging(self, name: str, category_dir: Path, local: bool = True) -> StagingHandle:
        """Create an empty ``<name>.temp`` staging directory.

        Args:
            name: Final snapshot name
            category_dir: Category directory the snapshot will be promoted into
            local: Stage under the scratch root (archive) instead of inside
                ``category_dir`` (full)

        Raises:
            FilesystemError: If the directory cannot be created
        """
        root = self.scratch_root if local else category_dir
        handle = StagingHandle(
            name=name, category_dir=category_dir, path=root / (name + TEMP_SUFFIX)
        )
        await self._run(handle.path, "create staging directory", self._create, handle.path)
        logger.debug(f"Staging directory created: {handle.path}")
        return handle

    async def extract(self, handle: StagingHandle, source_dir: Path) -> None:
        """Copy the contents of the node database directory into the staging directory.

        The node's lock file is removed first; a missing lock file is fine.

        Raises:
            FilesystemError: If the copy fails
        """
        await self._run(source_dir, "extract database", self._extract, source_dir, handle.path)

    async def purge_transient_files(self, handle: StagingHandle) -> list[Path]:
        """Remove log files and the node identity from the staged copy.

        Returns:
            Paths that were removed
        """
        removed = await self._run(handle.path, "purge transient files", self._purge, handle.path)
        logger.debug(f"Removed {len(removed)} transient files from {handle.path}")
        return removed

    async def archive(self, handle: StagingHandle, name: str | None = None) -> Path:
        """Package context/ and bootstrap_db/ into a gzip tarball.

        Args:
            handle: Staged snapshot
            name: Archive root directory, defaults to the final snapshot name

        Returns:
            Path of the temporary tarball

        Raises:
            FilesystemError: If a subtree is missing or writing fails
        """
        root_name = name or handle.name
        packaged = handle.category_dir / (handle.name + TARBALL_TEMP_SUFFIX)
        await self._run(packaged, "archive snapshot", self._archive, handle.path, packaged, root_name)
        handle.packaged = packaged
        return packaged

    async def promote(self, handle: StagingHandle) -> Path:
        """Make the staged snapshot visible under its final name.

        Promotes the packaged tarball if there is one, the staged directory
        otherwise.

        Returns:
            Final path of the snapshot

        Raises:
            FilesystemError: If the final name is taken or the rename fails
        """
        final = await self._run(handle.final_path, "promote snapshot", self._promote, handle)
        handle.promoted = final
        logger.info("Snapshot promoted", extra={"snapshot": handle.name, "path": os.fspath(final)})
        return final

    async def discard(self, handle: StagingHandle) -> None:
        """Best-effort removal of everything staged for ``handle``.

        Never raises; failures are logged.
        """
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self._discard, handle)

    # Blocking implementations

    async def _run(self, path: Path, operation: str, fn: Callable[..., Any], *args: Any) -> Any:
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(None, functools.partial(fn, *args))
        except FilesystemError:
            raise
        except (OSError, shutil.Error, tarfile.TarError) as e:
            raise FilesystemError(f"Failed to {operation} at {path}: {e}", path=path) from e

    def _create(self, path: Path) -> None:
        if path.exists():
            remove_entry(path)
        path.mkdir(parents=True)

    def _extract(self, source_dir: Path, destination: Path) -> None:
        if not source_dir.is_dir():
            raise FilesystemError(f"Database directory not found: {source_dir}", path=source_dir)

        (source_dir / LOCK_FILE).unlink(missing_ok=True)
        shutil.copytree(source_dir, destination, dirs_exist_ok=True)

    def _purge(self, root: Path) -> list[Path]:
        removed = []
        for path in sorted(root.rglob("*")):
            if not path.is_file():
                continue
            if path.name == IDENTITY_FILE or fnmatch.fnmatch(path.name, LOG_FILE_PATTERN):
                path.unlink()
                removed.append(path)
        return removed

    def _archive(self, staged: Path, packaged: Path, root_name: str) -> None:
        missing = [sub for sub in ARCHIVE_SUBTREES if not (staged / sub).is_dir()]
        if missing:
            raise FilesystemError(
                f"Cannot archive {staged}: missing {', '.join(missing)}", path=staged
            )

        packaged.parent.mkdir(parents=True, exist_ok=True)
        with tarfile.open(packaged, "w:gz") as tar:
            for sub in ARCHIVE_SUBTREES:
                tar.add(staged / sub, arcname=f"{root_name}/{sub}")

    def _promote(self, handle: StagingHandle) -> Path:
        final = handle.final_path
        if final.exists():
            raise FilesystemError(f"Snapshot {final} already exists", path=final)

        handle.category_dir.mkdir(parents=True, exist_ok=True)
        if handle.packaged is not None:
            os.rename(handle.packaged, final)
            handle.packaged = None
            try:
                remove_entry(handle.path)
            except OSError as e:
                logger.warning(f"Failed to remove staged export {handle.path}: {e}")
        else:
            staged = handle.path
            if staged.parent != handle.category_dir:
                # cross-device moves copy, so land under the temp name first
                moved = handle.category_dir / handle.temp_name
                if moved.exists():
                    remove_entry(moved)
                shutil.move(os.fspath(staged), os.fspath(moved))
                handle.path = moved
                staged = moved
            os.rename(staged, final)

        os.utime(final)
        return final

    def _discard(self, handle: StagingHandle) -> None:
        candidates = [handle.path, handle.category_dir / handle.temp_name]
        if handle.packaged is not None:
            candidates.append(handle.packaged)

        for path in candidates:
            if not path.exists():
                continue
            try:
                remove_entry(path)
                logger.info(f"Discarded staging entry {path}")
            except OSError as e:
                logger.warning(f"Failed to discard staging entry {path}: {e}")

        # drop the scratch root once it holds nothing else
        try:
            if self.scratch_root.is_dir() and not any(self.scratch_root.iterdir()):
                self.scratch_root.rmdir()
        except OSError as e:
            logger.debug(f"Scratch root {self.scratch_root} not removed: {e}")
