"""Host-to-container file synchronization.

Each changed path is resolved to the sync mapping with the longest
matching host prefix, filtered by that mapping's patterns, and copied to
the mapped container path. Individual failures are collected rather than
aborting the batch.
"""

import asyncio
import logging
import posixpath
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path

from reactor.docker import DockerError, DockerManager
from reactor.hotreload.enums import ChangeState
from reactor.hotreload.errors import SyncError, SyncFileError
from reactor.hotreload.models import (
    SettledChangeSet,
    SyncFailure,
    SyncMapping,
    SyncOptions,
    SyncStats,
    utc_now,
)
from reactor.hotreload.patterns import is_included

logger = logging.getLogger(__name__)


@dataclass
class SyncOperation:
    """A single planned copy or delete."""

    action: str  # "copy" or "delete"
    host_path: Path
    container_path: str
    is_dir: bool = False


def resolve_mapping(path: Path, mappings: Iterable[SyncMapping]) -> SyncMapping | None:
    """Find the mapping whose host path is the longest prefix of ``path``."""
    best: SyncMapping | None = None
    for mapping in mappings:
        if path != mapping.host_path and mapping.host_path not in path.parents:
            continue
        if best is None or len(mapping.host_path.parts) > len(best.host_path.parts):
            best = mapping
    return best


def map_path(path: Path, mapping: SyncMapping) -> str:
    """Translate a host path into its container path under ``mapping``."""
    rel = path.relative_to(mapping.host_path).as_posix()
    if rel == ".":
        return mapping.container_path
    return posixpath.join(mapping.container_path, rel)


def _tree_size(path: Path) -> int:
    if path.is_dir():
        return sum(p.stat().st_size for p in path.rglob("*") if p.is_file())
    return path.stat().st_size


class ContainerSync:
    """Copies settled changes into a running container."""

    def __init__(self, docker: DockerManager):
        self.docker = docker

    def plan(
        self,
        mappings: list[SyncMapping],
        change_set: SettledChangeSet,
        options: SyncOptions | None = None,
        extra_paths: Iterable[Path] = (),
    ) -> list[SyncOperation]:
        """Resolve and filter the work for a sync without doing any I/O.

        ``extra_paths`` (build outputs) are copied as a whole, whether they
        are files or directories.
        """
        options = options or SyncOptions()
        operations: list[SyncOperation] = []

        for path, entry in sorted(change_set.entries.items()):
            mapping = resolve_mapping(path, mappings)
            if mapping is None:
                logger.debug(f"No sync mapping for {path}")
                continue

            rel = path.relative_to(mapping.host_path).as_posix()
            if not is_included(rel, mapping.include_patterns, mapping.exclude_patterns, entry.is_dir):
                continue

            if entry.state == ChangeState.DELETED:
                if not options.delete_extraneous:
                    logger.debug(f"Leaving {path} in container (delete_extraneous disabled)")
                    continue
                operations.append(SyncOperation("delete", path, map_path(path, mapping), entry.is_dir))
            elif not entry.is_dir:
                # Directories arrive through the files inside them
                operations.append(SyncOperation("copy", path, map_path(path, mapping)))

        for path in extra_paths:
            mapping = resolve_mapping(path, mappings)
            if mapping is None:
                continue
            rel = path.relative_to(mapping.host_path).as_posix()
            if not is_included(rel, mapping.include_patterns, mapping.exclude_patterns, path.is_dir()):
                continue
            container_path = map_path(path, mapping)
            if any(op.container_path == container_path for op in operations):
                continue
            operations.append(SyncOperation("copy", path, container_path, path.is_dir()))

        return operations

    async def _apply(self, container_id: str, op: SyncOperation) -> int:
        """Perform one operation and return the bytes transferred."""
        if op.action == "delete":
            await self.docker.remove_from_container(container_id, op.container_path)
            return 0

        try:
            size = _tree_size(op.host_path)
        except OSError as e:
            raise SyncFileError(op.host_path, op.container_path, str(e)) from e
        await self.docker.copy_to_container(container_id, op.host_path, op.container_path)
        return size

    async def sync(
        self,
        container_id: str,
        mappings: list[SyncMapping],
        change_set: SettledChangeSet,
        options: SyncOptions | None = None,
        extra_paths: Iterable[Path] = (),
    ) -> SyncStats:
        """Sync a settled change set into a container.

        Returns:
            SyncStats for this call, including per-file errors.

        Raises:
            SyncError: If there was work, none of it succeeded, and at least
                one file failed.
        """
        options = options or SyncOptions()
        operations = self.plan(mappings, change_set, options, extra_paths)
        stats = SyncStats()
        failures: list[SyncFileError] = []

        for op in operations:
            if options.dry_run:
                logger.info(f"Dry run: would {op.action} {op.host_path} -> {container_id}:{op.container_path}")
                self._record(stats, op, 0)
                continue

            # Let an in-flight copy finish if the session is cancelled
            task = asyncio.ensure_future(self._apply(container_id, op))
            try:
                transferred = await asyncio.shield(task)
            except asyncio.CancelledError:
                try:
                    await task
                except (DockerError, SyncFileError, OSError) as e:
                    logger.warning(f"Last copy before cancellation failed: {e}")
                raise
            except SyncFileError as e:
                failures.append(e)
                continue
            except (DockerError, OSError) as e:
                failures.append(SyncFileError(op.host_path, op.container_path, str(e)))
                continue

            self._record(stats, op, transferred)

        for failure in failures:
            logger.warning(str(failure))
            stats.failed_syncs += 1
            stats.errors.append(
                SyncFailure(
                    host_path=str(failure.host_path),
                    container_path=failure.container_path,
                    error=failure.reason,
                )
            )

        stats.last_sync = utc_now()
        if failures and not (stats.files_synced or stats.files_deleted):
            raise SyncError(f"All {len(failures)} file operations failed", failures=failures)

        logger.info(
            f"Synced {len(stats.files_synced)} files, deleted {len(stats.files_deleted)} "
            f"({stats.bytes_transferred} bytes) into {container_id}"
        )
        return stats

    @staticmethod
    def _record(stats: SyncStats, op: SyncOperation, transferred: int) -> None:
        stats.sync_operations += 1
        if op.action == "delete":
            stats.files_deleted.append(str(op.host_path))
        else:
            stats.files_synced.append(str(op.host_path))
            stats.bytes_transferred += transferred
