"""File change watching for hot-reload sessions.

The watcher takes periodic snapshots of a project tree and diffs them to
produce typed FileEvents:
- New files and directories (created)
- Changed size or modification time (modified)
- Vanished paths (deleted)
- A vanished and a new path sharing an inode (renamed)

Excluded directories are pruned during the walk, so large trees such as
node_modules/ are never scanned.
"""

import asyncio
import logging
import os
from collections.abc import AsyncIterator
from dataclasses import dataclass
from pathlib import Path

from reactor.hotreload.enums import FileEventType
from reactor.hotreload.errors import WatchRuntimeError, WatchSetupError
from reactor.hotreload.models import FileEvent, WatchConfig
from reactor.hotreload.patterns import is_included, matches_any

logger = logging.getLogger(__name__)


@dataclass
class PathState:
    """Snapshot of a single watched path."""

    mtime: float
    size: int
    is_dir: bool
    inode: tuple[int, int]


class FileWatcher:
    """Watches a project directory for changes.

    Scans the tree every ``poll_interval_ms`` and compares against the
    previous snapshot. ``config`` may be replaced at any time; the next scan
    picks up the new patterns.
    """

    def __init__(self, root: str | Path, config: WatchConfig | None = None):
        self.root = Path(root)
        self.config = config or WatchConfig()

        self._states: dict[Path, PathState] = {}
        self._initialized = False
        self._errors: list[WatchRuntimeError] = []
        self._failing_paths: set[Path] = set()
        self._scan_failures: set[Path] = set()

    def check_root(self) -> None:
        """Fail fast if the root cannot be watched.

        Raises:
            WatchSetupError: If the root is missing or not a directory.
        """
        if not self.root.exists():
            raise WatchSetupError(self.root, "path does not exist")
        if not self.root.is_dir():
            raise WatchSetupError(self.root, "path is not a directory")

    def start(self) -> None:
        """Validate the root and take the initial snapshot."""
        self.check_root()
        try:
            self._states = self._scan()
        except OSError as e:
            raise WatchSetupError(self.root, str(e)) from e
        self._initialized = True
        logger.info(f"Watching {self.root} ({len(self._states)} paths)")

    def _relative(self, path: Path) -> str:
        return path.relative_to(self.root).as_posix()

    def _report(self, path: Path, reason: str) -> None:
        self._scan_failures.add(path)
        if path in self._failing_paths:
            return
        logger.warning(f"Cannot read {path}: {reason}")
        self._errors.append(WatchRuntimeError(path, reason))

    def _on_walk_error(self, err: OSError) -> None:
        self._report(Path(err.filename or self.root), err.strerror or str(err))

    def _stat(self, path: Path, is_dir: bool) -> PathState | None:
        try:
            st = path.stat()
        except FileNotFoundError:
            return None  # Vanished between listing and stat
        except OSError as e:
            self._report(path, e.strerror or str(e))
            return None

        return PathState(
            mtime=st.st_mtime,
            size=0 if is_dir else st.st_size,
            is_dir=is_dir,
            inode=(st.st_dev, st.st_ino),
        )

    def _scan(self) -> dict[Path, PathState]:
        """Walk the tree and snapshot every included path."""
        config = self.config
        states: dict[Path, PathState] = {}
        self._scan_failures = set()

        for dirpath, dirnames, filenames in os.walk(self.root, onerror=self._on_walk_error):
            current = Path(dirpath)

            kept: list[str] = []
            for name in dirnames:
                path = current / name
                rel = self._relative(path)
                if matches_any(rel, config.exclude_patterns, is_dir=True):
                    continue
                kept.append(name)
                if is_included(rel, config.include_patterns, config.exclude_patterns, is_dir=True):
                    state = self._stat(path, is_dir=True)
                    if state:
                        states[path] = state
            dirnames[:] = kept if config.recursive else []

            for name in filenames:
                path = current / name
                rel = self._relative(path)
                if not is_included(rel, config.include_patterns, config.exclude_patterns):
                    continue
                state = self._stat(path, is_dir=False)
                if state:
                    states[path] = state

        # Paths that recovered may be reported again if they fail later
        self._failing_paths = self._scan_failures
        return states

    def _is_modified(self, old: PathState, new: PathState) -> bool:
        if new.is_dir:
            return False
        return old.mtime != new.mtime or old.size != new.size

    def detect_changes(self) -> list[FileEvent]:
        """Detect changes since the last scan.

        Returns:
            List of FileEvents, empty on the first call.
        """
        if not self._initialized:
            self.start()
            return []

        current = self._scan()
        events: list[FileEvent] = []

        created = [p for p in current if p not in self._states]
        deleted = [p for p in self._states if p not in current]

        # Renames keep their inode on the same filesystem
        by_inode = {
            self._states[p].inode: p
            for p in deleted
            if self._states[p].inode[1] != 0
        }
        renamed_from: set[Path] = set()
        for path in list(created):
            old_path = by_inode.get(current[path].inode)
            if old_path is None or old_path in renamed_from:
                continue
            if current[path].is_dir != self._states[old_path].is_dir:
                continue
            renamed_from.add(old_path)
            created.remove(path)
            events.append(self._event(FileEventType.RENAMED, path, current[path], old_path))

        for path in created:
            events.append(self._event(FileEventType.CREATED, path, current[path]))

        for path, state in current.items():
            old = self._states.get(path)
            if old is not None and self._is_modified(old, state):
                events.append(self._event(FileEventType.MODIFIED, path, state))

        for path in deleted:
            if path not in renamed_from:
                events.append(self._event(FileEventType.DELETED, path, self._states[path]))

        self._states = current
        return events

    def _event(
        self,
        event_type: FileEventType,
        path: Path,
        state: PathState,
        old_path: Path | None = None,
    ) -> FileEvent:
        return FileEvent(
            type=event_type,
            path=path,
            size=0 if event_type == FileEventType.DELETED else state.size,
            old_path=old_path,
            is_dir=state.is_dir,
        )

    def drain_errors(self) -> list[WatchRuntimeError]:
        """Return and clear the recoverable errors seen since the last call."""
        errors, self._errors = self._errors, []
        return errors

    async def events(self) -> AsyncIterator[FileEvent | WatchRuntimeError]:
        """Yield file events until cancelled.

        Recoverable scan errors are yielded in-band, ahead of the events of
        the same scan, so the consumer can log them without stopping.
        Scans run in a worker thread so large trees don't block the loop.
        """
        if not self._initialized:
            self.start()

        while True:
            for error in self.drain_errors():
                yield error

            await asyncio.sleep(self.config.poll_interval_ms / 1000)
            changes = await asyncio.to_thread(self.detect_changes)
            for error in self.drain_errors():
                yield error
            for event in changes:
                logger.debug(f"File event: {event.type.value} {event.path}")
                yield event

    @property
    def tracked_paths(self) -> int:
        return len(self._states)
