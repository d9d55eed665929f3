"""Hot-reload orchestration engine.

Watches a project, debounces changes, rebuilds when needed and syncs the
result into a running container:
- Snapshot-based file watching with include/exclude globs
- Debounced, coalesced change sets
- Project detection and bounded-timeout builds
- Partial-failure container sync
- Per-session state machine with activity log and metrics
"""

from reactor.hotreload.build import BuildTrigger, ProjectDetector
from reactor.hotreload.debounce import Debouncer
from reactor.hotreload.errors import (
    BuildError,
    ConfigError,
    HotReloadError,
    SessionNotFoundError,
    SyncError,
    SyncFileError,
    WatchRuntimeError,
    WatchSetupError,
)
from reactor.hotreload.manager import HotReloadManager
from reactor.hotreload.models import (
    HotReloadOptions,
    HotReloadSession,
    HotReloadStatus,
    SyncMapping,
    WatchConfig,
)
from reactor.hotreload.registry import SessionRegistry
from reactor.hotreload.sync import ContainerSync
from reactor.hotreload.watcher import FileWatcher

__all__ = [
    "BuildError",
    "BuildTrigger",
    "ConfigError",
    "ContainerSync",
    "Debouncer",
    "FileWatcher",
    "HotReloadError",
    "HotReloadManager",
    "HotReloadOptions",
    "HotReloadSession",
    "HotReloadStatus",
    "ProjectDetector",
    "SessionNotFoundError",
    "SessionRegistry",
    "SyncError",
    "SyncFileError",
    "SyncMapping",
    "WatchConfig",
    "WatchRuntimeError",
    "WatchSetupError",
]
