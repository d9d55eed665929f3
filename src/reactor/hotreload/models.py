"""Data models for hot-reload sessions.

Every model here is serializable with ``model_dump(mode="json")``;
timestamps are timezone-aware UTC datetimes and render as RFC3339 strings.
"""

from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field

from reactor.hotreload.enums import (
    ActivityLevel,
    ActivityType,
    ChangeState,
    FileEventType,
    SessionStatus,
    SyncDirection,
)

DEFAULT_IGNORE_PATTERNS: list[str] = [
    "node_modules/",
    ".git/",
    "target/",
    "build/",
    "dist/",
    "__pycache__/",
]

DEFAULT_EXCLUDE_PATTERNS: list[str] = [
    *DEFAULT_IGNORE_PATTERNS,
    "*.log",
    "*.tmp",
    ".DS_Store",
    "Thumbs.db",
]

# Build output directories are deliberately absent so artifacts can be synced.
DEFAULT_SYNC_EXCLUDE_PATTERNS: list[str] = [
    "node_modules/",
    ".git/",
    "__pycache__/",
]

DEFAULT_CONTAINER_PATH = "/app"
DEFAULT_BUILD_TIMEOUT = 120.0
MAX_SYNC_ERRORS = 50


def utc_now() -> datetime:
    """Get current UTC datetime (timezone-aware)."""
    return datetime.now(UTC)


class WatchConfig(BaseModel):
    """What to watch and how to react to it."""

    include_patterns: list[str] = Field(default_factory=lambda: ["**/*"])
    exclude_patterns: list[str] = Field(default_factory=lambda: list(DEFAULT_EXCLUDE_PATTERNS))
    debounce_delay_ms: int = 500
    max_wait_ms: int | None = None  # None = a busy file never settles
    poll_interval_ms: int = 250
    recursive: bool = True
    enable_build: bool = True
    enable_sync: bool = True
    build_patterns: list[str] | None = None  # None = use detected watch patterns


class FileEvent(BaseModel):
    """A single raw filesystem change."""

    type: FileEventType
    path: Path
    timestamp: datetime = Field(default_factory=utc_now)
    size: int = 0
    old_path: Path | None = None
    is_dir: bool = False


class ChangeEntry(BaseModel):
    """The effective state of one path within a debounce window."""

    path: Path
    state: ChangeState
    size: int = 0
    is_dir: bool = False


class SettledChangeSet(BaseModel):
    """A debounced, deduplicated batch of changes."""

    entries: dict[Path, ChangeEntry] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utc_now)

    def __len__(self) -> int:
        return len(self.entries)

    @property
    def is_empty(self) -> bool:
        return not self.entries

    @property
    def changed_paths(self) -> list[Path]:
        return sorted(p for p, e in self.entries.items() if e.state == ChangeState.MODIFIED)

    @property
    def deleted_paths(self) -> list[Path]:
        return sorted(p for p, e in self.entries.items() if e.state == ChangeState.DELETED)

    def merge(self, newer: "SettledChangeSet | None") -> "SettledChangeSet":
        """Combine with a later change set; the later state of a path wins."""
        if newer is None:
            return self
        entries = dict(self.entries)
        entries.update(newer.entries)
        return SettledChangeSet(entries=entries, created_at=newer.created_at)


class ProjectBuildInfo(BaseModel):
    """Detected build identity of a project."""

    language: str
    framework: str
    build_command: list[str] = Field(default_factory=list)
    test_command: list[str] = Field(default_factory=list)
    start_command: list[str] = Field(default_factory=list)
    watch_patterns: list[str] = Field(default_factory=list)
    ignore_patterns: list[str] = Field(default_factory=list)
    build_outputs: list[str] = Field(default_factory=list)
    supports_hot_reload: bool = False
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)


class BuildOptions(BaseModel):
    """How to run a build."""

    working_dir: Path | None = None
    timeout_seconds: float = DEFAULT_BUILD_TIMEOUT
    environment: dict[str, str] = Field(default_factory=dict)
    capture_output: bool = True
    in_container: bool = False
    container_id: str | None = None
    container_workdir: str | None = None


class BuildResult(BaseModel):
    """Outcome of one build attempt."""

    success: bool
    command: list[str] = Field(default_factory=list)
    output: str = ""
    exit_code: int | None = None
    duration_seconds: float = 0.0
    timestamp: datetime = Field(default_factory=utc_now)
    working_dir: str | None = None
    error: str | None = None
    timed_out: bool = False


class SyncMapping(BaseModel):
    """A host directory mirrored into a container directory."""

    host_path: Path
    container_path: str = DEFAULT_CONTAINER_PATH
    direction: SyncDirection = SyncDirection.HOST_TO_CONTAINER
    include_patterns: list[str] = Field(default_factory=list)
    exclude_patterns: list[str] = Field(default_factory=lambda: list(DEFAULT_SYNC_EXCLUDE_PATTERNS))


class SyncOptions(BaseModel):
    """Behavior switches for one sync call."""

    delete_extraneous: bool = False
    dry_run: bool = False


class SyncFailure(BaseModel):
    """Serializable record of a file that failed to sync."""

    host_path: str
    container_path: str
    error: str
    timestamp: datetime = Field(default_factory=utc_now)


class SyncStats(BaseModel):
    """Counters for one sync call, or accumulated for a session."""

    files_synced: list[str] = Field(default_factory=list)
    files_deleted: list[str] = Field(default_factory=list)
    bytes_transferred: int = 0
    sync_operations: int = 0
    failed_syncs: int = 0
    errors: list[SyncFailure] = Field(default_factory=list)
    last_sync: datetime | None = None

    def absorb(self, other: "SyncStats") -> None:
        """Accumulate another stats object into this one."""
        for path in other.files_synced:
            if path not in self.files_synced:
                self.files_synced.append(path)
        for path in other.files_deleted:
            if path not in self.files_deleted:
                self.files_deleted.append(path)
        self.bytes_transferred += other.bytes_transferred
        self.sync_operations += other.sync_operations
        self.failed_syncs += other.failed_syncs
        self.errors = (self.errors + other.errors)[-MAX_SYNC_ERRORS:]
        self.last_sync = other.last_sync or self.last_sync


class WatchStats(BaseModel):
    """Counters for raw events seen by a session."""

    total_events: int = 0
    events_by_type: dict[str, int] = Field(default_factory=dict)
    change_sets: int = 0
    last_event: datetime | None = None

    def record(self, event: FileEvent) -> None:
        self.total_events += 1
        key = event.type.value
        self.events_by_type[key] = self.events_by_type.get(key, 0) + 1
        self.last_event = event.timestamp


class HotReloadMetrics(BaseModel):
    """Aggregate session metrics."""

    total_changes: int = 0
    successful_builds: int = 0
    failed_builds: int = 0
    build_success_rate: float = 0.0
    files_synced: int = 0
    bytes_transferred: int = 0
    last_build_duration_seconds: float | None = None
    average_build_duration_seconds: float | None = None
    uptime_seconds: float = 0.0

    @property
    def total_builds(self) -> int:
        return self.successful_builds + self.failed_builds

    def record_build(self, result: BuildResult) -> None:
        """Count a finished build and recompute the derived ratios."""
        previous = self.total_builds
        if result.success:
            self.successful_builds += 1
        else:
            self.failed_builds += 1

        total = self.total_builds
        self.build_success_rate = self.successful_builds / total if total else 0.0

        self.last_build_duration_seconds = result.duration_seconds
        average = self.average_build_duration_seconds or 0.0
        self.average_build_duration_seconds = (average * previous + result.duration_seconds) / total

    def record_sync(self, stats: SyncStats) -> None:
        self.files_synced += len(stats.files_synced)
        self.bytes_transferred += stats.bytes_transferred


class ActivityEvent(BaseModel):
    """One entry in a session's activity log."""

    timestamp: datetime = Field(default_factory=utc_now)
    type: ActivityType
    message: str
    level: ActivityLevel = ActivityLevel.INFO
    data: dict[str, Any] = Field(default_factory=dict)


class HotReloadOptions(BaseModel):
    """Caller-supplied session options. Unset (None) fields keep their current value."""

    include_patterns: list[str] | None = None
    exclude_patterns: list[str] | None = None
    debounce_delay_ms: int | None = None
    max_wait_ms: int | None = None
    poll_interval_ms: int | None = None
    enable_build: bool | None = None
    enable_sync: bool | None = None
    build_patterns: list[str] | None = None
    build_command: list[str] | None = None
    build_timeout_seconds: float | None = None
    build_in_container: bool | None = None
    sync_mappings: list[SyncMapping] | None = None
    delete_extraneous: bool | None = None
    auto_detect: bool | None = None
    container_path: str | None = None


class HotReloadSession(BaseModel):
    """Snapshot of a hot-reload session, the aggregate root."""

    id: str
    project_path: Path
    container_id: str
    config: WatchConfig
    project_info: ProjectBuildInfo | None = None
    build_command: list[str] = Field(default_factory=list)
    build_timeout_seconds: float = DEFAULT_BUILD_TIMEOUT
    build_in_container: bool = False
    sync_mappings: list[SyncMapping] = Field(default_factory=list)
    delete_extraneous: bool = False
    status: SessionStatus = SessionStatus.STARTING
    start_time: datetime = Field(default_factory=utc_now)
    last_activity: datetime = Field(default_factory=utc_now)
    last_build: BuildResult | None = None
    watch_stats: WatchStats = Field(default_factory=WatchStats)
    sync_stats: SyncStats = Field(default_factory=SyncStats)
    metrics: HotReloadMetrics = Field(default_factory=HotReloadMetrics)
    recent_activity: list[ActivityEvent] = Field(default_factory=list)


class HotReloadStatus(BaseModel):
    """Point-in-time status report for one session."""

    session_id: str
    status: SessionStatus
    watching_status: str
    build_status: str
    sync_status: str
    recent_activity: list[ActivityEvent] = Field(default_factory=list)
    metrics: HotReloadMetrics
    last_build: BuildResult | None = None
