"""Enumerations for hot-reload models."""

from enum import Enum


class FileEventType(str, Enum):
    """Kinds of raw filesystem change."""

    CREATED = "created"
    MODIFIED = "modified"
    DELETED = "deleted"
    RENAMED = "renamed"


class ChangeState(str, Enum):
    """Final state of a path after debouncing."""

    MODIFIED = "modified"
    DELETED = "deleted"


class SessionStatus(str, Enum):
    """Hot-reload session lifecycle states."""

    STARTING = "starting"
    WATCHING = "watching"
    BUILDING = "building"
    SYNCING = "syncing"
    ERROR = "error"  # Non-fatal, returns to WATCHING
    STOPPING = "stopping"
    STOPPED = "stopped"


class ActivityLevel(str, Enum):
    """Severity of an activity record."""

    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class ActivityType(str, Enum):
    """Pipeline stages that produce activity records."""

    SESSION_STARTED = "session.started"
    SESSION_STOPPING = "session.stopping"
    SESSION_STOPPED = "session.stopped"
    CONFIG_UPDATED = "config.updated"

    CHANGES_DETECTED = "watch.changes"
    WATCH_ERROR = "watch.error"

    BUILD_STARTED = "build.started"
    BUILD_SUCCEEDED = "build.succeeded"
    BUILD_FAILED = "build.failed"
    BUILD_QUEUED = "build.queued"

    SYNC_STARTED = "sync.started"
    SYNC_COMPLETED = "sync.completed"
    SYNC_FAILED = "sync.failed"

    PIPELINE_ERROR = "pipeline.error"


class SyncDirection(str, Enum):
    """Direction of a sync mapping."""

    HOST_TO_CONTAINER = "host-to-container"
