"""Exceptions raised by the hot-reload engine.

Only WatchSetupError, SessionNotFoundError and ConfigError escape the
public HotReloadManager API. The others are absorbed into a session's
activity log and status fields.
"""

from pathlib import Path


class HotReloadError(Exception):
    """Base class for hot-reload failures."""

    pass


class WatchSetupError(HotReloadError):
    """Raised when a session's initial watch cannot be established."""

    def __init__(self, path: str | Path, reason: str):
        self.path = Path(path)
        self.reason = reason
        super().__init__(f"Cannot watch {path}: {reason}")


class WatchRuntimeError(HotReloadError):
    """A recoverable problem encountered while scanning a watched tree."""

    def __init__(self, path: str | Path, reason: str):
        self.path = Path(path)
        self.reason = reason
        super().__init__(f"Watch error at {path}: {reason}")


class BuildError(HotReloadError):
    """Raised when a build result is validated and found to have failed."""

    def __init__(self, message: str, exit_code: int | None = None, output: str = ""):
        self.exit_code = exit_code
        self.output = output
        super().__init__(message)


class SyncFileError(HotReloadError):
    """A single file that could not be synchronized."""

    def __init__(self, host_path: str | Path, container_path: str, reason: str):
        self.host_path = Path(host_path)
        self.container_path = container_path
        self.reason = reason
        super().__init__(f"Failed to sync {host_path} -> {container_path}: {reason}")


class SyncError(HotReloadError):
    """Raised when a sync batch transferred nothing and had failures."""

    def __init__(self, message: str, failures: list[SyncFileError] | None = None):
        self.failures = failures or []
        super().__init__(message)


class SessionNotFoundError(HotReloadError):
    """Raised for operations on an unknown session ID."""

    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(f"Hot reload session {session_id} not found")


class ConfigError(HotReloadError):
    """Raised when hot-reload options or project config are invalid."""

    pass
