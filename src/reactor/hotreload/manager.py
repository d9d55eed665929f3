"""Hot-reload session management.

HotReloadManager is the entry point used by the CLI:
- start_hot_reload validates, detects the project, confirms the watch and
  the target container, then launches the session worker
- stop_hot_reload shuts a session down within a bounded grace period
- get_hot_reload_sessions / get_hot_reload_status return snapshots
- update_hot_reload_config changes a live session without restarting it
"""

import asyncio
import logging
from pathlib import Path

from reactor.docker import DockerError, DockerManager
from reactor.events import EventBus, EventType
from reactor.hotreload.build import BuildTrigger
from reactor.hotreload.config import ProjectConfigLoader, merge_options, validate_options
from reactor.hotreload.errors import ConfigError, WatchSetupError
from reactor.hotreload.models import (
    DEFAULT_BUILD_TIMEOUT,
    DEFAULT_CONTAINER_PATH,
    HotReloadOptions,
    HotReloadSession,
    HotReloadStatus,
    SyncMapping,
    WatchConfig,
)
from reactor.hotreload.registry import SessionRegistry
from reactor.hotreload.session import SessionWorker
from reactor.hotreload.sync import ContainerSync
from reactor.hotreload.watcher import FileWatcher

logger = logging.getLogger(__name__)

DEFAULT_STOP_GRACE_SECONDS = 5.0


def build_watch_config(options: HotReloadOptions) -> WatchConfig:
    """Create a WatchConfig from options, keeping defaults for unset fields."""
    fields = {
        name: getattr(options, name)
        for name in WatchConfig.model_fields
        if getattr(options, name, None) is not None
    }
    return WatchConfig(**fields)


class HotReloadManager:
    """Starts, tracks and stops hot-reload sessions."""

    def __init__(
        self,
        docker: DockerManager,
        event_bus: EventBus | None = None,
        config_loader: ProjectConfigLoader | None = None,
        registry: SessionRegistry[SessionWorker] | None = None,
        build_trigger: BuildTrigger | None = None,
        container_sync: ContainerSync | None = None,
        stop_grace_seconds: float = DEFAULT_STOP_GRACE_SECONDS,
    ):
        self.docker = docker
        self.event_bus = event_bus
        self.config_loader = config_loader or ProjectConfigLoader()
        self.registry: SessionRegistry[SessionWorker] = registry if registry is not None else SessionRegistry()
        self.build_trigger = build_trigger or BuildTrigger(docker)
        self.container_sync = container_sync or ContainerSync(docker)
        self.stop_grace_seconds = stop_grace_seconds

    async def start_hot_reload(
        self,
        project_path: str | Path,
        container_id: str | None = None,
        options: HotReloadOptions | None = None,
    ) -> HotReloadSession:
        """Start watching a project and syncing it into a container.

        Args:
            project_path: Project directory on the host
            container_id: Target container; defaults to the project's
                ``.claude-reactor`` container_id
            options: Overrides; set fields win over the project's hot reload file

        Returns:
            Snapshot of the new session

        Raises:
            WatchSetupError: If the project cannot be watched or the container
                does not exist or is not running
            ConfigError: If options or project config are invalid
        """
        project_path = Path(project_path).expanduser().resolve()
        watcher = FileWatcher(project_path)
        watcher.check_root()

        project_config = self.config_loader.load(project_path)
        options = merge_options(project_config.hotreload, options)
        validate_options(options)

        container_id = container_id or project_config.container_id
        if not container_id:
            raise ConfigError(f"No container specified and no container_id configured for {project_path}")

        config = build_watch_config(options)

        info = None
        build_command = options.build_command
        if options.auto_detect is not False:
            info = await asyncio.to_thread(self.build_trigger.detect_project_type, project_path)
            if build_command is None:
                build_command = list(info.build_command)
            if options.exclude_patterns is None:
                extra = [p for p in info.ignore_patterns if p not in config.exclude_patterns]
                config.exclude_patterns.extend(extra)

        try:
            container = await self.docker.get_container_status(container_id)
        except DockerError as e:
            raise WatchSetupError(project_path, f"cannot inspect container {container_id}: {e}") from e
        if not container.exists:
            raise WatchSetupError(project_path, f"container {container_id} does not exist")
        if not container.running:
            raise WatchSetupError(project_path, f"container {container_id} is not running")

        watcher.config = config
        await asyncio.to_thread(watcher.start)

        mappings = options.sync_mappings
        if not mappings:
            mappings = [
                SyncMapping(
                    host_path=project_path,
                    container_path=options.container_path or DEFAULT_CONTAINER_PATH,
                )
            ]

        session = HotReloadSession(
            id=self.registry.new_id(),
            project_path=project_path,
            container_id=container_id,
            config=config,
            project_info=info,
            build_command=build_command or [],
            build_timeout_seconds=options.build_timeout_seconds or DEFAULT_BUILD_TIMEOUT,
            build_in_container=bool(options.build_in_container),
            sync_mappings=mappings,
            delete_extraneous=bool(options.delete_extraneous),
        )
        worker = SessionWorker(session, watcher, self.build_trigger, self.container_sync, self.event_bus)
        self.registry.add(session.id, worker)
        await worker.start()

        logger.info(f"Started hot reload session {session.id} for {project_path}")
        snapshot = worker.snapshot()
        if self.event_bus is not None:
            await self.event_bus.emit(
                EventType.SESSION_STARTED,
                data=snapshot.model_dump(mode="json"),
                session_id=session.id,
            )
        return snapshot

    async def stop_hot_reload(self, session_id: str) -> None:
        """Stop a session and remove it from the registry.

        Raises:
            SessionNotFoundError: If the session does not exist
        """
        worker = self.registry.get(session_id)
        await worker.stop(self.stop_grace_seconds)

        # A concurrent stop may already have removed it
        if session_id in self.registry:
            self.registry.remove(session_id)
            logger.info(f"Stopped hot reload session {session_id}")
            if self.event_bus is not None:
                await self.event_bus.emit(
                    EventType.SESSION_STOPPED,
                    data={"metrics": worker.session.metrics.model_dump(mode="json")},
                    session_id=session_id,
                )

    async def stop_all(self) -> None:
        """Stop every registered session."""
        await asyncio.gather(*(self.stop_hot_reload(worker.id) for worker in self.registry.list()))

    def get_hot_reload_sessions(self) -> list[HotReloadSession]:
        """Snapshots of all active sessions."""
        return [worker.snapshot() for worker in self.registry.list()]

    def get_hot_reload_status(self, session_id: str) -> HotReloadStatus:
        """Status report for one session.

        Raises:
            SessionNotFoundError: If the session does not exist
        """
        return self.registry.get(session_id).status()

    async def update_hot_reload_config(self, session_id: str, options: HotReloadOptions) -> None:
        """Apply set option fields to a live session.

        Raises:
            SessionNotFoundError: If the session does not exist
            ConfigError: If the options are invalid
        """
        worker = self.registry.get(session_id)
        validate_options(options)
        applied = await worker.update_config(options)
        if applied and self.event_bus is not None:
            await self.event_bus.emit(EventType.CONFIG_UPDATED, data={"fields": applied}, session_id=session_id)
