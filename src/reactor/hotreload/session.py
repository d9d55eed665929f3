"""Per-session hot-reload pipeline.

Each session runs two tasks:
- a watch pump that feeds raw events into a bounded queue
- a worker that owns all session state and drives the state machine

The worker waits on {next event, running build, debounce deadline}. A
settled change set is classified as build-needed or sync-only. At most one
build runs at a time; changes that settle while it runs are merged and
set a pending-rebuild flag, which produces exactly one follow-up build.
Syncs run inline in the worker, so build and sync never overlap.
"""

import asyncio
import contextlib
import copy
import logging
from collections import deque
from collections.abc import Awaitable
from pathlib import Path

from reactor.events import EventBus, EventType
from reactor.hotreload.build import BuildTrigger
from reactor.hotreload.debounce import Debouncer
from reactor.hotreload.enums import ActivityLevel, ActivityType, SessionStatus
from reactor.hotreload.errors import SyncError, WatchRuntimeError
from reactor.hotreload.models import (
    DEFAULT_CONTAINER_PATH,
    ActivityEvent,
    BuildOptions,
    BuildResult,
    FileEvent,
    HotReloadOptions,
    HotReloadSession,
    HotReloadStatus,
    SettledChangeSet,
    SyncFailure,
    SyncOptions,
    SyncStats,
    WatchConfig,
    utc_now,
)
from reactor.hotreload.patterns import is_included
from reactor.hotreload.sync import ContainerSync, map_path, resolve_mapping
from reactor.hotreload.watcher import FileWatcher

logger = logging.getLogger(__name__)

ACTIVITY_LIMIT = 50
STATUS_ACTIVITY_LIMIT = 10
QUEUE_SIZE = 1024
ACTIVITY_PATH_LIMIT = 20

_LOG_LEVELS = {
    ActivityLevel.INFO: logging.INFO,
    ActivityLevel.WARNING: logging.WARNING,
    ActivityLevel.ERROR: logging.ERROR,
}

# HotReloadOptions fields that live on WatchConfig vs. on the session itself
WATCH_FIELDS = (
    "include_patterns",
    "exclude_patterns",
    "debounce_delay_ms",
    "max_wait_ms",
    "poll_interval_ms",
    "enable_build",
    "enable_sync",
    "build_patterns",
)
SESSION_FIELDS = (
    "build_command",
    "build_timeout_seconds",
    "build_in_container",
    "sync_mappings",
    "delete_extraneous",
)

WatchItem = FileEvent | WatchRuntimeError


class SessionWorker:
    """Drives one hot-reload session from start to stop."""

    def __init__(
        self,
        session: HotReloadSession,
        watcher: FileWatcher,
        build_trigger: BuildTrigger,
        container_sync: ContainerSync,
        event_bus: EventBus | None = None,
        activity_limit: int = ACTIVITY_LIMIT,
        queue_size: int = QUEUE_SIZE,
    ):
        self.session = session
        self.watcher = watcher
        self.build_trigger = build_trigger
        self.container_sync = container_sync
        self.event_bus = event_bus
        self.debouncer = Debouncer(session.config.debounce_delay_ms, session.config.max_wait_ms)

        self._queue: asyncio.Queue[WatchItem] = asyncio.Queue(maxsize=queue_size)
        self._activity: deque[ActivityEvent] = deque(maxlen=activity_limit)
        self._dropped_events = 0

        self._pump_task: asyncio.Task | None = None
        self._run_task: asyncio.Task | None = None
        self._stop_task: asyncio.Task | None = None
        self._build_task: asyncio.Task[BuildResult] | None = None

        self._pending_rebuild = False
        # Changes waiting on the running build, synced once it succeeds
        self._deferred: SettledChangeSet | None = None
        # Changes from failed builds, carried into the next successful one
        self._unsynced: SettledChangeSet | None = None

    @property
    def id(self) -> str:
        return self.session.id

    async def start(self) -> None:
        """Launch the watch pump and worker. The watcher must already be started."""
        self.session.status = SessionStatus.WATCHING
        await self._record(
            ActivityType.SESSION_STARTED,
            f"Hot reload started for {self.session.project_path} -> {self.session.container_id}",
            project_path=str(self.session.project_path),
            container_id=self.session.container_id,
        )
        self._pump_task = asyncio.create_task(self._pump_events(), name=f"hotreload-watch-{self.id}")
        self._run_task = asyncio.create_task(self._run(), name=f"hotreload-worker-{self.id}")
        self._run_task.add_done_callback(self._on_task_done)
        self._pump_task.add_done_callback(self._on_task_done)

    def _on_task_done(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"[{self.id}] {task.get_name()} crashed: {exc!r}")
            self.session.status = SessionStatus.ERROR

    # -- watch pump ---------------------------------------------------------

    def _enqueue(self, item: WatchItem) -> None:
        if self._queue.full():
            self._queue.get_nowait()
            self._dropped_events += 1
            if self._dropped_events == 1:
                logger.warning(f"[{self.id}] Event queue full, dropping oldest events")
        self._queue.put_nowait(item)

    async def _pump_events(self) -> None:
        while True:
            try:
                async for item in self.watcher.events():
                    self._enqueue(item)
            except OSError as e:
                logger.error(f"[{self.id}] Watcher failed, restarting: {e}")
                self._enqueue(WatchRuntimeError(self.watcher.root, str(e)))
                await asyncio.sleep(self.session.config.poll_interval_ms / 1000)

    # -- worker -------------------------------------------------------------

    async def _run(self) -> None:
        getter: asyncio.Task | None = None
        try:
            while True:
                timeout = self.debouncer.due_in()
                if timeout is not None and timeout <= 0:
                    await self._guarded(self._on_settled(self.debouncer.settle()))
                    continue

                # The getter survives timeouts so a dequeued event is never lost
                if getter is None:
                    getter = asyncio.create_task(self._queue.get())
                waiting: set[asyncio.Task] = {getter}
                if self._build_task is not None:
                    waiting.add(self._build_task)

                done, _ = await asyncio.wait(waiting, timeout=timeout, return_when=asyncio.FIRST_COMPLETED)

                if getter in done:
                    item = getter.result()
                    getter = None
                    await self._guarded(self._handle(item))

                if self._build_task is not None and self._build_task in done:
                    finished, self._build_task = self._build_task, None
                    await self._guarded(self._on_build_finished(finished))
        finally:
            if getter is not None:
                getter.cancel()
            if self._build_task is not None:
                build, self._build_task = self._build_task, None
                build.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await build

    async def _guarded(self, step: Awaitable[None]) -> None:
        """Run one pipeline step, recording any unexpected failure.

        The session goes back to watching (or building, if a build is still
        running) so one bad collaborator call never ends the worker.
        """
        try:
            await step
        except Exception as e:
            logger.exception(f"[{self.id}] Pipeline step failed")
            self.session.status = SessionStatus.ERROR
            await self._record(
                ActivityType.PIPELINE_ERROR,
                f"Unexpected error: {e!r}",
                ActivityLevel.ERROR,
                error=type(e).__name__,
            )
            if self._build_task is None:
                self.session.status = SessionStatus.WATCHING
            else:
                self.session.status = SessionStatus.BUILDING

    async def _handle(self, item: WatchItem) -> None:
        if isinstance(item, WatchRuntimeError):
            previous = self.session.status
            self.session.status = SessionStatus.ERROR
            await self._record(ActivityType.WATCH_ERROR, str(item), ActivityLevel.WARNING, path=str(item.path))
            self.session.status = previous if previous != SessionStatus.ERROR else SessionStatus.WATCHING
            return

        self.session.watch_stats.record(item)
        self.debouncer.add(item)

    def _filter(self, change_set: SettledChangeSet) -> SettledChangeSet:
        """Drop entries the current config excludes, and build outputs.

        Build outputs are synced explicitly after a build, so seeing them
        change on the host must not start another round.
        """
        config = self.session.config
        root = self.session.project_path
        outputs = self._build_output_paths()
        kept = {}
        for path, entry in change_set.entries.items():
            if any(path == output or output in path.parents for output in outputs):
                continue
            try:
                rel = path.relative_to(root).as_posix()
            except ValueError:
                continue
            if is_included(rel, config.include_patterns, config.exclude_patterns, entry.is_dir):
                kept[path] = entry
        return SettledChangeSet(entries=kept, created_at=change_set.created_at)

    async def _on_settled(self, change_set: SettledChangeSet | None) -> None:
        if change_set is None:
            return
        change_set = self._filter(change_set)
        if change_set.is_empty:
            return

        session = self.session
        session.metrics.total_changes += len(change_set)
        session.watch_stats.change_sets += 1
        await self._record(
            ActivityType.CHANGES_DETECTED,
            f"{len(change_set)} paths changed",
            changed=len(change_set.changed_paths),
            deleted=len(change_set.deleted_paths),
            paths=[str(p) for p in sorted(change_set.entries)[:ACTIVITY_PATH_LIMIT]],
        )

        needs_build = bool(session.build_command) and self.build_trigger.should_build(
            change_set, session.config, session.project_info, root=session.project_path
        )

        if self._build_task is not None:
            self._deferred = (self._deferred or SettledChangeSet()).merge(change_set)
            if needs_build and not self._pending_rebuild:
                self._pending_rebuild = True
                await self._record(ActivityType.BUILD_QUEUED, "Rebuild queued behind the running build")
            return

        if needs_build:
            unsynced, self._unsynced = self._unsynced, None
            self._deferred = (unsynced or SettledChangeSet()).merge(change_set)
            await self._start_build()
        else:
            await self._sync(change_set)

    # -- build --------------------------------------------------------------

    def _container_workdir(self) -> str:
        mapping = resolve_mapping(self.session.project_path, self.session.sync_mappings)
        if mapping is None:
            return DEFAULT_CONTAINER_PATH
        return map_path(self.session.project_path, mapping)

    async def _start_build(self) -> None:
        session = self.session
        command = list(session.build_command)
        session.status = SessionStatus.BUILDING
        await self._record(ActivityType.BUILD_STARTED, f"Building: {' '.join(command)}", command=command)

        options = BuildOptions(
            working_dir=session.project_path,
            timeout_seconds=session.build_timeout_seconds,
            in_container=session.build_in_container,
            container_id=session.container_id,
            container_workdir=self._container_workdir(),
        )
        self._build_task = asyncio.create_task(
            self.build_trigger.execute_build(session.project_path, command, options),
            name=f"hotreload-build-{self.id}",
        )

    async def _on_build_finished(self, task: asyncio.Task[BuildResult]) -> None:
        session = self.session
        try:
            result = task.result()
        except Exception as e:
            logger.exception(f"[{self.id}] Build task raised")
            result = BuildResult(success=False, command=list(session.build_command), error=str(e))

        session.metrics.record_build(result)
        session.last_build = result

        if result.success:
            await self._record(
                ActivityType.BUILD_SUCCEEDED,
                f"Build succeeded in {result.duration_seconds:.2f}s",
                duration_seconds=result.duration_seconds,
            )
        else:
            session.status = SessionStatus.ERROR
            await self._record(
                ActivityType.BUILD_FAILED,
                f"Build failed: {result.error or 'unknown error'}",
                ActivityLevel.ERROR,
                exit_code=result.exit_code,
                timed_out=result.timed_out,
                output=result.output[-2000:],
            )

        if self._pending_rebuild:
            self._pending_rebuild = False
            await self._start_build()
            return

        change_set, self._deferred = self._deferred, None
        if result.success:
            # An in-container build leaves its outputs in the container already
            outputs = [] if session.build_in_container else self._build_outputs()
            await self._sync(change_set or SettledChangeSet(), extra_paths=outputs)
        else:
            self._unsynced = change_set
            session.status = SessionStatus.WATCHING

    def _build_output_paths(self) -> list[Path]:
        info = self.session.project_info
        if info is None:
            return []
        return [self.session.project_path / output for output in info.build_outputs]

    def _build_outputs(self) -> list[Path]:
        return [path for path in self._build_output_paths() if path.exists()]

    # -- sync ---------------------------------------------------------------

    async def _sync(self, change_set: SettledChangeSet, extra_paths: list[Path] | None = None) -> None:
        session = self.session
        extra_paths = extra_paths or []
        options = SyncOptions(delete_extraneous=session.delete_extraneous)

        if not session.config.enable_sync or not session.sync_mappings:
            session.status = SessionStatus.WATCHING
            return
        if not self.container_sync.plan(session.sync_mappings, change_set, options, extra_paths):
            logger.debug(f"[{self.id}] Nothing to sync")
            session.status = SessionStatus.WATCHING
            return

        session.status = SessionStatus.SYNCING
        await self._record(ActivityType.SYNC_STARTED, f"Syncing into {session.container_id}")

        try:
            stats = await self.container_sync.sync(
                session.container_id,
                session.sync_mappings,
                change_set,
                options,
                extra_paths=extra_paths,
            )
        except SyncError as e:
            failed = SyncStats(
                failed_syncs=len(e.failures),
                errors=[
                    SyncFailure(host_path=str(f.host_path), container_path=f.container_path, error=f.reason)
                    for f in e.failures
                ],
                last_sync=utc_now(),
            )
            session.sync_stats.absorb(failed)
            session.status = SessionStatus.ERROR
            await self._record(ActivityType.SYNC_FAILED, str(e), ActivityLevel.ERROR, failures=len(e.failures))
            session.status = SessionStatus.WATCHING
            return

        session.sync_stats.absorb(stats)
        session.metrics.record_sync(stats)
        level = ActivityLevel.WARNING if stats.errors else ActivityLevel.INFO
        await self._record(
            ActivityType.SYNC_COMPLETED,
            f"Synced {len(stats.files_synced)} files ({stats.bytes_transferred} bytes)"
            + (f", {len(stats.errors)} failed" if stats.errors else ""),
            level,
            files_synced=stats.files_synced,
            files_deleted=stats.files_deleted,
            bytes_transferred=stats.bytes_transferred,
        )
        session.status = SessionStatus.WATCHING

    # -- activity -----------------------------------------------------------

    async def _record(
        self,
        activity_type: ActivityType,
        message: str,
        level: ActivityLevel = ActivityLevel.INFO,
        **data,
    ) -> ActivityEvent:
        event = ActivityEvent(type=activity_type, message=message, level=level, data=data)
        self._activity.append(event)
        self.session.last_activity = event.timestamp
        logger.log(_LOG_LEVELS[level], f"[{self.id}] {message}")

        if self.event_bus is not None:
            await self.event_bus.emit(EventType.ACTIVITY, data=event.model_dump(mode="json"), session_id=self.id)
        return event

    @property
    def activity(self) -> list[ActivityEvent]:
        return list(self._activity)

    # -- control ------------------------------------------------------------

    async def update_config(self, options: HotReloadOptions) -> list[str]:
        """Apply the set fields of ``options`` without restarting the watcher.

        Returns:
            Names of the fields that were applied.
        """
        session = self.session
        watch_changes = {
            name: copy.deepcopy(getattr(options, name)) for name in WATCH_FIELDS if getattr(options, name) is not None
        }
        session_changes = {
            name: copy.deepcopy(getattr(options, name)) for name in SESSION_FIELDS if getattr(options, name) is not None
        }
        if not watch_changes and not session_changes:
            return []

        if watch_changes:
            session.config = WatchConfig.model_validate({**session.config.model_dump(), **watch_changes})
            self.watcher.config = session.config
            self.debouncer.delay_ms = session.config.debounce_delay_ms
            self.debouncer.max_wait_ms = session.config.max_wait_ms

        for name, value in session_changes.items():
            setattr(session, name, value)

        applied = sorted([*watch_changes, *session_changes])
        await self._record(ActivityType.CONFIG_UPDATED, f"Updated {', '.join(applied)}", fields=applied)
        return applied

    def _uptime(self) -> float:
        return max(0.0, (utc_now() - self.session.start_time).total_seconds())

    def snapshot(self) -> HotReloadSession:
        """Deep copy of the session; changes to it never reach the live session."""
        snap = self.session.model_copy(deep=True)
        snap.recent_activity = [event.model_copy(deep=True) for event in self._activity]
        snap.metrics.uptime_seconds = self._uptime()
        return snap

    def status(self, activity_limit: int = STATUS_ACTIVITY_LIMIT) -> HotReloadStatus:
        session = self.session
        config = session.config

        if session.status in (SessionStatus.STOPPING, SessionStatus.STOPPED):
            watching = "stopped"
        elif self._pump_task is not None and not self._pump_task.done():
            watching = "active"
        else:
            watching = "inactive"

        if not config.enable_build or not session.build_command:
            build = "disabled"
        elif self._pending_rebuild:
            build = "pending-rebuild"
        elif self._build_task is not None:
            build = "building"
        elif session.last_build is not None and not session.last_build.success:
            build = "failed"
        else:
            build = "idle"

        if not config.enable_sync or not session.sync_mappings:
            sync = "disabled"
        elif session.status == SessionStatus.SYNCING:
            sync = "syncing"
        else:
            sync = "idle"

        metrics = session.metrics.model_copy(deep=True)
        metrics.uptime_seconds = self._uptime()
        recent = list(self._activity)[-activity_limit:] if activity_limit > 0 else []
        return HotReloadStatus(
            session_id=session.id,
            status=session.status,
            watching_status=watching,
            build_status=build,
            sync_status=sync,
            recent_activity=[event.model_copy(deep=True) for event in recent],
            metrics=metrics,
            last_build=session.last_build.model_copy(deep=True) if session.last_build else None,
        )

    async def stop(self, grace: float = 5.0) -> None:
        """Stop the session, waiting at most ``grace`` seconds for a clean shutdown.

        Concurrent callers share one shutdown.
        """
        if self._stop_task is None:
            self._stop_task = asyncio.create_task(self._shutdown(grace), name=f"hotreload-stop-{self.id}")
        await asyncio.shield(self._stop_task)

    async def _shutdown(self, grace: float) -> None:
        self.session.status = SessionStatus.STOPPING
        await self._record(ActivityType.SESSION_STOPPING, "Stopping hot reload")

        tasks = [t for t in (self._run_task, self._pump_task) if t is not None and not t.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            _, pending = await asyncio.wait(tasks, timeout=grace)
            if pending:
                logger.warning(f"[{self.id}] Shutdown exceeded {grace}s, reclaiming resources")

        # Force-reclaim whatever did not exit in time
        if self._build_task is not None:
            self._build_task.cancel()
            self._build_task = None
        while not self._queue.empty():
            self._queue.get_nowait()
        self._pending_rebuild = False

        self.session.status = SessionStatus.STOPPED
        await self._record(ActivityType.SESSION_STOPPED, "Hot reload stopped")
