"""Debouncing and coalescing of raw file events.

Events accumulate until no new event has arrived for ``delay_ms``. The
timer restarts on every event, so a file that never stops changing never
settles unless ``max_wait_ms`` caps the wait.
"""

import logging
import time
from collections.abc import Callable
from pathlib import Path

from reactor.hotreload.enums import ChangeState, FileEventType
from reactor.hotreload.models import ChangeEntry, FileEvent, SettledChangeSet

logger = logging.getLogger(__name__)


class Debouncer:
    """Collapses a burst of events into one SettledChangeSet.

    Per path, the last event decides: a final delete records the path as
    deleted, anything else records it as modified with the latest size.
    A rename is a delete of the old path plus a change to the new one.
    """

    def __init__(
        self,
        delay_ms: int = 500,
        max_wait_ms: int | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.delay_ms = delay_ms
        self.max_wait_ms = max_wait_ms
        self._clock = clock
        self._pending: dict[Path, ChangeEntry] = {}
        self._first_event_at: float | None = None
        self._last_event_at: float | None = None

    def _put(self, path: Path, state: ChangeState, size: int, is_dir: bool) -> None:
        self._pending[path] = ChangeEntry(path=path, state=state, size=size, is_dir=is_dir)

    def add(self, event: FileEvent) -> None:
        """Record an event and restart the debounce timer."""
        if event.type == FileEventType.RENAMED:
            if event.old_path is not None:
                self._put(event.old_path, ChangeState.DELETED, 0, event.is_dir)
            self._put(event.path, ChangeState.MODIFIED, event.size, event.is_dir)
        elif event.type == FileEventType.DELETED:
            self._put(event.path, ChangeState.DELETED, 0, event.is_dir)
        else:
            self._put(event.path, ChangeState.MODIFIED, event.size, event.is_dir)

        now = self._clock()
        if self._first_event_at is None:
            self._first_event_at = now
        self._last_event_at = now

    @property
    def pending(self) -> int:
        """Number of distinct paths waiting to settle."""
        return len(self._pending)

    def due_in(self) -> float | None:
        """Seconds until the pending batch settles, or None if nothing is pending."""
        if self._last_event_at is None or self._first_event_at is None:
            return None

        now = self._clock()
        remaining = self._last_event_at + self.delay_ms / 1000 - now
        if self.max_wait_ms is not None:
            remaining = min(remaining, self._first_event_at + self.max_wait_ms / 1000 - now)
        return max(0.0, remaining)

    def settle(self) -> SettledChangeSet | None:
        """Emit the pending batch and reset. Returns None if nothing is pending."""
        if not self._pending:
            self._first_event_at = None
            self._last_event_at = None
            return None

        change_set = SettledChangeSet(entries=self._pending)
        logger.debug(f"Settled {len(change_set)} changed paths")
        self._pending = {}
        self._first_event_at = None
        self._last_event_at = None
        return change_set
