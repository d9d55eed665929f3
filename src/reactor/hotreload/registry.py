"""Process-wide registry of live hot-reload sessions."""

import logging
import threading
from typing import Generic, TypeVar
from uuid import uuid4

from reactor.hotreload.errors import SessionNotFoundError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SessionRegistry(Generic[T]):
    """Thread-safe map of session ID to session handle.

    IDs handed out by ``new_id`` are never reused for the lifetime of the
    registry, even after the session is removed.
    """

    def __init__(self) -> None:
        self._sessions: dict[str, T] = {}
        self._issued: set[str] = set()
        self._lock = threading.Lock()

    def new_id(self) -> str:
        with self._lock:
            while True:
                session_id = f"hr-{uuid4().hex[:12]}"
                if session_id not in self._issued:
                    self._issued.add(session_id)
                    return session_id

    def add(self, session_id: str, session: T) -> None:
        with self._lock:
            if session_id in self._sessions:
                raise ValueError(f"Session {session_id} already registered")
            self._issued.add(session_id)
            self._sessions[session_id] = session
        logger.debug(f"Registered session {session_id}")

    def get(self, session_id: str) -> T:
        """Look up a session.

        Raises:
            SessionNotFoundError: If no such session is registered.
        """
        with self._lock:
            try:
                return self._sessions[session_id]
            except KeyError:
                raise SessionNotFoundError(session_id) from None

    def remove(self, session_id: str) -> T:
        with self._lock:
            try:
                session = self._sessions.pop(session_id)
            except KeyError:
                raise SessionNotFoundError(session_id) from None
        logger.debug(f"Removed session {session_id}")
        return session

    def list(self) -> list[T]:
        with self._lock:
            return list(self._sessions.values())

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        with self._lock:
            return session_id in self._sessions
