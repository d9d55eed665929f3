"""Event type definitions for the event bus."""

from datetime import UTC, datetime
from enum import Enum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, Field


class EventType(str, Enum):
    """Types of events that can be broadcast."""

    # Session lifecycle events
    SESSION_STARTED = "hotreload.session.started"
    SESSION_STOPPED = "hotreload.session.stopped"
    CONFIG_UPDATED = "hotreload.config.updated"

    # Pipeline activity (mirrors a session's activity log)
    ACTIVITY = "hotreload.activity"


class Event(BaseModel):
    """A broadcast event."""

    id: str = Field(default_factory=lambda: uuid4().hex[:12])
    type: EventType
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
    data: dict[str, Any] = Field(default_factory=dict)
    session_id: str | None = None  # For filtering by session

    def to_json(self) -> dict:
        """Convert to JSON-serializable dict."""
        return {
            "id": self.id,
            "type": self.type.value,
            "timestamp": self.timestamp.isoformat(),
            "data": self.data,
            "session_id": self.session_id,
        }
