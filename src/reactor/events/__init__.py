"""Event system for observing hot-reload sessions."""

from reactor.events.bus import EventBus
from reactor.events.types import Event, EventType

__all__ = ["Event", "EventBus", "EventType"]
