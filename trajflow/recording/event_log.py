"""In-memory log of human-readable session events."""

from __future__ import annotations

import logging
import time
from collections import Counter, deque

from trajflow.recording.models import SessionEvent

logger = logging.getLogger(__name__)

_LEVELS = {
    "failure": logging.WARNING,
    "processing": logging.DEBUG,
}


class EventLog:
    """Keeps the most recent session events and mirrors them to the logger."""

    def __init__(self, max_events: int = 500):
        self._events: deque[SessionEvent] = deque(maxlen=max_events)
        self._next_id = 1

    def log(self, kind: str, message: str, **data) -> SessionEvent:
        """Record an event. Returns the stored SessionEvent."""
        event = SessionEvent(
            event_id=self._next_id,
            timestamp=time.time(),
            kind=kind,
            message=message,
            data=data,
        )
        self._next_id += 1
        self._events.append(event)
        logger.log(_LEVELS.get(kind, logging.INFO), "%s", message)
        return event

    def get_recent(self, limit: int = 50) -> list[SessionEvent]:
        """Most recent events first."""
        return list(reversed(self._events))[:limit]

    def get_stats(self) -> dict:
        by_kind = Counter(e.kind for e in self._events)
        return {"total": len(self._events), "by_kind": dict(by_kind)}

    def clear_all(self) -> int:
        """Drop every stored event. Returns how many were removed."""
        count = len(self._events)
        self._events.clear()
        logger.info("Cleared %d events from history", count)
        return count
