"""In-memory event list per UI session.

Once fetched, a session's list is the source of truth for that session.
Edits made elsewhere are not pushed here; local mutations publish a
``calendar.refetch`` message so views reload.
"""
import logging
import time
from collections import OrderedDict
from typing import Callable, Iterable, Optional

from labcalendar.schemas.event import Event

logger = logging.getLogger(__name__)


class EventStore:
    def __init__(self) -> None:
        self._events: "OrderedDict[str, Event]" = OrderedDict()

    def replace_all(self, events: Iterable[Event]) -> None:
        self._events = OrderedDict((event.id, event) for event in events)

    def get(self, event_id: str) -> Optional[Event]:
        return self._events.get(event_id)

    def put(self, event: Event) -> None:
        """Insert or overwrite; the last write wins."""
        self._events[event.id] = event

    def remove(self, event_id: str) -> Optional[Event]:
        return self._events.pop(event_id, None)

    def all(self) -> list[Event]:
        return list(self._events.values())

    def __len__(self) -> int:
        return len(self._events)


class SessionStores:
    """One ``EventStore`` per session id, dropped once the session has been idle for ``idle_seconds``."""

    def __init__(self, idle_seconds: Optional[float] = None, clock: Callable[[], float] = time.monotonic) -> None:
        self._stores: dict[str, EventStore] = {}
        self._last_seen: dict[str, float] = {}
        self.idle_seconds = idle_seconds
        self._clock = clock

    def for_session(self, session_id: str) -> EventStore:
        self._last_seen[session_id] = self._clock()
        if session_id not in self._stores:
            self._stores[session_id] = EventStore()
        return self._stores[session_id]

    def drop(self, session_id: str) -> None:
        self._stores.pop(session_id, None)
        self._last_seen.pop(session_id, None)

    def expire_idle(self) -> list[str]:
        """Drop idle sessions and return their ids so related state can be released too."""
        if not self.idle_seconds:
            return []
        cutoff = self._clock() - self.idle_seconds
        expired = [session_id for session_id, seen in self._last_seen.items() if seen < cutoff]
        for session_id in expired:
            self.drop(session_id)
        if expired:
            logger.info("Expired %d idle session(s)", len(expired))
        return expired

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._stores

    def __len__(self) -> int:
        return len(self._stores)
