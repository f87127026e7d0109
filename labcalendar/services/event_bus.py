"""In-process publish/subscribe with typed topics.

Replaces ad-hoc window-level events between unrelated parts of the UI. One
bus lives on the application state and is handed to services through
FastAPI dependencies; nothing subscribes through globals.
"""
import enum
import logging
import uuid
from collections import defaultdict, deque
from datetime import datetime, timezone
from typing import Callable, Optional

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


class Topic(str, enum.Enum):
    calendar_refetch = "calendar.refetch"
    notice = "ui.notice"
    upload_status = "upload.status"


class BusMessage(BaseModel):
    topic: Topic
    message_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    session_id: Optional[str] = None


class CalendarRefetch(BusMessage):
    """Local state changed; views should reload the event list."""

    topic: Topic = Topic.calendar_refetch
    event_id: Optional[str] = None
    reason: str = ""


class Notice(BusMessage):
    """Transient, user-facing text (snackbar or alert)."""

    topic: Topic = Topic.notice
    level: str = "info"  # info | warning | error
    message: str


class UploadStatusChanged(BusMessage):
    topic: Topic = Topic.upload_status
    upload_id: str
    file_name: str
    status: str
    error: Optional[str] = None


Handler = Callable[[BusMessage], None]


class EventBus:
    def __init__(self) -> None:
        self._subscribers: dict[Topic, list[Handler]] = defaultdict(list)

    def subscribe(self, topic: Topic, handler: Handler) -> Callable[[], None]:
        """Register ``handler`` for ``topic``; returns a callable that unsubscribes it."""
        self._subscribers[topic].append(handler)

        def _unsubscribe() -> None:
            if handler in self._subscribers[topic]:
                self._subscribers[topic].remove(handler)

        return _unsubscribe

    def publish(self, message: BusMessage) -> int:
        """Deliver ``message`` to every subscriber of its topic. Returns the delivery count."""
        delivered = 0
        for handler in list(self._subscribers[message.topic]):
            try:
                handler(message)
                delivered += 1
            except Exception:
                logger.exception("Subscriber %r failed on %s", handler, message.topic.value)
        return delivered


class NoticeBoard:
    """Keeps the latest bus messages per session until the front end collects them.

    Covers notices, refetch requests and upload progress; the front end polls
    ``/api/notices`` in place of listening on window events.
    """

    TOPICS = (Topic.notice, Topic.calendar_refetch, Topic.upload_status)

    def __init__(self, bus: EventBus, max_per_session: int = 50) -> None:
        self._messages: dict[str, deque] = defaultdict(lambda: deque(maxlen=max_per_session))
        self._unsubscribers = [bus.subscribe(topic, self._on_message) for topic in self.TOPICS]

    def _on_message(self, message: BusMessage) -> None:
        # Nobody can collect a message without a session.
        if message.session_id:
            self._messages[message.session_id].append(message)

    def drain(self, session_id: str) -> list[BusMessage]:
        return list(self._messages.pop(session_id, ()))

    def forget(self, session_id: str) -> None:
        self._messages.pop(session_id, None)

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._messages

    def close(self) -> None:
        for unsubscribe in self._unsubscribers:
            unsubscribe()
