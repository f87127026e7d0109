"""Optimistic update with rollback, shared by every mutation on an event.

Apply the change locally, send the request, and on failure put the
pre-change snapshot back and tell the user. No retry.
"""
import logging
from typing import Awaitable, Callable, Optional

from labcalendar.schemas.event import Event
from labcalendar.services.event_bus import CalendarRefetch, EventBus, Notice
from labcalendar.services.event_store import EventStore
from labcalendar.services.lab_api import LabApiError

logger = logging.getLogger(__name__)


class EventNotLoaded(LookupError):
    """The event is not in the session's event list."""


async def optimistic_update(
    store: EventStore,
    event_id: str,
    apply: Callable[[Event], Event],
    request: Callable[[Event, Event], Awaitable[Event]],
    bus: EventBus,
    session_id: Optional[str] = None,
    action: str = "update",
) -> Event:
    """Run one optimistic transaction on ``event_id``.

    ``apply(snapshot)`` returns the local result; ``request(snapshot, local)``
    performs the call and returns the server's version of the event. Errors
    raised by ``apply`` leave the store untouched.
    """
    snapshot = store.get(event_id)
    if snapshot is None:
        raise EventNotLoaded(f"Event {event_id} is not loaded")

    local = apply(snapshot)
    store.put(local)
    try:
        confirmed = await request(snapshot, local)
    except Exception as exc:
        store.put(snapshot)
        message = exc.message if isinstance(exc, LabApiError) else str(exc)
        logger.warning("Rolled back %s on event %s: %s", action, event_id, message)
        bus.publish(Notice(
            session_id=session_id,
            level="error",
            message=f"Could not {action} the event: {message}",
        ))
        raise

    store.put(confirmed)
    bus.publish(CalendarRefetch(session_id=session_id, event_id=event_id, reason=action))
    return confirmed
