"""Event read routes: session event list, today's events, tab views, per-event derivations."""
import logging
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query, status

from labcalendar.dependencies import get_bus, get_current_user, get_event_store, get_lab_api, get_session_id
from labcalendar.schemas.event import (
    CurrentUser,
    Discipline,
    Event,
    PendingChangesOut,
    SlotStatusOut,
    StockForecastOut,
)
from labcalendar.services import queries, views
from labcalendar.services.event_bus import CalendarRefetch, EventBus
from labcalendar.services.event_store import EventStore
from labcalendar.services.lab_api import LabApiClient
from labcalendar.services.optimistic import EventNotLoaded
from labcalendar.services.workflow import ensure_can_edit_event

logger = logging.getLogger(__name__)
router = APIRouter()


async def _ensure_loaded(store: EventStore, api: LabApiClient, refresh: bool = False) -> None:
    """Fetch both disciplines once per session; afterwards the session list is authoritative."""
    if len(store) and not refresh:
        return
    events = []
    for discipline in Discipline:
        events.extend(await api.list_events(discipline))
    store.replace_all(events)
    logger.info("Loaded %d events into session store", len(events))


async def load_event(event_id: str, store: EventStore, api: LabApiClient) -> Event:
    await _ensure_loaded(store, api)
    event = store.get(event_id)
    if event is None:
        raise EventNotLoaded(f"Event {event_id} not found")
    return event


@router.get("/", response_model=list[Event])
async def list_events(
    discipline: Optional[Discipline] = Query(None),
    refresh: bool = Query(False),
    include_cancelled: bool = Query(True),
    store: EventStore = Depends(get_event_store),
    api: LabApiClient = Depends(get_lab_api),
):
    """Events of the session, ordered by their first active slot (list tab)."""
    await _ensure_loaded(store, api, refresh)
    events = store.all()
    if discipline:
        events = [e for e in events if e.discipline == discipline]
    return views.list_view(events, include_cancelled=include_cancelled)


@router.get("/today", response_model=list[Event])
async def today_events(
    store: EventStore = Depends(get_event_store),
    api: LabApiClient = Depends(get_lab_api),
):
    await _ensure_loaded(store, api)
    return queries.get_today_events(store.all())


@router.get("/daily", response_model=list[views.ScheduledSlot])
async def daily_view(
    day: date = Query(...),
    store: EventStore = Depends(get_event_store),
    api: LabApiClient = Depends(get_lab_api),
):
    await _ensure_loaded(store, api)
    return views.daily_view(store.all(), day)


@router.get("/weekly", response_model=views.WeekView)
async def weekly_view(
    day: date = Query(...),
    store: EventStore = Depends(get_event_store),
    api: LabApiClient = Depends(get_lab_api),
):
    await _ensure_loaded(store, api)
    return views.weekly_view(store.all(), day)


@router.get("/conflicts")
async def room_conflicts(
    store: EventStore = Depends(get_event_store),
    api: LabApiClient = Depends(get_lab_api),
):
    """Room double-bookings among the session's events (informational)."""
    await _ensure_loaded(store, api)
    return [
        {
            "room": c.room,
            "firstEventId": c.first_event_id,
            "firstSlotId": c.first_slot_id,
            "secondEventId": c.second_event_id,
            "secondSlotId": c.second_slot_id,
        }
        for c in queries.find_conflicts(store.all())
    ]


@router.get("/{event_id}", response_model=Event)
async def get_event(
    event_id: str,
    store: EventStore = Depends(get_event_store),
    api: LabApiClient = Depends(get_lab_api),
):
    return await load_event(event_id, store, api)


@router.delete("/{event_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_event(
    event_id: str,
    session_id: str = Depends(get_session_id),
    store: EventStore = Depends(get_event_store),
    api: LabApiClient = Depends(get_lab_api),
    bus: EventBus = Depends(get_bus),
    user: CurrentUser = Depends(get_current_user),
):
    event = await load_event(event_id, store, api)
    ensure_can_edit_event(event, user)
    await api.delete_event(event_id, event.discipline)
    store.remove(event_id)
    bus.publish(CalendarRefetch(session_id=session_id, event_id=event_id, reason="delete"))
    logger.info("Event %s deleted by %s", event_id, user.id)


@router.get("/{event_id}/stock-forecast", response_model=list[StockForecastOut])
async def stock_forecast(
    event_id: str,
    store: EventStore = Depends(get_event_store),
    api: LabApiClient = Depends(get_lab_api),
):
    """Remaining stock per chemical or consumable after this event's request. Advisory only."""
    event = await load_event(event_id, store, api)
    return queries.event_stock_forecast(event)


@router.get("/{event_id}/pending-changes", response_model=PendingChangesOut)
async def pending_changes(
    event_id: str,
    store: EventStore = Depends(get_event_store),
    api: LabApiClient = Depends(get_lab_api),
    user: CurrentUser = Depends(get_current_user),
):
    event = await load_event(event_id, store, api)
    return PendingChangesOut(
        event_id=event.id,
        has_pending_changes=queries.has_pending_changes(event, user.id, user.email),
        slots=[
            SlotStatusOut(slot_id=slot.id, status=queries.get_slot_status(slot, event))
            for slot in queries.get_active_time_slots(event)
        ],
    )
