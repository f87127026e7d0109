"""Read-only derivations over events: current schedule, ownership, today's events, stock forecast."""
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterable, Literal, Optional

import pytz

from labcalendar.config import settings
from labcalendar.schemas.event import Event, EventState, StockForecastOut, TimeSlot
from labcalendar.schemas.resource import CatalogResource, CustomResource


def get_active_time_slots(event: Event) -> list[TimeSlot]:
    """The event's current schedule: slots whose status is ``active``."""
    return [slot for slot in event.time_slots if slot.is_active]


def is_creator(event: Event, user_id: Optional[str] = None, email: Optional[str] = None) -> bool:
    """True when the user's id or email is the event's ``created_by``."""
    if not event.created_by:
        return False
    if user_id and event.created_by == user_id:
        return True
    if email and event.created_by == email:
        return True
    return False


def _local_day(moment: datetime, tz):
    if moment.tzinfo is None:
        moment = pytz.utc.localize(moment)
    return moment.astimezone(tz).date()


def get_today_events(
    events: Iterable[Event],
    now: Optional[datetime] = None,
    tz_name: Optional[str] = None,
) -> list[Event]:
    """Events with at least one active slot starting on the lab's current calendar day."""
    tz = pytz.timezone(tz_name or settings.LAB_TIMEZONE)
    today = _local_day(now or datetime.now(timezone.utc), tz)
    return [
        event for event in events
        if any(_local_day(slot.start_date, tz) == today for slot in get_active_time_slots(event))
    ]


def _intervals(slots: Iterable[TimeSlot]) -> set[tuple[datetime, datetime]]:
    return {(slot.start_date, slot.end_date) for slot in slots}


def has_pending_proposal(event: Event) -> bool:
    """Active slots differ from the last validated schedule."""
    if not event.actuel_time_slots:
        return False
    return _intervals(get_active_time_slots(event)) != _intervals(event.actuel_time_slots)


def has_pending_changes(event: Event, user_id: Optional[str] = None, email: Optional[str] = None) -> bool:
    """Pending proposal awaiting approval; a creator's own PENDING edit does not count."""
    if event.state == EventState.pending and is_creator(event, user_id, email):
        return False
    return has_pending_proposal(event)


def find_corresponding_actual_slot(proposed: TimeSlot, actual_slots: list[TimeSlot]) -> Optional[TimeSlot]:
    if proposed.referent_actuel_time_id:
        for slot in actual_slots:
            if slot.id == proposed.referent_actuel_time_id:
                return slot
    for slot in actual_slots:
        if slot.id == proposed.id:
            return slot
    return None


def get_slot_status(proposed: TimeSlot, event: Event) -> Literal["new", "pending", "approved"]:
    actual = find_corresponding_actual_slot(proposed, event.actuel_time_slots)
    if actual is None:
        return "new"
    if actual.start_date == proposed.start_date and actual.end_date == proposed.end_date:
        return "approved"
    return "pending"


def stock_forecast(resource) -> StockForecastOut:
    """Stock left after this event's request. Advisory only; never blocks a save.

    ``stock_after_request = (quantity_prevision ?? quantity) - requested_quantity``;
    insufficient when negative, below minimum when under ``min_quantity``.
    Custom resources have no stock accounting.
    """
    requested = resource.requested_quantity or 0
    if isinstance(resource, CustomResource):
        return StockForecastOut(id=resource.id, name=resource.name, unit=resource.unit, requested=requested)

    available = resource.available_stock
    if available is None:
        return StockForecastOut(id=resource.id, name=resource.name, unit=resource.unit, requested=requested)
    after = available - requested
    return StockForecastOut(
        id=resource.id,
        name=resource.name,
        unit=resource.unit,
        available=available,
        requested=requested,
        stock_after_request=after,
        insufficient=after < 0,
        below_minimum=after < (resource.min_quantity or 0),
    )


def event_stock_forecast(event: Event) -> list[StockForecastOut]:
    """Forecast for every chemical (chemistry) or consumable (physics) of the event."""
    return [stock_forecast(resource) for resource in event.consumables]


def catalog_requests(event: Event) -> list[CatalogResource]:
    """Consumables that draw on the inventory (custom entries excluded)."""
    return [resource for resource in event.consumables if isinstance(resource, CatalogResource)]


@dataclass(frozen=True)
class SlotConflict:
    room: str
    first_event_id: str
    first_slot_id: str
    second_event_id: str
    second_slot_id: str


def find_conflicts(events: Iterable[Event]) -> list[SlotConflict]:
    """Overlapping active slots of different, non-cancelled events booked in the same room."""
    booked = []
    for event in events:
        if event.state == EventState.cancelled or not event.room:
            continue
        for slot in get_active_time_slots(event):
            booked.append((event, slot))
    booked.sort(key=lambda pair: pair[1].start_date)

    conflicts = []
    for i, (event, slot) in enumerate(booked):
        for other_event, other_slot in booked[i + 1:]:
            if other_slot.start_date >= slot.end_date:
                break
            if other_event.id == event.id or other_event.room != event.room:
                continue
            conflicts.append(SlotConflict(
                room=event.room,
                first_event_id=event.id,
                first_slot_id=slot.id,
                second_event_id=other_event.id,
                second_slot_id=other_slot.id,
            ))
    return conflicts
