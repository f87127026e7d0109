"""Groupings behind the daily, weekly and list tabs."""
from datetime import date, datetime, timedelta
from typing import Iterable, Optional

import pytz

from labcalendar.config import settings
from labcalendar.schemas.base import LabModel
from labcalendar.schemas.event import Event, EventState, EventType
from labcalendar.services.queries import get_active_time_slots, get_slot_status


class ScheduledSlot(LabModel):
    """One active slot of an event, placed on the lab's local calendar."""

    event_id: str
    title: str
    type: EventType
    state: EventState
    room: Optional[str] = None
    slot_id: str
    day: date
    start: datetime
    end: datetime
    slot_status: str


class WeekView(LabModel):
    week_start: date
    days: dict[date, list[ScheduledSlot]]


def _localize(moment: datetime, tz) -> datetime:
    if moment.tzinfo is None:
        moment = pytz.utc.localize(moment)
    return moment.astimezone(tz)


def scheduled_slots(events: Iterable[Event], tz_name: Optional[str] = None) -> list[ScheduledSlot]:
    tz = pytz.timezone(tz_name or settings.LAB_TIMEZONE)
    placed = []
    for event in events:
        for slot in get_active_time_slots(event):
            start = _localize(slot.start_date, tz)
            placed.append(ScheduledSlot(
                event_id=event.id,
                title=event.title,
                type=event.type,
                state=event.state,
                room=event.room,
                slot_id=slot.id,
                day=start.date(),
                start=start,
                end=_localize(slot.end_date, tz),
                slot_status=get_slot_status(slot, event),
            ))
    placed.sort(key=lambda item: (item.start, item.event_id))
    return placed


def daily_view(events: Iterable[Event], day: date, tz_name: Optional[str] = None) -> list[ScheduledSlot]:
    return [item for item in scheduled_slots(events, tz_name) if item.day == day]


def week_start(day: date) -> date:
    return day - timedelta(days=day.weekday())


def weekly_view(events: Iterable[Event], day: date, tz_name: Optional[str] = None) -> WeekView:
    """Monday-anchored week containing ``day``; every weekday present, even when empty."""
    monday = week_start(day)
    days = {monday + timedelta(days=offset): [] for offset in range(7)}
    for item in scheduled_slots(events, tz_name):
        if item.day in days:
            days[item.day].append(item)
    return WeekView(week_start=monday, days=days)


def list_view(events: Iterable[Event], include_cancelled: bool = True) -> list[Event]:
    """Events ordered by their first active slot; events with none come last."""
    def first_start(event: Event):
        starts = [_localize(slot.start_date, pytz.utc) for slot in get_active_time_slots(event)]
        return (0, min(starts)) if starts else (1, datetime.max.replace(tzinfo=pytz.utc))

    selected = [e for e in events if include_cancelled or e.state != EventState.cancelled]
    return sorted(selected, key=first_start)
