"""Tests for the daily / weekly / list tab groupings."""
from datetime import date

from labcalendar.schemas.event import Event
from labcalendar.services import views
from tests.conftest import make_event, make_slot


def _events():
    return [
        Event.model_validate(make_event(event_id="b", slots=[
            make_slot("B1", "2026-10-20T12:00:00Z", "2026-10-20T13:00:00Z"),
        ])),
        Event.model_validate(make_event(event_id="a", slots=[
            make_slot("A1", "2026-10-20T06:00:00Z", "2026-10-20T08:00:00Z"),
            make_slot("A2", "2026-10-25T09:00:00Z", "2026-10-25T10:00:00Z"),
            make_slot("A0", "2026-10-19T06:00:00Z", "2026-10-19T07:00:00Z", status="deleted"),
        ])),
        Event.model_validate(make_event(event_id="empty", slots=[])),
    ]


def test_daily_view_sorted_by_start():
    slots = views.daily_view(_events(), date(2026, 10, 20), tz_name="Europe/Paris")
    assert [s.slot_id for s in slots] == ["A1", "B1"]
    assert slots[0].start.hour == 8  # local time


def test_weekly_view_is_monday_anchored():
    week = views.weekly_view(_events(), date(2026, 10, 22), tz_name="Europe/Paris")
    assert week.week_start == date(2026, 10, 19)
    assert len(week.days) == 7
    assert [s.slot_id for s in week.days[date(2026, 10, 20)]] == ["A1", "B1"]
    assert [s.slot_id for s in week.days[date(2026, 10, 25)]] == ["A2"]
    assert week.days[date(2026, 10, 19)] == []


def test_list_view_orders_by_first_active_slot():
    ordered = views.list_view(_events())
    assert [e.id for e in ordered] == ["a", "b", "empty"]


def test_list_view_can_hide_cancelled():
    events = _events() + [Event.model_validate(make_event(event_id="x", state="CANCELLED"))]
    assert "x" not in [e.id for e in views.list_view(events, include_cancelled=False)]
