"""Tests for read-only derivations: active slots, today's events, stock forecast, pending changes, conflicts."""
from datetime import datetime, timezone

from labcalendar.schemas.event import Event
from labcalendar.schemas.resource import CatalogResource, CustomResource
from labcalendar.services import queries
from tests.conftest import make_event, make_slot


def _event(**kwargs) -> Event:
    return Event.model_validate(make_event(**kwargs))


class TestActiveSlots:
    def test_idempotent(self):
        event = _event(slots=[
            make_slot("A", "2026-10-20T06:00:00Z", "2026-10-20T08:00:00Z"),
            make_slot("B", "2026-10-21T06:00:00Z", "2026-10-21T08:00:00Z", status="deleted"),
            make_slot("C", "2026-10-22T06:00:00Z", "2026-10-22T08:00:00Z", status="invalid"),
        ])
        once = queries.get_active_time_slots(event)
        twice = queries.get_active_time_slots(event.model_copy(update={"time_slots": once}))
        assert [s.id for s in once] == ["A"]
        assert twice == once


class TestTodayEvents:
    def test_uses_lab_local_day(self):
        # 22:30 UTC on the 19th is 00:30 on the 20th in Paris.
        late = _event(event_id="late", slots=[make_slot("L", "2026-10-19T22:30:00Z", "2026-10-19T23:30:00Z")])
        other = _event(event_id="other", slots=[make_slot("O", "2026-10-21T08:00:00Z", "2026-10-21T09:00:00Z")])
        now = datetime(2026, 10, 20, 10, 0, tzinfo=timezone.utc)

        today = queries.get_today_events([late, other], now=now, tz_name="Europe/Paris")

        assert [e.id for e in today] == ["late"]

    def test_deleted_slots_do_not_count(self):
        event = _event(slots=[make_slot("X", "2026-10-20T08:00:00Z", "2026-10-20T09:00:00Z", status="deleted")])
        now = datetime(2026, 10, 20, 10, 0, tzinfo=timezone.utc)
        assert queries.get_today_events([event], now=now, tz_name="Europe/Paris") == []


class TestStockForecast:
    def test_below_minimum_but_sufficient(self):
        resource = CatalogResource(id="CHEM_1", name="NaOH", quantity=100, min_quantity=20, requested_quantity=90)
        forecast = queries.stock_forecast(resource)
        assert forecast.stock_after_request == 10
        assert forecast.below_minimum is True
        assert forecast.insufficient is False

    def test_prevision_takes_precedence(self):
        resource = CatalogResource(id="CHEM_1", quantity=100, quantity_prevision=40, requested_quantity=50)
        forecast = queries.stock_forecast(resource)
        assert forecast.stock_after_request == -10
        assert forecast.insufficient is True

    def test_custom_entries_have_no_forecast(self):
        forecast = queries.stock_forecast(CustomResource(name="Eau distillée", requested_quantity=2))
        assert forecast.stock_after_request is None
        assert not forecast.insufficient and not forecast.below_minimum

    def test_event_forecast_uses_discipline_consumables(self):
        forecasts = queries.event_stock_forecast(_event())
        assert [f.name for f in forecasts] == ["NaOH", "Eau distillée"]
        assert [r.id for r in queries.catalog_requests(_event())] == ["CHEM_1"]


class TestPendingChanges:
    def _proposal(self, state="MOVED", created_by="u-teacher"):
        return _event(
            state=state,
            created_by=created_by,
            slots=[make_slot("TS_2", "2026-10-21T06:00:00Z", "2026-10-21T08:00:00Z", referentActuelTimeID="TS_1")],
            actuel=[make_slot("TS_1", "2026-10-20T06:00:00Z", "2026-10-20T08:00:00Z")],
        )

    def test_proposal_is_pending_for_everyone(self):
        event = self._proposal()
        assert queries.has_pending_changes(event, "u-teacher")
        assert queries.has_pending_changes(event, "u-labo")

    def test_creator_own_pending_edit_is_ignored(self):
        event = self._proposal(state="PENDING")
        assert not queries.has_pending_changes(event, "u-teacher")
        assert queries.has_pending_changes(event, "u-labo")

    def test_no_validated_schedule_means_nothing_pending(self):
        assert not queries.has_pending_changes(_event(state="MOVED"), "u-labo")

    def test_slot_status(self):
        event = self._proposal()
        proposed = event.time_slots[0]
        assert queries.get_slot_status(proposed, event) == "pending"
        same = event.actuel_time_slots[0]
        assert queries.get_slot_status(same, event) == "approved"
        fresh = proposed.model_copy(update={"id": "TS_9", "referent_actuel_time_id": None})
        assert queries.get_slot_status(fresh, event) == "new"


class TestConflicts:
    def test_overlap_in_same_room(self):
        a = _event(event_id="a", slots=[make_slot("A1", "2026-10-20T06:00:00Z", "2026-10-20T08:00:00Z")])
        b = _event(event_id="b", slots=[make_slot("B1", "2026-10-20T07:00:00Z", "2026-10-20T09:00:00Z")])
        c = _event(event_id="c", slots=[make_slot("C1", "2026-10-20T08:00:00Z", "2026-10-20T09:00:00Z")])

        conflicts = queries.find_conflicts([a, b, c])

        assert [(x.first_event_id, x.second_event_id) for x in conflicts] == [("a", "b"), ("b", "c")]
        assert conflicts[0].room == "Salle 101"

    def test_cancelled_and_other_rooms_ignored(self):
        a = _event(event_id="a", slots=[make_slot("A1", "2026-10-20T06:00:00Z", "2026-10-20T08:00:00Z")])
        b = _event(event_id="b", state="CANCELLED",
                   slots=[make_slot("B1", "2026-10-20T07:00:00Z", "2026-10-20T09:00:00Z")])
        c = _event(event_id="c", room="Salle 202",
                   slots=[make_slot("C1", "2026-10-20T07:00:00Z", "2026-10-20T09:00:00Z")])
        assert queries.find_conflicts([a, b, c]) == []
