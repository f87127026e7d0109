"""Tests for the transition service: optimistic updates, rollback, endpoint routing."""
import pytest

from labcalendar.schemas.event import CurrentUser, Event, EventState
from labcalendar.services.event_bus import EventBus, Topic
from labcalendar.services.event_store import EventStore
from labcalendar.services.lab_api import LabApiError
from labcalendar.services.optimistic import EventNotLoaded
from labcalendar.services.queries import get_active_time_slots
from labcalendar.services.slot_editor import SlotEditor
from labcalendar.services.transition_service import TransitionService
from labcalendar.services.workflow import TransitionForbidden
from tests.conftest import CREATOR, LABORANTIN, make_event, make_slot

teacher = CurrentUser.model_validate(CREATOR)
laborantin = CurrentUser.model_validate(LABORANTIN)


@pytest.fixture
def bus():
    return EventBus()


@pytest.fixture
def messages(bus):
    received = []
    for topic in Topic:
        bus.subscribe(topic, received.append)
    return received


@pytest.fixture
def store(lab):
    raw = lab.add_event(make_event("evt-1", state="VALIDATED"))
    store = EventStore()
    store.put(Event.model_validate(raw))
    return store


@pytest.fixture
def service(lab_api, store, bus):
    return TransitionService(lab_api, store, bus, session_id="tab-1")


def _diff(event: Event, user: CurrentUser, start: str = "14:00", end: str = "16:00"):
    editor = SlotEditor.from_time_slots(event.time_slots, user.id, tz_name="Europe/Paris")
    editor.update_slot(0, start_time=start, end_time=end)
    return editor.diff(event.time_slots)


@pytest.mark.asyncio
async def test_state_change_goes_to_state_change_endpoint(service, store, lab, messages):
    outcome = await service.change_state("evt-1", laborantin, EventState.cancelled, "Grève")

    assert outcome.event.state == EventState.cancelled
    assert store.get("evt-1").state == EventState.cancelled
    assert ("PUT", "/api/calendrier/state-change", {"id": "evt-1"}) in lab.requests
    assert [m.topic for m in messages] == [Topic.calendar_refetch]


@pytest.mark.asyncio
async def test_failed_transition_rolls_back(service, store, lab, messages):
    lab.fail("PUT", "/api/calendrier/state-change", 500)
    before = store.get("evt-1")

    with pytest.raises(LabApiError):
        await service.change_state("evt-1", laborantin, EventState.in_progress)

    assert store.get("evt-1") == before
    assert [m.topic for m in messages] == [Topic.notice]
    assert messages[0].level == "error"
    assert messages[0].session_id == "tab-1"


@pytest.mark.asyncio
async def test_forbidden_transition_leaves_store_untouched(service, store, lab):
    before = store.get("evt-1")
    with pytest.raises(TransitionForbidden):
        await service.change_state("evt-1", teacher, EventState.validated)
    assert store.get("evt-1") is before
    assert not any(path.endswith("state-change") for _, path, _ in lab.requests)


@pytest.mark.asyncio
async def test_owner_edit_uses_generic_update(service, store, lab):
    event = store.get("evt-1")
    outcome = await service.edit_slots("evt-1", teacher, _diff(event, teacher))

    assert outcome.is_pending is False
    assert outcome.event.state == EventState.pending
    assert ("PUT", "/api/calendrier", {"id": "evt-1"}) in lab.requests
    assert len(outcome.event.time_slots) == 1
    assert outcome.event.state_changer[-1].to_state == EventState.pending


@pytest.mark.asyncio
async def test_other_user_edit_becomes_move_proposal(service, store, lab):
    event = store.get("evt-1")
    outcome = await service.edit_slots("evt-1", laborantin, _diff(event, laborantin), "Salle prise")

    assert outcome.is_pending is True
    assert outcome.event.state == EventState.moved
    assert ("PUT", "/api/calendrier/move-event", {"id": "evt-1"}) in lab.requests


@pytest.mark.asyncio
async def test_unknown_event(service):
    with pytest.raises(EventNotLoaded):
        await service.change_state("nope", laborantin, EventState.validated)


@pytest.mark.asyncio
async def test_approve_and_reject_after_move(service, store, lab):
    event = store.get("evt-1")
    await service.move("evt-1", laborantin, _diff(event, laborantin))

    approved = await service.approve_proposal("evt-1", laborantin)
    assert approved.event.state == EventState.validated
    assert ("POST", "/api/calendrier/approve-timeslots", {}) in lab.requests

    event = store.get("evt-1")
    await service.move("evt-1", laborantin, _diff(event, laborantin, "10:00", "12:00"))
    rejected = await service.reject_proposal("evt-1", laborantin)
    assert rejected.event.state == EventState.validated


def _moved_raw(event_id: str) -> dict:
    return make_event(
        event_id,
        state="MOVED",
        slots=[
            make_slot("TS_1", "2026-10-20T06:00:00Z", "2026-10-20T08:00:00Z", status="deleted"),
            make_slot("TS_2", "2026-10-21T06:00:00Z", "2026-10-21T08:00:00Z", referentActuelTimeID="TS_1"),
        ],
        actuel=[make_slot("TS_1", "2026-10-20T06:00:00Z", "2026-10-20T08:00:00Z")],
    )


@pytest.mark.asyncio
async def test_single_slot_approval(service, store, lab, messages):
    store.put(Event.model_validate(lab.add_event(_moved_raw("evt-2"))))

    outcome = await service.approve_slot("evt-2", "TS_2", teacher)

    assert outcome.event.state == EventState.validated
    assert [s.id for s in outcome.event.actuel_time_slots] == ["TS_2"]
    assert ("POST", "/api/calendrier/chimie/approve-single-timeslot", {}) in lab.requests
    assert [m.topic for m in messages] == [Topic.calendar_refetch]


@pytest.mark.asyncio
async def test_single_slot_rejection_on_physics_event(service, store, lab):
    raw = lab.add_event(_moved_raw("evt-3"), discipline="physique")
    store.put(Event.model_validate({**raw, "discipline": "physique"}))

    outcome = await service.reject_slot("evt-3", "TS_2", laborantin, "Salle prise")

    assert outcome.event.state == EventState.validated
    assert [s.id for s in get_active_time_slots(outcome.event)] == ["TS_1"]
    assert ("POST", "/api/calendrier/physique/reject-single-timeslot", {}) in lab.requests


@pytest.mark.asyncio
async def test_physics_move_uses_shared_endpoint(service, store, lab):
    raw = lab.add_event(make_event("evt-4", state="VALIDATED"), discipline="physique")
    store.put(Event.model_validate({**raw, "discipline": "physique"}))
    event = store.get("evt-4")

    outcome = await service.move("evt-4", laborantin, _diff(event, laborantin))

    assert outcome.event.state == EventState.moved
    assert ("PUT", "/api/calendrier/move-event", {"id": "evt-4"}) in lab.requests
    assert lab.events["physique"]["evt-4"]["state"] == "MOVED"


@pytest.mark.asyncio
async def test_unreadable_answer_rolls_back(service, store, lab, messages):
    lab.respond_raw("PUT", "/api/calendrier/state-change", "<html>proxy error</html>")
    before = store.get("evt-1")

    with pytest.raises(LabApiError):
        await service.change_state("evt-1", laborantin, EventState.cancelled)

    assert store.get("evt-1") == before
    assert messages[0].level == "error"
    assert "Invalid response" in messages[0].message
