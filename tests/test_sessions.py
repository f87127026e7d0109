"""Tests for per-session state: idle expiry, sessionless messages, closing a tab."""
from labcalendar.services.event_bus import CalendarRefetch, EventBus, Notice, NoticeBoard
from labcalendar.services.event_store import SessionStores
from tests.conftest import CREATOR, as_user, make_event


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


def test_idle_sessions_expire():
    clock = FakeClock()
    stores = SessionStores(idle_seconds=60, clock=clock)
    stores.for_session("tab-1")
    clock.now += 30
    stores.for_session("tab-2")
    clock.now += 45

    assert stores.expire_idle() == ["tab-1"]
    assert "tab-1" not in stores
    assert "tab-2" in stores


def test_no_expiry_without_a_limit():
    clock = FakeClock()
    stores = SessionStores(clock=clock)
    stores.for_session("tab-1")
    clock.now += 10 ** 6
    assert stores.expire_idle() == []
    assert len(stores) == 1


def test_messages_without_session_are_not_kept():
    bus = EventBus()
    board = NoticeBoard(bus)
    bus.publish(Notice(message="orphan"))
    bus.publish(CalendarRefetch(session_id="tab-1"))

    assert "" not in board
    assert [m.topic.value for m in board.drain("tab-1")] == ["calendar.refetch"]

    bus.publish(Notice(session_id="tab-1", message="kept"))
    board.forget("tab-1")
    assert board.drain("tab-1") == []


def test_closing_a_tab_releases_its_state(client, lab):
    lab.add_event(make_event("evt-1"))
    headers = as_user(CREATOR)
    client.get("/api/events/", headers=headers)
    client.post("/api/drafts/", json={"dialogId": "dlg-1"}, headers=headers)
    client.delete("/api/events/evt-1", headers=headers)

    assert client.delete("/api/notices/", headers=headers).status_code == 204

    assert client.get("/api/drafts/dlg-1", headers=headers).status_code == 404
    assert client.get("/api/notices/", headers=headers).json() == []
    assert "tab-1" not in client.app.state.stores
