"""Pytest fixtures: SQLite database per test, lab API served by httpx.MockTransport."""
import copy
import json
from urllib.parse import parse_qs

import httpx
import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from fastapi.testclient import TestClient

from labcalendar.database import Base, get_db
from labcalendar.dependencies import get_lab_api
from labcalendar.main import app
from labcalendar.services.draft_store import DraftStore
from labcalendar.services.event_bus import EventBus, NoticeBoard
from labcalendar.services.event_store import SessionStores
from labcalendar.services.lab_api import LabApiClient

# Import all models so they register with Base.metadata
from labcalendar.models.preference import UiPreference  # noqa: F401

SQLITE_URL = "sqlite:///./test.db"

CREATOR = {"id": "u-teacher", "email": "teacher@lycee.fr", "role": "TEACHER", "name": "Mme Curie"}
LABORANTIN = {"id": "u-labo", "email": "labo@lycee.fr", "role": "LABORANTIN", "name": "M. Pasteur"}
STUDENT = {"id": "u-student", "email": "student@lycee.fr", "role": "STUDENT"}


def make_slot(slot_id: str, start: str, end: str, status: str = "active", **extra) -> dict:
    return {"id": slot_id, "startDate": start, "endDate": end, "status": status, "modifiedBy": [], **extra}


def make_event(
    event_id: str = "evt-1",
    created_by: str = CREATOR["id"],
    slots: list = None,
    actuel: list = None,
    state: str = "PENDING",
    **extra,
) -> dict:
    """Raw event as the lab API returns it (camelCase)."""
    if slots is None:
        slots = [make_slot("TS_1", "2026-10-20T06:00:00Z", "2026-10-20T08:00:00Z")]
    return {
        "id": event_id,
        "title": "TP titrage",
        "type": "TP",
        "state": state,
        "createdBy": created_by,
        "timeSlots": slots,
        "actuelTimeSlots": actuel if actuel is not None else [],
        "room": {"id": "S101", "name": "Salle 101"},
        "classes": [{"id": "c1", "name": "1ere S2"}],
        "chemicals": [
            {"id": "CHEM_1", "name": "NaOH", "quantity": 100, "minQuantity": 20, "requestedQuantity": 90, "unit": "g"},
            "Eau distillée",
        ],
        "materials": [],
        **extra,
    }


class FakeLab:
    """Minimal in-memory lab API: users, chemistry/physics events, documents, presets, catalogs."""

    def __init__(self):
        self.users = {u["id"]: dict(u) for u in (CREATOR, LABORANTIN, STUDENT)}
        self.events = {"chimie": {}, "physique": {}}
        self.presets = {}
        self.catalogs = {"materiel": [{"id": "M1", "name": "Burette"}]}
        self.failures = {}  # (method, path) -> status code
        self.raw_bodies = {}  # (method, path) -> text served with a 200
        self.failing_files = set()
        self.requests = []
        self._next_id = 100

    def add_event(self, raw: dict, discipline: str = "chimie") -> dict:
        self.events[discipline][raw["id"]] = copy.deepcopy(raw)
        return raw

    def fail(self, method: str, path: str, status_code: int = 500) -> None:
        self.failures[(method, path)] = status_code

    def respond_raw(self, method: str, path: str, text: str) -> None:
        self.raw_bodies[(method, path)] = text

    def find(self, event_id: str) -> dict:
        for events in self.events.values():
            if event_id in events:
                return events[event_id]
        raise KeyError(event_id)

    # --- transport ---

    def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        params = {k: v[0] for k, v in parse_qs(request.url.query.decode()).items()}
        self.requests.append((request.method, path, params))
        status_code = self.failures.get((request.method, path))
        if status_code:
            return httpx.Response(status_code, json={"error": "lab API failure"})
        if (request.method, path) in self.raw_bodies:
            return httpx.Response(200, text=self.raw_bodies[(request.method, path)])

        if path.startswith("/api/user/"):
            user = self.users.get(path.rsplit("/", 1)[1])
            return httpx.Response(200, json=user) if user else httpx.Response(404, json={"error": "Not found"})
        if path.endswith("/documents"):
            return self._upload(request, path)
        if path.startswith("/api/event-presets/"):
            preset = self.presets.get(path.rsplit("/", 1)[1])
            return httpx.Response(200, json={"preset": preset}) if preset else httpx.Response(404, json={})
        if path.startswith("/api/calendrier"):
            return self._calendar(request, path, params)
        for name, rows in self.catalogs.items():
            if path == f"/api/{name}":
                return httpx.Response(200, json={name: rows})
        return httpx.Response(404, json={"error": f"No route {path}"})

    def _calendar(self, request, path, params):
        discipline = "physique" if path.startswith("/api/calendrier/physique") else "chimie"
        events = self.events[discipline]
        action = path.rsplit("/", 1)[1]
        body = json.loads(request.content) if request.content else {}

        if action in ("calendrier", "physique"):
            if request.method == "GET":
                if "id" in params:
                    return httpx.Response(200, json={"event": events[params["id"]]})
                return httpx.Response(200, json={"events": list(events.values())})
            if request.method == "POST":
                self._next_id += 1
                raw = {"id": f"evt-{self._next_id}", "state": "PENDING", **body}
                events[raw["id"]] = raw
                return httpx.Response(201, json={"event": raw})
            if request.method == "PUT":
                events[params["id"]].update(body)
                return httpx.Response(200, json={"event": events[params["id"]]})
            if request.method == "DELETE":
                events.pop(params["id"], None)
                return httpx.Response(200)

        if action == "move-event":
            raw = self.find(params["id"])
            active = [s for s in raw["timeSlots"] if s.get("status", "active") == "active"]
            if not raw.get("actuelTimeSlots"):
                raw["actuelTimeSlots"] = copy.deepcopy(active)
            for slot in active:
                slot["status"] = "deleted"
            raw["timeSlots"].extend(body["timeSlots"])
            raw["state"] = "MOVED"
            return httpx.Response(200, json={"updatedEvent": raw, "isPending": not body["isOwnerModification"]})
        if action == "state-change":
            raw = self.find(params["id"])
            raw["state"] = body["state"]
            return httpx.Response(200, json={"updatedEvent": raw, "isPending": False})
        if action == "confirm-modification":
            raw = self.find(params["eventId"])
            requests = raw.get("eventModifying") or []
            pending = [m for m in requests if m["id"] == body["modificationId"] and m["status"] == "PENDING"]
            if not pending:
                return httpx.Response(404, json={"error": "Modification not found"})
            pending[0]["status"] = "CONFIRMED" if body["action"] == "confirm" else "REJECTED"
            if body["action"] == "confirm" and pending[0]["action"] == "CANCEL":
                raw["state"] = "CANCELLED"
            return httpx.Response(200, json={"updatedEvent": raw})
        if action == "approve-timeslots":
            raw = self.find(body["eventId"])
            raw["actuelTimeSlots"] = copy.deepcopy([s for s in raw["timeSlots"] if s.get("status") == "active"])
            raw["state"] = "VALIDATED"
            return httpx.Response(200, json={"event": raw})
        if action == "reject-timeslots":
            raw = self.find(body["eventId"])
            for slot in raw["timeSlots"]:
                slot["status"] = "deleted"
            raw["timeSlots"].extend(copy.deepcopy(raw["actuelTimeSlots"]))
            raw["state"] = "VALIDATED"
            return httpx.Response(200, json={"event": raw})
        if action == "approve-single-timeslot":
            raw = self.find(body["eventId"])
            approved = next(s for s in raw["timeSlots"] if s["id"] == body["timeSlotId"])
            referent = approved.get("referentActuelTimeID") or approved["id"]
            for slot in raw["timeSlots"]:
                if slot is not approved and slot.get("status") == "active" and referent in (
                    slot["id"], slot.get("referentActuelTimeID"),
                ):
                    slot["status"] = "deleted"
            kept = [s for s in raw.get("actuelTimeSlots") or [] if s["id"] not in (referent, approved["id"])]
            raw["actuelTimeSlots"] = kept + [copy.deepcopy(approved)]
            self._settle(raw)
            return httpx.Response(200, json={"success": True, "approvedTimeSlot": approved, "event": raw})
        if action == "reject-single-timeslot":
            raw = self.find(body["eventId"])
            rejected = next(s for s in raw["timeSlots"] if s["id"] == body["timeSlotId"])
            rejected["status"] = "deleted"
            referent = rejected.get("referentActuelTimeID") or rejected["id"]
            covered = any(
                s.get("status") == "active" and referent in (s["id"], s.get("referentActuelTimeID"))
                for s in raw["timeSlots"]
            )
            actual = [s for s in raw.get("actuelTimeSlots") or [] if s["id"] == referent]
            if actual and not covered:
                raw["timeSlots"].append({**copy.deepcopy(actual[0]), "status": "active"})
            self._settle(raw)
            return httpx.Response(200, json={"success": True, "rejectedTimeSlot": rejected, "event": raw})
        return httpx.Response(404, json={"error": f"No route {path}"})

    @staticmethod
    def _settle(raw: dict) -> None:
        active = {(s["startDate"], s["endDate"]) for s in raw["timeSlots"] if s.get("status") == "active"}
        if raw.get("state") == "MOVED" and active == {(s["startDate"], s["endDate"]) for s in raw["actuelTimeSlots"]}:
            raw["state"] = "VALIDATED"

    def _upload(self, request, path):
        disposition = request.content.split(b"\r\n\r\n", 1)[0].decode(errors="ignore")
        file_name = disposition.split('filename="', 1)[1].split('"', 1)[0]
        if file_name in self.failing_files:
            return httpx.Response(500, json={"error": f"Could not store {file_name}"})
        owner_id = path.split("/")[3]
        return httpx.Response(201, json={"file": {
            "fileName": file_name,
            "fileUrl": f"/uploads/{owner_id}/{file_name}",
            "fileSize": len(request.content),
        }})


@pytest.fixture
def lab():
    return FakeLab()


@pytest.fixture
def lab_api(lab):
    return LabApiClient(httpx.AsyncClient(base_url="http://lab.test", transport=httpx.MockTransport(lab.handler)))


@pytest.fixture(scope="function")
def db_engine():
    """Create a fresh SQLite engine for each test."""
    engine = create_engine(SQLITE_URL, connect_args={"check_same_thread": False})

    # Enable WAL mode for better concurrency
    @event.listens_for(engine, "connect")
    def _set_sqlite_pragma(dbapi_conn, connection_record):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.close()

    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture(scope="function")
def db(db_engine):
    """Yield a database session, closed after the test."""
    TestingSession = sessionmaker(autocommit=False, autoflush=False, bind=db_engine)
    session = TestingSession()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(scope="function")
def client(db_engine, lab_api):
    """FastAPI TestClient on SQLite, talking to the fake lab API, with fresh in-process state."""
    TestingSession = sessionmaker(autocommit=False, autoflush=False, bind=db_engine)

    def _override_get_db():
        session = TestingSession()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = _override_get_db
    app.dependency_overrides[get_lab_api] = lambda: lab_api
    app.state.bus = EventBus()
    app.state.notices = NoticeBoard(app.state.bus)
    app.state.stores = SessionStores()
    app.state.drafts = DraftStore()
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


def as_user(user: dict, session_id: str = "tab-1") -> dict:
    """Request headers identifying the user and browser session."""
    return {"X-User-Id": user["id"], "X-Session-Id": session_id}
