"""Client for the lab REST API (events, users, catalogs, documents).

The API itself is an external collaborator; this module only speaks its
JSON contract. Every call is an ``await`` point and none has a timeout
unless ``LAB_API_TIMEOUT`` is configured.
"""
import logging
from typing import Any, Optional

import httpx
from pydantic import ValidationError

from labcalendar.config import settings
from labcalendar.schemas.event import (
    CurrentUser,
    Discipline,
    Event,
    EventState,
    FileAttachment,
    TimeSlot,
    TransitionResult,
)

logger = logging.getLogger(__name__)

EVENT_PATHS = {
    Discipline.chimie: "/api/calendrier",
    Discipline.physique: "/api/calendrier/physique",
}

# Discipline-specific action routes; the other workflow actions share the chemistry prefix.
ACTION_PATHS = {
    Discipline.chimie: "/api/calendrier/chimie",
    Discipline.physique: "/api/calendrier/physique",
}
SHARED_PATH = "/api/calendrier"

CATALOG_PATHS = {
    "materiel": "/api/materiel",
    "chemicals": "/api/chemicals",
    "classes": "/api/classes",
    "salles": "/api/salles",
    "rooms": "/api/rooms",
    "physique-equipement": "/api/physique/equipement",
    "physique-consommables": "/api/physique/consommables",
    "event-presets": "/api/event-presets",
}


class LabApiError(Exception):
    """A lab API call failed (network error or non-2xx response)."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


def build_http_client() -> httpx.AsyncClient:
    headers = {}
    if settings.LAB_API_TOKEN:
        headers["Authorization"] = f"Bearer {settings.LAB_API_TOKEN}"
    return httpx.AsyncClient(
        base_url=settings.LAB_API_BASE_URL,
        headers=headers,
        timeout=settings.LAB_API_TIMEOUT,
    )


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or response.reason_phrase
    if isinstance(body, dict):
        return str(body.get("error") or body.get("message") or body)
    return str(body)


def _unwrap_events(body: Any) -> list[dict]:
    if isinstance(body, dict):
        return body.get("events") or []
    return body or []


def _unwrap_event(body: Any) -> dict:
    if isinstance(body, dict):
        for key in ("updatedEvent", "event"):
            if isinstance(body.get(key), dict):
                return body[key]
    return body


class LabApiClient:
    def __init__(self, http: httpx.AsyncClient) -> None:
        self._http = http

    async def aclose(self) -> None:
        await self._http.aclose()

    async def _request(self, method: str, url: str, **kwargs) -> Any:
        try:
            response = await self._http.request(method, url, **kwargs)
        except httpx.RequestError as exc:
            logger.error("Lab API %s %s unreachable: %s", method, url, exc)
            raise LabApiError(f"Lab API unreachable: {exc}") from exc
        if response.is_error:
            message = _error_message(response)
            logger.error("Lab API %s %s failed (%d): %s", method, url, response.status_code, message)
            raise LabApiError(message, status_code=response.status_code)
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as exc:
            logger.error("Lab API %s %s returned a non-JSON body (%d)", method, url, response.status_code)
            raise LabApiError("Invalid response from lab API") from exc

    # --- users ---

    async def get_user(self, user_id: str) -> CurrentUser:
        body = await self._request("GET", f"/api/user/{user_id}")
        return CurrentUser.model_validate(body)

    # --- events ---

    async def list_events(self, discipline: Discipline = Discipline.chimie) -> list[Event]:
        body = await self._request("GET", EVENT_PATHS[discipline])
        return [Event.model_validate({"discipline": discipline.value, **raw}) for raw in _unwrap_events(body)]

    async def get_event(self, event_id: str, discipline: Discipline = Discipline.chimie) -> Event:
        body = await self._request("GET", EVENT_PATHS[discipline], params={"id": event_id})
        return self._event_from(body, discipline)

    async def create_event(self, payload: dict, discipline: Discipline = Discipline.chimie) -> Event:
        body = await self._request("POST", EVENT_PATHS[discipline], json=payload)
        logger.info("Created %s event via lab API", discipline.value)
        return self._event_from(body, discipline)

    async def update_event(self, event_id: str, payload: dict, discipline: Discipline = Discipline.chimie) -> Event:
        body = await self._request("PUT", EVENT_PATHS[discipline], params={"id": event_id}, json=payload)
        return self._event_from(body, discipline)

    async def delete_event(self, event_id: str, discipline: Discipline = Discipline.chimie) -> None:
        await self._request("DELETE", EVENT_PATHS[discipline], params={"id": event_id})

    # --- workflow ---

    async def move_event(
        self,
        event: Event,
        time_slots: list[TimeSlot],
        reason: str,
        is_owner_modification: bool,
    ) -> TransitionResult:
        payload = {
            "state": EventState.moved.value,
            "eventId": event.id,
            "timeSlots": [slot.to_wire() for slot in time_slots],
            "reason": reason,
            "isOwnerModification": is_owner_modification,
        }
        body = await self._request(
            "PUT", f"{SHARED_PATH}/move-event", params={"id": event.id}, json=payload,
        )
        return self._transition_result(body, event.discipline)

    async def change_state(self, event: Event, state: EventState, reason: str = "") -> TransitionResult:
        body = await self._request(
            "PUT",
            f"{EVENT_PATHS[event.discipline]}/state-change",
            params={"id": event.id},
            json={"state": state.value, "reason": reason},
        )
        return self._transition_result(body, event.discipline)

    async def confirm_modification(self, event: Event, modification_id: str, confirm: bool) -> TransitionResult:
        """Creator's answer to a modification another user requested on their event."""
        body = await self._request(
            "PUT",
            f"{SHARED_PATH}/confirm-modification",
            params={"eventId": event.id},
            json={"modificationId": modification_id, "action": "confirm" if confirm else "reject"},
        )
        return self._transition_result(body, event.discipline)

    async def approve_timeslots(self, event: Event) -> Event:
        body = await self._request(
            "POST", f"{EVENT_PATHS[event.discipline]}/approve-timeslots", json={"eventId": event.id},
        )
        return self._event_from(body, event.discipline)

    async def reject_timeslots(self, event: Event) -> Event:
        body = await self._request(
            "POST", f"{SHARED_PATH}/reject-timeslots", json={"eventId": event.id},
        )
        return self._event_from(body, event.discipline)

    async def approve_single_timeslot(self, event: Event, slot_id: str) -> Event:
        """Accept one proposed slot; it replaces the validated slot it refers to."""
        body = await self._request(
            "POST",
            f"{ACTION_PATHS[event.discipline]}/approve-single-timeslot",
            json={"eventId": event.id, "timeSlotId": slot_id},
        )
        return self._event_from(body, event.discipline)

    async def reject_single_timeslot(self, event: Event, slot_id: str, reason: str = "") -> Event:
        body = await self._request(
            "POST",
            f"{ACTION_PATHS[event.discipline]}/reject-single-timeslot",
            json={"eventId": event.id, "timeSlotId": slot_id, "reason": reason},
        )
        return self._event_from(body, event.discipline)

    @staticmethod
    def _event_from(body: Any, discipline: Discipline) -> Event:
        raw = _unwrap_event(body)
        if not isinstance(raw, dict):
            raise LabApiError("Lab API returned no event")
        try:
            return Event.model_validate({"discipline": discipline.value, **raw})
        except ValidationError as exc:
            logger.error("Lab API returned a malformed event: %s", exc)
            raise LabApiError("Lab API returned a malformed event") from exc

    @staticmethod
    def _transition_result(body: Any, discipline: Discipline) -> TransitionResult:
        return TransitionResult(
            updated_event=LabApiClient._event_from(body, discipline),
            is_pending=bool(body.get("isPending", False)),
            message=body.get("message"),
        )

    # --- documents ---

    async def upload_document(
        self,
        owner_id: str,
        file_name: str,
        content: bytes,
        content_type: str = "application/octet-stream",
        preset: bool = False,
    ) -> FileAttachment:
        """Upload one file to an event (or preset) and return the stored attachment."""
        prefix = "/api/event-presets" if preset else "/api/events"
        body = await self._request(
            "POST",
            f"{prefix}/{owner_id}/documents",
            files={"file": (file_name, content, content_type)},
        )
        if isinstance(body, dict) and isinstance(body.get("file"), dict):
            body = body["file"]
        return FileAttachment.model_validate(body)

    # --- catalogs ---

    async def get_catalog(self, name: str, params: Optional[dict] = None) -> list[dict]:
        if name not in CATALOG_PATHS:
            raise LabApiError(f"Unknown catalog: {name}", status_code=404)
        body = await self._request("GET", CATALOG_PATHS[name], params=params)
        if isinstance(body, dict):
            # Catalog endpoints wrap their rows under a resource-specific key.
            for value in body.values():
                if isinstance(value, list):
                    return value
            return []
        return body or []

    async def get_preset(self, preset_id: str) -> dict:
        body = await self._request("GET", f"/api/event-presets/{preset_id}")
        if isinstance(body, dict) and isinstance(body.get("preset"), dict):
            return body["preset"]
        return body
