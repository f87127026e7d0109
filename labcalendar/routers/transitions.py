"""State-transition routes. Every action is optimistic and rolled back if the lab API refuses it."""
import logging
from datetime import date
from typing import Optional

from fastapi import APIRouter, Body, Depends

from labcalendar.dependencies import (
    get_bus,
    get_current_user,
    get_event_store,
    get_lab_api,
    get_session_id,
    get_transition_service,
)
from labcalendar.routers.events import load_event
from labcalendar.schemas.event import (
    CurrentUser,
    ModificationDecision,
    MoveRequest,
    ReasonRequest,
    StateChangeRequest,
    TransitionResult,
)
from labcalendar.schemas.slot import FormSlot
from labcalendar.services.event_bus import EventBus
from labcalendar.services.event_store import EventStore
from labcalendar.services.lab_api import LabApiClient
from labcalendar.services.queries import get_active_time_slots
from labcalendar.services.slot_editor import SlotEditError, SlotEditor
from labcalendar.services.transition_service import TransitionService
from labcalendar.services.workflow import ensure_can_manage_state

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/{event_id}/transitions", response_model=TransitionResult)
async def change_state(
    event_id: str,
    payload: StateChangeRequest,
    user: CurrentUser = Depends(get_current_user),
    store: EventStore = Depends(get_event_store),
    api: LabApiClient = Depends(get_lab_api),
    service: TransitionService = Depends(get_transition_service),
):
    """Validate, cancel, start or mark an event moved (no new slots)."""
    await load_event(event_id, store, api)
    outcome = await service.change_state(event_id, user, payload.state, payload.reason)
    return TransitionResult(updated_event=outcome.event, is_pending=outcome.is_pending)


@router.post("/{event_id}/move", response_model=TransitionResult)
async def move_event(
    event_id: str,
    payload: MoveRequest,
    user: CurrentUser = Depends(get_current_user),
    session_id: str = Depends(get_session_id),
    store: EventStore = Depends(get_event_store),
    api: LabApiClient = Depends(get_lab_api),
    bus: EventBus = Depends(get_bus),
    service: TransitionService = Depends(get_transition_service),
):
    """Propose new slots for an event. The new slots replace the active ones; old ones stay as history."""
    ensure_can_manage_state(user)
    event = await load_event(event_id, store, api)
    current = get_active_time_slots(event)
    forms = []
    for index, slot in enumerate(payload.time_slots):
        try:
            forms.append(FormSlot(
                date=date.fromisoformat(slot.date),
                start_time=slot.start_time,
                end_time=slot.end_time,
                created_by=user.id,
                referent_actuel_time_id=current[index].id if index < len(current) else None,
            ))
        except ValueError as exc:
            raise SlotEditError(f"Slot {index + 1}: {exc}") from exc
    editor = SlotEditor(user.id, forms, bus=bus, session_id=session_id)
    for index in range(len(editor.slots)):
        editor.normalize_slot(index)
    editor.validate_or_raise()
    outcome = await service.move(event_id, user, editor.diff(event.time_slots), payload.reason)
    return TransitionResult(updated_event=outcome.event, is_pending=outcome.is_pending)


@router.post("/{event_id}/approve-slots", response_model=TransitionResult)
async def approve_slots(
    event_id: str,
    payload: Optional[ReasonRequest] = Body(None),
    user: CurrentUser = Depends(get_current_user),
    store: EventStore = Depends(get_event_store),
    api: LabApiClient = Depends(get_lab_api),
    service: TransitionService = Depends(get_transition_service),
):
    await load_event(event_id, store, api)
    outcome = await service.approve_proposal(event_id, user, payload.reason if payload else "")
    return TransitionResult(updated_event=outcome.event)


@router.post("/{event_id}/reject-slots", response_model=TransitionResult)
async def reject_slots(
    event_id: str,
    payload: Optional[ReasonRequest] = Body(None),
    user: CurrentUser = Depends(get_current_user),
    store: EventStore = Depends(get_event_store),
    api: LabApiClient = Depends(get_lab_api),
    service: TransitionService = Depends(get_transition_service),
):
    await load_event(event_id, store, api)
    outcome = await service.reject_proposal(event_id, user, payload.reason if payload else "")
    return TransitionResult(updated_event=outcome.event)


@router.post("/{event_id}/slots/{slot_id}/approve", response_model=TransitionResult)
async def approve_slot(
    event_id: str,
    slot_id: str,
    payload: Optional[ReasonRequest] = Body(None),
    user: CurrentUser = Depends(get_current_user),
    store: EventStore = Depends(get_event_store),
    api: LabApiClient = Depends(get_lab_api),
    service: TransitionService = Depends(get_transition_service),
):
    """Accept one proposed slot; the event is VALIDATED once no proposal is left."""
    await load_event(event_id, store, api)
    outcome = await service.approve_slot(event_id, slot_id, user, payload.reason if payload else "")
    return TransitionResult(updated_event=outcome.event)


@router.post("/{event_id}/slots/{slot_id}/reject", response_model=TransitionResult)
async def reject_slot(
    event_id: str,
    slot_id: str,
    payload: Optional[ReasonRequest] = Body(None),
    user: CurrentUser = Depends(get_current_user),
    store: EventStore = Depends(get_event_store),
    api: LabApiClient = Depends(get_lab_api),
    service: TransitionService = Depends(get_transition_service),
):
    await load_event(event_id, store, api)
    outcome = await service.reject_slot(event_id, slot_id, user, payload.reason if payload else "")
    return TransitionResult(updated_event=outcome.event)


@router.post("/{event_id}/modifications/{modification_id}", response_model=TransitionResult)
async def answer_modification(
    event_id: str,
    modification_id: str,
    payload: ModificationDecision,
    user: CurrentUser = Depends(get_current_user),
    store: EventStore = Depends(get_event_store),
    api: LabApiClient = Depends(get_lab_api),
    service: TransitionService = Depends(get_transition_service),
):
    """Confirm or refuse a modification requested on one of the user's own events."""
    await load_event(event_id, store, api)
    outcome = await service.confirm_modification(
        event_id, user, modification_id, confirm=payload.action == "confirm",
    )
    return TransitionResult(updated_event=outcome.event, is_pending=outcome.is_pending)
