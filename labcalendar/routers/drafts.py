"""Create/edit dialog routes.

A dialog is opened once, edited step by step (form fields, slots, files),
then committed or cancelled. Its state is kept server-side per session.
"""
import logging
import uuid
from typing import Any, Optional

from fastapi import APIRouter, Body, Depends, File, HTTPException, UploadFile, status

from labcalendar.dependencies import (
    get_bus,
    get_current_user,
    get_draft_store,
    get_event_store,
    get_lab_api,
    get_session_id,
    get_transition_service,
)
from labcalendar.routers.events import load_event
from labcalendar.schemas.draft import (
    CommitOut,
    CommitRequest,
    DraftOpenRequest,
    DraftOut,
    NewSlotRequest,
    UploadOut,
)
from labcalendar.schemas.event import CurrentUser
from labcalendar.schemas.slot import AdvisoryOut, SlotPatch
from labcalendar.services.draft_store import Draft, DraftStore
from labcalendar.services.event_bus import CalendarRefetch, EventBus
from labcalendar.services.event_store import EventStore
from labcalendar.services.lab_api import LabApiClient
from labcalendar.services.queries import stock_forecast
from labcalendar.services.transition_service import TransitionService
from labcalendar.services.uploads import UploadJob, UploadManager, UploadStatus
from labcalendar.services.wizard import EventForm, EventWizard, commit_wizard
from labcalendar.services.workflow import ensure_can_open_edit

logger = logging.getLogger(__name__)
router = APIRouter()

# Accept both camelCase (front end) and snake_case keys in form patches.
FORM_FIELDS = {field.alias or name: name for name, field in EventForm.model_fields.items()}
FORM_FIELDS.update({name: name for name in EventForm.model_fields})


def _upload_out(job: UploadJob) -> UploadOut:
    return UploadOut(
        upload_id=job.upload_id,
        file_name=job.file_name,
        status=job.status.value,
        error=job.error,
        size=job.size,
    )


def _draft_out(draft: Draft) -> DraftOut:
    wizard = draft.wizard
    return DraftOut(
        dialog_id=draft.dialog_id,
        mode="edit" if wizard.is_edit else "create",
        step=wizard.step.value,
        event_id=draft.event_id or (wizard.original.id if wizard.original else None),
        form=wizard.form.to_wire(),
        slots=wizard.editor.slots,
        removed_slot_ids=wizard.editor.removed_ids,
        advisories=[AdvisoryOut.model_validate(a) for a in wizard.editor.advisories()],
        errors=wizard.step_errors(),
        stock_forecast=[stock_forecast(resource) for resource in wizard.form.consumables],
        uploads=[_upload_out(job) for job in draft.uploads.jobs],
    )


@router.post("/", response_model=DraftOut, status_code=status.HTTP_201_CREATED)
async def open_draft(
    payload: DraftOpenRequest,
    session_id: str = Depends(get_session_id),
    user: CurrentUser = Depends(get_current_user),
    drafts: DraftStore = Depends(get_draft_store),
    store: EventStore = Depends(get_event_store),
    api: LabApiClient = Depends(get_lab_api),
    bus: EventBus = Depends(get_bus),
):
    """Open a create dialog, or an edit dialog when ``eventId`` is given. Re-opening returns the same draft."""
    dialog_id = payload.dialog_id or uuid.uuid4().hex
    event = await load_event(payload.event_id, store, api) if payload.event_id else None
    if event is not None:
        ensure_can_open_edit(event, user)

    def factory() -> Draft:
        if event is not None:
            wizard = EventWizard.for_edit(event, user, bus=bus, session_id=session_id)
        else:
            wizard = EventWizard.for_create(user, payload.discipline, bus=bus, session_id=session_id)
        return Draft(key=(session_id, dialog_id), wizard=wizard, uploads=UploadManager(api, bus, session_id))

    return _draft_out(drafts.open(session_id, dialog_id, factory))


@router.get("/{dialog_id}", response_model=DraftOut)
def get_draft(
    dialog_id: str,
    session_id: str = Depends(get_session_id),
    drafts: DraftStore = Depends(get_draft_store),
):
    return _draft_out(drafts.get(session_id, dialog_id))


@router.patch("/{dialog_id}/form", response_model=DraftOut)
def update_form(
    dialog_id: str,
    changes: dict[str, Any] = Body(...),
    session_id: str = Depends(get_session_id),
    drafts: DraftStore = Depends(get_draft_store),
):
    draft = drafts.get(session_id, dialog_id)
    draft.wizard.update_form(**{FORM_FIELDS.get(key, key): value for key, value in changes.items()})
    return _draft_out(draft)


@router.post("/{dialog_id}/preset/{preset_id}", response_model=DraftOut)
async def apply_preset(
    dialog_id: str,
    preset_id: str,
    session_id: str = Depends(get_session_id),
    drafts: DraftStore = Depends(get_draft_store),
    api: LabApiClient = Depends(get_lab_api),
):
    draft = drafts.get(session_id, dialog_id)
    preset = await api.get_preset(preset_id)
    draft.wizard.apply_preset({"id": preset_id, **preset})
    return _draft_out(draft)


@router.post("/{dialog_id}/next", response_model=DraftOut)
def next_step(
    dialog_id: str,
    session_id: str = Depends(get_session_id),
    drafts: DraftStore = Depends(get_draft_store),
):
    draft = drafts.get(session_id, dialog_id)
    draft.wizard.advance()
    return _draft_out(draft)


@router.post("/{dialog_id}/back", response_model=DraftOut)
def previous_step(
    dialog_id: str,
    session_id: str = Depends(get_session_id),
    drafts: DraftStore = Depends(get_draft_store),
):
    draft = drafts.get(session_id, dialog_id)
    draft.wizard.back()
    return _draft_out(draft)


# --- time slots ---

@router.post("/{dialog_id}/slots", response_model=DraftOut)
def add_slot(
    dialog_id: str,
    payload: Optional[NewSlotRequest] = Body(None),
    session_id: str = Depends(get_session_id),
    drafts: DraftStore = Depends(get_draft_store),
):
    draft = drafts.get(session_id, dialog_id)
    defaults = payload.model_dump(exclude_none=True) if payload else {}
    editor = draft.wizard.editor
    editor.add_slot(**defaults)
    editor.normalize_slot(len(editor.slots) - 1)
    return _draft_out(draft)


@router.patch("/{dialog_id}/slots/{index}", response_model=DraftOut)
def update_slot(
    dialog_id: str,
    index: int,
    payload: SlotPatch,
    session_id: str = Depends(get_session_id),
    drafts: DraftStore = Depends(get_draft_store),
):
    """Edit one slot; inverted start/end times are swapped and a notice is queued."""
    draft = drafts.get(session_id, dialog_id)
    editor = draft.wizard.editor
    editor.update_slot(index, **payload.model_dump(exclude_unset=True))
    editor.normalize_slot(index)
    return _draft_out(draft)


@router.delete("/{dialog_id}/slots/{index}", response_model=DraftOut)
def remove_slot(
    dialog_id: str,
    index: int,
    session_id: str = Depends(get_session_id),
    drafts: DraftStore = Depends(get_draft_store),
):
    draft = drafts.get(session_id, dialog_id)
    draft.wizard.editor.remove_slot(index)
    return _draft_out(draft)


@router.post("/{dialog_id}/slots/{slot_id}/restore", response_model=DraftOut)
def restore_slot(
    dialog_id: str,
    slot_id: str,
    session_id: str = Depends(get_session_id),
    drafts: DraftStore = Depends(get_draft_store),
):
    draft = drafts.get(session_id, dialog_id)
    draft.wizard.editor.restore_slot(slot_id)
    return _draft_out(draft)


# --- files ---

@router.post("/{dialog_id}/files", response_model=UploadOut, status_code=status.HTTP_201_CREATED)
async def add_file(
    dialog_id: str,
    file: UploadFile = File(...),
    session_id: str = Depends(get_session_id),
    drafts: DraftStore = Depends(get_draft_store),
):
    """Queue a document; it is uploaded once the dialog is saved."""
    draft = drafts.get(session_id, dialog_id)
    content = await file.read()
    job = draft.uploads.enqueue(file.filename or "document", content, file.content_type)
    return _upload_out(job)


@router.delete("/{dialog_id}/files/{upload_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_file(
    dialog_id: str,
    upload_id: str,
    session_id: str = Depends(get_session_id),
    drafts: DraftStore = Depends(get_draft_store),
):
    draft = drafts.get(session_id, dialog_id)
    if draft.uploads.discard(upload_id) is None:
        raise HTTPException(status_code=404, detail="Upload not found")


@router.post("/{dialog_id}/files/{upload_id}/cancel", response_model=UploadOut)
async def cancel_file(
    dialog_id: str,
    upload_id: str,
    session_id: str = Depends(get_session_id),
    drafts: DraftStore = Depends(get_draft_store),
):
    draft = drafts.get(session_id, dialog_id)
    job = draft.uploads.get(upload_id)
    if job is None:
        raise HTTPException(status_code=404, detail="Upload not found")
    draft.uploads.cancel(upload_id)
    return _upload_out(job)


@router.post("/{dialog_id}/files/{upload_id}/retry", response_model=UploadOut)
async def retry_file(
    dialog_id: str,
    upload_id: str,
    session_id: str = Depends(get_session_id),
    drafts: DraftStore = Depends(get_draft_store),
    store: EventStore = Depends(get_event_store),
    bus: EventBus = Depends(get_bus),
):
    """Upload a failed or cancelled file again; once stored it is attached to the saved event."""
    draft = drafts.get(session_id, dialog_id)
    job = draft.uploads.get(upload_id)
    if job is None:
        raise HTTPException(status_code=404, detail="Upload not found")
    if draft.event_id is None:
        raise HTTPException(status_code=409, detail="Save the event before retrying uploads")
    if job.status == UploadStatus.done:
        return _upload_out(job)
    job = await draft.uploads.retry(upload_id, draft.event_id)
    if job.status == UploadStatus.done and job.result is not None:
        event = store.get(draft.event_id)
        if event is not None:
            store.put(event.model_copy(update={"files": [*event.files, job.result]}))
        bus.publish(CalendarRefetch(session_id=session_id, event_id=draft.event_id, reason="upload"))
    if all(j.status == UploadStatus.done for j in draft.uploads.jobs):
        drafts.commit(session_id, dialog_id)
    return _upload_out(job)


# --- lifecycle ---

@router.post("/{dialog_id}/commit", response_model=CommitOut)
async def commit_draft(
    dialog_id: str,
    payload: Optional[CommitRequest] = Body(None),
    session_id: str = Depends(get_session_id),
    drafts: DraftStore = Depends(get_draft_store),
    store: EventStore = Depends(get_event_store),
    api: LabApiClient = Depends(get_lab_api),
    bus: EventBus = Depends(get_bus),
    transitions: TransitionService = Depends(get_transition_service),
):
    """Save the dialog. A dialog with failed uploads stays open so they can be retried."""
    draft = drafts.get(session_id, dialog_id)
    if draft.event_id is not None:
        raise HTTPException(status_code=409, detail="Dialog already saved")
    result = await commit_wizard(
        draft.wizard, draft.uploads, api, transitions, store, bus, session_id,
        reason=payload.reason if payload else "",
    )
    draft.event_id = result.event.id
    failed = [job for job in result.uploads if job.status != UploadStatus.done]
    if not failed:
        drafts.commit(session_id, dialog_id)
    else:
        logger.warning("Dialog %s saved with %d failed upload(s)", dialog_id, len(failed))
    return CommitOut(
        event=result.event,
        is_pending=result.is_pending,
        uploads=[_upload_out(job) for job in result.uploads],
        draft_closed=not failed,
    )


@router.delete("/{dialog_id}", status_code=status.HTTP_204_NO_CONTENT)
async def cancel_draft(
    dialog_id: str,
    session_id: str = Depends(get_session_id),
    drafts: DraftStore = Depends(get_draft_store),
):
    """Close the dialog without saving; uploads still running are aborted."""
    drafts.cancel(session_id, dialog_id)
