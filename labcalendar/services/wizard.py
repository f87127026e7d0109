"""Create/edit dialog orchestration.

The create flow walks METHOD -> DETAILS -> SCHEDULE -> RESOURCES -> REVIEW.
Leaving a step is gated:
- METHOD needs a creation method (and a preset id for the preset method)
- DETAILS needs a non-empty title
- SCHEDULE needs at least one complete time slot
RESOURCES and REVIEW never block; stock shortfalls are advisories.

Edit dialogs start at DETAILS with the event's current values. Saving an edit
sends detail changes as a generic update and slot changes through the
transition service (creator edit or move proposal).
"""
import enum
import logging
from dataclasses import dataclass, field
from typing import Any, Optional

from pydantic import ValidationError

from labcalendar.schemas.base import LabModel
from labcalendar.schemas.event import (
    CurrentUser,
    Discipline,
    Event,
    EventType,
    FileAttachment,
)
from labcalendar.schemas.resource import ResourceList
from labcalendar.services.event_bus import CalendarRefetch, EventBus
from labcalendar.services.event_store import EventStore
from labcalendar.services.lab_api import LabApiClient
from labcalendar.services.optimistic import optimistic_update
from labcalendar.services.slot_editor import SlotDiff, SlotEditor, utcnow
from labcalendar.services.transition_service import TransitionService
from labcalendar.services.uploads import UploadJob, UploadManager
from labcalendar.services.workflow import ensure_can_edit_event

logger = logging.getLogger(__name__)


class WizardStep(str, enum.Enum):
    method = "method"
    details = "details"
    schedule = "schedule"
    resources = "resources"
    review = "review"


STEP_ORDER = list(WizardStep)


class CreationMethod(str, enum.Enum):
    file = "file"
    manual = "manual"
    preset = "preset"


class WizardStepError(Exception):
    """The current step has blocking errors."""

    def __init__(self, step: WizardStep, errors: list[str]) -> None:
        super().__init__(f"Step {step.value}: {'; '.join(errors)}")
        self.step = step
        self.errors = errors


DETAIL_FIELDS = ("title", "description", "type", "classes", "room", "materials", "consumables", "remarks")


class EventForm(LabModel):
    title: str = ""
    description: Optional[str] = None
    type: EventType = EventType.tp
    discipline: Discipline = Discipline.chimie
    classes: list[str] = []
    room: Optional[str] = None
    materials: ResourceList = []
    consumables: ResourceList = []
    remarks: Optional[str] = None
    files: list[FileAttachment] = []
    method: Optional[CreationMethod] = None
    preset_id: Optional[str] = None

    @classmethod
    def from_event(cls, event: Event) -> "EventForm":
        return cls(
            title=event.title,
            description=event.description,
            type=event.type,
            discipline=event.discipline,
            classes=list(event.classes),
            room=event.room,
            materials=list(event.materials),
            consumables=list(event.consumables),
            remarks=event.remarks,
            files=list(event.files),
            method=CreationMethod.manual,
        )


def _resource_wire(resource) -> dict:
    return resource.model_dump(by_alias=True, mode="json", exclude_none=True, exclude={"kind"})


class EventWizard:
    def __init__(
        self,
        user: CurrentUser,
        editor: SlotEditor,
        form: Optional[EventForm] = None,
        original: Optional[Event] = None,
    ) -> None:
        self.user = user
        self.editor = editor
        self.form = form or EventForm()
        self.original = original
        self.step = WizardStep.details if original is not None else WizardStep.method

    @classmethod
    def for_create(
        cls,
        user: CurrentUser,
        discipline: Discipline = Discipline.chimie,
        bus: Optional[EventBus] = None,
        session_id: Optional[str] = None,
    ) -> "EventWizard":
        editor = SlotEditor(user.id, bus=bus, session_id=session_id)
        editor.add_slot()
        return cls(user, editor, EventForm(discipline=discipline))

    @classmethod
    def for_edit(
        cls,
        event: Event,
        user: CurrentUser,
        bus: Optional[EventBus] = None,
        session_id: Optional[str] = None,
    ) -> "EventWizard":
        editor = SlotEditor.from_time_slots(event.time_slots, user.id, bus=bus, session_id=session_id)
        return cls(user, editor, EventForm.from_event(event), original=event)

    @property
    def is_edit(self) -> bool:
        return self.original is not None

    # --- form ---

    def update_form(self, **changes: Any) -> EventForm:
        unknown = set(changes) - set(EventForm.model_fields)
        if unknown:
            raise WizardStepError(self.step, [f"Unknown field(s): {', '.join(sorted(unknown))}"])
        data = self.form.model_dump()
        data.update(changes)
        try:
            self.form = EventForm.model_validate(data)
        except ValidationError as exc:
            raise WizardStepError(self.step, [err["msg"] for err in exc.errors()]) from exc
        return self.form

    def apply_preset(self, preset: dict) -> EventForm:
        """Prefill title, description, type, resources and documents from an event preset."""
        consumables = preset.get("consumables")
        if consumables is None:
            field_name = "consommables" if self.form.discipline == Discipline.physique else "chemicals"
            consumables = preset.get(field_name) or []
        self.update_form(
            title=preset.get("title") or self.form.title,
            description=preset.get("description", self.form.description),
            type=preset.get("type") or self.form.type,
            materials=preset.get("materials") or preset.get("materiels") or [],
            consumables=consumables,
            files=[*self.form.files, *(preset.get("files") or preset.get("documents") or [])],
            method=CreationMethod.preset,
            preset_id=str(preset.get("id")) if preset.get("id") is not None else self.form.preset_id,
        )
        logger.info("Applied preset %s to wizard of %s", self.form.preset_id, self.user.id)
        return self.form

    # --- steps ---

    def step_errors(self, step: Optional[WizardStep] = None) -> list[str]:
        step = step or self.step
        errors = []
        if step == WizardStep.method:
            if self.form.method is None:
                errors.append("Choose how to create the event")
            elif self.form.method == CreationMethod.preset and not self.form.preset_id:
                errors.append("Choose a preset")
        elif step == WizardStep.details:
            if not self.form.title.strip():
                errors.append("Title is required")
        elif step == WizardStep.schedule:
            errors.extend(self.editor.validate().errors)
        return errors

    def advance(self) -> WizardStep:
        errors = self.step_errors()
        if errors:
            raise WizardStepError(self.step, errors)
        position = STEP_ORDER.index(self.step)
        if position < len(STEP_ORDER) - 1:
            self.step = STEP_ORDER[position + 1]
        return self.step

    def back(self) -> WizardStep:
        first = WizardStep.details if self.is_edit else WizardStep.method
        position = STEP_ORDER.index(self.step)
        if self.step != first:
            self.step = STEP_ORDER[position - 1]
        return self.step

    def validate_all(self) -> None:
        """Raise on the first gated step with errors."""
        steps = STEP_ORDER[1:] if self.is_edit else STEP_ORDER
        for step in steps:
            errors = self.step_errors(step)
            if errors:
                raise WizardStepError(step, errors)

    # --- saving ---

    def _detail_payload(self) -> dict:
        form = self.form
        consumables_key = "consommables" if form.discipline == Discipline.physique else "chemicals"
        payload = {
            "title": form.title.strip(),
            "description": form.description,
            "type": form.type.value,
            "classes": list(form.classes),
            "room": form.room,
            "materials": [_resource_wire(r) for r in form.materials],
            consumables_key: [_resource_wire(r) for r in form.consumables],
            "remarks": form.remarks,
        }
        return {key: value for key, value in payload.items() if value is not None}

    def build_create_payload(self) -> dict:
        slots = self.editor.diff([]).to_create
        payload = self._detail_payload()
        payload.update({
            "discipline": self.form.discipline.value,
            "timeSlots": [slot.to_wire() for slot in slots],
            "files": [attachment.to_wire() for attachment in self.form.files],
            "createdBy": self.user.id,
        })
        if self.form.preset_id:
            payload["presetId"] = self.form.preset_id
        return payload

    def has_detail_changes(self) -> bool:
        if self.original is None:
            return True
        before = EventForm.from_event(self.original)
        return any(getattr(before, name) != getattr(self.form, name) for name in DETAIL_FIELDS)

    def build_update_payload(self) -> dict:
        return self._detail_payload()

    def slot_diff(self) -> SlotDiff:
        if self.original is None:
            return self.editor.diff([])
        return self.editor.diff(self.original.time_slots)


@dataclass
class CommitResult:
    event: Event
    is_pending: bool = False
    uploads: list[UploadJob] = field(default_factory=list)


async def commit_wizard(
    wizard: EventWizard,
    uploads: UploadManager,
    api: LabApiClient,
    transitions: TransitionService,
    store: EventStore,
    bus: EventBus,
    session_id: Optional[str] = None,
    reason: str = "",
) -> CommitResult:
    """Save a create or edit dialog, then run its uploads against the saved event."""
    wizard.validate_all()

    if not wizard.is_edit:
        event = await api.create_event(wizard.build_create_payload(), wizard.form.discipline)
        store.put(event)
        logger.info("Event %s created by %s", event.id, wizard.user.id)
        jobs = await uploads.upload_all(event.id)
        attachments = uploads.attachments()
        if attachments:
            event = event.model_copy(update={"files": [*event.files, *attachments]})
            store.put(event)
        bus.publish(CalendarRefetch(session_id=session_id, event_id=event.id, reason="create"))
        return CommitResult(event=event, uploads=jobs)

    event_id = wizard.original.id
    is_pending = False
    if wizard.has_detail_changes():
        ensure_can_edit_event(wizard.original, wizard.user)
        payload = wizard.build_update_payload()
        form = wizard.form

        def apply(event: Event) -> Event:
            consumables_key = event.consumables_field()
            return event.model_copy(update={
                "title": form.title.strip(),
                "description": form.description,
                "type": form.type,
                "classes": list(form.classes),
                "room": form.room,
                "materials": list(form.materials),
                consumables_key: list(form.consumables),
                "remarks": form.remarks,
                "updated_at": utcnow(),
            })

        async def request(snapshot: Event, local: Event) -> Event:
            return await api.update_event(event_id, payload, snapshot.discipline)

        await optimistic_update(store, event_id, apply, request, bus, session_id, action="update")

    diff = wizard.slot_diff()
    if not diff.is_empty:
        outcome = await transitions.edit_slots(event_id, wizard.user, diff, reason)
        is_pending = outcome.is_pending

    jobs = await uploads.upload_all(event_id)
    event = store.get(event_id) or wizard.original
    attachments = uploads.attachments()
    if attachments:
        event = event.model_copy(update={"files": [*event.files, *attachments]})
        store.put(event)
    return CommitResult(event=event, is_pending=is_pending, uploads=jobs)
