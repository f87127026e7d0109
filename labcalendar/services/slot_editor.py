"""Time-slot editing and versioning.

Responsibilities:
- Keep the editable working set of slots for one form session
- Append an audit entry to a slot's ``modified_by`` for every change (never remove one)
- Auto-swap inverted start/end times, with a notice to the user
- Compute the persisted diff (create / update / delete) when the form is saved
- Business-hours advisories (non-blocking)

Persisted slots are never dropped: a slot removed in the form becomes a
``deleted`` record at save time, and stays in the event's history.
"""
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, time, timezone
from typing import Callable, Iterable, Optional

import pytz
from pydantic import ValidationError

from labcalendar.config import settings
from labcalendar.schemas.event import SlotAction, SlotModification, SlotStatus, TimeSlot
from labcalendar.schemas.slot import FormSlot
from labcalendar.services.event_bus import EventBus, Notice

logger = logging.getLogger(__name__)

DEFAULT_START = "08:00"
DEFAULT_END = "10:00"
EDITABLE_FIELDS = {"date", "start_time", "end_time"}


class SlotEditError(Exception):
    """Raised when an edit would break the working-set rules."""


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def generate_slot_id(now: Optional[datetime] = None) -> str:
    now = now or utcnow()
    return f"TS_{int(now.timestamp() * 1000)}_{uuid.uuid4().hex[:7]}"


def parse_hhmm(value: str) -> time:
    return datetime.strptime(value, "%H:%M").time()


def _lab_tz(tz_name: Optional[str] = None):
    return pytz.timezone(tz_name or settings.LAB_TIMEZONE)


def to_time_slot(form: FormSlot, slot_id: str, tz_name: Optional[str] = None) -> TimeSlot:
    """Convert local date + HH:MM times to an absolute (UTC) TimeSlot."""
    tz = _lab_tz(tz_name)
    start = tz.localize(datetime.combine(form.date, parse_hhmm(form.start_time)))
    end = tz.localize(datetime.combine(form.date, parse_hhmm(form.end_time)))
    return TimeSlot(
        id=slot_id,
        start_date=start.astimezone(pytz.utc),
        end_date=end.astimezone(pytz.utc),
        status=form.status,
        created_by=form.created_by,
        modified_by=list(form.modified_by),
        referent_actuel_time_id=form.referent_actuel_time_id,
    )


def from_time_slot(slot: TimeSlot, tz_name: Optional[str] = None) -> FormSlot:
    tz = _lab_tz(tz_name)
    start = slot.start_date if slot.start_date.tzinfo else pytz.utc.localize(slot.start_date)
    end = slot.end_date if slot.end_date.tzinfo else pytz.utc.localize(slot.end_date)
    local_start = start.astimezone(tz)
    local_end = end.astimezone(tz)
    return FormSlot(
        id=slot.id,
        date=local_start.date(),
        start_time=local_start.strftime("%H:%M"),
        end_time=local_end.strftime("%H:%M"),
        status=slot.status,
        created_by=slot.created_by,
        modified_by=list(slot.modified_by),
        referent_actuel_time_id=slot.referent_actuel_time_id,
    )


@dataclass(frozen=True)
class Advisory:
    """Non-blocking warning about one slot, identified by its index in the form."""

    index: int
    kind: str
    message: str


def business_hours_advisories(
    slots: Iterable[FormSlot],
    opening: Optional[str] = None,
    closing: Optional[str] = None,
) -> list[Advisory]:
    """One advisory per slot starting before opening time, one per slot ending after closing time."""
    opening_at = parse_hhmm(opening or settings.BUSINESS_HOURS_START)
    closing_at = parse_hhmm(closing or settings.BUSINESS_HOURS_END)
    advisories = []
    for index, slot in enumerate(slots):
        if slot.start_time and parse_hhmm(slot.start_time) < opening_at:
            advisories.append(Advisory(
                index=index,
                kind="start_before_opening",
                message=f"Slot {index + 1}: starts before {opening_at.strftime('%H:%M')}",
            ))
        if slot.end_time and parse_hhmm(slot.end_time) > closing_at:
            advisories.append(Advisory(
                index=index,
                kind="end_after_closing",
                message=f"Slot {index + 1}: ends after {closing_at.strftime('%H:%M')}",
            ))
    return advisories


@dataclass
class SlotValidation:
    errors: list[str] = field(default_factory=list)
    warnings: list[Advisory] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors


@dataclass
class SlotDiff:
    to_create: list[TimeSlot] = field(default_factory=list)
    to_update: list[TimeSlot] = field(default_factory=list)
    to_delete: list[TimeSlot] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (self.to_create or self.to_update or self.to_delete)


def compute_diff(
    original: list[TimeSlot],
    current: list[FormSlot],
    user_id: str,
    now: Optional[datetime] = None,
    tz_name: Optional[str] = None,
) -> SlotDiff:
    """Compare the persisted slots with the form's working set.

    - original active slots missing from ``current`` (by id) → ``to_delete``
    - slots in both whose start or end changed → ``to_update``
    - slots in ``current`` without a matching id → ``to_create`` (fresh id)
    Incomplete form slots are ignored.
    """
    now = now or utcnow()
    diff = SlotDiff()
    active_by_id = {slot.id: slot for slot in original if slot.is_active}
    known_ids = {slot.id for slot in original}
    current_ids = {form.id for form in current if form.id}

    for slot in active_by_id.values():
        if slot.id not in current_ids:
            trail = [*slot.modified_by, SlotModification(user_id=user_id, date=now, action=SlotAction.deleted)]
            diff.to_delete.append(slot.model_copy(update={"status": SlotStatus.deleted, "modified_by": trail}))

    for form in current:
        if not form.is_complete:
            continue
        before = active_by_id.get(form.id) if form.id else None
        if before is None:
            slot_id = form.id if form.id and form.id not in known_ids else generate_slot_id(now)
            created = to_time_slot(form, slot_id, tz_name)
            trail = list(created.modified_by)
            if not any(entry.action == SlotAction.created for entry in trail):
                trail.append(SlotModification(user_id=user_id, date=now, action=SlotAction.created))
            diff.to_create.append(created.model_copy(update={
                "status": SlotStatus.active,
                "created_by": created.created_by or user_id,
                "modified_by": trail,
            }))
            continue

        after = to_time_slot(form, before.id, tz_name)
        if after.start_date == before.start_date and after.end_date == before.end_date:
            continue
        trail = list(form.modified_by)
        if len(trail) <= len(before.modified_by):
            trail = [*before.modified_by, SlotModification(user_id=user_id, date=now, action=SlotAction.modified)]
        diff.to_update.append(before.model_copy(update={
            "start_date": after.start_date,
            "end_date": after.end_date,
            "modified_by": trail,
        }))

    return diff


def apply_diff(original: list[TimeSlot], diff: SlotDiff) -> list[TimeSlot]:
    """Full ``timeSlots`` array after saving: every original record kept, new ones appended."""
    replaced = {slot.id: slot for slot in diff.to_delete + diff.to_update}
    return [replaced.get(slot.id, slot) for slot in original] + list(diff.to_create)


class SlotEditor:
    """Working set of slots for one create/edit form."""

    def __init__(
        self,
        user_id: str,
        slots: Optional[list[FormSlot]] = None,
        bus: Optional[EventBus] = None,
        session_id: Optional[str] = None,
        clock: Callable[[], datetime] = utcnow,
        tz_name: Optional[str] = None,
    ) -> None:
        self.user_id = user_id
        self.slots: list[FormSlot] = list(slots or [])
        self._removed: dict[str, FormSlot] = {}
        self._bus = bus
        self._session_id = session_id
        self._clock = clock
        self._tz_name = tz_name

    @classmethod
    def from_time_slots(cls, time_slots: list[TimeSlot], user_id: str, **kwargs) -> "SlotEditor":
        tz_name = kwargs.get("tz_name")
        forms = [from_time_slot(slot, tz_name) for slot in time_slots if slot.is_active]
        return cls(user_id, forms, **kwargs)

    def _entry(self, action: SlotAction, note: Optional[str] = None) -> SlotModification:
        return SlotModification(user_id=self.user_id, date=self._clock(), action=action, note=note)

    def _get(self, index: int) -> FormSlot:
        if index < 0 or index >= len(self.slots):
            raise SlotEditError(f"No slot at index {index}")
        return self.slots[index]

    @property
    def removed_ids(self) -> list[str]:
        return list(self._removed)

    def add_slot(self, **defaults) -> FormSlot:
        """Append a slot seeded from the previous one (or today 08:00-10:00)."""
        previous = self.slots[-1] if self.slots else None
        if previous is not None:
            values = {"date": previous.date, "start_time": previous.start_time, "end_time": previous.end_time}
        else:
            values = {
                "date": self._clock().astimezone(_lab_tz(self._tz_name)).date(),
                "start_time": DEFAULT_START,
                "end_time": DEFAULT_END,
            }
        values.update({k: v for k, v in defaults.items() if v is not None})
        try:
            slot = FormSlot(**values, created_by=self.user_id, modified_by=[self._entry(SlotAction.created)])
        except ValidationError as exc:
            raise SlotEditError(f"Invalid slot: {exc.errors()[0]['msg']}") from exc
        self.slots.append(slot)
        return slot

    def update_slot(self, index: int, **partial) -> FormSlot:
        """Merge ``partial`` into the slot and log a ``modified`` entry."""
        unknown = set(partial) - EDITABLE_FIELDS
        if unknown:
            raise SlotEditError(f"Cannot edit slot field(s): {', '.join(sorted(unknown))}")
        slot = self._get(index)
        data = slot.model_dump()
        data.update({k: v for k, v in partial.items() if v is not None})
        data["modified_by"] = [*slot.modified_by, self._entry(SlotAction.modified)]
        try:
            updated = FormSlot.model_validate(data)
        except ValidationError as exc:
            raise SlotEditError(f"Invalid slot {index + 1}: {exc.errors()[0]['msg']}") from exc
        self.slots[index] = updated
        return updated

    def normalize_slot(self, index: int) -> bool:
        """Swap start and end when start is later than end. Returns True if swapped."""
        slot = self._get(index)
        if not (slot.start_time and slot.end_time):
            return False
        if parse_hhmm(slot.start_time) <= parse_hhmm(slot.end_time):
            return False
        swapped = slot.model_copy(update={
            "start_time": slot.end_time,
            "end_time": slot.start_time,
            "modified_by": [*slot.modified_by, self._entry(SlotAction.modified, note="start/end swapped")],
        })
        self.slots[index] = swapped
        logger.info("Swapped start/end of slot %d (%s-%s)", index, swapped.start_time, swapped.end_time)
        if self._bus is not None:
            self._bus.publish(Notice(
                session_id=self._session_id,
                level="info",
                message=f"Slot {index + 1}: start and end times were swapped",
            ))
        return True

    def remove_slot(self, index: int) -> FormSlot:
        """Drop a slot from the form; at least one slot must remain."""
        self._get(index)
        if len(self.slots) <= 1:
            raise SlotEditError("At least one time slot is required")
        slot = self.slots.pop(index)
        if slot.is_persisted:
            self._removed[slot.id] = slot
        return slot

    def restore_slot(self, slot_id: str) -> FormSlot:
        """Undo the removal of a persisted slot before the form is saved."""
        slot = self._removed.pop(slot_id, None)
        if slot is None:
            raise SlotEditError(f"Slot {slot_id} was not removed")
        restored = slot.model_copy(update={"modified_by": [*slot.modified_by, self._entry(SlotAction.restored)]})
        self.slots.append(restored)
        return restored

    def advisories(self) -> list[Advisory]:
        return business_hours_advisories(self.slots)

    def validate(self) -> SlotValidation:
        result = SlotValidation(warnings=self.advisories())
        if not any(slot.is_complete for slot in self.slots):
            result.errors.append("At least one complete time slot is required")
        return result

    def validate_or_raise(self) -> SlotValidation:
        result = self.validate()
        if not result.is_valid:
            raise SlotEditError("; ".join(result.errors))
        return result

    def complete_slots(self) -> list[FormSlot]:
        return [slot for slot in self.slots if slot.is_complete]

    def diff(self, original: list[TimeSlot]) -> SlotDiff:
        return compute_diff(original, self.slots, self.user_id, now=self._clock(), tz_name=self._tz_name)
