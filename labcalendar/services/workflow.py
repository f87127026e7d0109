"""State-transition workflow for calendar events.

Rules:
- Only LABORANTIN / ADMINLABO may validate, cancel, move or start an event
- Every transition appends ``{from_state, to_state, date, user_id, reason}`` to ``state_changer``
- Slot edits by the creator apply at once and put the event back to PENDING
- Slot edits by anyone else set MOVED and stay a proposal until approved or rejected

These functions compute the local (optimistic) result of an action; the lab
API remains the authority and its response replaces the local copy.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from labcalendar.schemas.event import (
    CurrentUser,
    Event,
    EventState,
    ModifiedByEntry,
    SlotAction,
    SlotModification,
    SlotStatus,
    StateChange,
    TimeSlot,
    UserRole,
)
from labcalendar.services.queries import get_active_time_slots, has_pending_proposal, is_creator
from labcalendar.services.slot_editor import SlotDiff, apply_diff

logger = logging.getLogger(__name__)

VALIDATOR_ROLES = frozenset({UserRole.laborantin, UserRole.adminlabo})
EDITOR_ROLES = frozenset({UserRole.admin, UserRole.adminlabo})


class WorkflowError(Exception):
    """Action not applicable to the event in its current state."""


class TransitionForbidden(WorkflowError):
    """The acting user lacks the rights for this action."""


class SlotNotFound(WorkflowError):
    """No time slot with that id on the event."""


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def can_manage_state(user: CurrentUser) -> bool:
    return user.role in VALIDATOR_ROLES


def ensure_can_manage_state(user: CurrentUser) -> None:
    if not can_manage_state(user):
        raise TransitionForbidden(
            f"Role {user.role.value} may not validate, cancel or move events",
        )


def can_edit_event(event: Event, user: CurrentUser) -> bool:
    """The creator and lab administrators may edit or delete an event."""
    return is_creator(event, user.id, user.email) or user.role in EDITOR_ROLES


def ensure_can_edit_event(event: Event, user: CurrentUser) -> None:
    if not can_edit_event(event, user):
        raise TransitionForbidden(f"Only the creator of event {event.id} or an administrator may edit it")


def ensure_can_open_edit(event: Event, user: CurrentUser) -> None:
    """Validators may open the edit dialog to propose new slots; other details stay editor-only."""
    if not (can_edit_event(event, user) or can_manage_state(user)):
        raise TransitionForbidden(f"Role {user.role.value} may not edit event {event.id}")


def can_review_slots(event: Event, user: CurrentUser) -> bool:
    return is_creator(event, user.id, user.email) or can_manage_state(user)


def stamp_modified_by(entries: list[ModifiedByEntry], user_id: str, when: datetime) -> list[ModifiedByEntry]:
    """Record that ``user_id`` touched the event at ``when`` (append-only)."""
    stamped = []
    found = False
    for entry in entries:
        if entry.user_id == user_id and not found:
            entry = entry.model_copy(update={"dates": [*entry.dates, when]})
            found = True
        stamped.append(entry)
    if not found:
        stamped.append(ModifiedByEntry(user_id=user_id, dates=[when]))
    return stamped


def record_transition(
    event: Event,
    to_state: EventState,
    user_id: str,
    reason: str = "",
    now: Optional[datetime] = None,
) -> Event:
    """Return a copy of ``event`` in ``to_state`` with the change logged."""
    now = now or _utcnow()
    change = StateChange(
        user_id=user_id,
        from_state=event.state,
        to_state=to_state,
        date=now,
        reason=reason or "",
    )
    return event.model_copy(update={
        "state": to_state,
        "state_changer": [*event.state_changer, change],
        "modified_by": stamp_modified_by(event.modified_by, user_id, now),
        "updated_at": now,
    })


def change_state(
    event: Event,
    to_state: EventState,
    user: CurrentUser,
    reason: str = "",
    now: Optional[datetime] = None,
) -> Event:
    """Generic state change. Validating an event makes its active slots the validated schedule."""
    ensure_can_manage_state(user)
    updated = record_transition(event, to_state, user.id, reason, now)
    if to_state == EventState.validated:
        updated = updated.model_copy(update={"actuel_time_slots": get_active_time_slots(updated)})
    logger.info("Event %s: %s -> %s by %s", event.id, event.state.value, to_state.value, user.id)
    return updated


def slot_edit_state(event: Event, user: CurrentUser) -> EventState:
    """PENDING when the creator edits their own slots, MOVED otherwise."""
    if is_creator(event, user.id, user.email):
        return EventState.pending
    return EventState.moved


@dataclass
class SlotEditOutcome:
    event: Event
    is_pending: bool

    @property
    def state(self) -> EventState:
        return self.event.state


def apply_slot_edit(
    event: Event,
    diff: SlotDiff,
    user: CurrentUser,
    reason: str = "",
    now: Optional[datetime] = None,
    target: Optional[EventState] = None,
) -> SlotEditOutcome:
    """Apply a slot diff under the ownership rules.

    The creator's edit is applied and the event goes back to PENDING for
    re-validation. Anyone else must hold validation rights; their edit is a
    proposal (MOVED) measured against the validated schedule, which is kept
    so a reject can restore it.
    """
    owner = is_creator(event, user.id, user.email)
    if not owner:
        ensure_can_manage_state(user)

    validated = event.actuel_time_slots or get_active_time_slots(event)
    edited = event.model_copy(update={
        "time_slots": apply_diff(event.time_slots, diff),
        "actuel_time_slots": validated,
    })
    target = target or slot_edit_state(event, user)
    updated = record_transition(edited, target, user.id, reason, now)
    logger.info(
        "Slot edit on event %s by %s (%s): +%d ~%d -%d",
        event.id, user.id, "owner" if owner else "proposal",
        len(diff.to_create), len(diff.to_update), len(diff.to_delete),
    )
    return SlotEditOutcome(event=updated, is_pending=not owner)


def approve_proposal(event: Event, user: CurrentUser, reason: str = "", now: Optional[datetime] = None) -> Event:
    """Accept the proposed slots: they become the validated schedule, event VALIDATED."""
    ensure_can_manage_state(user)
    if not has_pending_proposal(event):
        raise WorkflowError(f"Event {event.id} has no pending time-slot proposal")
    now = now or _utcnow()

    slots = []
    for slot in event.time_slots:
        if slot.is_active:
            entry = SlotModification(user_id=user.id, date=now, action=SlotAction.approved)
            slot = slot.model_copy(update={"modified_by": [*slot.modified_by, entry]})
        slots.append(slot)
    approved = event.model_copy(update={
        "time_slots": slots,
        "actuel_time_slots": [slot for slot in slots if slot.is_active],
    })
    return record_transition(approved, EventState.validated, user.id, reason or "Time slots approved", now)


def reject_proposal(event: Event, user: CurrentUser, reason: str = "", now: Optional[datetime] = None) -> Event:
    """Discard the proposed slots and bring the validated schedule back, event VALIDATED."""
    ensure_can_manage_state(user)
    if not has_pending_proposal(event):
        raise WorkflowError(f"Event {event.id} has no pending time-slot proposal")
    now = now or _utcnow()
    validated = {slot.id: slot for slot in event.actuel_time_slots}

    slots = []
    for slot in event.time_slots:
        actual = validated.get(slot.id)
        if actual is not None:
            unchanged = (
                slot.is_active
                and slot.start_date == actual.start_date
                and slot.end_date == actual.end_date
            )
            if not unchanged:
                entry = SlotModification(user_id=user.id, date=now, action=SlotAction.restored)
                slot = slot.model_copy(update={
                    "start_date": actual.start_date,
                    "end_date": actual.end_date,
                    "status": SlotStatus.active,
                    "modified_by": [*slot.modified_by, entry],
                })
        elif slot.is_active:
            entry = SlotModification(user_id=user.id, date=now, action=SlotAction.rejected)
            slot = slot.model_copy(update={"status": SlotStatus.deleted, "modified_by": [*slot.modified_by, entry]})
        slots.append(slot)

    present = {slot.id for slot in slots}
    for actual in event.actuel_time_slots:
        if actual.id not in present:
            entry = SlotModification(user_id=user.id, date=now, action=SlotAction.restored)
            slots.append(actual.model_copy(update={
                "status": SlotStatus.active,
                "modified_by": [*actual.modified_by, entry],
            }))

    rejected = event.model_copy(update={"time_slots": slots})
    return record_transition(rejected, EventState.validated, user.id, reason or "Time slots rejected", now)


def _find_slot(event: Event, slot_id: str) -> TimeSlot:
    for slot in event.time_slots:
        if slot.id == slot_id:
            return slot
    raise SlotNotFound(f"Event {event.id} has no time slot {slot_id}")


def _settle_review(event: Event, original: Event, user: CurrentUser, reason: str, now: datetime) -> Event:
    """VALIDATED once the last proposed slot of a moved event has been reviewed."""
    if original.state == EventState.moved and not has_pending_proposal(event):
        return record_transition(event, EventState.validated, user.id, reason, now)
    return event.model_copy(update={
        "modified_by": stamp_modified_by(event.modified_by, user.id, now),
        "updated_at": now,
    })


def approve_slot(
    event: Event,
    slot_id: str,
    user: CurrentUser,
    reason: str = "",
    now: Optional[datetime] = None,
) -> Event:
    """Accept one proposed slot.

    It takes the place of the validated slot it refers to; other proposals for
    that same validated slot are invalidated.
    """
    if not can_review_slots(event, user):
        raise TransitionForbidden("Only the creator or a laboratory validator may approve a time slot")
    approved = _find_slot(event, slot_id)
    if not approved.is_active:
        raise WorkflowError(f"Time slot {slot_id} is not active")
    if not has_pending_proposal(event):
        raise WorkflowError(f"Event {event.id} has no pending time-slot proposal")
    now = now or _utcnow()
    referent = approved.referent_actuel_time_id or slot_id

    slots = []
    for slot in event.time_slots:
        if slot.id == slot_id:
            entry = SlotModification(user_id=user.id, date=now, action=SlotAction.approved)
            slot = approved = slot.model_copy(update={"modified_by": [*slot.modified_by, entry]})
        elif slot.is_active and referent in (slot.id, slot.referent_actuel_time_id):
            entry = SlotModification(user_id=user.id, date=now, action=SlotAction.invalidated)
            slot = slot.model_copy(update={"status": SlotStatus.deleted, "modified_by": [*slot.modified_by, entry]})
        slots.append(slot)

    replaced = False
    actual_slots = []
    for actual in event.actuel_time_slots:
        if actual.id in (referent, slot_id):
            if not replaced:
                actual_slots.append(approved)
            replaced = True
            continue
        actual_slots.append(actual)
    if not replaced:
        actual_slots.append(approved)

    updated = event.model_copy(update={"time_slots": slots, "actuel_time_slots": actual_slots})
    logger.info("Slot %s of event %s approved by %s", slot_id, event.id, user.id)
    return _settle_review(updated, event, user, reason or "Time slot approved", now)


def reject_slot(
    event: Event,
    slot_id: str,
    user: CurrentUser,
    reason: str = "",
    now: Optional[datetime] = None,
) -> Event:
    """Discard one proposed slot and bring back the validated slot it replaced."""
    if not can_review_slots(event, user):
        raise TransitionForbidden("Only the creator or a laboratory validator may reject a time slot")
    rejected = _find_slot(event, slot_id)
    if not rejected.is_active:
        raise WorkflowError(f"Time slot {slot_id} is not active")
    now = now or _utcnow()
    referent = rejected.referent_actuel_time_id or slot_id

    slots = []
    for slot in event.time_slots:
        if slot.id == slot_id:
            entry = SlotModification(user_id=user.id, date=now, action=SlotAction.rejected)
            slot = slot.model_copy(update={"status": SlotStatus.deleted, "modified_by": [*slot.modified_by, entry]})
        slots.append(slot)

    validated = {actual.id: actual for actual in event.actuel_time_slots}
    covered = any(
        slot.is_active and referent in (slot.id, slot.referent_actuel_time_id) for slot in slots
    )
    if referent in validated and not covered:
        entry = SlotModification(user_id=user.id, date=now, action=SlotAction.restored)
        actual = validated[referent]
        for index, slot in enumerate(slots):
            if slot.id == referent:
                slots[index] = slot.model_copy(update={
                    "start_date": actual.start_date,
                    "end_date": actual.end_date,
                    "status": SlotStatus.active,
                    "modified_by": [*slot.modified_by, entry],
                })
                break
        else:
            slots.append(actual.model_copy(update={
                "status": SlotStatus.active,
                "modified_by": [*actual.modified_by, entry],
            }))

    updated = event.model_copy(update={"time_slots": slots})
    logger.info("Slot %s of event %s rejected by %s", slot_id, event.id, user.id)
    return _settle_review(updated, event, user, reason or "Time slot rejected", now)
