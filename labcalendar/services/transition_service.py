"""Event mutations seen from one UI session: state changes, slot edits, moves, approvals.

Each action computes its local result with ``workflow``, runs it through
``optimistic_update`` and lets the lab API's answer replace the local copy.
"""
import logging
from dataclasses import dataclass
from typing import Optional

from labcalendar.schemas.event import CurrentUser, Event, EventState
from labcalendar.services import workflow
from labcalendar.services.event_bus import CalendarRefetch, EventBus
from labcalendar.services.event_store import EventStore
from labcalendar.services.lab_api import LabApiClient
from labcalendar.services.optimistic import EventNotLoaded, optimistic_update
from labcalendar.services.queries import get_active_time_slots, is_creator
from labcalendar.services.slot_editor import SlotDiff

logger = logging.getLogger(__name__)


@dataclass
class TransitionOutcome:
    event: Event
    is_pending: bool = False


class TransitionService:
    def __init__(self, api: LabApiClient, store: EventStore, bus: EventBus, session_id: Optional[str] = None) -> None:
        self.api = api
        self.store = store
        self.bus = bus
        self.session_id = session_id

    async def change_state(
        self, event_id: str, user: CurrentUser, state: EventState, reason: str = "",
    ) -> TransitionOutcome:
        """Validate / cancel / start / mark moved, without new slots (state-change endpoint)."""
        result = {}

        def apply(event: Event) -> Event:
            return workflow.change_state(event, state, user, reason)

        async def request(snapshot: Event, local: Event) -> Event:
            response = await self.api.change_state(snapshot, state, reason)
            result["is_pending"] = response.is_pending
            return response.updated_event

        event = await optimistic_update(
            self.store, event_id, apply, request, self.bus, self.session_id, action="change the state of",
        )
        return TransitionOutcome(event=event, is_pending=result.get("is_pending", False))

    async def edit_slots(
        self, event_id: str, user: CurrentUser, diff: SlotDiff, reason: str = "",
    ) -> TransitionOutcome:
        """Save slot edits made in the edit dialog.

        The creator's edits go through the generic update (event back to
        PENDING); anyone else's become a move proposal.
        """
        snapshot = self.store.get(event_id)
        if snapshot is not None and not is_creator(snapshot, user.id, user.email):
            return await self.move(event_id, user, diff, reason)

        def apply(event: Event) -> Event:
            return workflow.apply_slot_edit(event, diff, user, reason).event

        async def request(snapshot: Event, local: Event) -> Event:
            payload = {
                "timeSlots": [slot.to_wire() for slot in local.time_slots],
                "state": local.state.value,
                "stateChanger": [change.to_wire() for change in local.state_changer],
                "modifiedBy": [entry.to_wire() for entry in local.modified_by],
            }
            return await self.api.update_event(event_id, payload, snapshot.discipline)

        event = await optimistic_update(
            self.store, event_id, apply, request, self.bus, self.session_id, action="save the time slots of",
        )
        return TransitionOutcome(event=event, is_pending=False)

    async def move(
        self, event_id: str, user: CurrentUser, diff: SlotDiff, reason: str = "",
    ) -> TransitionOutcome:
        """Transition to MOVED with new slot data (move endpoint)."""
        result = {}

        def apply(event: Event) -> Event:
            workflow.ensure_can_manage_state(user)
            outcome = workflow.apply_slot_edit(event, diff, user, reason, target=EventState.moved)
            result["is_pending"] = outcome.is_pending
            return outcome.event

        async def request(snapshot: Event, local: Event) -> Event:
            owner = is_creator(snapshot, user.id, user.email)
            response = await self.api.move_event(snapshot, get_active_time_slots(local), reason, owner)
            result["is_pending"] = response.is_pending
            return response.updated_event

        event = await optimistic_update(
            self.store, event_id, apply, request, self.bus, self.session_id, action="move",
        )
        return TransitionOutcome(event=event, is_pending=result.get("is_pending", False))

    async def approve_proposal(self, event_id: str, user: CurrentUser, reason: str = "") -> TransitionOutcome:
        def apply(event: Event) -> Event:
            return workflow.approve_proposal(event, user, reason)

        async def request(snapshot: Event, local: Event) -> Event:
            return await self.api.approve_timeslots(snapshot)

        event = await optimistic_update(
            self.store, event_id, apply, request, self.bus, self.session_id, action="approve the slots of",
        )
        return TransitionOutcome(event=event)

    async def reject_proposal(self, event_id: str, user: CurrentUser, reason: str = "") -> TransitionOutcome:
        def apply(event: Event) -> Event:
            return workflow.reject_proposal(event, user, reason)

        async def request(snapshot: Event, local: Event) -> Event:
            return await self.api.reject_timeslots(snapshot)

        event = await optimistic_update(
            self.store, event_id, apply, request, self.bus, self.session_id, action="reject the slots of",
        )
        return TransitionOutcome(event=event)

    async def approve_slot(self, event_id: str, slot_id: str, user: CurrentUser, reason: str = "") -> TransitionOutcome:
        """Accept a single proposed slot (approve-single-timeslot endpoint)."""
        def apply(event: Event) -> Event:
            return workflow.approve_slot(event, slot_id, user, reason)

        async def request(snapshot: Event, local: Event) -> Event:
            return await self.api.approve_single_timeslot(snapshot, slot_id)

        event = await optimistic_update(
            self.store, event_id, apply, request, self.bus, self.session_id, action="approve a time slot of",
        )
        return TransitionOutcome(event=event)

    async def reject_slot(self, event_id: str, slot_id: str, user: CurrentUser, reason: str = "") -> TransitionOutcome:
        def apply(event: Event) -> Event:
            return workflow.reject_slot(event, slot_id, user, reason)

        async def request(snapshot: Event, local: Event) -> Event:
            return await self.api.reject_single_timeslot(snapshot, slot_id, reason)

        event = await optimistic_update(
            self.store, event_id, apply, request, self.bus, self.session_id, action="reject a time slot of",
        )
        return TransitionOutcome(event=event)

    async def confirm_modification(
        self, event_id: str, user: CurrentUser, modification_id: str, confirm: bool,
    ) -> TransitionOutcome:
        """The creator accepts or refuses a modification requested by someone else.

        The outcome is computed by the lab API, so there is no local guess to roll back.
        """
        event = self.store.get(event_id)
        if event is None:
            raise EventNotLoaded(f"Event {event_id} is not loaded")
        if not is_creator(event, user.id, user.email):
            raise workflow.TransitionForbidden("Only the creator of the event can answer a modification request")

        response = await self.api.confirm_modification(event, modification_id, confirm)
        self.store.put(response.updated_event)
        self.bus.publish(CalendarRefetch(session_id=self.session_id, event_id=event_id, reason="confirm modification"))
        logger.info(
            "Modification %s on event %s %s by %s",
            modification_id, event_id, "confirmed" if confirm else "rejected", user.id,
        )
        return TransitionOutcome(event=response.updated_event, is_pending=response.is_pending)
