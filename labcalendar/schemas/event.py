"""Pydantic schemas for calendar events and their time slots."""
from __future__ import annotations

import enum
from datetime import datetime
from typing import Any, Literal, Optional

from pydantic import AliasChoices, Field, field_validator

from labcalendar.schemas.base import LabModel
from labcalendar.schemas.resource import ResourceList


class EventType(str, enum.Enum):
    tp = "TP"
    maintenance = "MAINTENANCE"
    inventory = "INVENTORY"
    other = "OTHER"


class EventState(str, enum.Enum):
    pending = "PENDING"
    validated = "VALIDATED"
    cancelled = "CANCELLED"
    moved = "MOVED"
    in_progress = "IN_PROGRESS"


class Discipline(str, enum.Enum):
    chimie = "chimie"
    physique = "physique"


class SlotStatus(str, enum.Enum):
    active = "active"
    deleted = "deleted"


class SlotAction(str, enum.Enum):
    created = "created"
    modified = "modified"
    deleted = "deleted"
    invalidated = "invalidated"
    approved = "approved"
    rejected = "rejected"
    restored = "restored"


class UserRole(str, enum.Enum):
    admin = "ADMIN"
    adminlabo = "ADMINLABO"
    laborantin = "LABORANTIN"
    teacher = "TEACHER"
    student = "STUDENT"
    user = "USER"
    guest = "GUEST"


class SlotModification(LabModel):
    user_id: str
    date: datetime = Field(validation_alias=AliasChoices("date", "timestamp"))
    action: SlotAction
    note: Optional[str] = None

    @field_validator("action", mode="before")
    @classmethod
    def _legacy_action(cls, v: Any) -> Any:
        # Older records log time edits under their own action name.
        return "modified" if v == "time_modified" else v


class TimeSlot(LabModel):
    id: str
    start_date: datetime
    end_date: datetime
    status: SlotStatus = SlotStatus.active
    created_by: Optional[str] = None
    modified_by: list[SlotModification] = []
    referent_actuel_time_id: Optional[str] = Field(None, alias="referentActuelTimeID")

    @field_validator("status", mode="before")
    @classmethod
    def _collapse_status(cls, v: Any) -> Any:
        # "invalid" / "cancelled" records are history, same as deleted ones.
        if v is None or v == "active":
            return "active"
        return "deleted"

    @field_validator("modified_by", mode="before")
    @classmethod
    def _none_to_list(cls, v: Any) -> Any:
        return v or []

    @property
    def is_active(self) -> bool:
        return self.status == SlotStatus.active


class ModifiedByEntry(LabModel):
    """One user's touches on an event: who, and every time they did."""

    user_id: str
    dates: list[datetime] = []


class StateChange(LabModel):
    user_id: str
    from_state: EventState
    to_state: EventState
    date: datetime
    reason: str = ""


class FileAttachment(LabModel):
    file_name: str
    file_url: Optional[str] = None
    file_size: Optional[int] = None
    file_type: Optional[str] = None
    uploaded_at: Optional[datetime] = None


def _label(value: Any) -> Any:
    if isinstance(value, dict):
        return value.get("name") or value.get("id")
    return value


class Event(LabModel):
    id: str
    title: str = ""
    description: Optional[str] = None
    type: EventType = EventType.tp
    state: EventState = EventState.pending
    discipline: Discipline = Discipline.chimie
    created_by: Optional[str] = None
    modified_by: list[ModifiedByEntry] = []
    state_changer: list[StateChange] = []
    time_slots: list[TimeSlot] = []
    actuel_time_slots: list[TimeSlot] = []
    materials: ResourceList = []
    chemicals: ResourceList = []
    consommables: ResourceList = []
    classes: list[str] = Field([], validation_alias=AliasChoices("classes", "classData", "class_data"))
    room: Optional[str] = None
    files: list[FileAttachment] = []
    remarks: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator("modified_by", mode="before")
    @classmethod
    def _legacy_modified_by(cls, v: Any) -> Any:
        # Legacy rows store [userId, date, date, ...] tuples.
        if not v:
            return []
        entries = []
        for item in v:
            if isinstance(item, (list, tuple)):
                entries.append({"userId": item[0], "dates": list(item[1:])})
            else:
                entries.append(item)
        return entries

    @field_validator("time_slots", "actuel_time_slots", "state_changer", "files", mode="before")
    @classmethod
    def _none_to_list(cls, v: Any) -> Any:
        return v or []

    @field_validator("classes", mode="before")
    @classmethod
    def _class_labels(cls, v: Any) -> Any:
        return [_label(item) for item in v or []]

    @field_validator("room", mode="before")
    @classmethod
    def _room_label(cls, v: Any) -> Any:
        return _label(v)

    @property
    def consumables(self) -> list:
        """Chemicals for chemistry events, consommables for physics ones."""
        if self.discipline == Discipline.physique:
            return self.consommables
        return self.chemicals

    def consumables_field(self) -> str:
        return "consommables" if self.discipline == Discipline.physique else "chemicals"


class CurrentUser(LabModel):
    id: str
    email: Optional[str] = None
    role: UserRole = UserRole.user
    name: Optional[str] = None

    @field_validator("role", mode="before")
    @classmethod
    def _unknown_role(cls, v: Any) -> Any:
        if v in {r.value for r in UserRole}:
            return v
        return UserRole.user.value


class TransitionResult(LabModel):
    """Response of the move-event and state-change endpoints."""

    updated_event: Event
    is_pending: bool = False
    message: Optional[str] = None


class StateChangeRequest(LabModel):
    state: EventState
    reason: str = ""


class SlotInput(LabModel):
    """Slot as typed in a form: calendar date plus local HH:MM times."""

    date: str
    start_time: str
    end_time: str


class MoveRequest(LabModel):
    time_slots: list[SlotInput]
    reason: str = ""


class StockForecastOut(LabModel):
    id: str
    name: str
    unit: Optional[str] = None
    available: Optional[float] = None
    requested: float = 0
    stock_after_request: Optional[float] = None
    insufficient: bool = False
    below_minimum: bool = False


class SlotStatusOut(LabModel):
    slot_id: str
    status: str


class PendingChangesOut(LabModel):
    event_id: str
    has_pending_changes: bool
    slots: list[SlotStatusOut] = []


class ReasonRequest(LabModel):
    reason: str = ""


class ModificationDecision(LabModel):
    """Creator's answer to a pending modification request."""

    action: Literal["confirm", "reject"]
