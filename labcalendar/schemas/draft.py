"""Request/response schemas for the create/edit dialog endpoints."""
from typing import Any, Optional

from labcalendar.schemas.base import LabModel
from labcalendar.schemas.event import Discipline, Event, StockForecastOut
from labcalendar.schemas.slot import AdvisoryOut, FormSlot


class DraftOpenRequest(LabModel):
    dialog_id: Optional[str] = None
    event_id: Optional[str] = None  # set to edit an existing event
    discipline: Discipline = Discipline.chimie


class NewSlotRequest(LabModel):
    date: Optional[str] = None
    start_time: Optional[str] = None
    end_time: Optional[str] = None


class UploadOut(LabModel):
    upload_id: str
    file_name: str
    status: str
    error: Optional[str] = None
    size: int = 0


class DraftOut(LabModel):
    dialog_id: str
    mode: str
    step: str
    event_id: Optional[str] = None
    form: dict[str, Any]
    slots: list[FormSlot]
    removed_slot_ids: list[str] = []
    advisories: list[AdvisoryOut] = []
    errors: list[str] = []
    stock_forecast: list[StockForecastOut] = []
    uploads: list[UploadOut] = []


class CommitRequest(LabModel):
    reason: str = ""


class CommitOut(LabModel):
    event: Event
    is_pending: bool = False
    uploads: list[UploadOut] = []
    draft_closed: bool = True
