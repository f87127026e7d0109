"""Form-side representation of a time slot while it is being edited."""
from __future__ import annotations

import datetime as dt
from typing import Any, Optional

from pydantic import Field, field_validator

from labcalendar.schemas.base import LabModel
from labcalendar.schemas.event import SlotModification, SlotStatus


class FormSlot(LabModel):
    """A slot as the user sees it: a calendar day and two local ``HH:MM`` times.

    ``id`` is only set for slots that already exist on the server.
    """

    id: Optional[str] = None
    date: Optional[dt.date] = None
    start_time: str = ""
    end_time: str = ""
    status: SlotStatus = SlotStatus.active
    created_by: Optional[str] = None
    modified_by: list[SlotModification] = []
    referent_actuel_time_id: Optional[str] = Field(None, alias="referentActuelTimeID")

    @field_validator("start_time", "end_time", mode="before")
    @classmethod
    def _normalise_time(cls, v: Any) -> Any:
        if v is None or v == "":
            return ""
        if isinstance(v, dt.time):
            return v.strftime("%H:%M")
        return dt.datetime.strptime(str(v).strip(), "%H:%M").strftime("%H:%M")

    @property
    def is_persisted(self) -> bool:
        return self.id is not None

    @property
    def is_complete(self) -> bool:
        return bool(self.date and self.start_time and self.end_time)


class SlotPatch(LabModel):
    """Partial update sent by the form for one slot."""

    date: Optional[dt.date] = None
    start_time: Optional[str] = None
    end_time: Optional[str] = None


class AdvisoryOut(LabModel):
    index: int
    kind: str
    message: str
