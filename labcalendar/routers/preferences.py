"""UI preference routes (calendar tab, cached role)."""
import logging
from typing import Any, Optional

from fastapi import APIRouter, Body, Depends
from sqlalchemy.orm import Session

from labcalendar.database import get_db
from labcalendar.schemas.base import LabModel
from labcalendar.services import preference_service

logger = logging.getLogger(__name__)
router = APIRouter()


class CalendarTabOut(LabModel):
    user_id: str
    value: int
    name: str


class CachedRoleOut(LabModel):
    user_id: str
    role: Optional[str] = None


def _tab_out(user_id: str, tab: preference_service.CalendarTab) -> CalendarTabOut:
    return CalendarTabOut(user_id=user_id, value=int(tab), name=tab.name)


@router.get("/{user_id}/calendar-tab", response_model=CalendarTabOut)
def get_calendar_tab(user_id: str, db: Session = Depends(get_db)):
    """Last selected tab; unknown or corrupt values restore the daily tab."""
    return _tab_out(user_id, preference_service.load_tab(db, user_id))


@router.put("/{user_id}/calendar-tab", response_model=CalendarTabOut)
def save_calendar_tab(user_id: str, value: Any = Body(..., embed=True), db: Session = Depends(get_db)):
    preference_service.save_tab(db, user_id, value)
    logger.info("Saved calendar tab %r for %s", value, user_id)
    return _tab_out(user_id, preference_service.load_tab(db, user_id))


@router.get("/{user_id}/role", response_model=CachedRoleOut)
def get_cached_role(user_id: str, db: Session = Depends(get_db)):
    role = preference_service.cached_role(db, user_id)
    return CachedRoleOut(user_id=user_id, role=role.value if role else None)
