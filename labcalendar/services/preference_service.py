"""Per-user UI preferences: last calendar tab and a cached role.

Values are stored raw; reading them back never fails. A tab value that is
missing, unparsable or out of range restores the daily tab.
"""
import enum
import logging
from typing import Optional

from sqlalchemy.orm import Session

from labcalendar.models.preference import UiPreference
from labcalendar.schemas.event import UserRole

logger = logging.getLogger(__name__)


class CalendarTab(enum.IntEnum):
    DAILY = 0
    CALENDAR = 1
    LIST = 2


def restore_tab(raw: Optional[str]) -> CalendarTab:
    if raw is None:
        return CalendarTab.DAILY
    try:
        return CalendarTab(int(str(raw).strip()))
    except ValueError:
        logger.warning("Ignoring stored calendar tab %r", raw)
        return CalendarTab.DAILY


def _get_or_create(db: Session, user_id: str) -> UiPreference:
    pref = db.query(UiPreference).filter(UiPreference.user_id == user_id).first()
    if pref is None:
        pref = UiPreference(user_id=user_id)
        db.add(pref)
    return pref


def save_tab(db: Session, user_id: str, tab) -> UiPreference:
    """Store the tab exactly as given; validation happens on restore."""
    pref = _get_or_create(db, user_id)
    pref.calendar_tab_value = str(int(tab)) if isinstance(tab, CalendarTab) else str(tab)
    db.commit()
    db.refresh(pref)
    return pref


def load_tab(db: Session, user_id: str) -> CalendarTab:
    pref = db.query(UiPreference).filter(UiPreference.user_id == user_id).first()
    return restore_tab(pref.calendar_tab_value if pref else None)


def cache_role(db: Session, user_id: str, role: UserRole) -> None:
    pref = _get_or_create(db, user_id)
    if pref.user_role != role.value:
        pref.user_role = role.value
        db.commit()


def cached_role(db: Session, user_id: str) -> Optional[UserRole]:
    pref = db.query(UiPreference).filter(UiPreference.user_id == user_id).first()
    if pref is None or not pref.user_role:
        return None
    try:
        return UserRole(pref.user_role)
    except ValueError:
        return None
