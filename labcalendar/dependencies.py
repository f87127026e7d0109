"""FastAPI dependencies: shared services from app state, session and user resolution."""
import logging

from fastapi import Depends, Header, HTTPException, Request
from sqlalchemy.orm import Session

from labcalendar.database import get_db
from labcalendar.schemas.event import CurrentUser
from labcalendar.services.draft_store import DraftStore
from labcalendar.services.event_bus import EventBus, NoticeBoard
from labcalendar.services.event_store import EventStore, SessionStores
from labcalendar.services.lab_api import LabApiClient, LabApiError
from labcalendar.services.preference_service import cache_role, cached_role
from labcalendar.services.transition_service import TransitionService

logger = logging.getLogger(__name__)


def get_bus(request: Request) -> EventBus:
    return request.app.state.bus


def get_notice_board(request: Request) -> NoticeBoard:
    return request.app.state.notices


def get_session_stores(request: Request) -> SessionStores:
    return request.app.state.stores


def get_draft_store(request: Request) -> DraftStore:
    return request.app.state.drafts


def get_lab_api(request: Request) -> LabApiClient:
    return request.app.state.lab_api


def get_session_id(x_session_id: str = Header("default")) -> str:
    """One browser tab = one session; its event list and drafts are kept apart."""
    return x_session_id


def end_session(session_id: str, stores: SessionStores, drafts: DraftStore, notices: NoticeBoard) -> int:
    """Release everything held for a session. Returns the number of drafts closed."""
    stores.drop(session_id)
    notices.forget(session_id)
    return drafts.clear_session(session_id)


def get_event_store(
    session_id: str = Depends(get_session_id),
    stores: SessionStores = Depends(get_session_stores),
    drafts: DraftStore = Depends(get_draft_store),
    notices: NoticeBoard = Depends(get_notice_board),
) -> EventStore:
    for expired in stores.expire_idle():
        if expired != session_id:
            end_session(expired, stores, drafts, notices)
    return stores.for_session(session_id)


async def get_current_user(
    x_user_id: str = Header(...),
    api: LabApiClient = Depends(get_lab_api),
    db: Session = Depends(get_db),
) -> CurrentUser:
    """Look the user up on the lab API; fall back to the last known role if it is down."""
    try:
        user = await api.get_user(x_user_id)
    except LabApiError as exc:
        role = cached_role(db, x_user_id)
        if role is None:
            raise HTTPException(status_code=502, detail=f"Could not load user {x_user_id}: {exc.message}")
        logger.warning("User lookup for %s failed, using cached role %s", x_user_id, role.value)
        return CurrentUser(id=x_user_id, role=role)
    cache_role(db, user.id, user.role)
    return user


def get_transition_service(
    session_id: str = Depends(get_session_id),
    store: EventStore = Depends(get_event_store),
    api: LabApiClient = Depends(get_lab_api),
    bus: EventBus = Depends(get_bus),
) -> TransitionService:
    return TransitionService(api, store, bus, session_id)
