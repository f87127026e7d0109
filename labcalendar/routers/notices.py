"""Pending bus messages for a session: notices, refetch requests, upload progress."""
import logging

from fastapi import APIRouter, Depends, status

from labcalendar.dependencies import (
    end_session,
    get_draft_store,
    get_notice_board,
    get_session_id,
    get_session_stores,
)
from labcalendar.services.draft_store import DraftStore
from labcalendar.services.event_bus import NoticeBoard
from labcalendar.services.event_store import SessionStores

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/")
def drain_notices(
    session_id: str = Depends(get_session_id),
    board: NoticeBoard = Depends(get_notice_board),
):
    """Return and clear the session's pending messages, oldest first."""
    return [message.model_dump(mode="json") for message in board.drain(session_id)]


@router.delete("/", status_code=status.HTTP_204_NO_CONTENT)
def close_session(
    session_id: str = Depends(get_session_id),
    board: NoticeBoard = Depends(get_notice_board),
    stores: SessionStores = Depends(get_session_stores),
    drafts: DraftStore = Depends(get_draft_store),
):
    """The tab is closing: drop its event list, pending messages and open dialogs."""
    closed = end_session(session_id, stores, drafts, board)
    logger.info("Session %s closed (%d open dialog(s) discarded)", session_id, closed)
