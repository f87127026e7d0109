"""Open create/edit dialogs, one draft per (session, dialog).

A draft holds the wizard state and the pending uploads of a dialog between
requests. It lives until the dialog is committed or cancelled; cancelling
also aborts any upload still in flight.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Optional

from labcalendar.services.uploads import UploadManager
from labcalendar.services.wizard import EventWizard

logger = logging.getLogger(__name__)

DraftKey = tuple[str, str]


class DraftNotFound(LookupError):
    """No open dialog under this key."""


@dataclass
class Draft:
    key: DraftKey
    wizard: EventWizard
    uploads: UploadManager
    event_id: Optional[str] = None  # set once the dialog has been saved
    opened_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def session_id(self) -> str:
        return self.key[0]

    @property
    def dialog_id(self) -> str:
        return self.key[1]


class DraftStore:
    def __init__(self) -> None:
        self._drafts: dict[DraftKey, Draft] = {}

    def open(self, session_id: str, dialog_id: str, factory: Callable[[], Draft]) -> Draft:
        """Return the open draft for this dialog, or create one with ``factory``."""
        key = (session_id, dialog_id)
        draft = self._drafts.get(key)
        if draft is None:
            draft = factory()
            self._drafts[key] = draft
            logger.info("Opened draft %s for session %s", dialog_id, session_id)
        return draft

    def get(self, session_id: str, dialog_id: str) -> Draft:
        draft = self._drafts.get((session_id, dialog_id))
        if draft is None:
            raise DraftNotFound(f"No open dialog {dialog_id}")
        return draft

    def find(self, session_id: str, dialog_id: str) -> Optional[Draft]:
        return self._drafts.get((session_id, dialog_id))

    def commit(self, session_id: str, dialog_id: str) -> Draft:
        """Close a saved dialog; its uploads have already run."""
        draft = self.get(session_id, dialog_id)
        del self._drafts[draft.key]
        logger.info("Committed draft %s for session %s", dialog_id, session_id)
        return draft

    def cancel(self, session_id: str, dialog_id: str) -> Draft:
        draft = self.get(session_id, dialog_id)
        del self._drafts[draft.key]
        aborted = draft.uploads.cancel_all()
        logger.info("Cancelled draft %s for session %s (%d uploads aborted)", dialog_id, session_id, aborted)
        return draft

    def clear_session(self, session_id: str) -> int:
        keys = [key for key in self._drafts if key[0] == session_id]
        for key in keys:
            self._drafts.pop(key).uploads.cancel_all()
        return len(keys)

    def __len__(self) -> int:
        return len(self._drafts)
