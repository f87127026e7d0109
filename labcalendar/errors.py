"""Map domain errors raised by the services onto HTTP responses."""
import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from labcalendar.services.draft_store import DraftNotFound
from labcalendar.services.lab_api import LabApiError
from labcalendar.services.optimistic import EventNotLoaded
from labcalendar.services.slot_editor import SlotEditError
from labcalendar.services.wizard import WizardStepError
from labcalendar.services.workflow import SlotNotFound, TransitionForbidden, WorkflowError

logger = logging.getLogger(__name__)


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(LabApiError)
    async def handle_lab_api(request: Request, exc: LabApiError):
        # Client errors from the lab API are passed through; anything else is a bad gateway.
        status_code = exc.status_code if exc.status_code and 400 <= exc.status_code < 500 else 502
        return JSONResponse(status_code=status_code, content={"detail": exc.message})

    @app.exception_handler(WizardStepError)
    async def handle_wizard_step(request: Request, exc: WizardStepError):
        return JSONResponse(
            status_code=422,
            content={"detail": str(exc), "step": exc.step.value, "errors": exc.errors},
        )

    @app.exception_handler(SlotEditError)
    async def handle_slot_edit(request: Request, exc: SlotEditError):
        return JSONResponse(status_code=400, content={"detail": str(exc)})

    @app.exception_handler(TransitionForbidden)
    async def handle_forbidden(request: Request, exc: TransitionForbidden):
        logger.warning("Forbidden transition at %s: %s", request.url.path, exc)
        return JSONResponse(status_code=403, content={"detail": str(exc)})

    @app.exception_handler(SlotNotFound)
    async def handle_slot_not_found(request: Request, exc: SlotNotFound):
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    @app.exception_handler(WorkflowError)
    async def handle_workflow(request: Request, exc: WorkflowError):
        return JSONResponse(status_code=409, content={"detail": str(exc)})

    @app.exception_handler(EventNotLoaded)
    async def handle_not_loaded(request: Request, exc: EventNotLoaded):
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    @app.exception_handler(DraftNotFound)
    async def handle_draft_not_found(request: Request, exc: DraftNotFound):
        return JSONResponse(status_code=404, content={"detail": str(exc)})
