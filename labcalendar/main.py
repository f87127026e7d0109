"""FastAPI application entry point."""
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from labcalendar.config import settings
from labcalendar.database import Base, engine
from labcalendar.errors import register_exception_handlers

# Import routers
from labcalendar.routers import catalogs, drafts, events, notices, preferences, transitions

from labcalendar.services.draft_store import DraftStore
from labcalendar.services.event_bus import EventBus, NoticeBoard
from labcalendar.services.event_store import SessionStores
from labcalendar.services.lab_api import LabApiClient, build_http_client

# Import all models so Base.metadata knows about them
from labcalendar.models.preference import UiPreference  # noqa: F401

logging.basicConfig(
    level=settings.LOG_LEVEL.upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# Reduce verbosity of third-party libraries
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)

app = FastAPI(
    title="Lab Calendar",
    description="Scheduling back end for the lab calendar UI: time slots, validation workflow, event dialogs",
    version="0.1.0",
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS.split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)

# Shared, in-process state. Sessions are keyed by the X-Session-Id header.
app.state.bus = EventBus()
app.state.notices = NoticeBoard(app.state.bus)
app.state.stores = SessionStores(idle_seconds=settings.SESSION_IDLE_SECONDS)
app.state.drafts = DraftStore()
app.state.lab_api = LabApiClient(build_http_client())

# Register routers
app.include_router(events.router, prefix="/api/events", tags=["Events"])
app.include_router(transitions.router, prefix="/api/events", tags=["Transitions"])
app.include_router(drafts.router, prefix="/api/drafts", tags=["Drafts"])
app.include_router(preferences.router, prefix="/api/preferences", tags=["Preferences"])
app.include_router(notices.router, prefix="/api/notices", tags=["Notices"])
app.include_router(catalogs.router, prefix="/api/catalogs", tags=["Catalogs"])


@app.on_event("startup")
def on_startup():
    """Create database tables on startup (for SQLite dev mode)."""
    if settings.DATABASE_URL.startswith("sqlite"):
        Base.metadata.create_all(bind=engine)
    logger.info("Lab calendar started against %s", settings.LAB_API_BASE_URL)


@app.on_event("shutdown")
async def on_shutdown():
    await app.state.lab_api.aclose()


@app.get("/api/health")
def health_check():
    return {"status": "ok"}
