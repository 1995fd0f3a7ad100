"""FastAPI Hauptanwendung für das Voice-Dashboard (Sync-Kern)."""

import logging
import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from app.api import (
    agents_router,
    calls_router,
    campaigns_router,
    events_router,
    files_router,
    phone_numbers_router,
    register_exception_handlers,
    sync_router,
    webhook_router,
)
from app.config import settings
from app.database import async_session_maker, init_db
from app.services.event_bus import change_broadcaster
from app.services.sync_scheduler import BackgroundSyncScheduler
from app.state import SyncStateStore

# Logging konfigurieren
logging.basicConfig(
    level=logging.DEBUG if settings.is_development else logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup und Shutdown Events."""
    logger.info("Starte Voice-Dashboard...")
    await init_db()

    app.state.broadcaster = change_broadcaster
    app.state.scheduler = BackgroundSyncScheduler(
        state_store=SyncStateStore(),
        session_factory=async_session_maker,
        broadcaster=change_broadcaster,
    )

    yield

    # Shutdown: laufende Pulls abbrechen, State bleibt nicht in-progress hängen
    await app.state.scheduler.shutdown()
    logger.info("Beende Voice-Dashboard...")


# FastAPI App initialisieren
app = FastAPI(
    title="Voice-Dashboard",
    description="Sync- und Abgleichs-Kern für ein Voice-AI Operator-Dashboard",
    version="1.0.0",
    lifespan=lifespan,
    docs_url="/docs" if settings.is_development else None,
    redoc_url="/redoc" if settings.is_development else None,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if settings.is_development else settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Request-ID Middleware
@app.middleware("http")
async def add_request_id(request: Request, call_next):
    """Fügt eine eindeutige Request-ID zu jedem Request hinzu."""
    request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    request.state.request_id = request_id

    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id

    return response


# Health-Check Endpoint
@app.get("/health", tags=["System"])
async def health_check():
    """Prüft, ob die Anwendung läuft."""
    scheduler = getattr(app.state, "scheduler", None)
    return {
        "status": "healthy",
        "version": "1.0.0",
        "environment": settings.environment,
        "running_syncs": len(scheduler.state_store.running_tasks()) if scheduler else 0,
    }


register_exception_handlers(app)

# API-Router
app.include_router(calls_router, prefix="/api")
app.include_router(phone_numbers_router, prefix="/api")
app.include_router(files_router, prefix="/api")
app.include_router(agents_router, prefix="/api")
app.include_router(campaigns_router, prefix="/api")
app.include_router(webhook_router, prefix="/api")
app.include_router(sync_router, prefix="/api")
app.include_router(events_router, prefix="/api")
