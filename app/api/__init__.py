"""API-Routen für das Voice-Dashboard."""

from app.api.exception_handlers import (
    AppException,
    ExternalServiceException,
    NotFoundException,
    UnroutableWebhookException,
    register_exception_handlers,
)
from app.api.routes_agents import router as agents_router
from app.api.routes_calls import router as calls_router
from app.api.routes_campaigns import router as campaigns_router
from app.api.routes_events import router as events_router
from app.api.routes_files import router as files_router
from app.api.routes_phone_numbers import router as phone_numbers_router
from app.api.routes_sync import router as sync_router
from app.api.routes_webhook import router as webhook_router

__all__ = [
    # Exceptions
    "AppException",
    "ExternalServiceException",
    "NotFoundException",
    "UnroutableWebhookException",
    "register_exception_handlers",
    # Router
    "agents_router",
    "calls_router",
    "campaigns_router",
    "events_router",
    "files_router",
    "phone_numbers_router",
    "sync_router",
    "webhook_router",
]
