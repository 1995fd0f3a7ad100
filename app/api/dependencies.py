"""Gemeinsame FastAPI-Dependencies (Owner, Scheduler, Plattform-Client, Guard)."""

import logging
from collections.abc import AsyncGenerator
from typing import Any

from fastapi import Depends, Header, Request

from app.config import settings
from app.schemas.resources import ResourceKind
from app.services.event_bus import ChangeBroadcaster, change_broadcaster
from app.services.omni_client import OmniClient
from app.services.sync_guard import Origin, OutboundGuard, resolve_origin
from app.services.sync_scheduler import BackgroundSyncScheduler

logger = logging.getLogger(__name__)


async def get_owner_id(x_owner_id: str | None = Header(default=None)) -> str:
    """Owner aus dem X-Owner-Id Header, sonst der konfigurierte Default-Owner."""
    return (x_owner_id or "").strip() or settings.default_owner_id


def get_broadcaster(request: Request) -> ChangeBroadcaster:
    return getattr(request.app.state, "broadcaster", None) or change_broadcaster


def get_scheduler(request: Request) -> BackgroundSyncScheduler | None:
    return getattr(request.app.state, "scheduler", None)


def get_origin(request: Request) -> Origin:
    return resolve_origin(request.headers)


async def get_omni_client() -> AsyncGenerator[OmniClient | None, None]:
    """Plattform-Client pro Request; None ohne API-Key (Weitergabe schlägt dann fehl)."""
    try:
        client = OmniClient()
    except ValueError as e:
        logger.warning(f"Plattform-Client nicht verfügbar: {e}")
        yield None
        return
    try:
        yield client
    finally:
        await client.close()


async def get_guard(client: OmniClient | None = Depends(get_omni_client)) -> OutboundGuard:
    return OutboundGuard(client)


def trigger_background_sync(
    scheduler: BackgroundSyncScheduler | None,
    owner_id: str,
    resource: ResourceKind,
    filters: dict[str, Any] | None = None,
) -> None:
    """Stößt einen Hintergrund-Sync an, ohne auf ihn zu warten. Fehler blockieren nie die Liste."""
    if scheduler is None:
        return
    try:
        scheduler.trigger(owner_id, resource, filters)
    except Exception as e:
        logger.warning(f"Hintergrund-Sync {resource.value} für {owner_id} nicht gestartet: {e}")
