"""Sync Routes - Status und manueller Anstoß des Hintergrund-Syncs."""

import logging

from fastapi import APIRouter, Depends, Query

from app.api.dependencies import get_owner_id, get_scheduler
from app.api.exception_handlers import AppException, ExternalServiceException
from app.schemas.errors import ErrorCode
from app.schemas.resources import ResourceKind
from app.services.sync_scheduler import BackgroundSyncScheduler, PullResult

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/sync", tags=["Sync"])


def _require_scheduler(scheduler: BackgroundSyncScheduler | None) -> BackgroundSyncScheduler:
    if scheduler is None:
        raise AppException(
            error_code=ErrorCode.INTERNAL_ERROR,
            message="Sync-Scheduler nicht initialisiert",
            status_code=503,
        )
    return scheduler


@router.get("/status")
async def sync_status(
    owner_id: str = Depends(get_owner_id),
    scheduler: BackgroundSyncScheduler | None = Depends(get_scheduler),
):
    """Sync-Zustand aller Ressourcen des Owners."""
    return {"success": True, "data": _require_scheduler(scheduler).status(owner_id)}


@router.post("/{resource}")
async def trigger_sync(
    resource: str,
    wait: bool = Query(False, description="Auf das Ergebnis warten"),
    force: bool = Query(True, description="Cooldown ignorieren"),
    owner_id: str = Depends(get_owner_id),
    scheduler: BackgroundSyncScheduler | None = Depends(get_scheduler),
):
    """
    Stößt einen Sync einer Ressource an.

    Ein bereits laufender Sync wird nicht doppelt gestartet.
    """
    scheduler = _require_scheduler(scheduler)
    try:
        kind = ResourceKind(resource)
    except ValueError:
        raise AppException(
            error_code=ErrorCode.UNKNOWN_RESOURCE,
            message=f"Unbekannte Ressource '{resource}'. Erlaubt: {', '.join(k.value for k in ResourceKind)}",
        )

    if not wait:
        scheduler.trigger(owner_id, kind, force=force)
        return {"success": True, "message": f"Sync {kind.value} gestartet", "data": None}

    result = await scheduler.request(owner_id, kind, force=force)
    if isinstance(result, PullResult) and result.error:
        raise ExternalServiceException(f"Sync {kind.value} fehlgeschlagen: {result.error}")
    return {
        "success": True,
        "message": f"Sync {kind.value} abgeschlossen",
        "data": result.to_dict() if isinstance(result, PullResult) else None,
    }
