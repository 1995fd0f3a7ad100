"""Call Routes - Anruf-Logs und Anruf-Statistiken."""

import logging
from datetime import date

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.dependencies import get_broadcaster, get_owner_id, get_scheduler, trigger_background_sync
from app.api.exception_handlers import NotFoundException
from app.config import Limits
from app.database import get_db
from app.schemas.errors import ErrorCode
from app.schemas.pagination import PaginatedResponse, PaginationParams
from app.schemas.resources import CallStatsResponse, MutationResponse, ResourceKind
from app.services.call_reconciler import CallRecordReconciler
from app.services.dashboard_query_service import DashboardQueryService
from app.services.event_bus import ChangeBroadcaster
from app.services.sync_scheduler import BackgroundSyncScheduler

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/calls", tags=["Calls"])


@router.get("/logs", response_model=PaginatedResponse[dict])
async def list_call_logs(
    agent_id: str | None = Query(None, description="Remote-ID des Agenten"),
    call_status: str | None = Query(None),
    phone_number: str | None = Query(None, description="Quell- oder Zielnummer"),
    start_date: date | None = Query(None),
    end_date: date | None = Query(None),
    pageno: int = Query(1, ge=1),
    pagesize: int = Query(Limits.PAGE_SIZE_DEFAULT, ge=1, le=Limits.PAGE_SIZE_MAX),
    owner_id: str = Depends(get_owner_id),
    scheduler: BackgroundSyncScheduler | None = Depends(get_scheduler),
    db: AsyncSession = Depends(get_db),
):
    """Anruf-Logs mit Filtern. Jeder Eintrag trägt den aufgelösten campaign_name."""
    trigger_background_sync(
        scheduler,
        owner_id,
        ResourceKind.CALL,
        {
            "agentid": agent_id,
            "call_status": call_status,
            "phone_number": phone_number,
            "start_date": start_date.isoformat() if start_date else None,
            "end_date": end_date.isoformat() if end_date else None,
        },
    )

    pagination = PaginationParams(pageno=pageno, pagesize=pagesize)
    data, total = await DashboardQueryService(db).list_call_records(
        owner_id,
        pagination,
        agent_id=agent_id,
        call_status=call_status,
        phone_number=phone_number,
        start_date=start_date,
        end_date=end_date,
    )
    return PaginatedResponse.create(data, total, pageno, pagesize)


@router.get("/stats", response_model=CallStatsResponse)
async def call_stats(
    agent_id: str | None = Query(None),
    start_date: date | None = Query(None),
    end_date: date | None = Query(None),
    owner_id: str = Depends(get_owner_id),
    db: AsyncSession = Depends(get_db),
):
    """Kennzahlen: Anzahl, abgeschlossen, fehlgeschlagen, Dauer, Kosten."""
    return await DashboardQueryService(db).call_stats(
        owner_id, agent_id=agent_id, start_date=start_date, end_date=end_date
    )


@router.get("/logs/{record_id}")
async def get_call_log(
    record_id: str,
    owner_id: str = Depends(get_owner_id),
    db: AsyncSession = Depends(get_db),
):
    """Einzelnes Anruf-Log über lokale UUID oder Remote-ID."""
    data = await DashboardQueryService(db).get_record(ResourceKind.CALL, owner_id, record_id)
    if data is None:
        raise NotFoundException(f"Anruf-Log {record_id} nicht gefunden", ErrorCode.CALL_RECORD_NOT_FOUND)
    return {"success": True, "data": data}


@router.delete("/logs/{record_id}", response_model=MutationResponse)
async def delete_call_log(
    record_id: str,
    owner_id: str = Depends(get_owner_id),
    broadcaster: ChangeBroadcaster = Depends(get_broadcaster),
    db: AsyncSession = Depends(get_db),
):
    """Löscht ein Anruf-Log lokal (die Plattform bietet kein Löschen von Logs)."""
    record = await DashboardQueryService(db).find_record(ResourceKind.CALL, owner_id, record_id)
    if record is None:
        raise NotFoundException(f"Anruf-Log {record_id} nicht gefunden", ErrorCode.CALL_RECORD_NOT_FOUND)

    remote_id = record.remote_id
    await CallRecordReconciler(db, broadcaster).delete_record(record)
    logger.info(f"Anruf-Log {remote_id} von {owner_id} gelöscht")
    return MutationResponse(
        message="Anruf-Log gelöscht",
        propagation="skipped",
        data={"remote_id": remote_id},
    )
