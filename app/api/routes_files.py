"""Knowledge Base Routes - Wissensdatenbank-Dateien und Agenten-Zuordnung."""

import logging

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.dependencies import (
    get_broadcaster,
    get_guard,
    get_origin,
    get_owner_id,
    get_scheduler,
    trigger_background_sync,
)
from app.api.exception_handlers import NotFoundException
from app.config import Limits
from app.database import get_db
from app.schemas.errors import ErrorCode
from app.schemas.pagination import PaginatedResponse, PaginationParams
from app.schemas.resources import FileAttachRequest, MutationResponse, ResourceKind
from app.services.dashboard_query_service import DashboardQueryService
from app.services.event_bus import ChangeBroadcaster
from app.services.file_reconciler import AttachmentChange, KnowledgeFileReconciler
from app.services.sync_guard import Origin, OutboundGuard, record_propagation
from app.services.sync_scheduler import BackgroundSyncScheduler

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/knowledge_base", tags=["Knowledge Base"])


def _check_change(change: AttachmentChange, body: FileAttachRequest) -> None:
    if not change.agent_found:
        raise NotFoundException(f"Agent {body.agent_id} nicht gefunden", ErrorCode.AGENT_NOT_FOUND)
    if not change.files:
        raise NotFoundException(
            f"Keine der Dateien {body.file_ids} gefunden", ErrorCode.FILE_NOT_FOUND
        )


@router.get("/list", response_model=PaginatedResponse[dict])
async def list_files(
    pageno: int = Query(1, ge=1),
    pagesize: int = Query(Limits.PAGE_SIZE_DEFAULT, ge=1, le=Limits.PAGE_SIZE_MAX),
    owner_id: str = Depends(get_owner_id),
    scheduler: BackgroundSyncScheduler | None = Depends(get_scheduler),
    db: AsyncSession = Depends(get_db),
):
    """Listet die Wissensdatenbank-Dateien des Owners."""
    trigger_background_sync(scheduler, owner_id, ResourceKind.FILE)
    data, total = await DashboardQueryService(db).list_records(
        ResourceKind.FILE, owner_id, PaginationParams(pageno=pageno, pagesize=pagesize)
    )
    return PaginatedResponse.create(data, total, pageno, pagesize)


@router.post("/attach", response_model=MutationResponse)
async def attach_files(
    body: FileAttachRequest,
    owner_id: str = Depends(get_owner_id),
    origin: Origin = Depends(get_origin),
    guard: OutboundGuard = Depends(get_guard),
    broadcaster: ChangeBroadcaster = Depends(get_broadcaster),
    db: AsyncSession = Depends(get_db),
):
    """Ordnet Dateien einem Agenten zu (lokal + Plattform)."""
    reconciler = KnowledgeFileReconciler(db, broadcaster)
    change = await reconciler.attach(owner_id, body.file_ids, body.agent_id)
    _check_change(change, body)

    outcome = await guard.propagate(origin, "attach_files", body.file_ids, body.agent_id)
    await record_propagation(reconciler, change.files, outcome)
    return MutationResponse(
        message=f"{len(change.changed_files)} Datei(en) zugeordnet",
        propagation=outcome.value,
        data={
            "files": [reconciler.serialize(f) for f in change.files],
            "missing_file_ids": change.missing_file_ids,
            "knowledge_base_file_count": change.agent.knowledge_base_file_count,
        },
    )


@router.post("/detach", response_model=MutationResponse)
async def detach_files(
    body: FileAttachRequest,
    owner_id: str = Depends(get_owner_id),
    origin: Origin = Depends(get_origin),
    guard: OutboundGuard = Depends(get_guard),
    broadcaster: ChangeBroadcaster = Depends(get_broadcaster),
    db: AsyncSession = Depends(get_db),
):
    """Löst Dateien von einem Agenten (lokal + Plattform)."""
    reconciler = KnowledgeFileReconciler(db, broadcaster)
    change = await reconciler.detach(owner_id, body.file_ids, body.agent_id)
    _check_change(change, body)

    outcome = await guard.propagate(origin, "detach_files", body.file_ids, body.agent_id)
    await record_propagation(reconciler, change.files, outcome)
    return MutationResponse(
        message=f"{len(change.changed_files)} Datei(en) gelöst",
        propagation=outcome.value,
        data={
            "files": [reconciler.serialize(f) for f in change.files],
            "missing_file_ids": change.missing_file_ids,
            "knowledge_base_file_count": change.agent.knowledge_base_file_count,
        },
    )


@router.get("/{file_id}")
async def get_file(
    file_id: str,
    owner_id: str = Depends(get_owner_id),
    db: AsyncSession = Depends(get_db),
):
    data = await DashboardQueryService(db).get_record(ResourceKind.FILE, owner_id, file_id)
    if data is None:
        raise NotFoundException(f"Datei {file_id} nicht gefunden", ErrorCode.FILE_NOT_FOUND)
    return {"success": True, "data": data}


@router.delete("/{file_id}", response_model=MutationResponse)
async def delete_file(
    file_id: str,
    owner_id: str = Depends(get_owner_id),
    origin: Origin = Depends(get_origin),
    guard: OutboundGuard = Depends(get_guard),
    broadcaster: ChangeBroadcaster = Depends(get_broadcaster),
    db: AsyncSession = Depends(get_db),
):
    """Löscht eine Datei lokal und auf der Plattform; Agenten-Zähler werden neu berechnet."""
    record = await DashboardQueryService(db).find_record(ResourceKind.FILE, owner_id, file_id)
    if record is None:
        raise NotFoundException(f"Datei {file_id} nicht gefunden", ErrorCode.FILE_NOT_FOUND)

    remote_id = record.remote_id
    await KnowledgeFileReconciler(db, broadcaster).delete_record(record)
    outcome = await guard.propagate(origin, "delete_file", remote_id)
    return MutationResponse(
        message="Datei gelöscht",
        propagation=outcome.value,
        data={"remote_id": remote_id},
    )
