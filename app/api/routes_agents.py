"""Agent Routes - Voice-Agenten.

Anlegen und Ändern laufen Plattform zuerst, die Antwort wird danach lokal
übernommen. Löschen wirkt lokal sofort und wird einmal weitergegeben.
"""

import logging

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.dependencies import (
    get_broadcaster,
    get_guard,
    get_origin,
    get_owner_id,
    get_scheduler,
    trigger_background_sync,
)
from app.api.exception_handlers import AppException, ExternalServiceException, NotFoundException
from app.config import Limits
from app.database import get_db
from app.schemas.errors import ErrorCode
from app.schemas.pagination import PaginatedResponse, PaginationParams
from app.schemas.resources import (
    AgentCreateRequest,
    AgentUpdateRequest,
    MutationResponse,
    ResourceKind,
)
from app.services.agent_reconciler import AgentReconciler
from app.services.dashboard_query_service import DashboardQueryService
from app.services.event_bus import ChangeBroadcaster
from app.services.field_normalizer import (
    CREATED_ID_EXTRACTORS,
    extract_created_record,
    extract_remote_id,
    first_present,
    to_remote_int,
)
from app.services.sync_guard import (
    Origin,
    OutboundGuard,
    PlatformRequestError,
    PropagationOutcome,
)
from app.services.sync_scheduler import BackgroundSyncScheduler

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/agents", tags=["Agents"])


def _not_found(agent_id) -> NotFoundException:
    return NotFoundException(f"Agent {agent_id} nicht gefunden", ErrorCode.AGENT_NOT_FOUND)


@router.get("", response_model=PaginatedResponse[dict])
async def list_agents(
    pageno: int = Query(1, ge=1),
    pagesize: int = Query(Limits.PAGE_SIZE_DEFAULT, ge=1, le=Limits.PAGE_SIZE_MAX),
    owner_id: str = Depends(get_owner_id),
    scheduler: BackgroundSyncScheduler | None = Depends(get_scheduler),
    db: AsyncSession = Depends(get_db),
):
    """Listet die Agenten des Owners."""
    trigger_background_sync(scheduler, owner_id, ResourceKind.AGENT)
    data, total = await DashboardQueryService(db).list_records(
        ResourceKind.AGENT, owner_id, PaginationParams(pageno=pageno, pagesize=pagesize)
    )
    return PaginatedResponse.create(data, total, pageno, pagesize)


@router.post("", response_model=MutationResponse, status_code=status.HTTP_201_CREATED)
async def create_agent(
    body: AgentCreateRequest,
    owner_id: str = Depends(get_owner_id),
    guard: OutboundGuard = Depends(get_guard),
    broadcaster: ChangeBroadcaster = Depends(get_broadcaster),
    db: AsyncSession = Depends(get_db),
):
    """Legt einen Agenten auf der Plattform an und speichert ihn lokal."""
    try:
        response = await guard.request("create_agent", body.to_platform())
    except PlatformRequestError as e:
        raise ExternalServiceException(f"Agent konnte auf der Plattform nicht angelegt werden: {e}")

    created = extract_created_record(response)
    if created is None:
        logger.error(f"agents/create ohne Remote-ID beantwortet: {response!r}")
        raise ExternalServiceException("Plattform hat keine Agent-ID geliefert")

    remote_id = extract_remote_id(first_present(created, CREATED_ID_EXTRACTORS))
    reconciler = AgentReconciler(db, broadcaster)
    outcome = await reconciler.upsert({**body.to_record(), **created, "id": remote_id}, owner_id)
    return MutationResponse(
        message="Agent angelegt",
        propagation=PropagationOutcome.SENT.value,
        data=reconciler.serialize(outcome.record),
    )


@router.get("/{agent_id}")
async def get_agent(
    agent_id: str,
    owner_id: str = Depends(get_owner_id),
    db: AsyncSession = Depends(get_db),
):
    data = await DashboardQueryService(db).get_record(ResourceKind.AGENT, owner_id, agent_id)
    if data is None:
        raise _not_found(agent_id)
    return {"success": True, "data": data}


@router.put("/{agent_id}", response_model=MutationResponse)
async def update_agent(
    agent_id: str,
    body: AgentUpdateRequest,
    owner_id: str = Depends(get_owner_id),
    guard: OutboundGuard = Depends(get_guard),
    broadcaster: ChangeBroadcaster = Depends(get_broadcaster),
    db: AsyncSession = Depends(get_db),
):
    """Ändert einen Agenten auf der Plattform und übernimmt die Änderung lokal."""
    agent = await DashboardQueryService(db).find_record(ResourceKind.AGENT, owner_id, agent_id)
    if agent is None:
        raise _not_found(agent_id)

    remote_int = to_remote_int(agent.remote_id)
    if remote_int is None:
        raise AppException(
            ErrorCode.INVALID_REMOTE_ID,
            f"Agent {agent.remote_id} hat keine gültige Plattform-ID",
        )

    try:
        response = await guard.request("update_agent", remote_int, body.to_platform(agent.name))
    except PlatformRequestError as e:
        raise ExternalServiceException(f"Agent konnte auf der Plattform nicht geändert werden: {e}")

    reconciler = AgentReconciler(db, broadcaster)
    returned = extract_created_record(response) or {}
    outcome = await reconciler.upsert({**body.to_record(), **returned, "id": agent.remote_id}, owner_id)
    return MutationResponse(
        message="Agent geändert",
        propagation=PropagationOutcome.SENT.value,
        data=reconciler.serialize(outcome.record),
    )


@router.delete("/{agent_id}", response_model=MutationResponse)
async def delete_agent(
    agent_id: str,
    owner_id: str = Depends(get_owner_id),
    origin: Origin = Depends(get_origin),
    guard: OutboundGuard = Depends(get_guard),
    broadcaster: ChangeBroadcaster = Depends(get_broadcaster),
    db: AsyncSession = Depends(get_db),
):
    """Entfernt einen Agenten lokal und auf der Plattform."""
    record = await DashboardQueryService(db).find_record(ResourceKind.AGENT, owner_id, agent_id)
    if record is None:
        raise _not_found(agent_id)

    remote_id = record.remote_id
    await AgentReconciler(db, broadcaster).delete_record(record)
    outcome = await guard.propagate(origin, "delete_agent", remote_id)
    return MutationResponse(
        message="Agent gelöscht",
        propagation=outcome.value,
        data={"remote_id": remote_id},
    )
