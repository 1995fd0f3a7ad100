"""Campaign Routes - Bulk-Call-Kampagnen."""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.dependencies import get_owner_id, get_scheduler, trigger_background_sync
from app.api.exception_handlers import NotFoundException
from app.config import Limits
from app.database import get_db
from app.schemas.errors import ErrorCode
from app.schemas.pagination import PaginatedResponse, PaginationParams
from app.schemas.resources import ResourceKind
from app.services.dashboard_query_service import DashboardQueryService
from app.services.sync_scheduler import BackgroundSyncScheduler

router = APIRouter(prefix="/campaigns", tags=["Campaigns"])


@router.get("", response_model=PaginatedResponse[dict])
async def list_campaigns(
    pageno: int = Query(1, ge=1),
    pagesize: int = Query(Limits.PAGE_SIZE_DEFAULT, ge=1, le=Limits.PAGE_SIZE_MAX),
    owner_id: str = Depends(get_owner_id),
    scheduler: BackgroundSyncScheduler | None = Depends(get_scheduler),
    db: AsyncSession = Depends(get_db),
):
    """Listet die Kampagnen des Owners inkl. Fortschritt."""
    trigger_background_sync(scheduler, owner_id, ResourceKind.CAMPAIGN)
    data, total = await DashboardQueryService(db).list_records(
        ResourceKind.CAMPAIGN, owner_id, PaginationParams(pageno=pageno, pagesize=pagesize)
    )
    return PaginatedResponse.create(data, total, pageno, pagesize)


@router.get("/{campaign_id}")
async def get_campaign(
    campaign_id: str,
    owner_id: str = Depends(get_owner_id),
    db: AsyncSession = Depends(get_db),
):
    data = await DashboardQueryService(db).get_record(ResourceKind.CAMPAIGN, owner_id, campaign_id)
    if data is None:
        raise NotFoundException(f"Kampagne {campaign_id} nicht gefunden", ErrorCode.CAMPAIGN_NOT_FOUND)
    return {"success": True, "data": data}
