"""Phone Number Routes - Rufnummern, Import und Agenten-Zuordnung."""

import logging

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy import select
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
from app.models.phone_number import PhoneNumber, PhoneProvider
from app.schemas.errors import ErrorCode
from app.schemas.pagination import PaginatedResponse, PaginationParams
from app.schemas.resources import (
    ExotelImportRequest,
    MutationResponse,
    PhoneNumberAttachRequest,
    PhoneNumberDetachRequest,
    ResourceKind,
    TwilioImportRequest,
)
from app.services.dashboard_query_service import DashboardQueryService
from app.services.event_bus import ChangeBroadcaster
from app.services.field_normalizer import (
    CREATED_ID_EXTRACTORS,
    extract_created_record,
    extract_remote_id,
    first_present,
    normalize_phone_number,
)
from app.services.phone_number_reconciler import PhoneNumberReconciler
from app.services.sync_guard import (
    Origin,
    OutboundGuard,
    PlatformRequestError,
    PropagationOutcome,
    record_propagation,
)
from app.services.sync_scheduler import BackgroundSyncScheduler

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/phone_number", tags=["Phone Numbers"])


def _not_found(phone_number_id) -> NotFoundException:
    return NotFoundException(
        f"Rufnummer {phone_number_id} nicht gefunden", ErrorCode.PHONE_NUMBER_NOT_FOUND
    )


@router.get("/list", response_model=PaginatedResponse[dict])
async def list_phone_numbers(
    pageno: int = Query(1, ge=1),
    pagesize: int = Query(Limits.PAGE_SIZE_DEFAULT, ge=1, le=Limits.PAGE_SIZE_MAX),
    owner_id: str = Depends(get_owner_id),
    scheduler: BackgroundSyncScheduler | None = Depends(get_scheduler),
    db: AsyncSession = Depends(get_db),
):
    """Listet die Rufnummern des Owners."""
    trigger_background_sync(scheduler, owner_id, ResourceKind.PHONE_NUMBER)
    data, total = await DashboardQueryService(db).list_records(
        ResourceKind.PHONE_NUMBER, owner_id, PaginationParams(pageno=pageno, pagesize=pagesize)
    )
    return PaginatedResponse.create(data, total, pageno, pagesize)


async def _import_phone_number(
    provider: PhoneProvider,
    body: TwilioImportRequest | ExotelImportRequest,
    country: str | None,
    owner_id: str,
    guard: OutboundGuard,
    broadcaster: ChangeBroadcaster,
    db: AsyncSession,
) -> MutationResponse:
    """Import Plattform zuerst; lokal gespeichert wird erst mit Remote-ID."""
    normalized = normalize_phone_number(body.number)
    result = await db.execute(select(PhoneNumber).where(PhoneNumber.owner_id == owner_id))
    if any(normalize_phone_number(existing.number) == normalized for existing in result.scalars().all()):
        raise AppException(
            ErrorCode.DUPLICATE_ENTRY,
            f"Rufnummer {body.number} existiert bereits",
            status_code=status.HTTP_409_CONFLICT,
        )

    slug = provider.value.lower()
    try:
        response = await guard.request("import_phone_number", slug, body.to_platform())
    except PlatformRequestError as e:
        raise ExternalServiceException(f"Import der Rufnummer fehlgeschlagen: {e}")

    created = extract_created_record(response)
    if created is None:
        logger.error(f"phone_number/import/{slug} ohne Remote-ID beantwortet")
        raise ExternalServiceException("Plattform hat keine Rufnummern-ID geliefert")

    reconciler = PhoneNumberReconciler(db, broadcaster)
    record = {
        "number": body.number,
        "label": body.name or body.number,
        "provider": provider.value,
        "country": country,
        "status": "Active",
        **created,
        "id": extract_remote_id(first_present(created, CREATED_ID_EXTRACTORS)),
    }
    outcome = await reconciler.upsert(record, owner_id)
    return MutationResponse(
        message="Rufnummer importiert",
        propagation=PropagationOutcome.SENT.value,
        data=reconciler.serialize(outcome.record),
    )


@router.post("/import/twilio", response_model=MutationResponse, status_code=status.HTTP_201_CREATED)
async def import_twilio(
    body: TwilioImportRequest,
    owner_id: str = Depends(get_owner_id),
    guard: OutboundGuard = Depends(get_guard),
    broadcaster: ChangeBroadcaster = Depends(get_broadcaster),
    db: AsyncSession = Depends(get_db),
):
    """Importiert eine Twilio-Nummer."""
    country = "US" if body.phone_number.startswith("+1") else None
    return await _import_phone_number(PhoneProvider.TWILIO, body, country, owner_id, guard, broadcaster, db)


@router.post("/import/exotel", response_model=MutationResponse, status_code=status.HTTP_201_CREATED)
async def import_exotel(
    body: ExotelImportRequest,
    owner_id: str = Depends(get_owner_id),
    guard: OutboundGuard = Depends(get_guard),
    broadcaster: ChangeBroadcaster = Depends(get_broadcaster),
    db: AsyncSession = Depends(get_db),
):
    """Importiert eine Exotel-Nummer (Exotel-Nummern sind indisch)."""
    return await _import_phone_number(PhoneProvider.EXOTEL, body, "IN", owner_id, guard, broadcaster, db)


@router.post("/attach", response_model=MutationResponse)
async def attach_phone_number(
    body: PhoneNumberAttachRequest,
    owner_id: str = Depends(get_owner_id),
    origin: Origin = Depends(get_origin),
    guard: OutboundGuard = Depends(get_guard),
    broadcaster: ChangeBroadcaster = Depends(get_broadcaster),
    db: AsyncSession = Depends(get_db),
):
    """Ordnet eine Rufnummer einem Agenten zu (lokal + Plattform)."""
    reconciler = PhoneNumberReconciler(db, broadcaster)
    change = await reconciler.attach(owner_id, body.phone_number_id, body.agent_id)
    if change.phone_number is None:
        raise _not_found(body.phone_number_id)
    if change.agent is None:
        raise NotFoundException(f"Agent {body.agent_id} nicht gefunden", ErrorCode.AGENT_NOT_FOUND)

    outcome = await guard.propagate(origin, "attach_phone_number", body.phone_number_id, body.agent_id)
    await record_propagation(reconciler, [change.phone_number], outcome)
    return MutationResponse(
        message="Rufnummer zugeordnet",
        propagation=outcome.value,
        data=reconciler.serialize(change.phone_number),
    )


@router.post("/detach", response_model=MutationResponse)
async def detach_phone_number(
    body: PhoneNumberDetachRequest,
    owner_id: str = Depends(get_owner_id),
    origin: Origin = Depends(get_origin),
    guard: OutboundGuard = Depends(get_guard),
    broadcaster: ChangeBroadcaster = Depends(get_broadcaster),
    db: AsyncSession = Depends(get_db),
):
    """Löst die Agenten-Zuordnung einer Rufnummer (lokal + Plattform)."""
    reconciler = PhoneNumberReconciler(db, broadcaster)
    change = await reconciler.detach(owner_id, body.phone_number_id)
    if change.phone_number is None:
        raise _not_found(body.phone_number_id)

    outcome = await guard.propagate(origin, "detach_phone_number", body.phone_number_id)
    await record_propagation(reconciler, [change.phone_number], outcome)
    return MutationResponse(
        message="Zuordnung gelöst",
        propagation=outcome.value,
        data=reconciler.serialize(change.phone_number),
    )


@router.get("/{phone_number_id}")
async def get_phone_number(
    phone_number_id: str,
    owner_id: str = Depends(get_owner_id),
    db: AsyncSession = Depends(get_db),
):
    data = await DashboardQueryService(db).get_record(ResourceKind.PHONE_NUMBER, owner_id, phone_number_id)
    if data is None:
        raise _not_found(phone_number_id)
    return {"success": True, "data": data}


@router.delete("/{phone_number_id}", response_model=MutationResponse)
async def delete_phone_number(
    phone_number_id: str,
    owner_id: str = Depends(get_owner_id),
    origin: Origin = Depends(get_origin),
    guard: OutboundGuard = Depends(get_guard),
    broadcaster: ChangeBroadcaster = Depends(get_broadcaster),
    db: AsyncSession = Depends(get_db),
):
    """Entfernt eine Rufnummer lokal und auf der Plattform."""
    record = await DashboardQueryService(db).find_record(ResourceKind.PHONE_NUMBER, owner_id, phone_number_id)
    if record is None:
        raise _not_found(phone_number_id)

    remote_id = record.remote_id
    await PhoneNumberReconciler(db, broadcaster).delete_record(record)
    outcome = await guard.propagate(origin, "delete_phone_number", remote_id)
    return MutationResponse(
        message="Rufnummer gelöscht",
        propagation=outcome.value,
        data={"remote_id": remote_id},
    )
