"""Dashboard Query Service - Lesezugriffe für die Dashboard-Listen.

Liest nur aus dem lokalen Spiegel. Der Hintergrund-Sync wird von den
Routes angestoßen, nicht hier.
"""

import logging
import uuid
from datetime import date, datetime, time, timedelta, timezone
from typing import Any

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.agent import Agent
from app.models.call_record import CallRecord
from app.models.campaign import Campaign
from app.models.knowledge_file import KnowledgeFile
from app.models.phone_number import PhoneNumber
from app.schemas.pagination import PaginationParams
from app.schemas.resources import (
    AgentResponse,
    CallRecordResponse,
    CallStatsResponse,
    CampaignResponse,
    KnowledgeFileResponse,
    PhoneNumberResponse,
    ResourceKind,
)
from app.services.campaign_resolver import CampaignResolver
from app.services.field_normalizer import extract_remote_id, normalize_phone_number
from app.services.reconciler_base import find_agent

logger = logging.getLogger(__name__)

RESOURCE_MODELS = {
    ResourceKind.AGENT: (Agent, AgentResponse),
    ResourceKind.PHONE_NUMBER: (PhoneNumber, PhoneNumberResponse),
    ResourceKind.FILE: (KnowledgeFile, KnowledgeFileResponse),
    ResourceKind.CALL: (CallRecord, CallRecordResponse),
    ResourceKind.CAMPAIGN: (Campaign, CampaignResponse),
}

COMPLETED_STATUSES = ("completed",)
FAILED_STATUSES = ("failed", "busy", "no-answer", "no_answer", "canceled", "cancelled")


def _call_time_column():
    return func.coalesce(CallRecord.call_time, CallRecord.created_at)


def _day_start(value: date) -> datetime:
    return datetime.combine(value, time.min, tzinfo=timezone.utc)


class DashboardQueryService:
    """Listen, Detailansichten und Statistiken aus dem lokalen Spiegel."""

    def __init__(self, db: AsyncSession, campaign_resolver: CampaignResolver | None = None):
        self.db = db
        self.campaign_resolver = campaign_resolver or CampaignResolver(db)

    # ── Allgemein ────────────────────────────────────

    async def find_record(self, resource: ResourceKind, owner_id: str, record_id: str) -> Any | None:
        """Sucht einen Datensatz über lokale UUID oder Remote-ID."""
        model, _ = RESOURCE_MODELS[resource]
        try:
            local_id = uuid.UUID(str(record_id))
        except ValueError:
            local_id = None

        if local_id is not None:
            result = await self.db.execute(
                select(model).where(model.owner_id == owner_id, model.id == local_id)
            )
            record = result.scalar_one_or_none()
            if record is not None:
                return record

        remote_id = extract_remote_id(record_id)
        if not remote_id:
            return None
        result = await self.db.execute(
            select(model).where(model.owner_id == owner_id, model.remote_id == remote_id)
        )
        return result.scalar_one_or_none()

    async def list_records(
        self,
        resource: ResourceKind,
        owner_id: str,
        pagination: PaginationParams,
    ) -> tuple[list[dict[str, Any]], int]:
        """
        Paginierte Liste einer Ressource (neueste zuerst).

        Returns:
            (serialisierte Datensätze, Gesamtanzahl)
        """
        if resource == ResourceKind.CALL:
            return await self.list_call_records(owner_id, pagination)

        model, schema = RESOURCE_MODELS[resource]
        total = await self.db.scalar(
            select(func.count()).select_from(model).where(model.owner_id == owner_id)
        )
        result = await self.db.execute(
            select(model)
            .where(model.owner_id == owner_id)
            .order_by(model.created_at.desc())
            .offset(pagination.offset)
            .limit(pagination.pagesize)
        )
        data = [schema.model_validate(r).model_dump(mode="json") for r in result.scalars().all()]
        return data, total or 0

    async def get_record(self, resource: ResourceKind, owner_id: str, record_id: str) -> dict[str, Any] | None:
        record = await self.find_record(resource, owner_id, record_id)
        if record is None:
            return None
        if resource == ResourceKind.CALL:
            return await self.serialize_call(record)
        _, schema = RESOURCE_MODELS[resource]
        return schema.model_validate(record).model_dump(mode="json")

    # ── Anruf-Logs ───────────────────────────────────

    async def _call_conditions(
        self,
        owner_id: str,
        agent_id: str | None = None,
        call_status: str | None = None,
        phone_number: str | None = None,
        start_date: date | None = None,
        end_date: date | None = None,
    ) -> list | None:
        """WHERE-Bedingungen; None heißt: Filter kann nichts treffen."""
        conditions = [CallRecord.owner_id == owner_id]

        if agent_id:
            agent = await find_agent(self.db, owner_id, remote_id=agent_id)
            if agent is None:
                return None
            conditions.append(CallRecord.agent_id == agent.id)
        if call_status:
            conditions.append(func.lower(CallRecord.status) == call_status.lower())
        if phone_number:
            normalized = normalize_phone_number(phone_number)
            if normalized is None:
                return None
            conditions.append(
                or_(CallRecord.normalized_source == normalized, CallRecord.normalized_to == normalized)
            )
        if start_date:
            conditions.append(_call_time_column() >= _day_start(start_date))
        if end_date:
            conditions.append(_call_time_column() < _day_start(end_date + timedelta(days=1)))
        return conditions

    async def serialize_call(self, call: CallRecord) -> dict[str, Any]:
        """Anruf inkl. aufgelöstem Kampagnen-Namen."""
        payload = CallRecordResponse.model_validate(call).model_dump(mode="json")
        resolution = await self.campaign_resolver.resolve(call)
        payload["campaign_name"] = resolution.name
        return payload

    async def list_call_records(
        self,
        owner_id: str,
        pagination: PaginationParams,
        agent_id: str | None = None,
        call_status: str | None = None,
        phone_number: str | None = None,
        start_date: date | None = None,
        end_date: date | None = None,
    ) -> tuple[list[dict[str, Any]], int]:
        """Anruf-Logs mit Filtern, jeder Eintrag mit campaign_name."""
        conditions = await self._call_conditions(
            owner_id, agent_id, call_status, phone_number, start_date, end_date
        )
        if conditions is None:
            return [], 0

        total = await self.db.scalar(select(func.count()).select_from(CallRecord).where(*conditions))
        result = await self.db.execute(
            select(CallRecord)
            .where(*conditions)
            .order_by(_call_time_column().desc())
            .offset(pagination.offset)
            .limit(pagination.pagesize)
        )
        data = [await self.serialize_call(call) for call in result.scalars().all()]
        return data, total or 0

    async def call_stats(
        self,
        owner_id: str,
        agent_id: str | None = None,
        start_date: date | None = None,
        end_date: date | None = None,
    ) -> CallStatsResponse:
        """Kennzahlen über alle (gefilterten) Anrufe."""
        conditions = await self._call_conditions(
            owner_id, agent_id=agent_id, start_date=start_date, end_date=end_date
        )
        if conditions is None:
            return CallStatsResponse()

        status = func.lower(CallRecord.status)
        row = (
            await self.db.execute(
                select(
                    func.count(CallRecord.id),
                    func.count(CallRecord.id).filter(status.in_(COMPLETED_STATUSES)),
                    func.count(CallRecord.id).filter(status.in_(FAILED_STATUSES)),
                    func.coalesce(func.sum(CallRecord.duration), 0),
                    func.coalesce(func.sum(CallRecord.cost), 0.0),
                ).where(*conditions)
            )
        ).one()
        total, completed, failed, total_duration, total_cost = row

        return CallStatsResponse(
            total_calls=total,
            completed_calls=completed,
            failed_calls=failed,
            total_duration=int(total_duration),
            average_duration=round(total_duration / total, 1) if total else 0.0,
            total_cost=round(float(total_cost), 4),
        )
