"""Campaign Resolver - Ordnet einem Anruf-Log einen Kampagnen-Namen zu.

Reine Anzeige-Heuristik, kein Fremdschlüssel-Zwang. Jede Stufe ist
isoliert: wirft sie, wird geloggt und die nächste probiert. Im
schlimmsten Fall ist das Ergebnis "Incoming Call".
"""

import logging
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.models.call_record import CallRecord
from app.models.campaign import Campaign, CampaignLine
from app.services.field_normalizer import normalize_phone_number

logger = logging.getLogger(__name__)

INCOMING_CALL_LABEL = "Incoming Call"


@dataclass
class CampaignResolution:
    """Ergebnis der Kampagnen-Zuordnung."""

    name: str
    campaign_id: uuid.UUID | None = None
    tier: str = "default"

    @property
    def is_campaign(self) -> bool:
        return self.campaign_id is not None or self.tier == "denormalized"


class CampaignResolver:
    """Mehrstufige Kampagnen-Zuordnung, erste Stufe mit Treffer gewinnt.

    1. denormalisierter Name am Datensatz
    2. Call-Request-ID gegen Kampagnen-Zeilen
    3. gleiche Zielnummer + gleicher Agent, neueste Kampagne
    4. gleiche Zielnummer ohne Agent
    5. Quelle ist keine eigene System-Nummer → "Incoming Call"
    6. Default "Incoming Call"
    """

    def __init__(self, db: AsyncSession, system_numbers: list[str] | None = None):
        self.db = db
        numbers = settings.system_numbers if system_numbers is None else system_numbers
        self.system_numbers = {normalize_phone_number(n) for n in numbers} - {None}

    @property
    def tiers(self) -> list[tuple[str, Callable[[CallRecord], Awaitable[CampaignResolution | None]]]]:
        return [
            ("denormalized", self._by_denormalized_name),
            ("call_request_id", self.match_call_request),
            ("destination_and_agent", self._by_destination_and_agent),
            ("destination", self._by_destination),
            ("incoming", self._by_inbound_source),
        ]

    async def resolve(self, call: CallRecord) -> CampaignResolution:
        """
        Ermittelt den Kampagnen-Namen eines Anrufs.

        Args:
            call: Anruf-Log (muss nicht committet sein)

        Returns:
            CampaignResolution, nie eine Exception
        """
        for tier_name, tier in self.tiers:
            try:
                # Savepoint: ein fehlgeschlagenes Statement bricht auf PostgreSQL sonst die Transaktion ab
                async with self.db.begin_nested():
                    resolution = await tier(call)
            except Exception as e:
                logger.warning(
                    f"Kampagnen-Zuordnung Stufe '{tier_name}' für Anruf {call.remote_id} fehlgeschlagen: {e}"
                )
                continue
            if resolution is not None:
                return resolution
        return CampaignResolution(name=INCOMING_CALL_LABEL)

    async def _by_denormalized_name(self, call: CallRecord) -> CampaignResolution | None:
        if call.campaign_name:
            return CampaignResolution(
                name=call.campaign_name, campaign_id=call.campaign_id, tier="denormalized"
            )
        return None

    async def match_call_request(self, call: CallRecord) -> CampaignResolution | None:
        """Kampagne über die Call-Request-ID (Kampagnen-Zeilen)."""
        if not call.call_request_id:
            return None
        result = await self.db.execute(
            select(Campaign)
            .join(CampaignLine, CampaignLine.campaign_id == Campaign.id)
            .where(
                Campaign.owner_id == call.owner_id,
                CampaignLine.remote_call_id == call.call_request_id,
            )
            .order_by(Campaign.created_at.desc())
            .limit(1)
        )
        campaign = result.scalar_one_or_none()
        if campaign is None:
            return None
        return CampaignResolution(name=campaign.name, campaign_id=campaign.id, tier="call_request_id")

    async def _latest_campaign_for_destination(
        self, call: CallRecord, agent_id: uuid.UUID | None
    ) -> Campaign | None:
        destination = call.normalized_to or normalize_phone_number(call.to_number)
        if not destination:
            return None
        query = (
            select(Campaign)
            .join(CampaignLine, CampaignLine.campaign_id == Campaign.id)
            .where(
                Campaign.owner_id == call.owner_id,
                CampaignLine.normalized_to == destination,
            )
        )
        if agent_id is not None:
            query = query.where(Campaign.agent_id == agent_id)
        result = await self.db.execute(query.order_by(Campaign.created_at.desc()).limit(1))
        return result.scalar_one_or_none()

    async def _by_destination_and_agent(self, call: CallRecord) -> CampaignResolution | None:
        if call.agent_id is None:
            return None
        campaign = await self._latest_campaign_for_destination(call, call.agent_id)
        if campaign is None:
            return None
        return CampaignResolution(
            name=campaign.name, campaign_id=campaign.id, tier="destination_and_agent"
        )

    async def _by_destination(self, call: CallRecord) -> CampaignResolution | None:
        campaign = await self._latest_campaign_for_destination(call, None)
        if campaign is None:
            return None
        return CampaignResolution(name=campaign.name, campaign_id=campaign.id, tier="destination")

    async def _by_inbound_source(self, call: CallRecord) -> CampaignResolution | None:
        source = call.normalized_source or normalize_phone_number(call.source)
        if source and source not in self.system_numbers:
            return CampaignResolution(name=INCOMING_CALL_LABEL, tier="incoming")
        return None
