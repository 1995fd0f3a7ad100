"""Campaign Reconciler - Bulk-Call-Kampagnen und ihre Anruf-Zeilen.

Die Zeilen (Zielnummer + Call-Request-ID) sind die Datenbasis für die
Kampagnen-Zuordnung von Anruf-Logs.
"""

import logging
from collections import defaultdict
from typing import Any

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.call_record import CallRecord
from app.models.campaign import Campaign, CampaignLine
from app.models.phone_number import PhoneNumber
from app.schemas.resources import CampaignResponse, ResourceKind
from app.services.field_normalizer import (
    RawRecord,
    extract_fields,
    extract_remote_id,
    first_present,
    keys,
    normalize_display_value,
    normalize_phone_number,
    parse_duration,
    parse_float,
    parse_int,
)
from app.services.reconciler_base import BaseReconciler, UpsertOutcome, find_agent

logger = logging.getLogger(__name__)

CAMPAIGN_ID_EXTRACTORS = keys("id", "bulk_call_id", "campaign_id")

CAMPAIGN_FIELD_EXTRACTORS = {
    "name": keys("name", "campaign_name", "bulk_call_name"),
    "status": keys("status", "campaign_status"),
    "from_number": keys("twilio_number", "from_number", "phone_number"),
    "bot_name": keys("bot_name", "agent_name"),
    "total_calls": keys("total_calls_to_dispatch", "total_calls"),
    "completed_calls": keys("completed_calls"),
    "picked_up_calls": keys("calls_picked_up", "picked_up_calls"),
    "failed_calls": keys("failed_calls"),
    "total_cost": keys("total_call_cost", "total_cost"),
    "progress_percent": keys("progress", "progress_percent"),
}

CAMPAIGN_AGENT_EXTRACTORS = keys("bot_id", "agent_id", "bot")
LINE_LIST_EXTRACTORS = keys("call_lines", "bulk_call_lines", "calls")
CONTACT_LIST_EXTRACTORS = keys("contact_list", "phone_numbers")

LINE_NUMBER_EXTRACTORS = keys("to_number", "phone_number", "number")
LINE_CALL_ID_EXTRACTORS = keys("call_request_id", "call_id")
LINE_STATUS_EXTRACTORS = keys("call_status", "status")
LINE_DURATION_EXTRACTORS = keys("call_duration_in_seconds", "duration")


class CampaignReconciler(BaseReconciler):
    """Upsert für Kampagnen inkl. Anruf-Zeilen."""

    resource = ResourceKind.CAMPAIGN
    model = Campaign
    response_schema = CampaignResponse
    envelope_keys = ("bulk_call_data", "bulk_calls", "campaigns")
    visible_fields = frozenset(
        {
            "name",
            "status",
            "agent_id",
            "phone_number_id",
            "from_number",
            "total_calls",
            "completed_calls",
            "picked_up_calls",
            "failed_calls",
            "total_cost",
            "progress_percent",
        }
    )

    def extract_id(self, raw: RawRecord) -> str | None:
        return extract_remote_id(first_present(raw, CAMPAIGN_ID_EXTRACTORS))

    async def map_fields(
        self, raw: RawRecord, owner_id: str, existing: Campaign | None
    ) -> dict[str, Any]:
        values = extract_fields(raw, CAMPAIGN_FIELD_EXTRACTORS)
        for name in ("name", "status", "from_number", "bot_name"):
            values[name] = normalize_display_value(values[name])
        for name in ("total_calls", "completed_calls", "picked_up_calls", "failed_calls"):
            if values[name] is not None:
                values[name] = parse_int(values[name])
        values["total_cost"] = parse_float(values["total_cost"])

        if values["progress_percent"] is not None:
            values["progress_percent"] = parse_int(values["progress_percent"])
        elif values["total_calls"]:
            values["progress_percent"] = round(
                (values["completed_calls"] or 0) * 100 / values["total_calls"]
            )

        agent = await find_agent(self.db, owner_id, remote_id=first_present(raw, CAMPAIGN_AGENT_EXTRACTORS))
        values["agent_id"] = agent.id if agent else None
        values["phone_number_id"] = await self._find_phone_number_id(owner_id, values["from_number"])

        if existing is None:
            values["name"] = values["name"] or f"Campaign {self.extract_id(raw)}"
        return values

    async def _find_phone_number_id(self, owner_id: str, number: str | None):
        normalized = normalize_phone_number(number)
        if not normalized:
            return None
        result = await self.db.execute(select(PhoneNumber).where(PhoneNumber.owner_id == owner_id))
        for phone_number in result.scalars().all():
            if normalize_phone_number(phone_number.number) == normalized:
                return phone_number.id
        return None

    async def after_upsert(self, outcome: UpsertOutcome, raw: RawRecord, owner_id: str) -> None:
        """Legt Anruf-Zeilen aus call_lines bzw. contact_list an oder aktualisiert sie."""
        entries: list[Any] = []
        for extractors in (LINE_LIST_EXTRACTORS, CONTACT_LIST_EXTRACTORS):
            value = first_present(raw, extractors)
            if isinstance(value, list):
                entries.extend(value)
        if not entries:
            return

        index = await CampaignLineIndex.load(self.db, outcome.record)
        for entry in entries:
            if isinstance(entry, dict):
                to_number = normalize_display_value(first_present(entry, LINE_NUMBER_EXTRACTORS))
                call_id = extract_remote_id(first_present(entry, LINE_CALL_ID_EXTRACTORS))
                status = normalize_display_value(first_present(entry, LINE_STATUS_EXTRACTORS))
                duration = first_present(entry, LINE_DURATION_EXTRACTORS)
            else:
                to_number, call_id, status, duration = normalize_display_value(entry), None, None, None
            if to_number:
                index.upsert(to_number, call_id, status, duration)


def _number_key(to_number: str) -> str:
    return normalize_phone_number(to_number) or to_number


class CampaignLineIndex:
    """Die Anruf-Zeilen einer Kampagne, eindeutig über die Call-Request-ID.

    Ein Anruf mit neuer Call-Request-ID übernimmt eine offene Kontakt-Zeile
    mit derselben Nummer, sonst bekommt er eine eigene Zeile. Ein Retry an
    dieselbe Nummer überschreibt also nie die ID des ersten Versuchs.
    """

    def __init__(self, db: AsyncSession, campaign: Campaign, lines: list[CampaignLine]):
        self.db = db
        self.campaign = campaign
        self.by_call_id: dict[str, CampaignLine] = {}
        self.open_contacts: dict[str, list[CampaignLine]] = defaultdict(list)
        self.numbers: set[str] = set()
        for line in lines:
            key = _number_key(line.to_number)
            self.numbers.add(key)
            if line.remote_call_id:
                self.by_call_id[line.remote_call_id] = line
            else:
                self.open_contacts[key].append(line)

    @classmethod
    async def load(cls, db: AsyncSession, campaign: Campaign) -> "CampaignLineIndex":
        result = await db.execute(
            select(CampaignLine)
            .where(CampaignLine.campaign_id == campaign.id)
            .order_by(CampaignLine.created_at)
        )
        return cls(db, campaign, list(result.scalars().all()))

    def _add(self, to_number: str) -> CampaignLine:
        line = CampaignLine(
            campaign_id=self.campaign.id,
            to_number=to_number,
            normalized_to=normalize_phone_number(to_number),
        )
        self.db.add(line)
        self.numbers.add(_number_key(to_number))
        return line

    def upsert(
        self,
        to_number: str,
        call_id: str | None = None,
        status: str | None = None,
        duration: Any = None,
    ) -> CampaignLine | None:
        """
        Legt eine Zeile an oder aktualisiert sie.

        Returns:
            Die Zeile, oder None für einen Kontakt ohne Call-Request-ID,
            dessen Nummer schon über einen Anruf abgedeckt ist.
        """
        key = _number_key(to_number)
        if call_id:
            line = self.by_call_id.get(call_id)
            if line is None:
                waiting = self.open_contacts.get(key)
                line = waiting.pop(0) if waiting else self._add(to_number)
                line.remote_call_id = call_id
                self.by_call_id[call_id] = line
        else:
            waiting = self.open_contacts.get(key)
            if waiting:
                line = waiting[0]
            elif key in self.numbers:
                return None
            else:
                line = self._add(to_number)
                self.open_contacts[key].append(line)

        if status:
            line.call_status = status
        if duration is not None:
            line.duration = parse_duration(duration)
        return line


def _names_conflict(left: str | None, right: str | None) -> bool:
    return bool(left and right and left.strip().lower() != right.strip().lower())


async def link_call_to_campaign(db: AsyncSession, call: CallRecord) -> CampaignLine | None:
    """
    Trägt die Call-Request-ID eines Anruf-Logs in die passende Kampagnen-Zeile ein.

    Kandidaten sind Kampagnen des Owners, deren Zeilen die Zielnummer
    enthalten oder deren Absendernummer die Quelle des Anrufs ist. Kampagnen
    mit anderem Bot-Namen oder anderem Agenten scheiden aus. Reihenfolge:
    beide Merkmale, nur Zielnummer, nur Absendernummer, jeweils neueste zuerst.

    Returns:
        Die Zeile, oder None wenn keine Kampagne passt
    """
    if not call.call_request_id or not call.to_number:
        return None

    existing = await db.execute(
        select(CampaignLine)
        .join(Campaign, Campaign.id == CampaignLine.campaign_id)
        .where(Campaign.owner_id == call.owner_id, CampaignLine.remote_call_id == call.call_request_id)
        .limit(1)
    )
    line = existing.scalar_one_or_none()
    if line is not None:
        if call.status:
            line.call_status = call.status
        if call.duration:
            line.duration = call.duration
        return line

    with_destination: set = set()
    if call.normalized_to:
        result = await db.execute(
            select(CampaignLine.campaign_id)
            .join(Campaign, Campaign.id == CampaignLine.campaign_id)
            .where(Campaign.owner_id == call.owner_id, CampaignLine.normalized_to == call.normalized_to)
            .distinct()
        )
        with_destination = set(result.scalars().all())

    conditions = [Campaign.from_number.is_not(None)]
    if with_destination:
        conditions.append(Campaign.id.in_(with_destination))
    result = await db.execute(
        select(Campaign)
        .where(Campaign.owner_id == call.owner_id, or_(*conditions))
        .order_by(Campaign.created_at.desc())
    )

    ranked: list[tuple[int, Campaign]] = []
    for campaign in result.scalars().all():
        if _names_conflict(campaign.bot_name, call.bot_name):
            continue
        if campaign.agent_id and call.agent_id and campaign.agent_id != call.agent_id:
            continue
        by_destination = campaign.id in with_destination
        by_source = bool(
            call.normalized_source
            and normalize_phone_number(campaign.from_number) == call.normalized_source
        )
        if by_destination and by_source:
            ranked.append((0, campaign))
        elif by_destination:
            ranked.append((1, campaign))
        elif by_source:
            ranked.append((2, campaign))
    if not ranked:
        return None

    # sorted ist stabil: innerhalb eines Rangs bleibt die neueste Kampagne vorn
    campaign = sorted(ranked, key=lambda item: item[0])[0][1]
    index = await CampaignLineIndex.load(db, campaign)
    line = index.upsert(call.to_number, call.call_request_id, call.status, call.duration)
    logger.info(f"Anruf {call.remote_id} mit Kampagne '{campaign.name}' verknüpft ({call.call_request_id})")
    return line
