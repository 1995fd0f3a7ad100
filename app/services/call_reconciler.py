"""Call Reconciler - Importiert Anruf-Logs der Plattform.

Anruf-Logs werden nur inkrementell synchronisiert (seitenweise, gefiltert),
daher gibt es hier kein Prune. Die Agenten-Referenz wird über eine feste
Reihenfolge von Strategien aufgelöst; schlägt jede fehl, bleibt eine
bereits aufgelöste Referenz stehen.
"""

import json
import logging
import uuid
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from app.models.call_record import CallRecord
from app.models.sync_metadata import SyncStatus
from app.schemas.resources import CallRecordResponse, ResourceKind
from app.services.campaign_reconciler import link_call_to_campaign
from app.services.campaign_resolver import INCOMING_CALL_LABEL, CampaignResolver
from app.services.event_bus import ChangeBroadcaster
from app.services.field_normalizer import (
    Extractor,
    RawRecord,
    extract_fields,
    extract_remote_id,
    first_present,
    keys,
    normalize_display_value,
    normalize_phone_number,
    parse_call_time,
    parse_duration,
    parse_float,
    path,
)
from app.services.reconciler_base import BaseReconciler, UpsertOutcome, find_agent

logger = logging.getLogger(__name__)

DEFAULT_CALL_STATUS = "completed"


def _campaign_name_from_post_call_actions(raw: RawRecord) -> str | None:
    """bulk_call_name steckt als JSON-String im ersten Recording-Webhook-Payload."""
    payload = path("post_call_actions", "call_recording_webhook_ids", 0, "payload")(raw)
    if isinstance(payload, str):
        try:
            payload = json.loads(payload)
        except ValueError:
            return None
    if isinstance(payload, dict):
        return payload.get("bulk_call_name")
    return None


CALL_ID_EXTRACTORS = keys("id", "call_log_id", "call_id")

CALL_FIELD_EXTRACTORS: dict[str, tuple[Extractor, ...]] = {
    "to_number": keys("to_number", "toNumber", "dialed_number", "phoneNumberTo", "phoneTo", "phone_number_to"),
    "source": keys("from_number", "phone_number", "phoneNumber", "phone", "source"),
    "duration": keys("call_duration_in_seconds", "duration", "call_duration"),
    "call_type": keys("call_type", "callType", "channel_type", "direction"),
    "cqs_score": keys("cqs_score", "cqsScore", "quality_score"),
    "status": keys("call_status", "status"),
    "cost": keys("call_cost", "cost", "amount"),
    "recording_url": keys("recording_url", "recordingUrl", "recording"),
    "transcript": keys("call_conversation", "transcript", "transcription"),
    "call_request_id": keys("call_request_id"),
    "bot_name": keys("bot_name", "agent_name"),
    "campaign_name": (*keys("bulk_call_name", "campaign_name"), _campaign_name_from_post_call_actions),
    "call_time": keys("time_of_call", "created_at", "createdAt", "timestamp"),
}

# (Name, Extraktoren, Suchart) - erste auflösende Strategie gewinnt
AGENT_RESOLUTION_STRATEGIES: tuple[tuple[str, tuple[Extractor, ...], str], ...] = (
    ("remote_agent_id", (*keys("bot_id", "agent_id"), path("agent", "id")), "id"),
    ("active_bot_id", keys("active_bot_id"), "id"),
    ("agent_name", keys("bot_name", "agent_name"), "name"),
)


class CallRecordReconciler(BaseReconciler):
    """Upsert für Anruf-Logs inkl. Agenten- und Kampagnen-Zuordnung."""

    resource = ResourceKind.CALL
    model = CallRecord
    response_schema = CallRecordResponse
    envelope_keys = ("call_log_data", "call_logs", "logs")
    supports_prune = False
    visible_fields = frozenset(
        {
            "source",
            "to_number",
            "duration",
            "call_type",
            "status",
            "cost",
            "cqs_score",
            "transcript",
            "recording_url",
            "agent_id",
            "campaign_name",
            "campaign_id",
        }
    )

    def __init__(
        self,
        db: AsyncSession,
        broadcaster: ChangeBroadcaster | None = None,
        campaign_resolver: CampaignResolver | None = None,
    ):
        super().__init__(db, broadcaster)
        self.campaign_resolver = campaign_resolver or CampaignResolver(db)
        self._resolved_names: dict[uuid.UUID, str] = {}

    def extract_id(self, raw: RawRecord) -> str | None:
        return extract_remote_id(first_present(raw, CALL_ID_EXTRACTORS))

    async def resolve_agent_id(self, raw: RawRecord, owner_id: str) -> uuid.UUID | None:
        """Probiert die Strategien der Reihe nach: Remote-ID, active_bot_id, Name."""
        for strategy, extractors, lookup in AGENT_RESOLUTION_STRATEGIES:
            value = first_present(raw, extractors)
            if value is None:
                continue
            if lookup == "id":
                agent = await find_agent(self.db, owner_id, remote_id=value)
            else:
                agent = await find_agent(self.db, owner_id, name=normalize_display_value(value))
            if agent is not None:
                logger.debug(f"Agent für Anruf über '{strategy}' aufgelöst: {agent.remote_id}")
                return agent.id
        return None

    async def map_fields(
        self, raw: RawRecord, owner_id: str, existing: CallRecord | None
    ) -> dict[str, Any] | None:
        values = extract_fields(raw, CALL_FIELD_EXTRACTORS)

        for name in ("to_number", "source", "call_type", "status", "bot_name", "campaign_name"):
            values[name] = normalize_display_value(values[name])
        if existing is None and not values["source"] and not values["to_number"]:
            logger.warning(f"Anruf {self.extract_id(raw)} ohne Quell- und Zielnummer übersprungen")
            return None

        values["normalized_source"] = normalize_phone_number(values["source"])
        values["normalized_to"] = normalize_phone_number(values["to_number"])
        if values["duration"] is not None:
            values["duration"] = parse_duration(values["duration"])
        values["cost"] = parse_float(values["cost"])
        values["cqs_score"] = parse_float(values["cqs_score"])
        values["call_time"] = parse_call_time(values["call_time"])
        values["call_request_id"] = extract_remote_id(values["call_request_id"])
        transcript = values["transcript"]
        if transcript is not None and not isinstance(transcript, str):
            values["transcript"] = json.dumps(transcript, ensure_ascii=False, default=str)

        if existing is None:
            values["status"] = values["status"] or DEFAULT_CALL_STATUS

        # Nicht auflösbar: Feld bleibt None, bestehende Referenz wird nicht überschrieben
        values["agent_id"] = await self.resolve_agent_id(raw, owner_id)
        return values

    async def after_upsert(self, outcome: UpsertOutcome, raw: RawRecord, owner_id: str) -> None:
        """Kampagne zuordnen; Fehler dürfen den Import nie blockieren."""
        call: CallRecord = outcome.record
        await self._link_campaign_line(call)
        try:
            resolution = await self.campaign_resolver.resolve(call)
        except Exception as e:
            logger.warning(f"Kampagnen-Zuordnung für Anruf {call.remote_id} fehlgeschlagen: {e}")
            self._resolved_names[call.id] = INCOMING_CALL_LABEL
            return

        self._resolved_names[call.id] = resolution.name
        if resolution.campaign_id is not None and call.campaign_id != resolution.campaign_id:
            call.campaign_id = resolution.campaign_id
            outcome.changed_fields.add("campaign_id")

        await self._flag_campaign_mismatch(call)

    async def _link_campaign_line(self, call: CallRecord) -> None:
        """Call-Request-ID in die Zeile der passenden Kampagne eintragen."""
        if not call.call_request_id:
            return
        try:
            async with self.db.begin_nested():
                await link_call_to_campaign(self.db, call)
        except Exception as e:
            logger.warning(f"Kampagnen-Zeile für Anruf {call.remote_id} nicht verknüpft: {e}")

    async def _flag_campaign_mismatch(self, call: CallRecord) -> None:
        """Payload-Name und Call-Request-Zuordnung widersprechen sich → pending."""
        if not call.campaign_name or not call.call_request_id:
            return
        try:
            async with self.db.begin_nested():
                by_request = await self.campaign_resolver.match_call_request(call)
        except Exception as e:
            logger.warning(f"Abgleich Call-Request-ID für Anruf {call.remote_id} fehlgeschlagen: {e}")
            return
        if by_request is not None and by_request.name != call.campaign_name:
            logger.warning(
                f"Anruf {call.remote_id}: Kampagne laut Payload '{call.campaign_name}', "
                f"laut Call-Request-ID '{by_request.name}'"
            )
            call.sync_status = SyncStatus.PENDING

    def serialize(self, record: CallRecord) -> dict[str, Any]:
        payload = super().serialize(record)
        if not payload.get("campaign_name"):
            payload["campaign_name"] = self._resolved_names.get(record.id, INCOMING_CALL_LABEL)
        return payload
