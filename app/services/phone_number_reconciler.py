"""Phone-Number Reconciler - Rufnummern und ihre exklusive Agenten-Zuordnung.

Beim Pull gewinnt die Zuordnung der Plattform. Liefert die Plattform eine
Agenten-ID, die lokal (noch) unbekannt ist, bleibt die bestehende Zuordnung
stehen; ein explizites "kein Agent" (active_bot_id = false/null) löst sie.
"""

import logging
from dataclasses import dataclass
from typing import Any

from app.models.agent import Agent
from app.models.phone_number import PhoneNumber, PhoneProvider
from app.schemas.resources import PhoneNumberResponse, ResourceKind
from app.services.field_normalizer import (
    RawRecord,
    extract_fields,
    extract_remote_id,
    first_present,
    keys,
    normalize_display_value,
    path,
)
from app.services.reconciler_base import BaseReconciler, UpsertOutcome, find_agent

logger = logging.getLogger(__name__)

PHONE_ID_EXTRACTORS = keys("id", "phone_number_id")

PHONE_FIELD_EXTRACTORS = {
    "number": keys("number", "phone_number", "phoneNumber"),
    "label": keys("label", "name"),
    "provider": keys("provider"),
    "country": keys("country", "country_code"),
    "status": keys("status"),
    "capabilities": keys("capabilities"),
}

ATTACHED_AGENT_EXTRACTORS = (
    *keys("agent_id", "attached_agent_id", "bot_id", "attached_bot_id"),
    path("agent", "id"),
    path("bot", "id"),
    path("attached_agent", "id"),
    path("attached_bot", "id"),
)
ATTACHED_AGENT_KEYS = (
    "active_bot_id",
    "agent_id",
    "attached_agent_id",
    "bot_id",
    "attached_bot_id",
    "agent",
    "bot",
    "attached_agent",
    "attached_bot",
)


@dataclass
class PhoneAttachmentChange:
    """Ergebnis eines lokalen Attach/Detach."""

    phone_number: PhoneNumber | None = None
    agent: Agent | None = None
    changed: bool = False


def _parse_provider(value: Any) -> PhoneProvider | None:
    if value is None:
        return None
    try:
        return PhoneProvider(str(value).upper())
    except ValueError:
        return PhoneProvider.OTHER


class PhoneNumberReconciler(BaseReconciler):
    """Upsert und Attach/Detach für Rufnummern."""

    resource = ResourceKind.PHONE_NUMBER
    model = PhoneNumber
    response_schema = PhoneNumberResponse
    envelope_keys = ("phone_number_data", "phone_numbers")
    visible_fields = frozenset(
        {"number", "label", "provider", "country", "status", "capabilities", "attached_agent_id"}
    )

    def extract_id(self, raw: RawRecord) -> str | None:
        return extract_remote_id(first_present(raw, PHONE_ID_EXTRACTORS))

    async def map_fields(
        self, raw: RawRecord, owner_id: str, existing: PhoneNumber | None
    ) -> dict[str, Any] | None:
        values = extract_fields(raw, PHONE_FIELD_EXTRACTORS)
        values["number"] = normalize_display_value(values["number"])
        values["provider"] = _parse_provider(values["provider"])
        if values["capabilities"] is not None and not isinstance(values["capabilities"], dict):
            values["capabilities"] = None

        if existing is None and not values["number"]:
            logger.warning(f"Rufnummer {self.extract_id(raw)} ohne Nummer übersprungen")
            return None
        return values

    async def after_upsert(self, outcome: UpsertOutcome, raw: RawRecord, owner_id: str) -> None:
        """Übernimmt die Agenten-Zuordnung der Plattform."""
        if not any(name in raw for name in ATTACHED_AGENT_KEYS):
            return

        phone_number: PhoneNumber = outcome.record
        if "active_bot_id" in raw:
            candidate = raw.get("active_bot_id")
            if candidate is False or candidate == "":
                candidate = None
        else:
            candidate = first_present(raw, ATTACHED_AGENT_EXTRACTORS)

        if candidate is None:
            if phone_number.attached_agent_id is not None:
                logger.info(f"Rufnummer {phone_number.remote_id}: kein Agent auf der Plattform, löse lokal")
                phone_number.attached_agent_id = None
                outcome.changed_fields.add("attached_agent_id")
            return

        agent = await find_agent(self.db, owner_id, remote_id=candidate)
        if agent is None:
            logger.warning(
                f"Rufnummer {phone_number.remote_id}: Agent {candidate!r} lokal unbekannt, "
                f"bestehende Zuordnung bleibt"
            )
            return
        if phone_number.attached_agent_id != agent.id:
            phone_number.attached_agent_id = agent.id
            outcome.changed_fields.add("attached_agent_id")

    # ── Zuordnung ────────────────────────────────────

    async def attach(self, owner_id: str, phone_number_id: Any, agent_id: Any) -> PhoneAttachmentChange:
        """
        Ordnet eine Rufnummer lokal einem Agenten zu (ersetzt eine bestehende Zuordnung).

        Returns:
            PhoneAttachmentChange; phone_number/agent sind None, wenn unbekannt
        """
        change = PhoneAttachmentChange()
        remote_id = extract_remote_id(phone_number_id)
        if remote_id:
            change.phone_number = await self.get_by_remote_id(owner_id, remote_id)
        change.agent = await find_agent(self.db, owner_id, remote_id=agent_id)

        if change.phone_number is None or change.agent is None:
            logger.warning(
                f"Attach: Rufnummer {phone_number_id!r} oder Agent {agent_id!r} für {owner_id} unbekannt"
            )
            return change

        if change.phone_number.attached_agent_id != change.agent.id:
            change.phone_number.attached_agent_id = change.agent.id
            change.changed = True
            await self.db.commit()
            await self.emit("updated", self.serialize(change.phone_number))
        return change

    async def detach(self, owner_id: str, phone_number_id: Any) -> PhoneAttachmentChange:
        """Löst die Agenten-Zuordnung einer Rufnummer lokal."""
        change = PhoneAttachmentChange()
        remote_id = extract_remote_id(phone_number_id)
        if remote_id:
            change.phone_number = await self.get_by_remote_id(owner_id, remote_id)
        if change.phone_number is None:
            logger.warning(f"Detach: Rufnummer {phone_number_id!r} für {owner_id} unbekannt")
            return change

        if change.phone_number.attached_agent_id is not None:
            change.phone_number.attached_agent_id = None
            change.changed = True
            await self.db.commit()
            await self.emit("updated", self.serialize(change.phone_number))
        return change
