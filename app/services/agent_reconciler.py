"""Agent Reconciler - Spiegelt Voice-Agenten (Bots) der Plattform.

Agenten werden vollständig synchronisiert: nach einem kompletten Pull
werden lokale Agenten ohne Gegenstück auf der Plattform entfernt.
"""

import logging
from typing import Any

from sqlalchemy import select, update

from app.models.agent import Agent
from app.models.call_record import CallRecord
from app.models.campaign import Campaign
from app.models.knowledge_file import KnowledgeFile
from app.models.phone_number import PhoneNumber
from app.schemas.resources import AgentResponse, ResourceKind
from app.services.field_normalizer import (
    RawRecord,
    extract_fields,
    extract_remote_id,
    first_present,
    keys,
    normalize_display_value,
)
from app.services.reconciler_base import (
    BaseReconciler,
    UpsertOutcome,
    recount_knowledge_base_files,
)

logger = logging.getLogger(__name__)

DEFAULT_LLM = "azure-gpt-4o-mini"
DEFAULT_VOICE = "google"

AGENT_ID_EXTRACTORS = keys("id", "bot_id", "agent_id")

AGENT_FIELD_EXTRACTORS = {
    "name": keys("name", "bot_name", "agent_name"),
    "description": keys("description", "attach_file_access_description", "welcome_message"),
    "use_case": keys("use_case", "useCase"),
    "llm": keys("llm_service", "llm"),
    "voice": keys("voice_provider", "voice"),
    "web_search": keys("enable_web_search", "web_search"),
    "integrations": keys("integration_ids", "integrations"),
}


class AgentReconciler(BaseReconciler):
    """Upsert und Prune für Agenten."""

    resource = ResourceKind.AGENT
    model = Agent
    response_schema = AgentResponse
    envelope_keys = ("bot_data", "agent_data", "bots", "agents")
    supports_prune = True
    visible_fields = frozenset(
        {
            "name",
            "description",
            "use_case",
            "llm",
            "voice",
            "web_search",
            "post_call",
            "integrations",
            "outgoing",
            "knowledge_base_file_count",
        }
    )

    def extract_id(self, raw: RawRecord) -> str | None:
        return extract_remote_id(first_present(raw, AGENT_ID_EXTRACTORS))

    async def map_fields(
        self, raw: RawRecord, owner_id: str, existing: Agent | None
    ) -> dict[str, Any]:
        values = extract_fields(raw, AGENT_FIELD_EXTRACTORS)
        values["name"] = normalize_display_value(values["name"])
        values["voice"] = normalize_display_value(values["voice"], ("provider", "voice_name"))
        values["llm"] = normalize_display_value(values["llm"])

        if values["web_search"] is not None:
            values["web_search"] = bool(values["web_search"])
        if values["integrations"] is not None and not isinstance(values["integrations"], list):
            values["integrations"] = [values["integrations"]]

        if "post_call_config_ids" in raw:
            values["post_call"] = "Email" if raw.get("post_call_config_ids") else "None"
        if "bot_call_type" in raw:
            values["outgoing"] = raw.get("bot_call_type") == "Outgoing"

        if existing is None:
            values["name"] = values["name"] or "Unbenannter Agent"
            values["llm"] = values["llm"] or DEFAULT_LLM
            values["voice"] = values["voice"] or DEFAULT_VOICE
        return values

    async def after_upsert(self, outcome: UpsertOutcome, raw: RawRecord, owner_id: str) -> None:
        """Übernimmt attach_file_ids der Plattform und zählt die Dateien neu."""
        agent: Agent = outcome.record
        file_ids = raw.get("attach_file_ids")

        if isinstance(file_ids, list):
            wanted = {extract_remote_id(file_id) for file_id in file_ids} - {None}
            result = await self.db.execute(
                select(KnowledgeFile).where(KnowledgeFile.owner_id == owner_id)
            )
            for knowledge_file in result.scalars().all():
                attached = any(a.id == agent.id for a in knowledge_file.attached_agents)
                if knowledge_file.remote_id in wanted and not attached:
                    knowledge_file.attached_agents.append(agent)
                elif knowledge_file.remote_id not in wanted and attached:
                    knowledge_file.attached_agents = [
                        a for a in knowledge_file.attached_agents if a.id != agent.id
                    ]

        before = agent.knowledge_base_file_count
        if await recount_knowledge_base_files(self.db, agent) != before:
            outcome.changed_fields.add("knowledge_base_file_count")

    async def before_delete(self, record: Agent) -> None:
        """Schwache Referenzen auf den Agenten lösen (portabel, auch ohne FK-Enforcement)."""
        await self.db.execute(
            update(PhoneNumber)
            .where(PhoneNumber.attached_agent_id == record.id)
            .values(attached_agent_id=None)
        )
        await self.db.execute(
            update(CallRecord).where(CallRecord.agent_id == record.id).values(agent_id=None)
        )
        await self.db.execute(
            update(Campaign).where(Campaign.agent_id == record.id).values(agent_id=None)
        )
        result = await self.db.execute(
            select(KnowledgeFile).where(KnowledgeFile.owner_id == record.owner_id)
        )
        for knowledge_file in result.scalars().all():
            if any(a.id == record.id for a in knowledge_file.attached_agents):
                knowledge_file.attached_agents = [
                    a for a in knowledge_file.attached_agents if a.id != record.id
                ]
        await self.db.flush()
