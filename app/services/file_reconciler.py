"""Knowledge-File Reconciler - Wissensdatenbank-Dateien und Agenten-Zuordnung.

Dateien werden vollständig synchronisiert (Prune nach komplettem Pull).
Nach jeder Änderung der Zuordnung wird knowledge_base_file_count aller
betroffenen Agenten per COUNT neu ermittelt.
"""

import logging
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import select

from app.models.agent import Agent
from app.models.knowledge_file import KnowledgeFile
from app.schemas.resources import AgentResponse, KnowledgeFileResponse, ResourceKind
from app.services.field_normalizer import (
    RawRecord,
    extract_fields,
    extract_remote_id,
    first_present,
    keys,
    parse_int,
)
from app.services.reconciler_base import (
    BaseReconciler,
    UpsertOutcome,
    find_agent,
    recount_knowledge_base_files,
)

logger = logging.getLogger(__name__)

DEFAULT_MIME_TYPE = "application/pdf"
STORAGE_SCHEME = "omnidimension://"

FILE_ID_EXTRACTORS = keys("id", "file_id")
FILE_AGENTS_EXTRACTORS = keys("attached_agents", "attached_agent_ids", "agent_ids")

FILE_FIELD_EXTRACTORS = {
    "filename": keys("name", "filename", "file_name"),
    "original_name": keys("original_filename", "original_name", "name"),
    "size": keys("file_size", "size"),
    "mime_type": keys("mime_type", "type", "content_type"),
    "url": keys("download_url", "url"),
}


@dataclass
class AttachmentChange:
    """Ergebnis eines lokalen Attach/Detach."""

    agent: Agent | None = None
    files: list[KnowledgeFile] = field(default_factory=list)
    changed_files: list[KnowledgeFile] = field(default_factory=list)
    missing_file_ids: list[str] = field(default_factory=list)

    @property
    def agent_found(self) -> bool:
        return self.agent is not None


class KnowledgeFileReconciler(BaseReconciler):
    """Upsert, Prune und Attach/Detach für Wissensdatenbank-Dateien."""

    resource = ResourceKind.FILE
    model = KnowledgeFile
    response_schema = KnowledgeFileResponse
    envelope_keys = ("file_data", "files")
    supports_prune = True
    visible_fields = frozenset(
        {"filename", "original_name", "size", "mime_type", "url", "attached_agents"}
    )

    def extract_id(self, raw: RawRecord) -> str | None:
        return extract_remote_id(first_present(raw, FILE_ID_EXTRACTORS))

    async def map_fields(
        self, raw: RawRecord, owner_id: str, existing: KnowledgeFile | None
    ) -> dict[str, Any]:
        values = extract_fields(raw, FILE_FIELD_EXTRACTORS)
        if values["size"] is not None:
            values["size"] = parse_int(values["size"])
        if existing is None:
            remote_id = self.extract_id(raw)
            values["filename"] = values["filename"] or f"file_{remote_id}"
            values["original_name"] = values["original_name"] or values["filename"]
            values["mime_type"] = values["mime_type"] or DEFAULT_MIME_TYPE
            values["storage_path"] = f"{STORAGE_SCHEME}{remote_id}"
        return values

    async def after_upsert(self, outcome: UpsertOutcome, raw: RawRecord, owner_id: str) -> None:
        """Übernimmt die Agenten-Zuordnung der Plattform, falls mitgeliefert."""
        remote_agents = first_present(raw, FILE_AGENTS_EXTRACTORS)
        if not isinstance(remote_agents, list):
            return

        knowledge_file: KnowledgeFile = outcome.record
        agents: list[Agent] = []
        for entry in remote_agents:
            agent = await find_agent(self.db, owner_id, remote_id=entry)
            if agent is None:
                logger.debug(f"Datei {knowledge_file.remote_id}: Agent {entry!r} lokal unbekannt")
                continue
            agents.append(agent)

        before = {a.id: a for a in knowledge_file.attached_agents}
        after = {a.id: a for a in agents}
        if set(before) == set(after):
            return

        knowledge_file.attached_agents = agents
        outcome.changed_fields.add("attached_agents")
        for agent in {**before, **after}.values():
            await recount_knowledge_base_files(self.db, agent)

    async def delete_record(self, record: KnowledgeFile) -> None:
        """Löscht die Datei und zählt die Dateien der betroffenen Agenten neu."""
        agents = list(record.attached_agents)
        record.attached_agents = []
        for agent in agents:
            await recount_knowledge_base_files(self.db, agent)
        await super().delete_record(record)
        for agent in agents:
            await self._emit_agent_updated(agent)

    # ── Zuordnung ────────────────────────────────────

    async def _load_files(self, owner_id: str, file_ids: list[Any]) -> tuple[list[KnowledgeFile], list[str]]:
        remote_ids = [rid for rid in (extract_remote_id(f) for f in file_ids) if rid]
        if not remote_ids:
            return [], []
        result = await self.db.execute(
            select(KnowledgeFile).where(
                KnowledgeFile.owner_id == owner_id,
                KnowledgeFile.remote_id.in_(remote_ids),
            )
        )
        files = list(result.scalars().all())
        found = {f.remote_id for f in files}
        return files, [rid for rid in remote_ids if rid not in found]

    async def attach(self, owner_id: str, file_ids: list[Any], agent_id: Any) -> AttachmentChange:
        """
        Ordnet Dateien lokal einem Agenten zu.

        Args:
            owner_id: Owner
            file_ids: Remote-IDs der Dateien (mit oder ohne file_ Präfix)
            agent_id: Remote-ID des Agenten

        Returns:
            AttachmentChange; agent ist None, wenn der Agent unbekannt ist
        """
        return await self._change_attachment(owner_id, file_ids, agent_id, attach=True)

    async def detach(self, owner_id: str, file_ids: list[Any], agent_id: Any) -> AttachmentChange:
        """Löst Dateien lokal von einem Agenten."""
        return await self._change_attachment(owner_id, file_ids, agent_id, attach=False)

    async def _change_attachment(
        self, owner_id: str, file_ids: list[Any], agent_id: Any, attach: bool
    ) -> AttachmentChange:
        change = AttachmentChange()
        change.agent = await find_agent(self.db, owner_id, remote_id=agent_id)
        change.files, change.missing_file_ids = await self._load_files(owner_id, file_ids)

        if change.agent is None:
            logger.warning(f"Zuordnung: Agent {agent_id!r} für Owner {owner_id} unbekannt")
            return change
        if change.missing_file_ids:
            logger.warning(f"Zuordnung: Dateien unbekannt: {change.missing_file_ids}")

        agent = change.agent
        for knowledge_file in change.files:
            attached = any(a.id == agent.id for a in knowledge_file.attached_agents)
            if attach and not attached:
                knowledge_file.attached_agents.append(agent)
                change.changed_files.append(knowledge_file)
            elif not attach and attached:
                knowledge_file.attached_agents = [
                    a for a in knowledge_file.attached_agents if a.id != agent.id
                ]
                change.changed_files.append(knowledge_file)

        await recount_knowledge_base_files(self.db, agent)
        await self.db.commit()

        for knowledge_file in change.changed_files:
            await self.emit("updated", self.serialize(knowledge_file))
        if change.changed_files:
            await self._emit_agent_updated(agent)

        action = "zugeordnet" if attach else "gelöst"
        logger.info(
            f"{len(change.changed_files)} Datei(en) {action}, Agent {agent.remote_id} "
            f"hat jetzt {agent.knowledge_base_file_count} Datei(en)"
        )
        return change

    async def _emit_agent_updated(self, agent: Agent) -> None:
        try:
            payload = AgentResponse.model_validate(agent).model_dump(mode="json")
            await self.broadcaster.emit(ResourceKind.AGENT.value, "updated", payload)
        except Exception as e:
            logger.warning(f"Broadcast agent_updated fehlgeschlagen: {e}")
