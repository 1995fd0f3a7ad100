"""Reconciler-Basis - Upsert gespiegelter Plattform-Datensätze.

Jeder Ressourcen-Typ hat genau einen Reconciler, egal ob die Daten aus dem
Hintergrund-Sync, einem Webhook oder einer Dashboard-Aktion kommen.

Ablauf pro Rohdatensatz:
- Remote-ID extrahieren, ohne ID wird übersprungen
- bestehenden Datensatz über (owner_id, remote_id) suchen
- vorhandene Felder übernehmen (None überschreibt nie)
- Commit pro Datensatz, ein Fehler betrifft nur diesen Datensatz
- danach created/updated Event senden
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.agent import Agent
from app.models.knowledge_file import knowledge_file_agents
from app.models.sync_metadata import SyncStatus, utcnow
from app.schemas.resources import ResourceKind
from app.services.event_bus import ChangeBroadcaster, change_broadcaster
from app.services.field_normalizer import RawRecord, extract_remote_id

logger = logging.getLogger(__name__)


class PruneNotSupportedError(ValueError):
    """Prune für eine inkrementell synchronisierte Ressource angefordert."""


@dataclass
class ReconcileResult:
    """Ergebnis eines Reconcile-Laufs (eine Seite oder ein ganzer Pull)."""

    synced: int = 0
    created: int = 0
    updated: int = 0
    skipped: int = 0
    failed: int = 0
    errors: list[dict] = field(default_factory=list)
    remote_ids: list[str] = field(default_factory=list)
    duration_seconds: float = 0.0

    @property
    def total_processed(self) -> int:
        return self.synced + self.skipped + self.failed

    @property
    def success_rate(self) -> float:
        """Berechnet die Erfolgsrate."""
        if self.total_processed == 0:
            return 100.0
        return ((self.synced + self.skipped) / self.total_processed) * 100

    def merge(self, other: "ReconcileResult") -> None:
        """Addiert das Ergebnis einer weiteren Seite."""
        self.synced += other.synced
        self.created += other.created
        self.updated += other.updated
        self.skipped += other.skipped
        self.failed += other.failed
        self.errors.extend(other.errors)
        self.remote_ids.extend(other.remote_ids)
        self.duration_seconds += other.duration_seconds

    def to_dict(self) -> dict[str, Any]:
        return {
            "synced": self.synced,
            "created": self.created,
            "updated": self.updated,
            "skipped": self.skipped,
            "failed": self.failed,
            "errors": self.errors[:20],
            "duration_seconds": round(self.duration_seconds, 3),
        }


@dataclass
class UpsertOutcome:
    """Ergebnis eines einzelnen Upserts."""

    record: Any
    created: bool
    changed_fields: set[str] = field(default_factory=set)


async def find_agent(
    db: AsyncSession,
    owner_id: str,
    remote_id: Any = None,
    name: str | None = None,
) -> Agent | None:
    """Sucht einen Agenten über Remote-ID oder, falls angegeben, über den Namen."""
    agent_remote_id = extract_remote_id(remote_id)
    if agent_remote_id:
        result = await db.execute(
            select(Agent).where(Agent.owner_id == owner_id, Agent.remote_id == agent_remote_id)
        )
        return result.scalar_one_or_none()
    if name:
        result = await db.execute(
            select(Agent)
            .where(Agent.owner_id == owner_id, Agent.name == name)
            .order_by(Agent.created_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()
    return None


class BaseReconciler:
    """Gemeinsamer Upsert-/Delete-/Prune-Ablauf für alle Ressourcen.

    Unterklassen setzen `resource`, `model`, `response_schema`,
    `visible_fields` und implementieren `extract_id` und `map_fields`.
    """

    resource: ResourceKind
    model: type
    response_schema: type[BaseModel]
    visible_fields: frozenset[str] = frozenset()
    envelope_keys: tuple[str, ...] = ()
    supports_prune: bool = False

    MAX_ERRORS = 100

    def __init__(self, db: AsyncSession, broadcaster: ChangeBroadcaster | None = None):
        """Initialisiert den Reconciler.

        Args:
            db: Datenbank-Session (wird pro Datensatz committet)
            broadcaster: Event-Bus (Standard: prozessweite Instanz)
        """
        self.db = db
        self.broadcaster = broadcaster or change_broadcaster

    # ── Von Unterklassen zu implementieren ───────────

    def extract_id(self, raw: RawRecord) -> str | None:
        """Remote-ID aus dem Rohdatensatz."""
        raise NotImplementedError

    async def map_fields(
        self, raw: RawRecord, owner_id: str, existing: Any | None
    ) -> dict[str, Any] | None:
        """Mappt Rohdaten auf Model-Felder. None bedeutet: überspringen."""
        raise NotImplementedError

    async def after_upsert(self, outcome: UpsertOutcome, raw: RawRecord, owner_id: str) -> None:
        """Hook nach dem Feld-Merge, vor dem Commit."""

    async def before_delete(self, record: Any) -> None:
        """Hook vor dem Löschen eines Datensatzes."""

    # ── Lesen ────────────────────────────────────────

    async def get_by_remote_id(self, owner_id: str, remote_id: str) -> Any | None:
        result = await self.db.execute(
            select(self.model).where(
                self.model.owner_id == owner_id,
                self.model.remote_id == remote_id,
            )
        )
        return result.scalar_one_or_none()

    async def find_owner(self, remote_id: Any) -> str | None:
        """Owner eines bereits bekannten Datensatzes (für Webhooks ohne Owner)."""
        normalized = extract_remote_id(remote_id)
        if not normalized:
            return None
        result = await self.db.execute(
            select(self.model.owner_id).where(self.model.remote_id == normalized).limit(1)
        )
        return result.scalar_one_or_none()

    def serialize(self, record: Any) -> dict[str, Any]:
        """Vollständiger kanonischer Datensatz für Events und Responses."""
        return self.response_schema.model_validate(record).model_dump(mode="json")

    # ── Schreiben ────────────────────────────────────

    @staticmethod
    def apply_fields(record: Any, values: dict[str, Any]) -> set[str]:
        """Merge nach Vorhandensein: None überschreibt nie. Gibt geänderte Felder zurück."""
        changed: set[str] = set()
        for name, value in values.items():
            if value is None:
                continue
            if getattr(record, name) != value:
                setattr(record, name, value)
                changed.add(name)
        return changed

    async def _apply(self, raw: RawRecord, owner_id: str, remote_id: str) -> UpsertOutcome | None:
        existing = await self.get_by_remote_id(owner_id, remote_id)
        values = await self.map_fields(raw, owner_id, existing)
        if values is None:
            return None

        now = utcnow()
        if existing is None:
            record = self.model(
                owner_id=owner_id,
                remote_id=remote_id,
                sync_status=SyncStatus.SYNCED,
                last_synced_at=now,
                **{name: value for name, value in values.items() if value is not None},
            )
            self.db.add(record)
            await self.db.flush()
            outcome = UpsertOutcome(record=record, created=True, changed_fields=set(values))
        else:
            changed = self.apply_fields(existing, values)
            existing.sync_status = SyncStatus.SYNCED
            existing.last_synced_at = now
            outcome = UpsertOutcome(record=existing, created=False, changed_fields=changed)

        await self.after_upsert(outcome, raw, owner_id)
        await self.db.flush()
        return outcome

    async def upsert(self, raw: RawRecord, owner_id: str) -> UpsertOutcome | None:
        """
        Legt einen Datensatz an oder aktualisiert ihn (ein Commit).

        Ein paralleler Insert derselben Remote-ID (Webhook vs. Pull) führt zu
        einem Unique-Konflikt; dann wird einmal als Update wiederholt.

        Returns:
            UpsertOutcome oder None, wenn der Datensatz übersprungen wurde
        """
        remote_id = self.extract_id(raw)
        if not remote_id:
            logger.warning(f"{self.resource.value}: Datensatz ohne Remote-ID übersprungen")
            return None

        try:
            outcome = await self._apply(raw, owner_id, remote_id)
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            logger.warning(
                f"{self.resource.value} {remote_id}: paralleler Insert erkannt, wiederhole als Update"
            )
            outcome = await self._apply(raw, owner_id, remote_id)
            await self.db.commit()

        if outcome is not None:
            await self._broadcast_upsert(outcome)
        return outcome

    async def reconcile(self, raw_records: list[RawRecord], owner_id: str) -> ReconcileResult:
        """
        Gleicht eine Liste von Rohdatensätzen ab.

        Args:
            raw_records: Normalisierte Datensätze einer Seite oder eines Webhooks
            owner_id: Owner der Datensätze

        Returns:
            ReconcileResult mit synced/created/updated und Fehlern
        """
        start_time = datetime.now(timezone.utc)
        result = ReconcileResult()

        for raw in raw_records:
            remote_id = self.extract_id(raw) if isinstance(raw, dict) else None
            if not remote_id:
                result.skipped += 1
                logger.warning(f"{self.resource.value}: Datensatz ohne verwertbare Remote-ID übersprungen")
                continue
            result.remote_ids.append(remote_id)

            try:
                outcome = await self.upsert(raw, owner_id)
            except Exception as e:
                await self.db.rollback()
                result.failed += 1
                if len(result.errors) < self.MAX_ERRORS:
                    result.errors.append({"remote_id": remote_id, "error": str(e)})
                logger.error(f"Fehler bei {self.resource.value} {remote_id}: {e}")
                continue

            if outcome is None:
                result.skipped += 1
            elif outcome.created:
                result.created += 1
                result.synced += 1
            else:
                result.updated += 1
                result.synced += 1

        result.duration_seconds = (datetime.now(timezone.utc) - start_time).total_seconds()
        logger.info(
            f"Reconcile {self.resource.value} ({owner_id}): {result.created} erstellt, "
            f"{result.updated} aktualisiert, {result.skipped} übersprungen, {result.failed} fehlgeschlagen"
        )
        return result

    async def mark_sync_status(self, record: Any, status: SyncStatus) -> None:
        """Setzt den Sync-Status (z.B. error nach fehlgeschlagener Weitergabe)."""
        if record.sync_status != status:
            record.sync_status = status
            await self.db.commit()
            await self.emit("updated", self.serialize(record))

    async def delete_record(self, record: Any) -> None:
        """Löscht einen Datensatz und sendet das deleted Event."""
        payload = {"id": str(record.id), "remote_id": record.remote_id, "owner_id": record.owner_id}
        await self.before_delete(record)
        await self.db.delete(record)
        await self.db.commit()
        await self.emit("deleted", payload)

    async def delete_by_remote_id(self, owner_id: str, remote_id: Any) -> bool:
        """Löscht einen Datensatz über seine Remote-ID. False wenn unbekannt."""
        normalized = extract_remote_id(remote_id)
        if not normalized:
            return False
        record = await self.get_by_remote_id(owner_id, normalized)
        if record is None:
            return False
        await self.delete_record(record)
        return True

    async def prune_absent(self, owner_id: str, remote_ids: list[str]) -> int:
        """
        Löscht lokale Datensätze, die im vollständigen Remote-Bestand fehlen.

        Nur für Ressourcen mit Voll-Sync. Inkrementell synchronisierte
        Ressourcen würden sonst durch Teilseiten fälschlich gelöscht.
        """
        if not self.supports_prune:
            raise PruneNotSupportedError(
                f"{self.resource.value} wird inkrementell synchronisiert, Prune nicht erlaubt"
            )
        keep = set(remote_ids)
        result = await self.db.execute(select(self.model).where(self.model.owner_id == owner_id))
        stale = [record for record in result.scalars().all() if record.remote_id not in keep]

        for record in stale:
            await self.delete_record(record)

        if stale:
            logger.info(f"Prune {self.resource.value} ({owner_id}): {len(stale)} Datensätze entfernt")
        return len(stale)

    # ── Events ───────────────────────────────────────

    async def emit(self, action: str, payload: dict[str, Any]) -> None:
        """Fire-and-forget: Fehler beim Broadcast brechen die Mutation nie ab."""
        try:
            await self.broadcaster.emit(self.resource.value, action, payload)
        except Exception as e:
            logger.warning(f"Broadcast {self.resource.value}_{action} fehlgeschlagen: {e}")

    async def _broadcast_upsert(self, outcome: UpsertOutcome) -> None:
        if outcome.created:
            await self.emit("created", self.serialize(outcome.record))
        elif outcome.changed_fields & self.visible_fields:
            await self.emit("updated", self.serialize(outcome.record))


async def recount_knowledge_base_files(db: AsyncSession, agent: Agent) -> int:
    """Zählt die zugeordneten Dateien eines Agenten neu (nie inkrementell)."""
    await db.flush()
    result = await db.execute(
        select(func.count())
        .select_from(knowledge_file_agents)
        .where(knowledge_file_agents.c.agent_id == agent.id)
    )
    count = result.scalar_one()
    agent.knowledge_base_file_count = count
    return count
