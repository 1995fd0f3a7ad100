"""Background Sync Scheduler - Cooldown-gesteuerter, seitenweiser Pull.

Pro (owner_id, resource) läuft höchstens ein Pull gleichzeitig:
- läuft bereits einer, bekommt jede weitere Anfrage denselben Task
- innerhalb des Cooldowns wird das letzte Ergebnis zurückgegeben
- sonst startet ein neuer Pull

Ein Pull holt Seite für Seite (pageno/pagesize) und gleicht jede Seite ab,
bevor die nächste angefragt wird. Schluss ist bei leerer oder kurzer Seite
oder bei der Seiten-Obergrenze.
"""

import asyncio
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.config import settings
from app.schemas.resources import ResourceKind
from app.services.agent_reconciler import AgentReconciler
from app.services.call_reconciler import CallRecordReconciler
from app.services.campaign_reconciler import CampaignReconciler
from app.services.event_bus import ChangeBroadcaster
from app.services.field_normalizer import normalize_response
from app.services.file_reconciler import KnowledgeFileReconciler
from app.services.omni_client import OmniClient, OmniError
from app.services.phone_number_reconciler import PhoneNumberReconciler
from app.services.reconciler_base import BaseReconciler, ReconcileResult
from app.state import SyncState, SyncStateStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResourceSyncSpec:
    """Wie eine Ressource von der Plattform gezogen wird."""

    resource: ResourceKind
    endpoint: str
    reconciler_cls: type[BaseReconciler]
    filter_params: tuple[str, ...] = ()


SYNC_SPECS: dict[ResourceKind, ResourceSyncSpec] = {
    ResourceKind.AGENT: ResourceSyncSpec(ResourceKind.AGENT, "agents", AgentReconciler),
    ResourceKind.FILE: ResourceSyncSpec(
        ResourceKind.FILE, "knowledge_base/list", KnowledgeFileReconciler
    ),
    ResourceKind.PHONE_NUMBER: ResourceSyncSpec(
        ResourceKind.PHONE_NUMBER, "phone_number/list", PhoneNumberReconciler
    ),
    ResourceKind.CALL: ResourceSyncSpec(
        ResourceKind.CALL,
        "calls/logs",
        CallRecordReconciler,
        filter_params=("agentid", "call_status", "phone_number", "start_date", "end_date"),
    ),
    ResourceKind.CAMPAIGN: ResourceSyncSpec(
        ResourceKind.CAMPAIGN, "calls/bulk_call", CampaignReconciler
    ),
}


@dataclass
class PullResult:
    """Ergebnis eines kompletten Pulls."""

    owner_id: str
    resource: str
    pages_fetched: int = 0
    records_received: int = 0
    unrecognized_pages: int = 0
    reconcile: ReconcileResult = field(default_factory=ReconcileResult)
    pruned: int = 0
    complete: bool = False
    hit_page_ceiling: bool = False
    error: str | None = None
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: datetime | None = None

    @property
    def success(self) -> bool:
        return self.error is None

    def to_dict(self) -> dict[str, Any]:
        return {
            "owner_id": self.owner_id,
            "resource": self.resource,
            "pages_fetched": self.pages_fetched,
            "records_received": self.records_received,
            "unrecognized_pages": self.unrecognized_pages,
            "pruned": self.pruned,
            "complete": self.complete,
            "hit_page_ceiling": self.hit_page_ceiling,
            "error": self.error,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            **self.reconcile.to_dict(),
        }


class BackgroundSyncScheduler:
    """Startet und entdoppelt Hintergrund-Pulls.

    Alle Abhängigkeiten sind injizierbar: State-Store, Session-Factory,
    Client-Factory und Uhr (für Cooldown/Watchdog in Tests).
    """

    def __init__(
        self,
        state_store: SyncStateStore,
        session_factory: async_sessionmaker[AsyncSession],
        client_factory: Callable[[], Any] = OmniClient,
        broadcaster: ChangeBroadcaster | None = None,
        cooldown_seconds: float | None = None,
        page_size: int | None = None,
        max_pages: int | None = None,
        watchdog_seconds: float | None = None,
        clock: Callable[[], float] = time.monotonic,
        specs: dict[ResourceKind, ResourceSyncSpec] | None = None,
    ):
        self.state_store = state_store
        self.session_factory = session_factory
        self.client_factory = client_factory
        self.broadcaster = broadcaster
        self.cooldown_seconds = (
            settings.sync_cooldown_seconds if cooldown_seconds is None else cooldown_seconds
        )
        self.page_size = page_size or settings.sync_page_size
        self.max_pages = max_pages or settings.sync_max_pages
        self.watchdog_seconds = (
            settings.sync_watchdog_seconds if watchdog_seconds is None else watchdog_seconds
        )
        self.clock = clock
        self.specs = specs or SYNC_SPECS

    # ── Steuerung ────────────────────────────────────

    def trigger(
        self,
        owner_id: str,
        resource: ResourceKind,
        filters: dict[str, Any] | None = None,
        force: bool = False,
    ) -> asyncio.Future:
        """
        Fordert einen Pull an, ohne zu blockieren.

        Args:
            owner_id: Owner, für den gezogen wird
            resource: Ressourcen-Typ
            filters: Zusätzliche Query-Filter (nur für Anruf-Logs)
            force: Cooldown ignorieren (manueller Sync)

        Returns:
            Future/Task, der das PullResult liefert (bzw. das letzte im Cooldown)
        """
        state = self.state_store.get(owner_id, resource.value)
        now = self.clock()

        if state.in_progress:
            if state.started_at is not None and now - state.started_at > self.watchdog_seconds:
                logger.warning(
                    f"Sync {resource.value} für {owner_id} hängt seit "
                    f"{now - state.started_at:.0f}s, Watchdog setzt zurück"
                )
                if state.task is not None and not state.task.done():
                    state.task.cancel()
                state.in_progress = False
                state.task = None
                state.last_error = "Watchdog: Pull hing und wurde abgebrochen"
            elif state.task is not None:
                logger.debug(f"Sync {resource.value} für {owner_id} läuft bereits")
                return state.task

        if (
            not force
            and state.last_run_at is not None
            and now - state.last_run_at < self.cooldown_seconds
        ):
            logger.debug(f"Sync {resource.value} für {owner_id} im Cooldown")
            future = asyncio.get_running_loop().create_future()
            future.set_result(state.last_result)
            return future

        state.in_progress = True
        state.started_at = now
        state.task = asyncio.create_task(
            self._run(state, owner_id, resource, filters),
            name=f"sync:{owner_id}:{resource.value}",
        )
        return state.task

    async def request(
        self,
        owner_id: str,
        resource: ResourceKind,
        filters: dict[str, Any] | None = None,
        force: bool = False,
    ) -> "PullResult | None":
        """Wie trigger, wartet aber auf das Ergebnis (ohne den Task mit abzubrechen)."""
        return await asyncio.shield(self.trigger(owner_id, resource, filters, force=force))

    async def shutdown(self) -> None:
        """Bricht laufende Pulls ab (z.B. beim Herunterfahren)."""
        tasks = self.state_store.running_tasks()
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.info(f"{len(tasks)} laufende(r) Sync(s) abgebrochen")

    def status(self, owner_id: str | None = None) -> list[dict[str, Any]]:
        """Momentaufnahme aller Sync-States."""
        now = self.clock()
        snapshot = []
        for (state_owner, resource), state in self.state_store.items(owner_id):
            last_result = state.last_result.to_dict() if isinstance(state.last_result, PullResult) else None
            snapshot.append(
                {
                    "owner_id": state_owner,
                    "resource": resource,
                    "phase": state.phase(now, self.cooldown_seconds),
                    "in_progress": state.in_progress,
                    "seconds_since_last_run": (
                        round(now - state.last_run_at, 1) if state.last_run_at is not None else None
                    ),
                    "last_error": state.last_error,
                    "last_result": last_result,
                }
            )
        return snapshot

    async def _run(
        self,
        state: SyncState,
        owner_id: str,
        resource: ResourceKind,
        filters: dict[str, Any] | None,
    ) -> PullResult:
        try:
            result = await self.pull(owner_id, resource, filters)
            state.last_result = result
            state.last_error = result.error
            return result
        except asyncio.CancelledError:
            if state.task is asyncio.current_task():
                state.last_error = "Pull abgebrochen"
            raise
        finally:
            # Nach einem Watchdog-Reset gehört der State schon einem neuen Task
            if state.task is asyncio.current_task():
                state.in_progress = False
                state.started_at = None
                state.task = None
                state.last_run_at = self.clock()

    # ── Pull ─────────────────────────────────────────

    async def pull(
        self,
        owner_id: str,
        resource: ResourceKind,
        filters: dict[str, Any] | None = None,
    ) -> PullResult:
        """
        Zieht alle Seiten einer Ressource und gleicht sie ab.

        Fehler werden im Ergebnis vermerkt, nicht geworfen. Prune läuft nur
        nach einem natürlich beendeten Pull (kurze/leere Seite, alle
        Envelopes erkannt), nie nach Erreichen der Seiten-Obergrenze.
        """
        spec = self.specs[resource]
        result = PullResult(owner_id=owner_id, resource=resource.value)
        params = {
            name: value
            for name, value in (filters or {}).items()
            if name in spec.filter_params and value not in (None, "")
        }
        client = None

        logger.info(f"Starte Sync {resource.value} für {owner_id} (Filter: {params or '-'})")
        try:
            client = self.client_factory()
            async with self.session_factory() as db:
                reconciler = spec.reconciler_cls(db, self.broadcaster)

                for pageno in range(1, self.max_pages + 1):
                    response = await client.fetch_page(spec.endpoint, pageno, self.page_size, params)
                    batch = normalize_response(response, reconciler.envelope_keys)
                    result.pages_fetched += 1

                    if not batch.recognized:
                        result.unrecognized_pages += 1
                    if not batch.records:
                        result.complete = batch.recognized
                        break

                    result.records_received += len(batch.records)
                    result.reconcile.merge(await reconciler.reconcile(batch.records, owner_id))

                    if len(batch.records) < self.page_size:
                        result.complete = True
                        break
                else:
                    result.hit_page_ceiling = True
                    logger.warning(
                        f"Sync {resource.value} für {owner_id}: Obergrenze von "
                        f"{self.max_pages} Seiten erreicht, Pull beendet"
                    )

                if reconciler.supports_prune and result.complete and not result.unrecognized_pages:
                    result.pruned = await reconciler.prune_absent(owner_id, result.reconcile.remote_ids)

        except OmniError as e:
            logger.error(f"Plattform-Fehler bei Sync {resource.value} für {owner_id}: {e}")
            result.error = str(e)
        except Exception as e:
            logger.exception(f"Unerwarteter Fehler bei Sync {resource.value} für {owner_id}: {e}")
            result.error = str(e)
        finally:
            if client is not None and hasattr(client, "close"):
                await client.close()

        result.finished_at = datetime.now(timezone.utc)
        logger.info(
            f"Sync {resource.value} für {owner_id} beendet: {result.pages_fetched} Seite(n), "
            f"{result.reconcile.created} erstellt, {result.reconcile.updated} aktualisiert, "
            f"{result.pruned} entfernt{', Fehler: ' + result.error if result.error else ''}"
        )
        return result
