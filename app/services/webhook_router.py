"""Webhook Router - Ein Endpoint für alle Push-Benachrichtigungen der Plattform.

Die Plattform schickt Payloads ohne Typ-Feld. Ressource und Mutation werden
aus der Form des Payloads abgeleitet (classify) und über eine feste Tabelle
an den passenden Reconciler gegeben (dispatch). Es gibt keinen Umweg über
interne HTTP-Aufrufe: Webhooks nutzen dieselben Reconciler wie der Sync.

Priorität der Ressourcen: Datei → Agent → Rufnummer → Anruf → Kampagne.
Datei-Attach-Payloads tragen auch eine Agenten-ID und müssen trotzdem als
Datei erkannt werden.
"""

import logging
import re
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.schemas.resources import ResourceKind
from app.schemas.webhook import MutationKind
from app.services.agent_reconciler import AgentReconciler
from app.services.call_reconciler import CallRecordReconciler
from app.services.campaign_reconciler import CampaignReconciler
from app.services.event_bus import ChangeBroadcaster
from app.services.field_normalizer import RawRecord, extract_remote_id
from app.services.file_reconciler import KnowledgeFileReconciler
from app.services.phone_number_reconciler import PhoneNumberReconciler
from app.services.reconciler_base import BaseReconciler
from app.services.sync_guard import Origin, OutboundGuard, record_propagation

logger = logging.getLogger(__name__)

# ═══════════════════════════════════════════════════════════════
# KLASSIFIZIERUNG
# ═══════════════════════════════════════════════════════════════

FILE_KEYS = ("file", "file_id", "files", "file_ids")
AGENT_KEYS = ("agent", "agent_id")
PHONE_ID_KEYS = ("phone_number_id",)
PHONE_OBJECT_KEYS = ("phone_number", "phone")
CALL_KEYS = ("call_log", "call_id", "call")
CAMPAIGN_KEYS = ("bulk_call", "campaign_id", "campaign", "bulk_call_id")

EXPECTED_KEY_HINT = (
    "file/file_id/files/file_ids, agent/agent_id, phone_number/phone_number_id, "
    "call_log/call_id, bulk_call/campaign_id"
)

MARKER_KEYS = ("event", "action", "type")
_DELETE_MARKER = re.compile(r"(^|[^a-z])delete(d)?($|[^a-z])")

# Objekt-Schlüssel je Ressource: fehlt das Objekt, ist eine nackte ID ein Delete
OBJECT_KEYS: dict[ResourceKind, tuple[str, ...]] = {
    ResourceKind.FILE: ("file",),
    ResourceKind.AGENT: ("agent",),
    ResourceKind.PHONE_NUMBER: PHONE_OBJECT_KEYS,
    ResourceKind.CALL: ("call_log", "call"),
    ResourceKind.CAMPAIGN: ("bulk_call", "campaign"),
}
ID_KEYS: dict[ResourceKind, tuple[str, ...]] = {
    ResourceKind.FILE: ("file_id",),
    ResourceKind.AGENT: ("agent_id",),
    ResourceKind.PHONE_NUMBER: PHONE_ID_KEYS,
    ResourceKind.CALL: ("call_id",),
    ResourceKind.CAMPAIGN: ("campaign_id", "bulk_call_id"),
}


class UnroutableWebhookError(ValueError):
    """Payload passt zu keiner bekannten Ressource."""

    def __init__(self, message: str = "Ressourcen-Typ im Webhook-Payload nicht erkennbar"):
        self.expected = EXPECTED_KEY_HINT
        super().__init__(f"{message}. Erwartet: {EXPECTED_KEY_HINT}")


@dataclass(frozen=True)
class RouteDecision:
    """Ergebnis der Klassifizierung: welche Ressource, welche Mutation."""

    resource: ResourceKind
    mutation: MutationKind


def _present(payload: RawRecord, names: tuple[str, ...]) -> bool:
    return any(payload.get(name) not in (None, "", [], {}) for name in names)


def _has_object(payload: RawRecord, names: tuple[str, ...]) -> bool:
    return any(isinstance(payload.get(name), dict) for name in names)


def _marker(payload: RawRecord) -> str:
    values = [payload.get(name) for name in MARKER_KEYS]
    return " ".join(str(value).lower() for value in values if isinstance(value, str))


def _has_phone_keys(payload: RawRecord) -> bool:
    if _present(payload, PHONE_ID_KEYS) or _has_object(payload, PHONE_OBJECT_KEYS):
        return True
    # phone_number als String ist bei Anrufen/Kampagnen die Rufnummer, keine Ressource
    if _present(payload, CALL_KEYS) or _present(payload, CAMPAIGN_KEYS):
        return False
    return _present(payload, PHONE_OBJECT_KEYS)


def classify_resource(payload: RawRecord) -> ResourceKind:
    """Ressource nach Priorität bestimmen."""
    if _present(payload, FILE_KEYS):
        return ResourceKind.FILE

    phone = _has_phone_keys(payload)
    call = _present(payload, CALL_KEYS)
    campaign = _present(payload, CAMPAIGN_KEYS)

    # agent_id neben Rufnummer/Anruf/Kampagne ist nur Ziel, nicht die Ressource
    if _present(payload, AGENT_KEYS) and not (phone or call or campaign):
        return ResourceKind.AGENT
    if phone:
        return ResourceKind.PHONE_NUMBER
    if call:
        return ResourceKind.CALL
    if campaign:
        return ResourceKind.CAMPAIGN
    raise UnroutableWebhookError()


def classify(payload: Any) -> RouteDecision:
    """
    Klassifiziert einen Webhook-Payload.

    Regeln für die Mutation:
    - expliziter delete/deleted Marker → DELETE
    - Datei/Rufnummer mit Ziel-Agent: "detach" im Marker → DETACH, sonst ATTACH
    - Ressourcen-ID ohne zugehöriges Objekt → DELETE
    - sonst → CREATE_UPDATE

    Raises:
        UnroutableWebhookError: wenn keine Ressource erkennbar ist
    """
    if not isinstance(payload, dict) or not payload:
        raise UnroutableWebhookError("Webhook-Payload ist kein JSON-Objekt")

    resource = classify_resource(payload)
    marker = _marker(payload)

    if _DELETE_MARKER.search(marker):
        return RouteDecision(resource, MutationKind.DELETE)

    if resource == ResourceKind.FILE and _present(payload, ("file_ids", "files")) and _present(payload, AGENT_KEYS):
        if isinstance(payload.get("file_ids") or payload.get("files"), list):
            mutation = MutationKind.DETACH if "detach" in marker else MutationKind.ATTACH
            return RouteDecision(resource, mutation)

    if resource == ResourceKind.PHONE_NUMBER:
        if "detach" in marker:
            return RouteDecision(resource, MutationKind.DETACH)
        if _present(payload, PHONE_ID_KEYS) and _present(payload, AGENT_KEYS):
            return RouteDecision(resource, MutationKind.ATTACH)

    if _present(payload, ID_KEYS[resource]) and not _has_object(payload, OBJECT_KEYS[resource]):
        return RouteDecision(resource, MutationKind.DELETE)

    return RouteDecision(resource, MutationKind.CREATE_UPDATE)


# ═══════════════════════════════════════════════════════════════
# DISPATCH
# ═══════════════════════════════════════════════════════════════


def _record(payload: RawRecord, resource: ResourceKind) -> RawRecord:
    """Das eigentliche Ressourcen-Objekt: verschachtelt oder der Payload selbst."""
    for name in OBJECT_KEYS[resource]:
        value = payload.get(name)
        if isinstance(value, dict):
            return value
    return payload


def _resource_id(payload: RawRecord, resource: ResourceKind) -> str | None:
    for name in ID_KEYS[resource]:
        remote_id = extract_remote_id(payload.get(name))
        if remote_id:
            return remote_id
    return extract_remote_id(_record(payload, resource).get("id"))


def _agent_id(payload: RawRecord) -> str | None:
    return extract_remote_id(payload.get("agent_id")) or extract_remote_id(payload.get("agent"))


def _file_ids(payload: RawRecord) -> list[str]:
    raw_ids = payload.get("file_ids") or payload.get("files") or []
    return [rid for rid in (extract_remote_id(item) for item in raw_ids) if rid]


Handler = Callable[["WebhookRouter", RawRecord, Origin], Awaitable[dict[str, Any]]]

RECONCILER_CLASSES: dict[ResourceKind, type[BaseReconciler]] = {
    ResourceKind.FILE: KnowledgeFileReconciler,
    ResourceKind.AGENT: AgentReconciler,
    ResourceKind.PHONE_NUMBER: PhoneNumberReconciler,
    ResourceKind.CALL: CallRecordReconciler,
    ResourceKind.CAMPAIGN: CampaignReconciler,
}

# Plattform-Methode für die Weitergabe eines Deletes (nur wo es eine gibt)
DELETE_ACTIONS: dict[ResourceKind, str] = {
    ResourceKind.FILE: "delete_file",
    ResourceKind.PHONE_NUMBER: "delete_phone_number",
}


class WebhookRouter:
    """Führt klassifizierte Webhooks gegen die Reconciler aus."""

    def __init__(
        self,
        db: AsyncSession,
        guard: OutboundGuard,
        broadcaster: ChangeBroadcaster | None = None,
        default_owner_id: str | None = None,
    ):
        self.db = db
        self.guard = guard
        self.broadcaster = broadcaster
        self.default_owner_id = default_owner_id or settings.default_owner_id
        self._reconcilers: dict[ResourceKind, BaseReconciler] = {}

    def reconciler(self, resource: ResourceKind) -> BaseReconciler:
        if resource not in self._reconcilers:
            self._reconcilers[resource] = RECONCILER_CLASSES[resource](self.db, self.broadcaster)
        return self._reconcilers[resource]

    async def resolve_owner(self, resource: ResourceKind, remote_id: Any) -> str:
        """Owner des bekannten Datensatzes, sonst der konfigurierte Default-Owner."""
        owner_id = await self.reconciler(resource).find_owner(remote_id)
        return owner_id or self.default_owner_id

    async def handle(self, payload: Any, origin: Origin) -> tuple[RouteDecision, dict[str, Any]]:
        """
        Klassifiziert und verarbeitet einen Webhook.

        Args:
            payload: JSON-Body des Webhooks
            origin: Herkunft laut Provenienz-Header

        Returns:
            (RouteDecision, Ergebnis-Dict)

        Raises:
            UnroutableWebhookError: Payload nicht zuordenbar
        """
        decision = classify(payload)
        handler = DISPATCH_TABLE[(decision.resource, decision.mutation)]
        logger.info(
            f"Webhook: {decision.resource.value}/{decision.mutation.value} (Herkunft: {origin.value})"
        )
        result = await handler(self, payload, origin)
        return decision, result

    # ── Handler ──────────────────────────────────────

    async def _create_update(self, payload: RawRecord, resource: ResourceKind) -> dict[str, Any]:
        reconciler = self.reconciler(resource)
        record = _record(payload, resource)
        if record is not payload and "id" not in record:
            remote_id = _resource_id(payload, resource)
            if remote_id:
                record = {**record, "id": remote_id}

        owner_id = await self.resolve_owner(resource, reconciler.extract_id(record))
        outcome = await reconciler.upsert(record, owner_id)
        if outcome is None:
            return {"skipped": True}
        return {
            "remote_id": outcome.record.remote_id,
            "created": outcome.created,
            "changed_fields": sorted(outcome.changed_fields),
        }

    async def _delete(self, payload: RawRecord, resource: ResourceKind, origin: Origin) -> dict[str, Any]:
        remote_id = _resource_id(payload, resource)
        if not remote_id:
            raise UnroutableWebhookError("Delete-Webhook ohne Ressourcen-ID")
        owner_id = await self.resolve_owner(resource, remote_id)
        deleted = await self.reconciler(resource).delete_by_remote_id(owner_id, remote_id)

        propagation = None
        if resource in DELETE_ACTIONS:
            propagation = (await self.guard.propagate(origin, DELETE_ACTIONS[resource], remote_id)).value
        if not deleted:
            logger.info(f"Delete-Webhook: {resource.value} {remote_id} lokal nicht vorhanden")
        return {"remote_id": remote_id, "deleted": deleted, "propagation": propagation}

    async def _file_attachment(self, payload: RawRecord, origin: Origin, attach: bool) -> dict[str, Any]:
        reconciler: KnowledgeFileReconciler = self.reconciler(ResourceKind.FILE)
        file_ids = _file_ids(payload)
        agent_id = _agent_id(payload)
        owner_id = self.default_owner_id
        for file_id in file_ids:
            owner = await reconciler.find_owner(file_id)
            if owner:
                owner_id = owner
                break

        if attach:
            change = await reconciler.attach(owner_id, file_ids, agent_id)
        else:
            change = await reconciler.detach(owner_id, file_ids, agent_id)

        action = "attach_files" if attach else "detach_files"
        outcome = await self.guard.propagate(origin, action, file_ids, agent_id)
        await record_propagation(reconciler, change.files, outcome)
        return {
            "agent_found": change.agent_found,
            "changed_files": [f.remote_id for f in change.changed_files],
            "missing_file_ids": change.missing_file_ids,
            "propagation": outcome.value,
        }

    async def _phone_attach(self, payload: RawRecord, origin: Origin) -> dict[str, Any]:
        reconciler: PhoneNumberReconciler = self.reconciler(ResourceKind.PHONE_NUMBER)
        phone_number_id = _resource_id(payload, ResourceKind.PHONE_NUMBER)
        agent_id = _agent_id(payload)
        owner_id = await self.resolve_owner(ResourceKind.PHONE_NUMBER, phone_number_id)

        change = await reconciler.attach(owner_id, phone_number_id, agent_id)
        outcome = await self.guard.propagate(
            origin, "attach_phone_number", phone_number_id, agent_id
        )
        await record_propagation(reconciler, [change.phone_number], outcome)
        return {
            "phone_number_found": change.phone_number is not None,
            "agent_found": change.agent is not None,
            "changed": change.changed,
            "propagation": outcome.value,
        }

    async def _phone_detach(self, payload: RawRecord, origin: Origin) -> dict[str, Any]:
        reconciler: PhoneNumberReconciler = self.reconciler(ResourceKind.PHONE_NUMBER)
        phone_number_id = _resource_id(payload, ResourceKind.PHONE_NUMBER)
        if not phone_number_id:
            raise UnroutableWebhookError("Detach-Webhook ohne phone_number_id")
        owner_id = await self.resolve_owner(ResourceKind.PHONE_NUMBER, phone_number_id)

        change = await reconciler.detach(owner_id, phone_number_id)
        outcome = await self.guard.propagate(origin, "detach_phone_number", phone_number_id)
        await record_propagation(reconciler, [change.phone_number], outcome)
        return {
            "phone_number_found": change.phone_number is not None,
            "changed": change.changed,
            "propagation": outcome.value,
        }


def _creates(resource: ResourceKind) -> Handler:
    async def handler(router: WebhookRouter, payload: RawRecord, origin: Origin) -> dict[str, Any]:
        return await router._create_update(payload, resource)

    return handler


def _deletes(resource: ResourceKind) -> Handler:
    async def handler(router: WebhookRouter, payload: RawRecord, origin: Origin) -> dict[str, Any]:
        return await router._delete(payload, resource, origin)

    return handler


async def _attach_files(router: WebhookRouter, payload: RawRecord, origin: Origin) -> dict[str, Any]:
    return await router._file_attachment(payload, origin, attach=True)


async def _detach_files(router: WebhookRouter, payload: RawRecord, origin: Origin) -> dict[str, Any]:
    return await router._file_attachment(payload, origin, attach=False)


async def _attach_phone(router: WebhookRouter, payload: RawRecord, origin: Origin) -> dict[str, Any]:
    return await router._phone_attach(payload, origin)


async def _detach_phone(router: WebhookRouter, payload: RawRecord, origin: Origin) -> dict[str, Any]:
    return await router._phone_detach(payload, origin)


DISPATCH_TABLE: dict[tuple[ResourceKind, MutationKind], Handler] = {
    **{(resource, MutationKind.CREATE_UPDATE): _creates(resource) for resource in ResourceKind},
    **{(resource, MutationKind.DELETE): _deletes(resource) for resource in ResourceKind},
    (ResourceKind.FILE, MutationKind.ATTACH): _attach_files,
    (ResourceKind.FILE, MutationKind.DETACH): _detach_files,
    (ResourceKind.PHONE_NUMBER, MutationKind.ATTACH): _attach_phone,
    (ResourceKind.PHONE_NUMBER, MutationKind.DETACH): _detach_phone,
}
