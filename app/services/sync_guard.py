"""Loop-Prevention Guard - Keine Rückübertragung von Plattform-Änderungen.

Kommt eine Mutation von der Plattform selbst (Webhook), wird nur lokal
gespeichert und gebroadcastet. Eine erneute Weitergabe würde den nächsten
Webhook auslösen (attach → Webhook → attach → ...).

Dashboard-Aktionen werden genau einmal weitergegeben. Ein Fehler dabei ist
nicht fatal: die lokale Änderung bleibt, der Datensatz bekommt sync_status=error.
"""

import enum
import logging
from collections.abc import Mapping
from typing import Any

from app.config import Settings, settings
from app.models.sync_metadata import SyncStatus
from app.services.field_normalizer import to_remote_int
from app.services.reconciler_base import BaseReconciler

logger = logging.getLogger(__name__)


class Origin(str, enum.Enum):
    """Herkunft einer Mutation."""

    REMOTE = "remote"
    DASHBOARD = "dashboard"


class PropagationOutcome(str, enum.Enum):
    """Ergebnis der Weitergabe an die Plattform."""

    SENT = "sent"
    SKIPPED = "skipped"
    FAILED = "failed"
    INVALID_ID = "invalid_id"

    @property
    def degraded(self) -> bool:
        return self in (PropagationOutcome.FAILED, PropagationOutcome.INVALID_ID)


def resolve_origin(headers: Mapping[str, str], app_settings: Settings = settings) -> Origin:
    """
    Bestimmt die Herkunft eines Requests.

    REMOTE, wenn x-source dem Plattform-Namen entspricht oder der Bearer-Token
    der Plattform-API-Key ist (so signiert die Plattform ihre Webhooks).
    """
    source = (headers.get("x-source") or "").strip().lower()
    if source and source == app_settings.omni_source_name.lower():
        return Origin.REMOTE

    authorization = headers.get("authorization") or ""
    if authorization.lower().startswith("bearer "):
        token = authorization[7:].strip()
        if token and app_settings.omni_api_key and token == app_settings.omni_api_key:
            return Origin.REMOTE

    return Origin.DASHBOARD


class PlatformRequestError(Exception):
    """Plattform-Aufruf ohne verwertbares Ergebnis (Client fehlt oder Aufruf fehlgeschlagen)."""


class OutboundGuard:
    """Entscheidet, ob eine lokale Mutation an die Plattform geht.

    Der Client darf None sein (kein API-Key konfiguriert); die Weitergabe
    gilt dann als fehlgeschlagen.
    """

    def __init__(self, client: Any | None):
        self.client = client

    @staticmethod
    def _convert(value: Any) -> Any:
        """Remote-ID(s) in Plattform-Integer wandeln; None bei ungültiger ID."""
        if isinstance(value, (list, tuple)):
            converted = [to_remote_int(item) for item in value]
            if not converted or any(item is None for item in converted):
                return None
            return converted
        return to_remote_int(value)

    async def propagate(self, origin: Origin, action: str, *ids: Any) -> PropagationOutcome:
        """
        Gibt eine Mutation an die Plattform weiter (höchstens ein Versuch).

        Args:
            origin: Herkunft der Mutation
            action: Methode des Plattform-Clients, z.B. "attach_files"
            *ids: Remote-IDs (einzeln oder als Liste) in Aufruf-Reihenfolge

        Returns:
            PropagationOutcome
        """
        if origin == Origin.REMOTE:
            logger.debug(f"{action}: Änderung kommt von der Plattform, keine Weitergabe")
            return PropagationOutcome.SKIPPED

        arguments = [self._convert(value) for value in ids]
        if any(argument is None for argument in arguments):
            logger.warning(f"{action}: ungültige Remote-ID in {ids!r}, Weitergabe übersprungen")
            return PropagationOutcome.INVALID_ID

        if self.client is None:
            logger.error(f"{action}: Plattform-Client nicht konfiguriert, Weitergabe fehlgeschlagen")
            return PropagationOutcome.FAILED

        try:
            await getattr(self.client, action)(*arguments)
        except Exception as e:
            logger.error(f"{action}: Weitergabe an Plattform fehlgeschlagen: {e}")
            return PropagationOutcome.FAILED

        logger.info(f"{action}: an Plattform weitergegeben ({arguments})")
        return PropagationOutcome.SENT

    async def request(self, action: str, *args: Any) -> Any:
        """
        Ruft eine Plattform-Aktion auf, deren Antwort lokal gespeichert wird.

        Anlegen und Import laufen Plattform zuerst: ohne Remote-ID gibt es
        keinen lokalen Datensatz. Ein Fehler wird daher nicht still
        protokolliert, sondern an den Aufrufer gemeldet.

        Raises:
            PlatformRequestError: Client fehlt oder Aufruf fehlgeschlagen
        """
        if self.client is None:
            raise PlatformRequestError(f"{action}: Plattform-Client nicht konfiguriert")
        try:
            response = await getattr(self.client, action)(*args)
        except Exception as e:
            logger.error(f"{action}: Plattform-Aufruf fehlgeschlagen: {e}")
            raise PlatformRequestError(f"{action}: {e}") from e
        logger.info(f"{action}: Plattform-Aufruf erfolgreich")
        return response


async def record_propagation(
    reconciler: BaseReconciler, records: list[Any], outcome: PropagationOutcome
) -> None:
    """Markiert Datensätze nach fehlgeschlagener Weitergabe mit sync_status=error."""
    if not outcome.degraded:
        return
    for record in records:
        if record is not None:
            await reconciler.mark_sync_status(record, SyncStatus.ERROR)
