"""Gemeinsame Sync-Metadaten für gespiegelte Plattform-Ressourcen."""

import enum
from datetime import datetime, timezone


class SyncStatus(str, enum.Enum):
    """Abgleich-Status eines lokalen Datensatzes gegenüber der Plattform."""

    SYNCED = "synced"
    PENDING = "pending"
    ERROR = "error"


def utcnow() -> datetime:
    """Aktueller Zeitpunkt in UTC (Python-seitiger Default für Timestamps)."""
    return datetime.now(timezone.utc)
