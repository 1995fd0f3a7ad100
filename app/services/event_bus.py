"""In-Memory Event-Bus für Änderungs-Events (SSE Pub-Sub).

Einfacher Broadcast: Reconciler schreibt Event → alle SSE-Clients bekommen es.
Kein Redis nötig, Single-Process. Zustellung ist best-effort: ein voller
oder verschwundener Client blockiert nie den Schreibpfad.
"""

import asyncio
import logging
from typing import Any

from app.config import limits

logger = logging.getLogger(__name__)


class ChangeBroadcaster:
    """Verteilt `<resource>_<action>` Events an alle SSE-Subscriber."""

    def __init__(self, queue_size: int = limits.EVENT_QUEUE_SIZE):
        self.queue_size = queue_size
        self._subscribers: list[asyncio.Queue] = []

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def subscribe(self) -> asyncio.Queue:
        """Neuen SSE-Client registrieren. Gibt Queue zurück."""
        q: asyncio.Queue = asyncio.Queue(maxsize=self.queue_size)
        self._subscribers.append(q)
        logger.info("SSE-Client connected (total: %d)", len(self._subscribers))
        return q

    def unsubscribe(self, q: asyncio.Queue) -> None:
        """SSE-Client abmelden."""
        try:
            self._subscribers.remove(q)
        except ValueError:
            pass
        logger.info("SSE-Client disconnected (total: %d)", len(self._subscribers))

    async def publish(self, event_type: str, data: dict[str, Any]) -> int:
        """Event an alle SSE-Clients senden. Gibt Anzahl erreichter Clients zurück."""
        delivered = 0

        for q in list(self._subscribers):
            try:
                q.put_nowait({"event": event_type, "data": data})
                delivered += 1
            except asyncio.QueueFull:
                logger.warning("SSE-Queue voll, Event '%s' für einen Client verworfen", event_type)

        if delivered > 0:
            logger.debug("Event '%s' an %d Client(s) gesendet", event_type, delivered)

        return delivered

    async def emit(self, resource: str, action: str, data: dict[str, Any]) -> int:
        """Sendet `<resource>_<action>`, z.B. call_log_created."""
        return await self.publish(f"{resource}_{action}", data)


# Prozessweite Standard-Instanz
change_broadcaster = ChangeBroadcaster()
