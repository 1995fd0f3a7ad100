"""In-Memory Sync-State pro Owner und Ressource.

Single Instance, daher reicht ein Dict im Prozess. Der Store wird dem
Scheduler explizit übergeben (keine Modul-Globals), damit Tests ihn pro
Fall frisch anlegen können.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)

StateKey = tuple[str, str]


@dataclass
class SyncState:
    """Zustand des Hintergrund-Syncs für (owner_id, resource).

    idle: kein Task, keine Cooldown-Sperre
    in-progress: task läuft, weitere Anfragen bekommen denselben Task
    cooled-down: last_run_at liegt innerhalb des Cooldowns
    """

    in_progress: bool = False
    started_at: float | None = None
    last_run_at: float | None = None
    last_error: str | None = None
    last_result: Any = None
    task: asyncio.Task | None = None

    def phase(self, now: float, cooldown_seconds: float) -> str:
        if self.in_progress:
            return "in_progress"
        if self.last_run_at is not None and now - self.last_run_at < cooldown_seconds:
            return "cooled_down"
        return "idle"


class SyncStateStore:
    """Hält SyncState-Objekte, Schlüssel ist (owner_id, resource)."""

    def __init__(self) -> None:
        self._states: dict[StateKey, SyncState] = {}

    def get(self, owner_id: str, resource: str) -> SyncState:
        """Liefert den State, legt ihn bei Bedarf an."""
        key = (str(owner_id), str(resource))
        state = self._states.get(key)
        if state is None:
            state = SyncState()
            self._states[key] = state
        return state

    def items(self, owner_id: str | None = None) -> list[tuple[StateKey, SyncState]]:
        """Alle States, optional gefiltert auf einen Owner."""
        return [
            (key, state)
            for key, state in self._states.items()
            if owner_id is None or key[0] == str(owner_id)
        ]

    def running_tasks(self) -> list[asyncio.Task]:
        return [
            state.task
            for state in self._states.values()
            if state.task is not None and not state.task.done()
        ]

    def reset(self) -> None:
        """Entfernt alle States (Tests, Neustart)."""
        self._states.clear()
        logger.info("Sync-State zurückgesetzt")
