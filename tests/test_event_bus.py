"""Tests für den In-Memory Event-Bus."""

import pytest

from app.services.event_bus import ChangeBroadcaster


class TestChangeBroadcaster:
    @pytest.mark.asyncio
    async def test_emit_event_name(self):
        bus = ChangeBroadcaster()
        queue = bus.subscribe()

        delivered = await bus.emit("call_log", "created", {"id": "1"})

        assert delivered == 1
        assert queue.get_nowait() == {"event": "call_log_created", "data": {"id": "1"}}

    @pytest.mark.asyncio
    async def test_full_queue_drops_event(self):
        """Ein voller Client blockiert den Schreibpfad nicht."""
        bus = ChangeBroadcaster(queue_size=1)
        slow = bus.subscribe()
        fast = bus.subscribe()

        await bus.publish("agent_updated", {"n": 1})
        fast.get_nowait()
        delivered = await bus.publish("agent_updated", {"n": 2})

        assert delivered == 1
        assert slow.qsize() == 1
        assert slow.get_nowait()["data"] == {"n": 1}
        assert fast.get_nowait()["data"] == {"n": 2}

    @pytest.mark.asyncio
    async def test_unsubscribe(self):
        bus = ChangeBroadcaster()
        queue = bus.subscribe()
        assert bus.subscriber_count == 1

        bus.unsubscribe(queue)
        bus.unsubscribe(queue)

        assert bus.subscriber_count == 0
        assert await bus.publish("file_deleted", {}) == 0
