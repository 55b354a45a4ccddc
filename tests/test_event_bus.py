"""Tests for the async EventBus."""

from __future__ import annotations

import pytest

from llm_relay.events.bus import WILDCARD, EventBus
from llm_relay.types import RelayEvent, RelayEventType


@pytest.fixture
def bus():
    return EventBus()


class TestSubscribeAndEmit:
    async def test_async_handler(self, bus: EventBus):
        received = []

        async def handler(event: RelayEvent):
            received.append(event)

        bus.subscribe(RelayEventType.STREAM_STARTED, handler)
        ev = RelayEvent(type=RelayEventType.STREAM_STARTED, data={"provider": "openai"})
        await bus.emit(ev)

        assert received == [ev]

    async def test_sync_handler(self, bus: EventBus):
        received = []
        bus.subscribe(RelayEventType.STREAM_CHUNK, received.append)
        await bus.emit(RelayEvent(type=RelayEventType.STREAM_CHUNK))
        assert len(received) == 1

    async def test_no_cross_delivery(self, bus: EventBus):
        received = []
        bus.subscribe(RelayEventType.STREAM_STARTED, received.append)
        await bus.emit(RelayEvent(type=RelayEventType.STREAM_DONE))
        assert received == []

    async def test_string_key(self, bus: EventBus):
        received = []
        bus.subscribe("stream.done", received.append)
        await bus.emit(RelayEvent(type=RelayEventType.STREAM_DONE))
        assert len(received) == 1


class TestWildcard:
    async def test_wildcard_receives_all(self, bus: EventBus):
        received = []
        bus.subscribe(WILDCARD, lambda e: received.append(e.type))
        await bus.emit(RelayEvent(type=RelayEventType.STREAM_STARTED))
        await bus.emit(RelayEvent(type=RelayEventType.STREAM_RESPONSE))
        assert received == [RelayEventType.STREAM_STARTED, RelayEventType.STREAM_RESPONSE]


class TestUnsubscribe:
    async def test_unsubscribe(self, bus: EventBus):
        received = []
        bus.subscribe(RelayEventType.STREAM_CHUNK, received.append)
        bus.unsubscribe(RelayEventType.STREAM_CHUNK, received.append)
        await bus.emit(RelayEvent(type=RelayEventType.STREAM_CHUNK))
        assert received == []

    def test_unsubscribe_unknown_is_noop(self, bus: EventBus):
        bus.unsubscribe(RelayEventType.STREAM_CHUNK, print)


class TestErrorIsolation:
    async def test_failing_handler_does_not_break_others(self, bus: EventBus):
        received = []

        def broken(event: RelayEvent):
            raise RuntimeError("boom")

        bus.subscribe(RelayEventType.STREAM_ERROR, broken)
        bus.subscribe(RelayEventType.STREAM_ERROR, received.append)
        await bus.emit(RelayEvent(type=RelayEventType.STREAM_ERROR))
        assert len(received) == 1


class TestHistory:
    async def test_history_bounded(self):
        bus = EventBus(max_history=3)
        for _ in range(5):
            await bus.emit(RelayEvent(type=RelayEventType.STREAM_CHUNK))
        assert len(bus.history) == 3

    async def test_clear(self, bus: EventBus):
        bus.subscribe(WILDCARD, lambda e: None)
        await bus.emit(RelayEvent(type=RelayEventType.STREAM_CHUNK))
        bus.clear()
        assert bus.history == []
