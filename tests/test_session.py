"""Tests for ChatStream: pipeline output -> tag parser -> event bus."""

from __future__ import annotations

import asyncio
from unittest.mock import MagicMock

import pytest

from llm_relay.config import ProviderConfig, RelayConfig, StreamLimits
from llm_relay.errors import StreamError
from llm_relay.events.bus import EventBus
from llm_relay.session import ChatStream
from llm_relay.types import ChatParams, ConversationMessage, RelayEventType, Role


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

def _params() -> ChatParams:
    return ChatParams(
        history=(ConversationMessage(role=Role.USER, content="What is 2+2?"),),
        message="What is 2+2?",
        use_thinking=True,
    )


def _make_pipeline(chunks: list[str], error: Exception | None = None, config: RelayConfig | None = None):
    """Stand-in pipeline whose ``stream`` yields *chunks*, then raises *error*."""
    pipeline = MagicMock()
    pipeline.config = config or RelayConfig()
    pipeline.closed = False

    async def stream(params, provider_config):
        try:
            for chunk in chunks:
                yield chunk
            if error is not None:
                raise error
        finally:
            pipeline.closed = True

    pipeline.stream = stream
    return pipeline


def _record(bus: EventBus) -> list:
    events = []
    bus.subscribe("*", events.append)
    return events


# ---------------------------------------------------------------------------
# Tests
# ---------------------------------------------------------------------------

class TestChatStream:
    async def test_full_turn(self):
        pipeline = _make_pipeline([
            "__THINKING__Let me think. ",
            "__END_THINKING__",
            "The answer is 4.",
            "<thinking_summary>Added.</thinking_summary>",
            '__TOKEN_USAGE__{"prompt_tokens": 3, "completion_tokens": 4, "total_tokens": 7}',
        ])
        bus = EventBus()
        events = _record(bus)
        stream = ChatStream(pipeline, _params(), ProviderConfig(provider="deepseek"), bus=bus)

        result = await stream.run()

        assert result.thinking_content == "Let me think. "
        assert result.response_content == "The answer is 4."
        assert result.thinking_summary == "Added."
        assert result.token_usage.total_tokens == 7

        types = [e.type for e in events]
        assert types[0] == RelayEventType.STREAM_STARTED
        assert events[0].data == {"provider": "deepseek"}
        assert types[-1] == RelayEventType.STREAM_DONE
        assert RelayEventType.STREAM_THINKING in types
        assert RelayEventType.STREAM_SUMMARY in types
        assert types.index(RelayEventType.STREAM_THINKING) < types.index(RelayEventType.STREAM_RESPONSE)
        usage_event = next(e for e in events if e.type == RelayEventType.STREAM_USAGE)
        assert usage_event.data["usage"]["total_tokens"] == 7
        assert events[-1].data["response"] == "The answer is 4."
        assert pipeline.closed

    async def test_chunk_events_mirror_input(self):
        chunks = ["Hello", " world"]
        bus = EventBus()
        events = _record(bus)
        await ChatStream(_make_pipeline(chunks), _params(), bus=bus).run()
        raw = [e.data["text"] for e in events if e.type == RelayEventType.STREAM_CHUNK]
        assert raw == chunks

    async def test_error_published_and_raised(self):
        pipeline = _make_pipeline(["partial"], error=StreamError("upstream died"))
        bus = EventBus()
        events = _record(bus)

        with pytest.raises(StreamError):
            await ChatStream(pipeline, _params(), bus=bus).run()

        last = events[-1]
        assert last.type == RelayEventType.STREAM_ERROR
        assert last.data == {"error": "upstream died", "error_type": "StreamError"}
        assert RelayEventType.STREAM_DONE not in [e.type for e in events]
        assert pipeline.closed

    async def test_cancel_mid_stream(self):
        gate = asyncio.Event()
        pipeline = MagicMock()
        pipeline.config = RelayConfig()

        async def stream(params, provider_config):
            yield "first"
            await gate.wait()
            yield "never"

        pipeline.stream = stream
        bus = EventBus()
        events = _record(bus)
        chat = ChatStream(pipeline, _params(), bus=bus)

        async def cancel_after_first(event):
            if event.type == RelayEventType.STREAM_RESPONSE:
                chat.cancel()

        bus.subscribe(RelayEventType.STREAM_RESPONSE, cancel_after_first)

        result = await asyncio.wait_for(chat.run(), timeout=5)

        assert result is None
        assert chat.cancelled
        types = [e.type for e in events]
        assert types[-1] == RelayEventType.STREAM_CANCELLED
        assert RelayEventType.STREAM_DONE not in types

    async def test_cancel_while_waiting_for_chunk(self):
        gate = asyncio.Event()
        pipeline = MagicMock()
        pipeline.config = RelayConfig()

        async def stream(params, provider_config):
            await gate.wait()
            yield "late"

        pipeline.stream = stream
        chat = ChatStream(pipeline, _params())

        task = asyncio.ensure_future(chat.run())
        await asyncio.sleep(0.01)
        chat.cancel()
        assert await asyncio.wait_for(task, timeout=5) is None

    async def test_summary_cap_from_limits(self):
        config = RelayConfig(limits=StreamLimits(summary_max_length=3))
        pipeline = _make_pipeline(["<thinking_summary>abcdef</thinking_summary>"], config=config)
        result = await ChatStream(pipeline, _params()).run()
        assert result.thinking_summary == "abc"

    async def test_default_provider_from_config(self):
        config = RelayConfig(provider="xai", providers={"xai": ProviderConfig(provider="xai")})
        pipeline = _make_pipeline([], config=config)
        bus = EventBus()
        events = _record(bus)
        result = await ChatStream(pipeline, _params(), bus=bus).run()
        assert events[0].data["provider"] == "xai"
        assert result.response_content == ""
