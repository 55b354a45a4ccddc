"""One response stream: pipeline -> tag state machine -> event bus."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import AsyncIterator

from llm_relay.config import ProviderConfig, StreamLimits
from llm_relay.events.bus import EventBus
from llm_relay.llm.pipeline import RequestPipeline
from llm_relay.stream.tags import RESPONSE, SUMMARY, THINKING, USAGE, StreamTagParser
from llm_relay.types import ChatParams, RelayEvent, RelayEventType, StreamResult

_logger = logging.getLogger(__name__)

_CHANNEL_EVENTS = {
    THINKING: RelayEventType.STREAM_THINKING,
    RESPONSE: RelayEventType.STREAM_RESPONSE,
    SUMMARY: RelayEventType.STREAM_SUMMARY,
}


async def _read_next(source: AsyncIterator[str]) -> str | None:
    try:
        return await source.__anext__()
    except StopAsyncIteration:
        return None


class ChatStream:
    """Drives one chat turn and publishes what it recognises.

    Owns its own :class:`StreamTagParser`; never share an instance
    between concurrent turns.  ``cancel()`` stops further reads.  Text
    still held by the parser is dropped on cancellation unless the caller
    collected it with :meth:`finalize` first.
    """

    def __init__(
        self,
        pipeline: RequestPipeline,
        params: ChatParams,
        provider_config: ProviderConfig | None = None,
        bus: EventBus | None = None,
        limits: StreamLimits | None = None,
    ) -> None:
        self.pipeline = pipeline
        self.params = params
        self.provider_config = provider_config or pipeline.config.active_provider
        self.bus = bus or EventBus()
        limits = limits or pipeline.config.limits
        self._parser = StreamTagParser(summary_max_length=limits.summary_max_length)
        self._cancel = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    def cancel(self) -> None:
        self._cancel.set()

    def finalize(self) -> StreamResult:
        """Collect everything parsed so far and reset the parser."""
        return self._parser.finalize()

    async def _emit(self, event_type: RelayEventType, **data: object) -> None:
        await self.bus.emit(RelayEvent(type=event_type, data=dict(data)))

    async def _next_chunk(self, source: AsyncIterator[str]) -> str | None:
        """Next chunk, or ``None`` at end of stream or on cancellation."""
        read = asyncio.ensure_future(_read_next(source))
        stop = asyncio.ensure_future(self._cancel.wait())
        try:
            await asyncio.wait({read, stop}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            stop.cancel()
        if read.done():
            return read.result()
        read.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await read
        return None

    async def run(self) -> StreamResult | None:
        """Consume the stream; returns the result, or ``None`` if cancelled.

        Errors are published as ``stream.error`` and re-raised.
        """
        self._parser.init()
        await self._emit(
            RelayEventType.STREAM_STARTED,
            provider=self.provider_config.provider,
        )

        source = self.pipeline.stream(self.params, self.provider_config)
        try:
            while not self.cancelled:
                chunk = await self._next_chunk(source)
                if chunk is None:
                    break
                await self._emit(RelayEventType.STREAM_CHUNK, text=chunk)
                for output in self._parser.ingest(chunk):
                    if output.channel == USAGE:
                        await self._emit(RelayEventType.STREAM_USAGE, usage=output.value.to_dict())
                    else:
                        await self._emit(_CHANNEL_EVENTS[output.channel], text=output.value)
        except Exception as exc:
            _logger.error("Stream for %s failed: %s", self.provider_config.provider, exc)
            await self._emit(
                RelayEventType.STREAM_ERROR,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            raise
        finally:
            await source.aclose()

        if self.cancelled:
            self._parser.init()
            await self._emit(RelayEventType.STREAM_CANCELLED)
            return None

        result = self._parser.finalize()
        await self._emit(
            RelayEventType.STREAM_DONE,
            response=result.response_content,
            thinking=result.thinking_content,
            summary=result.thinking_summary,
            usage=result.token_usage.to_dict() if result.token_usage else None,
        )
        return result
