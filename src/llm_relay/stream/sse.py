"""Incremental Server-Sent Events parser.

Bytes arrive in arbitrary chunks; events come out once their terminating
blank line has been seen.  Both a partial line and a partially read event
are carried over to the next chunk, so the emitted events do not depend
on how the byte stream was split.
"""

from __future__ import annotations

import asyncio
import codecs
import logging
from typing import AsyncIterator, Awaitable, Callable

from llm_relay.errors import SSEBufferOverflowError
from llm_relay.types import SSEEvent

_logger = logging.getLogger(__name__)

DEFAULT_MAX_BUFFER_SIZE = 1024 * 1024
DEFAULT_MAX_RETRIES = 3

# Read-error backoff: min(1000 * 2**n, 10000) ms
_ERROR_BACKOFF_BASE = 1.0
_ERROR_BACKOFF_CAP = 10.0


def _log_error(error: BaseException) -> None:
    _logger.error("SSE stream error: %s", error)


class SSEParser:
    """Single-stream SSE parser.

    Parameters
    ----------
    max_buffer_size:
        Hard limit on buffered, not yet parsed text.  Exceeding it reports
        :class:`SSEBufferOverflowError` through *on_error* and resets the
        parser; the overflowing chunk yields no events.
    max_retries:
        How many read errors :meth:`handle_error` allows before giving up.
    on_error:
        Called with every error; defaults to logging it.
    sleep:
        Awaitable used for the read-error backoff.
    """

    def __init__(
        self,
        max_buffer_size: int = DEFAULT_MAX_BUFFER_SIZE,
        max_retries: int = DEFAULT_MAX_RETRIES,
        on_error: Callable[[BaseException], None] | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.max_buffer_size = max_buffer_size
        self.max_retries = max_retries
        self._on_error = on_error or _log_error
        self._sleep = sleep
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._last_event_id: str | None = None
        self._retry_count = 0
        self._reset_buffers()

    def _reset_buffers(self) -> None:
        self._buffer = ""
        self._data_lines: list[str] = []
        self._event: str | None = None
        self._id: str | None = None
        self._retry: int | None = None

    @property
    def last_event_id(self) -> str | None:
        """Most recent ``id`` field seen; survives across events."""
        return self._last_event_id

    @property
    def buffered(self) -> str:
        return self._buffer

    # ------------------------------------------------------------------
    # Parsing
    # ------------------------------------------------------------------

    def process_chunk(self, chunk: bytes) -> list[SSEEvent]:
        """Decode *chunk* and return every event it completes."""
        self._buffer += self._decoder.decode(chunk)

        if len(self._buffer) > self.max_buffer_size:
            self._on_error(SSEBufferOverflowError(len(self._buffer), self.max_buffer_size))
            self.reset()
            return []

        events = self.parse_events(flush=False)
        self._retry_count = 0
        return events

    def parse_events(self, flush: bool = False) -> list[SSEEvent]:
        """Parse every complete line currently buffered.

        The last, unterminated line stays buffered.  With ``flush=True`` it
        is treated as if a newline followed, and an event still in progress
        is emitted as well.
        """
        if flush:
            self._buffer += self._decoder.decode(b"", final=True)
            source = self._buffer
            if source and not source.endswith("\n"):
                source += "\n"
            self._buffer = ""
            lines = source.split("\n")[:-1]
        else:
            lines = self._buffer.split("\n")
            self._buffer = lines.pop()

        events: list[SSEEvent] = []
        for line in lines:
            if line.endswith("\r"):
                line = line[:-1]

            if not line:
                self._dispatch(events)
                continue

            field_name, sep, value = line.partition(":")
            if not sep:
                continue
            if value.startswith(" "):
                value = value[1:]

            if field_name == "data":
                self._data_lines.append(value)
            elif field_name == "event":
                self._event = value
            elif field_name == "id":
                self._id = value
                self._last_event_id = value
            elif field_name == "retry":
                try:
                    self._retry = int(value.strip())
                except ValueError:
                    pass

        if flush:
            self._dispatch(events)
        return events

    def _dispatch(self, events: list[SSEEvent]) -> None:
        # A blank line without any data line is a stray separator
        if not self._data_lines:
            return
        events.append(
            SSEEvent(
                data="\n".join(self._data_lines),
                event=self._event,
                id=self._id or self._last_event_id,
                retry=self._retry,
            )
        )
        self._data_lines = []
        self._event = None
        self._id = None
        self._retry = None

    def flush(self) -> list[SSEEvent]:
        """End of stream: emit whatever is still buffered."""
        return self.parse_events(flush=True)

    def reset(self) -> None:
        """Drop buffered text and the event in progress."""
        self._reset_buffers()
        self._decoder.reset()
        self._retry_count = 0

    def dispose(self) -> None:
        self.reset()

    # ------------------------------------------------------------------
    # Error recovery
    # ------------------------------------------------------------------

    async def handle_error(self, error: BaseException) -> bool:
        """Report a read error; return whether the caller should keep reading.

        Waits ``min(1s * 2**n, 10s)`` before answering yes, where *n* is
        the number of consecutive errors so far.
        """
        self._on_error(error)
        if self._retry_count >= self.max_retries:
            return False
        self._retry_count += 1
        delay = min(_ERROR_BACKOFF_BASE * (2 ** self._retry_count), _ERROR_BACKOFF_CAP)
        await self._sleep(delay)
        return True


async def iter_sse_events(
    chunks: AsyncIterator[bytes],
    parser: SSEParser,
) -> AsyncIterator[SSEEvent]:
    """Cooperative read loop: one chunk at a time, events in arrival order.

    A read error is passed to :meth:`SSEParser.handle_error`; the loop goes
    on reading while it allows, otherwise the error propagates.  The parser
    is flushed once the source is exhausted.
    """
    iterator = chunks.__aiter__()
    while True:
        try:
            chunk = await iterator.__anext__()
        except StopAsyncIteration:
            break
        except Exception as exc:
            if not await parser.handle_error(exc):
                raise
            continue
        for event in parser.process_chunk(chunk):
            yield event

    for event in parser.flush():
        yield event


async def process_sse_stream(
    reader: AsyncIterator[bytes],
    parser: SSEParser,
    on_event: Callable[[SSEEvent], None],
    on_complete: Callable[[], None] | None = None,
    on_error: Callable[[BaseException], None] | None = None,
) -> None:
    """Callback flavour of :func:`iter_sse_events`.

    *on_error* receives the read error that ended the stream; it is not
    raised in that case.
    """
    events = iter_sse_events(reader, parser)
    while True:
        try:
            event = await events.__anext__()
        except StopAsyncIteration:
            break
        except Exception as exc:
            if on_error is None:
                raise
            on_error(exc)
            return
        on_event(event)
    if on_complete is not None:
        on_complete()
