"""Sentinel / tag state machine for decoded model output.

Decoders turn provider frames into plain text chunks with a few inline
sentinels:

* ``__THINKING__<text>``  reasoning text (enters the thinking phase)
* ``__END_THINKING__``    leaves the thinking phase
* ``<thinking>`` / ``</thinking>``  legacy phase markers
* ``__TOKEN_USAGE__<json>``  token accounting, last one wins

Ordinary text may additionally contain ``<thinking_summary>...</thinking_summary>``
which is routed to a separate, length-capped summary channel.
"""

from __future__ import annotations

import enum
import json
import logging
from dataclasses import dataclass
from typing import Any, NamedTuple

from llm_relay.stream.sanitize import sanitize_ai_text
from llm_relay.types import StreamResult, TokenUsage

_logger = logging.getLogger(__name__)

THINKING_PREFIX = "__THINKING__"
END_THINKING = "__END_THINKING__"
TOKEN_USAGE_PREFIX = "__TOKEN_USAGE__"
LEGACY_THINKING_OPEN = "<thinking>"
LEGACY_THINKING_CLOSE = "</thinking>"

SUMMARY_OPEN_TAG = "<thinking_summary>"
SUMMARY_CLOSE_TAG = "</thinking_summary>"
DEFAULT_SUMMARY_MAX_LENGTH = 1200

# Output channels
THINKING = "thinking"
RESPONSE = "response"
SUMMARY = "summary"
USAGE = "usage"


# ---------------------------------------------------------------------------
# Chunk classification
# ---------------------------------------------------------------------------

class ChunkKind(str, enum.Enum):
    IGNORE = "ignore"
    START_THINKING = "start_thinking"
    END_THINKING = "end_thinking"
    THINKING = "thinking"
    CONTENT = "content"
    TOKEN_USAGE = "token_usage"


@dataclass(frozen=True)
class ParsedChunk:
    kind: ChunkKind
    text: str = ""
    usage: TokenUsage | None = None


def _parse_usage(raw: str) -> TokenUsage | None:
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        _logger.warning("Dropping malformed token usage payload: %s", e)
        return None
    if not isinstance(data, dict):
        _logger.warning("Dropping token usage payload of type %s", type(data).__name__)
        return None
    return TokenUsage.from_dict(data)


def classify_chunk(chunk: str) -> ParsedChunk:
    """Classify an already sanitized chunk by its sentinel.

    Checked in priority order: ``__THINKING__`` prefix, exact
    ``__END_THINKING__``, exact legacy tags, ``__TOKEN_USAGE__`` prefix.
    """
    if not chunk:
        return ParsedChunk(ChunkKind.IGNORE)
    if chunk.startswith(THINKING_PREFIX):
        return ParsedChunk(ChunkKind.THINKING, chunk[len(THINKING_PREFIX):])
    if chunk == END_THINKING:
        return ParsedChunk(ChunkKind.END_THINKING)
    if chunk == LEGACY_THINKING_OPEN:
        return ParsedChunk(ChunkKind.START_THINKING)
    if chunk == LEGACY_THINKING_CLOSE:
        return ParsedChunk(ChunkKind.END_THINKING)
    if chunk.startswith(TOKEN_USAGE_PREFIX):
        usage = _parse_usage(chunk[len(TOKEN_USAGE_PREFIX):])
        if usage is None:
            return ParsedChunk(ChunkKind.IGNORE)
        return ParsedChunk(ChunkKind.TOKEN_USAGE, usage=usage)
    return ParsedChunk(ChunkKind.CONTENT, chunk)


def _partial_tag_index(buffer: str, tag: str) -> int:
    """Start of a trailing strict prefix of *tag* in *buffer*, or -1."""
    idx = buffer.rfind("<")
    while idx != -1:
        if tag.startswith(buffer[idx:]):
            return idx
        idx = buffer.rfind("<", 0, idx)
    return -1


# ---------------------------------------------------------------------------
# State machine
# ---------------------------------------------------------------------------

class TagOutput(NamedTuple):
    """One unit routed to a channel by :meth:`StreamTagParser.ingest`."""

    channel: str
    value: Any


class StreamTagParser:
    """Splits one response stream into thinking / response / summary text.

    Two orthogonal flags drive routing: the thinking phase (set by
    ``__THINKING__`` or ``<thinking>``) and the summary sub-phase (inside
    ``<thinking_summary>``).  Summary tags split across chunks are held
    back until they can be decided.

    One instance per stream.  Lifecycle: :meth:`init`, any number of
    :meth:`ingest` calls, then :meth:`finalize`, which resets the parser.
    """

    def __init__(self, summary_max_length: int = DEFAULT_SUMMARY_MAX_LENGTH) -> None:
        self.summary_max_length = summary_max_length
        self.init()

    def init(self) -> None:
        self._thinking = ""
        self._summary = ""
        self._response = ""
        self._usage: TokenUsage | None = None
        self._is_thinking_phase = False
        self._is_summary_phase = False
        self._carry = ""

    # -- read-only state --------------------------------------------------

    @property
    def is_thinking_phase(self) -> bool:
        return self._is_thinking_phase

    @property
    def is_summary_phase(self) -> bool:
        return self._is_summary_phase

    @property
    def thinking_content(self) -> str:
        return self._thinking

    @property
    def response_content(self) -> str:
        return self._response

    @property
    def thinking_summary(self) -> str:
        return self._summary

    @property
    def token_usage(self) -> TokenUsage | None:
        return self._usage

    @property
    def pending(self) -> str:
        """Text held back as a possible partial summary tag."""
        return self._carry

    # -- transitions --------------------------------------------------------

    def ingest(self, chunk: str) -> list[TagOutput]:
        """Feed one decoded chunk; returns what was routed, in order."""
        parsed = classify_chunk(sanitize_ai_text(chunk))
        kind = parsed.kind

        if kind == ChunkKind.IGNORE:
            return []
        if kind == ChunkKind.START_THINKING:
            self._is_thinking_phase = True
            return []
        if kind == ChunkKind.END_THINKING:
            self._is_thinking_phase = False
            return []
        if kind == ChunkKind.TOKEN_USAGE:
            self._usage = parsed.usage
            return [TagOutput(USAGE, parsed.usage)]
        if kind == ChunkKind.THINKING:
            self._is_thinking_phase = True

        channel = THINKING if self._is_thinking_phase else RESPONSE
        routed: list[TagOutput] = []
        for output in self._extract_summary(parsed.text):
            if output.channel == SUMMARY:
                routed.append(output)
                continue
            self._append(channel, output.value)
            routed.append(TagOutput(channel, output.value))
        return routed

    def finalize(self) -> StreamResult:
        """Flush held-back text, return the result and reset."""
        if self._carry:
            if self._is_summary_phase:
                self._append_summary(self._carry)
            elif self._is_thinking_phase:
                self._thinking += self._carry
            else:
                self._response += self._carry
            self._carry = ""

        result = StreamResult(
            response_content=self._response,
            thinking_content=self._thinking,
            thinking_summary=self._summary,
            token_usage=self._usage,
        )
        self.init()
        return result

    # -- internals ----------------------------------------------------------

    def _append(self, channel: str, text: str) -> None:
        if channel == THINKING:
            self._thinking += text
        else:
            self._response += text

    def _append_summary(self, value: str) -> str:
        if not value or len(self._summary) >= self.summary_max_length:
            return ""
        accepted = value[: self.summary_max_length - len(self._summary)]
        self._summary += accepted
        return accepted

    def _extract_summary(self, text: str) -> list[TagOutput]:
        """Route *text* through the summary tags.

        Returns ``("text", ...)`` entries for visible text and
        ``("summary", ...)`` entries for text accepted into the summary.
        """
        if not text:
            return []
        self._carry += text
        out: list[TagOutput] = []

        def emit_summary(value: str) -> None:
            accepted = self._append_summary(value)
            if accepted:
                out.append(TagOutput(SUMMARY, accepted))

        while self._carry:
            buf = self._carry
            if self._is_summary_phase:
                close = buf.find(SUMMARY_CLOSE_TAG)
                if close == -1:
                    partial = _partial_tag_index(buf, SUMMARY_CLOSE_TAG)
                    if partial >= 0:
                        emit_summary(buf[:partial])
                        self._carry = buf[partial:]
                    else:
                        emit_summary(buf)
                        self._carry = ""
                    break
                emit_summary(buf[:close])
                self._carry = buf[close + len(SUMMARY_CLOSE_TAG):]
                self._is_summary_phase = False
                continue

            start = buf.find(SUMMARY_OPEN_TAG)
            if start == -1:
                partial = _partial_tag_index(buf, SUMMARY_OPEN_TAG)
                if partial >= 0:
                    if partial > 0:
                        out.append(TagOutput("text", buf[:partial]))
                    self._carry = buf[partial:]
                else:
                    out.append(TagOutput("text", buf))
                    self._carry = ""
                break

            if start > 0:
                out.append(TagOutput("text", buf[:start]))
            self._carry = buf[start + len(SUMMARY_OPEN_TAG):]
            self._is_summary_phase = True

        return out
