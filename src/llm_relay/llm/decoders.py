"""Translate provider response frames into the sentinel text protocol.

Each streaming decoder is fed parsed JSON frames one at a time and
returns the text chunks they produce; :meth:`finish` emits the trailing
token usage.  The ``decode_*_response`` functions do the same for a
complete, non-streamed JSON body.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from llm_relay.stream.tags import END_THINKING, THINKING_PREFIX, TOKEN_USAGE_PREFIX
from llm_relay.types import SSEEvent, TokenUsage

_logger = logging.getLogger(__name__)

DONE_SENTINEL = "[DONE]"


def format_usage(usage: TokenUsage) -> str:
    return TOKEN_USAGE_PREFIX + json.dumps(usage.to_dict())


def parse_event_json(event: SSEEvent) -> dict[str, Any] | None:
    """JSON object carried by *event*; ``None`` for ``[DONE]`` or junk."""
    data = event.data.strip()
    if not data or data == DONE_SENTINEL:
        return None
    try:
        frame = json.loads(data)
    except json.JSONDecodeError:
        _logger.warning("Skipping malformed SSE frame: %.200s", data)
        return None
    if not isinstance(frame, dict):
        _logger.debug("Skipping non-object SSE frame: %.200s", data)
        return None
    return frame


class _ThinkingTracker:
    """Emits ``__END_THINKING__`` before the first answer text after reasoning."""

    def __init__(self) -> None:
        self.has_thinking = False
        self.thinking_ended = False

    def thinking(self, text: str) -> list[str]:
        self.has_thinking = True
        return [THINKING_PREFIX + text]

    def content(self, text: str) -> list[str]:
        out: list[str] = []
        if self.has_thinking and not self.thinking_ended:
            self.thinking_ended = True
            out.append(END_THINKING)
        out.append(text)
        return out


# ---------------------------------------------------------------------------
# OpenAI chat completions
# ---------------------------------------------------------------------------

def _openai_usage(data: dict[str, Any]) -> TokenUsage | None:
    usage = data.get("usage")
    if not isinstance(usage, dict):
        return None
    return TokenUsage.from_dict(usage)


def _openai_reasoning(message: dict[str, Any]) -> str:
    reasoning = message.get("reasoning_content")
    if reasoning:
        return reasoning
    details = message.get("reasoning_details")
    if isinstance(details, list) and details and isinstance(details[0], dict):
        return details[0].get("text") or ""
    return ""


class OpenAIStreamDecoder:
    def __init__(self) -> None:
        self.usage: TokenUsage | None = None
        self._tracker = _ThinkingTracker()

    def feed(self, frame: dict[str, Any]) -> list[str]:
        self.usage = _openai_usage(frame) or self.usage
        choices = frame.get("choices") or []
        delta = choices[0].get("delta") if choices and isinstance(choices[0], dict) else None
        if not delta:
            return []

        reasoning = _openai_reasoning(delta)
        if reasoning:
            return self._tracker.thinking(reasoning)

        content = delta.get("content")
        if content:
            return self._tracker.content(content)
        return []

    def finish(self) -> list[str]:
        return [format_usage(self.usage)] if self.usage else []


def decode_openai_response(data: dict[str, Any]) -> list[str]:
    """Chunks for a non-streamed chat completion: usage, reasoning, answer."""
    out: list[str] = []
    usage = _openai_usage(data)
    if usage:
        out.append(format_usage(usage))

    choices = data.get("choices") or []
    message = (choices[0].get("message") if choices else None) or {}
    reasoning = _openai_reasoning(message)
    if reasoning:
        out.append(THINKING_PREFIX + reasoning)
        out.append(END_THINKING)
    content = message.get("content")
    if content:
        out.append(content)
    return out


# ---------------------------------------------------------------------------
# Anthropic messages
# ---------------------------------------------------------------------------

def _anthropic_usage(usage: dict[str, Any]) -> TokenUsage:
    prompt = int(usage.get("input_tokens") or 0)
    completion = int(usage.get("output_tokens") or 0)
    cached = usage.get("cache_read_input_tokens")
    return TokenUsage(
        prompt_tokens=prompt,
        completion_tokens=completion,
        total_tokens=prompt + completion,
        cached_tokens=int(cached) if cached else None,
    )


class AnthropicStreamDecoder:
    def __init__(self) -> None:
        self._input: dict[str, Any] = {}
        self._output_tokens: int | None = None
        self._tracker = _ThinkingTracker()

    @property
    def usage(self) -> TokenUsage | None:
        if self._output_tokens is None and not self._input:
            return None
        return _anthropic_usage({**self._input, "output_tokens": self._output_tokens or 0})

    def feed(self, frame: dict[str, Any]) -> list[str]:
        kind = frame.get("type")
        if kind == "message_start":
            usage = (frame.get("message") or {}).get("usage") or {}
            self._input = dict(usage)
            if usage.get("output_tokens") is not None:
                self._output_tokens = int(usage["output_tokens"])
            return []
        if kind == "message_delta":
            usage = frame.get("usage") or {}
            if usage.get("input_tokens") is not None:
                self._input["input_tokens"] = usage["input_tokens"]
            if usage.get("output_tokens") is not None:
                self._output_tokens = int(usage["output_tokens"])
            return []
        if kind != "content_block_delta":
            return []

        delta = frame.get("delta") or {}
        if delta.get("type") == "thinking_delta" and delta.get("thinking"):
            return self._tracker.thinking(delta["thinking"])
        if delta.get("type") == "text_delta" and delta.get("text"):
            return self._tracker.content(delta["text"])
        return []

    def finish(self) -> list[str]:
        usage = self.usage
        return [format_usage(usage)] if usage else []


def decode_anthropic_response(data: dict[str, Any]) -> list[str]:
    out: list[str] = []
    usage = data.get("usage")
    if isinstance(usage, dict):
        out.append(format_usage(_anthropic_usage(usage)))

    blocks = data.get("content") or []
    thinking = "".join(
        b.get("thinking") or "" for b in blocks if b.get("type") == "thinking"
    )
    text = "".join(b.get("text") or "" for b in blocks if b.get("type") == "text")
    if thinking:
        out.append(THINKING_PREFIX + thinking)
        out.append(END_THINKING)
    if text:
        out.append(text)
    return out


# ---------------------------------------------------------------------------
# Google generateContent
# ---------------------------------------------------------------------------

def _google_usage(data: dict[str, Any]) -> TokenUsage | None:
    meta = data.get("usageMetadata")
    if not isinstance(meta, dict):
        return None
    cached = meta.get("cachedContentTokenCount")
    prompt = int(meta.get("promptTokenCount") or 0)
    completion = int(meta.get("candidatesTokenCount") or 0) + int(
        meta.get("thoughtsTokenCount") or 0
    )
    return TokenUsage(
        prompt_tokens=prompt,
        completion_tokens=completion,
        total_tokens=int(meta.get("totalTokenCount") or prompt + completion),
        cached_tokens=int(cached) if cached else None,
    )


def _google_parts(data: dict[str, Any]) -> list[dict[str, Any]]:
    candidates = data.get("candidates") or []
    if not candidates:
        return []
    content = candidates[0].get("content") or {}
    return [p for p in content.get("parts") or [] if isinstance(p, dict)]


class GoogleStreamDecoder:
    def __init__(self) -> None:
        self.usage: TokenUsage | None = None
        self._tracker = _ThinkingTracker()

    def feed(self, frame: dict[str, Any]) -> list[str]:
        self.usage = _google_usage(frame) or self.usage
        out: list[str] = []
        for part in _google_parts(frame):
            text = part.get("text")
            if not text:
                continue
            if part.get("thought"):
                out.extend(self._tracker.thinking(text))
            else:
                out.extend(self._tracker.content(text))
        return out

    def finish(self) -> list[str]:
        return [format_usage(self.usage)] if self.usage else []


def decode_google_response(data: dict[str, Any]) -> list[str]:
    out: list[str] = []
    usage = _google_usage(data)
    if usage:
        out.append(format_usage(usage))

    parts = _google_parts(data)
    thinking = "".join(p.get("text") or "" for p in parts if p.get("thought"))
    text = "".join(p.get("text") or "" for p in parts if not p.get("thought"))
    if thinking:
        out.append(THINKING_PREFIX + thinking)
        out.append(END_THINKING)
    if text:
        out.append(text)
    return out
