"""Shared data types for llm-relay."""

from __future__ import annotations

import enum
import time
from dataclasses import dataclass, field
from typing import Any


# ---------------------------------------------------------------------------
# Conversation types
# ---------------------------------------------------------------------------

class Role(str, enum.Enum):
    """Role of a message in the caller's conversation history."""

    USER = "user"
    MODEL = "model"


@dataclass(frozen=True)
class FileReference:
    """A file already uploaded to one provider's file store."""

    provider: str
    name: str
    file_id: str | None = None
    file_uri: str | None = None
    mime_type: str | None = None


@dataclass(frozen=True)
class LocalAttachment:
    """A local file whose text was extracted by the host application."""

    id: str
    name: str
    text: str = ""


@dataclass(frozen=True)
class ConversationMessage:
    """One entry of the conversation history."""

    role: Role | str
    content: str
    attachments: tuple[FileReference, ...] = ()

    @property
    def is_user(self) -> bool:
        # Role is a str enum, so plain strings compare equal too
        return self.role == Role.USER


@dataclass(frozen=True)
class ChatParams:
    """Everything the caller knows about the turn being sent."""

    history: tuple[ConversationMessage, ...]
    message: str
    use_thinking: bool = False
    use_search: bool = False
    thinking_level: str | None = None
    use_deep_think: bool = False
    local_attachments: tuple[LocalAttachment, ...] = ()
    language: str | None = None
    error_message: str | None = None


# ---------------------------------------------------------------------------
# Adapter output
# ---------------------------------------------------------------------------

class Dialect(str, enum.Enum):
    """Wire dialect an adapter result is encoded for."""

    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    GOOGLE = "google"


@dataclass(frozen=True)
class AdapterResult:
    """Provider-ready request payload.

    ``messages`` holds chat messages for OpenAI-style and Anthropic
    dialects, and ``contents`` for Google.  Built fresh per request and
    never mutated afterwards; consumers copy before composing payloads.
    """

    dialect: Dialect
    endpoint: str
    model: str
    messages: list[dict[str, Any]]
    extra_body: dict[str, Any] = field(default_factory=dict)
    system: str | None = None


# ---------------------------------------------------------------------------
# Stream types
# ---------------------------------------------------------------------------

@dataclass
class TokenUsage:
    """Token accounting reported at the end of a response."""

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0
    cached_tokens: int | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TokenUsage:
        """Build from an OpenAI-style usage dict.

        Accepts both a flat ``cached_tokens`` key and the nested
        ``prompt_tokens_details.cached_tokens`` shape.
        """
        cached = data.get("cached_tokens")
        details = data.get("prompt_tokens_details")
        if cached is None and isinstance(details, dict):
            cached = details.get("cached_tokens")
        return cls(
            prompt_tokens=int(data.get("prompt_tokens") or 0),
            completion_tokens=int(data.get("completion_tokens") or 0),
            total_tokens=int(data.get("total_tokens") or 0),
            cached_tokens=int(cached) if cached is not None else None,
        )

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "prompt_tokens": self.prompt_tokens,
            "completion_tokens": self.completion_tokens,
            "total_tokens": self.total_tokens,
        }
        if self.cached_tokens is not None:
            data["prompt_tokens_details"] = {"cached_tokens": self.cached_tokens}
        return data


@dataclass
class SSEEvent:
    """One Server-Sent Event record."""

    data: str
    event: str | None = None
    id: str | None = None
    retry: int | None = None


@dataclass
class StreamResult:
    """The three output channels of one finished response stream."""

    response_content: str = ""
    thinking_content: str = ""
    thinking_summary: str = ""
    token_usage: TokenUsage | None = None


# ---------------------------------------------------------------------------
# Event types
# ---------------------------------------------------------------------------

class RelayEventType(enum.Enum):
    """Events emitted on the output channel of a response stream."""

    STREAM_STARTED = "stream.started"
    STREAM_CHUNK = "stream.chunk"
    STREAM_THINKING = "stream.thinking"
    STREAM_RESPONSE = "stream.response"
    STREAM_SUMMARY = "stream.summary"
    STREAM_USAGE = "stream.usage"
    STREAM_DONE = "stream.done"
    STREAM_ERROR = "stream.error"
    STREAM_CANCELLED = "stream.cancelled"


@dataclass
class RelayEvent:
    """Event emitted by a response stream via the EventBus."""

    type: RelayEventType
    data: dict[str, Any] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)
