"""Stream decoding: SSE framing, text sanitation and the sentinel/tag state machine."""

from llm_relay.stream.sanitize import sanitize_ai_text
from llm_relay.stream.sse import SSEParser, iter_sse_events, process_sse_stream
from llm_relay.stream.tags import (
    ChunkKind,
    ParsedChunk,
    StreamTagParser,
    TagOutput,
    classify_chunk,
)

__all__ = [
    "ChunkKind",
    "ParsedChunk",
    "SSEParser",
    "StreamTagParser",
    "TagOutput",
    "classify_chunk",
    "iter_sse_events",
    "process_sse_stream",
    "sanitize_ai_text",
]
