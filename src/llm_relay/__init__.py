"""llm-relay: multi-provider LLM request shaping and streaming-response decoding."""

__version__ = "0.3.0"
