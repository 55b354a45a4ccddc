"""Event system for llm-relay."""

from llm_relay.events.bus import WILDCARD, EventBus

__all__ = ["EventBus", "WILDCARD"]
