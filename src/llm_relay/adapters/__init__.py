"""Provider adapters: pure functions from a chat turn to a request payload."""

from llm_relay.adapters.base import AdapterContext, AdapterFn, pick_model
from llm_relay.adapters.registry import (
    ADAPTERS,
    ProviderKind,
    build_adapter_result,
    get_adapter,
    resolve_provider,
)

__all__ = [
    "ADAPTERS",
    "AdapterContext",
    "AdapterFn",
    "ProviderKind",
    "build_adapter_result",
    "get_adapter",
    "pick_model",
    "resolve_provider",
]
