"""Adapter context and signature."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable

from llm_relay.config import ProviderConfig
from llm_relay.types import AdapterResult, ChatParams


@dataclass(frozen=True)
class AdapterContext:
    """Input of an adapter: the turn, the provider settings and the model."""

    params: ChatParams
    config: ProviderConfig
    model: str

    @property
    def has_local_attachments(self) -> bool:
        return bool(self.params.local_attachments)


# Adapters are pure: no network I/O and no hidden state.
AdapterFn = Callable[[AdapterContext], AdapterResult]


def pick_model(
    models: dict[str, str],
    thinking: bool,
    force_default: bool = False,
) -> str:
    """Choose between a provider's default and thinking model ids."""
    if force_default or not thinking:
        return models["default"]
    return models["thinking"]
