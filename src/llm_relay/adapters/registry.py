"""Provider id -> adapter lookup.

``ADAPTERS`` covers every :class:`ProviderKind`; a missing entry is an
import-time error, so the only lookup failure left is an unknown id
coming from configuration.
"""

from __future__ import annotations

import enum
import logging

from llm_relay.adapters.anthropic import build_anthropic_adapter
from llm_relay.adapters.base import AdapterContext, AdapterFn
from llm_relay.adapters.google import build_google_adapter
from llm_relay.adapters.openai_style import (
    build_bailing_adapter,
    build_deepseek_adapter,
    build_longcat_adapter,
    build_mimo_adapter,
    build_minimax_adapter,
    build_modelscope_adapter,
    build_moonshot_adapter,
    build_openai_adapter,
    build_openai_compatible_adapter,
    build_xai_adapter,
    build_z_adapter,
    build_z_intl_adapter,
)
from llm_relay.config import ProviderConfig
from llm_relay.constants import DEFAULT_MODELS
from llm_relay.errors import AdapterNotFoundError
from llm_relay.types import AdapterResult, ChatParams

_logger = logging.getLogger(__name__)


class ProviderKind(str, enum.Enum):
    OPENAI = "openai"
    OPENAI_COMPATIBLE = "openai-compatible"
    XAI = "xai"
    DEEPSEEK = "deepseek"
    BAILING = "bailing"
    LONGCAT = "longcat"
    MOONSHOT = "moonshot"
    MINIMAX = "minimax"
    MIMO = "mimo"
    MODELSCOPE = "modelscope"
    Z = "z"
    Z_INTL = "z-intl"
    GEMINI = "gemini"
    ANTHROPIC = "anthropic"


ADAPTERS: dict[ProviderKind, AdapterFn] = {
    ProviderKind.OPENAI: build_openai_adapter,
    ProviderKind.OPENAI_COMPATIBLE: build_openai_compatible_adapter,
    ProviderKind.XAI: build_xai_adapter,
    ProviderKind.DEEPSEEK: build_deepseek_adapter,
    ProviderKind.BAILING: build_bailing_adapter,
    ProviderKind.LONGCAT: build_longcat_adapter,
    ProviderKind.MOONSHOT: build_moonshot_adapter,
    ProviderKind.MINIMAX: build_minimax_adapter,
    ProviderKind.MIMO: build_mimo_adapter,
    ProviderKind.MODELSCOPE: build_modelscope_adapter,
    ProviderKind.Z: build_z_adapter,
    ProviderKind.Z_INTL: build_z_intl_adapter,
    ProviderKind.GEMINI: build_google_adapter,
    ProviderKind.ANTHROPIC: build_anthropic_adapter,
}

_missing = set(ProviderKind) - set(ADAPTERS)
if _missing:
    raise RuntimeError(
        "Providers without an adapter: "
        + ", ".join(sorted(kind.value for kind in _missing))
    )

_ALIASES = {"google": ProviderKind.GEMINI}


def resolve_provider(provider: ProviderKind | str) -> ProviderKind:
    """Normalise a provider id, raising ``AdapterNotFoundError`` if unknown."""
    if isinstance(provider, ProviderKind):
        return provider
    key = (provider or "").strip().lower()
    if key in _ALIASES:
        return _ALIASES[key]
    try:
        return ProviderKind(key)
    except ValueError:
        raise AdapterNotFoundError(str(provider)) from None


def get_adapter(provider: ProviderKind | str) -> AdapterFn:
    return ADAPTERS[resolve_provider(provider)]


def build_adapter_result(
    params: ChatParams,
    config: ProviderConfig,
) -> AdapterResult:
    """Look up the adapter for ``config.provider`` and run it."""
    kind = resolve_provider(config.provider)
    adapter = ADAPTERS[kind]
    ctx = AdapterContext(
        params=params,
        config=config,
        model=config.model or DEFAULT_MODELS.get(kind.value, ""),
    )
    result = adapter(ctx)
    _logger.debug(
        "Built %s request for %s (model=%s, %d messages)",
        result.dialect.value, kind.value, result.model, len(result.messages),
    )
    return result
