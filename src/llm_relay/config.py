"""Configuration for llm-relay.

Config discovery (first match wins):
  1. explicit path (``--config`` flag)
  2. ``./llm_relay.yaml``
  3. ``~/.config/llm-relay/config.yaml``
  4. Built-in defaults
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from llm_relay.constants import DEFAULT_GEMINI_URL, DEFAULT_PROXY_URL
from llm_relay.errors import ConfigurationError

_logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Config data structures
# ---------------------------------------------------------------------------

TOOL_CHOICES = ("auto", "none", "required", "specific")


@dataclass(frozen=True)
class ToolConfig:
    """Tool permissions for one provider.

    ``tool_choice_name`` is only consulted when ``tool_choice`` is
    ``"specific"``.
    """

    enabled_tool_names: tuple[str, ...] = ("read_file", "get_system_time")
    tool_choice: str = "auto"
    tool_choice_name: str = ""


@dataclass(frozen=True)
class ProviderConfig:
    """Resolved settings for one provider.

    ``top_p`` / ``top_k`` are only sent when ``show_advanced_params`` is set.
    """

    provider: str = "openai"
    api_key: str = ""
    model: str = ""
    stream: bool = True
    api_url: str | None = None
    temperature: float | None = None
    top_p: float | None = None
    top_k: int | None = None
    show_advanced_params: bool = False
    thinking_budget_tokens: int | None = None
    show_thinking_summary: bool = False
    tool_config: ToolConfig | None = None


@dataclass(frozen=True)
class StreamLimits:
    """Safety limits of the stream decoders."""

    sse_max_buffer_size: int = 1024 * 1024
    sse_max_retries: int = 3
    summary_max_length: int = 1200


@dataclass
class RelayConfig:
    """Top-level config for llm-relay."""

    # Active provider id
    provider: str = "openai"

    # Named provider settings
    providers: dict[str, ProviderConfig] = field(
        default_factory=lambda: {"openai": ProviderConfig()}
    )

    # Transport
    proxy_url: str = DEFAULT_PROXY_URL
    gemini_url: str = DEFAULT_GEMINI_URL
    timeout: float = 120

    # Retry
    max_retries: int = 3
    retry_base_delay: float = 1.0

    limits: StreamLimits = field(default_factory=StreamLimits)

    @property
    def active_provider(self) -> ProviderConfig:
        return self.providers.get(self.provider, ProviderConfig(provider=self.provider))


def require_api_key(key: str | None, label: str) -> str:
    """Return *key* or raise ``ConfigurationError`` naming *label*."""
    if not key:
        raise ConfigurationError(f"{label} is missing. Please configure the API key.")
    return key


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------

_SEARCH_PATHS = [
    Path("./llm_relay.yaml"),
    Path.home() / ".config" / "llm-relay" / "config.yaml",
]


def _parse_tool_config(raw: dict[str, Any] | None) -> ToolConfig | None:
    if not raw:
        return None
    choice = raw.get("tool_choice", "auto")
    if choice not in TOOL_CHOICES:
        _logger.warning("Unknown tool_choice %r, using 'auto'", choice)
        choice = "auto"
    names = raw.get("enabled_tool_names")
    return ToolConfig(
        enabled_tool_names=tuple(names) if names is not None else ToolConfig().enabled_tool_names,
        tool_choice=choice,
        tool_choice_name=raw.get("tool_choice_name", "") or "",
    )


def _parse_provider(name: str, raw: dict[str, Any]) -> ProviderConfig:
    return ProviderConfig(
        provider=raw.get("provider", name),
        api_key=raw.get("api_key", "") or "",
        model=raw.get("model", "") or "",
        stream=raw.get("stream", True),
        api_url=raw.get("api_url"),
        temperature=raw.get("temperature"),
        top_p=raw.get("top_p"),
        top_k=raw.get("top_k"),
        show_advanced_params=raw.get("show_advanced_params", False),
        thinking_budget_tokens=raw.get("thinking_budget_tokens"),
        show_thinking_summary=raw.get("show_thinking_summary", False),
        tool_config=_parse_tool_config(raw.get("tools")),
    )


def _parse_limits(raw: dict[str, Any] | None) -> StreamLimits:
    if not raw:
        return StreamLimits()
    base = StreamLimits()
    return StreamLimits(
        sse_max_buffer_size=raw.get("sse_max_buffer_size", base.sse_max_buffer_size),
        sse_max_retries=raw.get("sse_max_retries", base.sse_max_retries),
        summary_max_length=raw.get("summary_max_length", base.summary_max_length),
    )


def load_config(path: str | Path | None = None) -> RelayConfig:
    """Load configuration from YAML.

    Parameters
    ----------
    path:
        Explicit config path.  If *None*, search default locations.

    Returns
    -------
    RelayConfig
    """
    config_path: Path | None = None

    if path is not None:
        config_path = Path(path)
        if not config_path.exists():
            _logger.warning("Config file not found: %s, using defaults", path)
            return RelayConfig()
    else:
        for candidate in _SEARCH_PATHS:
            if candidate.exists():
                config_path = candidate
                break

    if config_path is None:
        _logger.info("No config file found, using defaults")
        return RelayConfig()

    _logger.info("Loading config from %s", config_path)
    with open(config_path, encoding="utf-8") as f:
        raw = yaml.safe_load(f) or {}

    providers: dict[str, ProviderConfig] = {}
    for name, praw in (raw.get("providers") or {}).items():
        providers[name] = _parse_provider(name, praw or {})

    if not providers:
        providers["openai"] = ProviderConfig()

    return RelayConfig(
        provider=raw.get("provider", next(iter(providers))),
        providers=providers,
        proxy_url=raw.get("proxy_url", DEFAULT_PROXY_URL),
        gemini_url=raw.get("gemini_url", DEFAULT_GEMINI_URL),
        timeout=raw.get("timeout", 120),
        max_retries=raw.get("max_retries", 3),
        retry_base_delay=raw.get("retry_base_delay", 1.0),
        limits=_parse_limits(raw.get("limits")),
    )
