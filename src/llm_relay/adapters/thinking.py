"""Thinking / reasoning controls shared by the provider adapters."""

from __future__ import annotations

import math
from typing import Any

from llm_relay.constants import THINKING_BUDGETS

# (inclusive upper bound, effort); larger budgets map to "high"
_BUDGET_TO_EFFORT = (
    (1024, "low"),
    (4096, "medium"),
)


def _finite_number(value: Any) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return math.isfinite(value)


def resolve_thinking_level(thinking_level: str | None) -> str:
    return thinking_level or "medium"


def resolve_thinking_budget(
    thinking_level: str | None,
    custom_budget: int | float | None = None,
) -> int | float:
    """Explicit finite budget verbatim, otherwise the level's table value."""
    if _finite_number(custom_budget):
        return custom_budget  # type: ignore[return-value]
    return THINKING_BUDGETS[resolve_thinking_level(thinking_level)]


def resolve_reasoning_effort(
    thinking_level: str | None,
    custom_budget: int | float | None = None,
) -> str:
    """Map a budget (or pass through a level) to an OpenAI reasoning effort."""
    if _finite_number(custom_budget):
        for limit, effort in _BUDGET_TO_EFFORT:
            if custom_budget <= limit:  # type: ignore[operator]
                return effort
        return "high"
    return resolve_thinking_level(thinking_level)


def build_thinking_toggle(use_thinking: bool) -> dict[str, Any]:
    return {"thinking": {"type": "enabled" if use_thinking else "disabled"}}


def build_thinking_budget_toggle(
    use_thinking: bool,
    thinking_level: str | None = None,
    custom_budget: int | float | None = None,
) -> dict[str, Any]:
    if not use_thinking:
        return build_thinking_toggle(False)
    return {
        "thinking": {
            "type": "enabled",
            "budget_tokens": resolve_thinking_budget(thinking_level, custom_budget),
        }
    }
