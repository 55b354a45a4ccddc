"""Adapters for providers speaking the OpenAI chat-completions dialect.

Every function takes an :class:`AdapterContext` and returns an
:class:`AdapterResult`; they differ in model selection, message
encoding and the thinking control each provider understands.
"""

from __future__ import annotations

from typing import Any

from llm_relay.adapters.base import AdapterContext, pick_model
from llm_relay.adapters.thinking import (
    build_thinking_budget_toggle,
    resolve_reasoning_effort,
    resolve_thinking_budget,
)
from llm_relay.constants import (
    BAILING_MODELS,
    DEEPSEEK_MODELS,
    LONGCAT_MODELS,
    MOONSHOT_MODELS,
)
from llm_relay.messages import (
    build_final_messages,
    build_final_openai_messages,
    inject_attachment_prompt,
)
from llm_relay.types import AdapterResult, Dialect


# ---------------------------------------------------------------------------
# Shared helpers
# ---------------------------------------------------------------------------

def _plain_messages(ctx: AdapterContext) -> list[dict[str, Any]]:
    p = ctx.params
    base = build_final_messages(
        p.history,
        p.message,
        p.use_thinking,
        p.use_search,
        language=p.language,
        show_thinking_summary=ctx.config.show_thinking_summary,
    )
    return inject_attachment_prompt(base, p.local_attachments)


def _structured_messages(
    ctx: AdapterContext,
    with_attachments: bool = True,
) -> list[dict[str, Any]]:
    p = ctx.params
    base = build_final_openai_messages(
        p.history,
        p.message,
        p.use_thinking,
        p.use_search,
        language=p.language,
        show_thinking_summary=ctx.config.show_thinking_summary,
        provider=ctx.config.provider,
    )
    if not with_attachments:
        return base
    return inject_attachment_prompt(base, p.local_attachments)


def _budget_toggle(ctx: AdapterContext, enabled: bool | None = None) -> dict[str, Any]:
    p = ctx.params
    return build_thinking_budget_toggle(
        p.use_thinking if enabled is None else enabled,
        p.thinking_level,
        ctx.config.thinking_budget_tokens,
    )


def _reasoning_effort(ctx: AdapterContext) -> dict[str, Any]:
    p = ctx.params
    if not p.use_thinking:
        return {}
    return {
        "reasoning_effort": resolve_reasoning_effort(
            p.thinking_level, ctx.config.thinking_budget_tokens,
        )
    }


def _result(
    ctx: AdapterContext,
    endpoint: str,
    messages: list[dict[str, Any]],
    extra_body: dict[str, Any] | None = None,
    model: str | None = None,
) -> AdapterResult:
    return AdapterResult(
        dialect=Dialect.OPENAI,
        endpoint=endpoint,
        model=model or ctx.model,
        messages=messages,
        extra_body=dict(extra_body or {}),
    )


# ---------------------------------------------------------------------------
# Adapters
# ---------------------------------------------------------------------------

def build_openai_adapter(ctx: AdapterContext) -> AdapterResult:
    return _result(
        ctx, "openai", _structured_messages(ctx, with_attachments=False),
        _reasoning_effort(ctx),
    )


def build_openai_compatible_adapter(ctx: AdapterContext) -> AdapterResult:
    extra = _budget_toggle(ctx)
    # The proxy reads the upstream URL from the request body
    extra["api_url"] = ctx.config.api_url
    return _result(ctx, "openai-compatible", _structured_messages(ctx), extra)


def build_xai_adapter(ctx: AdapterContext) -> AdapterResult:
    return _result(ctx, "xai", _structured_messages(ctx))


def build_deepseek_adapter(ctx: AdapterContext) -> AdapterResult:
    # Only deepseek-chat supports tool-based file reading
    model = pick_model(
        DEEPSEEK_MODELS, ctx.params.use_thinking, force_default=ctx.has_local_attachments,
    )
    return _result(ctx, "deepseek", _plain_messages(ctx), _reasoning_effort(ctx), model)


def build_bailing_adapter(ctx: AdapterContext) -> AdapterResult:
    p = ctx.params
    thinking = p.use_thinking or p.use_deep_think
    model = pick_model(BAILING_MODELS, thinking, force_default=ctx.has_local_attachments)
    return _result(ctx, "bailing", _plain_messages(ctx), _budget_toggle(ctx, thinking), model)


def build_longcat_adapter(ctx: AdapterContext) -> AdapterResult:
    model = pick_model(
        LONGCAT_MODELS, ctx.params.use_thinking, force_default=ctx.has_local_attachments,
    )
    return _result(ctx, "longcat", _plain_messages(ctx), _budget_toggle(ctx), model)


def build_moonshot_adapter(ctx: AdapterContext) -> AdapterResult:
    model = pick_model(MOONSHOT_MODELS, ctx.params.use_thinking)
    return _result(ctx, "moonshot", _plain_messages(ctx), _budget_toggle(ctx), model)


def build_minimax_adapter(ctx: AdapterContext) -> AdapterResult:
    p = ctx.params
    extra: dict[str, Any] = {}
    if p.use_thinking:
        extra["extra_body"] = {
            "reasoning_split": True,
            "thinking_budget": resolve_thinking_budget(
                p.thinking_level, ctx.config.thinking_budget_tokens,
            ),
        }
    return _result(ctx, "minimax", _plain_messages(ctx), extra)


def build_mimo_adapter(ctx: AdapterContext) -> AdapterResult:
    toggle = _budget_toggle(ctx)
    return _result(ctx, "mimo", _plain_messages(ctx), {"thinking": toggle["thinking"]})


def build_modelscope_adapter(ctx: AdapterContext) -> AdapterResult:
    return _result(ctx, "modelscope", _plain_messages(ctx), _budget_toggle(ctx))


def build_z_adapter(ctx: AdapterContext) -> AdapterResult:
    return _result(ctx, "z", _plain_messages(ctx), _budget_toggle(ctx))


def build_z_intl_adapter(ctx: AdapterContext) -> AdapterResult:
    return _result(ctx, "z-intl", _plain_messages(ctx), _budget_toggle(ctx))
