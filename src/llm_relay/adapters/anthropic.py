"""Anthropic Messages API adapter."""

from __future__ import annotations

from typing import Any, Iterable

from llm_relay.adapters.base import AdapterContext
from llm_relay.adapters.thinking import resolve_thinking_budget
from llm_relay.constants import ANTHROPIC_FILES_BETA
from llm_relay.messages import (
    build_system_messages,
    get_thinking_summary_prompt,
    inject_prompt,
)
from llm_relay.types import AdapterResult, Dialect, FileReference, Role

PROVIDER = "anthropic"


def build_anthropic_content(
    text: str,
    attachments: Iterable[FileReference] = (),
) -> list[dict[str, Any]] | str:
    """Typed ``text`` / ``document`` blocks, or the bare text when empty."""
    blocks: list[dict[str, Any]] = []
    if text.strip():
        blocks.append({"type": "text", "text": text})
    for ref in attachments:
        if ref.provider != PROVIDER or not ref.file_id:
            continue
        blocks.append({
            "type": "document",
            "source": {"type": "file", "file_id": ref.file_id},
            "title": ref.name,
        })
    return blocks or text


def build_anthropic_adapter(ctx: AdapterContext) -> AdapterResult:
    p = ctx.params
    config = ctx.config

    system_messages = build_system_messages(p.use_thinking, p.use_search, p.language)
    system = "\n".join(m["content"] for m in system_messages) or None

    messages: list[dict[str, Any]] = []
    for item in p.history:
        if item.role == Role.MODEL:
            messages.append({"role": "assistant", "content": item.content})
        else:
            messages.append({
                "role": "user",
                "content": build_anthropic_content(item.content or "", item.attachments),
            })

    prompt = get_thinking_summary_prompt(p.use_thinking, config.show_thinking_summary)
    messages = inject_prompt(messages, prompt, p.message)

    has_files = any(
        ref.provider == PROVIDER
        for item in p.history if item.is_user
        for ref in item.attachments
    )

    extra: dict[str, Any] = {"temperature": config.temperature}
    if config.show_advanced_params:
        extra["top_p"] = config.top_p
        extra["top_k"] = config.top_k
    if has_files:
        extra["anthropic_beta"] = ANTHROPIC_FILES_BETA
    if p.use_thinking:
        extra["thinking"] = {
            "type": "enabled",
            "budget_tokens": resolve_thinking_budget(
                p.thinking_level, config.thinking_budget_tokens,
            ),
        }

    return AdapterResult(
        dialect=Dialect.ANTHROPIC,
        endpoint="anthropic",
        model=ctx.model,
        messages=messages,
        extra_body=extra,
        system=system,
    )
