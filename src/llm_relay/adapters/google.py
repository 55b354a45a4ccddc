"""Google Gemini adapter (``contents`` / ``parts`` dialect)."""

from __future__ import annotations

from typing import Any, Iterable

from llm_relay.adapters.base import AdapterContext, pick_model
from llm_relay.adapters.thinking import resolve_thinking_budget
from llm_relay.constants import GEMINI_MODELS
from llm_relay.messages import build_instruction_text, get_thinking_summary_prompt
from llm_relay.types import AdapterResult, Dialect, FileReference, Role


def build_google_parts(
    text: str,
    provider: str,
    attachments: Iterable[FileReference] = (),
) -> list[dict[str, Any]]:
    """``text`` and ``fileData`` parts; never an empty list."""
    parts: list[dict[str, Any]] = []
    if text.strip():
        parts.append({"text": text})
    for ref in attachments:
        if ref.provider != provider or not ref.file_uri:
            continue
        parts.append({
            "fileData": {
                "fileUri": ref.file_uri,
                "mimeType": ref.mime_type,
                "displayName": ref.name,
            }
        })
    return parts or [{"text": ""}]


def _append_summary_prompt(contents: list[dict[str, Any]], prompt: str) -> None:
    for turn in reversed(contents):
        if turn["role"] != "user":
            continue
        turn["parts"] = [*turn["parts"], {"text": f"\n\n{prompt}"}]
        return
    contents.append({"role": "user", "parts": [{"text": prompt}]})


def build_google_adapter(ctx: AdapterContext) -> AdapterResult:
    p = ctx.params
    config = ctx.config
    provider = config.provider

    contents: list[dict[str, Any]] = [
        {
            "role": "model" if item.role == Role.MODEL else "user",
            "parts": build_google_parts(
                item.content or "",
                provider,
                item.attachments if item.is_user else (),
            ),
        }
        for item in p.history
    ]

    # Don't repeat the pending message if the caller already put it in history
    last = p.history[-1] if p.history else None
    if last is None or not last.is_user or last.content != p.message:
        contents.append({"role": "user", "parts": build_google_parts(p.message, provider)})

    prompt = get_thinking_summary_prompt(p.use_thinking, config.show_thinking_summary)
    if prompt:
        _append_summary_prompt(contents, prompt)

    generation_config: dict[str, Any] = {
        "temperature": config.temperature if config.temperature is not None else 0,
    }
    if config.show_advanced_params and config.top_p is not None:
        generation_config["topP"] = config.top_p
    if config.show_advanced_params and config.top_k is not None:
        generation_config["topK"] = config.top_k
    if p.use_thinking:
        generation_config["thinkingConfig"] = {
            "includeThoughts": True,
            "thinkingBudget": resolve_thinking_budget(
                p.thinking_level, config.thinking_budget_tokens,
            ),
        }

    system = build_instruction_text(p.use_thinking, p.use_search, p.language)

    return AdapterResult(
        dialect=Dialect.GOOGLE,
        endpoint="gemini",
        model=pick_model(GEMINI_MODELS, p.use_thinking),
        messages=contents,
        extra_body={"generationConfig": generation_config},
        system=system or None,
    )
