"""Tests for thinking controls and the provider adapters."""

from __future__ import annotations

import math

import pytest

from llm_relay.adapters.anthropic import build_anthropic_adapter, build_anthropic_content
from llm_relay.adapters.base import AdapterContext, pick_model
from llm_relay.adapters.google import build_google_adapter, build_google_parts
from llm_relay.adapters.openai_style import (
    build_bailing_adapter,
    build_deepseek_adapter,
    build_longcat_adapter,
    build_mimo_adapter,
    build_minimax_adapter,
    build_moonshot_adapter,
    build_openai_adapter,
    build_openai_compatible_adapter,
    build_z_adapter,
)
from llm_relay.adapters.thinking import (
    build_thinking_budget_toggle,
    build_thinking_toggle,
    resolve_reasoning_effort,
    resolve_thinking_budget,
)
from llm_relay.config import ProviderConfig
from llm_relay.constants import ANTHROPIC_FILES_BETA
from llm_relay.messages import THINKING_SUMMARY_PROMPT
from llm_relay.types import (
    ChatParams,
    ConversationMessage,
    Dialect,
    FileReference,
    LocalAttachment,
    Role,
)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

def _make_ctx(
    provider: str = "openai",
    message: str = "Hi",
    history: tuple[ConversationMessage, ...] | None = None,
    model: str = "test-model",
    **overrides,
) -> AdapterContext:
    config_fields = {
        k: overrides.pop(k)
        for k in list(overrides)
        if k in ProviderConfig.__dataclass_fields__
    }
    if history is None:
        history = (ConversationMessage(role=Role.USER, content=message),)
    params = ChatParams(history=history, message=message, **overrides)
    return AdapterContext(
        params=params,
        config=ProviderConfig(provider=provider, **config_fields),
        model=model,
    )


ATTACHMENT = LocalAttachment(id="a1", name="notes.txt", text="hello")


# ---------------------------------------------------------------------------
# Thinking controls
# ---------------------------------------------------------------------------

class TestThinkingControls:
    def test_budget_from_level(self):
        assert resolve_thinking_budget("low") == 1024
        assert resolve_thinking_budget("medium") == 2048
        assert resolve_thinking_budget("high") == 4096
        assert resolve_thinking_budget(None) == 2048

    def test_custom_budget_wins(self):
        assert resolve_thinking_budget("low", 9000) == 9000

    def test_non_finite_budget_ignored(self):
        assert resolve_thinking_budget("high", math.inf) == 4096
        assert resolve_thinking_budget("high", math.nan) == 4096

    def test_effort_from_budget(self):
        assert resolve_reasoning_effort(None, 1024) == "low"
        assert resolve_reasoning_effort(None, 1025) == "medium"
        assert resolve_reasoning_effort(None, 4096) == "medium"
        assert resolve_reasoning_effort(None, 4097) == "high"

    def test_effort_from_level(self):
        assert resolve_reasoning_effort("high") == "high"
        assert resolve_reasoning_effort(None) == "medium"

    def test_toggles(self):
        assert build_thinking_toggle(False) == {"thinking": {"type": "disabled"}}
        assert build_thinking_budget_toggle(False, "high") == {"thinking": {"type": "disabled"}}
        assert build_thinking_budget_toggle(True, "low") == {
            "thinking": {"type": "enabled", "budget_tokens": 1024},
        }

    def test_pick_model(self):
        models = {"default": "d", "thinking": "t"}
        assert pick_model(models, False) == "d"
        assert pick_model(models, True) == "t"
        assert pick_model(models, True, force_default=True) == "d"


# ---------------------------------------------------------------------------
# OpenAI-style adapters
# ---------------------------------------------------------------------------

class TestOpenAIStyleAdapters:
    def test_openai_reasoning_effort(self):
        result = build_openai_adapter(_make_ctx(use_thinking=True, thinking_level="high"))
        assert result.dialect == Dialect.OPENAI
        assert result.endpoint == "openai"
        assert result.model == "test-model"
        assert result.extra_body == {"reasoning_effort": "high"}

    def test_openai_no_effort_without_thinking(self):
        result = build_openai_adapter(_make_ctx())
        assert result.extra_body == {}
        assert result.messages == [{"role": "user", "content": "Hi"}]

    def test_openai_skips_attachment_notice(self):
        result = build_openai_adapter(_make_ctx(local_attachments=(ATTACHMENT,)))
        assert result.messages == [{"role": "user", "content": "Hi"}]

    def test_openai_compatible_forwards_api_url(self):
        ctx = _make_ctx("openai-compatible", api_url="https://llm.example/v1")
        result = build_openai_compatible_adapter(ctx)
        assert result.extra_body["api_url"] == "https://llm.example/v1"
        assert result.extra_body["thinking"] == {"type": "disabled"}

    def test_deepseek_thinking_model(self):
        result = build_deepseek_adapter(_make_ctx("deepseek", use_thinking=True))
        assert result.model == "deepseek-reasoner"
        assert result.extra_body == {"reasoning_effort": "medium"}

    def test_deepseek_attachments_force_default(self):
        ctx = _make_ctx("deepseek", use_thinking=True, local_attachments=(ATTACHMENT,))
        result = build_deepseek_adapter(ctx)
        assert result.model == "deepseek-chat"
        assert "Attached files:" in result.messages[-1]["content"]

    def test_bailing_deep_think_selects_thinking_model(self):
        result = build_bailing_adapter(_make_ctx("bailing", use_deep_think=True))
        assert result.model == "Ring-1T"
        assert result.extra_body["thinking"]["type"] == "enabled"

    def test_longcat_attachments_force_default(self):
        ctx = _make_ctx("longcat", use_thinking=True, local_attachments=(ATTACHMENT,))
        assert build_longcat_adapter(ctx).model == "LongCat-Flash-Chat"

    def test_moonshot_keeps_thinking_model_with_attachments(self):
        ctx = _make_ctx("moonshot", use_thinking=True, local_attachments=(ATTACHMENT,))
        assert build_moonshot_adapter(ctx).model == "kimi-k2-thinking-turbo"

    def test_minimax_nested_extra_body(self):
        ctx = _make_ctx("minimax", use_thinking=True, thinking_budget_tokens=3000)
        result = build_minimax_adapter(ctx)
        assert result.extra_body == {
            "extra_body": {"reasoning_split": True, "thinking_budget": 3000},
        }

    def test_mimo_thinking_toggle(self):
        result = build_mimo_adapter(_make_ctx("mimo", use_thinking=True, thinking_level="low"))
        assert result.extra_body == {"thinking": {"type": "enabled", "budget_tokens": 1024}}

    def test_z_summary_prompt(self):
        ctx = _make_ctx("z", use_thinking=True, show_thinking_summary=True)
        result = build_z_adapter(ctx)
        assert result.messages[-1]["content"] == f"Hi\n\n{THINKING_SUMMARY_PROMPT}"

    def test_results_are_fresh(self):
        ctx = _make_ctx("z")
        first = build_z_adapter(ctx)
        first.messages.append({"role": "user", "content": "mutated"})
        assert len(build_z_adapter(ctx).messages) == 1


# ---------------------------------------------------------------------------
# Anthropic
# ---------------------------------------------------------------------------

class TestAnthropicAdapter:
    def test_content_blocks(self):
        ref = FileReference(provider="anthropic", name="a.pdf", file_id="file-1")
        blocks = build_anthropic_content("read", [ref])
        assert blocks == [
            {"type": "text", "text": "read"},
            {"type": "document", "source": {"type": "file", "file_id": "file-1"}, "title": "a.pdf"},
        ]

    def test_content_without_blocks_is_text(self):
        assert build_anthropic_content("") == ""
        ref = FileReference(provider="openai", name="a.pdf", file_id="file-1")
        assert build_anthropic_content("   ", [ref]) == "   "

    def test_basic_request(self):
        history = (
            ConversationMessage(role=Role.USER, content="Hi"),
            ConversationMessage(role=Role.MODEL, content="Hello"),
            ConversationMessage(role=Role.USER, content="Again"),
        )
        ctx = _make_ctx("anthropic", message="Again", history=history,
                        language="English", temperature=0.3)
        result = build_anthropic_adapter(ctx)
        assert result.dialect == Dialect.ANTHROPIC
        assert result.endpoint == "anthropic"
        assert result.system == "Please respond in English."
        assert [m["role"] for m in result.messages] == ["user", "assistant", "user"]
        assert result.messages[0]["content"] == [{"type": "text", "text": "Hi"}]
        assert result.extra_body == {"temperature": 0.3}

    def test_no_system_without_language(self):
        assert build_anthropic_adapter(_make_ctx("anthropic")).system is None

    def test_thinking_budget(self):
        ctx = _make_ctx("anthropic", use_thinking=True, thinking_level="high")
        result = build_anthropic_adapter(ctx)
        assert result.extra_body["thinking"] == {"type": "enabled", "budget_tokens": 4096}

    def test_advanced_params_gated(self):
        plain = build_anthropic_adapter(_make_ctx("anthropic", top_p=0.9, top_k=5))
        assert "top_p" not in plain.extra_body
        advanced = build_anthropic_adapter(
            _make_ctx("anthropic", top_p=0.9, top_k=5, show_advanced_params=True)
        )
        assert advanced.extra_body["top_p"] == 0.9
        assert advanced.extra_body["top_k"] == 5

    def test_files_beta_flag(self):
        ref = FileReference(provider="anthropic", name="a.pdf", file_id="file-1")
        history = (ConversationMessage(role=Role.USER, content="read", attachments=(ref,)),)
        result = build_anthropic_adapter(_make_ctx("anthropic", message="read", history=history))
        assert result.extra_body["anthropic_beta"] == ANTHROPIC_FILES_BETA

    def test_summary_prompt_appended_as_block(self):
        ctx = _make_ctx("anthropic", use_thinking=True, show_thinking_summary=True)
        result = build_anthropic_adapter(ctx)
        assert result.messages[-1]["content"][-1] == {
            "type": "text", "text": f"\n\n{THINKING_SUMMARY_PROMPT}",
        }


# ---------------------------------------------------------------------------
# Google
# ---------------------------------------------------------------------------

class TestGoogleAdapter:
    def test_parts_never_empty(self):
        assert build_google_parts("", "gemini") == [{"text": ""}]

    def test_file_data_part(self):
        ref = FileReference(
            provider="gemini", name="a.pdf", file_uri="gs://x", mime_type="application/pdf",
        )
        parts = build_google_parts("look", "gemini", [ref])
        assert parts[1] == {
            "fileData": {"fileUri": "gs://x", "mimeType": "application/pdf", "displayName": "a.pdf"},
        }

    def test_pending_message_not_duplicated(self):
        result = build_google_adapter(_make_ctx("gemini"))
        assert result.messages == [{"role": "user", "parts": [{"text": "Hi"}]}]

    def test_pending_message_appended(self):
        history = (
            ConversationMessage(role=Role.USER, content="Hi"),
            ConversationMessage(role=Role.MODEL, content="Hello"),
        )
        result = build_google_adapter(_make_ctx("gemini", message="Next", history=history))
        assert [c["role"] for c in result.messages] == ["user", "model", "user"]
        assert result.messages[-1]["parts"] == [{"text": "Next"}]

    def test_generation_config(self):
        ctx = _make_ctx("gemini", use_thinking=True, thinking_level="low",
                        top_p=0.8, show_advanced_params=True)
        result = build_google_adapter(ctx)
        gen = result.extra_body["generationConfig"]
        assert gen["temperature"] == 0
        assert gen["topP"] == 0.8
        assert "topK" not in gen
        assert gen["thinkingConfig"] == {"includeThoughts": True, "thinkingBudget": 1024}
        assert result.model == "gemini-3-pro-preview"

    def test_default_model_without_thinking(self):
        result = build_google_adapter(_make_ctx("gemini"))
        assert result.model == "gemini-3-flash-preview"
        assert result.dialect == Dialect.GOOGLE
        assert result.system is None

    def test_summary_prompt(self):
        ctx = _make_ctx("gemini", use_thinking=True, show_thinking_summary=True)
        parts = build_google_adapter(ctx).messages[-1]["parts"]
        assert parts[-1] == {"text": f"\n\n{THINKING_SUMMARY_PROMPT}"}

    @pytest.mark.parametrize("language,expected", [
        ("English", "Please respond in English."),
        (None, None),
    ])
    def test_system_instruction(self, language, expected):
        result = build_google_adapter(_make_ctx("gemini", language=language))
        assert result.system == expected
