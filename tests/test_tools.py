"""Tests for client-side tools."""

from __future__ import annotations

import json
from datetime import datetime, timezone

import pytest

from llm_relay.config import ToolConfig
from llm_relay.llm.tools import (
    READ_FILE_TOOL_NAME,
    SYSTEM_TIME_TOOL_NAME,
    build_anthropic_tool_payload,
    build_gemini_tool_payload,
    build_openai_tool_payload,
    build_system_time_result,
    execute_tool_call,
    extract_anthropic_tool_use,
    extract_gemini_function_call,
    find_attachment,
    get_tool_definitions,
    is_time_query,
    last_user_message_text,
    parse_tool_arguments,
    resolve_tool_names,
    should_use_tools,
    system_time_tool_allowed,
)
from llm_relay.types import LocalAttachment

ATTACHMENTS = (
    LocalAttachment(id="a1", name="Notes.txt", text="note body"),
    LocalAttachment(id="a2", name="data.csv", text="1,2,3"),
)


# ---------------------------------------------------------------------------
# Time-question heuristic
# ---------------------------------------------------------------------------

class TestIsTimeQuery:
    @pytest.mark.parametrize("text", [
        "What time is it?",
        "what's the date today",
        "现在几点了？",
        "今天星期几",
    ])
    def test_positive(self, text):
        assert is_time_query(text)

    @pytest.mark.parametrize("text", [
        "",
        None,
        "Explain the time complexity of quicksort",
        "时间复杂度是多少？",
        "Write a poem about the sea",
        "时间",
    ])
    def test_negative(self, text):
        assert not is_time_query(text)


# ---------------------------------------------------------------------------
# Definitions and payloads
# ---------------------------------------------------------------------------

class TestToolPayloads:
    def test_definitions_skip_unknown(self):
        defs = get_tool_definitions(["read_file", "launch_rockets"])
        assert [d.name for d in defs] == ["read_file"]

    def test_resolve_names_needs_relevance(self):
        assert resolve_tool_names(None) == []
        assert resolve_tool_names(None, ATTACHMENTS) == [READ_FILE_TOOL_NAME]
        assert resolve_tool_names(None, (), "what time is it?") == [SYSTEM_TIME_TOOL_NAME]

    def test_resolve_names_keeps_named_time_tool(self):
        config = ToolConfig(tool_choice="specific", tool_choice_name=SYSTEM_TIME_TOOL_NAME)
        names = resolve_tool_names(config, (), "Summarise this paragraph")
        assert names == [SYSTEM_TIME_TOOL_NAME]
        payload = build_openai_tool_payload(config, tool_names=names)
        assert payload["tool_choice"] == {
            "type": "function", "function": {"name": SYSTEM_TIME_TOOL_NAME},
        }

    def test_resolve_names_keeps_required_time_tool(self):
        config = ToolConfig(tool_choice="required")
        assert resolve_tool_names(config, (), "hello") == [SYSTEM_TIME_TOOL_NAME]
        assert resolve_tool_names(config, ATTACHMENTS, "hello") == [
            READ_FILE_TOOL_NAME, SYSTEM_TIME_TOOL_NAME,
        ]

    def test_resolve_names_specific_other_tool(self):
        config = ToolConfig(tool_choice="specific", tool_choice_name=READ_FILE_TOOL_NAME)
        assert resolve_tool_names(config, (), "hello") == []

    def test_auto_payload(self):
        payload = build_openai_tool_payload(None, tool_names=[READ_FILE_TOOL_NAME])
        assert payload["tool_choice"] == "auto"
        assert payload["tools"][0]["function"]["name"] == READ_FILE_TOOL_NAME
        assert should_use_tools(payload)

    def test_none_choice(self):
        config = ToolConfig(tool_choice="none")
        assert build_openai_tool_payload(config) == {"tool_choice": "none"}
        assert build_openai_tool_payload(config, tool_names=[]) == {"tool_choice": "none"}
        assert not should_use_tools({"tool_choice": "none"})

    def test_nothing_to_offer(self):
        assert build_openai_tool_payload(None, tool_names=[]) == {}
        assert not should_use_tools({})

    def test_required_choice(self):
        payload = build_openai_tool_payload(ToolConfig(tool_choice="required"))
        assert payload["tool_choice"] == "required"
        assert len(payload["tools"]) == 2

    def test_specific_choice(self):
        config = ToolConfig(tool_choice="specific", tool_choice_name=SYSTEM_TIME_TOOL_NAME)
        payload = build_openai_tool_payload(config)
        assert payload["tool_choice"] == {
            "type": "function", "function": {"name": SYSTEM_TIME_TOOL_NAME},
        }

    def test_specific_choice_not_offered_falls_back_to_auto(self):
        config = ToolConfig(tool_choice="specific", tool_choice_name=SYSTEM_TIME_TOOL_NAME)
        payload = build_openai_tool_payload(config, tool_names=[READ_FILE_TOOL_NAME])
        assert payload["tool_choice"] == "auto"

    def test_forced_tool(self):
        payload = build_openai_tool_payload(None, force_tool_name=READ_FILE_TOOL_NAME)
        assert [t["function"]["name"] for t in payload["tools"]] == [READ_FILE_TOOL_NAME]
        assert payload["tool_choice"]["function"]["name"] == READ_FILE_TOOL_NAME

    def test_last_user_message_text(self):
        messages = [
            {"role": "user", "content": "first"},
            {"role": "assistant", "content": "reply"},
            {"role": "user", "content": [{"type": "text", "text": "second"}]},
        ]
        assert last_user_message_text(messages) == "second"
        assert last_user_message_text(None) == ""


class TestGeminiTools:
    def test_allowed_for_time_question(self):
        assert system_time_tool_allowed(None, "what time is it?")
        assert not system_time_tool_allowed(None, "hello there")

    def test_allowed_when_required(self):
        assert system_time_tool_allowed(ToolConfig(tool_choice="required"), "hello")

    def test_disallowed_when_disabled(self):
        config = ToolConfig(enabled_tool_names=(READ_FILE_TOOL_NAME,))
        assert not system_time_tool_allowed(config, "what time is it?")
        assert not system_time_tool_allowed(ToolConfig(tool_choice="none"), "what time is it?")

    def test_payload_modes(self):
        auto = build_gemini_tool_payload(None)
        assert auto["toolConfig"]["functionCallingConfig"] == {"mode": "AUTO"}
        assert auto["tools"][0]["functionDeclarations"][0]["name"] == SYSTEM_TIME_TOOL_NAME

        config = ToolConfig(tool_choice="specific", tool_choice_name=SYSTEM_TIME_TOOL_NAME)
        specific = build_gemini_tool_payload(config)
        assert specific["toolConfig"]["functionCallingConfig"] == {
            "mode": "ANY", "allowedFunctionNames": [SYSTEM_TIME_TOOL_NAME],
        }

    def test_extract_function_call(self):
        data = {"candidates": [{"content": {"parts": [
            {"text": "let me check"},
            {"functionCall": {"name": SYSTEM_TIME_TOOL_NAME, "args": {}}},
        ]}}]}
        assert extract_gemini_function_call(data) == {"name": SYSTEM_TIME_TOOL_NAME, "args": {}}
        assert extract_gemini_function_call({"candidates": []}) is None
        assert extract_gemini_function_call(None) is None


class TestAnthropicTools:
    def test_payload_choices(self):
        auto = build_anthropic_tool_payload(None)
        assert auto["tool_choice"] == {"type": "auto"}
        assert auto["tools"][0]["name"] == SYSTEM_TIME_TOOL_NAME
        assert "input_schema" in auto["tools"][0]

        assert build_anthropic_tool_payload(ToolConfig(tool_choice="required"))["tool_choice"] == {
            "type": "any",
        }
        config = ToolConfig(tool_choice="specific", tool_choice_name=SYSTEM_TIME_TOOL_NAME)
        assert build_anthropic_tool_payload(config)["tool_choice"] == {
            "type": "tool", "name": SYSTEM_TIME_TOOL_NAME,
        }
        assert build_anthropic_tool_payload(ToolConfig(tool_choice="none")) == {}

    def test_extract_tool_use(self):
        block = {"type": "tool_use", "id": "tu_1", "name": SYSTEM_TIME_TOOL_NAME, "input": {}}
        data = {"content": [{"type": "text", "text": "checking"}, block]}
        assert extract_anthropic_tool_use(data) == block

    def test_extract_tool_use_missing(self):
        assert extract_anthropic_tool_use({"content": [{"type": "text", "text": "hi"}]}) is None
        assert extract_anthropic_tool_use({"content": [
            {"type": "tool_use", "name": SYSTEM_TIME_TOOL_NAME, "input": {}},
        ]}) is None
        assert extract_anthropic_tool_use(None) is None


# ---------------------------------------------------------------------------
# Execution
# ---------------------------------------------------------------------------

class TestExecution:
    def test_find_by_id_then_name(self):
        assert find_attachment(ATTACHMENTS, file_id="a2").name == "data.csv"
        assert find_attachment(ATTACHMENTS, file_name="notes.TXT").id == "a1"
        assert find_attachment(ATTACHMENTS, file_id="zz", file_name="data.csv").id == "a2"
        assert find_attachment(ATTACHMENTS) is None

    def test_read_file(self):
        result = execute_tool_call(READ_FILE_TOOL_NAME, {"file_id": "a1"}, ATTACHMENTS)
        assert result == "note body"

    def test_read_missing_file(self):
        result = execute_tool_call(READ_FILE_TOOL_NAME, {"file_name": "x.md"}, ATTACHMENTS)
        assert result == "File not found: x.md"

    def test_unsupported_tool(self):
        assert execute_tool_call("shell", {}) == "Unsupported tool: shell"

    def test_system_time(self):
        data = json.loads(execute_tool_call(SYSTEM_TIME_TOOL_NAME, {"format": "iso"}))
        assert {"local", "weekday", "date", "timeZone", "timestamp", "iso"} <= set(data)

    def test_system_time_fixed_clock(self):
        now = datetime(2024, 3, 1, 12, 30, 0, tzinfo=timezone.utc)
        data = json.loads(build_system_time_result(now=now))
        assert data["timestamp"] == int(now.timestamp() * 1000)
        assert "iso" not in data

    def test_parse_arguments(self):
        assert parse_tool_arguments('{"file_id": "a1"}') == {"file_id": "a1"}
        assert parse_tool_arguments("") == {}
        assert parse_tool_arguments({"x": 1}) == {"x": 1}
        assert parse_tool_arguments("[1, 2]") == {}
        with pytest.raises(ValueError):
            parse_tool_arguments("{not json")
