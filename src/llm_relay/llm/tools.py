"""Client-side tools: definitions, eligibility and execution.

Two tools are known: ``read_file`` serves the text of a local attachment,
``get_system_time`` reports the current date and time.  A request only
carries tools when they are enabled, not disabled via ``tool_choice``, and
relevant to the turn: attachments present for ``read_file``; a time
question, ``required`` or a specific choice for ``get_system_time``.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Iterable, Sequence

from llm_relay.config import ToolConfig
from llm_relay.messages import get_message_text
from llm_relay.types import LocalAttachment

_logger = logging.getLogger(__name__)

READ_FILE_TOOL_NAME = "read_file"
SYSTEM_TIME_TOOL_NAME = "get_system_time"


@dataclass(frozen=True)
class ToolDefinition:
    name: str
    description: str
    parameters: dict[str, Any] = field(default_factory=dict)

    def to_openai(self) -> dict[str, Any]:
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }

    def to_gemini(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "parameters": self.parameters,
        }

    def to_anthropic(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "input_schema": self.parameters,
        }


TOOL_REGISTRY: dict[str, ToolDefinition] = {
    READ_FILE_TOOL_NAME: ToolDefinition(
        name=READ_FILE_TOOL_NAME,
        description="Read a user-provided local file and return extracted text for analysis.",
        parameters={
            "type": "object",
            "properties": {
                "file_name": {
                    "type": "string",
                    "description": "Exact filename from the attachment list.",
                },
                "file_id": {
                    "type": "string",
                    "description": "Attachment id from the attachment list.",
                },
            },
        },
    ),
    SYSTEM_TIME_TOOL_NAME: ToolDefinition(
        name=SYSTEM_TIME_TOOL_NAME,
        description="Get the current system date and time from the server.",
        parameters={
            "type": "object",
            "properties": {
                "format": {
                    "type": "string",
                    "description": 'Optional format hint: "iso" or "local".',
                },
            },
        },
    ),
}


def get_tool_definitions(names: Iterable[str]) -> list[ToolDefinition]:
    """Known definitions for *names*, in order; unknown names are skipped."""
    return [TOOL_REGISTRY[n] for n in names if n in TOOL_REGISTRY]


def normalize_tool_config(config: ToolConfig | None) -> ToolConfig:
    return config or ToolConfig()


# ---------------------------------------------------------------------------
# Time-question heuristic
# ---------------------------------------------------------------------------

_CJK = re.compile(r"[\u4e00-\u9fa5]")

_EXCLUDES = ("时间复杂度", "时间管理", "时间轴", "timeline", "complexity", "time complexity")

_CN_CORE = (
    "时间", "日期", "星期", "几号", "几点", "多少点", "几点钟", "现在几点",
    "当前几点", "今天几号", "今天是几号", "今天几月几号", "现在几号",
    "现在几月几号", "几月几号", "今天日期", "现在日期", "星期几", "礼拜几",
    "周几", "周几号", "今天周几", "现在周几", "几时", "多晚了",
)
_CN_QUERY = ("现在", "当前", "今天", "此刻", "几", "多少", "吗", "呢", "？", "?")

_EN_CORE = (
    "time", "date", "day", "weekday", "what time", "current time",
    "time is it", "today", "what date", "what day", "what's the date",
    "what's the time", "what time now", "what day is it", "today's date",
    "current date",
)
_EN_QUERY = ("what", "now", "current", "today", "date", "day", "?")


def is_time_query(text: str | None) -> bool:
    """Heuristic: does *text* ask for the current date or time?"""
    if not text:
        return False
    normalized = text.lower()
    if any(term in normalized for term in _EXCLUDES):
        return False
    if _CJK.search(text):
        return (
            any(term in text for term in _CN_CORE)
            and any(term in text for term in _CN_QUERY)
        )
    return (
        any(term in normalized for term in _EN_CORE)
        and any(term in normalized for term in _EN_QUERY)
    )


def build_system_time_result(fmt: str | None = None, now: datetime | None = None) -> str:
    """JSON description of the current local time."""
    current = (now or datetime.now()).astimezone()
    payload: dict[str, Any] = {
        "local": current.strftime("%Y-%m-%d %H:%M:%S"),
        "weekday": current.strftime("%A"),
        "date": current.strftime("%Y-%m-%d"),
        "timeZone": current.tzname() or "local",
        "timestamp": int(current.timestamp() * 1000),
    }
    if fmt == "iso":
        payload["iso"] = current.isoformat()
    return json.dumps(payload, ensure_ascii=False)


def system_time_tool_allowed(tool_config: ToolConfig | None, message: str | None) -> bool:
    """Whether ``get_system_time`` may be offered for this turn.

    The tool must be enabled and not switched off; it is then offered when
    ``tool_choice`` requires tools, names it specifically, or the message
    asks for the date or time.
    """
    config = normalize_tool_config(tool_config)
    if SYSTEM_TIME_TOOL_NAME not in config.enabled_tool_names:
        return False
    if config.tool_choice == "none":
        return False
    return (
        config.tool_choice == "required"
        or _names_system_time(config)
        or is_time_query(message)
    )


def _names_system_time(config: ToolConfig) -> bool:
    return config.tool_choice == "specific" and config.tool_choice_name == SYSTEM_TIME_TOOL_NAME


# ---------------------------------------------------------------------------
# OpenAI-style tool payloads
# ---------------------------------------------------------------------------

def resolve_tool_names(
    tool_config: ToolConfig | None,
    local_attachments: Sequence[LocalAttachment] = (),
    last_user_text: str = "",
) -> list[str]:
    """Enabled tools that are relevant to this turn.

    ``read_file`` needs attachments to read from; ``get_system_time``
    follows :func:`system_time_tool_allowed`.
    """
    config = normalize_tool_config(tool_config)
    names = list(config.enabled_tool_names)
    if not system_time_tool_allowed(config, last_user_text):
        names = [n for n in names if n != SYSTEM_TIME_TOOL_NAME]
    if not local_attachments:
        names = [n for n in names if n != READ_FILE_TOOL_NAME]
    return names


def build_openai_tool_payload(
    tool_config: ToolConfig | None,
    force_tool_name: str | None = None,
    tool_names: Sequence[str] | None = None,
) -> dict[str, Any]:
    """``tools`` / ``tool_choice`` request fields.

    Returns ``{}`` when there is nothing to offer and
    ``{"tool_choice": "none"}`` when tools are switched off.
    """
    config = normalize_tool_config(tool_config)
    enabled = list(tool_names) if tool_names is not None else list(config.enabled_tool_names)

    if force_tool_name:
        names = [force_tool_name] if force_tool_name in enabled else []
    else:
        names = enabled

    definitions = get_tool_definitions(names)
    if not definitions:
        if config.tool_choice == "none":
            return {"tool_choice": "none"}
        return {}

    tools = [d.to_openai() for d in definitions]

    if force_tool_name:
        return {
            "tools": tools,
            "tool_choice": {"type": "function", "function": {"name": force_tool_name}},
        }
    if config.tool_choice == "none":
        return {"tool_choice": "none"}
    if config.tool_choice == "required":
        return {"tools": tools, "tool_choice": "required"}
    if config.tool_choice == "specific" and config.tool_choice_name:
        if any(d.name == config.tool_choice_name for d in definitions):
            return {
                "tools": tools,
                "tool_choice": {
                    "type": "function",
                    "function": {"name": config.tool_choice_name},
                },
            }
    return {"tools": tools, "tool_choice": "auto"}


def should_use_tools(tool_payload: dict[str, Any]) -> bool:
    """True when *tool_payload* actually offers tools to the model."""
    if tool_payload.get("tool_choice") == "none":
        return False
    return bool(tool_payload.get("tools"))


def last_user_message_text(messages: Sequence[dict[str, Any]] | None) -> str:
    """Text of the newest user message that has any."""
    for message in reversed(messages or ()):
        if message.get("role") != "user":
            continue
        text = get_message_text(message.get("content"))
        if text:
            return text
    return ""


# ---------------------------------------------------------------------------
# Gemini tool payloads
# ---------------------------------------------------------------------------

def build_gemini_tool_payload(tool_config: ToolConfig | None) -> dict[str, Any]:
    """``tools`` / ``toolConfig`` fields offering ``get_system_time``."""
    config = normalize_tool_config(tool_config)
    if config.tool_choice == "none":
        return {}
    tool = TOOL_REGISTRY[SYSTEM_TIME_TOOL_NAME]
    specific = _names_system_time(config)
    calling: dict[str, Any] = {
        "mode": "ANY" if config.tool_choice == "required" or specific else "AUTO",
    }
    if specific:
        calling["allowedFunctionNames"] = [tool.name]
    return {
        "tools": [{"functionDeclarations": [tool.to_gemini()]}],
        "toolConfig": {"functionCallingConfig": calling},
    }


def extract_gemini_function_call(data: Any) -> dict[str, Any] | None:
    try:
        parts = data["candidates"][0]["content"]["parts"]
    except (KeyError, IndexError, TypeError):
        return None
    for part in parts or ():
        if isinstance(part, dict) and part.get("functionCall"):
            return part["functionCall"]
    return None


# ---------------------------------------------------------------------------
# Anthropic tool payloads
# ---------------------------------------------------------------------------

def build_anthropic_tool_payload(tool_config: ToolConfig | None) -> dict[str, Any]:
    """``tools`` / ``tool_choice`` fields offering ``get_system_time``."""
    config = normalize_tool_config(tool_config)
    if config.tool_choice == "none":
        return {}
    tool = TOOL_REGISTRY[SYSTEM_TIME_TOOL_NAME]
    if config.tool_choice == "required":
        choice: dict[str, Any] = {"type": "any"}
    elif _names_system_time(config):
        choice = {"type": "tool", "name": tool.name}
    else:
        choice = {"type": "auto"}
    return {"tools": [tool.to_anthropic()], "tool_choice": choice}


def extract_anthropic_tool_use(data: Any, name: str = SYSTEM_TIME_TOOL_NAME) -> dict[str, Any] | None:
    """First ``tool_use`` block for *name* in a Messages API body."""
    content = data.get("content") if isinstance(data, dict) else None
    if not isinstance(content, list):
        return None
    for block in content:
        if (
            isinstance(block, dict)
            and block.get("type") == "tool_use"
            and block.get("name") == name
            and block.get("id")
        ):
            return block
    return None


# ---------------------------------------------------------------------------
# Execution
# ---------------------------------------------------------------------------

def find_attachment(
    attachments: Sequence[LocalAttachment],
    file_id: str | None = None,
    file_name: str | None = None,
) -> LocalAttachment | None:
    """Look up by id first, then by case-insensitive file name."""
    if file_id:
        for item in attachments:
            if item.id == file_id:
                return item
    if file_name:
        target = file_name.lower()
        for item in attachments:
            if item.name.lower() == target:
                return item
    return None


def parse_tool_arguments(raw: Any) -> dict[str, Any]:
    """Decode a tool call's JSON ``arguments`` string.

    Raises ``ValueError`` on malformed JSON so the caller can report it
    back to the model as the tool result.
    """
    if not raw:
        return {}
    if isinstance(raw, dict):
        return raw
    args = json.loads(raw)
    return args if isinstance(args, dict) else {}


def execute_tool_call(
    name: str | None,
    args: dict[str, Any],
    attachments: Sequence[LocalAttachment] = (),
) -> str:
    """Run one tool and return its textual result."""
    if name == READ_FILE_TOOL_NAME:
        attachment = find_attachment(attachments, args.get("file_id"), args.get("file_name"))
        if attachment is None:
            missing = args.get("file_name") or args.get("file_id") or "unknown"
            return f"File not found: {missing}"
        return attachment.text
    if name == SYSTEM_TIME_TOOL_NAME:
        return build_system_time_result(args.get("format"))
    _logger.warning("Model requested unsupported tool %r", name)
    return f"Unsupported tool: {name or 'unknown'}"
