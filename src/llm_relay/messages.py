"""Provider-neutral message building.

Turns the caller's conversation history into chat message lists and
injects auxiliary instructions (language directive, thinking-summary
request, attachment notice) at the right position.  Every function
returns new lists and dicts; inputs are never mutated.
"""

from __future__ import annotations

from typing import Any, Iterable, Sequence

from llm_relay.types import ConversationMessage, FileReference, LocalAttachment, Role

THINKING_SUMMARY_PROMPT = (
    "After answering, add a short 1-2 sentence summary in "
    "<thinking_summary>...</thinking_summary>."
)

ATTACHMENT_PROMPT_FOOTER = "Please call read_file for any file you need."


# ---------------------------------------------------------------------------
# Instructions
# ---------------------------------------------------------------------------

def build_language_instruction(language: str | None) -> str:
    if not language:
        return ""
    if language == "简体中文":
        return "请使用简体中文回复用户。"
    if language == "English":
        return "Please respond in English."
    return f"Please respond in {language}."


def build_system_messages(
    use_thinking: bool,
    use_search: bool,
    language: str | None = None,
) -> list[dict[str, Any]]:
    """System-role instruction messages placed ahead of the history."""
    messages: list[dict[str, Any]] = []
    instruction = build_language_instruction(language)
    if instruction:
        messages.append({"role": "system", "content": instruction})
    return messages


def build_instruction_text(
    use_thinking: bool,
    use_search: bool,
    language: str | None = None,
) -> str:
    """System messages flattened into a single instruction string."""
    return " ".join(
        m["content"] for m in build_system_messages(use_thinking, use_search, language)
    )


def get_thinking_summary_prompt(
    use_thinking: bool,
    show_thinking_summary: bool | None = False,
) -> str:
    if not use_thinking or not show_thinking_summary:
        return ""
    return THINKING_SUMMARY_PROMPT


# ---------------------------------------------------------------------------
# Content helpers
# ---------------------------------------------------------------------------

def get_message_text(content: Any) -> str:
    """Concatenated text of string or typed-part content."""
    if isinstance(content, list):
        return "".join(
            part.get("text", "") or ""
            for part in content
            if isinstance(part, dict) and part.get("type") == "text"
        )
    return str(content or "")


def append_prompt_to_text(content: str, prompt: str) -> str:
    if not prompt:
        return content
    if not content.strip():
        return prompt
    return f"{content}\n\n{prompt}"


def append_prompt_to_content(content: Any, prompt: str) -> Any:
    """Append *prompt* using the array-or-string content rule."""
    if isinstance(content, list):
        return [*content, {"type": "text", "text": f"\n\n{prompt}"}]
    return append_prompt_to_text(str(content or ""), prompt)


def last_user_index(messages: Sequence[dict[str, Any]]) -> int:
    for i in range(len(messages) - 1, -1, -1):
        if messages[i].get("role") == "user":
            return i
    return -1


def find_target_user_index(
    messages: Sequence[dict[str, Any]],
    message: str | None,
) -> int:
    """Index of the user message a per-turn instruction belongs to.

    Newest user message whose trimmed text equals the trimmed pending
    message; otherwise the last user message; ``-1`` when there is none.
    """
    if message:
        target = message.strip()
        for i in range(len(messages) - 1, -1, -1):
            if messages[i].get("role") != "user":
                continue
            if get_message_text(messages[i].get("content")).strip() == target:
                return i
    return last_user_index(messages)


def inject_prompt(
    messages: Sequence[dict[str, Any]],
    prompt: str,
    message: str | None = None,
) -> list[dict[str, Any]]:
    """Attach *prompt* to the targeted user message.

    A new trailing user message carrying only the prompt is created when
    there is no user message at all, so an instruction is never dropped.
    """
    result = list(messages)
    if not prompt:
        return result
    idx = find_target_user_index(result, message)
    if idx == -1:
        result.append({"role": "user", "content": prompt})
        return result
    target = result[idx]
    result[idx] = {**target, "content": append_prompt_to_content(target.get("content"), prompt)}
    return result


# ---------------------------------------------------------------------------
# History mapping
# ---------------------------------------------------------------------------

def _chat_role(item: ConversationMessage) -> str:
    return "assistant" if item.role == Role.MODEL else "user"


def map_history_to_chat_messages(
    history: Iterable[ConversationMessage],
) -> list[dict[str, Any]]:
    return [
        {"role": _chat_role(item), "content": item.content or ""}
        for item in history
    ]


def build_openai_parts(
    content: str,
    attachments: Iterable[FileReference] = (),
    provider: str = "openai",
) -> list[dict[str, Any]]:
    parts: list[dict[str, Any]] = []
    if content.strip():
        parts.append({"type": "text", "text": content})
    for ref in attachments or ():
        if ref.provider == provider and ref.file_id:
            parts.append({"type": "file", "file": {"file_id": ref.file_id}})
    return parts


def map_history_to_openai_messages(
    history: Iterable[ConversationMessage],
    provider: str = "openai",
) -> list[dict[str, Any]]:
    """Map history to OpenAI messages with typed content parts.

    Content stays a plain string when the message carries no file
    references for *provider*.  An empty part list never leaks out: it
    falls back to the text or ``""``.
    """
    result: list[dict[str, Any]] = []
    for item in history:
        text = item.content or ""
        attachments = item.attachments if item.is_user else ()
        parts = build_openai_parts(text, attachments, provider)
        if parts and any(p["type"] != "text" for p in parts):
            content: Any = parts
        else:
            content = text
        result.append({"role": _chat_role(item), "content": content})
    return result


# ---------------------------------------------------------------------------
# Final message lists
# ---------------------------------------------------------------------------

def build_final_messages(
    history: Iterable[ConversationMessage],
    message: str,
    use_thinking: bool,
    use_search: bool,
    language: str | None = None,
    show_thinking_summary: bool | None = False,
) -> list[dict[str, Any]]:
    """System messages + plain chat history + thinking-summary request."""
    messages = [
        *build_system_messages(use_thinking, use_search, language),
        *map_history_to_chat_messages(history),
    ]
    prompt = get_thinking_summary_prompt(use_thinking, show_thinking_summary)
    return inject_prompt(messages, prompt, message)


def build_final_openai_messages(
    history: Iterable[ConversationMessage],
    message: str | None,
    use_thinking: bool,
    use_search: bool,
    language: str | None = None,
    show_thinking_summary: bool | None = False,
    provider: str = "openai",
) -> list[dict[str, Any]]:
    """Like :func:`build_final_messages` but with structured content parts."""
    messages = [
        *build_system_messages(use_thinking, use_search, language),
        *map_history_to_openai_messages(history, provider),
    ]
    prompt = get_thinking_summary_prompt(use_thinking, show_thinking_summary)
    return inject_prompt(messages, prompt, message)


# ---------------------------------------------------------------------------
# Attachment notice
# ---------------------------------------------------------------------------

def build_attachment_prompt(attachments: Sequence[LocalAttachment]) -> str:
    file_list = "\n".join(f"- {a.name} (id: {a.id})" for a in attachments)
    return f"Attached files:\n{file_list}\n\n{ATTACHMENT_PROMPT_FOOTER}"


def inject_attachment_prompt(
    messages: Sequence[dict[str, Any]],
    attachments: Sequence[LocalAttachment] | None,
) -> list[dict[str, Any]]:
    """Tell the model which local files it may read.

    Idempotent: a message that already carries the notice is left alone.
    """
    result = list(messages)
    if not attachments:
        return result
    prompt = build_attachment_prompt(attachments)
    idx = last_user_index(result)
    if idx == -1:
        result.append({"role": "user", "content": prompt})
        return result
    target = result[idx]
    if prompt in get_message_text(target.get("content")):
        return result
    result[idx] = {**target, "content": append_prompt_to_content(target.get("content"), prompt)}
    return result
