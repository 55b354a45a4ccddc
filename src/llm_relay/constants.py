"""Provider constants: model pairs, default models and thinking budgets."""

from __future__ import annotations

THINKING_BUDGETS: dict[str, int] = {
    "low": 1024,
    "medium": 2048,
    "high": 4096,
}

# (default model, thinking model) for providers that swap on thinking
BAILING_MODELS = {"default": "Ling-1T", "thinking": "Ring-1T"}
LONGCAT_MODELS = {
    "default": "LongCat-Flash-Chat",
    "thinking": "LongCat-Flash-Thinking",
}
MOONSHOT_MODELS = {
    "default": "kimi-k2-turbo-preview",
    "thinking": "kimi-k2-thinking-turbo",
}
GEMINI_MODELS = {
    "default": "gemini-3-flash-preview",
    "thinking": "gemini-3-pro-preview",
}
DEEPSEEK_MODELS = {"default": "deepseek-chat", "thinking": "deepseek-reasoner"}

DEFAULT_MODELS: dict[str, str] = {
    "openai": "gpt-5.2",
    "openai-compatible": "gpt-5.2",
    "xai": "grok-4-1-fast",
    "deepseek": DEEPSEEK_MODELS["default"],
    "bailing": BAILING_MODELS["default"],
    "longcat": LONGCAT_MODELS["default"],
    "moonshot": MOONSHOT_MODELS["default"],
    "minimax": "MiniMax-M2.1",
    "mimo": "mimo-v2-flash",
    "modelscope": "deepseek-ai/DeepSeek-V3",
    "z": "glm-4.7",
    "z-intl": "glm-4.7",
    "gemini": GEMINI_MODELS["default"],
    "anthropic": "claude-opus-4-5",
}

ANTHROPIC_FILES_BETA = "files-api-2025-04-14"
ANTHROPIC_DEFAULT_MAX_TOKENS = 8192

DEFAULT_PROXY_URL = "http://localhost:8787/api"
DEFAULT_GEMINI_URL = "https://generativelanguage.googleapis.com/v1beta"
