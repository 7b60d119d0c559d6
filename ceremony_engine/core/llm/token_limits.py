"""Per-model maximum output tokens.

Values are the documented API maximums; requests above a model's limit are
clamped before they reach the backend.
"""

from __future__ import annotations

from ceremony_engine.utils.logging import get_logger

logger = get_logger("llm.token_limits")

DEFAULT_MAX_TOKENS = 8192

MODEL_MAX_TOKENS: dict[str, int] = {
    # Claude
    "claude-sonnet-4-5-20250929": 64000,
    "claude-sonnet-4-5": 64000,
    "claude-sonnet-4": 64000,
    "claude-opus-4-6": 128000,
    "claude-opus-4": 128000,
    "claude-haiku-4-5-20251001": 64000,
    "claude-haiku-4-5": 64000,
    "claude-haiku-4": 64000,
    # OpenAI
    "gpt-5.2-chat-latest": 16384,
    "gpt-5.2-pro": 16384,
    "gpt-4o": 16384,
    "gpt-4o-mini": 16384,
    "gpt-4-turbo": 4096,
    "gpt-4": 8192,
    "gpt-3.5-turbo": 4096,
    # Gemini
    "gemini-2.5-pro": 65535,
    "gemini-2.5-flash": 65535,
    "gemini-2.0-flash": 8192,
    "gemini-1.5-pro": 8192,
    "gemini-1.5-flash": 8192,
}


def get_max_tokens_for_model(model_id: str | None) -> int:
    """Return the output-token ceiling for *model_id*.

    Lookup order: exact id, then the first three dash-separated segments
    (``claude-opus-4-latest`` -> ``claude-opus-4``), then the default.
    """
    if not model_id:
        return DEFAULT_MAX_TOKENS
    if model_id in MODEL_MAX_TOKENS:
        return MODEL_MAX_TOKENS[model_id]

    base = "-".join(model_id.split("-")[:3])
    if base in MODEL_MAX_TOKENS:
        return MODEL_MAX_TOKENS[base]

    logger.warning("model_max_tokens_unknown", model=model_id, default=DEFAULT_MAX_TOKENS)
    return DEFAULT_MAX_TOKENS


def clamp_tokens(model_id: str, requested: int) -> int:
    limit = get_max_tokens_for_model(model_id)
    if requested > limit:
        logger.warning("max_tokens_clamped", model=model_id, requested=requested, limit=limit)
        return limit
    return requested
