"""Approximate per-model pricing used for cost estimates in usage summaries.

Prices are USD per one million tokens.
"""

from __future__ import annotations

from ceremony_engine.core.llm.models import ProviderName, TokenUsage

MODEL_PRICING: dict[str, dict[str, float]] = {
    "claude-opus-4-6": {"input": 15.0, "output": 75.0},
    "claude-sonnet-4-5-20250929": {"input": 3.0, "output": 15.0},
    "claude-3-5-haiku-20241022": {"input": 1.0, "output": 5.0},
    "gemini-2.5-flash": {"input": 0.0, "output": 0.0},
    "gemini-2.0-flash-exp": {"input": 0.0, "output": 0.0},
    "gemini-1.5-pro": {"input": 1.25, "output": 5.0},
    "gpt-4o": {"input": 5.0, "output": 15.0},
    "gpt-4o-mini": {"input": 0.15, "output": 0.6},
}

# Family-level fallback when a model has no entry of its own.
PROVIDER_PRICING: dict[ProviderName, dict[str, float]] = {
    ProviderName.CLAUDE: {"input": 3.0, "output": 15.0},
    ProviderName.GEMINI: {"input": 0.15, "output": 0.6},
    ProviderName.OPENAI: {"input": 1.75, "output": 14.0},
}

_UNIT = 1_000_000


def estimate_cost(provider: ProviderName, model_id: str, usage: TokenUsage) -> float:
    rates = MODEL_PRICING.get(model_id) or PROVIDER_PRICING.get(provider, {"input": 0.0, "output": 0.0})
    return (
        usage.input_tokens / _UNIT * rates["input"]
        + usage.output_tokens / _UNIT * rates["output"]
    )


def format_cost(cost: float) -> str:
    if cost == 0:
        return "Free"
    if cost < 0.01:
        return "< $0.01"
    return f"${cost:.2f}"
