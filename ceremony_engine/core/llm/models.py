"""Data models shared by provider adapters, the factory and the generation client."""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, computed_field


class ProviderName(str, Enum):
    """The closed set of supported backend families."""

    CLAUDE = "claude"
    GEMINI = "gemini"
    OPENAI = "openai"


CREDENTIAL_ENV_VARS: dict[ProviderName, str] = {
    ProviderName.CLAUDE: "ANTHROPIC_API_KEY",
    ProviderName.GEMINI: "GEMINI_API_KEY",
    ProviderName.OPENAI: "OPENAI_API_KEY",
}


class ProviderConfig(BaseModel):
    """A concrete backend selection plus the variable holding its credential."""

    name: ProviderName
    model_id: str

    @computed_field  # type: ignore[prop-decorator]
    @property
    def credential_env_var(self) -> str:
        return CREDENTIAL_ENV_VARS[self.name]


class TokenUsage(BaseModel):
    """Token counts normalized across backends."""

    model_config = ConfigDict(frozen=True)

    input_tokens: int = 0
    output_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens

    def __add__(self, other: TokenUsage) -> TokenUsage:
        return TokenUsage(
            input_tokens=self.input_tokens + other.input_tokens,
            output_tokens=self.output_tokens + other.output_tokens,
        )


class ProviderResponse(BaseModel):
    """What an adapter returns for one successful backend call."""

    text: str = ""
    data: Any = None
    usage: TokenUsage = Field(default_factory=TokenUsage)


class CredentialCheck(BaseModel):
    valid: bool
    error: str | None = None
    code: str | None = None


class GenerationRequest(BaseModel):
    """One fully assembled call, as handed to an adapter."""

    prompt_text: str
    max_output_tokens: int
    agent_instructions: str | None = None
    expects_structured_output: bool = False


class GenerationResult(BaseModel):
    """The outcome of a successful :class:`GenerationClient` call.

    Attributes:
        text: Raw text for free-form generation.
        data: Parsed JSON object for structured generation.
        usage: Tokens consumed by the successful attempt.
        provider_name: Backend family that served the call.
        model_id: Model that served the call.
        attempts: Number of attempts made, including the successful one.
    """

    text: str | None = None
    data: Any = None
    usage: TokenUsage
    provider_name: ProviderName
    model_id: str
    attempts: int = 1


class ProviderUsage(BaseModel):
    """In-process usage for one provider/model pair."""

    provider: str
    model: str
    calls: int = 0
    input_tokens: int = 0
    output_tokens: int = 0
    estimated_cost: float = 0.0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens
