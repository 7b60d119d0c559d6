from __future__ import annotations

from enum import Enum


class CeremonyEngineError(Exception):
    """Base exception for the ceremony execution engine."""


class ConfigurationError(CeremonyEngineError):
    pass


class ConfigResolutionWarning(UserWarning):
    """Non-fatal fallback to a broader configuration scope.

    Logged by the model resolver, never raised.
    """


# ---------------------------------------------------------------------------
# Provider errors
# ---------------------------------------------------------------------------


class ErrorKind(str, Enum):
    """Failure taxonomy shared by every provider adapter."""

    AUTH = "auth"
    RATE_LIMIT = "rate_limit"
    TRANSIENT = "transient"
    INVALID_RESPONSE = "invalid_response"
    REQUEST = "request"


_RETRYABLE_KINDS = frozenset({ErrorKind.RATE_LIMIT, ErrorKind.TRANSIENT})


class ProviderError(CeremonyEngineError):
    kind: ErrorKind = ErrorKind.REQUEST

    def __init__(self, provider: str, detail: str, model: str | None = None):
        self.provider = provider
        self.detail = detail
        self.model = model
        super().__init__(self._format())

    def _format(self) -> str:
        where = f"{self.provider}/{self.model}" if self.model else self.provider
        return f"LLM error ({where}): {self.detail}"

    @property
    def retryable(self) -> bool:
        return self.kind in _RETRYABLE_KINDS

    def with_context(self, provider: str, model: str) -> "ProviderError":
        """Attach provider/model context and return ``self``."""
        self.provider = provider
        self.model = model
        self.args = (self._format(),)
        return self


class AuthError(ProviderError):
    kind = ErrorKind.AUTH

    def __init__(
        self,
        provider: str,
        detail: str,
        model: str | None = None,
        env_var: str | None = None,
    ):
        self.env_var = env_var
        super().__init__(provider, detail, model)

    def _format(self) -> str:
        # Missing-credential messages are shown to users verbatim.
        if self.env_var:
            return self.detail
        return super()._format()


class RateLimitError(ProviderError):
    kind = ErrorKind.RATE_LIMIT

    def __init__(
        self,
        provider: str,
        detail: str,
        model: str | None = None,
        retry_after: float | None = None,
    ):
        self.retry_after = retry_after
        super().__init__(provider, detail, model)


class TransientError(ProviderError):
    kind = ErrorKind.TRANSIENT


class InvalidResponseError(ProviderError):
    kind = ErrorKind.INVALID_RESPONSE


# ---------------------------------------------------------------------------
# Prompts, usage and validation
# ---------------------------------------------------------------------------


class PromptAssemblyError(CeremonyEngineError):
    def __init__(self, missing: list[str], detail: str = ""):
        self.missing = missing
        if not missing:
            super().__init__(f"Prompt template is invalid: {detail}")
            return
        message = f"Unresolved placeholder(s): {', '.join(missing)}"
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message)


class TemplateNotFoundError(CeremonyEngineError):
    def __init__(self, reference: str):
        self.reference = reference
        super().__init__(f"Template not found: {reference}")


class UsageLedgerCorruptError(CeremonyEngineError):
    def __init__(self, path: str, detail: str):
        self.path = path
        super().__init__(f"Usage history at {path} is unreadable: {detail}")


class ValidatorNotFoundError(CeremonyEngineError):
    def __init__(self, validator_id: str):
        self.validator_id = validator_id
        super().__init__(f"Validator not found: {validator_id}")
