"""Provider factory.

Maps a :class:`ProviderName` to its adapter class and injects the matching
credential.  The set of providers is closed; an unknown name is a
configuration error, not a plugin lookup.
"""

from __future__ import annotations

import os
from typing import Mapping

from ceremony_engine.config import get_settings
from ceremony_engine.core.llm.models import CREDENTIAL_ENV_VARS, CredentialCheck, ProviderName
from ceremony_engine.core.llm.providers.base import BaseProvider
from ceremony_engine.utils.exceptions import (
    AuthError,
    CeremonyEngineError,
    ConfigurationError,
    ErrorKind,
)
from ceremony_engine.utils.logging import get_logger

logger = get_logger("llm.factory")


def _settings_environ() -> dict[str, str]:
    """Credentials visible to the process: ``.env`` values overlaid by ``os.environ``."""
    s = get_settings()
    merged = {
        "ANTHROPIC_API_KEY": s.anthropic_api_key,
        "GEMINI_API_KEY": s.gemini_api_key,
        "OPENAI_API_KEY": s.openai_api_key,
    }
    merged.update({k: v for k, v in os.environ.items() if k in merged and v})
    return {k: v for k, v in merged.items() if v}


def parse_provider(provider: str | ProviderName) -> ProviderName:
    try:
        return ProviderName(provider)
    except ValueError:
        supported = ", ".join(p.value for p in ProviderName)
        raise ConfigurationError(
            f"Unknown provider: {provider!r}. Supported providers: {supported}"
        ) from None


class ProviderFactory:
    """Builds provider adapters from a (provider, model) pair.

    Parameters
    ----------
    environ:
        Mapping holding credential variables.  Defaults to the process
        environment merged with ``.env`` settings, read on every call.
    """

    def __init__(self, environ: Mapping[str, str] | None = None):
        self._environ = environ

    @property
    def environ(self) -> Mapping[str, str]:
        return self._environ if self._environ is not None else _settings_environ()

    def create(self, provider: str | ProviderName, model: str) -> BaseProvider:
        name = parse_provider(provider)
        env_var = CREDENTIAL_ENV_VARS[name]
        api_key = self.environ.get(env_var)
        if not api_key:
            raise AuthError(
                name.value,
                f"{env_var} not set. Add it to your .env file.",
                model,
                env_var=env_var,
            )

        if name is ProviderName.CLAUDE:
            from ceremony_engine.core.llm.providers.claude_provider import ClaudeProvider

            return ClaudeProvider(api_key, model)

        if name is ProviderName.GEMINI:
            from ceremony_engine.core.llm.providers.gemini_provider import GeminiProvider

            return GeminiProvider(api_key, model)

        if name is ProviderName.OPENAI:
            from ceremony_engine.core.llm.providers.openai_provider import OpenAIProvider

            return OpenAIProvider(api_key, model)

        raise ConfigurationError(f"No adapter registered for provider {name.value!r}")

    async def validate(self, provider: str | ProviderName, model: str) -> CredentialCheck:
        """Eagerly prove a credential with one real call.  Never raises."""
        try:
            adapter = self.create(provider, model)
        except AuthError as exc:
            return CredentialCheck(valid=False, error=str(exc), code=ErrorKind.AUTH.value)
        except CeremonyEngineError as exc:
            return CredentialCheck(valid=False, error=str(exc), code="configuration")

        check = await adapter.validate_credential()
        logger.info(
            "credential_validated",
            provider=adapter.name.value,
            model=model,
            valid=check.valid,
            code=check.code,
        )
        return check

    def available_providers(self) -> list[ProviderName]:
        """Providers whose credential variable is set."""
        env = self.environ
        return [name for name in ProviderName if env.get(CREDENTIAL_ENV_VARS[name])]
