"""OpenAI provider adapter.

Wraps the ``openai`` SDK's async client.  Agent instructions travel as a
``system`` role message; JSON mode is requested through ``response_format``
on models that support it.
"""

from __future__ import annotations

import httpx

from ceremony_engine.core.llm.models import ProviderName, ProviderResponse, TokenUsage
from ceremony_engine.core.llm.providers.base import BaseProvider
from ceremony_engine.utils.exceptions import (
    AuthError,
    ConfigurationError,
    ProviderError,
    TransientError,
)

# Model families that accept ``response_format={"type": "json_object"}``.
_JSON_MODE_PREFIXES = ("gpt-4", "gpt-5", "o")


class OpenAIProvider(BaseProvider):
    """Provider implementation for OpenAI models.

    Parameters
    ----------
    api_key:
        OpenAI API key.
    model:
        Model identifier, e.g. ``"gpt-4o"``.
    """

    name = ProviderName.OPENAI

    def __init__(self, api_key: str, model: str):
        super().__init__(api_key, model)
        try:
            import openai
        except ImportError as exc:
            raise ConfigurationError(
                "The 'openai' package is not installed. "
                "Install it with: pip install openai"
            ) from exc

        self._sdk = openai
        self.client = openai.AsyncOpenAI(
            api_key=api_key,
            max_retries=0,
            timeout=httpx.Timeout(connect=30.0, read=300.0, write=60.0, pool=30.0),
        )

    @property
    def supports_json_mode(self) -> bool:
        return self.model.startswith(_JSON_MODE_PREFIXES)

    async def _complete(
        self,
        prompt: str,
        max_tokens: int,
        system: str | None,
        json_mode: bool,
    ) -> ProviderResponse:
        messages = []
        if system:
            messages.append({"role": "system", "content": system})
        messages.append({"role": "user", "content": prompt})

        params: dict = {
            "model": self.model,
            "max_completion_tokens": max_tokens,
            "messages": messages,
        }
        if json_mode and self.supports_json_mode:
            params["response_format"] = {"type": "json_object"}

        response = await self.client.chat.completions.create(**params)

        choice = response.choices[0] if response.choices else None
        text = ""
        if choice and choice.message and choice.message.content:
            text = choice.message.content

        usage = getattr(response, "usage", None)
        return ProviderResponse(
            text=text,
            usage=TokenUsage(
                input_tokens=getattr(usage, "prompt_tokens", 0) or 0,
                output_tokens=getattr(usage, "completion_tokens", 0) or 0,
            ),
        )

    def _map_error(self, exc: Exception) -> ProviderError:
        sdk = self._sdk
        if isinstance(exc, (sdk.AuthenticationError, sdk.PermissionDeniedError)):
            return AuthError(self.name.value, str(exc), self.model)
        if isinstance(exc, sdk.APIConnectionError):
            return TransientError(self.name.value, str(exc), self.model)
        if isinstance(exc, sdk.APIStatusError):
            return self._from_status(
                exc.status_code,
                str(exc),
                retry_after=self._retry_after(exc.response),
            )
        return ProviderError(self.name.value, str(exc), self.model)
