"""Anthropic Claude provider adapter.

Wraps the ``anthropic`` SDK's async client to expose the standard
``generate`` / ``generate_structured`` / ``validate_credential`` interface
of :class:`~ceremony_engine.core.llm.providers.base.BaseProvider`.
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


class ClaudeProvider(BaseProvider):
    """Provider implementation for Anthropic Claude models.

    Parameters
    ----------
    api_key:
        Anthropic API key.
    model:
        Model identifier, e.g. ``"claude-sonnet-4-5-20250929"``.
    """

    name = ProviderName.CLAUDE

    def __init__(self, api_key: str, model: str):
        super().__init__(api_key, model)
        try:
            import anthropic
        except ImportError as exc:
            raise ConfigurationError(
                "The 'anthropic' package is not installed. "
                "Install it with: pip install anthropic"
            ) from exc

        self._sdk = anthropic
        # Retries are owned by the generation client, not the SDK.
        self.client = anthropic.AsyncAnthropic(
            api_key=api_key,
            max_retries=0,
            timeout=httpx.Timeout(connect=30.0, read=300.0, write=60.0, pool=30.0),
        )

    async def _complete(
        self,
        prompt: str,
        max_tokens: int,
        system: str | None,
        json_mode: bool,
    ) -> ProviderResponse:
        params: dict = {
            "model": self.model,
            "max_tokens": max_tokens,
            "messages": [{"role": "user", "content": prompt}],
        }
        if system:
            params["system"] = system

        message = await self.client.messages.create(**params)

        text = "".join(
            block.text for block in (message.content or []) if getattr(block, "type", "") == "text"
        )
        usage = getattr(message, "usage", None)
        return ProviderResponse(
            text=text,
            usage=TokenUsage(
                input_tokens=getattr(usage, "input_tokens", 0) or 0,
                output_tokens=getattr(usage, "output_tokens", 0) or 0,
            ),
        )

    def _map_error(self, exc: Exception) -> ProviderError:
        sdk = self._sdk
        if isinstance(exc, (sdk.AuthenticationError, sdk.PermissionDeniedError)):
            return AuthError(self.name.value, str(exc), self.model)
        if isinstance(exc, sdk.APIConnectionError):
            # Includes APITimeoutError.
            return TransientError(self.name.value, str(exc), self.model)
        if isinstance(exc, sdk.APIStatusError):
            return self._from_status(
                exc.status_code,
                str(exc),
                retry_after=self._retry_after(exc.response),
            )
        return ProviderError(self.name.value, str(exc), self.model)
