"""Google Gemini provider adapter.

Uses the ``google-genai`` SDK through its async surface (``client.aio``).
Gemini reports a missing ``text`` when a response is blocked by safety
filters; that is surfaced as an invalid response rather than an empty string.
"""

from __future__ import annotations

from ceremony_engine.core.llm.models import ProviderName, ProviderResponse, TokenUsage
from ceremony_engine.core.llm.providers.base import BaseProvider
from ceremony_engine.utils.exceptions import ConfigurationError, ProviderError, TransientError


class GeminiProvider(BaseProvider):
    """Provider implementation for Google Gemini models.

    Parameters
    ----------
    api_key:
        Gemini API key.
    model:
        Model identifier, e.g. ``"gemini-2.5-flash"``.
    """

    name = ProviderName.GEMINI

    def __init__(self, api_key: str, model: str = "gemini-2.5-flash"):
        super().__init__(api_key, model)
        try:
            from google import genai
            from google.genai import errors, types
        except ImportError as exc:
            raise ConfigurationError(
                "google-genai package not installed. "
                "Install with: pip install google-genai"
            ) from exc

        self._types = types
        self._errors = errors
        self.client = genai.Client(api_key=api_key)

    async def _complete(
        self,
        prompt: str,
        max_tokens: int,
        system: str | None,
        json_mode: bool,
    ) -> ProviderResponse:
        config_kwargs: dict = {"max_output_tokens": max_tokens}
        if system:
            config_kwargs["system_instruction"] = system
        if json_mode:
            config_kwargs["response_mime_type"] = "application/json"

        response = await self.client.aio.models.generate_content(
            model=self.model,
            contents=prompt,
            config=self._types.GenerateContentConfig(**config_kwargs),
        )

        usage = getattr(response, "usage_metadata", None)
        return ProviderResponse(
            text=response.text or "",
            usage=TokenUsage(
                input_tokens=getattr(usage, "prompt_token_count", 0) or 0,
                output_tokens=getattr(usage, "candidates_token_count", 0) or 0,
            ),
        )

    def _map_error(self, exc: Exception) -> ProviderError:
        if isinstance(exc, self._errors.APIError):
            return self._from_status(
                exc.code,
                str(exc),
                retry_after=self._retry_after(getattr(exc, "response", None)),
            )
        if isinstance(exc, (TimeoutError, ConnectionError, OSError)):
            return TransientError(self.name.value, str(exc), self.model)
        return ProviderError(self.name.value, str(exc), self.model)
