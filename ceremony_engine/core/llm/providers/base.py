"""Abstract base class for provider adapters.

An adapter hides one backend family's SDK behind a single capability
interface -- ``generate``, ``generate_structured`` and
``validate_credential`` -- and normalizes usage and failures so callers never
touch SDK objects or SDK exceptions.
"""

from __future__ import annotations

import json
import re
from abc import ABC, abstractmethod
from typing import Any

from pydantic import BaseModel, ValidationError

from ceremony_engine.core.llm.models import (
    CredentialCheck,
    ProviderName,
    ProviderResponse,
)
from ceremony_engine.core.llm.token_limits import clamp_tokens
from ceremony_engine.utils.exceptions import (
    AuthError,
    InvalidResponseError,
    ProviderError,
    RateLimitError,
    TransientError,
)
from ceremony_engine.utils.logging import get_logger

logger = get_logger("llm.provider")

JSON_SYSTEM_PROMPT = (
    "You are a helpful assistant that always returns valid JSON. "
    "Your response must be a valid JSON object or array, nothing else."
)


class BaseProvider(ABC):
    """Base class every provider adapter inherits from.

    Subclasses implement :meth:`_complete` (one raw backend call) and
    :meth:`_map_error` (SDK exception -> taxonomy); everything else is shared.

    Parameters
    ----------
    api_key:
        Credential for the backend.  Must be non-empty.
    model:
        Model identifier passed through to the backend.
    """

    name: ProviderName
    STRUCTURED_MAX_TOKENS = 8000

    def __init__(self, api_key: str, model: str):
        if not api_key:
            raise AuthError(self.name.value, "API key is required but was empty.", model)
        self.model = model

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def generate(
        self,
        prompt_text: str,
        max_output_tokens: int,
        agent_instructions: str | None = None,
    ) -> ProviderResponse:
        """Free-form generation; *agent_instructions* become the system instruction."""
        return await self._invoke(
            prompt_text,
            clamp_tokens(self.model, max_output_tokens),
            system=agent_instructions,
            json_mode=False,
        )

    async def generate_structured(
        self,
        prompt_text: str,
        agent_instructions: str | None = None,
        schema: type[BaseModel] | None = None,
    ) -> ProviderResponse:
        """Request JSON output and return it parsed in ``ProviderResponse.data``.

        When *schema* is given the parsed JSON must validate against it and
        the validated model instance is returned.  Any parse or validation
        failure raises :class:`InvalidResponseError`; partial data is never
        returned.
        """
        full_prompt = (
            f"{agent_instructions}\n\n{prompt_text}" if agent_instructions else prompt_text
        )
        response = await self._invoke(
            full_prompt,
            clamp_tokens(self.model, self.STRUCTURED_MAX_TOKENS),
            system=JSON_SYSTEM_PROMPT,
            json_mode=True,
        )

        try:
            data: Any = self._parse_json(response.text)
        except json.JSONDecodeError as exc:
            logger.error(
                "structured_parse_error",
                provider=self.name.value,
                model=self.model,
                raw=response.text[:500],
                error=str(exc),
            )
            raise InvalidResponseError(
                self.name.value,
                f"Failed to parse LLM response as JSON: {exc}",
                self.model,
            ) from exc

        if schema is not None:
            try:
                data = schema.model_validate(data)
            except ValidationError as exc:
                logger.error(
                    "structured_schema_mismatch",
                    provider=self.name.value,
                    model=self.model,
                    schema=schema.__name__,
                    errors=exc.error_count(),
                )
                raise InvalidResponseError(
                    self.name.value,
                    f"Response does not match {schema.__name__}: {exc}",
                    self.model,
                ) from exc

        return ProviderResponse(text=response.text, data=data, usage=response.usage)

    async def validate_credential(self) -> CredentialCheck:
        """Make one minimal real call to prove the credential works."""
        try:
            await self.generate('Reply with only the word "ok"', 10)
            return CredentialCheck(valid=True)
        except ProviderError as exc:
            return CredentialCheck(valid=False, error=str(exc), code=exc.kind.value)

    # ------------------------------------------------------------------
    # Subclass hooks
    # ------------------------------------------------------------------

    @abstractmethod
    async def _complete(
        self,
        prompt: str,
        max_tokens: int,
        system: str | None,
        json_mode: bool,
    ) -> ProviderResponse:
        """Perform exactly one backend call and return text plus usage."""
        ...

    @abstractmethod
    def _map_error(self, exc: Exception) -> ProviderError:
        """Translate an SDK exception into the uniform taxonomy."""
        ...

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _invoke(
        self,
        prompt: str,
        max_tokens: int,
        system: str | None,
        json_mode: bool,
    ) -> ProviderResponse:
        try:
            response = await self._complete(prompt, max_tokens, system, json_mode)
        except ProviderError:
            raise
        except Exception as exc:
            mapped = self._map_error(exc)
            logger.error(
                "provider_call_error",
                provider=self.name.value,
                model=self.model,
                kind=mapped.kind.value,
                error=str(exc),
            )
            raise mapped from exc

        if not response.text.strip():
            raise InvalidResponseError(
                self.name.value,
                "Backend returned no text (possible safety filter block).",
                self.model,
            )
        return response

    def _from_status(
        self,
        status: int | None,
        detail: str,
        retry_after: float | None = None,
    ) -> ProviderError:
        """Shared HTTP-status classification used by the SDK-specific mappers."""
        provider = self.name.value
        if status in (401, 403):
            return AuthError(provider, detail, self.model)
        if status == 429:
            return RateLimitError(provider, detail, self.model, retry_after=retry_after)
        if status is None or status >= 500 or status == 408:
            return TransientError(provider, detail, self.model)
        return ProviderError(provider, detail, self.model)

    @staticmethod
    def _retry_after(response: Any) -> float | None:
        """Read a numeric ``retry-after`` header from an HTTP response, if any."""
        headers = getattr(response, "headers", None)
        if not headers:
            return None
        value = headers.get("retry-after")
        if value is None:
            return None
        try:
            return max(0.0, float(value))
        except (TypeError, ValueError):
            return None

    @staticmethod
    def _parse_json(text: str) -> Any:
        """JSON extraction from LLM output.

        Handles plain JSON as well as payloads wrapped in markdown
        ```json ... ``` fences or surrounded by prose.  Raises
        :class:`json.JSONDecodeError` when no complete JSON value is found.
        """
        text = text.strip()
        try:
            return json.loads(text)
        except json.JSONDecodeError:
            pass

        match = re.search(r"```(?:json)?\s*\n?(.*?)\n?```", text, re.DOTALL)
        if match:
            return json.loads(match.group(1).strip())

        # Outermost object or array, whichever opens first.
        candidates = [(text.find(o), o, c) for o, c in (("{", "}"), ("[", "]"))]
        for start, _, closer in sorted(c for c in candidates if c[0] != -1):
            end = text.rfind(closer)
            if end > start:
                return json.loads(text[start : end + 1])

        raise json.JSONDecodeError("No JSON object found in response", text, 0)
