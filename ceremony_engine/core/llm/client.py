"""Generation client.

The single entry point ceremonies use to talk to a model.  One call:

  1. resolves (ceremony, stage, validation type) to a provider/model pair,
  2. fetches the adapter for that pair from a per-process cache,
  3. assembles the prompt,
  4. invokes the adapter, retrying rate limits and transient failures with
     bounded exponential backoff inside a wall-clock budget,
  5. records exactly one usage entry in the ledger on success.

Auth failures and unusable responses are never retried.
"""

from __future__ import annotations

import asyncio
import time
from typing import Any, Awaitable, Callable, Mapping

from pydantic import BaseModel
from tenacity import AsyncRetrying, RetryCallState, retry_if_exception

from ceremony_engine.config import get_settings
from ceremony_engine.core.ceremony.models import ModelSelection
from ceremony_engine.core.ceremony.resolver import ModelResolver
from ceremony_engine.core.llm.factory import ProviderFactory, parse_provider
from ceremony_engine.core.llm.models import (
    CredentialCheck,
    GenerationRequest,
    GenerationResult,
    ProviderName,
    ProviderResponse,
    ProviderUsage,
    TokenUsage,
)
from ceremony_engine.core.llm.pricing import estimate_cost
from ceremony_engine.core.llm.providers.base import BaseProvider
from ceremony_engine.core.prompts.assembler import OutputSize, PromptAssembler
from ceremony_engine.core.usage.ledger import UsageLedger
from ceremony_engine.utils.exceptions import ProviderError, RateLimitError, TransientError
from ceremony_engine.utils.logging import get_logger

logger = get_logger("llm.client")


class RetryPolicy(BaseModel):
    """Backoff settings for retryable provider errors.

    Attributes:
        max_retries: Retries after the first attempt.
        base_delay: First backoff in seconds; doubles per retry.
        max_delay: Upper bound for a single computed backoff.
        budget_seconds: Wall-clock budget for the whole call.  Each attempt is
            cut off when the budget runs out, and no sleep is started that
            would end past it.
    """

    max_retries: int = 2
    base_delay: float = 1.0
    max_delay: float = 8.0
    budget_seconds: float = 30.0

    @classmethod
    def from_settings(cls) -> RetryPolicy:
        s = get_settings()
        return cls(
            max_retries=s.retry_max_retries,
            base_delay=s.retry_base_delay,
            max_delay=s.retry_max_delay,
            budget_seconds=s.retry_budget_seconds,
        )

    def delay_for(self, attempt_number: int, error: BaseException | None) -> float:
        """Sleep before the attempt after *attempt_number* (1-based)."""
        backoff = min(self.max_delay, self.base_delay * 2 ** (attempt_number - 1))
        if isinstance(error, RateLimitError) and error.retry_after is not None:
            return max(backoff, error.retry_after)
        return backoff


def _is_retryable(exc: BaseException) -> bool:
    return isinstance(exc, ProviderError) and exc.retryable


class GenerationClient:
    """Resolve, assemble, invoke with retry, and record usage.

    Parameters
    ----------
    resolver:
        Maps ceremony/stage/validation type to a provider and model.
    factory:
        Builds adapters; anything with a ``create(provider, model)`` method.
    ledger:
        Receives one record per successful call.
    assembler:
        Renders ``{{NAME}}`` placeholders.
    retry_policy:
        Backoff settings.  Defaults come from settings.
    sleep:
        Awaitable sleep used between retries.
    """

    def __init__(
        self,
        resolver: ModelResolver,
        factory: ProviderFactory,
        ledger: UsageLedger,
        assembler: PromptAssembler | None = None,
        retry_policy: RetryPolicy | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.resolver = resolver
        self.factory = factory
        self.ledger = ledger
        self.assembler = assembler or PromptAssembler()
        self.retry_policy = retry_policy or RetryPolicy.from_settings()
        self._sleep = sleep
        self._adapters: dict[tuple[str, str], BaseProvider] = {}
        self._usage: dict[tuple[str, str], tuple[int, TokenUsage]] = {}

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def generate(
        self,
        ceremony: str,
        stage: str | None,
        prompt: str,
        *,
        values: Mapping[str, Any] | None = None,
        size: OutputSize = OutputSize.MEDIUM,
        agent_instructions: str | None = None,
        validation_type: str | None = None,
    ) -> GenerationResult:
        """Free-form text generation."""
        size = OutputSize.coerce(size)
        assembled = self.assembler.assemble(prompt, values, agent_instructions)
        request = GenerationRequest(
            prompt_text=assembled.prompt,
            max_output_tokens=size.max_tokens,
            agent_instructions=assembled.agent_instructions,
        )
        return await self._execute(ceremony, stage, validation_type, request)

    async def generate_structured(
        self,
        ceremony: str,
        stage: str | None,
        prompt: str,
        *,
        values: Mapping[str, Any] | None = None,
        agent_instructions: str | None = None,
        validation_type: str | None = None,
        schema: type[BaseModel] | None = None,
    ) -> GenerationResult:
        """JSON generation; ``result.data`` holds the parsed (and validated) payload."""
        assembled = self.assembler.assemble(prompt, values, agent_instructions)
        request = GenerationRequest(
            prompt_text=assembled.prompt,
            max_output_tokens=OutputSize.STRUCTURED.max_tokens,
            agent_instructions=assembled.agent_instructions,
            expects_structured_output=True,
        )
        return await self._execute(ceremony, stage, validation_type, request, schema=schema)

    async def validate_credentials(
        self,
        ceremony: str,
        stages: tuple[str, ...] | list[str] = (),
    ) -> dict[tuple[str, str], CredentialCheck]:
        """Check every distinct provider/model pair a ceremony will use.

        Meant to run once at ceremony start.  Covers the ceremony default,
        each listed stage and every validation-type override configured
        under those stages.  Never raises; each pair maps to its
        :class:`CredentialCheck`.
        """
        snapshot = self.resolver.store.load()
        config = snapshot.get(ceremony)

        targets: list[tuple[str | None, str | None]] = [(None, None)]
        for stage in stages:
            targets.append((stage, None))
            stage_config = config.stages.get(stage) if config is not None else None
            if stage_config is not None:
                targets.extend((stage, vt) for vt in stage_config.validation_types)

        pairs: list[tuple[str, str]] = []
        for stage, validation_type in targets:
            selection = self.resolver.resolve_in(snapshot, ceremony, stage, validation_type)
            pair = (selection.provider, selection.model)
            if pair not in pairs:
                pairs.append(pair)

        checks = await asyncio.gather(
            *(self.factory.validate(provider, model) for provider, model in pairs)
        )
        results = dict(zip(pairs, checks))
        for (provider, model), check in results.items():
            if not check.valid:
                logger.warning(
                    "credential_check_failed",
                    ceremony=ceremony,
                    provider=provider,
                    model=model,
                    error=check.error,
                )
        return results

    def usage_summary(self) -> list[ProviderUsage]:
        """Per provider/model usage accumulated by this client, with cost estimates."""
        summary = []
        for (provider, model), (calls, usage) in sorted(self._usage.items()):
            summary.append(
                ProviderUsage(
                    provider=provider,
                    model=model,
                    calls=calls,
                    input_tokens=usage.input_tokens,
                    output_tokens=usage.output_tokens,
                    estimated_cost=estimate_cost(ProviderName(provider), model, usage),
                )
            )
        return summary

    def get_adapter(self, provider: str, model: str) -> BaseProvider:
        key = (provider, model)
        adapter = self._adapters.get(key)
        if adapter is None:
            adapter = self.factory.create(provider, model)
            self._adapters[key] = adapter
        return adapter

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _execute(
        self,
        ceremony: str,
        stage: str | None,
        validation_type: str | None,
        request: GenerationRequest,
        schema: type[BaseModel] | None = None,
    ) -> GenerationResult:
        selection = self.resolver.resolve(ceremony, stage, validation_type)
        provider = parse_provider(selection.provider).value
        model = selection.model

        try:
            adapter = self.get_adapter(provider, model)
        except ProviderError as exc:
            raise exc.with_context(provider, model)

        if request.expects_structured_output:
            def call() -> Awaitable[ProviderResponse]:
                return adapter.generate_structured(
                    request.prompt_text, request.agent_instructions, schema
                )
        else:
            def call() -> Awaitable[ProviderResponse]:
                return adapter.generate(
                    request.prompt_text, request.max_output_tokens, request.agent_instructions
                )

        logger.info(
            "generation_start",
            ceremony=ceremony,
            stage=stage,
            validation_type=validation_type,
            provider=provider,
            model=model,
            source=selection.source.value,
            structured=request.expects_structured_output,
        )

        try:
            response, attempts = await self._call_with_retry(call, selection)
        except RateLimitError as exc:
            exc.detail = (
                f"{exc.detail}. {provider} is still rate limiting after retries; "
                f"consider switching the provider/model for stage '{stage or 'default'}' "
                f"of ceremony '{ceremony}' in .avc/avc.json"
            )
            raise exc.with_context(provider, model)
        except ProviderError as exc:
            raise exc.with_context(provider, model)

        self.ledger.add_execution(
            ceremony, response.usage.input_tokens, response.usage.output_tokens
        )
        calls, total = self._usage.get((provider, model), (0, TokenUsage()))
        self._usage[(provider, model)] = (calls + 1, total + response.usage)

        logger.info(
            "generation_success",
            ceremony=ceremony,
            stage=stage,
            provider=provider,
            model=model,
            attempts=attempts,
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
        )

        return GenerationResult(
            text=None if request.expects_structured_output else response.text,
            data=response.data if request.expects_structured_output else None,
            usage=response.usage,
            provider_name=ProviderName(provider),
            model_id=model,
            attempts=attempts,
        )

    async def _call_with_retry(
        self,
        call: Callable[[], Awaitable[ProviderResponse]],
        selection: ModelSelection,
    ) -> tuple[ProviderResponse, int]:
        policy = self.retry_policy
        started = time.monotonic()

        async def bounded_call() -> ProviderResponse:
            # Each attempt only gets what is left of the budget.
            remaining = max(0.0, policy.budget_seconds - (time.monotonic() - started))
            try:
                return await asyncio.wait_for(call(), timeout=remaining)
            except asyncio.TimeoutError:
                logger.warning(
                    "generation_attempt_timeout",
                    provider=selection.provider,
                    model=selection.model,
                    timeout=round(remaining, 3),
                )
                raise TransientError(
                    selection.provider,
                    f"No response within the {policy.budget_seconds:g}s retry budget",
                    selection.model,
                ) from None

        def next_delay(state: RetryCallState) -> float:
            error = state.outcome.exception() if state.outcome else None
            return policy.delay_for(state.attempt_number, error)

        def should_stop(state: RetryCallState) -> bool:
            if state.attempt_number > policy.max_retries:
                return True
            elapsed = time.monotonic() - started
            return elapsed + next_delay(state) > policy.budget_seconds

        def log_retry(state: RetryCallState) -> None:
            error = state.outcome.exception() if state.outcome else None
            logger.warning(
                "generation_retry",
                provider=selection.provider,
                model=selection.model,
                attempt=state.attempt_number,
                kind=getattr(getattr(error, "kind", None), "value", None),
                delay=state.next_action.sleep if state.next_action else None,
                error=str(error),
            )

        retrying = AsyncRetrying(
            stop=should_stop,
            wait=next_delay,
            retry=retry_if_exception(_is_retryable),
            before_sleep=log_retry,
            sleep=self._sleep,
            reraise=True,
        )

        async for attempt in retrying:
            with attempt:
                response = await bounded_call()
        return response, attempt.retry_state.attempt_number
