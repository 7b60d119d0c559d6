"""Wiring for the engine's long-lived services.

Each accessor builds its service from settings on first use and returns the
same instance afterwards.  Call :func:`reset` (e.g. after
``get_settings.cache_clear()``) to rebuild everything.
"""

from __future__ import annotations

from functools import lru_cache

from ceremony_engine.config import get_settings
from ceremony_engine.core.ceremony.config_store import CeremonyConfigStore
from ceremony_engine.core.ceremony.resolver import ModelResolver
from ceremony_engine.core.llm.client import GenerationClient, RetryPolicy
from ceremony_engine.core.llm.factory import ProviderFactory
from ceremony_engine.core.prompts.assembler import PromptAssembler
from ceremony_engine.core.prompts.templates import TemplateStore
from ceremony_engine.core.usage.ledger import UsageLedger
from ceremony_engine.core.validation.catalog import ValidatorCatalog
from ceremony_engine.core.validation.orchestrator import ValidationOrchestrator
from ceremony_engine.core.validation.selector import ValidatorSelector
from ceremony_engine.utils.logging import get_logger

logger = get_logger(__name__)


# ---------------------------------------------------------------------------
# Configuration and accounting
# ---------------------------------------------------------------------------

@lru_cache
def get_config_store() -> CeremonyConfigStore:
    return CeremonyConfigStore(get_settings().ceremony_config_path)


@lru_cache
def get_usage_ledger() -> UsageLedger:
    return UsageLedger(get_settings().usage_history_path)


@lru_cache
def get_template_store() -> TemplateStore:
    return TemplateStore(get_settings().templates_dir)


# ---------------------------------------------------------------------------
# Generation
# ---------------------------------------------------------------------------

@lru_cache
def get_generation_client() -> GenerationClient:
    """The process-wide client; its adapter cache is shared by every ceremony."""
    client = GenerationClient(
        resolver=ModelResolver(get_config_store()),
        factory=ProviderFactory(),
        ledger=get_usage_ledger(),
        assembler=PromptAssembler(),
        retry_policy=RetryPolicy.from_settings(),
    )
    logger.debug("generation_client_created", project_dir=get_settings().project_dir)
    return client


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------

def get_validation_orchestrator(
    ceremony: str = "sprint-planning",
    smart_selection: bool | None = None,
) -> ValidationOrchestrator:
    """Build an orchestrator for *ceremony* wired to the shared client."""
    if smart_selection is None:
        smart_selection = get_settings().smart_validator_selection

    client = get_generation_client()
    templates = get_template_store()
    catalog = ValidatorCatalog()
    selector = ValidatorSelector(
        catalog,
        client=client,
        templates=templates,
        smart_selection=smart_selection,
        ceremony=ceremony,
    )
    return ValidationOrchestrator(
        client,
        templates,
        selector=selector,
        catalog=catalog,
        ceremony=ceremony,
    )


def reset() -> None:
    for accessor in (
        get_config_store,
        get_usage_ledger,
        get_template_store,
        get_generation_client,
    ):
        accessor.cache_clear()
