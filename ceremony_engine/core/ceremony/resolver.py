"""Hierarchical provider/model resolution.

Lookup order, first match wins, applied to provider and model separately::

    stages[stage].validationTypes[type]  ->  stages[stage]  ->  ceremony  ->  global

Resolution never fails: missing scopes fall back to the next broader one
and the global default always supplies a value.
"""

from __future__ import annotations

import re

from ceremony_engine.config import get_settings
from ceremony_engine.core.ceremony.config_store import CeremonyConfigStore
from ceremony_engine.core.ceremony.models import (
    CeremonyConfigSnapshot,
    ModelOverride,
    ModelSelection,
    SelectionSource,
)
from ceremony_engine.utils.exceptions import ConfigResolutionWarning
from ceremony_engine.utils.logging import get_logger

logger = get_logger("ceremony.resolver")

UNIVERSAL_ROLES = frozenset(
    {"solution-architect", "developer", "security", "qa", "test-architect"}
)
DOMAIN_ROLES = frozenset(
    {"devops", "cloud", "backend", "database", "api", "frontend", "ui", "ux", "mobile", "data"}
)

_VALIDATOR_PREFIX = re.compile(r"^validator-(epic|story)-")


class ModelResolver:
    """Resolves a (ceremony, stage, validation type) tuple to a model.

    Parameters
    ----------
    store:
        Source of configuration snapshots.
    default_provider, default_model:
        Global fallback.  Defaults come from settings.
    """

    def __init__(
        self,
        store: CeremonyConfigStore,
        default_provider: str | None = None,
        default_model: str | None = None,
    ):
        s = get_settings()
        self.store = store
        self.default_provider = default_provider or s.default_provider
        self.default_model = default_model or s.default_model

    def resolve(
        self,
        ceremony: str,
        stage: str | None = None,
        validation_type: str | None = None,
    ) -> ModelSelection:
        return self.resolve_in(self.store.load(), ceremony, stage, validation_type)

    def resolve_in(
        self,
        snapshot: CeremonyConfigSnapshot,
        ceremony: str,
        stage: str | None = None,
        validation_type: str | None = None,
    ) -> ModelSelection:
        """Resolve against an explicit *snapshot*; has no side effects besides logging."""
        scopes: list[tuple[SelectionSource, ModelOverride]] = []

        config = snapshot.get(ceremony)
        if config is None:
            self._fallback("unknown_ceremony", ceremony=ceremony)
        else:
            stage_config = config.stages.get(stage) if stage else None
            if stage and stage_config is None:
                self._fallback("unknown_stage", ceremony=ceremony, stage=stage)

            if stage_config is not None and validation_type:
                type_config = stage_config.validation_types.get(validation_type)
                if type_config is None:
                    self._fallback(
                        "unknown_validation_type",
                        ceremony=ceremony,
                        stage=stage,
                        validation_type=validation_type,
                    )
                else:
                    scopes.append((SelectionSource.VALIDATION_TYPE, type_config))

            if stage_config is not None:
                scopes.append((SelectionSource.STAGE, stage_config))

            scopes.append(
                (
                    SelectionSource.CEREMONY,
                    ModelOverride(provider=config.provider, model=config.default_model),
                )
            )

        scopes.append(
            (
                SelectionSource.GLOBAL,
                ModelOverride(provider=self.default_provider, model=self.default_model),
            )
        )

        provider = next(s.provider for _, s in scopes if s.provider)
        source, model = next((src, s.model) for src, s in scopes if s.model)
        return ModelSelection(provider=provider, model=model, source=source)

    @staticmethod
    def validation_type_for(validator_id: str) -> str:
        """Classify a validator id as ``universal``, ``domain`` or ``feature``."""
        role = _VALIDATOR_PREFIX.sub("", validator_id)
        if role in UNIVERSAL_ROLES:
            return "universal"
        if role in DOMAIN_ROLES:
            return "domain"
        return "feature"

    @staticmethod
    def _fallback(reason: str, **context) -> None:
        logger.warning(
            "config_resolution_fallback",
            category=ConfigResolutionWarning.__name__,
            reason=reason,
            **context,
        )
