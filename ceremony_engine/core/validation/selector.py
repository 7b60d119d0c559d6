"""Validator selection.

Static routing adds validators in three passes: universal, domain and
feature (plus features inferred from story acceptance criteria).  A set
smaller than five is topped up with the cross-cutting review roles.  For a
domain the matrix does not know, an opt-in classification call asks a model
to pick validators instead of the domain pass.
"""

from __future__ import annotations

from pydantic import BaseModel, Field

from ceremony_engine.core.validation.catalog import ValidatorCatalog
from ceremony_engine.core.validation.models import (
    SelectionMethod,
    ValidatorSelection,
    WorkItem,
    WorkItemType,
)
from ceremony_engine.core.validation.prompts import VALIDATOR_SELECTION_TEMPLATE, selection_values
from ceremony_engine.utils.exceptions import CeremonyEngineError
from ceremony_engine.utils.logging import get_logger

MIN_VALIDATORS = 5
MAX_VALIDATORS = 8
SELECTOR_TEMPLATE = "validator-selector"
METADATA_KEY = "selected_validators"

# Cross-cutting roles used to top up a selection below MIN_VALIDATORS.
FLOOR_ROLES = ("solution-architect", "developer", "security", "qa", "test-architect")


class ValidatorSuggestion(BaseModel):
    validators: list[str] = Field(default_factory=list)
    reasoning: str | None = None


class ValidatorSelector:
    """Chooses which validators review a work item.

    Parameters
    ----------
    catalog:
        Routing matrices and the list of valid ids.
    client:
        :class:`GenerationClient` used for classification.  Required only
        when *smart_selection* is on.
    templates:
        :class:`TemplateStore` holding the ``validator-selector`` template.
    smart_selection:
        Classify unknown domains with one extra structured call.
    ceremony, stage:
        Where the classification call is resolved and accounted.
    """

    def __init__(
        self,
        catalog: ValidatorCatalog | None = None,
        client=None,
        templates=None,
        smart_selection: bool = False,
        ceremony: str = "sprint-planning",
        stage: str = "validation",
    ) -> None:
        self.catalog = catalog or ValidatorCatalog()
        self.client = client
        self.templates = templates
        self.smart_selection = smart_selection
        self.ceremony = ceremony
        self.stage = stage
        self.logger = get_logger("validation.selector")

    async def select(self, item: WorkItem, parent: WorkItem | None = None) -> ValidatorSelection:
        """Pick validators for *item*; stories route on their parent epic's domain."""
        routing = parent if item.type is WorkItemType.STORY and parent is not None else item
        domain_known = self.catalog.is_known_domain(item.type, routing.domain)

        cached = item.metadata.get(METADATA_KEY) or item.metadata.get("selectedValidators")
        if cached:
            self.logger.info("validator_selection_cached", work_item_id=item.id, count=len(cached))
            return ValidatorSelection(
                validator_ids=list(cached),
                method=SelectionMethod.CACHED,
                domain_known=domain_known,
            )

        selected: list[str] = self.catalog.universal(item.type)
        method = SelectionMethod.STATIC

        if domain_known:
            selected += self.catalog.for_domain(item.type, routing.domain)
        elif self.smart_selection and self.client is not None:
            classified = await self._classify(item)
            if classified:
                selected += classified
                method = SelectionMethod.CLASSIFIED
        else:
            self.logger.info(
                "validator_domain_unknown",
                work_item_id=item.id,
                domain=routing.domain,
            )

        for feature in routing.features:
            selected += self.catalog.for_feature(item.type, feature)
        if item.type is WorkItemType.STORY:
            for feature in self.catalog.infer_features(item.acceptance):
                selected += self.catalog.for_feature(item.type, feature)

        validator_ids = self._clamp(list(dict.fromkeys(selected)), item.type)
        item.metadata[METADATA_KEY] = validator_ids

        self.logger.info(
            "validator_selection",
            work_item_id=item.id,
            method=method.value,
            domain=routing.domain,
            domain_known=domain_known,
            validators=validator_ids,
        )
        return ValidatorSelection(
            validator_ids=validator_ids,
            method=method,
            domain_known=domain_known,
        )

    def _clamp(self, validator_ids: list[str], item_type: WorkItemType) -> list[str]:
        """Universal validators first, topped up to :data:`MIN_VALIDATORS`, capped at :data:`MAX_VALIDATORS`."""
        universal = self.catalog.universal(item_type)
        ordered = [v for v in validator_ids if v in universal]
        ordered += [v for v in validator_ids if v not in universal]
        for role in FLOOR_ROLES:
            if len(ordered) >= MIN_VALIDATORS:
                break
            validator_id = f"validator-{item_type.value}-{role}"
            if validator_id not in ordered:
                ordered.append(validator_id)
        if len(ordered) > MAX_VALIDATORS:
            self.logger.debug("validator_selection_clamped", dropped=ordered[MAX_VALIDATORS:])
        return ordered[:MAX_VALIDATORS]

    async def _classify(self, item: WorkItem) -> list[str]:
        """Ask a model for validators; returns ``[]`` on any failure."""
        available = [spec.id for spec in self.catalog.all(item.type)]
        try:
            instructions = None
            if self.templates is not None:
                instructions = await self.templates.load(SELECTOR_TEMPLATE)
            result = await self.client.generate_structured(
                self.ceremony,
                self.stage,
                VALIDATOR_SELECTION_TEMPLATE,
                values=selection_values(item, available),
                agent_instructions=instructions,
                schema=ValidatorSuggestion,
            )
        except CeremonyEngineError as exc:
            self.logger.warning(
                "validator_classification_failed",
                work_item_id=item.id,
                error=str(exc),
            )
            return []

        suggestion: ValidatorSuggestion = result.data
        valid = [v for v in suggestion.validators if self.catalog.is_valid(v, item.type)]
        invalid = [v for v in suggestion.validators if v not in valid]
        if invalid:
            self.logger.warning(
                "validator_classification_invalid_ids",
                work_item_id=item.id,
                invalid=invalid,
            )
        if suggestion.reasoning:
            self.logger.info("validator_classification_reasoning", reasoning=suggestion.reasoning)
        return valid
