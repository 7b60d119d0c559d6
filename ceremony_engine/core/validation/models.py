"""Validation data models.

Validator output arrives as camelCase JSON (``validationStatus``,
``overallScore`` ...).  Every model here accepts either camelCase or
snake_case and serializes to camelCase with ``model_dump(by_alias=True)``.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator, model_validator
from pydantic.alias_generators import to_camel

_CAMEL = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class WorkItemType(str, Enum):
    EPIC = "epic"
    STORY = "story"


class Severity(str, Enum):
    CRITICAL = "critical"
    MAJOR = "major"
    MINOR = "minor"


class ValidationStatus(str, Enum):
    """Ordered from best to worst; aggregation reports the worst seen."""

    EXCELLENT = "excellent"
    ACCEPTABLE = "acceptable"
    NEEDS_IMPROVEMENT = "needs-improvement"

    @property
    def rank(self) -> int:
        return list(ValidationStatus).index(self)


class OutcomeStatus(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class SelectionMethod(str, Enum):
    STATIC = "static"
    CLASSIFIED = "classified"
    CACHED = "cached"


class WorkItem(BaseModel):
    """An epic or story under validation.

    Attributes:
        id: Work item identifier, e.g. ``"context-0001"``.
        name: Short title.
        type: ``epic`` or ``story``.
        domain: Domain tag used for routing (epics; stories inherit it).
        features: Feature names (epics).
        acceptance: Acceptance criteria (stories).
        user_type: Persona the story is written for.
        metadata: Free-form metadata; ``selected_validators`` is cached here.
    """

    model_config = _CAMEL

    id: str
    name: str = ""
    type: WorkItemType = WorkItemType.EPIC
    domain: str = ""
    description: str = ""
    features: list[str] = Field(default_factory=list)
    acceptance: list[str] = Field(default_factory=list)
    user_type: str = ""
    dependencies: list[str] = Field(default_factory=list)
    children: list[Any] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)


class ValidationIssue(BaseModel):
    model_config = _CAMEL

    severity: Severity = Severity.MINOR
    description: str = ""
    category: str | None = None
    suggestion: str | None = None
    validator_id: str | None = None
    domain: str | None = None

    @field_validator("severity", mode="before")
    @classmethod
    def _normalise_severity(cls, value: Any) -> Any:
        # Anything that is not critical or major counts as minor.
        text = str(value or "").strip().lower()
        return text if text in ("critical", "major") else "minor"


class ValidationVerdict(BaseModel):
    """The structured output of one validator run.

    Severity counts are derived from ``issues`` and therefore always agree
    with them.  When a validator omits ``readyForUse`` it is inferred from
    the status and the absence of critical issues.
    """

    model_config = _CAMEL

    validator_id: str = ""
    validation_status: ValidationStatus = ValidationStatus.ACCEPTABLE
    overall_score: float = 0.0
    issues: list[ValidationIssue] = Field(default_factory=list)
    strengths: list[str] = Field(default_factory=list)
    improvement_priorities: list[str] = Field(default_factory=list)
    ready_for_use: bool | None = None

    @field_validator("validation_status", mode="before")
    @classmethod
    def _normalise_status(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip().lower().replace("_", "-").replace(" ", "-")
        return value

    @field_validator("overall_score", mode="before")
    @classmethod
    def _clamp_score(cls, value: Any) -> Any:
        if value is None:
            return 0.0
        try:
            return min(100.0, max(0.0, float(value)))
        except (TypeError, ValueError):
            return value

    @model_validator(mode="after")
    def _infer_readiness(self) -> ValidationVerdict:
        if self.ready_for_use is None:
            self.ready_for_use = (
                self.validation_status is not ValidationStatus.NEEDS_IMPROVEMENT
                and self.critical_count == 0
            )
        return self

    @computed_field  # type: ignore[prop-decorator]
    @property
    def critical_count(self) -> int:
        return sum(1 for i in self.issues if i.severity is Severity.CRITICAL)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def major_count(self) -> int:
        return sum(1 for i in self.issues if i.severity is Severity.MAJOR)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def minor_count(self) -> int:
        return sum(1 for i in self.issues if i.severity is Severity.MINOR)


class ValidatorOutcome(BaseModel):
    """Success or failure of one dispatched validator."""

    model_config = _CAMEL

    validator_id: str
    status: OutcomeStatus
    verdict: ValidationVerdict | None = None
    error: str | None = None
    error_kind: str | None = None
    duration_seconds: float = 0.0

    @property
    def succeeded(self) -> bool:
        return self.status is OutcomeStatus.SUCCEEDED


class ValidatorSelection(BaseModel):
    model_config = _CAMEL

    validator_ids: list[str]
    method: SelectionMethod = SelectionMethod.STATIC
    domain_known: bool = True


class RankedPriority(BaseModel):
    model_config = _CAMEL

    priority: str
    mentioned_by: int


class AggregatedReport(BaseModel):
    """Merged result of every validator dispatched for one work item.

    Attributes:
        consensus_score: Mean ``overall_score`` over succeeding validators.
        failed_validator_ids: Validators whose run failed; their errors are
            kept in ``outcomes``.
        improvement_priorities: Top five priorities by number of mentions.
        overall_status: Worst status reported by a succeeding validator.
        ready_for_use: At least one success, every success ready, and no
            critical issue.
    """

    model_config = _CAMEL

    work_item_id: str
    work_item_type: WorkItemType
    selection: ValidatorSelection
    outcomes: list[ValidatorOutcome] = Field(default_factory=list)
    verdicts: list[ValidationVerdict] = Field(default_factory=list)
    failed_validator_ids: list[str] = Field(default_factory=list)
    consensus_score: float = 0.0
    critical_count: int = 0
    major_count: int = 0
    minor_count: int = 0
    critical_issues: list[ValidationIssue] = Field(default_factory=list)
    major_issues: list[ValidationIssue] = Field(default_factory=list)
    minor_issues: list[ValidationIssue] = Field(default_factory=list)
    strengths: list[str] = Field(default_factory=list)
    improvement_priorities: list[RankedPriority] = Field(default_factory=list)
    overall_status: ValidationStatus | None = None
    ready_for_use: bool = False
