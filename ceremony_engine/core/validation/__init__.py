"""Validation subsystem -- validator catalog, selection, and concurrent orchestration.

Public API::

    from ceremony_engine.core.validation import (
        AggregatedReport,
        ValidationOrchestrator,
        ValidatorCatalog,
        ValidatorSelector,
        WorkItem,
    )
"""

from ceremony_engine.core.validation.catalog import ValidatorCatalog, ValidatorSpec
from ceremony_engine.core.validation.models import (
    AggregatedReport,
    ValidationIssue,
    ValidationVerdict,
    ValidatorOutcome,
    ValidatorSelection,
    WorkItem,
    WorkItemType,
)
from ceremony_engine.core.validation.orchestrator import ValidationOrchestrator
from ceremony_engine.core.validation.selector import ValidatorSelector

__all__ = [
    "AggregatedReport",
    "ValidationIssue",
    "ValidationOrchestrator",
    "ValidationVerdict",
    "ValidatorCatalog",
    "ValidatorOutcome",
    "ValidatorSelection",
    "ValidatorSelector",
    "ValidatorSpec",
    "WorkItem",
    "WorkItemType",
]
