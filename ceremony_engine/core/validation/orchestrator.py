"""Concurrent multi-validator orchestration.

A run moves through ``selecting -> dispatching -> collecting -> aggregating
-> done``.  Every selected validator is dispatched concurrently as its own
structured generation call; a failing validator becomes a ``failed``
outcome and never aborts the run.  Aggregation only uses validators that
succeeded.
"""

from __future__ import annotations

import asyncio
import time
import traceback
from collections import Counter, OrderedDict
from enum import Enum

from ceremony_engine.core.ceremony.resolver import ModelResolver
from ceremony_engine.core.validation.catalog import ValidatorCatalog
from ceremony_engine.core.validation.models import (
    AggregatedReport,
    OutcomeStatus,
    RankedPriority,
    Severity,
    ValidationVerdict,
    ValidatorOutcome,
    ValidatorSelection,
    WorkItem,
)
from ceremony_engine.core.validation.prompts import validation_prompt
from ceremony_engine.core.validation.selector import ValidatorSelector
from ceremony_engine.utils.exceptions import CeremonyEngineError, ProviderError
from ceremony_engine.utils.logging import get_logger

TOP_PRIORITIES = 5
MAX_FEEDBACK = 256


class RunState(str, Enum):
    SELECTING = "selecting"
    DISPATCHING = "dispatching"
    COLLECTING = "collecting"
    AGGREGATING = "aggregating"
    DONE = "done"


class ValidationOrchestrator:
    """Runs every selected validator for a work item and merges their verdicts.

    Parameters
    ----------
    client:
        :class:`GenerationClient` used for validator calls.
    templates:
        :class:`TemplateStore` holding one ``<validator-id>.md`` per validator.
    selector:
        Chooses validators.  Defaults to static routing.
    ceremony, stage:
        Scope used to resolve the model for validator calls.
    max_feedback:
        How many reports :meth:`get_feedback` keeps; the oldest is evicted
        first.
    """

    def __init__(
        self,
        client,
        templates,
        selector: ValidatorSelector | None = None,
        catalog: ValidatorCatalog | None = None,
        ceremony: str = "sprint-planning",
        stage: str = "validation",
        max_feedback: int = MAX_FEEDBACK,
    ) -> None:
        self.client = client
        self.templates = templates
        self.catalog = catalog or ValidatorCatalog()
        self.selector = selector or ValidatorSelector(self.catalog)
        self.ceremony = ceremony
        self.stage = stage
        self.logger = get_logger("validation.orchestrator")
        self.max_feedback = max_feedback
        self._feedback: OrderedDict[str, AggregatedReport] = OrderedDict()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def validate(
        self,
        item: WorkItem,
        context: str,
        parent: WorkItem | None = None,
    ) -> AggregatedReport:
        """Validate *item* with every selected validator.

        *context* is the item's context document; *parent* is the epic a
        story belongs to.
        """
        self._transition(item, RunState.SELECTING)
        selection = await self.selector.select(item, parent)

        self._transition(item, RunState.DISPATCHING, validators=len(selection.validator_ids))
        template, values = validation_prompt(item, context, parent)
        tasks = [
            self._run_validator(validator_id, template, values)
            for validator_id in selection.validator_ids
        ]

        self._transition(item, RunState.COLLECTING)
        outcomes = list(await asyncio.gather(*tasks))

        self._transition(item, RunState.AGGREGATING)
        report = self.aggregate(item, selection, outcomes)
        self._remember(item.id, report)

        self._transition(
            item,
            RunState.DONE,
            consensus_score=report.consensus_score,
            failed=report.failed_validator_ids,
            ready_for_use=report.ready_for_use,
        )
        return report

    def get_feedback(self, work_item_id: str) -> AggregatedReport | None:
        """Last report produced for *work_item_id*, if any."""
        return self._feedback.get(work_item_id)

    def clear_feedback(self) -> None:
        self._feedback.clear()

    @staticmethod
    def aggregate(
        item: WorkItem,
        selection: ValidatorSelection,
        outcomes: list[ValidatorOutcome],
    ) -> AggregatedReport:
        verdicts = [o.verdict for o in outcomes if o.succeeded and o.verdict is not None]
        failed = [o.validator_id for o in outcomes if not o.succeeded]

        consensus = (
            round(sum(v.overall_score for v in verdicts) / len(verdicts), 2) if verdicts else 0.0
        )

        issues = {Severity.CRITICAL: [], Severity.MAJOR: [], Severity.MINOR: []}
        strengths: list[str] = []
        priorities: Counter[str] = Counter()
        for verdict in verdicts:
            domain = verdict.validator_id.split("-", 2)[-1] if verdict.validator_id else None
            for issue in verdict.issues:
                issues[issue.severity].append(
                    issue.model_copy(update={"validator_id": verdict.validator_id, "domain": domain})
                )
            for strength in verdict.strengths:
                if not any(_similar(strength, kept) for kept in strengths):
                    strengths.append(strength)
            priorities.update(verdict.improvement_priorities)

        overall_status = (
            max((v.validation_status for v in verdicts), key=lambda s: s.rank) if verdicts else None
        )
        critical_count = sum(v.critical_count for v in verdicts)
        ready = bool(verdicts) and all(v.ready_for_use for v in verdicts) and critical_count == 0

        return AggregatedReport(
            work_item_id=item.id,
            work_item_type=item.type,
            selection=selection,
            outcomes=outcomes,
            verdicts=verdicts,
            failed_validator_ids=failed,
            consensus_score=consensus,
            critical_count=critical_count,
            major_count=sum(v.major_count for v in verdicts),
            minor_count=sum(v.minor_count for v in verdicts),
            critical_issues=issues[Severity.CRITICAL],
            major_issues=issues[Severity.MAJOR],
            minor_issues=issues[Severity.MINOR],
            strengths=strengths,
            improvement_priorities=[
                RankedPriority(priority=p, mentioned_by=n)
                for p, n in priorities.most_common(TOP_PRIORITIES)
            ],
            overall_status=overall_status,
            ready_for_use=ready,
        )

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _run_validator(
        self,
        validator_id: str,
        template: str,
        values: dict[str, object],
    ) -> ValidatorOutcome:
        """Run one validator.  Always returns an outcome, never raises."""
        start = time.monotonic()
        try:
            spec = self.catalog.get(validator_id)
            instructions = await self.templates.load(spec.template_reference)
            result = await self.client.generate_structured(
                self.ceremony,
                self.stage,
                template,
                values=values,
                agent_instructions=instructions,
                validation_type=ModelResolver.validation_type_for(validator_id),
                schema=ValidationVerdict,
            )
            verdict = result.data.model_copy(update={"validator_id": validator_id})
        except ProviderError as exc:
            return self._failed(validator_id, exc, exc.kind.value, start)
        except CeremonyEngineError as exc:
            return self._failed(validator_id, exc, type(exc).__name__, start)
        except Exception as exc:
            # Catch-all so one validator never sinks the run.
            self.logger.error(
                "validator_unexpected_error",
                validator=validator_id,
                error=str(exc),
                traceback=traceback.format_exc(),
            )
            return self._failed(validator_id, exc, type(exc).__name__, start)

        duration = round(time.monotonic() - start, 4)
        self.logger.info(
            "validator_complete",
            validator=validator_id,
            score=verdict.overall_score,
            status=verdict.validation_status.value,
            duration=duration,
        )
        return ValidatorOutcome(
            validator_id=validator_id,
            status=OutcomeStatus.SUCCEEDED,
            verdict=verdict,
            duration_seconds=duration,
        )

    def _failed(
        self,
        validator_id: str,
        exc: BaseException,
        kind: str,
        start: float,
    ) -> ValidatorOutcome:
        self.logger.warning("validator_failed", validator=validator_id, kind=kind, error=str(exc))
        return ValidatorOutcome(
            validator_id=validator_id,
            status=OutcomeStatus.FAILED,
            error=str(exc),
            error_kind=kind,
            duration_seconds=round(time.monotonic() - start, 4),
        )

    def _remember(self, work_item_id: str, report: AggregatedReport) -> None:
        self._feedback.pop(work_item_id, None)
        self._feedback[work_item_id] = report
        while len(self._feedback) > self.max_feedback:
            self._feedback.popitem(last=False)

    def _transition(self, item: WorkItem, state: RunState, **context) -> None:
        self.logger.info(
            "validation_state",
            work_item_id=item.id,
            work_item_type=item.type.value,
            state=state.value,
            **context,
        )


def _similar(a: str, b: str) -> bool:
    """Case-insensitive containment in either direction."""
    x, y = a.lower(), b.lower()
    return x in y or y in x
