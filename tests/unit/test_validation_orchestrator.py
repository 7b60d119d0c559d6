"""Tests for concurrent multi-validator orchestration and aggregation."""
import asyncio
import json
import re
from types import SimpleNamespace

import pytest

from ceremony_engine.core.validation.models import (
    OutcomeStatus,
    ValidationStatus,
    ValidationVerdict,
    ValidatorOutcome,
    ValidatorSelection,
    WorkItem,
    WorkItemType,
)
from ceremony_engine.core.validation.orchestrator import ValidationOrchestrator
from ceremony_engine.utils.exceptions import InvalidResponseError

# Domain "frontend" selects exactly these six epic validators.
FRONTEND_VALIDATORS = [
    "validator-epic-solution-architect",
    "validator-epic-developer",
    "validator-epic-security",
    "validator-epic-frontend",
    "validator-epic-ui",
    "validator-epic-ux",
]

_VALIDATOR_RE = re.compile(r"You are (\S+)\. Return JSON\.")


def _verdict(score, status="acceptable", issues=(), strengths=(), priorities=(), ready=None):
    payload = {
        "validationStatus": status,
        "overallScore": score,
        "issues": list(issues),
        "strengths": list(strengths),
        "improvementPriorities": list(priorities),
    }
    if ready is not None:
        payload["readyForUse"] = ready
    return payload


def _responder(replies):
    """Answer each validator call by the validator id found in the prompt."""

    def respond(prompt):
        validator_id = _VALIDATOR_RE.search(prompt).group(1)
        reply = replies[validator_id]
        if isinstance(reply, BaseException):
            return reply
        return json.dumps(reply)

    return respond


@pytest.fixture
def epic():
    return WorkItem(
        id="context-0001",
        name="Storefront",
        type=WorkItemType.EPIC,
        domain="frontend",
        description="Customer-facing shop with {{curly}} branding",
        features=["catalog browsing", "cart"],
    )


@pytest.fixture
def orchestrator(client, template_store, write_templates):
    write_templates(FRONTEND_VALIDATORS)
    return ValidationOrchestrator(client, template_store)


@pytest.fixture
def answer(fake_factory, make_provider):
    def _answer(replies):
        provider = make_provider(responder=_responder(replies))
        fake_factory.default = provider
        return provider
    return _answer


class TestValidate:
    @pytest.mark.asyncio
    async def test_one_failure_does_not_sink_the_run(self, orchestrator, answer, epic, ledger):
        """Six validators, the third fails: five verdicts and one failure."""
        scores = dict(zip(FRONTEND_VALIDATORS, [80, 90, None, 70, 60, 100]))
        replies = {vid: _verdict(score) for vid, score in scores.items() if score is not None}
        replies["validator-epic-security"] = InvalidResponseError("claude", "not json")
        answer(replies)

        report = await orchestrator.validate(epic, "# Storefront context")

        assert report.selection.validator_ids == FRONTEND_VALIDATORS
        assert report.failed_validator_ids == ["validator-epic-security"]
        assert len(report.verdicts) == 5
        assert report.consensus_score == 80.0
        assert [o.validator_id for o in report.outcomes] == FRONTEND_VALIDATORS

        failed = report.outcomes[2]
        assert failed.status is OutcomeStatus.FAILED
        assert failed.error_kind == "invalid_response"
        assert failed.verdict is None

        assert ledger.get_ceremony_all_time("sprint-planning").executions == 5

    @pytest.mark.asyncio
    async def test_prompt_carries_item_and_instructions(self, orchestrator, answer, epic):
        provider = answer({vid: _verdict(75) for vid in FRONTEND_VALIDATORS})

        await orchestrator.validate(epic, "context body")

        prompts = [call["prompt"] for call in provider.calls]
        assert len(prompts) == 6
        ux_prompt = next(p for p in prompts if "You are validator-epic-ux." in p)
        assert "**Epic Name:** Storefront" in ux_prompt
        assert "{{curly}}" in ux_prompt
        assert "- catalog browsing\n- cart" in ux_prompt
        assert "context body" in ux_prompt
        assert all(call["json_mode"] for call in provider.calls)

    @pytest.mark.asyncio
    async def test_verdicts_tagged_with_validator(self, orchestrator, answer, epic):
        answer({vid: _verdict(75) for vid in FRONTEND_VALIDATORS})
        report = await orchestrator.validate(epic, "ctx")
        assert [v.validator_id for v in report.verdicts] == FRONTEND_VALIDATORS

    @pytest.mark.asyncio
    async def test_critical_issue_blocks_readiness(self, orchestrator, answer, epic):
        replies = {vid: _verdict(90, ready=True) for vid in FRONTEND_VALIDATORS}
        replies["validator-epic-solution-architect"] = _verdict(
            85,
            issues=[{"severity": "critical", "description": "No data model"}],
            ready=True,
        )
        answer(replies)

        report = await orchestrator.validate(epic, "ctx")

        assert report.critical_count == 1
        assert not report.ready_for_use
        [issue] = report.critical_issues
        assert issue.validator_id == "validator-epic-solution-architect"
        assert issue.domain == "solution-architect"

    @pytest.mark.asyncio
    async def test_all_ready_means_ready(self, orchestrator, answer, epic):
        answer({vid: _verdict(90, status="excellent") for vid in FRONTEND_VALIDATORS})
        report = await orchestrator.validate(epic, "ctx")
        assert report.ready_for_use
        assert report.overall_status is ValidationStatus.EXCELLENT

    @pytest.mark.asyncio
    async def test_missing_template_is_a_failed_outcome(self, client, template_store, write_templates, answer, epic):
        write_templates(FRONTEND_VALIDATORS[:-1])
        answer({vid: _verdict(70) for vid in FRONTEND_VALIDATORS})

        report = await ValidationOrchestrator(client, template_store).validate(epic, "ctx")

        assert report.failed_validator_ids == ["validator-epic-ux"]
        assert report.outcomes[-1].error_kind == "TemplateNotFoundError"
        assert report.consensus_score == 70.0

    @pytest.mark.asyncio
    async def test_every_validator_failing(self, orchestrator, answer, epic):
        answer({vid: InvalidResponseError("claude", "empty") for vid in FRONTEND_VALIDATORS})
        report = await orchestrator.validate(epic, "ctx")

        assert report.failed_validator_ids == FRONTEND_VALIDATORS
        assert report.consensus_score == 0.0
        assert report.overall_status is None
        assert not report.ready_for_use

    @pytest.mark.asyncio
    async def test_unexpected_exception_is_contained(self, template_store, write_templates, epic):
        class BrokenClient:
            async def generate_structured(self, *args, **kwargs):
                raise RuntimeError("boom")

        write_templates(FRONTEND_VALIDATORS)
        report = await ValidationOrchestrator(BrokenClient(), template_store).validate(epic, "ctx")

        assert report.failed_validator_ids == FRONTEND_VALIDATORS
        assert report.outcomes[0].error_kind == "RuntimeError"

    @pytest.mark.asyncio
    async def test_validators_run_concurrently(self, template_store, write_templates, epic):
        class SlowClient:
            def __init__(self):
                self.in_flight = 0
                self.peak = 0

            async def generate_structured(self, *args, **kwargs):
                self.in_flight += 1
                self.peak = max(self.peak, self.in_flight)
                await asyncio.sleep(0.01)
                self.in_flight -= 1
                return SimpleNamespace(data=ValidationVerdict(overall_score=50))

        write_templates(FRONTEND_VALIDATORS)
        slow = SlowClient()
        await ValidationOrchestrator(slow, template_store).validate(epic, "ctx")
        assert slow.peak == len(FRONTEND_VALIDATORS)

    @pytest.mark.asyncio
    async def test_story_prompt_includes_parent(self, client, template_store, write_templates, answer):
        story_validators = [
            "validator-story-developer",
            "validator-story-qa",
            "validator-story-test-architect",
            "validator-story-frontend",
            "validator-story-ui",
            "validator-story-ux",
        ]
        write_templates(story_validators)
        provider = answer({vid: _verdict(60) for vid in story_validators})
        parent = WorkItem(id="context-0001", name="Storefront", domain="frontend")
        story = WorkItem(
            id="context-0001-0001",
            name="Browse catalog",
            type=WorkItemType.STORY,
            user_type="shopper",
            acceptance=["Products show a price"],
        )

        report = await ValidationOrchestrator(client, template_store).validate(story, "ctx", parent)

        assert report.selection.validator_ids == story_validators
        assert "- Name: Storefront" in provider.calls[0]["prompt"]
        assert "1. Products show a price" in provider.calls[0]["prompt"]

    @pytest.mark.asyncio
    async def test_get_feedback(self, orchestrator, answer, epic):
        answer({vid: _verdict(75) for vid in FRONTEND_VALIDATORS})
        assert orchestrator.get_feedback(epic.id) is None
        report = await orchestrator.validate(epic, "ctx")
        assert orchestrator.get_feedback(epic.id) is report

    @pytest.mark.asyncio
    async def test_feedback_store_evicts_oldest(self, client, template_store, write_templates, answer):
        """Past max_feedback reports, the least recently validated item is dropped."""
        write_templates(FRONTEND_VALIDATORS)
        answer({vid: _verdict(75) for vid in FRONTEND_VALIDATORS})
        orchestrator = ValidationOrchestrator(client, template_store, max_feedback=2)
        items = [
            WorkItem(id=f"context-000{n}", name=f"Epic {n}", type=WorkItemType.EPIC, domain="frontend")
            for n in (1, 2, 3)
        ]

        reports = [await orchestrator.validate(item, "ctx") for item in items]

        assert orchestrator.get_feedback("context-0001") is None
        assert orchestrator.get_feedback("context-0002") is reports[1]
        assert orchestrator.get_feedback("context-0003") is reports[2]

    @pytest.mark.asyncio
    async def test_revalidation_refreshes_feedback(self, client, template_store, write_templates, answer):
        write_templates(FRONTEND_VALIDATORS)
        answer({vid: _verdict(75) for vid in FRONTEND_VALIDATORS})
        orchestrator = ValidationOrchestrator(client, template_store, max_feedback=2)
        first = WorkItem(id="context-0001", type=WorkItemType.EPIC, domain="frontend")
        second = WorkItem(id="context-0002", type=WorkItemType.EPIC, domain="frontend")
        third = WorkItem(id="context-0003", type=WorkItemType.EPIC, domain="frontend")

        await orchestrator.validate(first, "ctx")
        await orchestrator.validate(second, "ctx")
        latest = await orchestrator.validate(first, "ctx")
        await orchestrator.validate(third, "ctx")

        assert orchestrator.get_feedback("context-0001") is latest
        assert orchestrator.get_feedback("context-0002") is None

    @pytest.mark.asyncio
    async def test_clear_feedback(self, orchestrator, answer, epic):
        answer({vid: _verdict(75) for vid in FRONTEND_VALIDATORS})
        await orchestrator.validate(epic, "ctx")
        orchestrator.clear_feedback()
        assert orchestrator.get_feedback(epic.id) is None

    @pytest.mark.asyncio
    async def test_report_serializes_camel_case(self, orchestrator, answer, epic):
        answer({vid: _verdict(75) for vid in FRONTEND_VALIDATORS})
        report = await orchestrator.validate(epic, "ctx")

        dumped = report.model_dump(by_alias=True, mode="json")
        assert dumped["consensusScore"] == 75.0
        assert dumped["failedValidatorIds"] == []
        assert dumped["verdicts"][0]["validationStatus"] == "acceptable"


def _ok(validator_id, **kwargs):
    verdict = ValidationVerdict.model_validate(_verdict(**kwargs)).model_copy(
        update={"validator_id": validator_id}
    )
    return ValidatorOutcome(validator_id=validator_id, status=OutcomeStatus.SUCCEEDED, verdict=verdict)


class TestAggregate:
    def _aggregate(self, outcomes):
        item = WorkItem(id="context-0009")
        selection = ValidatorSelection(validator_ids=[o.validator_id for o in outcomes])
        return ValidationOrchestrator.aggregate(item, selection, outcomes)

    def test_consensus_rounded(self):
        report = self._aggregate(
            [_ok("validator-epic-ui", score=70), _ok("validator-epic-ux", score=71),
             _ok("validator-epic-api", score=71)]
        )
        assert report.consensus_score == 70.67

    def test_worst_status_wins(self):
        report = self._aggregate(
            [
                _ok("validator-epic-ui", score=90, status="excellent"),
                _ok("validator-epic-ux", score=40, status="needs-improvement"),
                _ok("validator-epic-api", score=70, status="acceptable"),
            ]
        )
        assert report.overall_status is ValidationStatus.NEEDS_IMPROVEMENT
        assert not report.ready_for_use

    def test_similar_strengths_merged(self):
        report = self._aggregate(
            [
                _ok("validator-epic-ui", score=80, strengths=["Clear scope", "Good naming"]),
                _ok("validator-epic-ux", score=80, strengths=["clear scope definition", "Accessible"]),
            ]
        )
        assert report.strengths == ["Clear scope", "Good naming", "Accessible"]

    def test_priorities_ranked_by_mentions(self):
        report = self._aggregate(
            [
                _ok("validator-epic-ui", score=80, priorities=["a", "b", "c", "d"]),
                _ok("validator-epic-ux", score=80, priorities=["b", "c", "e", "f"]),
                _ok("validator-epic-api", score=80, priorities=["c", "g"]),
            ]
        )
        ranked = [(p.priority, p.mentioned_by) for p in report.improvement_priorities]
        assert len(ranked) == 5
        assert ranked[:2] == [("c", 3), ("b", 2)]

    def test_issue_counts_sum_across_verdicts(self):
        issues = [
            {"severity": "major", "description": "x"},
            {"severity": "MINOR", "description": "y"},
            {"severity": "weird", "description": "z"},
        ]
        report = self._aggregate(
            [_ok("validator-epic-ui", score=60, issues=issues), _ok("validator-epic-ux", score=60, issues=issues[:1])]
        )
        assert (report.critical_count, report.major_count, report.minor_count) == (0, 2, 2)
        assert len(report.major_issues) == 2
        assert {i.validator_id for i in report.major_issues} == {"validator-epic-ui", "validator-epic-ux"}


class TestVerdictModel:
    def test_score_clamped(self):
        assert ValidationVerdict(overall_score=140).overall_score == 100.0
        assert ValidationVerdict(overall_score=-3).overall_score == 0.0

    def test_readiness_inferred(self):
        assert ValidationVerdict.model_validate({"validationStatus": "acceptable"}).ready_for_use
        assert not ValidationVerdict.model_validate(
            {"validationStatus": "Needs Improvement"}
        ).ready_for_use
        assert not ValidationVerdict.model_validate(
            {"issues": [{"severity": "critical", "description": "x"}]}
        ).ready_for_use
