"""Tests for validator catalog and selection."""
import json

import pytest

from ceremony_engine.core.validation.catalog import ValidatorCatalog, normalize_feature
from ceremony_engine.core.validation.models import SelectionMethod, WorkItem, WorkItemType
from ceremony_engine.core.validation.selector import MAX_VALIDATORS, MIN_VALIDATORS, ValidatorSelector
from ceremony_engine.utils.exceptions import AuthError, ValidatorNotFoundError

EPIC_UNIVERSAL = [
    "validator-epic-solution-architect",
    "validator-epic-developer",
    "validator-epic-security",
]
STORY_UNIVERSAL = [
    "validator-story-developer",
    "validator-story-qa",
    "validator-story-test-architect",
]
HAIKU = ("claude", "claude-haiku-4-5")


def _epic(**kwargs):
    return WorkItem(id="context-0001", name="Accounts", type=WorkItemType.EPIC, **kwargs)


class TestCatalog:
    def test_thirty_validators(self):
        catalog = ValidatorCatalog()
        assert len(catalog.all()) == 30
        assert len(catalog.all(WorkItemType.STORY)) == 15

    def test_get(self):
        spec = ValidatorCatalog().get("validator-story-ux")
        assert spec.work_item_type is WorkItemType.STORY
        assert spec.template_reference == "validator-story-ux"
        assert spec.validation_type == "domain"

    def test_unknown_validator(self):
        with pytest.raises(ValidatorNotFoundError):
            ValidatorCatalog().get("validator-epic-astrology")

    def test_is_valid_checks_type(self):
        catalog = ValidatorCatalog()
        assert catalog.is_valid("validator-epic-ui", WorkItemType.EPIC)
        assert not catalog.is_valid("validator-epic-ui", WorkItemType.STORY)
        assert not catalog.is_valid("validator-epic-nope")

    def test_normalize_feature(self):
        assert normalize_feature("Real Time") == "real-time"
        assert normalize_feature("  Data   Storage ") == "data-storage"

    def test_infer_features(self):
        features = ValidatorCatalog.infer_features(
            ["User can Sign In with email", "Admin sees a dashboard"]
        )
        assert features == ["authentication", "reporting"]


class TestStaticSelection:
    @pytest.mark.asyncio
    async def test_epic_universal_domain_and_features(self):
        epic = _epic(domain="user-management", features=["authentication", "testing"])
        selection = await ValidatorSelector().select(epic)

        assert selection.method is SelectionMethod.STATIC
        assert selection.domain_known
        assert selection.validator_ids == EPIC_UNIVERSAL + [
            "validator-epic-backend",
            "validator-epic-database",
            "validator-epic-api",
            "validator-epic-qa",
            "validator-epic-test-architect",
        ]

    @pytest.mark.asyncio
    async def test_story_routes_on_parent_domain(self):
        parent = _epic(domain="api")
        story = WorkItem(
            id="context-0001-0001",
            type=WorkItemType.STORY,
            acceptance=["User can search orders by status"],
        )
        selection = await ValidatorSelector().select(story, parent)

        assert selection.domain_known
        assert selection.validator_ids == STORY_UNIVERSAL + [
            "validator-story-api",
            "validator-story-backend",
            "validator-story-security",
            "validator-story-database",
        ]

    @pytest.mark.asyncio
    async def test_clamped_with_universal_first(self):
        epic = _epic(domain="frontend", features=["deployment", "testing", "database", "mobile"])
        selection = await ValidatorSelector().select(epic)

        assert len(selection.validator_ids) == MAX_VALIDATORS
        assert selection.validator_ids[:3] == EPIC_UNIVERSAL
        assert selection.validator_ids[3:] == [
            "validator-epic-frontend",
            "validator-epic-ui",
            "validator-epic-ux",
            "validator-epic-devops",
            "validator-epic-cloud",
        ]

    @pytest.mark.asyncio
    async def test_unknown_domain_without_classification(self):
        selection = await ValidatorSelector().select(_epic(domain="blockchain"))
        assert selection.validator_ids == EPIC_UNIVERSAL + [
            "validator-epic-qa",
            "validator-epic-test-architect",
        ]
        assert not selection.domain_known
        assert selection.method is SelectionMethod.STATIC

    @pytest.mark.asyncio
    async def test_sparse_story_topped_up_to_floor(self):
        """A story with no domain or feature signals still gets five validators."""
        story = WorkItem(id="context-0003-0001", type=WorkItemType.STORY, domain="quantum")
        selection = await ValidatorSelector().select(story)

        assert len(selection.validator_ids) == MIN_VALIDATORS
        assert selection.validator_ids == STORY_UNIVERSAL + [
            "validator-story-solution-architect",
            "validator-story-security",
        ]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("domain", ["blockchain", "api", "frontend", "user-management"])
    async def test_static_sets_within_bounds(self, domain):
        selection = await ValidatorSelector().select(_epic(domain=domain))
        assert MIN_VALIDATORS <= len(selection.validator_ids) <= MAX_VALIDATORS

    @pytest.mark.asyncio
    async def test_no_duplicates(self):
        epic = _epic(domain="api", features=["security", "api", "authentication"])
        selection = await ValidatorSelector().select(epic)
        assert len(selection.validator_ids) == len(set(selection.validator_ids))


class TestCachedSelection:
    @pytest.mark.asyncio
    async def test_selection_stored_in_metadata(self):
        epic = _epic(domain="frontend")
        selector = ValidatorSelector()

        first = await selector.select(epic)
        assert epic.metadata["selected_validators"] == first.validator_ids

        second = await selector.select(epic)
        assert second.method is SelectionMethod.CACHED
        assert second.validator_ids == first.validator_ids

    @pytest.mark.asyncio
    async def test_camel_case_metadata_reused(self):
        epic = WorkItem.model_validate(
            {
                "id": "context-0002",
                "type": "epic",
                "domain": "frontend",
                "metadata": {"selectedValidators": ["validator-epic-ui"]},
            }
        )
        selection = await ValidatorSelector().select(epic)
        assert selection.validator_ids == ["validator-epic-ui"]
        assert selection.method is SelectionMethod.CACHED


class TestClassifiedSelection:
    @pytest.mark.asyncio
    async def test_model_picks_validators(self, client, fake_factory, make_provider, ledger):
        reply = {
            "validators": ["validator-epic-backend", "validator-story-ui", "validator-epic-bogus"],
            "reasoning": "Ledger services are backend heavy.",
        }
        adapter = fake_factory.register(*HAIKU, make_provider(script=[json.dumps(reply)]))
        selector = ValidatorSelector(client=client, smart_selection=True)

        selection = await selector.select(_epic(domain="blockchain", description="Use {{braces}}"))

        assert selection.method is SelectionMethod.CLASSIFIED
        assert selection.validator_ids == EPIC_UNIVERSAL + ["validator-epic-backend", "validator-epic-qa"]
        assert "Use {{braces}}" in adapter.calls[0]["prompt"]
        assert "validator-epic-mobile" in adapter.calls[0]["prompt"]
        assert ledger.get_ceremony_all_time("sprint-planning").executions == 1

    @pytest.mark.asyncio
    async def test_known_domain_skips_classification(self, client, fake_factory, make_provider):
        adapter = fake_factory.register(*HAIKU, make_provider(script=[]))
        selector = ValidatorSelector(client=client, smart_selection=True)
        await selector.select(_epic(domain="frontend"))
        assert adapter.calls == []

    @pytest.mark.asyncio
    async def test_failure_falls_back_to_static(self, client, fake_factory, make_provider):
        fake_factory.register(*HAIKU, make_provider(script=[AuthError("claude", "bad key")]))
        selector = ValidatorSelector(client=client, smart_selection=True)

        selection = await selector.select(_epic(domain="blockchain", features=["monitoring"]))

        assert selection.method is SelectionMethod.STATIC
        assert selection.validator_ids == EPIC_UNIVERSAL + ["validator-epic-devops", "validator-epic-qa"]

    @pytest.mark.asyncio
    async def test_missing_selector_template_falls_back(self, client, fake_factory, make_provider, template_store):
        adapter = fake_factory.register(*HAIKU, make_provider(script=['{"validators": []}']))
        selector = ValidatorSelector(client=client, templates=template_store, smart_selection=True)

        selection = await selector.select(_epic(domain="blockchain"))

        assert selection.validator_ids == EPIC_UNIVERSAL + [
            "validator-epic-qa",
            "validator-epic-test-architect",
        ]
        assert adapter.calls == []

    @pytest.mark.asyncio
    async def test_selector_template_used_as_instructions(
        self, client, fake_factory, make_provider, template_store, templates_dir
    ):
        (templates_dir / "validator-selector.md").write_text("You pick reviewers.", encoding="utf-8")
        adapter = fake_factory.register(
            *HAIKU, make_provider(script=['{"validators": ["validator-epic-data"]}'])
        )
        selector = ValidatorSelector(client=client, templates=template_store, smart_selection=True)

        selection = await selector.select(_epic(domain="blockchain"))

        assert adapter.calls[0]["prompt"].startswith("You pick reviewers.\n\n")
        assert "validator-epic-data" in selection.validator_ids
