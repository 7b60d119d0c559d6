"""Fixed validator catalog and routing matrices.

Validator ids follow ``validator-<epic|story>-<role>`` and double as the
template reference (``<templates_dir>/<id>.md``).
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict

from ceremony_engine.core.ceremony.resolver import ModelResolver
from ceremony_engine.core.validation.models import WorkItemType
from ceremony_engine.utils.exceptions import ValidatorNotFoundError

ROLES = (
    "solution-architect",
    "developer",
    "security",
    "devops",
    "cloud",
    "backend",
    "database",
    "api",
    "frontend",
    "ui",
    "ux",
    "mobile",
    "data",
    "qa",
    "test-architect",
)

EPIC_MATRIX: dict = {
    "universal": [
        "validator-epic-solution-architect",
        "validator-epic-developer",
        "validator-epic-security",
    ],
    "domains": {
        "infrastructure": ["validator-epic-devops", "validator-epic-cloud", "validator-epic-backend"],
        "user-management": [
            "validator-epic-backend",
            "validator-epic-database",
            "validator-epic-security",
            "validator-epic-api",
        ],
        "frontend": ["validator-epic-frontend", "validator-epic-ui", "validator-epic-ux"],
        "mobile": [
            "validator-epic-mobile",
            "validator-epic-ui",
            "validator-epic-ux",
            "validator-epic-api",
        ],
        "data-processing": ["validator-epic-data", "validator-epic-database", "validator-epic-backend"],
        "api": ["validator-epic-api", "validator-epic-backend", "validator-epic-security"],
        "analytics": ["validator-epic-data", "validator-epic-backend", "validator-epic-database"],
        "communication": ["validator-epic-backend", "validator-epic-api", "validator-epic-security"],
    },
    "features": {
        "authentication": ["validator-epic-security"],
        "authorization": ["validator-epic-security"],
        "database": ["validator-epic-database"],
        "testing": ["validator-epic-qa", "validator-epic-test-architect"],
        "deployment": ["validator-epic-devops", "validator-epic-cloud"],
        "api": ["validator-epic-api"],
        "ui": ["validator-epic-ui", "validator-epic-ux"],
        "mobile": ["validator-epic-mobile"],
        "real-time": ["validator-epic-backend", "validator-epic-api"],
        "data-storage": ["validator-epic-database", "validator-epic-data"],
        "logging": ["validator-epic-devops"],
        "monitoring": ["validator-epic-devops"],
        "security": ["validator-epic-security"],
    },
}

STORY_MATRIX: dict = {
    "universal": [
        "validator-story-developer",
        "validator-story-qa",
        "validator-story-test-architect",
    ],
    "domains": {
        "infrastructure": ["validator-story-devops", "validator-story-cloud", "validator-story-backend"],
        "user-management": [
            "validator-story-backend",
            "validator-story-database",
            "validator-story-security",
            "validator-story-api",
            "validator-story-ux",
        ],
        "frontend": ["validator-story-frontend", "validator-story-ui", "validator-story-ux"],
        "mobile": ["validator-story-mobile", "validator-story-ui", "validator-story-ux"],
        "data-processing": [
            "validator-story-data",
            "validator-story-database",
            "validator-story-backend",
        ],
        "api": ["validator-story-api", "validator-story-backend", "validator-story-security"],
        "analytics": ["validator-story-data", "validator-story-backend", "validator-story-database"],
        "communication": ["validator-story-backend", "validator-story-api", "validator-story-security"],
    },
    "features": {
        "authentication": ["validator-story-security"],
        "crud-operations": ["validator-story-database", "validator-story-api"],
        "search": ["validator-story-database", "validator-story-backend"],
        "real-time": ["validator-story-api", "validator-story-backend"],
        "responsive-design": ["validator-story-ui", "validator-story-frontend"],
        "file-upload": ["validator-story-backend", "validator-story-api"],
        "notifications": ["validator-story-backend", "validator-story-api"],
        "reporting": ["validator-story-data", "validator-story-backend"],
    },
}

# Keyword groups used to infer story features from acceptance criteria.
ACCEPTANCE_KEYWORDS: dict[str, tuple[str, ...]] = {
    "authentication": ("login", "authenticate", "sign in"),
    "crud-operations": ("create", "update", "delete", "edit"),
    "search": ("search", "filter", "find"),
    "real-time": ("real-time", "websocket", "live"),
    "responsive-design": ("mobile", "responsive", "tablet"),
    "file-upload": ("upload", "file", "attachment"),
    "notifications": ("notify", "notification", "alert"),
    "reporting": ("report", "analytics", "dashboard"),
}


class ValidatorSpec(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    work_item_type: WorkItemType
    domain: str
    template_reference: str
    validation_type: str


def normalize_feature(feature: str) -> str:
    """``"Real Time"`` -> ``"real-time"``."""
    return "-".join(feature.lower().split())


class ValidatorCatalog:
    """Enumerates every validator and exposes the routing matrices."""

    def __init__(self) -> None:
        self._matrices = {WorkItemType.EPIC: EPIC_MATRIX, WorkItemType.STORY: STORY_MATRIX}
        self._specs: dict[str, ValidatorSpec] = {}
        for item_type in WorkItemType:
            for role in ROLES:
                validator_id = f"validator-{item_type.value}-{role}"
                self._specs[validator_id] = ValidatorSpec(
                    id=validator_id,
                    work_item_type=item_type,
                    domain=role,
                    template_reference=validator_id,
                    validation_type=ModelResolver.validation_type_for(validator_id),
                )

    def get(self, validator_id: str) -> ValidatorSpec:
        try:
            return self._specs[validator_id]
        except KeyError:
            raise ValidatorNotFoundError(validator_id) from None

    def is_valid(self, validator_id: str, item_type: WorkItemType | None = None) -> bool:
        spec = self._specs.get(validator_id)
        if spec is None:
            return False
        return item_type is None or spec.work_item_type is item_type

    def all(self, item_type: WorkItemType | None = None) -> list[ValidatorSpec]:
        return [s for s in self._specs.values() if item_type is None or s.work_item_type is item_type]

    def universal(self, item_type: WorkItemType) -> list[str]:
        return list(self._matrices[item_type]["universal"])

    def is_known_domain(self, item_type: WorkItemType, domain: str) -> bool:
        return domain in self._matrices[item_type]["domains"]

    def for_domain(self, item_type: WorkItemType, domain: str) -> list[str]:
        return list(self._matrices[item_type]["domains"].get(domain, []))

    def for_feature(self, item_type: WorkItemType, feature: str) -> list[str]:
        return list(self._matrices[item_type]["features"].get(normalize_feature(feature), []))

    @staticmethod
    def infer_features(acceptance: list[str]) -> list[str]:
        text = " ".join(acceptance or []).lower()
        return [
            feature
            for feature, keywords in ACCEPTANCE_KEYWORDS.items()
            if any(keyword in text for keyword in keywords)
        ]
