"""Ceremony configuration models.

Mirrors the persisted ``avc.json`` document.  Keys on disk are camelCase
(``defaultModel``, ``validationTypes``); Python attributes are snake_case and
both spellings are accepted on input.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class ModelOverride(BaseModel):
    """One scope's partial {provider, model} override."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    provider: str | None = None
    model: str | None = None


class StageConfig(ModelOverride):
    validation_types: dict[str, ModelOverride] = Field(
        default_factory=dict, alias="validationTypes"
    )


class CeremonyConfig(BaseModel):
    """Settings for one named ceremony.

    Attributes:
        name: Ceremony name, e.g. ``"sprint-planning"``.
        provider: Backend family used when no stage overrides it.
        default_model: Model used when no stage overrides it.
        stages: Per-stage overrides keyed by stage id.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    name: str
    provider: str | None = None
    default_model: str | None = Field(default=None, alias="defaultModel")
    stages: dict[str, StageConfig] = Field(default_factory=dict)


class CeremonyConfigSnapshot(BaseModel):
    """An immutable view of every ceremony's configuration at load time."""

    model_config = ConfigDict(frozen=True)

    ceremonies: tuple[CeremonyConfig, ...] = ()

    def get(self, name: str) -> CeremonyConfig | None:
        for ceremony in self.ceremonies:
            if ceremony.name == name:
                return ceremony
        return None


class SelectionSource(str, Enum):
    """Which configuration scope supplied the resolved model."""

    VALIDATION_TYPE = "validation_type"
    STAGE = "stage"
    CEREMONY = "ceremony"
    GLOBAL = "global"


class ModelSelection(BaseModel):
    model_config = ConfigDict(frozen=True)

    provider: str
    model: str
    source: SelectionSource
