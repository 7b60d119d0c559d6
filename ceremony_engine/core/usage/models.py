"""Usage accounting models."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class UsageRecord(BaseModel):
    """One completed generation call.  Never mutated after creation."""

    model_config = ConfigDict(frozen=True)

    ceremony: str
    timestamp: datetime
    input_tokens: int = Field(ge=0)
    output_tokens: int = Field(ge=0)

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


class UsageWindow(BaseModel):
    """Aggregated usage for one bucket (a day, an ISO week, a month or all time).

    Attributes:
        input: Input tokens in the window.
        output: Output tokens in the window.
        total: ``input + output``.
        executions: Number of recorded calls.
        first_execution: ISO timestamp of the first call (all-time buckets).
        last_execution: ISO timestamp of the latest call (all-time buckets).
        date: ``YYYY-MM-DD`` key of a daily bucket.
        week: ``YYYY-Www`` key of a weekly bucket.
        month: ``YYYY-MM`` key of a monthly bucket.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    input: int = 0
    output: int = 0
    total: int = 0
    executions: int = 0
    first_execution: str | None = Field(default=None, alias="firstExecution")
    last_execution: str | None = Field(default=None, alias="lastExecution")
    date: str | None = None
    week: str | None = None
    month: str | None = None
