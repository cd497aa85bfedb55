"""Usage counter definitions for the metering pipeline.

Each :class:`UsageEntry` is one append-only row in ``usage_logs``: an
organization id, a set of non-negative counters, and a timestamp.
Entries are never updated; totals are always recomputed by summation
over a time window.
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_validator


class UsageCounter(str, Enum):
    """Metered counters, one column each in ``usage_logs``."""

    BUILD_MINUTES = "build_minutes"
    PIPELINES_RUN = "pipelines_run"
    PROVIDER_API_CALLS = "provider_api_calls"
    UPLOADED_FILES = "uploaded_files"
    DELETED_FILES = "deleted_files"
    RESTORED_FILES = "restored_files"
    DIFFS_VIEWED = "diffs_viewed"
    AI_REQUESTS = "ai_requests"


COUNTER_NAMES: tuple[str, ...] = tuple(c.value for c in UsageCounter)


class UsageEntry(BaseModel):
    """A single usage log append.

    Attributes
    ----------
    org_id:
        The organization the usage belongs to.
    counters:
        Counter name to non-negative integer amount.  Counters that are
        not named are recorded as zero.
    is_cycle_reset:
        Marks the zero-valued boundary row written by a cycle reset.
    timestamp:
        When the usage occurred (UTC).
    metadata:
        Free-form context (file id, build id, source route).
    """

    org_id: str
    counters: dict[UsageCounter, int] = Field(default_factory=dict)
    is_cycle_reset: bool = False
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
    metadata: dict[str, Any] = Field(default_factory=dict)

    @field_validator("counters")
    @classmethod
    def _non_negative(cls, value: dict[UsageCounter, int]) -> dict[UsageCounter, int]:
        for counter, amount in value.items():
            if amount < 0:
                raise ValueError(f"Usage counter {counter.value} must be non-negative, got {amount}")
        return value

    def column_values(self) -> dict[str, int]:
        """Return every counter column with zeros filled in."""
        values = dict.fromkeys(COUNTER_NAMES, 0)
        for counter, amount in self.counters.items():
            values[counter.value] = amount
        return values


class UsageTotals(BaseModel):
    """Summed counters over a window.  Every counter is always present."""

    build_minutes: int = 0
    pipelines_run: int = 0
    provider_api_calls: int = 0
    uploaded_files: int = 0
    deleted_files: int = 0
    restored_files: int = 0
    diffs_viewed: int = 0
    ai_requests: int = 0

    def get(self, counter: UsageCounter) -> int:
        return getattr(self, counter.value)
