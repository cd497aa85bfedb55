"""Pure aggregation helpers over usage entries and plan caps.

The database does the summing in production (see
``UsageLogRepository.sum_window``); these helpers turn totals into cap
comparisons, upgrade recommendations and overage charges.  Totals above
a cap are reported as-is, never clamped.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

from velocity_core.metering.events import COUNTER_NAMES, UsageCounter, UsageEntry, UsageTotals
from velocity_core.plans.catalog import LimitName, PlanTier, get_plan

# Counters with a plan cap, and the cap each maps to.
CAPPED_COUNTERS: dict[UsageCounter, LimitName] = {
    UsageCounter.BUILD_MINUTES: LimitName.BUILD_MINUTES,
    UsageCounter.PIPELINES_RUN: LimitName.PIPELINES_RUN,
    UsageCounter.PROVIDER_API_CALLS: LimitName.PROVIDER_API_CALLS,
}

# Per-unit charge for usage above the plan cap.
OVERAGE_RATES: dict[UsageCounter, Decimal] = {
    UsageCounter.BUILD_MINUTES: Decimal("0.02"),
    UsageCounter.PIPELINES_RUN: Decimal("0.15"),
    UsageCounter.PROVIDER_API_CALLS: Decimal("0.0001"),
}

NEAR_LIMIT_RATIO = 0.9

_RECOMMENDATION_TEXT: dict[UsageCounter, str] = {
    UsageCounter.BUILD_MINUTES: "Build minutes",
    UsageCounter.PIPELINES_RUN: "Pipeline runs",
    UsageCounter.PROVIDER_API_CALLS: "Provider API calls",
}


@dataclass(frozen=True)
class CapStatus:
    """Usage of one capped counter against the plan limit."""

    counter: UsageCounter
    used: int
    limit: int | None

    @property
    def exceeded(self) -> bool:
        return self.limit is not None and self.used > self.limit

    @property
    def percent_used(self) -> float | None:
        if self.limit is None:
            return None
        if self.limit == 0:
            return 100.0 if self.used else 0.0
        return round(self.used / self.limit * 100, 1)

    @property
    def near_limit(self) -> bool:
        return self.limit is not None and self.used >= self.limit * NEAR_LIMIT_RATIO

    def to_dict(self) -> dict:
        return {
            "counter": self.counter.value,
            "used": self.used,
            "limit": self.limit,
            "percent_used": self.percent_used,
            "exceeded": self.exceeded,
            "near_limit": self.near_limit,
        }


@dataclass(frozen=True)
class OverageLine:
    """Billable usage above a cap for one counter."""

    counter: UsageCounter
    used: int
    limit: int
    units_over: int
    rate: Decimal
    amount: Decimal

    def to_dict(self) -> dict:
        return {
            "counter": self.counter.value,
            "used": self.used,
            "limit": self.limit,
            "units_over": self.units_over,
            "rate": str(self.rate),
            "amount": str(self.amount),
        }


def sum_entries(entries: Iterable[UsageEntry]) -> UsageTotals:
    """Sum counters across *entries*.  Returns all zeros for no entries."""
    sums = dict.fromkeys(COUNTER_NAMES, 0)
    for entry in entries:
        for counter, amount in entry.counters.items():
            sums[counter.value] += amount
    return UsageTotals(**sums)


def compare_to_caps(totals: UsageTotals, plan_id: str | PlanTier | None) -> list[CapStatus]:
    """Compare each capped counter in *totals* with the plan's cap."""
    plan = get_plan(plan_id)
    return [
        CapStatus(counter=counter, used=totals.get(counter), limit=plan.limit(limit))
        for counter, limit in CAPPED_COUNTERS.items()
    ]


def recommendations(statuses: Iterable[CapStatus]) -> list[str]:
    """Build upgrade nudges for counters at or above 90% of their cap."""
    messages: list[str] = []
    for status in statuses:
        label = _RECOMMENDATION_TEXT[status.counter]
        if status.exceeded:
            messages.append(f"{label} exceeded the plan limit ({status.used}/{status.limit}). Upgrade recommended.")
        elif status.near_limit:
            messages.append(f"{label} are nearing the plan limit ({status.used}/{status.limit}). Consider upgrading.")
    return messages


def compute_usage_overage(totals: UsageTotals, plan_id: str | PlanTier | None) -> list[OverageLine]:
    """Price the usage above each cap at the per-unit overage rate.

    Unlimited caps never produce overage.  Amounts are rounded to cents.
    """
    lines: list[OverageLine] = []
    for status in compare_to_caps(totals, plan_id):
        if status.limit is None or not status.exceeded:
            continue
        units_over = status.used - status.limit
        rate = OVERAGE_RATES[status.counter]
        amount = (rate * units_over).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
        lines.append(
            OverageLine(
                counter=status.counter,
                used=status.used,
                limit=status.limit,
                units_over=units_over,
                rate=rate,
                amount=amount,
            )
        )
    return lines
