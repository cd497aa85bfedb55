"""DevVelocity usage metering.

Append-only usage counters per organization, summed over the billing
cycle window and compared against plan caps.
"""

from velocity_core.metering.aggregator import (
    CapStatus,
    OverageLine,
    compare_to_caps,
    compute_usage_overage,
    recommendations,
    sum_entries,
)
from velocity_core.metering.events import UsageCounter, UsageEntry, UsageTotals

__all__ = [
    "CapStatus",
    "OverageLine",
    "UsageCounter",
    "UsageEntry",
    "UsageTotals",
    "compare_to_caps",
    "compute_usage_overage",
    "recommendations",
    "sum_entries",
]
