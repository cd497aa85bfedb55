"""Billing cycle windows."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

CYCLE_LENGTH = timedelta(days=30)


@dataclass(frozen=True)
class CycleWindow:
    """A half-open ``[start, end)`` billing window."""

    start: datetime
    end: datetime


def new_cycle_window(now: datetime | None = None) -> CycleWindow:
    """Return a fresh 30-day window starting at *now* (UTC)."""
    start = now or datetime.now(UTC)
    return CycleWindow(start=start, end=start + CYCLE_LENGTH)


def default_usage_window(cycle_start: datetime | None, now: datetime | None = None) -> datetime:
    """Return the start of the default aggregation window.

    Organizations that have never had a cycle reset aggregate over the
    trailing 30 days.
    """
    if cycle_start is not None:
        return cycle_start
    return (now or datetime.now(UTC)) - CYCLE_LENGTH


def cycle_ended(cycle_end: datetime | None, now: datetime | None = None) -> bool:
    """Return True when the cycle has ended or was never started.

    Naive timestamps are read as UTC.
    """
    if cycle_end is None:
        return True
    if cycle_end.tzinfo is None:
        cycle_end = cycle_end.replace(tzinfo=UTC)
    return cycle_end <= (now or datetime.now(UTC))
