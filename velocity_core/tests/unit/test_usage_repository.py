"""Tests for UsageLogRepository aggregation over SQLite.

Covers:
- Window sums equal the sum of appended counters, in any order
- Organization isolation
- A cycle reset marker starts an all-zero window
- Per-day totals and the admin delete
"""

from __future__ import annotations

import random
from datetime import UTC, datetime, timedelta

import pytest
from sqlalchemy.ext.asyncio import AsyncSession
from velocity_core.metering.aggregator import sum_entries
from velocity_core.metering.events import UsageCounter, UsageEntry, UsageTotals
from velocity_core.state.repository import UsageLogRepository
from velocity_core.state.tables import OrganizationTable

_BASE = datetime(2026, 5, 1, 12, 0, tzinfo=UTC)


def _entry(org_id: str, at: datetime, **counters: int) -> UsageEntry:
    return UsageEntry(org_id=org_id, timestamp=at, counters={UsageCounter(k): v for k, v in counters.items()})


class TestUsageAggregation:
    @pytest.mark.asyncio
    async def test_empty_window_is_zero(self, async_session: AsyncSession, org: OrganizationTable) -> None:
        repo = UsageLogRepository(async_session, org.id)
        assert await repo.sum_window() == UsageTotals()

    @pytest.mark.asyncio
    async def test_sum_matches_appended(self, async_session: AsyncSession, org: OrganizationTable) -> None:
        repo = UsageLogRepository(async_session, org.id)
        entries = [
            _entry(org.id, _BASE + timedelta(minutes=i), build_minutes=i, pipelines_run=1, ai_requests=i % 3)
            for i in range(12)
        ]
        random.Random(3).shuffle(entries)
        for entry in entries:
            await repo.append(entry)

        assert await repo.sum_window() == sum_entries(entries)

    @pytest.mark.asyncio
    async def test_duplicate_appends_count_twice(self, async_session: AsyncSession, org: OrganizationTable) -> None:
        repo = UsageLogRepository(async_session, org.id)
        entry = _entry(org.id, _BASE, build_minutes=5)
        await repo.append(entry)
        await repo.append(entry)
        assert (await repo.sum_window()).build_minutes == 10

    @pytest.mark.asyncio
    async def test_window_bounds_are_half_open(self, async_session: AsyncSession, org: OrganizationTable) -> None:
        repo = UsageLogRepository(async_session, org.id)
        await repo.append(_entry(org.id, _BASE, pipelines_run=1))
        await repo.append(_entry(org.id, _BASE + timedelta(hours=1), pipelines_run=10))

        totals = await repo.sum_window(_BASE, _BASE + timedelta(hours=1))
        assert totals.pipelines_run == 1

    @pytest.mark.asyncio
    async def test_other_organizations_excluded(
        self, async_session: AsyncSession, org: OrganizationTable, other_org: OrganizationTable
    ) -> None:
        await UsageLogRepository(async_session, org.id).append(_entry(org.id, _BASE, build_minutes=7))
        await UsageLogRepository(async_session, other_org.id).append(_entry(other_org.id, _BASE, build_minutes=99))

        totals = await UsageLogRepository(async_session, org.id).sum_window()
        assert totals.build_minutes == 7

    @pytest.mark.asyncio
    async def test_foreign_entry_rejected(
        self, async_session: AsyncSession, org: OrganizationTable, other_org: OrganizationTable
    ) -> None:
        repo = UsageLogRepository(async_session, org.id)
        with pytest.raises(ValueError):
            await repo.append(_entry(other_org.id, _BASE, build_minutes=1))

    @pytest.mark.asyncio
    async def test_cycle_reset_window_is_zero(self, async_session: AsyncSession, org: OrganizationTable) -> None:
        repo = UsageLogRepository(async_session, org.id)
        await repo.append(_entry(org.id, _BASE, build_minutes=180, pipelines_run=40))
        reset_at = _BASE + timedelta(days=1)
        marker = UsageEntry(org_id=org.id, timestamp=reset_at, is_cycle_reset=True)
        row = await repo.append(marker)

        assert row.is_cycle_reset
        assert await repo.sum_window(since=reset_at) == UsageTotals()
        assert (await repo.sum_window()).build_minutes == 180


class TestUsageListing:
    @pytest.mark.asyncio
    async def test_list_window_newest_first(self, async_session: AsyncSession, org: OrganizationTable) -> None:
        repo = UsageLogRepository(async_session, org.id)
        for i in range(3):
            await repo.append(_entry(org.id, _BASE + timedelta(minutes=i), diffs_viewed=i + 1))

        rows, total = await repo.list_window(limit=2)
        assert total == 3
        assert [r.diffs_viewed for r in rows] == [3, 2]

    @pytest.mark.asyncio
    async def test_metadata_persisted(self, async_session: AsyncSession, org: OrganizationTable) -> None:
        repo = UsageLogRepository(async_session, org.id)
        entry = UsageEntry(
            org_id=org.id, timestamp=_BASE, counters={UsageCounter.UPLOADED_FILES: 1}, metadata={"file_id": "f-1"}
        )
        row = await repo.append(entry)
        assert row.metadata_json == {"file_id": "f-1"}

    @pytest.mark.asyncio
    async def test_daily_totals(self, async_session: AsyncSession, org: OrganizationTable) -> None:
        repo = UsageLogRepository(async_session, org.id)
        await repo.append(_entry(org.id, _BASE, build_minutes=2))
        await repo.append(_entry(org.id, _BASE + timedelta(hours=2), build_minutes=3))
        await repo.append(_entry(org.id, _BASE + timedelta(days=1), build_minutes=4))

        days = await repo.daily_totals(_BASE - timedelta(days=1))
        assert [d["build_minutes"] for d in days] == [5, 4]
        assert days[0]["date"] == "2026-05-01"

    @pytest.mark.asyncio
    async def test_delete_window(self, async_session: AsyncSession, org: OrganizationTable) -> None:
        repo = UsageLogRepository(async_session, org.id)
        await repo.append(_entry(org.id, _BASE, build_minutes=2))
        await repo.append(_entry(org.id, _BASE + timedelta(days=2), build_minutes=3))

        deleted = await repo.delete_window(since=_BASE + timedelta(days=1))
        assert deleted == 1
        assert (await repo.sum_window()).build_minutes == 2
