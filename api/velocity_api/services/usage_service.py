"""Usage logging and aggregation for one organization.

Usage rows are appended synchronously inside the request transaction and
never updated.  Totals are always recomputed from the rows in the
window, so duplicate logs count twice.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta
from decimal import Decimal
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession
from velocity_core.billing.cycle import default_usage_window
from velocity_core.metering.aggregator import compare_to_caps, compute_usage_overage, recommendations
from velocity_core.metering.events import UsageCounter, UsageEntry, UsageTotals
from velocity_core.state.repository import OrganizationRepository, UsageLogRepository
from velocity_core.state.tables import UsageLogTable

from velocity_api.middleware.prometheus import USAGE_ROWS_TOTAL

logger = logging.getLogger(__name__)


def usage_row_to_dict(row: UsageLogTable) -> dict[str, Any]:
    return {
        "id": row.id,
        "counters": {counter.value: getattr(row, counter.value) for counter in UsageCounter},
        "is_cycle_reset": row.is_cycle_reset,
        "metadata": row.metadata_json or {},
        "created_at": row.created_at.isoformat() if row.created_at else None,
    }


class UsageService:
    """Append and summarise ``usage_logs`` rows.

    Parameters
    ----------
    session:
        Active database session bound to the organization.
    org_id:
        The organization whose usage is read and written.
    """

    def __init__(self, session: AsyncSession, org_id: str) -> None:
        self._session = session
        self._org_id = org_id
        self._org_repo = OrganizationRepository(session)
        self._repo = UsageLogRepository(session, org_id)

    async def log(
        self,
        counters: dict[UsageCounter, int] | dict[str, int],
        *,
        metadata: dict[str, Any] | None = None,
        source: str = "api",
    ) -> UsageLogTable:
        """Append one usage row after verifying the organization exists.

        Parameters
        ----------
        counters:
            Counter name to non-negative amount.  Unnamed counters are
            recorded as zero.
        metadata:
            Free-form context stored alongside the row.
        source:
            Label for the ``devvelocity_usage_rows_total`` metric.

        Raises
        ------
        NotFoundError
            If the organization does not exist.
        ValueError
            If a counter is unknown or negative.
        """
        await self._org_repo.require(self._org_id)
        entry = UsageEntry(org_id=self._org_id, counters=counters, metadata=metadata or {})
        row = await self._repo.append(entry)
        USAGE_ROWS_TOTAL.labels(source=source).inc()
        logger.debug("Usage logged for org %s: %s", self._org_id, entry.column_values())
        return row

    async def window_start(self) -> datetime:
        org = await self._org_repo.require(self._org_id)
        return default_usage_window(org.cycle_start)

    async def aggregate(self, since: datetime | None = None, until: datetime | None = None) -> UsageTotals:
        """Sum usage over ``[since, until)``.

        *since* defaults to the organization's cycle start, or the
        trailing 30 days when no cycle has been started.
        """
        if since is None:
            since = await self.window_start()
        return await self._repo.sum_window(since=since, until=until)

    async def report(self) -> dict[str, Any]:
        """Return totals, cap comparisons, upgrade nudges and projected overage."""
        org = await self._org_repo.require(self._org_id)
        since = default_usage_window(org.cycle_start)
        totals = await self._repo.sum_window(since=since)
        statuses = compare_to_caps(totals, org.plan_id)
        overage = compute_usage_overage(totals, org.plan_id)
        return {
            "org_id": org.id,
            "plan": org.plan_id,
            "window_start": since.isoformat(),
            "cycle_end": org.cycle_end.isoformat() if org.cycle_end else None,
            "totals": totals.model_dump(),
            "caps": [s.to_dict() for s in statuses],
            "recommendations": recommendations(statuses),
            "overage": [line.to_dict() for line in overage],
            "overage_amount": str(sum((line.amount for line in overage), Decimal("0"))),
        }

    async def daily(self, days: int = 30) -> list[dict[str, Any]]:
        since = datetime.now(UTC) - timedelta(days=days)
        return await self._repo.daily_totals(since)

    async def events(self, *, limit: int = 100, offset: int = 0) -> dict[str, Any]:
        since = await self.window_start()
        rows, total = await self._repo.list_window(since=since, limit=limit, offset=offset)
        return {"events": [usage_row_to_dict(r) for r in rows], "total": total, "limit": limit, "offset": offset}

    async def reset_current_cycle(self) -> int:
        """Delete every usage row in the current window.

        Admin-only.  Returns the number of rows removed.
        """
        since = await self.window_start()
        deleted = await self._repo.delete_window(since=since)
        logger.warning("Deleted %d usage rows for org %s since %s", deleted, self._org_id, since.isoformat())
        return deleted
