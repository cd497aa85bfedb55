"""Batch billing jobs triggered by the external scheduler.

Each job walks every organization and commits each one in its own
session.  A failure on one organization is logged and the batch moves
on; the returned summary reports how many organizations failed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from decimal import Decimal
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from velocity_core.billing.cycle import CycleWindow, cycle_ended, default_usage_window, new_cycle_window
from velocity_core.billing.seats import compute_seat_overage, seat_terms
from velocity_core.metering.aggregator import compute_usage_overage
from velocity_core.metering.events import UsageEntry
from velocity_core.state.database import set_org_context
from velocity_core.state.repository import (
    BillingEventRepository,
    MemberRepository,
    OrganizationRepository,
    UsageLogRepository,
)

from velocity_api.services.email_service import EmailService

logger = logging.getLogger(__name__)


@dataclass
class BatchSummary:
    """Outcome of one batch run across organizations."""

    job: str
    processed: int = 0
    billed: int = 0
    failed: int = 0
    total_amount: Decimal = Decimal("0")
    failed_org_ids: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "job": self.job,
            "processed": self.processed,
            "billed": self.billed,
            "failed": self.failed,
            "total_amount": str(self.total_amount),
            "failed_org_ids": self.failed_org_ids,
        }


class BillingJobsService:
    """Cycle resets and overage billing across organizations.

    Parameters
    ----------
    session_factory:
        Factory used to open one session per organization so each
        organization commits independently.
    email_service:
        When given, owners and admins of organizations billed for usage
        overage receive a notice.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        email_service: EmailService | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._email = email_service

    async def _org_ids(self) -> list[str]:
        async with self._session_factory() as session:
            return await OrganizationRepository(session).list_ids()

    # ------------------------------------------------------------------
    # Cycle reset
    # ------------------------------------------------------------------

    async def reset_cycle(self, org_id: str, *, now: datetime | None = None) -> CycleWindow:
        """Start a new 30-day cycle for *org_id*.

        Persists the window on the organization and appends a zero-valued
        usage row flagged ``is_cycle_reset`` at the window start.  Calling
        it twice starts two cycles; there is no deduplication.

        Raises
        ------
        NotFoundError
            If the organization does not exist.
        """
        window = new_cycle_window(now)
        async with self._session_factory() as session:
            await set_org_context(session, org_id)
            orgs = OrganizationRepository(session)
            await orgs.require(org_id)
            await orgs.set_cycle(org_id, window.start, window.end)
            await UsageLogRepository(session, org_id).append(
                UsageEntry(
                    org_id=org_id,
                    is_cycle_reset=True,
                    timestamp=window.start,
                    metadata={"cycle_end": window.end.isoformat()},
                )
            )
            await session.commit()
        logger.info("Billing cycle reset for org %s: %s -> %s", org_id, window.start, window.end)
        return window

    async def reset_due_cycles(self, *, now: datetime | None = None) -> BatchSummary:
        """Reset every organization whose cycle has ended or never started."""
        now = now or datetime.now(UTC)
        summary = BatchSummary(job="cycle_reset")
        async with self._session_factory() as session:
            orgs = await OrganizationRepository(session).list_all()
            due = [o.id for o in orgs if cycle_ended(o.cycle_end, now)]
        for org_id in due:
            try:
                await self.reset_cycle(org_id, now=now)
            except Exception:
                summary.failed += 1
                summary.failed_org_ids.append(org_id)
                logger.error("Cycle reset failed for org %s", org_id, exc_info=True)
                continue
            summary.processed += 1
        return summary

    # ------------------------------------------------------------------
    # Seat overage
    # ------------------------------------------------------------------

    async def _bill_seats_for_org(self, org_id: str) -> Decimal:
        async with self._session_factory() as session:
            await set_org_context(session, org_id)
            orgs = OrganizationRepository(session)
            org = await orgs.require(org_id)
            included, price = seat_terms(
                org.plan_id,
                custom_seats=org.custom_seats,
                custom_seat_price=org.custom_seat_price,
            )
            overage = compute_seat_overage(org.seat_count, included, price)
            if overage.amount <= 0:
                return Decimal("0")
            await BillingEventRepository(session, org_id).append(
                "seat_overage",
                overage.amount,
                details=overage.to_dict(),
            )
            await orgs.add_pending_overage(org_id, overage.amount)
            await session.commit()
            logger.info(
                "Billed %d extra seats for org %s: %s",
                overage.extra_seats,
                org_id,
                overage.amount,
            )
            return overage.amount

    async def bill_seat_overages(self) -> BatchSummary:
        """Charge every organization for seats above its included seats.

        Appends a ``seat_overage`` billing event and increases
        ``pending_overage_amount`` for each organization with a positive
        amount.  Not transactional across organizations.
        """
        summary = BatchSummary(job="seat_overage")
        for org_id in await self._org_ids():
            try:
                amount = await self._bill_seats_for_org(org_id)
            except Exception:
                summary.failed += 1
                summary.failed_org_ids.append(org_id)
                logger.error("Seat overage billing failed for org %s", org_id, exc_info=True)
                continue
            summary.processed += 1
            if amount > 0:
                summary.billed += 1
                summary.total_amount += amount
        logger.info(
            "Seat overage batch: processed=%d billed=%d failed=%d total=%s",
            summary.processed,
            summary.billed,
            summary.failed,
            summary.total_amount,
        )
        return summary

    # ------------------------------------------------------------------
    # Usage overage
    # ------------------------------------------------------------------

    async def _bill_usage_for_org(self, org_id: str) -> Decimal:
        async with self._session_factory() as session:
            await set_org_context(session, org_id)
            orgs = OrganizationRepository(session)
            org = await orgs.require(org_id)
            since = default_usage_window(org.cycle_start)
            totals = await UsageLogRepository(session, org_id).sum_window(since=since)
            lines = compute_usage_overage(totals, org.plan_id)
            amount = sum((line.amount for line in lines), Decimal("0"))
            if amount <= 0:
                return Decimal("0")
            await BillingEventRepository(session, org_id).append(
                "usage_overage",
                amount,
                details={"window_start": since.isoformat(), "lines": [line.to_dict() for line in lines]},
            )
            await orgs.add_pending_overage(org_id, amount)
            recipients = [
                m.email for m in await MemberRepository(session, org_id).list_all() if m.role in ("owner", "admin")
            ]
            await session.commit()
            logger.info("Billed usage overage for org %s: %s", org_id, amount)

        if self._email is not None:
            summary_lines = [f"{line.counter.value}: {line.units_over} over the limit of {line.limit}" for line in lines]
            for email in recipients:
                await self._email.send_overage_notice(email, org.name, amount, summary_lines)
        return amount

    async def sync_usage_overages(self) -> BatchSummary:
        """Charge every organization for capped usage above its plan limits."""
        summary = BatchSummary(job="usage_overage")
        for org_id in await self._org_ids():
            try:
                amount = await self._bill_usage_for_org(org_id)
            except Exception:
                summary.failed += 1
                summary.failed_org_ids.append(org_id)
                logger.error("Usage overage billing failed for org %s", org_id, exc_info=True)
                continue
            summary.processed += 1
            if amount > 0:
                summary.billed += 1
                summary.total_amount += amount
        return summary
