"""Repository classes providing CRUD access to the DevVelocity state store.

Each repository takes an ``AsyncSession`` at construction time and operates
within the caller's transaction boundary.  All writes call ``session.flush()``
so that generated defaults are populated; the caller is responsible for calling
``session.commit()``.

Organization-scoped repositories take ``org_id`` and never read or write
rows belonging to another organization.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from velocity_core.errors import AlreadyExistsError, NotFoundError
from velocity_core.files.status import FileAction, FileStatus, transition
from velocity_core.metering.events import COUNTER_NAMES, UsageEntry, UsageTotals
from velocity_core.state.tables import (
    AIBuilderAnswerTable,
    AIBuilderBuildTable,
    BillingEventTable,
    FileTable,
    FileVersionTable,
    OrganizationMemberTable,
    OrganizationTable,
    TemplateTable,
    TemplateVersionTable,
    UsageLogTable,
)

logger = logging.getLogger(__name__)


def _escape_like(value: str) -> str:
    """Escape SQL LIKE metacharacters so they are treated as literal characters."""
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


# ---------------------------------------------------------------------------
# OrganizationRepository (cross-organization; used by auth, webhooks, batches)
# ---------------------------------------------------------------------------


class OrganizationRepository:
    """CRUD operations for the ``organizations`` table.

    Not organization-scoped: webhooks resolve organizations by payment
    provider customer id, and batch jobs iterate every organization.
    """

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(
        self,
        name: str,
        owner_id: str,
        *,
        plan_id: str = "developer",
        org_id: str | None = None,
        seat_count: int = 1,
    ) -> OrganizationTable:
        """Insert a new organization."""
        row = OrganizationTable(
            name=name,
            owner_id=owner_id,
            plan_id=plan_id,
            seat_count=seat_count,
            pending_overage_amount=Decimal("0"),
        )
        if org_id is not None:
            row.id = org_id
        self._session.add(row)
        await self._session.flush()
        return row

    async def get(self, org_id: str) -> OrganizationTable | None:
        stmt = select(OrganizationTable).where(OrganizationTable.id == org_id)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def require(self, org_id: str) -> OrganizationTable:
        """Return the organization or raise :class:`NotFoundError`."""
        row = await self.get(org_id)
        if row is None:
            raise NotFoundError("Organization", org_id)
        return row

    async def list_all(self) -> list[OrganizationTable]:
        """List every organization, oldest first."""
        stmt = select(OrganizationTable).order_by(OrganizationTable.created_at, OrganizationTable.id)
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def list_ids(self) -> list[str]:
        result = await self._session.execute(
            select(OrganizationTable.id).order_by(OrganizationTable.created_at, OrganizationTable.id)
        )
        return list(result.scalars().all())

    async def get_by_provider_customer(self, provider: str, customer_id: str) -> OrganizationTable | None:
        """Look up an organization by its Stripe or Lemon Squeezy customer id."""
        column = OrganizationTable.stripe_customer_id if provider == "stripe" else OrganizationTable.lemon_customer_id
        result = await self._session.execute(select(OrganizationTable).where(column == customer_id))
        return result.scalars().first()

    async def set_plan(
        self,
        org_id: str,
        plan_id: str,
        *,
        provider: str | None = None,
        subscription_status: str | None = None,
        customer_id: str | None = None,
        subscription_id: str | None = None,
    ) -> bool:
        """Record a plan change from checkout or a payment webhook.

        Returns ``False`` when the organization does not exist.
        """
        values: dict[str, Any] = {"plan_id": plan_id, "updated_at": datetime.now(UTC)}
        if provider is not None:
            values["billing_provider"] = provider
        if subscription_status is not None:
            values["subscription_status"] = subscription_status
        if customer_id is not None:
            values["stripe_customer_id" if provider == "stripe" else "lemon_customer_id"] = customer_id
        if subscription_id is not None:
            values["stripe_subscription_id" if provider == "stripe" else "lemon_subscription_id"] = subscription_id
        result = await self._session.execute(
            update(OrganizationTable).where(OrganizationTable.id == org_id).values(**values)
        )
        await self._session.flush()
        return result.rowcount > 0  # type: ignore[attr-defined]

    async def set_subscription_status(self, org_id: str, status: str) -> bool:
        """Change the subscription status without touching the plan."""
        result = await self._session.execute(
            update(OrganizationTable)
            .where(OrganizationTable.id == org_id)
            .values(subscription_status=status, updated_at=datetime.now(UTC))
        )
        await self._session.flush()
        return result.rowcount > 0  # type: ignore[attr-defined]

    async def set_cycle(self, org_id: str, start: datetime, end: datetime) -> bool:
        result = await self._session.execute(
            update(OrganizationTable)
            .where(OrganizationTable.id == org_id)
            .values(cycle_start=start, cycle_end=end, updated_at=datetime.now(UTC))
        )
        await self._session.flush()
        return result.rowcount > 0  # type: ignore[attr-defined]

    async def add_pending_overage(self, org_id: str, amount: Decimal) -> bool:
        """Atomically add *amount* to the organization's pending overage."""
        if amount < 0:
            raise ValueError("Overage amount must be non-negative")
        result = await self._session.execute(
            update(OrganizationTable)
            .where(OrganizationTable.id == org_id)
            .values(
                pending_overage_amount=OrganizationTable.pending_overage_amount + amount,
                updated_at=datetime.now(UTC),
            )
        )
        await self._session.flush()
        return result.rowcount > 0  # type: ignore[attr-defined]

    async def set_seat_count(self, org_id: str, seat_count: int) -> bool:
        result = await self._session.execute(
            update(OrganizationTable).where(OrganizationTable.id == org_id).values(seat_count=seat_count)
        )
        await self._session.flush()
        return result.rowcount > 0  # type: ignore[attr-defined]

    async def set_sso(self, org_id: str, provider: str | None, config: dict[str, Any] | None) -> bool:
        result = await self._session.execute(
            update(OrganizationTable)
            .where(OrganizationTable.id == org_id)
            .values(sso_provider=provider, sso_config=config, updated_at=datetime.now(UTC))
        )
        await self._session.flush()
        return result.rowcount > 0  # type: ignore[attr-defined]


# ---------------------------------------------------------------------------
# MemberRepository (organization-scoped)
# ---------------------------------------------------------------------------


class MemberRepository:
    """CRUD operations for the ``organization_members`` table."""

    def __init__(self, session: AsyncSession, org_id: str) -> None:
        self._session = session
        self._org_id = org_id

    async def add(self, email: str, *, role: str = "member", user_id: str | None = None) -> OrganizationMemberTable:
        """Add a seat holder.

        Raises
        ------
        AlreadyExistsError
            If the email is already a member of the organization.
        """
        email = email.strip().lower()
        existing = await self._session.execute(
            select(OrganizationMemberTable.id).where(
                OrganizationMemberTable.org_id == self._org_id,
                OrganizationMemberTable.email == email,
            )
        )
        if existing.scalar_one_or_none() is not None:
            raise AlreadyExistsError(f"{email} is already a member of this organization")
        row = OrganizationMemberTable(org_id=self._org_id, email=email, role=role, user_id=user_id)
        self._session.add(row)
        await self._session.flush()
        return row

    async def list_all(self) -> list[OrganizationMemberTable]:
        stmt = (
            select(OrganizationMemberTable)
            .where(OrganizationMemberTable.org_id == self._org_id)
            .order_by(OrganizationMemberTable.created_at, OrganizationMemberTable.email)
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def count(self) -> int:
        result = await self._session.execute(
            select(func.count())
            .select_from(OrganizationMemberTable)
            .where(OrganizationMemberTable.org_id == self._org_id)
        )
        return int(result.scalar_one())

    async def get(self, member_id: str) -> OrganizationMemberTable | None:
        result = await self._session.execute(
            select(OrganizationMemberTable).where(
                OrganizationMemberTable.org_id == self._org_id,
                OrganizationMemberTable.id == member_id,
            )
        )
        return result.scalar_one_or_none()

    async def remove(self, member_id: str) -> bool:
        result = await self._session.execute(
            delete(OrganizationMemberTable).where(
                OrganizationMemberTable.org_id == self._org_id,
                OrganizationMemberTable.id == member_id,
            )
        )
        await self._session.flush()
        return result.rowcount > 0  # type: ignore[attr-defined]


# ---------------------------------------------------------------------------
# FileRepository / FileVersionRepository (organization-scoped)
# ---------------------------------------------------------------------------


class FileRepository:
    """CRUD operations for the ``files`` table.

    Lifecycle changes go through :func:`velocity_core.files.status.transition`
    so that an invalid action (deleting a deleted file, restoring an active
    one) raises before anything is written.
    """

    def __init__(self, session: AsyncSession, org_id: str) -> None:
        self._session = session
        self._org_id = org_id

    async def create(self, filename: str, content: str, *, created_by: str | None = None) -> FileTable:
        row = FileTable(
            org_id=self._org_id,
            filename=filename,
            content=content,
            status=FileStatus.ACTIVE.value,
            version=1,
            last_modified_by=created_by,
        )
        self._session.add(row)
        await self._session.flush()
        return row

    async def get(self, file_id: str) -> FileTable | None:
        """Fetch a file regardless of status."""
        stmt = select(FileTable).where(FileTable.org_id == self._org_id, FileTable.id == file_id)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def require(self, file_id: str) -> FileTable:
        row = await self.get(file_id)
        if row is None:
            raise NotFoundError("File", file_id)
        return row

    async def list_by_status(
        self,
        status: FileStatus = FileStatus.ACTIVE,
        *,
        limit: int = 100,
        offset: int = 0,
    ) -> list[FileTable]:
        """List files in *status*, most recently updated first."""
        stmt = (
            select(FileTable)
            .where(FileTable.org_id == self._org_id, FileTable.status == status.value)
            .order_by(FileTable.updated_at.desc(), FileTable.id)
            .limit(limit)
            .offset(offset)
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def update_content(self, file_id: str, content: str, *, modified_by: str | None = None) -> FileTable:
        """Replace the content and bump the version counter.

        Raises
        ------
        InvalidFileTransition
            If the file is deleted.
        """
        row = await self.require(file_id)
        transition(row.status, FileAction.UPDATE)
        row.content = content
        row.version = row.version + 1
        row.last_modified_by = modified_by
        row.updated_at = datetime.now(UTC)
        await self._session.flush()
        return row

    async def soft_delete(self, file_id: str, *, modified_by: str | None = None) -> FileTable:
        """Mark a file deleted, retaining its content."""
        row = await self.require(file_id)
        row.status = transition(row.status, FileAction.DELETE).value
        row.deleted_at = datetime.now(UTC)
        row.last_modified_by = modified_by
        await self._session.flush()
        return row

    async def restore(self, file_id: str, *, modified_by: str | None = None) -> FileTable:
        """Return a deleted file to ``active`` with its content unchanged."""
        row = await self.require(file_id)
        row.status = transition(row.status, FileAction.RESTORE).value
        row.deleted_at = None
        row.last_modified_by = modified_by
        await self._session.flush()
        return row


class FileVersionRepository:
    """Append-only access to ``file_version_history``."""

    def __init__(self, session: AsyncSession, org_id: str) -> None:
        self._session = session
        self._org_id = org_id

    async def append(
        self,
        file_id: str,
        version: int,
        content: str,
        *,
        message: str | None = None,
        created_by: str | None = None,
        from_restore: bool = False,
    ) -> FileVersionTable:
        row = FileVersionTable(
            file_id=file_id,
            org_id=self._org_id,
            version=version,
            content=content,
            message=message,
            created_by=created_by,
            from_restore=from_restore,
        )
        self._session.add(row)
        await self._session.flush()
        return row

    async def list_for_file(self, file_id: str) -> list[FileVersionTable]:
        """Return every snapshot of *file_id*, newest version first."""
        stmt = (
            select(FileVersionTable)
            .where(FileVersionTable.org_id == self._org_id, FileVersionTable.file_id == file_id)
            .order_by(FileVersionTable.version.desc())
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def get(self, file_id: str, version: int) -> FileVersionTable | None:
        stmt = select(FileVersionTable).where(
            FileVersionTable.org_id == self._org_id,
            FileVersionTable.file_id == file_id,
            FileVersionTable.version == version,
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()


# ---------------------------------------------------------------------------
# UsageLogRepository (organization-scoped)
# ---------------------------------------------------------------------------


class UsageLogRepository:
    """Append and aggregate ``usage_logs`` rows.

    Rows are never updated.  Duplicate appends are recorded twice; totals
    are always the plain sum of every row in the window.
    """

    def __init__(self, session: AsyncSession, org_id: str) -> None:
        self._session = session
        self._org_id = org_id

    async def append(self, entry: UsageEntry) -> UsageLogTable:
        """Insert one usage row for this organization."""
        if entry.org_id != self._org_id:
            raise ValueError("Usage entry belongs to a different organization")
        row = UsageLogTable(
            org_id=self._org_id,
            is_cycle_reset=entry.is_cycle_reset,
            metadata_json=entry.metadata or None,
            created_at=entry.timestamp,
            **entry.column_values(),
        )
        self._session.add(row)
        await self._session.flush()
        return row

    def _window(self, stmt: Any, since: datetime | None, until: datetime | None) -> Any:
        stmt = stmt.where(UsageLogTable.org_id == self._org_id)
        if since is not None:
            stmt = stmt.where(UsageLogTable.created_at >= since)
        if until is not None:
            stmt = stmt.where(UsageLogTable.created_at < until)
        return stmt

    async def sum_window(self, since: datetime | None = None, until: datetime | None = None) -> UsageTotals:
        """Sum every counter over ``[since, until)``.

        Returns
        -------
        UsageTotals
            All counters present; zero when no rows match.
        """
        columns = [func.coalesce(func.sum(getattr(UsageLogTable, name)), 0).label(name) for name in COUNTER_NAMES]
        result = await self._session.execute(self._window(select(*columns), since, until))
        row = result.one()
        return UsageTotals(**{name: int(getattr(row, name) or 0) for name in COUNTER_NAMES})

    async def list_window(
        self,
        since: datetime | None = None,
        until: datetime | None = None,
        *,
        limit: int = 100,
        offset: int = 0,
    ) -> tuple[list[UsageLogTable], int]:
        """List rows in the window, newest first, with a total count."""
        count_r = await self._session.execute(
            self._window(select(func.count()).select_from(UsageLogTable), since, until)
        )
        total = int(count_r.scalar_one())
        stmt = self._window(select(UsageLogTable), since, until)
        stmt = stmt.order_by(UsageLogTable.created_at.desc(), UsageLogTable.id).limit(limit).offset(offset)
        result = await self._session.execute(stmt)
        return list(result.scalars().all()), total

    async def daily_totals(self, since: datetime, until: datetime | None = None) -> list[dict[str, Any]]:
        """Return per-day counter sums in ascending date order."""
        day = func.date(UsageLogTable.created_at).label("day")
        columns = [func.coalesce(func.sum(getattr(UsageLogTable, name)), 0).label(name) for name in COUNTER_NAMES]
        stmt = self._window(select(day, *columns), since, until).group_by(day).order_by(day)
        result = await self._session.execute(stmt)
        return [
            {"date": str(row.day), **{name: int(getattr(row, name) or 0) for name in COUNTER_NAMES}}
            for row in result.all()
        ]

    async def delete_window(self, since: datetime | None = None, until: datetime | None = None) -> int:
        """Delete rows in the window.  Used only by the admin usage reset."""
        stmt = delete(UsageLogTable).where(UsageLogTable.org_id == self._org_id)
        if since is not None:
            stmt = stmt.where(UsageLogTable.created_at >= since)
        if until is not None:
            stmt = stmt.where(UsageLogTable.created_at < until)
        result = await self._session.execute(stmt)
        await self._session.flush()
        return int(result.rowcount or 0)  # type: ignore[attr-defined]


# ---------------------------------------------------------------------------
# BillingEventRepository (organization-scoped)
# ---------------------------------------------------------------------------


class BillingEventRepository:
    """Append-only access to ``billing_events``."""

    def __init__(self, session: AsyncSession, org_id: str) -> None:
        self._session = session
        self._org_id = org_id

    async def append(
        self,
        event_type: str,
        amount: Decimal,
        *,
        details: dict[str, Any] | None = None,
        provider: str = "internal",
        currency: str = "USD",
    ) -> BillingEventTable:
        if amount < 0:
            raise ValueError("Billing event amount must be non-negative")
        row = BillingEventTable(
            org_id=self._org_id,
            event_type=event_type,
            amount=amount,
            details=details,
            provider=provider,
            currency=currency,
        )
        self._session.add(row)
        await self._session.flush()
        return row

    async def get(self, event_id: str) -> BillingEventTable | None:
        stmt = select(BillingEventTable).where(
            BillingEventTable.org_id == self._org_id,
            BillingEventTable.id == event_id,
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_events(
        self,
        *,
        event_type: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[BillingEventTable], int]:
        """List billing events, newest first.

        Returns
        -------
        tuple
            ``(rows, total_count)`` for pagination support.
        """
        conditions = [BillingEventTable.org_id == self._org_id]
        if event_type is not None:
            conditions.append(BillingEventTable.event_type == event_type)
        count_r = await self._session.execute(select(func.count()).select_from(BillingEventTable).where(*conditions))
        total = int(count_r.scalar_one())
        stmt = (
            select(BillingEventTable)
            .where(*conditions)
            .order_by(BillingEventTable.created_at.desc(), BillingEventTable.id)
            .limit(limit)
            .offset(offset)
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all()), total

    async def sum_since(self, since: datetime, *, event_type: str | None = None) -> Decimal:
        conditions = [BillingEventTable.org_id == self._org_id, BillingEventTable.created_at >= since]
        if event_type is not None:
            conditions.append(BillingEventTable.event_type == event_type)
        result = await self._session.execute(
            select(func.coalesce(func.sum(BillingEventTable.amount), 0)).where(*conditions)
        )
        return Decimal(str(result.scalar_one() or 0))


# ---------------------------------------------------------------------------
# TemplateRepository (organization-scoped)
# ---------------------------------------------------------------------------


class TemplateRepository:
    """CRUD operations for the ``templates`` table."""

    def __init__(self, session: AsyncSession, org_id: str) -> None:
        self._session = session
        self._org_id = org_id

    async def create(
        self,
        name: str,
        content: str,
        *,
        category: str = "base",
        description: str | None = None,
        created_by: str | None = None,
    ) -> TemplateTable:
        row = TemplateTable(
            org_id=self._org_id,
            name=name,
            content=content,
            category=category,
            description=description,
            created_by=created_by,
            status=FileStatus.ACTIVE.value,
        )
        self._session.add(row)
        await self._session.flush()
        return row

    async def get(self, template_id: str) -> TemplateTable | None:
        stmt = select(TemplateTable).where(TemplateTable.org_id == self._org_id, TemplateTable.id == template_id)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def require(self, template_id: str) -> TemplateTable:
        row = await self.get(template_id)
        if row is None:
            raise NotFoundError("Template", template_id)
        return row

    async def list_templates(
        self,
        *,
        categories: list[str] | None = None,
        query: str | None = None,
        status: FileStatus = FileStatus.ACTIVE,
        limit: int = 100,
        offset: int = 0,
    ) -> list[TemplateTable]:
        """List templates, optionally restricted to *categories* and a search term."""
        stmt = select(TemplateTable).where(TemplateTable.org_id == self._org_id, TemplateTable.status == status.value)
        if categories is not None:
            stmt = stmt.where(TemplateTable.category.in_(categories))
        if query:
            pattern = f"%{_escape_like(query)}%"
            stmt = stmt.where(
                or_(
                    TemplateTable.name.ilike(pattern, escape="\\"),
                    TemplateTable.description.ilike(pattern, escape="\\"),
                )
            )
        stmt = stmt.order_by(TemplateTable.name, TemplateTable.id).limit(limit).offset(offset)
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def count_active(self) -> int:
        stmt = select(func.count()).where(
            TemplateTable.org_id == self._org_id, TemplateTable.status == FileStatus.ACTIVE.value
        )
        return int((await self._session.execute(stmt)).scalar_one())

    async def update(self, template_id: str, **fields: Any) -> TemplateTable:
        """Update mutable template fields on an active template."""
        allowed = {"name", "description", "category", "content", "is_published"}
        unknown = set(fields) - allowed
        if unknown:
            raise ValueError(f"Unknown template fields: {sorted(unknown)}")
        row = await self.require(template_id)
        transition(row.status, FileAction.UPDATE)
        for key, value in fields.items():
            if value is not None:
                setattr(row, key, value)
        row.updated_at = datetime.now(UTC)
        await self._session.flush()
        return row

    async def soft_delete(self, template_id: str) -> TemplateTable:
        row = await self.require(template_id)
        row.status = transition(row.status, FileAction.DELETE).value
        await self._session.flush()
        return row

    async def restore(self, template_id: str) -> TemplateTable:
        row = await self.require(template_id)
        row.status = transition(row.status, FileAction.RESTORE).value
        await self._session.flush()
        return row


class TemplateVersionRepository:
    """Append-only access to ``template_versions``."""

    def __init__(self, session: AsyncSession, org_id: str) -> None:
        self._session = session
        self._org_id = org_id

    async def append(
        self,
        template_id: str,
        previous_content: str,
        new_content: str,
        *,
        change_summary: str | None = None,
        created_by: str | None = None,
    ) -> TemplateVersionTable:
        row = TemplateVersionTable(
            template_id=template_id,
            org_id=self._org_id,
            previous_content=previous_content,
            new_content=new_content,
            change_summary=change_summary,
            created_by=created_by,
        )
        self._session.add(row)
        await self._session.flush()
        return row

    async def list_for_template(self, template_id: str) -> list[TemplateVersionTable]:
        """Return the template's saved versions, newest first."""
        stmt = (
            select(TemplateVersionTable)
            .where(TemplateVersionTable.org_id == self._org_id, TemplateVersionTable.template_id == template_id)
            .order_by(TemplateVersionTable.created_at.desc(), TemplateVersionTable.id)
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def get(self, template_id: str, version_id: str) -> TemplateVersionTable | None:
        stmt = select(TemplateVersionTable).where(
            TemplateVersionTable.org_id == self._org_id,
            TemplateVersionTable.template_id == template_id,
            TemplateVersionTable.id == version_id,
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()


# ---------------------------------------------------------------------------
# AIBuilderRepository (organization-scoped)
# ---------------------------------------------------------------------------


class AIBuilderRepository:
    """Persistence for AI builder questionnaires and generated builds."""

    def __init__(self, session: AsyncSession, org_id: str) -> None:
        self._session = session
        self._org_id = org_id

    async def save_answers(self, answers: dict[str, Any], *, user_id: str | None = None) -> AIBuilderAnswerTable:
        row = AIBuilderAnswerTable(org_id=self._org_id, user_id=user_id, answers=answers)
        self._session.add(row)
        await self._session.flush()
        return row

    async def get_answers(self, answers_id: str) -> AIBuilderAnswerTable | None:
        stmt = select(AIBuilderAnswerTable).where(
            AIBuilderAnswerTable.org_id == self._org_id,
            AIBuilderAnswerTable.id == answers_id,
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def save_build(
        self,
        *,
        plan_id: str,
        output: dict[str, Any],
        prompt_tokens: int,
        completion_tokens: int,
        cost_usd: Decimal,
        user_id: str | None = None,
        answers_id: str | None = None,
    ) -> AIBuilderBuildTable:
        row = AIBuilderBuildTable(
            org_id=self._org_id,
            user_id=user_id,
            answers_id=answers_id,
            plan_id=plan_id,
            output=output,
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            cost_usd=cost_usd,
        )
        self._session.add(row)
        await self._session.flush()
        return row

    async def list_builds(self, *, limit: int = 20, offset: int = 0) -> list[AIBuilderBuildTable]:
        stmt = (
            select(AIBuilderBuildTable)
            .where(AIBuilderBuildTable.org_id == self._org_id)
            .order_by(AIBuilderBuildTable.created_at.desc(), AIBuilderBuildTable.id)
            .limit(limit)
            .offset(offset)
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())
