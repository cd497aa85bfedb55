"""SQLAlchemy 2.0 ORM table definitions for the DevVelocity state store.

All tables use the modern ``Mapped`` / ``mapped_column`` declaration style
introduced in SQLAlchemy 2.0.  The ``Base`` declarative base is exported for
use by Alembic migrations and the repository layer.

Every row belongs to exactly one organization (``org_id``).  Usage logs,
file version snapshots and billing events are append-only.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator

# Cross-dialect JSON type: uses JSONB on PostgreSQL for GIN indexing and
# query operators, falls back to plain JSON (stored as TEXT) on SQLite.
_JsonType = JSONB().with_variant(JSON(), "sqlite")


class UTCDateTime(TypeDecorator):
    """Timezone-aware timestamp that stays UTC-aware on every backend.

    SQLite drops ``tzinfo`` on storage; naive values read back are
    re-tagged as UTC so comparisons against ``datetime.now(UTC)`` work.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_result_value(self, value, dialect):  # type: ignore[override]
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value


def _utcnow() -> datetime:
    """Return the current UTC timestamp (timezone-aware)."""
    return datetime.now(UTC)


def _new_id() -> str:
    return uuid.uuid4().hex


# ---------------------------------------------------------------------------
# Declarative base
# ---------------------------------------------------------------------------


class Base(DeclarativeBase):
    """Shared declarative base for all DevVelocity tables."""


# ---------------------------------------------------------------------------
# Organizations
# ---------------------------------------------------------------------------


class OrganizationTable(Base):
    """A paying tenant.  Never deleted; plan and cycle state mutate in place."""

    __tablename__ = "organizations"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    name: Mapped[str] = mapped_column(String(256), nullable=False)
    owner_id: Mapped[str] = mapped_column(String(64), nullable=False)
    plan_id: Mapped[str] = mapped_column(String(32), nullable=False, default="developer")
    seat_count: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    custom_seats: Mapped[int | None] = mapped_column(Integer, nullable=True)
    custom_seat_price: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    cycle_start: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    cycle_end: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    pending_overage_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0"))
    billing_provider: Mapped[str | None] = mapped_column(String(32), nullable=True)
    stripe_customer_id: Mapped[str | None] = mapped_column(String(256), nullable=True)
    stripe_subscription_id: Mapped[str | None] = mapped_column(String(256), nullable=True)
    lemon_customer_id: Mapped[str | None] = mapped_column(String(256), nullable=True)
    lemon_subscription_id: Mapped[str | None] = mapped_column(String(256), nullable=True)
    subscription_status: Mapped[str | None] = mapped_column(String(32), nullable=True)
    sso_provider: Mapped[str | None] = mapped_column(String(32), nullable=True)
    sso_config: Mapped[dict[str, Any] | None] = mapped_column(_JsonType, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=_utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, default=_utcnow, onupdate=_utcnow, nullable=False)

    __table_args__ = (
        CheckConstraint("seat_count >= 0", name="ck_organizations_seat_count"),
        CheckConstraint("pending_overage_amount >= 0", name="ck_organizations_pending_overage"),
        Index("ix_organizations_stripe_customer", "stripe_customer_id"),
        Index("ix_organizations_lemon_customer", "lemon_customer_id"),
    )


class OrganizationMemberTable(Base):
    """Seat holders of an organization."""

    __tablename__ = "organization_members"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    org_id: Mapped[str] = mapped_column(String(64), ForeignKey("organizations.id"), nullable=False)
    user_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    email: Mapped[str] = mapped_column(String(320), nullable=False)
    role: Mapped[str] = mapped_column(String(16), nullable=False, default="member")
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=_utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("org_id", "email", name="uq_organization_members_org_email"),
        CheckConstraint("role IN ('owner','admin','member')", name="ck_organization_members_role"),
        Index("ix_organization_members_org", "org_id"),
        Index("ix_organization_members_user", "user_id"),
    )


# ---------------------------------------------------------------------------
# Files
# ---------------------------------------------------------------------------


class FileTable(Base):
    """Current state of a stored file.

    ``status`` is the authoritative lifecycle marker (``active`` or
    ``deleted``); ``deleted_at`` records when the latest deletion
    happened and is kept for display only.
    """

    __tablename__ = "files"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    org_id: Mapped[str] = mapped_column(String(64), ForeignKey("organizations.id"), nullable=False)
    filename: Mapped[str] = mapped_column(String(512), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False, default="")
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="active")
    deleted_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    last_modified_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=_utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, default=_utcnow, onupdate=_utcnow, nullable=False)

    __table_args__ = (
        CheckConstraint("status IN ('active','deleted')", name="ck_files_status"),
        CheckConstraint("version >= 1", name="ck_files_version"),
        Index("ix_files_org_status", "org_id", "status"),
    )


class FileVersionTable(Base):
    """Immutable snapshot of a file's content at a given version."""

    __tablename__ = "file_version_history"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    file_id: Mapped[str] = mapped_column(String(64), ForeignKey("files.id"), nullable=False)
    org_id: Mapped[str] = mapped_column(String(64), nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    message: Mapped[str | None] = mapped_column(String(512), nullable=True)
    created_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    from_restore: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=_utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("file_id", "version", name="uq_file_version_history_file_version"),
        Index("ix_file_version_history_org_file", "org_id", "file_id"),
    )


# ---------------------------------------------------------------------------
# Usage metering
# ---------------------------------------------------------------------------


class UsageLogTable(Base):
    """Append-only usage counters.

    Each row records non-negative amounts for every metered counter.
    Rows flagged ``is_cycle_reset`` are zero-valued boundary markers
    written when a billing cycle restarts.
    """

    __tablename__ = "usage_logs"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    org_id: Mapped[str] = mapped_column(String(64), ForeignKey("organizations.id"), nullable=False)
    build_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    pipelines_run: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    provider_api_calls: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    uploaded_files: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    deleted_files: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    restored_files: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    diffs_viewed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    ai_requests: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_cycle_reset: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    metadata_json: Mapped[dict[str, Any] | None] = mapped_column(_JsonType, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=_utcnow, nullable=False)

    __table_args__ = (
        CheckConstraint(
            "build_minutes >= 0 AND pipelines_run >= 0 AND provider_api_calls >= 0 "
            "AND uploaded_files >= 0 AND deleted_files >= 0 AND restored_files >= 0 "
            "AND diffs_viewed >= 0 AND ai_requests >= 0",
            name="ck_usage_logs_non_negative",
        ),
        Index("ix_usage_logs_org_created", "org_id", "created_at"),
    )


# ---------------------------------------------------------------------------
# Billing
# ---------------------------------------------------------------------------


class BillingEventTable(Base):
    """Append-only monetary events (overages, restores, AI spend, payments)."""

    __tablename__ = "billing_events"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    org_id: Mapped[str] = mapped_column(String(64), ForeignKey("organizations.id"), nullable=False)
    event_type: Mapped[str] = mapped_column(String(64), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 4), nullable=False, default=Decimal("0"))
    currency: Mapped[str] = mapped_column(String(8), nullable=False, default="USD")
    provider: Mapped[str] = mapped_column(String(32), nullable=False, default="internal")
    details: Mapped[dict[str, Any] | None] = mapped_column(_JsonType, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=_utcnow, nullable=False)

    __table_args__ = (
        CheckConstraint("amount >= 0", name="ck_billing_events_amount"),
        Index("ix_billing_events_org_created", "org_id", "created_at"),
        Index("ix_billing_events_org_type", "org_id", "event_type"),
    )


# ---------------------------------------------------------------------------
# Templates
# ---------------------------------------------------------------------------


class TemplateTable(Base):
    """Organization-owned infrastructure templates."""

    __tablename__ = "templates"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    org_id: Mapped[str] = mapped_column(String(64), ForeignKey("organizations.id"), nullable=False)
    name: Mapped[str] = mapped_column(String(256), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    category: Mapped[str] = mapped_column(String(32), nullable=False, default="base")
    content: Mapped[str] = mapped_column(Text, nullable=False, default="")
    is_published: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="active")
    created_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=_utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, default=_utcnow, onupdate=_utcnow, nullable=False)

    __table_args__ = (
        CheckConstraint(
            "category IN ('base','provider','advanced','enterprise')",
            name="ck_templates_category",
        ),
        CheckConstraint("status IN ('active','deleted')", name="ck_templates_status"),
        Index("ix_templates_org_status", "org_id", "status"),
    )


class TemplateVersionTable(Base):
    """One saved change to a template's content, including restores."""

    __tablename__ = "template_versions"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    template_id: Mapped[str] = mapped_column(String(64), ForeignKey("templates.id"), nullable=False)
    org_id: Mapped[str] = mapped_column(String(64), nullable=False)
    previous_content: Mapped[str] = mapped_column(Text, nullable=False, default="")
    new_content: Mapped[str] = mapped_column(Text, nullable=False)
    change_summary: Mapped[str | None] = mapped_column(String(512), nullable=True)
    created_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=_utcnow, nullable=False)

    __table_args__ = (Index("ix_template_versions_org_template", "org_id", "template_id"),)


# ---------------------------------------------------------------------------
# AI builder
# ---------------------------------------------------------------------------


class AIBuilderAnswerTable(Base):
    """Questionnaire answers submitted to the AI builder."""

    __tablename__ = "ai_builder_answers"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    org_id: Mapped[str] = mapped_column(String(64), ForeignKey("organizations.id"), nullable=False)
    user_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    answers: Mapped[dict[str, Any]] = mapped_column(_JsonType, nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=_utcnow, nullable=False)

    __table_args__ = (Index("ix_ai_builder_answers_org", "org_id"),)


class AIBuilderBuildTable(Base):
    """Generated infrastructure plans with token accounting."""

    __tablename__ = "ai_builder_builds"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    org_id: Mapped[str] = mapped_column(String(64), ForeignKey("organizations.id"), nullable=False)
    user_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    answers_id: Mapped[str | None] = mapped_column(String(64), ForeignKey("ai_builder_answers.id"), nullable=True)
    plan_id: Mapped[str] = mapped_column(String(32), nullable=False)
    output: Mapped[dict[str, Any]] = mapped_column(_JsonType, nullable=False)
    prompt_tokens: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    completion_tokens: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    cost_usd: Mapped[Decimal] = mapped_column(Numeric(12, 6), nullable=False, default=Decimal("0"))
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=_utcnow, nullable=False)

    __table_args__ = (Index("ix_ai_builder_builds_org_created", "org_id", "created_at"),)
