"""Initial schema for the DevVelocity state store.

Creates organizations, organization_members, files, file_version_history,
usage_logs, billing_events, templates, ai_builder_answers and
ai_builder_builds.  Every organization-owned table carries ``org_id``
and is protected by a row-level security policy keyed on
``app.org_id``.

Revision ID: 001
Revises: None
Create Date: 2026-10-19 00:00:00.000000+00:00

"""

from __future__ import annotations

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects.postgresql import JSONB

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

_ORG_SCOPED_TABLES = (
    "organization_members",
    "files",
    "file_version_history",
    "usage_logs",
    "billing_events",
    "templates",
    "ai_builder_answers",
    "ai_builder_builds",
)


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]


def upgrade() -> None:
    # ------------------------------------------------------------------
    # organizations
    # ------------------------------------------------------------------
    op.create_table(
        "organizations",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("name", sa.String(256), nullable=False),
        sa.Column("owner_id", sa.String(64), nullable=False),
        sa.Column("plan_id", sa.String(32), nullable=False, server_default="developer"),
        sa.Column("seat_count", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("custom_seats", sa.Integer(), nullable=True),
        sa.Column("custom_seat_price", sa.Numeric(12, 2), nullable=True),
        sa.Column("cycle_start", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cycle_end", sa.DateTime(timezone=True), nullable=True),
        sa.Column("pending_overage_amount", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("billing_provider", sa.String(32), nullable=True),
        sa.Column("stripe_customer_id", sa.String(256), nullable=True),
        sa.Column("stripe_subscription_id", sa.String(256), nullable=True),
        sa.Column("lemon_customer_id", sa.String(256), nullable=True),
        sa.Column("lemon_subscription_id", sa.String(256), nullable=True),
        sa.Column("subscription_status", sa.String(32), nullable=True),
        sa.Column("sso_provider", sa.String(32), nullable=True),
        sa.Column("sso_config", JSONB(), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("seat_count >= 0", name="ck_organizations_seat_count"),
        sa.CheckConstraint("pending_overage_amount >= 0", name="ck_organizations_pending_overage"),
    )
    op.create_index("ix_organizations_stripe_customer", "organizations", ["stripe_customer_id"])
    op.create_index("ix_organizations_lemon_customer", "organizations", ["lemon_customer_id"])

    # ------------------------------------------------------------------
    # organization_members
    # ------------------------------------------------------------------
    op.create_table(
        "organization_members",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("org_id", sa.String(64), sa.ForeignKey("organizations.id"), nullable=False),
        sa.Column("user_id", sa.String(64), nullable=True),
        sa.Column("email", sa.String(320), nullable=False),
        sa.Column("role", sa.String(16), nullable=False, server_default="member"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint("org_id", "email", name="uq_organization_members_org_email"),
        sa.CheckConstraint("role IN ('owner','admin','member')", name="ck_organization_members_role"),
    )
    op.create_index("ix_organization_members_org", "organization_members", ["org_id"])
    op.create_index("ix_organization_members_user", "organization_members", ["user_id"])

    # ------------------------------------------------------------------
    # files + file_version_history
    # ------------------------------------------------------------------
    op.create_table(
        "files",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("org_id", sa.String(64), sa.ForeignKey("organizations.id"), nullable=False),
        sa.Column("filename", sa.String(512), nullable=False),
        sa.Column("content", sa.Text(), nullable=False, server_default=""),
        sa.Column("status", sa.String(16), nullable=False, server_default="active"),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("last_modified_by", sa.String(64), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("status IN ('active','deleted')", name="ck_files_status"),
        sa.CheckConstraint("version >= 1", name="ck_files_version"),
    )
    op.create_index("ix_files_org_status", "files", ["org_id", "status"])

    op.create_table(
        "file_version_history",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("file_id", sa.String(64), sa.ForeignKey("files.id"), nullable=False),
        sa.Column("org_id", sa.String(64), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("message", sa.String(512), nullable=True),
        sa.Column("created_by", sa.String(64), nullable=True),
        sa.Column("from_restore", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint("file_id", "version", name="uq_file_version_history_file_version"),
    )
    op.create_index("ix_file_version_history_org_file", "file_version_history", ["org_id", "file_id"])

    # ------------------------------------------------------------------
    # usage_logs
    # ------------------------------------------------------------------
    counter_columns = [
        sa.Column(name, sa.Integer(), nullable=False, server_default="0")
        for name in (
            "build_minutes",
            "pipelines_run",
            "provider_api_calls",
            "uploaded_files",
            "deleted_files",
            "restored_files",
            "diffs_viewed",
            "ai_requests",
        )
    ]
    op.create_table(
        "usage_logs",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("org_id", sa.String(64), sa.ForeignKey("organizations.id"), nullable=False),
        *counter_columns,
        sa.Column("is_cycle_reset", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("metadata_json", JSONB(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.CheckConstraint(
            "build_minutes >= 0 AND pipelines_run >= 0 AND provider_api_calls >= 0 "
            "AND uploaded_files >= 0 AND deleted_files >= 0 AND restored_files >= 0 "
            "AND diffs_viewed >= 0 AND ai_requests >= 0",
            name="ck_usage_logs_non_negative",
        ),
    )
    op.create_index("ix_usage_logs_org_created", "usage_logs", ["org_id", "created_at"])

    # ------------------------------------------------------------------
    # billing_events
    # ------------------------------------------------------------------
    op.create_table(
        "billing_events",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("org_id", sa.String(64), sa.ForeignKey("organizations.id"), nullable=False),
        sa.Column("event_type", sa.String(64), nullable=False),
        sa.Column("amount", sa.Numeric(12, 4), nullable=False, server_default="0"),
        sa.Column("currency", sa.String(8), nullable=False, server_default="USD"),
        sa.Column("provider", sa.String(32), nullable=False, server_default="internal"),
        sa.Column("details", JSONB(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.CheckConstraint("amount >= 0", name="ck_billing_events_amount"),
    )
    op.create_index("ix_billing_events_org_created", "billing_events", ["org_id", "created_at"])
    op.create_index("ix_billing_events_org_type", "billing_events", ["org_id", "event_type"])

    # ------------------------------------------------------------------
    # templates
    # ------------------------------------------------------------------
    op.create_table(
        "templates",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("org_id", sa.String(64), sa.ForeignKey("organizations.id"), nullable=False),
        sa.Column("name", sa.String(256), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("category", sa.String(32), nullable=False, server_default="base"),
        sa.Column("content", sa.Text(), nullable=False, server_default=""),
        sa.Column("is_published", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("status", sa.String(16), nullable=False, server_default="active"),
        sa.Column("created_by", sa.String(64), nullable=True),
        *_timestamps(),
        sa.CheckConstraint(
            "category IN ('base','provider','advanced','enterprise')",
            name="ck_templates_category",
        ),
        sa.CheckConstraint("status IN ('active','deleted')", name="ck_templates_status"),
    )
    op.create_index("ix_templates_org_status", "templates", ["org_id", "status"])

    # ------------------------------------------------------------------
    # ai_builder_answers + ai_builder_builds
    # ------------------------------------------------------------------
    op.create_table(
        "ai_builder_answers",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("org_id", sa.String(64), sa.ForeignKey("organizations.id"), nullable=False),
        sa.Column("user_id", sa.String(64), nullable=True),
        sa.Column("answers", JSONB(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_ai_builder_answers_org", "ai_builder_answers", ["org_id"])

    op.create_table(
        "ai_builder_builds",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("org_id", sa.String(64), sa.ForeignKey("organizations.id"), nullable=False),
        sa.Column("user_id", sa.String(64), nullable=True),
        sa.Column("answers_id", sa.String(64), sa.ForeignKey("ai_builder_answers.id"), nullable=True),
        sa.Column("plan_id", sa.String(32), nullable=False),
        sa.Column("output", JSONB(), nullable=False),
        sa.Column("prompt_tokens", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("completion_tokens", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("cost_usd", sa.Numeric(12, 6), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_ai_builder_builds_org_created", "ai_builder_builds", ["org_id", "created_at"])

    # Row-level security on every organization-owned table.
    for table in _ORG_SCOPED_TABLES:
        op.execute(f"ALTER TABLE {table} ENABLE ROW LEVEL SECURITY")
        op.execute(
            f"CREATE POLICY org_isolation_{table} ON {table} USING (org_id = current_setting('app.org_id', true))"
        )


def downgrade() -> None:
    for table in _ORG_SCOPED_TABLES:
        op.execute(f"DROP POLICY IF EXISTS org_isolation_{table} ON {table}")
    op.drop_table("ai_builder_builds")
    op.drop_table("ai_builder_answers")
    op.drop_table("templates")
    op.drop_table("billing_events")
    op.drop_table("usage_logs")
    op.drop_table("file_version_history")
    op.drop_table("files")
    op.drop_table("organization_members")
    op.drop_table("organizations")
