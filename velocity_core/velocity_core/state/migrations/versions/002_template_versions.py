"""Template version history.

Adds ``template_versions`` with the same row-level security policy as
the other organization-owned tables.

Revision ID: 002
Revises: 001
Create Date: 2026-10-19 00:00:00.000000+00:00

"""

from __future__ import annotations

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

revision: str = "002"
down_revision: str | None = "001"
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "template_versions",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("template_id", sa.String(64), sa.ForeignKey("templates.id"), nullable=False),
        sa.Column("org_id", sa.String(64), nullable=False),
        sa.Column("previous_content", sa.Text(), nullable=False, server_default=""),
        sa.Column("new_content", sa.Text(), nullable=False),
        sa.Column("change_summary", sa.String(512), nullable=True),
        sa.Column("created_by", sa.String(64), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_template_versions_org_template", "template_versions", ["org_id", "template_id"])
    op.execute("ALTER TABLE template_versions ENABLE ROW LEVEL SECURITY")
    op.execute(
        "CREATE POLICY org_isolation_template_versions ON template_versions "
        "USING (org_id = current_setting('app.org_id', true))"
    )


def downgrade() -> None:
    op.execute("DROP POLICY IF EXISTS org_isolation_template_versions ON template_versions")
    op.drop_table("template_versions")
