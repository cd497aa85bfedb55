"""State persistence layer (PostgreSQL via Supabase, SQLite locally)."""

from velocity_core.state.database import get_engine, set_org_context
from velocity_core.state.repository import (
    AIBuilderRepository,
    BillingEventRepository,
    FileRepository,
    FileVersionRepository,
    MemberRepository,
    OrganizationRepository,
    TemplateRepository,
    TemplateVersionRepository,
    UsageLogRepository,
)

__all__ = [
    "AIBuilderRepository",
    "BillingEventRepository",
    "FileRepository",
    "FileVersionRepository",
    "MemberRepository",
    "OrganizationRepository",
    "TemplateRepository",
    "TemplateVersionRepository",
    "UsageLogRepository",
    "get_engine",
    "set_org_context",
]
