"""Database engines and the organization RLS context.

Production runs against Supabase Postgres through the asyncpg driver;
local runs and tests use ``sqlite+aiosqlite``.  The URL scheme picks the
engine.
"""

from __future__ import annotations

import logging
import re

from sqlalchemy import text
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine

logger = logging.getLogger(__name__)

# Supabase uuids and the slug ids used in tests.
_ORG_ID_RE = re.compile(r"^[a-zA-Z0-9_-]{1,64}$")


def get_engine(database_url: str, pool_size: int = 5, max_overflow: int = 10) -> AsyncEngine:
    """Create the async engine for *database_url*.

    Parameters
    ----------
    database_url:
        ``postgresql+asyncpg://...`` or ``sqlite+aiosqlite:///path``.  A
        SQLite URL without a path is an in-memory database.
    pool_size, max_overflow:
        Postgres pool sizing.  Ignored for SQLite.
    """
    url = make_url(database_url)
    if url.get_backend_name() == "sqlite":
        from velocity_core.state.sqlite_adapter import get_local_engine

        return get_local_engine(url.database or ":memory:")

    # The Supabase transaction pooler (pgbouncer) cannot keep prepared
    # statements across transactions.
    engine = create_async_engine(
        url,
        pool_size=pool_size,
        max_overflow=max_overflow,
        pool_pre_ping=True,
        connect_args={
            "statement_cache_size": 0,
            "server_settings": {"statement_timeout": "15000"},
        },
    )
    logger.info("Postgres engine created for host %s (pool_size=%d)", url.host, pool_size)
    return engine


async def set_org_context(session: AsyncSession, org_id: str) -> None:
    """Bind *org_id* for the Postgres row-level security policies.

    The setting is transaction-scoped.  SQLite has no RLS, so this is a
    no-op there.

    Raises
    ------
    ValueError
        If *org_id* is not a plain identifier.
    """
    if session.get_bind().dialect.name == "sqlite":
        return
    if not _ORG_ID_RE.match(org_id):
        raise ValueError(f"Invalid org_id {org_id!r}")
    await session.execute(text("SELECT set_config('app.org_id', :org_id, true)"), {"org_id": org_id})
