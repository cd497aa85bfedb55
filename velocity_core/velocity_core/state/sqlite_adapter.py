"""SQLite backend for local DevVelocity runs.

The ORM tables are shared with Postgres.  JSONB columns are stored as
TEXT, there is no connection pool, and row-level security does not apply.
"""

from __future__ import annotations

import logging
from pathlib import Path

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

logger = logging.getLogger(__name__)

_PRAGMAS = ("journal_mode=WAL", "foreign_keys=ON", "synchronous=NORMAL")


def get_local_engine(db_path: Path | str = ".devvelocity/state.db") -> AsyncEngine:
    """Return an aiosqlite engine for *db_path*.

    ``:memory:`` gives an ephemeral database.  For a file path the parent
    directory is created if missing.
    """
    if str(db_path) == ":memory:":
        url = "sqlite+aiosqlite:///:memory:"
    else:
        path = Path(db_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        url = f"sqlite+aiosqlite:///{path}"

    engine = create_async_engine(url, connect_args={"check_same_thread": False})

    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_conn: object, _: object) -> None:
        cursor = dbapi_conn.cursor()  # type: ignore[attr-defined]
        for pragma in _PRAGMAS:
            cursor.execute(f"PRAGMA {pragma}")
        cursor.close()

    logger.info("Local SQLite engine at %s", url)
    return engine


async def create_local_tables(engine: AsyncEngine) -> None:
    """Create any missing tables on *engine*."""
    from velocity_core.state.tables import Base

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Local tables ready")
