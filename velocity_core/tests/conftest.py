"""Shared fixtures for velocity_core tests.

Repository tests run against an in-memory SQLite database via aiosqlite
so they need no Postgres instance.  The ORM tables already fall back to
JSON and re-tag naive timestamps as UTC on SQLite.
"""

from __future__ import annotations

import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool
from velocity_core.state.repository import OrganizationRepository
from velocity_core.state.tables import Base, OrganizationTable


@pytest_asyncio.fixture
async def async_session():
    """Provide an async session backed by an in-memory SQLite database."""
    engine = create_async_engine("sqlite+aiosqlite://", echo=False, poolclass=StaticPool)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = async_sessionmaker(engine, expire_on_commit=False)
    async with factory() as session:
        yield session

    await engine.dispose()


@pytest_asyncio.fixture
async def org(async_session: AsyncSession) -> OrganizationTable:
    """A startup-plan organization with three seats in use."""
    return await OrganizationRepository(async_session).create(
        "Acme", "owner-1", plan_id="startup", org_id="org-acme", seat_count=3
    )


@pytest_asyncio.fixture
async def other_org(async_session: AsyncSession) -> OrganizationTable:
    return await OrganizationRepository(async_session).create("Globex", "owner-2", org_id="org-globex")
