"""Shared fixtures for DevVelocity API tests.

Requests run against the real application through an httpx ASGI
transport.  The database is an in-memory SQLite engine shared by the
request sessions and the per-organization sessions opened by webhooks
and batch jobs.  Payment and AI clients are mocks.
"""

from __future__ import annotations

import os
import time
from collections.abc import Awaitable, Callable
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import jwt
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

# Set the signing secret BEFORE importing application modules so the
# AuthenticationMiddleware is built with a deterministic secret.
_TEST_JWT_SECRET = "test-jwt-secret-for-devvelocity-api-tests"
os.environ.setdefault("DEVVELOCITY_SUPABASE_JWT_SECRET", _TEST_JWT_SECRET)

from velocity_api import dependencies  # noqa: E402
from velocity_api.config import APISettings  # noqa: E402
from velocity_api.dependencies import get_lemon_client, get_openai_client, get_settings  # noqa: E402
from velocity_api.main import create_app  # noqa: E402
from velocity_api.services.lemon_service import LemonSqueezyClient  # noqa: E402
from velocity_core.state.repository import OrganizationRepository  # noqa: E402
from velocity_core.state.tables import Base  # noqa: E402

ADMIN_SECRET = "test-admin-secret"
STRIPE_WEBHOOK_SECRET = "whsec_test"
LEMON_WEBHOOK_SECRET = "lemon-test-secret"


# ---------------------------------------------------------------------------
# Auth tokens
# ---------------------------------------------------------------------------


def make_token(
    org_id: str | None = "org-acme",
    *,
    role: str = "admin",
    sub: str = "user-1",
    email: str = "owner@acme.test",
    expires_in: int = 3600,
) -> str:
    """Mint a Supabase-style HS256 access token for the test secret."""
    now = int(time.time())
    app_metadata: dict[str, Any] = {"org_role": role}
    if org_id is not None:
        app_metadata["org_id"] = org_id
    payload = {
        "sub": sub,
        "email": email,
        "aud": "authenticated",
        "iat": now,
        "exp": now + expires_in,
        "app_metadata": app_metadata,
    }
    return jwt.encode(payload, _TEST_JWT_SECRET, algorithm="HS256")


def _auth_headers(org_id: str | None = "org-acme", **kwargs: Any) -> dict[str, str]:
    return {"Authorization": f"Bearer {make_token(org_id, **kwargs)}"}


@pytest.fixture()
def auth_headers() -> Callable[..., dict[str, str]]:
    """Return a factory for ``Authorization`` headers.

    ``auth_headers("org-acme", role="member")`` signs a token for that
    organization and role.
    """
    return _auth_headers


@pytest.fixture()
def admin_headers() -> dict[str, str]:
    """Headers for scheduler-triggered routes guarded by ``x-admin-secret``."""
    return {"x-admin-secret": ADMIN_SECRET}


@pytest.fixture()
def webhook_secrets() -> dict[str, str]:
    return {"stripe": STRIPE_WEBHOOK_SECRET, "lemon": LEMON_WEBHOOK_SECRET}


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------


@pytest.fixture()
def test_settings() -> APISettings:
    """Return settings with every provider configured for tests."""
    return APISettings(
        database_url="sqlite+aiosqlite://",
        supabase_jwt_secret=_TEST_JWT_SECRET,
        internal_admin_secret=ADMIN_SECRET,
        stripe_secret_key="sk_test_123",
        stripe_webhook_secret=STRIPE_WEBHOOK_SECRET,
        stripe_price_id_startup="price_startup",
        stripe_price_id_team="price_team",
        lemon_api_key="lemon-key",
        lemon_store_id="store-1",
        lemon_webhook_secret=LEMON_WEBHOOK_SECRET,
        lemon_variant_startup="101",
        lemon_variant_team="102",
        openai_model="gpt-4o-mini",
    )


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture()
async def session_factory(monkeypatch: pytest.MonkeyPatch):
    """Bind the application's global session factory to in-memory SQLite."""
    engine = create_async_engine("sqlite+aiosqlite://", echo=False, poolclass=StaticPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = async_sessionmaker(engine, expire_on_commit=False)
    monkeypatch.setattr(dependencies, "_session_factory", factory)
    yield factory

    await engine.dispose()


@pytest_asyncio.fixture()
async def make_org(session_factory: async_sessionmaker[AsyncSession]) -> Callable[..., Awaitable[str]]:
    """Return a coroutine that creates and commits an organization."""

    async def _make(
        org_id: str = "org-acme",
        *,
        plan_id: str = "startup",
        seat_count: int = 1,
        name: str = "Acme",
        **fields: Any,
    ) -> str:
        async with session_factory() as session:
            org = await OrganizationRepository(session).create(
                name, "user-1", plan_id=plan_id, org_id=org_id, seat_count=seat_count
            )
            for key, value in fields.items():
                setattr(org, key, value)
            await session.commit()
        return org_id

    return _make


# ---------------------------------------------------------------------------
# Outbound clients
# ---------------------------------------------------------------------------


@pytest.fixture()
def lemon_client() -> AsyncMock:
    client = AsyncMock(spec=LemonSqueezyClient)
    client.create_checkout = AsyncMock(return_value="https://acme.lemonsqueezy.com/checkout/abc")
    client.list_invoices = AsyncMock(return_value=[])
    client.update_subscription = AsyncMock(return_value={"id": "900", "type": "subscriptions"})
    client.cancel_subscription = AsyncMock(return_value={"id": "900", "type": "subscriptions"})
    return client


def _chat_response(content: str, prompt_tokens: int = 1000, completion_tokens: int = 500) -> MagicMock:
    response = MagicMock()
    response.choices = [MagicMock()]
    response.choices[0].message.content = content
    response.usage.prompt_tokens = prompt_tokens
    response.usage.completion_tokens = completion_tokens
    return response


@pytest.fixture()
def chat_response() -> Callable[..., MagicMock]:
    """Return a factory for objects shaped like an OpenAI chat completion."""
    return _chat_response


@pytest.fixture()
def openai_client() -> MagicMock:
    """Return a mock ``AsyncOpenAI`` whose completions reply with a JSON plan."""
    client = MagicMock()
    client.chat.completions.create = AsyncMock(
        return_value=_chat_response('{"summary": "Two-tier web app", "providers": ["aws"]}')
    )
    return client


# ---------------------------------------------------------------------------
# Application and HTTP client
# ---------------------------------------------------------------------------


@pytest.fixture()
def app(
    test_settings: APISettings,
    session_factory: async_sessionmaker[AsyncSession],
    lemon_client: AsyncMock,
    openai_client: MagicMock,
):
    """Create the application with settings and outbound clients overridden."""
    application = create_app()
    application.dependency_overrides[get_settings] = lambda: test_settings
    application.dependency_overrides[get_lemon_client] = lambda: lemon_client
    application.dependency_overrides[get_openai_client] = lambda: openai_client
    return application


@pytest_asyncio.fixture()
async def client(app) -> AsyncClient:
    """Yield an async httpx client bound to the test app.

    Requests carry no token by default; pass ``headers=auth_headers(...)``.
    """
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
