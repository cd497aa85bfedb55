"""FastAPI dependency injection for settings, database sessions, identity,
plan gating and outbound clients."""

from __future__ import annotations

import hmac
import logging
from collections.abc import AsyncGenerator, Callable
from typing import Annotated

from fastapi import Depends, Header, HTTPException, Request
from openai import AsyncOpenAI
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker
from velocity_core.errors import PlanEntitlementError
from velocity_core.plans.catalog import Capability
from velocity_core.plans.entitlements import EntitlementDecision, check_capability
from velocity_core.state.database import get_engine, set_org_context
from velocity_core.state.repository import OrganizationRepository
from velocity_core.state.tables import OrganizationTable

from velocity_api.config import APISettings, load_api_settings
from velocity_api.middleware.rbac import Role, get_user_role
from velocity_api.services.entitlement_service import record_denial
from velocity_api.services.lemon_service import LemonSqueezyClient

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------

_settings_cache: APISettings | None = None


def get_settings() -> APISettings:
    """Return the cached :class:`APISettings` singleton."""
    global _settings_cache  # noqa: PLW0603
    if _settings_cache is None:
        _settings_cache = load_api_settings()
    return _settings_cache


SettingsDep = Annotated[APISettings, Depends(get_settings)]

# ---------------------------------------------------------------------------
# Database session
# ---------------------------------------------------------------------------

_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def init_engine(settings: APISettings) -> AsyncEngine:
    """Create and cache the global async engine."""
    global _engine, _session_factory  # noqa: PLW0603
    _engine = get_engine(settings.database_url)
    _session_factory = async_sessionmaker(_engine, expire_on_commit=False)
    return _engine


async def dispose_engine() -> None:
    """Dispose the global engine pool (call during shutdown)."""
    global _engine, _session_factory  # noqa: PLW0603
    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _session_factory = None


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Return the global async session factory.

    Used by webhook handlers and batch jobs, which open one session per
    organization instead of one per request.
    """
    if _session_factory is None:
        raise RuntimeError(
            "Database engine has not been initialised. Ensure init_engine() is called during application startup."
        )
    return _session_factory


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """Yield an ``AsyncSession`` **without** organization RLS context.

    .. warning:: **No Row-Level Security**

       Queries through this session can read and write rows belonging to
       any organization.  Use only for public catalog reads and for the
       admin batch routes guarded by :func:`require_admin_secret`.

    The session commits on clean exit and rolls back on exception.
    """
    session = get_session_factory()()
    try:
        yield session
        await session.commit()
    except Exception:
        await session.rollback()
        raise
    finally:
        await session.close()


def get_org_id(request: Request) -> str:
    """Extract the organization id bound to the caller's token."""
    org_id = getattr(request.state, "org_id", None)
    if not org_id:
        raise HTTPException(status_code=401, detail="Authentication required")
    return str(org_id)


OrgDep = Annotated[str, Depends(get_org_id)]


async def get_org_session(org_id: OrgDep) -> AsyncGenerator[AsyncSession, None]:
    """Yield an ``AsyncSession`` bound to the caller's organization.

    Sets ``app.org_id`` on the transaction so the Postgres row-level
    security policies restrict every query to the organization's rows.
    This is the session dependency for all organization-scoped endpoints.
    """
    session = get_session_factory()()
    try:
        await set_org_context(session, org_id)
        yield session
        await session.commit()
    except Exception:
        await session.rollback()
        raise
    finally:
        await session.close()


SessionDep = Annotated[AsyncSession, Depends(get_org_session)]

# WARNING: these sessions have NO organization RLS context.  See
# get_db_session() for the routes allowed to use them.
PublicSessionDep = Annotated[AsyncSession, Depends(get_db_session)]
AdminSessionDep = Annotated[AsyncSession, Depends(get_db_session)]

# ---------------------------------------------------------------------------
# Caller identity (populated by AuthenticationMiddleware)
# ---------------------------------------------------------------------------


def get_user_id(request: Request) -> str:
    """Extract the Supabase user id from authenticated request state."""
    return getattr(request.state, "user_id", None) or "anonymous"


UserDep = Annotated[str, Depends(get_user_id)]

RoleDep = Annotated[Role, Depends(get_user_role)]


async def get_current_org(session: SessionDep, org_id: OrgDep) -> OrganizationTable:
    """Load the caller's organization row (404 when it does not exist)."""
    return await OrganizationRepository(session).require(org_id)


CurrentOrgDep = Annotated[OrganizationTable, Depends(get_current_org)]

# ---------------------------------------------------------------------------
# Plan gating
# ---------------------------------------------------------------------------


def require_capability(capability: Capability) -> Callable[..., EntitlementDecision]:
    """Return a FastAPI dependency that gates a route on a plan capability.

    Loads the caller's organization, evaluates the capability against its
    plan, and raises :class:`PlanEntitlementError` (rendered as a 403 with
    ``upgrade_required``) on denial.

    Usage::

        @router.get("/summary")
        async def usage_summary(
            ...,
            _gate: EntitlementDecision = Depends(require_capability(Capability.USAGE_ANALYTICS)),
        ):
            ...
    """

    async def _gate(org: CurrentOrgDep) -> EntitlementDecision:
        decision = check_capability(org.plan_id, capability)
        if not decision.allowed:
            record_denial(decision, org.id)
            raise PlanEntitlementError(decision)
        return decision

    return _gate  # type: ignore[return-value]


def require_admin_secret(
    settings: SettingsDep,
    x_admin_secret: Annotated[str | None, Header()] = None,
) -> None:
    """Authenticate cron-triggered and admin routes by shared secret.

    The ``x-admin-secret`` header is compared in constant time with
    ``internal_admin_secret``.  An unset secret rejects every caller.
    """
    expected = settings.internal_admin_secret.get_secret_value()
    if not expected or not x_admin_secret or not hmac.compare_digest(x_admin_secret, expected):
        logger.warning("Rejected admin request with missing or invalid x-admin-secret")
        raise HTTPException(status_code=401, detail="Invalid admin secret")


AdminDep = Annotated[None, Depends(require_admin_secret)]

# ---------------------------------------------------------------------------
# OpenAI client
# ---------------------------------------------------------------------------

_openai_client: AsyncOpenAI | None = None


def init_openai_client(settings: APISettings) -> AsyncOpenAI | None:
    """Create and cache the global ``AsyncOpenAI`` client when a key is configured."""
    global _openai_client  # noqa: PLW0603
    api_key = settings.openai_api_key.get_secret_value()
    if not api_key:
        logger.info("OpenAI API key not configured; AI builder disabled")
        _openai_client = None
        return None
    _openai_client = AsyncOpenAI(api_key=api_key, timeout=settings.outbound_timeout_seconds, max_retries=0)
    return _openai_client


async def dispose_openai_client() -> None:
    global _openai_client  # noqa: PLW0603
    if _openai_client is not None:
        await _openai_client.close()
        _openai_client = None


def get_openai_client() -> AsyncOpenAI:
    """Return the cached ``AsyncOpenAI`` client (503 when not configured)."""
    if _openai_client is None:
        raise HTTPException(status_code=503, detail="AI builder is not configured")
    return _openai_client


AIClientDep = Annotated[AsyncOpenAI, Depends(get_openai_client)]

# ---------------------------------------------------------------------------
# Lemon Squeezy client
# ---------------------------------------------------------------------------

_lemon_client: LemonSqueezyClient | None = None


def init_lemon_client(settings: APISettings) -> LemonSqueezyClient:
    """Create and cache the global :class:`LemonSqueezyClient`."""
    global _lemon_client  # noqa: PLW0603
    _lemon_client = LemonSqueezyClient(
        base_url=settings.lemon_api_base_url,
        api_key=settings.lemon_api_key.get_secret_value(),
        timeout=settings.outbound_timeout_seconds,
    )
    return _lemon_client


async def dispose_lemon_client() -> None:
    """Close the Lemon Squeezy client's HTTP pool."""
    global _lemon_client  # noqa: PLW0603
    if _lemon_client is not None:
        await _lemon_client.close()
        _lemon_client = None


def get_lemon_client() -> LemonSqueezyClient:
    """Return the cached :class:`LemonSqueezyClient` singleton."""
    if _lemon_client is None:
        raise RuntimeError(
            "Lemon Squeezy client has not been initialised. Ensure init_lemon_client() is called during startup."
        )
    return _lemon_client


LemonDep = Annotated[LemonSqueezyClient, Depends(get_lemon_client)]
