"""FastAPI application entry-point for the DevVelocity API."""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import httpx
import openai
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from velocity_core.errors import AlreadyExistsError, NotFoundError, PaymentProviderError, PlanEntitlementError
from velocity_core.state.sqlite_adapter import create_local_tables

from velocity_api import __version__
from velocity_api.config import DEV_JWT_SECRET, APISettings, PlatformEnv, load_api_settings
from velocity_api.dependencies import (
    dispose_engine,
    dispose_lemon_client,
    dispose_openai_client,
    init_engine,
    init_lemon_client,
    init_openai_client,
)
from velocity_api.middleware.auth import AuthenticationMiddleware
from velocity_api.middleware.logging import RequestLoggingMiddleware
from velocity_api.middleware.prometheus import PrometheusMiddleware
from velocity_api.routers import (
    ai_builder,
    billing,
    files,
    health,
    plans,
    sso,
    team,
    templates,
    usage,
    webhooks,
)
from velocity_api.routers import metrics as metrics_router

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application startup / shutdown lifecycle.

    On startup:
    - Refuse to start in staging or production with the dev JWT secret.
    - Initialise the async database engine; create tables for SQLite.
    - Initialise the OpenAI and Lemon Squeezy clients.
    - Switch to JSON logs when ``structured_logging`` is set.

    On shutdown the clients are closed and the engine pool disposed.
    """
    settings: APISettings = load_api_settings()

    if settings.platform_env in (PlatformEnv.STAGING, PlatformEnv.PRODUCTION) and (
        settings.supabase_jwt_secret.get_secret_value() == DEV_JWT_SECRET
    ):
        raise RuntimeError(
            f"DEVVELOCITY_SUPABASE_JWT_SECRET must be set in {settings.platform_env.value} mode. Refusing to start."
        )

    engine = init_engine(settings)
    is_local = settings.database_url.startswith("sqlite")
    logger.info("Database engine initialised (%s)", "local SQLite" if is_local else "postgres")
    if is_local:
        await create_local_tables(engine)

    init_openai_client(settings)
    init_lemon_client(settings)

    if settings.structured_logging:
        from velocity_api.middleware.json_formatter import JSONFormatter

        root_logger = logging.getLogger()
        root_logger.handlers.clear()
        handler = logging.StreamHandler()
        handler.setFormatter(JSONFormatter())
        root_logger.addHandler(handler)
        root_logger.setLevel(logging.INFO)
        logger.info("Structured JSON logging enabled")

    yield

    await dispose_lemon_client()
    await dispose_openai_client()
    await dispose_engine()
    logger.info("Application shutdown complete")


# ---------------------------------------------------------------------------
# Exception handlers
# ---------------------------------------------------------------------------


def _register_exception_handlers(app: FastAPI) -> None:
    """Map domain and builtin exceptions to JSON ``{"detail": ...}`` bodies."""

    @app.exception_handler(PlanEntitlementError)
    async def entitlement_error_handler(request: Request, exc: PlanEntitlementError) -> JSONResponse:
        decision = exc.decision
        return JSONResponse(
            status_code=403,
            content={
                "detail": decision.reason,
                "upgrade_required": True,
                "current_plan": decision.plan.value,
                "required_plan": decision.required_tier.value if decision.required_tier else None,
                "next_plan": decision.next_tier.value if decision.next_tier else None,
                "capability": decision.capability,
            },
        )

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        logger.info("Validation error on %s: %s", request.url.path, exc.errors())
        return JSONResponse(status_code=400, content={"detail": "Invalid request", "errors": _jsonable(exc.errors())})

    @app.exception_handler(AlreadyExistsError)
    async def conflict_handler(request: Request, exc: AlreadyExistsError) -> JSONResponse:
        return JSONResponse(status_code=409, content={"detail": str(exc)})

    @app.exception_handler(LookupError)
    async def not_found_handler(request: Request, exc: LookupError) -> JSONResponse:
        detail = str(exc) if isinstance(exc, NotFoundError) else "Not found"
        return JSONResponse(status_code=404, content={"detail": detail})

    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError) -> JSONResponse:
        logger.warning("ValueError on %s: %s", request.url.path, exc)
        return JSONResponse(status_code=400, content={"detail": str(exc) or "Invalid request"})

    @app.exception_handler(PermissionError)
    async def permission_error_handler(request: Request, exc: PermissionError) -> JSONResponse:
        logger.warning("PermissionError on %s: %s", request.url.path, exc)
        return JSONResponse(status_code=403, content={"detail": str(exc) or "Permission denied"})

    @app.exception_handler(PaymentProviderError)
    async def payment_provider_error_handler(request: Request, exc: PaymentProviderError) -> JSONResponse:
        logger.error("Payment provider error on %s: %s", request.url.path, exc)
        return JSONResponse(status_code=500, content={"detail": "Payment provider error"})

    @app.exception_handler(openai.OpenAIError)
    async def openai_error_handler(request: Request, exc: openai.OpenAIError) -> JSONResponse:
        logger.error("OpenAI error on %s: %s", request.url.path, exc)
        return JSONResponse(status_code=500, content={"detail": "AI provider error"})

    @app.exception_handler(httpx.HTTPError)
    async def http_error_handler(request: Request, exc: httpx.HTTPError) -> JSONResponse:
        logger.error("Outbound HTTP error on %s: %s", request.url.path, exc)
        return JSONResponse(status_code=500, content={"detail": "Upstream request failed"})

    @app.exception_handler(SQLAlchemyError)
    async def sqlalchemy_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
        logger.error("Database error: %s", exc, exc_info=True)
        return JSONResponse(status_code=500, content={"detail": "Internal database error"})

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.error("Unhandled error on %s", request.url.path, exc_info=exc)
        return JSONResponse(status_code=500, content={"detail": "Internal server error"})


def _jsonable(errors: list[dict]) -> list[dict]:
    # ``ctx`` may hold the raw exception, which is not JSON serialisable.
    return [{k: (str(v) if k == "ctx" else v) for k, v in err.items() if k != "input"} for err in errors]


# ---------------------------------------------------------------------------
# Application factory
# ---------------------------------------------------------------------------


def create_app() -> FastAPI:
    """Construct and configure the FastAPI application."""
    settings = load_api_settings()

    app = FastAPI(
        title="DevVelocity API",
        description="Plan entitlements, usage metering and billing for DevVelocity.",
        version=__version__,
        lifespan=lifespan,
    )

    # -- Middleware (outermost first) ----------------------------------------

    app.add_middleware(PrometheusMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=settings.cors_allow_credentials,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", "X-Correlation-ID", "X-Admin-Secret", "Accept"],
    )
    app.add_middleware(
        AuthenticationMiddleware,
        jwt_secret=settings.supabase_jwt_secret.get_secret_value(),
        audience=settings.supabase_jwt_audience,
    )
    app.add_middleware(RequestLoggingMiddleware)

    # -- Routers -------------------------------------------------------------

    for module in (health, plans, usage, billing, webhooks, files, templates, ai_builder, sso, team):
        app.include_router(module.router, prefix="/api/v1")

    # Prometheus scrape and readiness check live outside /api/v1.
    app.include_router(metrics_router.router)
    app.include_router(health.readiness_router)

    _register_exception_handlers(app)
    return app


# Module-level application instance used by ``uvicorn velocity_api.main:app``.
app = create_app()
