"""API router modules for the DevVelocity backend."""

from __future__ import annotations

from velocity_api.routers import (
    ai_builder,
    billing,
    files,
    health,
    metrics,
    plans,
    sso,
    team,
    templates,
    usage,
    webhooks,
)

__all__ = [
    "ai_builder",
    "billing",
    "files",
    "health",
    "metrics",
    "plans",
    "sso",
    "team",
    "templates",
    "usage",
    "webhooks",
]
