"""Middleware components for the DevVelocity API."""

from __future__ import annotations

from velocity_api.middleware.auth import AuthenticationMiddleware
from velocity_api.middleware.logging import RequestLoggingMiddleware
from velocity_api.middleware.prometheus import PrometheusMiddleware
from velocity_api.middleware.rbac import Role, get_user_role, require_role

__all__ = [
    "AuthenticationMiddleware",
    "PrometheusMiddleware",
    "RequestLoggingMiddleware",
    "Role",
    "get_user_role",
    "require_role",
]
