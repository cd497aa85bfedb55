"""Tests for the plan catalog, entitlement endpoints and token handling.

Covers:
- GET /plans and /plans/{id} are public; unknown ids are 404
- Missing, expired and wrongly signed tokens are 401
- GET /plans/entitlements/me reports the stored plan and seats
- GET /plans/entitlements/check never raises on denial
"""

from __future__ import annotations

import jwt
import pytest
from httpx import AsyncClient


class TestPlanCatalog:
    @pytest.mark.asyncio
    async def test_list_plans_public(self, client: AsyncClient) -> None:
        resp = await client.get("/api/v1/plans")
        assert resp.status_code == 200
        plans = resp.json()["plans"]
        assert [p["id"] for p in plans] == ["developer", "startup", "team", "enterprise"]
        assert plans[0]["limits"]["max_providers"] == 1
        assert plans[-1]["limits"]["build_minutes"] is None

    @pytest.mark.asyncio
    async def test_get_single_plan(self, client: AsyncClient) -> None:
        resp = await client.get("/api/v1/plans/team")
        assert resp.status_code == 200
        body = resp.json()
        assert body["id"] == "team"
        assert "team_workspace" in body["capabilities"]

    @pytest.mark.asyncio
    async def test_unknown_plan_is_404(self, client: AsyncClient) -> None:
        resp = await client.get("/api/v1/plans/platinum")
        assert resp.status_code == 404


class TestAuthentication:
    @pytest.mark.asyncio
    async def test_missing_token(self, client: AsyncClient) -> None:
        resp = await client.get("/api/v1/plans/entitlements/me")
        assert resp.status_code == 401
        assert resp.json()["detail"] == "Missing Authorization header"

    @pytest.mark.asyncio
    async def test_expired_token(self, client: AsyncClient, auth_headers) -> None:
        resp = await client.get("/api/v1/plans/entitlements/me", headers=auth_headers(expires_in=-60))
        assert resp.status_code == 401
        assert resp.json()["detail"] == "Token has expired"

    @pytest.mark.asyncio
    async def test_wrong_secret(self, client: AsyncClient) -> None:
        token = jwt.encode(
            {"sub": "u", "aud": "authenticated", "app_metadata": {"org_id": "org-acme"}},
            "some-other-secret-that-is-long-enough",
            algorithm="HS256",
        )
        resp = await client.get("/api/v1/plans/entitlements/me", headers={"Authorization": f"Bearer {token}"})
        assert resp.status_code == 401
        assert resp.json()["detail"] == "Invalid token"

    @pytest.mark.asyncio
    async def test_non_bearer_scheme(self, client: AsyncClient) -> None:
        resp = await client.get("/api/v1/plans/entitlements/me", headers={"Authorization": "Basic abc"})
        assert resp.status_code == 401

    @pytest.mark.asyncio
    async def test_token_without_organization(self, client: AsyncClient, auth_headers) -> None:
        resp = await client.get("/api/v1/plans/entitlements/me", headers=auth_headers(None))
        assert resp.status_code == 401
        assert resp.json()["detail"] == "Authentication required"


class TestEntitlements:
    @pytest.mark.asyncio
    async def test_me(self, client: AsyncClient, auth_headers, make_org) -> None:
        await make_org(plan_id="startup", seat_count=4)
        resp = await client.get("/api/v1/plans/entitlements/me", headers=auth_headers())
        assert resp.status_code == 200
        body = resp.json()
        assert body["plan"]["id"] == "startup"
        assert body["seats"]["additional_seats"] == 1
        assert {c["counter"] for c in body["caps"]} >= {"build_minutes", "pipelines_run"}

    @pytest.mark.asyncio
    async def test_unknown_stored_plan_treated_as_developer(self, client: AsyncClient, auth_headers, make_org) -> None:
        await make_org(plan_id="legacy-gold")
        body = (await client.get("/api/v1/plans/entitlements/me", headers=auth_headers())).json()
        assert body["plan"]["id"] == "developer"
        assert body["stored_plan_id"] == "legacy-gold"

    @pytest.mark.asyncio
    async def test_unknown_organization(self, client: AsyncClient, auth_headers, make_org) -> None:
        resp = await client.get("/api/v1/plans/entitlements/me", headers=auth_headers("org-missing"))
        assert resp.status_code == 404

    @pytest.mark.asyncio
    async def test_check_denied_capability(self, client: AsyncClient, auth_headers, make_org) -> None:
        await make_org(plan_id="developer")
        resp = await client.get(
            "/api/v1/plans/entitlements/check", params={"capability": "sso"}, headers=auth_headers()
        )
        assert resp.status_code == 200
        body = resp.json()
        assert body["allowed"] is False
        assert body["upgrade_required"] is True
        assert body["required_plan"] == "startup"

    @pytest.mark.asyncio
    async def test_check_limit(self, client: AsyncClient, auth_headers, make_org) -> None:
        await make_org(plan_id="startup")
        resp = await client.get(
            "/api/v1/plans/entitlements/check",
            params={"limit": "max_providers", "quantity": 5},
            headers=auth_headers(),
        )
        body = resp.json()
        assert body["allowed"] is False
        assert body["required_plan"] == "team"

    @pytest.mark.asyncio
    async def test_check_requires_exactly_one_request(self, client: AsyncClient, auth_headers, make_org) -> None:
        await make_org()
        resp = await client.get(
            "/api/v1/plans/entitlements/check",
            params={"capability": "sso", "template_category": "base"},
            headers=auth_headers(),
        )
        assert resp.status_code == 400


class TestHealth:
    @pytest.mark.asyncio
    async def test_health(self, client: AsyncClient) -> None:
        resp = await client.get("/api/v1/health")
        assert resp.status_code == 200
        body = resp.json()
        assert body["db"] == "ok"
        assert body["integrations"]["stripe"] == "configured"

    @pytest.mark.asyncio
    async def test_ready(self, client: AsyncClient) -> None:
        resp = await client.get("/ready")
        assert resp.status_code == 200
