"""Tests for api/velocity_api/routers/sso.py

Covers:
- /sso/login redirects to the Supabase authorize URL without a token
- Microsoft maps to the Supabase "azure" provider
- /sso/logout redirects to the application home
- /sso/config needs the sso capability; writing it needs ADMIN
"""

from __future__ import annotations

from urllib.parse import parse_qs, urlparse

import pytest
from httpx import AsyncClient


class TestLoginRedirect:
    @pytest.mark.asyncio
    async def test_google(self, client: AsyncClient) -> None:
        resp = await client.get("/api/v1/sso/login", params={"provider": "google"})
        assert resp.status_code == 302
        location = urlparse(resp.headers["location"])
        assert location.netloc == "localhost:54321"
        assert location.path == "/auth/v1/authorize"
        query = parse_qs(location.query)
        assert query["provider"] == ["google"]
        assert query["redirect_to"] == ["http://localhost:3000/auth/callback"]

    @pytest.mark.asyncio
    async def test_microsoft_maps_to_azure(self, client: AsyncClient) -> None:
        resp = await client.get(
            "/api/v1/sso/login", params={"provider": "microsoft", "redirect_to": "https://app.test/done"}
        )
        query = parse_qs(urlparse(resp.headers["location"]).query)
        assert query["provider"] == ["azure"]
        assert query["redirect_to"] == ["https://app.test/done"]

    @pytest.mark.asyncio
    async def test_unknown_provider(self, client: AsyncClient) -> None:
        resp = await client.get("/api/v1/sso/login", params={"provider": "myspace"})
        assert resp.status_code == 400

    @pytest.mark.asyncio
    async def test_logout(self, client: AsyncClient) -> None:
        resp = await client.get("/api/v1/sso/logout")
        assert resp.status_code == 302
        assert resp.headers["location"] == "http://localhost:3000"


class TestConfig:
    @pytest.mark.asyncio
    async def test_developer_needs_upgrade(self, client: AsyncClient, auth_headers, make_org) -> None:
        await make_org(plan_id="developer")
        resp = await client.get("/api/v1/sso/config", headers=auth_headers())
        assert resp.status_code == 403
        assert resp.json()["capability"] == "sso"

    @pytest.mark.asyncio
    async def test_empty_config(self, client: AsyncClient, auth_headers, make_org) -> None:
        await make_org(plan_id="startup")
        body = (await client.get("/api/v1/sso/config", headers=auth_headers())).json()
        assert body == {"org_id": "org-acme", "sso_provider": None, "sso_config": {}}

    @pytest.mark.asyncio
    async def test_save_and_read(self, client: AsyncClient, auth_headers, make_org) -> None:
        await make_org(plan_id="startup")
        payload = {"sso_provider": "okta", "sso_config": {"domain": "acme.okta.com"}}
        resp = await client.put("/api/v1/sso/config", json=payload, headers=auth_headers())
        assert resp.status_code == 200

        body = (await client.get("/api/v1/sso/config", headers=auth_headers(role="member"))).json()
        assert body["sso_provider"] == "okta"
        assert body["sso_config"] == {"domain": "acme.okta.com"}

    @pytest.mark.asyncio
    async def test_member_cannot_save(self, client: AsyncClient, auth_headers, make_org) -> None:
        await make_org(plan_id="startup")
        resp = await client.put(
            "/api/v1/sso/config", json={"sso_provider": "google"}, headers=auth_headers(role="member")
        )
        assert resp.status_code == 403

    @pytest.mark.asyncio
    async def test_invalid_provider(self, client: AsyncClient, auth_headers, make_org) -> None:
        await make_org(plan_id="startup")
        resp = await client.put("/api/v1/sso/config", json={"sso_provider": "ldap"}, headers=auth_headers())
        assert resp.status_code == 400

    @pytest.mark.asyncio
    async def test_config_must_be_object(self, client: AsyncClient, auth_headers, make_org) -> None:
        await make_org(plan_id="startup")
        resp = await client.put(
            "/api/v1/sso/config", json={"sso_provider": "google", "sso_config": ["a"]}, headers=auth_headers()
        )
        assert resp.status_code == 400
