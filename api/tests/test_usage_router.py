"""Tests for api/velocity_api/routers/usage.py

Covers:
- POST /usage/log is open to every plan and validates counters
- GET /usage/summary is gated on usage_analytics (403 with upgrade hint)
- Summary totals are reported unclamped with overage for the excess
- POST /usage/reset authenticates with x-admin-secret
"""

from __future__ import annotations

import pytest
from httpx import AsyncClient


async def _log(client: AsyncClient, headers: dict[str, str], **counters: int) -> None:
    resp = await client.post("/api/v1/usage/log", json={"counters": counters}, headers=headers)
    assert resp.status_code == 201, resp.text


class TestUsageLog:
    @pytest.mark.asyncio
    async def test_log_on_developer_plan(self, client: AsyncClient, auth_headers, make_org) -> None:
        await make_org(plan_id="developer")
        resp = await client.post(
            "/api/v1/usage/log",
            json={"counters": {"build_minutes": 5}, "metadata": {"pipeline": "ci"}},
            headers=auth_headers(),
        )
        assert resp.status_code == 201
        assert resp.json()["org_id"] == "org-acme"

    @pytest.mark.asyncio
    async def test_unknown_counter_rejected(self, client: AsyncClient, auth_headers, make_org) -> None:
        await make_org()
        resp = await client.post("/api/v1/usage/log", json={"counters": {"coffee": 1}}, headers=auth_headers())
        assert resp.status_code == 400

    @pytest.mark.asyncio
    async def test_negative_counter_rejected(self, client: AsyncClient, auth_headers, make_org) -> None:
        await make_org()
        resp = await client.post(
            "/api/v1/usage/log", json={"counters": {"build_minutes": -3}}, headers=auth_headers()
        )
        assert resp.status_code == 400

    @pytest.mark.asyncio
    async def test_unknown_organization(self, client: AsyncClient, auth_headers) -> None:
        resp = await client.post(
            "/api/v1/usage/log", json={"counters": {"build_minutes": 1}}, headers=auth_headers("org-ghost")
        )
        assert resp.status_code == 404


class TestUsageSummary:
    @pytest.mark.asyncio
    async def test_developer_needs_upgrade(self, client: AsyncClient, auth_headers, make_org) -> None:
        await make_org(plan_id="developer")
        resp = await client.get("/api/v1/usage/summary", headers=auth_headers())
        assert resp.status_code == 403
        body = resp.json()
        assert body["upgrade_required"] is True
        assert body["current_plan"] == "developer"
        assert body["required_plan"] == "startup"
        assert body["capability"] == "usage_analytics"

    @pytest.mark.asyncio
    async def test_over_cap_is_reported_with_overage(self, client: AsyncClient, auth_headers, make_org) -> None:
        await make_org(plan_id="startup")
        headers = auth_headers()
        await _log(client, headers, build_minutes=100)
        await _log(client, headers, build_minutes=150)

        resp = await client.get("/api/v1/usage/summary", headers=headers)
        assert resp.status_code == 200
        body = resp.json()
        assert body["totals"]["build_minutes"] == 250
        build = next(c for c in body["caps"] if c["counter"] == "build_minutes")
        assert build["limit"] == 200
        assert build["exceeded"] is True
        assert body["overage_amount"] == "1.00"
        assert any(r.startswith("Build minutes exceeded") for r in body["recommendations"])

    @pytest.mark.asyncio
    async def test_summary_isolated_per_organization(self, client: AsyncClient, auth_headers, make_org) -> None:
        await make_org("org-acme", plan_id="startup")
        await make_org("org-globex", plan_id="startup", name="Globex")
        await _log(client, auth_headers("org-globex"), pipelines_run=9)

        body = (await client.get("/api/v1/usage/summary", headers=auth_headers("org-acme"))).json()
        assert body["totals"]["pipelines_run"] == 0

    @pytest.mark.asyncio
    async def test_events_newest_first(self, client: AsyncClient, auth_headers, make_org) -> None:
        await make_org(plan_id="startup")
        headers = auth_headers()
        await _log(client, headers, diffs_viewed=1)
        await _log(client, headers, diffs_viewed=2)

        body = (await client.get("/api/v1/usage/events", headers=headers)).json()
        assert body["total"] == 2
        assert [e["counters"]["diffs_viewed"] for e in body["events"]] == [2, 1]


    @pytest.mark.asyncio
    async def test_daily_totals(self, client: AsyncClient, auth_headers, make_org) -> None:
        await make_org(plan_id="startup")
        headers = auth_headers()
        await _log(client, headers, build_minutes=4)
        await _log(client, headers, build_minutes=6, pipelines_run=1)

        resp = await client.get("/api/v1/usage/daily", params={"days": 7}, headers=headers)
        assert resp.status_code == 200
        days = resp.json()["days"]
        assert len(days) == 1
        assert days[0]["build_minutes"] == 10
        assert days[0]["pipelines_run"] == 1


class TestUsageReset:
    @pytest.mark.asyncio
    async def test_requires_admin_secret(self, client: AsyncClient, make_org) -> None:
        await make_org()
        resp = await client.post("/api/v1/usage/reset", json={"org_id": "org-acme"})
        assert resp.status_code == 401

    @pytest.mark.asyncio
    async def test_wrong_admin_secret(self, client: AsyncClient, make_org) -> None:
        await make_org()
        resp = await client.post(
            "/api/v1/usage/reset", json={"org_id": "org-acme"}, headers={"x-admin-secret": "nope"}
        )
        assert resp.status_code == 401

    @pytest.mark.asyncio
    async def test_reset_deletes_window(self, client: AsyncClient, auth_headers, admin_headers, make_org) -> None:
        await make_org(plan_id="startup")
        headers = auth_headers()
        await _log(client, headers, build_minutes=10)
        await _log(client, headers, build_minutes=20)

        resp = await client.post("/api/v1/usage/reset", json={"org_id": "org-acme"}, headers=admin_headers)
        assert resp.status_code == 200
        assert resp.json()["deleted"] == 2

        body = (await client.get("/api/v1/usage/summary", headers=headers)).json()
        assert body["totals"]["build_minutes"] == 0
