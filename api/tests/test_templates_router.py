"""Tests for api/velocity_api/routers/templates.py

Covers:
- Creating in a locked category is a 403 with the required plan
- Listing is filtered to the plan's categories and searchable
- Templates in locked categories are invisible (404)
- Soft delete and restore, duplicate and publish (team_workspace)
- Export and version history need the file portal
- Import quota for plans without the file portal
"""

from __future__ import annotations

import pytest
from httpx import AsyncClient
from velocity_core.state.repository import TemplateRepository


async def _create(
    client: AsyncClient, headers: dict[str, str], name: str = "AWS VPC", category: str = "base", **extra: str
) -> dict:
    resp = await client.post(
        "/api/v1/templates",
        json={"name": name, "content": "resource {}", "category": category, **extra},
        headers=headers,
    )
    assert resp.status_code == 201, resp.text
    return resp.json()


class TestCreate:
    @pytest.mark.asyncio
    async def test_base_on_developer(self, client: AsyncClient, auth_headers, make_org) -> None:
        await make_org(plan_id="developer")
        body = await _create(client, auth_headers(), "  Starter  ")
        assert body["name"] == "Starter"
        assert body["category"] == "base"
        assert body["created_by"] == "user-1"
        assert body["is_published"] is False

    @pytest.mark.asyncio
    async def test_locked_category(self, client: AsyncClient, auth_headers, make_org) -> None:
        await make_org(plan_id="developer")
        resp = await client.post(
            "/api/v1/templates",
            json={"name": "Multi cloud", "content": "x", "category": "provider"},
            headers=auth_headers(),
        )
        assert resp.status_code == 403
        body = resp.json()
        assert body["upgrade_required"] is True
        assert body["required_plan"] == "startup"
        assert body["capability"] == "templates:provider"

    @pytest.mark.asyncio
    async def test_unknown_category(self, client: AsyncClient, auth_headers, make_org) -> None:
        await make_org(plan_id="team")
        resp = await client.post(
            "/api/v1/templates", json={"name": "x", "content": "x", "category": "secret"}, headers=auth_headers()
        )
        assert resp.status_code == 400

    @pytest.mark.asyncio
    async def test_blank_name(self, client: AsyncClient, auth_headers, make_org) -> None:
        await make_org()
        resp = await client.post("/api/v1/templates", json={"name": "   ", "content": "x"}, headers=auth_headers())
        assert resp.status_code == 400


class TestListAndVisibility:
    @pytest.mark.asyncio
    async def test_list_and_search(self, client: AsyncClient, auth_headers, make_org) -> None:
        await make_org(plan_id="startup")
        headers = auth_headers()
        await _create(client, headers, "AWS VPC", description="network baseline")
        await _create(client, headers, "GCP project", category="provider")

        body = (await client.get("/api/v1/templates", headers=headers)).json()
        assert body["allowed_categories"] == ["base", "provider"]
        assert [t["name"] for t in body["templates"]] == ["AWS VPC", "GCP project"]
        assert "content" not in body["templates"][0]

        found = (await client.get("/api/v1/templates", params={"q": "baseline"}, headers=headers)).json()
        assert [t["name"] for t in found["templates"]] == ["AWS VPC"]

    @pytest.mark.asyncio
    async def test_locked_category_is_hidden(
        self, client: AsyncClient, auth_headers, make_org, session_factory
    ) -> None:
        await make_org(plan_id="startup")
        async with session_factory() as session:
            row = await TemplateRepository(session, "org-acme").create("K8s mesh", "x", category="advanced")
            template_id = row.id
            await session.commit()

        headers = auth_headers()
        listing = (await client.get("/api/v1/templates", headers=headers)).json()
        assert listing["templates"] == []
        resp = await client.get(f"/api/v1/templates/{template_id}", headers=headers)
        assert resp.status_code == 404

    @pytest.mark.asyncio
    async def test_other_organization(self, client: AsyncClient, auth_headers, make_org) -> None:
        await make_org("org-acme")
        await make_org("org-globex", name="Globex")
        template_id = (await _create(client, auth_headers("org-acme")))["id"]
        resp = await client.get(f"/api/v1/templates/{template_id}", headers=auth_headers("org-globex"))
        assert resp.status_code == 404


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_update(self, client: AsyncClient, auth_headers, make_org) -> None:
        await make_org()
        headers = auth_headers()
        template_id = (await _create(client, headers))["id"]
        resp = await client.put(
            f"/api/v1/templates/{template_id}", json={"description": "updated"}, headers=headers
        )
        assert resp.status_code == 200
        body = resp.json()
        assert body["description"] == "updated"
        assert body["name"] == "AWS VPC"

    @pytest.mark.asyncio
    async def test_update_into_locked_category(self, client: AsyncClient, auth_headers, make_org) -> None:
        await make_org(plan_id="startup")
        headers = auth_headers()
        template_id = (await _create(client, headers))["id"]
        resp = await client.put(
            f"/api/v1/templates/{template_id}", json={"category": "enterprise"}, headers=headers
        )
        assert resp.status_code == 403
        assert resp.json()["required_plan"] == "enterprise"

    @pytest.mark.asyncio
    async def test_delete_and_restore(self, client: AsyncClient, auth_headers, make_org) -> None:
        await make_org()
        headers = auth_headers()
        template_id = (await _create(client, headers))["id"]

        deleted = (await client.delete(f"/api/v1/templates/{template_id}", headers=headers)).json()
        assert deleted["status"] == "deleted"
        trash = (await client.get("/api/v1/templates", params={"deleted": True}, headers=headers)).json()
        assert [t["id"] for t in trash["templates"]] == [template_id]

        resp = await client.put(f"/api/v1/templates/{template_id}", json={"name": "x"}, headers=headers)
        assert resp.status_code == 400

        restored = (await client.post(f"/api/v1/templates/{template_id}/restore", headers=headers)).json()
        assert restored["status"] == "active"


class TestWorkspace:
    @pytest.mark.asyncio
    async def test_duplicate(self, client: AsyncClient, auth_headers, make_org) -> None:
        await make_org(plan_id="team")
        headers = auth_headers()
        source = await _create(client, headers, "Mesh", category="advanced")

        resp = await client.post(f"/api/v1/templates/{source['id']}/duplicate", headers=headers)
        assert resp.status_code == 201
        copy = resp.json()
        assert copy["id"] != source["id"]
        assert copy["name"] == "Mesh (copy)"
        assert copy["category"] == "advanced"

        named = await client.post(
            f"/api/v1/templates/{source['id']}/duplicate", json={"new_name": "Mesh v2"}, headers=headers
        )
        assert named.json()["name"] == "Mesh v2"

    @pytest.mark.asyncio
    async def test_duplicate_needs_team_workspace(self, client: AsyncClient, auth_headers, make_org) -> None:
        await make_org(plan_id="developer")
        headers = auth_headers()
        template_id = (await _create(client, headers))["id"]
        resp = await client.post(f"/api/v1/templates/{template_id}/duplicate", headers=headers)
        assert resp.status_code == 403
        assert resp.json()["capability"] == "team_workspace"

    @pytest.mark.asyncio
    async def test_duplicate_deleted_rejected(self, client: AsyncClient, auth_headers, make_org) -> None:
        await make_org(plan_id="team")
        headers = auth_headers()
        template_id = (await _create(client, headers))["id"]
        await client.delete(f"/api/v1/templates/{template_id}", headers=headers)
        resp = await client.post(f"/api/v1/templates/{template_id}/duplicate", headers=headers)
        assert resp.status_code == 400

    @pytest.mark.asyncio
    async def test_publish(self, client: AsyncClient, auth_headers, make_org) -> None:
        await make_org(plan_id="team")
        headers = auth_headers()
        template_id = (await _create(client, headers))["id"]
        resp = await client.post(f"/api/v1/templates/{template_id}/publish", headers=headers)
        assert resp.status_code == 200
        assert resp.json()["is_published"] is True


class TestExportImport:
    @pytest.mark.asyncio
    async def test_export(self, client: AsyncClient, auth_headers, make_org) -> None:
        await make_org(plan_id="startup")
        headers = auth_headers()
        template_id = (await _create(client, headers, "AWS  VPC Baseline"))["id"]

        resp = await client.get(f"/api/v1/templates/{template_id}/export", headers=headers)
        assert resp.status_code == 200
        assert resp.text == "resource {}"
        assert resp.headers["content-type"].startswith("text/plain")
        assert resp.headers["content-disposition"] == 'attachment; filename="aws-vpc-baseline.txt"'

    @pytest.mark.asyncio
    async def test_export_needs_file_portal(self, client: AsyncClient, auth_headers, make_org) -> None:
        await make_org(plan_id="developer")
        headers = auth_headers()
        template_id = (await _create(client, headers))["id"]

        resp = await client.get(f"/api/v1/templates/{template_id}/export", headers=headers)
        assert resp.status_code == 403
        assert resp.json()["capability"] == "file_portal"
        assert resp.json()["required_plan"] == "startup"

    @pytest.mark.asyncio
    async def test_import(self, client: AsyncClient, auth_headers, make_org) -> None:
        await make_org(plan_id="developer")
        resp = await client.post(
            "/api/v1/templates/import",
            json={"name": "Imported", "content": "module {}", "description": "from disk"},
            headers=auth_headers(),
        )
        assert resp.status_code == 201
        body = resp.json()
        assert body["name"] == "Imported"
        assert body["content"] == "module {}"
        assert body["category"] == "base"

    @pytest.mark.asyncio
    async def test_import_count_quota_on_developer(
        self, client: AsyncClient, auth_headers, make_org, session_factory
    ) -> None:
        await make_org(plan_id="developer")
        async with session_factory() as session:
            repo = TemplateRepository(session, "org-acme")
            for i in range(20):
                await repo.create(f"t{i}", "x", category="base")
            await session.commit()

        resp = await client.post(
            "/api/v1/templates/import", json={"name": "One more", "content": "x"}, headers=auth_headers()
        )
        assert resp.status_code == 403
        body = resp.json()
        assert body["capability"] == "templates:import"
        assert body["required_plan"] == "startup"
        assert body["upgrade_required"] is True

    @pytest.mark.asyncio
    async def test_import_size_quota_on_developer(self, client: AsyncClient, auth_headers, make_org) -> None:
        await make_org(plan_id="developer")
        resp = await client.post(
            "/api/v1/templates/import",
            json={"name": "Huge", "content": "x" * (100 * 1024 + 1)},
            headers=auth_headers(),
        )
        assert resp.status_code == 403
        assert resp.json()["capability"] == "templates:import"

    @pytest.mark.asyncio
    async def test_file_portal_lifts_import_quota(self, client: AsyncClient, auth_headers, make_org) -> None:
        await make_org(plan_id="startup")
        resp = await client.post(
            "/api/v1/templates/import",
            json={"name": "Huge", "content": "x" * (100 * 1024 + 1)},
            headers=auth_headers(),
        )
        assert resp.status_code == 201


class TestVersions:
    @pytest.mark.asyncio
    async def test_save_and_list(self, client: AsyncClient, auth_headers, make_org) -> None:
        await make_org(plan_id="startup")
        headers = auth_headers()
        template_id = (await _create(client, headers))["id"]

        resp = await client.post(
            f"/api/v1/templates/{template_id}/versions",
            json={"content": "resource { v2 }", "change_summary": "Add tags"},
            headers=headers,
        )
        assert resp.status_code == 201
        version = resp.json()
        assert version["template_id"] == template_id
        assert version["previous_content"] == "resource {}"
        assert version["new_content"] == "resource { v2 }"
        assert version["change_summary"] == "Add tags"
        assert version["created_by"] == "user-1"

        current = (await client.get(f"/api/v1/templates/{template_id}", headers=headers)).json()
        assert current["content"] == "resource { v2 }"

        listing = (await client.get(f"/api/v1/templates/{template_id}/versions", headers=headers)).json()
        assert [v["id"] for v in listing["versions"]] == [version["id"]]
        assert "new_content" not in listing["versions"][0]

    @pytest.mark.asyncio
    async def test_default_summary(self, client: AsyncClient, auth_headers, make_org) -> None:
        await make_org(plan_id="startup")
        headers = auth_headers()
        template_id = (await _create(client, headers))["id"]
        resp = await client.post(
            f"/api/v1/templates/{template_id}/versions", json={"content": "v2"}, headers=headers
        )
        assert resp.json()["change_summary"] == "Template updated"

    @pytest.mark.asyncio
    async def test_restore(self, client: AsyncClient, auth_headers, make_org) -> None:
        await make_org(plan_id="startup")
        headers = auth_headers()
        template_id = (await _create(client, headers))["id"]
        first = (
            await client.post(f"/api/v1/templates/{template_id}/versions", json={"content": "v2"}, headers=headers)
        ).json()
        await client.post(f"/api/v1/templates/{template_id}/versions", json={"content": "v3"}, headers=headers)

        resp = await client.post(
            f"/api/v1/templates/{template_id}/versions/{first['id']}/restore", headers=headers
        )
        assert resp.status_code == 200
        restored = resp.json()
        assert restored["previous_content"] == "v3"
        assert restored["new_content"] == "v2"
        assert restored["change_summary"].startswith("Restored version from ")

        current = (await client.get(f"/api/v1/templates/{template_id}", headers=headers)).json()
        assert current["content"] == "v2"
        listing = (await client.get(f"/api/v1/templates/{template_id}/versions", headers=headers)).json()
        assert len(listing["versions"]) == 3

    @pytest.mark.asyncio
    async def test_unknown_version(self, client: AsyncClient, auth_headers, make_org) -> None:
        await make_org(plan_id="startup")
        headers = auth_headers()
        template_id = (await _create(client, headers))["id"]
        resp = await client.post(f"/api/v1/templates/{template_id}/versions/missing/restore", headers=headers)
        assert resp.status_code == 404

    @pytest.mark.asyncio
    async def test_versions_need_file_portal(self, client: AsyncClient, auth_headers, make_org) -> None:
        await make_org(plan_id="developer")
        headers = auth_headers()
        template_id = (await _create(client, headers))["id"]

        resp = await client.post(
            f"/api/v1/templates/{template_id}/versions", json={"content": "v2"}, headers=headers
        )
        assert resp.status_code == 403
        assert resp.json()["capability"] == "file_portal"
        listed = await client.get(f"/api/v1/templates/{template_id}/versions", headers=headers)
        assert listed.status_code == 403
