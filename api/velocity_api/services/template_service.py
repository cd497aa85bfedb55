"""Organization template library.

Templates are grouped in categories (base, provider, advanced,
enterprise) and each plan unlocks a subset of them.  Reads are filtered
to the unlocked categories; writes to a locked category are denied with
an upgrade suggestion.  Duplicating and publishing templates need the
shared team workspace; export and version history need the file portal.
"""

from __future__ import annotations

import logging
import re
from typing import Any, NoReturn

from sqlalchemy.ext.asyncio import AsyncSession
from velocity_core.errors import NotFoundError, PlanEntitlementError
from velocity_core.files.status import FileStatus
from velocity_core.metering.events import UsageCounter
from velocity_core.plans.catalog import Capability, PlanTier, TemplateCategory, get_plan, get_required_tier
from velocity_core.plans.entitlements import EntitlementDecision, EntitlementRequest
from velocity_core.state.repository import TemplateRepository, TemplateVersionRepository
from velocity_core.state.tables import TemplateTable, TemplateVersionTable

from velocity_api.services.entitlement_service import EntitlementService, record_denial
from velocity_api.services.usage_service import UsageService

logger = logging.getLogger(__name__)

# Import quota for plans without the file portal.
IMPORT_MAX_TEMPLATES = 20
IMPORT_MAX_BYTES = 100 * 1024


def template_to_dict(row: TemplateTable, *, include_content: bool = True) -> dict[str, Any]:
    data: dict[str, Any] = {
        "id": row.id,
        "name": row.name,
        "description": row.description,
        "category": row.category,
        "is_published": row.is_published,
        "status": row.status,
        "created_by": row.created_by,
        "created_at": row.created_at.isoformat() if row.created_at else None,
        "updated_at": row.updated_at.isoformat() if row.updated_at else None,
    }
    if include_content:
        data["content"] = row.content
    return data


def template_version_to_dict(row: TemplateVersionTable, *, include_content: bool = True) -> dict[str, Any]:
    data: dict[str, Any] = {
        "id": row.id,
        "template_id": row.template_id,
        "change_summary": row.change_summary,
        "created_by": row.created_by,
        "created_at": row.created_at.isoformat() if row.created_at else None,
    }
    if include_content:
        data["previous_content"] = row.previous_content
        data["new_content"] = row.new_content
    return data


class TemplateService:
    """Plan-aware template operations for one organization."""

    def __init__(self, session: AsyncSession, org_id: str, user_id: str | None = None) -> None:
        self._org_id = org_id
        self._user_id = user_id
        self._repo = TemplateRepository(session, org_id)
        self._versions = TemplateVersionRepository(session, org_id)
        self._usage = UsageService(session, org_id)
        self._entitlements = EntitlementService(session, org_id)

    async def _allowed_categories(self) -> list[str]:
        org = await self._entitlements.organization()
        plan = get_plan(org.plan_id)
        return [c.value for c in TemplateCategory if c in plan.template_categories]

    async def _require_category(self, category: str, *extra: EntitlementRequest) -> TemplateCategory:
        try:
            parsed = TemplateCategory(category)
        except ValueError:
            raise ValueError(f"Unknown template category '{category}'") from None
        await self._entitlements.enforce(EntitlementRequest(template_category=parsed), *extra)
        return parsed

    async def _require_visible(self, template_id: str) -> TemplateTable:
        row = await self._repo.require(template_id)
        if row.category not in await self._allowed_categories():
            raise NotFoundError("Template", template_id)
        return row

    async def create(
        self,
        name: str,
        content: str,
        *,
        category: str = TemplateCategory.BASE.value,
        description: str | None = None,
    ) -> TemplateTable:
        if not name.strip() or not content:
            raise ValueError("name and content are required")
        parsed = await self._require_category(category)
        row = await self._repo.create(
            name.strip(),
            content,
            category=parsed.value,
            description=description,
            created_by=self._user_id,
        )
        logger.info("Created %s template %s for org %s", parsed.value, row.id, self._org_id)
        return row

    async def list_templates(
        self,
        *,
        query: str | None = None,
        status: FileStatus = FileStatus.ACTIVE,
        limit: int = 100,
        offset: int = 0,
    ) -> dict[str, Any]:
        """List templates in the categories the plan unlocks."""
        categories = await self._allowed_categories()
        rows = await self._repo.list_templates(
            categories=categories, query=query, status=status, limit=limit, offset=offset
        )
        return {
            "templates": [template_to_dict(r, include_content=False) for r in rows],
            "allowed_categories": categories,
        }

    async def get(self, template_id: str) -> TemplateTable:
        return await self._require_visible(template_id)

    async def update(
        self,
        template_id: str,
        *,
        name: str | None = None,
        description: str | None = None,
        category: str | None = None,
        content: str | None = None,
    ) -> TemplateTable:
        await self._require_visible(template_id)
        if category is not None:
            category = (await self._require_category(category)).value
        return await self._repo.update(
            template_id, name=name, description=description, category=category, content=content
        )

    async def delete(self, template_id: str) -> TemplateTable:
        await self._require_visible(template_id)
        return await self._repo.soft_delete(template_id)

    async def restore(self, template_id: str) -> TemplateTable:
        await self._require_visible(template_id)
        return await self._repo.restore(template_id)

    async def duplicate(self, template_id: str, new_name: str | None = None) -> TemplateTable:
        """Copy a template into a new, unpublished template."""
        source = await self._require_visible(template_id)
        await self._require_category(source.category, EntitlementRequest(capability=Capability.TEAM_WORKSPACE))
        if source.status != FileStatus.ACTIVE.value:
            raise ValueError("Cannot duplicate a deleted template")
        row = await self._repo.create(
            (new_name or f"{source.name} (copy)").strip(),
            source.content,
            category=source.category,
            description=source.description,
            created_by=self._user_id,
        )
        logger.info("Duplicated template %s as %s", template_id, row.id)
        return row

    async def publish(self, template_id: str) -> TemplateTable:
        """Mark a template as published to the organization workspace."""
        source = await self._require_visible(template_id)
        await self._require_category(source.category, EntitlementRequest(capability=Capability.TEAM_WORKSPACE))
        return await self._repo.update(template_id, is_published=True)

    # ------------------------------------------------------------------
    # Export and import
    # ------------------------------------------------------------------

    async def export(self, template_id: str) -> tuple[str, str]:
        """Return ``(filename, content)`` for a plain-text download."""
        row = await self._require_visible(template_id)
        await self._entitlements.enforce(EntitlementRequest(capability=Capability.FILE_PORTAL))
        filename = re.sub(r"\s+", "-", row.name.strip()).lower() + ".txt"
        return filename, row.content

    async def _check_import_quota(self, content: str) -> None:
        org = await self._entitlements.organization()
        plan = get_plan(org.plan_id)
        if plan.has(Capability.FILE_PORTAL):
            return
        if await self._repo.count_active() >= IMPORT_MAX_TEMPLATES:
            self._deny_import(plan.tier, IMPORT_MAX_TEMPLATES, f"allows up to {IMPORT_MAX_TEMPLATES} templates")
        if len(content.encode("utf-8")) > IMPORT_MAX_BYTES:
            self._deny_import(plan.tier, IMPORT_MAX_BYTES, f"limits imported templates to {IMPORT_MAX_BYTES} bytes")

    def _deny_import(self, tier: PlanTier, limit: int, detail: str) -> NoReturn:
        required = get_required_tier(Capability.FILE_PORTAL)
        decision = EntitlementDecision(
            allowed=False,
            plan=tier,
            capability="templates:import",
            required_tier=required,
            next_tier=required,
            limit=limit,
            reason=f"The {tier.value} plan {detail}. Upgrade to {required.value} to import more.",
        )
        record_denial(decision, self._org_id)
        raise PlanEntitlementError(decision)

    async def import_template(
        self,
        name: str,
        content: str,
        *,
        category: str = TemplateCategory.BASE.value,
        description: str | None = None,
    ) -> TemplateTable:
        """Create a template from uploaded text.

        Plans without the file portal may hold at most
        ``IMPORT_MAX_TEMPLATES`` active templates and import at most
        ``IMPORT_MAX_BYTES`` of content.
        """
        await self._check_import_quota(content)
        row = await self.create(name, content, category=category, description=description)
        logger.info("Imported template %s (%d bytes) for org %s", row.id, len(content), self._org_id)
        return row

    # ------------------------------------------------------------------
    # Version history
    # ------------------------------------------------------------------

    async def _require_versioning(self, template_id: str) -> TemplateTable:
        row = await self._require_visible(template_id)
        await self._require_category(row.category, EntitlementRequest(capability=Capability.FILE_PORTAL))
        return row

    async def _replace_content(self, row: TemplateTable, content: str, summary: str) -> TemplateVersionTable:
        version = await self._versions.append(
            row.id, row.content, content, change_summary=summary, created_by=self._user_id
        )
        await self._repo.update(row.id, content=content)
        return version

    async def save_version(
        self, template_id: str, content: str, change_summary: str | None = None
    ) -> TemplateVersionTable:
        """Replace the content and keep the previous content as a version."""
        if not content:
            raise ValueError("content is required")
        row = await self._require_versioning(template_id)
        version = await self._replace_content(row, content, change_summary or "Template updated")
        await self._usage.log(
            {UsageCounter.PIPELINES_RUN: 1},
            metadata={"template_id": template_id, "action": "template_version_saved"},
            source="templates",
        )
        logger.info("Saved version %s of template %s", version.id, template_id)
        return version

    async def list_versions(self, template_id: str) -> list[TemplateVersionTable]:
        await self._require_versioning(template_id)
        return await self._versions.list_for_template(template_id)

    async def restore_version(self, template_id: str, version_id: str) -> TemplateVersionTable:
        """Bring back the content of an earlier version.

        The restore is itself recorded as a new version.

        Raises
        ------
        NotFoundError
            If the version does not belong to the template.
        """
        row = await self._require_versioning(template_id)
        target = await self._versions.get(template_id, version_id)
        if target is None:
            raise NotFoundError("Template version", version_id)
        version = await self._replace_content(
            row, target.new_content, f"Restored version from {target.created_at.isoformat()}"
        )
        await self._usage.log(
            {UsageCounter.PIPELINES_RUN: 1},
            metadata={"template_id": template_id, "action": "template_version_restored", "version_id": version_id},
            source="templates",
        )
        logger.info("Restored template %s to version %s", template_id, version_id)
        return version
