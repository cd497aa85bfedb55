"""Template library endpoints.

Templates outside the categories the caller's plan unlocks are invisible
(404); creating one in a locked category is a 403 with the upgrade
payload.  Duplicating and publishing need the team workspace; export and
version history need the file portal.  Importing is open to every plan
within a quota.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Query
from fastapi.responses import PlainTextResponse
from velocity_core.files.status import FileStatus

from velocity_api.dependencies import OrgDep, SessionDep, UserDep
from velocity_api.schemas import (
    TemplateCreateRequest,
    TemplateDuplicateRequest,
    TemplateUpdateRequest,
    TemplateVersionSaveRequest,
)
from velocity_api.services.template_service import TemplateService, template_to_dict, template_version_to_dict

router = APIRouter(prefix="/templates", tags=["templates"])


@router.post("", status_code=201)
async def create_template(
    body: TemplateCreateRequest,
    session: SessionDep,
    org_id: OrgDep,
    user_id: UserDep,
) -> dict[str, Any]:
    row = await TemplateService(session, org_id, user_id).create(
        body.name, body.content, category=body.category, description=body.description
    )
    return template_to_dict(row)


@router.post("/import", status_code=201)
async def import_template(
    body: TemplateCreateRequest,
    session: SessionDep,
    org_id: OrgDep,
    user_id: UserDep,
) -> dict[str, Any]:
    row = await TemplateService(session, org_id, user_id).import_template(
        body.name, body.content, category=body.category, description=body.description
    )
    return template_to_dict(row)


@router.get("")
async def list_templates(
    session: SessionDep,
    org_id: OrgDep,
    q: str | None = Query(default=None, max_length=200),
    deleted: bool = Query(default=False),
    limit: int = Query(default=100, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
) -> dict[str, Any]:
    """List templates the plan can see, optionally searching name and description."""
    status = FileStatus.DELETED if deleted else FileStatus.ACTIVE
    return await TemplateService(session, org_id).list_templates(query=q, status=status, limit=limit, offset=offset)


@router.get("/{template_id}")
async def get_template(template_id: str, session: SessionDep, org_id: OrgDep) -> dict[str, Any]:
    return template_to_dict(await TemplateService(session, org_id).get(template_id))


@router.put("/{template_id}")
async def update_template(
    template_id: str,
    body: TemplateUpdateRequest,
    session: SessionDep,
    org_id: OrgDep,
) -> dict[str, Any]:
    row = await TemplateService(session, org_id).update(
        template_id,
        name=body.name,
        description=body.description,
        category=body.category,
        content=body.content,
    )
    return template_to_dict(row)


@router.delete("/{template_id}")
async def delete_template(template_id: str, session: SessionDep, org_id: OrgDep) -> dict[str, Any]:
    row = await TemplateService(session, org_id).delete(template_id)
    return template_to_dict(row, include_content=False)


@router.post("/{template_id}/restore")
async def restore_template(template_id: str, session: SessionDep, org_id: OrgDep) -> dict[str, Any]:
    return template_to_dict(await TemplateService(session, org_id).restore(template_id))


@router.post("/{template_id}/duplicate", status_code=201)
async def duplicate_template(
    template_id: str,
    session: SessionDep,
    org_id: OrgDep,
    user_id: UserDep,
    body: TemplateDuplicateRequest | None = None,
) -> dict[str, Any]:
    new_name = body.new_name if body is not None else None
    row = await TemplateService(session, org_id, user_id).duplicate(template_id, new_name)
    return template_to_dict(row)


@router.post("/{template_id}/publish")
async def publish_template(template_id: str, session: SessionDep, org_id: OrgDep) -> dict[str, Any]:
    return template_to_dict(await TemplateService(session, org_id).publish(template_id))


@router.get("/{template_id}/export", response_class=PlainTextResponse)
async def export_template(template_id: str, session: SessionDep, org_id: OrgDep) -> PlainTextResponse:
    """Download the template content as a text file."""
    filename, content = await TemplateService(session, org_id).export(template_id)
    return PlainTextResponse(content, headers={"Content-Disposition": f'attachment; filename="{filename}"'})


@router.post("/{template_id}/versions", status_code=201)
async def save_template_version(
    template_id: str,
    body: TemplateVersionSaveRequest,
    session: SessionDep,
    org_id: OrgDep,
    user_id: UserDep,
) -> dict[str, Any]:
    version = await TemplateService(session, org_id, user_id).save_version(
        template_id, body.content, body.change_summary
    )
    return template_version_to_dict(version)


@router.get("/{template_id}/versions")
async def list_template_versions(template_id: str, session: SessionDep, org_id: OrgDep) -> dict[str, Any]:
    versions = await TemplateService(session, org_id).list_versions(template_id)
    return {"versions": [template_version_to_dict(v, include_content=False) for v in versions]}


@router.post("/{template_id}/versions/{version_id}/restore")
async def restore_template_version(
    template_id: str,
    version_id: str,
    session: SessionDep,
    org_id: OrgDep,
    user_id: UserDep,
) -> dict[str, Any]:
    version = await TemplateService(session, org_id, user_id).restore_version(template_id, version_id)
    return template_version_to_dict(version)
