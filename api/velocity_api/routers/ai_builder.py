"""AI infrastructure builder endpoints.

Returns 503 when no OpenAI key is configured.  Plan gates (capability,
provider count, per-minute and per-day request caps) are enforced by
:class:`AIBuilderService` before any model call.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Query
from openai import AsyncOpenAI
from sqlalchemy.ext.asyncio import AsyncSession

from velocity_api.config import APISettings
from velocity_api.dependencies import AIClientDep, OrgDep, SessionDep, SettingsDep, UserDep
from velocity_api.schemas import AIAnswersRequest, AIBuildRequest, AIUpgradeFileRequest
from velocity_api.services.ai_builder_service import AIBuilderService, build_to_dict

router = APIRouter(prefix="/ai-builder", tags=["ai-builder"])


def _service(
    session: AsyncSession, org_id: str, client: AsyncOpenAI, settings: APISettings, user_id: str | None
) -> AIBuilderService:
    return AIBuilderService(session, org_id, client, model=settings.openai_model, user_id=user_id)


@router.post("/answers", status_code=201)
async def save_answers(
    body: AIAnswersRequest,
    session: SessionDep,
    settings: SettingsDep,
    org_id: OrgDep,
    user_id: UserDep,
    client: AIClientDep,
) -> dict[str, Any]:
    """Store questionnaire answers for a later build."""
    answers_id = await _service(session, org_id, client, settings, user_id).save_answers(
        body.model_dump(exclude_none=True)
    )
    return {"answers_id": answers_id}


@router.post("/build", status_code=201)
async def build(
    body: AIBuildRequest,
    session: SessionDep,
    settings: SettingsDep,
    org_id: OrgDep,
    user_id: UserDep,
    client: AIClientDep,
) -> dict[str, Any]:
    """Generate an infrastructure plan from answers or a saved ``answers_id``."""
    answers = body.answers.model_dump(exclude_none=True) if body.answers is not None else None
    row = await _service(session, org_id, client, settings, user_id).build(answers, answers_id=body.answers_id)
    return build_to_dict(row)


@router.get("/builds")
async def list_builds(
    session: SessionDep,
    settings: SettingsDep,
    org_id: OrgDep,
    client: AIClientDep,
    limit: int = Query(default=20, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
) -> dict[str, Any]:
    rows = await _service(session, org_id, client, settings, None).list_builds(limit=limit, offset=offset)
    return {"builds": [build_to_dict(r) for r in rows]}


@router.post("/upgrade-file")
async def upgrade_file(
    body: AIUpgradeFileRequest,
    session: SessionDep,
    settings: SettingsDep,
    org_id: OrgDep,
    user_id: UserDep,
    client: AIClientDep,
) -> dict[str, Any]:
    """Rewrite a portal file with the model and save it as a new version."""
    return await _service(session, org_id, client, settings, user_id).upgrade_file(body.file_id)
