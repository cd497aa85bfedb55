"""File portal endpoints: versioned files with soft delete and diffs.

Every route is gated on the ``file_portal`` capability inside
:class:`FileService`, so a plan without the portal gets a 403 with the
upgrade payload.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, File, Query, UploadFile
from velocity_core.files.status import FileStatus

from velocity_api.dependencies import OrgDep, SessionDep, UserDep
from velocity_api.schemas import FileCreateRequest, FileUpdateRequest
from velocity_api.services.file_service import FileService, file_to_dict, version_to_dict

router = APIRouter(prefix="/files", tags=["files"])

_MAX_UPLOAD_BYTES = 5 * 1024 * 1024


@router.post("", status_code=201)
async def save_file(body: FileCreateRequest, session: SessionDep, org_id: OrgDep, user_id: UserDep) -> dict[str, Any]:
    """Create a file from editor content at version 1."""
    row = await FileService(session, org_id, user_id).save(body.filename, body.content)
    return file_to_dict(row)


@router.post("/upload", status_code=201)
async def upload_file(
    session: SessionDep,
    org_id: OrgDep,
    user_id: UserDep,
    file: UploadFile = File(...),
) -> dict[str, Any]:
    """Upload a UTF-8 text file.

    Raises
    ------
    ValueError
        If the upload is empty, too large or not UTF-8 text.
    """
    raw = await file.read()
    if not raw:
        raise ValueError("Uploaded file is empty")
    if len(raw) > _MAX_UPLOAD_BYTES:
        raise ValueError("Uploaded file exceeds 5 MB")
    try:
        content = raw.decode("utf-8")
    except UnicodeDecodeError:
        raise ValueError("Uploaded file must be UTF-8 text") from None
    row = await FileService(session, org_id, user_id).upload(file.filename or "upload.txt", content)
    return file_to_dict(row)


@router.get("")
async def list_files(
    session: SessionDep,
    org_id: OrgDep,
    limit: int = Query(default=100, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
) -> dict[str, Any]:
    rows = await FileService(session, org_id).list_files(FileStatus.ACTIVE, limit=limit, offset=offset)
    return {"files": [file_to_dict(r, include_content=False) for r in rows], "total": len(rows)}


@router.get("/deleted")
async def list_deleted_files(
    session: SessionDep,
    org_id: OrgDep,
    limit: int = Query(default=100, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
) -> dict[str, Any]:
    """List soft-deleted files that can still be restored."""
    rows = await FileService(session, org_id).list_files(FileStatus.DELETED, limit=limit, offset=offset)
    return {"files": [file_to_dict(r, include_content=False) for r in rows], "total": len(rows)}


@router.get("/{file_id}")
async def get_file(file_id: str, session: SessionDep, org_id: OrgDep) -> dict[str, Any]:
    return file_to_dict(await FileService(session, org_id).get(file_id))


@router.put("/{file_id}")
async def update_file(
    file_id: str,
    body: FileUpdateRequest,
    session: SessionDep,
    org_id: OrgDep,
    user_id: UserDep,
) -> dict[str, Any]:
    """Save new content as the next version."""
    row = await FileService(session, org_id, user_id).update(file_id, body.content, body.message)
    return file_to_dict(row)


@router.delete("/{file_id}")
async def delete_file(file_id: str, session: SessionDep, org_id: OrgDep, user_id: UserDep) -> dict[str, Any]:
    """Soft-delete a file.  Deleting a deleted file is a 400."""
    row = await FileService(session, org_id, user_id).soft_delete(file_id)
    return file_to_dict(row, include_content=False)


@router.post("/{file_id}/restore")
async def restore_file(file_id: str, session: SessionDep, org_id: OrgDep, user_id: UserDep) -> dict[str, Any]:
    row = await FileService(session, org_id, user_id).restore(file_id)
    return file_to_dict(row)


@router.get("/{file_id}/versions")
async def list_versions(file_id: str, session: SessionDep, org_id: OrgDep) -> dict[str, Any]:
    rows = await FileService(session, org_id).list_versions(file_id)
    return {"file_id": file_id, "versions": [version_to_dict(r, include_content=False) for r in rows]}


@router.get("/{file_id}/versions/{version}")
async def get_version(file_id: str, version: int, session: SessionDep, org_id: OrgDep) -> dict[str, Any]:
    return version_to_dict(await FileService(session, org_id).get_version(file_id, version))


@router.post("/{file_id}/versions/{version}/restore")
async def restore_version(
    file_id: str,
    version: int,
    session: SessionDep,
    org_id: OrgDep,
    user_id: UserDep,
) -> dict[str, Any]:
    """Copy an old snapshot forward as a new version.

    The restore is billed as a ``file_restore`` event.
    """
    row = await FileService(session, org_id, user_id).restore_version(file_id, version)
    return file_to_dict(row)


@router.get("/{file_id}/diff")
async def diff_file(
    file_id: str,
    session: SessionDep,
    org_id: OrgDep,
    from_version: int = Query(..., alias="from", ge=1),
    to_version: int | None = Query(default=None, alias="to", ge=1),
) -> dict[str, Any]:
    """Line diff between two versions, or a version and the current content."""
    return await FileService(session, org_id).diff(file_id, from_version, to_version)
