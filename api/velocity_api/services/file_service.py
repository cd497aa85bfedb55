"""Versioned file portal.

Every content change appends an immutable snapshot to
``file_version_history``; deletion is soft and reversible.  Each
operation is gated on the ``file_portal`` capability and logs a usage
row for the action it performed.
"""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession
from velocity_core.diff.line_diff import diff_lines, diff_stats
from velocity_core.errors import NotFoundError
from velocity_core.files.status import FileStatus
from velocity_core.metering.events import UsageCounter
from velocity_core.plans.catalog import Capability
from velocity_core.plans.entitlements import EntitlementRequest
from velocity_core.state.repository import BillingEventRepository, FileRepository, FileVersionRepository
from velocity_core.state.tables import FileTable, FileVersionTable

from velocity_api.services.entitlement_service import EntitlementService
from velocity_api.services.usage_service import UsageService

logger = logging.getLogger(__name__)

FILE_RESTORE_FEE = Decimal("0.10")


def file_to_dict(row: FileTable, *, include_content: bool = True) -> dict[str, Any]:
    data: dict[str, Any] = {
        "id": row.id,
        "filename": row.filename,
        "status": row.status,
        "version": row.version,
        "deleted_at": row.deleted_at.isoformat() if row.deleted_at else None,
        "last_modified_by": row.last_modified_by,
        "created_at": row.created_at.isoformat() if row.created_at else None,
        "updated_at": row.updated_at.isoformat() if row.updated_at else None,
    }
    if include_content:
        data["content"] = row.content
    return data


def version_to_dict(row: FileVersionTable, *, include_content: bool = True) -> dict[str, Any]:
    data: dict[str, Any] = {
        "file_id": row.file_id,
        "version": row.version,
        "message": row.message,
        "created_by": row.created_by,
        "from_restore": row.from_restore,
        "created_at": row.created_at.isoformat() if row.created_at else None,
    }
    if include_content:
        data["content"] = row.content
    return data


class FileService:
    """File portal operations for one organization.

    Parameters
    ----------
    session:
        Active database session bound to the organization.
    org_id:
        The organization that owns the files.
    user_id:
        The acting user, recorded on files and snapshots.
    """

    def __init__(self, session: AsyncSession, org_id: str, user_id: str | None = None) -> None:
        self._session = session
        self._org_id = org_id
        self._user_id = user_id
        self._files = FileRepository(session, org_id)
        self._versions = FileVersionRepository(session, org_id)
        self._usage = UsageService(session, org_id)
        self._entitlements = EntitlementService(session, org_id)

    async def _require_portal(self) -> None:
        await self._entitlements.enforce(EntitlementRequest(capability=Capability.FILE_PORTAL))

    async def _log(self, counter: UsageCounter, file_id: str, action: str) -> None:
        await self._usage.log({counter: 1}, metadata={"file_id": file_id, "action": action}, source="files")

    async def _create(self, filename: str, content: str, message: str) -> FileTable:
        filename = filename.strip()
        if not filename:
            raise ValueError("filename is required")
        row = await self._files.create(filename, content, created_by=self._user_id)
        await self._versions.append(row.id, 1, content, message=message, created_by=self._user_id)
        return row

    async def save(self, filename: str, content: str) -> FileTable:
        """Create a file at version 1 from the editor."""
        await self._require_portal()
        row = await self._create(filename, content, "Initial file save")
        await self._log(UsageCounter.PIPELINES_RUN, row.id, "save")
        logger.info("Saved file %s (%s) for org %s", row.id, row.filename, self._org_id)
        return row

    async def upload(self, filename: str, content: str) -> FileTable:
        """Create a file at version 1 from an upload."""
        await self._require_portal()
        row = await self._create(filename, content, "Initial file upload")
        await self._log(UsageCounter.UPLOADED_FILES, row.id, "upload")
        logger.info("Uploaded file %s (%s) for org %s", row.id, row.filename, self._org_id)
        return row

    async def update(self, file_id: str, content: str, message: str | None = None) -> FileTable:
        """Store new content as the next version.

        Unchanged content is a no-op and returns the file at its current
        version.

        Raises
        ------
        InvalidFileTransition
            If the file is deleted.
        """
        await self._require_portal()
        row = await self._files.require(file_id)
        if row.status == FileStatus.ACTIVE.value and row.content == content:
            return row
        row = await self._files.update_content(file_id, content, modified_by=self._user_id)
        await self._versions.append(
            file_id,
            row.version,
            content,
            message=message or f"Version {row.version}",
            created_by=self._user_id,
        )
        await self._log(UsageCounter.PIPELINES_RUN, file_id, "update")
        return row

    async def soft_delete(self, file_id: str) -> FileTable:
        await self._require_portal()
        row = await self._files.soft_delete(file_id, modified_by=self._user_id)
        await self._log(UsageCounter.DELETED_FILES, file_id, "delete")
        logger.info("Soft-deleted file %s for org %s", file_id, self._org_id)
        return row

    async def restore(self, file_id: str) -> FileTable:
        """Return a deleted file to active with its content unchanged."""
        await self._require_portal()
        row = await self._files.restore(file_id, modified_by=self._user_id)
        await self._log(UsageCounter.RESTORED_FILES, file_id, "restore")
        logger.info("Restored file %s for org %s", file_id, self._org_id)
        return row

    async def restore_version(self, file_id: str, version: int) -> FileTable:
        """Make an earlier snapshot the current content.

        Copies the snapshot into the file as a new version, appends a
        snapshot flagged ``from_restore`` and records a ``file_restore``
        billing event.

        Raises
        ------
        NotFoundError
            If the file or the version does not exist.
        InvalidFileTransition
            If the file is deleted.
        """
        await self._require_portal()
        snapshot = await self._versions.get(file_id, version)
        if snapshot is None:
            raise NotFoundError("File version", f"{file_id}@{version}")
        row = await self._files.update_content(file_id, snapshot.content, modified_by=self._user_id)
        await self._versions.append(
            file_id,
            row.version,
            snapshot.content,
            message=f"Restored from version {version}",
            created_by=self._user_id,
            from_restore=True,
        )
        await BillingEventRepository(self._session, self._org_id).append(
            "file_restore",
            FILE_RESTORE_FEE,
            details={"file_id": file_id, "restored_version": version, "new_version": row.version},
        )
        await self._log(UsageCounter.RESTORED_FILES, file_id, "restore_version")
        logger.info("Restored file %s to version %d (now v%d)", file_id, version, row.version)
        return row

    async def diff(self, file_id: str, from_version: int, to_version: int | None = None) -> dict[str, Any]:
        """Diff two snapshots, or a snapshot against the current content."""
        await self._require_portal()
        row = await self._files.require(file_id)
        old = await self._versions.get(file_id, from_version)
        if old is None:
            raise NotFoundError("File version", f"{file_id}@{from_version}")
        if to_version is None:
            new_content, new_label = row.content, row.version
        else:
            new = await self._versions.get(file_id, to_version)
            if new is None:
                raise NotFoundError("File version", f"{file_id}@{to_version}")
            new_content, new_label = new.content, new.version
        chunks = diff_lines(old.content, new_content)
        await self._log(UsageCounter.DIFFS_VIEWED, file_id, "diff")
        return {
            "file_id": file_id,
            "from_version": from_version,
            "to_version": new_label,
            "chunks": [c.model_dump() for c in chunks],
            "stats": diff_stats(chunks).model_dump(),
        }

    async def list_files(self, status: FileStatus = FileStatus.ACTIVE, *, limit: int = 100, offset: int = 0) -> list[FileTable]:
        await self._require_portal()
        return await self._files.list_by_status(status, limit=limit, offset=offset)

    async def get(self, file_id: str) -> FileTable:
        await self._require_portal()
        return await self._files.require(file_id)

    async def list_versions(self, file_id: str) -> list[FileVersionTable]:
        await self._require_portal()
        await self._files.require(file_id)
        return await self._versions.list_for_file(file_id)

    async def get_version(self, file_id: str, version: int) -> FileVersionTable:
        await self._require_portal()
        snapshot = await self._versions.get(file_id, version)
        if snapshot is None:
            raise NotFoundError("File version", f"{file_id}@{version}")
        return snapshot
