"""File lifecycle states.

A file is either ``active`` or ``deleted``.  Deletion is soft: content
and version history are retained and a restore returns the file to
``active`` unchanged.  Permanent purge is not supported.

::

    active --delete--> deleted --restore--> active
"""

from __future__ import annotations

from enum import Enum

from velocity_core.errors import InvalidFileTransition


class FileStatus(str, Enum):
    """Lifecycle status of a stored file or template."""

    ACTIVE = "active"
    DELETED = "deleted"


class FileAction(str, Enum):
    DELETE = "delete"
    RESTORE = "restore"
    UPDATE = "update"


_TRANSITIONS: dict[tuple[FileStatus, FileAction], FileStatus] = {
    (FileStatus.ACTIVE, FileAction.DELETE): FileStatus.DELETED,
    (FileStatus.DELETED, FileAction.RESTORE): FileStatus.ACTIVE,
    (FileStatus.ACTIVE, FileAction.UPDATE): FileStatus.ACTIVE,
}

_REJECTIONS: dict[tuple[FileStatus, FileAction], str] = {
    (FileStatus.DELETED, FileAction.DELETE): "File already deleted",
    (FileStatus.ACTIVE, FileAction.RESTORE): "File is not deleted",
    (FileStatus.DELETED, FileAction.UPDATE): "Cannot modify a deleted file; restore it first",
}


def transition(current: FileStatus | str, action: FileAction) -> FileStatus:
    """Return the status reached by applying *action* to *current*.

    Raises
    ------
    InvalidFileTransition
        When the action is not valid from the current status.
    """
    status = FileStatus(current)
    target = _TRANSITIONS.get((status, action))
    if target is None:
        raise InvalidFileTransition(_REJECTIONS[(status, action)])
    return target
