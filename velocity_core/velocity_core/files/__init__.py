"""File version store lifecycle."""

from velocity_core.files.status import FileAction, FileStatus, transition

__all__ = ["FileAction", "FileStatus", "transition"]
