"""Line diff engine for comparing file version snapshots.

Splits both snapshots into lines (keeping line endings) and produces an
ordered list of :class:`DiffChunk` objects: unchanged runs, removed runs
and added runs.  Concatenating the chunks that are not ``added`` rebuilds
the old text; concatenating those that are not ``removed`` rebuilds the
new text.

Within a replaced region the removed chunk always precedes the added
chunk so that output is deterministic.
"""

from __future__ import annotations

import difflib

from pydantic import BaseModel


class DiffChunk(BaseModel):
    """A contiguous run of lines with the same change status."""

    text: str
    added: bool = False
    removed: bool = False
    count: int = 0


class DiffStats(BaseModel):
    """Line counts summarising a diff."""

    added_lines: int = 0
    removed_lines: int = 0
    unchanged_lines: int = 0

    @property
    def changed(self) -> bool:
        return bool(self.added_lines or self.removed_lines)


def diff_lines(old: str, new: str) -> list[DiffChunk]:
    """Compute a line-level diff between two snapshots.

    Parameters
    ----------
    old:
        The earlier content.
    new:
        The later content.

    Returns
    -------
    list[DiffChunk]
        Chunks in document order.  Identical inputs yield a single
        unchanged chunk (or no chunks when both are empty).
    """
    old_lines = old.splitlines(keepends=True)
    new_lines = new.splitlines(keepends=True)
    matcher = difflib.SequenceMatcher(a=old_lines, b=new_lines, autojunk=False)

    chunks: list[DiffChunk] = []
    for tag, i1, i2, j1, j2 in matcher.get_opcodes():
        if tag == "equal":
            chunks.append(DiffChunk(text="".join(old_lines[i1:i2]), count=i2 - i1))
            continue
        # "replace" emits both; "delete" and "insert" emit one side.
        if tag in ("replace", "delete"):
            chunks.append(DiffChunk(text="".join(old_lines[i1:i2]), removed=True, count=i2 - i1))
        if tag in ("replace", "insert"):
            chunks.append(DiffChunk(text="".join(new_lines[j1:j2]), added=True, count=j2 - j1))
    return chunks


def diff_stats(chunks: list[DiffChunk]) -> DiffStats:
    """Tally added, removed and unchanged lines across *chunks*."""
    stats = DiffStats()
    for chunk in chunks:
        if chunk.added:
            stats.added_lines += chunk.count
        elif chunk.removed:
            stats.removed_lines += chunk.count
        else:
            stats.unchanged_lines += chunk.count
    return stats
