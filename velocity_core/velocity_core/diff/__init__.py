"""Deterministic line diff for file version comparison."""

from velocity_core.diff.line_diff import DiffChunk, DiffStats, diff_lines, diff_stats

__all__ = [
    "DiffChunk",
    "DiffStats",
    "diff_lines",
    "diff_stats",
]
