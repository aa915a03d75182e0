"""Line-level change reporting.

``DiffReporter.diff`` compares by line index only: line i of the old text is
paired with line i of the new text. This is a deliberate simplification, not a
minimal edit script; an inserted line near the top shows every following line
as modified. ``unified`` renders a conventional difflib unified diff for human
preview.
"""

from __future__ import annotations

import difflib

from .lines import split_lines
from .models import ChangeKind, DiffEntry


class DiffReporter:
    """Computes previews of a change without touching any file."""

    def diff(self, before: str, after: str) -> list[DiffEntry]:
        """Positional line comparison.

        Returns:
            One DiffEntry per line index, in line order
        """
        old_lines, _ = split_lines(before)
        new_lines, _ = split_lines(after)
        entries: list[DiffEntry] = []

        for index in range(max(len(old_lines), len(new_lines))):
            old = old_lines[index] if index < len(old_lines) else None
            new = new_lines[index] if index < len(new_lines) else None
            if old is None:
                kind = ChangeKind.ADDED
            elif new is None:
                kind = ChangeKind.REMOVED
            elif old != new:
                kind = ChangeKind.MODIFIED
            else:
                kind = ChangeKind.UNCHANGED
            entries.append(
                DiffEntry(line_number=index + 1, before=old, after=new, change_kind=kind)
            )

        return entries

    @staticmethod
    def count_changes(entries: list[DiffEntry]) -> int:
        """Number of entries that are not UNCHANGED."""
        return sum(1 for entry in entries if entry.change_kind != ChangeKind.UNCHANGED)

    @staticmethod
    def summarize(entries: list[DiffEntry]) -> dict[str, int]:
        """Count entries per change kind: 'added', 'removed', 'modified'."""
        summary = {"added": 0, "removed": 0, "modified": 0}
        for entry in entries:
            if entry.change_kind != ChangeKind.UNCHANGED:
                summary[entry.change_kind.value] += 1
        return summary

    def unified(self, before: str, after: str, filepath: str) -> str:
        """Generate unified diff between original and modified content.

        Args:
            before: Original file content
            after: Modified file content
            filepath: File path for diff header

        Returns:
            Unified diff string (empty when nothing changed)
        """
        diff_lines = difflib.unified_diff(
            before.splitlines(keepends=True),
            after.splitlines(keepends=True),
            fromfile=f"a/{filepath}",
            tofile=f"b/{filepath}",
        )
        return "".join(diff_lines)


def count_changed_lines(before: str, after: str) -> int:
    """Positional count of lines that differ between two texts."""
    reporter = DiffReporter()
    return reporter.count_changes(reporter.diff(before, after))
