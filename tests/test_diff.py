"""Tests for DiffReporter."""

from smalledit_mcp.engine import ChangeKind, DiffReporter
from smalledit_mcp.engine.diff import count_changed_lines


def test_positional_diff_kinds():
    reporter = DiffReporter()
    entries = reporter.diff("a\nb\nc\n", "a\nB\nc\nd\n")

    assert [e.change_kind for e in entries] == [
        ChangeKind.UNCHANGED,
        ChangeKind.MODIFIED,
        ChangeKind.UNCHANGED,
        ChangeKind.ADDED,
    ]
    assert entries[1].before == "b"
    assert entries[1].after == "B"
    assert entries[3].line_number == 4
    assert entries[3].before is None


def test_removed_lines():
    entries = DiffReporter().diff("a\nb\n", "a\n")

    assert entries[-1].change_kind == ChangeKind.REMOVED
    assert entries[-1].after is None


def test_identical_texts_report_no_changes():
    reporter = DiffReporter()
    entries = reporter.diff("same\n", "same\n")

    assert reporter.count_changes(entries) == 0
    assert reporter.unified("same\n", "same\n", "x.txt") == ""


def test_insertion_shifts_following_lines():
    # Positional comparison: every line after an insertion shows as modified
    entries = DiffReporter().diff("a\nb\nc\n", "new\na\nb\nc\n")
    assert DiffReporter.summarize(entries) == {"added": 1, "removed": 0, "modified": 3}


def test_unified_diff_headers():
    text = DiffReporter().unified("Hello World\n", "Hello Universe\n", "test.txt")

    assert text.startswith("--- a/test.txt\n+++ b/test.txt\n")
    assert "-Hello World" in text
    assert "+Hello Universe" in text


def test_count_changed_lines():
    assert count_changed_lines("a\nb\n", "a\nc\n") == 1
    assert count_changed_lines("", "x\n") == 1
