"""Shared formatting utilities for MCP tool responses.

Every tool answers with markdown text built here, so edits, previews, backup
listings and failures read the same way whichever tool produced them.
"""

from pathlib import Path

from .engine import BackupRecord, EditError, EditResult, RestoreResult

# Longest unified diff shown inline before it is cut
MAX_DIFF_LINES = 200

# =============================================================================
# Edit Results
# =============================================================================


def format_diff_block(unified_diff: str | None) -> str:
    """Wrap a unified diff in a fenced block, truncating very long diffs."""
    if not unified_diff:
        return "_No changes._"
    lines = unified_diff.splitlines()
    if len(lines) > MAX_DIFF_LINES:
        hidden = len(lines) - MAX_DIFF_LINES
        lines = lines[:MAX_DIFF_LINES] + [f"... ({hidden} more diff lines)"]
    body = "\n".join(lines)
    return f"```diff\n{body}\n```"


def format_edit_result_markdown(result: EditResult, show_diff: bool = True) -> str:
    """Format an EditResult as markdown.

    Args:
        result: Outcome of EditEngine.apply
        show_diff: Include the unified diff of a successful edit

    Returns:
        Markdown with status line, counts, backup location and diff
    """
    if not result.success:
        return format_failed_edit_markdown(result)

    if result.dry_run:
        header = f"## Preview: {result.target}"
    elif result.changed:
        header = f"## Edited: {result.target}"
    else:
        header = f"## No changes: {result.target}"

    lines = [
        header,
        "",
        f"- **Mode**: {result.mode.value}",
        f"- **Lines changed**: {result.lines_changed}",
    ]
    if result.replacements:
        lines.append(f"- **Replacements**: {result.replacements}")
    if result.backup_record is not None:
        lines.append(f"- **Backup**: {result.backup_record.backup_path}")
    if result.dry_run:
        lines.append("- **Dry run**: file not modified")

    if show_diff:
        lines.extend(["", format_diff_block(result.unified_diff)])
    return "\n".join(lines)


def format_failed_edit_markdown(result: EditResult) -> str:
    """Format a failed EditResult, pointing at any backup already taken."""
    kind = result.error_kind.value if result.error_kind else "Error"
    stage = result.failed_stage.value if result.failed_stage else "unknown"
    lines = [
        f"## Edit failed: {result.target}",
        "",
        f"- **Error**: {kind}",
        f"- **Stage**: {stage}",
        f"- **Message**: {result.message}",
    ]
    if result.backup_record is not None:
        lines.append(
            f"- **Backup kept**: {result.backup_record.backup_path} "
            "(file was not modified)"
        )
    return "\n".join(lines)


def format_column_output_markdown(result: EditResult) -> str:
    """Format a column_process preview: the produced text itself."""
    if not result.success:
        return format_failed_edit_markdown(result)
    output = (result.new_content or "").rstrip("\n")
    return f"## Output: {result.target}\n\n```\n{output}\n```"


def format_batch_results_markdown(directory: Path, pattern: str, results: list[EditResult]) -> str:
    """Summarise a multi-file edit, one line per file."""
    if not results:
        return f"No files matching '{pattern}' in {directory}"

    changed = sum(1 for r in results if r.success and r.changed)
    failed = sum(1 for r in results if not r.success)
    lines = [
        f"## Multi-file edit: {directory} ({pattern})",
        "",
        f"**{len(results)} files**, {changed} changed, {failed} failed",
        "",
    ]
    for result in results:
        name = result.target.name
        if not result.success:
            kind = result.error_kind.value if result.error_kind else "Error"
            lines.append(f"- **{name}**: failed ({kind}) {result.message}")
        elif result.changed:
            lines.append(f"- **{name}**: {result.lines_changed} lines changed")
        else:
            lines.append(f"- **{name}**: unchanged")
    return "\n".join(lines)


# =============================================================================
# Backups
# =============================================================================


def format_backup_list_markdown(
    directory: Path, records: list[BackupRecord], source: str | None = None
) -> str:
    """Format backup records as markdown, newest first.

    Args:
        directory: Directory that was scanned
        records: Records in BackupStore.list order (oldest first)
        source: Source file filter, for display

    Returns:
        Markdown list of backups
    """
    scope = f" of {source}" if source else ""
    if not records:
        return f"No backups{scope} found in {directory}"

    lines = [f"## Backups{scope} in {directory} ({len(records)})", ""]
    for record in reversed(records):
        created = record.created_at.strftime("%Y-%m-%d %H:%M:%S UTC")
        strategy = record.strategy.value if record.strategy else "other"
        lines.append(
            f"- **{record.backup_path.name}** → {record.source_path.name} "
            f"({record.size_bytes} bytes, {strategy}, {created})"
        )
    return "\n".join(lines)


def format_restore_result_markdown(result: RestoreResult) -> str:
    return (
        f"## Restored: {result.target_path}\n\n"
        f"- **From**: {result.backup_path}\n"
        f"- **Size**: {result.size_bytes} bytes"
    )


# =============================================================================
# Error Formatting
# =============================================================================


def format_error_markdown(error: EditError, action: str) -> str:
    """Format an EditError raised outside an edit (path checks, restore, listing).

    Args:
        error: The error
        action: What was being attempted, e.g. "restore" or "list backups"
    """
    lines = [
        f"## Cannot {action}",
        "",
        f"- **Error**: {error.kind.value}",
    ]
    if error.stage is not None:
        lines.append(f"- **Stage**: {error.stage.value}")
    lines.append(f"- **Message**: {error.message}")
    return "\n".join(lines)
