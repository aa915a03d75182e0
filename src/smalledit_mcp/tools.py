"""MCP tool implementations for small file edits.

This module contains all MCP tool function implementations that expose the
edit engine via the MCP protocol.

Following official Anthropic MCP Python SDK patterns:
- Tool functions decorated with @mcp.tool()
- Flat parameter signatures with Annotated types for validation
- Type hints for automatic schema generation
- Async functions for all tools
- Clear docstrings (become tool descriptions)
"""

from pathlib import Path
from typing import Annotated, Any, Literal

from mcp.types import ToolAnnotations
from pydantic import Field

from .context import AppContext, AppContextType
from .engine import (
    BackupStrategy,
    EditError,
    EditMode,
    EditOperation,
    EditStage,
    parse_backup_name,
)
from .formatting import (
    format_backup_list_markdown,
    format_batch_results_markdown,
    format_column_output_markdown,
    format_edit_result_markdown,
    format_error_markdown,
    format_restore_result_markdown,
)
from .server import mcp

FilePathArg = Annotated[str, Field(description="File to edit (relative to working dir)")]
BackupArg = Annotated[
    bool | None,
    Field(description="Back up the file before editing (default from server config)"),
]
StrategyArg = Annotated[
    Literal["canonical", "timestamped"] | None,
    Field(description="canonical=<file>.bak overwritten, timestamped=new backup per edit"),
]

# =============================================================================
# Helpers
# =============================================================================


def _app_context(ctx: AppContextType) -> AppContext:
    return ctx.request_context.lifespan_context


def _build_operation(
    app_ctx: AppContext,
    mode: EditMode,
    target: Path,
    parameters: dict[str, Any],
    backup: bool | None = None,
    strategy: str | None = None,
    dry_run: bool = False,
) -> EditOperation:
    return EditOperation(
        mode=mode,
        target=target,
        parameters=parameters,
        create_backup=app_ctx.config.create_backup if backup is None else backup,
        dry_run=dry_run,
        backup_strategy=BackupStrategy(strategy) if strategy else None,
    )


async def _run_edit(
    ctx: AppContextType,
    mode: EditMode,
    file_path: str,
    parameters: dict[str, Any],
    backup: bool | None = None,
    strategy: str | None = None,
    dry_run: bool = False,
) -> str:
    """Resolve the path, run one edit and render the outcome."""
    app_ctx = _app_context(ctx)
    try:
        target = app_ctx.resolve_path(file_path)
    except EditError as e:
        return format_error_markdown(e.with_stage(EditStage.VALIDATION), f"edit {file_path}")

    operation = _build_operation(app_ctx, mode, target, parameters, backup, strategy, dry_run)
    result = await app_ctx.engine.apply(operation)
    return format_edit_result_markdown(result)


# =============================================================================
# Edit Tools
# =============================================================================


@mcp.tool(
    annotations=ToolAnnotations(
        title="Sed Edit",
        readOnlyHint=False,
        destructiveHint=True,  # Rewrites the file (backup optional)
        idempotentHint=False,
        openWorldHint=False,
    )
)
async def sed_edit(
    file_path: FilePathArg,
    pattern: Annotated[
        str,
        Field(
            description="sed command, e.g. 's/old/new/g', '5d', '/TODO/d', '3a\\\\new line'",
            min_length=1,
        ),
    ],
    backup: BackupArg = None,
    backup_strategy: StrategyArg = None,
    preview: Annotated[bool, Field(description="Show the diff without writing")] = False,
    *,
    ctx: AppContextType,
) -> str:
    """Edit a file with one sed command (s, d, a, i, c with optional line/regex address)."""
    return await _run_edit(
        ctx,
        EditMode.SUBSTITUTE,
        file_path,
        {"script": pattern, "dialect": "sed"},
        backup=backup,
        strategy=backup_strategy,
        dry_run=preview,
    )


@mcp.tool(
    annotations=ToolAnnotations(
        title="Sed Edit Multiple Files",
        readOnlyHint=False,
        destructiveHint=True,
        idempotentHint=False,
        openWorldHint=False,
    )
)
async def sed_multifile(
    pattern: Annotated[str, Field(description="sed command applied to every file", min_length=1)],
    file_pattern: Annotated[
        str, Field(description="Glob for files to edit, e.g. '*.py' or '**/*.md'", min_length=1)
    ],
    directory: Annotated[str, Field(description="Directory to search in")] = ".",
    backup: BackupArg = None,
    *,
    ctx: AppContextType,
) -> str:
    """Apply one sed command to every file matching a glob. Backup files are skipped."""
    app_ctx = _app_context(ctx)
    validation = app_ctx.engine.validate(EditMode.SUBSTITUTE, {"script": pattern})
    if not validation.valid:
        assert validation.error_kind is not None
        error = EditError(
            validation.error_kind, validation.message or "invalid script", EditStage.VALIDATION
        )
        return format_error_markdown(error, "edit files")

    try:
        base = app_ctx.resolve_path(directory)
    except EditError as e:
        return format_error_markdown(e.with_stage(EditStage.VALIDATION), "edit files")
    if not base.is_dir():
        return f"Error: Directory not found: {base}"

    targets = sorted(
        path
        for path in base.glob(file_pattern)
        if path.is_file() and not path.is_symlink() and parse_backup_name(path.name) is None
    )
    operations = [
        _build_operation(
            app_ctx, EditMode.SUBSTITUTE, target, {"script": pattern, "dialect": "sed"}, backup
        )
        for target in targets
    ]
    results = await app_ctx.engine.apply_many(operations)
    return format_batch_results_markdown(base, file_pattern, results)


@mcp.tool(
    annotations=ToolAnnotations(
        title="Column Process",
        readOnlyHint=False,  # Writes only with in_place=True
        destructiveHint=True,
        idempotentHint=False,
        openWorldHint=False,
    )
)
async def awk_process(
    file_path: FilePathArg,
    script: Annotated[
        str,
        Field(
            description=(
                "Column expression: '$1', 'print $1,$3', '{sum+=$2} END {print sum}', "
                "'sum $2', 'avg $2', 'min $1', 'max $1', 'count', '$3 > 100'"
            ),
            min_length=1,
        ),
    ],
    field_separator: Annotated[
        str, Field(description="Input field separator (' ' splits on whitespace)", min_length=1)
    ] = " ",
    output_separator: Annotated[str, Field(description="Joins extracted fields")] = " ",
    in_place: Annotated[
        bool, Field(description="Replace the file with the output instead of returning it")
    ] = False,
    backup: BackupArg = None,
    *,
    ctx: AppContextType,
) -> str:
    """Extract columns, aggregate a column, or filter rows. Returns the output unless in_place."""
    parameters = {
        "expression": script,
        "separator": field_separator,
        "output_separator": output_separator,
    }
    if in_place:
        return await _run_edit(
            ctx, EditMode.COLUMN_PROCESS, file_path, parameters, backup=backup
        )

    app_ctx = _app_context(ctx)
    try:
        target = app_ctx.resolve_path(file_path)
    except EditError as e:
        return format_error_markdown(e.with_stage(EditStage.VALIDATION), f"process {file_path}")
    operation = _build_operation(
        app_ctx, EditMode.COLUMN_PROCESS, target, parameters, backup=False, dry_run=True
    )
    result = await app_ctx.engine.apply(operation)
    return format_column_output_markdown(result)


@mcp.tool(
    annotations=ToolAnnotations(
        title="Quick Replace",
        readOnlyHint=False,
        destructiveHint=True,
        idempotentHint=False,
        openWorldHint=False,
    )
)
async def quick_replace(
    file_path: FilePathArg,
    find: Annotated[str, Field(description="Text to find (no regex)", min_length=1)],
    replace: Annotated[str, Field(description="Replacement text (inserted verbatim)")],
    all: Annotated[bool, Field(description="Replace every occurrence, not just the first")] = True,
    backup: BackupArg = None,
    backup_strategy: StrategyArg = None,
    *,
    ctx: AppContextType,
) -> str:
    """Find and replace literal text. Special characters need no escaping."""
    return await _run_edit(
        ctx,
        EditMode.LITERAL_REPLACE,
        file_path,
        {"find": find, "replace": replace, "replace_all": all},
        backup=backup,
        strategy=backup_strategy,
    )


@mcp.tool(
    annotations=ToolAnnotations(
        title="Line Edit",
        readOnlyHint=False,
        destructiveHint=True,
        idempotentHint=False,
        openWorldHint=False,
    )
)
async def line_edit(
    file_path: FilePathArg,
    line_spec: Annotated[
        str, Field(description="Line number '5' or inclusive range '10,20' (1-based)")
    ],
    action: Annotated[
        Literal["replace", "delete", "insert_after", "insert_before"],
        Field(description="What to do with each addressed line"),
    ],
    content: Annotated[
        str | None, Field(description="New text (required except for delete)")
    ] = None,
    backup: BackupArg = None,
    backup_strategy: StrategyArg = None,
    *,
    ctx: AppContextType,
) -> str:
    """Replace, delete or insert around lines by number or range."""
    return await _run_edit(
        ctx,
        EditMode.LINE_EDIT,
        file_path,
        {"target": line_spec, "action": action, "content": content},
        backup=backup,
        strategy=backup_strategy,
    )


@mcp.tool(
    annotations=ToolAnnotations(
        title="Perl Edit",
        readOnlyHint=False,
        destructiveHint=True,
        idempotentHint=False,
        openWorldHint=False,
    )
)
async def perl_edit(
    file_path: FilePathArg,
    script: Annotated[
        str,
        Field(
            description="Perl-style substitution over the whole file, e.g. 's/(\\w+)@/$1 at /g'",
            min_length=1,
        ),
    ],
    backup: BackupArg = None,
    backup_strategy: StrategyArg = None,
    *,
    ctx: AppContextType,
) -> str:
    """Regex substitution across the whole file (flags g, i, m, s, x; $1 references)."""
    return await _run_edit(
        ctx,
        EditMode.SUBSTITUTE,
        file_path,
        {"script": script, "dialect": "perl"},
        backup=backup,
        strategy=backup_strategy,
    )


@mcp.tool(
    annotations=ToolAnnotations(
        title="Diff Preview",
        readOnlyHint=True,
        destructiveHint=False,
        idempotentHint=True,
        openWorldHint=False,
    )
)
async def diff_preview(
    file_path: FilePathArg,
    pattern: Annotated[str, Field(description="sed command to preview", min_length=1)],
    *,
    ctx: AppContextType,
) -> str:
    """Show the unified diff a sed command would produce, without changing the file."""
    return await _run_edit(
        ctx,
        EditMode.SUBSTITUTE,
        file_path,
        {"script": pattern, "dialect": "sed"},
        backup=False,
        dry_run=True,
    )


# =============================================================================
# Backup Tools
# =============================================================================


@mcp.tool(
    annotations=ToolAnnotations(
        title="Restore Backup",
        readOnlyHint=False,
        destructiveHint=True,  # Overwrites the current file content
        idempotentHint=True,
        openWorldHint=False,
    )
)
async def restore_backup(
    file_path: Annotated[
        str, Field(description="File to restore, or a backup file to restore from")
    ],
    backup_path: Annotated[
        str | None,
        Field(description="Specific backup to restore (default: newest backup of file_path)"),
    ] = None,
    *,
    ctx: AppContextType,
) -> str:
    """Restore a file from a backup. Passing a backup file restores it onto its source."""
    app_ctx = _app_context(ctx)
    engine = app_ctx.engine
    try:
        path = app_ctx.resolve_path(file_path)
        chosen = app_ctx.resolve_path(backup_path) if backup_path else None
    except EditError as e:
        return format_error_markdown(e.with_stage(EditStage.VALIDATION), "restore")

    try:
        if chosen is not None:
            result = await engine.restore(chosen, path)
        elif parse_backup_name(path.name) is not None:
            result = await engine.restore(path)
        else:
            latest = engine.latest_backup(path)
            if latest is None:
                return f"No backups found for {path}"
            result = await engine.restore(latest.backup_path, path)
    except EditError as e:
        return format_error_markdown(e, "restore")

    return format_restore_result_markdown(result)


@mcp.tool(
    annotations=ToolAnnotations(
        title="List Backups",
        readOnlyHint=True,
        destructiveHint=False,
        idempotentHint=True,
        openWorldHint=False,
    )
)
async def list_backups(
    directory: Annotated[str, Field(description="Directory to scan")] = ".",
    file_path: Annotated[
        str | None, Field(description="Only list backups of this file")
    ] = None,
    *,
    ctx: AppContextType,
) -> str:
    """List backup files (*.bak) in a directory, newest first."""
    app_ctx = _app_context(ctx)
    try:
        base = app_ctx.resolve_path(directory)
        records = app_ctx.engine.list_backups(base, source=file_path)
    except EditError as e:
        return format_error_markdown(e, "list backups")
    return format_backup_list_markdown(base, records, source=file_path)


# =============================================================================
# Help
# =============================================================================

HELP_TOPICS: dict[str, str] = {
    "overview": """# smalledit

Small, targeted file edits with automatic backups.

- **sed_edit**: one sed command (substitute, delete, append, insert, change)
- **sed_multifile**: the same sed command across files matching a glob
- **quick_replace**: literal find/replace, no regex escaping needed
- **line_edit**: edit lines by number or range
- **perl_edit**: whole-file regex substitution with perl syntax
- **awk_process**: extract, aggregate or filter columns
- **diff_preview**: see what a sed command would change
- **restore_backup** / **list_backups**: manage backups

Use help(topic) with: sed, perl, awk, lines, backups, errors""",
    "sed": """# sed commands

`[address]s/pattern/replacement/[flags]`, `[address]d`, `[address]a\\text`,
`[address]i\\text`, `[address]c\\text`

- Address: `5`, `$` (last line), `/regex/`, or a range `2,8`, `/start/,/end/`
- Flags: `g` all matches, `i` ignore case, `N` only the Nth match
- Replacement: `&` whole match, `\\1`..`\\9` groups, `\\n` newline
- Regex syntax is Python's (like `sed -E`): `(a|b)+`, `\\d`, `\\b`
- Any delimiter works: `s|/usr/local|/opt|g`

Examples: `s/foo/bar/g`, `1,10s/^/# /`, `/^$/d`, `$a\\last line`""",
    "perl": """# perl_edit

`s/pattern/replacement/flags` applied to the whole file at once.

- Flags: `g` global, `i` ignore case, `m` ^/$ per line, `s` dot matches
  newline, `x` verbose
- Replacement: `$1`, `${10}`, `$&`
- Lookarounds work: `s/(?<=v)1\\.0/2.0/g`

Example: `s/start.*?end/replaced/s` spans lines.""",
    "awk": """# awk_process

- Extract: `$2`, `print $1,$3`, `{print $1}`
- Aggregate: `sum $2`, `avg $2`, `min $2`, `max $2`, `count`,
  `{sum+=$2} END {print sum}`
- Filter: `$3 > 100`, `$1 == 0`, `$2 <= 3.5`

`field_separator=","` for CSV. Output is returned; pass `in_place=true` to
write it back to the file.""",
    "lines": """# line_edit

- `line_spec`: `5` or `10,20` (1-based, inclusive)
- `action`: `replace`, `delete`, `insert_after`, `insert_before`
- With a range, the action applies to every line in it
- A start line past the end of the file is an error""",
    "backups": """# Backups

Every edit backs the file up first unless `backup=false`.

- canonical: `file.txt.bak`, overwritten by each edit
- timestamped: `file.txt.2025-01-31T09-15-02-123456Z.bak`, one per edit

`list_backups` shows both kinds. `restore_backup(file_path)` restores the
newest backup; pass `backup_path` for a specific one.""",
    "errors": """# Errors

Failures name an error kind and the stage that failed:

- validation: MalformedPattern, InvalidRange, UnsupportedExpression
- snapshot/read: SourceNotFound, PermissionDenied, BackupVerificationFailed
- transform: LineOutOfBounds, TransformTimeout
- write/restore: WriteFailed, DiskFull, RestoreTargetUnwritable

If a backup was taken before the failure it is kept and the file is unchanged.""",
}


@mcp.tool(
    annotations=ToolAnnotations(
        title="Help",
        readOnlyHint=True,
        destructiveHint=False,
        idempotentHint=True,
        openWorldHint=False,
    )
)
async def help(
    topic: Annotated[
        Literal["overview", "sed", "perl", "awk", "lines", "backups", "errors"],
        Field(description="Help topic"),
    ] = "overview",
) -> str:
    """Usage notes and examples for the edit tools."""
    return HELP_TOPICS[topic]
