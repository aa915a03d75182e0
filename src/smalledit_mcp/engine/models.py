"""Data model for edit requests, results, backups and diffs.

All request-side models are frozen: an EditOperation is immutable once built
and is validated by PatternValidator before the engine touches the file.
"""

from __future__ import annotations

from collections.abc import Mapping
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from .exceptions import EditStage, ErrorKind

# ============================================================================
# Enumerations
# ============================================================================


class EditMode(str, Enum):
    """Edit modes. Each mode has exactly one registered transformer."""

    SUBSTITUTE = "substitute"
    LINE_EDIT = "line_edit"
    COLUMN_PROCESS = "column_process"
    LITERAL_REPLACE = "literal_replace"


class BackupStrategy(str, Enum):
    """How backup paths are derived from the source path.

    - canonical: ``<path>.bak``, overwritten on every snapshot
    - timestamped: ``<path>.<stamp>.bak``, a new file on every snapshot
    """

    CANONICAL = "canonical"
    TIMESTAMPED = "timestamped"


class EditState(str, Enum):
    """Lifecycle of a single edit request."""

    PENDING = "pending"
    VALIDATED = "validated"
    SNAPSHOTTED = "snapshotted"
    TRANSFORMED = "transformed"
    WRITTEN = "written"
    REPORTED = "reported"
    FAILED = "failed"


class ChangeKind(str, Enum):
    """Per-line classification produced by the diff reporter."""

    ADDED = "added"
    REMOVED = "removed"
    MODIFIED = "modified"
    UNCHANGED = "unchanged"


# ============================================================================
# Mode parameters
# ============================================================================


class SubstituteParams(BaseModel):
    """Parameters for substitute mode.

    ``script`` is a sed-style command such as ``s/old/new/g``, ``2,4d`` or
    ``10a\\text``. With ``dialect="perl"`` only ``s`` commands are accepted and
    they are applied to the whole content at once.
    """

    model_config = ConfigDict(frozen=True)

    script: str = Field(description="sed/perl substitution or command script")
    dialect: Literal["sed", "perl"] = Field(default="sed", description="Script dialect")


class LineEditParams(BaseModel):
    """Parameters for line-numbered edits."""

    model_config = ConfigDict(frozen=True)

    target: str = Field(description="Line number 'N' or inclusive range 'start,end' (1-based)")
    action: Literal["replace", "delete", "insert_after", "insert_before"] = Field(
        default="replace", description="What to do with the addressed line(s)"
    )
    content: str | None = Field(
        default=None, description="Replacement or inserted text (not used by delete)"
    )

    @field_validator("target", mode="before")
    @classmethod
    def _coerce_target(cls, value: Any) -> Any:
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        return value


class ColumnParams(BaseModel):
    """Parameters for column/field processing."""

    model_config = ConfigDict(frozen=True)

    expression: str = Field(description="Extraction, aggregation or filter expression")
    separator: str = Field(
        default=" ",
        description="Field separator; a single space splits on runs of whitespace",
    )
    output_separator: str = Field(default=" ", description="Joins multiple extracted fields")


class LiteralReplaceParams(BaseModel):
    """Parameters for literal find/replace (no regex interpretation)."""

    model_config = ConfigDict(frozen=True)

    find: str = Field(description="Text to find, matched verbatim")
    replace: str = Field(default="", description="Replacement text, inserted verbatim")
    replace_all: bool = Field(default=True, description="Replace every occurrence")


PARAMS_BY_MODE: dict[EditMode, type[BaseModel]] = {
    EditMode.SUBSTITUTE: SubstituteParams,
    EditMode.LINE_EDIT: LineEditParams,
    EditMode.COLUMN_PROCESS: ColumnParams,
    EditMode.LITERAL_REPLACE: LiteralReplaceParams,
}


# ============================================================================
# Requests
# ============================================================================


class EditOperation(BaseModel):
    """A single edit request against one file.

    ``parameters`` may be given as a mapping; it is converted to the mode's
    parameter model when that succeeds. Mappings that do not fit are kept as-is
    so that PatternValidator can report them with the mode's error kind.
    """

    model_config = ConfigDict(frozen=True)

    mode: EditMode
    target: Path
    parameters: Any
    create_backup: bool = True
    dry_run: bool = False
    backup_strategy: BackupStrategy | None = Field(
        default=None, description="Overrides the configured default strategy"
    )

    @model_validator(mode="before")
    @classmethod
    def _coerce_parameters(cls, data: Any) -> Any:
        if not isinstance(data, Mapping):
            return data
        raw = data.get("parameters")
        try:
            mode = EditMode(data.get("mode"))
        except ValueError:
            return data
        if isinstance(raw, Mapping):
            try:
                parsed = PARAMS_BY_MODE[mode].model_validate(dict(raw))
            except ValidationError:
                return data
            return {**data, "parameters": parsed}
        return data


# ============================================================================
# Results
# ============================================================================


class ValidationResult(BaseModel):
    """Outcome of static validation; produced once and never mutated."""

    model_config = ConfigDict(frozen=True)

    valid: bool
    error_kind: ErrorKind | None = None
    message: str | None = None

    @classmethod
    def ok(cls) -> ValidationResult:
        return cls(valid=True)

    @classmethod
    def failure(cls, kind: ErrorKind, message: str) -> ValidationResult:
        return cls(valid=False, error_kind=kind, message=message)


class BackupRecord(BaseModel):
    """A backup file and the source it belongs to."""

    model_config = ConfigDict(frozen=True)

    source_path: Path
    backup_path: Path
    created_at: datetime
    size_bytes: int
    strategy: BackupStrategy | None = Field(
        default=None, description="None when the name matches neither strategy (e.g. '.bak1')"
    )


class RestoreResult(BaseModel):
    """Outcome of a successful restore."""

    model_config = ConfigDict(frozen=True)

    backup_path: Path
    target_path: Path
    size_bytes: int


class TransformResult(BaseModel):
    """Output of a transformer: new content or an explicit failure."""

    model_config = ConfigDict(frozen=True)

    success: bool
    new_content: str | None = None
    error_kind: ErrorKind | None = None
    message: str | None = None
    lines_changed: int = 0
    replacements: int = 0

    @classmethod
    def ok(cls, new_content: str, lines_changed: int, replacements: int = 0) -> TransformResult:
        return cls(
            success=True,
            new_content=new_content,
            lines_changed=lines_changed,
            replacements=replacements,
        )

    @classmethod
    def failure(cls, kind: ErrorKind, message: str) -> TransformResult:
        return cls(success=False, error_kind=kind, message=message)


class DiffEntry(BaseModel):
    """One positional line comparison."""

    model_config = ConfigDict(frozen=True)

    line_number: int = Field(ge=1, description="1-based line index")
    before: str | None = None
    after: str | None = None
    change_kind: ChangeKind


class EditResult(BaseModel):
    """Outcome of ``EditEngine.apply``.

    On failure ``failed_stage`` tells the caller how far the pipeline got; a
    ``backup_record`` is present whenever a snapshot was taken, even if a later
    stage failed.
    """

    success: bool
    state: EditState
    mode: EditMode
    target: Path
    failed_stage: EditStage | None = None
    error_kind: ErrorKind | None = None
    message: str | None = None
    backup_record: BackupRecord | None = None
    diff: list[DiffEntry] | None = None
    unified_diff: str | None = None
    new_content: str | None = Field(default=None, description="Populated for dry runs only")
    lines_changed: int = 0
    replacements: int = 0
    changed: bool = False
    dry_run: bool = False
