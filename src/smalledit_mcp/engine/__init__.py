"""Backup-aware edit engine.

Key Components:

- EditEngine: Orchestrates validate -> snapshot -> transform -> write -> report
- PatternValidator: Static checks of edit parameters (no I/O)
- BackupStore: Verified snapshots, listing and atomic restore
- TextTransformer / TransformerRegistry: One pure transformer per EditMode
- DiffReporter: Positional line diff plus unified-diff rendering
- PathLockRegistry: Per-path serialisation of edits
- EngineConfig / ConfigLoader: YAML + environment configuration
- EditError / ErrorKind / EditStage: Error taxonomy
"""

from .backup import BackupStore, parse_backup_name
from .config import ConfigLoader, EngineConfig
from .diff import DiffReporter
from .engine import EditEngine
from .exceptions import EditError, EditStage, ErrorKind
from .fs import LocalFileSystem, PathResolver
from .models import (
    BackupRecord,
    BackupStrategy,
    ChangeKind,
    ColumnParams,
    DiffEntry,
    EditMode,
    EditOperation,
    EditResult,
    EditState,
    LineEditParams,
    LiteralReplaceParams,
    RestoreResult,
    SubstituteParams,
    TransformResult,
    ValidationResult,
)
from .path_locks import PathLockRegistry
from .transform_base import TextTransformer, TransformerRegistry, create_default_registry
from .validation import PatternValidator

__all__ = [
    # Engine
    "EditEngine",
    "EngineConfig",
    "ConfigLoader",
    # Components
    "PatternValidator",
    "BackupStore",
    "DiffReporter",
    "PathLockRegistry",
    "LocalFileSystem",
    "PathResolver",
    "TextTransformer",
    "TransformerRegistry",
    "create_default_registry",
    "parse_backup_name",
    # Models
    "EditMode",
    "EditOperation",
    "EditResult",
    "EditState",
    "SubstituteParams",
    "LineEditParams",
    "ColumnParams",
    "LiteralReplaceParams",
    "ValidationResult",
    "TransformResult",
    "BackupRecord",
    "BackupStrategy",
    "RestoreResult",
    "DiffEntry",
    "ChangeKind",
    # Errors
    "EditError",
    "EditStage",
    "ErrorKind",
]
