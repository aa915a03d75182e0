"""Error taxonomy for the edit engine.

Every non-success outcome carries an explicit ErrorKind. Filesystem errors are
mapped from their errno so callers never have to inspect raw OSError values.
"""

from __future__ import annotations

import errno
from enum import Enum
from pathlib import Path


class ErrorKind(str, Enum):
    """Kinds of failure an edit, validation or backup operation can report."""

    MALFORMED_PATTERN = "MalformedPattern"
    INVALID_RANGE = "InvalidRange"
    UNSUPPORTED_EXPRESSION = "UnsupportedExpression"
    LINE_OUT_OF_BOUNDS = "LineOutOfBounds"
    SOURCE_NOT_FOUND = "SourceNotFound"
    BACKUP_VERIFICATION_FAILED = "BackupVerificationFailed"
    RESTORE_TARGET_UNWRITABLE = "RestoreTargetUnwritable"
    PERMISSION_DENIED = "PermissionDenied"
    TRANSFORM_TIMEOUT = "TransformTimeout"
    WRITE_FAILED = "WriteFailed"
    IS_A_DIRECTORY = "IsADirectory"
    DISK_FULL = "DiskFull"


class EditStage(str, Enum):
    """Stage of the edit pipeline at which a failure happened."""

    VALIDATION = "validation"
    READ = "read"
    SNAPSHOT = "snapshot"
    TRANSFORM = "transform"
    WRITE = "write"
    RESTORE = "restore"


_ERRNO_KINDS: dict[int, ErrorKind] = {
    errno.ENOENT: ErrorKind.SOURCE_NOT_FOUND,
    errno.EACCES: ErrorKind.PERMISSION_DENIED,
    errno.EPERM: ErrorKind.PERMISSION_DENIED,
    errno.EROFS: ErrorKind.PERMISSION_DENIED,
    errno.EISDIR: ErrorKind.IS_A_DIRECTORY,
    errno.ENOSPC: ErrorKind.DISK_FULL,
}
if hasattr(errno, "EDQUOT"):
    _ERRNO_KINDS[errno.EDQUOT] = ErrorKind.DISK_FULL


class EditError(Exception):
    """
    Structured failure raised inside the engine.

    The engine never lets one of these escape ``EditEngine.apply``: it is
    converted into a failed EditResult that keeps the kind and the stage, so the
    caller can tell whether a backup was already taken.

    Attributes:
        kind: Error taxonomy entry
        message: Human-readable description
        stage: Pipeline stage that failed (None for standalone operations)
        path: File the failure relates to, when there is one
    """

    def __init__(
        self,
        kind: ErrorKind,
        message: str,
        stage: EditStage | None = None,
        path: Path | str | None = None,
    ):
        self.kind = kind
        self.message = message
        self.stage = stage
        self.path = Path(path) if path is not None else None
        super().__init__(f"{kind.value}: {message}")

    def with_stage(self, stage: EditStage) -> EditError:
        """Return a copy of this error attributed to ``stage``."""
        return EditError(self.kind, self.message, stage=stage, path=self.path)

    @classmethod
    def from_os_error(
        cls,
        exc: OSError,
        path: Path | str,
        stage: EditStage | None = None,
        default: ErrorKind = ErrorKind.WRITE_FAILED,
    ) -> EditError:
        """Map an OSError to an EditError using its errno.

        Args:
            exc: The underlying OS error
            path: Path the operation was working on
            stage: Pipeline stage, if any
            default: Kind used when the errno has no specific mapping

        Returns:
            EditError with the mapped kind and the OS message preserved
        """
        kind = _ERRNO_KINDS.get(exc.errno, default) if exc.errno is not None else default
        reason = exc.strerror or str(exc)
        return cls(kind, f"{reason}: {path}", stage=stage, path=path)

    def __repr__(self) -> str:
        """Developer-friendly representation."""
        stage = self.stage.value if self.stage else None
        return f"EditError(kind={self.kind.value!r}, stage={stage!r}, message={self.message!r})"
