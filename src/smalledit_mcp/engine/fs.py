"""Filesystem capability used by the engine and the backup store.

Every operation raises EditError with a kind mapped from the OS error code
(not-found, permission-denied, is-a-directory, disk-full), never a bare
OSError. Writes are atomic: content is staged in a sibling temporary file and
moved over the target with a single ``os.replace``.
"""

from __future__ import annotations

import logging
import os
import stat
import tempfile
from pathlib import Path

from .exceptions import EditError, EditStage, ErrorKind

logger = logging.getLogger(__name__)


class PathResolver:
    """Path resolution with security validation.

    Provides consistent path handling for every tool:
    - Relative paths are anchored at the working directory
    - Symlinked targets are rejected
    - Optional confinement to the working directory
    """

    @staticmethod
    def resolve_and_validate(
        path: str | Path,
        working_dir: Path | None = None,
        allow_traversal: bool = False,
    ) -> Path:
        """Resolve and validate a file path.

        Args:
            path: File path to resolve (can be relative or absolute)
            working_dir: Base directory for relative paths (defaults to cwd)
            allow_traversal: If False, path must stay within working_dir

        Returns:
            Absolute, normalised path

        Raises:
            EditError: PERMISSION_DENIED if the path is a symlink or escapes
                the working directory, SOURCE_NOT_FOUND if it cannot be resolved

        Example:
            path = PathResolver.resolve_and_validate("notes/todo.txt", Path("/srv/docs"))
        """
        if working_dir is None:
            working_dir = Path.cwd()

        file_path = Path(path).expanduser()
        absolute_path = file_path if file_path.is_absolute() else working_dir / file_path

        # No symlinks in the path itself (parents are followed by resolve)
        if absolute_path.is_symlink():
            raise EditError(
                ErrorKind.PERMISSION_DENIED,
                f"Symlinks not allowed for security: {absolute_path}",
                path=absolute_path,
            )

        try:
            resolved_path = absolute_path.resolve()
        except (OSError, RuntimeError) as e:
            raise EditError(
                ErrorKind.SOURCE_NOT_FOUND,
                f"Failed to resolve path '{path}': {e}",
                path=absolute_path,
            ) from e

        if not allow_traversal:
            try:
                resolved_path.relative_to(working_dir.resolve())
            except ValueError as e:
                raise EditError(
                    ErrorKind.PERMISSION_DENIED,
                    f"Path escapes working directory. "
                    f"Path: {path}, Resolved: {resolved_path}, Working dir: {working_dir}",
                    path=resolved_path,
                ) from e

        return resolved_path


class LocalFileSystem:
    """Blocking file I/O with mapped errors.

    Instances are stateless; the engine and backup store accept one so tests
    can substitute a filesystem that fails or corrupts on demand.
    """

    def read_bytes(self, path: Path, stage: EditStage | None = None) -> bytes:
        """Read the full content of a regular file.

        Raises:
            EditError: SOURCE_NOT_FOUND, IS_A_DIRECTORY, PERMISSION_DENIED
        """
        if path.is_dir():
            raise EditError(
                ErrorKind.IS_A_DIRECTORY, f"Path is a directory: {path}", stage=stage, path=path
            )
        try:
            return path.read_bytes()
        except OSError as e:
            raise EditError.from_os_error(
                e, path, stage=stage, default=ErrorKind.SOURCE_NOT_FOUND
            ) from e

    def write_atomic(self, path: Path, data: bytes, stage: EditStage | None = None) -> int:
        """Replace ``path`` with ``data`` in one step.

        The data is written and fsynced to a temporary file in the same
        directory, which then replaces the target. An existing target keeps
        its permission bits. If anything fails before the replace, the target
        is untouched and the temporary file is removed.

        Returns:
            Number of bytes written

        Raises:
            EditError: PERMISSION_DENIED, DISK_FULL, IS_A_DIRECTORY or
                WRITE_FAILED
        """
        if path.is_dir():
            raise EditError(
                ErrorKind.IS_A_DIRECTORY, f"Path is a directory: {path}", stage=stage, path=path
            )

        try:
            existing_mode: int | None = stat.S_IMODE(path.stat().st_mode)
        except FileNotFoundError:
            existing_mode = None
        except OSError as e:
            raise EditError.from_os_error(e, path, stage=stage) from e

        tmp_name: str | None = None
        try:
            fd, tmp_name = tempfile.mkstemp(
                dir=path.parent, prefix=f".{path.name}.", suffix=".tmp"
            )
            with os.fdopen(fd, "wb") as handle:
                handle.write(data)
                handle.flush()
                os.fsync(handle.fileno())
            if existing_mode is not None:
                os.chmod(tmp_name, existing_mode)
            os.replace(tmp_name, path)
            tmp_name = None
        except OSError as e:
            raise EditError.from_os_error(e, path, stage=stage) from e
        finally:
            if tmp_name is not None:
                try:
                    os.unlink(tmp_name)
                except OSError:
                    logger.warning(f"Could not remove temporary file {tmp_name}")

        logger.debug(f"Wrote {len(data)} bytes to {path}")
        return len(data)

    def copy_file(self, source: Path, destination: Path, stage: EditStage | None = None) -> int:
        """Copy ``source`` onto ``destination`` atomically."""
        return self.write_atomic(destination, self.read_bytes(source, stage=stage), stage=stage)

    def list_dir(self, directory: Path) -> list[Path]:
        """List regular files in ``directory`` in filesystem enumeration order."""
        try:
            with os.scandir(directory) as entries:
                return [Path(entry.path) for entry in entries if entry.is_file()]
        except NotADirectoryError as e:
            raise EditError(
                ErrorKind.SOURCE_NOT_FOUND, f"Not a directory: {directory}", path=directory
            ) from e
        except OSError as e:
            raise EditError.from_os_error(
                e, directory, default=ErrorKind.SOURCE_NOT_FOUND
            ) from e

    def stat(self, path: Path) -> os.stat_result:
        try:
            return path.stat()
        except OSError as e:
            raise EditError.from_os_error(e, path, default=ErrorKind.SOURCE_NOT_FOUND) from e

    def remove(self, path: Path) -> None:
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            raise EditError.from_os_error(e, path) from e
