"""Backup creation, discovery and restore.

Two naming strategies coexist in the same directory:

- canonical:   ``notes.txt.bak`` (one per source, overwritten on each snapshot)
- timestamped: ``notes.txt.2025-01-31T09-15-02-123456Z.bak`` (a new file per
  snapshot; ``-N`` is appended to the stamp when two snapshots share a tick)

Listing recognises both, plus any other name that carries the ``.bak`` marker
(``notes.txt.bak1``), and attributes each file to its source by stripping the
marker suffix.
"""

from __future__ import annotations

import logging
import re
import threading
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path

from .exceptions import EditError, EditStage, ErrorKind
from .fs import LocalFileSystem
from .models import BackupRecord, BackupStrategy, RestoreResult

logger = logging.getLogger(__name__)

BACKUP_MARKER = ".bak"
STAMP_FORMAT = "%Y-%m-%dT%H-%M-%S-%fZ"

_TIMESTAMPED_NAME = re.compile(
    r"^(?P<source>.+)\.(?P<stamp>\d{4}-\d{2}-\d{2}T\d{2}-\d{2}-\d{2}-\d{6}Z)"
    r"(?:-(?P<seq>\d+))?\.bak$"
)
# Any other backup: the marker optionally followed by a counter (notes.txt.bak1)
_MARKED_NAME = re.compile(r"^(?P<source>.+)\.bak(?P<counter>\d*)$")


def format_stamp(moment: datetime) -> str:
    """ISO 8601 UTC timestamp with filesystem-safe separators."""
    return moment.astimezone(UTC).strftime(STAMP_FORMAT)


def parse_stamp(stamp: str) -> datetime:
    return datetime.strptime(stamp, STAMP_FORMAT).replace(tzinfo=UTC)


@dataclass(frozen=True)
class BackupName:
    """What a backup file name says about its source."""

    source_name: str
    strategy: BackupStrategy | None
    created_at: datetime | None = None
    seq: int = 0


def parse_backup_name(name: str) -> BackupName | None:
    """Attribute a file name to its source, or return None if it is not a backup.

    Example:
        >>> parse_backup_name("test.txt.bak").source_name
        'test.txt'
        >>> parse_backup_name("test.txt.backup") is None
        True
    """
    if BACKUP_MARKER not in name:
        return None
    # Temporary files from an in-flight atomic write
    if name.startswith(".") and name.endswith(".tmp"):
        return None

    match = _TIMESTAMPED_NAME.match(name)
    if match:
        return BackupName(
            source_name=match.group("source"),
            strategy=BackupStrategy.TIMESTAMPED,
            created_at=parse_stamp(match.group("stamp")),
            seq=int(match.group("seq") or 0),
        )

    match = _MARKED_NAME.match(name)
    if not match:
        return None
    strategy = BackupStrategy.CANONICAL if not match.group("counter") else None
    return BackupName(source_name=match.group("source"), strategy=strategy)


class BackupStore:
    """Creates, enumerates and restores backups of files.

    The strategy is always passed explicitly, so callers (and tests) control it
    per call rather than through shared state.

    Usage:
        store = BackupStore()
        record = store.snapshot(Path("notes.txt"), BackupStrategy.TIMESTAMPED)
        store.restore(record.backup_path)
    """

    def __init__(
        self,
        fs: LocalFileSystem | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._fs = fs or LocalFileSystem()
        self._clock = clock or (lambda: datetime.now(UTC))
        self._name_lock = threading.Lock()
        # Timestamped names handed out whose files may not exist yet
        self._reserved: set[Path] = set()

    # ------------------------------------------------------------------
    # Naming
    # ------------------------------------------------------------------

    def _allocate(self, source: Path, strategy: BackupStrategy) -> tuple[Path, datetime]:
        now = self._clock()
        if strategy == BackupStrategy.CANONICAL:
            return source.with_name(source.name + BACKUP_MARKER), now

        with self._name_lock:
            base = f"{source.name}.{format_stamp(now)}"
            candidate = source.with_name(base + BACKUP_MARKER)
            seq = 0
            while candidate in self._reserved or candidate.exists():
                seq += 1
                candidate = source.with_name(f"{base}-{seq}{BACKUP_MARKER}")
            self._reserved.add(candidate)
        return candidate, now

    def _release(self, backup_path: Path) -> None:
        with self._name_lock:
            self._reserved.discard(backup_path)

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def snapshot(self, path: Path | str, strategy: BackupStrategy) -> BackupRecord:
        """Copy ``path`` to a derived backup path and verify the copy.

        Args:
            path: File to back up
            strategy: Naming strategy for the backup path

        Returns:
            BackupRecord for the verified backup

        Raises:
            EditError: SOURCE_NOT_FOUND / PERMISSION_DENIED reading the source,
                write errors creating the backup, BACKUP_VERIFICATION_FAILED if
                the read-back differs (the bad copy is removed)
        """
        record, _ = self.capture(path, strategy)
        return record

    def capture(self, path: Path | str, strategy: BackupStrategy) -> tuple[BackupRecord, bytes]:
        """Like snapshot(), but also return the bytes the backup was verified against."""
        source = Path(path)
        stage = EditStage.SNAPSHOT
        data = self._fs.read_bytes(source, stage=stage)
        backup_path, created_at = self._allocate(source, strategy)

        try:
            self._fs.write_atomic(backup_path, data, stage=stage)
            written = self._fs.read_bytes(backup_path, stage=stage)
        finally:
            self._release(backup_path)

        if written != data:
            self._fs.remove(backup_path)
            raise EditError(
                ErrorKind.BACKUP_VERIFICATION_FAILED,
                f"Backup {backup_path} does not match {source} "
                f"({len(written)} bytes read back, {len(data)} expected)",
                stage=stage,
                path=backup_path,
            )

        logger.info(f"Created {strategy.value} backup {backup_path} ({len(data)} bytes)")
        record = BackupRecord(
            source_path=source,
            backup_path=backup_path,
            created_at=created_at,
            size_bytes=len(data),
            strategy=strategy,
        )
        return record, data

    def list(self, directory: Path | str, source: Path | str | None = None) -> list[BackupRecord]:
        """Find backups in ``directory``, oldest first.

        Args:
            directory: Directory to scan (not recursive)
            source: Only return backups of this file (matched by name)

        Returns:
            Records sorted by creation time, then tie-break counter, then name
        """
        directory = Path(directory)
        source_name = Path(source).name if source is not None else None
        keyed: list[tuple[tuple[datetime, int, str], BackupRecord]] = []

        for entry in self._fs.list_dir(directory):
            parsed = parse_backup_name(entry.name)
            if parsed is None:
                continue
            if source_name is not None and parsed.source_name != source_name:
                continue
            try:
                info = self._fs.stat(entry)
            except EditError:
                # Removed between listing and stat
                continue
            created_at = parsed.created_at or datetime.fromtimestamp(info.st_mtime, UTC)
            record = BackupRecord(
                source_path=directory / parsed.source_name,
                backup_path=entry,
                created_at=created_at,
                size_bytes=info.st_size,
                strategy=parsed.strategy,
            )
            keyed.append(((created_at, parsed.seq, entry.name), record))

        keyed.sort(key=lambda item: item[0])
        return [record for _, record in keyed]

    def latest(self, source: Path | str) -> BackupRecord | None:
        """Newest backup of ``source`` in its directory, if any."""
        source = Path(source)
        records = self.list(source.parent, source=source)
        return records[-1] if records else None

    def restore(
        self, backup_path: Path | str, target_path: Path | str | None = None
    ) -> RestoreResult:
        """Copy a backup byte-for-byte onto its target.

        The target is replaced atomically; it is never truncated before the
        full content is staged.

        Args:
            backup_path: Backup file to restore from
            target_path: Destination (defaults to the backup's source file)

        Raises:
            EditError: SOURCE_NOT_FOUND if the backup is missing or its source
                cannot be derived, PERMISSION_DENIED reading it,
                RESTORE_TARGET_UNWRITABLE if the target cannot be replaced
        """
        backup = Path(backup_path)
        stage = EditStage.RESTORE
        if target_path is None:
            parsed = parse_backup_name(backup.name)
            if parsed is None:
                raise EditError(
                    ErrorKind.SOURCE_NOT_FOUND,
                    f"Cannot derive restore target: {backup.name} is not a backup file name",
                    stage=stage,
                    path=backup,
                )
            target = backup.with_name(parsed.source_name)
        else:
            target = Path(target_path)

        data = self._fs.read_bytes(backup, stage=stage)
        try:
            self._fs.write_atomic(target, data, stage=stage)
        except EditError as e:
            raise EditError(
                ErrorKind.RESTORE_TARGET_UNWRITABLE,
                f"Cannot restore onto {target}: {e.message}",
                stage=stage,
                path=target,
            ) from e

        logger.info(f"Restored {target} from {backup} ({len(data)} bytes)")
        return RestoreResult(backup_path=backup, target_path=target, size_bytes=len(data))
