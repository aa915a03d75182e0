"""EditEngine: validate, snapshot, transform, write, report.

Each request walks the states
``PENDING -> VALIDATED -> SNAPSHOTTED -> TRANSFORMED -> WRITTEN -> REPORTED``
and stops in ``FAILED`` at the first stage that fails. Stage failures raise
EditError internally; apply() turns them into an EditResult so every outcome
carries an explicit error kind and the stage it came from.

Guarantees:
- Validation failures return before any I/O or locking
- Snapshot, transform and write for one path run under that path's lock
- With create_backup, the verified snapshot exists before the transform runs
- The target is replaced atomically; a failed edit leaves it as it was
- A cancelled edit waits for an in-flight snapshot or write to finish before
  the path lock is released; cancelled before the write, the target is untouched
- Transformers run on their own bounded pool, never on the file I/O threads
- A backup taken before a failing transform stays on disk
- Nothing is retried
"""

from __future__ import annotations

import asyncio
import logging
import threading
from collections.abc import Callable, Iterable
from concurrent.futures import Future, ThreadPoolExecutor
from pathlib import Path
from typing import Any, TypeVar

from pydantic import BaseModel

from .backup import BackupStore, parse_backup_name
from .config import EngineConfig
from .diff import DiffReporter
from .exceptions import EditError, EditStage, ErrorKind
from .fs import LocalFileSystem
from .models import (
    BackupRecord,
    BackupStrategy,
    DiffEntry,
    EditMode,
    EditOperation,
    EditResult,
    EditState,
    RestoreResult,
    TransformResult,
    ValidationResult,
)
from .path_locks import PathLockRegistry
from .transform_base import TransformerRegistry, create_default_registry
from .validation import PatternValidator, coerce_parameters

logger = logging.getLogger(__name__)

T = TypeVar("T")


class _EditRun:
    """Mutable progress of one apply() call."""

    def __init__(self, operation: EditOperation) -> None:
        self.operation = operation
        self.state = EditState.PENDING
        self.backup_record: BackupRecord | None = None

    def fail(self, error: EditError) -> EditResult:
        return EditResult(
            success=False,
            state=EditState.FAILED,
            mode=self.operation.mode,
            target=self.operation.target,
            failed_stage=error.stage,
            error_kind=error.kind,
            message=error.message,
            backup_record=self.backup_record,
            dry_run=self.operation.dry_run,
        )


class EditEngine:
    """Backup-aware edit engine.

    Usage:
        engine = EditEngine(EngineConfig())
        op = EditOperation(
            mode=EditMode.SUBSTITUTE,
            target=Path("notes.txt"),
            parameters={"script": "s/World/Universe/g"},
        )
        result = await engine.apply(op)
        if not result.success:
            print(result.failed_stage, result.error_kind, result.message)

    All collaborators can be injected; defaults are created otherwise.
    Call close() when done to release the transformer threads.
    """

    def __init__(
        self,
        config: EngineConfig | None = None,
        registry: TransformerRegistry | None = None,
        backup_store: BackupStore | None = None,
        fs: LocalFileSystem | None = None,
        locks: PathLockRegistry | None = None,
    ) -> None:
        self.config = config or EngineConfig()
        self.fs = fs or LocalFileSystem()
        self.registry = registry or create_default_registry()
        self.backup_store = backup_store or BackupStore(fs=self.fs)
        self.locks = locks or PathLockRegistry()
        self.validator = PatternValidator()
        self.reporter = DiffReporter()

        self._transform_pool = ThreadPoolExecutor(
            max_workers=self.config.transform_workers, thread_name_prefix="smalledit-transform"
        )
        # Timed-out transformer threads that are still running
        self._abandoned = 0
        self._abandoned_lock = threading.Lock()

    @property
    def abandoned_transforms(self) -> int:
        """Number of timed-out transformers whose threads have not finished yet."""
        with self._abandoned_lock:
            return self._abandoned

    def close(self) -> None:
        """Stop accepting transforms; running transformer threads are not waited for."""
        self._transform_pool.shutdown(wait=False, cancel_futures=True)

    # ------------------------------------------------------------------
    # Validation and preview
    # ------------------------------------------------------------------

    def validate(self, mode: EditMode | str, parameters: Any) -> ValidationResult:
        """Statically validate parameters for ``mode`` (no I/O)."""
        return self.validator.validate(mode, parameters)

    def diff(self, before: str, after: str) -> list[DiffEntry]:
        """Positional line diff of two texts."""
        return self.reporter.diff(before, after)

    # ------------------------------------------------------------------
    # Edits
    # ------------------------------------------------------------------

    async def apply(self, operation: EditOperation) -> EditResult:
        """Run one edit request end to end.

        Returns:
            EditResult; ``success=False`` results carry ``failed_stage``,
            ``error_kind`` and any backup that was already taken

        Raises:
            asyncio.CancelledError: If the calling task is cancelled. A snapshot
                already taken stays on disk. Cancelled before the write, the
                target is not modified; a write already in progress completes
                before the cancellation propagates.
        """
        run = _EditRun(operation)

        validation = self.validate(operation.mode, operation.parameters)
        if not validation.valid:
            assert validation.error_kind is not None
            logger.info(
                f"Rejected {operation.mode.value} edit of {operation.target}: {validation.message}"
            )
            return run.fail(
                EditError(
                    validation.error_kind,
                    validation.message or "invalid parameters",
                    stage=EditStage.VALIDATION,
                    path=operation.target,
                )
            )
        run.state = EditState.VALIDATED
        params = coerce_parameters(operation.mode, operation.parameters)

        try:
            async with self.locks.hold(operation.target):
                return await self._apply_locked(run, params)
        except EditError as e:
            logger.warning(
                f"{operation.mode.value} edit of {operation.target} failed at "
                f"{e.stage.value if e.stage else 'unknown'} stage: {e}"
            )
            return run.fail(e)
        except asyncio.CancelledError:
            logger.warning(f"Edit of {operation.target} cancelled in state {run.state.value}")
            raise

    async def _apply_locked(self, run: _EditRun, params: BaseModel) -> EditResult:
        operation = run.operation
        target = operation.target

        if operation.create_backup and not operation.dry_run:
            strategy = operation.backup_strategy or self.config.backup_strategy
            # The verified backup bytes are the pre-image, no second read
            run.backup_record, raw = await self._run_io(
                self.backup_store.capture, target, strategy
            )
            run.state = EditState.SNAPSHOTTED
        else:
            raw = await self._run_io(self.fs.read_bytes, target, EditStage.READ)
        original = raw.decode(self.config.encoding, errors="surrogateescape")

        result = await self._run_transform(operation.mode, original, params)
        if not result.success:
            assert result.error_kind is not None
            raise EditError(
                result.error_kind,
                result.message or "transform failed",
                stage=EditStage.TRANSFORM,
                path=target,
            )
        run.state = EditState.TRANSFORMED
        new_content = result.new_content if result.new_content is not None else original
        changed = new_content != original

        if not operation.dry_run and changed:
            data = new_content.encode(self.config.encoding, errors="surrogateescape")
            await self._run_io(self.fs.write_atomic, target, data, EditStage.WRITE)
            run.state = EditState.WRITTEN
            logger.info(
                f"Applied {operation.mode.value} edit to {target} "
                f"({result.lines_changed} lines changed)"
            )
        elif not operation.dry_run:
            logger.info(f"{operation.mode.value} edit of {target} changed nothing; write skipped")

        entries = self.reporter.diff(original, new_content)
        run.state = EditState.REPORTED
        return EditResult(
            success=True,
            state=run.state,
            mode=operation.mode,
            target=target,
            backup_record=run.backup_record,
            diff=entries,
            unified_diff=self.reporter.unified(original, new_content, str(target)),
            new_content=new_content if operation.dry_run else None,
            lines_changed=result.lines_changed,
            replacements=result.replacements,
            changed=changed,
            dry_run=operation.dry_run,
        )

    async def _run_io(self, func: Callable[..., T], *args: Any) -> T:
        """Run blocking file I/O in a worker thread.

        If the caller is cancelled, the cancellation is held back until the
        thread returns, so the path lock is never released while a snapshot
        or write is still touching the disk.
        """
        task = asyncio.ensure_future(asyncio.to_thread(func, *args))
        try:
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            await asyncio.wait([task])
            if not task.cancelled() and task.exception() is not None:
                logger.warning(
                    f"{func.__name__} failed while its edit was being cancelled: "
                    f"{task.exception()}"
                )
            else:
                logger.info(f"{func.__name__} completed before cancellation took effect")
            raise

    async def _run_transform(
        self, mode: EditMode, content: str, params: BaseModel
    ) -> TransformResult:
        """Run the mode's transformer on the transform pool with a deadline.

        A transformer that overruns is abandoned (its thread cannot be killed)
        and its result is discarded, so the path lock is released on time.
        Abandoned threads keep their pool slot until they return; once every
        slot is taken by one, edits fail fast with TRANSFORM_TIMEOUT instead
        of queueing behind them.
        """
        transformer = self.registry.get(mode)
        timeout = self.config.transform_timeout
        workers = self.config.transform_workers

        if self.abandoned_transforms >= workers:
            raise EditError(
                ErrorKind.TRANSFORM_TIMEOUT,
                f"All {workers} transform workers are still running timed-out transforms",
                stage=EditStage.TRANSFORM,
            )

        future = self._transform_pool.submit(transformer.run, content, params)
        try:
            return await asyncio.wait_for(asyncio.wrap_future(future), timeout=timeout)
        except TimeoutError as e:
            self._abandon(future)
            raise EditError(
                ErrorKind.TRANSFORM_TIMEOUT,
                f"{type(transformer).__name__} did not finish within {timeout}s",
                stage=EditStage.TRANSFORM,
            ) from e

    def _abandon(self, future: Future[TransformResult]) -> None:
        if future.done():
            return
        with self._abandoned_lock:
            self._abandoned += 1
        future.add_done_callback(self._abandoned_finished)

    def _abandoned_finished(self, future: Future[TransformResult]) -> None:
        with self._abandoned_lock:
            self._abandoned -= 1
        logger.debug("Timed-out transform thread finished; pool slot freed")

    async def apply_many(self, operations: Iterable[EditOperation]) -> list[EditResult]:
        """Apply several operations concurrently.

        Operations on different paths run in parallel; operations on the same
        path are serialised by the path lock. Results are in input order.
        """
        return list(await asyncio.gather(*(self.apply(op) for op in operations)))

    # ------------------------------------------------------------------
    # Standalone backup management
    # ------------------------------------------------------------------

    async def snapshot(
        self, path: Path | str, strategy: BackupStrategy | None = None
    ) -> BackupRecord:
        """Back up ``path`` under its path lock.

        Raises:
            EditError: See BackupStore.snapshot
        """
        async with self.locks.hold(path):
            return await self._run_io(
                self.backup_store.snapshot, Path(path), strategy or self.config.backup_strategy
            )

    async def restore(
        self, backup_path: Path | str, target_path: Path | str | None = None
    ) -> RestoreResult:
        """Restore a backup onto its target under the target's path lock.

        Raises:
            EditError: See BackupStore.restore
        """
        if target_path is None:
            # Resolve the default target first so the right path is locked
            parsed = parse_backup_name(Path(backup_path).name)
            lock_path = (
                Path(backup_path).with_name(parsed.source_name) if parsed else Path(backup_path)
            )
        else:
            lock_path = Path(target_path)

        async with self.locks.hold(lock_path):
            return await self._run_io(self.backup_store.restore, backup_path, target_path)

    def list_backups(
        self, directory: Path | str, source: Path | str | None = None
    ) -> list[BackupRecord]:
        """List backups in ``directory``, oldest first."""
        return self.backup_store.list(directory, source=source)

    def latest_backup(self, source: Path | str) -> BackupRecord | None:
        return self.backup_store.latest(source)
