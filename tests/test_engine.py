"""Tests for EditEngine: the validate, snapshot, transform, write, report pipeline."""

import asyncio
import errno
import threading
import time
from pathlib import Path

import pytest

from smalledit_mcp.engine import (
    BackupStrategy,
    EditEngine,
    EditError,
    EditMode,
    EditOperation,
    EditStage,
    EditState,
    EngineConfig,
    ErrorKind,
    LocalFileSystem,
    SubstituteParams,
    TextTransformer,
    TransformResult,
    create_default_registry,
)

SAMPLE_CONTENT = "Hello World\nThis is a test file\nWith multiple lines\n"


def op(mode: EditMode, target: Path, **kwargs) -> EditOperation:
    parameters = kwargs.pop("parameters")
    return EditOperation(mode=mode, target=target, parameters=parameters, **kwargs)


def backups_of(path: Path) -> list[Path]:
    return sorted(p for p in path.parent.iterdir() if p.name.startswith(path.name + "."))


class RecordingFileSystem(LocalFileSystem):
    """Counts every read and write so tests can assert no I/O happened."""

    def __init__(self) -> None:
        self.calls: list[str] = []

    def read_bytes(self, path, stage=None):
        self.calls.append(f"read {path.name}")
        return super().read_bytes(path, stage)

    def write_atomic(self, path, data, stage=None):
        self.calls.append(f"write {path.name}")
        return super().write_atomic(path, data, stage)


class FailingWriteFileSystem(LocalFileSystem):
    """Refuses to write the edited file itself."""

    def write_atomic(self, path, data, stage=None):
        if stage == EditStage.WRITE:
            error = OSError(errno.ENOSPC, "No space left on device")
            raise EditError.from_os_error(error, path, stage=stage)
        return super().write_atomic(path, data, stage)


class SlowWriteFileSystem(LocalFileSystem):
    """Sleeps inside write_atomic for one stage, signalling when it starts."""

    def __init__(self, stage: EditStage, delay: float) -> None:
        self.stage = stage
        self.delay = delay
        self.writing = threading.Event()

    def write_atomic(self, path, data, stage=None):
        if stage == self.stage:
            self.writing.set()
            time.sleep(self.delay)
        return super().write_atomic(path, data, stage)


class CorruptingFileSystem(LocalFileSystem):
    """Drops the last byte of every backup it writes."""

    def write_atomic(self, path, data, stage=None):
        if path.name.endswith(".bak"):
            data = data[:-1]
        return super().write_atomic(path, data, stage)


class BlockingTransformer(TextTransformer):
    """Substitute transformer that waits on an event (or forever)."""

    mode = EditMode.SUBSTITUTE
    params_type = SubstituteParams

    def __init__(self, release: threading.Event, started: threading.Event | None = None):
        self.release = release
        self.started = started

    def transform(self, content, params):
        if self.started is not None:
            self.started.set()
        self.release.wait(timeout=5)
        return TransformResult.ok(content.upper(), 1)


class FailingTransformer(TextTransformer):
    mode = EditMode.SUBSTITUTE
    params_type = SubstituteParams

    def transform(self, content, params):
        return TransformResult.failure(ErrorKind.MALFORMED_PATTERN, "refused")


def engine_with(transformer: TextTransformer, **config) -> EditEngine:
    registry = create_default_registry()
    registry.register(transformer)
    return EditEngine(EngineConfig(**config), registry=registry)


# ---------------------------------------------------------------------------
# Successful edits
# ---------------------------------------------------------------------------


class TestApply:
    @pytest.mark.asyncio
    async def test_substitute_world_to_universe(self, engine, sample_file):
        result = await engine.apply(
            op(EditMode.SUBSTITUTE, sample_file, parameters={"script": "s/World/Universe/g"})
        )

        assert result.success
        assert result.state == EditState.REPORTED
        assert sample_file.read_text().splitlines()[0] == "Hello Universe"
        assert result.lines_changed == 1
        assert result.changed
        assert result.new_content is None
        assert result.backup_record is not None
        assert result.backup_record.backup_path.read_text() == SAMPLE_CONTENT

    @pytest.mark.asyncio
    async def test_literal_first_occurrence_only(self, engine, tmp_path):
        path = tmp_path / "foo.txt"
        path.write_text("foo foo foo")

        result = await engine.apply(
            op(
                EditMode.LITERAL_REPLACE,
                path,
                parameters={"find": "foo", "replace": "bar", "replace_all": False},
            )
        )

        assert result.success
        assert path.read_text() == "bar foo foo"
        assert result.replacements == 1

    @pytest.mark.asyncio
    async def test_column_sum(self, engine, tmp_path):
        path = tmp_path / "numbers.txt"
        path.write_text("10\n20\n30\n40\n50\n")

        result = await engine.apply(
            op(
                EditMode.COLUMN_PROCESS,
                path,
                parameters={"expression": "{sum+=$1} END {print sum}"},
                dry_run=True,
            )
        )

        assert result.success
        assert result.new_content.strip() == "150"
        assert path.read_text() == "10\n20\n30\n40\n50\n"

    @pytest.mark.asyncio
    async def test_delete_line_two(self, engine, sample_file):
        result = await engine.apply(
            op(EditMode.LINE_EDIT, sample_file, parameters={"target": "2", "action": "delete"})
        )

        assert result.success
        assert sample_file.read_text() == "Hello World\nWith multiple lines\n"
        assert len(sample_file.read_text().splitlines()) == 2

    @pytest.mark.asyncio
    async def test_report_includes_diff(self, engine, sample_file):
        result = await engine.apply(
            op(EditMode.SUBSTITUTE, sample_file, parameters={"script": "s/test/sample/"})
        )

        modified = [e for e in result.diff if e.change_kind.value == "modified"]
        assert [e.line_number for e in modified] == [2]
        assert "+This is a sample file" in result.unified_diff

    @pytest.mark.asyncio
    async def test_without_backup(self, engine, sample_file):
        result = await engine.apply(
            op(
                EditMode.SUBSTITUTE,
                sample_file,
                parameters={"script": "s/Hello/Bye/"},
                create_backup=False,
            )
        )

        assert result.success
        assert result.backup_record is None
        assert backups_of(sample_file) == []

    @pytest.mark.asyncio
    async def test_timestamped_strategy_per_operation(self, engine, sample_file):
        for i in range(3):
            await engine.apply(
                op(
                    EditMode.SUBSTITUTE,
                    sample_file,
                    parameters={"script": f"s/$/{i}/"},
                    backup_strategy=BackupStrategy.TIMESTAMPED,
                )
            )

        records = engine.list_backups(sample_file.parent, source=sample_file)
        assert len(records) == 3
        assert all(r.strategy == BackupStrategy.TIMESTAMPED for r in records)

    @pytest.mark.asyncio
    async def test_unchanged_content_skips_write(self, sample_file):
        fs = RecordingFileSystem()
        engine = EditEngine(fs=fs)

        result = await engine.apply(
            op(
                EditMode.SUBSTITUTE,
                sample_file,
                parameters={"script": "s/absent/x/"},
                create_backup=False,
            )
        )

        assert result.success
        assert not result.changed
        assert fs.calls == ["read test.txt"]

    @pytest.mark.asyncio
    async def test_backup_bytes_are_the_pre_image(self, sample_file):
        fs = RecordingFileSystem()
        engine = EditEngine(fs=fs)

        result = await engine.apply(
            op(EditMode.SUBSTITUTE, sample_file, parameters={"script": "s/World/Universe/"})
        )

        assert result.success
        assert fs.calls == [
            "read test.txt",
            "write test.txt.bak",
            "read test.txt.bak",
            "write test.txt",
        ]
        assert result.backup_record.backup_path.read_text() == SAMPLE_CONTENT

    @pytest.mark.asyncio
    async def test_dry_run_touches_nothing(self, engine, sample_file):
        before = sample_file.read_bytes()

        result = await engine.apply(
            op(
                EditMode.SUBSTITUTE,
                sample_file,
                parameters={"script": "s/World/Universe/g"},
                dry_run=True,
            )
        )

        assert result.success
        assert result.dry_run
        assert result.new_content.startswith("Hello Universe")
        assert sample_file.read_bytes() == before
        assert backups_of(sample_file) == []

    @pytest.mark.asyncio
    async def test_preserves_file_mode(self, engine, sample_file):
        sample_file.chmod(0o640)
        await engine.apply(
            op(EditMode.SUBSTITUTE, sample_file, parameters={"script": "s/World/There/"})
        )
        assert sample_file.stat().st_mode & 0o777 == 0o640


# ---------------------------------------------------------------------------
# Failures
# ---------------------------------------------------------------------------


class TestApplyFailures:
    @pytest.mark.asyncio
    async def test_invalid_range_performs_no_io(self, sample_file):
        fs = RecordingFileSystem()
        engine = EditEngine(fs=fs)

        result = await engine.apply(
            op(EditMode.LINE_EDIT, sample_file, parameters={"target": "5,3", "action": "delete"})
        )

        assert not result.success
        assert result.state == EditState.FAILED
        assert result.failed_stage == EditStage.VALIDATION
        assert result.error_kind == ErrorKind.INVALID_RANGE
        assert fs.calls == []
        assert backups_of(sample_file) == []
        assert len(engine.locks) == 0

    @pytest.mark.asyncio
    async def test_malformed_pattern(self, engine, sample_file):
        result = await engine.apply(
            op(EditMode.SUBSTITUTE, sample_file, parameters={"script": "invalid command"})
        )

        assert result.error_kind == ErrorKind.MALFORMED_PATTERN
        assert result.failed_stage == EditStage.VALIDATION
        assert sample_file.read_text() == SAMPLE_CONTENT

    @pytest.mark.asyncio
    async def test_missing_file(self, engine, tmp_path):
        result = await engine.apply(
            op(EditMode.SUBSTITUTE, tmp_path / "nope.txt", parameters={"script": "s/a/b/"})
        )

        assert result.error_kind == ErrorKind.SOURCE_NOT_FOUND
        assert result.failed_stage == EditStage.SNAPSHOT
        assert result.backup_record is None

    @pytest.mark.asyncio
    async def test_missing_file_without_backup_fails_at_read(self, engine, tmp_path):
        result = await engine.apply(
            op(
                EditMode.SUBSTITUTE,
                tmp_path / "nope.txt",
                parameters={"script": "s/a/b/"},
                create_backup=False,
            )
        )

        assert result.error_kind == ErrorKind.SOURCE_NOT_FOUND
        assert result.failed_stage == EditStage.READ

    @pytest.mark.asyncio
    async def test_directory_target(self, engine, tmp_path):
        result = await engine.apply(
            op(EditMode.SUBSTITUTE, tmp_path, parameters={"script": "s/a/b/"}, create_backup=False)
        )
        assert result.error_kind == ErrorKind.IS_A_DIRECTORY

    @pytest.mark.asyncio
    async def test_line_out_of_bounds_keeps_backup(self, engine, sample_file):
        result = await engine.apply(
            op(
                EditMode.LINE_EDIT,
                sample_file,
                parameters={"target": "10", "action": "replace", "content": "x"},
            )
        )

        assert result.error_kind == ErrorKind.LINE_OUT_OF_BOUNDS
        assert result.failed_stage == EditStage.TRANSFORM
        assert sample_file.read_text() == SAMPLE_CONTENT
        assert result.backup_record is not None
        assert result.backup_record.backup_path.read_text() == SAMPLE_CONTENT

    @pytest.mark.asyncio
    async def test_transform_failure_leaves_target_and_backup(self, sample_file):
        engine = engine_with(FailingTransformer())
        before = sample_file.read_bytes()

        result = await engine.apply(
            op(EditMode.SUBSTITUTE, sample_file, parameters={"script": "s/a/b/"})
        )

        assert not result.success
        assert result.failed_stage == EditStage.TRANSFORM
        assert sample_file.read_bytes() == before
        assert result.backup_record.backup_path.read_bytes() == before

    @pytest.mark.asyncio
    async def test_write_failure_maps_disk_full(self, sample_file):
        engine = EditEngine(fs=FailingWriteFileSystem())

        result = await engine.apply(
            op(EditMode.SUBSTITUTE, sample_file, parameters={"script": "s/World/X/"})
        )

        assert result.error_kind == ErrorKind.DISK_FULL
        assert result.failed_stage == EditStage.WRITE
        assert sample_file.read_text() == SAMPLE_CONTENT
        assert result.backup_record is not None

    @pytest.mark.asyncio
    async def test_transform_timeout(self, sample_file):
        release = threading.Event()
        engine = engine_with(BlockingTransformer(release), transform_timeout=0.2)

        try:
            result = await engine.apply(
                op(EditMode.SUBSTITUTE, sample_file, parameters={"script": "s/a/b/"})
            )
        finally:
            release.set()

        assert result.error_kind == ErrorKind.TRANSFORM_TIMEOUT
        assert result.failed_stage == EditStage.TRANSFORM
        assert sample_file.read_text() == SAMPLE_CONTENT
        assert not engine.locks.is_locked(sample_file)

    @pytest.mark.asyncio
    async def test_timed_out_transforms_do_not_starve_other_edits(self, tmp_path):
        release = threading.Event()
        engine = engine_with(
            BlockingTransformer(release), transform_timeout=0.1, transform_workers=2
        )
        hung = [tmp_path / "hung1.txt", tmp_path / "hung2.txt"]
        for path in hung:
            path.write_text("a\n")
        other = tmp_path / "other.txt"
        other.write_text("foo\n")
        loop = asyncio.get_running_loop()

        def replace_foo():
            return engine.apply(
                op(EditMode.LITERAL_REPLACE, other, parameters={"find": "foo", "replace": "bar"})
            )

        try:
            first = await engine.apply(
                op(EditMode.SUBSTITUTE, hung[0], parameters={"script": "s/a/b/"})
            )
            started = loop.time()
            served = await replace_foo()
            served_in = loop.time() - started

            second = await engine.apply(
                op(EditMode.SUBSTITUTE, hung[1], parameters={"script": "s/a/b/"})
            )
            started = loop.time()
            refused = await replace_foo()
            refused_in = loop.time() - started
        finally:
            release.set()

        assert first.error_kind == ErrorKind.TRANSFORM_TIMEOUT
        assert second.error_kind == ErrorKind.TRANSFORM_TIMEOUT
        assert served.success
        assert served_in < 1.0

        # Both workers are held by timed-out transforms: fail fast, lock released
        assert refused.error_kind == ErrorKind.TRANSFORM_TIMEOUT
        assert refused.failed_stage == EditStage.TRANSFORM
        assert refused_in < 1.0
        assert not engine.locks.is_locked(other)
        assert other.read_text() == "bar\n"

        for _ in range(100):
            if engine.abandoned_transforms == 0:
                break
            await asyncio.sleep(0.05)
        assert engine.abandoned_transforms == 0

        recovered = await engine.apply(
            op(EditMode.LITERAL_REPLACE, other, parameters={"find": "bar", "replace": "baz"})
        )
        assert recovered.success
        assert other.read_text() == "baz\n"
        engine.close()

    @pytest.mark.asyncio
    async def test_backup_verification_failure_stops_edit(self, sample_file):
        engine = EditEngine(fs=CorruptingFileSystem())
        before = sample_file.read_bytes()

        result = await engine.apply(
            op(EditMode.SUBSTITUTE, sample_file, parameters={"script": "s/World/Universe/"})
        )

        assert not result.success
        assert result.error_kind == ErrorKind.BACKUP_VERIFICATION_FAILED
        assert result.failed_stage == EditStage.SNAPSHOT
        assert result.backup_record is None
        assert sample_file.read_bytes() == before
        assert backups_of(sample_file) == []

    @pytest.mark.parametrize("code", [errno.EACCES, errno.EPERM])
    def test_permission_errors_map_to_permission_denied(self, code, tmp_path):
        error = EditError.from_os_error(
            PermissionError(code, "Operation not permitted"), tmp_path / "locked.txt"
        )
        assert error.kind == ErrorKind.PERMISSION_DENIED

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "create_backup,stage", [(True, EditStage.SNAPSHOT), (False, EditStage.READ)]
    )
    async def test_unreadable_target_is_permission_denied(
        self, engine, sample_file, monkeypatch, create_backup, stage
    ):
        real_read_bytes = Path.read_bytes

        def denied(path):
            if path == sample_file:
                raise PermissionError(errno.EACCES, "Permission denied", str(path))
            return real_read_bytes(path)

        monkeypatch.setattr(Path, "read_bytes", denied)

        result = await engine.apply(
            op(
                EditMode.SUBSTITUTE,
                sample_file,
                parameters={"script": "s/World/Universe/"},
                create_backup=create_backup,
            )
        )
        monkeypatch.undo()

        assert result.error_kind == ErrorKind.PERMISSION_DENIED
        assert result.failed_stage == stage
        assert sample_file.read_text() == SAMPLE_CONTENT
        assert backups_of(sample_file) == []

    @pytest.mark.asyncio
    async def test_cancellation_leaves_target_unmodified(self, sample_file):
        release = threading.Event()
        started = threading.Event()
        engine = engine_with(BlockingTransformer(release, started))

        task = asyncio.create_task(
            engine.apply(op(EditMode.SUBSTITUTE, sample_file, parameters={"script": "s/a/b/"}))
        )
        await asyncio.to_thread(started.wait, 5)
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task
        release.set()

        assert sample_file.read_text() == SAMPLE_CONTENT
        assert sample_file.with_name("test.txt.bak").exists()
        assert len(engine.locks) == 0

    @pytest.mark.asyncio
    async def test_cancel_during_write_holds_lock_until_write_lands(self, sample_file):
        fs = SlowWriteFileSystem(EditStage.WRITE, delay=0.5)
        engine = EditEngine(fs=fs)

        first = asyncio.create_task(
            engine.apply(
                op(EditMode.SUBSTITUTE, sample_file, parameters={"script": "s/World/Universe/"})
            )
        )
        await asyncio.to_thread(fs.writing.wait, 5)
        queued = asyncio.create_task(
            engine.apply(
                op(
                    EditMode.SUBSTITUTE,
                    sample_file,
                    parameters={"script": "s/Universe/Galaxy/"},
                    create_backup=False,
                )
            )
        )
        await asyncio.sleep(0.05)
        first.cancel()

        with pytest.raises(asyncio.CancelledError):
            await first
        # The write finished before the cancellation released the lock
        assert sample_file.read_text().startswith("Hello Universe")

        fs.delay = 0
        result = await queued

        assert result.success
        assert sample_file.read_text().startswith("Hello Galaxy")
        assert len(engine.locks) == 0

    @pytest.mark.asyncio
    async def test_cancel_during_snapshot_keeps_backup_and_target(self, sample_file):
        fs = SlowWriteFileSystem(EditStage.SNAPSHOT, delay=0.3)
        engine = EditEngine(fs=fs)

        task = asyncio.create_task(
            engine.apply(
                op(EditMode.SUBSTITUTE, sample_file, parameters={"script": "s/World/Universe/"})
            )
        )
        await asyncio.to_thread(fs.writing.wait, 5)
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task

        assert not engine.locks.is_locked(sample_file)
        assert sample_file.read_text() == SAMPLE_CONTENT
        assert sample_file.with_name("test.txt.bak").read_text() == SAMPLE_CONTENT


# ---------------------------------------------------------------------------
# Concurrency
# ---------------------------------------------------------------------------


class TestConcurrency:
    @pytest.mark.asyncio
    async def test_same_file_edits_do_not_lose_updates(self, engine, tmp_path):
        path = tmp_path / "counter.txt"
        path.write_text("start\n")

        operations = [
            op(
                EditMode.LINE_EDIT,
                path,
                parameters={"target": "1", "action": "insert_after", "content": f"line {i}"},
                create_backup=False,
            )
            for i in range(10)
        ]
        results = await engine.apply_many(operations)

        assert all(r.success for r in results)
        lines = path.read_text().splitlines()
        assert len(lines) == 11
        assert sorted(lines[1:]) == sorted(f"line {i}" for i in range(10))

    @pytest.mark.asyncio
    async def test_results_in_input_order(self, engine, tmp_path):
        paths = []
        for name in ("a.txt", "b.txt", "c.txt"):
            path = tmp_path / name
            path.write_text(f"{name}\n")
            paths.append(path)

        results = await engine.apply_many(
            op(EditMode.SUBSTITUTE, p, parameters={"script": "s/txt/md/"}) for p in paths
        )

        assert [r.target for r in results] == paths
        assert [p.read_text() for p in paths] == ["a.md\n", "b.md\n", "c.md\n"]


# ---------------------------------------------------------------------------
# Standalone backup management
# ---------------------------------------------------------------------------


class TestBackupManagement:
    @pytest.mark.asyncio
    async def test_restore_after_edit(self, engine, sample_file):
        result = await engine.apply(
            op(EditMode.SUBSTITUTE, sample_file, parameters={"script": "s/.*/gone/"})
        )

        restored = await engine.restore(result.backup_record.backup_path)

        assert restored.target_path == sample_file
        assert sample_file.read_text() == SAMPLE_CONTENT

    @pytest.mark.asyncio
    async def test_snapshot_uses_configured_strategy(self, sample_file):
        engine = EditEngine(EngineConfig(backup_strategy=BackupStrategy.TIMESTAMPED))

        record = await engine.snapshot(sample_file)

        assert record.strategy == BackupStrategy.TIMESTAMPED
        assert engine.latest_backup(sample_file) == record
