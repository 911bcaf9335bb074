"""Tests for llkb.store.files persistence primitives."""

from __future__ import annotations

import fcntl
import json
import multiprocessing
import os
from pathlib import Path

import pytest

from llkb.core.errors import LockContentionError, SchemaInvalidError
from llkb.store.files import (
    append_line,
    file_lock,
    load_json,
    lock_path_for,
    save_atomic,
    update_with_lock,
)
from llkb.store.models import LessonsFile


# Worker functions must be top-level for multiprocessing spawn compatibility


def _worker_increment(path: str, count: int) -> None:
    from llkb.store.files import update_with_lock

    def bump(value: dict) -> dict:
        value["n"] += 1
        return value

    for _ in range(count):
        update_with_lock(Path(path), bump, default=lambda: {"n": 0})


class TestSaveAtomic:
    """Atomic replacement of single-record files."""

    def test_writes_json(self, tmp_path: Path):
        path = tmp_path / "nested" / "data.json"
        save_atomic(path, {"a": 1})
        assert json.loads(path.read_text(encoding="utf-8")) == {"a": 1}

    def test_models_use_camel_case(self, tmp_path: Path):
        path = tmp_path / "lessons.json"
        save_atomic(path, LessonsFile())
        data = json.loads(path.read_text(encoding="utf-8"))
        assert "lastUpdated" in data
        assert data["lessons"] == []

    def test_failed_rename_keeps_old_content(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
        """A crash between write and rename leaves the previous file intact."""
        path = tmp_path / "data.json"
        save_atomic(path, {"version": "old"})

        def crash(src, dst):
            raise OSError("simulated crash")

        monkeypatch.setattr(os, "replace", crash)
        with pytest.raises(OSError, match="simulated crash"):
            save_atomic(path, {"version": "new"})
        monkeypatch.undo()

        assert json.loads(path.read_text(encoding="utf-8")) == {"version": "old"}
        assert [p.name for p in tmp_path.iterdir()] == ["data.json"]

    def test_unserializable_value_leaves_no_file(self, tmp_path: Path):
        path = tmp_path / "data.json"
        with pytest.raises(TypeError):
            save_atomic(path, {"bad": object()})
        assert not path.exists()


class TestLoadJson:
    def test_missing_returns_none(self, tmp_path: Path):
        assert load_json(tmp_path / "absent.json") is None

    def test_malformed_raises(self, tmp_path: Path):
        path = tmp_path / "broken.json"
        path.write_text("{not json", encoding="utf-8")
        with pytest.raises(SchemaInvalidError):
            load_json(path)

    def test_invalid_utf8_raises_schema_error(self, tmp_path: Path):
        path = tmp_path / "lessons.json"
        path.write_bytes(b'{"version": "1.0.0", \xff}')
        with pytest.raises(SchemaInvalidError, match="UTF-8") as exc_info:
            load_json(path)
        assert exc_info.value.path == path


class TestFileLock:
    """Advisory locking and the retry budget."""

    def test_lock_file_is_sibling(self, tmp_path: Path):
        assert lock_path_for(tmp_path / "lessons.json") == tmp_path / "lessons.json.lock"

    def test_contention_raises_after_budget(self, tmp_path: Path):
        path = tmp_path / "lessons.json"
        lock_file = lock_path_for(path)
        lock_file.touch()
        fd = os.open(str(lock_file), os.O_RDWR)
        try:
            fcntl.flock(fd, fcntl.LOCK_EX)
            with pytest.raises(LockContentionError) as exc_info:
                with file_lock(path, max_attempts=3, base_delay=0.01):
                    pass
            assert exc_info.value.attempts == 3
        finally:
            fcntl.flock(fd, fcntl.LOCK_UN)
            os.close(fd)

    def test_lock_released_after_block(self, tmp_path: Path):
        path = tmp_path / "lessons.json"
        with file_lock(path):
            pass
        with file_lock(path, max_attempts=1):
            pass

    def test_lock_released_on_error(self, tmp_path: Path):
        path = tmp_path / "lessons.json"
        with pytest.raises(ValueError):
            with file_lock(path):
                raise ValueError("inside")
        with file_lock(path, max_attempts=1):
            pass


class TestUpdateWithLock:
    def test_uses_default_when_missing(self, tmp_path: Path):
        path = tmp_path / "counter.json"

        def bump(value: dict) -> dict:
            value["n"] += 1
            return value

        update_with_lock(path, bump, default=lambda: {"n": 0})
        saved = update_with_lock(path, bump, default=lambda: {"n": 0})

        assert saved == {"n": 2}
        assert json.loads(path.read_text(encoding="utf-8")) == {"n": 2}

    def test_mutator_error_leaves_file_unchanged(self, tmp_path: Path):
        path = tmp_path / "counter.json"
        save_atomic(path, {"n": 5})

        def fail(value: dict) -> dict:
            value["n"] = 99
            raise RuntimeError("mutator failed")

        with pytest.raises(RuntimeError):
            update_with_lock(path, fail)
        assert json.loads(path.read_text(encoding="utf-8")) == {"n": 5}

    def test_load_converter(self, tmp_path: Path):
        path = tmp_path / "lessons.json"
        save_atomic(path, LessonsFile())
        seen: list[type] = []

        def record_type(value: LessonsFile) -> LessonsFile:
            seen.append(type(value))
            return value

        update_with_lock(path, record_type, load=LessonsFile.model_validate)
        assert seen == [LessonsFile]

    def test_concurrent_processes_lose_no_updates(self, tmp_path: Path):
        """Every read-modify-write from every process lands."""
        path = tmp_path / "counter.json"
        num_workers = 8
        per_worker = 5

        ctx = multiprocessing.get_context("spawn")
        processes = [
            ctx.Process(target=_worker_increment, args=(str(path), per_worker))
            for _ in range(num_workers)
        ]
        for p in processes:
            p.start()
        for p in processes:
            p.join(timeout=60)
            assert p.exitcode == 0

        assert json.loads(path.read_text(encoding="utf-8")) == {"n": num_workers * per_worker}


class TestAppendLine:
    def test_appends_complete_lines(self, tmp_path: Path):
        path = tmp_path / "history" / "2026-01-01.jsonl"
        append_line(path, '{"a": 1}')
        append_line(path, '{"a": 2}')
        assert path.read_text(encoding="utf-8") == '{"a": 1}\n{"a": 2}\n'

    def test_rejects_embedded_newline(self, tmp_path: Path):
        with pytest.raises(ValueError):
            append_line(tmp_path / "h.jsonl", "one\ntwo")
