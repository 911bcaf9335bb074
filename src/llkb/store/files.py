"""Crash-safe persistence primitives.

Single-record files (lessons, components, analytics) are only ever replaced
through ``save_atomic``: a sibling temp file is written, fsynced and renamed
over the target, so a crash leaves either the old or the new content.

Read-modify-write cycles hold an exclusive ``fcntl.flock`` on a sibling
``<name>.lock`` file for the whole cycle. Locks are advisory and work across
processes; they are never nested across files.

History partitions are append-only; each append is one ``os.write`` on an
``O_APPEND`` descriptor under ``flock``, so concurrent writers cannot
interleave partial lines.
"""

from __future__ import annotations

import fcntl
import json
import os
import tempfile
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any, TypeVar

from pydantic import BaseModel

from llkb.core.errors import LockContentionError, SchemaInvalidError
from llkb.core.logging import get_logger

_logger = get_logger("store")

T = TypeVar("T")

DEFAULT_LOCK_ATTEMPTS = 10
DEFAULT_LOCK_BASE_DELAY = 0.05
DEFAULT_LOCK_MAX_DELAY = 1.0


def _to_jsonable(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json", by_alias=True)
    return value


def lock_path_for(path: Path) -> Path:
    return path.with_name(path.name + ".lock")


def save_atomic(path: Path, value: Any) -> None:
    """Write ``value`` as JSON to ``path`` atomically.

    Pydantic models are dumped with their camelCase aliases.
    """
    payload = json.dumps(_to_jsonable(value), indent=2, ensure_ascii=False)
    write_text_atomic(path, payload + "\n")


def write_text_atomic(path: Path, payload: str) -> None:
    """Replace ``path`` with ``payload`` via a fsynced sibling temp file.

    Parent directories are created on demand. On any failure the temp file
    is removed, the target keeps its previous content and the error
    propagates.
    """
    path.parent.mkdir(parents=True, exist_ok=True)

    with tempfile.NamedTemporaryFile(
        mode="w",
        dir=path.parent,
        prefix=f".{path.name}.",
        suffix=".tmp",
        delete=False,
        encoding="utf-8",
    ) as f:
        temp_path = Path(f.name)
        try:
            f.write(payload)
            f.flush()
            os.fsync(f.fileno())
        except BaseException:
            f.close()
            temp_path.unlink(missing_ok=True)
            raise

    try:
        os.replace(temp_path, path)
    except BaseException:
        temp_path.unlink(missing_ok=True)
        raise


def load_json(path: Path) -> Any | None:
    """Parse a JSON file, returning None if it does not exist.

    Raises:
        SchemaInvalidError: The file exists but is not valid UTF-8 JSON.
    """
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return None
    except UnicodeDecodeError as exc:
        raise SchemaInvalidError(path, f"not valid UTF-8: {exc}") from exc
    try:
        return json.loads(text)
    except json.JSONDecodeError as exc:
        raise SchemaInvalidError(path, f"malformed JSON: {exc}") from exc


@contextmanager
def file_lock(
    path: Path,
    *,
    max_attempts: int = DEFAULT_LOCK_ATTEMPTS,
    base_delay: float = DEFAULT_LOCK_BASE_DELAY,
    max_delay: float = DEFAULT_LOCK_MAX_DELAY,
) -> Iterator[Path]:
    """Hold an exclusive advisory lock scoped to ``path``.

    Non-blocking attempts are retried with exponential backoff capped at
    ``max_delay``. The lock is released when the block exits, and by the
    kernel if the process dies.

    Raises:
        LockContentionError: All attempts found the lock held.
    """
    lock_file = lock_path_for(path)
    lock_file.parent.mkdir(parents=True, exist_ok=True)
    fd = os.open(str(lock_file), os.O_RDWR | os.O_CREAT, 0o644)
    try:
        delay = base_delay
        for attempt in range(1, max_attempts + 1):
            try:
                fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
                break
            except BlockingIOError:
                if attempt == max_attempts:
                    _logger.warning(
                        "lock_contention",
                        path=str(path),
                        attempts=attempt,
                    )
                    raise LockContentionError(path, attempt) from None
                time.sleep(delay)
                delay = min(delay * 2, max_delay)
        try:
            yield path
        finally:
            fcntl.flock(fd, fcntl.LOCK_UN)
    finally:
        os.close(fd)


def update_with_lock(
    path: Path,
    mutator: Callable[[T], T],
    default: Callable[[], T] | None = None,
    *,
    load: Callable[[Any], T] | None = None,
    max_attempts: int = DEFAULT_LOCK_ATTEMPTS,
) -> T:
    """Read, mutate and atomically rewrite ``path`` under its lock.

    Args:
        path: File to update.
        mutator: Receives the current value and returns the value to save.
            It may mutate in place and return the same object.
        default: Factory for the value when the file does not exist. Without
            one, a missing file is passed to the mutator as None.
        load: Optional converter applied to the raw parsed JSON (e.g. a
            pydantic ``model_validate``).
        max_attempts: Lock retry budget.

    Returns:
        The value that was saved.
    """
    with file_lock(path, max_attempts=max_attempts):
        raw = load_json(path)
        if raw is None:
            current = default() if default is not None else None
        else:
            current = load(raw) if load is not None else raw
        updated = mutator(current)  # type: ignore[arg-type]
        save_atomic(path, updated)
        return updated


def append_line(path: Path, line: str) -> None:
    """Append one complete line to ``path``, creating it if needed.

    The line is written with a single ``os.write`` on an ``O_APPEND``
    descriptor while holding ``flock`` on that descriptor.
    """
    if "\n" in line:
        raise ValueError("history lines must not contain newlines")
    data = (line + "\n").encode("utf-8")
    path.parent.mkdir(parents=True, exist_ok=True)
    fd = os.open(str(path), os.O_WRONLY | os.O_APPEND | os.O_CREAT, 0o644)
    try:
        fcntl.flock(fd, fcntl.LOCK_EX)
        try:
            written = os.write(fd, data)
            if written != len(data):
                raise OSError(f"short write to {path}: {written}/{len(data)} bytes")
        finally:
            fcntl.flock(fd, fcntl.LOCK_UN)
    finally:
        os.close(fd)
