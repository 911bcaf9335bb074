"""Typed access to the lesson, component and analytics files.

Reads validate through the pydantic models after migrating older documents
in memory. Writes to lessons and components always go through
``update_with_lock`` so the whole read-modify-write cycle holds the lock.
A missing lessons or components file means the store was never initialized
and is reported, never recreated silently.
"""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path
from typing import Any, TypeVar

from pydantic import BaseModel, ValidationError

from llkb.core.errors import SchemaInvalidError, StoreNotFoundError
from llkb.store.files import load_json, save_atomic, update_with_lock
from llkb.store.migration import migrate_document
from llkb.store.models import AnalyticsSnapshot, ComponentsFile, LessonsFile
from llkb.store.paths import StorePaths
from llkb.utils.time import utc_now

M = TypeVar("M", bound=BaseModel)


def parse_document(model: type[M], raw: Any, path: Path) -> M:
    """Migrate a parsed JSON document and validate it as ``model``."""
    data, _ = migrate_document(raw, path)
    try:
        return model.model_validate(data)
    except ValidationError as exc:
        raise SchemaInvalidError(path, str(exc)) from exc


def _load_required(model: type[M], path: Path, what: str) -> M:
    raw = load_json(path)
    if raw is None:
        raise StoreNotFoundError(path, what=what)
    return parse_document(model, raw, path)


def load_lessons(root: Path | str) -> LessonsFile:
    """Load ``lessons.json``.

    Raises:
        StoreNotFoundError: The file does not exist.
        SchemaInvalidError: The file is malformed or fails validation.
    """
    return _load_required(LessonsFile, StorePaths.of(root).lessons, "Lessons file")


def load_components(root: Path | str) -> ComponentsFile:
    """Load ``components.json`` (same errors as ``load_lessons``)."""
    return _load_required(ComponentsFile, StorePaths.of(root).components, "Components file")


def load_analytics(root: Path | str) -> AnalyticsSnapshot | None:
    """Load ``analytics.json``, or None if it has not been built yet."""
    path = StorePaths.of(root).analytics
    raw = load_json(path)
    if raw is None:
        return None
    return parse_document(AnalyticsSnapshot, raw, path)


def _locked_update(
    model: type[M],
    path: Path,
    what: str,
    mutator: Callable[[M], None],
) -> M:
    def apply(current: M | None) -> M:
        if current is None:
            raise StoreNotFoundError(path, what=what)
        mutator(current)
        current.last_updated = utc_now()  # type: ignore[attr-defined]
        return current

    return update_with_lock(
        path,
        apply,
        load=lambda raw: parse_document(model, raw, path),
    )


def update_lessons(root: Path | str, mutator: Callable[[LessonsFile], None]) -> LessonsFile:
    """Apply ``mutator`` to the lessons file under its lock and save it."""
    return _locked_update(LessonsFile, StorePaths.of(root).lessons, "Lessons file", mutator)


def update_components(
    root: Path | str, mutator: Callable[[ComponentsFile], None]
) -> ComponentsFile:
    """Apply ``mutator`` to the components file under its lock and save it."""
    return _locked_update(
        ComponentsFile, StorePaths.of(root).components, "Components file", mutator
    )


def save_analytics(root: Path | str, snapshot: AnalyticsSnapshot) -> None:
    save_atomic(StorePaths.of(root).analytics, snapshot)
