"""Version-keyed schema migrations for store files.

Every structured file carries a ``version``. Migrations are registered by
the source major version and applied in sequence until the document reaches
``CURRENT_VERSION``. Documents newer than this library are rejected rather
than guessed at.

Migration is non-destructive for data: legacy fields are folded into the
current shape, never dropped without being carried over.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from llkb.core.errors import LLKBError, SchemaInvalidError
from llkb.core.logging import get_logger
from llkb.store.files import file_lock, load_json, save_atomic
from llkb.store.models import SCHEMA_VERSION
from llkb.store.paths import StorePaths
from llkb.utils.time import utc_now

_logger = get_logger("store.migration")

CURRENT_VERSION = SCHEMA_VERSION
LEGACY_VERSION = "0.0.0"

MigrationFn = Callable[[dict[str, Any]], list[str]]


@dataclass
class MigrationResult:
    """Result of migrating a store root.

    Attributes:
        from_version: Oldest version found among the migrated files.
        to_version: Version the files were brought to.
        migrated_files: Files rewritten by the migration.
        warnings: Non-fatal notes (e.g. defaults filled in).
        errors: Per-file failures.
    """

    from_version: str = CURRENT_VERSION
    to_version: str = CURRENT_VERSION
    migrated_files: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.errors

    def __repr__(self) -> str:
        return (
            f"MigrationResult({self.from_version} -> {self.to_version}, "
            f"files={len(self.migrated_files)}, errors={len(self.errors)})"
        )


def parse_version(version: str) -> tuple[int, int, int]:
    """Parse ``MAJOR.MINOR.PATCH`` (missing parts count as 0)."""
    parts = str(version).strip().lstrip("v").split(".")
    try:
        numbers = [int(p) for p in parts[:3]]
    except ValueError as exc:
        raise ValueError(f"unparseable version {version!r}") from exc
    while len(numbers) < 3:
        numbers.append(0)
    return numbers[0], numbers[1], numbers[2]


def needs_migration(version: str) -> bool:
    return parse_version(version) < parse_version(CURRENT_VERSION)


# ─── Migrations ───────────────────────────────────────────────────────


def _migrate_0_to_1(data: dict[str, Any]) -> list[str]:
    """Fold pre-1.0 flat lesson/component fields into nested metrics/source."""
    warnings: list[str] = []
    now = utc_now().isoformat()

    lessons = data.get("lessons")
    if isinstance(lessons, list):
        active: list[dict[str, Any]] = []
        archived: list[dict[str, Any]] = list(data.get("archived") or [])
        for lesson in lessons:
            if not isinstance(lesson, dict):
                raise ValueError(f"lesson entry is not an object: {lesson!r}")
            if "metrics" not in lesson:
                lesson["metrics"] = {
                    "occurrences": max(1, int(lesson.pop("occurrences", 1) or 1)),
                    "successRate": lesson.pop("successRate", 0.5),
                    "confidence": lesson.pop("confidence", 0.5),
                    "firstSeen": lesson.pop("created", None)
                    or lesson.pop("createdAt", None)
                    or now,
                }
                warnings.append(f"Added missing metrics to lesson {lesson.get('id')}")
            lesson.setdefault("validation", {"humanReviewed": False})
            if lesson.pop("archived", False):
                lesson.setdefault("archivedAt", now)
                archived.append(lesson)
            else:
                active.append(lesson)
        data["lessons"] = active
        data["archived"] = archived

    components = data.get("components")
    if isinstance(components, list):
        for component in components:
            if not isinstance(component, dict):
                raise ValueError(f"component entry is not an object: {component!r}")
            if "metrics" not in component:
                component["metrics"] = {"totalUses": int(component.pop("uses", 0) or 0)}
                warnings.append(f"Added missing metrics to component {component.get('id')}")
            if "source" not in component:
                component["source"] = {
                    "journeyId": component.pop("journeyId", None) or "unknown",
                    "extractedAt": component.pop("createdAt", None) or now,
                }
                warnings.append(f"Added missing source info to component {component.get('id')}")

    data["version"] = "1.0.0"
    data["lastUpdated"] = now
    return warnings


# Keyed by source major version; each step yields the next major's first release.
MIGRATIONS: dict[int, MigrationFn] = {
    0: _migrate_0_to_1,
}


def migrate_document(data: dict[str, Any], path: Path) -> tuple[dict[str, Any], list[str]]:
    """Bring one parsed document up to ``CURRENT_VERSION``.

    Returns the (mutated) document and the migration warnings.

    Raises:
        SchemaInvalidError: Unparseable or unsupported (newer) version, or
            no registered migration for a step.
    """
    if not isinstance(data, dict):
        raise SchemaInvalidError(path, "expected a JSON object at top level")

    version = str(data.get("version") or LEGACY_VERSION)
    try:
        current = parse_version(version)
    except ValueError as exc:
        raise SchemaInvalidError(path, str(exc)) from exc

    target = parse_version(CURRENT_VERSION)
    if current[0] > target[0]:
        raise SchemaInvalidError(
            path, f"version {version} is newer than supported {CURRENT_VERSION}"
        )

    warnings: list[str] = []
    while current[0] < target[0]:
        step = MIGRATIONS.get(current[0])
        if step is None:
            raise SchemaInvalidError(path, f"no migration from version {version}")
        try:
            warnings.extend(step(data))
        except (ValueError, TypeError) as exc:
            raise SchemaInvalidError(path, f"cannot migrate from {version}: {exc}") from exc
        current = parse_version(data["version"])
    return data, warnings


def check_migration_needed(root: Path | str) -> dict[str, str]:
    """Map of file name to on-disk version for files that need migration."""
    paths = StorePaths.of(root)
    outdated: dict[str, str] = {}
    for path in (paths.lessons, paths.components):
        data = load_json(path)
        if isinstance(data, dict):
            version = str(data.get("version") or LEGACY_VERSION)
            if needs_migration(version):
                outdated[path.name] = version
    return outdated


def migrate_store(root: Path | str) -> MigrationResult:
    """Migrate lessons and components in place, each under its own lock.

    An outdated ``analytics.json`` is removed; it is a cache and is rebuilt
    by the next health or stats query.
    """
    paths = StorePaths.of(root)
    result = MigrationResult()
    oldest = parse_version(CURRENT_VERSION)

    for path in (paths.lessons, paths.components):
        try:
            with file_lock(path):
                data = load_json(path)
                if data is None:
                    continue
                version = str(data.get("version") or LEGACY_VERSION) if isinstance(data, dict) else ""
                migrated, warnings = migrate_document(data, path)
                if version != migrated.get("version"):
                    oldest = min(oldest, parse_version(version))
                    save_atomic(path, migrated)
                    result.migrated_files.append(path.name)
                result.warnings.extend(f"{path.name}: {w}" for w in warnings)
        except (OSError, LLKBError) as exc:
            result.errors.append(f"{path.name}: {exc}")

    try:
        analytics = load_json(paths.analytics)
    except SchemaInvalidError:
        analytics = {}
    if isinstance(analytics, dict) and needs_migration(str(analytics.get("version") or LEGACY_VERSION)):
        paths.analytics.unlink(missing_ok=True)

    result.from_version = ".".join(str(n) for n in oldest)
    _logger.info(
        "store_migrated",
        root=str(paths.root),
        files=result.migrated_files,
        warnings=len(result.warnings),
        errors=len(result.errors),
    )
    return result
