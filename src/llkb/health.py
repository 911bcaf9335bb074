"""Store health checks and statistics.

``run_health_check`` inspects every part of a store root and reports a
status instead of raising, so hosts can call it on a store in any state.
Both queries rebuild a missing or unreadable ``analytics.json``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Literal

from llkb.core.config import LLKBConfig, load_config
from llkb.core.errors import LLKBError
from llkb.core.logging import get_logger
from llkb.learning.analytics import load_or_rebuild_analytics
from llkb.learning.history import list_history_files, read_today_history
from llkb.store.paths import StorePaths
from llkb.store.repository import load_components, load_lessons
from llkb.utils.time import utc_now

_logger = get_logger("health")

HealthStatus = Literal["healthy", "warning", "error"]

_SEVERITY: dict[str, int] = {"pass": 0, "warn": 1, "fail": 2}


@dataclass(frozen=True)
class HealthCheck:
    name: str
    status: Literal["pass", "warn", "fail"]
    message: str


@dataclass
class HealthReport:
    """Outcome of ``run_health_check``.

    ``status`` is ``error`` when any check failed, ``warning`` when any
    check warned, otherwise ``healthy``.
    """

    status: HealthStatus
    checks: list[HealthCheck] = field(default_factory=list)
    summary: str = ""

    def __repr__(self) -> str:
        return f"HealthReport(status={self.status!r}, checks={len(self.checks)})"


@dataclass
class StoreStats:
    lessons: dict[str, Any]
    components: dict[str, Any]
    history: dict[str, Any]


def _overall(checks: list[HealthCheck]) -> HealthStatus:
    worst = max((_SEVERITY[c.status] for c in checks), default=0)
    if worst == 2:
        return "error"
    if worst == 1:
        return "warning"
    return "healthy"


def run_health_check(root: Path | str) -> HealthReport:
    """Check the root, config, record files, analytics and history.

    Never raises: every problem becomes a failed or warning check.
    """
    paths = StorePaths.of(root)
    checks: list[HealthCheck] = []

    if not paths.root.is_dir():
        checks.append(HealthCheck("directory", "fail", f"Store root not found: {paths.root}"))
        return HealthReport(
            status="error",
            checks=checks,
            summary="LLKB not initialized. Run llkb.init_store(root).",
        )
    checks.append(HealthCheck("directory", "pass", "Store root exists"))

    config: LLKBConfig | None = None
    try:
        config = load_config(root)
        checks.append(HealthCheck("config", "pass", f"config.yml valid (version {config.version})"))
    except LLKBError as exc:
        checks.append(HealthCheck("config", "fail", str(exc)))

    try:
        lessons_file = load_lessons(root)
        checks.append(
            HealthCheck(
                "lessons",
                "pass",
                f"{len(lessons_file.lessons)} active, {len(lessons_file.archived)} archived",
            )
        )
    except LLKBError as exc:
        lessons_file = None
        checks.append(HealthCheck("lessons", "fail", str(exc)))

    try:
        components_file = load_components(root)
        checks.append(
            HealthCheck("components", "pass", f"{len(components_file.active())} active")
        )
    except LLKBError as exc:
        components_file = None
        checks.append(HealthCheck("components", "fail", str(exc)))

    if lessons_file is not None and components_file is not None:
        analytics_existed = paths.analytics.exists()
        try:
            load_or_rebuild_analytics(root, config=config)
            if analytics_existed:
                checks.append(HealthCheck("analytics", "pass", "analytics.json readable"))
            else:
                checks.append(HealthCheck("analytics", "warn", "analytics.json rebuilt"))
        except (LLKBError, OSError) as exc:
            checks.append(HealthCheck("analytics", "fail", f"Rebuild failed: {exc}"))

    if paths.history_dir.is_dir():
        count = len(list_history_files(root))
        checks.append(HealthCheck("history", "pass", f"{count} history file(s)"))
    else:
        checks.append(HealthCheck("history", "warn", "history directory missing"))

    if lessons_file is not None and config is not None:
        threshold = config.analytics.review_threshold
        weak = [
            lesson.id
            for lesson in lessons_file.lessons
            if lesson.metrics.confidence < threshold
        ]
        if weak:
            checks.append(
                HealthCheck(
                    "lesson_health",
                    "warn",
                    f"{len(weak)} lesson(s) below confidence {threshold:.2f}",
                )
            )
        else:
            checks.append(HealthCheck("lesson_health", "pass", "All lessons above threshold"))

    status = _overall(checks)
    failed = sum(1 for c in checks if c.status == "fail")
    warned = sum(1 for c in checks if c.status == "warn")
    summary = f"{len(checks)} checks: {failed} failed, {warned} warnings"
    _logger.info("health_checked", status=status, failed=failed, warnings=warned)
    return HealthReport(status=status, checks=checks, summary=summary)


def get_stats(root: Path | str, now: datetime | None = None) -> StoreStats:
    """Counts for lessons, components and history.

    Raises:
        StoreNotFoundError: The store, its config or a record file is missing.
        SchemaInvalidError: A record file is unreadable.
    """
    now = now or utc_now()
    config = load_config(root)
    # the snapshot is only a cache; the record files must exist
    load_lessons(root)
    load_components(root)
    snapshot = load_or_rebuild_analytics(root, config=config, now=now)
    overview = snapshot.overview
    history_files = list_history_files(root)

    return StoreStats(
        lessons={
            "total": overview.total_lessons,
            "active": overview.active_lessons,
            "archived": overview.archived_lessons,
            "avg_confidence": snapshot.lesson_stats.avg_confidence,
            "avg_success_rate": snapshot.lesson_stats.avg_success_rate,
            "needs_review": len(snapshot.needs_review.low_confidence_lessons),
        },
        components={
            "total": overview.total_components,
            "active": overview.active_components,
            "archived": overview.archived_components,
            "total_reuses": snapshot.component_stats.total_reuses,
        },
        history={
            "today_events": len(read_today_history(root, config=config, now=now)),
            "history_files": len(history_files),
            "oldest_file": history_files[0].name if history_files else None,
            "newest_file": history_files[-1].name if history_files else None,
        },
    )
