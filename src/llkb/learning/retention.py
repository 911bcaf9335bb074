"""Retention: expired history partitions and stale lessons.

A lesson is archived when it is weak (confidence below ``minConfidence`` or
fewer than ``minOccurrences`` occurrences) and has been idle for longer than
``archiveAfterDays``. Idle time counts from the most recent of
``lastApplied``, ``lastSuccess`` and ``firstSeen``. Archived lessons move to
the ``archived`` list; lesson data is never deleted.

Each deletion and archival is attempted independently, failures are
collected, and analytics are rebuilt afterwards.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path

from llkb.core.config import RetentionConfig, load_config
from llkb.core.errors import LLKBError
from llkb.core.logging import get_logger
from llkb.learning.analytics import update_analytics
from llkb.learning.history import append_to_history, cleanup_old_history_files
from llkb.store.models import EventType, HistoryEvent, Lesson, LessonsFile
from llkb.store.repository import update_lessons
from llkb.utils.time import days_between, utc_now

_logger = get_logger("retention")


@dataclass
class PruneOptions:
    """Options for a prune run.

    Attributes:
        llkb_root: Store root.
        history_retention_days: Overrides ``history.retentionDays`` when set.
        archive_lessons: Whether to apply the lesson archival rule.
        now: Reference time (defaults to now).
    """

    llkb_root: Path | str
    history_retention_days: int | None = None
    archive_lessons: bool = True
    now: datetime | None = None

    def __post_init__(self) -> None:
        if self.history_retention_days is not None and self.history_retention_days < 1:
            raise ValueError(
                f"history_retention_days must be at least 1, got {self.history_retention_days}"
            )


@dataclass
class PruneResult:
    """What a prune run changed, plus per-item failures."""

    deleted_files: list[str] = field(default_factory=list)
    archived_lesson_ids: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    @property
    def history_files_deleted(self) -> int:
        return len(self.deleted_files)

    @property
    def archived_lessons(self) -> int:
        return len(self.archived_lesson_ids)

    def __repr__(self) -> str:
        return (
            f"PruneResult(history_deleted={self.history_files_deleted}, "
            f"archived={self.archived_lessons}, errors={len(self.errors)})"
        )


def idle_since(lesson: Lesson) -> datetime:
    metrics = lesson.metrics
    candidates = [metrics.first_seen, metrics.last_success, metrics.last_applied]
    return max(moment for moment in candidates if moment is not None)


def archive_reason(lesson: Lesson, retention: RetentionConfig, now: datetime) -> str | None:
    """Why ``lesson`` should be archived, or None if it should stay active."""
    idle_days = days_between(idle_since(lesson), now)
    if idle_days <= retention.archive_after_days:
        return None
    if lesson.metrics.confidence < retention.min_confidence:
        return (
            f"confidence {lesson.metrics.confidence:.2f} below "
            f"{retention.min_confidence:.2f}, idle {int(idle_days)} days"
        )
    if lesson.metrics.occurrences < retention.min_occurrences:
        return (
            f"{lesson.metrics.occurrences} occurrences below "
            f"{retention.min_occurrences}, idle {int(idle_days)} days"
        )
    return None


def should_archive(lesson: Lesson, retention: RetentionConfig, now: datetime) -> bool:
    return archive_reason(lesson, retention, now) is not None


def _archive_lessons(
    root: Path | str,
    retention: RetentionConfig,
    now: datetime,
    result: PruneResult,
) -> None:
    archived: list[str] = []
    failures: list[str] = []

    def apply(lessons_file: LessonsFile) -> None:
        archived.clear()
        failures.clear()
        keep: list[Lesson] = []
        for lesson in lessons_file.lessons:
            try:
                reason = archive_reason(lesson, retention, now)
            except (TypeError, ValueError) as exc:
                failures.append(f"Failed to evaluate lesson {lesson.id}: {exc}")
                keep.append(lesson)
                continue
            if reason is None:
                keep.append(lesson)
                continue
            lesson.archived_at = now
            lesson.archive_reason = reason
            lessons_file.archived.append(lesson)
            archived.append(lesson.id)
        lessons_file.lessons = keep

    update_lessons(root, apply)
    result.archived_lesson_ids.extend(archived)
    result.errors.extend(failures)

    # History is appended after the lessons lock is released.
    for lesson_id in archived:
        append_to_history(
            HistoryEvent(event=EventType.LESSON_ARCHIVED, timestamp=now, lesson_id=lesson_id),
            root,
        )


def prune(options: PruneOptions) -> PruneResult:
    """Delete expired history partitions and archive stale lessons.

    Partial failures never abort the run; they are reported in
    ``PruneResult.errors``.
    """
    root = options.llkb_root
    now = options.now or utc_now()
    config = load_config(root, required=False)
    retention_days = (
        options.history_retention_days
        if options.history_retention_days is not None
        else config.history.retention_days
    )
    result = PruneResult()

    cleanup = cleanup_old_history_files(retention_days, root, now, config=config)
    result.deleted_files.extend(cleanup.deleted)
    result.errors.extend(cleanup.errors)

    if options.archive_lessons:
        try:
            _archive_lessons(root, config.retention, now, result)
        except (LLKBError, OSError) as exc:
            result.errors.append(f"Failed to archive lessons: {exc}")

    try:
        update_analytics(root, config=config, now=now)
    except (LLKBError, OSError) as exc:
        result.errors.append(f"Failed to update analytics: {exc}")

    _logger.info(
        "prune_completed",
        history_deleted=result.history_files_deleted,
        archived=result.archived_lessons,
        errors=len(result.errors),
    )
    return result
