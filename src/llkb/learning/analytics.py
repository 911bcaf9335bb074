"""Analytics snapshot rebuilt from the lesson and component stores.

``analytics.json`` is a cache. Every rebuild recomputes it from scratch
and overwrites it atomically, so calling ``update_analytics`` redundantly
is always safe. The snapshot depends only on the current lessons,
components and the timestamp passed in.
"""

from __future__ import annotations

from datetime import datetime
from pathlib import Path

from llkb.core.config import LLKBConfig, load_config
from llkb.core.errors import SchemaInvalidError
from llkb.core.logging import get_logger
from llkb.learning.confidence import detect_declining_confidence
from llkb.store.models import (
    AnalyticsOverview,
    AnalyticsSnapshot,
    Component,
    ComponentStats,
    Lesson,
    LessonCategory,
    LessonStats,
    NeedsReview,
    Scope,
    TopComponent,
    TopLesson,
    TopPerformers,
)
from llkb.store.repository import (
    load_analytics,
    load_components,
    load_lessons,
    save_analytics,
)
from llkb.utils.time import days_between, utc_now

_logger = get_logger("analytics")

TOP_PERFORMERS = 5


def _average(values: list[float]) -> float:
    if not values:
        return 0.0
    return round(sum(values) / len(values), 2)


def build_lesson_stats(lessons: list[Lesson]) -> LessonStats:
    by_category = {category.value: 0 for category in LessonCategory}
    for lesson in lessons:
        by_category[lesson.category.value] += 1
    return LessonStats(
        by_category=by_category,
        avg_confidence=_average([lesson.metrics.confidence for lesson in lessons]),
        avg_success_rate=_average([lesson.metrics.success_rate for lesson in lessons]),
    )


def build_component_stats(components: list[Component]) -> ComponentStats:
    by_category = {category.value: 0 for category in LessonCategory}
    by_scope = {scope.value: 0 for scope in Scope}
    total_reuses = 0
    for component in components:
        by_category[component.category.value] += 1
        by_scope[component.scope.value] += 1
        total_reuses += component.metrics.total_uses
    avg = round(total_reuses / len(components), 2) if components else 0.0
    return ComponentStats(
        by_category=by_category,
        by_scope=by_scope,
        total_reuses=total_reuses,
        avg_reuses_per_component=avg,
    )


def build_needs_review(
    lessons: list[Lesson],
    components: list[Component],
    config: LLKBConfig,
    now: datetime,
) -> NeedsReview:
    """Lessons and components that a human should look at.

    - low confidence: confidence below the review threshold
    - low usage: fewer uses than the threshold after the grace period
    - declining: confidence fell below 80% of its recent average
    """
    policy = config.analytics
    low_usage = [
        c.id
        for c in components
        if c.metrics.total_uses < policy.low_usage_uses
        and days_between(c.source.extracted_at, now) > policy.low_usage_age_days
    ]
    return NeedsReview(
        low_confidence_lessons=[
            lesson.id
            for lesson in lessons
            if lesson.metrics.confidence < policy.review_threshold
        ],
        low_usage_components=low_usage,
        declining_success_rate=[
            lesson.id for lesson in lessons if detect_declining_confidence(lesson)
        ],
    )


def build_top_performers(lessons: list[Lesson], components: list[Component]) -> TopPerformers:
    ranked_lessons = sorted(
        lessons,
        key=lambda lesson: lesson.metrics.success_rate * lesson.metrics.occurrences,
        reverse=True,
    )
    ranked_components = sorted(
        (c for c in components if c.metrics.total_uses > 0),
        key=lambda c: c.metrics.total_uses,
        reverse=True,
    )
    return TopPerformers(
        lessons=[
            TopLesson(
                id=lesson.id,
                title=lesson.title,
                score=round(lesson.metrics.success_rate * lesson.metrics.occurrences, 2),
            )
            for lesson in ranked_lessons[:TOP_PERFORMERS]
        ],
        components=[
            TopComponent(id=c.id, name=c.name, uses=c.metrics.total_uses)
            for c in ranked_components[:TOP_PERFORMERS]
        ],
    )


def update_analytics(
    root: Path | str,
    *,
    config: LLKBConfig | None = None,
    now: datetime | None = None,
) -> AnalyticsSnapshot:
    """Rebuild ``analytics.json`` from the current lessons and components.

    Raises:
        StoreNotFoundError: lessons.json or components.json is missing.
        SchemaInvalidError: One of them cannot be parsed.
    """
    now = now or utc_now()
    if config is None:
        config = load_config(root, required=False)

    lessons_file = load_lessons(root)
    components_file = load_components(root)
    active_lessons = lessons_file.lessons
    active_components = components_file.active()

    snapshot = AnalyticsSnapshot(
        last_updated=now,
        overview=AnalyticsOverview(
            total_lessons=len(active_lessons) + len(lessons_file.archived),
            active_lessons=len(active_lessons),
            archived_lessons=len(lessons_file.archived),
            total_components=len(components_file.components),
            active_components=len(active_components),
            archived_components=len(components_file.components) - len(active_components),
        ),
        lesson_stats=build_lesson_stats(active_lessons),
        component_stats=build_component_stats(active_components),
        needs_review=build_needs_review(active_lessons, active_components, config, now),
        top_performers=build_top_performers(active_lessons, active_components),
    )
    save_analytics(root, snapshot)
    _logger.debug(
        "analytics_rebuilt",
        lessons=snapshot.overview.active_lessons,
        components=snapshot.overview.active_components,
    )
    return snapshot


def load_or_rebuild_analytics(
    root: Path | str,
    *,
    config: LLKBConfig | None = None,
    now: datetime | None = None,
) -> AnalyticsSnapshot:
    """Return the cached snapshot, rebuilding it when missing or unreadable."""
    try:
        snapshot = load_analytics(root)
    except SchemaInvalidError as exc:
        _logger.warning("analytics_unreadable", error=str(exc))
        snapshot = None
    if snapshot is None:
        _logger.info("analytics_rebuild_triggered", root=str(root))
        snapshot = update_analytics(root, config=config, now=now)
    return snapshot


def get_analytics_summary(root: Path | str) -> str:
    """Human-readable multi-line summary of the analytics snapshot."""
    snapshot = load_or_rebuild_analytics(root)
    overview = snapshot.overview
    stats = snapshot.lesson_stats
    review = snapshot.needs_review
    lines = [
        f"LLKB analytics (updated {snapshot.last_updated.isoformat()})",
        f"  Lessons:    {overview.active_lessons} active, {overview.archived_lessons} archived",
        f"  Components: {overview.active_components} active, "
        f"{overview.archived_components} archived",
        f"  Avg confidence: {stats.avg_confidence:.2f}  "
        f"Avg success rate: {stats.avg_success_rate:.2f}",
        f"  Component reuses: {snapshot.component_stats.total_reuses}",
    ]
    flagged = (
        len(review.low_confidence_lessons)
        + len(review.low_usage_components)
        + len(review.declining_success_rate)
    )
    if flagged:
        lines.append(
            f"  Needs review: {len(review.low_confidence_lessons)} low confidence, "
            f"{len(review.low_usage_components)} low usage, "
            f"{len(review.declining_success_rate)} declining"
        )
    return "\n".join(lines)
