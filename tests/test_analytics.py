"""Tests for llkb.learning.analytics."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from pathlib import Path

from llkb.core.config import LLKBConfig
from llkb.learning.analytics import (
    get_analytics_summary,
    load_or_rebuild_analytics,
    update_analytics,
)
from llkb.store.models import (
    Component,
    ComponentMetrics,
    ComponentSource,
    ComponentsFile,
    Lesson,
    LessonCategory,
    LessonMetrics,
    LessonsFile,
    Scope,
)
from llkb.store.repository import load_analytics, update_components, update_lessons

NOW = datetime(2026, 3, 15, 12, 0, tzinfo=UTC)


def lesson(lesson_id: str, confidence: float, occurrences: int = 3, success_rate: float = 0.9,
           category: LessonCategory = LessonCategory.TIMING) -> Lesson:
    return Lesson(
        id=lesson_id,
        title=f"Lesson {lesson_id}",
        pattern=f"pattern {lesson_id}",
        category=category,
        metrics=LessonMetrics(
            occurrences=occurrences,
            success_rate=success_rate,
            confidence=confidence,
            first_seen=NOW - timedelta(days=5),
        ),
    )


def component(component_id: str, uses: int, age_days: int, archived: bool = False) -> Component:
    return Component(
        id=component_id,
        name=f"helper{component_id}",
        code=f"export function helper{component_id}() {{}}",
        category=LessonCategory.NAVIGATION,
        scope=Scope.APP_SPECIFIC,
        metrics=ComponentMetrics(total_uses=uses),
        source=ComponentSource(journey_id="JRN-1", extracted_at=NOW - timedelta(days=age_days)),
        archived=archived,
    )


def seed(root: Path, lessons: list[Lesson], archived: list[Lesson] | None = None,
         components: list[Component] | None = None) -> None:
    def put_lessons(f: LessonsFile) -> None:
        f.lessons = lessons
        f.archived = archived or []

    def put_components(f: ComponentsFile) -> None:
        f.components = components or []

    update_lessons(root, put_lessons)
    update_components(root, put_components)


class TestUpdateAnalytics:
    """Rebuilding the snapshot."""

    def test_empty_store(self, llkb_root: Path):
        snapshot = update_analytics(llkb_root, now=NOW)
        assert snapshot.overview.total_lessons == 0
        assert snapshot.lesson_stats.avg_confidence == 0.0
        assert snapshot.last_updated == NOW
        assert load_analytics(llkb_root) == snapshot

    def test_overview_counts(self, llkb_root: Path):
        seed(
            llkb_root,
            [lesson("L001", 0.8), lesson("L002", 0.6)],
            archived=[lesson("L003", 0.1)],
            components=[component("COMP001", 5, 2), component("COMP002", 0, 2, archived=True)],
        )
        snapshot = update_analytics(llkb_root, now=NOW)

        overview = snapshot.overview
        assert (overview.total_lessons, overview.active_lessons, overview.archived_lessons) == (
            3,
            2,
            1,
        )
        assert (overview.total_components, overview.active_components) == (2, 1)
        assert overview.archived_components == 1
        assert snapshot.lesson_stats.avg_confidence == 0.7
        assert snapshot.lesson_stats.by_category["timing"] == 2
        assert snapshot.lesson_stats.by_category["auth"] == 0
        assert snapshot.component_stats.total_reuses == 5
        assert snapshot.component_stats.by_scope["app-specific"] == 1

    def test_review_threshold_from_config(self, make_store):
        """A lesson at 0.35 is flagged at threshold 0.4 but not at 0.3."""
        lessons = [lesson("L001", 0.35), lesson("L002", 0.9)]

        default_root = make_store(LLKBConfig(), name="default")
        seed(default_root, lessons)
        snapshot = update_analytics(default_root, now=NOW)
        assert snapshot.needs_review.low_confidence_lessons == ["L001"]

        relaxed = LLKBConfig.model_validate({"analytics": {"reviewThreshold": 0.3}})
        relaxed_root = make_store(relaxed, name="relaxed")
        seed(relaxed_root, lessons)
        snapshot = update_analytics(relaxed_root, now=NOW)
        assert snapshot.needs_review.low_confidence_lessons == []

    def test_low_usage_components_after_grace_period(self, llkb_root: Path):
        seed(
            llkb_root,
            [],
            components=[
                component("COMP001", 0, 45),
                component("COMP002", 0, 5),
                component("COMP003", 9, 45),
            ],
        )
        snapshot = update_analytics(llkb_root, now=NOW)
        assert snapshot.needs_review.low_usage_components == ["COMP001"]

    def test_top_performers(self, llkb_root: Path):
        seed(
            llkb_root,
            [
                lesson("L001", 0.5, occurrences=2, success_rate=1.0),
                lesson("L002", 0.5, occurrences=10, success_rate=0.5),
                lesson("L003", 0.5, occurrences=1, success_rate=0.0),
            ],
            components=[component("COMP001", 0, 1), component("COMP002", 4, 1)],
        )
        top = update_analytics(llkb_root, now=NOW).top_performers

        assert [t.id for t in top.lessons] == ["L002", "L001", "L003"]
        assert top.lessons[0].score == 5.0
        assert [t.id for t in top.components] == ["COMP002"]

    def test_rebuild_is_idempotent(self, llkb_root: Path):
        seed(llkb_root, [lesson("L001", 0.8)])
        first = update_analytics(llkb_root, now=NOW)
        second = update_analytics(llkb_root, now=NOW)
        assert first == second


class TestSelfHealing:
    def test_missing_snapshot_rebuilt(self, llkb_root: Path):
        seed(llkb_root, [lesson("L001", 0.8)])
        (llkb_root / "analytics.json").unlink()

        snapshot = load_or_rebuild_analytics(llkb_root, now=NOW)

        assert snapshot.overview.active_lessons == 1
        assert (llkb_root / "analytics.json").exists()

    def test_corrupt_snapshot_rebuilt(self, llkb_root: Path):
        (llkb_root / "analytics.json").write_text("{broken", encoding="utf-8")
        snapshot = load_or_rebuild_analytics(llkb_root, now=NOW)
        assert snapshot.last_updated == NOW

    def test_summary_mentions_counts(self, llkb_root: Path):
        seed(llkb_root, [lesson("L001", 0.2)])
        update_analytics(llkb_root, now=NOW)

        summary = get_analytics_summary(llkb_root)

        assert "1 active" in summary
        assert "1 low confidence" in summary
