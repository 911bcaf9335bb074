"""Tests for llkb.learning.versioning."""

from __future__ import annotations

import math
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from llkb.core.config import LLKBConfig
from llkb.learning.analytics import update_analytics
from llkb.learning.versioning import (
    check_updates,
    compare_versions,
    count_new_entries_since,
    extract_llkb_entries,
    extract_llkb_version,
    format_version,
    get_current_llkb_version,
    recommend,
    update_llkb_version,
)
from llkb.store.models import (
    Component,
    ComponentSource,
    ComponentsFile,
    Lesson,
    LessonMetrics,
    LessonsFile,
)
from llkb.store.repository import update_components, update_lessons

NOW = datetime(2026, 3, 15, 12, 0, tzinfo=UTC)

SPEC_HEADER = """/**
 * @journey JRN-0001
 * @timestamp 2026-01-01T00:00:00Z
 * @llkb-version 2026-02-01T10:00:00Z
 * @llkb-entries 12
 */
test('orders', async ({ page }) => {});
"""


def add_lessons(root: Path, first_seen: list[datetime]) -> None:
    def put(f: LessonsFile) -> None:
        f.lessons = [
            Lesson(
                id=f"L{i + 1:03d}",
                title="t",
                pattern=f"pattern {i}",
                metrics=LessonMetrics(first_seen=seen),
            )
            for i, seen in enumerate(first_seen)
        ]

    update_lessons(root, put)


def add_components(root: Path, extracted_at: list[datetime]) -> None:
    def put(f: ComponentsFile) -> None:
        f.components = [
            Component(
                id=f"COMP{i + 1:03d}",
                name="c",
                code=f"helper{i}()",
                source=ComponentSource(journey_id="JRN-1", extracted_at=at),
            )
            for i, at in enumerate(extracted_at)
        ]

    update_components(root, put)


class TestMarkers:
    """Reading and writing consumer markers."""

    def test_extract(self):
        assert extract_llkb_version(SPEC_HEADER) == datetime(2026, 2, 1, 10, 0, tzinfo=UTC)
        assert extract_llkb_entries(SPEC_HEADER) == 12

    def test_extract_missing(self):
        assert extract_llkb_version("test('x', () => {})") is None
        assert extract_llkb_entries("") is None

    def test_extract_with_offset(self):
        content = "// @llkb-version 2026-02-01T12:00:00+02:00"
        assert extract_llkb_version(content) == datetime(2026, 2, 1, 10, 0, tzinfo=UTC)

    def test_update_existing_marker(self):
        updated = update_llkb_version(SPEC_HEADER, NOW, entry_count=20)
        assert extract_llkb_version(updated) == NOW
        assert extract_llkb_entries(updated) == 20
        assert updated.count("@llkb-version") == 1

    def test_insert_after_timestamp(self):
        content = "/**\n * @timestamp 2026-01-01T00:00:00Z\n */\n"
        updated = update_llkb_version(content, NOW, entry_count=3)
        assert " * @timestamp 2026-01-01T00:00:00Z\n * @llkb-version " in updated
        assert extract_llkb_entries(updated) == 3

    def test_prepend_when_no_anchor(self):
        updated = update_llkb_version("test('x', () => {});\n", NOW)
        assert updated.startswith("/**\n * @llkb-version 2026-03-15T12:00:00Z\n */\n")
        assert updated.endswith("test('x', () => {});\n")

    def test_format_version(self):
        assert format_version(NOW) == "2026-03-15T12:00:00Z"


class TestStoreVersion:
    def test_current_version_from_analytics(self, llkb_root: Path):
        update_analytics(llkb_root, now=NOW)
        assert get_current_llkb_version(llkb_root) == NOW

    def test_current_version_without_analytics(self, llkb_root: Path):
        (llkb_root / "analytics.json").unlink()
        assert get_current_llkb_version(llkb_root, now=NOW) == NOW

    def test_count_new_entries_strictly_after(self, llkb_root: Path):
        since = NOW - timedelta(days=10)
        add_lessons(llkb_root, [since - timedelta(days=1), since, since + timedelta(hours=1)])
        add_components(llkb_root, [since + timedelta(days=1), since + timedelta(days=2)])

        assert count_new_entries_since(since, "lessons", llkb_root, NOW) == 1
        assert count_new_entries_since(since, "components", llkb_root, NOW) == 2

    def test_count_none_or_future_is_zero(self, llkb_root: Path):
        add_lessons(llkb_root, [NOW - timedelta(days=1)])
        assert count_new_entries_since(None, "lessons", llkb_root, NOW) == 0
        assert count_new_entries_since(NOW + timedelta(days=1), "lessons", llkb_root, NOW) == 0


class TestRecommend:
    @pytest.mark.parametrize(
        ("outdated", "days", "lessons", "components", "expected"),
        [
            (True, 1.0, 6, 0, "update"),
            (True, 1.0, 0, 3, "update"),
            (True, 45.0, 1, 0, "review"),
            (True, 1.0, 2, 1, "review"),
            (False, 1.0, 0, 0, "skip"),
            (True, 5.0, 0, 0, "skip"),
        ],
    )
    def test_rules(self, outdated, days, lessons, components, expected):
        assert recommend(outdated, days, lessons, components, LLKBConfig()) == expected


class TestCompareVersions:
    """Comparing a consumer file with the store."""

    def test_missing_marker_is_outdated(self, llkb_root: Path, tmp_path: Path):
        consumer = tmp_path / "orders.spec.ts"
        consumer.write_text("test('x', () => {});\n", encoding="utf-8")
        update_analytics(llkb_root, now=NOW)

        comparison = compare_versions(consumer, llkb_root, now=NOW)

        assert comparison.is_outdated
        assert comparison.consumer_version is None
        assert math.isinf(comparison.days_since_update)
        assert comparison.new_patterns_available == 0
        assert comparison.recommendation == "review"

    def test_outdated_with_many_new_lessons(self, llkb_root: Path, tmp_path: Path):
        consumer = tmp_path / "orders.spec.ts"
        consumer.write_text(SPEC_HEADER, encoding="utf-8")
        marker = datetime(2026, 2, 1, 10, 0, tzinfo=UTC)
        add_lessons(llkb_root, [marker + timedelta(days=i + 1) for i in range(6)])
        update_analytics(llkb_root, now=NOW)

        comparison = compare_versions(consumer, llkb_root, now=NOW)

        assert comparison.is_outdated
        assert comparison.current_version == NOW
        assert comparison.days_since_update == 42.0
        assert comparison.new_patterns_available == 6
        assert comparison.recommendation == "update"

    def test_up_to_date(self, llkb_root: Path, tmp_path: Path):
        update_analytics(llkb_root, now=NOW - timedelta(days=1))
        consumer = tmp_path / "orders.spec.ts"
        consumer.write_text(update_llkb_version("", NOW - timedelta(hours=1)), encoding="utf-8")

        comparison = compare_versions(consumer, llkb_root, now=NOW)

        assert not comparison.is_outdated
        assert comparison.recommendation == "skip"

    def test_check_updates_scans_directory(self, llkb_root: Path, tmp_path: Path):
        update_analytics(llkb_root, now=NOW - timedelta(days=1))
        tests_dir = tmp_path / "tests"
        (tests_dir / "nested").mkdir(parents=True)
        (tests_dir / "a.spec.ts").write_text("no marker", encoding="utf-8")
        (tests_dir / "nested" / "b.spec.ts").write_text(
            update_llkb_version("", NOW), encoding="utf-8"
        )
        (tests_dir / "helper.ts").write_text("ignored", encoding="utf-8")

        result = check_updates(tests_dir, llkb_root, now=NOW)

        assert [p.name for p, _ in result.outdated] == ["a.spec.ts"]
        assert [p.name for p, _ in result.up_to_date] == ["b.spec.ts"]
        assert result.total == 2

    def test_check_updates_missing_dir(self, llkb_root: Path, tmp_path: Path):
        assert check_updates(tmp_path / "absent", llkb_root).total == 0
