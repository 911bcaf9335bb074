"""Tests for llkb.health."""

from __future__ import annotations

from datetime import UTC, datetime
from pathlib import Path

import pytest

from llkb.core.errors import StoreNotFoundError
from llkb.health import get_stats, run_health_check
from llkb.learning.recorder import extract_component, record_observation

NOW = datetime(2026, 3, 15, 12, 0, tzinfo=UTC)


def check_status(report, name: str) -> str:
    return next(c.status for c in report.checks if c.name == name)


class TestRunHealthCheck:
    """Health report for stores in various states."""

    def test_fresh_store_is_healthy(self, llkb_root: Path):
        report = run_health_check(llkb_root)

        assert report.status == "healthy"
        assert {c.name for c in report.checks} == {
            "directory",
            "config",
            "lessons",
            "components",
            "analytics",
            "history",
            "lesson_health",
        }
        assert all(c.status == "pass" for c in report.checks)

    def test_missing_root(self, tmp_path: Path):
        report = run_health_check(tmp_path / "absent")

        assert report.status == "error"
        assert "init_store" in report.summary

    def test_missing_analytics_rebuilt(self, llkb_root: Path):
        (llkb_root / "analytics.json").unlink()

        report = run_health_check(llkb_root)

        assert report.status == "warning"
        assert check_status(report, "analytics") == "warn"
        assert (llkb_root / "analytics.json").exists()

    def test_corrupt_lessons_is_error(self, llkb_root: Path):
        (llkb_root / "lessons.json").write_text("{oops", encoding="utf-8")

        report = run_health_check(llkb_root)

        assert report.status == "error"
        assert check_status(report, "lessons") == "fail"
        assert "analytics" not in {c.name for c in report.checks}

    def test_undecodable_files_reported_not_raised(self, llkb_root: Path):
        (llkb_root / "lessons.json").write_bytes(b'{"version": "1.0.0", \xff}')
        (llkb_root / "config.yml").write_bytes(b"version: \xff\xfe\n")

        report = run_health_check(llkb_root)

        assert report.status == "error"
        assert check_status(report, "lessons") == "fail"
        assert check_status(report, "config") == "fail"

    def test_invalid_config_is_error(self, llkb_root: Path):
        (llkb_root / "config.yml").write_text("unknownSection: 1\n", encoding="utf-8")
        report = run_health_check(llkb_root)
        assert check_status(report, "config") == "fail"
        assert report.status == "error"

    def test_low_confidence_lessons_warn(self, llkb_root: Path):
        record_observation("await page.goto('/orders')", "JRN-1", llkb_root, now=NOW)

        report = run_health_check(llkb_root)

        assert report.status == "warning"
        assert check_status(report, "lesson_health") == "warn"

    def test_missing_history_dir_warns(self, llkb_root: Path):
        (llkb_root / "history").rmdir()
        report = run_health_check(llkb_root)
        assert check_status(report, "history") == "warn"


class TestGetStats:
    def test_counts(self, llkb_root: Path):
        record_observation("await page.goto('/orders')", "JRN-1", llkb_root, now=NOW)
        extract_component(
            "export const open = (page) => page.goto('/orders')",
            "open",
            "JRN-1",
            llkb_root,
            now=NOW,
        )

        stats = get_stats(llkb_root, now=NOW)

        assert stats.lessons["total"] == 1
        assert stats.lessons["active"] == 1
        assert stats.lessons["avg_confidence"] == 0.29
        assert stats.components["active"] == 1
        assert stats.history["today_events"] == 2
        assert stats.history["history_files"] == 1
        assert stats.history["oldest_file"] == "2026-03-15.jsonl"
        assert stats.history["newest_file"] == "2026-03-15.jsonl"

    def test_rebuilds_missing_analytics(self, llkb_root: Path):
        (llkb_root / "analytics.json").unlink()
        stats = get_stats(llkb_root, now=NOW)
        assert stats.lessons["total"] == 0
        assert (llkb_root / "analytics.json").exists()

    def test_uninitialized_store(self, tmp_path: Path):
        with pytest.raises(StoreNotFoundError):
            get_stats(tmp_path / "absent")

    @pytest.mark.parametrize("name", ["lessons.json", "components.json"])
    def test_missing_record_file_not_served_from_snapshot(self, llkb_root: Path, name: str):
        assert (llkb_root / "analytics.json").exists()
        (llkb_root / name).unlink()

        with pytest.raises(StoreNotFoundError):
            get_stats(llkb_root, now=NOW)
