"""Staleness of consumer artifacts relative to the store.

Consumers (generated test files) embed the store version they were built
against as a comment marker::

    @llkb-version 2026-01-15T10:00:00Z
    @llkb-entries 42

The store version is the ``lastUpdated`` timestamp of the analytics
snapshot. A consumer without a marker is treated as maximally stale.
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Literal

from llkb.core.config import LLKBConfig, load_config
from llkb.core.errors import LLKBError, SchemaInvalidError
from llkb.core.logging import get_logger
from llkb.store.repository import load_analytics, load_components, load_lessons
from llkb.utils.time import days_between, ensure_utc, utc_now

_logger = get_logger("versioning")

EntryKind = Literal["lessons", "components"]
Recommendation = Literal["update", "review", "skip"]

_ISO_TIMESTAMP = r"\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}(?:\.\d+)?(?:Z|[+-]\d{2}:\d{2})?"
VERSION_MARKER_RE = re.compile(rf"@llkb-version\s+({_ISO_TIMESTAMP})")
ENTRIES_MARKER_RE = re.compile(r"@llkb-entries\s+(\d+)")


@dataclass(frozen=True)
class VersionComparison:
    """How a consumer artifact relates to the current store state."""

    consumer_version: datetime | None
    current_version: datetime
    is_outdated: bool
    days_since_update: float
    new_patterns_available: int
    new_components_available: int
    recommendation: Recommendation


@dataclass
class UpdateCheckResult:
    """Comparison of every consumer file in a directory."""

    outdated: list[tuple[Path, VersionComparison]] = field(default_factory=list)
    up_to_date: list[tuple[Path, VersionComparison]] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.outdated) + len(self.up_to_date) + len(self.errors)


def _parse_timestamp(text: str) -> datetime:
    return ensure_utc(datetime.fromisoformat(text.replace("Z", "+00:00")))


def extract_llkb_version(content: str) -> datetime | None:
    """Version marker embedded in ``content``, or None when absent."""
    match = VERSION_MARKER_RE.search(content)
    if match is None:
        return None
    try:
        return _parse_timestamp(match.group(1))
    except ValueError:
        return None


def extract_llkb_entries(content: str) -> int | None:
    match = ENTRIES_MARKER_RE.search(content)
    return int(match.group(1)) if match else None


def format_version(version: datetime) -> str:
    return ensure_utc(version).isoformat().replace("+00:00", "Z")


def update_llkb_version(content: str, version: datetime, entry_count: int | None = None) -> str:
    """Rewrite (or insert) the version and entry-count markers.

    A missing version marker is inserted after an ``@timestamp`` line when
    there is one, otherwise a marker comment block is prepended.
    """
    stamp = format_version(version)
    result = content
    if re.search(r"@llkb-version\s+\S+", result):
        result = re.sub(r"(@llkb-version\s+)\S+", rf"\g<1>{stamp}", result, count=1)
    elif re.search(r"@timestamp\s+\S+", result):
        result = re.sub(
            r"(@timestamp\s+\S+)", rf"\g<1>\n * @llkb-version {stamp}", result, count=1
        )
    else:
        result = f"/**\n * @llkb-version {stamp}\n */\n{result}"

    if entry_count is not None:
        if ENTRIES_MARKER_RE.search(result):
            result = ENTRIES_MARKER_RE.sub(f"@llkb-entries {entry_count}", result, count=1)
        else:
            result = re.sub(
                r"(@llkb-version\s+\S+)",
                rf"\g<1>\n * @llkb-entries {entry_count}",
                result,
                count=1,
            )
    return result


def get_current_llkb_version(root: Path | str, now: datetime | None = None) -> datetime:
    """``lastUpdated`` of the analytics snapshot, or now when there is none."""
    try:
        snapshot = load_analytics(root)
    except SchemaInvalidError as exc:
        _logger.warning("analytics_unreadable", error=str(exc))
        snapshot = None
    if snapshot is None:
        return now or utc_now()
    return snapshot.last_updated


def count_new_entries_since(
    timestamp: datetime | None,
    kind: EntryKind,
    root: Path | str,
    now: datetime | None = None,
) -> int:
    """Lessons first seen, or components extracted, strictly after ``timestamp``.

    Returns 0 for a None timestamp and for a timestamp in the future.
    """
    if timestamp is None:
        return 0
    since = ensure_utc(timestamp)
    if since > (now or utc_now()):
        return 0
    if kind == "lessons":
        return sum(1 for lesson in load_lessons(root).lessons if lesson.metrics.first_seen > since)
    return sum(
        1 for component in load_components(root).active() if component.source.extracted_at > since
    )


def recommend(
    is_outdated: bool,
    days_since_update: float,
    new_lessons: int,
    new_components: int,
    config: LLKBConfig,
) -> Recommendation:
    policy = config.staleness
    if is_outdated and (
        new_lessons > policy.update_min_new_lessons
        or new_components > policy.update_min_new_components
    ):
        return "update"
    if is_outdated and days_since_update > policy.review_after_days:
        return "review"
    if new_lessons > 0 or new_components > 0:
        return "review"
    return "skip"


def compare_versions(
    consumer_path: Path,
    root: Path | str,
    now: datetime | None = None,
) -> VersionComparison:
    """Compare the marker in ``consumer_path`` against the store.

    A missing marker always yields ``is_outdated=True`` with an infinite
    ``days_since_update``.
    """
    now = now or utc_now()
    config = load_config(root, required=False)
    consumer_version = extract_llkb_version(consumer_path.read_text(encoding="utf-8"))
    current_version = get_current_llkb_version(root, now)

    if consumer_version is None:
        is_outdated = True
        days_since_update = math.inf
    else:
        is_outdated = consumer_version < current_version
        days_since_update = float(math.floor(days_between(consumer_version, now)))

    new_lessons = count_new_entries_since(consumer_version, "lessons", root, now)
    new_components = count_new_entries_since(consumer_version, "components", root, now)

    return VersionComparison(
        consumer_version=consumer_version,
        current_version=current_version,
        is_outdated=is_outdated,
        days_since_update=days_since_update,
        new_patterns_available=new_lessons,
        new_components_available=new_components,
        recommendation=recommend(
            is_outdated, days_since_update, new_lessons, new_components, config
        ),
    )


def check_updates(
    consumer_dir: Path,
    root: Path | str,
    pattern: str = "*.spec.ts",
    now: datetime | None = None,
) -> UpdateCheckResult:
    """Compare every file matching ``pattern`` under ``consumer_dir``."""
    result = UpdateCheckResult()
    if not consumer_dir.is_dir():
        return result
    for path in sorted(consumer_dir.rglob(pattern)):
        try:
            comparison = compare_versions(path, root, now)
        except (OSError, UnicodeDecodeError, LLKBError) as exc:
            result.errors.append(f"{path}: {exc}")
            continue
        if comparison.is_outdated:
            result.outdated.append((path, comparison))
        else:
            result.up_to_date.append((path, comparison))
    return result
