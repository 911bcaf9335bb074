"""Append-only daily history and the extraction rate limiter.

Events go to ``history/YYYY-MM-DD.jsonl``, one JSON object per line. The
day is taken from the UTC or local calendar according to
``history.dayBoundary``; a store uses one calendar consistently.

Rate limits are pure boolean queries over today's partition: they never
block writes themselves, callers consult them before extracting.
"""

from __future__ import annotations

import json
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import date, datetime
from pathlib import Path

from pydantic import ValidationError

from llkb.core.config import LLKBConfig, load_config
from llkb.core.logging import get_logger
from llkb.store.files import append_line
from llkb.store.models import EXTRACTION_EVENTS, EventType, HistoryEvent
from llkb.store.paths import HISTORY_SUFFIX, StorePaths
from llkb.utils.time import calendar_day, utc_now

_logger = get_logger("history")

EventFilter = Callable[[HistoryEvent], bool]


@dataclass
class HistoryCleanupResult:
    """Partitions removed by a cleanup run, plus per-file failures."""

    deleted: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)


def _day_boundary(root: Path | str, config: LLKBConfig | None) -> str:
    if config is None:
        config = load_config(root, required=False)
    return config.history.day_boundary


def history_file_for(
    moment: datetime,
    root: Path | str,
    config: LLKBConfig | None = None,
) -> Path:
    day = calendar_day(moment, _day_boundary(root, config))
    return StorePaths.of(root).history_file(day)


def append_to_history(
    event: HistoryEvent,
    root: Path | str,
    *,
    config: LLKBConfig | None = None,
) -> bool:
    """Append one event to the partition of the day it happened.

    The history directory and the partition are created on first use.

    Returns:
        True when the line was written; False after a logged warning when
        the filesystem refused the write.
    """
    path = history_file_for(event.timestamp, root, config)
    try:
        append_line(path, event.to_line())
    except OSError as exc:
        _logger.warning(
            "history_append_failed",
            path=str(path),
            event_type=event.event.value,
            error=str(exc),
        )
        return False
    return True


def read_history_file(path: Path) -> list[HistoryEvent]:
    """Parse one partition; malformed lines are skipped with a warning."""
    try:
        data = path.read_bytes()
    except FileNotFoundError:
        return []

    events: list[HistoryEvent] = []
    for line_number, raw in enumerate(data.split(b"\n"), start=1):
        if not raw.strip():
            continue
        try:
            events.append(HistoryEvent.model_validate(json.loads(raw.decode("utf-8"))))
        except (UnicodeDecodeError, json.JSONDecodeError, ValidationError) as exc:
            _logger.warning(
                "history_line_skipped",
                path=str(path),
                line=line_number,
                error=str(exc).splitlines()[0],
            )
    return events


def read_today_history(
    root: Path | str,
    *,
    config: LLKBConfig | None = None,
    now: datetime | None = None,
) -> list[HistoryEvent]:
    return read_history_file(history_file_for(now or utc_now(), root, config))


def count_today_events(
    event_type: EventType | None,
    filter: EventFilter | None = None,  # noqa: A002
    *,
    root: Path | str,
    config: LLKBConfig | None = None,
    now: datetime | None = None,
) -> int:
    """Count today's events of ``event_type`` (any type when None) passing ``filter``."""
    count = 0
    for event in read_today_history(root, config=config, now=now):
        if event_type is not None and event.event != event_type:
            continue
        if filter is not None and not filter(event):
            continue
        count += 1
    return count


def count_extractions_today(
    root: Path | str,
    journey_id: str | None = None,
    *,
    config: LLKBConfig | None = None,
    now: datetime | None = None,
) -> int:
    """Today's extraction events (lessons created, components extracted)."""
    return count_today_events(
        None,
        lambda e: e.event in EXTRACTION_EVENTS
        and (journey_id is None or e.journey_id == journey_id),
        root=root,
        config=config,
        now=now,
    )


def is_daily_rate_limit_reached(
    config: LLKBConfig,
    root: Path | str,
    now: datetime | None = None,
) -> bool:
    """True when today's extraction count reached ``maxPredictivePerDay``."""
    count = count_extractions_today(root, config=config, now=now)
    return count >= config.extraction.max_predictive_per_day


def is_journey_rate_limit_reached(
    journey_id: str,
    config: LLKBConfig,
    root: Path | str,
    now: datetime | None = None,
) -> bool:
    """True when today's extractions for ``journey_id`` reached ``maxPredictivePerJourney``."""
    count = count_extractions_today(root, journey_id, config=config, now=now)
    return count >= config.extraction.max_predictive_per_journey


# ─── Partitions ───────────────────────────────────────────────────────


def _partition_day(path: Path) -> date | None:
    if not path.name.endswith(HISTORY_SUFFIX):
        return None
    try:
        return date.fromisoformat(path.name[: -len(HISTORY_SUFFIX)])
    except ValueError:
        return None


def list_history_files(root: Path | str) -> list[Path]:
    """Partition files sorted oldest first; unrelated files are ignored."""
    history_dir = StorePaths.of(root).history_dir
    if not history_dir.is_dir():
        return []
    dated: list[tuple[date, Path]] = []
    for path in history_dir.iterdir():
        day = _partition_day(path)
        if day is not None:
            dated.append((day, path))
    return [path for _, path in sorted(dated)]


def get_history_files_in_range(start: date, end: date, root: Path | str) -> list[Path]:
    """Partitions whose day lies in ``[start, end]``."""
    return [
        p
        for p in list_history_files(root)
        if start <= (_partition_day(p) or date.min) <= end
    ]


def cleanup_old_history_files(
    retention_days: int,
    root: Path | str,
    now: datetime | None = None,
    *,
    config: LLKBConfig | None = None,
) -> HistoryCleanupResult:
    """Delete partitions older than ``retention_days``.

    Each file is attempted independently; failures are collected.
    """
    today = calendar_day(now or utc_now(), _day_boundary(root, config))
    result = HistoryCleanupResult()
    for path in list_history_files(root):
        day = _partition_day(path)
        if day is None or (today - day).days <= retention_days:
            continue
        try:
            path.unlink()
            result.deleted.append(path.name)
        except OSError as exc:
            result.errors.append(f"Failed to delete {path.name}: {exc}")
    if result.deleted:
        _logger.info("history_cleaned", deleted=len(result.deleted), errors=len(result.errors))
    return result
