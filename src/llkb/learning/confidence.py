"""Lesson confidence calculation and history.

The confidence formula is:
    confidence = frequency × recency × sqrt(success_rate) × validation_boost

Where:
    - frequency = min(1.0, log(occurrences + 1) / log(full_frequency_occurrences + 1))
    - recency = max(recency_floor, (1 - decay_rate) ^ months_since_last_success)
      (months counted from first_seen when the lesson never succeeded)
    - validation_boost applies only to human-reviewed lessons

The result is clamped to [0, 1] and rounded to two decimals. Holding the
other inputs fixed, it never decreases when occurrences or success rate
increase.

The confidence history is append-only: samples are added, never rewritten.
"""

from __future__ import annotations

import math
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime
from typing import Literal

from llkb.store.models import ConfidenceSample, Lesson, clamp_unit
from llkb.utils.time import days_between, utc_now

DEFAULT_REVIEW_THRESHOLD = 0.4
DECLINE_WINDOW = 30
DECLINE_RATIO = 0.8
TREND_TOLERANCE = 0.1
DAYS_PER_MONTH = 30.0

ConfidenceTrend = Literal["increasing", "decreasing", "stable", "unknown"]


@dataclass
class ConfidenceConfig:
    """Configuration for the confidence calculation.

    Attributes:
        decay_rate_per_month: Fraction of confidence lost per idle month.
        recency_floor: Recency factor never drops below this.
        full_frequency_occurrences: Occurrences at which frequency reaches 1.0.
        validation_boost: Multiplier for human-reviewed lessons.
    """

    decay_rate_per_month: float = 0.1
    recency_floor: float = 0.5
    full_frequency_occurrences: int = 10
    validation_boost: float = 1.2


class ConfidenceModel:
    """Computes and records lesson confidence."""

    def __init__(self, config: ConfidenceConfig | None = None) -> None:
        self.config = config or ConfidenceConfig()

    def frequency_factor(self, occurrences: int) -> float:
        if occurrences <= 0:
            return 0.0
        base = math.log(self.config.full_frequency_occurrences + 1)
        return min(1.0, math.log(occurrences + 1) / base)

    def recency_factor(self, reference: datetime, now: datetime) -> float:
        months = max(0.0, days_between(reference, now) / DAYS_PER_MONTH)
        decayed = (1.0 - self.config.decay_rate_per_month) ** months
        return max(self.config.recency_floor, decayed)

    def calculate(self, lesson: Lesson, now: datetime | None = None) -> float:
        """Confidence of ``lesson`` at ``now`` (defaults to the current time)."""
        now = now or utc_now()
        metrics = lesson.metrics
        reference = metrics.last_success or metrics.first_seen

        confidence = (
            self.frequency_factor(metrics.occurrences)
            * self.recency_factor(reference, now)
            * math.sqrt(metrics.success_rate)
        )
        if lesson.validation.human_reviewed:
            confidence *= self.config.validation_boost

        return round(clamp_unit(confidence), 2)

    def update_history(self, lesson: Lesson, now: datetime | None = None) -> list[ConfidenceSample]:
        """Recompute confidence and append it as a new history sample."""
        now = now or utc_now()
        value = self.calculate(lesson, now)
        lesson.metrics.confidence = value
        lesson.metrics.confidence_history.append(ConfidenceSample(date=now, value=value))
        return lesson.metrics.confidence_history


_default_model = ConfidenceModel()


def calculate_confidence(lesson: Lesson, now: datetime | None = None) -> float:
    return _default_model.calculate(lesson, now)


def update_confidence_history(
    lesson: Lesson, now: datetime | None = None
) -> list[ConfidenceSample]:
    """Append the freshly computed confidence to the lesson's history.

    Prior samples are never modified; the history grows by exactly one.
    """
    return _default_model.update_history(lesson, now)


def needs_confidence_review(
    lesson: Lesson, threshold: float = DEFAULT_REVIEW_THRESHOLD
) -> bool:
    """True when confidence is below ``threshold``, regardless of occurrences."""
    return lesson.metrics.confidence < threshold


def detect_declining_confidence(lesson: Lesson) -> bool:
    """True when confidence fell below 80% of its recent average.

    The average is taken over the last 30 samples; at least two samples are
    needed before a decline can be detected.
    """
    recent = lesson.metrics.confidence_history[-DECLINE_WINDOW:]
    if len(recent) < 2:
        return False
    average = sum(sample.value for sample in recent) / len(recent)
    return lesson.metrics.confidence < average * DECLINE_RATIO


def get_confidence_trend(history: Sequence[ConfidenceSample]) -> ConfidenceTrend:
    """Compare the first and last thirds of a history.

    Needs at least three samples. A change of more than 10% of the early
    average counts as a trend.
    """
    if len(history) < 3:
        return "unknown"
    third = len(history) // 3
    early = [s.value for s in history[:third]]
    late = [s.value for s in history[-third:]]
    early_avg = sum(early) / len(early)
    late_avg = sum(late) / len(late)

    tolerance = max(early_avg * TREND_TOLERANCE, 1e-9)
    if late_avg - early_avg > tolerance:
        return "increasing"
    if early_avg - late_avg > tolerance:
        return "decreasing"
    return "stable"


def calculate_new_success_rate(current_rate: float, occurrences: int, success: bool) -> float:
    """Running average after one more outcome.

    Args:
        current_rate: Success rate over the previous ``occurrences``.
        occurrences: Number of outcomes the current rate was computed over.
        success: Outcome of the new application.
    """
    if occurrences <= 0:
        return 1.0 if success else 0.0
    total = current_rate * occurrences + (1.0 if success else 0.0)
    return clamp_unit(total / (occurrences + 1))
