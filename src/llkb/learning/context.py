"""Selecting the lessons that apply to a journey.

Each active lesson gets a relevance score in ``[0, 1]`` built from its
confidence, scope, tags, origin journeys, category, trigger text and recent
success. Lessons at or below ``injection.minRelevance`` are dropped; the
rest are ordered by confidence (when ``injection.prioritizeByConfidence``)
or by relevance, and capped at ``injection.maxLessons``.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path

from llkb.core.config import InjectionConfig, load_config
from llkb.learning.normalize import tokenize
from llkb.store.models import Lesson, LessonCategory, Scope
from llkb.store.repository import load_lessons
from llkb.utils.time import days_between, utc_now


@dataclass
class LessonQuery:
    """What a consumer is about to generate.

    Attributes:
        journey_id: Journey being generated or repaired.
        title: Journey title; words longer than three letters become keywords.
        scope: Functional area (e.g. "orders"); matched against journey ids.
        routes: Application routes the journey visits.
        categories: Categories the consumer cares about.
        keywords: Explicit keywords; derived from the fields above when None.
    """

    journey_id: str
    title: str = ""
    scope: str = ""
    routes: list[str] = field(default_factory=list)
    categories: list[LessonCategory] = field(default_factory=list)
    keywords: list[str] | None = None

    def resolved_keywords(self) -> list[str]:
        if self.keywords is not None:
            return [k.lower() for k in self.keywords]
        words = [w for w in self.title.lower().split() if len(w) > 3]
        if self.scope:
            words.append(self.scope.lower())
        for route in self.routes:
            words.extend(p.lower() for p in route.split("/") if len(p) > 2)
        return list(dict.fromkeys(words))


@dataclass(frozen=True)
class ScoredLesson:
    lesson: Lesson
    score: float
    reasons: tuple[str, ...]


def score_lesson(lesson: Lesson, query: LessonQuery, now: datetime | None = None) -> ScoredLesson:
    """Relevance of one lesson to ``query`` with the reasons that contributed."""
    now = now or utc_now()
    keywords = query.resolved_keywords()
    reasons: list[str] = []
    score = lesson.metrics.confidence * 0.3

    if lesson.scope is Scope.UNIVERSAL:
        score += 0.2
        reasons.append("universal scope")
    elif lesson.scope is Scope.APP_SPECIFIC:
        score += 0.15
        reasons.append("app-specific")
    else:
        score += 0.1
        reasons.append("framework-scoped")

    matching_tags = [t for t in lesson.tags if any(k in t.lower() for k in keywords)]
    if matching_tags:
        score += min(len(matching_tags) * 0.1, 0.3)
        reasons.append(f"tags: {', '.join(matching_tags)}")

    if query.journey_id in lesson.journey_ids:
        score += 0.25
        reasons.append("same journey")
    elif query.scope:
        similar = [j for j in lesson.journey_ids if query.scope.lower() in j.lower()]
        if similar:
            score += 0.15
            reasons.append(f"similar journeys: {len(similar)}")

    if lesson.category in query.categories:
        score += 0.15
        reasons.append(f"category: {lesson.category.value}")

    trigger_tokens = [t.lower() for t in tokenize(lesson.trigger)]
    trigger_matches = [k for k in keywords if any(k in t for t in trigger_tokens)]
    if trigger_matches:
        score += min(len(trigger_matches) * 0.05, 0.15)
        reasons.append(f"trigger match: {', '.join(trigger_matches[:2])}")

    if lesson.metrics.last_success is not None:
        days = days_between(lesson.metrics.last_success, now)
        if days < 7:
            score += 0.1
            reasons.append("recently successful")
        elif days < 30:
            score += 0.05

    if lesson.metrics.success_rate >= 0.9:
        score += 0.1
        reasons.append("high success rate")

    return ScoredLesson(lesson=lesson, score=min(score, 1.0), reasons=tuple(reasons))


def score_lessons(
    lessons: Sequence[Lesson],
    query: LessonQuery,
    injection: InjectionConfig | None = None,
    now: datetime | None = None,
) -> list[ScoredLesson]:
    """Score, filter, order and cap ``lessons`` for ``query``."""
    injection = injection or InjectionConfig()
    scored = [
        s for s in (score_lesson(lesson, query, now) for lesson in lessons)
        if s.score > injection.min_relevance
    ]
    if injection.prioritize_by_confidence:
        scored.sort(key=lambda s: (s.lesson.metrics.confidence, s.score), reverse=True)
    else:
        scored.sort(key=lambda s: s.score, reverse=True)
    return scored[: injection.max_lessons]


def get_applicable_lessons(
    query: LessonQuery,
    root: Path | str,
    now: datetime | None = None,
) -> list[Lesson]:
    """Active lessons relevant to ``query``, most useful first."""
    config = load_config(root)
    scored = score_lessons(load_lessons(root).lessons, query, config.injection, now)
    return [s.lesson for s in scored]
