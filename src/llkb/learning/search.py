"""Lookup over stored lessons and components.

``search`` filters both record kinds and ranks them by how much of the
query text appears in each record. The ``find_*`` and ``get_*_for_journey``
helpers are plain filters for callers that need an id, e.g. before
``record_component_use``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal

from llkb.store.models import Component, Lesson, LessonCategory, Scope
from llkb.store.repository import load_components, load_lessons

MIN_RELEVANCE = 0.1


@dataclass
class SearchQuery:
    """Filters for ``search``; unset fields do not filter.

    Attributes:
        text: Free text matched against titles, patterns and descriptions.
        category: Only records of this category.
        scope: Only records of this scope.
        tags: Lessons carrying at least one of these tags. Components are
            untagged and unaffected.
        min_confidence: Lessons at or above this confidence.
        journey_id: Lessons seen in this journey.
        include_archived: Also search archived lessons and components.
        limit: Maximum number of results; 0 means no cap.
    """

    text: str = ""
    category: LessonCategory | None = None
    scope: Scope | None = None
    tags: list[str] = field(default_factory=list)
    min_confidence: float | None = None
    journey_id: str | None = None
    include_archived: bool = False
    limit: int = 0


@dataclass(frozen=True)
class SearchResult:
    kind: Literal["lesson", "component"]
    id: str
    title: str
    description: str
    category: LessonCategory
    scope: Scope
    relevance: float
    item: Lesson | Component


def text_relevance(text: str, query: str) -> float:
    """Share of query words found in ``text``; 1.0 for a whole-phrase match.

    Single-character words are ignored. An empty query matches everything.
    """
    lowered = text.lower()
    phrase = query.lower().strip()
    words = [w for w in phrase.split() if len(w) > 1]
    if not words:
        return 1.0
    if phrase in lowered:
        return 1.0
    return sum(1 for w in words if w in lowered) / len(words)


def _lesson_matches(lesson: Lesson, query: SearchQuery) -> bool:
    if query.category is not None and lesson.category != query.category:
        return False
    if query.scope is not None and lesson.scope != query.scope:
        return False
    if query.tags and not any(t in lesson.tags for t in query.tags):
        return False
    if query.min_confidence is not None and lesson.metrics.confidence < query.min_confidence:
        return False
    if query.journey_id is not None and query.journey_id not in lesson.journey_ids:
        return False
    return True


def _component_matches(component: Component, query: SearchQuery) -> bool:
    if component.archived and not query.include_archived:
        return False
    if query.category is not None and component.category != query.category:
        return False
    if query.scope is not None and component.scope != query.scope:
        return False
    return True


def search(root: Path | str, query: SearchQuery) -> list[SearchResult]:
    """Lessons and components matching ``query``, most relevant first.

    Raises:
        StoreNotFoundError: A record file is missing.
        SchemaInvalidError: A record file is unreadable.
    """
    lessons_file = load_lessons(root)
    lessons = list(lessons_file.lessons)
    if query.include_archived:
        lessons.extend(lessons_file.archived)

    results: list[SearchResult] = []
    for lesson in lessons:
        if not _lesson_matches(lesson, query):
            continue
        relevance = text_relevance(
            f"{lesson.title} {lesson.pattern} {lesson.trigger}", query.text
        )
        if relevance > MIN_RELEVANCE:
            results.append(
                SearchResult(
                    kind="lesson",
                    id=lesson.id,
                    title=lesson.title,
                    description=lesson.pattern,
                    category=lesson.category,
                    scope=lesson.scope,
                    relevance=relevance,
                    item=lesson,
                )
            )

    for component in load_components(root).components:
        if not _component_matches(component, query):
            continue
        relevance = text_relevance(f"{component.name} {component.description}", query.text)
        if relevance > MIN_RELEVANCE:
            results.append(
                SearchResult(
                    kind="component",
                    id=component.id,
                    title=component.name,
                    description=component.description,
                    category=component.category,
                    scope=component.scope,
                    relevance=relevance,
                    item=component,
                )
            )

    # stable: ties keep lessons before components, in store order
    results.sort(key=lambda r: r.relevance, reverse=True)
    if query.limit > 0:
        return results[: query.limit]
    return results


def find_lessons_by_pattern(root: Path | str, pattern: str) -> list[Lesson]:
    """Active lessons whose pattern or trigger contains ``pattern`` (case-insensitive)."""
    needle = pattern.lower()
    return [
        lesson
        for lesson in load_lessons(root).lessons
        if needle in lesson.pattern.lower() or needle in lesson.trigger.lower()
    ]


def find_components(root: Path | str, term: str) -> list[Component]:
    """Active components whose name or description contains ``term``."""
    needle = term.lower()
    return [
        component
        for component in load_components(root).active()
        if needle in component.name.lower() or needle in component.description.lower()
    ]


def get_lessons_for_journey(root: Path | str, journey_id: str) -> list[Lesson]:
    return [lesson for lesson in load_lessons(root).lessons if journey_id in lesson.journey_ids]


def get_components_for_journey(root: Path | str, journey_id: str) -> list[Component]:
    """Active components extracted from ``journey_id``."""
    return [
        component
        for component in load_components(root).active()
        if component.source.journey_id == journey_id
    ]
