"""Recording observations, lesson applications and components.

This is the entry point for external collaborators (the step parser, the
test generator, the runner wrapper). Every operation takes the store root
explicitly.

Write path for an observation:
    normalize -> fingerprint -> match against active lessons
    -> mutate the matched lesson, or create a new one when the rate
       limits allow -> (lock released) append history -> rebuild analytics

History is appended only after the lessons lock is released, so no two
file locks are ever held at once.
"""

from __future__ import annotations

from datetime import datetime
from pathlib import Path

from llkb.core.config import LLKBConfig, load_config
from llkb.core.errors import RecordNotFoundError
from llkb.core.logging import get_logger
from llkb.learning.analytics import update_analytics
from llkb.learning.confidence import calculate_new_success_rate, update_confidence_history
from llkb.learning.history import (
    append_to_history,
    is_daily_rate_limit_reached,
    is_journey_rate_limit_reached,
)
from llkb.learning.inference import infer_category
from llkb.learning.normalize import count_lines, hash_code, normalize_code
from llkb.learning.similarity import find_similar_patterns
from llkb.store.models import (
    Component,
    ComponentMetrics,
    ComponentSource,
    ComponentsFile,
    EventType,
    HistoryEvent,
    Lesson,
    LessonCategory,
    LessonMetrics,
    LessonsFile,
    Scope,
)
from llkb.store.repository import update_components, update_lessons
from llkb.utils.time import utc_now

_logger = get_logger("recorder")

DEFAULT_PROMPT = "journey-implement"
TITLE_LENGTH = 60


def extraction_allowed(
    journey_id: str,
    config: LLKBConfig,
    root: Path | str,
    now: datetime | None = None,
) -> bool:
    """Whether a new lesson or component may be created right now."""
    if is_daily_rate_limit_reached(config, root, now):
        _logger.info("extraction_rate_limited", scope="daily", journey_id=journey_id)
        return False
    if is_journey_rate_limit_reached(journey_id, config, root, now):
        _logger.info("extraction_rate_limited", scope="journey", journey_id=journey_id)
        return False
    return True


def find_matching_lesson(
    lessons: list[Lesson],
    normalized: str,
    threshold: float,
) -> Lesson | None:
    """Exact fingerprint match first, else the most similar near-duplicate."""
    fingerprint = hash_code(normalized)
    for lesson in lessons:
        if lesson.fingerprint == fingerprint:
            return lesson
    matches = find_similar_patterns(normalized, [lesson.pattern for lesson in lessons], threshold)
    if matches:
        return lessons[matches[0].index]
    return None


def apply_outcome(lesson: Lesson, journey_id: str, success: bool, now: datetime) -> None:
    """Fold one more application of ``lesson`` into its metrics."""
    metrics = lesson.metrics
    metrics.success_rate = calculate_new_success_rate(
        metrics.success_rate, metrics.occurrences, success
    )
    metrics.occurrences += 1
    metrics.last_applied = now
    if success:
        metrics.last_success = now
    lesson.add_journey(journey_id)
    update_confidence_history(lesson, now)


def _append_event(event: HistoryEvent, root: Path | str, config: LLKBConfig) -> None:
    append_to_history(event, root, config=config)


def record_observation(
    code: str,
    journey_id: str,
    root: Path | str,
    *,
    trigger: str | None = None,
    title: str | None = None,
    scope: Scope = Scope.UNIVERSAL,
    tags: list[str] | None = None,
    success: bool = True,
    prompt: str = DEFAULT_PROMPT,
    similarity_threshold: float | None = None,
    now: datetime | None = None,
) -> Lesson | None:
    """Record an observed code pattern.

    A near-duplicate of an active lesson (exact fingerprint, or similarity
    at or above the threshold) updates that lesson and returns None. A
    novel pattern becomes a new lesson, unless learning is disabled or an
    extraction rate limit is reached, in which case nothing is stored.

    Returns:
        The newly created lesson, or None.

    Raises:
        StoreNotFoundError: The store was not initialized.
        LockContentionError: The lessons file stayed locked.
    """
    now = now or utc_now()
    config = load_config(root)
    threshold = (
        similarity_threshold
        if similarity_threshold is not None
        else config.extraction.similarity_threshold
    )
    normalized = normalize_code(code)
    log = _logger.bind(journey_id=journey_id)
    may_create = config.learning.enabled and extraction_allowed(journey_id, config, root, now)

    created: list[Lesson] = []
    applied: list[Lesson] = []

    def mutate(lessons_file: LessonsFile) -> None:
        created.clear()
        applied.clear()
        existing = find_matching_lesson(lessons_file.lessons, normalized, threshold)
        if existing is not None:
            apply_outcome(existing, journey_id, success, now)
            applied.append(existing)
            return
        if not may_create:
            return

        lesson_id = lessons_file.next_id()
        lesson = Lesson(
            id=lesson_id,
            title=title or normalized[:TITLE_LENGTH],
            pattern=normalized,
            fingerprint=hash_code(normalized),
            trigger=trigger or "",
            category=infer_category(code),
            scope=scope,
            journey_ids=[journey_id],
            tags=tags or [],
            metrics=LessonMetrics(
                occurrences=1,
                success_rate=1.0 if success else 0.0,
                first_seen=now,
                last_success=now if success else None,
                last_applied=now,
            ),
        )
        update_confidence_history(lesson, now)
        lessons_file.lessons.append(lesson)
        created.append(lesson)

    update_lessons(root, mutate)

    if applied:
        lesson = applied[0]
        log.debug(
            "lesson_reinforced",
            lesson_id=lesson.id,
            occurrences=lesson.metrics.occurrences,
            confidence=lesson.metrics.confidence,
        )
        _append_event(
            HistoryEvent(
                event=EventType.LESSON_APPLIED,
                timestamp=now,
                lesson_id=lesson.id,
                journey_id=journey_id,
                success=success,
            ),
            root,
            config,
        )
    elif created:
        lesson = created[0]
        log.info("lesson_created", lesson_id=lesson.id, category=lesson.category.value)
        _append_event(
            HistoryEvent(
                event=EventType.LESSON_CREATED,
                timestamp=now,
                lesson_id=lesson.id,
                journey_id=journey_id,
                prompt=prompt,
                success=success,
            ),
            root,
            config,
        )
    else:
        log.debug("observation_not_stored", learning_enabled=config.learning.enabled)
        return None

    update_analytics(root, config=config, now=now)
    return created[0] if created else None


def record_lesson_applied(
    lesson_id: str,
    journey_id: str,
    root: Path | str,
    *,
    success: bool,
    now: datetime | None = None,
) -> Lesson:
    """Record that a known lesson was applied, and whether it worked.

    Raises:
        RecordNotFoundError: No active lesson has this id.
    """
    now = now or utc_now()
    config = load_config(root)
    updated: list[Lesson] = []

    def mutate(lessons_file: LessonsFile) -> None:
        lesson = lessons_file.find(lesson_id)
        if lesson is None:
            raise RecordNotFoundError(f"Lesson {lesson_id} not found")
        apply_outcome(lesson, journey_id, success, now)
        updated[:] = [lesson]

    update_lessons(root, mutate)
    _append_event(
        HistoryEvent(
            event=EventType.LESSON_APPLIED,
            timestamp=now,
            lesson_id=lesson_id,
            journey_id=journey_id,
            success=success,
        ),
        root,
        config,
    )
    update_analytics(root, config=config, now=now)
    return updated[0]


# ─── Components ───────────────────────────────────────────────────────


def extract_component(
    code: str,
    name: str,
    journey_id: str,
    root: Path | str,
    *,
    description: str = "",
    category: LessonCategory | None = None,
    scope: Scope = Scope.UNIVERSAL,
    parameters: list[str] | None = None,
    dependencies: list[str] | None = None,
    origin_prompt: str | None = None,
    now: datetime | None = None,
) -> Component | None:
    """Store reusable helper code as a component.

    Returns None without writing when the code is too short, an extraction
    rate limit is reached, or an active component is a near-duplicate.
    """
    now = now or utc_now()
    config = load_config(root)
    log = _logger.bind(journey_id=journey_id)

    if count_lines(code) < config.extraction.min_lines_for_extraction:
        log.debug("component_too_short", name=name)
        return None
    if not extraction_allowed(journey_id, config, root, now):
        return None

    normalized = normalize_code(code)
    fingerprint = hash_code(normalized)
    created: list[Component] = []

    def mutate(components_file: ComponentsFile) -> None:
        created.clear()
        active = components_file.active()
        for component in active:
            if component.fingerprint == fingerprint:
                log.debug("component_duplicate", existing=component.id)
                return
        similar = find_similar_patterns(
            normalized,
            [normalize_code(c.code) for c in active],
            config.extraction.similarity_threshold,
        )
        if similar:
            log.debug("component_duplicate", existing=active[similar[0].index].id)
            return

        component = Component(
            id=components_file.next_id(),
            name=name,
            description=description,
            category=category or infer_category(code),
            scope=scope,
            code=code,
            fingerprint=fingerprint,
            parameters=parameters or [],
            dependencies=dependencies or [],
            metrics=ComponentMetrics(),
            source=ComponentSource(
                journey_id=journey_id,
                extracted_at=now,
                origin_prompt=origin_prompt,
            ),
        )
        components_file.components.append(component)
        created.append(component)

    update_components(root, mutate)
    if not created:
        return None

    component = created[0]
    log.info("component_extracted", component_id=component.id, name=name)
    _append_event(
        HistoryEvent(
            event=EventType.COMPONENT_EXTRACTED,
            timestamp=now,
            component_id=component.id,
            journey_id=journey_id,
            prompt=origin_prompt or DEFAULT_PROMPT,
        ),
        root,
        config,
    )
    update_analytics(root, config=config, now=now)
    return component


def record_component_use(
    component_id: str,
    journey_id: str,
    root: Path | str,
    *,
    success: bool | None = None,
    now: datetime | None = None,
) -> Component:
    """Count one reuse of a component.

    Raises:
        RecordNotFoundError: No active component has this id.
    """
    now = now or utc_now()
    config = load_config(root)
    updated: list[Component] = []

    def mutate(components_file: ComponentsFile) -> None:
        component = components_file.find(component_id)
        if component is None or component.archived:
            raise RecordNotFoundError(f"Component {component_id} not found")
        component.metrics.total_uses += 1
        component.metrics.last_used = now
        updated[:] = [component]

    update_components(root, mutate)
    _append_event(
        HistoryEvent(
            event=EventType.COMPONENT_USED,
            timestamp=now,
            component_id=component_id,
            journey_id=journey_id,
            success=success,
        ),
        root,
        config,
    )
    update_analytics(root, config=config, now=now)
    return updated[0]


def remove_component(
    component_id: str,
    root: Path | str,
    *,
    now: datetime | None = None,
) -> Component:
    """Archive a component; components are never archived automatically.

    Raises:
        RecordNotFoundError: No active component has this id.
    """
    now = now or utc_now()
    config = load_config(root)
    removed: list[Component] = []

    def mutate(components_file: ComponentsFile) -> None:
        component = components_file.find(component_id)
        if component is None or component.archived:
            raise RecordNotFoundError(f"Component {component_id} not found")
        component.archived = True
        component.archived_at = now
        removed[:] = [component]

    update_components(root, mutate)
    _logger.info("component_removed", component_id=component_id)
    _append_event(
        HistoryEvent(event=EventType.COMPONENT_REMOVED, timestamp=now, component_id=component_id),
        root,
        config,
    )
    update_analytics(root, config=config, now=now)
    return removed[0]
