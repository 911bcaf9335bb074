"""Record models persisted in the store.

Python field names are snake_case; on disk every key is camelCase (the
pydantic alias). Both spellings are accepted on input. Rates and
confidences are clamped into ``[0, 1]`` whenever a metrics object is
constructed or assigned to.
"""

from __future__ import annotations

import re
from datetime import datetime
from enum import Enum
from typing import Annotated, Any

from pydantic import (
    AfterValidator,
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

from llkb.learning.normalize import hash_code
from llkb.utils.time import ensure_utc, utc_now

SCHEMA_VERSION = "1.0.0"

LESSON_ID_PREFIX = "L"
COMPONENT_ID_PREFIX = "COMP"


def clamp_unit(value: float) -> float:
    """Clamp a rate or confidence into ``[0, 1]``."""
    return min(1.0, max(0.0, float(value)))


UnitFloat = Annotated[float, AfterValidator(clamp_unit)]
Timestamp = Annotated[datetime, AfterValidator(ensure_utc)]


class LessonCategory(str, Enum):
    """Semantic category of a lesson or component."""

    SELECTOR = "selector"
    TIMING = "timing"
    NAVIGATION = "navigation"
    DATA = "data"
    AUTH = "auth"
    ENV = "env"
    SCRIPT = "script"
    OTHER = "other"


class Scope(str, Enum):
    """Where a lesson or component applies."""

    UNIVERSAL = "universal"
    APP_SPECIFIC = "app-specific"
    FRAMEWORK_SCOPED = "framework-scoped"


class EventType(str, Enum):
    """Kinds of history events."""

    LESSON_CREATED = "lesson_created"
    LESSON_APPLIED = "lesson_applied"
    LESSON_ARCHIVED = "lesson_archived"
    COMPONENT_EXTRACTED = "component_extracted"
    COMPONENT_USED = "component_used"
    COMPONENT_REMOVED = "component_removed"


# Events that count against the extraction rate limits.
EXTRACTION_EVENTS = frozenset({EventType.LESSON_CREATED, EventType.COMPONENT_EXTRACTED})


class RecordModel(BaseModel):
    """Base for all persisted models: camelCase on disk, snake_case in code."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
    )


def _with_fingerprint(data: Any, source_key: str) -> Any:
    if isinstance(data, dict) and not data.get("fingerprint"):
        source = data.get(source_key)
        if isinstance(source, str):
            return {**data, "fingerprint": hash_code(source)}
    return data


# ─── Lessons ──────────────────────────────────────────────────────────


class ConfidenceSample(RecordModel):
    """One point of a lesson's confidence history."""

    model_config = ConfigDict(frozen=True)

    date: Timestamp
    value: UnitFloat


class LessonMetrics(RecordModel):
    model_config = ConfigDict(validate_assignment=True)

    occurrences: int = Field(default=1, ge=1)
    success_rate: UnitFloat = 0.0
    confidence: UnitFloat = 0.0
    first_seen: Timestamp = Field(default_factory=utc_now)
    last_success: Timestamp | None = None
    last_applied: Timestamp | None = None
    confidence_history: list[ConfidenceSample] = Field(default_factory=list)


class LessonValidation(RecordModel):
    human_reviewed: bool = False
    reviewed_by: str | None = None
    reviewed_at: Timestamp | None = None


class Lesson(RecordModel):
    """A learned anti-pattern and its fix."""

    id: str
    title: str
    pattern: str
    fingerprint: str = ""
    trigger: str = ""
    category: LessonCategory = LessonCategory.OTHER
    scope: Scope = Scope.UNIVERSAL
    journey_ids: list[str] = Field(default_factory=list)
    tags: list[str] = Field(default_factory=list)
    metrics: LessonMetrics = Field(default_factory=LessonMetrics)
    validation: LessonValidation = Field(default_factory=LessonValidation)
    archived_at: Timestamp | None = None
    archive_reason: str | None = None

    @model_validator(mode="before")
    @classmethod
    def _fill_fingerprint(cls, data: Any) -> Any:
        return _with_fingerprint(data, "pattern")

    @field_validator("journey_ids")
    @classmethod
    def _dedupe_journeys(cls, v: list[str]) -> list[str]:
        return list(dict.fromkeys(v))

    def add_journey(self, journey_id: str) -> None:
        if journey_id not in self.journey_ids:
            self.journey_ids.append(journey_id)


class LessonsFile(RecordModel):
    """Contents of ``lessons.json``."""

    version: str = SCHEMA_VERSION
    last_updated: Timestamp = Field(default_factory=utc_now)
    lessons: list[Lesson] = Field(default_factory=list)
    archived: list[Lesson] = Field(default_factory=list)

    def find(self, lesson_id: str) -> Lesson | None:
        for lesson in self.lessons:
            if lesson.id == lesson_id:
                return lesson
        return None

    def next_id(self) -> str:
        return _next_id(LESSON_ID_PREFIX, [lesson.id for lesson in (*self.lessons, *self.archived)])


# ─── Components ───────────────────────────────────────────────────────


class ComponentMetrics(RecordModel):
    model_config = ConfigDict(validate_assignment=True)

    total_uses: int = Field(default=0, ge=0)
    last_used: Timestamp | None = None


class ComponentSource(RecordModel):
    journey_id: str
    extracted_at: Timestamp = Field(default_factory=utc_now)
    origin_prompt: str | None = None


class Component(RecordModel):
    """Reusable helper code extracted from generated tests."""

    id: str
    name: str
    description: str = ""
    category: LessonCategory = LessonCategory.OTHER
    scope: Scope = Scope.UNIVERSAL
    code: str
    fingerprint: str = ""
    parameters: list[str] = Field(default_factory=list)
    dependencies: list[str] = Field(default_factory=list)
    metrics: ComponentMetrics = Field(default_factory=ComponentMetrics)
    source: ComponentSource
    archived: bool = False
    archived_at: Timestamp | None = None

    @model_validator(mode="before")
    @classmethod
    def _fill_fingerprint(cls, data: Any) -> Any:
        return _with_fingerprint(data, "code")


class ComponentsFile(RecordModel):
    """Contents of ``components.json``."""

    version: str = SCHEMA_VERSION
    last_updated: Timestamp = Field(default_factory=utc_now)
    components: list[Component] = Field(default_factory=list)

    def find(self, component_id: str) -> Component | None:
        for component in self.components:
            if component.id == component_id:
                return component
        return None

    def active(self) -> list[Component]:
        return [c for c in self.components if not c.archived]

    def next_id(self) -> str:
        return _next_id(COMPONENT_ID_PREFIX, [c.id for c in self.components])


# ─── History ──────────────────────────────────────────────────────────


class HistoryEvent(RecordModel):
    """One immutable fact appended to a daily history partition."""

    model_config = ConfigDict(frozen=True)

    event: EventType
    timestamp: Timestamp = Field(default_factory=utc_now)
    lesson_id: str | None = None
    component_id: str | None = None
    journey_id: str | None = None
    prompt: str | None = None
    success: bool | None = None
    context: dict[str, Any] | None = None

    def to_line(self) -> str:
        """Single-line JSON for a history partition."""
        return self.model_dump_json(by_alias=True, exclude_none=True)


# ─── Analytics ────────────────────────────────────────────────────────


class AnalyticsOverview(RecordModel):
    total_lessons: int = 0
    active_lessons: int = 0
    archived_lessons: int = 0
    total_components: int = 0
    active_components: int = 0
    archived_components: int = 0


class LessonStats(RecordModel):
    by_category: dict[str, int] = Field(default_factory=dict)
    avg_confidence: float = 0.0
    avg_success_rate: float = 0.0


class ComponentStats(RecordModel):
    by_category: dict[str, int] = Field(default_factory=dict)
    by_scope: dict[str, int] = Field(default_factory=dict)
    total_reuses: int = 0
    avg_reuses_per_component: float = 0.0


class NeedsReview(RecordModel):
    low_confidence_lessons: list[str] = Field(default_factory=list)
    low_usage_components: list[str] = Field(default_factory=list)
    declining_success_rate: list[str] = Field(default_factory=list)


class TopLesson(RecordModel):
    id: str
    title: str
    score: float


class TopComponent(RecordModel):
    id: str
    name: str
    uses: int


class TopPerformers(RecordModel):
    lessons: list[TopLesson] = Field(default_factory=list)
    components: list[TopComponent] = Field(default_factory=list)


class AnalyticsSnapshot(RecordModel):
    """Contents of ``analytics.json``: derived, rebuilt wholesale."""

    version: str = SCHEMA_VERSION
    last_updated: Timestamp = Field(default_factory=utc_now)
    overview: AnalyticsOverview = Field(default_factory=AnalyticsOverview)
    lesson_stats: LessonStats = Field(default_factory=LessonStats)
    component_stats: ComponentStats = Field(default_factory=ComponentStats)
    needs_review: NeedsReview = Field(default_factory=NeedsReview)
    top_performers: TopPerformers = Field(default_factory=TopPerformers)


# ─── Seed patterns ────────────────────────────────────────────────────


class LearnedPatternsFile(RecordModel):
    """Contents of ``learned-patterns.json``; custom entries are kept as-is."""

    version: str = SCHEMA_VERSION
    last_updated: Timestamp = Field(default_factory=utc_now)
    description: str = "Learned step-to-code patterns"
    patterns: list[dict[str, Any]] = Field(default_factory=list)


def _next_id(prefix: str, existing: list[str]) -> str:
    pattern = re.compile(rf"^{re.escape(prefix)}(\d+)$")
    highest = 0
    for record_id in existing:
        match = pattern.match(record_id)
        if match:
            highest = max(highest, int(match.group(1)))
    return f"{prefix}{highest + 1:03d}"
