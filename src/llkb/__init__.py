"""LLKB - a lessons-learned knowledge base for generated test code.

Collaborators record observed code patterns and reusable components, query
the lessons that apply to a journey, and check whether previously generated
artifacts are stale. All state lives in a store root directory passed
explicitly to every operation.
"""

from llkb.core.config import LLKBConfig, dump_config, load_config
from llkb.core.errors import (
    LLKBError,
    LockContentionError,
    RecordNotFoundError,
    SchemaInvalidError,
    StoreNotFoundError,
)
from llkb.core.logging import JourneyContext, configure_logging, get_logger, with_context
from llkb.health import HealthCheck, HealthReport, StoreStats, get_stats, run_health_check
from llkb.learning.analytics import get_analytics_summary, update_analytics
from llkb.learning.context import LessonQuery, ScoredLesson, get_applicable_lessons, score_lessons
from llkb.learning.recorder import (
    extract_component,
    record_component_use,
    record_lesson_applied,
    record_observation,
    remove_component,
)
from llkb.learning.retention import PruneOptions, PruneResult, prune
from llkb.learning.search import (
    SearchQuery,
    SearchResult,
    find_components,
    find_lessons_by_pattern,
    get_components_for_journey,
    get_lessons_for_journey,
    search,
)
from llkb.learning.versioning import (
    VersionComparison,
    check_updates,
    compare_versions,
    update_llkb_version,
)
from llkb.store.bootstrap import InitResult, init_store
from llkb.store.migration import MigrationResult, migrate_store
from llkb.store.models import Component, Lesson, LessonCategory, Scope

__version__ = "1.0.0"

__all__ = [
    "Component",
    "HealthCheck",
    "HealthReport",
    "InitResult",
    "JourneyContext",
    "LLKBConfig",
    "LLKBError",
    "Lesson",
    "LessonCategory",
    "LessonQuery",
    "LockContentionError",
    "MigrationResult",
    "PruneOptions",
    "PruneResult",
    "RecordNotFoundError",
    "SchemaInvalidError",
    "Scope",
    "ScoredLesson",
    "SearchQuery",
    "SearchResult",
    "StoreNotFoundError",
    "StoreStats",
    "VersionComparison",
    "check_updates",
    "compare_versions",
    "configure_logging",
    "dump_config",
    "extract_component",
    "find_components",
    "find_lessons_by_pattern",
    "get_analytics_summary",
    "get_applicable_lessons",
    "get_components_for_journey",
    "get_lessons_for_journey",
    "get_logger",
    "get_stats",
    "init_store",
    "load_config",
    "migrate_store",
    "prune",
    "record_component_use",
    "record_lesson_applied",
    "record_observation",
    "remove_component",
    "run_health_check",
    "score_lessons",
    "search",
    "update_analytics",
    "update_llkb_version",
]
