"""Priority-ordered category inference for code snippets.

Rules are evaluated in ``CATEGORY_PRIORITY`` order and the first category
with any matching cue wins, even when a later rule would match more cues.
Callers rely on this order for deterministic classification, so changing
it changes stored categories.

Cues are lowercase substrings matched against the lowercased snippet.
"""

from __future__ import annotations

from dataclasses import dataclass

from llkb.store.models import LessonCategory

CATEGORY_CUES: dict[LessonCategory, tuple[str, ...]] = {
    LessonCategory.AUTH: (
        "login",
        "logout",
        "signin",
        "sign-in",
        "signout",
        "password",
        "credential",
        "authenticate",
        "oauth",
        "storagestate",
        "session",
    ),
    LessonCategory.SELECTOR: (
        "data-testid",
        "testid",
        "getby",
        "locator",
        "queryselector",
        "selector",
        "findby",
        "xpath",
    ),
    LessonCategory.ENV: (
        "process.env",
        "import.meta.env",
        "baseurl",
        "base_url",
        "environment",
        "dotenv",
    ),
    LessonCategory.NAVIGATION: (
        "goto",
        "navigate",
        "waitforurl",
        "url",
        "route",
        "href",
        "reload",
        "goback",
        "breadcrumb",
        "menu",
    ),
    LessonCategory.DATA: (
        "api",
        "fetch",
        "request",
        "response",
        "json",
        "payload",
        "graphql",
        "endpoint",
        "fixture",
    ),
    LessonCategory.TIMING: (
        "wait",
        "timeout",
        "delay",
        "sleep",
        "poll",
        "retry",
        "interval",
        "debounce",
    ),
    LessonCategory.SCRIPT: (
        "evaluate",
        "addinitscript",
        "exposefunction",
        "window.",
        "document.",
    ),
}

# Data-attribute selectors outrank generic wait mentions; auth is the most
# distinctive signal and goes first.
CATEGORY_PRIORITY: tuple[LessonCategory, ...] = (
    LessonCategory.AUTH,
    LessonCategory.SELECTOR,
    LessonCategory.ENV,
    LessonCategory.NAVIGATION,
    LessonCategory.DATA,
    LessonCategory.TIMING,
    LessonCategory.SCRIPT,
)

# Matching this many distinct cues gives full confidence.
FULL_CONFIDENCE_CUES = 3


@dataclass(frozen=True)
class CategoryInference:
    category: LessonCategory
    confidence: float
    match_count: int


def _matched_cues(code_lower: str, category: LessonCategory) -> list[str]:
    return [cue for cue in CATEGORY_CUES[category] if cue in code_lower]


def infer_category(code: str) -> LessonCategory:
    """First category in priority order with a matching cue, else ``other``."""
    code_lower = code.lower()
    for category in CATEGORY_PRIORITY:
        for cue in CATEGORY_CUES[category]:
            if cue in code_lower:
                return category
    return LessonCategory.OTHER


def infer_category_with_confidence(code: str) -> CategoryInference:
    """Category as ``infer_category`` plus a confidence from cue count.

    Confidence is the number of distinct cues of the chosen category found
    in the snippet divided by ``FULL_CONFIDENCE_CUES``, capped at 1.0; it
    is 0.0 for ``other``.
    """
    category = infer_category(code)
    if category is LessonCategory.OTHER:
        return CategoryInference(category=category, confidence=0.0, match_count=0)
    matches = len(_matched_cues(code.lower(), category))
    return CategoryInference(
        category=category,
        confidence=min(matches / FULL_CONFIDENCE_CUES, 1.0),
        match_count=matches,
    )


def get_all_categories() -> list[LessonCategory]:
    return list(LessonCategory)
