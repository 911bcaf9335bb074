"""Similarity scoring between code patterns.

The score is the Jaccard index of the token sets of the normalized inputs.
All tokens weigh the same. It is symmetric, bounded in ``[0, 1]``, equals
1.0 exactly when the token sets are identical, and 0.0 for disjoint sets.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

from llkb.learning.normalize import normalize_code, tokenize

DEFAULT_SIMILARITY_THRESHOLD = 0.8


@dataclass(frozen=True)
class SimilarPattern:
    """An existing pattern that met the similarity threshold."""

    pattern: str
    similarity: float
    index: int


def token_set(code: str) -> frozenset[str]:
    return frozenset(tokenize(normalize_code(code)))


def jaccard(a: frozenset[str] | set[str], b: frozenset[str] | set[str]) -> float:
    if not a and not b:
        return 1.0
    union = len(a | b)
    return len(a & b) / union


def calculate_similarity(a: str, b: str) -> float:
    """Similarity of two code patterns in ``[0, 1]``."""
    return jaccard(token_set(a), token_set(b))


def is_near_duplicate(a: str, b: str, threshold: float = DEFAULT_SIMILARITY_THRESHOLD) -> bool:
    return calculate_similarity(a, b) >= threshold


def find_similar_patterns(
    candidate: str,
    existing: Sequence[str],
    threshold: float = DEFAULT_SIMILARITY_THRESHOLD,
) -> list[SimilarPattern]:
    """Existing patterns at or above ``threshold``, most similar first.

    Ties keep their input order. Empty input yields an empty list.
    """
    if not existing:
        return []
    candidate_tokens = token_set(candidate)
    matches: list[SimilarPattern] = []
    for i, pattern in enumerate(existing):
        score = jaccard(candidate_tokens, token_set(pattern))
        if score >= threshold:
            matches.append(SimilarPattern(pattern=pattern, similarity=score, index=i))
    matches.sort(key=lambda m: m.similarity, reverse=True)
    return matches


def find_near_duplicates(
    pattern: str,
    candidates: Sequence[str],
    threshold: float = DEFAULT_SIMILARITY_THRESHOLD,
) -> list[int]:
    """Indices of ``candidates`` that are near-duplicates of ``pattern``."""
    return [match.index for match in find_similar_patterns(pattern, candidates, threshold)]
