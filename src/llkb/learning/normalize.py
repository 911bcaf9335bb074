"""Canonical form, fingerprint and token set of a code snippet.

Normalization erases incidental variation so that structurally identical
snippets compare equal:

- string literal contents ('...', "...", `...`) become ``<STRING>``
- numeric literals become ``<NUMBER>``
- names introduced by ``const``/``let``/``var`` become ``<VAR>``
- runs of whitespace collapse to one space; the result is stripped
"""

from __future__ import annotations

import hashlib
import re

FINGERPRINT_LENGTH = 16

_STRING_RE = re.compile(
    r"'(?:[^'\\\n]|\\.)*'"
    r'|"(?:[^"\\\n]|\\.)*"'
    r"|`(?:[^`\\]|\\.)*`",
    re.DOTALL,
)
_NUMBER_RE = re.compile(r"\b\d+(?:\.\d+)?\b")
_DECLARATION_RE = re.compile(r"\b(const|let|var)\s+[A-Za-z_$][\w$]*")
_WHITESPACE_RE = re.compile(r"\s+")
_TOKEN_SPLIT_RE = re.compile(r"[\s.,;:(){}\[\]<>]+")

# Each pass only removes variation, so the fixed point is reached quickly.
_MAX_PASSES = 4


def _normalize_once(code: str) -> str:
    result = _STRING_RE.sub("<STRING>", code)
    result = _NUMBER_RE.sub("<NUMBER>", result)
    result = _DECLARATION_RE.sub(r"\1 <VAR>", result)
    return _WHITESPACE_RE.sub(" ", result).strip()


def normalize_code(code: str) -> str:
    """Return the canonical form of ``code``.

    Deterministic and idempotent: ``normalize_code(normalize_code(c))``
    equals ``normalize_code(c)`` for every input.
    """
    current = _normalize_once(code)
    for _ in range(_MAX_PASSES):
        following = _normalize_once(current)
        if following == current:
            break
        current = following
    return current


def hash_code(normalized: str) -> str:
    """Short, stable fingerprint (hex) of a normalized pattern."""
    digest = hashlib.sha256(normalized.encode("utf-8")).hexdigest()
    return digest[:FINGERPRINT_LENGTH]


def tokenize(normalized: str) -> set[str]:
    """Set of significant tokens, split on whitespace and punctuation."""
    return {token for token in _TOKEN_SPLIT_RE.split(normalized) if token}


def count_lines(code: str) -> int:
    """Number of non-blank lines."""
    return sum(1 for line in code.splitlines() if line.strip())
