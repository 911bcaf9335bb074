"""Exception hierarchy for the knowledge base.

All LLKB exceptions inherit from LLKBError, enabling callers to catch broad
(LLKBError) or narrow (e.g., LockContentionError). Rate limiting is not an
exception: it is a boolean signal consulted before extraction.
"""

from __future__ import annotations

from pathlib import Path


class LLKBError(Exception):
    """Base exception for all knowledge-base errors."""


class StoreNotFoundError(LLKBError):
    """Raised when the store root, its config or a core record file is missing.

    The store was never initialized; the message tells the caller how to fix it.
    """

    def __init__(self, path: Path, what: str = "LLKB store") -> None:
        self.path = path
        super().__init__(
            f"{what} not found at {path}. "
            "Initialize the store first with llkb.init_store(root)."
        )


class SchemaInvalidError(LLKBError):
    """Raised when a structured file is malformed or fails validation.

    Content that cannot be parsed is never silently discarded.
    """

    def __init__(self, path: Path, reason: str) -> None:
        self.path = path
        self.reason = reason
        super().__init__(f"Invalid content in {path}: {reason}")


class LockContentionError(LLKBError):
    """Raised when the lock retry budget is exhausted on a locked update.

    Surfaced so the caller can retry later.
    """

    def __init__(self, path: Path, attempts: int) -> None:
        self.path = path
        self.attempts = attempts
        super().__init__(f"Could not lock {path} after {attempts} attempts")


class RecordNotFoundError(LLKBError):
    """Raised when a lesson or component id does not exist in the store."""
