"""Log output for the knowledge base.

Every module logs through ``get_logger(component)``; nothing is emitted in a
particular shape until the host calls ``configure_logging``. Events are
snake_case names with keyword fields, so the same call renders as a console
line or as one JSON object.

Inside ``with_context(JourneyContext(...))`` each entry also carries the
journey id and a per-invocation run id:

    configure_logging(level="DEBUG", format="json")
    log = get_logger("recorder")
    with with_context(JourneyContext(journey_id="JRN-0001")):
        log.info("lesson_created", lesson_id="L001")
"""

from __future__ import annotations

import logging
import sys
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass, field
from datetime import UTC, datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Literal

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

# Substrings of field names whose values are replaced before rendering
SENSITIVE_PATTERNS = frozenset({
    "api_key",
    "apikey",
    "token",
    "secret",
    "password",
    "credential",
    "bearer",
    "authorization",
})


@dataclass(frozen=True)
class JourneyContext:
    """Fields stamped on every entry logged while a journey is being processed.

    ``run_id`` tells apart two invocations for the same journey; a fresh
    uuid4 is used when the caller has none. ``llkb_root`` is included only
    when given.
    """

    journey_id: str
    run_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    llkb_root: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Fields to merge into a log entry."""
        result: dict[str, Any] = {
            "journey_id": self.journey_id,
            "run_id": self.run_id,
        }
        if self.llkb_root is not None:
            result["llkb_root"] = self.llkb_root
        return result


_current_context: ContextVar[JourneyContext | None] = ContextVar(
    "llkb_context", default=None
)


def get_current_context() -> JourneyContext | None:
    """The JourneyContext of the enclosing ``with_context`` block, if any."""
    return _current_context.get()


@contextmanager
def with_context(ctx: JourneyContext) -> Iterator[JourneyContext]:
    """Make ``ctx`` current until the block exits; nested blocks restore the outer one."""
    token = _current_context.set(ctx)
    try:
        yield ctx
    finally:
        _current_context.reset(token)


def _mask(key: str, value: Any) -> Any:
    lowered = key.lower()
    if any(pattern in lowered for pattern in SENSITIVE_PATTERNS):
        return "[REDACTED]"
    return value


def _redact_secrets(
    logger: WrappedLogger,
    method_name: str,
    event_dict: EventDict,
) -> EventDict:
    """Mask credential-like fields, including keys of dict-valued fields."""
    redacted: EventDict = {}
    for key, value in event_dict.items():
        if isinstance(value, dict):
            redacted[key] = {k: _mask(k, v) for k, v in value.items()}
        else:
            redacted[key] = _mask(key, value)
    return redacted


def _stamp_utc(
    logger: WrappedLogger,
    method_name: str,
    event_dict: EventDict,
) -> EventDict:
    event_dict["timestamp"] = datetime.now(UTC).isoformat()
    return event_dict


def _merge_journey(
    logger: WrappedLogger,
    method_name: str,
    event_dict: EventDict,
) -> EventDict:
    # fields passed to the call win over the context
    ctx = get_current_context()
    if ctx is not None:
        for key, value in ctx.to_dict().items():
            event_dict.setdefault(key, value)
    return event_dict


class LLKBLogger:
    """Logger for one LLKB component, e.g. ``recorder`` or ``history``.

    Modules create these at import time, before the host configures
    logging, so the structlog logger is looked up on every call rather than
    held.
    """

    def __init__(self, component: str, **initial_context: Any) -> None:
        self._component = component
        self._context: dict[str, Any] = {"component": component, **initial_context}

    def _target(self) -> structlog.stdlib.BoundLogger:
        bound: structlog.stdlib.BoundLogger = structlog.get_logger().bind(**self._context)
        return bound

    def bind(self, **context: Any) -> LLKBLogger:
        """Copy of this logger with extra fields on every entry."""
        return self._derive({**self._context, **context})

    def unbind(self, *keys: str) -> LLKBLogger:
        return self._derive({k: v for k, v in self._context.items() if k not in keys})

    def _derive(self, context: dict[str, Any]) -> LLKBLogger:
        derived = LLKBLogger.__new__(LLKBLogger)
        derived._component = self._component
        derived._context = context
        return derived

    def debug(self, event: str, **kw: Any) -> None:
        self._target().debug(event, **kw)

    def info(self, event: str, **kw: Any) -> None:
        self._target().info(event, **kw)

    def warning(self, event: str, **kw: Any) -> None:
        self._target().warning(event, **kw)

    def error(self, event: str, **kw: Any) -> None:
        self._target().error(event, **kw)

    def exception(self, event: str, **kw: Any) -> None:
        self._target().exception(event, **kw)


def _processor_chain(
    renderer: Processor,
    include_timestamps: bool,
    include_context: bool,
) -> list[Processor]:
    chain: list[Processor] = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_log_level,
        _redact_secrets,
    ]
    if include_context:
        chain.append(_merge_journey)
    if include_timestamps:
        chain.append(_stamp_utc)
    chain.extend([
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        renderer,
    ])
    return chain


def configure_logging(
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO",
    format: Literal["json", "console"] = "console",  # noqa: A002
    file_path: Path | None = None,
    max_file_size_mb: int = 10,
    backup_count: int = 3,
    include_timestamps: bool = True,
    include_context: bool = True,
) -> None:
    """Route LLKB log entries to stderr or a rotating file.

    Replaces any handlers already on the root logger, so calling it again
    reconfigures rather than duplicates output.

    Args:
        level: Entries below this level are dropped.
        format: One JSON object per line, or coloured console text.
        file_path: Write here (rotating) instead of stderr; parents are created.
        max_file_size_mb: Rotation size for ``file_path``.
        backup_count: Rotated files kept next to ``file_path``.
        include_timestamps: Add a UTC ``timestamp`` field.
        include_context: Merge the current JourneyContext into each entry.
    """
    log_level = getattr(logging, level)

    handler: logging.Handler
    if file_path is not None:
        file_path.parent.mkdir(parents=True, exist_ok=True)
        handler = RotatingFileHandler(
            file_path,
            maxBytes=max_file_size_mb * 1024 * 1024,
            backupCount=backup_count,
            encoding="utf-8",
        )
    else:
        handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(log_level)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    for existing in root_logger.handlers[:]:
        root_logger.removeHandler(existing)
    root_logger.addHandler(handler)

    renderer: Processor
    if format == "json":
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=file_path is None)

    # no logger caching: import-time LLKBLoggers must see a later reconfiguration
    structlog.configure(
        processors=_processor_chain(renderer, include_timestamps, include_context),
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=False,
    )


def get_logger(component: str, **initial_context: Any) -> LLKBLogger:
    """Logger whose entries carry ``component=<component>`` plus ``initial_context``."""
    return LLKBLogger(component, **initial_context)


__all__ = [
    "JourneyContext",
    "LLKBLogger",
    "SENSITIVE_PATTERNS",
    "configure_logging",
    "get_current_context",
    "get_logger",
    "with_context",
]
