"""Pytest fixtures for LLKB tests."""

import logging
from collections.abc import Generator
from datetime import UTC, datetime
from pathlib import Path

import pytest
import structlog

from llkb.core.config import LLKBConfig
from llkb.store.bootstrap import init_store


@pytest.fixture(autouse=True)
def reset_logging_state() -> Generator[None, None, None]:
    """Reset structlog and root logger handlers around each test."""
    structlog.reset_defaults()

    root_logger = logging.getLogger()
    original_handlers = root_logger.handlers[:]
    original_level = root_logger.level
    for handler in original_handlers:
        root_logger.removeHandler(handler)

    yield

    structlog.reset_defaults()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
    for handler in original_handlers:
        root_logger.addHandler(handler)
    root_logger.setLevel(original_level)


@pytest.fixture
def now() -> datetime:
    """Fixed reference time, mid-day so local and UTC days agree more often."""
    return datetime(2026, 3, 15, 12, 0, tzinfo=UTC)


@pytest.fixture
def llkb_root(tmp_path: Path) -> Path:
    """An initialized store root with default configuration."""
    root = tmp_path / "llkb"
    init_store(root)
    return root


@pytest.fixture
def make_store(tmp_path: Path):
    """Factory for initialized stores with a custom configuration."""

    def _make(config: LLKBConfig, name: str = "custom") -> Path:
        root = tmp_path / name
        init_store(root, config=config)
        return root

    return _make
