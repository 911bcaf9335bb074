"""Store initialization.

``init_store`` is idempotent: it creates whatever is missing and never
overwrites an existing file, so custom seed patterns and accumulated
lessons survive repeated initialization.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from llkb.core.config import LLKBConfig, dump_config
from llkb.core.errors import SchemaInvalidError
from llkb.core.logging import get_logger
from llkb.store.files import load_json, save_atomic, write_text_atomic
from llkb.store.models import (
    AnalyticsSnapshot,
    ComponentsFile,
    LearnedPatternsFile,
    LessonsFile,
)
from llkb.store.paths import StorePaths
from llkb.utils.time import utc_now

_logger = get_logger("store.bootstrap")

CONFIG_HEADER = "# LLKB configuration\n"
EMPTY_PATTERNS_DESCRIPTION = "LLKB learned patterns - populated during generation"
SEEDED_PATTERNS_DESCRIPTION = "LLKB seed patterns - augmented during generation"


@dataclass
class InitResult:
    """Files created and files left untouched by ``init_store``."""

    root: Path
    created: list[str] = field(default_factory=list)
    existing: list[str] = field(default_factory=list)
    seed_patterns: int = 0

    def __repr__(self) -> str:
        return f"InitResult(root={self.root}, created={self.created})"


def _install_seed_patterns(path: Path, seed_file: Path | None) -> int:
    if seed_file is not None and seed_file.exists():
        raw = load_json(seed_file)
        if not isinstance(raw, dict):
            raise SchemaInvalidError(seed_file, "seed patterns must be a JSON object")
        seeded = LearnedPatternsFile.model_validate(
            {**raw, "lastUpdated": utc_now(), "description": SEEDED_PATTERNS_DESCRIPTION}
        )
        save_atomic(path, seeded)
        return len(seeded.patterns)

    save_atomic(path, LearnedPatternsFile(description=EMPTY_PATTERNS_DESCRIPTION))
    return 0


def init_store(
    root: Path | str,
    config: LLKBConfig | None = None,
    seed_file: Path | None = None,
) -> InitResult:
    """Create a store root with default files.

    Args:
        root: Directory to initialize (created with parents).
        config: Policy written to ``config.yml`` when none exists.
        seed_file: Optional ``learned-patterns.json`` to copy as the seed set.

    Returns:
        Which files were created and which already existed.
    """
    paths = StorePaths.of(root)
    result = InitResult(root=paths.root)
    paths.root.mkdir(parents=True, exist_ok=True)
    paths.history_dir.mkdir(exist_ok=True)

    if paths.config.exists():
        result.existing.append(paths.config.name)
    else:
        write_text_atomic(paths.config, CONFIG_HEADER + dump_config(config or LLKBConfig()))
        result.created.append(paths.config.name)

    defaults: list[tuple[Path, object]] = [
        (paths.lessons, LessonsFile()),
        (paths.components, ComponentsFile()),
        (paths.analytics, AnalyticsSnapshot()),
    ]
    for path, empty in defaults:
        if path.exists():
            result.existing.append(path.name)
        else:
            save_atomic(path, empty)
            result.created.append(path.name)

    if paths.patterns.exists():
        result.existing.append(paths.patterns.name)
    else:
        result.seed_patterns = _install_seed_patterns(paths.patterns, seed_file)
        result.created.append(paths.patterns.name)

    _logger.info(
        "store_initialized",
        root=str(paths.root),
        created=result.created,
        existing=len(result.existing),
    )
    return result
