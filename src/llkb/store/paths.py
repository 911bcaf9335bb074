"""On-disk layout of an LLKB store root."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from pathlib import Path

CONFIG_FILE = "config.yml"
LESSONS_FILE = "lessons.json"
COMPONENTS_FILE = "components.json"
ANALYTICS_FILE = "analytics.json"
PATTERNS_FILE = "learned-patterns.json"
HISTORY_DIR = "history"
HISTORY_SUFFIX = ".jsonl"


@dataclass(frozen=True)
class StorePaths:
    """Resolved file locations for one store root.

    Every public operation receives its root explicitly, so several stores
    can coexist in one process.
    """

    root: Path

    @classmethod
    def of(cls, root: Path | str) -> StorePaths:
        return cls(Path(root))

    @property
    def config(self) -> Path:
        return self.root / CONFIG_FILE

    @property
    def lessons(self) -> Path:
        return self.root / LESSONS_FILE

    @property
    def components(self) -> Path:
        return self.root / COMPONENTS_FILE

    @property
    def analytics(self) -> Path:
        return self.root / ANALYTICS_FILE

    @property
    def patterns(self) -> Path:
        return self.root / PATTERNS_FILE

    @property
    def history_dir(self) -> Path:
        return self.root / HISTORY_DIR

    def history_file(self, day: date) -> Path:
        """Partition file for one calendar day: ``history/YYYY-MM-DD.jsonl``."""
        return self.history_dir / f"{day.isoformat()}{HISTORY_SUFFIX}"
