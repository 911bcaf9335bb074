"""Operator policy for an LLKB store (``config.yml``).

The file is YAML with camelCase keys. Models accept either the camelCase
alias or the Python field name, reject unknown keys, and bound every numeric
knob so a typo cannot silently disable a limit.
"""

from __future__ import annotations

from pathlib import Path
from typing import Literal

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from llkb.core.errors import SchemaInvalidError, StoreNotFoundError
from llkb.store.paths import StorePaths

CONFIG_VERSION = "1.0.0"


class _ConfigModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="forbid",
    )


class LearningConfig(_ConfigModel):
    """Master switch for recording new observations."""

    enabled: bool = Field(
        default=True,
        description="When disabled, observations are matched but never create lessons.",
    )


class ExtractionConfig(_ConfigModel):
    """Limits on how often new lessons and components may be created."""

    max_predictive_per_day: int = Field(
        default=10,
        ge=0,
        description="Maximum extraction events (lessons or components created) per day.",
    )
    max_predictive_per_journey: int = Field(
        default=3,
        ge=0,
        description="Maximum extraction events per journey per day.",
    )
    similarity_threshold: float = Field(
        default=0.8,
        ge=0.0,
        le=1.0,
        description="Similarity at or above which two patterns are near-duplicates.",
    )
    min_lines_for_extraction: int = Field(
        default=1,
        ge=1,
        description="Components shorter than this many lines are not extracted.",
    )


class RetentionConfig(_ConfigModel):
    """Archival rule for lessons that stopped earning their keep."""

    min_confidence: float = Field(default=0.3, ge=0.0, le=1.0)
    min_occurrences: int = Field(default=2, ge=1)
    archive_after_days: int = Field(
        default=90,
        ge=1,
        description="A lesson is only archived once it has been idle this long.",
    )


class HistoryConfig(_ConfigModel):
    """Daily event partitions."""

    retention_days: int = Field(
        default=365,
        ge=1,
        description="Partitions older than this are deleted by prune.",
    )
    day_boundary: Literal["utc", "local"] = Field(
        default="utc",
        description="Which calendar a partition's day is taken from.",
    )


class InjectionConfig(_ConfigModel):
    """How lessons are selected for a consumer query."""

    prioritize_by_confidence: bool = True
    max_lessons: int = Field(default=10, ge=1)
    min_relevance: float = Field(default=0.2, ge=0.0, le=1.0)


class StalenessConfig(_ConfigModel):
    """Thresholds for the update/review/skip recommendation."""

    update_min_new_lessons: int = Field(
        default=5,
        ge=0,
        description="Recommend update when more than this many lessons are new.",
    )
    update_min_new_components: int = Field(
        default=2,
        ge=0,
        description="Recommend update when more than this many components are new.",
    )
    review_after_days: int = Field(
        default=30,
        ge=0,
        description="Recommend review when the consumer is older than this.",
    )


class AnalyticsConfig(_ConfigModel):
    """Review flags computed by the analytics rebuild."""

    review_threshold: float = Field(default=0.4, ge=0.0, le=1.0)
    low_usage_uses: int = Field(default=2, ge=0)
    low_usage_age_days: int = Field(default=30, ge=0)


class LLKBConfig(_ConfigModel):
    """Complete store configuration as persisted in ``config.yml``."""

    version: str = CONFIG_VERSION
    learning: LearningConfig = Field(default_factory=LearningConfig)
    extraction: ExtractionConfig = Field(default_factory=ExtractionConfig)
    retention: RetentionConfig = Field(default_factory=RetentionConfig)
    history: HistoryConfig = Field(default_factory=HistoryConfig)
    injection: InjectionConfig = Field(default_factory=InjectionConfig)
    staleness: StalenessConfig = Field(default_factory=StalenessConfig)
    analytics: AnalyticsConfig = Field(default_factory=AnalyticsConfig)

    @classmethod
    def from_yaml_string(cls, yaml_str: str) -> LLKBConfig:
        """Load configuration from a YAML string (empty documents give defaults)."""
        data = yaml.safe_load(yaml_str) or {}
        return cls.model_validate(data)


def load_config(root: Path | str, required: bool = True) -> LLKBConfig:
    """Load and validate ``config.yml`` under a store root.

    Args:
        root: Store root directory.
        required: When False, a missing root or config yields defaults
            instead of raising.

    Raises:
        StoreNotFoundError: Root or config file missing and ``required``.
        SchemaInvalidError: The file is not valid YAML or fails validation.
    """
    paths = StorePaths.of(root)
    if not paths.root.is_dir():
        if required:
            raise StoreNotFoundError(paths.root)
        return LLKBConfig()
    if not paths.config.exists():
        if required:
            raise StoreNotFoundError(paths.config, what="LLKB config")
        return LLKBConfig()

    try:
        return LLKBConfig.from_yaml_string(paths.config.read_text(encoding="utf-8"))
    except UnicodeDecodeError as exc:
        raise SchemaInvalidError(paths.config, f"not valid UTF-8: {exc}") from exc
    except yaml.YAMLError as exc:
        raise SchemaInvalidError(paths.config, f"malformed YAML: {exc}") from exc
    except ValidationError as exc:
        raise SchemaInvalidError(paths.config, str(exc)) from exc


def dump_config(config: LLKBConfig) -> str:
    """Render a config as the YAML written to ``config.yml``."""
    data = config.model_dump(mode="json", by_alias=True)
    return yaml.safe_dump(data, default_flow_style=False, sort_keys=False)
