"""Configuration models for the Cadence engine.

Pydantic models for loading and validating YAML engine configuration. Every
tunable constant of the learning, scoring, analytics and experimentation
components lives here with its default.

Example YAML:
    learning:
      default_learning_rate: 0.1
      ema_alpha: 0.2
    experiments:
      anomaly_z_threshold: 2.5
    storage:
      backend: sqlite
      path: ~/.cadence/cadence.db
"""

from __future__ import annotations

from pathlib import Path
from typing import Literal

import yaml
from pydantic import BaseModel, Field, ValidationError, model_validator

from cadence.core.errors import ConfigurationError

# Environment variable pointing at the default config file
CONFIG_ENV_VAR = "CADENCE_CONFIG"

DEFAULT_DB_PATH = Path.home() / ".cadence" / "cadence.db"


class LearningConfig(BaseModel):
    """Configuration for per-user weight learning."""

    default_learning_rate: float = Field(
        default=0.1,
        gt=0.0,
        le=1.0,
        description="Multiplier step applied per completion/failure when no "
        "experiment overrides it.",
    )
    ema_alpha: float = Field(
        default=0.2,
        gt=0.0,
        le=1.0,
        description="Smoothing factor for success-rate and time-to-complete EMAs.",
    )
    multiplier_min: float = Field(
        default=0.1,
        gt=0.0,
        description="Lower clamp for hourly/daily/category multipliers.",
    )
    multiplier_max: float = Field(
        default=2.0,
        gt=0.0,
        description="Upper clamp for hourly/daily/category multipliers.",
    )
    max_update_retries: int = Field(
        default=5,
        ge=1,
        le=50,
        description="Compare-and-swap attempts before a weight update gives up.",
    )
    defer_triggers: bool = Field(
        default=False,
        description="Run similarity recomputation and anomaly detection as "
        "background tasks instead of inline after each recorded event.",
    )

    @model_validator(mode="after")
    def _validate_multiplier_bounds(self) -> LearningConfig:
        if self.multiplier_min >= self.multiplier_max:
            raise ValueError(
                f"multiplier_min ({self.multiplier_min}) must be below "
                f"multiplier_max ({self.multiplier_max})"
            )
        return self


class ScoringConfig(BaseModel):
    """Factor weights of the base priority score."""

    due_date_weight: float = Field(default=0.4, ge=0.0, le=1.0)
    habit_alignment_weight: float = Field(default=0.3, ge=0.0, le=1.0)
    time_of_day_weight: float = Field(default=0.2, ge=0.0, le=1.0)
    complexity_weight: float = Field(default=0.1, ge=0.0, le=1.0)
    off_peak_complexity_penalty: float = Field(
        default=0.7,
        ge=0.0,
        le=1.0,
        description="Complexity factor multiplier outside the peak hour windows.",
    )

    @model_validator(mode="after")
    def _validate_weights_sum(self) -> ScoringConfig:
        total = (
            self.due_date_weight
            + self.habit_alignment_weight
            + self.time_of_day_weight
            + self.complexity_weight
        )
        if abs(total - 1.0) > 1e-6:
            raise ValueError(f"scoring weights must sum to 1.0, got {total:.4f}")
        return self


class AnalyticsConfig(BaseModel):
    """Configuration for performance aggregation and collaborative blending."""

    metrics_window_days: int = Field(default=7, ge=1, le=365)
    accuracy_threshold: float = Field(
        default=0.7,
        ge=0.0,
        le=1.0,
        description="Predicted score at or above which a task counts as predicted to succeed.",
    )
    top_similar_users: int = Field(default=5, ge=1, le=100)
    hourly_similarity_weight: float = Field(default=0.4, ge=0.0, le=1.0)
    daily_similarity_weight: float = Field(default=0.3, ge=0.0, le=1.0)
    category_similarity_weight: float = Field(default=0.3, ge=0.0, le=1.0)
    collaborative_base: float = Field(
        default=0.7,
        ge=0.0,
        description="Constant part of the collaborative category multiplier.",
    )
    collaborative_weight: float = Field(
        default=0.3,
        ge=0.0,
        description="Share of the collaborative category score in the multiplier.",
    )
    personal_time_weight: float = Field(
        default=0.7,
        ge=0.0,
        le=1.0,
        description="Share of the personal estimate when blending time-to-complete.",
    )


class ExperimentsConfig(BaseModel):
    """Configuration for A/B analysis and anomaly detection."""

    anomaly_z_threshold: float = Field(default=2.5, gt=0.0)
    anomaly_min_samples: int = Field(default=10, ge=2)
    anomaly_history_limit: int = Field(default=100, ge=2)
    significance_level: float = Field(default=0.05, gt=0.0, lt=1.0)
    confidence_critical_value: float = Field(
        default=1.96,
        gt=0.0,
        description="Fixed critical value for the mean-difference interval "
        "(normal approximation).",
    )

    @model_validator(mode="after")
    def _validate_history(self) -> ExperimentsConfig:
        if self.anomaly_history_limit < self.anomaly_min_samples:
            raise ValueError(
                f"anomaly_history_limit ({self.anomaly_history_limit}) must be at least "
                f"anomaly_min_samples ({self.anomaly_min_samples})"
            )
        return self


class CacheConfig(BaseModel):
    """In-process weight cache policy."""

    max_entries: int = Field(default=1024, ge=1)
    ttl_seconds: float = Field(
        default=300.0,
        ge=0.0,
        description="Entry lifetime in seconds. 0 disables expiry.",
    )


class StorageConfig(BaseModel):
    """Which document store backs the engine's own state."""

    backend: Literal["memory", "sqlite"] = Field(default="sqlite")
    path: Path | None = Field(
        default=None,
        description="SQLite database file. Defaults to ~/.cadence/cadence.db.",
    )

    def resolved_path(self) -> Path:
        return (self.path or DEFAULT_DB_PATH).expanduser()


class LogConfig(BaseModel):
    """Configuration for structured logging."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(default="INFO")
    format: Literal["json", "console"] = Field(default="console")
    file_path: Path | None = Field(default=None)


class CadenceConfig(BaseModel):
    """Top-level engine configuration."""

    learning: LearningConfig = Field(default_factory=LearningConfig)
    scoring: ScoringConfig = Field(default_factory=ScoringConfig)
    analytics: AnalyticsConfig = Field(default_factory=AnalyticsConfig)
    experiments: ExperimentsConfig = Field(default_factory=ExperimentsConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    logging: LogConfig = Field(default_factory=LogConfig)

    @classmethod
    def from_yaml(cls, path: Path) -> CadenceConfig:
        """Load configuration from a YAML file.

        Raises:
            ConfigurationError: If the file is missing, unparseable or invalid.
        """
        try:
            with open(path) as f:
                text = f.read()
        except OSError as exc:
            raise ConfigurationError(f"Cannot read config file {path}: {exc}") from exc
        return cls.from_yaml_string(text)

    @classmethod
    def from_yaml_string(cls, yaml_str: str) -> CadenceConfig:
        """Load configuration from a YAML string. An empty document yields defaults."""
        try:
            data = yaml.safe_load(yaml_str) or {}
            return cls.model_validate(data)
        except (yaml.YAMLError, ValidationError) as exc:
            raise ConfigurationError(f"Invalid configuration: {exc}") from exc


__all__ = [
    "AnalyticsConfig",
    "CONFIG_ENV_VAR",
    "CacheConfig",
    "CadenceConfig",
    "ExperimentsConfig",
    "LearningConfig",
    "LogConfig",
    "ScoringConfig",
    "StorageConfig",
]
