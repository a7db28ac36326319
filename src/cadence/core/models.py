"""Data models for the Cadence engine.

Persisted records (UserWeights, PerformanceMetric, UserSimilarity,
ExperimentConfig, AnomalyRecord) carry to_dict()/from_dict() for the document
store; datetimes are kept as datetime objects and each store backend handles
their encoding. The remaining dataclasses are typed results returned to callers.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from cadence.utils.time import utc_now

NEUTRAL_MULTIPLIER = 1.0
NEUTRAL_RATE = 0.5


# =============================================================================
# Inputs owned by external repositories
# =============================================================================


@dataclass
class Task:
    """A user task as seen by the engine."""

    id: str
    user_id: str | None
    title: str = ""
    description: str | None = None
    category: str | None = None
    due_date: datetime | None = None
    created_at: datetime | None = None
    subtasks: list[str] = field(default_factory=list)
    completed: bool = False


@dataclass
class Habit:
    """A recurring habit; only category and frequency matter for scoring."""

    id: str
    user_id: str
    title: str = ""
    category: str | None = None
    frequency: str = "daily"
    """One of daily, weekly, monthly, custom."""


@dataclass
class User:
    id: str
    name: str = ""


# =============================================================================
# Persisted learning state
# =============================================================================


@dataclass
class UserWeights:
    """Learned weight vector of one user.

    Invariants (enforced by clamp()): multipliers stay in the configured
    multiplier range, rates stay in [0, 1]. Time-to-complete averages are
    seconds and are never clamped.
    """

    user_id: str
    hourly_weights: dict[int, float] = field(default_factory=dict)
    """Hour 0-23 to multiplier."""

    day_weights: dict[int, float] = field(default_factory=dict)
    """Day of week 1-7 (1 = Sunday) to multiplier."""

    category_weights: dict[str, float] = field(default_factory=dict)
    task_success_rates: dict[str, float] = field(default_factory=dict)
    category_success_rates: dict[str, float] = field(default_factory=dict)
    time_to_complete_averages: dict[str, float] = field(default_factory=dict)
    ema_alpha: float = 0.2
    last_updated: datetime = field(default_factory=utc_now)

    @classmethod
    def default(
        cls,
        user_id: str,
        ema_alpha: float = 0.2,
        now: datetime | None = None,
    ) -> UserWeights:
        """Fresh weights with every hour and day at the neutral multiplier."""
        return cls(
            user_id=user_id,
            hourly_weights={hour: NEUTRAL_MULTIPLIER for hour in range(24)},
            day_weights={day: NEUTRAL_MULTIPLIER for day in range(1, 8)},
            ema_alpha=ema_alpha,
            last_updated=now or utc_now(),
        )

    def clamp(self, multiplier_min: float = 0.1, multiplier_max: float = 2.0) -> None:
        """Force every multiplier and rate back inside its allowed range."""
        for weights in (self.hourly_weights, self.day_weights, self.category_weights):
            for key, value in weights.items():
                weights[key] = min(multiplier_max, max(multiplier_min, value))
        for rates in (self.task_success_rates, self.category_success_rates):
            for key, value in rates.items():
                rates[key] = min(1.0, max(0.0, value))

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a document. Integer keys become strings."""
        return {
            "user_id": self.user_id,
            "hourly_weights": {str(k): v for k, v in self.hourly_weights.items()},
            "day_weights": {str(k): v for k, v in self.day_weights.items()},
            "category_weights": dict(self.category_weights),
            "task_success_rates": dict(self.task_success_rates),
            "category_success_rates": dict(self.category_success_rates),
            "time_to_complete_averages": dict(self.time_to_complete_averages),
            "ema_alpha": self.ema_alpha,
            "last_updated": self.last_updated,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> UserWeights:
        return cls(
            user_id=data["user_id"],
            hourly_weights={int(k): float(v) for k, v in data.get("hourly_weights", {}).items()},
            day_weights={int(k): float(v) for k, v in data.get("day_weights", {}).items()},
            category_weights=dict(data.get("category_weights", {})),
            task_success_rates=dict(data.get("task_success_rates", {})),
            category_success_rates=dict(data.get("category_success_rates", {})),
            time_to_complete_averages=dict(data.get("time_to_complete_averages", {})),
            ema_alpha=data.get("ema_alpha", 0.2),
            last_updated=data.get("last_updated") or utc_now(),
        )


@dataclass(frozen=True)
class PerformanceMetric:
    """Immutable record of one prediction and its real outcome."""

    timestamp: datetime
    user_id: str
    task_id: str
    predicted_score: float
    actual_success: bool
    predicted_time_to_complete: float | None = None
    actual_time_to_complete: float | None = None
    category: str | None = None

    def prediction_correct(self, threshold: float = 0.7) -> bool:
        """Whether the score, cut at threshold, matched the outcome."""
        return (self.predicted_score >= threshold) == self.actual_success

    @property
    def time_estimation_error(self) -> float | None:
        """Relative error |predicted - actual| / actual, None when not computable."""
        predicted = self.predicted_time_to_complete
        actual = self.actual_time_to_complete
        if predicted is None or actual is None or actual <= 0:
            return None
        return abs(predicted - actual) / actual

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PerformanceMetric:
        return cls(
            timestamp=data["timestamp"],
            user_id=data["user_id"],
            task_id=data["task_id"],
            predicted_score=float(data["predicted_score"]),
            actual_success=bool(data["actual_success"]),
            predicted_time_to_complete=data.get("predicted_time_to_complete"),
            actual_time_to_complete=data.get("actual_time_to_complete"),
            category=data.get("category"),
        )


@dataclass(frozen=True)
class UserSimilarity:
    """Directional similarity: user_id1 is the subject."""

    user_id1: str
    user_id2: str
    similarity_score: float
    last_updated: datetime

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> UserSimilarity:
        return cls(
            user_id1=data["user_id1"],
            user_id2=data["user_id2"],
            similarity_score=float(data["similarity_score"]),
            last_updated=data["last_updated"],
        )


@dataclass
class ExperimentConfig:
    """An A/B experiment over learning parameters."""

    id: str
    name: str
    start_date: datetime
    end_date: datetime | None
    parameters: dict[str, float] = field(default_factory=dict)
    metrics: dict[str, float] = field(default_factory=dict)
    is_active: bool = True

    def is_running(self, now: datetime) -> bool:
        """Active flag set and end date (if any) not yet reached."""
        if not self.is_active:
            return False
        return self.end_date is None or now <= self.end_date

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ExperimentConfig:
        return cls(
            id=data["id"],
            name=data["name"],
            start_date=data["start_date"],
            end_date=data.get("end_date"),
            parameters=dict(data.get("parameters", {})),
            metrics=dict(data.get("metrics", {})),
            is_active=bool(data.get("is_active", True)),
        )


class AnomalyType(str, Enum):
    """Which aggregate metric an anomaly was raised on."""

    SUCCESS_RATE = "success_rate"
    TIME_ESTIMATION = "time_estimation"
    PREDICTION_ACCURACY = "prediction_accuracy"


@dataclass(frozen=True)
class AnomalyRecord:
    """Immutable audit entry for a metric far outside the user's own history."""

    user_id: str
    timestamp: datetime
    anomaly_type: AnomalyType
    metric: str
    expected_value: float
    actual_value: float
    z_score: float
    description: str

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["anomaly_type"] = self.anomaly_type.value
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AnomalyRecord:
        return cls(
            user_id=data["user_id"],
            timestamp=data["timestamp"],
            anomaly_type=AnomalyType(data["anomaly_type"]),
            metric=data["metric"],
            expected_value=float(data["expected_value"]),
            actual_value=float(data["actual_value"]),
            z_score=float(data["z_score"]),
            description=data["description"],
        )


# =============================================================================
# Results returned to callers
# =============================================================================


@dataclass(frozen=True)
class TaskPriorityScore:
    """Score of one task plus the factor breakdown that produced it."""

    task_id: str
    score: float
    factors: dict[str, float]


@dataclass
class CategoryStats:
    total_tasks: int = 0
    successful_tasks: int = 0
    success_rate: float = 0.0
    average_score: float = 0.0


@dataclass
class PerformanceStats:
    """Aggregated PerformanceMetric rows of one user over a time window.

    prediction_accuracy and time_estimation_error are None when no row in the
    window allows computing them.
    """

    user_id: str
    window_start: datetime
    window_end: datetime
    sample_count: int = 0
    prediction_accuracy: float | None = None
    time_estimation_error: float | None = None
    category_metrics: dict[str, CategoryStats] = field(default_factory=dict)


@dataclass(frozen=True)
class SimilarUser:
    user_id: str
    similarity: float


@dataclass
class CollaborativeRecommendations:
    """Similarity-weighted category success rates and completion times."""

    category_recommendations: dict[str, float] = field(default_factory=dict)
    time_recommendations: dict[str, float] = field(default_factory=dict)
    similar_users: list[SimilarUser] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.similar_users


@dataclass
class InsightsReport:
    """What the engine has learned about one user."""

    user_id: str
    best_hours: list[str]
    best_days: list[str]
    best_categories: list[str]
    performance: PerformanceStats
    collaborative: CollaborativeRecommendations
    generated_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class TaskInsights:
    """Averages over a prioritization pass plus the user's learning insights."""

    user_id: str
    average_factors: dict[str, float] | None
    high_priority_tasks: list[str]
    learning: InsightsReport

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class StatisticalTestResult:
    """Outcome of a Welch two-sample test of treatment against control."""

    t_value: float
    p_value: float
    effect_size: float
    confidence_interval: tuple[float, float]
    degrees_of_freedom: float
    is_significant: bool
    treatment_size: int
    control_size: int


@dataclass
class ExperimentAnalysis:
    """Per-metric comparison of the treatment group against control."""

    experiment_id: str
    experiment_name: str
    start_date: datetime
    end_date: datetime | None
    parameters: dict[str, float]
    recorded_metrics: dict[str, float]
    control_metrics: dict[str, float] = field(default_factory=dict)
    treatment_metrics: dict[str, float] = field(default_factory=dict)
    improvements: dict[str, float] = field(default_factory=dict)
    statistics: dict[str, StatisticalTestResult] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)
