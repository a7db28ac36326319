"""A/B experiments over learning parameters, and anomaly detection.

Users are bucketed deterministically: the first 8 bytes of the SHA-256 digest
of the UTF-8 user id, read as a big-endian unsigned integer, is even for the
treatment group and odd for control. The assignment therefore survives
process restarts and does not depend on the experiment.

Experiment analysis partitions every PerformanceMetric row inside the
experiment's window by that bucket and compares two per-row metrics:

    timeEstimationError  |predicted - actual| / actual   (rows with both times)
    predictionAccuracy   1.0 if (predicted ≥ 0.7) == actual outcome else 0.0
"""

from __future__ import annotations

import hashlib
import uuid
from collections.abc import Callable
from datetime import datetime, timedelta

from cadence.core.config import ExperimentsConfig
from cadence.core.errors import ExperimentNotFoundError
from cadence.core.logging import get_logger
from cadence.core.models import (
    AnomalyRecord,
    AnomalyType,
    ExperimentAnalysis,
    ExperimentConfig,
    PerformanceMetric,
)
from cadence.learning.analytics import CollaborativeAnalytics
from cadence.learning.statistics import mean, welch_t_test, zscore_anomaly
from cadence.storage.base import (
    ANOMALIES_COLLECTION,
    EXPERIMENTS_COLLECTION,
    METRICS_COLLECTION,
    DocumentStore,
)
from cadence.utils.time import utc_now

_logger = get_logger("experiments")

TIME_ESTIMATION_ERROR = "timeEstimationError"
PREDICTION_ACCURACY = "predictionAccuracy"
ANALYZED_METRICS = (TIME_ESTIMATION_ERROR, PREDICTION_ACCURACY)


def stable_user_hash(user_id: str) -> int:
    """64-bit hash of a user id, identical across processes and platforms."""
    digest = hashlib.sha256(user_id.encode("utf-8")).digest()
    return int.from_bytes(digest[:8], "big")


def is_in_treatment(user_id: str) -> bool:
    return stable_user_hash(user_id) % 2 == 0


def metric_values(metric: PerformanceMetric, accuracy_threshold: float = 0.7) -> dict[str, float]:
    """Per-row values of the analyzed experiment metrics."""
    values = {PREDICTION_ACCURACY: 1.0 if metric.prediction_correct(accuracy_threshold) else 0.0}
    error = metric.time_estimation_error
    if error is not None:
        values[TIME_ESTIMATION_ERROR] = error
    return values


class ExperimentationEngine:
    """Creates and analyzes experiments and watches for anomalous behaviour."""

    def __init__(
        self,
        store: DocumentStore,
        analytics: CollaborativeAnalytics,
        config: ExperimentsConfig | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._store = store
        self._analytics = analytics
        self.config = config or ExperimentsConfig()
        self._clock = clock

    @property
    def accuracy_threshold(self) -> float:
        return self._analytics.config.accuracy_threshold

    # ─────────────────────────────────────────────────────────────────────
    # Experiment lifecycle
    # ─────────────────────────────────────────────────────────────────────

    async def create_experiment(
        self,
        name: str,
        parameters: dict[str, float],
        duration_days: int,
        now: datetime | None = None,
    ) -> ExperimentConfig:
        """Store a new active experiment spanning [now, now + duration_days].

        Raises:
            ValueError: If duration_days is not positive.
        """
        if duration_days <= 0:
            raise ValueError(f"duration_days must be positive, got {duration_days}")
        start = now or self._clock()
        experiment = ExperimentConfig(
            id=str(uuid.uuid4()),
            name=name,
            start_date=start,
            end_date=start + timedelta(days=duration_days),
            parameters={k: float(v) for k, v in parameters.items()},
        )
        await self._store.insert_one(EXPERIMENTS_COLLECTION, experiment.to_dict())
        _logger.info(
            "experiment_created",
            experiment_id=experiment.id,
            name=name,
            parameters=experiment.parameters,
            duration_days=duration_days,
        )
        return experiment

    async def get_experiment(self, experiment_id: str) -> ExperimentConfig:
        doc = await self._store.find_one(EXPERIMENTS_COLLECTION, {"id": experiment_id})
        if doc is None:
            raise ExperimentNotFoundError(experiment_id)
        return ExperimentConfig.from_dict(doc)

    async def list_experiments(self, active_only: bool = False) -> list[ExperimentConfig]:
        """Experiments, most recently started first."""
        docs = await self._store.find(
            EXPERIMENTS_COLLECTION,
            {"is_active": True} if active_only else None,
            sort=[("start_date", -1)],
        )
        return [ExperimentConfig.from_dict(doc) for doc in docs]

    async def get_active_experiment(self, now: datetime | None = None) -> ExperimentConfig | None:
        """The earliest-started experiment that is active and not yet over."""
        moment = now or self._clock()
        docs = await self._store.find(
            EXPERIMENTS_COLLECTION, {"is_active": True}, sort=[("start_date", 1)]
        )
        for doc in docs:
            experiment = ExperimentConfig.from_dict(doc)
            if experiment.is_running(moment):
                return experiment
        return None

    async def get_experiment_parameters(
        self, user_id: str, now: datetime | None = None
    ) -> dict[str, float]:
        """Parameter overrides for the user; empty for control or without an experiment."""
        experiment = await self.get_active_experiment(now)
        if experiment is None or not is_in_treatment(user_id):
            return {}
        return dict(experiment.parameters)

    async def record_experiment_metrics(
        self, experiment_id: str, metrics: dict[str, float]
    ) -> None:
        """Overwrite the experiment's recorded metrics."""
        updated = await self._store.update_one(
            EXPERIMENTS_COLLECTION,
            {"id": experiment_id},
            {"metrics": {k: float(v) for k, v in metrics.items()}},
        )
        if not updated:
            raise ExperimentNotFoundError(experiment_id)

    async def deactivate_experiment(self, experiment_id: str) -> None:
        updated = await self._store.update_one(
            EXPERIMENTS_COLLECTION, {"id": experiment_id}, {"is_active": False}
        )
        if not updated:
            raise ExperimentNotFoundError(experiment_id)
        _logger.info("experiment_deactivated", experiment_id=experiment_id)

    # ─────────────────────────────────────────────────────────────────────
    # Analysis
    # ─────────────────────────────────────────────────────────────────────

    async def analyze_experiment(
        self, experiment_id: str, now: datetime | None = None
    ) -> ExperimentAnalysis:
        """Compare treatment against control within the experiment's window.

        Means are reported for every metric with data in a group. Improvement
        is (treatment - control) / control × 100 and is omitted when the
        control mean is zero. A Welch t-test is reported only when both groups
        have at least two samples and some variance.

        Raises:
            ExperimentNotFoundError: If no experiment has this id.
        """
        experiment = await self.get_experiment(experiment_id)
        moment = now or self._clock()
        window_end = min(experiment.end_date, moment) if experiment.end_date else moment
        docs = await self._store.find(
            METRICS_COLLECTION,
            {"timestamp": {"$gte": experiment.start_date, "$lte": window_end}},
        )

        treatment: dict[str, list[float]] = {name: [] for name in ANALYZED_METRICS}
        control: dict[str, list[float]] = {name: [] for name in ANALYZED_METRICS}
        for doc in docs:
            metric = PerformanceMetric.from_dict(doc)
            group = treatment if is_in_treatment(metric.user_id) else control
            for name, value in metric_values(metric, self.accuracy_threshold).items():
                group[name].append(value)

        analysis = ExperimentAnalysis(
            experiment_id=experiment.id,
            experiment_name=experiment.name,
            start_date=experiment.start_date,
            end_date=experiment.end_date,
            parameters=dict(experiment.parameters),
            recorded_metrics=dict(experiment.metrics),
        )
        for name in ANALYZED_METRICS:
            if control[name]:
                analysis.control_metrics[name] = mean(control[name])
            if treatment[name]:
                analysis.treatment_metrics[name] = mean(treatment[name])

            baseline = analysis.control_metrics.get(name)
            observed = analysis.treatment_metrics.get(name)
            if baseline is not None and observed is not None and baseline != 0:
                analysis.improvements[name] = (observed - baseline) / baseline * 100

            result = welch_t_test(
                treatment[name],
                control[name],
                significance_level=self.config.significance_level,
                critical_value=self.config.confidence_critical_value,
            )
            if result is not None:
                analysis.statistics[name] = result

        _logger.info(
            "experiment_analyzed",
            experiment_id=experiment.id,
            rows=len(docs),
            significant=[k for k, v in analysis.statistics.items() if v.is_significant],
        )
        return analysis

    # ─────────────────────────────────────────────────────────────────────
    # Anomalies
    # ─────────────────────────────────────────────────────────────────────

    async def _recent_metrics(self, filter: dict) -> list[PerformanceMetric]:  # noqa: A002
        docs = await self._store.find(
            METRICS_COLLECTION,
            filter,
            sort=[("timestamp", -1)],
            limit=self.config.anomaly_history_limit,
        )
        return [PerformanceMetric.from_dict(doc) for doc in docs]

    def _check(
        self,
        user_id: str,
        history: list[float],
        current: float,
        anomaly_type: AnomalyType,
        metric: str,
        description: str,
        timestamp: datetime,
    ) -> AnomalyRecord | None:
        flagged = zscore_anomaly(
            history,
            current,
            threshold=self.config.anomaly_z_threshold,
            min_samples=self.config.anomaly_min_samples,
        )
        if flagged is None:
            return None
        expected, z_score = flagged
        return AnomalyRecord(
            user_id=user_id,
            timestamp=timestamp,
            anomaly_type=anomaly_type,
            metric=metric,
            expected_value=expected,
            actual_value=current,
            z_score=z_score,
            description=description,
        )

    async def detect_anomalies(
        self, user_id: str, now: datetime | None = None
    ) -> list[AnomalyRecord]:
        """Flag current performance that is far outside the user's history.

        Current values are the trailing-window aggregates; history is the
        per-row value of the user's most recent metric rows. Histories that
        are too short or flat are skipped.
        """
        moment = now or self._clock()
        stats = await self._analytics.get_performance_metrics(user_id, now=moment)
        found: list[AnomalyRecord] = []

        for category, category_stats in stats.category_metrics.items():
            rows = await self._recent_metrics({"user_id": user_id, "category": category})
            record = self._check(
                user_id,
                [1.0 if m.actual_success else 0.0 for m in rows],
                category_stats.success_rate,
                AnomalyType.SUCCESS_RATE,
                category,
                f"Unusual success rate detected for category: {category}",
                moment,
            )
            if record is not None:
                found.append(record)

        if stats.time_estimation_error is not None:
            rows = await self._recent_metrics(
                {
                    "user_id": user_id,
                    "predicted_time_to_complete": {"$exists": True},
                    "actual_time_to_complete": {"$exists": True},
                }
            )
            errors = [m.time_estimation_error for m in rows]
            record = self._check(
                user_id,
                [e for e in errors if e is not None],
                stats.time_estimation_error,
                AnomalyType.TIME_ESTIMATION,
                "error_rate",
                "Unusual time estimation error detected",
                moment,
            )
            if record is not None:
                found.append(record)

        if stats.prediction_accuracy is not None:
            rows = await self._recent_metrics({"user_id": user_id})
            record = self._check(
                user_id,
                [1.0 if m.prediction_correct(self.accuracy_threshold) else 0.0 for m in rows],
                stats.prediction_accuracy,
                AnomalyType.PREDICTION_ACCURACY,
                "accuracy",
                "Unusual prediction accuracy detected",
                moment,
            )
            if record is not None:
                found.append(record)

        if found:
            await self._store.insert_many(
                ANOMALIES_COLLECTION, [record.to_dict() for record in found]
            )
            for record in found:
                _logger.warning(
                    "anomaly_detected",
                    user_id=user_id,
                    anomaly_type=record.anomaly_type.value,
                    metric=record.metric,
                    z_score=round(record.z_score, 3),
                )
        return found

    async def get_anomalies(self, user_id: str, limit: int = 50) -> list[AnomalyRecord]:
        """Most recent anomalies of a user first."""
        docs = await self._store.find(
            ANOMALIES_COLLECTION,
            {"user_id": user_id},
            sort=[("timestamp", -1)],
            limit=limit,
        )
        return [AnomalyRecord.from_dict(doc) for doc in docs]
