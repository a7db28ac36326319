"""Experimentation: A/B bucketing, experiment analysis and anomaly detection."""

from cadence.experiments.engine import (
    ANALYZED_METRICS,
    PREDICTION_ACCURACY,
    TIME_ESTIMATION_ERROR,
    ExperimentationEngine,
    is_in_treatment,
    metric_values,
    stable_user_hash,
)

__all__ = [
    "ANALYZED_METRICS",
    "ExperimentationEngine",
    "PREDICTION_ACCURACY",
    "TIME_ESTIMATION_ERROR",
    "is_in_treatment",
    "metric_values",
    "stable_user_hash",
]
