"""Learning module: weight storage, scoring, feedback and collaborative analytics."""

from cadence.learning.analytics import CollaborativeAnalytics, summarize_metrics
from cadence.learning.feedback import LEARNING_RATE_PARAMETER, LearningFeedbackLoop
from cadence.learning.prioritizer import PrioritizationService
from cadence.learning.scorer import (
    PriorityScorer,
    complexity_factor,
    due_date_factor,
    habit_alignment_factor,
    time_of_day_factor,
)
from cadence.learning.weights import WeightCache, WeightMutation, WeightStore, ema

__all__ = [
    # Weights
    "WeightStore",
    "WeightCache",
    "WeightMutation",
    "ema",
    # Scoring
    "PriorityScorer",
    "due_date_factor",
    "habit_alignment_factor",
    "time_of_day_factor",
    "complexity_factor",
    "PrioritizationService",
    # Feedback
    "LearningFeedbackLoop",
    "LEARNING_RATE_PARAMETER",
    # Analytics
    "CollaborativeAnalytics",
    "summarize_metrics",
]
