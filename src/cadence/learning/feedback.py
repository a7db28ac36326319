"""Learning feedback loop.

Turns task outcomes into weight updates and prediction-performance rows, and
turns learned weights into the ML multiplier used by the priority scorer.

Recording an outcome runs these steps in order:

    1. Resolve the learning rate (experiment override or configured default)
    2. Capture the pre-update success prediction and time estimate
    3. One atomic weight update: hour/day/category multipliers ± rate,
       task and category success EMAs, category completion-time EMA
    4. Append a PerformanceMetric with the step 2 predictions
    5. Recompute similarities, then detect anomalies

Failures in steps 1-4 propagate to the caller. Step 5 failures are logged and
never undo earlier steps. With ``defer_triggers`` step 5 runs as a background
task; call drain() to wait for outstanding ones.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from datetime import datetime
from typing import TYPE_CHECKING

from cadence.core.config import AnalyticsConfig, LearningConfig
from cadence.core.logging import get_logger
from cadence.core.models import (
    NEUTRAL_MULTIPLIER,
    CollaborativeRecommendations,
    InsightsReport,
    Task,
    UserWeights,
)
from cadence.learning.analytics import CollaborativeAnalytics
from cadence.learning.weights import (
    WeightStore,
    apply_category_outcome,
    apply_multiplier_step,
    apply_task_outcome,
    apply_time_to_complete,
    predict_success,
)
from cadence.utils.time import (
    day_of_week,
    ensure_aware,
    hour_of_day,
    utc_now,
    weekday_name,
)

if TYPE_CHECKING:
    from cadence.experiments.engine import ExperimentationEngine

_logger = get_logger("learning.feedback")

# Experiment parameter overriding the multiplier step
LEARNING_RATE_PARAMETER = "learningRate"

_INSIGHT_TOP_N = 3


def _top_keys(weights: dict, count: int = _INSIGHT_TOP_N) -> list:
    ranked = sorted(weights.items(), key=lambda item: item[1], reverse=True)
    return [key for key, _ in ranked[:count]]


class LearningFeedbackLoop:
    """Feeds completions and failures back into the learned weights."""

    def __init__(
        self,
        weight_store: WeightStore,
        analytics: CollaborativeAnalytics,
        experiments: ExperimentationEngine,
        config: LearningConfig | None = None,
        analytics_config: AnalyticsConfig | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._weights = weight_store
        self._analytics = analytics
        self._experiments = experiments
        self.config = config or LearningConfig()
        self.analytics_config = analytics_config or AnalyticsConfig()
        self._clock = clock
        self._pending: set[asyncio.Task[None]] = set()

    # ─────────────────────────────────────────────────────────────────────
    # Recording outcomes
    # ─────────────────────────────────────────────────────────────────────

    async def record_completion(self, task: Task, completed_at: datetime | None = None) -> None:
        """Reinforce the weights after a task was completed.

        Raises:
            StorageError: If the weight update or metric append failed.
        """
        await self._record(task, success=True, at=completed_at or self._clock())

    async def record_failure(self, task: Task, failed_at: datetime | None = None) -> None:
        """Penalize the weights after a task was abandoned or missed."""
        await self._record(task, success=False, at=failed_at or self._clock())

    async def learning_rate(self, user_id: str, now: datetime | None = None) -> float:
        parameters = await self._experiments.get_experiment_parameters(user_id, now=now)
        override = parameters.get(LEARNING_RATE_PARAMETER)
        if override is None:
            return self.config.default_learning_rate
        return float(override)

    async def _record(self, task: Task, success: bool, at: datetime) -> None:
        at = ensure_aware(at)
        user_id = task.user_id
        if not user_id:
            _logger.warning("outcome_without_user", task_id=task.id)
            return

        rate = await self.learning_rate(user_id, now=at)

        before = await self._weights.get_weights(user_id)
        predicted_score = predict_success(before, task)
        predicted_time = (
            before.time_to_complete_averages.get(task.category) if task.category else None
        )

        actual_time: float | None = None
        if success and task.created_at is not None:
            elapsed = (at - ensure_aware(task.created_at)).total_seconds()
            if elapsed >= 0:
                actual_time = elapsed

        hour = hour_of_day(at)
        day = day_of_week(at)
        step = rate if success else -rate
        cfg = self.config

        def mutation(weights: UserWeights) -> None:
            apply_multiplier_step(
                weights, hour, day, task.category, step, cfg.multiplier_min, cfg.multiplier_max
            )
            apply_task_outcome(weights, task.id, success)
            if task.category:
                apply_category_outcome(weights, task.category, success)
                if actual_time is not None:
                    apply_time_to_complete(weights, task.category, actual_time)

        await self._weights.update_weights(user_id, mutation)
        await self._analytics.record_prediction_performance(
            user_id=user_id,
            task_id=task.id,
            predicted_score=predicted_score,
            actual_success=success,
            predicted_time=predicted_time,
            actual_time=actual_time,
            category=task.category,
            timestamp=at,
        )
        _logger.info(
            "outcome_recorded",
            user_id=user_id,
            task_id=task.id,
            success=success,
            learning_rate=rate,
            hour=hour,
            day=day,
        )

        if cfg.defer_triggers:
            pending = asyncio.create_task(self._run_triggers(user_id, at))
            self._pending.add(pending)
            pending.add_done_callback(self._pending.discard)
        else:
            await self._run_triggers(user_id, at)

    async def _run_triggers(self, user_id: str, at: datetime) -> None:
        try:
            await self._analytics.update_similarities(user_id, now=at)
        except Exception:
            _logger.exception("similarity_update_failed", user_id=user_id)
        try:
            await self._experiments.detect_anomalies(user_id, now=at)
        except Exception:
            _logger.exception("anomaly_detection_failed", user_id=user_id)

    async def drain(self) -> None:
        """Wait for every deferred trigger started so far."""
        while outstanding := [t for t in self._pending if not t.done()]:
            await asyncio.gather(*outstanding)

    # ─────────────────────────────────────────────────────────────────────
    # Reading learned state
    # ─────────────────────────────────────────────────────────────────────

    async def get_score_multiplier(
        self,
        task: Task,
        current_time: datetime | None = None,
        recommendations: CollaborativeRecommendations | None = None,
    ) -> float:
        """ML multiplier for a task at a moment in time.

        hour × day × category multipliers, times (0.5 + predicted success),
        times (0.7 + 0.3 × collaborative category score) when one exists.
        Never raises; unavailable data counts as neutral.

        Args:
            task: Task being scored.
            current_time: Moment of scoring, defaults to now.
            recommendations: Pre-fetched collaborative recommendations, to
                avoid a lookup per task when scoring a list.
        """
        if not task.user_id:
            return NEUTRAL_MULTIPLIER
        now = current_time or self._clock()

        try:
            weights = await self._weights.get_weights(task.user_id)
        except Exception:
            _logger.exception("score_multiplier_weights_unavailable", user_id=task.user_id)
            return NEUTRAL_MULTIPLIER

        multiplier = weights.hourly_weights.get(hour_of_day(now), NEUTRAL_MULTIPLIER)
        multiplier *= weights.day_weights.get(day_of_week(now), NEUTRAL_MULTIPLIER)
        if task.category:
            multiplier *= weights.category_weights.get(task.category, NEUTRAL_MULTIPLIER)
        multiplier *= 0.5 + predict_success(weights, task)

        if task.category:
            if recommendations is None:
                recommendations = await self.recommendations_or_empty(task.user_id)
            category_score = recommendations.category_recommendations.get(task.category)
            if category_score is not None:
                cfg = self.analytics_config
                multiplier *= cfg.collaborative_base + cfg.collaborative_weight * category_score
        return multiplier

    async def recommendations_or_empty(self, user_id: str) -> CollaborativeRecommendations:
        try:
            return await self._analytics.get_collaborative_recommendations(user_id)
        except Exception:
            _logger.exception("collaborative_recommendations_unavailable", user_id=user_id)
            return CollaborativeRecommendations()

    async def get_estimated_time_to_complete(self, task: Task) -> float | None:
        """Completion-time estimate in seconds, 70% personal and 30% collaborative.

        Falls back to whichever estimate exists; None when neither does.
        """
        if not task.user_id:
            return None
        personal = await self._weights.estimate_time_to_complete(task.user_id, task)
        if not task.category:
            return personal

        recommendations = await self._analytics.get_collaborative_recommendations(task.user_id)
        collaborative = recommendations.time_recommendations.get(task.category)
        if collaborative is None:
            return personal
        if personal is None:
            return collaborative
        share = self.analytics_config.personal_time_weight
        return personal * share + collaborative * (1 - share)

    async def get_learning_insights(
        self, user_id: str, now: datetime | None = None
    ) -> InsightsReport:
        """Best hours, days and categories, plus performance and neighbours."""
        moment = now or self._clock()
        weights = await self._weights.get_weights(user_id)
        performance = await self._analytics.get_performance_metrics(user_id, now=moment)
        collaborative = await self._analytics.get_collaborative_recommendations(user_id)

        return InsightsReport(
            user_id=user_id,
            best_hours=[f"{hour}:00" for hour in _top_keys(weights.hourly_weights)],
            best_days=[weekday_name(day) for day in _top_keys(weights.day_weights)],
            best_categories=_top_keys(weights.category_weights),
            performance=performance,
            collaborative=collaborative,
            generated_at=moment,
        )
