"""Collaborative analytics over prediction outcomes and user similarity.

Owns two collections:
    - ml_performance_metrics: append-only PerformanceMetric rows
    - user_similarities: directional similarity rows, replaced wholesale per
      subject user on every recomputation

Similarity between two users is a blend of Pearson correlations computed
independently over their hourly, daily and category multipliers (missing
keys count as the neutral 1.0):

    similarity = 0.4 × hourly + 0.3 × daily + 0.3 × category
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timedelta

from cadence.core.config import AnalyticsConfig
from cadence.core.logging import get_logger
from cadence.core.models import (
    CategoryStats,
    CollaborativeRecommendations,
    PerformanceMetric,
    PerformanceStats,
    SimilarUser,
    UserSimilarity,
    UserWeights,
)
from cadence.learning.statistics import mean, pearson_correlation
from cadence.learning.weights import WeightStore
from cadence.storage.base import METRICS_COLLECTION, SIMILARITIES_COLLECTION, DocumentStore
from cadence.storage.repositories import UserRepository
from cadence.utils.time import utc_now

_logger = get_logger("learning.analytics")


class CollaborativeAnalytics:
    """Aggregates prediction performance and relates users to each other."""

    def __init__(
        self,
        store: DocumentStore,
        weight_store: WeightStore,
        users: UserRepository,
        config: AnalyticsConfig | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._store = store
        self._weights = weight_store
        self._users = users
        self.config = config or AnalyticsConfig()
        self._clock = clock

    # ─────────────────────────────────────────────────────────────────────
    # Prediction performance
    # ─────────────────────────────────────────────────────────────────────

    async def record_prediction_performance(
        self,
        user_id: str,
        task_id: str,
        predicted_score: float,
        actual_success: bool,
        predicted_time: float | None = None,
        actual_time: float | None = None,
        category: str | None = None,
        timestamp: datetime | None = None,
    ) -> PerformanceMetric:
        """Append one prediction/outcome pair.

        Raises:
            StorageError: If the row could not be written.
        """
        metric = PerformanceMetric(
            timestamp=timestamp or self._clock(),
            user_id=user_id,
            task_id=task_id,
            predicted_score=predicted_score,
            actual_success=actual_success,
            predicted_time_to_complete=predicted_time,
            actual_time_to_complete=actual_time,
            category=category,
        )
        await self._store.insert_one(METRICS_COLLECTION, metric.to_dict())
        _logger.debug(
            "prediction_recorded",
            user_id=user_id,
            task_id=task_id,
            predicted_score=round(predicted_score, 4),
            actual_success=actual_success,
        )
        return metric

    async def get_metrics(
        self, user_id: str, start: datetime, end: datetime
    ) -> list[PerformanceMetric]:
        docs = await self._store.find(
            METRICS_COLLECTION,
            {"user_id": user_id, "timestamp": {"$gte": start, "$lte": end}},
            sort=[("timestamp", 1)],
        )
        return [PerformanceMetric.from_dict(doc) for doc in docs]

    async def get_performance_metrics(
        self,
        user_id: str,
        window_days: int | None = None,
        now: datetime | None = None,
    ) -> PerformanceStats:
        """Aggregate the user's prediction rows over the trailing window."""
        end = now or self._clock()
        start = end - timedelta(days=window_days or self.config.metrics_window_days)
        metrics = await self.get_metrics(user_id, start, end)
        return summarize_metrics(
            user_id, metrics, start, end, accuracy_threshold=self.config.accuracy_threshold
        )

    # ─────────────────────────────────────────────────────────────────────
    # Similarity
    # ─────────────────────────────────────────────────────────────────────

    def similarity(self, first: UserWeights, second: UserWeights) -> float:
        cfg = self.config
        return (
            cfg.hourly_similarity_weight
            * pearson_correlation(first.hourly_weights, second.hourly_weights)
            + cfg.daily_similarity_weight
            * pearson_correlation(first.day_weights, second.day_weights)
            + cfg.category_similarity_weight
            * pearson_correlation(first.category_weights, second.category_weights)
        )

    async def update_similarities(
        self, user_id: str, now: datetime | None = None
    ) -> list[UserSimilarity]:
        """Recompute and replace every similarity row with user_id as subject."""
        stamp = now or self._clock()
        subject = await self._weights.get_weights(user_id)
        users = await self._users.find_all()

        rows: list[UserSimilarity] = []
        for other in users:
            if other.id == user_id:
                continue
            other_weights = await self._weights.get_weights(other.id)
            rows.append(
                UserSimilarity(
                    user_id1=user_id,
                    user_id2=other.id,
                    similarity_score=self.similarity(subject, other_weights),
                    last_updated=stamp,
                )
            )

        await self._store.replace_many(
            SIMILARITIES_COLLECTION,
            {"user_id1": user_id},
            [row.to_dict() for row in rows],
        )
        _logger.info("similarities_updated", user_id=user_id, compared_users=len(rows))
        return rows

    async def get_similar_users(self, user_id: str, limit: int | None = None) -> list[SimilarUser]:
        """Most similar users first."""
        docs = await self._store.find(
            SIMILARITIES_COLLECTION,
            {"user_id1": user_id},
            sort=[("similarity_score", -1)],
            limit=limit or self.config.top_similar_users,
        )
        return [
            SimilarUser(user_id=doc["user_id2"], similarity=float(doc["similarity_score"]))
            for doc in docs
        ]

    async def get_collaborative_recommendations(self, user_id: str) -> CollaborativeRecommendations:
        """Similarity-weighted category success rates and completion times.

        Every top-N neighbour contributes in proportion to its similarity.
        Sums are divided by the total similarity only when that total is
        positive; otherwise they are returned as raw weighted sums. Empty
        when the user has no similarity rows.
        """
        neighbours = await self.get_similar_users(user_id)
        if not neighbours:
            return CollaborativeRecommendations()

        category_sums: dict[str, float] = {}
        time_sums: dict[str, float] = {}
        for neighbour in neighbours:
            weights = await self._weights.get_weights(neighbour.user_id)
            for category, rate in weights.category_success_rates.items():
                category_sums[category] = category_sums.get(category, 0.0) + rate * neighbour.similarity
            for category, seconds in weights.time_to_complete_averages.items():
                time_sums[category] = time_sums.get(category, 0.0) + seconds * neighbour.similarity

        total_similarity = sum(n.similarity for n in neighbours)
        if total_similarity > 0:
            category_sums = {k: v / total_similarity for k, v in category_sums.items()}
            time_sums = {k: v / total_similarity for k, v in time_sums.items()}
        return CollaborativeRecommendations(
            category_recommendations=category_sums,
            time_recommendations=time_sums,
            similar_users=neighbours,
        )


def summarize_metrics(
    user_id: str,
    metrics: list[PerformanceMetric],
    start: datetime,
    end: datetime,
    accuracy_threshold: float = 0.7,
) -> PerformanceStats:
    """Fold PerformanceMetric rows into PerformanceStats."""
    stats = PerformanceStats(
        user_id=user_id,
        window_start=start,
        window_end=end,
        sample_count=len(metrics),
    )
    if not metrics:
        return stats

    stats.prediction_accuracy = mean(
        [1.0 if m.prediction_correct(accuracy_threshold) else 0.0 for m in metrics]
    )
    errors = [m.time_estimation_error for m in metrics]
    measured = [e for e in errors if e is not None]
    if measured:
        stats.time_estimation_error = mean(measured)

    scores: dict[str, list[float]] = {}
    for metric in metrics:
        if not metric.category:
            continue
        category = stats.category_metrics.setdefault(metric.category, CategoryStats())
        category.total_tasks += 1
        if metric.actual_success:
            category.successful_tasks += 1
        scores.setdefault(metric.category, []).append(metric.predicted_score)

    for name, category in stats.category_metrics.items():
        category.success_rate = category.successful_tasks / category.total_tasks
        category.average_score = mean(scores[name])
    return stats
