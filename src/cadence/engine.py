"""Engine facade.

CadenceEngine bundles the weight store, analytics, experimentation engine,
feedback loop and prioritization service behind the operations a host
application calls. build_engine() wires them from a CadenceConfig.

Example:
    engine = build_engine(config, tasks=task_repo, habits=habit_repo, users=user_repo)
    ranked = await engine.prioritize_tasks("user-1")
    await engine.record_task_completion(task)
"""

from __future__ import annotations

from collections.abc import Callable
from contextlib import AbstractContextManager
from dataclasses import dataclass
from datetime import datetime

from cadence.core.config import CadenceConfig
from cadence.core.errors import UserNotFoundError
from cadence.core.logging import RequestContext, get_logger, with_context
from cadence.core.models import (
    AnomalyRecord,
    ExperimentAnalysis,
    ExperimentConfig,
    InsightsReport,
    Task,
    TaskInsights,
    TaskPriorityScore,
)
from cadence.experiments.engine import ExperimentationEngine
from cadence.learning.analytics import CollaborativeAnalytics
from cadence.learning.feedback import LearningFeedbackLoop
from cadence.learning.prioritizer import PrioritizationService
from cadence.learning.scorer import PriorityScorer
from cadence.learning.weights import WeightCache, WeightStore
from cadence.storage import create_document_store
from cadence.storage.base import DocumentStore
from cadence.storage.repositories import (
    HabitRepository,
    InMemoryHabitRepository,
    InMemoryTaskRepository,
    TaskRepository,
    UserRepository,
    WeightsUserRepository,
)
from cadence.utils.time import utc_now

_logger = get_logger("engine")


@dataclass
class CadenceEngine:
    """Entry point for host applications."""

    store: DocumentStore
    weights: WeightStore
    analytics: CollaborativeAnalytics
    experiments: ExperimentationEngine
    feedback: LearningFeedbackLoop
    prioritizer: PrioritizationService
    users: UserRepository

    async def _require_user(self, user_id: str) -> None:
        if await self.users.find_by_id(user_id) is None:
            raise UserNotFoundError(user_id)

    @staticmethod
    def _scope(user_id: str | None) -> AbstractContextManager[RequestContext]:
        """Correlate every log line of one call with the user it concerns."""
        return with_context(RequestContext(user_id=user_id, component="engine"))

    async def prioritize_tasks(
        self, user_id: str, now: datetime | None = None
    ) -> list[TaskPriorityScore]:
        """Score the user's incomplete tasks, highest priority first.

        Raises:
            UserNotFoundError: If the user repository does not know user_id.
        """
        with self._scope(user_id):
            await self._require_user(user_id)
            return await self.prioritizer.prioritize_tasks(user_id, now=now)

    async def get_recommended_task_order(
        self, user_id: str, now: datetime | None = None
    ) -> list[Task]:
        with self._scope(user_id):
            await self._require_user(user_id)
            return await self.prioritizer.get_recommended_task_order(user_id, now=now)

    async def record_task_completion(
        self, task: Task, completed_at: datetime | None = None
    ) -> None:
        with self._scope(task.user_id):
            await self.feedback.record_completion(task, completed_at)

    async def record_task_failure(self, task: Task, failed_at: datetime | None = None) -> None:
        with self._scope(task.user_id):
            await self.feedback.record_failure(task, failed_at)

    async def get_learning_insights(
        self, user_id: str, now: datetime | None = None
    ) -> InsightsReport:
        with self._scope(user_id):
            await self._require_user(user_id)
            return await self.feedback.get_learning_insights(user_id, now=now)

    async def get_task_insights(self, user_id: str, now: datetime | None = None) -> TaskInsights:
        with self._scope(user_id):
            await self._require_user(user_id)
            return await self.prioritizer.get_task_insights(user_id, now=now)

    async def get_estimated_time_to_complete(self, task: Task) -> float | None:
        return await self.feedback.get_estimated_time_to_complete(task)

    async def create_experiment(
        self,
        name: str,
        parameters: dict[str, float],
        duration_days: int,
        now: datetime | None = None,
    ) -> ExperimentConfig:
        return await self.experiments.create_experiment(name, parameters, duration_days, now=now)

    async def analyze_experiment(
        self, experiment_id: str, now: datetime | None = None
    ) -> ExperimentAnalysis:
        return await self.experiments.analyze_experiment(experiment_id, now=now)

    async def detect_anomalies(
        self, user_id: str, now: datetime | None = None
    ) -> list[AnomalyRecord]:
        with self._scope(user_id):
            await self._require_user(user_id)
            return await self.experiments.detect_anomalies(user_id, now=now)

    async def drain(self) -> None:
        """Wait for deferred similarity and anomaly triggers."""
        await self.feedback.drain()

    async def close(self) -> None:
        await self.drain()
        await self.store.close()


def build_engine(
    config: CadenceConfig | None = None,
    *,
    store: DocumentStore | None = None,
    tasks: TaskRepository | None = None,
    habits: HabitRepository | None = None,
    users: UserRepository | None = None,
    clock: Callable[[], datetime] = utc_now,
) -> CadenceEngine:
    """Wire an engine from configuration.

    Args:
        config: Engine configuration; defaults apply when omitted.
        store: Document store; created from config.storage when omitted.
        tasks: Host task repository; an empty in-memory one when omitted.
        habits: Host habit repository; an empty in-memory one when omitted.
        users: Host user repository; defaults to the users with stored weights.
        clock: Source of "now", shared by every component.
    """
    config = config or CadenceConfig()
    store = store if store is not None else create_document_store(config.storage)
    users = users if users is not None else WeightsUserRepository(store)

    weights = WeightStore(
        store,
        config.learning,
        cache=WeightCache.from_config(config.cache),
        clock=clock,
    )
    analytics = CollaborativeAnalytics(store, weights, users, config.analytics, clock=clock)
    experiments = ExperimentationEngine(store, analytics, config.experiments, clock=clock)
    feedback = LearningFeedbackLoop(
        weights,
        analytics,
        experiments,
        config.learning,
        config.analytics,
        clock=clock,
    )
    prioritizer = PrioritizationService(
        tasks if tasks is not None else InMemoryTaskRepository(),
        habits if habits is not None else InMemoryHabitRepository(),
        feedback,
        PriorityScorer(config.scoring),
        clock=clock,
    )
    _logger.debug(
        "engine_built",
        backend=type(store).__name__,
        defer_triggers=config.learning.defer_triggers,
    )
    return CadenceEngine(
        store=store,
        weights=weights,
        analytics=analytics,
        experiments=experiments,
        feedback=feedback,
        prioritizer=prioritizer,
        users=users,
    )
