"""Task prioritization service.

Reads a user's open tasks and habits from the host repositories, scores each
task with the PriorityScorer and the feedback loop's ML multiplier, and
returns them highest priority first.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime

from cadence.core.logging import get_logger
from cadence.core.models import Task, TaskInsights, TaskPriorityScore
from cadence.learning.feedback import LearningFeedbackLoop
from cadence.learning.scorer import PriorityScorer
from cadence.storage.repositories import HabitRepository, TaskRepository
from cadence.utils.time import utc_now

_logger = get_logger("learning.prioritizer")

_AVERAGED_FACTORS = ("due_date", "habit_alignment", "time_of_day", "complexity", "ml_multiplier")
_HIGH_PRIORITY_COUNT = 3


class PrioritizationService:
    """Ranks a user's incomplete tasks."""

    def __init__(
        self,
        tasks: TaskRepository,
        habits: HabitRepository,
        feedback: LearningFeedbackLoop,
        scorer: PriorityScorer | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._tasks = tasks
        self._habits = habits
        self._feedback = feedback
        self.scorer = scorer or PriorityScorer()
        self._clock = clock

    async def prioritize_tasks(
        self, user_id: str, now: datetime | None = None
    ) -> list[TaskPriorityScore]:
        """Score every incomplete task of the user, highest first.

        Raises:
            StorageError: If tasks or habits could not be read.
        """
        moment = now or self._clock()
        tasks = await self._tasks.find_incomplete(user_id)
        if not tasks:
            return []
        habits = await self._habits.find_by_user(user_id)
        recommendations = await self._feedback.recommendations_or_empty(user_id)

        scores = []
        for task in tasks:
            multiplier = await self._feedback.get_score_multiplier(
                task, moment, recommendations=recommendations
            )
            scores.append(self.scorer.score(task, habits, moment, ml_multiplier=multiplier))

        ranked = self.scorer.rank(scores)
        _logger.debug(
            "tasks_prioritized",
            user_id=user_id,
            task_count=len(ranked),
            top_task=ranked[0].task_id,
        )
        return ranked

    async def get_recommended_task_order(
        self, user_id: str, now: datetime | None = None
    ) -> list[Task]:
        """Tasks in priority order. Tasks that vanished meanwhile are skipped."""
        ordered = []
        for score in await self.prioritize_tasks(user_id, now=now):
            task = await self._tasks.find_by_id(score.task_id)
            if task is not None:
                ordered.append(task)
        return ordered

    async def get_task_insights(self, user_id: str, now: datetime | None = None) -> TaskInsights:
        moment = now or self._clock()
        scores = await self.prioritize_tasks(user_id, now=moment)

        average_factors = None
        if scores:
            average_factors = {
                name: sum(s.factors.get(name, 0.0) for s in scores) / len(scores)
                for name in _AVERAGED_FACTORS
            }

        return TaskInsights(
            user_id=user_id,
            average_factors=average_factors,
            high_priority_tasks=[s.task_id for s in scores[:_HIGH_PRIORITY_COUNT]],
            learning=await self._feedback.get_learning_insights(user_id, now=moment),
        )
