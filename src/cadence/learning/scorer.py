"""Priority scoring of tasks.

The scorer combines four independent factors, each in [0, 1]:

    base = 0.4 × due_date + 0.3 × habit_alignment + 0.2 × time_of_day + 0.1 × complexity
    score = base × ml_multiplier

The factor weights come from ScoringConfig. The ML multiplier is supplied by
the caller (see LearningFeedbackLoop.get_score_multiplier); the scorer itself
is pure and reads no state.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from datetime import datetime

from cadence.core.config import ScoringConfig
from cadence.core.models import Habit, Task, TaskPriorityScore
from cadence.utils.time import ensure_aware

# Hour-of-day productivity policy. Static, not learned.
PEAK_HOURS = frozenset({9, 10, 11, 14, 15, 16})

_TIME_OF_DAY_FACTORS: dict[int, float] = {
    **{hour: 1.0 for hour in (9, 10, 11)},
    **{hour: 0.9 for hour in (14, 15, 16)},
    **{hour: 0.8 for hour in (8, 12, 13, 17)},
    **{hour: 0.7 for hour in (7, 18)},
    **{hour: 0.6 for hour in (19, 20, 21, 22)},
}
_OFF_HOURS_FACTOR = 0.3

HABIT_FREQUENCY_WEIGHTS: dict[str, float] = {
    "daily": 1.0,
    "weekly": 0.8,
    "monthly": 0.6,
}
_OTHER_FREQUENCY_WEIGHT = 0.5

NEUTRAL_FACTOR = 0.5


def due_date_factor(due_date: datetime | None, now: datetime) -> float:
    """Urgency of a due date relative to now.

    Buckets are calendar days in now's timezone, so a task due 25 hours from
    now late in the evening lands in the 3-day bucket, not "tomorrow".
    Beyond a week the factor decays linearly over 30 fractional days.
    """
    if due_date is None:
        return NEUTRAL_FACTOR
    now = ensure_aware(now)
    due_date = ensure_aware(due_date).astimezone(now.tzinfo)
    if due_date < now:
        return 1.0

    calendar_days = (due_date.date() - now.date()).days
    if calendar_days == 0:
        return 0.9
    if calendar_days == 1:
        return 0.8
    if calendar_days <= 3:
        return 0.7
    if calendar_days <= 7:
        return 0.6
    fractional_days = (due_date - now).total_seconds() / 86400
    return max(0.1, 1.0 - fractional_days / 30)


def habit_alignment_factor(task: Task, habits: Iterable[Habit]) -> float:
    """Average frequency weight of habits sharing the task's category."""
    if not task.category:
        return NEUTRAL_FACTOR
    weights = [
        HABIT_FREQUENCY_WEIGHTS.get(habit.frequency, _OTHER_FREQUENCY_WEIGHT)
        for habit in habits
        if habit.category == task.category
    ]
    if not weights:
        return NEUTRAL_FACTOR
    return sum(weights) / len(weights)


def time_of_day_factor(now: datetime) -> float:
    return _TIME_OF_DAY_FACTORS.get(now.hour, _OFF_HOURS_FACTOR)


def complexity_factor(task: Task, now: datetime, off_peak_penalty: float = 0.7) -> float:
    """Estimated task complexity, damped outside the peak hour windows."""
    description_length = len(task.description or "")
    factor = 0.5
    if description_length > 500 or task.subtasks:
        factor = 0.8
    elif description_length > 200:
        factor = 0.6

    if now.hour not in PEAK_HOURS:
        factor *= off_peak_penalty
    return factor


class PriorityScorer:
    """Scores and ranks tasks.

    Example:
        scorer = PriorityScorer()
        scored = [scorer.score(task, habits, now, ml_multiplier=m) for task in tasks]
        ranked = scorer.rank(scored)
    """

    def __init__(self, config: ScoringConfig | None = None) -> None:
        self.config = config or ScoringConfig()

    def factors(self, task: Task, habits: Sequence[Habit], now: datetime) -> dict[str, float]:
        return {
            "due_date": due_date_factor(task.due_date, now),
            "habit_alignment": habit_alignment_factor(task, habits),
            "time_of_day": time_of_day_factor(now),
            "complexity": complexity_factor(
                task, now, self.config.off_peak_complexity_penalty
            ),
        }

    def base_score(self, factors: dict[str, float]) -> float:
        cfg = self.config
        return (
            factors["due_date"] * cfg.due_date_weight
            + factors["habit_alignment"] * cfg.habit_alignment_weight
            + factors["time_of_day"] * cfg.time_of_day_weight
            + factors["complexity"] * cfg.complexity_weight
        )

    def score(
        self,
        task: Task,
        habits: Sequence[Habit],
        now: datetime,
        ml_multiplier: float = 1.0,
    ) -> TaskPriorityScore:
        """Score one task.

        The returned factors include the four inputs plus ``base_score`` and
        ``ml_multiplier`` so callers can explain a ranking.
        """
        factors = self.factors(task, habits, now)
        base = self.base_score(factors)
        factors["base_score"] = base
        factors["ml_multiplier"] = ml_multiplier
        return TaskPriorityScore(task_id=task.id, score=base * ml_multiplier, factors=factors)

    @staticmethod
    def rank(scores: Iterable[TaskPriorityScore]) -> list[TaskPriorityScore]:
        """Highest score first; equal scores keep their input order."""
        return sorted(scores, key=lambda s: s.score, reverse=True)
