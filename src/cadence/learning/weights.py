"""Per-user weight storage with EMA semantics.

The weight store exclusively owns UserWeights. Reads go through an explicit,
injectable WeightCache; writes are read-mutate-write cycles guarded by an
optimistic compare-and-swap on ``last_updated``:

    1. Load the current document straight from persistence (never the cache)
    2. Apply the caller's mutation to that freshly loaded copy
    3. Clamp multipliers and rates, stamp last_updated
    4. Upsert only if the stored last_updated is still the one we loaded;
       otherwise reload and re-apply the mutation

Updates for one user are additionally serialized in-process with a per-user
asyncio.Lock. Different users never share a lock.

Two update rules coexist deliberately:
    - Rates and completion times move by EMA: new = α·observed + (1-α)·current
    - Hour/day/category multipliers move by a fixed learning-rate step
"""

from __future__ import annotations

import asyncio
import copy
import time
import weakref
from collections import OrderedDict
from collections.abc import Callable
from datetime import datetime, timedelta

from cadence.core.config import CacheConfig, LearningConfig
from cadence.core.errors import ConcurrentUpdateError
from cadence.core.logging import get_logger
from cadence.core.models import NEUTRAL_MULTIPLIER, NEUTRAL_RATE, Task, UserWeights
from cadence.storage.base import WEIGHTS_COLLECTION, DocumentStore
from cadence.utils.time import utc_now

_logger = get_logger("learning.weights")

WeightMutation = Callable[[UserWeights], None]
"""Mutates the given weights in place; must not perform I/O."""


def ema(current: float, observed: float, alpha: float) -> float:
    """Exponential moving average step."""
    return alpha * observed + (1 - alpha) * current


def clamp(value: float, lower: float, upper: float) -> float:
    """Bound value to the closed interval [lower, upper]."""
    return max(lower, min(upper, value))


def apply_multiplier_step(
    weights: UserWeights,
    hour: int,
    day: int,
    category: str | None,
    step: float,
    multiplier_min: float = 0.1,
    multiplier_max: float = 2.0,
) -> None:
    """Move the hour, day and (optional) category multipliers by step, clamped."""
    weights.hourly_weights[hour] = clamp(
        weights.hourly_weights.get(hour, NEUTRAL_MULTIPLIER) + step,
        multiplier_min,
        multiplier_max,
    )
    weights.day_weights[day] = clamp(
        weights.day_weights.get(day, NEUTRAL_MULTIPLIER) + step,
        multiplier_min,
        multiplier_max,
    )
    if category:
        weights.category_weights[category] = clamp(
            weights.category_weights.get(category, NEUTRAL_MULTIPLIER) + step,
            multiplier_min,
            multiplier_max,
        )


def apply_task_outcome(weights: UserWeights, task_id: str, success: bool) -> None:
    observed = 1.0 if success else 0.0
    current = weights.task_success_rates.get(task_id, NEUTRAL_RATE)
    weights.task_success_rates[task_id] = clamp(
        ema(current, observed, weights.ema_alpha), 0.0, 1.0
    )


def apply_category_outcome(weights: UserWeights, category: str, success: bool) -> None:
    observed = 1.0 if success else 0.0
    current = weights.category_success_rates.get(category, NEUTRAL_RATE)
    weights.category_success_rates[category] = clamp(
        ema(current, observed, weights.ema_alpha), 0.0, 1.0
    )


def apply_time_to_complete(weights: UserWeights, category: str, seconds: float) -> None:
    """EMA of completion time; the first observation seeds the average."""
    current = weights.time_to_complete_averages.get(category, seconds)
    weights.time_to_complete_averages[category] = ema(current, seconds, weights.ema_alpha)


class WeightCache:
    """Bounded LRU cache of UserWeights with optional time-to-live.

    Entries are copied on put and on get, so cached state can only change
    through put(). Expired entries are dropped lazily on access.
    """

    def __init__(
        self,
        max_entries: int = 1024,
        ttl_seconds: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.max_entries = max_entries
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: OrderedDict[str, tuple[float, UserWeights]] = OrderedDict()

    @classmethod
    def from_config(cls, config: CacheConfig) -> WeightCache:
        return cls(max_entries=config.max_entries, ttl_seconds=config.ttl_seconds)

    def get(self, user_id: str) -> UserWeights | None:
        entry = self._entries.get(user_id)
        if entry is None:
            return None
        stored_at, weights = entry
        if self.ttl_seconds and self._clock() - stored_at > self.ttl_seconds:
            del self._entries[user_id]
            return None
        self._entries.move_to_end(user_id)
        return copy.deepcopy(weights)

    def put(self, weights: UserWeights) -> None:
        self._entries[weights.user_id] = (self._clock(), copy.deepcopy(weights))
        self._entries.move_to_end(weights.user_id)
        while len(self._entries) > self.max_entries:
            self._entries.popitem(last=False)

    def invalidate(self, user_id: str) -> None:
        self._entries.pop(user_id, None)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, user_id: object) -> bool:
        return user_id in self._entries


class WeightStore:
    """Owns every user's learned weights.

    Args:
        store: Document store holding the ``ml_weights`` collection.
        config: Learning configuration (α, clamp range, CAS retries).
        cache: Cache instance; a private one is created when omitted.
        clock: Source of "now" for last_updated stamps.
    """

    def __init__(
        self,
        store: DocumentStore,
        config: LearningConfig | None = None,
        cache: WeightCache | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._store = store
        self.config = config or LearningConfig()
        self.cache = cache if cache is not None else WeightCache()
        self._clock = clock
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    def _lock_for(self, user_id: str) -> asyncio.Lock:
        lock = self._locks.get(user_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[user_id] = lock
        return lock

    def _next_stamp(self, previous: datetime | None) -> datetime:
        """Strictly increasing stamp so every write changes the CAS token."""
        now = self._clock()
        if previous is not None and now <= previous:
            return previous + timedelta(microseconds=1)
        return now

    async def _load(self, user_id: str) -> UserWeights | None:
        doc = await self._store.find_one(WEIGHTS_COLLECTION, {"user_id": user_id})
        return UserWeights.from_dict(doc) if doc else None

    async def _load_or_create(self, user_id: str) -> UserWeights:
        existing = await self._load(user_id)
        if existing is not None:
            return existing

        weights = UserWeights.default(
            user_id, ema_alpha=self.config.ema_alpha, now=self._clock()
        )
        created = await self._store.upsert(
            WEIGHTS_COLLECTION,
            {"user_id": user_id},
            weights.to_dict(),
            if_absent=True,
        )
        if created:
            _logger.info("weights_initialized", user_id=user_id)
            return weights

        # Lost a creation race; the winner's document is authoritative
        raced = await self._load(user_id)
        return raced if raced is not None else weights

    async def get_weights(self, user_id: str) -> UserWeights:
        """Return a user's weights, creating and persisting defaults on first access.

        Raises:
            StorageError: On persistence failure.
        """
        cached = self.cache.get(user_id)
        if cached is not None:
            return cached

        weights = await self._load_or_create(user_id)
        self.cache.put(weights)
        return copy.deepcopy(weights)

    async def update_weights(self, user_id: str, mutation: WeightMutation) -> UserWeights:
        """Atomically apply mutation to the user's current weights.

        The mutation always receives the value just loaded from persistence.
        Nothing is written if the mutation raises.

        Returns:
            The weights as persisted.

        Raises:
            ConcurrentUpdateError: If every compare-and-swap attempt conflicted.
            StorageError: On persistence failure.
        """
        async with self._lock_for(user_id):
            for attempt in range(1, self.config.max_update_retries + 1):
                weights = await self._load_or_create(user_id)
                previous_stamp = weights.last_updated

                mutation(weights)
                weights.clamp(self.config.multiplier_min, self.config.multiplier_max)
                weights.last_updated = self._next_stamp(previous_stamp)

                written = await self._store.upsert(
                    WEIGHTS_COLLECTION,
                    {"user_id": user_id},
                    weights.to_dict(),
                    expected={"last_updated": previous_stamp},
                )
                if written:
                    self.cache.put(weights)
                    return copy.deepcopy(weights)

                self.cache.invalidate(user_id)
                _logger.warning("weights_update_conflict", user_id=user_id, attempt=attempt)

        raise ConcurrentUpdateError(
            f"Weights for {user_id} changed concurrently "
            f"{self.config.max_update_retries} times in a row"
        )

    async def update_task_success_rate(self, user_id: str, task_id: str, success: bool) -> None:
        await self.update_weights(
            user_id, lambda w: apply_task_outcome(w, task_id, success)
        )

    async def update_category_success_rate(
        self, user_id: str, category: str, success: bool
    ) -> None:
        await self.update_weights(
            user_id, lambda w: apply_category_outcome(w, category, success)
        )

    async def update_time_to_complete(self, user_id: str, category: str, seconds: float) -> None:
        await self.update_weights(
            user_id, lambda w: apply_time_to_complete(w, category, seconds)
        )

    async def predict_task_success(self, user_id: str, task: Task) -> float:
        """Success probability from the task's and its category's success EMAs.

        Starts at the neutral 0.5 prior, blends 30/70 with the task's own rate,
        then 50/50 with the category rate.
        """
        weights = await self.get_weights(user_id)
        return predict_success(weights, task)

    async def estimate_time_to_complete(self, user_id: str, task: Task) -> float | None:
        weights = await self.get_weights(user_id)
        if not task.category:
            return None
        return weights.time_to_complete_averages.get(task.category)

    def clear_cache(self, user_id: str | None = None) -> None:
        """Drop one user's cached weights, or the whole cache."""
        if user_id is None:
            self.cache.clear()
        else:
            self.cache.invalidate(user_id)


def predict_success(weights: UserWeights, task: Task) -> float:
    prediction = NEUTRAL_RATE
    task_rate = weights.task_success_rates.get(task.id)
    if task_rate is not None:
        prediction = prediction * 0.3 + task_rate * 0.7
    if task.category:
        category_rate = weights.category_success_rates.get(task.category)
        if category_rate is not None:
            prediction = prediction * 0.5 + category_rate * 0.5
    return prediction
