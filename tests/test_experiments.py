"""Tests for cadence.experiments.engine.ExperimentationEngine."""

from __future__ import annotations

from datetime import timedelta

import pytest

from cadence.core.errors import ExperimentNotFoundError
from cadence.core.models import AnomalyType, PerformanceMetric
from cadence.engine import CadenceEngine
from cadence.experiments.engine import (
    PREDICTION_ACCURACY,
    TIME_ESTIMATION_ERROR,
    is_in_treatment,
    metric_values,
    stable_user_hash,
)
from cadence.storage.base import ANOMALIES_COLLECTION
from cadence.storage.memory import InMemoryDocumentStore
from tests.helpers import NOW

CONTROL_ERRORS = [0.1, 0.12, 0.11, 0.13, 0.09]
TREATMENT_ERRORS = [0.08, 0.07, 0.09, 0.06, 0.08]


def _users(in_treatment: bool, count: int) -> list[str]:
    candidates = (f"bucket-user-{i}" for i in range(1000))
    chosen = [u for u in candidates if is_in_treatment(u) == in_treatment]
    return chosen[:count]


async def _record(engine: CadenceEngine, user_id: str, at, **kwargs) -> None:
    values = {"task_id": "t", "predicted_score": 0.8, "actual_success": True}
    values.update(kwargs)
    await engine.analytics.record_prediction_performance(user_id=user_id, timestamp=at, **values)


class TestBucketing:
    """Deterministic treatment/control assignment."""

    def test_hash_is_stable_and_64_bit(self) -> None:
        first = stable_user_hash("user-42")
        assert first == stable_user_hash("user-42")
        assert 0 <= first < 2**64
        assert first != stable_user_hash("user-43")

    def test_treatment_iff_hash_is_even(self) -> None:
        for n in range(50):
            user_id = f"user-{n}"
            assert is_in_treatment(user_id) == (stable_user_hash(user_id) % 2 == 0)

    def test_both_groups_are_populated(self) -> None:
        assignments = {is_in_treatment(f"user-{n}") for n in range(50)}
        assert assignments == {True, False}


class TestExperimentLifecycle:
    """Creating, listing, reading and stopping experiments."""

    @pytest.mark.asyncio
    async def test_create_and_get(self, engine: CadenceEngine) -> None:
        created = await engine.create_experiment("faster", {"learningRate": 0.2}, 14, now=NOW)

        assert created.start_date == NOW
        assert created.end_date == NOW + timedelta(days=14)
        assert created.parameters == {"learningRate": 0.2}
        assert created.metrics == {}
        assert created.is_active is True
        assert await engine.experiments.get_experiment(created.id) == created

    @pytest.mark.asyncio
    @pytest.mark.parametrize("days", [0, -3])
    async def test_duration_must_be_positive(self, engine: CadenceEngine, days: int) -> None:
        with pytest.raises(ValueError, match="duration_days"):
            await engine.create_experiment("bad", {}, days, now=NOW)

    @pytest.mark.asyncio
    async def test_unknown_experiment(self, engine: CadenceEngine) -> None:
        with pytest.raises(ExperimentNotFoundError) as exc_info:
            await engine.experiments.get_experiment("missing")
        assert exc_info.value.experiment_id == "missing"

        with pytest.raises(ExperimentNotFoundError):
            await engine.analyze_experiment("missing")
        with pytest.raises(ExperimentNotFoundError):
            await engine.experiments.deactivate_experiment("missing")
        with pytest.raises(ExperimentNotFoundError):
            await engine.experiments.record_experiment_metrics("missing", {"x": 1.0})

    @pytest.mark.asyncio
    async def test_list_and_deactivate(self, engine: CadenceEngine) -> None:
        older = await engine.create_experiment("older", {}, 30, now=NOW - timedelta(days=2))
        newer = await engine.create_experiment("newer", {}, 30, now=NOW)

        listed = await engine.experiments.list_experiments()
        assert [e.id for e in listed] == [newer.id, older.id]

        await engine.experiments.deactivate_experiment(newer.id)
        active = await engine.experiments.list_experiments(active_only=True)
        assert [e.id for e in active] == [older.id]
        assert (await engine.experiments.get_experiment(newer.id)).is_active is False

    @pytest.mark.asyncio
    async def test_record_metrics_overwrites(self, engine: CadenceEngine) -> None:
        created = await engine.create_experiment("m", {}, 7, now=NOW)
        await engine.experiments.record_experiment_metrics(created.id, {"a": 1.0, "b": 2.0})
        await engine.experiments.record_experiment_metrics(created.id, {"c": 3})

        stored = await engine.experiments.get_experiment(created.id)
        assert stored.metrics == {"c": 3.0}

    @pytest.mark.asyncio
    async def test_earliest_running_experiment_is_active(self, engine: CadenceEngine) -> None:
        await engine.create_experiment("ended", {}, 1, now=NOW - timedelta(days=10))
        first = await engine.create_experiment("first", {"learningRate": 0.2}, 30, now=NOW - timedelta(days=1))
        await engine.create_experiment("second", {"learningRate": 0.4}, 30, now=NOW)

        active = await engine.experiments.get_active_experiment(NOW)
        assert active is not None
        assert active.id == first.id

    @pytest.mark.asyncio
    async def test_parameters_only_for_treatment(self, engine: CadenceEngine) -> None:
        await engine.create_experiment("p", {"learningRate": 0.2}, 30, now=NOW)
        treated = _users(True, 1)[0]
        control = _users(False, 1)[0]

        assert await engine.experiments.get_experiment_parameters(treated, now=NOW) == {
            "learningRate": 0.2
        }
        assert await engine.experiments.get_experiment_parameters(control, now=NOW) == {}

    @pytest.mark.asyncio
    async def test_no_experiment_no_parameters(self, engine: CadenceEngine) -> None:
        treated = _users(True, 1)[0]
        assert await engine.experiments.get_experiment_parameters(treated, now=NOW) == {}


class TestMetricValues:
    """Per-row experiment metric extraction."""

    def test_with_times(self) -> None:
        metric = PerformanceMetric(
            timestamp=NOW, user_id="u", task_id="t", predicted_score=0.9,
            actual_success=False, predicted_time_to_complete=1500.0,
            actual_time_to_complete=1000.0,
        )
        values = metric_values(metric)
        assert values[PREDICTION_ACCURACY] == 0.0
        assert values[TIME_ESTIMATION_ERROR] == pytest.approx(0.5)

    def test_without_times(self) -> None:
        metric = PerformanceMetric(
            timestamp=NOW, user_id="u", task_id="t", predicted_score=0.2, actual_success=False
        )
        assert metric_values(metric) == {PREDICTION_ACCURACY: 1.0}


class TestAnalyzeExperiment:
    """Treatment/control comparison over the experiment window."""

    @pytest.mark.asyncio
    async def test_lower_time_error_in_treatment(self, engine: CadenceEngine) -> None:
        experiment = await engine.create_experiment(
            "time-model", {"learningRate": 0.2}, 14, now=NOW - timedelta(days=7)
        )
        for user_id, error in zip(_users(True, 5), TREATMENT_ERRORS, strict=True):
            await _record(
                engine, user_id, NOW - timedelta(days=1),
                predicted_time=1000.0 * (1 + error), actual_time=1000.0,
            )
        for user_id, error in zip(_users(False, 5), CONTROL_ERRORS, strict=True):
            await _record(
                engine, user_id, NOW - timedelta(days=2),
                predicted_time=1000.0 * (1 + error), actual_time=1000.0,
            )
        # Before the experiment started
        await _record(
            engine, _users(False, 1)[0], NOW - timedelta(days=20),
            predicted_time=5000.0, actual_time=1000.0,
        )

        analysis = await engine.analyze_experiment(experiment.id, now=NOW)

        assert analysis.experiment_name == "time-model"
        assert analysis.parameters == {"learningRate": 0.2}
        assert analysis.treatment_metrics[TIME_ESTIMATION_ERROR] == pytest.approx(0.076)
        assert analysis.control_metrics[TIME_ESTIMATION_ERROR] == pytest.approx(0.11)
        assert analysis.improvements[TIME_ESTIMATION_ERROR] == pytest.approx(
            (0.076 - 0.11) / 0.11 * 100
        )

        result = analysis.statistics[TIME_ESTIMATION_ERROR]
        assert result.t_value == pytest.approx(-3.900, abs=1e-2)
        assert result.effect_size < 0
        assert result.p_value < 0.01
        assert result.is_significant is True

        # Every prediction was correct in both groups: means, no test
        assert analysis.control_metrics[PREDICTION_ACCURACY] == 1.0
        assert analysis.improvements[PREDICTION_ACCURACY] == 0.0
        assert PREDICTION_ACCURACY not in analysis.statistics

    @pytest.mark.asyncio
    async def test_rows_after_the_window_are_ignored(self, engine: CadenceEngine) -> None:
        experiment = await engine.create_experiment("short", {}, 3, now=NOW - timedelta(days=10))
        await _record(engine, _users(True, 1)[0], NOW - timedelta(days=9))
        await _record(engine, _users(True, 1)[0], NOW)

        analysis = await engine.analyze_experiment(experiment.id, now=NOW)
        assert analysis.treatment_metrics == {PREDICTION_ACCURACY: 1.0}
        assert analysis.control_metrics == {}
        assert analysis.improvements == {}
        assert analysis.statistics == {}

    @pytest.mark.asyncio
    async def test_running_experiment_window_ends_now(self, engine: CadenceEngine) -> None:
        """Test a running experiment ignores rows stamped after the analysis time."""
        experiment = await engine.create_experiment("running", {}, 14, now=NOW - timedelta(days=7))
        await _record(engine, _users(True, 1)[0], NOW - timedelta(days=1))
        await _record(
            engine, _users(False, 1)[0], NOW + timedelta(days=1),
            predicted_score=0.9, actual_success=False,
        )

        analysis = await engine.analyze_experiment(experiment.id, now=NOW)
        assert analysis.treatment_metrics == {PREDICTION_ACCURACY: 1.0}
        assert analysis.control_metrics == {}

    @pytest.mark.asyncio
    async def test_zero_control_mean_has_no_improvement(self, engine: CadenceEngine) -> None:
        experiment = await engine.create_experiment("zero", {}, 7, now=NOW - timedelta(days=1))
        await _record(engine, _users(False, 1)[0], NOW, predicted_score=0.9, actual_success=False)
        await _record(engine, _users(True, 1)[0], NOW)

        analysis = await engine.analyze_experiment(experiment.id, now=NOW)
        assert analysis.control_metrics[PREDICTION_ACCURACY] == 0.0
        assert PREDICTION_ACCURACY not in analysis.improvements


class TestDetectAnomalies:
    """z-score anomaly detection against the user's own history."""

    @pytest.mark.asyncio
    async def test_success_rate_collapse(
        self, engine: CadenceEngine, store: InMemoryDocumentStore
    ) -> None:
        for n in range(40):
            await _record(engine, "user-1", NOW - timedelta(days=30, hours=n), category="work")
        for n in range(3):
            await _record(
                engine, "user-1", NOW - timedelta(hours=n + 1),
                category="work", actual_success=False,
            )

        found = await engine.detect_anomalies("user-1", now=NOW)

        by_type = {record.anomaly_type: record for record in found}
        assert set(by_type) == {AnomalyType.SUCCESS_RATE, AnomalyType.PREDICTION_ACCURACY}

        success = by_type[AnomalyType.SUCCESS_RATE]
        assert success.metric == "work"
        assert success.actual_value == 0.0
        assert success.expected_value == pytest.approx(40 / 43)
        assert success.z_score > 2.5
        assert success.timestamp == NOW
        assert "work" in success.description

        assert len(store.collections[ANOMALIES_COLLECTION]) == 2
        stored = await engine.experiments.get_anomalies("user-1")
        assert {r.anomaly_type for r in stored} == set(by_type)

    @pytest.mark.asyncio
    async def test_typical_window_is_not_flagged(
        self, engine: CadenceEngine, store: InMemoryDocumentStore
    ) -> None:
        for n in range(40):
            await _record(
                engine, "user-1", NOW - timedelta(days=30, hours=n),
                category="work", actual_success=n % 4 != 0,
            )
        for n in range(4):
            await _record(
                engine, "user-1", NOW - timedelta(hours=n + 1),
                category="work", actual_success=n != 0,
            )

        assert await engine.detect_anomalies("user-1", now=NOW) == []
        assert store.collections.get(ANOMALIES_COLLECTION, []) == []

    @pytest.mark.asyncio
    async def test_time_estimation_error_spike(self, engine: CadenceEngine) -> None:
        for n in range(20):
            predicted = 1100.0 if n % 2 else 1200.0
            await _record(
                engine, "user-1", NOW - timedelta(days=30, hours=n),
                predicted_time=predicted, actual_time=1000.0,
            )
        for n in range(2):
            await _record(
                engine, "user-1", NOW - timedelta(hours=n + 1),
                predicted_time=4000.0, actual_time=1000.0,
            )

        found = await engine.detect_anomalies("user-1", now=NOW)

        assert len(found) == 1
        record = found[0]
        assert record.anomaly_type is AnomalyType.TIME_ESTIMATION
        assert record.metric == "error_rate"
        assert record.actual_value == pytest.approx(3.0)
        assert record.z_score > 2.5

    @pytest.mark.asyncio
    async def test_short_history_is_skipped(self, engine: CadenceEngine) -> None:
        for n in range(5):
            await _record(
                engine, "user-1", NOW - timedelta(hours=n + 1),
                category="work", actual_success=n == 0,
            )
        assert await engine.detect_anomalies("user-1", now=NOW) == []

    @pytest.mark.asyncio
    async def test_get_anomalies_newest_first(self, engine: CadenceEngine) -> None:
        for n in range(40):
            await _record(engine, "user-1", NOW - timedelta(days=30, hours=n), category="work")
        await _record(engine, "user-1", NOW - timedelta(hours=1), category="work", actual_success=False)

        await engine.detect_anomalies("user-1", now=NOW - timedelta(minutes=30))
        await engine.detect_anomalies("user-1", now=NOW)

        stored = await engine.experiments.get_anomalies("user-1")
        assert stored[0].timestamp == NOW
        assert stored[-1].timestamp == NOW - timedelta(minutes=30)
        assert len(await engine.experiments.get_anomalies("user-1", limit=1)) == 1
