"""Small numeric helpers for analytics and experiment analysis.

Everything here is pure and never raises on degenerate input: empty or
zero-variance samples produce 0, None or "no result" rather than NaN.

P-values come from scipy's Student t survival function and accept
fractional degrees of freedom. Compare them with a tolerance, never exactly.
"""

from __future__ import annotations

import math
from collections.abc import Mapping, Sequence
from typing import TypeVar

from scipy import stats as sp_stats

from cadence.core.models import NEUTRAL_MULTIPLIER, StatisticalTestResult

K = TypeVar("K")


def mean(values: Sequence[float]) -> float:
    """Arithmetic mean; 0.0 for an empty sequence."""
    if not values:
        return 0.0
    return sum(values) / len(values)


def sample_variance(values: Sequence[float]) -> float:
    """Unbiased (n - 1) variance; 0.0 with fewer than two values."""
    n = len(values)
    if n < 2:
        return 0.0
    avg = mean(values)
    return sum((v - avg) ** 2 for v in values) / (n - 1)


def population_stddev(values: Sequence[float]) -> float:
    """Population (n) standard deviation; 0.0 for an empty sequence."""
    if not values:
        return 0.0
    avg = mean(values)
    return math.sqrt(sum((v - avg) ** 2 for v in values) / len(values))


def pearson_correlation(
    first: Mapping[K, float],
    second: Mapping[K, float],
    default: float = NEUTRAL_MULTIPLIER,
) -> float:
    """Pearson correlation of two keyed maps over the union of their keys.

    A key missing on one side takes ``default``. Returns 0.0 when either
    side has zero variance or there are no keys.
    """
    keys = list(dict.fromkeys([*first, *second]))
    if not keys:
        return 0.0
    xs = [first.get(k, default) for k in keys]
    ys = [second.get(k, default) for k in keys]
    mean_x = mean(xs)
    mean_y = mean(ys)

    covariance = sum((x - mean_x) * (y - mean_y) for x, y in zip(xs, ys, strict=True))
    var_x = sum((x - mean_x) ** 2 for x in xs)
    var_y = sum((y - mean_y) ** 2 for y in ys)
    if var_x == 0 or var_y == 0:
        return 0.0
    return covariance / math.sqrt(var_x * var_y)


def t_test_p_value(t_value: float, degrees_of_freedom: float) -> float:
    """Two-tailed p-value of a t statistic."""
    if degrees_of_freedom <= 0 or math.isnan(t_value):
        return 1.0
    if math.isinf(t_value):
        return 0.0
    p = 2.0 * float(sp_stats.t.sf(abs(t_value), degrees_of_freedom))
    return min(1.0, max(0.0, p))


def cohens_d(treatment: Sequence[float], control: Sequence[float]) -> float:
    """Standardized mean difference (treatment - control) over the pooled SD."""
    n1 = len(treatment)
    n2 = len(control)
    if n1 + n2 <= 2:
        return 0.0
    pooled_variance = (
        (n1 - 1) * sample_variance(treatment) + (n2 - 1) * sample_variance(control)
    ) / (n1 + n2 - 2)
    if pooled_variance <= 0:
        return 0.0
    return (mean(treatment) - mean(control)) / math.sqrt(pooled_variance)


def welch_t_test(
    treatment: Sequence[float],
    control: Sequence[float],
    *,
    significance_level: float = 0.05,
    critical_value: float = 1.96,
) -> StatisticalTestResult | None:
    """Welch's unequal-variance t-test of treatment against control.

    Degrees of freedom come from the Welch-Satterthwaite equation and are
    not rounded. The confidence interval on the mean difference uses the
    fixed ``critical_value`` (normal approximation).

    Returns:
        None when either group has fewer than two samples or both groups
        have zero variance.
    """
    n1 = len(treatment)
    n2 = len(control)
    if n1 < 2 or n2 < 2:
        return None

    v1 = sample_variance(treatment) / n1
    v2 = sample_variance(control) / n2
    standard_error = math.sqrt(v1 + v2)
    if standard_error == 0:
        return None

    difference = mean(treatment) - mean(control)
    t_value = difference / standard_error
    degrees_of_freedom = (v1 + v2) ** 2 / (v1**2 / (n1 - 1) + v2**2 / (n2 - 1))
    p_value = t_test_p_value(t_value, degrees_of_freedom)
    margin = critical_value * standard_error

    return StatisticalTestResult(
        t_value=t_value,
        p_value=p_value,
        effect_size=cohens_d(treatment, control),
        confidence_interval=(difference - margin, difference + margin),
        degrees_of_freedom=degrees_of_freedom,
        is_significant=p_value < significance_level,
        treatment_size=n1,
        control_size=n2,
    )


def zscore_anomaly(
    history: Sequence[float],
    current: float,
    *,
    threshold: float = 2.5,
    min_samples: int = 10,
) -> tuple[float, float] | None:
    """Check current against history using a z-score.

    Returns:
        (history mean, z-score) when |current - mean| / stddev exceeds
        threshold, otherwise None. Histories shorter than min_samples or
        with zero spread never flag.
    """
    if len(history) < min_samples:
        return None
    stddev = population_stddev(history)
    if stddev == 0:
        return None
    avg = mean(history)
    z_score = abs(current - avg) / stddev
    if z_score > threshold:
        return avg, z_score
    return None
