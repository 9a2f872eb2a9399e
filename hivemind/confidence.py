"""Statistical confidence helpers for fix success rates."""

from __future__ import annotations

from math import sqrt

Z_95 = 1.96


def wilson_lower_bound(success_rate: float, trials: int, z: float = Z_95) -> float:
    """Lower bound of the Wilson score interval for a success proportion.

    Conservative for small samples: a fix that worked 1/1 times scores lower
    than one that worked 45/50 times. Returns 0 when no trials were observed.
    """
    if trials <= 0:
        return 0.0

    n = trials
    p = success_rate
    z2 = z * z
    denominator = 1 + z2 / n
    center = (p + z2 / (2 * n)) / denominator
    margin = z * sqrt(p * (1 - p) / n + z2 / (4 * n * n)) / denominator
    return max(0.0, min(1.0, center - margin))


def running_average(current: float | None, new_value: float, count: int) -> float:
    """Fold ``new_value`` into an average that now spans ``count`` samples."""
    if not current or count <= 1:
        return float(new_value)
    return (current * (count - 1) + new_value) / count
