"""Deterministic statistical helpers.

Closed-form normal and chi-square tail probabilities plus
inverse-variance pooling. Pure arithmetic, no sampling.
"""

from __future__ import annotations

import math
from dataclasses import dataclass

_SQRT2 = math.sqrt(2.0)


@dataclass(frozen=True)
class PooledEstimate:
    """Inverse-variance pooled estimate."""
    estimate: float
    standard_error: float
    n_estimates: int

    @property
    def variance(self) -> float:
        return self.standard_error ** 2


@dataclass(frozen=True)
class WaldTest:
    z: float
    p_value: float


def normal_cdf(z: float) -> float:
    """Standard normal cumulative distribution function."""
    return 0.5 * math.erfc(-z / _SQRT2)


def two_sided_p(z: float) -> float:
    """Two-sided p-value of a standard normal test statistic."""
    return min(1.0, math.erfc(abs(z) / _SQRT2))


def chi_square_sf(x: float, df: int) -> float:
    """Upper tail probability P(X > x) of a chi-square with integer df.

    Uses the closed forms for even and odd degrees of freedom:

        even df:  exp(-x/2) * sum_{i<df/2} (x/2)^i / i!
        odd df:   erfc(sqrt(x/2))
                  + sqrt(2x/pi) exp(-x/2) * sum_{i=1}^{(df-1)/2} x^(i-1) / (1*3*...*(2i-1))
    """
    if df < 1:
        raise ValueError(f"degrees of freedom must be >= 1, got {df}")
    if x <= 0:
        return 1.0

    half = x / 2.0
    if df % 2 == 0:
        term = 1.0
        total = 1.0
        for i in range(1, df // 2):
            term *= half / i
            total += term
        result = math.exp(-half) * total
    else:
        result = math.erfc(math.sqrt(half))
        if df > 1:
            term = 1.0
            total = 1.0
            for i in range(1, (df - 1) // 2):
                term *= x / (2 * i + 1)
                total += term
            result += math.sqrt(2.0 * x / math.pi) * math.exp(-half) * total

    return max(0.0, min(1.0, result))


def inverse_variance_pool(
    estimates: list[float],
    standard_errors: list[float]
) -> PooledEstimate:
    """Fixed-effect inverse-variance pooling.

    Args:
        estimates: Effect estimates on a common additive scale
        standard_errors: Matching standard errors (all strictly positive)

    Returns:
        Pooled estimate with SE = sqrt(1 / sum(w))

    Raises:
        ValueError: On empty input, mismatched lengths or a non-positive SE
    """
    if not estimates:
        raise ValueError("cannot pool an empty set of estimates")
    if len(estimates) != len(standard_errors):
        raise ValueError("estimates and standard_errors differ in length")

    sum_w = 0.0
    sum_wy = 0.0
    for estimate, se in zip(estimates, standard_errors):
        if not se > 0:
            raise ValueError(f"standard error must be positive, got {se}")
        weight = 1.0 / (se * se)
        sum_w += weight
        sum_wy += weight * estimate

    return PooledEstimate(
        estimate=sum_wy / sum_w,
        standard_error=math.sqrt(1.0 / sum_w),
        n_estimates=len(estimates),
    )


def wald_test(difference: float, standard_error: float) -> WaldTest:
    """Two-sided Wald test of ``difference`` against zero."""
    if not standard_error > 0:
        raise ValueError(f"standard error must be positive, got {standard_error}")
    z = difference / standard_error
    return WaldTest(z=z, p_value=two_sided_p(z))
