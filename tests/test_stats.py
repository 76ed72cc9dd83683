"""Tests for the closed-form statistical helpers."""

import math

import pytest

from nmacore.engine.stats import (
    chi_square_sf,
    inverse_variance_pool,
    normal_cdf,
    two_sided_p,
    wald_test,
)


class TestNormal:
    """Tests for normal distribution helpers."""

    def test_cdf_symmetry(self):
        assert normal_cdf(0.0) == pytest.approx(0.5)
        assert normal_cdf(1.3) + normal_cdf(-1.3) == pytest.approx(1.0)

    def test_cdf_known_quantile(self):
        assert normal_cdf(1.959964) == pytest.approx(0.975, abs=1e-6)

    def test_two_sided_p(self):
        assert two_sided_p(0.0) == 1.0
        assert two_sided_p(1.959964) == pytest.approx(0.05, abs=1e-6)
        assert two_sided_p(-1.959964) == pytest.approx(0.05, abs=1e-6)

    def test_two_sided_p_extreme(self):
        """Large statistics give tiny but non-negative p-values."""
        p = two_sided_p(10.0)
        assert 0.0 <= p < 1e-20


class TestChiSquare:
    """Tests for the chi-square survival function."""

    @pytest.mark.parametrize("df, critical", [
        (1, 3.841459),
        (2, 5.991465),
        (3, 7.814728),
        (4, 9.487729),
        (5, 11.070498),
        (10, 18.307038),
    ])
    def test_five_percent_critical_values(self, df, critical):
        assert chi_square_sf(critical, df) == pytest.approx(0.05, abs=1e-5)

    def test_df_one_matches_normal(self):
        for x in (0.5, 2.0, 6.0):
            assert chi_square_sf(x, 1) == pytest.approx(two_sided_p(math.sqrt(x)))

    def test_df_two_is_exponential(self):
        for x in (0.5, 2.0, 6.0):
            assert chi_square_sf(x, 2) == pytest.approx(math.exp(-x / 2))

    def test_zero_statistic(self):
        assert chi_square_sf(0.0, 3) == 1.0

    def test_monotone_in_x(self):
        values = [chi_square_sf(x, 3) for x in (0.5, 1.0, 2.0, 4.0, 8.0)]
        assert values == sorted(values, reverse=True)

    def test_invalid_df(self):
        with pytest.raises(ValueError):
            chi_square_sf(1.0, 0)


class TestPooling:
    """Tests for inverse-variance pooling."""

    def test_equal_weights(self):
        pooled = inverse_variance_pool([1.0, 3.0], [1.0, 1.0])
        assert pooled.estimate == pytest.approx(2.0)
        assert pooled.standard_error == pytest.approx(math.sqrt(0.5))
        assert pooled.n_estimates == 2

    def test_unequal_weights(self):
        pooled = inverse_variance_pool([0.0, 10.0], [1.0, 2.0])
        assert pooled.estimate == pytest.approx(2.0)
        assert pooled.variance == pytest.approx(0.8)

    def test_single_estimate_passes_through(self):
        pooled = inverse_variance_pool([0.4], [0.2])
        assert pooled.estimate == pytest.approx(0.4)
        assert pooled.standard_error == pytest.approx(0.2)

    def test_empty(self):
        with pytest.raises(ValueError):
            inverse_variance_pool([], [])

    def test_mismatched_lengths(self):
        with pytest.raises(ValueError):
            inverse_variance_pool([1.0, 2.0], [0.1])

    def test_zero_standard_error(self):
        with pytest.raises(ValueError):
            inverse_variance_pool([1.0], [0.0])


class TestWald:
    """Tests for the Wald test."""

    def test_wald(self):
        test = wald_test(0.392, 0.2)
        assert test.z == pytest.approx(1.96)
        assert test.p_value == pytest.approx(0.05, abs=1e-3)

    def test_zero_difference(self):
        assert wald_test(0.0, 0.5).p_value == 1.0

    def test_invalid_standard_error(self):
        with pytest.raises(ValueError):
            wald_test(1.0, 0.0)
