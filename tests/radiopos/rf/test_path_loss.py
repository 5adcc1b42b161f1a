"""
Unit tests for the RSSI path-loss model.

Tests the forward model, its inversion, the distance uncertainty
propagation and the fading simulator.
"""

import numpy as np
import pytest

from radiopos.rf.measurement_models import (
    rss_distance_std,
    rss_pathloss,
    rss_to_distance,
    simulate_rss_measurement,
)


class TestPathLossModel:
    """Test the log-distance model and its inverse."""

    def test_pathloss_at_reference_distance(self):
        """Received power at 1 m equals the reference power."""
        assert rss_pathloss(-40.0, 1.0, path_loss_exp=2.5) == pytest.approx(-40.0)

    def test_pathloss_ten_meters(self):
        """At 10 m and exponent 2.5 the loss is 25 dB."""
        rss = rss_pathloss(p_ref_dbm=-40.0, distance=10.0, path_loss_exp=2.5)
        assert rss == pytest.approx(-65.0)

    def test_pathloss_rejects_non_positive_distance(self):
        """Zero or negative distances raise."""
        with pytest.raises(ValueError):
            rss_pathloss(-40.0, 0.0)

    def test_inverse_recovers_distance(self):
        """Inverting the model recovers the distance."""
        for distance in (0.5, 1.0, 7.3, 42.0):
            rss = rss_pathloss(-38.0, distance, path_loss_exp=3.1, d_ref=1.0)
            assert rss_to_distance(rss, -38.0, 3.1) == pytest.approx(distance)

    def test_reference_distance_scales_result(self):
        """The reference distance scales the inverted distance."""
        d = rss_to_distance(-50.0, -50.0, path_loss_exp=2.0, d_ref=2.0)
        assert d == pytest.approx(2.0)

    def test_inverse_rejects_non_positive_exponent(self):
        """A non-positive exponent raises."""
        with pytest.raises(ValueError):
            rss_to_distance(-60.0, -40.0, path_loss_exp=0.0)


class TestDistanceStd:
    """Test first-order propagation of path-loss uncertainties."""

    def test_no_uncertainty_returns_none(self):
        """Without any std there is no distance std."""
        assert rss_distance_std(-65.0, -40.0, 2.5) is None

    def test_rssi_std_only(self):
        """RSSI std alone is propagated to distance."""
        # d = 10 m, ∂d/∂rssi = -d ln10 / (10 η)
        std = rss_distance_std(-65.0, -40.0, 2.5, rss_std=1.0)
        assert std == pytest.approx(10.0 * np.log(10.0) / 25.0)

    def test_power_and_rssi_std_combine_in_quadrature(self):
        """Power and RSSI stds add in quadrature."""
        g = 10.0 * np.log(10.0) / 25.0
        std = rss_distance_std(-65.0, -40.0, 2.5, p_ref_std=2.0, rss_std=1.0)
        assert std == pytest.approx(g * np.sqrt(5.0))

    def test_exponent_std(self):
        """Exponent std adds distance uncertainty."""
        # ∂d/∂η = -d ln10 (p_ref - rssi) / (10 η²)
        expected = 10.0 * np.log(10.0) * 25.0 / (10.0 * 2.5**2) * 0.1
        std = rss_distance_std(-65.0, -40.0, 2.5, path_loss_exp_std=0.1)
        assert std == pytest.approx(expected)

    def test_matches_finite_difference(self):
        """Propagated std matches a finite-difference slope."""
        eps = 1e-6
        numeric = (
            rss_to_distance(-70.0 + eps, -42.0, 2.7)
            - rss_to_distance(-70.0 - eps, -42.0, 2.7)
        ) / (2 * eps)
        std = rss_distance_std(-70.0, -42.0, 2.7, rss_std=1.0)
        assert std == pytest.approx(abs(numeric), rel=1e-5)


class TestSimulateRss:
    """Test the RSSI measurement simulator."""

    def test_noiseless_simulation(self):
        """Without fading the simulator returns the model value."""
        rss, info = simulate_rss_measurement(
            np.array([0.0, 0.0]), np.array([10.0, 0.0]), p_ref_dbm=-40.0
        )
        assert rss == pytest.approx(-65.0)
        assert info["distance_estimate"] == pytest.approx(10.0)
        assert info["omega_long_db"] == 0.0

    def test_shadowing_is_reproducible_with_rng(self):
        """The same generator seed gives the same shadowing."""
        kwargs = dict(p_ref_dbm=-40.0, sigma_long_db=6.0, sigma_short_linear=0.7)
        a, _ = simulate_rss_measurement(
            np.zeros(3), np.ones(3), rng=np.random.default_rng(3), **kwargs
        )
        b, _ = simulate_rss_measurement(
            np.zeros(3), np.ones(3), rng=np.random.default_rng(3), **kwargs
        )
        assert a == b

    def test_invalid_fading_model(self):
        """An unknown fading model raises ValueError."""
        with pytest.raises(ValueError):
            simulate_rss_measurement(
                np.zeros(2), np.ones(2), -40.0, short_fading_model="rician"
            )

    def test_coincident_positions_rejected(self):
        """Coincident source and receiver raise ValueError."""
        with pytest.raises(ValueError):
            simulate_rss_measurement(np.zeros(2), np.zeros(2), -40.0)
