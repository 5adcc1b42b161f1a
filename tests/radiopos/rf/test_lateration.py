"""
Unit tests for the lateration solvers.

Tests the inhomogeneous and homogeneous linear solvers and the weighted
nonlinear solver in 2D and 3D, including degenerate geometries.
"""

import unittest

import numpy as np
from numpy.testing import assert_allclose

from radiopos.errors import InvalidArgumentError, NumericalError
from radiopos.rf.lateration import (
    LaterationResult,
    homogeneous_linear_lateration,
    inhomogeneous_linear_lateration,
    nonlinear_lateration,
)


class TestLinearLateration2D(unittest.TestCase):
    """Test linear lateration in 2D."""

    def setUp(self):
        self.sources = np.array([[0, 0], [10, 0], [10, 10], [0, 10]], dtype=float)
        self.true_pos = np.array([3.0, 7.0])
        self.distances = np.linalg.norm(self.sources - self.true_pos, axis=1)

    def test_inhomogeneous_exact(self):
        """Inhomogeneous lateration is exact on exact ranges."""
        position = inhomogeneous_linear_lateration(self.sources, self.distances)
        assert_allclose(position, self.true_pos, atol=1e-9)

    def test_inhomogeneous_reference_index(self):
        """Any source can be the reference."""
        position = inhomogeneous_linear_lateration(
            self.sources, self.distances, ref_idx=2
        )
        assert_allclose(position, self.true_pos, atol=1e-9)

    def test_homogeneous_exact(self):
        """Homogeneous lateration is exact on exact ranges."""
        position = homogeneous_linear_lateration(self.sources, self.distances)
        assert_allclose(position, self.true_pos, atol=1e-8)

    def test_minimal_subset(self):
        """Three sources are enough in 2D."""
        for solver in (inhomogeneous_linear_lateration, homogeneous_linear_lateration):
            position = solver(self.sources[:3], self.distances[:3])
            assert_allclose(position, self.true_pos, atol=1e-8)

    def test_collinear_sources_raise(self):
        """Collinear sources raise NumericalError."""
        sources = np.array([[0, 0], [5, 0], [10, 0]], dtype=float)
        distances = np.linalg.norm(sources - self.true_pos, axis=1)
        with self.assertRaises(NumericalError):
            inhomogeneous_linear_lateration(sources, distances)
        with self.assertRaises(NumericalError):
            homogeneous_linear_lateration(sources, distances)

    def test_too_few_sources_raise(self):
        """Fewer than three sources raise."""
        with self.assertRaises(NumericalError):
            inhomogeneous_linear_lateration(self.sources[:2], self.distances[:2])

    def test_shape_mismatch_raises(self):
        """Positions and distances must agree in length."""
        with self.assertRaises(InvalidArgumentError):
            inhomogeneous_linear_lateration(self.sources, self.distances[:3])


class TestLinearLateration3D(unittest.TestCase):
    """Test linear lateration in 3D."""

    def setUp(self):
        self.sources = np.array(
            [[0, 0, 0], [10, 0, 0], [0, 10, 0], [0, 0, 10], [10, 10, 10]],
            dtype=float,
        )
        self.true_pos = np.array([2.0, 3.0, 4.0])
        self.distances = np.linalg.norm(self.sources - self.true_pos, axis=1)

    def test_inhomogeneous_exact(self):
        """Inhomogeneous lateration is exact in 3D."""
        position = inhomogeneous_linear_lateration(self.sources, self.distances)
        assert_allclose(position, self.true_pos, atol=1e-9)

    def test_homogeneous_exact(self):
        """Homogeneous lateration is exact in 3D."""
        position = homogeneous_linear_lateration(self.sources, self.distances)
        assert_allclose(position, self.true_pos, atol=1e-8)

    def test_coplanar_sources_raise(self):
        """Coplanar sources raise NumericalError."""
        sources = np.array(
            [[0, 0, 0], [10, 0, 0], [0, 10, 0], [10, 10, 0]], dtype=float
        )
        distances = np.linalg.norm(sources - self.true_pos, axis=1)
        with self.assertRaises(NumericalError):
            inhomogeneous_linear_lateration(sources, distances)


class TestNonlinearLateration(unittest.TestCase):
    """Test iterative weighted lateration."""

    def setUp(self):
        self.sources = np.array([[0, 0], [10, 0], [10, 10], [0, 10]], dtype=float)
        self.true_pos = np.array([6.0, 2.5])
        self.distances = np.linalg.norm(self.sources - self.true_pos, axis=1)

    def test_exact_from_seed(self):
        """Exact ranges give the position from a seed."""
        result = nonlinear_lateration(
            self.sources, self.distances, initial_position=np.array([5.0, 5.0])
        )

        self.assertIsInstance(result, LaterationResult)
        assert_allclose(result.position, self.true_pos, atol=1e-6)
        self.assertTrue(result.converged)

    def test_default_seed_is_linear_solution(self):
        """Without a seed the linear solution is used."""
        result = nonlinear_lateration(self.sources, self.distances)
        assert_allclose(result.position, self.true_pos, atol=1e-6)

    def test_covariance_from_distance_stds(self):
        """Known stds give the unscaled covariance."""
        stds = np.full(4, 0.5)
        result = nonlinear_lateration(
            self.sources,
            self.distances,
            distance_stds=stds,
            return_covariance=True,
        )

        diff = result.position - self.sources
        J = diff / np.linalg.norm(diff, axis=1, keepdims=True)
        expected = np.linalg.inv(J.T @ J / 0.25)
        assert_allclose(result.covariance, expected, rtol=1e-6)

    def test_covariance_grows_with_std(self):
        """Larger stds give a larger covariance."""
        small = nonlinear_lateration(
            self.sources, self.distances, distance_stds=np.full(4, 0.1),
            return_covariance=True,
        )
        large = nonlinear_lateration(
            self.sources, self.distances, distance_stds=np.full(4, 1.0),
            return_covariance=True,
        )
        self.assertGreater(np.trace(large.covariance), np.trace(small.covariance))

    def test_invalid_stds_raise(self):
        """Non-positive stds raise."""
        with self.assertRaises(InvalidArgumentError):
            nonlinear_lateration(self.sources, self.distances, distance_stds=np.zeros(4))
        with self.assertRaises(InvalidArgumentError):
            nonlinear_lateration(self.sources, self.distances, distance_stds=np.ones(3))

    def test_wrong_seed_dimension_raises(self):
        """A seed of the wrong dimension raises."""
        with self.assertRaises(InvalidArgumentError):
            nonlinear_lateration(
                self.sources, self.distances, initial_position=np.zeros(3)
            )

    def test_noisy_ranges_3d(self):
        """Noisy 3D ranges stay close to the truth."""
        rng = np.random.default_rng(7)
        sources = np.array(
            [[0, 0, 0], [10, 0, 0], [0, 10, 0], [0, 0, 10], [10, 10, 10]],
            dtype=float,
        )
        true_pos = np.array([4.0, 5.0, 3.0])
        distances = np.linalg.norm(sources - true_pos, axis=1)
        distances = distances + 0.05 * rng.standard_normal(5)

        result = nonlinear_lateration(sources, distances)
        self.assertLess(np.linalg.norm(result.position - true_pos), 0.3)


if __name__ == "__main__":
    unittest.main()
