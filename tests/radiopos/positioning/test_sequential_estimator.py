"""
Unit tests for the sequential ranging then RSSI position estimator.
"""

import numpy as np
import pytest
from numpy.testing import assert_allclose

from radiopos.errors import (
    InvalidArgumentError,
    LockedError,
    NotReadyError,
    RangingSeedWarning,
    RobustEstimatorError,
)
from radiopos.positioning import (
    EstimatorListener,
    Fingerprint,
    RadioSource,
    RangingAndRssiReading,
    RangingReading,
    RobustEstimatorConfig,
    RssiReading,
    SequentialRobustRangingAndRssiPositionEstimator,
)
from radiopos.rf.measurement_models import rss_pathloss

P_REF = -40.0
ETA = 2.0
TRUE_POSITION = np.array([3.0, 4.0])

RANSAC = RobustEstimatorConfig(method="ransac")


def _sources(positions):
    return [
        RadioSource(f"ap-{i}", p, transmitted_power_dbm=P_REF, path_loss_exponent=ETA)
        for i, p in enumerate(np.asarray(positions, dtype=float))
    ]


def _distance(source):
    return float(np.linalg.norm(source.position - TRUE_POSITION))


def _rssi(source):
    return rss_pathloss(P_REF, _distance(source), ETA)


SOURCES = _sources([[0, 0], [10, 0], [10, 10], [0, 10], [5, -3]])


def _mixed_fingerprint():
    readings = [
        RangingAndRssiReading(s, _distance(s), _rssi(s)) for s in SOURCES[:3]
    ]
    readings.append(RangingReading(SOURCES[3], _distance(SOURCES[3])))
    readings.extend(RssiReading(s, _rssi(s)) for s in SOURCES[3:])
    return Fingerprint(readings)


class RecordingListener(EstimatorListener):
    def __init__(self):
        self.events = []
        self.iterations = []
        self.progress = []

    def on_estimate_start(self, estimator):
        self.events.append("start")

    def on_estimate_end(self, estimator):
        self.events.append("end")

    def on_estimate_next_iteration(self, estimator, iteration):
        self.iterations.append(iteration)

    def on_estimate_progress_change(self, estimator, progress):
        self.progress.append(progress)


class TestSequentialEstimation:
    """Test sequential estimation on 2D fingerprints."""

    def test_mixed_fingerprint_with_scores(self):
        """A mixed fingerprint with scores gives the exact position."""
        fingerprint = _mixed_fingerprint()
        estimator = SequentialRobustRangingAndRssiPositionEstimator(
            SOURCES,
            fingerprint,
            source_quality_scores=np.ones(len(SOURCES)),
            reading_quality_scores=np.ones(len(fingerprint)),
            rng=np.random.default_rng(0),
        )

        position = estimator.estimate()

        assert_allclose(position, TRUE_POSITION, atol=1e-6)
        assert_allclose(estimator.ranging_result.position, TRUE_POSITION, atol=1e-6)
        assert estimator.result is estimator.rssi_result
        assert_allclose(estimator.seed_position, estimator.ranging_result.position)
        assert not estimator.ranging_phase_failed

    def test_ranging_phase_keeps_no_covariance(self):
        """The seeding phase keeps no covariance."""
        estimator = SequentialRobustRangingAndRssiPositionEstimator(
            SOURCES,
            _mixed_fingerprint(),
            ranging_config=RANSAC,
            rssi_config=RANSAC,
            rng=np.random.default_rng(1),
        )
        estimator.estimate()

        assert estimator.ranging_result.covariance is None
        assert estimator.covariance.shape == (2, 2)
        # RSSI samples of the final phase: one per source
        assert len(estimator.distances) == len(SOURCES)

    def test_shared_flags_apply_to_final_phase(self):
        """Shared flags control the final phase."""
        estimator = SequentialRobustRangingAndRssiPositionEstimator(
            SOURCES,
            _mixed_fingerprint(),
            ranging_config=RANSAC,
            rssi_config=RANSAC,
            keep_covariance=False,
            rng=np.random.default_rng(2),
        )
        estimator.estimate()
        assert estimator.covariance is None
        assert estimator.estimated_position is not None

    def test_ranging_only_fingerprint(self):
        """Ranging readings alone give the final result."""
        fingerprint = Fingerprint([RangingReading(s, _distance(s)) for s in SOURCES])
        estimator = SequentialRobustRangingAndRssiPositionEstimator(
            SOURCES,
            fingerprint,
            ranging_config=RANSAC,
            rssi_config=RANSAC,
            rng=np.random.default_rng(3),
        )

        assert_allclose(estimator.estimate(), TRUE_POSITION, atol=1e-6)
        assert estimator.rssi_result is None
        assert estimator.result is estimator.ranging_result
        assert estimator.covariance is not None

    def test_rssi_only_fingerprint(self):
        """RSSI readings alone start from the initial position."""
        fingerprint = Fingerprint([RssiReading(s, _rssi(s)) for s in SOURCES])
        estimator = SequentialRobustRangingAndRssiPositionEstimator(
            SOURCES,
            fingerprint,
            initial_position=np.array([5.0, 5.0]),
            ranging_config=RANSAC,
            rssi_config=RANSAC,
            rng=np.random.default_rng(4),
        )

        assert_allclose(estimator.estimate(), TRUE_POSITION, atol=1e-6)
        assert estimator.ranging_result is None
        assert_allclose(estimator.seed_position, [5.0, 5.0])


def test_ranging_seed_not_worse_than_rssi_alone():
    """Noisy RSSI solved from a poor seed vs seeded by exact ranging."""
    rng = np.random.default_rng(8)
    nonlinear = RobustEstimatorConfig(method="ransac", use_linear_solver=False)
    poor_seed = np.array([40.0, -30.0])
    sequential_errors, rssi_errors = [], []

    for _ in range(30):
        readings = [RangingReading(s, _distance(s)) for s in SOURCES[:3]]
        readings.extend(
            RssiReading(s, _rssi(s) + rng.normal(0.0, 2.0), rssi_std=2.0)
            for s in SOURCES
        )
        fingerprint = Fingerprint(readings)

        sequential = SequentialRobustRangingAndRssiPositionEstimator(
            SOURCES,
            fingerprint,
            initial_position=poor_seed,
            ranging_config=RANSAC,
            rssi_config=nonlinear,
            rng=rng,
        )
        sequential_errors.append(
            np.linalg.norm(sequential.estimate() - TRUE_POSITION)
        )

        rssi_only = SequentialRobustRangingAndRssiPositionEstimator(
            SOURCES,
            Fingerprint(readings[3:]),
            initial_position=poor_seed,
            ranging_config=RANSAC,
            rssi_config=nonlinear,
            rng=rng,
        )
        rssi_errors.append(np.linalg.norm(rssi_only.estimate() - TRUE_POSITION))

    assert np.median(sequential_errors) <= np.median(rssi_errors) + 0.25


class TestRangingFailure:
    """Test a ranging phase without consensus."""

    def setup_method(self):
        # ranging readings only reach collinear sources
        self.sources = _sources([[0, 0], [5, 0], [10, 0], [0, 10], [10, 10]])
        self.ranging = [RangingReading(s, _distance(s)) for s in self.sources[:3]]
        self.rssi = [RssiReading(s, _rssi(s)) for s in self.sources]

    def test_failure_warns_and_rssi_phase_runs(self):
        """A failed ranging phase warns and RSSI still runs."""
        estimator = SequentialRobustRangingAndRssiPositionEstimator(
            self.sources,
            Fingerprint(self.ranging + self.rssi),
            ranging_config=RobustEstimatorConfig(method="ransac", max_iterations=20),
            rssi_config=RANSAC,
            rng=np.random.default_rng(5),
        )

        with pytest.warns(RangingSeedWarning):
            position = estimator.estimate()

        assert_allclose(position, TRUE_POSITION, atol=1e-6)
        assert estimator.ranging_phase_failed
        assert estimator.ranging_result is None
        assert estimator.result is estimator.rssi_result

    def test_failure_without_rssi_raises(self):
        """Without RSSI readings the ranging failure is raised."""
        estimator = SequentialRobustRangingAndRssiPositionEstimator(
            self.sources,
            Fingerprint(self.ranging),
            ranging_config=RobustEstimatorConfig(method="ransac", max_iterations=20),
            rssi_config=RANSAC,
            rng=np.random.default_rng(6),
        )
        with pytest.raises(RobustEstimatorError):
            estimator.estimate()
        assert not estimator.is_locked


class TestReadinessAndOptions:
    """Test readiness and phase options."""

    def test_quality_methods_need_scores(self):
        """Default quality methods need scores in either phase."""
        estimator = SequentialRobustRangingAndRssiPositionEstimator(
            SOURCES, _mixed_fingerprint()
        )
        assert not estimator.is_ready
        with pytest.raises(NotReadyError):
            estimator.estimate()

        estimator.ranging_config = RANSAC
        estimator.rssi_config = RANSAC
        assert estimator.is_ready

    def test_not_enough_readings(self):
        """Too few readings for either phase is not ready."""
        fingerprint = Fingerprint([RangingReading(s, _distance(s)) for s in SOURCES[:2]])
        estimator = SequentialRobustRangingAndRssiPositionEstimator(
            SOURCES, fingerprint, ranging_config=RANSAC, rssi_config=RANSAC
        )
        assert not estimator.is_ready
        with pytest.raises(NotReadyError):
            estimator.estimate()

    def test_configure_phases(self):
        """Each phase is configured separately."""
        estimator = SequentialRobustRangingAndRssiPositionEstimator()
        estimator.configure_ranging(method="lmeds")
        estimator.configure_rssi(method="msac", threshold=1.0)
        assert estimator.ranging_config.method.value == "lmeds"
        assert estimator.rssi_config.threshold == 1.0
        with pytest.raises(InvalidArgumentError):
            estimator.configure_rssi(unknown=True)

    def test_invalid_options(self):
        """Invalid options raise InvalidArgumentError."""
        with pytest.raises(InvalidArgumentError):
            SequentialRobustRangingAndRssiPositionEstimator(ranging_config="ransac")
        with pytest.raises(InvalidArgumentError):
            SequentialRobustRangingAndRssiPositionEstimator(progress_delta=1.5)


class TestSequentialListener:
    """Test events and locking across both phases."""

    def _estimator(self, listener):
        return SequentialRobustRangingAndRssiPositionEstimator(
            SOURCES,
            _mixed_fingerprint(),
            ranging_config=RANSAC,
            rssi_config=RANSAC,
            progress_delta=0.0,
            listener=listener,
            rng=np.random.default_rng(7),
        )

    def test_progress_spans_both_phases(self):
        """Progress rises to 1.0 across both phases."""
        listener = RecordingListener()
        self._estimator(listener).estimate()

        assert listener.events == ["start", "end"]
        assert listener.progress == sorted(listener.progress)
        assert listener.progress[-1] == 1.0
        assert any(p <= 0.5 for p in listener.progress)
        assert all(b > a for a, b in zip(listener.iterations, listener.iterations[1:]))

    def test_options_locked_while_running(self):
        """Options cannot change while estimating."""
        raised = []

        class MeddlingListener(EstimatorListener):
            def on_estimate_next_iteration(self, estimator, iteration):
                if raised:
                    return
                for mutate in (
                    lambda: setattr(estimator, "refine_result", False),
                    lambda: estimator.configure_rssi(method="lmeds"),
                    lambda: estimator.set_quality_scores(None, None),
                    estimator.estimate,
                ):
                    with pytest.raises(LockedError):
                        mutate()
                raised.append(iteration)

        estimator = self._estimator(MeddlingListener())
        estimator.estimate()

        assert raised == [1]
        assert not estimator.is_locked
        assert estimator.refine_result


class TestFailedEstimation:
    """A failing final phase publishes no partial result."""

    def test_failed_rssi_phase_leaves_no_result(self):
        """Ranging succeeds, RSSI cannot reach consensus: nothing is kept."""
        estimator = SequentialRobustRangingAndRssiPositionEstimator(
            SOURCES,
            _mixed_fingerprint(),
            ranging_config=RANSAC,
            rssi_config=RANSAC,
            rng=np.random.default_rng(11),
        )
        estimator.estimate()
        assert estimator.estimated_position is not None

        rng = np.random.default_rng(12)
        readings = [RangingReading(s, _distance(s)) for s in SOURCES]
        readings.extend(RssiReading(s, _rssi(s) + rng.normal(0.0, 6.0)) for s in SOURCES)
        estimator.set_fingerprint(Fingerprint(readings))
        estimator.configure_rssi(threshold=1e-12, max_iterations=20)

        with pytest.raises(RobustEstimatorError):
            estimator.estimate()

        assert estimator.result is None
        assert estimator.estimated_position is None
        assert estimator.covariance is None
        assert estimator.inliers_data is None
        assert estimator.ranging_result is None
        assert estimator.rssi_result is None
        assert estimator.seed_position is None
        assert estimator.positions is None
        assert not estimator.is_locked


SOURCES_3D = [
    RadioSource(f"ap-{i}", p, transmitted_power_dbm=P_REF, path_loss_exponent=ETA)
    for i, p in enumerate(
        np.array([[0, 0, 0], [10, 0, 0], [0, 10, 0], [0, 0, 10]], dtype=float)
    )
]
TRUE_3D = np.array([2.0, 3.0, 4.0])


def _combined_3d(rng=None, noise=0.0):
    readings = []
    for source in SOURCES_3D:
        distance = float(np.linalg.norm(source.position - TRUE_3D))
        rssi = rss_pathloss(P_REF, distance, ETA)
        if rng is not None:
            distance += rng.normal(0.0, noise)
            rssi += rng.normal(0.0, noise)
        readings.append(
            RangingAndRssiReading(
                source, distance, rssi, distance_std=1e-3, rssi_std=1e-3
            )
        )
    return Fingerprint(readings)


class TestMinimal3D:
    """Four sources in 3D, one combined reading each, RANSAC with refinement."""

    def _estimator(self, fingerprint, seed):
        return SequentialRobustRangingAndRssiPositionEstimator(
            SOURCES_3D,
            fingerprint,
            ranging_config=RobustEstimatorConfig(method="ransac", confidence=0.99),
            rssi_config=RobustEstimatorConfig(method="ransac", confidence=0.99),
            refine_result=True,
            rng=np.random.default_rng(seed),
        )

    def test_noiseless_readings(self):
        """Exact readings give the position within 1e-6 and a covariance."""
        estimator = self._estimator(_combined_3d(), seed=20)

        assert_allclose(estimator.estimate(), TRUE_3D, atol=1e-6)
        assert estimator.dimension == 3
        assert estimator.covariance is not None
        assert estimator.covariance.shape == (3, 3)
        assert np.all(np.linalg.eigvalsh(estimator.covariance) > 0)
        assert_allclose(estimator.ranging_result.position, TRUE_3D, atol=1e-6)

    def test_millimetre_perturbation(self):
        """Readings perturbed by N(0, 1e-3) stay within a centimetre."""
        fingerprint = _combined_3d(np.random.default_rng(21), noise=1e-3)
        estimator = self._estimator(fingerprint, seed=22)

        position = estimator.estimate()

        assert np.linalg.norm(position - TRUE_3D) < 0.01
        assert estimator.covariance is not None
        assert estimator.covariance.shape == (3, 3)

    def test_subset_size_below_3d_minimum(self):
        """A 3-sample subset cannot be configured for a 3D estimation."""
        estimator = self._estimator(_combined_3d(), seed=23)
        with pytest.raises(InvalidArgumentError):
            estimator.configure_rssi(preliminary_subset_size=3)
        with pytest.raises(InvalidArgumentError):
            estimator.ranging_config = RobustEstimatorConfig(
                method="ransac", preliminary_subset_size=3
            )
        assert estimator.rssi_config.preliminary_subset_size is None
        assert estimator.ranging_config.preliminary_subset_size is None
        assert estimator.is_ready
