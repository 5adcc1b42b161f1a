"""
Robust position estimation from one family of readings.

RobustRangingPositionEstimator uses distances (ranging readings and the
ranging half of combined readings); RobustRssiPositionEstimator converts RSSI
(RSSI readings and the RSSI half of combined readings) into distances with
each source's path-loss model. Both then run the same consensus loop:

    1. Build one lateration sample per usable reading.
    2. Repeatedly draw a minimal subset, solve it, and score the candidate
       position against every sample.
    3. Keep the best candidate while shrinking the iteration bound with the
       inlier ratio.
    4. Refine the best candidate on its inliers with weighted nonlinear
       least squares and keep its covariance.

Example:
    >>> estimator = RobustRangingPositionEstimator(
    ...     sources, fingerprint,
    ...     config=RobustEstimatorConfig(method=RobustMethod.RANSAC),
    ... )
    >>> position = estimator.estimate()
    >>> estimator.covariance
"""

import dataclasses
from abc import abstractmethod
from typing import List, Optional, Sequence, Tuple

import numpy as np

from radiopos.errors import (
    InvalidArgumentError,
    NotReadyError,
    NumericalError,
    RobustEstimatorError,
)
from radiopos.estimators.robust import (
    compute_max_iterations,
    draw_subset,
    score_hypothesis,
)
from radiopos.positioning.base import EstimatorListener, ProgressTracker
from radiopos.positioning.config import RobustEstimatorConfig
from radiopos.positioning.estimator import RadioPositionEstimator
from radiopos.positioning.samples import (
    PositionSamples,
    SingleReading,
    build_samples,
    distribute_evenly,
)
from radiopos.positioning.types import (
    EstimationResult,
    Fingerprint,
    InliersData,
    RadioSource,
    ReadingType,
)
from radiopos.rf.lateration import (
    homogeneous_linear_lateration,
    inhomogeneous_linear_lateration,
    nonlinear_lateration,
)


class RobustSingleTypePositionEstimator(RadioPositionEstimator):
    """Base class of the robust ranging and RSSI position estimators.

    Args:
        sources: Located radio sources (at least dimension + 1).
        fingerprint: Readings taken at the position to estimate.
        source_quality_scores: One score per source (higher is better).
            Required by PROSAC and PROMedS.
        reading_quality_scores: One score per fingerprint reading.
            Required by PROSAC and PROMedS.
        initial_position: Seed for the nonlinear solver when linear solving
            is disabled.
        config: Estimator options, RobustEstimatorConfig() by default.
        listener: Receives progress events.
        dimension: Spatial dimension (2 or 3). Inferred from the sources
            when omitted.
        rng: Random generator used to draw subsets.
    """

    def __init__(
        self,
        sources: Optional[Sequence[RadioSource]] = None,
        fingerprint: Optional[Fingerprint] = None,
        source_quality_scores: Optional[Sequence[float]] = None,
        reading_quality_scores: Optional[Sequence[float]] = None,
        initial_position: Optional[np.ndarray] = None,
        config: Optional[RobustEstimatorConfig] = None,
        listener: Optional[EstimatorListener] = None,
        dimension: Optional[int] = None,
        rng: Optional[np.random.Generator] = None,
    ):
        self._config = config if config is not None else RobustEstimatorConfig()
        self._samples: Optional[PositionSamples] = None
        self._result: Optional[EstimationResult] = None
        super().__init__(
            sources,
            fingerprint,
            source_quality_scores,
            reading_quality_scores,
            initial_position,
            listener=listener,
            dimension=dimension,
            rng=rng,
        )

    @property
    def config(self) -> RobustEstimatorConfig:
        return self._config

    @config.setter
    def config(self, config: RobustEstimatorConfig) -> None:
        self._check_not_locked()
        if not isinstance(config, RobustEstimatorConfig):
            raise InvalidArgumentError(
                f"config must be a RobustEstimatorConfig, got {type(config).__name__}"
            )
        self._check_config(config, self.dimension)
        self._config = config
        self._invalidate()

    def configure(self, **changes) -> RobustEstimatorConfig:
        """Change some options, e.g. configure(method=RobustMethod.MSAC)."""
        self._check_not_locked()
        try:
            config = dataclasses.replace(self._config, **changes)
        except TypeError as exc:
            raise InvalidArgumentError(str(exc)) from exc
        self._check_config(config, self.dimension)
        self._config = config
        self._invalidate()
        return config

    @staticmethod
    def _check_config(config: RobustEstimatorConfig, dimension: Optional[int]) -> None:
        if dimension is not None:
            config.subset_size(dimension)

    def _check_options(self, dimension: int) -> None:
        self._check_config(self._config, dimension)

    # ------------------------------------------------------------------
    # Samples and results
    # ------------------------------------------------------------------

    @property
    def samples(self) -> Optional[PositionSamples]:
        """Lateration samples, in the order used by the consensus loop."""
        if self._samples is None and self._sources and self._fingerprint is not None:
            self._samples = self._prepare_samples()
        return self._samples

    @property
    def positions(self) -> Optional[np.ndarray]:
        samples = self.samples
        return None if samples is None else samples.positions

    @property
    def distances(self) -> Optional[np.ndarray]:
        samples = self.samples
        return None if samples is None else samples.distances

    @property
    def distance_stds(self) -> Optional[np.ndarray]:
        samples = self.samples
        return None if samples is None else samples.distance_stds

    @property
    def sample_quality_scores(self) -> Optional[np.ndarray]:
        samples = self.samples
        return None if samples is None else samples.quality_scores

    @property
    def sample_readings(self) -> Optional[List[SingleReading]]:
        samples = self.samples
        return None if samples is None else list(samples.readings)

    @property
    def result(self) -> Optional[EstimationResult]:
        return self._result

    @property
    def estimated_position(self) -> Optional[np.ndarray]:
        return None if self._result is None else self._result.position.copy()

    @property
    def covariance(self) -> Optional[np.ndarray]:
        return None if self._result is None else self._result.covariance

    @property
    def inliers_data(self) -> Optional[InliersData]:
        return None if self._result is None else self._result.inliers_data

    @property
    def is_ready(self) -> bool:
        if not self._has_inputs():
            return False
        if self._config.method.uses_quality_scores and not self._scores_match():
            return False
        return len(self.samples) >= self._config.subset_size(self.dimension)

    # ------------------------------------------------------------------
    # Estimation
    # ------------------------------------------------------------------

    def estimate(self) -> np.ndarray:
        """
        Robustly estimate the position.

        Returns:
            Estimated position (d,).

        Raises:
            LockedError: If an estimation is already running.
            NotReadyError: If the estimator lacks sources, readings or scores.
            RobustEstimatorError: If no consensus could be reached.
            NumericalError: If the covariance of the refined result cannot
                be computed.
        """
        self._check_not_locked()
        if not self.is_ready:
            raise NotReadyError(
                f"{type(self).__name__} is not ready: at least "
                f"{self.min_required_sources} sources, a fingerprint with enough "
                "usable readings and, for PROSAC/PROMedS, quality scores are required"
            )

        self._result = None
        with self._running():
            self._notify("on_estimate_start")
            self._result = self._run_consensus(self.samples)
            self._notify("on_estimate_end")

        return self._result.position.copy()

    def _run_consensus(self, samples: PositionSamples) -> EstimationResult:
        config = self._config
        method = config.method
        dimension = self.dimension
        subset_size = config.subset_size(dimension)
        n = len(samples)

        if config.threshold is not None:
            thresholds = np.full(n, config.threshold)
        else:
            thresholds = config.inlier_factor * samples.distance_stds

        quality = samples.quality_scores if method.uses_quality_scores else None
        groups = samples.groups if config.evenly_distribute_readings else None
        progress = ProgressTracker(
            lambda p: self._notify("on_estimate_progress_change", p),
            config.progress_delta,
        )

        best = None
        best_position = None
        max_iterations = config.max_iterations
        iteration = 0
        while iteration < max_iterations:
            subset = draw_subset(method, self._rng, quality, n, subset_size, groups)
            iteration += 1

            candidate = self._solve_subset(samples, subset)
            if candidate is not None:
                residuals = np.abs(
                    np.linalg.norm(samples.positions - candidate, axis=1)
                    - samples.distances
                )
                score = score_hypothesis(
                    method, residuals, thresholds, subset_size, config.inlier_factor
                )
                if score.is_better_than(best):
                    best, best_position = score, candidate
                    max_iterations = min(
                        max_iterations,
                        compute_max_iterations(
                            config.confidence,
                            subset_size,
                            score.n_inliers / n,
                            config.max_iterations,
                        ),
                    )

            self._notify("on_estimate_next_iteration", iteration)
            progress.update(iteration / max_iterations)

            if (
                best is not None
                and method.is_median_based
                and best.cost <= config.stop_threshold
            ):
                break

        if best is None:
            raise RobustEstimatorError(
                f"No valid hypothesis found in {iteration} iterations"
            )
        if best.n_inliers < dimension + 1:
            raise RobustEstimatorError(
                f"Best hypothesis has {best.n_inliers} inliers, "
                f"at least {dimension + 1} are required"
            )

        position = best_position
        covariance = None
        if config.refine_result:
            mask = best.inliers
            refined = nonlinear_lateration(
                samples.positions[mask],
                samples.distances[mask],
                initial_position=best_position,
                distance_stds=samples.distance_stds[mask],
                return_covariance=config.keep_covariance,
            )
            position = refined.position
            covariance = refined.covariance

        progress.finish()

        return EstimationResult(
            position=position,
            covariance=covariance,
            inliers_data=InliersData(best.inliers.copy(), best.residuals.copy()),
            iterations=iteration,
            method=method.value,
        )

    def _solve_subset(
        self, samples: PositionSamples, subset: Sequence[int]
    ) -> Optional[np.ndarray]:
        """Candidate position from a subset, or None for a degenerate subset."""
        config = self._config
        idx = list(subset)
        positions = samples.positions[idx]
        distances = samples.distances[idx]

        try:
            position = None
            if config.use_linear_solver:
                if config.use_homogeneous_linear_solver:
                    position = homogeneous_linear_lateration(positions, distances)
                else:
                    position = inhomogeneous_linear_lateration(positions, distances)

            if position is None or config.refine_preliminary_solutions:
                seed = position if position is not None else self._initial_position
                position = nonlinear_lateration(
                    positions,
                    distances,
                    initial_position=seed,
                    distance_stds=samples.distance_stds[idx],
                ).position
        except NumericalError:
            return None

        if not np.all(np.isfinite(position)):
            return None
        return position

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @abstractmethod
    def _extract_readings(
        self, fingerprint: Fingerprint
    ) -> Tuple[List[SingleReading], List[int]]:
        """Readings of this estimator's family and their fingerprint indices."""

    def _prepare_samples(self) -> PositionSamples:
        readings, indices = self._extract_readings(self._fingerprint)
        reading_scores = None
        if self._reading_quality_scores is not None and self._scores_match():
            reading_scores = self._reading_quality_scores[indices]
        source_scores = (
            self._source_quality_scores if reading_scores is not None else None
        )

        samples = build_samples(
            self._sources,
            readings,
            source_quality_scores=source_scores,
            reading_quality_scores=reading_scores,
            use_source_position_covariance=self._config.use_source_position_covariance,
            fallback_distance_std=self._config.fallback_distance_std,
        )
        if self._config.evenly_distribute_readings:
            samples = distribute_evenly(samples, self._sources, source_scores)
        return samples

    def _invalidate(self) -> None:
        self._samples = None


class RobustRangingPositionEstimator(RobustSingleTypePositionEstimator):
    """Robust position estimator over ranging readings.

    Accepts ranging readings and combined ranging and RSSI readings, of
    which only the distance is used.
    """

    accepted_types = (ReadingType.RANGING, ReadingType.RANGING_AND_RSSI)

    def _extract_readings(self, fingerprint):
        return fingerprint.ranging_readings()


class RobustRssiPositionEstimator(RobustSingleTypePositionEstimator):
    """Robust position estimator over RSSI readings.

    Accepts RSSI readings and combined ranging and RSSI readings, of which
    only the RSSI is used. Sources without a transmitted power are ignored.
    """

    accepted_types = (ReadingType.RSSI, ReadingType.RANGING_AND_RSSI)

    def _extract_readings(self, fingerprint):
        return fingerprint.rssi_readings()
