"""
Two-phase robust position estimation from mixed ranging and RSSI readings.

Ranging is usually far more accurate than RSSI, but RSSI is more widely
available. The sequential estimator first runs a robust ranging estimation
(ranging readings plus the ranging half of combined readings) and uses its
result to seed a robust RSSI estimation (RSSI readings plus the RSSI half of
combined readings). The RSSI result is the final estimate; when the
fingerprint has no usable RSSI reading, the ranging result is.

A failed ranging phase does not abort the estimation: a RangingSeedWarning
is emitted and the RSSI phase starts from the caller's initial position.

Example:
    >>> estimator = SequentialRobustRangingAndRssiPositionEstimator(
    ...     sources, fingerprint, source_scores, reading_scores,
    ...     initial_position=np.zeros(2),
    ... )
    >>> position = estimator.estimate()
    >>> estimator.ranging_result.position  # seed used by the RSSI phase
"""

import dataclasses
import warnings
from typing import List, Optional, Sequence, Tuple, Type

import numpy as np

from radiopos.errors import (
    InvalidArgumentError,
    NotReadyError,
    NumericalError,
    RangingSeedWarning,
    RobustEstimatorError,
)
from radiopos.positioning.base import EstimatorListener, ProgressTracker
from radiopos.positioning.config import DEFAULT_PROGRESS_DELTA, RobustEstimatorConfig
from radiopos.positioning.estimator import RadioPositionEstimator
from radiopos.positioning.robust_estimator import (
    RobustRangingPositionEstimator,
    RobustRssiPositionEstimator,
    RobustSingleTypePositionEstimator,
)
from radiopos.positioning.types import (
    EstimationResult,
    Fingerprint,
    InliersData,
    RadioSource,
)


class _PhaseListener(EstimatorListener):
    """Forwards the events of one phase to the sequential estimator's listener."""

    def __init__(
        self,
        owner: "SequentialRobustRangingAndRssiPositionEstimator",
        tracker: ProgressTracker,
        offset: float,
        scale: float,
        iteration_offset: int = 0,
    ):
        self.owner = owner
        self.tracker = tracker
        self.offset = offset
        self.scale = scale
        self.iteration_offset = iteration_offset
        self.iterations = 0

    def on_estimate_next_iteration(self, estimator, iteration):
        self.iterations = iteration
        self.owner._notify(
            "on_estimate_next_iteration", self.iteration_offset + iteration
        )

    def on_estimate_progress_change(self, estimator, progress):
        self.tracker.update(self.offset + self.scale * progress)


class SequentialRobustRangingAndRssiPositionEstimator(RadioPositionEstimator):
    """Robust ranging estimation seeding a robust RSSI estimation.

    Args:
        sources: Located radio sources (at least dimension + 1).
        fingerprint: Mixed readings taken at the position to estimate.
        source_quality_scores: One score per source.
        reading_quality_scores: One score per fingerprint reading.
        initial_position: Seed of the ranging phase, and of the RSSI phase
            when the ranging phase fails or has no readings.
        ranging_config: Options of the ranging phase.
        rssi_config: Options of the RSSI phase.
        refine_result: Refine the final result on its inliers.
        keep_covariance: Keep the covariance of the final result.
        progress_delta: Minimum progress change between listener events.
        listener: Receives progress events of both phases.
        dimension: Spatial dimension (2 or 3).
        rng: Random generator shared by both phases.
    """

    def __init__(
        self,
        sources: Optional[Sequence[RadioSource]] = None,
        fingerprint: Optional[Fingerprint] = None,
        source_quality_scores: Optional[Sequence[float]] = None,
        reading_quality_scores: Optional[Sequence[float]] = None,
        initial_position: Optional[np.ndarray] = None,
        ranging_config: Optional[RobustEstimatorConfig] = None,
        rssi_config: Optional[RobustEstimatorConfig] = None,
        refine_result: bool = True,
        keep_covariance: bool = True,
        progress_delta: float = DEFAULT_PROGRESS_DELTA,
        listener: Optional[EstimatorListener] = None,
        dimension: Optional[int] = None,
        rng: Optional[np.random.Generator] = None,
    ):
        self._ranging_config = self._check_config(ranging_config)
        self._rssi_config = self._check_config(rssi_config)
        self._refine_result = bool(refine_result)
        self._keep_covariance = bool(keep_covariance)
        self._progress_delta = self._check_progress_delta(progress_delta)
        self._ranging_result: Optional[EstimationResult] = None
        self._rssi_result: Optional[EstimationResult] = None
        self._final: Optional[RobustSingleTypePositionEstimator] = None
        self._seed_position: Optional[np.ndarray] = None
        self._ranging_phase_failed = False
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

    @staticmethod
    def _check_config(config: Optional[RobustEstimatorConfig]) -> RobustEstimatorConfig:
        if config is None:
            return RobustEstimatorConfig()
        if not isinstance(config, RobustEstimatorConfig):
            raise InvalidArgumentError(
                f"config must be a RobustEstimatorConfig, got {type(config).__name__}"
            )
        return config

    @staticmethod
    def _check_progress_delta(progress_delta: float) -> float:
        if not 0.0 <= progress_delta <= 1.0:
            raise InvalidArgumentError(
                f"progress_delta must be in [0, 1], got {progress_delta}"
            )
        return float(progress_delta)

    # Options

    @property
    def ranging_config(self) -> RobustEstimatorConfig:
        return self._ranging_config

    @ranging_config.setter
    def ranging_config(self, config: RobustEstimatorConfig) -> None:
        self._check_not_locked()
        self._ranging_config = self._checked(self._check_config(config))

    @property
    def rssi_config(self) -> RobustEstimatorConfig:
        return self._rssi_config

    @rssi_config.setter
    def rssi_config(self, config: RobustEstimatorConfig) -> None:
        self._check_not_locked()
        self._rssi_config = self._checked(self._check_config(config))

    def configure_ranging(self, **changes) -> RobustEstimatorConfig:
        """Change some options of the ranging phase."""
        self._check_not_locked()
        config = self._replace(self._ranging_config, changes)
        self._ranging_config = self._checked(config)
        return self._ranging_config

    def configure_rssi(self, **changes) -> RobustEstimatorConfig:
        """Change some options of the RSSI phase."""
        self._check_not_locked()
        config = self._replace(self._rssi_config, changes)
        self._rssi_config = self._checked(config)
        return self._rssi_config

    @staticmethod
    def _replace(config: RobustEstimatorConfig, changes: dict) -> RobustEstimatorConfig:
        try:
            return dataclasses.replace(config, **changes)
        except TypeError as exc:
            raise InvalidArgumentError(str(exc)) from exc

    def _checked(self, config: RobustEstimatorConfig) -> RobustEstimatorConfig:
        if self.dimension is not None:
            config.subset_size(self.dimension)
        return config

    def _check_options(self, dimension: int) -> None:
        self._ranging_config.subset_size(dimension)
        self._rssi_config.subset_size(dimension)

    @property
    def refine_result(self) -> bool:
        return self._refine_result

    @refine_result.setter
    def refine_result(self, value: bool) -> None:
        self._check_not_locked()
        self._refine_result = bool(value)

    @property
    def keep_covariance(self) -> bool:
        return self._keep_covariance

    @keep_covariance.setter
    def keep_covariance(self, value: bool) -> None:
        self._check_not_locked()
        self._keep_covariance = bool(value)

    @property
    def progress_delta(self) -> float:
        return self._progress_delta

    @progress_delta.setter
    def progress_delta(self, value: float) -> None:
        self._check_not_locked()
        self._progress_delta = self._check_progress_delta(value)

    # Results

    @property
    def ranging_result(self) -> Optional[EstimationResult]:
        """Result of the ranging phase, None if it did not run or failed."""
        return self._ranging_result

    @property
    def rssi_result(self) -> Optional[EstimationResult]:
        """Result of the RSSI phase, None if it did not run."""
        return self._rssi_result

    @property
    def result(self) -> Optional[EstimationResult]:
        if self._final is None:
            return None
        return self._final.result

    @property
    def ranging_phase_failed(self) -> bool:
        """True if the last ranging phase raised and was skipped."""
        return self._ranging_phase_failed

    @property
    def seed_position(self) -> Optional[np.ndarray]:
        """Position the RSSI phase was seeded with."""
        return None if self._seed_position is None else self._seed_position.copy()

    @property
    def estimated_position(self) -> Optional[np.ndarray]:
        result = self.result
        return None if result is None else result.position.copy()

    @property
    def covariance(self) -> Optional[np.ndarray]:
        result = self.result
        return None if result is None else result.covariance

    @property
    def inliers_data(self) -> Optional[InliersData]:
        result = self.result
        return None if result is None else result.inliers_data

    @property
    def positions(self) -> Optional[np.ndarray]:
        """Source positions of the final phase samples."""
        return None if self._final is None else self._final.positions

    @property
    def distances(self) -> Optional[np.ndarray]:
        return None if self._final is None else self._final.distances

    @property
    def distance_stds(self) -> Optional[np.ndarray]:
        return None if self._final is None else self._final.distance_stds

    # Estimation

    @property
    def is_ready(self) -> bool:
        if not self._has_inputs():
            return False
        needs_scores = (
            self._ranging_config.method.uses_quality_scores
            or self._rssi_config.method.uses_quality_scores
        )
        if needs_scores and not self._scores_match():
            return False
        ranging, rssi = self._build_phases()
        return ranging is not None or rssi is not None

    def estimate(self) -> np.ndarray:
        """
        Run the ranging phase, then the RSSI phase seeded by it.

        Returns:
            Final estimated position (d,).

        Raises:
            LockedError: If an estimation is already running.
            NotReadyError: If inputs or scores are missing, or neither phase
                has enough usable readings.
            RobustEstimatorError: If the final phase finds no consensus.
            NumericalError: If the final covariance cannot be computed.
        """
        self._check_not_locked()
        if not self.is_ready:
            raise NotReadyError(
                f"{type(self).__name__} is not ready: sources, a fingerprint with "
                "enough ranging or RSSI readings and, for PROSAC/PROMedS, quality "
                "scores are required"
            )

        ranging, rssi = self._build_phases()
        self._ranging_result = None
        self._rssi_result = None
        self._final = None
        self._seed_position = None
        self._ranging_phase_failed = False

        with self._running():
            self._notify("on_estimate_start")
            tracker = ProgressTracker(
                lambda p: self._notify("on_estimate_progress_change", p),
                self._progress_delta,
            )
            both = ranging is not None and rssi is not None
            seed = self._initial_position
            final = ranging
            ranging_failed = False
            iterations = 0

            if ranging is not None:
                phase = _PhaseListener(self, tracker, 0.0, 0.5 if both else 1.0)
                ranging.listener = phase
                try:
                    ranging.estimate()
                except (RobustEstimatorError, NumericalError) as exc:
                    if rssi is None:
                        raise
                    ranging_failed = True
                    warnings.warn(
                        f"Ranging phase failed ({exc}); the RSSI phase starts "
                        "from the initial position",
                        RangingSeedWarning,
                        stacklevel=2,
                    )
                else:
                    seed = ranging.result.position
                iterations = phase.iterations

            if rssi is not None:
                rssi.listener = _PhaseListener(
                    self, tracker, 0.5 if both else 0.0, 0.5 if both else 1.0, iterations
                )
                rssi.initial_position = seed
                rssi.estimate()
                final = rssi

            # only a fully successful run is published
            self._final = final
            self._ranging_result = None if ranging is None else ranging.result
            self._rssi_result = None if rssi is None else rssi.result
            self._seed_position = None if seed is None else np.array(seed)
            self._ranging_phase_failed = ranging_failed

            tracker.finish()
            self._notify("on_estimate_end")

        return self._final.result.position.copy()

    def _build_phases(
        self,
    ) -> Tuple[
        Optional[RobustRangingPositionEstimator], Optional[RobustRssiPositionEstimator]
    ]:
        """Fresh single-type estimators for both phases, None if unusable."""
        ranging_readings, ranging_indices = self._fingerprint.ranging_readings()
        rssi_readings, rssi_indices = self._fingerprint.rssi_readings()

        rssi = self._build_phase(
            RobustRssiPositionEstimator,
            rssi_readings,
            rssi_indices,
            dataclasses.replace(
                self._rssi_config,
                refine_result=self._refine_result,
                keep_covariance=self._keep_covariance,
                progress_delta=0.0,
            ),
        )

        if rssi is not None:
            ranging_config = dataclasses.replace(
                self._ranging_config,
                refine_result=True,
                keep_covariance=False,
                progress_delta=0.0,
            )
        else:
            ranging_config = dataclasses.replace(
                self._ranging_config,
                refine_result=self._refine_result,
                keep_covariance=self._keep_covariance,
                progress_delta=0.0,
            )
        ranging = self._build_phase(
            RobustRangingPositionEstimator,
            ranging_readings,
            ranging_indices,
            ranging_config,
        )
        return ranging, rssi

    def _build_phase(
        self,
        cls: Type[RobustSingleTypePositionEstimator],
        readings: List,
        indices: List[int],
        config: RobustEstimatorConfig,
    ) -> Optional[RobustSingleTypePositionEstimator]:
        if not readings:
            return None

        reading_scores = source_scores = None
        if self._scores_match():
            reading_scores = self._reading_quality_scores[indices]
            source_scores = self._source_quality_scores

        estimator = cls(
            self._sources,
            Fingerprint(readings),
            source_scores,
            reading_scores,
            initial_position=self._initial_position,
            config=config,
            dimension=self.dimension,
            rng=self._rng,
        )
        return estimator if estimator.is_ready else None
