"""Configuration of the robust position estimators."""

from dataclasses import dataclass
from typing import Optional

from radiopos.errors import InvalidArgumentError
from radiopos.estimators.robust import RobustMethod

DEFAULT_METHOD = RobustMethod.PROMEDS
DEFAULT_CONFIDENCE = 0.99
DEFAULT_MAX_ITERATIONS = 5000
DEFAULT_STOP_THRESHOLD = 1e-5
DEFAULT_INLIER_FACTOR = 3.0
DEFAULT_PROGRESS_DELTA = 0.05
# Distance standard deviation (m) used when neither the reading nor the
# source carry any uncertainty
DEFAULT_FALLBACK_DISTANCE_STD = 1e-3


@dataclass(frozen=True)
class RobustEstimatorConfig:
    """Options of a robust single-type position estimator.

    Attributes:
        method: Consensus strategy. PROSAC and PROMedS need quality scores.
        confidence: Probability in [0, 1] of drawing an outlier-free subset,
            used to shrink the iteration bound as inliers are found.
        max_iterations: Hard upper bound on the number of subsets.
        threshold: Fixed inlier threshold on range residuals in meters. When
            None, each sample uses inlier_factor times its distance std.
        stop_threshold: Median residual below which LMedS and PROMedS stop.
        inlier_factor: Multiple of a standard deviation used as threshold.
        preliminary_subset_size: Samples per subset. Defaults to
            dimension + 1; must not be smaller.
        use_linear_solver: Solve subsets with linear lateration. When False
            the nonlinear solver is seeded with the initial position.
        use_homogeneous_linear_solver: Use the homogeneous rather than the
            inhomogeneous linear lateration.
        refine_preliminary_solutions: Refine each subset solution with the
            nonlinear solver.
        refine_result: Refine the best hypothesis on all its inliers.
        keep_covariance: Keep the position covariance of the refined result.
        evenly_distribute_readings: Interleave readings of different sources
            so that subsets span several sources.
        use_source_position_covariance: Add the source position uncertainty
            to each distance standard deviation.
        fallback_distance_std: Distance std used when none is known.
        progress_delta: Minimum progress change between listener events.

    Example:
        >>> config = RobustEstimatorConfig(method=RobustMethod.RANSAC, threshold=0.5)
    """

    method: RobustMethod = DEFAULT_METHOD
    confidence: float = DEFAULT_CONFIDENCE
    max_iterations: int = DEFAULT_MAX_ITERATIONS
    threshold: Optional[float] = None
    stop_threshold: float = DEFAULT_STOP_THRESHOLD
    inlier_factor: float = DEFAULT_INLIER_FACTOR
    preliminary_subset_size: Optional[int] = None
    use_linear_solver: bool = True
    use_homogeneous_linear_solver: bool = False
    refine_preliminary_solutions: bool = True
    refine_result: bool = True
    keep_covariance: bool = True
    evenly_distribute_readings: bool = True
    use_source_position_covariance: bool = True
    fallback_distance_std: float = DEFAULT_FALLBACK_DISTANCE_STD
    progress_delta: float = DEFAULT_PROGRESS_DELTA

    def __post_init__(self) -> None:
        """Validate option ranges."""
        method = self.method
        if isinstance(method, str):
            try:
                method = RobustMethod(method.lower())
            except ValueError as exc:
                raise InvalidArgumentError(f"Unknown robust method: {method!r}") from exc
            object.__setattr__(self, "method", method)
        if not isinstance(method, RobustMethod):
            raise InvalidArgumentError(f"Unknown robust method: {method!r}")

        if not 0.0 <= self.confidence <= 1.0:
            raise InvalidArgumentError(
                f"confidence must be in [0, 1], got {self.confidence}"
            )
        if self.max_iterations < 1:
            raise InvalidArgumentError(
                f"max_iterations must be >= 1, got {self.max_iterations}"
            )
        if self.threshold is not None and not self.threshold > 0:
            raise InvalidArgumentError(
                f"threshold must be positive, got {self.threshold}"
            )
        if self.stop_threshold < 0:
            raise InvalidArgumentError(
                f"stop_threshold must be non-negative, got {self.stop_threshold}"
            )
        if not self.inlier_factor > 0:
            raise InvalidArgumentError(
                f"inlier_factor must be positive, got {self.inlier_factor}"
            )
        if self.preliminary_subset_size is not None and self.preliminary_subset_size < 3:
            raise InvalidArgumentError(
                "preliminary_subset_size must be at least 3 (2D minimum), "
                f"got {self.preliminary_subset_size}"
            )
        if not self.fallback_distance_std > 0:
            raise InvalidArgumentError(
                f"fallback_distance_std must be positive, got {self.fallback_distance_std}"
            )
        if not 0.0 <= self.progress_delta <= 1.0:
            raise InvalidArgumentError(
                f"progress_delta must be in [0, 1], got {self.progress_delta}"
            )

    def subset_size(self, dimension: int) -> int:
        """Samples per subset for a given spatial dimension."""
        minimum = dimension + 1
        if self.preliminary_subset_size is None:
            return minimum
        if self.preliminary_subset_size < minimum:
            raise InvalidArgumentError(
                f"preliminary_subset_size must be >= {minimum} in {dimension}D, "
                f"got {self.preliminary_subset_size}"
            )
        return self.preliminary_subset_size

