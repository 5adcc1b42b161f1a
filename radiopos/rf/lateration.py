"""
Lateration solvers: position from distances to located radio sources.

Three solvers are provided:
    - inhomogeneous_linear_lateration: closed form, differences of squared
      range equations against a reference source.
    - homogeneous_linear_lateration: closed form, null vector of the
      homogeneous system in (x, ‖x‖², 1).
    - nonlinear_lateration: weighted Gauss-Newton / Levenberg-Marquardt on
      the range equations, optionally returning the position covariance.

Each source i contributes the equation ‖x - p_i‖ = d_i. The linear solvers
need at least dimension+1 sources in general position; fewer, or a rank
deficient geometry, raises NumericalError.
"""

from dataclasses import dataclass
from typing import Literal, Optional, Tuple

import numpy as np

from radiopos.errors import InvalidArgumentError, NumericalError
from radiopos.estimators.nonlinear_least_squares import solve_nonlinear_ls
from radiopos.rf.measurement_models import MIN_DISTANCE


@dataclass
class LaterationResult:
    """Result of a nonlinear lateration.

    Attributes:
        position: Estimated position (d,).
        covariance: Position covariance (d × d), or None.
        residuals: Range residuals d_i - ‖x̂ - p_i‖.
        iterations: Solver iterations performed.
        converged: Whether the solver converged within tolerance.
    """

    position: np.ndarray
    covariance: Optional[np.ndarray]
    residuals: np.ndarray
    iterations: int
    converged: bool


def _check_inputs(
    positions: np.ndarray, distances: np.ndarray
) -> Tuple[np.ndarray, np.ndarray]:
    positions = np.asarray(positions, dtype=float)
    distances = np.asarray(distances, dtype=float)

    if positions.ndim != 2 or positions.shape[1] not in (2, 3):
        raise InvalidArgumentError(
            f"positions must have shape (N, 2) or (N, 3), got {positions.shape}"
        )
    if distances.shape != (positions.shape[0],):
        raise InvalidArgumentError(
            f"Expected {positions.shape[0]} distances, got shape {distances.shape}"
        )

    n, dim = positions.shape
    if n < dim + 1:
        raise NumericalError(
            f"At least {dim + 1} sources are required in {dim}D, got {n}"
        )

    return positions, np.maximum(distances, MIN_DISTANCE)


def inhomogeneous_linear_lateration(
    positions: np.ndarray,
    distances: np.ndarray,
    ref_idx: int = 0,
) -> np.ndarray:
    """
    Closed-form lateration by differencing against a reference source.

    Subtracting the squared range equation of the reference source r gives
    one linear equation per remaining source:

        2 (p_i - p_r)ᵀ x = d_r² - d_i² + ‖p_i‖² - ‖p_r‖²

    which is solved in the least-squares sense.

    Args:
        positions: Source positions, shape (N, d) with d in {2, 3}.
        distances: Distances to each source, shape (N,).
        ref_idx: Index of the reference source (default 0).

    Returns:
        Estimated position (d,).

    Raises:
        NumericalError: If fewer than d+1 sources are given or the sources
            are collinear/coplanar (rank deficient system).

    Example:
        >>> sources = np.array([[0, 0], [10, 0], [10, 10], [0, 10]], float)
        >>> d = np.linalg.norm(sources - np.array([3.0, 4.0]), axis=1)
        >>> inhomogeneous_linear_lateration(sources, d)
        array([3., 4.])
    """
    positions, distances = _check_inputs(positions, distances)
    dim = positions.shape[1]

    ref = positions[ref_idx]
    others = np.delete(np.arange(len(distances)), ref_idx)

    A = 2.0 * (positions[others] - ref)
    b = (
        distances[ref_idx] ** 2
        - distances[others] ** 2
        + np.sum(positions[others] ** 2, axis=1)
        - np.sum(ref**2)
    )

    if np.linalg.matrix_rank(A) < dim:
        raise NumericalError("Source geometry is rank deficient")

    x, *_ = np.linalg.lstsq(A, b, rcond=None)
    return x


def homogeneous_linear_lateration(
    positions: np.ndarray,
    distances: np.ndarray,
) -> np.ndarray:
    """
    Closed-form lateration through the null vector of a homogeneous system.

    Each range equation ‖x‖² - 2 p_iᵀx + ‖p_i‖² - d_i² = 0 is a row of

        [-2 p_iᵀ, 1, ‖p_i‖² - d_i²] · w [x, ‖x‖², 1]ᵀ = 0

    The right singular vector of the smallest singular value gives w up to
    scale; the position is recovered by dividing by its last component.

    Args:
        positions: Source positions, shape (N, d) with d in {2, 3}.
        distances: Distances to each source, shape (N,).

    Returns:
        Estimated position (d,).

    Raises:
        NumericalError: If the null space is not one dimensional or the
            homogeneous scale vanishes.
    """
    positions, distances = _check_inputs(positions, distances)
    n, dim = positions.shape

    A = np.column_stack(
        [
            -2.0 * positions,
            np.ones(n),
            np.sum(positions**2, axis=1) - distances**2,
        ]
    )

    # pad to a square system so that the last singular vector always exists
    if n < dim + 2:
        A = np.vstack([A, np.zeros((dim + 2 - n, dim + 2))])

    _, s, vt = np.linalg.svd(A)
    if s[-2] <= 1e-10 * max(s[0], 1.0):
        raise NumericalError("Source geometry is rank deficient")

    v = vt[-1]
    if abs(v[-1]) < 1e-12:
        raise NumericalError("Homogeneous solution is at infinity")

    return v[:dim] / v[-1]


def nonlinear_lateration(
    positions: np.ndarray,
    distances: np.ndarray,
    initial_position: Optional[np.ndarray] = None,
    distance_stds: Optional[np.ndarray] = None,
    method: Literal["gn", "lm"] = "lm",
    max_iter: int = 100,
    tol: float = 1e-10,
    return_covariance: bool = False,
) -> LaterationResult:
    """
    Iterative weighted lateration on the range equations.

    Minimizes Σ w_i (d_i - ‖x - p_i‖)² with w_i = 1/σ_i². With known
    standard deviations the covariance is (JᵀWJ)⁻¹; without them it is
    scaled by the a-posteriori residual variance.

    Args:
        positions: Source positions, shape (N, d).
        distances: Distances to each source, shape (N,).
        initial_position: Starting point. Defaults to the inhomogeneous
            linear solution, or the source centroid if that fails.
        distance_stds: Per-distance standard deviations (N,), or None.
        method: "gn" (Gauss-Newton) or "lm" (Levenberg-Marquardt).
        max_iter: Maximum solver iterations.
        tol: Convergence tolerance on the step norm.
        return_covariance: If True, compute the position covariance.

    Returns:
        LaterationResult with the refined position.

    Raises:
        InvalidArgumentError: On inconsistent shapes or non-positive stds.
        NumericalError: If the covariance is requested and the normal matrix
            is not positive definite.

    Example:
        >>> sources = np.array([[0, 0], [10, 0], [10, 10], [0, 10]], float)
        >>> d = np.linalg.norm(sources - np.array([3.0, 4.0]), axis=1)
        >>> result = nonlinear_lateration(sources, d, np.array([5.0, 5.0]))
        >>> result.position
        array([3., 4.])
    """
    positions, distances = _check_inputs(positions, distances)
    dim = positions.shape[1]

    weights = None
    if distance_stds is not None:
        distance_stds = np.asarray(distance_stds, dtype=float)
        if distance_stds.shape != distances.shape:
            raise InvalidArgumentError(
                f"distance_stds shape {distance_stds.shape} does not match "
                f"distances shape {distances.shape}"
            )
        if np.any(distance_stds <= 0):
            raise InvalidArgumentError("distance_stds must be positive")
        weights = 1.0 / distance_stds**2

    if initial_position is None:
        try:
            initial_position = inhomogeneous_linear_lateration(positions, distances)
        except NumericalError:
            initial_position = positions.mean(axis=0)
    x0 = np.asarray(initial_position, dtype=float)
    if x0.shape != (dim,):
        raise InvalidArgumentError(
            f"initial_position must have shape ({dim},), got {x0.shape}"
        )

    def h(x):
        return np.linalg.norm(positions - x, axis=1)

    def jacobian(x):
        diff = x - positions
        ranges = np.linalg.norm(diff, axis=1, keepdims=True)
        return diff / np.maximum(ranges, 1e-10)

    result = solve_nonlinear_ls(
        h,
        jacobian,
        distances,
        x0,
        weights=weights,
        method=method,
        max_iter=max_iter,
        tol=tol,
        return_covariance=return_covariance,
        scale_covariance=weights is None,
    )

    return LaterationResult(
        position=result.x,
        covariance=result.covariance,
        residuals=result.residuals,
        iterations=result.iterations,
        converged=result.converged,
    )
