"""
Iterative weighted least squares for range-type measurement models.

The lateration solvers refine a position x by minimizing

    F(x) = ½ Σ w_i (z_i - f_i(x))²

where z holds the measured values (distances, or distances inferred from
RSSI), f the predicted ones and w the per-measurement weights. Both solvers
here linearize f around the current point with its Jacobian A and solve the
weighted normal equations

    N δ = g,    N = AᵀWA,    g = AᵀW(z - f(x))

Gauss-Newton takes δ as is. Levenberg-Marquardt adds a damping term λI to
N and adapts λ from the ratio between the achieved and the predicted
decrease of F.

With weights equal to inverse measurement variances, N⁻¹ at the solution is
the first-order position covariance.
"""

from dataclasses import dataclass
from typing import Callable, Literal, Optional, Tuple

import numpy as np
from scipy.linalg import LinAlgError, cho_factor, cho_solve

from radiopos.errors import NumericalError

Model = Callable[[np.ndarray], np.ndarray]

# damping above this means no step reduces the cost any more
_MAX_DAMPING = 1e10


@dataclass
class NonlinearLSResult:
    """Outcome of an iterative least squares refinement.

    Attributes:
        x: Refined parameter vector.
        covariance: Parameter covariance (n × n), or None when not requested.
        iterations: Linearizations performed.
        residuals: Measurement residuals z - f(x) at the refined point.
        cost: Weighted half sum of squared residuals at the refined point.
        converged: True when the last step fell below the tolerance.
        information: Weighted normal matrix AᵀWA at the refined point.
    """

    x: np.ndarray
    covariance: Optional[np.ndarray]
    iterations: int
    residuals: np.ndarray
    cost: float
    converged: bool
    information: Optional[np.ndarray] = None


def gauss_newton(
    h: Model,
    jacobian: Model,
    y: np.ndarray,
    x0: np.ndarray,
    weights: Optional[np.ndarray] = None,
    max_iter: int = 20,
    tol: float = 1e-8,
    return_covariance: bool = True,
    scale_covariance: bool = True,
) -> NonlinearLSResult:
    """
    Refine x0 with undamped Gauss-Newton steps.

    Converges quadratically once x0 is close to the solution, but may
    overshoot from far away; prefer levenberg_marquardt for poor seeds.

    Args:
        h: Model returning the m predicted measurements for a point.
        jacobian: Model returning the (m × n) derivative of h at a point.
        y: Measured values, shape (m,).
        x0: Starting point, shape (n,).
        weights: Non-negative weight per measurement, or None for equal
            weights.
        max_iter: Upper bound on linearizations.
        tol: Stop once the step norm drops below this value.
        return_covariance: Whether to invert the normal matrix at the end.
        scale_covariance: Multiply the inverse normal matrix by the residual
            variance factor. Leave False when weights already are inverse
            variances.

    Returns:
        NonlinearLSResult for the refined point.

    Raises:
        ValueError: On inconsistent input shapes or negative weights.
        NumericalError: If the iteration diverges, or if the covariance is
            requested and the normal matrix is not positive definite.
    """
    return _solve_nonlinear_ls(
        h,
        jacobian,
        y,
        x0,
        weights,
        method="gn",
        max_iter=max_iter,
        tol=tol,
        return_covariance=return_covariance,
        scale_covariance=scale_covariance,
    )


def levenberg_marquardt(
    h: Model,
    jacobian: Model,
    y: np.ndarray,
    x0: np.ndarray,
    weights: Optional[np.ndarray] = None,
    max_iter: int = 50,
    tol: float = 1e-8,
    mu0: float = 1e-3,
    return_covariance: bool = True,
    scale_covariance: bool = True,
) -> NonlinearLSResult:
    """
    Refine x0 with damped steps that only ever lower the cost.

    A step is kept only when it lowers the cost. Rejected steps double the
    growth rate of the damping, accepted ones shrink it according to how
    well the linear model predicted the decrease.

    Args:
        h: Model returning the m predicted measurements for a point.
        jacobian: Model returning the (m × n) derivative of h at a point.
        y: Measured values, shape (m,).
        x0: Starting point, shape (n,).
        weights: Non-negative weight per measurement, or None.
        max_iter: Upper bound on linearizations.
        tol: Stop once the step norm drops below this value.
        mu0: Damping used for the first step.
        return_covariance: Whether to invert the normal matrix at the end.
        scale_covariance: Multiply the inverse normal matrix by the residual
            variance factor.

    Returns:
        NonlinearLSResult for the refined point.
    """
    return _solve_nonlinear_ls(
        h,
        jacobian,
        y,
        x0,
        weights,
        method="lm",
        max_iter=max_iter,
        tol=tol,
        mu0=mu0,
        return_covariance=return_covariance,
        scale_covariance=scale_covariance,
    )


def solve_nonlinear_ls(
    h: Model,
    jacobian: Model,
    y: np.ndarray,
    x0: np.ndarray,
    weights: Optional[np.ndarray] = None,
    method: Literal["gn", "lm"] = "gn",
    max_iter: int = 30,
    tol: float = 1e-8,
    return_covariance: bool = True,
    scale_covariance: bool = True,
) -> NonlinearLSResult:
    """Run the solver named by ``method`` ("gn" or "lm")."""
    if method not in ("gn", "lm"):
        raise ValueError(f"method must be 'gn' or 'lm', got {method!r}")

    return _solve_nonlinear_ls(
        h,
        jacobian,
        y,
        x0,
        weights,
        method=method,
        max_iter=max_iter,
        tol=tol,
        return_covariance=return_covariance,
        scale_covariance=scale_covariance,
    )


def information_to_covariance(information: np.ndarray) -> np.ndarray:
    """Invert a normal matrix through its Cholesky factor.

    Raises:
        NumericalError: If the matrix is not symmetric positive definite.
    """
    size = information.shape[0]
    try:
        factor = cho_factor(information)
    except LinAlgError as exc:
        raise NumericalError(
            "normal matrix is not positive definite; geometry is degenerate"
        ) from exc
    covariance = cho_solve(factor, np.eye(size))
    return 0.5 * (covariance + covariance.T)


def _solve(normal: np.ndarray, gradient: np.ndarray) -> np.ndarray:
    try:
        return np.linalg.solve(normal, gradient)
    except np.linalg.LinAlgError:
        # rank deficient: minimum norm step
        return np.linalg.lstsq(normal, gradient, rcond=None)[0]


def _check_weights(weights: Optional[np.ndarray], count: int) -> np.ndarray:
    if weights is None:
        return np.ones(count)
    weights = np.asarray(weights, dtype=float)
    if weights.shape != (count,):
        raise ValueError(
            f"expected {count} weights, got array of shape {weights.shape}"
        )
    if np.any(weights < 0):
        raise ValueError("weights cannot be negative")
    return weights


class _Linearization:
    """Residuals, cost and weighted normal equations of a model at one point."""

    def __init__(self, h, jacobian, y, weights, x):
        predicted = np.asarray(h(x), dtype=float)
        if predicted.shape != y.shape:
            raise ValueError(
                f"model output shape {predicted.shape} does not match "
                f"measurements shape {y.shape}"
            )
        design = np.asarray(jacobian(x), dtype=float)
        if design.shape != (y.shape[0], x.shape[0]):
            raise ValueError(
                f"jacobian has shape {design.shape}, "
                f"expected ({y.shape[0]}, {x.shape[0]})"
            )

        self.residuals = y - predicted
        weighted_design = design.T * weights
        self.normal = weighted_design @ design
        self.gradient = weighted_design @ self.residuals
        self.cost = _cost(self.residuals, weights)


def _cost(residuals: np.ndarray, weights: np.ndarray) -> float:
    return 0.5 * float(weights @ residuals**2)


def _damped_step(
    h, y, weights, x, linear, mu, growth
) -> Tuple[np.ndarray, np.ndarray, float, float]:
    """Search the damping for a step that lowers the cost.

    Returns the new point, the step taken and the updated damping state. The
    step is zero when the damping saturates without finding a decrease.
    """
    identity = np.eye(x.shape[0])
    while True:
        step = _solve(linear.normal + mu * identity, linear.gradient)
        candidate = x + step
        achieved = linear.cost - _cost(y - h(candidate), weights)
        expected = 0.5 * step @ (mu * step + linear.gradient)
        ratio = achieved / expected if expected > 1e-15 else 0.0

        if ratio > 0.0:
            shrink = max(1.0 / 3.0, 1.0 - (2.0 * ratio - 1.0) ** 3)
            return candidate, step, mu * shrink, 2.0

        mu *= growth
        growth *= 2.0
        if mu > _MAX_DAMPING:
            return x, np.zeros_like(x), mu, growth


def _solve_nonlinear_ls(
    h: Model,
    jacobian: Model,
    y: np.ndarray,
    x0: np.ndarray,
    weights: Optional[np.ndarray],
    method: str,
    max_iter: int,
    tol: float,
    mu0: float = 1e-3,
    return_covariance: bool = True,
    scale_covariance: bool = True,
) -> NonlinearLSResult:
    y = np.asarray(y, dtype=float)
    x = np.array(x0, dtype=float)
    if y.ndim != 1:
        raise ValueError(f"measurements must be a vector, got shape {y.shape}")
    if x.ndim != 1:
        raise ValueError(f"starting point must be a vector, got shape {x.shape}")
    weights = _check_weights(weights, y.shape[0])

    mu, growth = mu0, 2.0
    converged = False
    iterations = 0

    while iterations < max_iter and not converged:
        iterations += 1
        linear = _Linearization(h, jacobian, y, weights, x)

        if method == "gn":
            step = _solve(linear.normal, linear.gradient)
            x = x + step
        else:
            x, step, mu, growth = _damped_step(
                h, y, weights, x, linear, mu, growth
            )

        if not np.all(np.isfinite(x)):
            raise NumericalError(f"iteration diverged after {iterations} steps")
        converged = np.linalg.norm(step) < tol

    final = _Linearization(h, jacobian, y, weights, x)

    covariance = None
    if return_covariance:
        covariance = information_to_covariance(final.normal)
        dof = y.shape[0] - x.shape[0]
        if scale_covariance and dof > 0:
            covariance = covariance * (2.0 * final.cost / dof)

    return NonlinearLSResult(
        x=x,
        covariance=covariance,
        iterations=iterations,
        residuals=final.residuals,
        cost=final.cost,
        converged=bool(converged),
        information=final.normal,
    )
