"""
Estimation algorithms used by the positioning engine.

Submodules:
    nonlinear_least_squares: Gauss-Newton and Levenberg-Marquardt solvers
    robust: RANSAC, LMedS, MSAC, PROSAC and PROMedS building blocks
"""

from radiopos.estimators.nonlinear_least_squares import (
    NonlinearLSResult,
    gauss_newton,
    information_to_covariance,
    levenberg_marquardt,
    solve_nonlinear_ls,
)
from radiopos.estimators.robust import (
    HypothesisScore,
    RobustMethod,
    compute_max_iterations,
    draw_subset,
    quality_weights,
    robust_sigma,
    score_hypothesis,
    uniform_subset,
    weighted_subset,
)

__all__ = [
    # Nonlinear least squares
    "NonlinearLSResult",
    "gauss_newton",
    "levenberg_marquardt",
    "solve_nonlinear_ls",
    "information_to_covariance",
    # Robust estimation
    "RobustMethod",
    "HypothesisScore",
    "compute_max_iterations",
    "quality_weights",
    "uniform_subset",
    "weighted_subset",
    "draw_subset",
    "robust_sigma",
    "score_hypothesis",
]
