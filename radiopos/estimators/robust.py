"""
RANSAC-family primitives shared by the robust position estimators.

This module holds the stateless building blocks of a robust subset
estimator:

    - RobustMethod: the five supported consensus strategies.
    - compute_max_iterations: adaptive iteration bound from the current
      inlier ratio, N = log(1 - confidence) / log(1 - w^s).
    - uniform_subset / weighted_subset: minimal subset samplers, uniform
      (RANSAC, LMedS, MSAC) or quality weighted without replacement
      (PROSAC, PROMedS), both able to favour distinct sources.
    - score_hypothesis: residual based inlier classification and scoring.

References:
    M. A. Fischler, R. C. Bolles, "Random Sample Consensus", 1981.
    P. J. Rousseeuw, "Least Median of Squares Regression", 1984.
    P. H. S. Torr, A. Zisserman, "MLESAC", 2000.
    O. Chum, J. Matas, "Matching with PROSAC", 2005.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple

import numpy as np

# Consistency factor of the median absolute deviation for Gaussian noise
MAD_SCALE = 1.4826


class RobustMethod(Enum):
    """Consensus strategy of a robust estimator."""

    RANSAC = "ransac"
    LMEDS = "lmeds"
    MSAC = "msac"
    PROSAC = "prosac"
    PROMEDS = "promeds"

    @property
    def uses_quality_scores(self) -> bool:
        """Whether subsets are drawn according to sample quality."""
        return self in (RobustMethod.PROSAC, RobustMethod.PROMEDS)

    @property
    def is_median_based(self) -> bool:
        """Whether hypotheses are ranked by their median residual."""
        return self in (RobustMethod.LMEDS, RobustMethod.PROMEDS)


@dataclass
class HypothesisScore:
    """Score of one candidate position.

    Attributes:
        cost: Value to minimise (negated inlier count for RANSAC/PROSAC,
            median residual for LMedS/PROMedS, truncated squared residual
            sum for MSAC).
        tie_break: Secondary cost compared when costs are equal.
        inliers: Boolean inlier mask over all samples.
        residuals: Absolute residual of every sample.
    """

    cost: float
    tie_break: float
    inliers: np.ndarray
    residuals: np.ndarray

    @property
    def n_inliers(self) -> int:
        return int(np.count_nonzero(self.inliers))

    def is_better_than(self, other: Optional["HypothesisScore"]) -> bool:
        if other is None:
            return True
        if self.cost != other.cost:
            return self.cost < other.cost
        return self.tie_break < other.tie_break


def compute_max_iterations(
    confidence: float,
    subset_size: int,
    inlier_ratio: float,
    max_iterations: int,
) -> int:
    """
    Number of subsets needed to draw an outlier-free one with a confidence.

        N = log(1 - confidence) / log(1 - w^s)

    The result is clamped to [1, max_iterations]. It decreases as the inlier
    ratio w grows, so re-evaluating it with the best ratio seen so far never
    raises the bound.

    Args:
        confidence: Probability in [0, 1] of drawing at least one clean subset.
        subset_size: Number of samples s per subset.
        inlier_ratio: Current inlier ratio w in [0, 1].
        max_iterations: Upper bound on the result.

    Returns:
        Required number of iterations.

    Example:
        >>> compute_max_iterations(0.99, 3, 0.5, 5000)
        35
    """
    if not 0.0 <= confidence <= 1.0:
        raise ValueError(f"confidence must be in [0, 1], got {confidence}")
    if subset_size < 1:
        raise ValueError(f"subset_size must be >= 1, got {subset_size}")
    if max_iterations < 1:
        raise ValueError(f"max_iterations must be >= 1, got {max_iterations}")

    if inlier_ratio >= 1.0 or confidence <= 0.0:
        return 1
    if inlier_ratio <= 0.0 or confidence >= 1.0:
        return max_iterations

    p_clean = inlier_ratio**subset_size
    if p_clean <= 0.0:
        return max_iterations
    if p_clean >= 1.0:
        return 1

    n = np.log(1.0 - confidence) / np.log1p(-p_clean)
    return int(min(max(np.ceil(n), 1), max_iterations))


def quality_weights(quality_scores: np.ndarray) -> np.ndarray:
    """
    Turn quality scores into sampling probabilities.

    Scores are shifted so the worst sample keeps a small non-zero weight
    (1 % of the score span); equal scores give uniform probabilities.
    """
    q = np.asarray(quality_scores, dtype=float)
    shifted = q - q.min()
    span = shifted.max()
    if span <= 0 or not np.isfinite(span):
        return np.full(len(q), 1.0 / len(q))
    weights = shifted + 0.01 * span
    return weights / weights.sum()


def _draw_by_group(
    rng: np.random.Generator,
    groups: np.ndarray,
    size: int,
    probs: Optional[np.ndarray],
) -> Optional[np.ndarray]:
    """One sample from each of `size` distinct groups, or None if impossible."""
    labels = np.unique(groups)
    if len(labels) < size:
        return None

    if probs is None:
        chosen = rng.choice(labels, size=size, replace=False)
        return np.array(
            [rng.choice(np.flatnonzero(groups == g)) for g in chosen]
        )

    group_probs = np.array([probs[groups == g].sum() for g in labels])
    chosen = rng.choice(labels, size=size, replace=False, p=group_probs)
    subset = []
    for g in chosen:
        members = np.flatnonzero(groups == g)
        member_probs = probs[members] / probs[members].sum()
        subset.append(rng.choice(members, p=member_probs))
    return np.array(subset)


def uniform_subset(
    rng: np.random.Generator,
    n_samples: int,
    size: int,
    groups: Optional[np.ndarray] = None,
) -> np.ndarray:
    """
    Draw `size` distinct sample indices uniformly.

    With `groups` (one label per sample, e.g. the source id), the subset
    holds at most one sample per group whenever enough groups exist.
    """
    if size > n_samples:
        raise ValueError(f"Cannot draw {size} samples out of {n_samples}")

    if groups is not None:
        subset = _draw_by_group(rng, np.asarray(groups), size, None)
        if subset is not None:
            return subset
    return rng.choice(n_samples, size=size, replace=False)


def weighted_subset(
    rng: np.random.Generator,
    quality_scores: np.ndarray,
    size: int,
    groups: Optional[np.ndarray] = None,
) -> np.ndarray:
    """
    Draw `size` distinct sample indices favouring high quality samples.

    Sampling is without replacement with probabilities from
    quality_weights(), so better samples enter subsets more often while
    every sample keeps a chance to be drawn.
    """
    n_samples = len(quality_scores)
    if size > n_samples:
        raise ValueError(f"Cannot draw {size} samples out of {n_samples}")

    probs = quality_weights(quality_scores)
    if groups is not None:
        subset = _draw_by_group(rng, np.asarray(groups), size, probs)
        if subset is not None:
            return subset
    return rng.choice(n_samples, size=size, replace=False, p=probs)


def robust_sigma(residuals: np.ndarray, subset_size: int) -> float:
    """Scale estimate from the median squared residual (LMedS)."""
    n = len(residuals)
    correction = 1.0 + 5.0 / (n - subset_size) if n > subset_size else 1.0
    return float(MAD_SCALE * correction * np.sqrt(np.median(residuals**2)))


def score_hypothesis(
    method: RobustMethod,
    residuals: np.ndarray,
    thresholds: np.ndarray,
    subset_size: int,
    inlier_factor: float = 3.0,
) -> HypothesisScore:
    """
    Classify samples and score a hypothesis from its residuals.

    Args:
        method: Consensus strategy.
        residuals: Absolute residual of every sample (n,).
        thresholds: Per-sample inlier threshold (n,).
        subset_size: Minimal subset size (used by the LMedS scale estimate).
        inlier_factor: Multiple of the robust scale below which median based
            methods never set their inlier threshold.

    Returns:
        HypothesisScore with the inlier mask and cost.
    """
    residuals = np.abs(np.asarray(residuals, dtype=float))
    thresholds = np.asarray(thresholds, dtype=float)

    if method.is_median_based:
        median = float(np.median(residuals))
        limit = np.maximum(
            thresholds, inlier_factor * robust_sigma(residuals, subset_size)
        )
        inliers = residuals <= limit
        return HypothesisScore(median, float(residuals.sum()), inliers, residuals)

    inliers = residuals <= thresholds

    if method is RobustMethod.MSAC:
        cost = float(np.sum(np.minimum(residuals, thresholds) ** 2))
        return HypothesisScore(cost, -float(inliers.sum()), inliers, residuals)

    return HypothesisScore(
        -float(inliers.sum()),
        float(residuals[inliers].sum()),
        inliers,
        residuals,
    )


def draw_subset(
    method: RobustMethod,
    rng: np.random.Generator,
    quality_scores: Optional[np.ndarray],
    n_samples: int,
    size: int,
    groups: Optional[np.ndarray] = None,
) -> Tuple[int, ...]:
    """Draw a subset with the sampler matching `method`."""
    if method.uses_quality_scores and quality_scores is not None:
        subset = weighted_subset(rng, quality_scores, size, groups)
    else:
        subset = uniform_subset(rng, n_samples, size, groups)
    return tuple(int(i) for i in subset)
