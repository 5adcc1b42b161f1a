"""
Comparison of Robust Positioning Methods under Outlying Ranges.

This script draws random 2D scenes with located radio sources, corrupts a
growing fraction of the ranges with gross errors (NLOS-like), and compares
RANSAC, LMedS, MSAC, PROSAC and PROMedS against plain weighted nonlinear
lateration on all ranges.

Outlying readings get a low quality score, so PROSAC and PROMedS show how
much a good prior on reading quality helps.

Can run with:
    - Default: python -m robust_positioning.example_outlier_comparison
    - More trials: python -m robust_positioning.example_outlier_comparison --trials 200
    - No figure: python -m robust_positioning.example_outlier_comparison --no-plot
"""

import argparse
import time
from typing import Dict, List, Tuple

import matplotlib.pyplot as plt
import numpy as np
from tqdm import tqdm

from radiopos.errors import NumericalError, RobustEstimatorError
from radiopos.estimators.robust import RobustMethod
from radiopos.positioning import (
    Fingerprint,
    RadioSource,
    RangingReading,
    RobustEstimatorConfig,
    RobustRangingPositionEstimator,
)
from radiopos.rf import nonlinear_lateration

METHODS = [m.value for m in RobustMethod]
BASELINE = "nlls"


def generate_scene(
    rng: np.random.Generator,
    n_sources: int = 15,
    outlier_ratio: float = 0.2,
    range_noise_std: float = 0.1,
    outlier_noise_std: float = 10.0,
    area: float = 20.0,
) -> Tuple[List[RadioSource], Fingerprint, np.ndarray, np.ndarray, np.ndarray]:
    """Generate one scene of sources, ranges and quality scores.

    Args:
        rng: Random generator.
        n_sources: Number of located sources.
        outlier_ratio: Fraction of ranges with a gross error.
        range_noise_std: Std of the inlier range noise (m).
        outlier_noise_std: Std of the gross range error (m).
        area: Side of the square area (m).

    Returns:
        Tuple (sources, fingerprint, source_scores, reading_scores, true_position).
    """
    positions = rng.uniform(0.0, area, size=(n_sources, 2))
    true_position = rng.uniform(0.25 * area, 0.75 * area, size=2)
    sources = [RadioSource(f"ap-{i}", p) for i, p in enumerate(positions)]

    n_outliers = int(round(outlier_ratio * n_sources))
    outliers = set(rng.choice(n_sources, size=n_outliers, replace=False).tolist())

    readings, reading_scores = [], []
    for i, source in enumerate(sources):
        distance = np.linalg.norm(source.position - true_position)
        if i in outliers:
            # abs() keeps the corrupted range non-negative
            distance = abs(distance + rng.normal(0.0, outlier_noise_std))
            reading_scores.append(0.05)
        else:
            distance = abs(distance + rng.normal(0.0, range_noise_std))
            reading_scores.append(0.95)
        readings.append(RangingReading(source, distance, distance_std=range_noise_std))

    return (
        sources,
        Fingerprint(readings),
        np.ones(n_sources),
        np.array(reading_scores),
        true_position,
    )


def run_trial(rng: np.random.Generator, outlier_ratio: float) -> Dict[str, float]:
    """Position error of every method on one random scene (NaN on failure)."""
    sources, fingerprint, source_scores, reading_scores, true_position = (
        generate_scene(rng, outlier_ratio=outlier_ratio)
    )
    errors = {}

    for method in METHODS:
        estimator = RobustRangingPositionEstimator(
            sources,
            fingerprint,
            source_scores,
            reading_scores,
            config=RobustEstimatorConfig(method=method, keep_covariance=False),
            rng=rng,
        )
        try:
            position = estimator.estimate()
            errors[method] = float(np.linalg.norm(position - true_position))
        except (RobustEstimatorError, NumericalError):
            errors[method] = np.nan

    positions = np.array([s.position for s in sources])
    distances = np.array([r.distance for r in fingerprint])
    try:
        result = nonlinear_lateration(positions, distances)
        errors[BASELINE] = float(np.linalg.norm(result.position - true_position))
    except NumericalError:
        errors[BASELINE] = np.nan

    return errors


def run_comparison(
    outlier_ratios: List[float], n_trials: int, seed: int = 42
) -> Dict[str, np.ndarray]:
    """Run n_trials scenes per outlier ratio.

    Returns:
        Dictionary method -> errors array (n_ratios, n_trials).
    """
    rng = np.random.default_rng(seed)
    names = METHODS + [BASELINE]
    results = {name: np.full((len(outlier_ratios), n_trials), np.nan) for name in names}

    for i, ratio in enumerate(
        tqdm(outlier_ratios, desc="Overall progress", unit="ratio")
    ):
        for k in tqdm(range(n_trials), desc=f"  {ratio:.0%} outliers", leave=False):
            for name, error in run_trial(rng, ratio).items():
                results[name][i, k] = error

    return results


def print_summary(outlier_ratios: List[float], results: Dict[str, np.ndarray]):
    print("\n" + "=" * 70)
    print("Results Summary (median position error in meters)")
    print("=" * 70)
    header = f"{'Outliers':<10}" + "".join(f"{name:<10}" for name in results)
    print(header)
    print("-" * 70)
    for i, ratio in enumerate(outlier_ratios):
        row = f"{ratio:<10.0%}"
        for errors in results.values():
            row += f"{np.nanmedian(errors[i]):<10.3f}"
        print(row)

    print("\nFailure rate (no consensus):")
    for name, errors in results.items():
        print(f"  {name:<8} {np.mean(np.isnan(errors)) * 100:5.1f}%")


def plot_comparison(
    outlier_ratios: List[float], results: Dict[str, np.ndarray], output_file: str = None
):
    """Plot median error vs outlier ratio and the error CDF at the middle ratio."""
    fig, axes = plt.subplots(1, 2, figsize=(14, 5))
    fig.suptitle("Robust Positioning under Outlying Ranges", fontsize=16, fontweight="bold")

    ax1 = axes[0]
    for name, errors in results.items():
        style = "k--" if name == BASELINE else "o-"
        ax1.semilogy(
            np.array(outlier_ratios) * 100,
            np.nanmedian(errors, axis=1),
            style,
            label=name,
            linewidth=2,
        )
    ax1.set_xlabel("Outlying ranges (%)")
    ax1.set_ylabel("Median position error (m)")
    ax1.set_title("Median Error vs Outlier Ratio")
    ax1.grid(True, alpha=0.3)
    ax1.legend()

    ax2 = axes[1]
    idx = len(outlier_ratios) // 2
    for name, errors in results.items():
        valid = np.sort(errors[idx][~np.isnan(errors[idx])])
        if len(valid) == 0:
            continue
        cdf = np.arange(1, len(valid) + 1) / len(valid)
        ax2.plot(valid, cdf, "--" if name == BASELINE else "-", label=name, linewidth=2)
    ax2.set_xscale("log")
    ax2.set_xlabel("Position error (m)")
    ax2.set_ylabel("CDF")
    ax2.set_title(f"Error CDF at {outlier_ratios[idx]:.0%} outliers")
    ax2.grid(True, alpha=0.3)
    ax2.legend()

    plt.tight_layout()

    if output_file:
        plt.savefig(output_file, dpi=150, bbox_inches="tight")
        print(f"\nFigure saved: {output_file}")

    return fig


def main():
    parser = argparse.ArgumentParser(
        description="Compare robust positioning methods under outlying ranges"
    )
    parser.add_argument("--trials", type=int, default=50, help="Scenes per outlier ratio")
    parser.add_argument("--seed", type=int, default=42, help="Random seed")
    parser.add_argument(
        "--output",
        type=str,
        default="robust_positioning/outlier_comparison.png",
        help="Figure output file",
    )
    parser.add_argument("--no-plot", action="store_true", help="Skip the figure")
    args = parser.parse_args()

    outlier_ratios = [0.0, 0.1, 0.2, 0.3, 0.4]

    print("=" * 70)
    print("Robust Positioning Methods Comparison")
    print("=" * 70)
    print(f"  Methods: {', '.join(METHODS)} and {BASELINE} (all ranges)")
    print(f"  Scenes per outlier ratio: {args.trials}")

    start_time = time.time()
    results = run_comparison(outlier_ratios, args.trials, seed=args.seed)
    print(f"\nAll trials completed in {time.time() - start_time:.2f}s")

    print_summary(outlier_ratios, results)

    if not args.no_plot:
        plot_comparison(outlier_ratios, results, args.output)
        plt.show()


if __name__ == "__main__":
    main()
