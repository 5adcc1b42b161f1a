"""
Sequential Ranging and RSSI Positioning Example.

A receiver walks through a 30m x 20m floor covered by Wi-Fi access points.
Every access point is heard through RSSI (log-distance path loss with
long-term and Rayleigh short-term fading), and a few of them also provide
ranging (e.g. Wi-Fi RTT) with occasional NLOS errors.

At every point the script compares:
    - Robust RSSI-only positioning
    - Sequential positioning: robust ranging seeding robust RSSI

Can run with:
    - Default: python -m robust_positioning.example_sequential_positioning
    - Heavier fading: python -m robust_positioning.example_sequential_positioning --sigma-long 8
"""

import argparse
import warnings
from typing import Dict, List, Tuple

import matplotlib.pyplot as plt
import numpy as np
from tqdm import tqdm

from radiopos.errors import (
    NumericalError,
    RangingSeedWarning,
    RobustEstimatorError,
)
from radiopos.positioning import (
    Fingerprint,
    RadioSource,
    RangingAndRssiReading,
    RobustEstimatorConfig,
    RobustRssiPositionEstimator,
    RssiReading,
    SequentialRobustRangingAndRssiPositionEstimator,
)
from radiopos.rf import simulate_rss_measurement

P_REF_DBM = -40.0
PATH_LOSS_EXP = 2.5


def generate_access_points(n_ranging: int = 4) -> List[RadioSource]:
    """Access points on a 4 x 3 grid; the first n_ranging also provide ranging."""
    xs = np.linspace(2.0, 28.0, 4)
    ys = np.linspace(2.0, 18.0, 3)
    positions = np.array([[x, y] for y in ys for x in xs])
    return [
        RadioSource(
            f"ap-{i}",
            p,
            position_covariance=np.eye(2) * 0.01,
            transmitted_power_dbm=P_REF_DBM,
            path_loss_exponent=PATH_LOSS_EXP,
            transmitted_power_std=1.0,
        )
        for i, p in enumerate(positions)
    ]


def generate_trajectory(n_points: int = 60) -> np.ndarray:
    """Closed walk around the floor."""
    t = np.linspace(0.0, 2.0 * np.pi, n_points, endpoint=False)
    return np.column_stack([15.0 + 10.0 * np.cos(t), 10.0 + 6.0 * np.sin(t)])


def measure(
    rng: np.random.Generator,
    sources: List[RadioSource],
    true_position: np.ndarray,
    ranging_ids: set,
    sigma_long_db: float,
    range_noise_std: float,
    nlos_probability: float,
) -> Fingerprint:
    """Fingerprint of combined readings (ranging APs) and RSSI readings."""
    readings = []
    for source in sources:
        rss, info = simulate_rss_measurement(
            source.position,
            true_position,
            p_ref_dbm=P_REF_DBM,
            path_loss_exp=PATH_LOSS_EXP,
            sigma_long_db=sigma_long_db,
            sigma_short_linear=0.5,
            n_samples_avg=5,
            rng=rng,
        )
        rssi_std = max(sigma_long_db, 1.0)
        if source.source_id in ranging_ids:
            distance = info["true_distance"] + rng.normal(0.0, range_noise_std)
            if rng.random() < nlos_probability:
                distance += rng.uniform(2.0, 10.0)
            readings.append(
                RangingAndRssiReading(
                    source,
                    abs(distance),
                    rss,
                    distance_std=range_noise_std,
                    rssi_std=rssi_std,
                )
            )
        else:
            readings.append(RssiReading(source, rss, rssi_std=rssi_std))
    return Fingerprint(readings)


def run_walk(
    sigma_long_db: float,
    range_noise_std: float,
    nlos_probability: float,
    seed: int = 7,
) -> Tuple[np.ndarray, Dict[str, np.ndarray], List[RadioSource]]:
    """Estimate every point of the walk with both estimators.

    Returns:
        Tuple (trajectory, estimates per method, sources).
    """
    rng = np.random.default_rng(seed)
    sources = generate_access_points()
    ranging_ids = {s.source_id for s in sources[:4]}
    trajectory = generate_trajectory()

    estimates = {
        "rssi": np.full_like(trajectory, np.nan),
        "sequential": np.full_like(trajectory, np.nan),
    }
    config = RobustEstimatorConfig(method="promeds")
    ranging_failures = 0

    for i, true_position in enumerate(tqdm(trajectory, desc="Walk", unit="pt")):
        fingerprint = measure(
            rng,
            sources,
            true_position,
            ranging_ids,
            sigma_long_db,
            range_noise_std,
            nlos_probability,
        )
        # readings of ranging-capable APs are trusted more
        reading_scores = np.array(
            [1.0 if r.source.source_id in ranging_ids else 0.5 for r in fingerprint]
        )
        source_scores = np.ones(len(sources))

        rssi = RobustRssiPositionEstimator(
            sources,
            fingerprint,
            source_scores,
            reading_scores,
            config=config,
            rng=rng,
        )
        try:
            estimates["rssi"][i] = rssi.estimate()
        except (RobustEstimatorError, NumericalError):
            pass

        sequential = SequentialRobustRangingAndRssiPositionEstimator(
            sources,
            fingerprint,
            source_scores,
            reading_scores,
            ranging_config=config,
            rssi_config=config,
            rng=rng,
        )
        with warnings.catch_warnings():
            warnings.simplefilter("ignore", RangingSeedWarning)
            try:
                estimates["sequential"][i] = sequential.estimate()
            except (RobustEstimatorError, NumericalError):
                pass
        ranging_failures += sequential.ranging_phase_failed

    print(f"\nRanging phase failures: {ranging_failures}/{len(trajectory)}")
    return trajectory, estimates, sources


def plot_walk(
    trajectory: np.ndarray,
    estimates: Dict[str, np.ndarray],
    sources: List[RadioSource],
    output_file: str = None,
):
    """Plot the estimated walks and their error CDF."""
    fig, axes = plt.subplots(1, 2, figsize=(14, 5))
    fig.suptitle("Sequential Ranging + RSSI Positioning", fontsize=16, fontweight="bold")

    ax1 = axes[0]
    aps = np.array([s.position for s in sources])
    ax1.scatter(
        aps[:, 0], aps[:, 1], s=150, c="red", marker="^",
        label="Access points", edgecolors="black", zorder=10,
    )
    ax1.plot(trajectory[:, 0], trajectory[:, 1], "k-", linewidth=2, label="Truth")
    colors = {"rssi": "orange", "sequential": "blue"}
    for name, est in estimates.items():
        ax1.plot(est[:, 0], est[:, 1], ".", color=colors[name], label=name, alpha=0.7)
    ax1.set_xlabel("X (m)")
    ax1.set_ylabel("Y (m)")
    ax1.set_title("Estimated Walk")
    ax1.legend()
    ax1.grid(True, alpha=0.3)
    ax1.axis("equal")

    ax2 = axes[1]
    for name, est in estimates.items():
        errors = np.linalg.norm(est - trajectory, axis=1)
        errors = np.sort(errors[~np.isnan(errors)])
        if len(errors) == 0:
            continue
        cdf = np.arange(1, len(errors) + 1) / len(errors)
        ax2.plot(errors, cdf, color=colors[name], label=name, linewidth=2)
    ax2.set_xlabel("Position error (m)")
    ax2.set_ylabel("CDF")
    ax2.set_title("Cumulative Distribution of Errors")
    ax2.legend()
    ax2.grid(True, alpha=0.3)
    ax2.set_xlim(left=0)

    plt.tight_layout()

    if output_file:
        plt.savefig(output_file, dpi=150, bbox_inches="tight")
        print(f"\nFigure saved: {output_file}")

    return fig


def main():
    parser = argparse.ArgumentParser(
        description="Sequential ranging + RSSI positioning along a walk"
    )
    parser.add_argument("--sigma-long", type=float, default=4.0, help="Shadowing std (dB)")
    parser.add_argument("--range-noise", type=float, default=0.2, help="Range noise std (m)")
    parser.add_argument("--nlos", type=float, default=0.15, help="NLOS probability")
    parser.add_argument("--seed", type=int, default=7, help="Random seed")
    parser.add_argument(
        "--output",
        type=str,
        default="robust_positioning/sequential_positioning.png",
        help="Figure output file",
    )
    parser.add_argument("--no-plot", action="store_true", help="Skip the figure")
    args = parser.parse_args()

    print("=" * 70)
    print("Sequential Ranging + RSSI vs RSSI-only Positioning")
    print("=" * 70)
    print(f"  Shadowing: {args.sigma_long:.1f} dB, range noise: {args.range_noise:.2f} m, "
          f"NLOS probability: {args.nlos:.0%}")

    trajectory, estimates, sources = run_walk(
        args.sigma_long, args.range_noise, args.nlos, seed=args.seed
    )

    print("\n" + "=" * 70)
    print("Results Summary")
    print("=" * 70)
    print(f"{'Method':<12} {'RMSE (m)':<12} {'Median (m)':<12} {'Failures':<10}")
    print("-" * 70)
    for name, est in estimates.items():
        errors = np.linalg.norm(est - trajectory, axis=1)
        valid = errors[~np.isnan(errors)]
        rmse = np.sqrt(np.mean(valid**2)) if len(valid) else np.nan
        median = np.median(valid) if len(valid) else np.nan
        print(f"{name:<12} {rmse:<12.3f} {median:<12.3f} {len(errors) - len(valid):<10}")

    if not args.no_plot:
        plot_walk(trajectory, estimates, sources, args.output)
        plt.show()


if __name__ == "__main__":
    main()
