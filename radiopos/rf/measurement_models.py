"""
Received signal strength (RSSI) measurement models.

This module implements the log-distance path-loss model used to turn RSSI
readings into range estimates, together with the first-order propagation of
the model uncertainties into a distance standard deviation.

Model:
    rssi = p_ref - 10*η*log10(d / d_ref)

where p_ref is the received power at the reference distance d_ref (usually
1 m) and η is the path-loss exponent (2.0 in free space, 2.5-4.0 indoors).
"""

from typing import Optional, Tuple

import numpy as np

LN10 = np.log(10.0)

# Range below which a distance is treated as zero by the lateration solvers
MIN_DISTANCE = 1e-7


def rss_pathloss(
    p_ref_dbm: float,
    distance: float,
    path_loss_exp: float = 2.0,
    d_ref: float = 1.0,
) -> float:
    """
    Compute the received power at a distance with the log-distance model.

    Args:
        p_ref_dbm: Received power at distance d_ref in dBm.
        distance: Distance between source and receiver in meters.
        path_loss_exp: Path-loss exponent η. Defaults to 2.0 (free space).
        d_ref: Reference distance in meters. Defaults to 1.0.

    Returns:
        Received signal strength in dBm.

    Example:
        >>> rss_pathloss(-40.0, 10.0, path_loss_exp=2.5)
        -65.0
    """
    if distance <= 0:
        raise ValueError(f"distance must be positive, got {distance}")

    return p_ref_dbm - 10 * path_loss_exp * np.log10(distance / d_ref)


def rss_to_distance(
    rss_dbm: float,
    p_ref_dbm: float,
    path_loss_exp: float = 2.0,
    d_ref: float = 1.0,
) -> float:
    """
    Invert the path-loss model to estimate distance from RSSI.

        d = d_ref * 10^((p_ref - rssi) / (10*η))

    Args:
        rss_dbm: Received signal strength in dBm.
        p_ref_dbm: Received power at distance d_ref in dBm.
        path_loss_exp: Path-loss exponent η. Defaults to 2.0.
        d_ref: Reference distance in meters. Defaults to 1.0.

    Returns:
        Estimated distance in meters.

    Example:
        >>> d = rss_to_distance(rss_dbm=-65.0, p_ref_dbm=-40.0, path_loss_exp=2.5)
        >>> print(f"Distance: {d:.2f} m")
        Distance: 10.00 m
    """
    if path_loss_exp <= 0:
        raise ValueError(f"path_loss_exp must be positive, got {path_loss_exp}")

    exponent = (p_ref_dbm - rss_dbm) / (10 * path_loss_exp)
    return d_ref * (10**exponent)


def rss_distance_std(
    rss_dbm: float,
    p_ref_dbm: float,
    path_loss_exp: float = 2.0,
    d_ref: float = 1.0,
    p_ref_std: Optional[float] = None,
    rss_std: Optional[float] = None,
    path_loss_exp_std: Optional[float] = None,
) -> Optional[float]:
    """
    Propagate path-loss model uncertainties into a distance standard deviation.

    First-order propagation through d(p_ref, rssi, η), treating the three
    inputs as uncorrelated:

        ∂d/∂p_ref =  d * ln10 / (10*η)
        ∂d/∂rssi  = -d * ln10 / (10*η)
        ∂d/∂η     = -d * ln10 * (p_ref - rssi) / (10*η²)

    Args:
        rss_dbm: Received signal strength in dBm.
        p_ref_dbm: Received power at distance d_ref in dBm.
        path_loss_exp: Path-loss exponent η.
        d_ref: Reference distance in meters.
        p_ref_std: Standard deviation of p_ref in dB, or None if unknown.
        rss_std: Standard deviation of the RSSI reading in dB, or None.
        path_loss_exp_std: Standard deviation of η, or None.

    Returns:
        Distance standard deviation in meters, or None when no input
        uncertainty is known.

    Example:
        >>> std = rss_distance_std(-65.0, -40.0, 2.5, rss_std=1.0)
        >>> print(f"{std:.2f} m")
        0.92 m
    """
    if p_ref_std is None and rss_std is None and path_loss_exp_std is None:
        return None

    d = rss_to_distance(rss_dbm, p_ref_dbm, path_loss_exp, d_ref)
    g = d * LN10 / (10 * path_loss_exp)

    variance = 0.0
    if p_ref_std is not None:
        variance += (g * p_ref_std) ** 2
    if rss_std is not None:
        variance += (g * rss_std) ** 2
    if path_loss_exp_std is not None:
        d_eta = -g * (p_ref_dbm - rss_dbm) / path_loss_exp
        variance += (d_eta * path_loss_exp_std) ** 2

    return float(np.sqrt(variance))


def simulate_rss_measurement(
    source_pos: np.ndarray,
    receiver_pos: np.ndarray,
    p_ref_dbm: float,
    path_loss_exp: float = 2.5,
    d_ref: float = 1.0,
    sigma_long_db: float = 0.0,
    sigma_short_linear: float = 0.0,
    n_samples_avg: int = 1,
    short_fading_model: str = "rayleigh",
    rng: Optional[np.random.Generator] = None,
) -> Tuple[float, dict]:
    """
    Simulate an RSSI reading with shadowing and multipath fading.

        rssi = p_R + ω_long + ω_short

    ω_long is location dependent shadowing, Gaussian in dB, and is not
    reduced by averaging. ω_short is time-varying multipath fading; with the
    Rayleigh model the amplitude is Rayleigh(σ) and n_samples_avg samples are
    averaged in the linear power domain before converting back to dB.

    Args:
        source_pos: Radio source position [x, y] or [x, y, z] in meters.
        receiver_pos: Receiver position, same dimension as source_pos.
        p_ref_dbm: Received power at distance d_ref in dBm.
        path_loss_exp: Path-loss exponent η. Defaults to 2.5 (indoor).
        d_ref: Reference distance in meters. Defaults to 1.0.
        sigma_long_db: Shadowing standard deviation in dB. Defaults to 0.0.
        sigma_short_linear: Rayleigh scale parameter (or dB standard deviation
            for "gaussian_db"). Defaults to 0.0.
        n_samples_avg: Number of short-term samples averaged. Defaults to 1.
        short_fading_model: "rayleigh", "gaussian_db" or "none".
        rng: Random generator. Defaults to np.random.default_rng().

    Returns:
        rss_measured: Simulated RSSI in dBm.
        info: Dictionary with 'true_distance', 'rss_true', 'omega_long_db',
            'omega_short_db', 'distance_estimate' and 'short_fading_model'.

    Example:
        >>> generator = np.random.default_rng(3)
        >>> rss, info = simulate_rss_measurement(
        ...     np.array([0.0, 0.0]), np.array([10.0, 0.0]),
        ...     p_ref_dbm=-40.0, sigma_long_db=4.0, rng=generator,
        ... )
    """
    if rng is None:
        rng = np.random.default_rng()

    source_pos = np.asarray(source_pos, dtype=float)
    receiver_pos = np.asarray(receiver_pos, dtype=float)

    valid_models = {"rayleigh", "gaussian_db", "none"}
    if short_fading_model not in valid_models:
        raise ValueError(
            f"short_fading_model must be one of {valid_models}, "
            f"got '{short_fading_model}'"
        )
    if n_samples_avg < 1:
        raise ValueError(f"n_samples_avg must be >= 1, got {n_samples_avg}")

    true_distance = float(np.linalg.norm(receiver_pos - source_pos))
    if true_distance <= 0:
        raise ValueError("Receiver and source positions must be different")

    rss_true = rss_pathloss(p_ref_dbm, true_distance, path_loss_exp, d_ref)

    omega_long_db = 0.0
    if sigma_long_db > 0:
        omega_long_db = float(rng.normal(0.0, sigma_long_db))

    omega_short_db = 0.0
    if sigma_short_linear > 0 and short_fading_model == "rayleigh":
        amplitudes = rng.rayleigh(scale=sigma_short_linear, size=n_samples_avg)
        # normalized so that the expected power is 0 dB
        avg_power = np.mean(amplitudes**2) / (2 * sigma_short_linear**2)
        omega_short_db = float(10 * np.log10(max(avg_power, 1e-10)))
    elif sigma_short_linear > 0 and short_fading_model == "gaussian_db":
        effective_std = sigma_short_linear / np.sqrt(n_samples_avg)
        omega_short_db = float(rng.normal(0.0, effective_std))

    rss_measured = rss_true + omega_long_db + omega_short_db

    info = {
        "true_distance": true_distance,
        "rss_true": rss_true,
        "omega_long_db": omega_long_db,
        "omega_short_db": omega_short_db,
        "distance_estimate": rss_to_distance(
            rss_measured, p_ref_dbm, path_loss_exp, d_ref
        ),
        "short_fading_model": short_fading_model,
    }

    return rss_measured, info
