"""
RF measurement models and lateration.

Submodules:
    measurement_models: Log-distance path-loss model and RSSI distance uncertainty
    lateration: Linear and nonlinear position from distances to located sources
"""

from radiopos.rf.lateration import (
    LaterationResult,
    homogeneous_linear_lateration,
    inhomogeneous_linear_lateration,
    nonlinear_lateration,
)
from radiopos.rf.measurement_models import (
    MIN_DISTANCE,
    rss_distance_std,
    rss_pathloss,
    rss_to_distance,
    simulate_rss_measurement,
)

__all__ = [
    # Path-loss model
    "MIN_DISTANCE",
    "rss_pathloss",
    "rss_to_distance",
    "rss_distance_std",
    "simulate_rss_measurement",
    # Lateration
    "LaterationResult",
    "inhomogeneous_linear_lateration",
    "homogeneous_linear_lateration",
    "nonlinear_lateration",
]
