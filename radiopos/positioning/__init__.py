"""
Robust position estimation from ranging and RSSI fingerprints.

Main classes:
    ReadingSorter: Groups readings by source and orders them by quality
    RobustRangingPositionEstimator: Robust estimation from distances
    RobustRssiPositionEstimator: Robust estimation from RSSI
    SequentialRobustRangingAndRssiPositionEstimator: Ranging phase seeding an
        RSSI phase
"""

from radiopos.positioning.base import (
    EstimatorListener,
    EstimatorState,
    LockableEstimator,
)
from radiopos.positioning.config import RobustEstimatorConfig
from radiopos.positioning.estimator import RadioPositionEstimator
from radiopos.positioning.robust_estimator import (
    RobustRangingPositionEstimator,
    RobustRssiPositionEstimator,
    RobustSingleTypePositionEstimator,
)
from radiopos.positioning.samples import PositionSamples, build_samples
from radiopos.positioning.sequential import (
    SequentialRobustRangingAndRssiPositionEstimator,
)
from radiopos.positioning.sorting import (
    ReadingSorter,
    interleave,
    sort_readings,
    sort_scored,
)
from radiopos.positioning.types import (
    EstimationResult,
    Fingerprint,
    InliersData,
    RadioSource,
    RangingAndRssiReading,
    RangingReading,
    Reading,
    ReadingType,
    RssiReading,
    ScoredReading,
    ScoredSource,
    SortedGroup,
    pair_readings,
    pair_sources,
)

__all__ = [
    # Types
    "RadioSource",
    "ReadingType",
    "Reading",
    "RangingReading",
    "RssiReading",
    "RangingAndRssiReading",
    "Fingerprint",
    "ScoredSource",
    "ScoredReading",
    "SortedGroup",
    "InliersData",
    "EstimationResult",
    "pair_sources",
    "pair_readings",
    # Sorting
    "ReadingSorter",
    "sort_readings",
    "sort_scored",
    "interleave",
    # Estimators
    "EstimatorState",
    "EstimatorListener",
    "LockableEstimator",
    "RadioPositionEstimator",
    "RobustEstimatorConfig",
    "PositionSamples",
    "build_samples",
    "RobustSingleTypePositionEstimator",
    "RobustRangingPositionEstimator",
    "RobustRssiPositionEstimator",
    "SequentialRobustRangingAndRssiPositionEstimator",
]
