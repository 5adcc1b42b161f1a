"""Data types for robust radio positioning.

This module defines the radio sources, the readings taken against them and
the containers exchanged between the reading sorter and the estimators.

Readings form a tagged union keyed by ReadingType:

    RangingReading          distance to a source
    RssiReading             received power from a source
    RangingAndRssiReading   both, taken together

A Fingerprint is an ordered collection of readings; readings reference their
source object and are matched to the estimator's source list by source_id.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import ClassVar, Iterator, List, Optional, Sequence, Tuple, Union

import numpy as np

from radiopos.errors import InvalidArgumentError


class ReadingType(Enum):
    """Kind of a reading; the value is its priority inside a source group."""

    RANGING = 0
    RANGING_AND_RSSI = 1
    RSSI = 2


@dataclass(eq=False)
class RadioSource:
    """A located radio source (access point, beacon, UWB anchor...).

    Two sources are equal when their source_id is equal, so readings built
    against a copy of a source still match the estimator's source list.

    Attributes:
        source_id: Unique identifier (e.g. BSSID).
        position: Position [x, y] or [x, y, z] in meters.
        position_covariance: Optional (d × d) covariance of the position.
        transmitted_power_dbm: Received power at the reference distance in
            dBm. Required to use the source's RSSI readings.
        path_loss_exponent: Path-loss exponent η (2.0 in free space).
        reference_distance: Reference distance of transmitted_power_dbm.
        transmitted_power_std: Standard deviation of the transmitted power.
        path_loss_exponent_std: Standard deviation of η.

    Example:
        >>> ap = RadioSource(
        ...     "ap-1",
        ...     np.array([0.0, 0.0]),
        ...     transmitted_power_dbm=-40.0,
        ...     path_loss_exponent=2.5,
        ... )
    """

    source_id: str
    position: np.ndarray
    position_covariance: Optional[np.ndarray] = None
    transmitted_power_dbm: Optional[float] = None
    path_loss_exponent: float = 2.0
    reference_distance: float = 1.0
    transmitted_power_std: Optional[float] = None
    path_loss_exponent_std: Optional[float] = None

    def __post_init__(self) -> None:
        """Validate the source and normalise arrays to float."""
        if not isinstance(self.source_id, str) or not self.source_id:
            raise InvalidArgumentError(
                f"source_id must be a non-empty string, got {self.source_id!r}"
            )

        self.position = np.asarray(self.position, dtype=float)
        if self.position.shape not in ((2,), (3,)):
            raise InvalidArgumentError(
                f"position must have shape (2,) or (3,), got {self.position.shape}"
            )
        if not np.all(np.isfinite(self.position)):
            raise InvalidArgumentError("position must be finite")

        if self.position_covariance is not None:
            d = self.dimension
            cov = np.asarray(self.position_covariance, dtype=float)
            if cov.shape != (d, d):
                raise InvalidArgumentError(
                    f"position_covariance must have shape ({d}, {d}), "
                    f"got {cov.shape}"
                )
            if not np.allclose(cov, cov.T):
                raise InvalidArgumentError("position_covariance must be symmetric")
            if np.any(np.linalg.eigvalsh(cov) < -1e-10):
                raise InvalidArgumentError(
                    "position_covariance must be positive semi-definite"
                )
            self.position_covariance = cov

        if self.path_loss_exponent <= 0:
            raise InvalidArgumentError(
                f"path_loss_exponent must be positive, got {self.path_loss_exponent}"
            )
        if self.reference_distance <= 0:
            raise InvalidArgumentError(
                f"reference_distance must be positive, got {self.reference_distance}"
            )
        for name in ("transmitted_power_std", "path_loss_exponent_std"):
            value = getattr(self, name)
            if value is not None and value < 0:
                raise InvalidArgumentError(f"{name} must be non-negative, got {value}")

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, RadioSource):
            return NotImplemented
        return self.source_id == other.source_id

    def __hash__(self) -> int:
        return hash(self.source_id)

    @property
    def dimension(self) -> int:
        """Spatial dimension of the source position (2 or 3)."""
        return self.position.shape[0]

    @property
    def position_std(self) -> Optional[float]:
        """Scalar position uncertainty: sqrt of the mean covariance eigenvalue."""
        if self.position_covariance is None:
            return None
        eigvals = np.clip(np.linalg.eigvalsh(self.position_covariance), 0.0, None)
        return float(np.sqrt(np.mean(eigvals)))


def _check_std(name: str, value: Optional[float]) -> None:
    if value is not None and not value > 0:
        raise InvalidArgumentError(f"{name} must be positive, got {value}")


def _check_distance(distance: float) -> None:
    if not np.isfinite(distance) or distance < 0:
        raise InvalidArgumentError(
            f"distance must be finite and non-negative, got {distance}"
        )


@dataclass(frozen=True, eq=False)
class RangingReading:
    """Distance to a source, in meters."""

    reading_type: ClassVar[ReadingType] = ReadingType.RANGING

    source: RadioSource
    distance: float
    distance_std: Optional[float] = None

    def __post_init__(self) -> None:
        _check_distance(self.distance)
        _check_std("distance_std", self.distance_std)


@dataclass(frozen=True, eq=False)
class RssiReading:
    """Received signal strength from a source, in dBm."""

    reading_type: ClassVar[ReadingType] = ReadingType.RSSI

    source: RadioSource
    rssi: float
    rssi_std: Optional[float] = None

    def __post_init__(self) -> None:
        if not np.isfinite(self.rssi):
            raise InvalidArgumentError(f"rssi must be finite, got {self.rssi}")
        _check_std("rssi_std", self.rssi_std)


@dataclass(frozen=True, eq=False)
class RangingAndRssiReading:
    """Distance and received power measured together against one source."""

    reading_type: ClassVar[ReadingType] = ReadingType.RANGING_AND_RSSI

    source: RadioSource
    distance: float
    rssi: float
    distance_std: Optional[float] = None
    rssi_std: Optional[float] = None

    def __post_init__(self) -> None:
        _check_distance(self.distance)
        if not np.isfinite(self.rssi):
            raise InvalidArgumentError(f"rssi must be finite, got {self.rssi}")
        _check_std("distance_std", self.distance_std)
        _check_std("rssi_std", self.rssi_std)

    def to_ranging(self) -> RangingReading:
        """The ranging half of this reading."""
        return RangingReading(self.source, self.distance, self.distance_std)

    def to_rssi(self) -> RssiReading:
        """The RSSI half of this reading."""
        return RssiReading(self.source, self.rssi, self.rssi_std)


Reading = Union[RangingReading, RssiReading, RangingAndRssiReading]

READING_CLASSES = (RangingReading, RssiReading, RangingAndRssiReading)


@dataclass
class Fingerprint:
    """Ordered readings taken at one (unknown) location.

    Several readings may refer to the same source, and reading types may be
    mixed. Order is significant: reading quality scores are matched to
    readings by position.
    """

    readings: List[Reading] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.readings = list(self.readings)
        for i, reading in enumerate(self.readings):
            if not isinstance(reading, READING_CLASSES):
                raise InvalidArgumentError(
                    f"readings[{i}] is not a reading, got {type(reading).__name__}"
                )

    def __len__(self) -> int:
        return len(self.readings)

    def __iter__(self) -> Iterator[Reading]:
        return iter(self.readings)

    @property
    def n_readings(self) -> int:
        return len(self.readings)

    @property
    def sources(self) -> List[RadioSource]:
        """Distinct sources referenced by the readings, in first-seen order."""
        seen = {}
        for reading in self.readings:
            seen.setdefault(reading.source.source_id, reading.source)
        return list(seen.values())

    @property
    def reading_types(self) -> List[ReadingType]:
        return [reading.reading_type for reading in self.readings]

    def ranging_readings(self) -> Tuple[List[RangingReading], List[int]]:
        """Ranging-capable readings and the index of each in this fingerprint.

        Combined readings contribute their ranging half.
        """
        readings, indices = [], []
        for i, reading in enumerate(self.readings):
            if isinstance(reading, RangingReading):
                readings.append(reading)
            elif isinstance(reading, RangingAndRssiReading):
                readings.append(reading.to_ranging())
            else:
                continue
            indices.append(i)
        return readings, indices

    def rssi_readings(self) -> Tuple[List[RssiReading], List[int]]:
        """RSSI-capable readings and the index of each in this fingerprint.

        Combined readings contribute their RSSI half.
        """
        readings, indices = [], []
        for i, reading in enumerate(self.readings):
            if isinstance(reading, RssiReading):
                readings.append(reading)
            elif isinstance(reading, RangingAndRssiReading):
                readings.append(reading.to_rssi())
            else:
                continue
            indices.append(i)
        return readings, indices


@dataclass(frozen=True)
class ScoredSource:
    """A source paired with its quality score (higher is better)."""

    source: RadioSource
    quality_score: float


@dataclass(frozen=True)
class ScoredReading:
    """A reading paired with its quality score (higher is better)."""

    reading: Reading
    quality_score: float


def _as_scores(scores: Sequence[float], expected: int, what: str) -> np.ndarray:
    scores = np.asarray(scores, dtype=float)
    if scores.ndim != 1 or len(scores) != expected:
        raise InvalidArgumentError(
            f"Expected {expected} {what} quality scores, got {scores.size}"
        )
    if not np.all(np.isfinite(scores)):
        raise InvalidArgumentError(f"{what} quality scores must be finite")
    return scores


def pair_sources(
    sources: Sequence[RadioSource], quality_scores: Sequence[float]
) -> List[ScoredSource]:
    """Pair sources with their quality scores, checking lengths match."""
    scores = _as_scores(quality_scores, len(sources), "source")
    return [ScoredSource(s, float(q)) for s, q in zip(sources, scores)]


def pair_readings(
    fingerprint: Fingerprint, quality_scores: Sequence[float]
) -> List[ScoredReading]:
    """Pair fingerprint readings with their quality scores, checking lengths match."""
    scores = _as_scores(quality_scores, fingerprint.n_readings, "reading")
    return [ScoredReading(r, float(q)) for r, q in zip(fingerprint.readings, scores)]


@dataclass
class SortedGroup:
    """Readings of one source, ordered by type priority then quality.

    Attributes:
        source: The radio source.
        quality_score: Quality score of the source.
        readings: The source's scored readings in sorted order.
    """

    source: RadioSource
    quality_score: float
    readings: List[ScoredReading] = field(default_factory=list)


@dataclass
class InliersData:
    """Inlier classification of the samples used by a robust estimation.

    Attributes:
        inliers: Boolean mask, True where the sample agrees with the estimate.
        residuals: Absolute range residual of every sample.
    """

    inliers: np.ndarray
    residuals: np.ndarray

    @property
    def n_inliers(self) -> int:
        return int(np.count_nonzero(self.inliers))


@dataclass
class EstimationResult:
    """Outcome of one robust estimation.

    Attributes:
        position: Estimated position (d,).
        covariance: Position covariance (d × d), or None when not kept.
        inliers_data: Inlier classification of the samples.
        iterations: Number of subsets evaluated.
        method: Name of the robust method used.
    """

    position: np.ndarray
    covariance: Optional[np.ndarray]
    inliers_data: InliersData
    iterations: int
    method: str
