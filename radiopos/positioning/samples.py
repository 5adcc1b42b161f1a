"""Conversion of readings into lateration samples.

A sample is one (source position, distance, distance std, quality) row.
Ranging readings give the distance directly; RSSI readings are converted
through the source's path-loss parameters.
"""

from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Union

import numpy as np

from radiopos.positioning.sorting import interleave, sort_scored
from radiopos.positioning.types import (
    RadioSource,
    RangingReading,
    RssiReading,
    ScoredReading,
    ScoredSource,
)
from radiopos.rf.measurement_models import (
    MIN_DISTANCE,
    rss_distance_std,
    rss_to_distance,
)

SingleReading = Union[RangingReading, RssiReading]


@dataclass
class PositionSamples:
    """Parallel per-sample arrays fed to the robust estimator.

    Attributes:
        positions: Source positions (n, d).
        distances: Distances to the sources (n,).
        distance_stds: Distance standard deviations (n,).
        quality_scores: Reading score plus source score (n,), or None when
            no scores were supplied.
        groups: Index of the originating source in the source list (n,).
        readings: Reading behind each sample.
        reading_indices: Index of each sample's reading in the reading list
            it was built from.
    """

    positions: np.ndarray
    distances: np.ndarray
    distance_stds: np.ndarray
    quality_scores: Optional[np.ndarray]
    groups: np.ndarray
    readings: List[SingleReading]
    reading_indices: List[int]

    def __len__(self) -> int:
        return len(self.distances)

    def reorder(self, order: Sequence[int]) -> "PositionSamples":
        order = list(order)
        return PositionSamples(
            positions=self.positions[order],
            distances=self.distances[order],
            distance_stds=self.distance_stds[order],
            quality_scores=(
                None if self.quality_scores is None else self.quality_scores[order]
            ),
            groups=self.groups[order],
            readings=[self.readings[i] for i in order],
            reading_indices=[self.reading_indices[i] for i in order],
        )


def combine_stds(*stds: Optional[float]) -> Optional[float]:
    """Root sum of squares of the known standard deviations, None if none is known."""
    known = [s for s in stds if s is not None]
    if not known:
        return None
    return float(np.sqrt(np.sum(np.square(known))))


def reading_distance(
    reading: SingleReading, source: RadioSource
) -> Optional[tuple]:
    """Distance and its std (or None) for a reading, or None if unusable."""
    if isinstance(reading, RangingReading):
        return reading.distance, reading.distance_std

    if source.transmitted_power_dbm is None:
        return None
    distance = rss_to_distance(
        reading.rssi,
        source.transmitted_power_dbm,
        source.path_loss_exponent,
        source.reference_distance,
    )
    std = rss_distance_std(
        reading.rssi,
        source.transmitted_power_dbm,
        source.path_loss_exponent,
        source.reference_distance,
        p_ref_std=source.transmitted_power_std,
        rss_std=reading.rssi_std,
        path_loss_exp_std=source.path_loss_exponent_std,
    )
    return distance, std


def build_samples(
    sources: Sequence[RadioSource],
    readings: Sequence[SingleReading],
    source_quality_scores: Optional[np.ndarray] = None,
    reading_quality_scores: Optional[np.ndarray] = None,
    use_source_position_covariance: bool = True,
    fallback_distance_std: float = 1e-3,
) -> PositionSamples:
    """
    Build lateration samples from single-type readings.

    Readings whose source is not in `sources`, and RSSI readings whose
    source has no transmitted power, are skipped. The listed source (matched
    by id) provides the position and path-loss parameters.

    Args:
        sources: Located radio sources.
        readings: Ranging or RSSI readings.
        source_quality_scores: Scores parallel to `sources`, or None.
        reading_quality_scores: Scores parallel to `readings`, or None.
        use_source_position_covariance: Add the source position std to each
            distance std.
        fallback_distance_std: Std used when no uncertainty is known.

    Returns:
        PositionSamples in reading order.
    """
    dimension = sources[0].dimension if sources else 2
    index_of: Dict[str, int] = {}
    for i, source in enumerate(sources):
        index_of.setdefault(source.source_id, i)

    with_scores = source_quality_scores is not None and reading_quality_scores is not None

    positions, distances, stds, qualities, groups = [], [], [], [], []
    used_readings, used_indices = [], []
    for k, reading in enumerate(readings):
        i = index_of.get(reading.source.source_id)
        if i is None:
            continue
        source = sources[i]
        converted = reading_distance(reading, source)
        if converted is None:
            continue
        distance, reading_std = converted

        position_std = source.position_std if use_source_position_covariance else None
        std = combine_stds(position_std, reading_std)
        if std is None or std <= 0:
            std = fallback_distance_std

        positions.append(source.position)
        distances.append(max(distance, MIN_DISTANCE))
        stds.append(std)
        groups.append(i)
        used_readings.append(reading)
        used_indices.append(k)
        if with_scores:
            qualities.append(reading_quality_scores[k] + source_quality_scores[i])

    return PositionSamples(
        positions=np.array(positions, dtype=float).reshape(-1, dimension),
        distances=np.array(distances, dtype=float),
        distance_stds=np.array(stds, dtype=float),
        quality_scores=np.array(qualities, dtype=float) if with_scores else None,
        groups=np.array(groups, dtype=int),
        readings=used_readings,
        reading_indices=used_indices,
    )


def distribute_evenly(
    samples: PositionSamples,
    sources: Sequence[RadioSource],
    source_quality_scores: Optional[np.ndarray] = None,
) -> PositionSamples:
    """
    Reorder samples so that consecutive samples come from different sources.

    Samples are grouped and ordered with the reading sorter (by source
    quality, then reading quality) and the groups are interleaved. Without
    scores, source and reading order are kept.
    """
    if len(samples) == 0:
        return samples

    if source_quality_scores is None:
        source_quality_scores = np.zeros(len(sources))
    sample_scores = (
        samples.quality_scores
        if samples.quality_scores is not None
        else np.zeros(len(samples))
    )

    scored_sources = [
        ScoredSource(s, float(q)) for s, q in zip(sources, source_quality_scores)
    ]
    scored_readings = [
        ScoredReading(r, float(q)) for r, q in zip(samples.readings, sample_scores)
    ]
    # a reading object may be listed twice; positions are consumed in order
    positions_of: Dict[int, List[int]] = {}
    for k, r in enumerate(samples.readings):
        positions_of.setdefault(id(r), []).append(k)

    ordered = interleave(sort_scored(scored_sources, scored_readings))
    return samples.reorder([positions_of[id(s.reading)].pop(0) for s in ordered])
