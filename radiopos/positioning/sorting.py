"""Quality driven grouping and ordering of fingerprint readings.

Readings are grouped by source. Groups are ordered by decreasing source
quality; inside a group readings are ordered by type (ranging, then ranging
and RSSI, then RSSI) and by decreasing reading quality. Every sort is
stable, so ties keep the order in which sources and readings were given.
"""

from typing import Dict, List, Optional, Sequence

import numpy as np

from radiopos.errors import InvalidArgumentError
from radiopos.positioning.types import (
    Fingerprint,
    RadioSource,
    ScoredReading,
    ScoredSource,
    SortedGroup,
    pair_readings,
    pair_sources,
)


def sort_scored(
    scored_sources: Sequence[ScoredSource],
    scored_readings: Sequence[ScoredReading],
) -> List[SortedGroup]:
    """
    Group and order scored readings by their scored source.

    Readings whose source is not among `scored_sources` are dropped, and
    sources without readings produce no group. If a source id is listed
    more than once, its first occurrence is used.

    Args:
        scored_sources: Sources paired with their quality scores.
        scored_readings: Readings paired with their quality scores.

    Returns:
        One SortedGroup per listed source that has readings.
    """
    first: Dict[str, ScoredSource] = {}
    for scored in scored_sources:
        first.setdefault(scored.source.source_id, scored)

    by_source: Dict[str, List[ScoredReading]] = {sid: [] for sid in first}
    for scored in scored_readings:
        readings = by_source.get(scored.reading.source.source_id)
        if readings is not None:
            readings.append(scored)

    ordered_sources = sorted(first.values(), key=lambda s: -s.quality_score)

    groups = []
    for scored in ordered_sources:
        readings = by_source[scored.source.source_id]
        if not readings:
            continue
        readings = sorted(
            readings,
            key=lambda r: (r.reading.reading_type.value, -r.quality_score),
        )
        groups.append(SortedGroup(scored.source, scored.quality_score, readings))

    return groups


def sort_readings(
    sources: Sequence[RadioSource],
    fingerprint: Fingerprint,
    source_quality_scores: Sequence[float],
    reading_quality_scores: Sequence[float],
) -> List[SortedGroup]:
    """Sort a fingerprint given parallel source and reading score arrays.

    Raises:
        InvalidArgumentError: If a score array length does not match.
    """
    return sort_scored(
        pair_sources(sources, source_quality_scores),
        pair_readings(fingerprint, reading_quality_scores),
    )


def interleave(groups: Sequence[SortedGroup]) -> List[ScoredReading]:
    """Round-robin over groups: first reading of each group, then the second...

    Consecutive readings then come from different sources whenever possible.
    """
    out = []
    depth = max((len(g.readings) for g in groups), default=0)
    for k in range(depth):
        for group in groups:
            if k < len(group.readings):
                out.append(group.readings[k])
    return out


class ReadingSorter:
    """Sorts the readings of a fingerprint by source and reading quality.

    The sorter never mutates its inputs and sort() may be called any number
    of times with identical results.

    Example:
        >>> sorter = ReadingSorter(sources, fingerprint, [0.9, 0.1], [0.5, 0.7])
        >>> groups = sorter.sort()
        >>> [g.source.source_id for g in groups]
    """

    def __init__(
        self,
        sources: Optional[Sequence[RadioSource]],
        fingerprint: Optional[Fingerprint],
        source_quality_scores: Optional[Sequence[float]],
        reading_quality_scores: Optional[Sequence[float]],
    ):
        if sources is None or fingerprint is None:
            raise InvalidArgumentError("sources and fingerprint are required")
        if source_quality_scores is None or reading_quality_scores is None:
            raise InvalidArgumentError("source and reading quality scores are required")

        self._scored_sources = pair_sources(list(sources), source_quality_scores)
        self._scored_readings = pair_readings(fingerprint, reading_quality_scores)
        self._sorted_groups: Optional[List[SortedGroup]] = None

    @property
    def sources(self) -> List[RadioSource]:
        return [s.source for s in self._scored_sources]

    @property
    def source_quality_scores(self) -> np.ndarray:
        return np.array([s.quality_score for s in self._scored_sources])

    @property
    def reading_quality_scores(self) -> np.ndarray:
        return np.array([r.quality_score for r in self._scored_readings])

    @property
    def sorted_groups(self) -> Optional[List[SortedGroup]]:
        """Result of the last sort(), or None before the first call."""
        return self._sorted_groups

    def sort(self) -> List[SortedGroup]:
        """Group readings by source and order groups and readings."""
        self._sorted_groups = sort_scored(self._scored_sources, self._scored_readings)
        return self._sorted_groups
