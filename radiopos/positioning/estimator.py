"""Inputs shared by every radio position estimator.

RadioPositionEstimator stores the sources, the fingerprint, their quality
scores and the initial position, and validates them on every mutation:
quality score arrays always match the source and reading counts, and no
input changes while an estimation is running.
"""

from typing import ClassVar, List, Optional, Sequence, Tuple

import numpy as np

from radiopos.errors import InvalidArgumentError
from radiopos.positioning.base import EstimatorListener, LockableEstimator
from radiopos.positioning.types import Fingerprint, RadioSource, ReadingType


def check_scores(scores, expected: Optional[int], what: str) -> Optional[np.ndarray]:
    """Quality scores as a float array, checking count and finiteness."""
    if scores is None:
        return None
    scores = np.asarray(scores, dtype=float)
    if scores.ndim != 1:
        raise InvalidArgumentError(f"{what} quality scores must be 1D")
    if expected is not None and len(scores) != expected:
        raise InvalidArgumentError(
            f"Expected {expected} {what} quality scores, got {len(scores)}"
        )
    if not np.all(np.isfinite(scores)):
        raise InvalidArgumentError(f"{what} quality scores must be finite")
    return scores


class RadioPositionEstimator(LockableEstimator):
    """Base class holding the inputs of a radio position estimator.

    Args:
        sources: Located radio sources (at least dimension + 1).
        fingerprint: Readings taken at the position to estimate.
        source_quality_scores: One score per source (higher is better).
        reading_quality_scores: One score per fingerprint reading.
        initial_position: Optional seed position.
        listener: Receives progress events.
        dimension: Spatial dimension (2 or 3). Inferred from the sources
            when omitted.
        rng: Random generator used to draw subsets.
    """

    accepted_types: ClassVar[Tuple[ReadingType, ...]] = tuple(ReadingType)

    def __init__(
        self,
        sources: Optional[Sequence[RadioSource]] = None,
        fingerprint: Optional[Fingerprint] = None,
        source_quality_scores: Optional[Sequence[float]] = None,
        reading_quality_scores: Optional[Sequence[float]] = None,
        initial_position: Optional[np.ndarray] = None,
        listener: Optional[EstimatorListener] = None,
        dimension: Optional[int] = None,
        rng: Optional[np.random.Generator] = None,
    ):
        super().__init__(listener)
        if dimension is not None and dimension not in (2, 3):
            raise InvalidArgumentError(f"dimension must be 2 or 3, got {dimension}")

        self._dimension = dimension
        self._rng = rng if rng is not None else np.random.default_rng()
        self._sources: Optional[List[RadioSource]] = None
        self._fingerprint: Optional[Fingerprint] = None
        self._source_quality_scores: Optional[np.ndarray] = None
        self._reading_quality_scores: Optional[np.ndarray] = None
        self._initial_position: Optional[np.ndarray] = None

        self._assign_sources(sources, source_quality_scores)
        self._assign_fingerprint(fingerprint, reading_quality_scores)
        if initial_position is not None:
            self._initial_position = self._check_position(initial_position)
        if self.dimension is not None:
            self._check_options(self.dimension)

    @property
    def sources(self) -> Optional[List[RadioSource]]:
        return None if self._sources is None else list(self._sources)

    @property
    def fingerprint(self) -> Optional[Fingerprint]:
        return self._fingerprint

    @property
    def source_quality_scores(self) -> Optional[np.ndarray]:
        return self._source_quality_scores

    @property
    def reading_quality_scores(self) -> Optional[np.ndarray]:
        return self._reading_quality_scores

    @property
    def dimension(self) -> Optional[int]:
        """Spatial dimension, explicit or inferred from the sources."""
        if self._dimension is not None:
            return self._dimension
        if self._sources:
            return self._sources[0].dimension
        return None

    @property
    def min_required_sources(self) -> int:
        return (self.dimension or 2) + 1

    def set_sources(
        self,
        sources: Optional[Sequence[RadioSource]],
        quality_scores: Optional[Sequence[float]] = None,
    ) -> None:
        """Replace the sources, and optionally their quality scores.

        Raises:
            LockedError: While an estimation is running.
            InvalidArgumentError: On mixed dimensions, too few sources, or a
                quality score count that does not match.
        """
        self._check_not_locked()
        self._assign_sources(sources, quality_scores)

    def set_fingerprint(
        self,
        fingerprint: Optional[Fingerprint],
        quality_scores: Optional[Sequence[float]] = None,
    ) -> None:
        """Replace the fingerprint, and optionally its reading quality scores.

        Raises:
            LockedError: While an estimation is running.
            InvalidArgumentError: On unsupported reading types or a quality
                score count that does not match.
        """
        self._check_not_locked()
        self._assign_fingerprint(fingerprint, quality_scores)

    def set_quality_scores(
        self,
        source_quality_scores: Optional[Sequence[float]],
        reading_quality_scores: Optional[Sequence[float]],
    ) -> None:
        """Replace both quality score arrays."""
        self._check_not_locked()
        source_scores = check_scores(
            source_quality_scores,
            None if self._sources is None else len(self._sources),
            "source",
        )
        reading_scores = check_scores(
            reading_quality_scores,
            None if self._fingerprint is None else self._fingerprint.n_readings,
            "reading",
        )
        self._source_quality_scores = source_scores
        self._reading_quality_scores = reading_scores
        self._invalidate()

    @property
    def initial_position(self) -> Optional[np.ndarray]:
        return None if self._initial_position is None else self._initial_position.copy()

    @initial_position.setter
    def initial_position(self, position: Optional[np.ndarray]) -> None:
        self._check_not_locked()
        self._initial_position = (
            None if position is None else self._check_position(position)
        )

    @property
    def rng(self) -> np.random.Generator:
        return self._rng

    @rng.setter
    def rng(self, rng: np.random.Generator) -> None:
        self._check_not_locked()
        self._rng = rng

    def _has_inputs(self) -> bool:
        return (
            bool(self._sources)
            and self._fingerprint is not None
            and len(self._sources) >= self.dimension + 1
        )

    def _scores_match(self) -> bool:
        return (
            self._source_quality_scores is not None
            and self._reading_quality_scores is not None
            and self._sources is not None
            and self._fingerprint is not None
            and len(self._source_quality_scores) == len(self._sources)
            and len(self._reading_quality_scores) == self._fingerprint.n_readings
        )

    def _invalidate(self) -> None:
        """Drop anything derived from the inputs."""

    def _check_options(self, dimension: int) -> None:
        """Raise InvalidArgumentError if an option is unusable in `dimension`."""

    def _check_position(self, position: np.ndarray) -> np.ndarray:
        position = np.asarray(position, dtype=float)
        dimension = self.dimension
        allowed = ((2,), (3,)) if dimension is None else ((dimension,),)
        if position.shape not in allowed or not np.all(np.isfinite(position)):
            raise InvalidArgumentError(
                f"initial_position must be finite with shape in {allowed}, "
                f"got {position.shape}"
            )
        return position

    def _assign_sources(
        self,
        sources: Optional[Sequence[RadioSource]],
        quality_scores: Optional[Sequence[float]],
    ) -> None:
        if sources is None:
            self._sources = None
            if quality_scores is not None:
                self._source_quality_scores = check_scores(
                    quality_scores, None, "source"
                )
            self._invalidate()
            return

        sources = list(sources)
        for i, source in enumerate(sources):
            if not isinstance(source, RadioSource):
                raise InvalidArgumentError(
                    f"sources[{i}] is not a RadioSource, got {type(source).__name__}"
                )
        dimension = self._dimension or (sources[0].dimension if sources else 2)
        if any(s.dimension != dimension for s in sources):
            raise InvalidArgumentError(f"All sources must be {dimension}D")
        if len(sources) < dimension + 1:
            raise InvalidArgumentError(
                f"At least {dimension + 1} sources are required in {dimension}D, "
                f"got {len(sources)}"
            )

        if quality_scores is not None:
            scores = check_scores(quality_scores, len(sources), "source")
        else:
            scores = self._source_quality_scores
            if scores is not None and len(scores) != len(sources):
                raise InvalidArgumentError(
                    f"{len(sources)} sources do not match the {len(scores)} stored "
                    "source quality scores; pass quality_scores as well"
                )

        if self._initial_position is not None and self._initial_position.shape != (
            dimension,
        ):
            raise InvalidArgumentError(
                f"initial_position is not {dimension}D; clear it first"
            )
        self._check_options(dimension)

        self._sources = sources
        self._source_quality_scores = scores
        self._invalidate()

    def _assign_fingerprint(
        self,
        fingerprint: Optional[Fingerprint],
        quality_scores: Optional[Sequence[float]],
    ) -> None:
        if fingerprint is None:
            self._fingerprint = None
            if quality_scores is not None:
                self._reading_quality_scores = check_scores(
                    quality_scores, None, "reading"
                )
            self._invalidate()
            return

        if not isinstance(fingerprint, Fingerprint):
            fingerprint = Fingerprint(list(fingerprint))
        for i, reading_type in enumerate(fingerprint.reading_types):
            if reading_type not in self.accepted_types:
                raise InvalidArgumentError(
                    f"readings[{i}] is a {reading_type.name} reading, "
                    f"{type(self).__name__} accepts "
                    f"{', '.join(t.name for t in self.accepted_types)}"
                )

        if quality_scores is not None:
            scores = check_scores(quality_scores, fingerprint.n_readings, "reading")
        else:
            scores = self._reading_quality_scores
            if scores is not None and len(scores) != fingerprint.n_readings:
                raise InvalidArgumentError(
                    f"{fingerprint.n_readings} readings do not match the "
                    f"{len(scores)} stored reading quality scores; pass "
                    "quality_scores as well"
                )

        self._fingerprint = fingerprint
        self._reading_quality_scores = scores
        self._invalidate()
