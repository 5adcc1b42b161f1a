"""Estimator state, locking and listener interface.

An estimator is either IDLE or RUNNING. estimate() enters RUNNING through a
scoped guard which always restores IDLE, including when a listener raises.
While RUNNING every mutator and estimate() itself raise LockedError, so a
listener cannot change or re-run the estimator it is observing.
"""

from abc import ABC, abstractmethod
from contextlib import contextmanager
from enum import Enum
from typing import Iterator, Optional

import numpy as np

from radiopos.errors import LockedError


class EstimatorState(Enum):
    """Lifecycle state of an estimator."""

    IDLE = "idle"
    RUNNING = "running"


class EstimatorListener:
    """Receives progress events from an estimator.

    Subclass and override the events of interest; the default
    implementations do nothing. All events are delivered synchronously
    while the estimator is RUNNING.
    """

    def on_estimate_start(self, estimator: "LockableEstimator") -> None:
        """Called once when an estimation starts."""

    def on_estimate_end(self, estimator: "LockableEstimator") -> None:
        """Called once when an estimation ends successfully."""

    def on_estimate_next_iteration(
        self, estimator: "LockableEstimator", iteration: int
    ) -> None:
        """Called after each evaluated subset (1-based iteration count)."""

    def on_estimate_progress_change(
        self, estimator: "LockableEstimator", progress: float
    ) -> None:
        """Called when progress in [0, 1] advanced by at least progress_delta."""


class LockableEstimator(ABC):
    """Base class for estimators guarded by the IDLE/RUNNING state."""

    def __init__(self, listener: Optional[EstimatorListener] = None):
        self._state = EstimatorState.IDLE
        self._listener = listener

    @property
    def state(self) -> EstimatorState:
        return self._state

    @property
    def is_locked(self) -> bool:
        """True while an estimation is running."""
        return self._state is EstimatorState.RUNNING

    @property
    def listener(self) -> Optional[EstimatorListener]:
        return self._listener

    @listener.setter
    def listener(self, listener: Optional[EstimatorListener]) -> None:
        self._check_not_locked()
        self._listener = listener

    @property
    @abstractmethod
    def is_ready(self) -> bool:
        """Whether estimate() has enough data to run."""

    @abstractmethod
    def estimate(self) -> np.ndarray:
        """Run the estimation and return the estimated position."""

    def _check_not_locked(self) -> None:
        if self.is_locked:
            raise LockedError(
                f"{type(self).__name__} is running; it cannot be modified "
                "or restarted until estimate() returns"
            )

    def _notify(self, event: str, *args) -> None:
        if self._listener is not None:
            getattr(self._listener, event)(self, *args)

    @contextmanager
    def _running(self) -> Iterator[None]:
        self._check_not_locked()
        self._state = EstimatorState.RUNNING
        try:
            yield
        finally:
            self._state = EstimatorState.IDLE


class ProgressTracker:
    """Emit progress events when progress moves by at least `delta`."""

    def __init__(self, notify, delta: float):
        self._notify = notify
        self._delta = delta
        self._last = None

    def update(self, progress: float) -> None:
        progress = min(max(progress, 0.0), 1.0)
        if self._last is None or progress - self._last >= self._delta:
            self._last = progress
            self._notify(progress)

    def finish(self) -> None:
        if self._last is None or self._last < 1.0:
            self._last = 1.0
            self._notify(1.0)
