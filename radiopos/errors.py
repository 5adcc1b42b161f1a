"""Exception and warning types raised by the positioning engine."""


class PositioningError(Exception):
    """Base class for all positioning errors."""


class InvalidArgumentError(PositioningError, ValueError):
    """An input is malformed or inconsistent (lengths, dimensions, values)."""


class NotReadyError(PositioningError, RuntimeError):
    """Estimation was requested before the estimator had enough data."""


class LockedError(PositioningError, RuntimeError):
    """A mutation or estimation was attempted while an estimation is running."""


class RobustEstimatorError(PositioningError, RuntimeError):
    """No consensus hypothesis was found by the robust estimator."""


class NumericalError(PositioningError, ArithmeticError):
    """A solver hit a singular or non positive-definite system."""


class RangingSeedWarning(UserWarning):
    """The ranging phase of a sequential estimation failed.

    The RSSI phase then starts from the caller supplied initial position.
    """
