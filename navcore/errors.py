"""
Exceptions and warning categories shared by the navigation filters.

Recoverable conditions (a degenerate sensor vector, a rejected sample) are
reported through the ``warnings`` module so callers can filter or escalate
them. An estimator whose state has become non-finite cannot recover on its
own and raises NonFiniteStateError; the caller must re-initialize it.
"""


class NonFiniteStateError(RuntimeError):
    """Nominal state or covariance contains NaN/Inf after a step."""


class DegenerateMeasurementWarning(UserWarning):
    """A sensor vector could not be normalized and its term was suppressed."""


class RejectedSampleWarning(UserWarning):
    """A non-finite input sample was discarded for this tick."""
