"""Hand-off of aiding measurements from an ingest thread to the inertial loop.

The inertial loop runs at the IMU rate and must never block on slow aiding
sources (GNSS, compass). An ingest thread publishes each new fix with
put(); the inertial loop calls take() once per tick and gets either the
latest fix or None.

Only the newest fix is kept (single slot, latest wins). A fix stamped
earlier than one already consumed is discarded, so the filter never
processes two fixes out of order.
"""

import threading
import warnings
from typing import Optional, Tuple

import numpy as np

from navcore.errors import RejectedSampleWarning
from navcore.sensors.types import MeasurementSet


class AidingBuffer:
    """Single-slot, lock-protected, latest-wins aiding buffer.

    Example:
        >>> buf = AidingBuffer()
        >>> buf.put(MeasurementSet.position_fix(np.zeros(3)), stamp=1.0)
        True
        >>> buf.take().kind.name
        'POSITION'
        >>> buf.take() is None
        True
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._slot: Optional[Tuple[float, MeasurementSet]] = None
        self._last_consumed: Optional[float] = None
        self.dropped = 0

    def put(self, measurements: MeasurementSet, stamp: float) -> bool:
        """
        Publish a fix.

        Args:
            measurements: Aiding measurement set (kind other than NONE).
            stamp: Time of validity in seconds (monotonic clock).

        Returns:
            True if the fix was stored; False if it was older than the last
            consumed fix or the pending one and was discarded.

        Raises:
            ValueError: If the measurement set carries no aiding or the
                stamp is not finite.
        """
        if not measurements.has_aiding:
            raise ValueError("Cannot publish a NONE measurement set")
        if not np.isfinite(stamp):
            raise ValueError(f"stamp must be finite, got {stamp}")

        with self._lock:
            stale = (self._last_consumed is not None and stamp <= self._last_consumed) or (
                self._slot is not None and stamp < self._slot[0]
            )
            if stale:
                self.dropped += 1
            else:
                self._slot = (stamp, measurements)

        if stale:
            warnings.warn(
                f"Out-of-order aiding fix at t={stamp:.3f} discarded",
                RejectedSampleWarning,
                stacklevel=2,
            )
        return not stale

    def take(self) -> Optional[MeasurementSet]:
        """Return and clear the latest fix, or None if nothing is pending."""
        with self._lock:
            if self._slot is None:
                return None
            stamp, measurements = self._slot
            self._slot = None
            self._last_consumed = stamp
        return measurements

    def take_or_none(self) -> MeasurementSet:
        """Like take(), but returns a NONE measurement set when empty."""
        measurements = self.take()
        return MeasurementSet.none() if measurements is None else measurements

    def __len__(self) -> int:
        with self._lock:
            return 0 if self._slot is None else 1
