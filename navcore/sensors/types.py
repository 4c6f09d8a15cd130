"""
Data structures for the aided inertial navigation filters.

This module defines the shared data types used by the attitude observer and
the error-state Kalman filter:
    - Nominal navigation state (position, velocity, biases, attitude)
    - Error-state layout (15 tangent-space components)
    - Inertial sample packet (specific force, angular rate, magnetometer)
    - Per-tick aiding measurement set (tagged union)

Frame Conventions:
    - B: Body frame, axes forward-starboard-down
    - N: NED (North-East-Down) navigation frame
    - Quaternion q rotates B to N: v_N = R(q) @ v_B, scalar first

State ordering (16 scalars):
    x = [p (3), v (3), b_a (3), q (4), b_g (3)]

Error-state ordering (15 scalars):
    δx = [δp (3), δv (3), δb_a (3), δθ (3), δb_g (3)]
"""

import warnings
from dataclasses import dataclass
from enum import Enum
from typing import Optional
import numpy as np

from navcore.coords.rotations import quat_to_euler


# Error-state slices
POS = slice(0, 3)
VEL = slice(3, 6)
ACC_BIAS = slice(6, 9)
ATT = slice(9, 12)
GYRO_BIAS = slice(12, 15)

ERROR_STATE_DIM = 15
PROCESS_NOISE_DIM = 12


def _as_vector(value, name: str, size: int = 3) -> np.ndarray:
    """Convert to a float array and check its shape."""
    arr = np.asarray(value, dtype=float)
    if arr.shape != (size,):
        raise ValueError(f"{name} must have shape ({size},), got {arr.shape}")
    return arr


@dataclass
class NominalState:
    """
    Nominal (total) navigation state integrated by the strapdown mechanization.

    Attributes:
        p: Position in NED, shape (3,). Units: m.
        v: Velocity in NED, shape (3,). Units: m/s.
        b_a: Accelerometer bias in body frame, shape (3,). Units: m/s².
        q: Unit quaternion (body to NED), shape (4,), scalar first.
        b_g: Gyroscope bias in body frame, shape (3,). Units: rad/s.

    Notes:
        - This is a MUTABLE dataclass; the caller owns it and threads it
          through every call.
        - The quaternion is renormalized after every filter mutation.

    Example:
        >>> state = NominalState.zero()
        >>> state.to_vector().shape
        (16,)
    """

    p: np.ndarray
    v: np.ndarray
    b_a: np.ndarray
    q: np.ndarray
    b_g: np.ndarray

    def __post_init__(self) -> None:
        """Validate shapes and warn on a non-unit quaternion."""
        self.p = _as_vector(self.p, "NominalState.p")
        self.v = _as_vector(self.v, "NominalState.v")
        self.b_a = _as_vector(self.b_a, "NominalState.b_a")
        self.q = _as_vector(self.q, "NominalState.q", size=4)
        self.b_g = _as_vector(self.b_g, "NominalState.b_g")

        q_norm = np.linalg.norm(self.q)
        if not np.isclose(q_norm, 1.0, atol=1e-3):
            warnings.warn(
                f"NominalState initialized with non-unit quaternion "
                f"(||q|| = {q_norm:.6f}). Consider normalizing.",
                UserWarning,
            )

    @classmethod
    def zero(cls, q: Optional[np.ndarray] = None) -> "NominalState":
        """State at the origin, at rest, with zero biases."""
        if q is None:
            q = np.array([1.0, 0.0, 0.0, 0.0])
        return cls(
            p=np.zeros(3),
            v=np.zeros(3),
            b_a=np.zeros(3),
            q=np.asarray(q, dtype=float),
            b_g=np.zeros(3),
        )

    def to_vector(self) -> np.ndarray:
        """Convert state to the 16-vector [p, v, b_a, q, b_g]."""
        return np.concatenate([self.p, self.v, self.b_a, self.q, self.b_g])

    @classmethod
    def from_vector(cls, x: np.ndarray) -> "NominalState":
        """Create state from the 16-vector [p, v, b_a, q, b_g]."""
        x = np.asarray(x, dtype=float)
        if x.shape != (16,):
            raise ValueError(f"State vector must have shape (16,), got {x.shape}")
        return cls(
            p=x[0:3].copy(),
            v=x[3:6].copy(),
            b_a=x[6:9].copy(),
            q=x[9:13].copy(),
            b_g=x[13:16].copy(),
        )

    def copy(self) -> "NominalState":
        return NominalState.from_vector(self.to_vector())

    def euler(self) -> np.ndarray:
        """Roll, pitch and yaw in radians (display only)."""
        return quat_to_euler(self.q)

    def is_finite(self) -> bool:
        return bool(np.all(np.isfinite(self.to_vector())))


@dataclass(frozen=True)
class InertialSample:
    """
    One IMU sample at the inertial rate f_s.

    Attributes:
        f: Specific force in body frame, shape (3,). Units: m/s².
           A level IMU at rest measures [0, 0, -g].
        w: Angular rate in body frame, shape (3,). Units: rad/s.
        m: Magnetic field in body frame, shape (3,), or None when the
           magnetometer has no new sample this tick. Any consistent unit.
    """

    f: np.ndarray
    w: np.ndarray
    m: Optional[np.ndarray] = None

    def __post_init__(self) -> None:
        # frozen dataclass: assign the normalized arrays through object.__setattr__
        object.__setattr__(self, "f", _as_vector(self.f, "InertialSample.f"))
        object.__setattr__(self, "w", _as_vector(self.w, "InertialSample.w"))
        if self.m is not None:
            object.__setattr__(self, "m", _as_vector(self.m, "InertialSample.m"))

    def is_finite(self) -> bool:
        """True if specific force and angular rate are finite."""
        return bool(np.all(np.isfinite(self.f)) and np.all(np.isfinite(self.w)))


class MeasurementKind(Enum):
    """Variants of the per-tick aiding measurement set."""

    NONE = "none"
    HEADING_ONLY = "heading_only"
    POSITION = "position"
    POSITION_VELOCITY = "position_velocity"


@dataclass(frozen=True)
class MeasurementSet:
    """
    Aiding measurements available on one inertial tick.

    Exactly one variant is active, given by ``kind``:
        NONE:              nothing to correct with (prediction only)
        HEADING_ONLY:      heading from ``heading`` (compass) or ``mag``
        POSITION:          ``position`` fix
        POSITION_VELOCITY: ``position`` and ``velocity`` fix

    Every aiding variant may also carry a compass heading and/or a magnetometer
    vector; which one the filter uses is decided by its AidingConfig.

    Attributes:
        kind: Active variant.
        position: Position fix in NED, shape (3,). Units: m.
        velocity: Velocity fix in NED, shape (3,). Units: m/s.
        heading: Compass heading ψ in radians (NED, clockwise from North).
        mag: Magnetic field measurement in body frame, shape (3,).

    Example:
        >>> fix = MeasurementSet.position_fix(np.array([1.0, 2.0, 0.0]), heading=0.1)
        >>> fix.kind
        <MeasurementKind.POSITION: 'position'>
    """

    kind: MeasurementKind = MeasurementKind.NONE
    position: Optional[np.ndarray] = None
    velocity: Optional[np.ndarray] = None
    heading: Optional[float] = None
    mag: Optional[np.ndarray] = None

    def __post_init__(self) -> None:
        """Check that the variant carries exactly the fields it names."""
        if not isinstance(self.kind, MeasurementKind):
            raise TypeError(f"kind must be a MeasurementKind, got {type(self.kind)}")

        needs_position = self.kind in (
            MeasurementKind.POSITION,
            MeasurementKind.POSITION_VELOCITY,
        )
        needs_velocity = self.kind is MeasurementKind.POSITION_VELOCITY

        if needs_position and self.position is None:
            raise ValueError(f"{self.kind.name} measurement requires a position")
        if not needs_position and self.position is not None:
            raise ValueError(f"{self.kind.name} measurement cannot carry a position")
        if needs_velocity and self.velocity is None:
            raise ValueError(f"{self.kind.name} measurement requires a velocity")
        if not needs_velocity and self.velocity is not None:
            raise ValueError(f"{self.kind.name} measurement cannot carry a velocity")
        if self.kind is MeasurementKind.HEADING_ONLY and (
            self.heading is None and self.mag is None
        ):
            raise ValueError("HEADING_ONLY measurement requires a heading or a mag vector")
        if self.kind is MeasurementKind.NONE and (
            self.heading is not None or self.mag is not None
        ):
            raise ValueError("NONE measurement cannot carry a heading or a mag vector")

        if self.position is not None:
            object.__setattr__(self, "position", _as_vector(self.position, "position"))
        if self.velocity is not None:
            object.__setattr__(self, "velocity", _as_vector(self.velocity, "velocity"))
        if self.mag is not None:
            object.__setattr__(self, "mag", _as_vector(self.mag, "mag"))
        if self.heading is not None:
            object.__setattr__(self, "heading", float(self.heading))

    @classmethod
    def none(cls) -> "MeasurementSet":
        return cls(kind=MeasurementKind.NONE)

    @classmethod
    def heading_only(
        cls,
        heading: Optional[float] = None,
        mag: Optional[np.ndarray] = None,
    ) -> "MeasurementSet":
        return cls(kind=MeasurementKind.HEADING_ONLY, heading=heading, mag=mag)

    @classmethod
    def position_fix(
        cls,
        position: np.ndarray,
        heading: Optional[float] = None,
        mag: Optional[np.ndarray] = None,
    ) -> "MeasurementSet":
        return cls(
            kind=MeasurementKind.POSITION,
            position=position,
            heading=heading,
            mag=mag,
        )

    @classmethod
    def position_velocity(
        cls,
        position: np.ndarray,
        velocity: np.ndarray,
        heading: Optional[float] = None,
        mag: Optional[np.ndarray] = None,
    ) -> "MeasurementSet":
        return cls(
            kind=MeasurementKind.POSITION_VELOCITY,
            position=position,
            velocity=velocity,
            heading=heading,
            mag=mag,
        )

    @property
    def has_aiding(self) -> bool:
        """True for every variant except NONE."""
        return self.kind is not MeasurementKind.NONE
