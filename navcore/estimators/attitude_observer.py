"""
Nonlinear quaternion attitude observer (Grip et al. 2013).

The observer tracks attitude and gyro bias from high-rate IMU samples by
comparing measured reference directions against their NED counterparts:

    σ      = k1 v1 × Rᵀ v01 + k2 v2 × Rᵀ v02      (injection term)
    q̇      = ½ q ⊗ [0, ω - b_g + σ]
    ḃ_g    = -Ki σ

where v1 = -f/|f| (gravity direction measured by the accelerometer),
v01 = [0, 0, 1], v2 = m/|m| and v02 = m_ref/|m_ref|.

The discrete update uses the exact quaternion kernel, so a constant
rate over the sampling interval is integrated without truncation error.
The magnetometer may run slower than the accelerometer/gyro: a sample
without ``m`` simply drops the second injection term.

References:
    Grip, Fossen, Johansen, Saberi (2013). Nonlinear observer for
        GNSS-aided inertial navigation with quaternion-based attitude
        estimation. American Control Conference.
    Fossen (2021), Eqs. (14.48)-(14.50)
"""

import warnings
from dataclasses import dataclass
from typing import NamedTuple, Optional, Tuple
import numpy as np

from navcore.coords.rotations import quat_to_rotation_matrix
from navcore.errors import DegenerateMeasurementWarning, NonFiniteStateError
from navcore.sensors.kinematics import quat_propagate


# Threshold on |v1·v2| above which the magnetic vectors are projected
# onto the plane orthogonal to gravity
ALIGNMENT_THRESHOLD = 0.9

GRAVITY_REF_NED = np.array([0.0, 0.0, 1.0])


class InjectionTerm(NamedTuple):
    """Total injection σ and its gravity (σ1) and magnetic (σ2) parts."""

    sigma: np.ndarray
    sigma1: np.ndarray
    sigma2: np.ndarray


def unit_vector(vec: np.ndarray) -> Optional[np.ndarray]:
    """Normalize vec; None if it is zero or not finite."""
    if not np.all(np.isfinite(vec)):
        return None
    norm = np.linalg.norm(vec)
    if norm == 0.0 or not np.isfinite(norm):
        return None
    return vec / norm


def injection_term(
    R: np.ndarray,
    f: np.ndarray,
    k1: float,
    m: Optional[np.ndarray] = None,
    m_ref: Optional[np.ndarray] = None,
    k2: float = 0.0,
) -> InjectionTerm:
    """
    Compute the nonlinear injection term of the attitude observer.

    Args:
        R: Rotation matrix body to NED of the current estimate, shape (3, 3).
        f: Measured specific force in body frame, shape (3,). Units: m/s².
        k1: Gain of the specific-force (gravity) term.
        m: Measured magnetic field in body frame, shape (3,), or None when
           there is no magnetometer sample this tick.
        m_ref: Magnetic field reference in NED, shape (3,). Required with m.
        k2: Gain of the magnetic field term.

    Returns:
        InjectionTerm(sigma, sigma1, sigma2), each shape (3,).

    Notes:
        - If |v1·v2| > 0.9 the measured and reference magnetic vectors are
          projected onto the planes orthogonal to v1 and v01 and
          renormalized before the cross product.
        - A zero or non-finite f suppresses both terms, since the
          projection needs v1. A zero or non-finite m or m_ref, or a
          projection that collapses to zero, suppresses σ2 only. Each
          suppression issues a DegenerateMeasurementWarning.

    Example:
        >>> R = np.eye(3)
        >>> term = injection_term(R, np.array([0.0, 0.0, -9.81]), k1=1.0)
        >>> np.allclose(term.sigma, 0.0)
        True
    """
    R = np.asarray(R, dtype=float)
    f = np.asarray(f, dtype=float)
    if R.shape != (3, 3):
        raise ValueError(f"R must have shape (3, 3), got {R.shape}")
    if f.shape != (3,):
        raise ValueError(f"f must have shape (3,), got {f.shape}")

    zero = np.zeros(3)
    Rt = R.T

    v1 = unit_vector(-f)
    if v1 is None:
        warnings.warn(
            "Specific force is zero or not finite; attitude injection suppressed",
            DegenerateMeasurementWarning,
            stacklevel=2,
        )
        return InjectionTerm(sigma=zero.copy(), sigma1=zero.copy(), sigma2=zero.copy())

    v01 = GRAVITY_REF_NED
    sigma1 = k1 * np.cross(v1, Rt @ v01)

    if m is None:
        return InjectionTerm(sigma=sigma1, sigma1=sigma1, sigma2=zero)

    if m_ref is None:
        raise ValueError("m_ref is required when a magnetometer sample is given")

    m = np.asarray(m, dtype=float)
    m_ref = np.asarray(m_ref, dtype=float)
    if m.shape != (3,) or m_ref.shape != (3,):
        raise ValueError(
            f"m and m_ref must have shape (3,), got {m.shape} and {m_ref.shape}"
        )

    v2 = unit_vector(m)
    v02 = unit_vector(m_ref)
    if v2 is None or v02 is None:
        warnings.warn(
            "Magnetic field vector is zero or not finite; magnetic injection suppressed",
            DegenerateMeasurementWarning,
            stacklevel=2,
        )
        return InjectionTerm(sigma=sigma1, sigma1=sigma1, sigma2=zero)

    if abs(np.dot(v1, v2)) > ALIGNMENT_THRESHOLD:
        # Keep only the components orthogonal to gravity
        v2 = unit_vector(v2 - np.dot(v2, v1) * v1)
        v02 = unit_vector(v02 - np.dot(v02, v01) * v01)
        if v2 is None or v02 is None:
            warnings.warn(
                "Magnetic field is parallel to gravity; magnetic injection suppressed",
                DegenerateMeasurementWarning,
                stacklevel=2,
            )
            return InjectionTerm(sigma=sigma1, sigma1=sigma1, sigma2=zero)

    sigma2 = k2 * np.cross(v2, Rt @ v02)
    return InjectionTerm(sigma=sigma1 + sigma2, sigma1=sigma1, sigma2=sigma2)


@dataclass(frozen=True)
class ObserverGains:
    """
    Gains of the nonlinear attitude observer.

    Attributes:
        Ki: Integral gain for gyro bias estimation, shape (3, 3) diagonal.
        k1: Injection gain of the specific-force term (rad/s).
        k2: Injection gain of the magnetic field term (rad/s).
    """

    Ki: np.ndarray
    k1: float
    k2: float

    def __post_init__(self) -> None:
        Ki = np.asarray(self.Ki, dtype=float)
        if Ki.ndim == 0:
            Ki = float(Ki) * np.eye(3)
        if Ki.shape != (3, 3):
            raise ValueError(f"Ki must have shape (3, 3), got {Ki.shape}")
        if self.k1 < 0 or self.k2 < 0:
            raise ValueError("Injection gains k1 and k2 must be non-negative")
        object.__setattr__(self, "Ki", Ki)

    @classmethod
    def default(cls) -> "ObserverGains":
        """Moderate gains for a 100 Hz IMU with magnetometer."""
        return cls(Ki=0.01 * np.eye(3), k1=0.5, k2=0.2)


def attitude_step(
    q: np.ndarray,
    b_g: np.ndarray,
    h: float,
    Ki: np.ndarray,
    k1: float,
    k2: float,
    m_ref: Optional[np.ndarray],
    f: np.ndarray,
    w: np.ndarray,
    m: Optional[np.ndarray] = None,
    coning_sculling: bool = False,
    w_prev: Optional[np.ndarray] = None,
) -> Tuple[np.ndarray, np.ndarray]:
    """
    One step of the standalone attitude observer.

    Works both as a corrector (with a magnetometer sample) and as a
    predictor (without one).

    Args:
        q: Current unit quaternion (body to NED), shape (4,).
        b_g: Current gyro bias estimate, shape (3,). Units: rad/s.
        h: Sampling time in seconds.
        Ki: Integral gain matrix, shape (3, 3).
        k1: Specific-force injection gain.
        k2: Magnetic injection gain.
        m_ref: Magnetic field reference in NED, shape (3,).
        f: Specific force in body frame, shape (3,).
        w: Angular rate in body frame, shape (3,).
        m: Optional magnetic field in body frame, shape (3,).
        coning_sculling: Use the midpoint variant of the attitude kernel.
        w_prev: Previous effective angular rate (midpoint variant only).

    Returns:
        (q_next, b_g_next) with b_g_next = b_g - h Ki σ.

    Raises:
        NonFiniteStateError: If the quaternion cannot be propagated.
    """
    q_next, b_g_next, _ = _observer_step(
        q, b_g, h, Ki, k1, k2, m_ref, f, w, m, coning_sculling, w_prev
    )
    return q_next, b_g_next


def _observer_step(q, b_g, h, Ki, k1, k2, m_ref, f, w, m, coning_sculling, w_prev):
    """attitude_step that also returns the effective rate w - b_g + σ."""
    q = np.asarray(q, dtype=float)
    b_g = np.asarray(b_g, dtype=float)
    w = np.asarray(w, dtype=float)
    Ki = np.asarray(Ki, dtype=float)

    R = quat_to_rotation_matrix(q)
    term = injection_term(R, f, k1, m=m, m_ref=m_ref, k2=k2)

    w_eff = w - b_g + term.sigma
    step = quat_propagate(q, w_eff, h, coning_sculling=coning_sculling, omega_prev=w_prev)
    if step.degenerate:
        raise NonFiniteStateError("Observer quaternion or angular rate is not finite")

    b_g_next = b_g - h * (Ki @ term.sigma)
    return step.q, b_g_next, w_eff


class NonlinearAttitudeObserver:
    """
    Stateful wrapper around attitude_step.

    Keeps the quaternion and gyro bias between ticks and remembers the
    previous effective rate needed by the coning/sculling midpoint variant.

    Attributes:
        q: Current attitude estimate (body to NED), shape (4,).
        b_g: Current gyro bias estimate, shape (3,).
        gains: ObserverGains.
        m_ref: Magnetic field reference in NED, or None (no magnetometer).

    Example:
        >>> obs = NonlinearAttitudeObserver(h=0.01, m_ref=np.array([0.3, 0.0, 0.9]))
        >>> q, b_g = obs.update(np.array([0.0, 0.0, -9.81]), np.zeros(3))
    """

    def __init__(
        self,
        h: float,
        gains: Optional[ObserverGains] = None,
        m_ref: Optional[np.ndarray] = None,
        q0: Optional[np.ndarray] = None,
        b_g0: Optional[np.ndarray] = None,
        coning_sculling: bool = False,
    ):
        if h <= 0:
            raise ValueError(f"h must be positive, got {h}")
        self.h = h
        self.gains = gains if gains is not None else ObserverGains.default()
        self.m_ref = None if m_ref is None else np.asarray(m_ref, dtype=float)
        self.coning_sculling = coning_sculling
        self.reset(q0, b_g0)

    def reset(
        self, q0: Optional[np.ndarray] = None, b_g0: Optional[np.ndarray] = None
    ) -> None:
        """Re-initialize attitude and bias and forget the previous rate."""
        self.q = np.array([1.0, 0.0, 0.0, 0.0]) if q0 is None else np.asarray(q0, dtype=float)
        self.b_g = np.zeros(3) if b_g0 is None else np.asarray(b_g0, dtype=float)
        self._w_prev: Optional[np.ndarray] = None

    def update(
        self, f: np.ndarray, w: np.ndarray, m: Optional[np.ndarray] = None
    ) -> Tuple[np.ndarray, np.ndarray]:
        """Advance one tick; returns the new (q, b_g)."""
        w = np.asarray(w, dtype=float)
        self.q, self.b_g, w_eff = _observer_step(
            self.q,
            self.b_g,
            self.h,
            self.gains.Ki,
            self.gains.k1,
            self.gains.k2,
            self.m_ref,
            f,
            w,
            m,
            self.coning_sculling,
            self._w_prev,
        )
        self._w_prev = w_eff
        return self.q.copy(), self.b_g.copy()
