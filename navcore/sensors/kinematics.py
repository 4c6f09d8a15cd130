"""
Exact discretization of quaternion kinematics.

This module implements the attitude kernel shared by the nonlinear attitude
observer and the strapdown mechanization of the error-state filter:

    dq/dt = 0.5 * Ω(ω) * q                      (continuous kinematics)
    q_k+1 = expm(0.5 * Ω(ω) * h) * q_k           (exact for constant ω)

Because Ω(ω) is skew-symmetric with Ω(ω)^2 = -||ω||^2 I, the matrix
exponential has the closed form

    expm(0.5 * Ω(ω) * h) = cos(θ/2) I + sin(θ/2) / ||ω|| * Ω(ω),  θ = ||ω|| h

so no general-purpose matrix exponential is needed. The rotation over one
step is exactly θ about the axis ω / ||ω||.

Quaternion Convention:
    - Scalar-first: q = [q0, q1, q2, q3]
    - q rotates body to NED: v_ned = R(q) @ v_body
    - ω is the body-frame angular rate (bias-compensated, plus any
      observer injection), so the update is q_k+1 = q_k * exp(ω h)

References:
    Fossen (2021), Eqs. (14.48)-(14.50): quaternion observer kinematics
    Grip et al. (2013), Nonlinear observer for GNSS-aided inertial navigation
"""

from typing import NamedTuple, Optional
import numpy as np


# Half-angle below which sin(θ/2)/||ω|| is evaluated by its Taylor series
SMALL_HALF_ANGLE = 1e-6


class QuaternionStep(NamedTuple):
    """Result of one attitude propagation step.

    Attributes:
        q: Propagated unit quaternion, shape (4,). When ``degenerate`` is
           True this is a copy of the (unusable) input quaternion.
        degenerate: True if the input quaternion or rate was non-finite.
    """

    q: np.ndarray
    degenerate: bool


def omega_matrix(omega_b: np.ndarray) -> np.ndarray:
    """
    Build the Ω(ω) matrix used in quaternion kinematics.

        Ω(ω) = [  0    -ωx   -ωy   -ωz ]
               [ ωx     0     ωz   -ωy ]
               [ ωy    -ωz    0     ωx ]
               [ ωz     ωy   -ωx    0  ]

    so that dq/dt = 0.5 * Ω(ω) * q equals 0.5 * q ⊗ [0, ω].

    Args:
        omega_b: Angular velocity in body frame B.
                 Shape: (3,). Units: rad/s.

    Returns:
        Ω matrix, shape (4, 4), skew-symmetric.

    Example:
        >>> Omega = omega_matrix(np.array([0.1, 0.0, 0.0]))
        >>> np.allclose(Omega.T, -Omega)
        True
    """
    if omega_b.shape != (3,):
        raise ValueError(f"omega_b must have shape (3,), got {omega_b.shape}")

    wx, wy, wz = omega_b

    return np.array(
        [
            [0.0, -wx, -wy, -wz],
            [wx, 0.0, wz, -wy],
            [wy, -wz, 0.0, wx],
            [wz, wy, -wx, 0.0],
        ]
    )


def transition_matrix(omega_b: np.ndarray, dt: float) -> np.ndarray:
    """
    Closed-form expm(0.5 * Ω(ω) * dt).

    Args:
        omega_b: Angular velocity in body frame, shape (3,). Units: rad/s.
        dt: Integration interval in seconds.

    Returns:
        4x4 orthogonal quaternion transition matrix.

    Notes:
        - For ||ω|| dt / 2 < SMALL_HALF_ANGLE the coefficients are evaluated
          by their Taylor series, which also covers ω = 0 (identity).
    """
    w_norm = np.linalg.norm(omega_b)
    half_angle = 0.5 * w_norm * dt

    if half_angle < SMALL_HALF_ANGLE:
        c = 1.0 - 0.5 * half_angle**2
        s = 0.5 * dt * (1.0 - half_angle**2 / 6.0)
    else:
        c = np.cos(half_angle)
        s = np.sin(half_angle) / w_norm

    return c * np.eye(4) + s * omega_matrix(omega_b)


def quat_exp(rotvec: np.ndarray) -> np.ndarray:
    """
    Exponential map from a rotation vector to a unit quaternion.

    Args:
        rotvec: Rotation vector φ (axis times angle), shape (3,). Units: rad.

    Returns:
        Unit quaternion [cos(|φ|/2), sin(|φ|/2) φ/|φ|], shape (4,).

    Example:
        >>> q = quat_exp(np.array([0.0, 0.0, np.pi / 2]))  # 90° about z
        >>> np.allclose(q, [np.cos(np.pi / 4), 0.0, 0.0, np.sin(np.pi / 4)])
        True
    """
    if rotvec.shape != (3,):
        raise ValueError(f"rotvec must have shape (3,), got {rotvec.shape}")

    angle = np.linalg.norm(rotvec)
    half_angle = 0.5 * angle

    if half_angle < SMALL_HALF_ANGLE:
        # sin(|φ|/2)/|φ| -> 1/2
        q = np.concatenate([[1.0 - 0.5 * half_angle**2], 0.5 * rotvec])
    else:
        q = np.concatenate([[np.cos(half_angle)], np.sin(half_angle) / angle * rotvec])

    return q / np.linalg.norm(q)


def quat_propagate(
    q_prev: np.ndarray,
    omega_eff: np.ndarray,
    dt: float,
    coning_sculling: bool = False,
    omega_prev: Optional[np.ndarray] = None,
) -> QuaternionStep:
    """
    Propagate a unit quaternion over one sampling interval.

    Without compensation the update is the exact one-step solution
        q_k+1 = expm(0.5 * Ω(ω) * h) * q_k

    With ``coning_sculling`` the interval is split in two half steps
    (midpoint method). The first half step uses the rate interpolated to
    the first half of the interval, 0.5 * (ω_prev + ω); the second uses ω.
    This reduces the first-order error from non-commuting rotation axes at
    low sampling rates. For a constant rate (or no ω_prev) both variants
    give the same quaternion.

    Args:
        q_prev: Current unit quaternion (body to NED), shape (4,).
        omega_eff: Effective angular rate (rate - bias + injection),
                   shape (3,). Units: rad/s.
        dt: Sampling interval h in seconds. Must be positive.
        coning_sculling: Use the two half-step midpoint variant.
        omega_prev: Effective rate of the previous step, shape (3,).
                    Only used by the midpoint variant.

    Returns:
        QuaternionStep(q, degenerate). The quaternion is always
        renormalized. ``degenerate`` is True (and q is the unchanged
        input) when q_prev or a rate is non-finite or q_prev has zero norm.

    Raises:
        ValueError: If shapes are wrong or dt is not positive.

    Example:
        >>> q0 = np.array([1.0, 0.0, 0.0, 0.0])
        >>> step = quat_propagate(q0, np.array([0.0, 0.0, 0.1]), 0.01)
        >>> step.degenerate
        False
    """
    if q_prev.shape != (4,):
        raise ValueError(f"q_prev must have shape (4,), got {q_prev.shape}")
    if omega_eff.shape != (3,):
        raise ValueError(f"omega_eff must have shape (3,), got {omega_eff.shape}")
    if omega_prev is not None and omega_prev.shape != (3,):
        raise ValueError(f"omega_prev must have shape (3,), got {omega_prev.shape}")
    if dt <= 0:
        raise ValueError(f"dt must be positive, got {dt}")

    rates_finite = np.all(np.isfinite(omega_eff)) and (
        omega_prev is None or np.all(np.isfinite(omega_prev))
    )
    q_norm = np.linalg.norm(q_prev)
    if not (np.all(np.isfinite(q_prev)) and rates_finite) or q_norm == 0.0:
        return QuaternionStep(q=q_prev.copy(), degenerate=True)

    q = q_prev / q_norm

    if not coning_sculling:
        q = transition_matrix(omega_eff, dt) @ q
        return QuaternionStep(q=q / np.linalg.norm(q), degenerate=False)

    # Midpoint method: h/2 with the first-half rate, then h/2 with ω
    omega_first = omega_eff if omega_prev is None else 0.5 * (omega_prev + omega_eff)
    q_mid = transition_matrix(omega_first, 0.5 * dt) @ q
    q_mid = q_mid / np.linalg.norm(q_mid)
    q = transition_matrix(omega_eff, 0.5 * dt) @ q_mid

    return QuaternionStep(q=q / np.linalg.norm(q), degenerate=False)
