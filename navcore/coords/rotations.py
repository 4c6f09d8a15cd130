"""Rotation representations used by the navigation filters.

This module collects the small set of attitude conversions the estimators
and their callers rely on:
- Unit quaternions, q = [qw, qx, qy, qz] (scalar first, body to NED)
- Rotation matrices (3x3, v_ned = R @ v_body)
- Euler angles (roll-pitch-yaw, ZYX convention)
- Skew-symmetric matrices and the quaternion product

Conventions:
- Quaternion product is the Hamilton product; R(q1 * q2) = R(q1) @ R(q2).
- Euler angles are only used for initialization and for display; the
  filter mathematics works on quaternions and rotation matrices.

Reference: Fossen (2021), Handbook of Marine Craft Hydrodynamics and
Motion Control, 2nd ed., Section 2.2 - Kinematics.
"""

import numpy as np
from numpy.typing import NDArray


def skew(a: NDArray[np.float64]) -> NDArray[np.float64]:
    """Skew-symmetric matrix S(a) such that S(a) @ b = a x b.

    Args:
        a: 3-vector.

    Returns:
        3x3 skew-symmetric matrix.

    Raises:
        ValueError: If a is not a 3-element array.
    """
    a = np.asarray(a, dtype=np.float64)
    if a.shape != (3,):
        raise ValueError(f"Expected 3-element vector, got shape {a.shape}")

    return np.array(
        [
            [0.0, -a[2], a[1]],
            [a[2], 0.0, -a[0]],
            [-a[1], a[0], 0.0],
        ],
        dtype=np.float64,
    )


def quat_multiply(
    q1: NDArray[np.float64],
    q2: NDArray[np.float64],
) -> NDArray[np.float64]:
    """Hamilton product q1 * q2 of two scalar-first quaternions.

    Args:
        q1: Left quaternion [qw, qx, qy, qz].
        q2: Right quaternion [qw, qx, qy, qz].

    Returns:
        Quaternion product as numpy array [qw, qx, qy, qz].

    Example:
        >>> q = euler_to_quat(0.0, 0.0, 0.5)
        >>> identity = np.array([1.0, 0.0, 0.0, 0.0])
        >>> np.allclose(quat_multiply(q, identity), q)
        True
    """
    w1, x1, y1, z1 = q1
    w2, x2, y2, z2 = q2

    return np.array(
        [
            w1 * w2 - x1 * x2 - y1 * y2 - z1 * z2,
            w1 * x2 + x1 * w2 + y1 * z2 - z1 * y2,
            w1 * y2 - x1 * z2 + y1 * w2 + z1 * x2,
            w1 * z2 + x1 * y2 - y1 * x2 + z1 * w2,
        ],
        dtype=np.float64,
    )


def _axis_quat(axis: int, angle: float) -> NDArray[np.float64]:
    q = np.zeros(4, dtype=np.float64)
    q[0] = np.cos(angle / 2.0)
    q[1 + axis] = np.sin(angle / 2.0)
    return q


def euler_to_quat(
    roll: float,
    pitch: float,
    yaw: float,
) -> NDArray[np.float64]:
    """Unit quaternion for a ZYX (yaw, then pitch, then roll) rotation.

    Composed as q_z(ψ) * q_y(θ) * q_x(φ), which gives the body to NED
    attitude for angles φ, θ, ψ in radians.

    Example:
        >>> q = euler_to_quat(0.0, 0.0, np.pi / 2)
        >>> np.allclose(q, [np.sqrt(0.5), 0.0, 0.0, np.sqrt(0.5)])
        True

    Reference:
        Fossen (2021), Eq. (2.83)
    """
    q = quat_multiply(_axis_quat(2, yaw), _axis_quat(1, pitch))
    return quat_multiply(q, _axis_quat(0, roll))


def quat_to_euler(q: NDArray[np.float64]) -> NDArray[np.float64]:
    """[roll, pitch, yaw] in radians, read off the rotation matrix of q.

    At pitch = ±90° roll and yaw are not separable; the sine of pitch is
    clipped to [-1, 1] so the result stays finite there.

    Raises:
        ValueError: If q is not a 4-element array.
    """
    R = quat_to_rotation_matrix(q)
    roll = np.arctan2(R[2, 1], R[2, 2])
    pitch = -np.arcsin(np.clip(R[2, 0], -1.0, 1.0))
    return np.array([roll, pitch, yaw_from_rotation_matrix(R)], dtype=np.float64)


def quat_to_rotation_matrix(q: NDArray[np.float64]) -> NDArray[np.float64]:
    """Rotation matrix R(q) = I + 2η S(ε) + 2 S(ε)², v_ned = R @ v_body.

    Args:
        q: Unit quaternion [η, ε1, ε2, ε3].

    Raises:
        ValueError: If q is not a 4-element array.

    Example:
        >>> R = quat_to_rotation_matrix(np.array([1.0, 0.0, 0.0, 0.0]))
        >>> np.allclose(R, np.eye(3))
        True

    Reference:
        Fossen (2021), Eq. (2.72)
    """
    q = np.asarray(q, dtype=np.float64)
    if q.shape != (4,):
        raise ValueError(f"Expected 4-element quaternion, got shape {q.shape}")

    S = skew(q[1:])
    return np.eye(3) + 2.0 * q[0] * S + 2.0 * S @ S


def yaw_from_rotation_matrix(R: NDArray[np.float64]) -> float:
    """Heading angle ψ of a body to NED rotation matrix."""
    return float(np.arctan2(R[1, 0], R[0, 0]))
