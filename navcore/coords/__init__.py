"""Attitude representations for the navigation filters.

This module provides the rotation helpers consumed by the estimators:
- Rotation matrices from unit quaternions (body to NED)
- Euler angle conversions for initialization and display
- Skew-symmetric matrices and the Hamilton quaternion product

Reference: Fossen (2021), Section 2.2 - Kinematics
"""

from navcore.coords.rotations import (
    euler_to_quat,
    quat_multiply,
    quat_to_euler,
    quat_to_rotation_matrix,
    skew,
    yaw_from_rotation_matrix,
)

__all__ = [
    "euler_to_quat",
    "quat_multiply",
    "quat_to_euler",
    "quat_to_rotation_matrix",
    "skew",
    "yaw_from_rotation_matrix",
]
