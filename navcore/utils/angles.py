"""
Angle wrapping utilities.

Heading innovations must be wrapped to [-π, π]; without wrapping, headings
near ±180° produce a 2π jump (e.g. -179° vs +179° gives a 358° error
instead of 2°).
"""

from typing import Union
import numpy as np


def wrap_angle(angle: float) -> float:
    """
    Wrap angle to [-π, π] range.

    Args:
        angle: Angle in radians (can be any value)

    Returns:
        Wrapped angle in range [-π, π]

    Example:
        >>> wrap_angle(3.5 * np.pi)  # 630° -> -90°
        -1.5707963267948966
    """
    return float(np.arctan2(np.sin(angle), np.cos(angle)))


def angle_diff(
    angle1: Union[float, np.ndarray], angle2: Union[float, np.ndarray]
) -> Union[float, np.ndarray]:
    """
    Shortest signed difference angle1 - angle2, wrapped to [-π, π].

    Used as the heading innovation (measured minus predicted).

    Example:
        >>> angle_diff(np.deg2rad(179.0), np.deg2rad(-179.0))  # -2°
        -0.03490658503988567
    """
    diff = np.asarray(angle1) - np.asarray(angle2)
    wrapped = np.arctan2(np.sin(diff), np.cos(diff))
    if np.ndim(wrapped) == 0:
        return float(wrapped)
    return wrapped
