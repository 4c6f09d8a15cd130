"""Small numeric helpers shared across navcore."""

from navcore.utils.angles import angle_diff, wrap_angle

__all__ = ["angle_diff", "wrap_angle"]
