"""
navcore: aided inertial navigation estimators.

Subpackages:
    coords:     quaternion / rotation matrix / Euler helpers
    sensors:    quaternion kinematics, gravity, strapdown mechanization, data types
    estimators: nonlinear attitude observer and error-state Kalman filter
    fusion:     hand-off of low-rate aiding to the inertial loop
    utils:      angle wrapping
"""

__version__ = "0.1.0"
