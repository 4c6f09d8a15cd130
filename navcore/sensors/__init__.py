"""
Inertial sensor models and strapdown mechanization.

This package contains:
    - Exact quaternion kinematics kernel
    - WGS-84 gravity magnitude
    - Nominal state, inertial sample and aiding measurement types
    - Strapdown mechanization of the nominal state
"""

from navcore.sensors.gravity import (
    STANDARD_GRAVITY,
    gravity,
    gravity_from_lat_deg,
    gravity_magnitude,
    gravity_vector_ned,
)
from navcore.sensors.kinematics import (
    QuaternionStep,
    omega_matrix,
    quat_exp,
    quat_propagate,
    transition_matrix,
)
from navcore.sensors.strapdown import mechanize
from navcore.sensors.types import (
    ERROR_STATE_DIM,
    PROCESS_NOISE_DIM,
    InertialSample,
    MeasurementKind,
    MeasurementSet,
    NominalState,
)

__all__ = [
    # Gravity
    "STANDARD_GRAVITY",
    "gravity",
    "gravity_from_lat_deg",
    "gravity_magnitude",
    "gravity_vector_ned",
    # Kinematics
    "QuaternionStep",
    "omega_matrix",
    "quat_exp",
    "quat_propagate",
    "transition_matrix",
    # Mechanization
    "mechanize",
    # Types
    "ERROR_STATE_DIM",
    "PROCESS_NOISE_DIM",
    "InertialSample",
    "MeasurementKind",
    "MeasurementSet",
    "NominalState",
]
