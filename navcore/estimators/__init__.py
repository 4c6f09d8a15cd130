"""
State estimators for aided inertial navigation.

Available estimators:
    - Nonlinear quaternion attitude observer (Grip et al. 2013)
    - Error-state (multiplicative) Kalman filter aided by position,
      optional velocity, and compass or magnetometer heading
"""

from navcore.estimators.aiding import (
    MEASUREMENT_TABLE,
    AidingConfig,
    HeadingSource,
    MeasurementBlock,
    default_measurement_noise,
    default_process_noise,
    select_noise,
    validate_measurement_noise,
)
from navcore.estimators.attitude_observer import (
    InjectionTerm,
    NonlinearAttitudeObserver,
    ObserverGains,
    attitude_step,
    injection_term,
)
from navcore.estimators.error_state_kf import (
    ErrorStateKalmanFilter,
    FilterConfig,
    StepResult,
    predict_and_optionally_correct,
    predict_and_optionally_correct_compass,
)

__all__ = [
    # Aiding configuration
    "MEASUREMENT_TABLE",
    "AidingConfig",
    "HeadingSource",
    "MeasurementBlock",
    "default_measurement_noise",
    "default_process_noise",
    "select_noise",
    "validate_measurement_noise",
    # Attitude observer
    "InjectionTerm",
    "NonlinearAttitudeObserver",
    "ObserverGains",
    "attitude_step",
    "injection_term",
    # Error-state Kalman filter
    "ErrorStateKalmanFilter",
    "FilterConfig",
    "StepResult",
    "predict_and_optionally_correct",
    "predict_and_optionally_correct_compass",
]
