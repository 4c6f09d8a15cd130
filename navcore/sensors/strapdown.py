"""
Strapdown mechanization of the nominal navigation state.

One inertial tick integrates the bias-compensated IMU sample into the
nominal state:
    - Attitude with the exact quaternion kernel (kinematics.quat_propagate)
    - Velocity with gravity compensation in NED
    - Position with the trapezoidal (constant-acceleration) rule

Frame Conventions:
    - B: Body frame, forward-starboard-down
    - N: NED navigation frame, gravity along +z
    - A level IMU at rest measures f = [0, 0, -g], so a = R f + [0, 0, g] = 0

Biases are modelled as constants (or Gauss-Markov processes in the error
state) and are not changed by the mechanization.

References:
    Fossen (2021), Chapter 14: Inertial navigation systems
"""

from typing import Optional
import numpy as np

from navcore.coords.rotations import quat_to_rotation_matrix
from navcore.errors import NonFiniteStateError
from navcore.sensors.gravity import gravity_vector_ned
from navcore.sensors.kinematics import quat_propagate
from navcore.sensors.types import InertialSample, NominalState


def nav_acceleration(q: np.ndarray, f_b: np.ndarray, g: float) -> np.ndarray:
    """Kinematic acceleration in NED from body specific force."""
    return quat_to_rotation_matrix(q) @ f_b + gravity_vector_ned(g)


def pos_update(
    p_prev: np.ndarray,
    v_prev: np.ndarray,
    a: np.ndarray,
    dt: float,
) -> np.ndarray:
    """
    Position update assuming constant acceleration over the interval.

        p_k+1 = p_k + v_k * dt + 0.5 * a * dt²

    This equals integrating the mean of v_k and v_k+1 = v_k + a dt.
    """
    return p_prev + v_prev * dt + 0.5 * a * dt**2


def mechanize(
    state: NominalState,
    sample: InertialSample,
    h: float,
    g: float,
    sigma: Optional[np.ndarray] = None,
    coning_sculling: bool = False,
    w_prev: Optional[np.ndarray] = None,
) -> NominalState:
    """
    Propagate the nominal state over one inertial tick.

    Args:
        state: Nominal state at time k. Not modified.
        sample: IMU sample at time k (f, w; m is ignored here).
        h: Sampling time in seconds. Must be positive.
        g: Gravity magnitude in m/s².
        sigma: Optional attitude injection term added to the angular rate,
               shape (3,). Units: rad/s.
        coning_sculling: Use the midpoint variant of the attitude kernel.
        w_prev: Effective angular rate of the previous tick (midpoint
                variant only), shape (3,).

    Returns:
        New NominalState at time k+1. Biases are carried over unchanged.

    Raises:
        ValueError: If h is not positive or shapes are wrong.
        NonFiniteStateError: If the attitude kernel reports a degenerate
            (non-finite or zero-norm) quaternion.

    Example:
        >>> g = 9.81
        >>> state = NominalState.zero()
        >>> sample = InertialSample(f=np.array([0.0, 0.0, -g]), w=np.zeros(3))
        >>> nxt = mechanize(state, sample, h=0.01, g=g)
        >>> np.allclose(nxt.v, 0.0)
        True
    """
    if h <= 0:
        raise ValueError(f"h must be positive, got {h}")

    f_b = sample.f - state.b_a
    w_eff = sample.w - state.b_g
    if sigma is not None:
        w_eff = w_eff + np.asarray(sigma, dtype=float)

    step = quat_propagate(
        state.q, w_eff, h, coning_sculling=coning_sculling, omega_prev=w_prev
    )
    if step.degenerate:
        raise NonFiniteStateError(
            "Attitude propagation failed: quaternion or angular rate is not finite"
        )

    # Translational update uses the attitude at time k
    a = nav_acceleration(state.q, f_b, g)
    v_next = state.v + a * h
    p_next = pos_update(state.p, state.v, a, h)

    return NominalState(
        p=p_next,
        v=v_next,
        b_a=state.b_a.copy(),
        q=step.q,
        b_g=state.b_g.copy(),
    )
