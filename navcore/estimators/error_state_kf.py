"""
Error-state (indirect, multiplicative) Kalman filter for aided INS.

The filter keeps two quantities:
    - the nominal state x = [p, v, b_a, q, b_g] integrated by the strapdown
      mechanization at the IMU rate, and
    - the covariance P (15x15) of the error state
      δx = [δp, δv, δb_a, δθ, δb_g].

The attitude error is a small rotation vector in body axes,
R_true = R(q) (I + S(δθ)), so the nominal quaternion is corrected by
q ← q ⊗ exp(δθ). After every correction the error state is injected into
the nominal state and discarded; it never accumulates across ticks.

Prediction (every tick):
    A[p,v]  = I
    A[v,ba] = -R              A[v,θ] = -R S(f - b_a)
    A[θ,θ]  = -S(ω - b_g)     A[θ,bg] = -I
    A[ba,ba], A[bg,bg] = 0 (random walk) or -I/T (Gauss-Markov)

    Φ = I + hA + ½(hA)²
    P ← Φ P Φᵀ + Γ Qd Γᵀ h

Correction (ticks with aiding):
    K = P Hᵀ (H P Hᵀ + Rd)⁻¹
    δx = K ỹ
    P ← (I - KH) P (I - KH)ᵀ + K Rd Kᵀ     (Joseph form)

Measurement models (see aiding.py for the layouts):
    position     ỹ = y_p - p                         H[:, p] = I
    velocity     ỹ = y_v - v                         H[:, v] = I
    gravity      ỹ = -f/|f| - Rᵀ v01                 H[:, θ] = S(Rᵀ v01)
    magnetometer ỹ = m/|m| - Rᵀ m_ref/|m_ref|        H[:, θ] = S(Rᵀ v02)
    heading      ỹ = wrap(y_ψ - atan2(R10, R00))     H[:, θ] = [0, R21, R22] / (R00² + R10²)

References:
    Fossen (2021), Chapter 14.4: Error-state (indirect) Kalman filter
    Solà (2017). Quaternion kinematics for the error-state Kalman filter.
"""

import warnings
from dataclasses import dataclass
from typing import List, NamedTuple, Optional, Tuple
import numpy as np
from scipy import linalg, stats

from navcore.coords.rotations import (
    quat_multiply,
    quat_to_rotation_matrix,
    skew,
    yaw_from_rotation_matrix,
)
from navcore.errors import (
    DegenerateMeasurementWarning,
    NonFiniteStateError,
    RejectedSampleWarning,
)
from navcore.estimators.attitude_observer import GRAVITY_REF_NED, unit_vector
from navcore.estimators.aiding import (
    AidingConfig,
    HeadingSource,
    MeasurementBlock,
    default_measurement_noise,
    default_process_noise,
    select_noise,
    validate_measurement_noise,
    validate_process_noise,
)
from navcore.sensors.gravity import STANDARD_GRAVITY, gravity_magnitude
from navcore.sensors.kinematics import quat_exp
from navcore.sensors.strapdown import mechanize
from navcore.sensors.types import (
    ACC_BIAS,
    ATT,
    ERROR_STATE_DIM,
    GYRO_BIAS,
    POS,
    PROCESS_NOISE_DIM,
    VEL,
    InertialSample,
    MeasurementKind,
    MeasurementSet,
    NominalState,
)
from navcore.utils.angles import angle_diff


# Heading is unobservable from atan2(R10, R00) near ±90° pitch
HEADING_SINGULARITY_EPS = 1e-9

# Columns of Qd: velocity, acc bias walk, gyro, gyro bias walk
_Q_VEL = slice(0, 3)
_Q_ACC_BIAS = slice(3, 6)
_Q_GYRO = slice(6, 9)
_Q_GYRO_BIAS = slice(9, 12)


@dataclass(frozen=True)
class FilterConfig:
    """
    Configuration of the error-state Kalman filter.

    Attributes:
        aiding: Aiding configuration (heading source and velocity aiding).
        h: IMU sampling time in seconds.
        g: Gravity magnitude in m/s².
        Qd: Process noise, diagonal (12, 12): velocity, acc bias walk,
            gyro, gyro bias walk.
        Rd: Measurement noise, diagonal, size aiding.measurement_dim.
        m_ref: Magnetic field reference in NED, shape (3,). Required for
            magnetometer aiding.
        acc_bias_time_constant: Gauss-Markov time constant of the
            accelerometer bias in seconds; None for a random walk.
        gyro_bias_time_constant: Same for the gyro bias.
        gate_confidence: Chi-square confidence for innovation gating
            (e.g. 0.99); None disables gating.
        coning_sculling: Use the midpoint variant of the attitude kernel.

    Example:
        >>> config = FilterConfig.default(AidingConfig.COMPASS, f_s=100.0)
        >>> config.h
        0.01
    """

    aiding: AidingConfig
    h: float
    g: float
    Qd: np.ndarray
    Rd: np.ndarray
    m_ref: Optional[np.ndarray] = None
    acc_bias_time_constant: Optional[float] = None
    gyro_bias_time_constant: Optional[float] = None
    gate_confidence: Optional[float] = None
    coning_sculling: bool = False

    def __post_init__(self) -> None:
        if not isinstance(self.aiding, AidingConfig):
            raise TypeError(f"aiding must be an AidingConfig, got {type(self.aiding)}")
        if not np.isfinite(self.h) or self.h <= 0:
            raise ValueError(f"h must be positive, got {self.h}")
        if not np.isfinite(self.g) or self.g <= 0:
            raise ValueError(f"g must be positive, got {self.g}")

        object.__setattr__(self, "Qd", validate_process_noise(self.Qd))
        object.__setattr__(self, "Rd", validate_measurement_noise(self.aiding, self.Rd))

        if self.m_ref is not None:
            m_ref = np.asarray(self.m_ref, dtype=float)
            if m_ref.shape != (3,):
                raise ValueError(f"m_ref must have shape (3,), got {m_ref.shape}")
            if not np.all(np.isfinite(m_ref)) or np.linalg.norm(m_ref) == 0.0:
                raise ValueError("m_ref must be a finite, non-zero vector")
            object.__setattr__(self, "m_ref", m_ref)
        elif self.aiding.heading_source is HeadingSource.MAGNETOMETER:
            raise ValueError(f"{self.aiding.name} aiding requires m_ref")

        for name in ("acc_bias_time_constant", "gyro_bias_time_constant"):
            value = getattr(self, name)
            if value is not None and not value > 0:
                raise ValueError(f"{name} must be positive, got {value}")

        if self.gate_confidence is not None and not 0.0 < self.gate_confidence < 1.0:
            raise ValueError(
                f"gate_confidence must be in (0, 1), got {self.gate_confidence}"
            )

    @classmethod
    def default(
        cls,
        aiding: AidingConfig,
        f_s: float = 100.0,
        lat_rad: Optional[float] = None,
        m_ref: Optional[np.ndarray] = None,
    ) -> "FilterConfig":
        """
        Default noise levels for an IMU at f_s Hz.

        Args:
            aiding: Aiding configuration.
            f_s: IMU sampling frequency in Hz.
            lat_rad: Latitude for the gravity model; None uses standard gravity.
            m_ref: Magnetic field reference (required for magnetometer aiding).
        """
        if f_s <= 0:
            raise ValueError(f"f_s must be positive, got {f_s}")
        return cls(
            aiding=aiding,
            h=1.0 / f_s,
            g=gravity_magnitude(lat_rad),
            Qd=default_process_noise(),
            Rd=default_measurement_noise(aiding),
            m_ref=m_ref,
        )


class StepResult(NamedTuple):
    """Outcome of one inertial tick."""

    state: NominalState
    P: np.ndarray
    corrected: bool


class _Row(NamedTuple):
    block: MeasurementBlock
    innovation: np.ndarray
    H: np.ndarray


def error_state_jacobians(
    state: NominalState,
    sample: InertialSample,
    acc_bias_time_constant: Optional[float] = None,
    gyro_bias_time_constant: Optional[float] = None,
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Continuous-time error dynamics δẋ = A δx + Γ w.

    Args:
        state: Nominal state at which to linearize.
        sample: IMU sample (f, w) of the current tick.
        acc_bias_time_constant: Gauss-Markov time constant of b_a, or None.
        gyro_bias_time_constant: Gauss-Markov time constant of b_g, or None.

    Returns:
        (A, Gamma) with shapes (15, 15) and (15, 12).
    """
    R = quat_to_rotation_matrix(state.q)
    f_b = sample.f - state.b_a
    w_b = sample.w - state.b_g
    I3 = np.eye(3)

    A = np.zeros((ERROR_STATE_DIM, ERROR_STATE_DIM))
    A[POS, VEL] = I3
    A[VEL, ACC_BIAS] = -R
    A[VEL, ATT] = -R @ skew(f_b)
    A[ATT, ATT] = -skew(w_b)
    A[ATT, GYRO_BIAS] = -I3
    if acc_bias_time_constant is not None:
        A[ACC_BIAS, ACC_BIAS] = -I3 / acc_bias_time_constant
    if gyro_bias_time_constant is not None:
        A[GYRO_BIAS, GYRO_BIAS] = -I3 / gyro_bias_time_constant

    Gamma = np.zeros((ERROR_STATE_DIM, PROCESS_NOISE_DIM))
    Gamma[VEL, _Q_VEL] = -R
    Gamma[ACC_BIAS, _Q_ACC_BIAS] = I3
    Gamma[ATT, _Q_GYRO] = -I3
    Gamma[GYRO_BIAS, _Q_GYRO_BIAS] = I3

    return A, Gamma


def discretize(A: np.ndarray, h: float) -> np.ndarray:
    """Second-order series Φ = I + hA + ½(hA)²."""
    hA = h * A
    return np.eye(A.shape[0]) + hA + 0.5 * hA @ hA


def _aiding_is_finite(measurements: MeasurementSet) -> bool:
    for value in (
        measurements.position,
        measurements.velocity,
        measurements.heading,
        measurements.mag,
    ):
        if value is not None and not np.all(np.isfinite(value)):
            return False
    return True


class ErrorStateKalmanFilter:
    """
    Multi-rate error-state Kalman filter for position-aided INS.

    Every IMU sample is integrated by predict(); aiding measurements, which
    typically arrive at a lower rate, are fused by correct(). step() runs
    both for one tick and is the normal entry point.

    Attributes:
        config: FilterConfig.
        state: Current nominal state (NominalState). Replaced, not mutated.
        P: Error-state covariance, shape (15, 15).
        diverged: True once the state or P became non-finite. The filter
            refuses further work until reset().
        tick: Number of completed step() calls.
        trace_history: trace(P) after every completed step().

    Example:
        >>> config = FilterConfig.default(AidingConfig.COMPASS)
        >>> kf = ErrorStateKalmanFilter(config)
        >>> sample = InertialSample(f=np.array([0.0, 0.0, -config.g]), w=np.zeros(3))
        >>> result = kf.step(sample)
        >>> result.corrected
        False
    """

    def __init__(
        self,
        config: FilterConfig,
        state: Optional[NominalState] = None,
        P0: Optional[np.ndarray] = None,
    ):
        self.config = config
        self.reset(state, P0)

    def reset(
        self, state: Optional[NominalState] = None, P0: Optional[np.ndarray] = None
    ) -> None:
        """Re-initialize state and covariance and clear the diagnostics."""
        if P0 is None:
            P0 = np.eye(ERROR_STATE_DIM)
        P0 = np.asarray(P0, dtype=float)
        if P0.shape != (ERROR_STATE_DIM, ERROR_STATE_DIM):
            raise ValueError(
                f"P0 must have shape ({ERROR_STATE_DIM}, {ERROR_STATE_DIM}), got {P0.shape}"
            )
        if not np.all(np.isfinite(P0)):
            raise ValueError("P0 must be finite")

        self.state = NominalState.zero() if state is None else state.copy()
        if not self.state.is_finite():
            raise ValueError("Initial state must be finite")
        self.state.q = self.state.q / np.linalg.norm(self.state.q)
        self.P = 0.5 * (P0 + P0.T)
        self.diverged = False
        self.tick = 0
        self.trace_history: List[float] = []
        self._w_prev: Optional[np.ndarray] = None
        self._last_sample: Optional[InertialSample] = None

    def _check_usable(self) -> None:
        if self.diverged:
            raise NonFiniteStateError("Filter has diverged; call reset() first")

    def _commit(self, state: NominalState, P: np.ndarray) -> None:
        if not (state.is_finite() and np.all(np.isfinite(P))):
            self.diverged = True
            raise NonFiniteStateError("Nominal state or covariance is not finite")
        self.state = state
        self.P = P

    def predict(self, sample: InertialSample) -> None:
        """
        Propagate the nominal state and the covariance over one tick.

        Φ and Γ are evaluated at the nominal state before the prediction.

        Raises:
            ValueError: If the sample is not finite.
            NonFiniteStateError: If the filter has diverged or diverges now.
        """
        self._check_usable()
        if not sample.is_finite():
            raise ValueError("Inertial sample must be finite")

        cfg = self.config
        A, Gamma = error_state_jacobians(
            self.state,
            sample,
            cfg.acc_bias_time_constant,
            cfg.gyro_bias_time_constant,
        )
        Phi = discretize(A, cfg.h)

        w_eff = sample.w - self.state.b_g
        try:
            state = mechanize(
                self.state,
                sample,
                cfg.h,
                cfg.g,
                coning_sculling=cfg.coning_sculling,
                w_prev=self._w_prev,
            )
        except NonFiniteStateError:
            self.diverged = True
            raise

        P = Phi @ self.P @ Phi.T + Gamma @ cfg.Qd @ Gamma.T * cfg.h
        P = 0.5 * (P + P.T)

        self._commit(state, P)
        self._w_prev = w_eff
        self._last_sample = sample

    def _measurement_rows(
        self, measurements: MeasurementSet, sample: InertialSample
    ) -> List[_Row]:
        """Innovation and Jacobian for every block present on this tick."""
        state = self.state
        R = quat_to_rotation_matrix(state.q)
        rows: List[_Row] = []

        for block in self.config.aiding.blocks:
            H = np.zeros((block.size, ERROR_STATE_DIM))

            if block is MeasurementBlock.POSITION:
                if measurements.position is None:
                    continue
                H[:, POS] = np.eye(3)
                rows.append(_Row(block, measurements.position - state.p, H))

            elif block is MeasurementBlock.VELOCITY:
                if measurements.velocity is None:
                    continue
                H[:, VEL] = np.eye(3)
                rows.append(_Row(block, measurements.velocity - state.v, H))

            elif block is MeasurementBlock.GRAVITY:
                v1 = unit_vector(-(sample.f - state.b_a))
                if v1 is None:
                    warnings.warn(
                        "Specific force is zero; gravity direction not used",
                        DegenerateMeasurementWarning,
                        stacklevel=3,
                    )
                    continue
                ref = R.T @ GRAVITY_REF_NED
                H[:, ATT] = skew(ref)
                rows.append(_Row(block, v1 - ref, H))

            elif block is MeasurementBlock.MAGNETOMETER:
                m = measurements.mag if measurements.mag is not None else sample.m
                if m is None:
                    continue
                v2 = unit_vector(m)
                if v2 is None:
                    warnings.warn(
                        "Magnetic field vector is zero or not finite; not used",
                        DegenerateMeasurementWarning,
                        stacklevel=3,
                    )
                    continue
                ref = R.T @ (self.config.m_ref / np.linalg.norm(self.config.m_ref))
                H[:, ATT] = skew(ref)
                rows.append(_Row(block, v2 - ref, H))

            elif block is MeasurementBlock.HEADING:
                if measurements.heading is None:
                    continue
                den = R[0, 0] ** 2 + R[1, 0] ** 2
                if den < HEADING_SINGULARITY_EPS:
                    warnings.warn(
                        "Heading undefined at ±90° pitch; compass not used",
                        DegenerateMeasurementWarning,
                        stacklevel=3,
                    )
                    continue
                psi = yaw_from_rotation_matrix(R)
                H[0, ATT] = np.array([0.0, R[2, 1], R[2, 2]]) / den
                innovation = np.array([angle_diff(measurements.heading, psi)])
                rows.append(_Row(block, innovation, H))

        return rows

    def _gate(self, rows: List[_Row]) -> List[_Row]:
        """Drop blocks whose normalized innovation squared exceeds the χ² gate."""
        kept = []
        for row in rows:
            R_b = select_noise(self.config.aiding, self.config.Rd, [row.block])
            S = row.H @ self.P @ row.H.T + R_b
            nis = float(row.innovation @ linalg.solve(S, row.innovation, assume_a="pos"))
            threshold = stats.chi2.ppf(self.config.gate_confidence, df=row.block.size)
            if nis > threshold:
                warnings.warn(
                    f"{row.block.name} innovation rejected by χ² gate "
                    f"(NIS={nis:.2f} > {threshold:.2f})",
                    RejectedSampleWarning,
                    stacklevel=3,
                )
                continue
            kept.append(row)
        return kept

    def correct(
        self, measurements: MeasurementSet, sample: Optional[InertialSample] = None
    ) -> bool:
        """
        Fuse the aiding measurements of this tick.

        Args:
            measurements: Aiding measurements. NONE performs no correction.
            sample: IMU sample of this tick (for the gravity and magnetometer
                blocks). Defaults to the sample of the last predict().

        Returns:
            True if a correction was applied.

        Raises:
            ValueError: If no inertial sample is available.
            NonFiniteStateError: If the filter has diverged or diverges now.
        """
        self._check_usable()
        if not measurements.has_aiding:
            return False

        if sample is None:
            sample = self._last_sample
        if sample is None:
            raise ValueError("correct() needs an inertial sample; call predict() first")

        if not _aiding_is_finite(measurements):
            warnings.warn(
                "Aiding measurement is not finite; correction skipped",
                RejectedSampleWarning,
                stacklevel=2,
            )
            return False

        rows = self._measurement_rows(measurements, sample)
        if measurements.kind is MeasurementKind.HEADING_ONLY and not any(
            row.block in (MeasurementBlock.HEADING, MeasurementBlock.MAGNETOMETER)
            for row in rows
        ):
            warnings.warn(
                f"Heading-only measurement carries no heading usable by "
                f"{self.config.aiding.name}; correction skipped",
                RejectedSampleWarning,
                stacklevel=2,
            )
            return False
        if self.config.gate_confidence is not None:
            rows = self._gate(rows)
        if not rows:
            return False

        blocks = [row.block for row in rows]
        y = np.concatenate([row.innovation for row in rows])
        H = np.vstack([row.H for row in rows])
        Rd = select_noise(self.config.aiding, self.config.Rd, blocks)

        # K = P Hᵀ S⁻¹, solved as S Kᵀ = H P
        S = H @ self.P @ H.T + Rd
        K = linalg.solve(S, H @ self.P, assume_a="pos").T
        dx = K @ y

        state = self.state.copy()
        state.p = state.p + dx[POS]
        state.v = state.v + dx[VEL]
        state.b_a = state.b_a + dx[ACC_BIAS]
        q = quat_multiply(state.q, quat_exp(dx[ATT]))
        state.q = q / np.linalg.norm(q)
        state.b_g = state.b_g + dx[GYRO_BIAS]

        I_KH = np.eye(ERROR_STATE_DIM) - K @ H
        P = I_KH @ self.P @ I_KH.T + K @ Rd @ K.T
        P = 0.5 * (P + P.T)

        self._commit(state, P)
        return True

    def step(
        self,
        sample: InertialSample,
        measurements: Optional[MeasurementSet] = None,
    ) -> StepResult:
        """
        Process one inertial tick: predict, then correct if aided.

        A non-finite inertial sample is rejected with a RejectedSampleWarning
        and leaves the filter untouched.

        Returns:
            StepResult(state, P, corrected) with copies of the new state and P.
        """
        self._check_usable()
        if measurements is None:
            measurements = MeasurementSet.none()

        if not sample.is_finite():
            warnings.warn(
                "Inertial sample is not finite; tick skipped",
                RejectedSampleWarning,
                stacklevel=2,
            )
            return StepResult(self.state.copy(), self.P.copy(), corrected=False)

        self.predict(sample)
        corrected = self.correct(measurements, sample)

        self.tick += 1
        self.trace_history.append(float(np.trace(self.P)))
        return StepResult(self.state.copy(), self.P.copy(), corrected)


def _aiding_set(
    y_pos: Optional[np.ndarray],
    y_vel: Optional[np.ndarray],
    heading: Optional[float] = None,
) -> MeasurementSet:
    """Measurement set for one tick of the functional interface."""
    if y_pos is None:
        if y_vel is not None:
            raise ValueError("A velocity fix requires a position fix")
        return MeasurementSet.none()
    if y_vel is None:
        return MeasurementSet.position_fix(y_pos, heading=heading)
    return MeasurementSet.position_velocity(y_pos, y_vel, heading=heading)


def predict_and_optionally_correct(
    state: NominalState,
    P: np.ndarray,
    config: AidingConfig,
    h: float,
    Qd: np.ndarray,
    Rd: np.ndarray,
    f: np.ndarray,
    w: np.ndarray,
    m: Optional[np.ndarray] = None,
    y_pos: Optional[np.ndarray] = None,
    y_vel: Optional[np.ndarray] = None,
    m_ref: Optional[np.ndarray] = None,
    g: float = STANDARD_GRAVITY,
) -> Tuple[NominalState, np.ndarray]:
    """
    One tick of the magnetometer-aided filter as a pure function.

    The magnetometer sample is fused only together with a position fix;
    without y_pos the tick is prediction only.

    Args:
        state: Nominal state. Not modified.
        P: Error-state covariance, shape (15, 15). Not modified.
        config: A magnetometer AidingConfig.
        h: Sampling time in seconds.
        Qd: Process noise, shape (12, 12).
        Rd: Measurement noise, shape (9, 9) or (12, 12).
        f, w: Specific force and angular rate in body frame.
        m: Magnetic field in body frame, or None.
        y_pos: Position fix in NED, or None.
        y_vel: Velocity fix in NED, or None.
        m_ref: Magnetic field reference in NED.
        g: Gravity magnitude in m/s².

    Returns:
        (state', P').
    """
    if config.heading_source is not HeadingSource.MAGNETOMETER:
        raise ValueError(f"{config.name} is a compass configuration")
    filter_config = FilterConfig(aiding=config, h=h, g=g, Qd=Qd, Rd=Rd, m_ref=m_ref)
    kf = ErrorStateKalmanFilter(filter_config, state, P)
    result = kf.step(InertialSample(f=f, w=w, m=m), _aiding_set(y_pos, y_vel))
    return result.state, result.P


def predict_and_optionally_correct_compass(
    state: NominalState,
    P: np.ndarray,
    config: AidingConfig,
    h: float,
    Qd: np.ndarray,
    Rd: np.ndarray,
    f: np.ndarray,
    w: np.ndarray,
    y_psi: float,
    y_pos: Optional[np.ndarray] = None,
    y_vel: Optional[np.ndarray] = None,
    g: float = STANDARD_GRAVITY,
) -> Tuple[NominalState, np.ndarray]:
    """
    One tick of the compass-aided filter as a pure function.

    The compass heading y_psi is fused only together with a position fix.
    See predict_and_optionally_correct for the other arguments.
    """
    if config.heading_source is not HeadingSource.COMPASS:
        raise ValueError(f"{config.name} is a magnetometer configuration")
    filter_config = FilterConfig(aiding=config, h=h, g=g, Qd=Qd, Rd=Rd)
    kf = ErrorStateKalmanFilter(filter_config, state, P)
    result = kf.step(InertialSample(f=f, w=w), _aiding_set(y_pos, y_vel, heading=y_psi))
    return result.state, result.P
