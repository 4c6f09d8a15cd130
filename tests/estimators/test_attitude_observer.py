"""
Unit tests for navcore/estimators/attitude_observer.py.

Tests cover:
    - Injection term: alignment, sign, magnetic/gravity alignment guard
    - Degenerate measurement vectors
    - Bias update b_g' = b_g - h Ki σ
    - Convergence of the stateful observer in roll/pitch and yaw

Run with: pytest tests/estimators/test_attitude_observer.py -v
"""

import unittest
import warnings
import numpy as np
import pytest

from navcore.coords.rotations import euler_to_quat, quat_to_euler, quat_to_rotation_matrix
from navcore.errors import DegenerateMeasurementWarning, NonFiniteStateError
from navcore.estimators.attitude_observer import (
    NonlinearAttitudeObserver,
    ObserverGains,
    attitude_step,
    injection_term,
)
from navcore.sensors.kinematics import quat_propagate


G = 9.81
F_LEVEL = np.array([0.0, 0.0, -G])
M_REF = np.array([0.3, 0.0, 0.9])


def body_measurements(roll: float, pitch: float, yaw: float):
    """Specific force and magnetic field seen by a stationary IMU."""
    R = quat_to_rotation_matrix(euler_to_quat(roll, pitch, yaw))
    return R.T @ np.array([0.0, 0.0, -G]), R.T @ M_REF


class TestInjectionTerm(unittest.TestCase):
    def test_zero_when_aligned(self) -> None:
        term = injection_term(np.eye(3), F_LEVEL, k1=1.0, m=M_REF, m_ref=M_REF, k2=1.0)
        np.testing.assert_allclose(term.sigma, np.zeros(3), atol=1e-15)

    def test_without_magnetometer_only_gravity_term(self) -> None:
        f, _ = body_measurements(0.1, 0.0, 0.0)
        term = injection_term(np.eye(3), f, k1=2.0)
        np.testing.assert_array_equal(term.sigma2, np.zeros(3))
        np.testing.assert_allclose(term.sigma, term.sigma1)
        # Positive roll error is corrected by a positive roll rate
        np.testing.assert_allclose(term.sigma1, [2.0 * np.sin(0.1), 0.0, 0.0], atol=1e-12)

    def test_gain_scales_terms(self) -> None:
        f, m = body_measurements(0.05, -0.1, 0.3)
        t1 = injection_term(np.eye(3), f, k1=1.0, m=m, m_ref=M_REF, k2=1.0)
        t2 = injection_term(np.eye(3), f, k1=3.0, m=m, m_ref=M_REF, k2=0.5)
        np.testing.assert_allclose(t2.sigma1, 3.0 * t1.sigma1)
        np.testing.assert_allclose(t2.sigma2, 0.5 * t1.sigma2)

    def test_parallel_magnetic_field_gives_finite_sigma(self) -> None:
        """m exactly parallel to gravity collapses the projection."""
        with pytest.warns(DegenerateMeasurementWarning, match="parallel"):
            term = injection_term(
                np.eye(3), F_LEVEL, k1=1.0, m=np.array([0.0, 0.0, 1.0]), m_ref=M_REF, k2=1.0
            )
        self.assertTrue(np.all(np.isfinite(term.sigma)))
        np.testing.assert_array_equal(term.sigma2, np.zeros(3))

    def test_nearly_parallel_uses_projection(self) -> None:
        """|v1·v2| > 0.9 projects both vectors onto the horizontal plane."""
        R = quat_to_rotation_matrix(euler_to_quat(0.0, 0.0, 0.2))
        m = np.array([0.05, 0.0, 1.0])
        with warnings.catch_warnings():
            warnings.simplefilter("error")
            term = injection_term(R, F_LEVEL, k1=1.0, m=m, m_ref=M_REF, k2=1.0)
        self.assertTrue(np.all(np.isfinite(term.sigma2)))
        # Horizontal unit vectors: v2 = x, Rᵀ v02 = Rz(-0.2) x
        expected = np.cross([1.0, 0.0, 0.0], R.T @ np.array([1.0, 0.0, 0.0]))
        np.testing.assert_allclose(term.sigma2, expected, atol=1e-12)

    def test_orthogonal_magnetic_field_unprojected(self) -> None:
        m = np.array([1.0, 0.0, 0.0])
        with warnings.catch_warnings():
            warnings.simplefilter("error")
            term = injection_term(np.eye(3), F_LEVEL, k1=1.0, m=m, m_ref=M_REF, k2=1.0)
        self.assertTrue(np.all(np.isfinite(term.sigma2)))
        v02 = M_REF / np.linalg.norm(M_REF)
        np.testing.assert_allclose(term.sigma2, np.cross(m, v02))

    def test_zero_specific_force_suppresses_injection(self) -> None:
        with pytest.warns(DegenerateMeasurementWarning):
            term = injection_term(np.eye(3), np.zeros(3), k1=1.0, m=M_REF, m_ref=M_REF, k2=1.0)
        np.testing.assert_array_equal(term.sigma, np.zeros(3))

    def test_non_finite_magnetometer_suppresses_sigma2(self) -> None:
        f, _ = body_measurements(0.1, 0.0, 0.0)
        with pytest.warns(DegenerateMeasurementWarning):
            term = injection_term(
                np.eye(3), f, k1=1.0, m=np.array([np.nan, 0.0, 0.0]), m_ref=M_REF, k2=1.0
            )
        np.testing.assert_array_equal(term.sigma2, np.zeros(3))
        np.testing.assert_allclose(term.sigma, term.sigma1)

    def test_magnetometer_requires_reference(self) -> None:
        with pytest.raises(ValueError, match="m_ref"):
            injection_term(np.eye(3), F_LEVEL, k1=1.0, m=M_REF)

    def test_shape_validation(self) -> None:
        with pytest.raises(ValueError):
            injection_term(np.eye(4), F_LEVEL, k1=1.0)
        with pytest.raises(ValueError):
            injection_term(np.eye(3), np.zeros(2), k1=1.0)


class TestObserverGains(unittest.TestCase):
    def test_scalar_ki_is_expanded(self) -> None:
        gains = ObserverGains(Ki=0.5, k1=1.0, k2=1.0)
        np.testing.assert_array_equal(gains.Ki, 0.5 * np.eye(3))

    def test_default(self) -> None:
        gains = ObserverGains.default()
        self.assertEqual(gains.Ki.shape, (3, 3))
        self.assertGreater(gains.k1, 0.0)

    def test_invalid(self) -> None:
        with pytest.raises(ValueError):
            ObserverGains(Ki=np.eye(2), k1=1.0, k2=1.0)
        with pytest.raises(ValueError):
            ObserverGains(Ki=np.eye(3), k1=-1.0, k2=1.0)


class TestAttitudeStep(unittest.TestCase):
    def test_bias_update(self) -> None:
        h = 0.01
        Ki = np.diag([0.1, 0.2, 0.3])
        f, m = body_measurements(0.1, -0.05, 0.2)
        q0 = np.array([1.0, 0.0, 0.0, 0.0])
        b0 = np.array([0.01, -0.02, 0.03])
        term = injection_term(np.eye(3), f, 1.0, m=m, m_ref=M_REF, k2=0.5)
        _, b1 = attitude_step(q0, b0, h, Ki, 1.0, 0.5, M_REF, f, np.zeros(3), m=m)
        np.testing.assert_allclose(b1, b0 - h * Ki @ term.sigma)

    def test_unit_norm(self) -> None:
        rng = np.random.default_rng(3)
        q, b = np.array([1.0, 0.0, 0.0, 0.0]), np.zeros(3)
        for _ in range(200):
            q, b = attitude_step(
                q, b, 0.01, 0.01 * np.eye(3), 1.0, 0.5, M_REF,
                F_LEVEL + rng.normal(scale=0.1, size=3), rng.normal(scale=0.5, size=3),
                m=M_REF + rng.normal(scale=0.01, size=3),
            )
            self.assertAlmostEqual(np.linalg.norm(q), 1.0, places=12)

    def test_stationary_aligned_stays_identity(self) -> None:
        q, b = np.array([1.0, 0.0, 0.0, 0.0]), np.zeros(3)
        for _ in range(100):
            q, b = attitude_step(q, b, 0.01, 0.1 * np.eye(3), 1.0, 1.0, M_REF, F_LEVEL, np.zeros(3), m=M_REF)
        np.testing.assert_allclose(q, [1.0, 0.0, 0.0, 0.0], atol=1e-12)
        np.testing.assert_allclose(b, np.zeros(3), atol=1e-12)

    def test_non_finite_quaternion_raises(self) -> None:
        with pytest.raises(NonFiniteStateError):
            attitude_step(
                np.array([np.nan, 0.0, 0.0, 0.0]), np.zeros(3), 0.01, np.eye(3),
                1.0, 1.0, M_REF, F_LEVEL, np.zeros(3),
            )


class TestNonlinearAttitudeObserver(unittest.TestCase):
    def test_roll_pitch_converge_from_gravity(self) -> None:
        f, _ = body_measurements(0.1, -0.08, 0.0)
        obs = NonlinearAttitudeObserver(h=0.01, gains=ObserverGains(Ki=np.zeros((3, 3)), k1=1.0, k2=0.0))
        for _ in range(2000):
            q, _ = obs.update(f, np.zeros(3))
        roll, pitch, _ = quat_to_euler(q)
        self.assertAlmostEqual(roll, 0.1, places=3)
        self.assertAlmostEqual(pitch, -0.08, places=3)

    def test_yaw_converges_with_magnetometer(self) -> None:
        f, m = body_measurements(0.0, 0.0, 0.3)
        obs = NonlinearAttitudeObserver(
            h=0.01, gains=ObserverGains(Ki=np.zeros((3, 3)), k1=1.0, k2=1.0), m_ref=M_REF
        )
        for _ in range(3000):
            q, _ = obs.update(f, np.zeros(3), m)
        self.assertAlmostEqual(quat_to_euler(q)[2], 0.3, places=2)

    def test_tracks_constant_rotation(self) -> None:
        obs = NonlinearAttitudeObserver(h=0.01, gains=ObserverGains(Ki=np.zeros((3, 3)), k1=0.0, k2=0.0))
        for _ in range(100):
            q, _ = obs.update(F_LEVEL, np.array([0.0, 0.0, 0.2]))
        self.assertAlmostEqual(quat_to_euler(q)[2], 0.2, places=12)

    def test_coning_variant_matches_for_constant_rate(self) -> None:
        gains = ObserverGains(Ki=np.zeros((3, 3)), k1=0.0, k2=0.0)
        plain = NonlinearAttitudeObserver(h=0.02, gains=gains)
        midpoint = NonlinearAttitudeObserver(h=0.02, gains=gains, coning_sculling=True)
        w = np.array([0.3, -0.2, 0.5])
        for _ in range(50):
            q_plain, _ = plain.update(F_LEVEL, w)
            q_mid, _ = midpoint.update(F_LEVEL, w)
        np.testing.assert_allclose(q_mid, q_plain, atol=1e-12)

    def test_coning_history_includes_injection(self) -> None:
        h = 0.1
        q0 = euler_to_quat(0.3, 0.0, 0.0)
        gains = ObserverGains(Ki=np.zeros((3, 3)), k1=1.0, k2=0.0)
        obs = NonlinearAttitudeObserver(h=h, gains=gains, q0=q0, coning_sculling=True)
        obs.update(F_LEVEL, np.zeros(3))
        q2, _ = obs.update(F_LEVEL, np.zeros(3))

        sigma1 = injection_term(quat_to_rotation_matrix(q0), F_LEVEL, 1.0).sigma
        q1 = quat_propagate(q0, sigma1, h, coning_sculling=True).q
        sigma2 = injection_term(quat_to_rotation_matrix(q1), F_LEVEL, 1.0).sigma
        expected = quat_propagate(q1, sigma2, h, coning_sculling=True, omega_prev=sigma1).q
        np.testing.assert_allclose(q2, expected, atol=1e-12)

    def test_coning_keeps_injection_strength(self) -> None:
        gains = ObserverGains(Ki=np.zeros((3, 3)), k1=1.0, k2=0.0)
        q0 = euler_to_quat(0.3, 0.0, 0.0)
        plain = NonlinearAttitudeObserver(h=0.1, gains=gains, q0=q0)
        midpoint = NonlinearAttitudeObserver(h=0.1, gains=gains, q0=q0, coning_sculling=True)
        for _ in range(10):
            q_plain, _ = plain.update(F_LEVEL, np.zeros(3))
            q_mid, _ = midpoint.update(F_LEVEL, np.zeros(3))
        self.assertLess(abs(quat_to_euler(q_mid)[0] - quat_to_euler(q_plain)[0]), 0.01)

    def test_reset(self) -> None:
        obs = NonlinearAttitudeObserver(h=0.01)
        obs.update(F_LEVEL, np.array([0.1, 0.0, 0.0]))
        obs.reset()
        np.testing.assert_array_equal(obs.q, [1.0, 0.0, 0.0, 0.0])
        np.testing.assert_array_equal(obs.b_g, np.zeros(3))

    def test_returns_copies(self) -> None:
        obs = NonlinearAttitudeObserver(h=0.01)
        q, b = obs.update(F_LEVEL, np.zeros(3))
        q[0] = 0.0
        self.assertEqual(obs.q[0], 1.0)

    def test_invalid_step(self) -> None:
        with pytest.raises(ValueError):
            NonlinearAttitudeObserver(h=0.0)


if __name__ == "__main__":
    unittest.main()
