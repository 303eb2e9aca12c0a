#!/usr/bin/env python3
"""
Unit tests for the velocity Extended Kalman Filter.
"""

import math
import unittest
import numpy as np
import sys
import os

# Add package to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from speed_fusion.ekf import VelocityEKF, VelocityState
from speed_fusion.ekf.models import MotionModel, MeasurementModel
from speed_fusion.math.utils import skew_matrix

class FakeClock:
    """Settable clock for GNSS outage checks."""

    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now

class TestVelocityState(unittest.TestCase):
    """Test VelocityState class."""

    def test_initialization(self):
        """Test state initialization."""
        state = VelocityState(vx=1.0, vy=2.0, vz=3.0)

        self.assertEqual(state.vx, 1.0)
        self.assertEqual(state.vy, 2.0)
        self.assertEqual(state.vz, 3.0)
        self.assertIsNotNone(state.timestamp)

    def test_state_vector_property(self):
        """Test state vector conversion."""
        state = VelocityState(vx=1.0, vy=2.0, vz=3.0)
        np.testing.assert_array_equal(state.state_vector, [1.0, 2.0, 3.0])

        state.state_vector = np.array([10.0, 20.0, 30.0])
        self.assertEqual(state.vx, 10.0)
        self.assertEqual(state.vy, 20.0)
        self.assertEqual(state.vz, 30.0)

    def test_state_vector_length_checked(self):
        """Test setter rejects wrong length."""
        state = VelocityState()
        with self.assertRaises(ValueError):
            state.state_vector = np.array([1.0, 2.0])

    def test_speed_property(self):
        """Test speed calculation."""
        state = VelocityState(vx=2.0, vy=3.0, vz=6.0)
        self.assertAlmostEqual(state.speed, 7.0, places=6)

    def test_copy(self):
        """Test state copying."""
        original = VelocityState(vx=1.0, vy=2.0, vz=3.0)
        copy = original.copy()

        self.assertEqual(copy.state_vector.tolist(), original.state_vector.tolist())
        copy.vx = 100.0
        self.assertNotEqual(copy.vx, original.vx)

class TestMotionModel(unittest.TestCase):
    """Test MotionModel class."""

    def test_predict_state_with_acceleration(self):
        """Velocity integrates acceleration."""
        predicted = MotionModel.predict_state(np.zeros(3), [1.0, 0.0, -0.5], np.zeros(3), 2.0)
        np.testing.assert_allclose(predicted, [2.0, 0.0, -1.0])

    def test_predict_state_rotation_coupling(self):
        """Yaw rate rotates forward velocity into the lateral axis."""
        predicted = MotionModel.predict_state([10.0, 0.0, 0.0], np.zeros(3), [0.0, 0.0, 0.1], 0.1)

        # dv = -(w x v) = -[0, 1, 0]
        np.testing.assert_allclose(predicted, [10.0, -0.1, 0.0])

    def test_jacobian_F(self):
        """Test Jacobian matrix calculation."""
        p, q, r = 0.1, 0.2, 0.3
        dt = 0.05
        F = MotionModel.jacobian_F([p, q, r], dt)

        self.assertEqual(F.shape, (3, 3))
        for i in range(3):
            self.assertAlmostEqual(F[i, i], 1.0)
        self.assertAlmostEqual(F[0, 1], r * dt)
        self.assertAlmostEqual(F[0, 2], -q * dt)
        self.assertAlmostEqual(F[1, 0], -r * dt)
        self.assertAlmostEqual(F[1, 2], p * dt)
        self.assertAlmostEqual(F[2, 0], q * dt)
        self.assertAlmostEqual(F[2, 1], -p * dt)

    def test_jacobian_matches_dynamics(self):
        """F is the exact derivative of the linear velocity dynamics."""
        gyro = np.array([0.2, -0.1, 0.4])
        v = np.array([3.0, -1.0, 0.5])
        dt = 0.1
        F = MotionModel.jacobian_F(gyro, dt)
        predicted = MotionModel.predict_state(v, np.zeros(3), gyro, dt)
        np.testing.assert_allclose(F @ v, predicted)

    def test_process_noise_matrix(self):
        """Test process noise matrix generation."""
        Q = MotionModel.process_noise_matrix({'velocity': 0.2})
        np.testing.assert_allclose(Q, np.eye(3) * 0.2)

        Q_default = MotionModel.process_noise_matrix({})
        np.testing.assert_allclose(Q_default, np.eye(3) * 0.05)

class TestMeasurementModel(unittest.TestCase):
    """Test MeasurementModel class."""

    def test_gps_speed(self):
        """GPS observes the velocity magnitude."""
        h_x, H = MeasurementModel.gps_speed([3.0, 4.0, 0.0])
        self.assertAlmostEqual(h_x, 5.0)
        np.testing.assert_allclose(H, [0.6, 0.8, 0.0])

    def test_gps_speed_at_rest(self):
        """The Jacobian stays finite when stationary."""
        h_x, H = MeasurementModel.gps_speed(np.zeros(3))
        self.assertAlmostEqual(h_x, 0.001)
        self.assertTrue(np.all(np.isfinite(H)))

    def test_forward_speed(self):
        """Wheel speed and vision observe vx."""
        h_x, H = MeasurementModel.forward_speed([7.0, 1.0, 2.0])
        self.assertEqual(h_x, 7.0)
        np.testing.assert_array_equal(H, [1.0, 0.0, 0.0])

    def test_gps_noise(self):
        """GPS variance has a floor and scales with accuracy."""
        self.assertAlmostEqual(MeasurementModel.gps_noise({}, 0.1), 0.2)
        self.assertAlmostEqual(MeasurementModel.gps_noise({}, 10.0), 5.0)

    def test_obd_noise(self):
        """Wheel speed variance is fixed."""
        self.assertAlmostEqual(MeasurementModel.obd_noise({}), 2.0)
        self.assertAlmostEqual(MeasurementModel.obd_noise({'obd_speed': 1.5}), 1.5)

    def test_vision_noise(self):
        """Vision variance follows confidence and GNSS state."""
        self.assertAlmostEqual(MeasurementModel.vision_noise({}, 1.0, True), 0.05)
        self.assertAlmostEqual(MeasurementModel.vision_noise({}, 1.0, False), 1.25)
        # Confidence is floored at 0.1
        self.assertAlmostEqual(MeasurementModel.vision_noise({}, 0.0, False), 12.5)
        self.assertAlmostEqual(MeasurementModel.vision_noise({}, 0.05, True), 0.5)

class TestVelocityEKF(unittest.TestCase):
    """Test VelocityEKF class."""

    def setUp(self):
        """Set up test fixtures."""
        self.clock = FakeClock()
        self.ekf = VelocityEKF(clock=self.clock)

    def test_initialization(self):
        """Filter starts at rest with identity covariance."""
        np.testing.assert_array_equal(self.ekf.state, np.zeros(3))
        np.testing.assert_array_equal(self.ekf.P, np.eye(3))
        self.assertAlmostEqual(self.ekf.get_uncertainty(), 3.0)
        self.assertEqual(self.ekf.prediction_count, 0)

    def test_predict_integrates_acceleration(self):
        """1 m/s² for 1 s from rest gives 1 m/s."""
        for _ in range(10):
            self.ekf.predict([1.0, 0.0, 0.0], [0.0, 0.0, 0.0], 0.1)

        self.assertAlmostEqual(self.ekf.get_estimated_speed(), 1.0, places=6)
        self.assertEqual(self.ekf.prediction_count, 10)

    def test_predict_zero_inputs_keep_state(self):
        """Zero acceleration and rotation leave velocity unchanged."""
        ekf = VelocityEKF(VelocityState(vx=5.0, vy=-1.0, vz=0.5))
        for _ in range(50):
            ekf.predict(np.zeros(3), np.zeros(3), 0.05)

        np.testing.assert_allclose(ekf.state, [5.0, -1.0, 0.5])

    def test_predict_grows_uncertainty(self):
        """Process noise is added every step."""
        self.ekf.predict(np.zeros(3), np.zeros(3), 0.05)
        self.assertAlmostEqual(self.ekf.get_uncertainty(), 3.0 + 3 * 0.05)

    def test_predict_keeps_state_finite(self):
        """Finite inputs give a finite state and non-negative trace."""
        rng = np.random.default_rng(7)
        for _ in range(500):
            accel = rng.uniform(-20.0, 20.0, size=3)
            gyro = rng.uniform(-1.0, 1.0, size=3)
            dt = rng.uniform(1e-4, 0.1)
            self.ekf.predict(accel, gyro, dt)

            self.assertTrue(np.all(np.isfinite(self.ekf.state)))
            self.assertGreaterEqual(self.ekf.get_uncertainty(), 0.0)

    def test_predict_ignores_non_positive_dt(self):
        """dt <= 0 is a no-op."""
        for dt in [0.0, -0.1]:
            self.ekf.predict([1.0, 0.0, 0.0], np.zeros(3), dt)

        np.testing.assert_array_equal(self.ekf.state, np.zeros(3))
        np.testing.assert_array_equal(self.ekf.P, np.eye(3))
        self.assertEqual(self.ekf.prediction_count, 0)

    def test_predict_ignores_non_finite_input(self):
        """NaN or infinite IMU input is skipped."""
        self.ekf.predict([np.nan, 0.0, 0.0], np.zeros(3), 0.1)
        self.ekf.predict(np.zeros(3), [0.0, np.inf, 0.0], 0.1)
        self.ekf.predict(np.zeros(3), np.zeros(3), float('nan'))

        self.assertTrue(np.all(np.isfinite(self.ekf.state)))
        self.assertEqual(self.ekf.prediction_count, 0)
        self.assertEqual(self.ekf.skipped_input_count, 3)

    def test_obd_update_partial_correction(self):
        """One wheel speed update from rest corrects partway, not fully."""
        self.ekf.fuse_obd_speed(27.8)

        vx = self.ekf.state[0]
        self.assertGreater(vx, 0.0)
        self.assertLess(vx, 27.8)

        # S = 1 + 2, innovation clamped at 4 sigma, K = 1/3
        self.assertAlmostEqual(vx, 4.0 * math.sqrt(3.0) / 3.0)
        self.assertEqual(self.ekf.clamped_innovation_count, 1)
        self.assertEqual(self.ekf.obd_update_count, 1)

    def test_obd_update_small_innovation(self):
        """Innovations inside the gate are applied in full."""
        self.ekf.fuse_obd_speed(1.0)

        self.assertAlmostEqual(self.ekf.state[0], 1.0 / 3.0)
        self.assertEqual(self.ekf.clamped_innovation_count, 0)
        # P[0,0] = (1 - K)^2 * 1 + K^2 * R = 4/9 + 2/9
        self.assertAlmostEqual(self.ekf.P[0, 0], 2.0 / 3.0)

    def test_obd_update_never_overshoots(self):
        """Repeated updates approach the measurement from one side."""
        ekf = VelocityEKF(VelocityState(vx=10.0))
        previous = ekf.state[0]
        for _ in range(30):
            ekf.fuse_obd_speed(12.0)
            vx = ekf.state[0]
            self.assertGreaterEqual(vx, previous)
            self.assertLessEqual(vx, 12.0)
            previous = vx

    def test_outlier_influence_is_bounded(self):
        """A 10 sigma measurement moves the state only by the 4 sigma amount."""
        ekf = VelocityEKF(VelocityState(vx=10.0))
        S = ekf.P[0, 0] + 2.0
        sigma = math.sqrt(S)
        gain = ekf.P[0, 0] / S

        ekf.fuse_obd_speed(10.0 + 10.0 * sigma)

        change = np.linalg.norm(ekf.state - np.array([10.0, 0.0, 0.0]))
        self.assertLessEqual(change, gain * 4.0 * sigma + 1e-9)
        self.assertAlmostEqual(change, gain * 4.0 * sigma)

    def test_update_scalar_skips_non_finite(self):
        """Non-finite measurements are not applied."""
        self.assertFalse(self.ekf.update_scalar(float('nan'), 0.0, [1.0, 0.0, 0.0], 1.0))
        self.ekf.fuse_obd_speed(float('inf'))

        np.testing.assert_array_equal(self.ekf.state, np.zeros(3))
        self.assertEqual(self.ekf.obd_update_count, 0)

    def test_update_scalar_guards_degenerate_variance(self):
        """A zero innovation variance is skipped rather than divided by."""
        ekf = VelocityEKF()
        ekf.P = np.zeros((3, 3))
        self.assertFalse(ekf.update_scalar(1.0, 0.0, [1.0, 0.0, 0.0], 0.0))
        self.assertTrue(np.all(np.isfinite(ekf.state)))

    def test_covariance_stays_symmetric(self):
        """Joseph form keeps P symmetric positive semi-definite."""
        rng = np.random.default_rng(3)
        ekf = VelocityEKF(VelocityState(vx=15.0, vy=0.5), clock=self.clock)
        for i in range(2000):
            ekf.predict(rng.normal(0, 1.0, 3), rng.normal(0, 0.2, 3), 0.05)
            ekf.fuse_obd_speed(15.0 + rng.normal(0, 1.0))
            if i % 20 == 0:
                ekf.fuse_gps(15.0 + rng.normal(0, 0.5), accuracy=3.0)
            if i % 3 == 0:
                ekf.fuse_vision_speed(15.0 + rng.normal(0, 2.0), i % 2 == 0, rng.uniform(0, 1))

        np.testing.assert_allclose(ekf.P, ekf.P.T, atol=1e-12)
        self.assertGreaterEqual(np.min(np.linalg.eigvalsh(ekf.P)), -1e-12)
        self.assertTrue(np.all(np.isfinite(ekf.state)))

    def test_gps_update(self):
        """GPS speed pulls the velocity magnitude toward the fix."""
        ekf = VelocityEKF(VelocityState(vx=10.0), clock=self.clock)
        ekf.fuse_gps(12.0, accuracy=1.0)

        # R = 0.5, S = 1.5, K = [1/1.5, 0, 0]
        self.assertAlmostEqual(ekf.state[0], 10.0 + 2.0 / 1.5)
        self.assertEqual(ekf.gps_update_count, 1)

    def test_gps_update_at_rest_is_finite(self):
        """GPS fusion while stationary does not divide by zero."""
        self.ekf.fuse_gps(5.0, accuracy=2.0)
        self.assertTrue(np.all(np.isfinite(self.ekf.state)))
        self.assertTrue(np.all(np.isfinite(self.ekf.P)))

    def test_gnss_outage_tracking(self):
        """Outage is declared 1000 ms after the last GPS fusion."""
        self.assertTrue(self.ekf.is_gnss_outage())

        self.ekf.fuse_gps(0.0)
        self.assertFalse(self.ekf.is_gnss_outage())

        self.clock.now += 0.9
        self.assertFalse(self.ekf.is_gnss_outage())

        self.clock.now += 0.2
        self.assertTrue(self.ekf.is_gnss_outage())

    def test_skipped_gps_does_not_refresh_timestamp(self):
        """Only applied GPS fixes count for outage tracking."""
        self.ekf.fuse_gps(float('nan'))
        self.assertTrue(self.ekf.is_gnss_outage())

    def test_vision_weighting(self):
        """Vision moves the estimate more during a GNSS outage."""
        outage = VelocityEKF(VelocityState(vx=10.0))
        healthy = VelocityEKF(VelocityState(vx=10.0))

        outage.fuse_vision_speed(12.0, is_gnss_outage=True, confidence=1.0)
        healthy.fuse_vision_speed(12.0, is_gnss_outage=False, confidence=1.0)

        self.assertGreater(outage.state[0], healthy.state[0])
        self.assertGreater(healthy.state[0], 10.0)
        self.assertEqual(outage.vision_update_count, 1)

    def test_get_statistics(self):
        """Test statistics retrieval."""
        self.ekf.predict(np.zeros(3), np.zeros(3), 0.1)
        self.ekf.fuse_obd_speed(1.0)
        stats = self.ekf.get_statistics()

        required_keys = ['predictions', 'gps_updates', 'obd_updates', 'vision_updates',
                         'clamped_innovations', 'skipped_inputs', 'estimated_speed',
                         'uncertainty', 'state_uncertainty', 'gnss_outage']
        for key in required_keys:
            self.assertIn(key, stats)

        self.assertEqual(stats['predictions'], 1)
        self.assertEqual(stats['obd_updates'], 1)
        self.assertIsInstance(stats['uncertainty'], float)
        self.assertEqual(len(stats['state_uncertainty']), 3)

    def test_reset(self):
        """Test filter reset."""
        self.ekf.predict([1.0, 0.0, 0.0], np.zeros(3), 0.1)
        self.ekf.fuse_gps(1.0)

        self.ekf.reset(VelocityState(vx=3.0))

        self.assertEqual(self.ekf.prediction_count, 0)
        self.assertEqual(self.ekf.gps_update_count, 0)
        self.assertTrue(self.ekf.is_gnss_outage())
        np.testing.assert_array_equal(self.ekf.P, np.eye(3))
        self.assertAlmostEqual(self.ekf.get_current_state().vx, 3.0)

class TestSkewMatrix(unittest.TestCase):
    """Test the rotation-rate matrix."""

    def test_skew_matches_cross_product(self):
        """Omega @ v equals v x w."""
        w = np.array([0.3, -0.2, 0.5])
        v = np.array([1.0, 2.0, 3.0])
        np.testing.assert_allclose(skew_matrix(w) @ v, np.cross(v, w))

    def test_skew_is_antisymmetric(self):
        omega = skew_matrix([1.0, 2.0, 3.0])
        np.testing.assert_array_equal(omega, -omega.T)

if __name__ == '__main__':
    unittest.main()
