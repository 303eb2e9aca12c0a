"""
Motion and measurement models for the Extended Kalman Filter.
"""

import numpy as np
from typing import Tuple
from ..math.utils import as_vec3, skew_matrix, safe_norm
from ..math.constants import *

class MotionModel:
    """
    Body-frame velocity model driven by IMU acceleration and angular rate.

    State: [vx, vy, vz]
    """

    @staticmethod
    def predict_state(state: np.ndarray, accel: np.ndarray, gyro: np.ndarray, dt: float) -> np.ndarray:
        """
        Predict next state using the rotating-frame velocity dynamics.

        dv/dt = a - w x v

        Args:
            state: Current state [vx, vy, vz]
            accel: Body-frame acceleration [ax, ay, az] in m/s²
            gyro: Body angular rates [p, q, r] in rad/s
            dt: Time step in seconds

        Returns:
            Predicted state vector
        """
        v = as_vec3(state)
        a = as_vec3(accel)
        w = as_vec3(gyro)

        dv = a - np.cross(w, v)

        return v + dv * dt

    @staticmethod
    def jacobian_F(gyro: np.ndarray, dt: float) -> np.ndarray:
        """
        Compute Jacobian of motion model with respect to state.

        Args:
            gyro: Body angular rates [p, q, r]
            dt: Time step

        Returns:
            3x3 Jacobian matrix F = I + Omega * dt
        """
        return np.eye(3) + skew_matrix(gyro) * dt

    @staticmethod
    def process_noise_matrix(Q_params: dict) -> np.ndarray:
        """
        Compute process noise covariance matrix.

        The noise is added once per prediction step.

        Args:
            Q_params: Dictionary with noise parameters

        Returns:
            3x3 process noise covariance matrix Q
        """
        q_vel = Q_params.get('velocity', Q_VELOCITY)
        return np.diag([q_vel, q_vel, q_vel])

class MeasurementModel:
    """
    Scalar measurement models for GPS, wheel speed and vision.

    Every model returns the predicted measurement h(x) and its 1x3
    Jacobian H.
    """

    @staticmethod
    def gps_speed(state: np.ndarray) -> Tuple[float, np.ndarray]:
        """
        GPS speed model - observes the magnitude of the velocity vector.

        Args:
            state: Current state vector

        Returns:
            (h_x, H) with h_x = |v| and H = v / |v|
        """
        v = as_vec3(state)
        v_mag = safe_norm(v, MIN_SPEED_NORM)
        return v_mag, v / v_mag

    @staticmethod
    def forward_speed(state: np.ndarray) -> Tuple[float, np.ndarray]:
        """
        Forward speed model - observes vx directly.

        Used by both wheel speed and vision measurements.

        Args:
            state: Current state vector

        Returns:
            (h_x, H) with h_x = vx and H = [1, 0, 0]
        """
        v = as_vec3(state)
        return float(v[0]), np.array([1.0, 0.0, 0.0])

    @staticmethod
    def gps_noise(R_params: dict, accuracy: float) -> float:
        """
        GPS speed variance; grows with the reported position accuracy.

        Args:
            R_params: Dictionary with noise parameters
            accuracy: Reported horizontal accuracy in meters

        Returns:
            Measurement variance R
        """
        floor = R_params.get('gps_floor', R_GPS_FLOOR)
        scale = R_params.get('gps_accuracy_scale', R_GPS_ACCURACY_SCALE)
        return max(floor, accuracy * scale)

    @staticmethod
    def obd_noise(R_params: dict) -> float:
        """Wheel speed variance."""
        return R_params.get('obd_speed', R_OBD_SPEED)

    @staticmethod
    def vision_noise(R_params: dict, confidence: float, is_gnss_outage: bool) -> float:
        """
        Vision speed variance.

        Low confidence inflates the variance. During a GNSS outage vision is
        the main speed reference and the variance shrinks; otherwise it only
        cross-checks GPS and the variance grows.

        Args:
            R_params: Dictionary with noise parameters
            confidence: Tracking confidence in [0, 1]
            is_gnss_outage: Whether GPS has gone silent

        Returns:
            Measurement variance R
        """
        min_conf = R_params.get('vision_min_confidence', R_VISION_MIN_CONFIDENCE)
        base = R_params.get('vision_base', R_VISION_BASE)

        r_vision = (1.0 / max(min_conf, confidence)) * base

        if is_gnss_outage:
            r_vision *= R_params.get('vision_outage_scale', R_VISION_OUTAGE_SCALE)
        else:
            r_vision *= R_params.get('vision_healthy_scale', R_VISION_HEALTHY_SCALE)

        return r_vision
