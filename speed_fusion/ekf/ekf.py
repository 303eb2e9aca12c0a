"""
Extended Kalman Filter implementation for vehicle speed fusion.
"""

import logging
import math
import numpy as np
import time
from typing import Optional, Dict, Any, Callable
from .state import VelocityState
from .models import MotionModel, MeasurementModel
from ..math.utils import as_vec3, symmetrize, is_finite
from ..math.constants import *

logger = logging.getLogger(__name__)

class VelocityEKF:
    """
    Extended Kalman Filter for body-frame velocity using IMU prediction and
    GPS, wheel speed and vision measurements.

    The filter is not thread safe. A single owner must serialize calls.
    """

    def __init__(self, initial_state: Optional[VelocityState] = None,
                 process_noise: Dict[str, float] = None,
                 measurement_noise: Dict[str, float] = None,
                 gnss_outage_threshold_ms: float = GNSS_OUTAGE_THRESHOLD_MS,
                 clock: Optional[Callable[[], float]] = None):
        """
        Initialize the Extended Kalman Filter.

        Args:
            initial_state: Initial velocity state (defaults to rest)
            process_noise: Process noise parameters
            measurement_noise: Measurement noise parameters
            gnss_outage_threshold_ms: Time without GPS fusion before an outage is declared
            clock: Wall-clock source in seconds (defaults to time.time)
        """
        if initial_state is None:
            initial_state = VelocityState()

        # State vector and covariance
        self.state = initial_state.state_vector
        self.P = self._initialize_covariance()

        # Models
        self.motion_model = MotionModel()
        self.measurement_model = MeasurementModel()

        # Noise parameters
        self.Q_params = process_noise or {
            'velocity': Q_VELOCITY
        }

        self.R_params = measurement_noise or {
            'gps_floor': R_GPS_FLOOR,
            'gps_accuracy_scale': R_GPS_ACCURACY_SCALE,
            'obd_speed': R_OBD_SPEED,
            'vision_base': R_VISION_BASE,
            'vision_min_confidence': R_VISION_MIN_CONFIDENCE,
            'vision_outage_scale': R_VISION_OUTAGE_SCALE,
            'vision_healthy_scale': R_VISION_HEALTHY_SCALE
        }

        self.Q = self.motion_model.process_noise_matrix(self.Q_params)

        # Timing
        self.clock = clock or time.time
        self.gnss_outage_threshold_ms = gnss_outage_threshold_ms
        self.last_gps_time: Optional[float] = None

        # Statistics
        self._reset_counters()

    def _initialize_covariance(self) -> np.ndarray:
        """Initialize state covariance matrix."""
        return np.eye(3) * INITIAL_VELOCITY_UNCERTAINTY**2

    def _reset_counters(self):
        self.prediction_count = 0
        self.gps_update_count = 0
        self.obd_update_count = 0
        self.vision_update_count = 0
        self.clamped_innovation_count = 0
        self.skipped_input_count = 0

    def predict(self, accel: np.ndarray, gyro: np.ndarray, dt: float) -> VelocityState:
        """
        Prediction step of the Kalman filter.

        Non-positive or non-finite time steps, and non-finite IMU inputs,
        leave the filter untouched.

        Args:
            accel: Body-frame acceleration [ax, ay, az] in m/s²
            gyro: Body angular rates [p, q, r] in rad/s
            dt: Time step in seconds

        Returns:
            Predicted velocity state
        """
        accel = as_vec3(accel)
        gyro = as_vec3(gyro)

        if not is_finite(accel, gyro, dt):
            logger.warning("Skipping prediction with non-finite input (dt=%s)", dt)
            self.skipped_input_count += 1
            return self.get_current_state()

        if dt <= 0:
            logger.debug("Ignoring prediction with non-positive dt=%s", dt)
            return self.get_current_state()

        # Predict state using motion model
        state = self.motion_model.predict_state(self.state, accel, gyro, dt)

        # Update covariance: P = F * P * F^T + Q
        F = self.motion_model.jacobian_F(gyro, dt)
        P = symmetrize(F @ self.P @ F.T + self.Q)

        if not is_finite(state, P):
            logger.warning("Prediction diverged, keeping previous estimate (dt=%s)", dt)
            self.skipped_input_count += 1
            return self.get_current_state()

        self.state = state
        self.P = P
        self.prediction_count += 1

        return self.get_current_state()

    def update_scalar(self, z: float, h_x: float, H: np.ndarray, R: float) -> bool:
        """
        Generic scalar measurement update shared by all sensors.

        Innovations larger than INNOVATION_GATE_SIGMA standard deviations are
        clamped to the gate instead of being rejected. The covariance uses
        the Joseph form, which keeps P symmetric positive semi-definite over
        long sessions.

        Args:
            z: Measurement
            h_x: Predicted measurement
            H: 1x3 measurement Jacobian
            R: Measurement variance

        Returns:
            True if the update was applied
        """
        H = as_vec3(H)

        if not is_finite(z, h_x, H, R):
            logger.warning("Skipping measurement update with non-finite input (z=%s, R=%s)", z, R)
            self.skipped_input_count += 1
            return False

        # Innovation covariance
        PHt = self.P @ H
        S = float(H @ PHt) + R

        if not S > MIN_INNOVATION_VARIANCE:
            logger.warning("Skipping measurement update with degenerate innovation variance S=%g", S)
            self.skipped_input_count += 1
            return False

        # Kalman gain
        K = PHt / S

        # Innovation, clamped at the gate
        y = z - h_x
        gate = INNOVATION_GATE_SIGMA * math.sqrt(S)
        if abs(y) > gate:
            logger.debug("Clamping innovation %.3f to %.3f", y, math.copysign(gate, y))
            y = math.copysign(gate, y)
            self.clamped_innovation_count += 1

        # Update state and covariance
        self.state = self.state + K * y
        I_KH = np.eye(3) - np.outer(K, H)
        self.P = symmetrize(I_KH @ self.P @ I_KH.T + R * np.outer(K, K))

        return True

    def fuse_gps(self, speed: float, accuracy: float = 1.0) -> VelocityState:
        """
        Update step with a GPS speed fix.

        Args:
            speed: Ground speed in m/s
            accuracy: Reported horizontal accuracy in meters

        Returns:
            Updated velocity state
        """
        h_x, H = self.measurement_model.gps_speed(self.state)
        R = self.measurement_model.gps_noise(self.R_params, accuracy)

        if self.update_scalar(speed, h_x, H, R):
            self.last_gps_time = self.clock()
            self.gps_update_count += 1

        return self.get_current_state()

    def fuse_obd_speed(self, speed: float) -> VelocityState:
        """
        Update step with wheel speed from the vehicle bus.

        Args:
            speed: Forward speed in m/s

        Returns:
            Updated velocity state
        """
        h_x, H = self.measurement_model.forward_speed(self.state)
        R = self.measurement_model.obd_noise(self.R_params)

        if self.update_scalar(speed, h_x, H, R):
            self.obd_update_count += 1

        return self.get_current_state()

    def fuse_vision_speed(self, speed: float, is_gnss_outage: bool,
                          confidence: float = 1.0) -> VelocityState:
        """
        Update step with a vision speed estimate.

        Args:
            speed: Forward speed in m/s
            is_gnss_outage: Whether GPS has gone silent
            confidence: Tracking confidence in [0, 1]

        Returns:
            Updated velocity state
        """
        h_x, H = self.measurement_model.forward_speed(self.state)
        R = self.measurement_model.vision_noise(self.R_params, confidence, is_gnss_outage)

        if self.update_scalar(speed, h_x, H, R):
            self.vision_update_count += 1

        return self.get_current_state()

    def is_gnss_outage(self, now: Optional[float] = None) -> bool:
        """
        Check whether GPS has been silent longer than the outage threshold.

        Args:
            now: Current time in seconds (defaults to the filter clock)

        Returns:
            True if no GPS fix was fused within the threshold
        """
        if self.last_gps_time is None:
            return True

        if now is None:
            now = self.clock()

        return (now - self.last_gps_time) * 1000.0 > self.gnss_outage_threshold_ms

    def get_estimated_speed(self) -> float:
        """Get estimated speed (norm of the velocity vector) in m/s."""
        return float(np.linalg.norm(self.state))

    def get_uncertainty(self) -> float:
        """Get overall uncertainty (trace of the covariance matrix)."""
        return float(np.trace(self.P))

    def get_current_state(self) -> VelocityState:
        """Get current estimated state."""
        current_state = VelocityState()
        current_state.state_vector = self.state
        current_state.timestamp = self.clock()
        return current_state

    def reset(self, new_state: Optional[VelocityState] = None):
        """Reset filter with new initial state."""
        if new_state is None:
            new_state = VelocityState()

        self.state = new_state.state_vector
        self.P = self._initialize_covariance()
        self.last_gps_time = None

        # Reset counters
        self._reset_counters()

        logger.info("EKF reset to %s", new_state)

    def get_statistics(self) -> Dict[str, Any]:
        """Get filter statistics."""
        return {
            'predictions': self.prediction_count,
            'gps_updates': self.gps_update_count,
            'obd_updates': self.obd_update_count,
            'vision_updates': self.vision_update_count,
            'clamped_innovations': self.clamped_innovation_count,
            'skipped_inputs': self.skipped_input_count,
            'estimated_speed': self.get_estimated_speed(),
            'uncertainty': self.get_uncertainty(),
            'state_uncertainty': np.sqrt(np.diag(self.P)).tolist(),
            'gnss_outage': self.is_gnss_outage()
        }
