"""
IMU sample processing for the EKF prediction step.
"""

import logging
import numpy as np
import time
from dataclasses import dataclass
from typing import Optional, List, Tuple

logger = logging.getLogger(__name__)

@dataclass
class IMUData:
    """IMU sample in physical units."""

    # Accelerometer data (m/s²)
    accel_x: float
    accel_y: float
    accel_z: float

    # Gyroscope data (rad/s)
    gyro_x: float
    gyro_y: float
    gyro_z: float

    # Timestamp
    timestamp: Optional[float] = None

    def __post_init__(self):
        if self.timestamp is None:
            self.timestamp = time.time()

    @property
    def acceleration(self) -> np.ndarray:
        """Get acceleration as numpy array."""
        return np.array([self.accel_x, self.accel_y, self.accel_z])

    @property
    def angular_velocity(self) -> np.ndarray:
        """Get angular velocity as numpy array."""
        return np.array([self.gyro_x, self.gyro_y, self.gyro_z])

    def with_values(self, accel: np.ndarray, gyro: np.ndarray) -> 'IMUData':
        """Copy of this sample with new readings and the same timestamp."""
        return IMUData(
            accel_x=float(accel[0]),
            accel_y=float(accel[1]),
            accel_z=float(accel[2]),
            gyro_x=float(gyro[0]),
            gyro_y=float(gyro[1]),
            gyro_z=float(gyro[2]),
            timestamp=self.timestamp
        )

class IMUProcessor:
    """
    Calibrates and filters IMU samples before they drive the EKF.
    """

    MIN_CALIBRATION_SAMPLES = 50

    def __init__(self, alpha_accel: float = 0.1, alpha_gyro: float = 0.5):
        """
        Initialize IMU processor.

        Args:
            alpha_accel: Low-pass coefficient for the accelerometer
            alpha_gyro: Low-pass coefficient for the gyroscope
        """
        # Calibration offsets
        self.accel_offset = np.zeros(3)
        self.gyro_offset = np.zeros(3)

        # Filtered values
        self.filtered_accel = np.zeros(3)
        self.filtered_gyro = np.zeros(3)

        # Low-pass filter coefficient (alpha = dt / (dt + tau))
        self.alpha_accel = alpha_accel  # More filtering for accelerometer
        self.alpha_gyro = alpha_gyro    # Less filtering for gyroscope

        self.is_calibrated = False

        # Statistics
        self.sample_count = 0
        self.last_update_time = None

    def calibrate(self, calibration_data: List[IMUData],
                  static_threshold: float = 0.5) -> bool:
        """
        Calibrate IMU using samples taken at rest.

        The resting reading, gravity included, becomes the zero point, so
        calibrated accelerations are kinematic for a level-mounted sensor.

        Args:
            calibration_data: List of IMU samples while stationary
            static_threshold: Threshold for detecting static condition (m/s²)

        Returns:
            True if calibration successful
        """
        if len(calibration_data) < self.MIN_CALIBRATION_SAMPLES:
            logger.warning("Need at least %d samples for calibration, got %d",
                           self.MIN_CALIBRATION_SAMPLES, len(calibration_data))
            return False

        accels = np.array([d.acceleration for d in calibration_data])
        gyros = np.array([d.angular_velocity for d in calibration_data])

        # Check if data is from static condition
        accel_std = np.std(accels, axis=0)
        if np.max(accel_std) > static_threshold:
            logger.warning("Calibration data appears to be from moving condition (std %.3f m/s²)",
                           np.max(accel_std))
            return False

        self.gyro_offset = np.mean(gyros, axis=0)
        self.accel_offset = np.mean(accels, axis=0)
        self.is_calibrated = True

        logger.info("IMU calibration complete: accel offset %s m/s², gyro offset %s rad/s",
                    np.round(self.accel_offset, 3).tolist(), np.round(self.gyro_offset, 3).tolist())

        return True

    def apply_calibration(self, imu_data: IMUData) -> IMUData:
        """Apply calibration offsets to IMU data."""
        if not self.is_calibrated:
            return imu_data

        return imu_data.with_values(imu_data.acceleration - self.accel_offset,
                                    imu_data.angular_velocity - self.gyro_offset)

    def apply_low_pass_filter(self, imu_data: IMUData) -> IMUData:
        """Apply low-pass filter to reduce noise."""
        # Exponential moving average
        self.filtered_accel = (1 - self.alpha_accel) * self.filtered_accel + self.alpha_accel * imu_data.acceleration
        self.filtered_gyro = (1 - self.alpha_gyro) * self.filtered_gyro + self.alpha_gyro * imu_data.angular_velocity

        return imu_data.with_values(self.filtered_accel, self.filtered_gyro)

    def process_data(self, imu_data: IMUData, apply_filtering: bool = True) -> IMUData:
        """
        Process IMU data with calibration and filtering.

        Args:
            imu_data: Raw IMU data
            apply_filtering: Whether to apply low-pass filtering

        Returns:
            Processed IMU data
        """
        processed_data = self.apply_calibration(imu_data)

        if apply_filtering:
            processed_data = self.apply_low_pass_filter(processed_data)

        self.sample_count += 1
        self.last_update_time = processed_data.timestamp

        return processed_data

    @staticmethod
    def get_prediction_inputs(imu_data: IMUData) -> Tuple[np.ndarray, np.ndarray]:
        """
        Convert IMU data to inputs for the EKF prediction step.

        Args:
            imu_data: Processed IMU data

        Returns:
            (accel, gyro) as body-frame [ax, ay, az] and [p, q, r]
        """
        return imu_data.acceleration, imu_data.angular_velocity

    def get_statistics(self) -> dict:
        """Get processor statistics."""
        return {
            'sample_count': self.sample_count,
            'is_calibrated': self.is_calibrated,
            'last_update_time': self.last_update_time,
            'accel_offset': self.accel_offset.tolist(),
            'gyro_offset': self.gyro_offset.tolist()
        }
