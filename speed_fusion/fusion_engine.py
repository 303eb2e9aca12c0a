"""
Speed fusion engine.

Combines the sources that observe vehicle speed into one estimate:
- IMU: acceleration and angular rate drive the prediction step (~20 Hz)
- OBD-II: wheel speed, the trusted forward-speed reference
- GPS: ground speed with reported accuracy (~1 Hz)
- Camera: optical-flow speed, weighted up when GPS goes silent

Architecture:
    IMU ──────────> predict ─┐
    OBD ──────────> update ──┤
    GPS ──────────> update ──┼──> VelocityEKF ──> speed, uncertainty
    Camera ─> VO ─> update ──┘

Calls are synchronous. One engine owns its filter and feature set; callers
feeding it from several threads must serialize access.
"""

import logging
import numpy as np
from typing import Optional, Dict, Any, Callable

from .config import FusionConfig
from .ekf import VelocityEKF, VelocityState
from .vision import OpticalFlowTracker, VisualOdometry, VisualOdometryResult
from .math.utils import kph_to_ms
from .math.constants import *

logger = logging.getLogger(__name__)

class SpeedFusionEngine:
    """Vision-aided vehicle speed estimator."""

    def __init__(self, ekf: Optional[VelocityEKF] = None,
                 visual_odometry: Optional[VisualOdometry] = None,
                 simulated_lighting: float = 0.95):
        """
        Initialize the fusion engine.

        Args:
            ekf: Velocity filter (a default one at rest if omitted)
            visual_odometry: Vision bridge (a default one if omitted)
            simulated_lighting: Lighting quality used by fuse_vision()
        """
        self.ekf = ekf or VelocityEKF()
        self.visual_odometry = visual_odometry or VisualOdometry()
        self.simulated_lighting = simulated_lighting

        self.last_vision_result: Optional[VisualOdometryResult] = None

        logger.info("Speed fusion engine initialized")

    @classmethod
    def from_config(cls, config: FusionConfig,
                    clock: Optional[Callable[[], float]] = None,
                    rng: Optional[np.random.Generator] = None) -> 'SpeedFusionEngine':
        """
        Build an engine from configuration.

        Args:
            config: Fusion configuration
            clock: Wall-clock source for the GNSS outage check
            rng: Random generator for simulated vision

        Returns:
            Configured SpeedFusionEngine
        """
        vision = config.vision

        ekf = VelocityEKF(
            process_noise=config.process_noise,
            measurement_noise=config.measurement_noise,
            gnss_outage_threshold_ms=config.gnss_outage_threshold_ms,
            clock=clock
        )

        tracker = OpticalFlowTracker(
            window_size=vision.get("window_size", LK_WINDOW_SIZE),
            max_iterations=vision.get("max_iterations", LK_MAX_ITERATIONS),
            epsilon=vision.get("epsilon", LK_EPSILON),
            min_eigen_threshold=vision.get("min_eigen_threshold", MIN_EIGEN_THRESHOLD),
            min_distance=vision.get("min_distance", FEATURE_MIN_DISTANCE)
        )

        visual_odometry = VisualOdometry(
            tracker=tracker,
            scale_factor=vision.get("scale_factor", OPTICAL_SCALE_FACTOR),
            max_features=vision.get("max_features", MAX_FEATURES),
            min_features=vision.get("min_features", MIN_FEATURES),
            rng=rng
        )

        return cls(ekf=ekf, visual_odometry=visual_odometry,
                   simulated_lighting=vision.get("simulated_lighting", 0.95))

    def predict(self, accel: np.ndarray, gyro: np.ndarray, dt: float) -> VelocityState:
        """
        Propagate the estimate with IMU inputs.

        Args:
            accel: Body-frame acceleration [ax, ay, az] in m/s²
            gyro: Body angular rates [p, q, r] in rad/s
            dt: Time step in seconds

        Returns:
            Predicted velocity state
        """
        return self.ekf.predict(accel, gyro, dt)

    def fuse_gps(self, speed: float, accuracy: float = 1.0) -> VelocityState:
        """Fuse a GPS speed (m/s) with its accuracy (m)."""
        return self.ekf.fuse_gps(speed, accuracy)

    def fuse_obd_speed(self, speed: float) -> VelocityState:
        """Fuse wheel speed (m/s) from the vehicle bus."""
        return self.ekf.fuse_obd_speed(speed)

    def fuse_vision(self, true_speed_kph: float, dt: float,
                    lighting_quality: Optional[float] = None) -> VisualOdometryResult:
        """
        Fuse a simulated vision measurement.

        Used when no camera is present: the vision bridge synthesizes a noisy
        estimate of the given true speed.

        Args:
            true_speed_kph: Ground truth speed in km/h
            dt: Frame interval in seconds
            lighting_quality: Lighting in [0, 1] (configured default if omitted)

        Returns:
            The vision result that was fused
        """
        if lighting_quality is None:
            lighting_quality = self.simulated_lighting

        is_outage = self.ekf.is_gnss_outage()
        result = self.visual_odometry.compute_visual_odometry(true_speed_kph, dt, lighting_quality)
        self._apply_vision_measurement(result, is_outage)
        return result

    def process_camera_frame(self, image: np.ndarray, dt: float) -> VisualOdometryResult:
        """
        Estimate speed from a camera frame and fuse it.

        Args:
            image: H x W x 4 RGBA frame
            dt: Time since the previous frame in seconds

        Returns:
            The vision result that was fused
        """
        is_outage = self.ekf.is_gnss_outage()
        result = self.visual_odometry.process_real_frame(image, dt)
        self._apply_vision_measurement(result, is_outage)
        return result

    def _apply_vision_measurement(self, result: VisualOdometryResult, is_gnss_outage: bool):
        """Fuse a vision result if it carries a speed."""
        self.last_vision_result = result

        if not (result.is_tracking and result.speed > 0):
            logger.debug("Vision result not fused (tracking=%s, speed=%.2f)",
                         result.is_tracking, result.speed)
            return

        self.ekf.fuse_vision_speed(kph_to_ms(result.speed), is_gnss_outage, result.confidence)

    def get_estimated_speed(self) -> float:
        """Get fused speed in m/s."""
        return self.ekf.get_estimated_speed()

    def get_uncertainty(self) -> float:
        """Get trace of the velocity covariance."""
        return self.ekf.get_uncertainty()

    def get_current_state(self) -> VelocityState:
        """Get current velocity estimate."""
        return self.ekf.get_current_state()

    def reset(self):
        """Reset the filter to rest and drop all tracked features."""
        self.ekf.reset()
        self.visual_odometry.reset()
        self.last_vision_result = None

    def get_statistics(self) -> Dict[str, Any]:
        """Get engine statistics."""
        return {
            'ekf': self.ekf.get_statistics(),
            'vision': self.visual_odometry.get_statistics()
        }
