"""
Vision-aided vehicle speed fusion.

This package provides platform-independent implementations of:
- Extended Kalman Filter for body-frame velocity
- Optical flow feature tracking and visual odometry
- Sensor input helpers and configuration
"""

__version__ = "1.0.0"
__author__ = "DR Vehicle Team"

from .ekf import VelocityEKF, VelocityState
from .vision import OpticalFlowTracker, VisualOdometry, VisualOdometryResult, TrackedPoint
from .fusion_engine import SpeedFusionEngine
from .config import FusionConfig, setup_logging

__all__ = [
    "VelocityEKF",
    "VelocityState",
    "OpticalFlowTracker",
    "VisualOdometry",
    "VisualOdometryResult",
    "TrackedPoint",
    "SpeedFusionEngine",
    "FusionConfig",
    "setup_logging"
]
