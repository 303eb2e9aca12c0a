"""
Extended Kalman Filter implementation for speed fusion.
"""

from .ekf import VelocityEKF
from .state import VelocityState
from .models import MotionModel, MeasurementModel

__all__ = ["VelocityEKF", "VelocityState", "MotionModel", "MeasurementModel"]
