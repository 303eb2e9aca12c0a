"""
Camera-based speed estimation.
"""

from .optical_flow import OpticalFlowTracker, TrackedPoint
from .visual_odometry import VisualOdometry, VisualOdometryResult, TrackingState
from .image import frame_from_rgba_buffer, to_grayscale

__all__ = ["OpticalFlowTracker", "TrackedPoint", "VisualOdometry", "VisualOdometryResult",
           "TrackingState", "frame_from_rgba_buffer", "to_grayscale"]
