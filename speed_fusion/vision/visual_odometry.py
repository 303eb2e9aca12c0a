"""
Visual odometry bridge between camera frames and the speed estimator.

Two modes are offered:
1. Real frames: features are tracked frame to frame with optical flow and
   their mean displacement is turned into a speed.
2. Simulation: a noisy speed is synthesized from a known true speed, for
   when no camera is present.

Speeds are reported in km/h.
"""

import logging
import math
import numpy as np
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Tuple

from .optical_flow import OpticalFlowTracker, TrackedPoint
from ..math.utils import clamp
from ..math.constants import *

logger = logging.getLogger(__name__)

class TrackingState(Enum):
    """Feature tracking condition, derived from the feature count."""
    TRACKING = "tracking"        # Enough features, no replenishment needed
    REACQUIRING = "reacquiring"  # Below the low-water mark, detection runs
    LOST = "lost"                # Too few features to report a speed

@dataclass(frozen=True)
class VisualOdometryResult:
    """Per-frame vision speed estimate."""

    # Estimated speed in km/h
    speed: float

    # 0.0 to 1.0
    confidence: float

    # True if visual features are locked
    is_tracking: bool

    # Tracked features, for diagnostics
    features: Optional[Tuple[TrackedPoint, ...]] = None

class VisualOdometry:
    """
    Turns camera frames into speed estimates.

    Keeps a persistent feature set between calls. Not thread safe.
    """

    def __init__(self,
                 tracker: Optional[OpticalFlowTracker] = None,
                 scale_factor: float = OPTICAL_SCALE_FACTOR,
                 max_features: int = MAX_FEATURES,
                 min_features: int = MIN_FEATURES,
                 rng: Optional[np.random.Generator] = None):
        """
        Initialize the visual odometry bridge.

        Args:
            tracker: Optical flow tracker (a new one by default)
            scale_factor: Pixels/second to km/h calibration
            max_features: Feature count to replenish up to
            min_features: Feature count that triggers replenishment
            rng: Random generator for simulation mode
        """
        self.tracker = tracker or OpticalFlowTracker()
        self.scale_factor = scale_factor
        self.max_features = max_features
        self.min_features = min_features
        self.rng = rng if rng is not None else np.random.default_rng()

        self.features: List[TrackedPoint] = []
        self._frame_shape: Optional[Tuple[int, int]] = None

        # Simulation parameters
        self.optical_noise_factor = OPTICAL_NOISE_FACTOR
        self.tracking_quality = 1.0

        # Statistics
        self.frame_count = 0
        self.replenish_count = 0

    @property
    def tracking_state(self) -> TrackingState:
        """Current tracking condition from the stored feature count."""
        count = len(self.features)
        if count <= LOST_FEATURE_COUNT:
            return TrackingState.LOST
        if count < self.min_features:
            return TrackingState.REACQUIRING
        return TrackingState.TRACKING

    def reset(self):
        """Drop all features and the tracker's previous frame."""
        self.features = []
        self._frame_shape = None
        self.tracker.reset()

    def process_real_frame(self, image: np.ndarray, dt: float) -> VisualOdometryResult:
        """
        Estimate speed from a camera frame.

        Args:
            image: Frame as an H x W x 4 RGBA (or RGB / grayscale) array
            dt: Time since the previous frame in seconds

        Returns:
            VisualOdometryResult with speed in km/h
        """
        image = np.asarray(image)
        height, width = image.shape[:2]

        if self._frame_shape != (height, width):
            if self._frame_shape is not None:
                logger.info("Frame size changed to %dx%d, dropping %d features",
                            width, height, len(self.features))
            self.features = []
            self._frame_shape = (height, width)

        self.frame_count += 1

        # Feature replenishment
        if len(self.features) < self.min_features:
            new_features = self.tracker.detect_features(image, self.max_features - len(self.features))
            self.replenish_count += 1
            logger.debug("Replenished %d features (had %d)", len(new_features), len(self.features))
            self.features = self.features + new_features

        estimated_speed = 0.0
        confidence = 0.0

        if self.features:
            tracked = self.tracker.track_features(image, self.features)
            prior = {feature.id: feature for feature in self.features}

            # Mean displacement, ignoring massive jumps
            max_displacement = width * OUTLIER_WIDTH_FRACTION
            displacements = []
            for point in tracked:
                previous = prior.get(point.id)
                if previous is None:
                    continue
                distance = math.hypot(point.x - previous.x, point.y - previous.y)
                if distance < max_displacement:
                    displacements.append(distance)

            if displacements and dt > 0:
                pixels_per_second = float(np.mean(displacements)) / dt
                estimated_speed = pixels_per_second * self.scale_factor
                confidence = min(1.0, len(displacements) / FULL_CONFIDENCE_POINTS)
            elif displacements:
                logger.debug("Ignoring frame displacement with non-positive dt=%s", dt)

            self.features = tracked

        return VisualOdometryResult(
            speed=estimated_speed,
            confidence=confidence,
            is_tracking=len(self.features) > LOST_FEATURE_COUNT,
            features=tuple(self.features)
        )

    def compute_visual_odometry(self, true_speed: float, dt: float,
                                lighting_quality: float = 1.0) -> VisualOdometryResult:
        """
        Synthesize a vision speed estimate when no camera is available.

        Tracking quality follows lighting and degrades from motion blur at
        high speed, with a random fluctuation for texture loss. Noise on the
        reported speed grows with speed.

        Args:
            true_speed: Ground truth speed in km/h
            dt: Frame interval in seconds (the synthetic model ignores it)
            lighting_quality: Lighting condition in [0, 1]

        Returns:
            VisualOdometryResult with speed in km/h
        """
        quality = lighting_quality

        if true_speed > MOTION_BLUR_SPEED_KPH:
            quality *= MOTION_BLUR_QUALITY_FACTOR

        feature_noise = (self.rng.random() - 0.5) * QUALITY_JITTER
        self.tracking_quality = clamp(quality + feature_noise, 0.0, 1.0)

        if self.tracking_quality < MIN_TRACKING_QUALITY:
            return VisualOdometryResult(speed=0.0, confidence=0.0, is_tracking=False)

        speed_noise = (self.rng.random() - 0.5) * (
            self.optical_noise_factor + true_speed * OPTICAL_NOISE_PER_KPH
        )

        return VisualOdometryResult(
            speed=max(0.0, true_speed + speed_noise),
            confidence=self.tracking_quality,
            is_tracking=True
        )

    def get_statistics(self) -> dict:
        """Get bridge statistics."""
        return {
            'frames': self.frame_count,
            'replenishments': self.replenish_count,
            'feature_count': len(self.features),
            'tracking_state': self.tracking_state.value,
            'tracking_quality': self.tracking_quality,
            'last_track': dict(self.tracker.last_track_stats)
        }
