"""
GPS speed fixes as delivered by a position watch callback.
"""

import math
import time
from dataclasses import dataclass
from typing import Optional

@dataclass
class GPSSpeedFix:
    """GPS ground speed with its reported accuracy."""

    # Ground speed (m/s)
    speed: float

    # Reported horizontal accuracy (meters)
    accuracy: float = 1.0

    # Timestamp
    timestamp: Optional[float] = None

    def __post_init__(self):
        if self.timestamp is None:
            self.timestamp = time.time()

    @property
    def is_valid(self) -> bool:
        """Check if the fix carries a usable speed."""
        return (self.speed is not None and math.isfinite(self.speed) and self.speed >= 0
                and math.isfinite(self.accuracy) and self.accuracy >= 0)

    def age(self, now: Optional[float] = None) -> float:
        """Seconds since the fix was taken."""
        if now is None:
            now = time.time()
        return now - self.timestamp
