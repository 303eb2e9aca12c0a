"""
Wheel speed readings decoded from the vehicle diagnostic bus.
"""

import time
from dataclasses import dataclass
from typing import Optional

from ..math.utils import kph_to_ms

# Readings older than this are not treated as live
DEFAULT_MAX_AGE_S = 2.0

@dataclass
class ObdSpeedReading:
    """Vehicle speed as reported by the bus (km/h)."""

    speed_kph: float

    # Timestamp
    timestamp: Optional[float] = None

    def __post_init__(self):
        if self.timestamp is None:
            self.timestamp = time.time()

    @property
    def speed_ms(self) -> float:
        """Get speed in m/s."""
        return kph_to_ms(self.speed_kph)

    def is_fresh(self, max_age_s: float = DEFAULT_MAX_AGE_S, now: Optional[float] = None) -> bool:
        """
        Check whether the reading is recent enough to fuse.

        Args:
            max_age_s: Maximum accepted age in seconds
            now: Current time (defaults to time.time())

        Returns:
            True if the reading is at most max_age_s old
        """
        if now is None:
            now = time.time()
        return (now - self.timestamp) <= max_age_s
