"""
Velocity state representation for the EKF.
"""

import numpy as np
from dataclasses import dataclass
from typing import Optional
import time

@dataclass
class VelocityState:
    """
    Represents the body-frame vehicle velocity.

    State vector: [vx, vy, vz]
    - vx: Forward velocity in m/s
    - vy: Lateral velocity in m/s
    - vz: Vertical velocity in m/s
    """

    # Velocity (m/s)
    vx: float = 0.0
    vy: float = 0.0
    vz: float = 0.0

    # Timestamp
    timestamp: Optional[float] = None

    def __post_init__(self):
        if self.timestamp is None:
            self.timestamp = time.time()

    @property
    def state_vector(self) -> np.ndarray:
        """Get state as numpy vector."""
        return np.array([self.vx, self.vy, self.vz], dtype=np.float64)

    @state_vector.setter
    def state_vector(self, vector: np.ndarray):
        """Set state from numpy vector."""
        if len(vector) != 3:
            raise ValueError("State vector must have 3 elements")

        self.vx = float(vector[0])
        self.vy = float(vector[1])
        self.vz = float(vector[2])

    @property
    def speed(self) -> float:
        """Get vehicle speed in m/s."""
        return float(np.sqrt(self.vx**2 + self.vy**2 + self.vz**2))

    def copy(self) -> 'VelocityState':
        """Create a copy of the state."""
        return VelocityState(
            vx=self.vx,
            vy=self.vy,
            vz=self.vz,
            timestamp=self.timestamp
        )

    def __str__(self) -> str:
        return (
            f"VelocityState(vel=[{self.vx:.2f}, {self.vy:.2f}, {self.vz:.2f}], "
            f"speed={self.speed:.2f})"
        )
