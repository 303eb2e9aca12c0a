"""
Sensor input helpers.
"""

from .imu import IMUProcessor, IMUData
from .gps import GPSSpeedFix
from .obd import ObdSpeedReading

__all__ = ["IMUProcessor", "IMUData", "GPSSpeedFix", "ObdSpeedReading"]
