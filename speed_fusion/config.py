"""
Configuration manager for the speed fusion engine.
"""

import copy
import json
import logging
import os
from typing import Dict, Any, Optional

from .math.constants import *

logger = logging.getLogger(__name__)

class FusionConfig:
    """Configuration manager for the speed fusion engine."""

    DEFAULT_CONFIG = {
        # EKF process noise parameters
        "process_noise": {
            "velocity": Q_VELOCITY
        },

        # EKF measurement noise parameters
        "measurement_noise": {
            "gps_floor": R_GPS_FLOOR,
            "gps_accuracy_scale": R_GPS_ACCURACY_SCALE,
            "obd_speed": R_OBD_SPEED,
            "vision_base": R_VISION_BASE,
            "vision_min_confidence": R_VISION_MIN_CONFIDENCE,
            "vision_outage_scale": R_VISION_OUTAGE_SCALE,
            "vision_healthy_scale": R_VISION_HEALTHY_SCALE
        },

        "gnss_outage_threshold_ms": GNSS_OUTAGE_THRESHOLD_MS,

        # Vision pipeline
        "vision": {
            "scale_factor": OPTICAL_SCALE_FACTOR,
            "max_features": MAX_FEATURES,
            "min_features": MIN_FEATURES,
            "window_size": LK_WINDOW_SIZE,
            "max_iterations": LK_MAX_ITERATIONS,
            "epsilon": LK_EPSILON,
            "min_eigen_threshold": MIN_EIGEN_THRESHOLD,
            "min_distance": FEATURE_MIN_DISTANCE,
            "simulated_lighting": 0.95
        },

        # Data logging
        "log_file": None,
        "log_level": "INFO"
    }

    def __init__(self, config_file: Optional[str] = None):
        """
        Initialize configuration.

        Args:
            config_file: Path to a JSON configuration file. Missing files
                leave the defaults in place.
        """
        self.config_file = config_file
        self.config = copy.deepcopy(self.DEFAULT_CONFIG)

        if config_file is not None:
            if os.path.exists(config_file):
                self.load_config()
            else:
                logger.info("Config file %s not found, using defaults", config_file)

    def load_config(self) -> bool:
        """
        Load configuration from file.

        Returns:
            True if loaded successfully
        """
        try:
            with open(self.config_file, 'r') as f:
                file_config = json.load(f)

            # Merge with defaults (file config overrides defaults)
            self._merge_config(self.config, file_config)

            logger.info("Configuration loaded from %s", self.config_file)
            return True

        except (OSError, ValueError, TypeError) as e:
            logger.error("Failed to load config %s: %s", self.config_file, e)
            return False

    def save_config(self, config_file: Optional[str] = None) -> bool:
        """
        Save current configuration to file.

        Args:
            config_file: Destination path (defaults to the loaded file)

        Returns:
            True if saved successfully
        """
        path = config_file or self.config_file
        if path is None:
            logger.error("No config file path to save to")
            return False

        try:
            with open(path, 'w') as f:
                json.dump(self.config, f, indent=2)

            logger.info("Configuration saved to %s", path)
            return True

        except (OSError, TypeError) as e:
            logger.error("Failed to save config %s: %s", path, e)
            return False

    def _merge_config(self, base: Dict[str, Any], override: Dict[str, Any]):
        """Recursively merge configuration dictionaries."""
        for key, value in override.items():
            if key in base and isinstance(base[key], dict) and isinstance(value, dict):
                self._merge_config(base[key], value)
            else:
                base[key] = value

    def get(self, key: str, default=None):
        """Get configuration value with optional default."""
        keys = key.split('.')
        value = self.config

        for k in keys:
            if isinstance(value, dict) and k in value:
                value = value[k]
            else:
                return default

        return value

    def set(self, key: str, value: Any):
        """Set configuration value."""
        keys = key.split('.')
        config = self.config

        for k in keys[:-1]:
            if k not in config:
                config[k] = {}
            config = config[k]

        config[keys[-1]] = value

    # Property accessors for common configuration values
    @property
    def process_noise(self) -> Dict[str, float]:
        return self.config["process_noise"]

    @property
    def measurement_noise(self) -> Dict[str, float]:
        return self.config["measurement_noise"]

    @property
    def gnss_outage_threshold_ms(self) -> float:
        return self.config["gnss_outage_threshold_ms"]

    @property
    def vision(self) -> Dict[str, Any]:
        return self.config["vision"]

    @property
    def log_file(self) -> Optional[str]:
        return self.config["log_file"]

    @property
    def log_level(self) -> str:
        return self.config["log_level"]

    def dump(self) -> str:
        """Current configuration as indented JSON."""
        return json.dumps(self.config, indent=2)

def setup_logging(config: FusionConfig) -> None:
    """
    Configure the package logger from the logging section of a config.

    Args:
        config: Configuration with log_level and optional log_file
    """
    level = logging.getLevelName(str(config.log_level).upper())
    if not isinstance(level, int):
        raise ValueError(f"Unknown log level: {config.log_level}")

    if config.log_file:
        handler = logging.FileHandler(config.log_file)
    else:
        handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))

    package_logger = logging.getLogger("speed_fusion")
    for existing in list(package_logger.handlers):
        package_logger.removeHandler(existing)
        existing.close()
    package_logger.addHandler(handler)
    package_logger.setLevel(level)
