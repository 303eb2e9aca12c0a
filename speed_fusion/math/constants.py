"""
Numerical constants and default tuning for speed fusion.
"""

# Conversion factors
KPH_TO_MS = 1000.0 / 3600.0
MS_TO_KPH = 3600.0 / 1000.0

# Numerical guards
MIN_SPEED_NORM = 0.001      # Floor on |v| for the GPS Jacobian (m/s)
MIN_INNOVATION_VARIANCE = 1e-12

# Default noise parameters
# Process noise (added once per prediction step)
Q_VELOCITY = 0.05     # Velocity process noise per axis

# Measurement noise
R_GPS_FLOOR = 0.2             # Minimum GPS speed variance
R_GPS_ACCURACY_SCALE = 0.5    # GPS variance per meter of reported accuracy
R_OBD_SPEED = 2.0             # Wheel speed variance
R_VISION_BASE = 0.5           # Vision variance at full confidence
R_VISION_MIN_CONFIDENCE = 0.1 # Confidence floor for vision variance
R_VISION_OUTAGE_SCALE = 0.1   # Trust vision heavily during GNSS outage
R_VISION_HEALTHY_SCALE = 2.5  # Vision is a cross-check when GNSS is healthy

# Kalman filter parameters
INITIAL_VELOCITY_UNCERTAINTY = 1.0     # Initial velocity std deviation (m/s)
INNOVATION_GATE_SIGMA = 4.0            # Innovations are clamped at this many sigma
GNSS_OUTAGE_THRESHOLD_MS = 1000.0      # Time without GPS before an outage is declared

# Optical flow parameters
LK_WINDOW_SIZE = 21           # Integration window (21x21)
LK_MAX_ITERATIONS = 30
LK_EPSILON = 0.01             # Convergence threshold on |delta| (px)
LK_MIN_DETERMINANT = 1e-5     # Below this G is treated as singular
MIN_EIGEN_THRESHOLD = 0.001   # Shi-Tomasi acceptance threshold
FEATURE_MIN_DISTANCE = 10     # Grid cell size for suppression (px)

# Visual odometry parameters
MAX_FEATURES = 100
MIN_FEATURES = 50             # Replenish below this count
LOST_FEATURE_COUNT = 10       # Tracking is lost at or below this count
OUTLIER_WIDTH_FRACTION = 0.2  # Displacements beyond this share of width are dropped
FULL_CONFIDENCE_POINTS = 20
OPTICAL_SCALE_FACTOR = 0.5    # Pixels/s to km/h, depends on camera FOV and mounting

# Vision simulation parameters
MOTION_BLUR_SPEED_KPH = 220.0
MOTION_BLUR_QUALITY_FACTOR = 0.7
QUALITY_JITTER = 0.15
MIN_TRACKING_QUALITY = 0.3
OPTICAL_NOISE_FACTOR = 1.2
OPTICAL_NOISE_PER_KPH = 0.01
