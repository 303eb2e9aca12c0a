"""
Sparse optical flow: Shi-Tomasi feature detection and iterative
Lucas-Kanade tracking on grayscale frames.

Tracking runs on a single image level. There is no image pyramid, so
large inter-frame motions (beyond roughly half the window) are not
recovered; the caller keeps the frame rate high enough for this.
"""

import itertools
import logging
import math
import numpy as np
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional

from .image import to_grayscale, central_gradients, box_sum, bilinear_sample
from ..math.constants import *

logger = logging.getLogger(__name__)

@dataclass(frozen=True)
class TrackedPoint:
    """A feature point followed across frames."""

    # Pixel coordinates
    x: float
    y: float

    # Identity, unique within one tracker
    id: int

    # Frames successfully tracked
    age: int = 0

    # Detector score (minimum eigenvalue), 1.0 once tracked
    confidence: float = 0.0

    @property
    def position(self) -> np.ndarray:
        """Get position as [x, y] vector."""
        return np.array([self.x, self.y])

class OpticalFlowTracker:
    """
    KLT feature tracker.

    Owns the previous grayscale frame and the feature id counter. Ids come
    from a monotonic counter and are never reused by one tracker instance.
    """

    def __init__(self,
                 window_size: int = LK_WINDOW_SIZE,
                 max_iterations: int = LK_MAX_ITERATIONS,
                 epsilon: float = LK_EPSILON,
                 min_determinant: float = LK_MIN_DETERMINANT,
                 min_eigen_threshold: float = MIN_EIGEN_THRESHOLD,
                 min_distance: int = FEATURE_MIN_DISTANCE):
        """
        Initialize the tracker.

        Args:
            window_size: Side of the square integration window (odd)
            max_iterations: Lucas-Kanade iteration limit per feature
            epsilon: Convergence threshold on the update magnitude (px)
            min_determinant: Minimum |det(G)| before a feature is dropped
            min_eigen_threshold: Minimum eigenvalue for a detected corner
            min_distance: Grid cell size used to spread detections (px)
        """
        self.window_size = window_size
        self.half_window = window_size // 2
        self.max_iterations = max_iterations
        self.epsilon = epsilon
        self.min_determinant = min_determinant
        self.min_eigen_threshold = min_eigen_threshold
        self.min_distance = min_distance

        self._ids = itertools.count(1)
        self._previous_gray: Optional[np.ndarray] = None

        offsets_y, offsets_x = np.mgrid[-self.half_window:self.half_window + 1,
                                        -self.half_window:self.half_window + 1]
        self._offsets_x = offsets_x.ravel().astype(np.float64)
        self._offsets_y = offsets_y.ravel().astype(np.float64)

        self.last_track_stats: Dict[str, int] = self._empty_stats()

    @staticmethod
    def _empty_stats() -> Dict[str, int]:
        return {'converged': 0, 'out_of_bounds': 0, 'singular': 0, 'not_converged': 0}

    def reset(self):
        """Forget the previous frame. Feature ids keep counting."""
        self._previous_gray = None

    def min_eigenvalue_map(self, gray: np.ndarray) -> np.ndarray:
        """
        Shi-Tomasi response for every pixel.

        The structure tensor [[Sxx, Sxy], [Sxy, Syy]] is accumulated over the
        integration window; the response is its smaller eigenvalue. Pixels
        whose window does not fit in the image score zero.

        Args:
            gray: H x W intensity array

        Returns:
            np.ndarray: H x W array of minimum eigenvalues
        """
        gx, gy = central_gradients(gray)

        sxx = box_sum(gx * gx, self.half_window)
        syy = box_sum(gy * gy, self.half_window)
        sxy = box_sum(gx * gy, self.half_window)

        # (trace - sqrt(trace^2 - 4 det)) / 2, with the radicand written as a sum of squares
        trace = sxx + syy
        diff = np.sqrt((sxx - syy) ** 2 + 4.0 * sxy ** 2)
        return (trace - diff) * 0.5

    def detect_features(self, image: np.ndarray, max_count: int = MAX_FEATURES) -> List[TrackedPoint]:
        """
        Detect good features to track.

        The image is split into min_distance sized cells; each cell
        contributes at most its strongest pixel, if that pixel's response is
        above the threshold. Cells are visited in raster order.

        Args:
            image: Frame (RGBA, RGB or grayscale)
            max_count: Maximum number of features to return

        Returns:
            List of new features with age 0
        """
        features: List[TrackedPoint] = []
        if max_count <= 0:
            return features

        gray = to_grayscale(image)
        eigen = self.min_eigenvalue_map(gray)
        h, w = gray.shape
        half = self.half_window
        step = self.min_distance

        for y in range(half, h - half, step):
            for x in range(half, w - half, step):
                block = eigen[y:y + step, x:x + step]
                by, bx = np.unravel_index(np.argmax(block), block.shape)
                value = float(block[by, bx])

                if value > self.min_eigen_threshold:
                    features.append(TrackedPoint(
                        x=float(x + bx),
                        y=float(y + by),
                        id=next(self._ids),
                        age=0,
                        confidence=value
                    ))

                if len(features) >= max_count:
                    return features

        logger.debug("Detected %d features in %dx%d frame", len(features), w, h)
        return features

    def track_features(self, image: np.ndarray, prior_features: Iterable[TrackedPoint],
                       previous_image: Optional[np.ndarray] = None) -> List[TrackedPoint]:
        """
        Track features from the previous frame into this one.

        The previous frame is previous_image when given, otherwise the frame
        passed to the last call. On the first call, or after the frame size
        changes, the current frame is its own predecessor.

        Features are dropped when their window leaves the image, when the
        window has too little texture (|det G| below the minimum), or when
        the iteration does not converge.

        Args:
            image: Current frame
            prior_features: Features located in the previous frame
            previous_image: Optional explicit previous frame

        Returns:
            Tracked features with age incremented, in input order
        """
        current = to_grayscale(image)

        if previous_image is not None:
            previous = to_grayscale(previous_image)
            if previous.shape != current.shape:
                raise ValueError(
                    f"Frame size mismatch: previous {previous.shape}, current {current.shape}"
                )
        elif self._previous_gray is not None and self._previous_gray.shape == current.shape:
            previous = self._previous_gray
        else:
            if self._previous_gray is not None:
                logger.info("Frame size changed to %dx%d, restarting tracking",
                            current.shape[1], current.shape[0])
            previous = current

        self._previous_gray = current

        grad_x, grad_y = central_gradients(previous)
        stats = self._empty_stats()
        tracked: List[TrackedPoint] = []

        for point in prior_features:
            result = self._track_point(previous, current, grad_x, grad_y, point, stats)
            if result is not None:
                tracked.append(result)

        self.last_track_stats = stats
        logger.debug("Tracking stats: %s", stats)
        return tracked

    def _window_inside(self, u: float, v: float, width: int, height: int) -> bool:
        half = self.half_window
        return half <= u < width - half and half <= v < height - half

    def _track_point(self, previous: np.ndarray, current: np.ndarray,
                     grad_x: np.ndarray, grad_y: np.ndarray,
                     point: TrackedPoint, stats: Dict[str, int]) -> Optional[TrackedPoint]:
        """Run iterative Lucas-Kanade for one feature."""
        h, w = current.shape

        if not self._window_inside(point.x, point.y, w, h):
            stats['out_of_bounds'] += 1
            return None

        # Template window anchored at the feature's previous position
        tx = point.x + self._offsets_x
        ty = point.y + self._offsets_y
        template, _ = bilinear_sample(previous, tx, ty)
        ix, _ = bilinear_sample(grad_x, tx, ty)
        iy, _ = bilinear_sample(grad_y, tx, ty)

        u, v = point.x, point.y

        for _ in range(self.max_iterations):
            if not self._window_inside(u, v, w, h):
                stats['out_of_bounds'] += 1
                return None

            warped, valid = bilinear_sample(current, u + self._offsets_x, v + self._offsets_y)
            ixv = ix[valid]
            iyv = iy[valid]
            error = warped[valid] - template[valid]

            # Normal equations G * delta = b
            gxx = float(ixv @ ixv)
            gyy = float(iyv @ iyv)
            gxy = float(ixv @ iyv)
            bx = float(ixv @ error)
            by = float(iyv @ error)

            det = gxx * gyy - gxy * gxy
            if abs(det) < self.min_determinant:
                stats['singular'] += 1
                return None

            delta_x = (gyy * bx - gxy * by) / det
            delta_y = (gxx * by - gxy * bx) / det

            u -= delta_x
            v -= delta_y

            if math.hypot(delta_x, delta_y) < self.epsilon:
                stats['converged'] += 1
                return TrackedPoint(
                    x=u,
                    y=v,
                    id=point.id,
                    age=point.age + 1,
                    confidence=1.0
                )

        stats['not_converged'] += 1
        return None
