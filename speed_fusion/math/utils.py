"""
Mathematical utility functions for speed fusion.

The estimator works on fixed-size 3-vectors and 3x3 matrices. These helpers
build and combine them as numpy arrays and check their shapes.
"""

import numpy as np

from .constants import KPH_TO_MS, MS_TO_KPH, MIN_SPEED_NORM

def as_vec3(values) -> np.ndarray:
    """
    Convert input to a 3-vector of floats.

    Args:
        values: Sequence or array with three elements

    Returns:
        np.ndarray: Array of shape (3,)
    """
    vec = np.asarray(values, dtype=np.float64).reshape(-1)
    if vec.shape != (3,):
        raise ValueError(f"Expected 3 elements, got {vec.size}")
    return vec

def as_mat3(values) -> np.ndarray:
    """Convert input to a 3x3 float matrix."""
    mat = np.asarray(values, dtype=np.float64)
    if mat.shape != (3, 3):
        raise ValueError(f"Expected a 3x3 matrix, got shape {mat.shape}")
    return mat

def skew_matrix(rates) -> np.ndarray:
    """
    Build the rotation-rate matrix used to linearize the velocity dynamics.

    For angular rates [p, q, r] this is the matrix whose product with v
    gives v x w, i.e. the negative of the cross product w x v.

    Args:
        rates: Angular rates [p, q, r] in rad/s

    Returns:
        np.ndarray: 3x3 skew-symmetric matrix
    """
    p, q, r = as_vec3(rates)
    return np.array([
        [0.0,   r,  -q],
        [-r,  0.0,   p],
        [q,    -p, 0.0]
    ])

def symmetrize(a) -> np.ndarray:
    """Return 0.5 * (A + A^T)."""
    mat = as_mat3(a)
    return 0.5 * (mat + mat.T)

def safe_norm(v, floor: float = MIN_SPEED_NORM) -> float:
    """
    Euclidean norm of a vector, never smaller than floor.

    Args:
        v: Input vector
        floor: Minimum returned value

    Returns:
        float: max(|v|, floor)
    """
    return max(float(np.linalg.norm(v)), floor)

def clamp(value, lower, upper):
    """Clamp value to the [lower, upper] range."""
    return max(lower, min(upper, value))

def is_finite(*values) -> bool:
    """True when every scalar or array argument is entirely finite."""
    return all(np.all(np.isfinite(np.asarray(v, dtype=np.float64))) for v in values)

def kph_to_ms(speed_kph):
    """Convert km/h to m/s."""
    return speed_kph * KPH_TO_MS

def ms_to_kph(speed_ms):
    """Convert m/s to km/h."""
    return speed_ms * MS_TO_KPH

