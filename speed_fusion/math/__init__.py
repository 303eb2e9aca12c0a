"""
Mathematical utilities for speed fusion calculations.
"""

from .utils import (as_vec3, as_mat3, skew_matrix, symmetrize, safe_norm, clamp,
                    is_finite, kph_to_ms, ms_to_kph)
from .constants import *

__all__ = ["as_vec3", "as_mat3", "skew_matrix", "symmetrize", "safe_norm", "clamp",
           "is_finite", "kph_to_ms", "ms_to_kph"]
