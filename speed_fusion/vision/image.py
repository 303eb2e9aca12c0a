"""
Image buffer helpers for the optical flow tracker.

Frames arrive as H x W x 4 (RGBA) or H x W x 3 (RGB) uint8 arrays, or as
already converted H x W grayscale arrays. All processing happens on float64
grayscale intensities in the 0-255 range.
"""

import numpy as np
from typing import Tuple

# ITU-R BT.601 luma weights
LUMA_WEIGHTS = np.array([0.299, 0.587, 0.114])

def frame_from_rgba_buffer(data, width: int, height: int) -> np.ndarray:
    """
    Wrap a flat RGBA byte buffer as an H x W x 4 array.

    Args:
        data: Flat buffer of width * height * 4 bytes
        width: Frame width in pixels
        height: Frame height in pixels

    Returns:
        np.ndarray: uint8 array of shape (height, width, 4)
    """
    if isinstance(data, np.ndarray):
        pixels = data.astype(np.uint8, copy=False).reshape(-1)
    else:
        pixels = np.frombuffer(bytes(data), dtype=np.uint8)
    if pixels.size != width * height * 4:
        raise ValueError(
            f"RGBA buffer has {pixels.size} bytes, expected {width * height * 4}"
        )
    return pixels.reshape(height, width, 4)

def to_grayscale(image: np.ndarray) -> np.ndarray:
    """
    Convert a frame to grayscale intensities.

    Y = 0.299 R + 0.587 G + 0.114 B; any alpha channel is ignored.

    Args:
        image: H x W, H x W x 3 or H x W x 4 array

    Returns:
        np.ndarray: H x W float64 array
    """
    image = np.asarray(image)
    if image.ndim == 2:
        return image.astype(np.float64)
    if image.ndim == 3 and image.shape[2] >= 3:
        return image[:, :, :3].astype(np.float64) @ LUMA_WEIGHTS
    raise ValueError(f"Unsupported image shape {image.shape}")

def central_gradients(gray: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """
    Spatial gradients by central differences.

    Border pixels have zero gradient.

    Args:
        gray: H x W intensity array

    Returns:
        (gx, gy) arrays of the same shape as gray
    """
    gx = np.zeros_like(gray, dtype=np.float64)
    gy = np.zeros_like(gray, dtype=np.float64)
    gx[1:-1, 1:-1] = (gray[1:-1, 2:] - gray[1:-1, :-2]) * 0.5
    gy[1:-1, 1:-1] = (gray[2:, 1:-1] - gray[:-2, 1:-1]) * 0.5
    return gx, gy

def box_sum(values: np.ndarray, half_window: int) -> np.ndarray:
    """
    Sum over a (2 * half_window + 1) square window centered on each pixel.

    Only pixels whose full window lies inside the image get a value; all
    others are zero.

    Args:
        values: H x W array
        half_window: Half the window size

    Returns:
        np.ndarray: H x W array of window sums
    """
    h, w = values.shape
    size = 2 * half_window + 1
    out = np.zeros((h, w), dtype=np.float64)
    if h < size or w < size:
        return out

    # Integral image with a zero row and column in front
    integral = np.zeros((h + 1, w + 1), dtype=np.float64)
    integral[1:, 1:] = np.cumsum(np.cumsum(values, axis=0), axis=1)

    sums = (integral[size:, size:] - integral[:-size, size:]
            - integral[size:, :-size] + integral[:-size, :-size])
    out[half_window:h - half_window, half_window:w - half_window] = sums
    return out

def bilinear_sample(image: np.ndarray, xs: np.ndarray, ys: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """
    Sample an image at fractional coordinates.

    Args:
        image: H x W array
        xs: Column coordinates
        ys: Row coordinates

    Returns:
        (values, valid) where valid marks samples inside the image.
        Invalid samples have value 0.
    """
    h, w = image.shape
    xs = np.asarray(xs, dtype=np.float64)
    ys = np.asarray(ys, dtype=np.float64)

    valid = (xs >= 0) & (ys >= 0) & (xs <= w - 1) & (ys <= h - 1)
    values = np.zeros(xs.shape, dtype=np.float64)
    if not np.any(valid):
        return values, valid

    xv = xs[valid]
    yv = ys[valid]
    x0v = np.floor(xv).astype(np.int64)
    y0v = np.floor(yv).astype(np.int64)
    # On the last row or column the far neighbor carries zero weight
    x1v = np.minimum(x0v + 1, w - 1)
    y1v = np.minimum(y0v + 1, h - 1)
    dx = xv - x0v
    dy = yv - y0v

    values[valid] = ((1 - dx) * (1 - dy) * image[y0v, x0v]
                     + dx * (1 - dy) * image[y0v, x1v]
                     + (1 - dx) * dy * image[y1v, x0v]
                     + dx * dy * image[y1v, x1v])
    return values, valid
