"""
Color Space Converter
Maps 8-bit display RGB to the Oklab working space (lightness + two opponent
chroma channels) and back. All statistics and transfer math run in this space.
"""

from typing import Tuple

import numpy as np


# Linear sRGB -> cone response (Oklab M1, Ottosson 2020)
RGB_TO_LMS = np.array([
    [0.4122214708, 0.5363325363, 0.0514459929],
    [0.2119034982, 0.6806995451, 0.1073969566],
    [0.0883024619, 0.2817188376, 0.6299787005],
])

# Cube-rooted cone response -> L, a, b (Oklab M2)
LMS_TO_OKLAB = np.array([
    [0.2104542553, 0.7936177850, -0.0040720468],
    [1.9779984951, -2.4285922050, 0.4505937099],
    [0.0259040371, 0.7827717662, -0.8086757660],
])

# Exact inverses so that a round trip reproduces every 8-bit triple
LMS_TO_RGB = np.linalg.inv(RGB_TO_LMS)
OKLAB_TO_LMS = np.linalg.inv(LMS_TO_OKLAB)

# Keeps the cube root away from zero for pure black
LMS_FLOOR = 1e-12

# sRGB transfer function breakpoints (IEC 61966-2-1)
SRGB_DECODE_THRESHOLD = 0.04045
SRGB_ENCODE_THRESHOLD = 0.0031308
SRGB_LINEAR_SLOPE = 12.92
SRGB_GAMMA = 2.4


def _build_srgb_to_linear_table() -> np.ndarray:
    """Precompute the sRGB decode curve for all 256 code values"""
    x = np.arange(256, dtype=np.float64) / 255.0
    table = np.where(
        x <= SRGB_DECODE_THRESHOLD,
        x / SRGB_LINEAR_SLOPE,
        ((x + 0.055) / 1.055) ** SRGB_GAMMA,
    )
    table.setflags(write=False)
    return table


SRGB_TO_LINEAR = _build_srgb_to_linear_table()


def linear_to_srgb(linear: np.ndarray) -> np.ndarray:
    """Encode linear-light values to 8-bit sRGB, clamped to [0, 255]"""
    linear = np.clip(linear, 0.0, 1.0)
    encoded = np.where(
        linear <= SRGB_ENCODE_THRESHOLD,
        linear * SRGB_LINEAR_SLOPE,
        1.055 * np.power(linear, 1.0 / SRGB_GAMMA) - 0.055,
    )
    return np.clip(np.rint(encoded * 255.0), 0, 255).astype(np.uint8)


def rgb_to_working(rgb: np.ndarray) -> np.ndarray:
    """Convert an array of 8-bit RGB triples to the working space

    Args:
        rgb: uint8 array of shape (..., 3)

    Returns:
        float64 array of the same shape holding (L, a, b)
    """
    rgb = np.asarray(rgb, dtype=np.uint8)
    linear = SRGB_TO_LINEAR[rgb]
    lms = linear @ RGB_TO_LMS.T
    lms_ = np.cbrt(np.maximum(lms, LMS_FLOOR))
    return lms_ @ LMS_TO_OKLAB.T


def working_to_rgb(lab: np.ndarray) -> np.ndarray:
    """Convert working-space (L, a, b) values back to 8-bit RGB

    Out-of-gamut values are clamped per channel after the gamma encode.
    """
    lab = np.asarray(lab, dtype=np.float64)
    lms_ = lab @ OKLAB_TO_LMS.T
    lms = lms_ * lms_ * lms_
    linear = lms @ LMS_TO_RGB.T
    return linear_to_srgb(linear)


def to_working(r: int, g: int, b: int) -> Tuple[float, float, float]:
    """Convert a single RGB triple to (L, a, b)"""
    lab = rgb_to_working(np.array([r, g, b], dtype=np.uint8))
    return float(lab[0]), float(lab[1]), float(lab[2])


def from_working(L: float, a: float, b: float) -> Tuple[int, int, int]:
    """Convert a single (L, a, b) triple to 8-bit RGB"""
    rgb = working_to_rgb(np.array([L, a, b], dtype=np.float64))
    return int(rgb[0]), int(rgb[1]), int(rgb[2])
