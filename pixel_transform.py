"""
Pixel Transform Applier
Applies calibrated transfer coefficients to every pixel of a buffer
"""

import logging

import numpy as np

from color_space import rgb_to_working, working_to_rgb
from image_buffer import ImageBuffer
from transfer_calibrator import TransferCoefficients

logger = logging.getLogger(__name__)


def _ramp(values: np.ndarray, start: float, end: float) -> np.ndarray:
    """Linear 0 -> 1 ramp from start to end (either direction), clipped"""
    if end == start:
        return (values >= end).astype(np.float64)
    return np.clip((values - start) / (end - start), 0.0, 1.0)


def highlight_weight(lightness: np.ndarray, coefficients: TransferCoefficients) -> np.ndarray:
    """1.0 below the highlight knee, falling to 0.0 at the highlight limit"""
    return _ramp(lightness, coefficients.highlight_limit, coefficients.highlight_knee)


def shadow_weight(lightness: np.ndarray, coefficients: TransferCoefficients) -> np.ndarray:
    """1.0 above the shadow knee, falling to 0.0 at the shadow limit"""
    return _ramp(lightness, coefficients.shadow_limit, coefficients.shadow_knee)


def luminance_mask(lightness: np.ndarray, coefficients: TransferCoefficients) -> np.ndarray:
    """Chroma blend weight: 1.0 in the mid-tones, 0.0 at pure white and black"""
    return np.minimum(
        highlight_weight(lightness, coefficients),
        shadow_weight(lightness, coefficients),
    )


def shadow_curve(lightness: np.ndarray, coefficients: TransferCoefficients) -> np.ndarray:
    """Multiplicative shadow crush, a no-op above the cutoff"""
    floor = coefficients.shadow_floor
    if floor >= 1.0:
        return lightness
    cutoff = coefficients.shadow_cutoff
    ramp = floor + (1.0 - floor) * (lightness / cutoff)
    return np.where(lightness < cutoff, lightness * ramp, lightness)


def transform_lightness(lightness: np.ndarray, coefficients: TransferCoefficients) -> np.ndarray:
    """Affine transfer, contrast lift, shadow curve and highlight protection"""
    mapped = lightness * coefficients.scale[0] + coefficients.offset[0]
    pivot = coefficients.lightness_pivot
    mapped = pivot + (mapped - pivot) * coefficients.contrast_lift
    mapped = np.clip(mapped, 0.0, 1.0)
    mapped = shadow_curve(mapped, coefficients)

    # Keep near-white pixels where they are
    weight = highlight_weight(lightness, coefficients)
    return lightness + (mapped - lightness) * weight


def transform_working(lab: np.ndarray, coefficients: TransferCoefficients) -> np.ndarray:
    """
    Apply coefficients to an array of working-space pixels

    Args:
        lab: float array of shape (..., 3)
        coefficients: Output of the calibrator

    Returns:
        New float array of the same shape
    """
    lightness = lab[..., 0]
    weight = luminance_mask(lightness, coefficients)

    out = np.empty_like(lab)
    out[..., 0] = transform_lightness(lightness, coefficients)
    for i in (1, 2):
        chroma = lab[..., i]
        candidate = chroma * coefficients.scale[i] + coefficients.offset[i]
        out[..., i] = chroma + (candidate - chroma) * weight
    return out


def apply_transfer(image: ImageBuffer, coefficients: TransferCoefficients) -> ImageBuffer:
    """
    Produce a new buffer with the transfer applied; the input is left untouched

    Alpha passes through unchanged and the output has the input's dimensions.
    """
    if coefficients.is_identity:
        return ImageBuffer(image.pixels)

    lab = rgb_to_working(image.rgb)
    rgb = working_to_rgb(transform_working(lab, coefficients))
    logger.debug(f"Applied transfer to {image}")
    return image.with_rgb(rgb)
