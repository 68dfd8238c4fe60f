"""
Transfer Calibrator
Derives per-channel scale/offset coefficients and the lightness curve parameters
that move a target's working-space statistics toward a reference's.

The tuning constants below were chosen empirically against the visual output
and define the look of the result. Changing any of them changes the output.
"""

import logging
from dataclasses import dataclass
from typing import Tuple

from color_statistics import ColorStatistics

logger = logging.getLogger(__name__)


# Reference std is capped before use so a very contrasty or saturated
# reference cannot blow out the target
REFERENCE_STD_CEILING = 0.18

# Bounds for the raw std ratio of each channel
MIN_CHANNEL_SCALE = 1.0 / 3.0
MAX_CHANNEL_SCALE = 3.0

# Target std at or below this is treated as flat (scale 1.0)
STD_EPSILON = 1e-4

# Share of the std ratio applied at standard intensity
SCALE_BLEND = 0.5

# Share of the mean shift applied at standard intensity
MEAN_BLEND = 0.4

# Intensity that reproduces the standard strength (factor 1.0)
STANDARD_INTENSITY = 50
MAX_INTENSITY = 100

# Shadow crush: below the cutoff lightness is multiplied by a factor ramping
# from 1.0 at the cutoff down to the floor at zero lightness
SHADOW_CUTOFF = 2.0 / 3.0
SHADOW_GAIN = 1.25

# Global stretch of lightness around the mapped mean
CONTRAST_LIFT = 1.05

# Luminance mask ramps on original lightness. Chroma and lightness changes
# fade out between knee and limit.
HIGHLIGHT_KNEE = 0.85
HIGHLIGHT_LIMIT = 0.98
SHADOW_KNEE = 0.25
SHADOW_LIMIT = 0.10


@dataclass(frozen=True)
class TransferCoefficients:
    """Complete description of one calibrated transform

    Fields:
        scale: Per-channel multiplier A for (L, a, b).
        offset: Per-channel offset B for (L, a, b).
        contrast_lift: Lightness stretch factor around lightness_pivot.
        lightness_pivot: Mapped mean lightness the stretch pivots on.
        shadow_floor: Shadow curve factor at zero lightness (1.0 = no crush).
        shadow_cutoff: Lightness below which the shadow curve applies.
        highlight_knee / highlight_limit: Mask ramp toward white.
        shadow_knee / shadow_limit: Mask ramp toward black.
    """
    scale: Tuple[float, float, float] = (1.0, 1.0, 1.0)
    offset: Tuple[float, float, float] = (0.0, 0.0, 0.0)
    contrast_lift: float = 1.0
    lightness_pivot: float = 0.5
    shadow_floor: float = 1.0
    shadow_cutoff: float = SHADOW_CUTOFF
    highlight_knee: float = HIGHLIGHT_KNEE
    highlight_limit: float = HIGHLIGHT_LIMIT
    shadow_knee: float = SHADOW_KNEE
    shadow_limit: float = SHADOW_LIMIT

    @property
    def is_identity(self) -> bool:
        """True when applying these coefficients changes nothing"""
        return (
            all(s == 1.0 for s in self.scale)
            and all(o == 0.0 for o in self.offset)
            and self.contrast_lift == 1.0
            and self.shadow_floor >= 1.0
        )


def intensity_factor(intensity: int) -> float:
    """Map the 0-100 user intensity to a strength factor (50 -> 1.0)"""
    if not 0 <= intensity <= MAX_INTENSITY:
        raise ValueError(f"Intensity must be within 0-{MAX_INTENSITY}, got {intensity}")
    return intensity / float(STANDARD_INTENSITY)


def _clamp(value: float, low: float, high: float) -> float:
    return min(high, max(low, value))


def raw_channel_scale(ref_std: float, tgt_std: float) -> float:
    """Clamped ratio of capped reference std to target std"""
    if tgt_std <= STD_EPSILON:
        return 1.0
    capped = min(ref_std, REFERENCE_STD_CEILING)
    return _clamp(capped / tgt_std, MIN_CHANNEL_SCALE, MAX_CHANNEL_SCALE)


def shadow_floor(shadow_strength: int, factor: float) -> float:
    """Shadow curve value at zero lightness, never below 0"""
    if not 0 <= shadow_strength <= 100:
        raise ValueError(f"Shadow strength must be within 0-100, got {shadow_strength}")
    depth = shadow_strength / 100.0 * SHADOW_GAIN * min(factor, 1.0)
    return max(0.0, 1.0 - depth)


def calibrate(
    ref: ColorStatistics,
    tgt: ColorStatistics,
    intensity: int,
    shadow_strength: int,
    link_chroma: bool = False,
) -> TransferCoefficients:
    """
    Derive transfer coefficients from reference and target statistics

    Pure function of its arguments: identical inputs give identical results.

    Args:
        ref: Reference image statistics
        tgt: Target image statistics
        intensity: 0-100, 50 is the standard strength, 0 the identity
        shadow_strength: 0-100, how strongly near-black tones are compressed
        link_chroma: Use one shared scale for both chroma channels

    Returns:
        TransferCoefficients ready for the pixel transform
    """
    factor = intensity_factor(intensity)
    floor = shadow_floor(shadow_strength, factor)

    raw = [raw_channel_scale(ref.std[i], tgt.std[i]) for i in range(3)]
    if link_chroma:
        shared = raw_channel_scale(
            (ref.std[1] + ref.std[2]) / 2.0,
            (tgt.std[1] + tgt.std[2]) / 2.0,
        )
        raw[1] = raw[2] = shared

    scale = []
    offset = []
    for i in range(3):
        effective = 1.0 + (raw[i] - 1.0) * SCALE_BLEND * factor
        scale.append(effective)
        offset.append((ref.mean[i] - tgt.mean[i] * effective) * factor * MEAN_BLEND)

    coefficients = TransferCoefficients(
        scale=(scale[0], scale[1], scale[2]),
        offset=(offset[0], offset[1], offset[2]),
        contrast_lift=1.0 + (CONTRAST_LIFT - 1.0) * factor,
        lightness_pivot=tgt.mean[0] * scale[0] + offset[0],
        shadow_floor=floor,
    )
    logger.debug(
        f"Calibrated intensity={intensity} shadow={shadow_strength}: "
        f"scale={coefficients.scale} offset={coefficients.offset} "
        f"lift={coefficients.contrast_lift:.3f} floor={coefficients.shadow_floor:.3f}"
    )
    return coefficients
