"""
Statistics Extractor
Reduces an image to per-channel mean and standard deviation in the working space
"""

import logging
from dataclasses import dataclass
from typing import Dict, Tuple

import numpy as np

from color_space import rgb_to_working
from image_buffer import ImageBuffer

logger = logging.getLogger(__name__)


# A pixel whose R, G and B are all past these limits counts as clipped
CLIPPED_HIGHLIGHT_MIN = 250
CRUSHED_SHADOW_MAX = 5


@dataclass(frozen=True)
class ColorStatistics:
    """Per-channel (L, a, b) mean and population standard deviation

    Fields:
        mean: Channel means in working-space units.
        std: Channel standard deviations, always >= 0.
        pixel_count: Number of pixels that contributed. Zero for the sentinel.
    """
    mean: Tuple[float, float, float]
    std: Tuple[float, float, float]
    pixel_count: int = 0

    @classmethod
    def sentinel(cls) -> 'ColorStatistics':
        """Fallback used when no pixel qualifies"""
        return cls(mean=(0.0, 0.0, 0.0), std=(1.0, 1.0, 1.0), pixel_count=0)

    @property
    def is_sentinel(self) -> bool:
        return self.pixel_count == 0

    def as_dict(self) -> Dict[str, object]:
        return {
            'mean': list(self.mean),
            'std': list(self.std),
            'pixel_count': self.pixel_count,
        }


def qualifying_mask(rgb: np.ndarray, exclude_extremes: bool) -> np.ndarray:
    """
    Boolean mask of pixels that contribute to the statistics

    Args:
        rgb: uint8 array of shape (..., 3)
        exclude_extremes: Drop pixels that are clipped white or crushed black

    Returns:
        Boolean array of shape rgb.shape[:-1]
    """
    if not exclude_extremes:
        return np.ones(rgb.shape[:-1], dtype=bool)
    clipped = np.all(rgb > CLIPPED_HIGHLIGHT_MIN, axis=-1)
    crushed = np.all(rgb < CRUSHED_SHADOW_MAX, axis=-1)
    return ~(clipped | crushed)


def extract_statistics(image: ImageBuffer, exclude_extremes: bool = True) -> ColorStatistics:
    """
    Compute working-space statistics for an image

    Never raises: an image with no qualifying pixels yields the sentinel.

    Args:
        image: Source buffer (alpha is ignored)
        exclude_extremes: Skip clipped highlights and crushed shadows

    Returns:
        ColorStatistics for this image at this resolution
    """
    rgb = image.rgb.reshape(-1, 3)
    samples = rgb[qualifying_mask(rgb, exclude_extremes)]
    count = int(samples.shape[0])

    if count == 0:
        logger.debug(f"No qualifying pixels in {image}, using sentinel statistics")
        return ColorStatistics.sentinel()

    lab = rgb_to_working(samples)
    mean = lab.mean(axis=0)
    std = np.sqrt(np.maximum(((lab - mean) ** 2).mean(axis=0), 0.0))

    stats = ColorStatistics(
        mean=(float(mean[0]), float(mean[1]), float(mean[2])),
        std=(float(std[0]), float(std[1]), float(std[2])),
        pixel_count=count,
    )
    logger.debug(f"Statistics for {image}: mean={stats.mean} std={stats.std} ({count} px)")
    return stats
