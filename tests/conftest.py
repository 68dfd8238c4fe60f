import numpy as np
import pytest

from image_buffer import ImageBuffer


def _solid(rgb, width=16, height=12):
    pixels = np.empty((height, width, 3), dtype=np.uint8)
    pixels[:, :] = rgb
    return ImageBuffer(pixels)


def _noise(low, high, width=64, height=48, seed=0):
    rng = np.random.default_rng(seed)
    return ImageBuffer(rng.integers(low, high + 1, size=(height, width, 3), dtype=np.uint8))


@pytest.fixture
def solid_image():
    """Factory for single-color images"""
    return _solid


@pytest.fixture
def noise_image():
    """Factory for seeded uniform-noise images"""
    return _noise
