"""
Image Buffer
Immutable RGBA pixel grid passed between the host and the engine
"""

import math
from typing import Tuple, Union

import numpy as np
from PIL import Image


class ImageBufferError(ValueError):
    """Raised for empty buffers and mismatched dimensions"""


def fit_long_edge(width: int, height: int, long_edge: int) -> Tuple[int, int]:
    """
    Compute the size of an image scaled down so its long edge equals long_edge

    Aspect ratio is preserved with the short edge rounded half-up. Images that
    already fit are returned at their own size; nothing is ever upscaled.
    """
    if long_edge <= 0:
        raise ValueError(f"Long edge must be positive, got {long_edge}")
    if width <= long_edge and height <= long_edge:
        return width, height
    if width > height:
        return long_edge, max(1, int(math.floor(height * (long_edge / width) + 0.5)))
    return max(1, int(math.floor(width * (long_edge / height) + 0.5))), long_edge


class ImageBuffer:
    """Read-only H x W x 4 uint8 pixel buffer (row-major RGBA)"""

    def __init__(self, pixels: np.ndarray):
        """
        Initialize buffer from a pixel array

        Args:
            pixels: uint8 array shaped (height, width, 4), or (height, width, 3)
                in which case an opaque alpha channel is added. The array is copied.
        """
        pixels = np.asarray(pixels)
        if pixels.ndim != 3 or pixels.shape[2] not in (3, 4):
            raise ImageBufferError(f"Expected an (H, W, 3|4) pixel array, got shape {pixels.shape}")
        if pixels.shape[0] == 0 or pixels.shape[1] == 0:
            raise ImageBufferError(f"Empty image buffer ({pixels.shape[1]}x{pixels.shape[0]})")
        if pixels.dtype != np.uint8:
            raise ImageBufferError(f"Expected uint8 pixels, got {pixels.dtype}")

        if pixels.shape[2] == 3:
            alpha = np.full(pixels.shape[:2] + (1,), 255, dtype=np.uint8)
            data = np.concatenate([pixels, alpha], axis=2)
        else:
            data = pixels.copy()
        data.setflags(write=False)
        self._pixels = data

    @classmethod
    def from_rgba_bytes(cls, width: int, height: int, data: bytes) -> 'ImageBuffer':
        """Build a buffer from raw row-major RGBA bytes"""
        if width <= 0 or height <= 0:
            raise ImageBufferError(f"Empty image buffer ({width}x{height})")
        expected = width * height * 4
        if len(data) != expected:
            raise ImageBufferError(
                f"Dimension mismatch: {width}x{height} needs {expected} bytes, got {len(data)}"
            )
        pixels = np.frombuffer(bytes(data), dtype=np.uint8).reshape(height, width, 4)
        return cls(pixels)

    @classmethod
    def from_pil(cls, image: Image.Image) -> 'ImageBuffer':
        """Build a buffer from a Pillow image of any mode"""
        if image.mode != 'RGBA':
            image = image.convert('RGBA')
        return cls(np.asarray(image))

    @property
    def width(self) -> int:
        return self._pixels.shape[1]

    @property
    def height(self) -> int:
        return self._pixels.shape[0]

    @property
    def size(self) -> Tuple[int, int]:
        return self.width, self.height

    @property
    def pixel_count(self) -> int:
        return self.width * self.height

    @property
    def pixels(self) -> np.ndarray:
        """Read-only view of the full RGBA array"""
        return self._pixels

    @property
    def rgb(self) -> np.ndarray:
        return self._pixels[:, :, :3]

    @property
    def alpha(self) -> np.ndarray:
        return self._pixels[:, :, 3]

    def to_rgba_bytes(self) -> bytes:
        return self._pixels.tobytes()

    def to_pil(self) -> Image.Image:
        return Image.fromarray(np.ascontiguousarray(self._pixels))

    def with_rgb(self, rgb: np.ndarray) -> 'ImageBuffer':
        """New buffer with replaced color channels and this buffer's alpha"""
        if rgb.shape != self.rgb.shape:
            raise ImageBufferError(f"Dimension mismatch: expected {self.rgb.shape}, got {rgb.shape}")
        return ImageBuffer(np.dstack([rgb.astype(np.uint8), self.alpha]))

    def resized_to_long_edge(self, long_edge: int) -> 'ImageBuffer':
        """Downsample with Lanczos so the long edge is at most long_edge"""
        new_size = fit_long_edge(self.width, self.height, long_edge)
        if new_size == self.size:
            return self
        resized = self.to_pil().resize(new_size, Image.Resampling.LANCZOS)
        return ImageBuffer.from_pil(resized)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ImageBuffer):
            return NotImplemented
        return np.array_equal(self._pixels, other._pixels)

    def __repr__(self) -> str:
        return f"ImageBuffer({self.width}x{self.height})"


BufferLike = Union[ImageBuffer, np.ndarray, Tuple[int, int, bytes]]


def as_image_buffer(source: BufferLike) -> ImageBuffer:
    """
    Coerce a host-supplied buffer into an ImageBuffer

    Accepts an ImageBuffer, a pixel array, or a (width, height, rgba_bytes) triple.

    Raises:
        ImageBufferError: if the buffer is empty or its size does not match its dimensions
    """
    if isinstance(source, ImageBuffer):
        return source
    if isinstance(source, np.ndarray):
        return ImageBuffer(source)
    if isinstance(source, tuple) and len(source) == 3:
        width, height, data = source
        return ImageBuffer.from_rgba_bytes(int(width), int(height), data)
    raise ImageBufferError(f"Unsupported buffer type: {type(source).__name__}")
