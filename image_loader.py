"""
Image Loader
Decodes image files into engine buffers and encodes processed buffers to disk.
RAW files go through rawpy, everything else through Pillow.
"""

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

import numpy as np
import rawpy
from PIL import Image, ImageOps, UnidentifiedImageError

from image_buffer import ImageBuffer

logger = logging.getLogger(__name__)


DEFAULT_STANDARD_EXTENSIONS = ['.jpg', '.jpeg', '.png', '.webp', '.tif', '.tiff']
DEFAULT_RAW_EXTENSIONS = ['.cr2', '.cr3', '.nef', '.arw', '.dng', '.raf', '.orf', '.rw2']
DEFAULT_MAX_FILE_SIZE_MB = 15
DEFAULT_JPEG_QUALITY = 92
OUTPUT_SUFFIX = '_adjusted'

FORMAT_EXTENSIONS = {
    'jpeg': '.jpg',
    'jpg': '.jpg',
    'png': '.png',
    'tiff': '.tif',
}


class ImageLoadError(ValueError):
    """Raised when a file cannot be used as an engine input"""


class ImageLoader:
    """Read and write image files for the command-line host"""

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        self.config = config or {}
        input_config = self.config.get('input', {})
        extensions = input_config.get('supported_extensions', {})
        self.standard_extensions = self._normalize(extensions.get('standard', DEFAULT_STANDARD_EXTENSIONS))
        self.raw_extensions = self._normalize(extensions.get('raw', DEFAULT_RAW_EXTENSIONS))
        self.raw_processing = input_config.get('raw_processing', True)
        self.max_file_size_mb = input_config.get('max_file_size_mb', DEFAULT_MAX_FILE_SIZE_MB)

        output_config = self.config.get('output', {})
        self.output_format = output_config.get('format', 'jpeg').lower()
        self.jpeg_quality = output_config.get('jpeg_quality', DEFAULT_JPEG_QUALITY)
        if self.output_format not in FORMAT_EXTENSIONS:
            logger.warning(f"Unknown output format {self.output_format}, using jpeg")
            self.output_format = 'jpeg'

    @staticmethod
    def _normalize(extensions: List[str]) -> List[str]:
        return [ext.lower() if ext.startswith('.') else f".{ext.lower()}" for ext in extensions]

    def is_supported(self, path: Path) -> bool:
        suffix = path.suffix.lower()
        if suffix in self.raw_extensions:
            return self.raw_processing
        return suffix in self.standard_extensions

    def load(self, file_path: str) -> ImageBuffer:
        """
        Load an image file as an RGBA buffer

        Args:
            file_path: Path to a supported image or RAW file

        Returns:
            ImageBuffer with the decoded pixels

        Raises:
            ImageLoadError: if the file is missing, too large, unsupported or unreadable
        """
        path = Path(file_path)
        if not path.exists() or not path.is_file():
            raise ImageLoadError(f"File not found: {path}")
        if not self.is_supported(path):
            raise ImageLoadError(f"Unsupported file type: {path.name}")

        size_mb = path.stat().st_size / (1024 * 1024)
        if size_mb > self.max_file_size_mb:
            raise ImageLoadError(f"File too large: {path.name} ({size_mb:.1f} MB > {self.max_file_size_mb} MB)")

        if path.suffix.lower() in self.raw_extensions:
            buffer = self._load_raw(path)
        else:
            buffer = self._load_standard(path)
        logger.info(f"Loaded {path.name}: {buffer.width}x{buffer.height}")
        return buffer

    def _load_raw(self, path: Path) -> ImageBuffer:
        """Demosaic a RAW file to 8-bit sRGB"""
        try:
            with rawpy.imread(str(path)) as raw:
                rgb = raw.postprocess(
                    use_camera_wb=True,
                    use_auto_wb=False,
                    no_auto_bright=False,
                    output_bps=8,
                    output_color=rawpy.ColorSpace.sRGB,
                    demosaic_algorithm=rawpy.DemosaicAlgorithm.AHD,
                )
        except (rawpy.LibRawError, OSError) as e:
            raise ImageLoadError(f"Could not decode RAW file {path.name}: {e}") from e

        if rgb.ndim != 3 or rgb.shape[2] != 3:
            raise ImageLoadError(f"Unexpected RAW image shape: {rgb.shape}")
        return ImageBuffer(rgb.astype(np.uint8))

    def _load_standard(self, path: Path) -> ImageBuffer:
        """Decode a standard format, honoring EXIF orientation"""
        try:
            with Image.open(path) as image:
                image = ImageOps.exif_transpose(image)
                return ImageBuffer.from_pil(image.convert('RGBA'))
        except (UnidentifiedImageError, OSError) as e:
            raise ImageLoadError(f"File is not a readable image: {path.name}") from e

    def output_name(self, source: Path) -> str:
        """File name for the processed version of source"""
        return f"{Path(source).stem}{OUTPUT_SUFFIX}{FORMAT_EXTENSIONS[self.output_format]}"

    def save(self, buffer: ImageBuffer, output_path: Path):
        """Encode a buffer in the configured output format"""
        output_path = Path(output_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        image = buffer.to_pil()

        if self.output_format in ('jpeg', 'jpg'):
            image.convert('RGB').save(
                output_path,
                format='JPEG',
                quality=self.jpeg_quality,
                optimize=True,
            )
        elif self.output_format == 'png':
            image.save(output_path, format='PNG')
        else:
            image.save(output_path, format='TIFF', compression='tiff_lzw')

        logger.info(f"Saved {output_path.name} ({buffer.width}x{buffer.height})")
