"""
Batch/Cache Controller
Sequences calibration and application over many target images and caches
per-image analysis state so parameter changes can be re-applied cheaply
"""

import logging
from collections import OrderedDict
from dataclasses import dataclass
from threading import Lock
from typing import Any, Dict, Iterable, Iterator, List, Optional, Tuple

from color_statistics import ColorStatistics, extract_statistics
from image_buffer import BufferLike, ImageBuffer, as_image_buffer
from pixel_transform import apply_transfer
from transfer_calibrator import calibrate

logger = logging.getLogger(__name__)


DEFAULT_ANALYSIS_EDGE_PX = 1000
DEFAULT_EXPORT_EDGE_PX = 3000
DEFAULT_INTENSITY = 50
DEFAULT_SHADOW_STRENGTH = 50


class CacheMissError(KeyError):
    """Raised when an image id was never submitted to a batch"""


@dataclass(frozen=True)
class ProcessingParameters:
    """User-facing strength settings for one image"""
    intensity: int = DEFAULT_INTENSITY
    shadow_strength: int = DEFAULT_SHADOW_STRENGTH

    def __post_init__(self):
        for name in ('intensity', 'shadow_strength'):
            value = getattr(self, name)
            if not 0 <= value <= 100:
                raise ValueError(f"{name} must be within 0-100, got {value}")


@dataclass(frozen=True)
class CacheEntry:
    """Analysis state kept per image; replaced whole, never edited in place

    Fields:
        source: Target buffer as submitted, used for export-tier resampling.
        analysis: Target resized to the analysis edge.
        target_stats: Statistics of the analysis buffer.
        reference_stats: Reference statistics of the batch that created the entry.
    """
    source: ImageBuffer
    analysis: ImageBuffer
    target_stats: ColorStatistics
    reference_stats: ColorStatistics


@dataclass(frozen=True)
class BatchResult:
    """Outcome for one target; exactly one of buffer and error is set"""
    image_id: int
    buffer: Optional[ImageBuffer] = None
    statistics: Optional[ColorStatistics] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class BatchController:
    """Runs color transfer batches and serves interactive reprocessing"""

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        """
        Initialize controller

        Args:
            config: Application config; the 'engine' section is read
        """
        self.config = config or {}
        engine_config = self.config.get('engine', {})
        self.analysis_edge_px = engine_config.get('analysis_edge_px', DEFAULT_ANALYSIS_EDGE_PX)
        self.export_edge_px = engine_config.get('export_edge_px', DEFAULT_EXPORT_EDGE_PX)
        self.exclude_extremes = engine_config.get('exclude_extremes', True)
        self.link_chroma = engine_config.get('link_chroma', False)
        self.default_parameters = ProcessingParameters(
            intensity=engine_config.get('default_intensity', DEFAULT_INTENSITY),
            shadow_strength=engine_config.get('default_shadow_strength', DEFAULT_SHADOW_STRENGTH),
        )

        self._entries: 'OrderedDict[int, CacheEntry]' = OrderedDict()
        self._parameters: Dict[int, ProcessingParameters] = {}
        self._reference_stats: Optional[ColorStatistics] = None
        self.lock = Lock()

    # ---- Batch ----
    def process_batch(
        self,
        reference: BufferLike,
        targets: Iterable[Tuple[int, BufferLike]],
        analysis_edge_px: Optional[int] = None,
        default_intensity: Optional[int] = None,
        default_shadow: Optional[int] = None,
    ) -> Iterator[BatchResult]:
        """
        Process targets against a reference, one image per step

        This is a generator: every yielded result is a point where the host can
        report progress or stop iterating to cancel. Results already yielded
        stay valid after cancellation. Starting a batch drops the whole cache.

        Args:
            reference: Reference image buffer
            targets: (image_id, buffer) pairs, processed in the given order
            analysis_edge_px: Long edge for statistics and preview output
            default_intensity: Initial intensity for every target
            default_shadow: Initial shadow strength for every target

        Yields:
            BatchResult per target, in input order

        Raises:
            ImageBufferError: if the reference itself is unusable
        """
        edge = analysis_edge_px or self.analysis_edge_px
        parameters = ProcessingParameters(
            intensity=self.default_parameters.intensity if default_intensity is None else default_intensity,
            shadow_strength=self.default_parameters.shadow_strength if default_shadow is None else default_shadow,
        )

        reference_buffer = as_image_buffer(reference)
        reference_stats = extract_statistics(
            reference_buffer.resized_to_long_edge(edge), self.exclude_extremes
        )
        logger.info(f"Reference analyzed at {edge}px: mean={reference_stats.mean} std={reference_stats.std}")

        with self.lock:
            self._entries = OrderedDict()
            self._parameters = {}
            self._reference_stats = reference_stats

        for index, (image_id, target) in enumerate(targets):
            logger.info(f"Processing image {image_id} ({index + 1})")
            try:
                with self.lock:
                    if image_id in self._entries:
                        raise ValueError(f"Duplicate image id {image_id} in batch")
                source = as_image_buffer(target)
                analysis = source.resized_to_long_edge(edge)
                target_stats = extract_statistics(analysis, self.exclude_extremes)
                entry = CacheEntry(
                    source=source,
                    analysis=analysis,
                    target_stats=target_stats,
                    reference_stats=reference_stats,
                )
                with self.lock:
                    self._entries[image_id] = entry
                    self._parameters[image_id] = parameters
                buffer = self._render(entry, entry.analysis, parameters)
            except ValueError as e:
                logger.error(f"Image {image_id} failed: {e}", exc_info=True)
                yield BatchResult(image_id=image_id, error=str(e))
                continue

            yield BatchResult(image_id=image_id, buffer=buffer, statistics=target_stats)

        logger.info("Batch complete")

    # ---- Interactive ----
    def reprocess(self, image_id: int, intensity: int, shadow_strength: int) -> ImageBuffer:
        """
        Re-run calibration and application on the cached analysis buffer

        Cost is bounded by the analysis-tier pixel count; no resizing and no
        statistics extraction happen here.

        Raises:
            CacheMissError: if image_id is not cached
        """
        parameters = ProcessingParameters(intensity=intensity, shadow_strength=shadow_strength)
        entry = self._entry(image_id)
        with self.lock:
            self._parameters[image_id] = parameters
        logger.debug(f"Reprocessing image {image_id} with {parameters}")
        return self._render(entry, entry.analysis, parameters)

    def render_export(
        self,
        image_id: int,
        export_edge_px: Optional[int] = None,
        intensity: Optional[int] = None,
        shadow_strength: Optional[int] = None,
    ) -> ImageBuffer:
        """
        Render the deliverable at export resolution using the cached statistics

        Parameters default to the image's current ones.
        """
        entry = self._entry(image_id)
        current = self.parameters(image_id)
        parameters = ProcessingParameters(
            intensity=current.intensity if intensity is None else intensity,
            shadow_strength=current.shadow_strength if shadow_strength is None else shadow_strength,
        )
        edge = export_edge_px or self.export_edge_px
        buffer = entry.source.resized_to_long_edge(edge)
        logger.info(f"Exporting image {image_id} at {buffer.width}x{buffer.height}")
        return self._render(entry, buffer, parameters)

    def export_all(self, export_edge_px: Optional[int] = None) -> Iterator[BatchResult]:
        """Render every cached image at export resolution, in submission order"""
        for image_id in self.image_ids():
            try:
                buffer = self.render_export(image_id, export_edge_px)
            except (CacheMissError, ValueError) as e:
                logger.error(f"Export of image {image_id} failed: {e}", exc_info=True)
                yield BatchResult(image_id=image_id, error=str(e))
                continue
            yield BatchResult(image_id=image_id, buffer=buffer, statistics=self.statistics(image_id)[0])

    # ---- Diagnostics ----
    @property
    def reference_statistics(self) -> Optional[ColorStatistics]:
        return self._reference_stats

    def statistics(self, image_id: int) -> Tuple[ColorStatistics, ColorStatistics]:
        """(target statistics, reference statistics) for a cached image"""
        entry = self._entry(image_id)
        return entry.target_stats, entry.reference_stats

    def parameters(self, image_id: int) -> ProcessingParameters:
        with self.lock:
            if image_id not in self._parameters:
                raise CacheMissError(image_id)
            return self._parameters[image_id]

    def image_ids(self) -> List[int]:
        with self.lock:
            return list(self._entries.keys())

    def invalidate(self, image_id: Optional[int] = None):
        """Drop one cached entry, or the whole cache when image_id is None"""
        with self.lock:
            if image_id is None:
                self._entries = OrderedDict()
                self._parameters = {}
                self._reference_stats = None
                logger.info("Cache invalidated")
            else:
                self._entries.pop(image_id, None)
                self._parameters.pop(image_id, None)
                logger.info(f"Cache entry {image_id} invalidated")

    # ---- Helpers ----
    def _entry(self, image_id: int) -> CacheEntry:
        with self.lock:
            entry = self._entries.get(image_id)
        if entry is None:
            raise CacheMissError(image_id)
        return entry

    def _render(self, entry: CacheEntry, buffer: ImageBuffer, parameters: ProcessingParameters) -> ImageBuffer:
        coefficients = calibrate(
            entry.reference_stats,
            entry.target_stats,
            parameters.intensity,
            parameters.shadow_strength,
            link_chroma=self.link_chroma,
        )
        return apply_transfer(buffer, coefficients)
