"""
Reprocess Scheduler
Debounces interactive parameter changes so rapid slider updates coalesce
into one recomputation per image using only the latest values
"""

import time
import logging
from threading import Thread, Lock, Event
from typing import Callable, Dict, List, Optional, Tuple

from batch_controller import BatchController, CacheMissError, ProcessingParameters
from image_buffer import ImageBuffer

logger = logging.getLogger(__name__)


DEFAULT_DEBOUNCE_SECONDS = 0.15
POLL_INTERVAL_SECONDS = 0.05


class ReprocessScheduler:
    """One pending reprocess slot per image id, drained by a single worker thread"""

    def __init__(
        self,
        controller: BatchController,
        on_result: Callable[[int, ImageBuffer], None],
        debounce_seconds: Optional[float] = None,
    ):
        """
        Initialize scheduler

        Args:
            controller: Controller holding the cached analysis state
            on_result: Called with (image_id, buffer) after each recomputation
            debounce_seconds: Quiet period before a pending request runs.
                Defaults to interactive.debounce_seconds from the controller config.
        """
        self.controller = controller
        self.on_result = on_result
        if debounce_seconds is None:
            debounce_seconds = controller.config.get('interactive', {}).get(
                'debounce_seconds', DEFAULT_DEBOUNCE_SECONDS
            )
        self.debounce_seconds = debounce_seconds
        self.pending: Dict[int, Tuple[ProcessingParameters, float]] = {}  # image_id -> (params, timestamp)
        self.lock = Lock()
        self.stop_event = Event()
        self.worker_thread: Optional[Thread] = None

    def request(self, image_id: int, intensity: int, shadow_strength: int):
        """Schedule a recomputation, replacing any not-yet-run request for the same image"""
        parameters = ProcessingParameters(intensity=intensity, shadow_strength=shadow_strength)
        with self.lock:
            replaced = image_id in self.pending
            self.pending[image_id] = (parameters, time.monotonic())
        if replaced:
            logger.debug(f"Coalesced pending reprocess for image {image_id} -> {parameters}")

    def has_pending(self, image_id: Optional[int] = None) -> bool:
        with self.lock:
            if image_id is None:
                return bool(self.pending)
            return image_id in self.pending

    def start(self):
        """Start the worker thread"""
        if self.worker_thread is not None and self.worker_thread.is_alive():
            return
        self.stop_event.clear()
        self.worker_thread = Thread(target=self._debounce_worker, daemon=True, name="ReprocessDebounce")
        self.worker_thread.start()
        logger.info(f"Reprocess scheduler started (debounce {self.debounce_seconds}s)")

    def stop(self):
        """Stop the worker thread; pending requests are kept for flush()"""
        self.stop_event.set()
        if self.worker_thread:
            self.worker_thread.join(timeout=5)
            self.worker_thread = None
        logger.info("Reprocess scheduler stopped")

    def flush(self) -> int:
        """Run every pending request now, regardless of its quiet period

        Returns:
            Number of recomputations run
        """
        with self.lock:
            ready = [(image_id, params) for image_id, (params, _) in self.pending.items()]
            self.pending.clear()
        for image_id, params in ready:
            self._run(image_id, params)
        return len(ready)

    def _take_ready(self) -> List[Tuple[int, ProcessingParameters]]:
        current_time = time.monotonic()
        ready = []
        with self.lock:
            for image_id, (params, timestamp) in list(self.pending.items()):
                if current_time - timestamp >= self.debounce_seconds:
                    ready.append((image_id, params))
                    del self.pending[image_id]
        return ready

    def _debounce_worker(self):
        """Worker thread that runs requests after their quiet period"""
        while not self.stop_event.wait(POLL_INTERVAL_SECONDS):
            for image_id, params in self._take_ready():
                self._run(image_id, params)

    def _run(self, image_id: int, params: ProcessingParameters):
        try:
            buffer = self.controller.reprocess(image_id, params.intensity, params.shadow_strength)
        except CacheMissError:
            logger.error(f"Reprocess requested for unknown image {image_id}", exc_info=True)
            return
        try:
            self.on_result(image_id, buffer)
        except Exception as e:
            logger.error(f"Result callback failed for image {image_id}: {e}", exc_info=True)
