import time
import asyncio
import logging
import threading
from itertools import islice
from typing import Iterable, Iterator, List, Optional, Tuple

from ..backends.base import InferenceBackend
from ..errors import InferenceError, JobCancelled, OutputError
from ..models import Frame, FrameDetections
from .media import save_frame

logger = logging.getLogger("event_worker")


def _windows(frames: Iterable[Frame], size: int) -> Iterator[List[Frame]]:
    iterator = iter(frames)
    while True:
        window = list(islice(iterator, size))
        if not window:
            return
        yield window


class FrameAnalyzer:
    """
    Runs object detection over a lazy frame stream.

    Frames are pulled in windows of max_concurrent and detected in parallel
    within a window, so at most max_concurrent pixel buffers are alive at
    once. Results are always returned in (timestamp, index) order.
    """

    def __init__(
        self,
        backend: InferenceBackend,
        confidence_threshold: float = 0.5,
        max_concurrent: int = 4,
        frames_dir: Optional[str] = None
    ):
        self.backend = backend
        self.confidence_threshold = confidence_threshold
        self.max_concurrent = max(1, max_concurrent)
        self.frames_dir = frames_dir
        self.frames_analyzed = 0
        self.warnings = 0
        self.saved_frames: List[str] = []

    def analyze(
        self,
        frames: Iterable[Frame],
        video_id: str = "",
        cancel_event: Optional[threading.Event] = None
    ) -> List[FrameDetections]:
        """
        Detect objects in every frame and drop detections below the threshold.

        Args:
            frames: Frames in non-decreasing timestamp order
            video_id: Identifier used in log messages
            cancel_event: Checked between windows; raises JobCancelled once set

        Returns:
            One FrameDetections per frame, sorted by (timestamp, index)
        """
        start_time = time.time()

        results = asyncio.run(self._analyze_all(frames, video_id, cancel_event))
        results.sort(key=lambda r: (r.timestamp, r.index))

        elapsed = time.time() - start_time
        avg_time_per_frame = elapsed / len(results) if results else 0
        logger.info(f"Frame analysis completed for video {video_id}: {len(results)} frames, "
                    f"{sum(len(r.objects) for r in results)} objects, {self.warnings} warnings "
                    f"in {elapsed:.2f}s (avg {avg_time_per_frame:.3f}s per frame)")
        return results

    async def _analyze_all(
        self,
        frames: Iterable[Frame],
        video_id: str,
        cancel_event: Optional[threading.Event]
    ) -> List[FrameDetections]:
        semaphore = asyncio.Semaphore(self.max_concurrent)

        async def analyze_frame_async(frame: Frame) -> Tuple[FrameDetections, bool]:
            async with semaphore:
                return await asyncio.to_thread(self._analyze_frame, frame, video_id)

        results = []
        for window in _windows(frames, self.max_concurrent):
            if cancel_event is not None and cancel_event.is_set():
                for frame in window:
                    frame.release()
                raise JobCancelled(f"Frame analysis cancelled for video {video_id}")

            if self.frames_dir:
                self._persist(window, video_id)

            if len(window) == 1:
                outcomes = [self._analyze_frame(window[0], video_id)]
            else:
                outcomes = await asyncio.gather(*(analyze_frame_async(f) for f in window))

            for detections, failed in outcomes:
                results.append(detections)
                self.frames_analyzed += 1
                if failed:
                    self.warnings += 1

        return results

    def _analyze_frame(self, frame: Frame, video_id: str) -> Tuple[FrameDetections, bool]:
        failed = False
        try:
            objects = self.backend.detect_objects(frame)
        except InferenceError as e:
            logger.warning(f"Detection failed for video {video_id}, frame {frame.index} "
                           f"at {frame.timestamp:.2f}s: {e}")
            objects = []
            failed = True
        finally:
            frame.release()

        kept = tuple(obj for obj in objects if obj.confidence >= self.confidence_threshold)
        return FrameDetections(timestamp=frame.timestamp, index=frame.index, objects=kept), failed

    def _persist(self, window: List[Frame], video_id: str) -> None:
        for frame in window:
            try:
                self.saved_frames.append(save_frame(frame, self.frames_dir))
            except OutputError as e:
                logger.warning(f"Could not save frame {frame.index} for video {video_id}: {e}")
