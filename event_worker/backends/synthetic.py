import time
import logging
from typing import Iterable, List, Optional

import numpy as np

from ..errors import BackendUnavailable
from ..models import AudioChunk, AudioSegment, DetectedObject, Frame
from .base import InferenceBackend, make_detection

logger = logging.getLogger("event_worker")

SYNTHETIC_LABELS = ("person", "car", "dog", "bicycle", "chair", "laptop", "bottle", "cat")

SYNTHETIC_PHRASES = (
    "Hello, this is a sample transcription",
    "This demonstrates audio processing capabilities",
    "The quick brown fox jumps over the lazy dog",
    "Detected objects are aligned with speech",
    "Synthetic speech for pipeline testing",
)


def _unit(*values: int) -> float:
    """Deterministic pseudo-random number in [0, 1) from integer inputs"""
    h = 2166136261
    for v in values:
        h = ((h ^ (v & 0xFFFFFFFF)) * 16777619) & 0xFFFFFFFF
    return h / 2 ** 32


class SyntheticBackend(InferenceBackend):
    """
    Deterministic backend that needs no model assets.

    Detections depend only on the frame index and pixel content, transcripts
    only on the chunk timing and waveform, so repeated runs over the same
    input give identical output. Failure hooks let tests exercise the error
    paths without a real runtime.
    """

    name = "synthetic"

    def __init__(
        self,
        max_objects: int = 3,
        unavailable: bool = False,
        fail_frames: Optional[Iterable[int]] = None,
        fail_chunks: Optional[Iterable[int]] = None,
        delay_sec: float = 0.0
    ):
        super().__init__()
        self.max_objects = max_objects
        self.unavailable = unavailable
        self.fail_frames = set(fail_frames or ())
        self.fail_chunks = set(fail_chunks or ())
        self.delay_sec = delay_sec

    def _load(self) -> None:
        if self.unavailable:
            raise BackendUnavailable(self.name, "synthetic model assets disabled")

    def _detect(self, frame: Frame) -> List[DetectedObject]:
        if self.delay_sec:
            time.sleep(self.delay_sec)
        if frame.index in self.fail_frames:
            raise RuntimeError(f"injected detection failure on frame {frame.index}")

        height, width = frame.pixels.shape[:2]
        brightness = int(np.asarray(frame.pixels, dtype=np.uint64).sum() // max(frame.pixels.size, 1))

        count = 1 + int(_unit(frame.index, brightness) * self.max_objects)
        detections = []
        for k in range(count):
            r_label = _unit(frame.index, k, brightness, 1)
            r_conf = _unit(frame.index, k, brightness, 2)
            r_x = _unit(frame.index, k, 3)
            r_y = _unit(frame.index, k, 4)
            r_size = _unit(frame.index, k, 5)

            w = width * (0.1 + 0.3 * r_size)
            h = height * (0.1 + 0.3 * r_size)
            detections.append(make_detection(
                label=SYNTHETIC_LABELS[int(r_label * len(SYNTHETIC_LABELS))],
                confidence=round(0.2 + 0.79 * r_conf, 4),
                x=(width - w) * r_x,
                y=(height - h) * r_y,
                w=w,
                h=h,
                timestamp=frame.timestamp
            ))
        return detections

    def _transcribe(self, chunk: AudioChunk) -> List[AudioSegment]:
        if self.delay_sec:
            time.sleep(self.delay_sec)
        if chunk.index in self.fail_chunks:
            raise RuntimeError(f"injected transcription failure on chunk {chunk.index}")

        if chunk.samples.size and float(np.max(np.abs(chunk.samples))) < 1e-4:
            return []

        phrase = SYNTHETIC_PHRASES[chunk.index % len(SYNTHETIC_PHRASES)]
        return [AudioSegment(start=chunk.start, end=chunk.end, text=phrase, confidence=0.9)]
