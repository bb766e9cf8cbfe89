"""
Abstract base class for inference backends.

Defines the capability contract every backend implements, enabling
swapping between the synthetic backend and real model runtimes
(PyTorch, ONNX Runtime, OpenCV DNN) chosen once at startup.
"""

import logging
import threading
from abc import ABC, abstractmethod
from typing import List, Optional

import numpy as np

from ..errors import BackendUnavailable, InferenceError, InferenceErrorKind
from ..models import AudioChunk, AudioSegment, BoundingBox, DetectedObject, Frame

logger = logging.getLogger("event_worker")


class InferenceBackend(ABC):
    """
    Object detection and speech transcription behind one interface.

    Subclasses implement _load, _detect and _transcribe. The public methods
    wrap them so callers only ever see InferenceError from per-unit calls,
    and BackendUnavailable from load(). Model state is written once in
    load() and only read afterwards, so one instance is shared by all jobs.
    """

    name = "base"

    def __init__(self):
        self._load_lock = threading.Lock()
        self._loaded = False
        self._load_error: Optional[BackendUnavailable] = None

    @property
    def is_loaded(self) -> bool:
        return self._loaded

    def load(self) -> None:
        """
        Initialize the runtime and model assets once.

        Raises:
            BackendUnavailable: the runtime or assets are missing. The error is
                cached and re-raised on every later call without retrying.
        """
        if self._loaded:
            return
        with self._load_lock:
            if self._loaded:
                return
            if self._load_error is not None:
                raise self._load_error
            try:
                self._load()
            except BackendUnavailable as e:
                self._load_error = e
                raise
            except Exception as e:
                self._load_error = BackendUnavailable(self.name, str(e))
                raise self._load_error from e
            self._loaded = True
            logger.info(f"Inference backend '{self.name}' loaded")

    def detect_objects(self, frame: Frame) -> List[DetectedObject]:
        """
        Detect objects in one frame.

        Returned boxes lie inside the frame and confidences inside [0, 1].

        Raises:
            InferenceError: classified as backend_unavailable, unsupported_input
                or internal_failure
        """
        self._require_loaded()
        pixels = frame.pixels
        if not isinstance(pixels, np.ndarray) or pixels.ndim != 3 or pixels.shape[2] != 3 or pixels.size == 0:
            raise InferenceError(
                InferenceErrorKind.UNSUPPORTED_INPUT,
                f"frame {frame.index} has no RGB pixel buffer"
            )

        try:
            detections = self._detect(frame)
        except InferenceError:
            raise
        except Exception as e:
            raise InferenceError(
                InferenceErrorKind.INTERNAL_FAILURE,
                f"{self.name} detection failed on frame {frame.index}: {e}"
            ) from e

        height, width = pixels.shape[:2]
        return [_normalize_detection(d, width, height, frame.timestamp) for d in detections]

    def transcribe(self, chunk: AudioChunk) -> List[AudioSegment]:
        """
        Transcribe one audio window. Spans are in source-video seconds.

        Raises:
            InferenceError: classified as backend_unavailable, unsupported_input
                or internal_failure
        """
        self._require_loaded()
        samples = chunk.samples
        if not isinstance(samples, np.ndarray) or samples.ndim != 1 or chunk.end <= chunk.start:
            raise InferenceError(
                InferenceErrorKind.UNSUPPORTED_INPUT,
                f"audio chunk {chunk.index} is not a mono waveform window"
            )

        try:
            segments = self._transcribe(chunk)
        except InferenceError:
            raise
        except Exception as e:
            raise InferenceError(
                InferenceErrorKind.INTERNAL_FAILURE,
                f"{self.name} transcription failed on chunk {chunk.index}: {e}"
            ) from e

        return [s for s in segments if s.end > s.start]

    def _require_loaded(self) -> None:
        if not self._loaded:
            raise InferenceError(
                InferenceErrorKind.BACKEND_UNAVAILABLE,
                f"backend '{self.name}' is not loaded"
            )

    @abstractmethod
    def _load(self) -> None:
        """Load runtime and model assets"""
        pass

    @abstractmethod
    def _detect(self, frame: Frame) -> List[DetectedObject]:
        """
        Run detection on frame.pixels (RGB, HxWx3 uint8).

        Returns:
            Detections with pixel-space boxes
        """
        pass

    @abstractmethod
    def _transcribe(self, chunk: AudioChunk) -> List[AudioSegment]:
        """
        Run transcription on chunk.samples (mono float32 at chunk.sample_rate).

        Returns:
            Spans offset to source-video time
        """
        pass


def _normalize_detection(obj: DetectedObject, width: int, height: int, timestamp: float) -> DetectedObject:
    bbox = obj.bbox.clamp(width, height)
    confidence = min(max(float(obj.confidence), 0.0), 1.0)
    if bbox == obj.bbox and confidence == obj.confidence and obj.timestamp == timestamp:
        return obj
    return DetectedObject(label=obj.label, confidence=confidence, bbox=bbox, timestamp=timestamp)


def make_detection(label: str, confidence: float, x: float, y: float, w: float, h: float,
                   timestamp: float) -> DetectedObject:
    """Build a detection from raw runtime output, clipping out-of-range values"""
    return DetectedObject(
        label=label,
        confidence=min(max(float(confidence), 0.0), 1.0),
        bbox=BoundingBox(x=max(float(x), 0.0), y=max(float(y), 0.0), width=max(float(w), 0.0), height=max(float(h), 0.0)),
        timestamp=timestamp
    )
