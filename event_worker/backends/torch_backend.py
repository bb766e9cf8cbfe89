import os
import logging
import threading
from typing import Any, List, Optional

import numpy as np

from ..errors import BackendUnavailable
from ..models import AudioChunk, AudioSegment, DetectedObject, Frame
from .base import InferenceBackend, make_detection
from .speech import logprob_confidence

logger = logging.getLogger("event_worker")

DEFAULT_YOLO_WEIGHTS = "yolo11n.pt"
DEFAULT_WHISPER_MODEL = "small"
WHISPER_SAMPLE_RATE = 16000


class TorchBackend(InferenceBackend):
    """
    PyTorch backend: Ultralytics YOLO for detection, local Whisper for speech.

    Runs on CUDA when use_gpu is set and a GPU is present, CPU otherwise.
    """

    name = "torch"

    def __init__(
        self,
        video_model_path: Optional[str] = None,
        audio_model: Optional[str] = None,
        use_gpu: bool = True,
        confidence_threshold: float = 0.25
    ):
        super().__init__()
        self.video_model_path = video_model_path or DEFAULT_YOLO_WEIGHTS
        self.audio_model = audio_model or DEFAULT_WHISPER_MODEL
        self.use_gpu = use_gpu
        self.confidence_threshold = confidence_threshold
        self.device = "cpu"
        self._detector: Any = None
        self._whisper: Any = None
        # Ultralytics predictors and Whisper models keep per-call state
        self._detector_lock = threading.Lock()
        self._whisper_lock = threading.Lock()

    def _load(self) -> None:
        try:
            import torch
            import whisper
            from ultralytics import YOLO
        except ImportError as e:
            raise BackendUnavailable(self.name, f"PyTorch runtime not installed ({e})")

        self.device = "cuda" if self.use_gpu and torch.cuda.is_available() else "cpu"

        # Bare file names are fetched by Ultralytics; explicit paths must exist
        if os.sep in self.video_model_path and not os.path.exists(self.video_model_path):
            raise BackendUnavailable(self.name, f"detection weights not found: {self.video_model_path}")

        try:
            self._detector = YOLO(self.video_model_path)
            self._whisper = whisper.load_model(self.audio_model, device=self.device)
        except Exception as e:
            raise BackendUnavailable(self.name, f"failed to load models: {e}")

        logger.info(f"Torch backend initialized on device={self.device} "
                    f"(detector={self.video_model_path}, whisper={self.audio_model})")

    def _detect(self, frame: Frame) -> List[DetectedObject]:
        with self._detector_lock:
            results = self._detector(
                frame.pixels,
                conf=self.confidence_threshold,
                device=self.device,
                verbose=False
            )

        detections = []
        for result in results:
            boxes = result.boxes
            if boxes is None:
                continue
            for i in range(len(boxes)):
                x1, y1, x2, y2 = boxes.xyxy[i].tolist()
                cls_id = int(boxes.cls[i])
                detections.append(make_detection(
                    label=self._detector.names[cls_id],
                    confidence=float(boxes.conf[i]),
                    x=x1,
                    y=y1,
                    w=x2 - x1,
                    h=y2 - y1,
                    timestamp=frame.timestamp
                ))
        return detections

    def _transcribe(self, chunk: AudioChunk) -> List[AudioSegment]:
        if chunk.sample_rate != WHISPER_SAMPLE_RATE:
            raise ValueError(f"Whisper expects {WHISPER_SAMPLE_RATE} Hz audio, got {chunk.sample_rate}")

        with self._whisper_lock:
            result = self._whisper.transcribe(
                audio=np.ascontiguousarray(chunk.samples, dtype=np.float32),
                fp16=self.device == "cuda"
            )

        segments = []
        for segment in result.get("segments", []):
            text = segment["text"].strip()
            start = chunk.start + float(segment["start"])
            end = min(chunk.start + float(segment["end"]), chunk.end)
            if text and end > start:
                segments.append(AudioSegment(
                    start=start,
                    end=end,
                    text=text,
                    confidence=logprob_confidence(segment.get("avg_logprob"))
                ))
        return segments
