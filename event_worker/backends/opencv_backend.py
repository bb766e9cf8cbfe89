import os
import logging
import threading
from typing import Any, List, Optional, Sequence

import cv2

from ..errors import BackendUnavailable
from ..models import AudioChunk, AudioSegment, DetectedObject, Frame
from .base import InferenceBackend
from .speech import WhisperApiTranscriber
from .yolo import decode_predictions, letterbox, load_labels

logger = logging.getLogger("event_worker")


class OpenCVBackend(InferenceBackend):
    """Lightweight native backend: OpenCV DNN running a YOLO-format ONNX export"""

    name = "opencv"

    def __init__(
        self,
        video_model_path: Optional[str],
        labels_path: Optional[str] = None,
        use_gpu: bool = False,
        confidence_threshold: float = 0.25,
        transcriber: Optional[WhisperApiTranscriber] = None
    ):
        super().__init__()
        self.video_model_path = video_model_path
        self.labels_path = labels_path
        self.use_gpu = use_gpu
        self.confidence_threshold = confidence_threshold
        self.transcriber = transcriber or WhisperApiTranscriber()
        self._net: Any = None
        self._net_lock = threading.Lock()
        self._labels: Sequence[str] = ()

    def _load(self) -> None:
        if not self.video_model_path or not os.path.exists(self.video_model_path):
            raise BackendUnavailable(self.name, f"model not found: {self.video_model_path}")

        try:
            self._net = cv2.dnn.readNet(self.video_model_path)
        except cv2.error as e:
            raise BackendUnavailable(self.name, f"failed to read network: {e}")

        if self.use_gpu and cv2.cuda.getCudaEnabledDeviceCount() > 0:
            self._net.setPreferableBackend(cv2.dnn.DNN_BACKEND_CUDA)
            self._net.setPreferableTarget(cv2.dnn.DNN_TARGET_CUDA)
        else:
            self._net.setPreferableBackend(cv2.dnn.DNN_BACKEND_OPENCV)
            self._net.setPreferableTarget(cv2.dnn.DNN_TARGET_CPU)

        self._labels = load_labels(self.labels_path)
        self.transcriber.load()
        logger.info(f"Loaded OpenCV DNN model from {self.video_model_path}")

    def _detect(self, frame: Frame) -> List[DetectedObject]:
        blob, scale, pad_x, pad_y = letterbox(frame.pixels)
        # cv2.dnn.Net holds the input blob between setInput and forward
        with self._net_lock:
            self._net.setInput(blob)
            output = self._net.forward()
        return decode_predictions(
            output, scale, pad_x, pad_y, self._labels, frame.timestamp,
            conf_threshold=self.confidence_threshold
        )

    def _transcribe(self, chunk: AudioChunk) -> List[AudioSegment]:
        return self.transcriber.transcribe(chunk)
