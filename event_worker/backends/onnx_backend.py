import os
import logging
from typing import Any, List, Optional, Sequence

from ..errors import BackendUnavailable
from ..models import AudioChunk, AudioSegment, DetectedObject, Frame
from .base import InferenceBackend
from .speech import WhisperApiTranscriber
from .yolo import decode_predictions, letterbox, load_labels

logger = logging.getLogger("event_worker")


class OnnxBackend(InferenceBackend):
    """
    ONNX Runtime backend running a YOLO-format export.

    Speech goes through the Whisper API transcriber since ONNX Runtime
    carries no speech model here.
    """

    name = "onnx"

    def __init__(
        self,
        video_model_path: Optional[str],
        labels_path: Optional[str] = None,
        use_gpu: bool = True,
        confidence_threshold: float = 0.25,
        intra_threads: int = 4,
        transcriber: Optional[WhisperApiTranscriber] = None
    ):
        super().__init__()
        self.video_model_path = video_model_path
        self.labels_path = labels_path
        self.use_gpu = use_gpu
        self.confidence_threshold = confidence_threshold
        self.intra_threads = intra_threads
        self.transcriber = transcriber or WhisperApiTranscriber()
        self.providers: List[str] = []
        self._session: Any = None
        self._input_name: Optional[str] = None
        self._labels: Sequence[str] = ()

    def _load(self) -> None:
        if not self.video_model_path:
            raise BackendUnavailable(self.name, "ONNX model path required")
        if not os.path.exists(self.video_model_path):
            raise BackendUnavailable(self.name, f"ONNX model not found: {self.video_model_path}")

        try:
            import onnxruntime as ort
        except ImportError as e:
            raise BackendUnavailable(self.name, f"onnxruntime not installed ({e})")

        available = [p for p in ort.get_available_providers() if isinstance(p, str)]
        if self.use_gpu and "CUDAExecutionProvider" in available:
            self.providers = ["CUDAExecutionProvider", "CPUExecutionProvider"]
        else:
            self.providers = ["CPUExecutionProvider"]

        options = ort.SessionOptions()
        options.graph_optimization_level = ort.GraphOptimizationLevel.ORT_ENABLE_ALL
        options.intra_op_num_threads = self.intra_threads

        try:
            self._session = ort.InferenceSession(self.video_model_path, sess_options=options, providers=self.providers)
        except Exception as e:
            raise BackendUnavailable(self.name, f"failed to create session: {e}")

        self._input_name = self._session.get_inputs()[0].name
        self._labels = load_labels(self.labels_path)
        self.transcriber.load()

        logger.info(f"Loaded ONNX model from {self.video_model_path} (providers={self.providers})")

    def _detect(self, frame: Frame) -> List[DetectedObject]:
        blob, scale, pad_x, pad_y = letterbox(frame.pixels)
        outputs = self._session.run(None, {self._input_name: blob})
        return decode_predictions(
            outputs[0], scale, pad_x, pad_y, self._labels, frame.timestamp,
            conf_threshold=self.confidence_threshold
        )

    def _transcribe(self, chunk: AudioChunk) -> List[AudioSegment]:
        return self.transcriber.transcribe(chunk)
