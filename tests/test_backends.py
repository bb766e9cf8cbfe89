import threading
import time
from concurrent.futures import ThreadPoolExecutor

import numpy as np
import pytest

from event_worker.backends import create_backend
from event_worker.backends.base import InferenceBackend, make_detection
from event_worker.backends.onnx_backend import OnnxBackend
from event_worker.backends.synthetic import SyntheticBackend
from event_worker.backends.torch_backend import TorchBackend
from event_worker.backends.yolo import decode_predictions, letterbox
from event_worker.config import ProcessingConfig
from event_worker.errors import (
    BackendUnavailable, ConfigError, InferenceError, InferenceErrorKind,
    InputError, JobCancelled, OutputError, error_kind
)
from event_worker.models import AudioChunk, AudioSegment, BoundingBox, DetectedObject, Frame

from conftest import make_frame, make_tone


class _CountingBackend(InferenceBackend):
    name = "counting"

    def __init__(self, fail_load=False, detections=None):
        super().__init__()
        self.fail_load = fail_load
        self.detections = detections or []
        self.load_calls = 0

    def _load(self):
        self.load_calls += 1
        if self.fail_load:
            raise FileNotFoundError("weights.pt")

    def _detect(self, frame):
        return self.detections

    def _transcribe(self, chunk):
        return [AudioSegment(start=chunk.start, end=chunk.end, text="hello")]


def _chunk(index=0, start=0.0, end=1.0, samples=None):
    if samples is None:
        samples = make_tone(end - start)
    return AudioChunk(index=index, start=start, end=end, samples=samples, sample_rate=8000)


class TestSyntheticBackend:
    def test_detections_are_deterministic(self):
        first, second = SyntheticBackend(), SyntheticBackend()
        first.load()
        second.load()

        for i in range(5):
            assert first.detect_objects(make_frame(i, float(i))) == second.detect_objects(make_frame(i, float(i)))

    def test_detections_respect_contract(self, backend):
        for i in range(20):
            frame = make_frame(i, i * 0.5)
            objects = backend.detect_objects(frame)
            assert 1 <= len(objects) <= 3
            for obj in objects:
                assert 0.0 <= obj.confidence <= 1.0
                assert obj.timestamp == frame.timestamp
                assert obj.bbox.x + obj.bbox.width <= frame.width + 1e-9
                assert obj.bbox.y + obj.bbox.height <= frame.height + 1e-9

    def test_transcript_for_voiced_chunk(self, backend):
        segments = backend.transcribe(_chunk(index=2, start=4.0, end=6.0))
        assert len(segments) == 1
        assert segments[0].start == 4.0
        assert segments[0].end == 6.0
        assert segments[0].text

    def test_silent_chunk_has_no_transcript(self, backend):
        assert backend.transcribe(_chunk(samples=np.zeros(8000, dtype=np.float32))) == []

    def test_injected_failure_is_classified(self):
        backend = SyntheticBackend(fail_frames={3})
        backend.load()
        with pytest.raises(InferenceError) as exc_info:
            backend.detect_objects(make_frame(3, 3.0))
        assert exc_info.value.kind == InferenceErrorKind.INTERNAL_FAILURE

    def test_unavailable_assets(self):
        with pytest.raises(BackendUnavailable):
            SyntheticBackend(unavailable=True).load()


class TestInferenceBackendContract:
    def test_calls_before_load_are_backend_unavailable(self):
        with pytest.raises(InferenceError) as exc_info:
            SyntheticBackend().detect_objects(make_frame(0, 0.0))
        assert exc_info.value.kind == InferenceErrorKind.BACKEND_UNAVAILABLE

    def test_load_failure_is_cached(self):
        backend = _CountingBackend(fail_load=True)
        for _ in range(3):
            with pytest.raises(BackendUnavailable, match="weights.pt"):
                backend.load()
        assert backend.load_calls == 1
        assert not backend.is_loaded

    def test_load_is_idempotent(self):
        backend = _CountingBackend()
        backend.load()
        backend.load()
        assert backend.load_calls == 1

    def test_released_frame_is_unsupported_input(self, backend):
        frame = make_frame(0, 0.0)
        frame.release()
        with pytest.raises(InferenceError) as exc_info:
            backend.detect_objects(frame)
        assert exc_info.value.kind == InferenceErrorKind.UNSUPPORTED_INPUT

    def test_grayscale_frame_is_unsupported_input(self, backend):
        frame = Frame(index=0, timestamp=0.0, pixels=np.zeros((10, 10), dtype=np.uint8))
        with pytest.raises(InferenceError) as exc_info:
            backend.detect_objects(frame)
        assert exc_info.value.kind == InferenceErrorKind.UNSUPPORTED_INPUT

    def test_stereo_chunk_is_unsupported_input(self, backend):
        with pytest.raises(InferenceError) as exc_info:
            backend.transcribe(_chunk(samples=np.zeros((8000, 2), dtype=np.float32)))
        assert exc_info.value.kind == InferenceErrorKind.UNSUPPORTED_INPUT

    def test_boxes_are_clamped_to_frame(self):
        oversized = DetectedObject(
            label="bus", confidence=0.7,
            bbox=BoundingBox(x=50.0, y=40.0, width=100.0, height=100.0), timestamp=0.0
        )
        backend = _CountingBackend(detections=[oversized])
        backend.load()

        (obj,) = backend.detect_objects(make_frame(4, 2.0))

        assert obj.bbox == BoundingBox(x=50.0, y=40.0, width=14.0, height=8.0)
        assert obj.timestamp == 2.0

    def test_make_detection_clips_raw_values(self):
        obj = make_detection("cat", 1.3, -5.0, 2.0, 10.0, -1.0, timestamp=1.0)
        assert obj.confidence == 1.0
        assert obj.bbox == BoundingBox(x=0.0, y=2.0, width=10.0, height=0.0)


class TestYoloDecoding:
    def test_letterbox_pads_to_square(self):
        blob, scale, pad_x, pad_y = letterbox(np.zeros((100, 200, 3), dtype=np.uint8))
        assert blob.shape == (1, 3, 640, 640)
        assert scale == pytest.approx(3.2)
        assert (pad_x, pad_y) == (0, 160)

    def test_decode_applies_threshold_and_nms(self):
        n_boxes = 8
        output = np.zeros((1, 6, n_boxes), dtype=np.float32)
        output[0, :, 0] = [50, 40, 20, 10, 0.0, 0.8]
        output[0, :, 1] = [51, 40, 20, 10, 0.0, 0.6]
        output[0, :, 2] = [200, 200, 30, 30, 0.1, 0.0]

        detections = decode_predictions(output, 1.0, 0, 0, ("a", "b"), timestamp=3.0, conf_threshold=0.25)

        assert len(detections) == 1
        assert detections[0].label == "b"
        assert detections[0].confidence == pytest.approx(0.8)
        assert detections[0].bbox.as_list() == pytest.approx([40.0, 35.0, 20.0, 10.0])
        assert detections[0].timestamp == 3.0


class _OverlapCounter:
    """Stands in for a loaded model and records overlapping calls"""

    names = {0: "person"}

    def __init__(self):
        self.lock = threading.Lock()
        self.active = 0
        self.max_active = 0

    def _enter(self):
        with self.lock:
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        time.sleep(0.01)
        with self.lock:
            self.active -= 1

    def __call__(self, pixels, **kwargs):
        self._enter()
        return []

    def transcribe(self, audio, fp16=False):
        self._enter()
        return {"segments": [{"text": " hi", "start": 0.0, "end": 0.5, "avg_logprob": -0.1}]}


class TestTorchBackend:
    def test_detector_calls_are_serialized(self):
        backend = TorchBackend(use_gpu=False)
        backend._detector = _OverlapCounter()

        with ThreadPoolExecutor(max_workers=4) as pool:
            results = list(pool.map(backend._detect, [make_frame(i, float(i)) for i in range(8)]))

        assert results == [[]] * 8
        assert backend._detector.max_active == 1

    def test_whisper_calls_are_serialized(self):
        backend = TorchBackend(use_gpu=False)
        backend._whisper = _OverlapCounter()
        chunks = [
            AudioChunk(index=i, start=float(i), end=i + 1.0, samples=np.zeros(16000, dtype=np.float32), sample_rate=16000)
            for i in range(6)
        ]

        with ThreadPoolExecutor(max_workers=3) as pool:
            results = list(pool.map(backend._transcribe, chunks))

        assert [r[0].start for r in results] == [float(i) for i in range(6)]
        assert backend._whisper.max_active == 1


class TestCreateBackend:
    def test_synthetic_is_default(self):
        assert isinstance(create_backend(ProcessingConfig()), SyntheticBackend)

    def test_torch_backend_defers_imports(self):
        backend = create_backend(ProcessingConfig(BACKEND="torch", USE_GPU=False))
        assert isinstance(backend, TorchBackend)
        assert not backend.is_loaded

    def test_onnx_without_model_is_unavailable(self):
        backend = create_backend(ProcessingConfig(BACKEND="onnx", VIDEO_MODEL_PATH=None))
        assert isinstance(backend, OnnxBackend)
        with pytest.raises(BackendUnavailable, match="model path required"):
            backend.load()

    def test_unknown_backend(self):
        with pytest.raises(ConfigError):
            create_backend(ProcessingConfig(BACKEND="tensorrt"))


class TestErrorKind:
    @pytest.mark.parametrize("exc, expected", [
        (InputError("a.mp4", "Video file not found"), "input_error"),
        (BackendUnavailable("onnx", "missing"), "backend_unavailable"),
        (InferenceError(InferenceErrorKind.INTERNAL_FAILURE, "boom"), "inference_error"),
        (OutputError("out.json", "disk full"), "io_error"),
        (PermissionError("denied"), "io_error"),
        (JobCancelled("stop"), "cancelled"),
        (ConfigError(["bad"]), "config_error"),
        (RuntimeError("unexpected"), "internal_error"),
    ])
    def test_classification(self, exc, expected):
        assert error_kind(exc) == expected
