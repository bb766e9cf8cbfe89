from pathlib import Path
from typing import Iterator, List, Optional

import numpy as np
import pytest

from event_worker.backends.synthetic import SyntheticBackend
from event_worker.config import ProcessingConfig
from event_worker.errors import InputError
from event_worker.models import AudioChunk, DetectedObject, BoundingBox, Frame, FrameDetections, VideoMetadata
from event_worker.pipeline.audio import segment_fixed
from event_worker.pipeline.media import sample_timestamps

TEST_ROOT_DIR: Path = Path(__file__).parent

FAKE_WIDTH = 64
FAKE_HEIGHT = 48
FAKE_SAMPLE_RATE = 8000


class FakeSource:
    """
    In-memory stand-in for VideoSource.

    File names drive behaviour: names containing "corrupt" fail the probe,
    names containing "silent" have no audio track. Frames and waveform are
    generated, so no ffmpeg binary or video file is needed.
    """

    duration_sec = 4.0

    def __init__(self, video_path: str, config: ProcessingConfig):
        self.path = str(video_path)
        self.config = config
        self._frames_started = False

    @property
    def metadata(self) -> VideoMetadata:
        if "corrupt" in Path(self.path).name:
            raise InputError(self.path, "Unreadable video container (moov atom not found)")
        return VideoMetadata(
            path=self.path,
            duration_sec=self.duration_sec,
            width=FAKE_WIDTH,
            height=FAKE_HEIGHT,
            fps=25.0,
            has_audio="silent" not in Path(self.path).name
        )

    def frame_schedule(self) -> List[float]:
        return sample_timestamps(self.metadata.duration_sec, self.config.FRAME_INTERVAL_SEC)

    def iter_frames(self) -> Iterator[Frame]:
        if self._frames_started:
            raise RuntimeError("frame stream already consumed")
        self._frames_started = True
        return (make_frame(i, t) for i, t in enumerate(self.frame_schedule()))

    def iter_chunks(self) -> Iterator[AudioChunk]:
        if not self.metadata.has_audio:
            return iter(())
        return segment_fixed(make_tone(self.metadata.duration_sec), FAKE_SAMPLE_RATE, self.config.AUDIO_WINDOW_SEC)

    def save_audio(self, dest_path: str) -> Optional[str]:
        return None


def make_frame(index: int, timestamp: float, value: Optional[int] = None) -> Frame:
    fill = (index * 37) % 256 if value is None else value
    pixels = np.full((FAKE_HEIGHT, FAKE_WIDTH, 3), fill, dtype=np.uint8)
    return Frame(index=index, timestamp=timestamp, pixels=pixels)


def make_tone(duration_sec: float, sample_rate: int = FAKE_SAMPLE_RATE, amplitude: float = 0.3) -> np.ndarray:
    t = np.arange(int(duration_sec * sample_rate)) / sample_rate
    return (amplitude * np.sin(2 * np.pi * 440.0 * t)).astype(np.float32)


def make_object(label: str, timestamp: float, confidence: float = 0.9) -> DetectedObject:
    return DetectedObject(
        label=label,
        confidence=confidence,
        bbox=BoundingBox(x=1.0, y=2.0, width=10.5, height=20.25),
        timestamp=timestamp
    )


def make_detections(timestamp: float, index: int, *labels: str) -> FrameDetections:
    return FrameDetections(
        timestamp=timestamp,
        index=index,
        objects=tuple(make_object(label, timestamp) for label in labels)
    )


@pytest.fixture
def config(tmp_path) -> ProcessingConfig:
    return ProcessingConfig(
        INPUT_DIR=str(tmp_path / "input"),
        OUTPUT_DIR=str(tmp_path / "output"),
        MAX_CONCURRENT_JOBS=2,
        CONFIDENCE_THRESHOLD=0.3,
        FRAME_INTERVAL_SEC=1.0,
        FRAME_WORKERS=2,
        AUDIO_SAMPLE_RATE=FAKE_SAMPLE_RATE,
        AUDIO_WINDOW_SEC=2.0,
        SKIP_EXISTING=False
    )


@pytest.fixture
def backend() -> SyntheticBackend:
    backend = SyntheticBackend()
    backend.load()
    return backend


@pytest.fixture
def frames() -> List[Frame]:
    return [make_frame(i, float(i)) for i in range(10)]
