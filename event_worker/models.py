"""
Domain models for the event worker.

Defines the core data structures used throughout the system,
providing type safety and clear interfaces between components.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Dict, Any, List, Tuple

import numpy as np


class JobStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class EventSource(str, Enum):
    VIDEO = "video"
    AUDIO = "audio"


def _check_confidence(value: float) -> None:
    if not 0.0 <= value <= 1.0:
        raise ValueError(f"confidence must be within [0, 1], got {value}")


@dataclass
class VideoJob:
    """Represents one video in a batch run and its lifecycle"""
    id: str
    source_path: str
    status: JobStatus = JobStatus.PENDING
    error: Optional[str] = None
    error_kind: Optional[str] = None
    elapsed_sec: float = 0.0
    output_path: Optional[str] = None
    frame_count: int = 0
    segment_count: int = 0

    @property
    def is_terminal(self) -> bool:
        return self.status in (JobStatus.COMPLETED, JobStatus.FAILED)

    def start(self) -> None:
        if self.status != JobStatus.PENDING:
            raise ValueError(f"Job {self.id} cannot start from status {self.status.value}")
        self.status = JobStatus.PROCESSING

    def complete(self, output_path: str, elapsed_sec: float) -> None:
        if self.status != JobStatus.PROCESSING:
            raise ValueError(f"Job {self.id} cannot complete from status {self.status.value}")
        self.status = JobStatus.COMPLETED
        self.output_path = output_path
        self.elapsed_sec = elapsed_sec

    def fail(self, error: str, kind: Optional[str], elapsed_sec: float) -> None:
        if self.status != JobStatus.PROCESSING:
            raise ValueError(f"Job {self.id} cannot fail from status {self.status.value}")
        self.status = JobStatus.FAILED
        self.error = error
        self.error_kind = kind
        self.elapsed_sec = elapsed_sec


@dataclass
class VideoMetadata:
    """Container metadata read before any decode work"""
    path: str
    duration_sec: float
    width: int
    height: int
    fps: float
    has_audio: bool = False
    container: Optional[str] = None


@dataclass
class Frame:
    """A sampled video frame. The pixel buffer is dropped right after inference."""
    index: int
    timestamp: float
    pixels: Optional[np.ndarray]
    width: int = 0
    height: int = 0

    def __post_init__(self):
        if self.timestamp < 0:
            raise ValueError(f"frame timestamp must be >= 0, got {self.timestamp}")
        if self.pixels is not None and not self.width and not self.height:
            self.height, self.width = self.pixels.shape[:2]

    def release(self) -> None:
        self.pixels = None


@dataclass(frozen=True)
class BoundingBox:
    x: float
    y: float
    width: float
    height: float

    def clamp(self, frame_width: float, frame_height: float) -> "BoundingBox":
        """Return a box that lies inside a frame of the given size"""
        x = min(max(self.x, 0.0), frame_width)
        y = min(max(self.y, 0.0), frame_height)
        x2 = min(max(self.x + self.width, x), frame_width)
        y2 = min(max(self.y + self.height, y), frame_height)
        return BoundingBox(x=x, y=y, width=x2 - x, height=y2 - y)

    def as_list(self) -> List[float]:
        return [self.x, self.y, self.width, self.height]


@dataclass(frozen=True)
class DetectedObject:
    label: str
    confidence: float
    bbox: BoundingBox
    timestamp: float

    def __post_init__(self):
        _check_confidence(self.confidence)
        if min(self.bbox.width, self.bbox.height, self.bbox.x, self.bbox.y) < 0:
            raise ValueError(f"bounding box must be non-negative, got {self.bbox}")


@dataclass(frozen=True)
class FrameDetections:
    """Detections kept for one analyzed frame"""
    timestamp: float
    index: int
    objects: Tuple[DetectedObject, ...] = ()


@dataclass
class AudioChunk:
    """A window of the normalized waveform, timed relative to the source video"""
    index: int
    start: float
    end: float
    samples: np.ndarray
    sample_rate: int

    @property
    def duration(self) -> float:
        return self.end - self.start


@dataclass(frozen=True)
class AudioSegment:
    start: float
    end: float
    text: str
    confidence: float = 1.0

    def __post_init__(self):
        if not self.start < self.end:
            raise ValueError(f"segment start must be before end, got [{self.start}, {self.end}]")
        _check_confidence(self.confidence)

    def contains(self, timestamp: float) -> bool:
        return self.start <= timestamp < self.end


@dataclass(frozen=True)
class TimelineEvent:
    timestamp: float
    objects: Tuple[DetectedObject, ...] = ()
    audio_text: str = ""
    source: EventSource = field(default=EventSource.VIDEO, compare=False)


@dataclass
class ProcessingResult:
    """Represents the result of processing one video"""
    success: bool
    stages_completed: List[str]
    events: List[TimelineEvent] = field(default_factory=list)
    output_path: Optional[str] = None
    error: Optional[str] = None
    error_kind: Optional[str] = None
    metrics: Dict[str, Any] = field(default_factory=dict)
    processing_time_sec: float = 0.0


@dataclass(frozen=True)
class JobRecord:
    """One line of the batch summary"""
    job_id: str
    source_path: str
    status: str
    elapsed_sec: float
    output_path: Optional[str] = None
    error: Optional[str] = None
    error_kind: Optional[str] = None

    @classmethod
    def from_job(cls, job: VideoJob, status: Optional[str] = None) -> "JobRecord":
        return cls(
            job_id=job.id,
            source_path=job.source_path,
            status=status or job.status.value,
            elapsed_sec=job.elapsed_sec,
            output_path=job.output_path,
            error=job.error,
            error_kind=job.error_kind,
        )


@dataclass
class BatchSummary:
    """Aggregate report of one batch run, records kept in completion order"""
    total: int = 0
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0
    cancelled: bool = False
    elapsed_sec: float = 0.0
    records: List[JobRecord] = field(default_factory=list)
    finalized: bool = False

    def record(self, record: JobRecord) -> None:
        if self.finalized:
            raise ValueError("Batch summary is already finalized")
        if record.status == JobStatus.COMPLETED.value:
            self.succeeded += 1
        elif record.status == JobStatus.FAILED.value:
            self.failed += 1
        else:
            self.skipped += 1
        self.records.append(record)

    def finalize(self, elapsed_sec: float) -> None:
        self.elapsed_sec = elapsed_sec
        self.finalized = True

    @property
    def exit_code(self) -> int:
        return 1 if self.failed else 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'total': self.total,
            'succeeded': self.succeeded,
            'failed': self.failed,
            'skipped': self.skipped,
            'cancelled': self.cancelled,
            'elapsed_sec': self.elapsed_sec,
            'jobs': [
                {
                    'id': r.job_id,
                    'source_path': r.source_path,
                    'status': r.status,
                    'elapsed_sec': r.elapsed_sec,
                    'output_path': r.output_path,
                    'error': r.error,
                    'error_kind': r.error_kind,
                }
                for r in self.records
            ]
        }
