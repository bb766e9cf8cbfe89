import time
import logging
import threading
from pathlib import Path
from typing import Iterable, List, Optional

from ..backends.base import InferenceBackend
from ..errors import InferenceError, JobCancelled, OutputError
from ..models import AudioChunk, AudioSegment
from .util import atomic_write, format_timecode

logger = logging.getLogger("event_worker")


class AudioAnalyzer:
    """Transcribes audio chunks into timed text spans"""

    def __init__(self, backend: InferenceBackend, min_confidence: float = 0.0):
        self.backend = backend
        self.min_confidence = min_confidence
        self.chunks_analyzed = 0
        self.warnings = 0

    def analyze(
        self,
        chunks: Iterable[AudioChunk],
        video_id: str = "",
        cancel_event: Optional[threading.Event] = None
    ) -> List[AudioSegment]:
        """
        Transcribe every chunk.

        A chunk whose transcription fails yields one empty-text span covering
        the chunk with confidence 0, so the timeline keeps no gap in coverage.

        Returns:
            Segments sorted by (start, end)
        """
        start_time = time.time()
        segments = []

        for chunk in chunks:
            if cancel_event is not None and cancel_event.is_set():
                raise JobCancelled(f"Audio analysis cancelled for video {video_id}")

            try:
                spans = self.backend.transcribe(chunk)
            except InferenceError as e:
                logger.warning(f"Transcription failed for video {video_id}, chunk {chunk.index} "
                               f"[{chunk.start:.2f}s, {chunk.end:.2f}s]: {e}")
                self.warnings += 1
                spans = [AudioSegment(start=chunk.start, end=chunk.end, text="", confidence=0.0)]
            else:
                spans = [s for s in spans if s.confidence >= self.min_confidence]

            segments.extend(spans)
            self.chunks_analyzed += 1

        segments.sort(key=lambda s: (s.start, s.end))

        logger.info(f"Transcription completed for video {video_id}: {self.chunks_analyzed} chunks, "
                    f"{len(segments)} segments in {time.time() - start_time:.2f}s")
        return segments


def srt_timecode(seconds: float) -> str:
    """Format seconds as an SRT timestamp (HH:MM:SS,mmm)"""
    return format_timecode(seconds).replace('.', ',')


def save_srt(segments: List[AudioSegment], srt_path: Path) -> Path:
    """Save non-empty segments as an SRT subtitle file"""
    try:
        with atomic_write(srt_path) as f:
            for i, segment in enumerate((s for s in segments if s.text), 1):
                f.write(f"{i}\n")
                f.write(f"{srt_timecode(segment.start)} --> {srt_timecode(segment.end)}\n")
                f.write(f"{segment.text}\n\n")
    except OSError as e:
        raise OutputError(str(srt_path), str(e), primary=False)

    return Path(srt_path)
