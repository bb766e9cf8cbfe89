"""
Media extraction: container probing, lazy frame sampling and audio access.

Decoding is delegated to ffmpeg through ffmpeg-python. Frames are read one
at a time from an ffmpeg pipe, so a video's frames are never all held in
memory at once.
"""

import os
import math
import ffmpeg
import logging
import numpy as np
from fractions import Fraction
from pathlib import Path
from typing import Iterator, List, Optional
from PIL import Image

from ..config import ProcessingConfig, DEFAULT_VIDEO_EXTENSIONS
from ..errors import InputError, OutputError
from ..models import AudioChunk, Frame, VideoMetadata
from .audio import extract_waveform, segment_fixed, segment_on_silence, save_audio_track
from .util import atomic_write

logger = logging.getLogger("event_worker")


def _parse_rate(rate: Optional[str]) -> float:
    try:
        return float(Fraction(rate)) if rate else 0.0
    except (ValueError, ZeroDivisionError):
        return 0.0


def probe_video(video_path: str, extensions: Optional[List[str]] = None) -> VideoMetadata:
    """
    Read container metadata before any decode work.

    Raises:
        InputError: missing file, unsupported extension, unreadable container,
            no video stream or non-positive duration
    """
    extensions = extensions or DEFAULT_VIDEO_EXTENSIONS
    path = Path(video_path)

    if not path.is_file():
        raise InputError(video_path, "Video file not found")

    suffix = path.suffix.lower().lstrip(".")
    if suffix not in extensions:
        raise InputError(video_path, f"Unsupported container '{suffix or '(none)'}'")

    try:
        probe = ffmpeg.probe(str(path))
    except ffmpeg.Error as e:
        stderr = e.stderr.decode(errors='replace').strip() if e.stderr else str(e)
        raise InputError(video_path, f"Unreadable video container ({stderr})")

    streams = probe.get('streams', [])
    video_stream = next((s for s in streams if s.get('codec_type') == 'video'), None)
    if video_stream is None:
        raise InputError(video_path, "No video stream found")

    fmt = probe.get('format', {})
    try:
        duration = float(video_stream.get('duration') or fmt.get('duration') or 0)
        width = int(video_stream['width'])
        height = int(video_stream['height'])
    except (KeyError, TypeError, ValueError) as e:
        raise InputError(video_path, f"Incomplete stream metadata ({e})")

    if duration <= 0 or width <= 0 or height <= 0:
        raise InputError(video_path, f"Invalid video geometry {width}x{height}, duration {duration}")

    return VideoMetadata(
        path=str(path),
        duration_sec=duration,
        width=width,
        height=height,
        fps=_parse_rate(video_stream.get('avg_frame_rate')) or _parse_rate(video_stream.get('r_frame_rate')),
        has_audio=any(s.get('codec_type') == 'audio' for s in streams),
        container=fmt.get('format_name')
    )


def sample_timestamps(duration: float, interval: float) -> List[float]:
    """
    Sampling schedule t_k = k * interval for every k with t_k < duration.

    The boundary frame at t == duration is excluded: a 10s video sampled
    every second yields 10 frames at 0..9s.
    """
    if interval <= 0:
        raise ValueError(f"interval must be positive, got {interval}")
    if duration <= 0:
        return []
    count = math.ceil(duration / interval)
    # ceil can overshoot by one on float noise (e.g. 0.3 / 0.1)
    if (count - 1) * interval >= duration:
        count -= 1
    return [k * interval for k in range(count)]


class VideoSource:
    """
    One input video: metadata, a single-pass frame stream and its audio.

    iter_frames() may be consumed only once per source.
    """

    def __init__(self, video_path: str, config: ProcessingConfig):
        self.path = str(video_path)
        self.config = config
        self._metadata: Optional[VideoMetadata] = None
        self._frames_started = False

    @property
    def metadata(self) -> VideoMetadata:
        if self._metadata is None:
            self._metadata = probe_video(self.path, self.config.extensions)
        return self._metadata

    def frame_schedule(self) -> List[float]:
        return sample_timestamps(self.metadata.duration_sec, self.config.FRAME_INTERVAL_SEC)

    def iter_frames(self) -> Iterator[Frame]:
        """Yield sampled frames in timestamp order, decoding lazily"""
        if self._frames_started:
            raise RuntimeError(f"Frame stream for {self.path} was already consumed")
        self._frames_started = True
        return self._read_frames()

    def _read_frames(self) -> Iterator[Frame]:
        meta = self.metadata
        schedule = self.frame_schedule()
        if not schedule:
            return

        rate = Fraction(1.0 / self.config.FRAME_INTERVAL_SEC).limit_denominator(1000)
        frame_size = meta.width * meta.height * 3

        process = (
            ffmpeg
            .input(self.path)
            .video
            .filter('fps', fps=f"{rate.numerator}/{rate.denominator}")
            .output('pipe:', format='rawvideo', pix_fmt='rgb24')
            .global_args('-loglevel', 'error')
            .run_async(pipe_stdout=True, pipe_stderr=True)
        )

        emitted = 0
        try:
            for index, timestamp in enumerate(schedule):
                buffer = process.stdout.read(frame_size)
                if len(buffer) < frame_size:
                    break
                pixels = np.frombuffer(buffer, dtype=np.uint8).reshape(meta.height, meta.width, 3)
                emitted += 1
                yield Frame(index=index, timestamp=timestamp, pixels=pixels,
                            width=meta.width, height=meta.height)
        finally:
            if process.poll() is None:
                process.kill()
            _, stderr = process.communicate()

        if emitted == 0:
            detail = stderr.decode(errors='replace').strip() if stderr else "no frames decoded"
            raise InputError(self.path, f"Video decode failed ({detail})")
        if emitted < len(schedule):
            logger.warning(f"Decoded {emitted}/{len(schedule)} sampled frames from {self.path}")

    def load_waveform(self) -> np.ndarray:
        if not self.metadata.has_audio:
            return np.zeros(0, dtype=np.float32)
        return extract_waveform(self.path, self.config.AUDIO_SAMPLE_RATE)

    def iter_chunks(self) -> Iterator[AudioChunk]:
        """Ordered audio windows timed relative to the source video"""
        waveform = self.load_waveform()
        sr = self.config.AUDIO_SAMPLE_RATE
        if self.config.AUDIO_SEGMENTATION == "silence":
            return segment_on_silence(
                waveform, sr,
                threshold_db=self.config.SILENCE_THRESHOLD_DB,
                min_silence_sec=self.config.MIN_SILENCE_SEC,
                max_window_sec=self.config.AUDIO_WINDOW_SEC
            )
        return segment_fixed(waveform, sr, self.config.AUDIO_WINDOW_SEC)

    def save_audio(self, dest_path: str) -> Optional[str]:
        if not self.metadata.has_audio:
            return None
        return save_audio_track(self.path, dest_path, self.config.AUDIO_SAMPLE_RATE)


def save_frame(frame: Frame, frames_dir: str) -> str:
    """
    Persist a sampled frame as JPEG, named by its sequence index.

    Raises OutputError(primary=False) on failure.
    """
    frame_path = os.path.join(frames_dir, f"frame_{frame.index:04d}.jpg")
    if frame.pixels is None:
        raise OutputError(frame_path, "frame pixels already released", primary=False)
    try:
        with atomic_write(frame_path, mode="wb") as f:
            Image.fromarray(frame.pixels).save(f, format="JPEG", quality=90)
    except OSError as e:
        raise OutputError(frame_path, str(e), primary=False)
    return frame_path
