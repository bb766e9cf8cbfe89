import os
import ffmpeg
import logging
import numpy as np
from pathlib import Path
from typing import Iterator, List, Tuple

from ..errors import InputError, OutputError
from ..models import AudioChunk
from .util import temp_path_for

logger = logging.getLogger("event_worker")

# RMS analysis hop used by the silence segmenter
SILENCE_HOP_SEC = 0.02


def extract_waveform(video_path: str, sample_rate: int = 16000) -> np.ndarray:
    """
    Demux the audio track to a mono float32 waveform in [-1, 1] at sample_rate.

    Returns an empty array when the file has no audio stream.
    """
    try:
        out, _ = (
            ffmpeg
            .input(video_path)
            .audio
            .output(
                'pipe:',
                format='s16le',
                acodec='pcm_s16le',  # 16-bit PCM
                ac=1,                # mono
                ar=sample_rate
            )
            .global_args('-loglevel', 'error')
            .run(capture_stdout=True, capture_stderr=True)
        )
    except ffmpeg.Error as e:
        stderr = e.stderr.decode(errors='replace').strip() if e.stderr else str(e)
        if "does not contain any stream" in stderr or "matches no streams" in stderr:
            logger.info(f"No audio stream in {video_path}")
            return np.zeros(0, dtype=np.float32)
        raise InputError(video_path, f"Audio decode failed ({stderr})")

    waveform = np.frombuffer(out, dtype=np.int16).astype(np.float32) / 32768.0
    logger.debug(f"Extracted {len(waveform) / sample_rate:.2f}s of audio from {video_path}")
    return waveform


def segment_fixed(waveform: np.ndarray, sample_rate: int, window_sec: float) -> Iterator[AudioChunk]:
    """Split the waveform into consecutive windows of window_sec (last one may be shorter)"""
    step = max(1, int(round(window_sec * sample_rate)))
    total = len(waveform)

    for idx, start in enumerate(range(0, total, step)):
        end = min(start + step, total)
        yield AudioChunk(
            index=idx,
            start=start / sample_rate,
            end=end / sample_rate,
            samples=waveform[start:end],
            sample_rate=sample_rate
        )


def _voiced_regions(voiced: np.ndarray, min_gap: int) -> List[Tuple[int, int]]:
    """Group voiced hops into [start, end) runs, bridging silences shorter than min_gap hops"""
    regions = []
    start = None
    last_voiced = None

    for i, is_voiced in enumerate(voiced):
        if not is_voiced:
            continue
        if start is None:
            start = i
        elif i - last_voiced - 1 >= min_gap:
            regions.append((start, last_voiced + 1))
            start = i
        last_voiced = i

    if start is not None:
        regions.append((start, last_voiced + 1))

    return regions


def segment_on_silence(
    waveform: np.ndarray,
    sample_rate: int,
    threshold_db: float = -40.0,
    min_silence_sec: float = 0.5,
    max_window_sec: float = 5.0
) -> Iterator[AudioChunk]:
    """
    Split the waveform at silences of at least min_silence_sec.

    A hop counts as silent when its RMS level is at or below threshold_db.
    Voiced regions longer than max_window_sec are cut into max_window_sec
    pieces. Fully silent stretches produce no chunk.
    """
    total = len(waveform)
    if total == 0:
        return

    hop = max(1, int(sample_rate * SILENCE_HOP_SEC))
    n_hops = -(-total // hop)
    padded = np.zeros(n_hops * hop, dtype=np.float32)
    padded[:total] = waveform

    rms = np.sqrt(np.mean(padded.reshape(n_hops, hop) ** 2, axis=1))
    level_db = 20.0 * np.log10(np.maximum(rms, 1e-10))
    voiced = level_db > threshold_db

    min_gap = max(1, int(round(min_silence_sec * sample_rate / hop)))
    max_window = max(1, int(round(max_window_sec * sample_rate)))

    idx = 0
    for hop_start, hop_end in _voiced_regions(voiced, min_gap):
        region_start = hop_start * hop
        region_end = min(hop_end * hop, total)
        for start in range(region_start, region_end, max_window):
            end = min(start + max_window, region_end)
            yield AudioChunk(
                index=idx,
                start=start / sample_rate,
                end=end / sample_rate,
                samples=waveform[start:end],
                sample_rate=sample_rate
            )
            idx += 1


def save_audio_track(video_path: str, dest_path: str, sample_rate: int = 16000) -> str:
    """
    Persist the extracted audio track as a mono 16-bit WAV.

    ffmpeg writes to a sibling temporary file which is renamed into place on
    success. Raises OutputError(primary=False) on failure.
    """
    dest = Path(dest_path)
    tmp_path = temp_path_for(dest)

    try:
        dest.parent.mkdir(parents=True, exist_ok=True)
        (
            ffmpeg
            .input(video_path)
            .audio
            .output(str(tmp_path), acodec='pcm_s16le', ac=1, ar=sample_rate)
            .overwrite_output()
            .run(quiet=True)
        )
        os.replace(tmp_path, dest)
    except (ffmpeg.Error, OSError) as e:
        if tmp_path.exists():
            tmp_path.unlink()
        detail = e.stderr.decode(errors='replace').strip() if isinstance(e, ffmpeg.Error) and e.stderr else str(e)
        raise OutputError(str(dest), detail, primary=False)

    logger.debug(f"Audio track saved: {dest}")
    return str(dest)
