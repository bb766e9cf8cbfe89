import os
import re
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, IO, Optional, Union

PathLike = Union[str, Path]

DEFAULT_FRAMES_DIR = "frames"
DEFAULT_AUDIO_NAME = "audio.wav"
RESULT_STEM = "results"


def get_video_output_dir(output_dir: PathLike, video_id: str) -> Path:
    """Get the per-video output directory: <output_dir>/<video_id>"""
    return Path(output_dir) / clean_filename(video_id)


def get_frames_dir(output_dir: PathLike, video_id: str) -> Path:
    """Get frames directory for a video"""
    frames_dir = get_video_output_dir(output_dir, video_id) / DEFAULT_FRAMES_DIR
    frames_dir.mkdir(parents=True, exist_ok=True)
    return frames_dir


def get_audio_path(output_dir: PathLike, video_id: str) -> Path:
    """Get extracted audio track path for a video"""
    return get_video_output_dir(output_dir, video_id) / DEFAULT_AUDIO_NAME


def result_path(output_dir: PathLike, video_id: str, fmt: str) -> Path:
    """Primary result location for a video: <output>/<video_id>/results.<fmt>"""
    return get_video_output_dir(output_dir, video_id) / f"{RESULT_STEM}.{fmt}"



@contextmanager
def atomic_write(path: PathLike, mode: str = "w", encoding: str = "utf-8", newline: Optional[str] = None) -> Iterator[IO]:
    """
    Write to a temporary file next to path and publish it with os.replace.

    The final path only ever holds a complete file. On any exception,
    including KeyboardInterrupt, the temporary file is removed and the
    existing file at path (if any) is left untouched.
    """
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{target.name}.", suffix=".tmp", dir=target.parent)
    try:
        if "b" in mode:
            handle = os.fdopen(fd, mode)
        else:
            handle = os.fdopen(fd, mode, encoding=encoding, newline=newline)
        with handle:
            yield handle
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp_name, target)
    except BaseException:
        try:
            os.unlink(tmp_name)
        except OSError:
            pass
        raise


def temp_path_for(path: PathLike) -> Path:
    """Sibling temporary path for tools that write files themselves (ffmpeg)"""
    target = Path(path)
    return target.with_name(f".{target.stem}.partial{target.suffix}")


def format_timecode(seconds: float) -> str:
    """Format seconds as HH:MM:SS.mmm"""
    hours = int(seconds // 3600)
    minutes = int((seconds % 3600) // 60)
    secs = seconds % 60
    return f"{hours:02d}:{minutes:02d}:{secs:06.3f}"


def clean_filename(filename: str) -> str:
    """Clean filename for safe filesystem usage"""
    # Remove or replace unsafe characters
    filename = re.sub(r'[<>:"/\\|?*]', '_', filename)
    # Remove multiple underscores
    filename = re.sub(r'_+', '_', filename)
    # Remove leading/trailing underscores and dots
    filename = filename.strip('_.')
    return filename or 'unnamed'
