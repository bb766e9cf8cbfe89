"""
Per-video pipeline stages: media extraction, frame and audio analysis,
synchronization and result output.
"""

from .frames import FrameAnalyzer
from .output import read_results, write_results
from .sync import format_events, synchronize
from .transcribe import AudioAnalyzer

__all__ = [
    'FrameAnalyzer',
    'AudioAnalyzer',
    'synchronize',
    'format_events',
    'write_results',
    'read_results'
]
