"""
Video event worker.

Extracts detected objects and transcribed speech from video files and
merges them into one time-ordered event stream per video.
"""

__version__ = "0.1.0"
