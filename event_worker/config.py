"""
Configuration management for the event worker.

Centralizes configuration loading from environment variables or a TOML
file and provides type-safe access to configuration values. The pipeline
only ever sees a validated ProcessingConfig.
"""

import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Any, List, Optional, Tuple

from .errors import ConfigError

SUPPORTED_BACKENDS = ("synthetic", "torch", "onnx", "opencv")
SUPPORTED_FORMATS = ("json", "csv", "txt")
SUPPORTED_SEGMENTATION = ("fixed", "silence")
DEFAULT_VIDEO_EXTENSIONS = ["mp4", "avi", "mov", "mkv", "wmv", "flv", "webm"]


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("1", "true", "yes", "on")


# field -> (table, key, type) in the TOML layout
_TOML_FIELDS: Dict[str, Tuple[str, str, type]] = {
    "INPUT_DIR": ("batch", "input_directory", str),
    "OUTPUT_DIR": ("batch", "output_directory", str),
    "VIDEO_EXTENSIONS": ("batch", "video_extensions", list),
    "MAX_CONCURRENT_JOBS": ("batch", "max_concurrent_videos", int),
    "SKIP_EXISTING": ("batch", "skip_existing", bool),
    "BACKEND": ("ml_models", "backend", str),
    "VIDEO_MODEL_PATH": ("ml_models", "video_model_path", str),
    "AUDIO_MODEL_PATH": ("ml_models", "audio_model_path", str),
    "USE_GPU": ("ml_models", "use_gpu", bool),
    "CONFIDENCE_THRESHOLD": ("ml_models", "confidence_threshold", float),
    "FRAME_INTERVAL_SEC": ("sampling", "frame_interval_sec", float),
    "FRAME_WORKERS": ("sampling", "frame_workers", int),
    "MATCH_TOLERANCE_SEC": ("sampling", "match_tolerance_sec", float),
    "AUDIO_SAMPLE_RATE": ("audio", "sample_rate", int),
    "AUDIO_WINDOW_SEC": ("audio", "window_sec", float),
    "AUDIO_SEGMENTATION": ("audio", "segmentation", str),
    "SILENCE_THRESHOLD_DB": ("audio", "silence_threshold_db", float),
    "MIN_SILENCE_SEC": ("audio", "min_silence_sec", float),
    "OUTPUT_FORMAT": ("output", "output_format", str),
    "SAVE_FRAMES": ("output", "save_frames", bool),
    "SAVE_AUDIO": ("output", "save_audio", bool),
}


def _coerce(value: Any, kind: type) -> Any:
    """Convert a TOML value to a config field type, accepting numeric strings"""
    if kind is bool:
        if isinstance(value, bool):
            return value
        if isinstance(value, str) and value.lower() in ("1", "true", "yes", "on", "0", "false", "no", "off"):
            return value.lower() in ("1", "true", "yes", "on")
        raise TypeError(value)
    if kind in (int, float):
        if isinstance(value, bool) or not isinstance(value, (int, float, str)):
            raise TypeError(value)
        if kind is int and isinstance(value, float):
            if not value.is_integer():
                raise ValueError(value)
            return int(value)
        return kind(value)
    if kind is list:
        if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
            raise TypeError(value)
        return list(value)
    if not isinstance(value, str):
        raise TypeError(value)
    return value



@dataclass
class ProcessingConfig:
    """Configuration for a single-file or batch run"""

    # Batch settings
    INPUT_DIR: str = "input_videos"
    OUTPUT_DIR: str = "output_results"
    VIDEO_EXTENSIONS: List[str] = field(default_factory=lambda: list(DEFAULT_VIDEO_EXTENSIONS))
    MAX_CONCURRENT_JOBS: int = 4
    SKIP_EXISTING: bool = True

    # Inference backend
    BACKEND: str = "synthetic"
    VIDEO_MODEL_PATH: Optional[str] = None
    AUDIO_MODEL_PATH: Optional[str] = None
    USE_GPU: bool = True
    CONFIDENCE_THRESHOLD: float = 0.5

    # Frame sampling
    FRAME_INTERVAL_SEC: float = 1.0
    FRAME_WORKERS: int = 4
    MATCH_TOLERANCE_SEC: float = 0.0

    # Audio segmentation
    AUDIO_SAMPLE_RATE: int = 16000
    AUDIO_WINDOW_SEC: float = 5.0
    AUDIO_SEGMENTATION: str = "fixed"
    SILENCE_THRESHOLD_DB: float = -40.0
    MIN_SILENCE_SEC: float = 0.5

    # Output
    OUTPUT_FORMAT: str = "json"
    SAVE_FRAMES: bool = False
    SAVE_AUDIO: bool = False

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_DIR: Optional[str] = None

    @classmethod
    def from_env(cls) -> 'ProcessingConfig':
        """Load configuration from environment variables"""
        config = cls()

        # Batch settings
        config.INPUT_DIR = os.getenv("INPUT_DIR", config.INPUT_DIR)
        config.OUTPUT_DIR = os.getenv("OUTPUT_DIR", config.OUTPUT_DIR)
        extensions = os.getenv("VIDEO_EXTENSIONS")
        if extensions:
            config.VIDEO_EXTENSIONS = [e.strip() for e in extensions.split(",") if e.strip()]
        config.MAX_CONCURRENT_JOBS = int(os.getenv("MAX_CONCURRENT_JOBS", "4"))
        config.SKIP_EXISTING = _env_bool("SKIP_EXISTING", "true")

        # Inference backend
        config.BACKEND = os.getenv("BACKEND", "synthetic")
        config.VIDEO_MODEL_PATH = os.getenv("VIDEO_MODEL_PATH")
        config.AUDIO_MODEL_PATH = os.getenv("AUDIO_MODEL_PATH")
        config.USE_GPU = _env_bool("USE_GPU", "true")
        config.CONFIDENCE_THRESHOLD = float(os.getenv("CONFIDENCE_THRESHOLD", "0.5"))

        # Frame sampling
        config.FRAME_INTERVAL_SEC = float(os.getenv("FRAME_INTERVAL_SEC", "1.0"))
        config.FRAME_WORKERS = int(os.getenv("FRAME_WORKERS", "4"))
        config.MATCH_TOLERANCE_SEC = float(os.getenv("MATCH_TOLERANCE_SEC", "0.0"))

        # Audio segmentation
        config.AUDIO_SAMPLE_RATE = int(os.getenv("AUDIO_SAMPLE_RATE", "16000"))
        config.AUDIO_WINDOW_SEC = float(os.getenv("AUDIO_WINDOW_SEC", "5.0"))
        config.AUDIO_SEGMENTATION = os.getenv("AUDIO_SEGMENTATION", "fixed")
        config.SILENCE_THRESHOLD_DB = float(os.getenv("SILENCE_THRESHOLD_DB", "-40"))
        config.MIN_SILENCE_SEC = float(os.getenv("MIN_SILENCE_SEC", "0.5"))

        # Output
        config.OUTPUT_FORMAT = os.getenv("OUTPUT_FORMAT", "json").lower()
        config.SAVE_FRAMES = _env_bool("SAVE_FRAMES", "false")
        config.SAVE_AUDIO = _env_bool("SAVE_AUDIO", "false")

        # Logging
        config.LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
        config.LOG_DIR = os.getenv("LOG_DIR")

        return config

    @classmethod
    def from_toml(cls, path: str) -> 'ProcessingConfig':
        """
        Load configuration from a TOML file with [batch], [ml_models],
        [sampling], [audio] and [output] tables. Missing keys keep defaults.

        Values are converted to each field's type; anything that does not
        convert is reported as a ConfigError.
        """
        try:
            with open(path, "rb") as f:
                data = tomllib.load(f)
        except (OSError, tomllib.TOMLDecodeError) as e:
            raise ConfigError([f"cannot read config file {path}: {e}"])

        config = cls()
        problems = []
        for name, (table, key, kind) in _TOML_FIELDS.items():
            section = data.get(table, {})
            if not isinstance(section, dict):
                if f"[{table}] must be a table" not in problems:
                    problems.append(f"[{table}] must be a table")
                continue
            value = section.get(key)
            if value is None:
                continue
            try:
                setattr(config, name, _coerce(value, kind))
            except (TypeError, ValueError):
                problems.append(f"{name} ([{table}] {key}) must be {kind.__name__}, got {value!r}")

        if problems:
            raise ConfigError(problems)
        return config

    def validate(self) -> None:
        """Validate configuration and raise ConfigError listing every bad value"""
        problems = []

        if not 0.0 <= self.CONFIDENCE_THRESHOLD <= 1.0:
            problems.append(f"CONFIDENCE_THRESHOLD must be within [0, 1], got {self.CONFIDENCE_THRESHOLD}")

        if self.FRAME_INTERVAL_SEC <= 0:
            problems.append(f"FRAME_INTERVAL_SEC must be positive, got {self.FRAME_INTERVAL_SEC}")

        if self.MAX_CONCURRENT_JOBS < 1:
            problems.append(f"MAX_CONCURRENT_JOBS must be at least 1, got {self.MAX_CONCURRENT_JOBS}")

        if self.FRAME_WORKERS < 1:
            problems.append(f"FRAME_WORKERS must be at least 1, got {self.FRAME_WORKERS}")

        if self.MATCH_TOLERANCE_SEC < 0:
            problems.append(f"MATCH_TOLERANCE_SEC must be non-negative, got {self.MATCH_TOLERANCE_SEC}")

        if self.AUDIO_SAMPLE_RATE <= 0:
            problems.append(f"AUDIO_SAMPLE_RATE must be positive, got {self.AUDIO_SAMPLE_RATE}")

        if self.AUDIO_WINDOW_SEC <= 0:
            problems.append(f"AUDIO_WINDOW_SEC must be positive, got {self.AUDIO_WINDOW_SEC}")

        if self.MIN_SILENCE_SEC <= 0:
            problems.append(f"MIN_SILENCE_SEC must be positive, got {self.MIN_SILENCE_SEC}")

        if self.OUTPUT_FORMAT not in SUPPORTED_FORMATS:
            problems.append(f"OUTPUT_FORMAT must be one of {', '.join(SUPPORTED_FORMATS)}, got {self.OUTPUT_FORMAT!r}")

        if self.BACKEND not in SUPPORTED_BACKENDS:
            problems.append(f"BACKEND must be one of {', '.join(SUPPORTED_BACKENDS)}, got {self.BACKEND!r}")

        if self.AUDIO_SEGMENTATION not in SUPPORTED_SEGMENTATION:
            problems.append(
                f"AUDIO_SEGMENTATION must be one of {', '.join(SUPPORTED_SEGMENTATION)}, got {self.AUDIO_SEGMENTATION!r}"
            )

        if not self.VIDEO_EXTENSIONS:
            problems.append("VIDEO_EXTENSIONS must not be empty")

        if problems:
            raise ConfigError(problems)

    @property
    def extensions(self) -> List[str]:
        """Normalized extension list without leading dots"""
        return [e.lower().lstrip(".") for e in self.VIDEO_EXTENSIONS]

    def output_dir(self) -> Path:
        return Path(self.OUTPUT_DIR)
