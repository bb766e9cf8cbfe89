"""
Error taxonomy for the event worker.

Every failure the pipeline can raise derives from WorkerError so the batch
orchestrator can catch it at the job boundary and record what went wrong.
"""

from enum import Enum
from typing import List


class WorkerError(Exception):
    """Base exception for all worker errors"""
    pass


class ConfigError(WorkerError):
    """Raised when configuration values are invalid. Fatal before any job starts."""

    def __init__(self, problems: List[str]):
        self.problems = list(problems)
        super().__init__(f"Invalid configuration: {'; '.join(self.problems)}")


class InputError(WorkerError):
    """Raised when a source video is missing, unreadable or unsupported"""

    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"{reason}: {path}")


class BackendUnavailable(WorkerError):
    """Raised when the inference runtime or its model assets cannot be initialized"""

    def __init__(self, backend: str, reason: str):
        self.backend = backend
        self.reason = reason
        super().__init__(f"Backend '{backend}' unavailable: {reason}")


class InferenceErrorKind(str, Enum):
    BACKEND_UNAVAILABLE = "backend_unavailable"
    UNSUPPORTED_INPUT = "unsupported_input"
    INTERNAL_FAILURE = "internal_failure"


class InferenceError(WorkerError):
    """A single detection or transcription call failed"""

    def __init__(self, kind: InferenceErrorKind, message: str):
        self.kind = kind
        super().__init__(f"[{kind.value}] {message}")


class OutputError(WorkerError):
    """
    Raised when writing a result or artifact fails.

    primary=True marks the per-job result file, whose failure fails the job.
    Artifact writes (frames, audio track) use primary=False and are only warned.
    """

    def __init__(self, path: str, reason: str, primary: bool = True):
        self.path = path
        self.primary = primary
        super().__init__(f"Failed to write {path}: {reason}")


class JobCancelled(WorkerError):
    """Raised inside a running job once the batch has been cancelled"""
    pass


_KIND_NAMES = {
    ConfigError: "config_error",
    InputError: "input_error",
    BackendUnavailable: "backend_unavailable",
    InferenceError: "inference_error",
    OutputError: "io_error",
    JobCancelled: "cancelled",
}


def error_kind(exc: BaseException) -> str:
    """Short classification stored on a failed job"""
    for exc_type, name in _KIND_NAMES.items():
        if isinstance(exc, exc_type):
            return name
    if isinstance(exc, OSError):
        return "io_error"
    return "internal_error"
