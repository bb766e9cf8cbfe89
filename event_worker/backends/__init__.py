"""
Inference backend implementations.

This module provides the abstract InferenceBackend and its variants
(synthetic, PyTorch, ONNX Runtime, OpenCV DNN). The variant is chosen
once from configuration and shared by every job of a run.
"""

from ..config import ProcessingConfig, SUPPORTED_BACKENDS
from ..errors import ConfigError
from .base import InferenceBackend
from .synthetic import SyntheticBackend


def create_backend(config: ProcessingConfig) -> InferenceBackend:
    """Create the inference backend selected by configuration"""

    if config.BACKEND == "synthetic":
        return SyntheticBackend()

    elif config.BACKEND == "torch":
        from .torch_backend import TorchBackend
        return TorchBackend(
            video_model_path=config.VIDEO_MODEL_PATH,
            audio_model=config.AUDIO_MODEL_PATH,
            use_gpu=config.USE_GPU,
            confidence_threshold=config.CONFIDENCE_THRESHOLD
        )

    elif config.BACKEND == "onnx":
        from .onnx_backend import OnnxBackend
        return OnnxBackend(
            video_model_path=config.VIDEO_MODEL_PATH,
            use_gpu=config.USE_GPU,
            confidence_threshold=config.CONFIDENCE_THRESHOLD
        )

    elif config.BACKEND == "opencv":
        from .opencv_backend import OpenCVBackend
        return OpenCVBackend(
            video_model_path=config.VIDEO_MODEL_PATH,
            use_gpu=config.USE_GPU,
            confidence_threshold=config.CONFIDENCE_THRESHOLD
        )

    else:
        raise ConfigError([f"BACKEND must be one of {', '.join(SUPPORTED_BACKENDS)}, got {config.BACKEND!r}"])


__all__ = [
    'InferenceBackend',
    'SyntheticBackend',
    'create_backend'
]
