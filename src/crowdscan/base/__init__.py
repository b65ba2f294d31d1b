from .exceptions import (
    ConfigError,
    CrowdScanError,
    KeyframeExtractionError,
    RenderError,
    SeekError,
    SeekTimeoutError,
    VideoLoadError,
    VideoSourceError,
)
from .imaging import KeyFrame, encode_jpeg, fit_within, prepare_still, rotate_frame, to_data_url
from .progress import configure, set_progress, set_verbose
from .source import ArrayVideoSource, CaptureVideoSource, VideoMetadata, VideoSource

__all__ = [
    # Sources
    "VideoSource",
    "ArrayVideoSource",
    "CaptureVideoSource",
    "VideoMetadata",
    # Imaging
    "KeyFrame",
    "fit_within",
    "rotate_frame",
    "encode_jpeg",
    "to_data_url",
    "prepare_still",
    # Exceptions
    "CrowdScanError",
    "VideoSourceError",
    "VideoLoadError",
    "RenderError",
    "SeekError",
    "SeekTimeoutError",
    "KeyframeExtractionError",
    "ConfigError",
    # Configuration
    "configure",
    "set_verbose",
    "set_progress",
]
