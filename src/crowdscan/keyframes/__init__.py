from .extractor import (
    Bucket,
    KeyframeOptions,
    SmartKeyframeExtractor,
    bucket_count,
    capture_current_frame,
    extract_keyframes_from_path,
    extract_smart_keyframes,
)
from .scoring import combined_score, difference_score, focus_score

__all__ = [
    "KeyframeOptions",
    "Bucket",
    "bucket_count",
    "SmartKeyframeExtractor",
    "extract_smart_keyframes",
    "extract_keyframes_from_path",
    "capture_current_frame",
    "difference_score",
    "focus_score",
    "combined_score",
]
