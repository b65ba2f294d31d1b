"""Smart keyframe extraction.

Selects a bounded, temporally distributed set of informative frames from a
video in two passes:

1. Sampling: the timeline is walked at `sample_rate` samples per second.
   Each sample is rendered into a small working buffer and scored by motion
   (difference to the previous sample) and focus (Laplacian variance). The
   timeline is split into equal-width buckets and each bucket keeps only its
   best scoring sample.
2. Refinement: only the surviving candidate timestamps are revisited,
   rendered at output resolution, optionally rotated and JPEG encoded.

Example:
    >>> import asyncio
    >>> from crowdscan.base import CaptureVideoSource
    >>> from crowdscan.keyframes import extract_smart_keyframes
    >>>
    >>> with CaptureVideoSource("venue.mp4") as source:
    ...     frames = asyncio.run(extract_smart_keyframes(source, max_frames=10))
    >>> [round(f.timestamp, 1) for f in frames]
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
import math
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable

from crowdscan.base.exceptions import (
    KeyframeExtractionError,
    RenderError,
    SeekTimeoutError,
)
from crowdscan.base.imaging import KeyFrame, encode_jpeg, fit_within, normalize_rotation, rotate_frame
from crowdscan.base.progress import log
from crowdscan.base.source import CaptureVideoSource, VideoSource
from crowdscan.config import get_keyframe_defaults
from crowdscan.keyframes.scoring import combined_score, difference_score, focus_score

__all__ = [
    "KeyframeOptions",
    "Bucket",
    "bucket_count",
    "SmartKeyframeExtractor",
    "extract_smart_keyframes",
    "extract_keyframes_from_path",
    "capture_current_frame",
]

logger = logging.getLogger(__name__)

SAMPLING_SHARE = 50


@dataclass
class KeyframeOptions:
    """Keyframe extraction settings.

    Attributes:
        max_frames: Maximum number of output frames (and time buckets).
        sample_rate: Samples per second scanned in the sampling pass.
        diff_threshold: Optional minimum difference score for a sample to earn
            the motion weighting. None disables the gate.
        default_size: Maximum length of the longer output edge in pixels.
        rotation: Clockwise rotation of output frames in degrees, multiple of 90.
        on_progress: Callback receiving the overall progress as an int 0-100.
        seek_timeout: Seconds to wait for a single seek. None waits forever.
        jpeg_quality: JPEG quality of output frames (1-95).
        work_size: Edge length of the square scoring buffer.
    """

    max_frames: int = 20
    sample_rate: float = 2.0
    diff_threshold: float | None = None
    default_size: int = 800
    rotation: int = 0
    on_progress: Callable[[int], None] | None = field(default=None, repr=False, compare=False)
    seek_timeout: float | None = 10.0
    jpeg_quality: int = 80
    work_size: int = 100

    def __post_init__(self):
        if self.max_frames < 1:
            raise ValueError("max_frames must be at least 1")
        if self.sample_rate <= 0:
            raise ValueError("sample_rate must be positive")
        if self.default_size < 1:
            raise ValueError("default_size must be at least 1")
        if self.work_size < 1:
            raise ValueError("work_size must be at least 1")
        if not 1 <= self.jpeg_quality <= 95:
            raise ValueError("jpeg_quality must be between 1 and 95")
        if self.seek_timeout is not None and self.seek_timeout <= 0:
            raise ValueError("seek_timeout must be positive or None")
        if self.diff_threshold is not None and self.diff_threshold < 0:
            raise ValueError("diff_threshold must be non-negative or None")
        self.rotation = normalize_rotation(self.rotation)

    @classmethod
    def from_config(cls, **overrides: Any) -> KeyframeOptions:
        """Build options from the config file defaults and explicit overrides."""
        values = get_keyframe_defaults()
        values.update(overrides)
        return cls(**values)


@dataclass
class Bucket:
    """Time slot keeping its single best scoring sample."""

    best_time: float | None = None
    best_score: float | None = None

    @property
    def is_set(self) -> bool:
        return self.best_time is not None

    def offer(self, time: float, score: float) -> bool:
        """Keep the sample if it beats the current best. Ties keep the earlier sample."""
        if self.best_score is None or score > self.best_score:
            self.best_time = time
            self.best_score = score
            return True
        return False


def bucket_count(duration: float, max_frames: int) -> int:
    """Number of time buckets: at most `max_frames` and one per whole second, at least 1."""
    return min(max_frames, max(1, int(math.floor(duration))))


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


class SmartKeyframeExtractor:
    """Two-pass keyframe extractor driving a single `VideoSource`."""

    def __init__(self, options: KeyframeOptions | None = None):
        self.options = options if options is not None else KeyframeOptions()

    async def extract(self, source: VideoSource) -> list[KeyFrame]:
        """Extract keyframes and restore the source's playback position.

        Args:
            source: Seekable video source. Its playback position is restored
                to the pre-call value on success and on failure.

        Returns:
            Chronologically ordered keyframes, possibly empty.

        Raises:
            SeekTimeoutError: If a seek exceeds `seek_timeout`.
            KeyframeExtractionError: On any other failure.
        """
        original_time = source.current_time
        failed = False

        try:
            source.pause()
            candidates = await self.sample_candidates(source)
            return await self.refine_candidates(source, candidates)
        except (SeekTimeoutError, KeyframeExtractionError):
            failed = True
            raise
        except Exception as e:
            failed = True
            raise KeyframeExtractionError(f"Keyframe extraction failed: {e}") from e
        finally:
            await self._restore(source, original_time, failed)

    async def sample_candidates(self, source: VideoSource) -> list[float]:
        """Sampling pass: best scoring timestamp of every non-empty bucket, in order."""
        duration = source.duration
        if not math.isfinite(duration) or duration <= 0:
            logger.warning("Video duration %s is not usable, no keyframes extracted", duration)
            return []

        sample_rate = self.options.sample_rate
        work_size = self.options.work_size
        total_samples = max(1, int(math.floor(duration * sample_rate)))
        count = bucket_count(duration, self.options.max_frames)
        bucket_width = duration / count
        buckets = [Bucket() for _ in range(count)]

        log(f"Sampling {total_samples} frames into {count} buckets")
        previous = None
        for i in range(total_samples):
            time = i / sample_rate
            await self._seek(source, time)

            try:
                current = source.render(work_size, work_size)
            except RenderError as e:
                logger.warning("Skipping sample at %.2fs: %s", time, e)
            else:
                difference = difference_score(previous, current) if previous is not None else 0.0
                previous = current
                score = combined_score(difference, focus_score(current), self.options.diff_threshold)

                bucket_idx = min(int(math.floor(time / bucket_width)), count - 1)
                buckets[bucket_idx].offer(time, score)

            self._report(_round_half_up((i + 1) / total_samples * SAMPLING_SHARE))

        return [bucket.best_time for bucket in buckets if bucket.best_time is not None]

    async def refine_candidates(self, source: VideoSource, candidates: list[float]) -> list[KeyFrame]:
        """Refinement pass: render and encode every candidate at output resolution."""
        frames: list[KeyFrame] = []
        if not candidates:
            return frames

        width, height = fit_within(source.width, source.height, self.options.default_size)
        for i, time in enumerate(candidates):
            await self._seek(source, time)

            try:
                frame = source.render(width, height)
            except RenderError as e:
                logger.warning("Skipping keyframe at %.2fs: %s", time, e)
            else:
                frame = rotate_frame(frame, self.options.rotation)
                out_height, out_width = frame.shape[:2]
                frames.append(
                    KeyFrame(
                        timestamp=time,
                        data=encode_jpeg(frame, self.options.jpeg_quality),
                        width=out_width,
                        height=out_height,
                    )
                )

            progress = (i + 1) / len(candidates) * (100 - SAMPLING_SHARE)
            self._report(SAMPLING_SHARE + _round_half_up(progress))

        log(f"Extracted {len(frames)} keyframes from {len(candidates)} candidates")
        return frames

    async def _seek(self, source: VideoSource, time: float) -> None:
        timeout = self.options.seek_timeout
        if timeout is None:
            await source.seek(time)
            return
        try:
            await asyncio.wait_for(source.seek(time), timeout)
        except asyncio.TimeoutError:
            raise SeekTimeoutError(time, timeout) from None

    async def _restore(self, source: VideoSource, time: float, failed: bool) -> None:
        try:
            await self._seek(source, time)
        except Exception as e:
            if not failed:
                raise KeyframeExtractionError(f"Could not restore playback position to {time:.3f}s: {e}") from e
            logger.warning("Could not restore playback position to %.3fs: %s", time, e)

    def _report(self, percent: int) -> None:
        if self.options.on_progress is not None:
            self.options.on_progress(percent)


def _resolve_options(options: KeyframeOptions | None, overrides: dict[str, Any]) -> KeyframeOptions:
    if options is None:
        return KeyframeOptions.from_config(**overrides)
    if overrides:
        return dataclasses.replace(options, **overrides)
    return options


async def extract_smart_keyframes(
    source: VideoSource,
    options: KeyframeOptions | None = None,
    **overrides: Any,
) -> list[KeyFrame]:
    """Extract keyframes from an open video source.

    Args:
        source: Seekable video source owned by the caller.
        options: Extraction options. When omitted, config file defaults are used.
        **overrides: Individual `KeyframeOptions` fields to override.

    Returns:
        Chronologically ordered keyframes, between 0 and `max_frames` of them.
    """
    extractor = SmartKeyframeExtractor(_resolve_options(options, overrides))
    return await extractor.extract(source)


def extract_keyframes_from_path(
    path: str | Path,
    options: KeyframeOptions | None = None,
    **overrides: Any,
) -> list[KeyFrame]:
    """Open a video file, extract its keyframes and release it."""
    resolved = _resolve_options(options, overrides)
    with CaptureVideoSource(path) as source:
        return asyncio.run(SmartKeyframeExtractor(resolved).extract(source))


def capture_current_frame(
    source: VideoSource,
    max_size: int = 800,
    rotation: int = 0,
    quality: int = 80,
) -> KeyFrame:
    """Encode the frame at the source's current position without seeking.

    Raises:
        RenderError: If the current frame cannot be drawn.
    """
    width, height = fit_within(source.width, source.height, max_size)
    frame = rotate_frame(source.render(width, height), rotation)
    out_height, out_width = frame.shape[:2]
    return KeyFrame(
        timestamp=source.current_time,
        data=encode_jpeg(frame, quality),
        width=out_width,
        height=out_height,
    )
