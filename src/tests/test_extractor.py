import asyncio
import math
import time

import numpy as np
import pytest

from crowdscan.base.exceptions import KeyframeExtractionError, RenderError, SeekTimeoutError
from crowdscan.base.source import ArrayVideoSource
from crowdscan.keyframes.extractor import (
    Bucket,
    KeyframeOptions,
    SmartKeyframeExtractor,
    bucket_count,
    capture_current_frame,
    extract_keyframes_from_path,
    extract_smart_keyframes,
)
from crowdscan.keyframes.scoring import combined_score


class FlakySource(ArrayVideoSource):
    """Array source that fails to render at selected times."""

    def __init__(self, frames, fps, failing_times=(), fail_from=None):
        super().__init__(frames, fps)
        self.failing_times = set(failing_times)
        self.fail_from = fail_from
        self.renders = 0

    def render(self, width, height):
        self.renders += 1
        if self.current_time in self.failing_times:
            raise RenderError(f"no context at {self.current_time}")
        if self.fail_from is not None and self.renders > self.fail_from:
            raise RenderError("context lost")
        return super().render(width, height)


class HangingSource(ArrayVideoSource):
    """Array source whose seeks away from the start never complete."""

    async def seek(self, time):
        if time > 0:
            await asyncio.Event().wait()
        await super().seek(time)


class RevokedSource(ArrayVideoSource):
    """Array source whose backing resource disappears mid-scan."""

    async def seek(self, time):
        if time >= 1.0:
            raise OSError("media resource revoked")
        await super().seek(time)


class DetachedPlayerSource(ArrayVideoSource):
    """Array source whose player cannot be paused."""

    def pause(self):
        raise RuntimeError("player detached")


class NaNSource(ArrayVideoSource):
    @property
    def duration(self):
        return math.nan


def _run(source, **overrides):
    return asyncio.run(extract_smart_keyframes(source, **overrides))


def _noise_source(duration: float, fps: float = 4.0) -> ArrayVideoSource:
    rng = np.random.default_rng(seed=int(duration * 10))
    frame_count = max(1, round(duration * fps))
    return ArrayVideoSource(rng.integers(0, 256, (frame_count, 32, 32, 3), dtype=np.uint8), fps=fps)


class TestKeyframeOptions:
    """Tests for option defaults and validation."""

    def test_defaults(self):
        options = KeyframeOptions()
        assert options.max_frames == 20
        assert options.sample_rate == 2.0
        assert options.diff_threshold is None
        assert options.default_size == 800
        assert options.rotation == 0
        assert options.seek_timeout == 10.0
        assert options.jpeg_quality == 80

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"max_frames": 0},
            {"sample_rate": 0},
            {"default_size": 0},
            {"rotation": 45},
            {"jpeg_quality": 100},
            {"seek_timeout": 0},
            {"diff_threshold": -1},
            {"work_size": 0},
        ],
    )
    def test_invalid_options(self, kwargs):
        with pytest.raises(ValueError):
            KeyframeOptions(**kwargs)

    def test_rotation_is_normalized(self):
        assert KeyframeOptions(rotation=-90).rotation == 270


class TestBuckets:
    """Tests for bucket bookkeeping."""

    @pytest.mark.parametrize(
        "duration, max_frames, expected",
        [(0.4, 20, 1), (5.0, 20, 5), (5.9, 20, 5), (60.0, 20, 20), (60.0, 1, 1)],
    )
    def test_bucket_count(self, duration, max_frames, expected):
        assert bucket_count(duration, max_frames) == expected

    def test_first_sample_always_taken(self):
        bucket = Bucket()
        assert not bucket.is_set
        assert bucket.offer(0.5, 0.0)
        assert bucket.is_set
        assert bucket.best_time == 0.5

    def test_ties_keep_earlier_sample(self):
        bucket = Bucket()
        bucket.offer(1.0, 42.0)
        assert not bucket.offer(1.5, 42.0)
        assert bucket.best_time == 1.0

    def test_motion_weighted_sample_wins(self):
        """A 200/10 sample (2010) beats a 0/500 sample (500) in the same bucket."""
        bucket = Bucket()
        bucket.offer(2.0, combined_score(0, 500))
        bucket.offer(2.5, combined_score(200, 10))
        assert bucket.best_time == 2.5
        assert bucket.best_score == 2010


class TestExtraction:
    """Tests for the full two-pass extraction."""

    def test_static_video(self, static_source):
        """A static clip yields one frame per whole second, picked first in each bucket."""
        frames = _run(static_source)

        assert len(frames) == 5
        assert [frame.timestamp for frame in frames] == [0.0, 1.0, 2.0, 3.0, 4.0]
        for frame in frames:
            assert frame.size == (160, 120)
            assert frame.data[:2] == b"\xff\xd8"

    def test_max_frames_caps_output(self, static_source):
        frames = _run(static_source, max_frames=2)
        assert [frame.timestamp for frame in frames] == [0.0, 2.5]

    def test_single_bucket_takes_global_best(self, flash_source):
        """With one bucket the sample right after the flash wins over the whole clip."""
        frames = _run(flash_source, max_frames=1)
        assert len(frames) == 1
        assert frames[0].timestamp == 2.0

    def test_diff_threshold_gates_motion(self, flash_source):
        """Below-threshold motion earns no weighting, leaving a tie won by the first sample."""
        frames = _run(flash_source, max_frames=1, diff_threshold=500)
        assert frames[0].timestamp == 0.0

    @pytest.mark.parametrize("duration", [0.5, 2.75, 7.25, 30.0])
    @pytest.mark.parametrize("max_frames", [1, 5, 20])
    def test_output_bounds_and_order(self, duration, max_frames):
        source = _noise_source(duration)
        frames = _run(source, max_frames=max_frames)

        assert 1 <= len(frames) <= min(max_frames, max(1, math.floor(source.duration)))
        timestamps = [frame.timestamp for frame in frames]
        assert all(a < b for a, b in zip(timestamps, timestamps[1:]))

    def test_short_clip_yields_one_frame(self):
        source = _noise_source(0.25)
        frames = _run(source, max_frames=1)
        assert len(frames) == 1
        assert frames[0].timestamp == 0.0

    @pytest.mark.parametrize("rotation, size", [(0, (160, 120)), (90, (120, 160)), (180, (160, 120)), (270, (120, 160))])
    def test_rotation(self, static_source, rotation, size):
        frames = _run(static_source, max_frames=1, rotation=rotation)
        assert frames[0].size == size
        assert frames[0].to_image().size == size

    def test_output_is_downscaled(self):
        source = ArrayVideoSource.from_image(np.zeros((900, 1600, 3), dtype=np.uint8), fps=2, length_seconds=1.0)
        frames = _run(source, max_frames=1, default_size=400)
        assert frames[0].size == (400, 225)

    def test_progress(self, static_source):
        """Progress is non-decreasing, split evenly between passes, and ends at 100."""
        updates = []
        _run(static_source, on_progress=updates.append)

        assert updates == sorted(updates)
        assert updates[:10] == [5, 10, 15, 20, 25, 30, 35, 40, 45, 50]
        assert updates[10:] == [60, 70, 80, 90, 100]

    def test_playback_position_restored(self, static_source):
        asyncio.run(static_source.seek(1.25))
        _run(static_source)
        assert static_source.current_time == 1.25

    def test_explicit_options_with_overrides(self, static_source):
        options = KeyframeOptions(max_frames=3)
        frames = asyncio.run(extract_smart_keyframes(static_source, options, max_frames=1))
        assert len(frames) == 1


class TestDegradedExtraction:
    """Tests for render failures, timeouts and degenerate input."""

    def test_failed_sample_is_skipped(self, textured_image):
        source = FlakySource(np.repeat(textured_image[None], 48, axis=0), fps=24, failing_times={0.0})
        frames = _run(source, max_frames=2)
        assert [frame.timestamp for frame in frames] == [0.5, 1.0]

    def test_failed_refinement_renders_are_skipped(self, textured_image):
        source = FlakySource(np.repeat(textured_image[None], 48, axis=0), fps=24, fail_from=4)
        asyncio.run(source.seek(0.5))

        frames = _run(source)
        assert frames == []
        assert source.current_time == 0.5

    def test_zero_duration(self):
        source = ArrayVideoSource(np.zeros((0, 10, 10, 3), dtype=np.uint8), fps=10)
        updates = []
        assert _run(source, on_progress=updates.append) == []
        assert updates == []

    def test_unreadable_duration(self):
        source = NaNSource(np.zeros((5, 10, 10, 3), dtype=np.uint8), fps=10)
        assert _run(source) == []

    def test_seek_timeout(self, static_source):
        source = HangingSource(static_source.frames, fps=24)
        with pytest.raises(SeekTimeoutError):
            _run(source, seek_timeout=0.05)
        assert source.current_time == 0.0

    def test_seek_timeout_on_stalled_decode(self, video_file, stalled_decode):
        started = time.monotonic()
        with pytest.raises(SeekTimeoutError):
            extract_keyframes_from_path(video_file, seek_timeout=0.2)
        assert time.monotonic() - started < 2.0

    def test_pause_failure_is_wrapped(self, static_source):
        source = DetachedPlayerSource(static_source.frames, fps=24)
        asyncio.run(source.seek(0.5))

        with pytest.raises(KeyframeExtractionError) as excinfo:
            _run(source)
        assert isinstance(excinfo.value.__cause__, RuntimeError)
        assert source.current_time == 0.5

    def test_unexpected_failure_is_wrapped(self, static_source):
        source = RevokedSource(static_source.frames, fps=24)
        asyncio.run(source.seek(0.5))

        with pytest.raises(KeyframeExtractionError) as excinfo:
            _run(source)
        assert isinstance(excinfo.value.__cause__, OSError)
        assert source.current_time == 0.5

    def test_progress_callback_failure_aborts(self, static_source):
        def on_progress(percent):
            if percent > 20:
                raise RuntimeError("UI gone")

        with pytest.raises(KeyframeExtractionError):
            _run(static_source, on_progress=on_progress)
        assert static_source.current_time == 0.0

    def test_extractor_instance_reuse(self, static_source):
        extractor = SmartKeyframeExtractor(KeyframeOptions(max_frames=2))
        first = asyncio.run(extractor.extract(static_source))
        second = asyncio.run(extractor.extract(static_source))
        assert [f.timestamp for f in first] == [f.timestamp for f in second]


class TestHelpers:
    """Tests for file based extraction and single frame capture."""

    def test_extract_from_path(self, video_file):
        frames = extract_keyframes_from_path(video_file, max_frames=3)
        assert 1 <= len(frames) <= 3
        assert all(frame.size == (64, 48) for frame in frames)

    def test_capture_current_frame(self, static_source):
        asyncio.run(static_source.seek(1.0))
        frame = capture_current_frame(static_source, max_size=80, rotation=90)

        assert frame.timestamp == 1.0
        assert frame.size == (60, 80)
        assert static_source.current_time == 1.0
