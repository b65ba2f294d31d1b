from __future__ import annotations

import asyncio
import math
import threading
from abc import ABC, abstractmethod
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path

import cv2
import numpy as np

from crowdscan.base.exceptions import RenderError, SeekError, VideoLoadError
from crowdscan.base.imaging import to_rgba

__all__ = ["VideoMetadata", "VideoSource", "ArrayVideoSource", "CaptureVideoSource"]


@dataclass
class VideoMetadata:
    """Class to store video metadata."""

    height: int
    width: int
    fps: float
    frame_count: int
    total_seconds: float

    def __str__(self) -> str:
        return f"{self.width}x{self.height} @ {self.fps}fps, {self.total_seconds} seconds"

    def __repr__(self) -> str:
        return self.__str__()


class VideoSource(ABC):
    """Seekable video handle driven by the keyframe extractor.

    A source has a single playback position. `seek` moves it and completes
    once the frame at the new position is ready, `render` draws the frame at
    the current position into a raster of the requested size.
    """

    @property
    @abstractmethod
    def duration(self) -> float:
        """Total duration in seconds."""

    @property
    @abstractmethod
    def width(self) -> int:
        """Intrinsic frame width in pixels."""

    @property
    @abstractmethod
    def height(self) -> int:
        """Intrinsic frame height in pixels."""

    @property
    @abstractmethod
    def current_time(self) -> float:
        """Current playback position in seconds."""

    @abstractmethod
    async def seek(self, time: float) -> None:
        """Move the playback position and wait until the frame is ready."""

    @abstractmethod
    def render(self, width: int, height: int) -> np.ndarray:
        """Render the current frame as an RGBA uint8 array of shape (height, width, 4).

        Raises:
            RenderError: If the frame cannot be drawn.
        """

    def pause(self) -> None:
        """Stop playback. Sources without playback ignore this."""

    def _resize(self, frame: np.ndarray, width: int, height: int) -> np.ndarray:
        if frame.shape[1] != width or frame.shape[0] != height:
            frame = cv2.resize(frame, (width, height), interpolation=cv2.INTER_AREA)
        return to_rgba(frame)


class ArrayVideoSource(VideoSource):
    """Video source backed by an in-memory array of frames.

    The frame shown at time `t` is the last frame starting at or before `t`.
    """

    def __init__(self, frames: np.ndarray, fps: float):
        if frames.ndim != 4 or frames.shape[-1] not in (3, 4):
            raise ValueError(f"Unsupported number of dimensions: {frames.shape}!")
        if fps <= 0:
            raise ValueError("fps must be positive")
        self.frames = frames
        self.fps = float(fps)
        self._time = 0.0

    @classmethod
    def from_image(cls, image: np.ndarray, fps: float = 24.0, length_seconds: float = 1.0) -> ArrayVideoSource:
        if len(image.shape) == 3:
            image = np.expand_dims(image, axis=0)
        frames = np.repeat(image, round(length_seconds * fps), axis=0)
        return cls(frames=frames, fps=fps)

    @property
    def duration(self) -> float:
        return len(self.frames) / self.fps

    @property
    def width(self) -> int:
        return self.frames.shape[2]

    @property
    def height(self) -> int:
        return self.frames.shape[1]

    @property
    def current_time(self) -> float:
        return self._time

    @property
    def metadata(self) -> VideoMetadata:
        return VideoMetadata(
            height=self.height,
            width=self.width,
            fps=self.fps,
            frame_count=len(self.frames),
            total_seconds=round(self.duration, 2),
        )

    @property
    def frame_index(self) -> int:
        return min(int(math.floor(self._time * self.fps + 1e-9)), len(self.frames) - 1)

    async def seek(self, time: float) -> None:
        self._time = min(max(time, 0.0), self.duration)
        await asyncio.sleep(0)

    def render(self, width: int, height: int) -> np.ndarray:
        if len(self.frames) == 0:
            raise RenderError("Video has no frames to render")
        return self._resize(self.frames[self.frame_index], width, height)


class CaptureVideoSource(VideoSource):
    """Video source reading a file through OpenCV's `VideoCapture`.

    Decoding happens on a single worker thread owned by the source, so a
    pending seek does not block the event loop. A decode that outlives its
    seek deadline keeps the worker busy: further seeks fail with `SeekError`
    until it returns, and `release` does not wait for it. Use as a context
    manager or call `release` when done.
    """

    def __init__(self, path: str | Path):
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Video file not found: {path}")

        self.path = path
        self._capture = cv2.VideoCapture(str(path))
        if not self._capture.isOpened():
            self._capture.release()
            self._capture = None
            raise VideoLoadError(f"Could not open video file: {path}")

        self._lock = threading.Lock()
        self._closed = False
        self._pending: Future | None = None
        self.fps = float(self._capture.get(cv2.CAP_PROP_FPS) or 0.0)
        self.frame_count = int(self._capture.get(cv2.CAP_PROP_FRAME_COUNT) or 0)
        self._width = int(self._capture.get(cv2.CAP_PROP_FRAME_WIDTH))
        self._height = int(self._capture.get(cv2.CAP_PROP_FRAME_HEIGHT))
        self._time = 0.0
        self._frame = self._read_at(0.0)
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="crowdscan-decode")

    def __enter__(self) -> CaptureVideoSource:
        return self

    def __exit__(self, exc_type, exc_value, traceback) -> None:
        self.release()

    @property
    def busy(self) -> bool:
        """Whether a decode started by an earlier seek is still running."""
        return self._pending is not None and not self._pending.done()

    def release(self) -> None:
        """Release the capture without waiting for a running decode.

        A decode still in progress releases the capture when it returns.
        """
        self._closed = True
        self._executor.shutdown(wait=False, cancel_futures=True)
        if self._lock.acquire(blocking=False):
            try:
                self._release_capture()
            finally:
                self._lock.release()

    def _release_capture(self) -> None:
        if self._capture is not None:
            self._capture.release()
            self._capture = None

    @property
    def duration(self) -> float:
        if self.fps <= 0:
            return 0.0
        return self.frame_count / self.fps

    @property
    def width(self) -> int:
        return self._width

    @property
    def height(self) -> int:
        return self._height

    @property
    def current_time(self) -> float:
        return self._time

    @property
    def metadata(self) -> VideoMetadata:
        return VideoMetadata(
            height=self._height,
            width=self._width,
            fps=self.fps,
            frame_count=self.frame_count,
            total_seconds=round(self.duration, 2),
        )

    def _decode(self, time: float) -> np.ndarray | None:
        self._capture.set(cv2.CAP_PROP_POS_MSEC, time * 1000.0)
        ret, frame = self._capture.read()
        if not ret:
            return None
        return cv2.cvtColor(frame, cv2.COLOR_BGR2RGB)

    def _read_at(self, time: float) -> np.ndarray | None:
        with self._lock:
            if self._capture is None:
                raise VideoLoadError(f"Video source {self.path} was released")
            try:
                return self._decode(time)
            finally:
                if self._closed:
                    self._release_capture()

    async def seek(self, time: float) -> None:
        if self._closed:
            raise VideoLoadError(f"Video source {self.path} was released")
        if self.busy:
            raise SeekError(f"Previous decode in {self.path} has not finished")

        time = min(max(time, 0.0), self.duration)
        self._pending = self._executor.submit(self._read_at, time)
        self._frame = await asyncio.wrap_future(self._pending)
        self._time = time

    def render(self, width: int, height: int) -> np.ndarray:
        if self._frame is None:
            raise RenderError(f"No decodable frame at {self._time:.3f}s in {self.path}")
        return self._resize(self._frame, width, height)
