import threading

import cv2
import numpy as np
import pytest

from crowdscan.base.progress import configure
from crowdscan.base.source import ArrayVideoSource, CaptureVideoSource
from crowdscan.config import clear_config_cache


@pytest.fixture(autouse=True)
def isolated_config(tmp_path, monkeypatch):
    """Run every test in an empty directory so no config file is picked up."""
    monkeypatch.chdir(tmp_path)
    clear_config_cache()
    configure(verbose=False, progress=False)
    yield
    clear_config_cache()


@pytest.fixture
def textured_image():
    rng = np.random.default_rng(seed=7)
    return rng.integers(0, 256, (120, 160, 3), dtype=np.uint8)


@pytest.fixture
def static_source(textured_image):
    """Five seconds of the same textured 160x120 frame."""
    return ArrayVideoSource.from_image(textured_image, fps=24.0, length_seconds=5.0)


@pytest.fixture
def flash_source():
    """Three seconds of black frames with a white flash between 2.0s and 2.5s."""
    frames = np.zeros((30, 60, 80, 3), dtype=np.uint8)
    frames[20:25] = 255
    return ArrayVideoSource(frames, fps=10.0)


@pytest.fixture
def video_file(tmp_path):
    """Three second MJPG video with a square moving across a gradient."""
    path = tmp_path / "venue.avi"
    width, height, fps = 64, 48, 10.0
    writer = cv2.VideoWriter(str(path), cv2.VideoWriter_fourcc(*"MJPG"), fps, (width, height))
    if not writer.isOpened():
        pytest.skip("OpenCV build cannot write MJPG video")

    gradient = np.tile(np.linspace(0, 255, width, dtype=np.uint8), (height, 1))
    for i in range(30):
        frame = np.stack([gradient, gradient, gradient], axis=-1)
        x = (i * 2) % (width - 10)
        frame[10:20, x : x + 10] = (0, 0, 255)
        writer.write(frame)
    writer.release()
    return path


@pytest.fixture
def stalled_decode(monkeypatch):
    """Make OpenCV decodes past t=0 hang until the returned event is set."""
    gate = threading.Event()
    decode = CaptureVideoSource._decode

    def stalled(self, time):
        if time > 0:
            gate.wait(5)
        return decode(self, time)

    monkeypatch.setattr(CaptureVideoSource, "_decode", stalled)
    yield gate
    gate.set()
