from __future__ import annotations

import base64
import io
from dataclasses import dataclass
from pathlib import Path

import cv2
import numpy as np
from PIL import Image

__all__ = [
    "DEFAULT_MAX_SIZE",
    "DEFAULT_JPEG_QUALITY",
    "KeyFrame",
    "fit_within",
    "normalize_rotation",
    "rotate_frame",
    "to_rgba",
    "encode_jpeg",
    "to_data_url",
    "prepare_still",
]

DEFAULT_MAX_SIZE = 800
DEFAULT_JPEG_QUALITY = 80

_ROTATE_CODES = {
    90: cv2.ROTATE_90_CLOCKWISE,
    180: cv2.ROTATE_180,
    270: cv2.ROTATE_90_COUNTERCLOCKWISE,
}


@dataclass
class KeyFrame:
    """An encoded still image taken from a video.

    Attributes:
        timestamp: Time in seconds of the source frame
        data: JPEG encoded image bytes
        width: Width of the encoded image in pixels
        height: Height of the encoded image in pixels
    """

    timestamp: float
    data: bytes
    width: int
    height: int

    @property
    def size(self) -> tuple[int, int]:
        return self.width, self.height

    def to_data_url(self) -> str:
        return to_data_url(self.data)

    def to_image(self) -> Image.Image:
        """Decode the JPEG bytes back into a PIL image."""
        return Image.open(io.BytesIO(self.data))

    def save(self, path: str | Path) -> Path:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(self.data)
        return path


def fit_within(width: int, height: int, max_size: int = DEFAULT_MAX_SIZE) -> tuple[int, int]:
    """Scale (width, height) so the longer edge is at most `max_size`.

    Aspect ratio is preserved and images are never upscaled. Square images
    are scaled by height. Results are truncated to whole pixels.
    """
    new_width: float = width
    new_height: float = height
    if width > height:
        if width > max_size:
            new_height = height * (max_size / width)
            new_width = max_size
    elif height > max_size:
        new_width = width * (max_size / height)
        new_height = max_size
    return max(1, int(new_width)), max(1, int(new_height))


def normalize_rotation(rotation: int) -> int:
    """Normalize rotation in degrees to one of 0, 90, 180, 270."""
    if rotation % 90 != 0:
        raise ValueError(f"rotation must be a multiple of 90 degrees, got {rotation}")
    return rotation % 360


def rotate_frame(frame: np.ndarray, rotation: int) -> np.ndarray:
    """Rotate frame clockwise by `rotation` degrees around its center.

    Rotations by 90 or 270 degrees swap the output width and height.
    """
    rotation = normalize_rotation(rotation)
    if rotation == 0:
        return frame
    return cv2.rotate(frame, _ROTATE_CODES[rotation])


def to_rgba(frame: np.ndarray) -> np.ndarray:
    """Convert grayscale, RGB or RGBA frame to an RGBA uint8 array."""
    if frame.dtype != np.uint8:
        frame = np.clip(frame, 0, 255).astype(np.uint8)
    if frame.ndim == 2:
        return cv2.cvtColor(frame, cv2.COLOR_GRAY2RGBA)
    if frame.shape[-1] == 4:
        return frame
    if frame.shape[-1] == 3:
        return cv2.cvtColor(frame, cv2.COLOR_RGB2RGBA)
    raise ValueError(f"Unsupported frame shape: {frame.shape}!")


def encode_jpeg(frame: np.ndarray, quality: int = DEFAULT_JPEG_QUALITY) -> bytes:
    """Encode an RGB or RGBA frame as JPEG bytes.

    Alpha is dropped, JPEG has no transparency.
    """
    if frame.ndim == 3 and frame.shape[-1] == 4:
        frame = frame[:, :, :3]
    buffer = io.BytesIO()
    Image.fromarray(np.ascontiguousarray(frame)).save(buffer, format="JPEG", quality=quality)
    return buffer.getvalue()


def to_data_url(data: bytes, mime_type: str = "image/jpeg") -> str:
    return f"data:{mime_type};base64,{base64.b64encode(data).decode('ascii')}"


def _load_still(image: np.ndarray | Image.Image | str | Path) -> np.ndarray:
    if isinstance(image, (str, Path)):
        path = Path(image)
        if not path.exists():
            raise FileNotFoundError(f"Image file not found: {path}")
        with Image.open(path) as img:
            return np.array(img.convert("RGB"))
    if isinstance(image, Image.Image):
        return np.array(image.convert("RGB"))
    return to_rgba(image)[:, :, :3]


def prepare_still(
    image: np.ndarray | Image.Image | str | Path,
    max_size: int = DEFAULT_MAX_SIZE,
    quality: int = DEFAULT_JPEG_QUALITY,
    rotation: int = 0,
) -> KeyFrame:
    """Downscale and encode a single still image for analysis.

    Args:
        image: RGB/RGBA array, PIL image or path to an image file.
        max_size: Maximum length of the longer output edge.
        quality: JPEG quality (1-95).
        rotation: Clockwise rotation in degrees, multiple of 90.

    Returns:
        KeyFrame with timestamp 0.0.
    """
    frame = _load_still(image)
    height, width = frame.shape[:2]
    new_width, new_height = fit_within(width, height, max_size)
    if (new_width, new_height) != (width, height):
        frame = cv2.resize(frame, (new_width, new_height), interpolation=cv2.INTER_AREA)
    frame = rotate_frame(frame, rotation)
    out_height, out_width = frame.shape[:2]
    return KeyFrame(timestamp=0.0, data=encode_jpeg(frame, quality), width=out_width, height=out_height)
