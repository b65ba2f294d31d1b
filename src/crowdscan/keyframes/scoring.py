"""Cheap per-sample scores used to rank keyframe candidates.

Both scores work on small RGBA working buffers and are proxies rather than
perceptual metrics: the difference score tracks coarse motion between
consecutive samples, the focus score tracks sharpness.
"""

from __future__ import annotations

import numpy as np

__all__ = ["MOTION_WEIGHT", "PIXEL_STRIDE", "difference_score", "focus_score", "combined_score"]

MOTION_WEIGHT = 10.0
# Every 4th pixel is compared, i.e. a stride of 16 bytes in an RGBA buffer.
PIXEL_STRIDE = 4


def difference_score(previous: np.ndarray, current: np.ndarray) -> float:
    """Average RGB absolute difference between two RGBA buffers.

    Args:
        previous: Previous working buffer (H, W, 4) uint8.
        current: Current working buffer, same shape as `previous`.

    Returns:
        Sum of |dR| + |dG| + |dB| over every `PIXEL_STRIDE`-th pixel, divided
        by the total number of pixels in the buffer.
    """
    if previous.shape != current.shape:
        raise ValueError(f"Buffer shapes do not match: {previous.shape} vs {current.shape}")

    pixel_count = current.shape[0] * current.shape[1]
    if pixel_count == 0:
        return 0.0

    prev_pixels = previous.reshape(-1, previous.shape[-1])[::PIXEL_STRIDE, :3].astype(np.int32)
    curr_pixels = current.reshape(-1, current.shape[-1])[::PIXEL_STRIDE, :3].astype(np.int32)
    return float(np.abs(curr_pixels - prev_pixels).sum()) / pixel_count


def focus_score(image: np.ndarray) -> float:
    """Variance of the 4-neighbour Laplacian over the green channel.

    Only interior pixels are considered. Higher values mean a sharper image,
    values near zero mean flat or blurred content.
    """
    height, width = image.shape[:2]
    if height < 3 or width < 3:
        return 0.0

    green = image[:, :, 1].astype(np.int64)
    center = green[1:-1, 1:-1]
    laplacian = green[:-2, 1:-1] + green[2:, 1:-1] + green[1:-1, :-2] + green[1:-1, 2:] - 4 * center

    count = laplacian.size
    mean = float(laplacian.sum()) / count
    mean_sq = float((laplacian * laplacian).sum()) / count
    return mean_sq - mean * mean


def combined_score(difference: float, focus: float, diff_threshold: float | None = None) -> float:
    """Weighted score favouring motion over static sharpness.

    When `diff_threshold` is given, differences below it earn no motion
    weighting and the score falls back to focus alone.
    """
    if diff_threshold is not None and difference < diff_threshold:
        return focus
    return MOTION_WEIGHT * difference + focus
