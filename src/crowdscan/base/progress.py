from __future__ import annotations

import sys
from dataclasses import dataclass
from typing import Callable

from tqdm import tqdm

__all__ = ["configure", "set_verbose", "set_progress", "get_config", "log", "progress_callback"]


@dataclass
class _BaseConfig:
    verbose: bool = False
    progress: bool = False


_CONFIG = _BaseConfig()


def configure(*, verbose: bool | None = None, progress: bool | None = None) -> None:
    """Configure logging and progress behavior."""
    if verbose is not None:
        _CONFIG.verbose = bool(verbose)
    if progress is not None:
        _CONFIG.progress = bool(progress)


def set_verbose(value: bool) -> None:
    """Enable or disable verbose logging."""
    _CONFIG.verbose = bool(value)


def set_progress(value: bool) -> None:
    """Enable or disable progress bars."""
    _CONFIG.progress = bool(value)


def get_config() -> _BaseConfig:
    """Return the current configuration."""
    return _CONFIG


def log(message: str) -> None:
    """Write a message to stderr if verbose mode is enabled."""
    if _CONFIG.verbose:
        print(message, file=sys.stderr)


def progress_callback(desc: str | None = None) -> tuple[Callable[[int], None], Callable[[], None]]:
    """Build an ``on_progress`` callback backed by a percentage progress bar.

    Returns:
        Tuple of (callback, close). The callback accepts an integer percentage
        and advances the bar to it. ``close`` finishes the bar. When progress
        bars are disabled both are no-ops.
    """
    if not _CONFIG.progress:
        return (lambda percent: None), (lambda: None)

    bar = tqdm(total=100, desc=desc, unit="%")

    def update(percent: int) -> None:
        delta = min(max(percent, 0), 100) - bar.n
        if delta > 0:
            bar.update(delta)

    return update, bar.close
