"""Exception hierarchy for crowdscan."""


class CrowdScanError(Exception):
    """Base exception for all crowdscan errors."""

    pass


class VideoSourceError(CrowdScanError):
    """Base exception for video source errors."""

    pass


class VideoLoadError(VideoSourceError):
    """Raised when a video source cannot be opened."""

    pass


class RenderError(VideoSourceError):
    """Raised when the current frame of a source cannot be rendered."""

    pass


class SeekError(VideoSourceError):
    """Raised when a source fails to seek to the requested time."""

    pass


class SeekTimeoutError(SeekError):
    """Raised when a seek does not complete before its deadline."""

    def __init__(self, time: float, timeout: float):
        super().__init__(f"Seek to {time:.3f}s did not complete within {timeout}s")
        self.time = time
        self.timeout = timeout


class KeyframeExtractionError(CrowdScanError):
    """Raised when keyframe extraction fails as a whole."""

    pass


class ConfigError(CrowdScanError):
    """Raised when there's an error in the configuration."""

    pass
