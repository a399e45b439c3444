"""Exception types raised by the archive engine."""

from pathlib import Path
from typing import Optional, Union


class StillpackError(Exception):
    """Base class for all stillpack errors."""


class ResolutionExceeded(StillpackError):
    """An image has more pixels per plane than ffmpeg can handle."""

    def __init__(self, path: Union[str, Path], height: int, width: int):
        self.path = Path(path)
        self.height = height
        self.width = width
        super().__init__(
            f"{self.path}: resolution {width}x{height} exceeds the ffmpeg per-plane pixel limit"
        )


class UnsupportedFormat(StillpackError):
    """An image is not one of the packable formats (jpeg, png, webp)."""

    def __init__(self, path: Union[str, Path], file_type: Optional[str]):
        self.path = Path(path)
        self.file_type = file_type
        super().__init__(f"{self.path}: unsupported image format {file_type!r}")


class IndexMissing(StillpackError):
    """The archive index is absent, unreadable or inconsistent."""


class SubprocessFailure(StillpackError):
    """ffmpeg exited with an error."""

    def __init__(self, message: str, returncode: Optional[int] = None, stderr: str = ""):
        self.returncode = returncode
        self.stderr = stderr
        super().__init__(message)


class Cancelled(StillpackError):
    """The operation was cancelled before it finished."""


class InvalidSetting(StillpackError):
    """A setting value is outside its allowed domain."""


class EngineNotFound(StillpackError):
    """The ffmpeg binary could not be located or is not executable."""


class FrameUnavailable(StillpackError):
    """A preview frame could not be produced."""
