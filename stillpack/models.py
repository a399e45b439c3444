"""Core data types and enumerations for stillpack."""

import dataclasses
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

from stillpack.errors import IndexMissing

APP_VERSION = "0.4.0"

SUPPORTED_IMAGE_TYPES = ("jpeg", "png", "webp")

# File extension used for each image type when writing frames to disk
IMAGE_EXTENSIONS = {
    "jpeg": ".jpg",
    "png": ".png",
    "webp": ".webp",
}

CONTAINER_EXTENSION = ".mkv"


@dataclasses.dataclass(frozen=True)
class Image:
    """A source image and its position under the scanned root."""
    file_name: str
    absolute_path: Path
    relative_path: str
    sort: Optional[Any] = None


@dataclasses.dataclass(frozen=True)
class ImageSignature:
    """Header facts that decide which track an image can share."""
    file_type: Optional[str]
    height: int = 0
    width: int = 0
    bit_depth: int = 0
    color_mode: str = ""


@dataclasses.dataclass
class Track:
    """A group of images sharing one signature, encoded as one video stream."""
    image_type: str
    images: List[Image] = dataclasses.field(default_factory=list)

    def __len__(self) -> int:
        return len(self.images)


@dataclasses.dataclass(frozen=True)
class IndexTrack:
    image_type: str
    track: int


@dataclasses.dataclass(frozen=True)
class IndexImage:
    image_type: str
    track: int
    file_name: str
    relative_path: str
    index: int
    sort: Optional[Any] = None


@dataclasses.dataclass
class ArchiveIndex:
    """The record embedded in every archive that maps frames back to files."""
    version: str = APP_VERSION
    tracks: List[IndexTrack] = dataclasses.field(default_factory=list)
    images: List[IndexImage] = dataclasses.field(default_factory=list)

    def images_for_track(self, track: int) -> List[IndexImage]:
        return [im for im in self.images if im.track == track]

    def validate(self) -> "ArchiveIndex":
        """
        Checks the layout invariants unpack relies on.

        Track numbers are ``0..n-1``; each track's frame indices are ``0..k-1``
        with no gaps or duplicates; every image names a listed track of the
        same type.

        Raises:
            IndexMissing: describing the first violated invariant.
        """
        numbers = sorted(t.track for t in self.tracks)
        if numbers != list(range(len(numbers))):
            raise IndexMissing(f"Track numbers are not 0..{len(numbers) - 1}: {numbers}")

        types = {}
        for t in self.tracks:
            if t.image_type not in SUPPORTED_IMAGE_TYPES:
                raise IndexMissing(f"Track {t.track} has unsupported type {t.image_type!r}")
            types[t.track] = t.image_type

        frames: Dict[int, List[int]] = {t: [] for t in types}
        for im in self.images:
            if im.track not in types:
                raise IndexMissing(f"{im.file_name} refers to unknown track {im.track}")
            if im.image_type != types[im.track]:
                raise IndexMissing(f"{im.file_name} is {im.image_type} but track {im.track} is {types[im.track]}")
            frames[im.track].append(im.index)

        for track, indices in frames.items():
            if sorted(indices) != list(range(len(indices))):
                raise IndexMissing(f"Frame indices of track {track} are not contiguous from 0")
        return self


class Phase(str, Enum):
    ZIPPING = "zipping"
    MERGING = "merging"
    UNZIPPING = "unzipping"


@dataclasses.dataclass(frozen=True)
class ProgressEvent:
    """One progress report from a running ffmpeg invocation."""
    message: str
    frame_count: int = 0
    current_fps: float = 0.0
    current_kbps: float = 0.0
    target_size: int = 0
    timemark: str = ""
    phase: Phase = Phase.ZIPPING
    track: Optional[int] = None


@dataclasses.dataclass
class DecodedImage:
    """A decoded image buffer ready for display."""
    buffer: memoryview
    width: int
    height: int
    bytes_per_line: int

    def __sizeof__(self) -> int:
        return self.buffer.nbytes
