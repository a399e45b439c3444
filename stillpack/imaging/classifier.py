"""Groups images into codec-homogeneous tracks."""

import logging
from typing import Callable, Dict, Iterable, List, Optional

from stillpack.errors import ResolutionExceeded
from stillpack.imaging.metadata import read_image_signature
from stillpack.models import Image, ImageSignature, Track
from stillpack.tasks import CancelToken

log = logging.getLogger(__name__)

# ffmpeg refuses planes with more than 2^31/8 - 1 pixels
MAX_PLANE_PIXELS = 2**31 // 8 - 1

SignatureReader = Callable[[object], ImageSignature]


def check_resolution(height: int, width: int) -> bool:
    return height * width <= MAX_PLANE_PIXELS


def signature_key(sig: ImageSignature) -> Optional[str]:
    """Builds the grouping key for a signature; None for unsupported types."""
    if sig.file_type == "jpeg":
        return f"{sig.height}x{sig.width}_{sig.bit_depth}Bits_{sig.color_mode}_jpeg"
    if sig.file_type == "png":
        return f"{sig.height}x{sig.width}_{sig.bit_depth}Bits_{sig.color_mode}_png"
    if sig.file_type == "webp":
        return f"{sig.height}x{sig.width}_{sig.color_mode}_webp"
    return None


def classify_images(
    images: Iterable[Image],
    reader: SignatureReader = read_image_signature,
    token: Optional[CancelToken] = None,
) -> List[Track]:
    """
    Buckets images into tracks by signature.

    Tracks come back largest first; equal sizes keep the order in which their
    first image was seen. Unsupported formats are skipped with a warning.

    Raises:
        ResolutionExceeded: for the first image over the pixel ceiling.
        Cancelled: if ``token`` is cancelled between images.
    """
    groups: Dict[str, Track] = {}
    skipped = 0

    for image in images:
        if token is not None:
            token.raise_if_cancelled()

        sig = reader(image.absolute_path)
        if not check_resolution(sig.height, sig.width):
            log.error("Resolution limit exceeded by %s (%dx%d)", image.absolute_path, sig.width, sig.height)
            raise ResolutionExceeded(image.absolute_path, sig.height, sig.width)

        key = signature_key(sig)
        if key is None:
            skipped += 1
            log.warning("Skipping %s: unsupported format %r", image.absolute_path, sig.file_type)
            continue

        track = groups.get(key)
        if track is None:
            track = groups[key] = Track(image_type=sig.file_type)
        track.images.append(image)

    tracks = sorted(groups.values(), key=lambda t: len(t.images), reverse=True)
    log.info(
        "Classified %d images into %d tracks (%d skipped)",
        sum(len(t) for t in tracks), len(tracks), skipped,
    )
    return tracks

