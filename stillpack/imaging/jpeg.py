"""Decodes preview frames for display, with PyTurboJPEG and a Pillow fallback."""

import logging
from io import BytesIO
from pathlib import Path
from typing import Optional, Tuple

import numpy as np
from PIL import Image

from stillpack.models import DecodedImage

log = logging.getLogger(__name__)

try:
    from turbojpeg import TurboJPEG, TJPF_RGB
except ImportError:
    jpeg_decoder = None
    TURBO_AVAILABLE = False
    log.warning("PyTurboJPEG not found. Preview frames will be decoded with Pillow.")
else:
    try:
        jpeg_decoder = TurboJPEG()
    except Exception:
        # The wrapper imports fine but the native libturbojpeg may be missing
        jpeg_decoder = None
        TURBO_AVAILABLE = False
        log.exception("PyTurboJPEG initialization failed. Preview frames will be decoded with Pillow.")
    else:
        TURBO_AVAILABLE = True
        log.info("Using PyTurboJPEG for preview frames.")


def _scaling_factor(width: int, height: int, box_width: int, box_height: int) -> Optional[Tuple[int, int]]:
    """Smallest libjpeg-turbo DCT scale that still fills the fitted display size."""
    if not TURBO_AVAILABLE or not jpeg_decoder:
        return None

    fitted = min(box_width / width, box_height / height)
    factors = sorted(jpeg_decoder.scaling_factors, key=lambda f: f[0] / f[1])
    for num, den in factors:
        if num / den >= fitted:
            return (num, den)
    return (1, 1)


def _fit(img: Image.Image, box_width: int, box_height: int) -> Image.Image:
    ratio = min(img.width / box_width, img.height / box_height)
    if ratio <= 1:
        return img
    # BILINEAR is much faster on big downscales and looks the same at that size
    resampling = Image.Resampling.BILINEAR if ratio > 4 else Image.Resampling.LANCZOS
    img.thumbnail((box_width, box_height), resampling)
    return img


def decode_jpeg_rgb(jpeg_bytes: bytes, box_width: int = 0, box_height: int = 0) -> Optional[np.ndarray]:
    """Decodes JPEG bytes into an RGB array no larger than the display box.

    A zero box dimension means full resolution.
    """
    resize = box_width > 0 and box_height > 0

    if TURBO_AVAILABLE and jpeg_decoder:
        try:
            scale = None
            if resize:
                width, height, _, _ = jpeg_decoder.decode_header(jpeg_bytes)
                scale = _scaling_factor(width, height, box_width, box_height)
            decoded = jpeg_decoder.decode(jpeg_bytes, scaling_factor=scale, pixel_format=TJPF_RGB, flags=0)
            if resize and (decoded.shape[0] > box_height or decoded.shape[1] > box_width):
                return np.array(_fit(Image.fromarray(decoded), box_width, box_height))
            return decoded
        except Exception as e:
            log.exception(f"PyTurboJPEG failed to decode frame: {e}. Trying Pillow.")

    try:
        img = Image.open(BytesIO(jpeg_bytes))
        if resize:
            img = _fit(img, box_width, box_height)
        return np.array(img.convert("RGB"))
    except Exception as e:
        log.exception(f"Pillow also failed to decode frame: {e}")
        return None


def decode_frame(path: Path, box_width: int = 0, box_height: int = 0) -> Optional[DecodedImage]:
    """Reads a frame file and returns it as a display-ready RGB888 buffer."""
    try:
        data = Path(path).read_bytes()
    except OSError as e:
        log.error(f"Cannot read frame {path}: {e}")
        return None

    rgb = decode_jpeg_rgb(data, box_width, box_height)
    if rgb is None:
        return None
    rgb = np.ascontiguousarray(rgb)
    height, width = rgb.shape[:2]
    return DecodedImage(
        buffer=memoryview(rgb).cast("B"),
        width=width,
        height=height,
        bytes_per_line=width * 3,
    )
