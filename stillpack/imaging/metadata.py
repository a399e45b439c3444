import logging
import struct
from pathlib import Path
from typing import Tuple, Union

from PIL import Image, JpegImagePlugin, UnidentifiedImageError

from stillpack.models import ImageSignature

log = logging.getLogger(__name__)

# Only headers are read here; the pixel ceiling is enforced by the classifier.
Image.MAX_IMAGE_PIXELS = None

JPEG_SUBSAMPLING = {
    0: "4:4:4",
    1: "4:2:2",
    2: "4:2:0",
}

PNG_COLOR_TYPES = {
    0: "Grayscale",
    2: "RGB",
    3: "Palette",
    4: "Grayscale with Alpha",
    6: "RGB with Alpha",
}

_PNG_SIGNATURE = b"\x89PNG\r\n\x1a\n"


def read_png_header(path: Union[str, Path]) -> Tuple[int, int]:
    """
    Reads (bit depth, color type) straight from the IHDR chunk.

    Pillow folds 16-bit colour PNGs into 8-bit modes, so the mode alone
    cannot tell a 16-bit RGBA file from an 8-bit one.
    """
    with open(path, "rb") as f:
        head = f.read(26)
    if len(head) < 26 or not head.startswith(_PNG_SIGNATURE) or head[12:16] != b"IHDR":
        raise OSError(f"Not a PNG file or missing IHDR: {path}")
    bit_depth, color_type = struct.unpack(">BB", head[24:26])
    return bit_depth, color_type


def read_image_signature(path: Union[str, Path]) -> ImageSignature:
    """
    Reads the header facts that decide an image's track.

    Files Pillow cannot identify come back with ``file_type=None`` rather than
    raising, so a caller can decide what to do with them.
    """
    path = Path(path)
    try:
        with Image.open(path) as img:
            file_type = (img.format or "").lower() or None
            width, height = img.size

            if file_type == "jpeg":
                bits = getattr(img, "bits", 8)
                components = getattr(img, "layers", len(img.getbands()))
                subsampling = JPEG_SUBSAMPLING.get(JpegImagePlugin.get_sampling(img), "none")
                return ImageSignature("jpeg", height, width, bits, f"{components}_{subsampling}")

            if file_type == "png":
                bit_depth, color_type = read_png_header(path)
                color = PNG_COLOR_TYPES.get(color_type, str(color_type))
                return ImageSignature("png", height, width, bit_depth, color)

            if file_type == "webp":
                return ImageSignature("webp", height, width, 8, img.mode)

            return ImageSignature(file_type, height, width, 0, img.mode)
    except (UnidentifiedImageError, OSError) as e:
        log.warning(f"Failed to read image header from {path}: {e}")
        return ImageSignature(None)
