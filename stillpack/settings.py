"""Maps abstract encoder choices to concrete ffmpeg encoders and options.

Every encoder has its own quality domain and its own notion of "preset". The
user-facing preset is always "larger = slower and better"; each entry in
``ENCODERS`` knows how to turn that into the encoder's native value.
"""

import dataclasses
import logging
from typing import Callable, Dict, List, Optional, Tuple

from stillpack.errors import InvalidSetting
from stillpack.models import SUPPORTED_IMAGE_TYPES

log = logging.getLogger(__name__)

FAMILIES = ("hevc", "av1")
HARDWARE_BACKENDS = ("none", "amd", "nvidia")
OUTPUT_TYPES = ("original",) + SUPPORTED_IMAGE_TYPES

_ENCODER_IDS = {
    ("hevc", "none"): "libx265",
    ("hevc", "amd"): "hevc_amf",
    ("hevc", "nvidia"): "hevc_nvenc",
    ("av1", "none"): "libsvtav1",
    ("av1", "amd"): "av1_amf",
    ("av1", "nvidia"): "av1_nvenc",
}


@dataclasses.dataclass(frozen=True)
class EncoderSpec:
    """How one encoder takes its quality and speed options."""
    encoder: str
    quality_range: Tuple[int, int]
    preset_range: Tuple[int, int]
    default_quality: int
    default_preset: int
    quality_args: Callable[[int], List[str]]
    preset_option: str
    preset_transform: Callable[[int], int]

    def build_args(self, quality: int, preset: int) -> List[str]:
        return self.quality_args(quality) + [self.preset_option, str(self.preset_transform(preset))]


def _crf(q: int) -> List[str]:
    return ["-crf", str(q)]

def _amf_cqp(q: int) -> List[str]:
    return ["-rc", "cqp", "-qp_i", str(q), "-qp_p", str(q)]

def _nvenc_constqp(q: int) -> List[str]:
    return ["-rc", "constqp", "-qp", str(q)]


ENCODERS: Dict[str, EncoderSpec] = {
    # x265 accepts preset numbers 0 (ultrafast) .. 9 (placebo)
    "libx265": EncoderSpec("libx265", (0, 51), (0, 9), 23, 5, _crf, "-preset", lambda p: p),
    # AMF quality: 0 = quality, 5 = balanced, 10 = speed
    "hevc_amf": EncoderSpec("hevc_amf", (0, 51), (0, 10), 23, 5, _amf_cqp, "-quality", lambda p: 10 - p),
    # NVENC presets p1..p7 are the enum values 12..18
    "hevc_nvenc": EncoderSpec("hevc_nvenc", (0, 51), (0, 6), 23, 3, _nvenc_constqp, "-preset", lambda p: 12 + p),
    # SVT-AV1 presets run 0 (slowest) .. 13 (fastest)
    "libsvtav1": EncoderSpec("libsvtav1", (0, 63), (0, 13), 30, 5, _crf, "-preset", lambda p: 13 - p),
    # AV1 AMF takes qp in 0..255 and quality in steps of ten up to 100 (speed)
    "av1_amf": EncoderSpec("av1_amf", (0, 255), (0, 9), 120, 5, _amf_cqp, "-quality", lambda p: 100 - 10 * p),
    "av1_nvenc": EncoderSpec("av1_nvenc", (0, 51), (0, 6), 30, 3, _nvenc_constqp, "-preset", lambda p: 12 + p),
}


@dataclasses.dataclass(frozen=True)
class EncoderSettings:
    """A fully resolved encoder choice for one pack call."""
    encoder: str
    quality: int
    preset: int
    args: Tuple[str, ...]


@dataclasses.dataclass(frozen=True)
class OutputSettings:
    """How unpacked frames are written."""
    output_type: str = "original"
    webp_lossless: bool = False
    quality_level: int = 9


def resolve_encoder(family: str, hardware: str) -> str:
    """Returns the ffmpeg encoder id for a codec family and hardware backend."""
    try:
        return _ENCODER_IDS[(family, hardware)]
    except KeyError:
        raise InvalidSetting(
            f"No encoder for family={family!r}, hardware={hardware!r}. "
            f"Families: {FAMILIES}, hardware: {HARDWARE_BACKENDS}"
        ) from None


def _check_range(name: str, value: int, bounds: Tuple[int, int]):
    lo, hi = bounds
    if not lo <= value <= hi:
        raise InvalidSetting(f"{name}={value} is outside {lo}..{hi}")


def encoder_settings(encoder: str, quality: Optional[int] = None, preset: Optional[int] = None) -> EncoderSettings:
    """Validates a quality/preset pair for ``encoder`` and builds its options."""
    spec = ENCODERS.get(encoder)
    if spec is None:
        raise InvalidSetting(f"Unknown encoder {encoder!r}")
    quality = spec.default_quality if quality is None else quality
    preset = spec.default_preset if preset is None else preset
    _check_range(f"{encoder} quality", quality, spec.quality_range)
    _check_range(f"{encoder} preset", preset, spec.preset_range)
    return EncoderSettings(encoder, quality, preset, tuple(spec.build_args(quality, preset)))


def resolve_encoder_settings(cfg=None) -> EncoderSettings:
    """Reads encoder settings from the INI config and resolves them."""
    if cfg is None:
        from stillpack.config import config as cfg

    family = cfg.get("encoder", "family", fallback="hevc").strip().lower()
    hardware = cfg.get("encoder", "hardware", fallback="none").strip().lower()
    encoder = resolve_encoder(family, hardware)
    spec = ENCODERS[encoder]
    try:
        quality = cfg.getint(encoder, "quality", fallback=spec.default_quality)
        preset = cfg.getint(encoder, "preset", fallback=spec.default_preset)
    except ValueError as e:
        raise InvalidSetting(f"Invalid number in [{encoder}] settings: {e}") from e

    settings = encoder_settings(encoder, quality, preset)
    log.info("Resolved encoder %s (quality=%d, preset=%d): %s", encoder, quality, preset, " ".join(settings.args))
    return settings


def resolve_output_settings(cfg=None) -> OutputSettings:
    """Reads the unpack output format settings from the INI config."""
    if cfg is None:
        from stillpack.config import config as cfg

    output_type = cfg.get("output", "type", fallback="original").strip().lower()
    if output_type not in OUTPUT_TYPES:
        raise InvalidSetting(f"output type {output_type!r} is not one of {OUTPUT_TYPES}")
    try:
        lossless = cfg.getint("output", "webp_lossless", fallback=0)
        level = cfg.getint("output", "quality_level", fallback=9)
    except ValueError as e:
        raise InvalidSetting(f"Invalid number in [output] settings: {e}") from e
    if lossless not in (0, 1):
        raise InvalidSetting(f"webp_lossless={lossless} must be 0 or 1")
    _check_range("quality_level", level, (0, 9))
    return OutputSettings(output_type, bool(lossless), level)


def output_quality_args(image_type: str, level: Optional[int] = None, lossless: bool = False) -> List[str]:
    """Translates a 0-9 quality level into ffmpeg image encoder options.

    With ``level=None`` the frame is written in its original type and the
    options aim at the closest reproduction ffmpeg offers.
    """
    if image_type not in SUPPORTED_IMAGE_TYPES:
        raise InvalidSetting(f"Cannot write frames as {image_type!r}")

    if level is None:
        if image_type == "jpeg":
            return ["-q:v", "2"]
        if image_type == "webp":
            return ["-lossless", "1"]
        return []

    _check_range("quality_level", level, (0, 9))
    if image_type == "jpeg":
        # mjpeg qscale: 2 is best, 31 worst
        return ["-q:v", str(round(31 - level * 29 / 9))]
    if image_type == "png":
        return ["-compression_level", str(level)]
    args = ["-quality", str(round(level * 100 / 9))]
    if lossless:
        args += ["-lossless", "1"]
    return args


def settings_schema() -> Dict[str, dict]:
    """Describes every encoder's setting domain, for building a settings form."""
    return {
        encoder: {
            "quality": {"min": spec.quality_range[0], "max": spec.quality_range[1], "default": spec.default_quality},
            "preset": {"min": spec.preset_range[0], "max": spec.preset_range[1], "default": spec.default_preset},
        }
        for encoder, spec in ENCODERS.items()
    }
