"""Manages application configuration via an INI file."""

import configparser
import logging
import tempfile
from pathlib import Path

from stillpack.logging_setup import get_app_data_dir

log = logging.getLogger(__name__)

DEFAULT_CONFIG = {
    "core": {
        # Empty means "look on PATH and in the usual install locations"
        "ffmpeg": "",
        # Root for pack scratch directories and the preview cache
        "scratch_dir": str(Path(tempfile.gettempdir()) / "stillpack"),
        "reveal_on_finish": "True",
    },
    "encoder": {
        "family": "hevc",  # Options: "hevc", "av1"
        "hardware": "none",  # Options: "none", "amd", "nvidia"
    },
    # Per-encoder quality/speed pairs. "preset" is abstract: larger = slower, better.
    "libx265": {"quality": "23", "preset": "5"},
    "hevc_amf": {"quality": "23", "preset": "5"},
    "hevc_nvenc": {"quality": "23", "preset": "3"},
    "libsvtav1": {"quality": "30", "preset": "5"},
    "av1_amf": {"quality": "120", "preset": "5"},
    "av1_nvenc": {"quality": "30", "preset": "3"},
    "output": {
        "type": "original",  # Options: "original", "jpeg", "png", "webp"
        "webp_lossless": "0",
        "quality_level": "9",  # 0-9, 9 = best
    },
    "preview": {
        # Frames kept on either side of the requested one before re-extracting
        "window_before": "5",
        "window_after": "5",
        # Frames decoded per extraction, starting window_before frames back
        "window_length": "15",
        # Bytes of the archive hashed to name its cache folder
        "prefix_bytes": str(2 * 1024 * 1024),
    },
}

class AppConfig:
    def __init__(self, config_path: Path = None):
        self.config_path = config_path or get_app_data_dir() / "stillpack.ini"
        self.config = configparser.ConfigParser()
        self.load()

    def load(self):
        """Loads the config, creating it with defaults if it doesn't exist."""
        if not self.config_path.exists():
            log.info(f"Creating default config at {self.config_path}")
            self.config.read_dict(DEFAULT_CONFIG)
            self.save()
        else:
            log.info(f"Loading config from {self.config_path}")
            self.config.read(self.config_path, encoding="utf-8")
            # Ensure all sections and keys exist
            for section, keys in DEFAULT_CONFIG.items():
                if not self.config.has_section(section):
                    self.config.add_section(section)
                for key, value in keys.items():
                    if not self.config.has_option(section, key):
                        self.config.set(section, key, value)
            self.save() # Save to add any missing keys

    def save(self):
        """Saves the current configuration to the INI file."""
        try:
            self.config_path.parent.mkdir(parents=True, exist_ok=True)
            with self.config_path.open("w", encoding="utf-8") as f:
                self.config.write(f)
            log.info(f"Saved config to {self.config_path}")
        except IOError as e:
            log.error(f"Failed to save config to {self.config_path}: {e}")

    def get(self, section, key, fallback=None):
        return self.config.get(section, key, fallback=fallback)

    def getint(self, section, key, fallback=None):
        return self.config.getint(section, key, fallback=fallback)

    def getfloat(self, section, key, fallback=None):
        return self.config.getfloat(section, key, fallback=fallback)

    def getboolean(self, section, key, fallback=None):
        return self.config.getboolean(section, key, fallback=fallback)

    def set(self, section, key, value):
        if not self.config.has_section(section):
            self.config.add_section(section)
        self.config.set(section, key, str(value))

    @property
    def scratch_root(self) -> Path:
        return Path(self.get("core", "scratch_dir") or DEFAULT_CONFIG["core"]["scratch_dir"])

# Global config instance
config = AppConfig()
