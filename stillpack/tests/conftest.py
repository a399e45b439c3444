"""Shared fixtures: an isolated app data dir and an ffmpeg stand-in."""

import os
import tempfile
from pathlib import Path

# Must happen before stillpack.config creates its global AppConfig
os.environ["APPDATA"] = tempfile.mkdtemp(prefix="stillpack_appdata_")
os.environ.setdefault("QT_QPA_PLATFORM", "offscreen")

import pytest

from stillpack.models import Image
from stillpack.tests.helpers import FakeEngine, make_image


@pytest.fixture
def fake_engine():
    return FakeEngine()


@pytest.fixture
def photo_tree(tmp_path):
    """A small folder with two jpeg sizes and some pngs, nested one level."""
    root = tmp_path / "photos"
    for i in range(3):
        make_image(root / f"img{i}.jpg", color=(10 * i, 0, 0))
    make_image(root / "it's here.jpg", color=(0, 99, 0))
    for i in range(2):
        make_image(root / "wide" / f"pano{i}.jpg", size=(128, 32))
    make_image(root / "shots" / "a.png", fmt="PNG", mode="RGBA", color=(1, 2, 3))
    return root


@pytest.fixture
def as_image():
    def _build(path: Path, base: Path) -> Image:
        return Image(file_name=path.name, absolute_path=path, relative_path=path.relative_to(base).as_posix())
    return _build
