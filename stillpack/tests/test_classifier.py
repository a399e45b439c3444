"""Tests for grouping images into tracks."""

from pathlib import Path

import pytest

from stillpack.tests.helpers import make_image
from stillpack.errors import Cancelled, ResolutionExceeded
from stillpack.imaging.classifier import MAX_PLANE_PIXELS, check_resolution, classify_images, signature_key
from stillpack.models import Image, ImageSignature
from stillpack.tasks import CancelToken


def _images(names):
    return [Image(file_name=n, absolute_path=Path("/src") / n, relative_path=f"src/{n}") for n in names]


def _reader(table):
    return lambda path: table[Path(path).name]


JPEG_HD = ImageSignature("jpeg", 1080, 1920, 8, "3_4:2:0")
PNG_16 = ImageSignature("png", 600, 800, 16, "RGB with Alpha")


def test_mixed_jpeg_and_png():
    names = [f"j{i}.jpg" for i in range(10)] + [f"p{i}.png" for i in range(5)]
    table = {n: JPEG_HD for n in names[:10]}
    table.update({n: PNG_16 for n in names[10:]})
    images = _images(names)

    tracks = classify_images(images, reader=_reader(table))

    assert [t.image_type for t in tracks] == ["jpeg", "png"]
    assert [len(t) for t in tracks] == [10, 5]
    assert tracks[0].images == images[:10]


def test_partition_is_exact_and_sorted():
    names = ["a", "b", "c", "d", "e", "f"]
    small = ImageSignature("jpeg", 10, 10, 8, "3_4:2:0")
    big = ImageSignature("jpeg", 20, 20, 8, "3_4:2:0")
    web = ImageSignature("webp", 10, 10, 8, "RGB")
    table = {"a": small, "b": big, "c": web, "d": big, "e": small, "f": big}
    images = _images(names)

    tracks = classify_images(images, reader=_reader(table))

    members = [im for t in tracks for im in t.images]
    assert sorted(m.file_name for m in members) == names
    assert [len(t) for t in tracks] == [3, 2, 1]
    # small and big differ only by resolution
    assert [im.file_name for im in tracks[0].images] == ["b", "d", "f"]


def test_ties_keep_first_seen_order():
    table = {
        "x1": ImageSignature("png", 5, 5, 8, "RGB"),
        "y1": ImageSignature("webp", 5, 5, 8, "RGB"),
        "x2": ImageSignature("png", 5, 5, 8, "RGB"),
        "y2": ImageSignature("webp", 5, 5, 8, "RGB"),
    }
    tracks = classify_images(_images(table), reader=_reader(table))
    assert [t.image_type for t in tracks] == ["png", "webp"]


def test_resolution_guard():
    assert check_resolution(1, MAX_PLANE_PIXELS)
    assert not check_resolution(1, MAX_PLANE_PIXELS + 1)

    table = {
        "ok.jpg": JPEG_HD,
        "huge.png": ImageSignature("png", 20000, 20000, 8, "RGB"),
    }
    with pytest.raises(ResolutionExceeded) as exc:
        classify_images(_images(table), reader=_reader(table))
    assert exc.value.path.name == "huge.png"


def test_resolution_checked_before_format():
    table = {"huge.gif": ImageSignature("gif", 20000, 20000, 8, "P")}
    with pytest.raises(ResolutionExceeded):
        classify_images(_images(table), reader=_reader(table))


def test_unsupported_formats_skipped(caplog):
    table = {
        "a.jpg": JPEG_HD,
        "b.gif": ImageSignature("gif", 10, 10, 8, "P"),
        "c.txt": ImageSignature(None),
    }
    tracks = classify_images(_images(table), reader=_reader(table))
    assert len(tracks) == 1
    assert [im.file_name for im in tracks[0].images] == ["a.jpg"]
    assert "unsupported format" in caplog.text


def test_cancel_stops_classification():
    token = CancelToken()
    seen = []

    def reader(path):
        seen.append(path)
        token.cancel()
        return JPEG_HD

    with pytest.raises(Cancelled):
        classify_images(_images(["a", "b", "c"]), reader=reader, token=token)
    assert len(seen) == 1


def test_signature_keys():
    assert signature_key(JPEG_HD) == "1080x1920_8Bits_3_4:2:0_jpeg"
    assert signature_key(PNG_16) == "600x800_16Bits_RGB with Alpha_png"
    assert signature_key(ImageSignature("webp", 1, 2, 8, "RGBA")) == "1x2_RGBA_webp"
    assert signature_key(ImageSignature("bmp", 1, 2)) is None


def test_classify_real_files(photo_tree, as_image):
    paths = sorted(photo_tree.rglob("*.*"))
    tracks = classify_images([as_image(p, photo_tree.parent) for p in paths])
    assert [(t.image_type, len(t)) for t in tracks] == [("jpeg", 4), ("jpeg", 2), ("png", 1)]


def test_classify_subsampling_splits_tracks(tmp_path, as_image):
    a = make_image(tmp_path / "a.jpg", subsampling=0)
    b = make_image(tmp_path / "b.jpg", subsampling=2)
    tracks = classify_images([as_image(a, tmp_path), as_image(b, tmp_path)])
    assert len(tracks) == 2
