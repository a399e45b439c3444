"""Tests for building and (de)serializing the archive index."""

import json
from pathlib import Path

import pytest

from stillpack.archive.index import build_index, index_from_dict, index_to_dict, read_index, write_index
from stillpack.errors import IndexMissing
from stillpack.models import APP_VERSION, ArchiveIndex, Image, IndexImage, IndexTrack, Track


def _track(image_type, names, sort=None):
    return Track(image_type, [
        Image(file_name=n, absolute_path=Path("/in") / n, relative_path=f"root/{n}", sort=sort)
        for n in names
    ])


@pytest.fixture
def tracks():
    return [_track("jpeg", ["a.jpg", "b.jpg", "c.jpg"], sort=7), _track("png", ["d.png"])]


def test_build_index_layout(tracks):
    index = build_index(tracks)
    assert index.version == APP_VERSION
    assert index.tracks == [IndexTrack("jpeg", 0), IndexTrack("png", 1)]
    assert len(index.images) == sum(len(t) for t in tracks)
    assert [im.index for im in index.images_for_track(0)] == [0, 1, 2]
    assert [im.index for im in index.images_for_track(1)] == [0]
    assert index.images[0].relative_path == "root/a.jpg"
    assert index.images[0].sort == 7
    index.validate()


def test_json_shape(tracks):
    data = index_to_dict(build_index(tracks))
    assert set(data) == {"version", "trackList", "imageList"}
    assert data["trackList"][1] == {"imageType": "png", "track": 1}
    assert data["imageList"][0] == {
        "imageType": "jpeg", "track": 0, "fileName": "a.jpg",
        "relativePath": "root/a.jpg", "index": 0, "sort": 7,
    }
    # sort is omitted when absent
    assert "sort" not in data["imageList"][3]


def test_write_and_read(tmp_path, tracks):
    index = build_index(tracks)
    path = write_index(index, tmp_path / "index.json")
    assert read_index(path) == index


def test_read_missing_file(tmp_path):
    with pytest.raises(IndexMissing):
        read_index(tmp_path / "nope.json")


def test_read_bad_json(tmp_path):
    path = tmp_path / "index.json"
    path.write_text("{not json", encoding="utf-8")
    with pytest.raises(IndexMissing):
        read_index(path)
    path.write_text("[]", encoding="utf-8")
    with pytest.raises(IndexMissing):
        read_index(path)


def test_from_dict_missing_keys():
    with pytest.raises(IndexMissing):
        index_from_dict({"version": "1", "trackList": []})
    with pytest.raises(IndexMissing):
        index_from_dict({"version": "1", "trackList": [{"imageType": "png"}], "imageList": []})


def _image(track, index, image_type="jpeg"):
    return IndexImage(image_type, track, f"{track}_{index}", "", index)


@pytest.mark.parametrize("index", [
    # track numbers must start at 0
    ArchiveIndex(tracks=[IndexTrack("jpeg", 1)], images=[_image(1, 0)]),
    # gap in frame indices
    ArchiveIndex(tracks=[IndexTrack("jpeg", 0)], images=[_image(0, 0), _image(0, 2)]),
    # duplicate frame index
    ArchiveIndex(tracks=[IndexTrack("jpeg", 0)], images=[_image(0, 0), _image(0, 0)]),
    # image on an unknown track
    ArchiveIndex(tracks=[IndexTrack("jpeg", 0)], images=[_image(0, 0), _image(3, 0)]),
    # type disagrees with its track
    ArchiveIndex(tracks=[IndexTrack("jpeg", 0)], images=[_image(0, 0, "png")]),
    # unsupported type
    ArchiveIndex(tracks=[IndexTrack("gif", 0)], images=[_image(0, 0, "gif")]),
])
def test_validate_rejects_broken_layouts(index):
    with pytest.raises(IndexMissing):
        index.validate()


def test_unicode_names_survive(tmp_path):
    index = build_index([_track("jpeg", ["日本 'x'.jpg"])])
    path = write_index(index, tmp_path / "index.json")
    assert json.loads(path.read_text(encoding="utf-8"))["imageList"][0]["fileName"] == "日本 'x'.jpg"
    assert read_index(path).images[0].file_name == "日本 'x'.jpg"
