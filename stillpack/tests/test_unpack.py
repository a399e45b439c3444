"""Tests for the unpack pipeline and pack/unpack round trips."""

import json

import pytest

from stillpack.tests.helpers import FakeEngine
from stillpack.archive.index import index_from_dict, index_to_dict
from stillpack.archive.pack import pack
from stillpack.archive.unpack import decode_args, read_archive_index, unpack
from stillpack.errors import IndexMissing, SubprocessFailure
from stillpack.imaging.classifier import classify_images
from stillpack.io.indexer import find_images
from stillpack.models import Phase
from stillpack.settings import OutputSettings, encoder_settings

ORIGINAL = OutputSettings()


@pytest.fixture
def archive(tmp_path, photo_tree, fake_engine):
    tracks = classify_images(find_images(photo_tree))
    return pack(tracks, tmp_path / "photos.mkv", engine=fake_engine,
                settings=encoder_settings("libx265"), scratch_root=tmp_path / "scratch")


def test_read_archive_index(archive, fake_engine):
    index = read_archive_index(archive, engine=fake_engine)
    assert len(index.tracks) == 3
    assert len(index.images) == 7
    assert fake_engine.calls[-1][0] == "dump"


def test_read_archive_index_missing_archive(tmp_path, fake_engine):
    with pytest.raises(IndexMissing):
        read_archive_index(tmp_path / "none.mkv", engine=fake_engine)


def test_read_archive_index_ffmpeg_failure(archive):
    with pytest.raises(IndexMissing):
        read_archive_index(archive, engine=FakeEngine(fail_on="dump"))


def test_round_trip_restores_identical_files(tmp_path, archive, photo_tree, fake_engine):
    dest = tmp_path / "restored"
    revealed = []
    events = []

    out = unpack(archive, dest, output=ORIGINAL, engine=fake_engine, reveal=revealed.append, progress=events.append)

    assert out == dest.resolve()
    assert revealed == [out]
    originals = sorted(p for p in photo_tree.rglob("*") if p.is_file())
    for original in originals:
        restored = dest / "photos" / original.relative_to(photo_tree)
        assert restored.read_bytes() == original.read_bytes(), restored
    # scratch removed, nothing else left behind
    assert sorted(p.name for p in dest.iterdir()) == ["photos"]
    assert {e.phase for e in events} == {Phase.UNZIPPING}


def test_frame_numbering_offset(tmp_path, archive, photo_tree, fake_engine):
    index = read_archive_index(archive, engine=fake_engine)
    unpack(archive, tmp_path / "out", index=index, output=ORIGINAL, engine=fake_engine)

    decodes = [args for kind, args in fake_engine.calls if kind == "decode"]
    assert len(decodes) == len(index.tracks)
    first_jpeg = index.images_for_track(0)[0]
    restored = tmp_path / "out" / first_jpeg.relative_path
    # frame file 1 holds index entry 0
    assert restored.read_bytes() == (photo_tree.parent / first_jpeg.relative_path).read_bytes()


def test_output_override_rewrites_extension(tmp_path, archive, fake_engine):
    dest = tmp_path / "webp"
    unpack(archive, dest, output=OutputSettings("webp", webp_lossless=True, quality_level=6), engine=fake_engine)

    files = sorted(p.relative_to(dest).as_posix() for p in dest.rglob("*") if p.is_file())
    assert "photos/img0.webp" in files
    assert "photos/shots/a.webp" in files
    assert all(f.endswith(".webp") for f in files)

    decode = next(args for kind, args in fake_engine.calls if kind == "decode")
    assert decode[-5:-1] == ["-quality", "67", "-lossless", "1"]


def test_decode_args():
    args = decode_args("a.mkv", 2, "out/track_2_%d.png", ["-compression_level", "9"])
    assert args == ["-i", "a.mkv", "-map", "0:v:2", "-f", "image2", "-compression_level", "9", "out/track_2_%d.png"]


def test_missing_frame_is_failure(tmp_path, archive):
    class DropLast(FakeEngine):
        def _decode(self, args):
            super()._decode(args)
            produced = sorted((tmp_path / "out").rglob("track_0_*"))
            produced[-1].unlink()

    with pytest.raises(SubprocessFailure, match="Decoded frame missing"):
        unpack(archive, tmp_path / "out", output=ORIGINAL, engine=DropLast())
    assert not any(p.name.startswith(".stillpack_unpack_") for p in (tmp_path / "out").iterdir())


def test_broken_index_fails_before_decoding(tmp_path, archive, fake_engine):
    data = json.loads(archive.read_text(encoding="utf-8"))
    index = json.loads(data["index"])
    index["imageList"][1]["index"] = 99
    data["index"] = json.dumps(index)
    archive.write_text(json.dumps(data), encoding="utf-8")

    with pytest.raises(IndexMissing):
        unpack(archive, tmp_path / "out", output=ORIGINAL, engine=fake_engine)
    assert not any(kind == "decode" for kind, _ in fake_engine.calls)


def test_index_escaping_destination_rejected(tmp_path, archive, fake_engine):
    index = read_archive_index(archive, engine=fake_engine)
    data = index_to_dict(index)
    data["imageList"][-1]["relativePath"] = "../../escape.png"
    with pytest.raises(IndexMissing):
        unpack(archive, tmp_path / "out", index=index_from_dict(data), output=ORIGINAL, engine=fake_engine)
    assert not (tmp_path.parent / "escape.png").exists()
    assert fake_engine.count("decode") == 0
    assert not any(p.is_file() for p in (tmp_path / "out").rglob("*"))
