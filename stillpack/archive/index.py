"""Builds, validates and (de)serializes the index embedded in each archive."""

import json
import logging
from pathlib import Path
from typing import List, Sequence

from stillpack.errors import IndexMissing
from stillpack.models import APP_VERSION, ArchiveIndex, IndexImage, IndexTrack, Track

log = logging.getLogger(__name__)

INDEX_FILENAME = "index.json"
INDEX_MIMETYPE = "application/json"


def build_index(tracks: Sequence[Track]) -> ArchiveIndex:
    """Lays out tracks in order; frame indices restart at 0 for each track."""
    index = ArchiveIndex(version=APP_VERSION)
    for track_number, track in enumerate(tracks):
        index.tracks.append(IndexTrack(image_type=track.image_type, track=track_number))
        for frame, image in enumerate(track.images):
            index.images.append(IndexImage(
                image_type=track.image_type,
                track=track_number,
                file_name=image.file_name,
                relative_path=image.relative_path,
                index=frame,
                sort=image.sort,
            ))
    return index


def index_to_dict(index: ArchiveIndex) -> dict:
    images: List[dict] = []
    for im in index.images:
        entry = {
            "imageType": im.image_type,
            "track": im.track,
            "fileName": im.file_name,
            "relativePath": im.relative_path,
            "index": im.index,
        }
        if im.sort is not None:
            entry["sort"] = im.sort
        images.append(entry)
    return {
        "version": index.version,
        "trackList": [{"imageType": t.image_type, "track": t.track} for t in index.tracks],
        "imageList": images,
    }


def index_from_dict(data: dict) -> ArchiveIndex:
    """
    Rebuilds an ArchiveIndex from its JSON form and validates it.

    Raises:
        IndexMissing: if keys are missing, mistyped, or the layout is broken.
    """
    try:
        index = ArchiveIndex(
            version=str(data["version"]),
            tracks=[
                IndexTrack(image_type=t["imageType"], track=int(t["track"]))
                for t in data["trackList"]
            ],
            images=[
                IndexImage(
                    image_type=im["imageType"],
                    track=int(im["track"]),
                    file_name=im["fileName"],
                    relative_path=im.get("relativePath") or "",
                    index=int(im["index"]),
                    sort=im.get("sort"),
                )
                for im in data["imageList"]
            ],
        )
    except (KeyError, TypeError, ValueError, AttributeError) as e:
        raise IndexMissing(f"Archive index is malformed: {e!r}") from e
    return index.validate()


def write_index(index: ArchiveIndex, path: Path) -> Path:
    """Writes the index as compact JSON."""
    path = Path(path)
    with path.open("w", encoding="utf-8") as f:
        json.dump(index_to_dict(index), f, ensure_ascii=False, separators=(",", ":"))
    log.debug(f"Wrote archive index to {path}")
    return path


def read_index(path: Path) -> ArchiveIndex:
    """
    Loads an index JSON file.

    Raises:
        IndexMissing: if the file is absent, not JSON, or not a valid index.
    """
    path = Path(path)
    if not path.is_file():
        raise IndexMissing(f"No archive index at {path}")
    try:
        with path.open("r", encoding="utf-8") as f:
            data = json.load(f)
    except (json.JSONDecodeError, UnicodeDecodeError, OSError) as e:
        log.error(f"Failed to load or parse archive index {path}: {e}")
        raise IndexMissing(f"Archive index at {path} is unreadable: {e}") from e
    if not isinstance(data, dict):
        raise IndexMissing(f"Archive index at {path} is not a JSON object")
    return index_from_dict(data)
