"""Restores the images of an archive into a directory tree."""

import logging
import os
import shutil
import tempfile
import time
from pathlib import Path
from typing import Callable, List, Optional, Union

from stillpack.archive.index import INDEX_FILENAME, read_index
from stillpack.errors import Cancelled, IndexMissing, SubprocessFailure
from stillpack.io.ffmpeg import FfmpegEngine, ProgressCallback
from stillpack.models import IMAGE_EXTENSIONS, ArchiveIndex, IndexImage, Phase
from stillpack.settings import OutputSettings, output_quality_args, resolve_output_settings
from stillpack.tasks import CancelToken

log = logging.getLogger(__name__)


def dump_index_args(archive: Path, json_path: Path) -> List[str]:
    # ffmpeg needs an output to run at all; the null muxer discards it
    return ["-dump_attachment:t:0", str(json_path), "-i", str(archive), "-f", "null", "-"]


def read_archive_index(
    archive: Union[str, Path],
    engine: Optional[FfmpegEngine] = None,
    token: Optional[CancelToken] = None,
    scratch_dir: Optional[Path] = None,
) -> ArchiveIndex:
    """
    Extracts and parses the index attached to ``archive``.

    Raises:
        IndexMissing: if the archive is absent, has no readable index, or the
            index is inconsistent.
        Cancelled: if ``token`` is cancelled.
    """
    archive = Path(archive)
    if not archive.is_file():
        raise IndexMissing(f"Archive not found: {archive}")
    engine = engine or FfmpegEngine()

    own_dir = scratch_dir is None
    workdir = Path(tempfile.mkdtemp(prefix="stillpack_index_")) if own_dir else Path(scratch_dir)
    json_path = workdir / INDEX_FILENAME
    try:
        try:
            engine.run(dump_index_args(archive, json_path), token=token, phase=Phase.UNZIPPING, message="Reading index")
        except SubprocessFailure as e:
            raise IndexMissing(f"Could not extract the index of {archive}: {e}") from e
        index = read_index(json_path)
    finally:
        if own_dir:
            shutil.rmtree(workdir, ignore_errors=True)
        elif json_path.exists():
            json_path.unlink()

    log.info("Read index of %s: %d tracks, %d images (version %s)", archive, len(index.tracks), len(index.images), index.version)
    return index


def frame_type(track_type: str, output: OutputSettings) -> str:
    return track_type if output.output_type == "original" else output.output_type


def frame_quality_args(track_type: str, output: OutputSettings) -> List[str]:
    if output.output_type == "original":
        return output_quality_args(track_type)
    return output_quality_args(output.output_type, output.quality_level, output.webp_lossless)


def decode_args(archive: Path, track: int, pattern: Path, quality: List[str]) -> List[str]:
    return ["-i", str(archive), "-map", f"0:v:{track}", "-f", "image2", *quality, str(pattern)]


def target_path(destination: Path, image: IndexImage, extension: Optional[str]) -> Path:
    """Where an index entry is restored; ``extension`` replaces the original one on override."""
    target = destination / (image.relative_path or image.file_name)
    if extension is not None:
        target = target.with_suffix(extension)
    resolved = target.resolve()
    if resolved != destination and destination not in resolved.parents:
        raise IndexMissing(f"Index entry {image.relative_path!r} points outside {destination}")
    return resolved


def unpack(
    archive: Union[str, Path],
    save_path: Union[str, Path],
    index: Optional[ArchiveIndex] = None,
    output: Optional[OutputSettings] = None,
    engine: Optional[FfmpegEngine] = None,
    reveal: Optional[Callable[[Path], object]] = None,
    token: Optional[CancelToken] = None,
    progress: Optional[ProgressCallback] = None,
) -> Path:
    """
    Decodes every track of ``archive`` and moves each frame to its original
    relative path under ``save_path``.

    ffmpeg numbers image2 output from 1, so index entry ``k`` is read from
    frame file ``k + 1``.

    Returns:
        The destination directory.

    Raises:
        IndexMissing: before any decoding, if the index cannot be read.
        SubprocessFailure: if decoding fails or a frame is missing.
        Cancelled: if ``token`` is cancelled.
    """
    t_start = time.perf_counter()
    archive = Path(archive)
    token = token or CancelToken()
    engine = engine or FfmpegEngine()
    if output is None:
        output = resolve_output_settings()

    destination = Path(save_path).resolve()
    destination.mkdir(parents=True, exist_ok=True)
    # Inside the destination so the final renames never cross filesystems
    scratch = Path(tempfile.mkdtemp(prefix=".stillpack_unpack_", dir=destination))

    try:
        if index is None:
            log.info("Unpack: reading index of %s", archive)
            index = read_archive_index(archive, engine=engine, token=token, scratch_dir=scratch)
        else:
            index.validate()

        extensions = {t.track: IMAGE_EXTENSIONS[frame_type(t.image_type, output)] for t in index.tracks}
        override = output.output_type != "original"
        # Every destination is checked before decoding starts
        targets = [target_path(destination, image, extensions[image.track] if override else None) for image in index.images]

        for entry in sorted(index.tracks, key=lambda t: t.track):
            token.raise_if_cancelled()
            count = len(index.images_for_track(entry.track))
            if count == 0:
                continue
            image_type = frame_type(entry.image_type, output)
            pattern = scratch / f"track_{entry.track}_%d{extensions[entry.track]}"
            log.info("Unpack: decoding track %d (%d frames) as %s", entry.track, count, image_type)
            engine.run(
                decode_args(archive, entry.track, pattern, frame_quality_args(entry.image_type, output)),
                token=token,
                progress=progress,
                phase=Phase.UNZIPPING,
                track=entry.track,
                message=f"Decoding track {entry.track}",
            )

        token.raise_if_cancelled()
        log.info("Unpack: relocating %d images into %s", len(index.images), destination)
        for image, target in zip(index.images, targets):
            frame = scratch / f"track_{image.track}_{image.index + 1}{extensions[image.track]}"
            if not frame.is_file():
                raise SubprocessFailure(f"Decoded frame missing for {image.relative_path or image.file_name}: {frame.name}")
            target.parent.mkdir(parents=True, exist_ok=True)
            os.replace(frame, target)
    except Cancelled:
        log.info("Unpack: cancelled, cleaning up %s", scratch)
        raise
    except Exception as e:
        log.error("Unpack: failed for %s: %s", archive, e)
        raise
    finally:
        shutil.rmtree(scratch, ignore_errors=True)

    log.info("Unpack: done, %s restored in %.2fs", archive, time.perf_counter() - t_start)
    if reveal is not None:
        reveal(destination)
    return destination
