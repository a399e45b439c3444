"""Packs classified image tracks into one Matroska archive.

Each track is encoded on its own as a 1 fps video, then all tracks are
stream-copied into the final container together with the JSON index as an
attachment.
"""

import logging
import os
import shutil
import tempfile
import time
from pathlib import Path
from typing import Callable, List, Optional, Sequence, Union

from stillpack.archive.index import INDEX_FILENAME, INDEX_MIMETYPE, build_index, write_index
from stillpack.errors import Cancelled, SubprocessFailure
from stillpack.io.ffmpeg import FfmpegEngine, ProgressCallback
from stillpack.models import CONTAINER_EXTENSION, Phase, Track
from stillpack.settings import EncoderSettings, resolve_encoder_settings
from stillpack.tasks import CancelToken

log = logging.getLogger(__name__)


def concat_line(path: Union[str, Path]) -> str:
    """One concat-demuxer ``file`` directive, quoting ``'`` the way ffmpeg expects."""
    return "file '" + str(path).replace("'", "'\\''") + "'"


def write_manifest(track: Track, path: Path) -> Path:
    """Writes the concat list for one track; every image is shown for one second."""
    lines: List[str] = []
    for image in track.images:
        lines.append(concat_line(Path(image.absolute_path).resolve()))
        lines.append("duration 1")
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return path


def destination_for(save_path: Union[str, Path]) -> Path:
    """The archive path for a caller path: same name, ``.mkv`` extension."""
    return Path(save_path).with_suffix(CONTAINER_EXTENSION)


def encode_args(manifest: Path, output: Path, settings: EncoderSettings) -> List[str]:
    return [
        "-f", "concat",
        "-safe", "0",
        "-i", str(manifest),
        "-map", "0:v",
        "-c:v", settings.encoder,
        *settings.args,
        "-r", "1",
        str(output),
    ]


def mux_args(track_files: Sequence[Path], index_file: Path, output: Path) -> List[str]:
    args: List[str] = []
    for f in track_files:
        args += ["-i", str(f)]
    for i in range(len(track_files)):
        args += ["-map", f"{i}:v"]
    args += [
        "-c:v", "copy",
        "-attach", str(index_file),
        "-metadata:s:t", f"mimetype={INDEX_MIMETYPE}",
        "-metadata:s:t", f"filename={INDEX_FILENAME}",
        "-f", "matroska",
        str(output),
    ]
    return args


def pack(
    tracks: Sequence[Track],
    save_path: Union[str, Path],
    engine: Optional[FfmpegEngine] = None,
    settings: Optional[EncoderSettings] = None,
    scratch_root: Optional[Path] = None,
    reveal: Optional[Callable[[Path], object]] = None,
    token: Optional[CancelToken] = None,
    progress: Optional[ProgressCallback] = None,
) -> Path:
    """
    Encodes ``tracks`` into a single archive at ``save_path`` (extension forced to .mkv).

    Scratch files and any partial output are removed on every exit path.

    Returns:
        The path of the finished archive.

    Raises:
        Cancelled: if ``token`` is cancelled; ffmpeg is killed first.
        SubprocessFailure: if any ffmpeg step fails or leaves no output.
        InvalidSetting: if the configured encoder settings are invalid.
    """
    t_start = time.perf_counter()
    token = token or CancelToken()
    engine = engine or FfmpegEngine()
    if settings is None:
        settings = resolve_encoder_settings()
    if scratch_root is None:
        from stillpack.config import config
        scratch_root = config.scratch_root

    destination = destination_for(save_path)
    destination.parent.mkdir(parents=True, exist_ok=True)
    pack_root = Path(scratch_root) / "pack"
    pack_root.mkdir(parents=True, exist_ok=True)
    scratch = Path(tempfile.mkdtemp(prefix="pack_", dir=pack_root))
    # One partial per run; packs to the same destination never share it
    partial = destination.with_name(f".{destination.name}.{scratch.name}.partial")

    try:
        log.info("Pack: preparing %d tracks in %s", len(tracks), scratch)
        manifests = [write_manifest(track, scratch / f"content_{i}.txt") for i, track in enumerate(tracks)]
        index_file = write_index(build_index(tracks), scratch / INDEX_FILENAME)

        track_files: List[Path] = []
        for i, manifest in enumerate(manifests):
            token.raise_if_cancelled()
            output = scratch / f"content_{i}.mkv"
            log.info("Pack: encoding track %d/%d (%d images) with %s", i + 1, len(manifests), len(tracks[i]), settings.encoder)
            engine.run(
                encode_args(manifest, output, settings),
                token=token,
                progress=progress,
                phase=Phase.ZIPPING,
                track=i,
                message=f"Encoding track {i}",
            )
            if not output.is_file():
                raise SubprocessFailure(f"ffmpeg produced no output for track {i}")
            track_files.append(output)

        token.raise_if_cancelled()
        log.info("Pack: muxing %d tracks into %s", len(track_files), destination)
        engine.run(
            mux_args(track_files, index_file, partial),
            token=token,
            progress=progress,
            phase=Phase.MERGING,
            message="Merging tracks",
        )
        if not partial.is_file():
            raise SubprocessFailure(f"ffmpeg produced no archive at {partial}")

        token.raise_if_cancelled()
        log.info("Pack: finalizing %s", destination)
        os.replace(partial, destination)
    except Cancelled:
        log.info("Pack: cancelled, cleaning up %s", scratch)
        raise
    except Exception as e:
        log.error("Pack: failed for %s: %s", destination, e)
        raise
    finally:
        shutil.rmtree(scratch, ignore_errors=True)
        if partial.exists():
            try:
                partial.unlink()
            except OSError as e:
                log.warning(f"Could not remove partial archive {partial}: {e}")

    log.info("Pack: done, %s written in %.2fs", destination, time.perf_counter() - t_start)
    if reveal is not None:
        reveal(destination)
    return destination
