"""Random-access preview of archive frames through a windowed on-disk cache.

A request for frame ``k`` of track ``t`` makes sure a window of frames around
``k`` has been extracted to ``<cache_root>/<content_hash>/track_<t>_<i>.jpg``.
Extraction runs on a small thread pool; at most one extraction per cache folder
is in flight for a given window and every caller asking for it awaits the same
future.
"""

import concurrent.futures
import dataclasses
import hashlib
import logging
import shutil
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union

from cachetools import LRUCache

from stillpack.errors import Cancelled, FrameUnavailable, StillpackError
from stillpack.imaging.jpeg import decode_frame
from stillpack.io.ffmpeg import FfmpegEngine
from stillpack.models import DecodedImage, Phase
from stillpack.tasks import CancelToken

log = logging.getLogger(__name__)

HASH_CHUNK = 64 * 1024


def prefix_hash(path: Union[str, Path], max_bytes: int = 2 * 1024 * 1024) -> str:
    """MD5 hex digest of the first ``max_bytes`` of a file."""
    md5 = hashlib.md5()
    remaining = max_bytes
    with open(path, "rb") as f:
        while remaining > 0:
            chunk = f.read(min(HASH_CHUNK, remaining))
            if not chunk:
                break
            md5.update(chunk)
            remaining -= len(chunk)
    return md5.hexdigest()


def extract_args(archive: Path, folder: Path, track: int, start: int, length: int) -> List[str]:
    # Seeking on the input resets timestamps, so -start_number makes file numbers equal frame indices
    return [
        "-ss", str(start),
        "-i", str(archive),
        "-map", f"0:v:{track}",
        "-t", str(length),
        "-q:v", "2",
        "-start_number", str(start),
        "-f", "image2",
        str(folder / f"track_{track}_%d.jpg"),
    ]


@dataclasses.dataclass
class _Pending:
    key: Tuple[int, int]
    future: Future


class PreviewCache:
    def __init__(
        self,
        engine: Optional[FfmpegEngine] = None,
        cache_root: Optional[Path] = None,
        window_before: Optional[int] = None,
        window_after: Optional[int] = None,
        window_length: Optional[int] = None,
        prefix_bytes: Optional[int] = None,
        max_workers: int = 2,
    ):
        from stillpack.config import config

        self.engine = engine or FfmpegEngine()
        self.cache_root = Path(cache_root) if cache_root is not None else config.scratch_root / "preview"
        self.window_before = window_before if window_before is not None else config.getint("preview", "window_before", fallback=5)
        self.window_after = window_after if window_after is not None else config.getint("preview", "window_after", fallback=5)
        self.window_length = window_length if window_length is not None else config.getint("preview", "window_length", fallback=15)
        self.prefix_bytes = prefix_bytes if prefix_bytes is not None else config.getint("preview", "prefix_bytes", fallback=2 * 1024 * 1024)

        self.executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="Preview")
        self._hashes: LRUCache = LRUCache(maxsize=256)
        self._lock = threading.Lock()
        self._inflight: Dict[Path, _Pending] = {}
        self._token = CancelToken()
        self._closed = False

    def content_hash(self, archive: Path) -> str:
        """Prefix hash of ``archive``, memoised while its mtime and size are unchanged."""
        st = archive.stat()
        key = (str(archive.resolve()), st.st_mtime_ns, st.st_size)
        with self._lock:
            cached = self._hashes.get(key)
        if cached is not None:
            return cached
        digest = prefix_hash(archive, self.prefix_bytes)
        with self._lock:
            self._hashes[key] = digest
        log.debug("Hashed %s -> %s", archive, digest)
        return digest

    def frame_path(self, folder: Path, track: int, index: int) -> Path:
        return folder / f"track_{track}_{index}.jpg"

    def window(self, index: int, total_frames: int) -> Tuple[int, int]:
        """First and last frame that must be on disk around ``index``.

        ``total_frames <= 0`` means the track length is unknown and the end is
        not clamped.
        """
        pre = max(0, index - self.window_before)
        nxt = index + self.window_after
        if total_frames > 0:
            nxt = min(total_frames - 1, nxt)
        return pre, nxt

    def get_frame(
        self,
        archive: Union[str, Path],
        content_hash: Optional[str] = None,
        track: int = 0,
        index: int = 0,
        total_frames: int = 0,
    ) -> Path:
        """
        Returns the cached JPEG for frame ``index`` of ``track``.

        Only blocks when the frame is not on disk yet.

        Raises:
            FrameUnavailable: if the archive cannot be read or the frame could
                not be extracted.
        """
        if self._closed:
            raise FrameUnavailable("Preview cache is shut down")
        if index < 0 or (total_frames > 0 and index >= total_frames):
            raise FrameUnavailable(f"Frame {index} is outside track {track} ({total_frames} frames)")

        archive = Path(archive)
        if content_hash is None:
            try:
                content_hash = self.content_hash(archive)
            except OSError as e:
                raise FrameUnavailable(f"Cannot read archive {archive}: {e}") from e

        folder = self.cache_root / content_hash
        folder.mkdir(parents=True, exist_ok=True)
        target = self.frame_path(folder, track, index)

        pre, nxt = self.window(index, total_frames)
        future = self._ensure(archive, folder, track, pre, nxt)
        if target.exists():
            return target

        if future is None:
            future = self._ensure(archive, folder, track, pre, nxt, force=True)
        try:
            future.result()
        except concurrent.futures.CancelledError as e:
            raise FrameUnavailable(f"Extraction for frame {index} was cancelled") from e
        except StillpackError as e:
            raise FrameUnavailable(f"Extraction for frame {index} failed: {e}") from e

        if not target.exists():
            raise FrameUnavailable(f"Frame {index} of track {track} is not in {archive}")
        return target

    def load_frame(
        self,
        archive: Union[str, Path],
        content_hash: Optional[str] = None,
        track: int = 0,
        index: int = 0,
        total_frames: int = 0,
        display_width: int = 0,
        display_height: int = 0,
    ) -> DecodedImage:
        """Like get_frame, but decodes the frame to fit the display box."""
        path = self.get_frame(archive, content_hash, track, index, total_frames)
        decoded = decode_frame(path, display_width, display_height)
        if decoded is None:
            raise FrameUnavailable(f"Cannot decode preview frame {path}")
        return decoded

    def _ensure(self, archive: Path, folder: Path, track: int, pre: int, nxt: int, force: bool = False) -> Optional[Future]:
        """Returns the extraction covering the window, or None if it is already on disk."""
        key = (track, pre)
        with self._lock:
            if self._closed:
                raise FrameUnavailable("Preview cache is shut down")
            current = self._inflight.get(folder)
            # Checked before the files: a finished future means its frames are written
            if current is not None and current.key == key and not current.future.done():
                log.debug("Joining in-flight extraction of %s track %d from %d", folder.name, track, pre)
                return current.future
            if not force and self.frame_path(folder, track, pre).exists() and self.frame_path(folder, track, nxt).exists():
                return None
            previous = current.future if current is not None and not current.future.done() else None
            future = self.executor.submit(self._extract, archive, folder, track, pre, nxt, previous)
            future.add_done_callback(self._log_failure)
            self._inflight[folder] = _Pending(key, future)
            return future

    def _extract(self, archive: Path, folder: Path, track: int, start: int, end: int, previous: Optional[Future]):
        # One ffmpeg per folder at a time
        if previous is not None:
            concurrent.futures.wait([previous])
        if self._token.cancelled:
            raise Cancelled("Preview cache is shutting down")
        if previous is not None and self.frame_path(folder, track, start).exists() and self.frame_path(folder, track, end).exists():
            log.debug("Window %d..%d of track %d already extracted for %s", start, end, track, folder.name)
            return

        log.info("Extracting %d frames of track %d from %d for %s", self.window_length, track, start, archive.name)
        self.engine.run(
            extract_args(archive, folder, track, start, self.window_length),
            token=self._token,
            phase=Phase.UNZIPPING,
            track=track,
            message="Extracting preview frames",
        )

    @staticmethod
    def _log_failure(future: Future):
        if future.cancelled():
            return
        error = future.exception()
        if error is not None and not isinstance(error, Cancelled):
            log.warning("Preview extraction failed: %s", error)

    def purge(self):
        """Deletes every cached frame."""
        with self._lock:
            self._inflight.clear()
        if self.cache_root.exists():
            log.info("Purging preview cache at %s", self.cache_root)
            shutil.rmtree(self.cache_root, ignore_errors=True)

    def shutdown(self):
        log.info("Shutting down preview cache.")
        with self._lock:
            self._closed = True
        self._token.cancel()
        self.executor.shutdown(wait=True, cancel_futures=True)
        self.purge()
