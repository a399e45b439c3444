"""Archive controller and command line entry point."""

import argparse
import json
import logging
import sys
import time
from pathlib import Path
from typing import Callable, Iterable, List, Optional, Sequence

from stillpack.archive.index import index_to_dict
from stillpack.archive.pack import pack
from stillpack.archive.unpack import read_archive_index, unpack
from stillpack.config import config
from stillpack.errors import StillpackError
from stillpack.imaging.classifier import classify_images
from stillpack.imaging.preview import PreviewCache
from stillpack.io.ffmpeg import FfmpegEngine
from stillpack.io.indexer import collect_images
from stillpack.io.reveal import reveal_in_file_browser
from stillpack.logging_setup import setup_logging
from stillpack.models import APP_VERSION, ArchiveIndex, Image, ProgressEvent, Track
from stillpack.settings import OUTPUT_TYPES, OutputSettings
from stillpack.tasks import CLASSIFY, PACK, UNPACK, OperationHandle, OperationRegistry, OperationStatus
from stillpack.ui.provider import PreviewImageProvider

log = logging.getLogger(__name__)

ProgressCallback = Callable[[ProgressEvent], None]


class ArchiveController:
    """The single entry point UI code talks to.

    Pack, unpack and classification run in the background, one per category;
    calling one again supersedes the call still in flight.
    """

    def __init__(
        self,
        engine: Optional[FfmpegEngine] = None,
        registry: Optional[OperationRegistry] = None,
        preview_cache: Optional[PreviewCache] = None,
        reveal_on_finish: Optional[bool] = None,
    ):
        self.engine = engine or FfmpegEngine()
        self.registry = registry or OperationRegistry()
        self._preview = preview_cache
        self._provider: Optional[PreviewImageProvider] = None
        if reveal_on_finish is None:
            reveal_on_finish = config.getboolean("core", "reveal_on_finish", fallback=True)
        self.reveal = reveal_in_file_browser if reveal_on_finish else None

    @property
    def preview(self) -> PreviewCache:
        if self._preview is None:
            self._preview = PreviewCache(engine=self.engine)
        return self._preview

    def get_track_list(self, images: Iterable[Image], on_progress: Optional[ProgressCallback] = None) -> OperationHandle:
        """Classifies ``images`` in the background; the result value is a list of Tracks."""
        return self.registry.start(CLASSIFY, self._classify, list(images), on_progress=on_progress)

    @staticmethod
    def _classify(images: List[Image], token=None, progress=None) -> List[Track]:
        return classify_images(images, token=token)

    def pack(self, tracks: Sequence[Track], save_path, on_progress: Optional[ProgressCallback] = None) -> OperationHandle:
        return self.registry.start(
            PACK, pack, list(tracks), save_path,
            engine=self.engine, reveal=self.reveal, on_progress=on_progress,
        )

    def cancel_pack(self) -> bool:
        return self.registry.cancel(PACK)

    def unpack(
        self,
        archive,
        save_path,
        index: Optional[ArchiveIndex] = None,
        output: Optional[OutputSettings] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> OperationHandle:
        return self.registry.start(
            UNPACK, unpack, archive, save_path,
            index=index, output=output, engine=self.engine, reveal=self.reveal, on_progress=on_progress,
        )

    def cancel_unpack(self) -> bool:
        return self.registry.cancel(UNPACK)

    def read_index(self, archive) -> ArchiveIndex:
        return read_archive_index(archive, engine=self.engine)

    def preview_frame(self, archive, content_hash: Optional[str] = None, track: int = 0, index: int = 0, total_frames: int = 0) -> Path:
        return self.preview.get_frame(archive, content_hash, track, index, total_frames)

    def register_preview_provider(self, qml_engine, name: str = "preview") -> PreviewImageProvider:
        """Registers the frame provider with a QQmlEngine so QML can load ``image://<name>/<track>/<index>/<total>``."""
        if self._provider is None:
            self._provider = PreviewImageProvider(self.preview)
        qml_engine.addImageProvider(name, self._provider)
        return self._provider

    def shutdown(self):
        log.info("Application shutting down.")
        self.registry.shutdown()
        if self._preview is not None:
            self._preview.shutdown()


def _print_progress(event: ProgressEvent):
    track = f" track {event.track}" if event.track is not None else ""
    print(
        f"\r[{event.phase.value}{track}] frame {event.frame_count} "
        f"{event.current_fps:.1f} fps {event.current_kbps:.0f} kbit/s {event.timemark}",
        end="", file=sys.stderr, flush=True,
    )


def _wait(handle: OperationHandle, cancel: Callable[[], bool]) -> int:
    try:
        result = handle.result()
    except KeyboardInterrupt:
        log.info("Interrupted, cancelling %s", handle.category)
        cancel()
        result = handle.result()
    print(file=sys.stderr)

    if result.status == OperationStatus.DONE:
        print(result.value)
        return 0
    if result.status == OperationStatus.CANCELLED:
        print(f"{handle.category} cancelled", file=sys.stderr)
        return 130
    print(f"{handle.category} failed: {result.message}", file=sys.stderr)
    return 1


def _describe_tracks(tracks: List[Track]):
    for i, track in enumerate(tracks):
        first = track.images[0].relative_path if track.images else ""
        print(f"track {i}: {track.image_type:<5} {len(track):>6} images  (first: {first})")


def _output_settings(args) -> Optional[OutputSettings]:
    if args.type is None and args.quality is None and not args.lossless:
        return None
    return OutputSettings(
        output_type=args.type or "original",
        webp_lossless=args.lossless,
        quality_level=9 if args.quality is None else args.quality,
    )


def main(args: argparse.Namespace) -> int:
    """stillpack entry point; returns the process exit code."""
    t0 = time.perf_counter()
    setup_logging(args.debug)
    log.info("Starting stillpack %s: %s", APP_VERSION, args.command)

    controller = ArchiveController(reveal_on_finish=args.reveal)
    try:
        if args.command == "tracks":
            _describe_tracks(classify_images(collect_images(args.paths)))
            return 0

        if args.command == "pack":
            tracks = classify_images(collect_images(args.paths))
            if not tracks:
                print("No packable images found", file=sys.stderr)
                return 1
            _describe_tracks(tracks)
            handle = controller.pack(tracks, args.output, on_progress=_print_progress)
            return _wait(handle, controller.cancel_pack)

        if args.command == "unpack":
            handle = controller.unpack(args.archive, args.output, output=_output_settings(args), on_progress=_print_progress)
            return _wait(handle, controller.cancel_unpack)

        if args.command == "index":
            print(json.dumps(index_to_dict(controller.read_index(args.archive)), indent=2, ensure_ascii=False))
            return 0

        if args.command == "preview":
            print(controller.preview_frame(args.archive, track=args.track, index=args.index, total_frames=args.total))
            return 0
    except StillpackError as e:
        log.error("%s failed: %s", args.command, e)
        print(f"error: {e}", file=sys.stderr)
        return 1
    finally:
        # A preview is printed as a path into the cache, so keep it for the caller
        if args.command != "preview":
            controller.shutdown()
        else:
            controller.registry.shutdown()
            controller.preview.executor.shutdown(wait=True)
        log.debug("Finished in %.3fs", time.perf_counter() - t0)
    return 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="stillpack", description="Pack image folders into a single video archive and back")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    parser.add_argument("--reveal", action="store_true", help="Show the result in the file browser when done")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("tracks", help="Show how images would be grouped into tracks")
    p.add_argument("paths", nargs="+", type=Path, help="Image files or directories")

    p = sub.add_parser("pack", help="Pack images into an archive")
    p.add_argument("paths", nargs="+", type=Path, help="Image files or directories")
    p.add_argument("-o", "--output", required=True, type=Path, help="Archive path (.mkv is enforced)")

    p = sub.add_parser("unpack", help="Restore the images of an archive")
    p.add_argument("archive", type=Path)
    p.add_argument("-o", "--output", required=True, type=Path, help="Destination directory")
    p.add_argument("--type", choices=OUTPUT_TYPES, default=None, help="Write frames as this type instead of the original")
    p.add_argument("--quality", type=int, choices=range(10), default=None, metavar="0-9", help="Output quality level, 9 = best")
    p.add_argument("--lossless", action="store_true", help="Lossless webp output")

    p = sub.add_parser("index", help="Print the index embedded in an archive")
    p.add_argument("archive", type=Path)

    p = sub.add_parser("preview", help="Extract one frame through the preview cache and print its path")
    p.add_argument("archive", type=Path)
    p.add_argument("--track", type=int, default=0)
    p.add_argument("--index", type=int, default=0)
    p.add_argument("--total", type=int, default=0, help="Frames in the track, if known")
    return parser


def cli(argv: Optional[Sequence[str]] = None):
    """CLI entry point."""
    args = build_parser().parse_args(argv)
    sys.exit(main(args))


if __name__ == "__main__":
    cli()
