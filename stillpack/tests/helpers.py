"""ffmpeg stand-ins and image builders shared by the test modules."""

import json
import shutil
import threading
from pathlib import Path

from PIL import Image as PILImage

from stillpack.errors import Cancelled, SubprocessFailure
from stillpack.models import Phase, ProgressEvent


def _unquote(line: str) -> str:
    return line[len("file '"):-1].replace("'\\''", "'")


def _arg(args, flag):
    return args[args.index(flag) + 1]


class FakeEngine:
    """Writes the files the real ffmpeg would for each kind of invocation.

    The "archive" it produces is JSON holding each track's concat manifest and
    the attached index, so decoding can copy the original files back out.
    """

    def __init__(self, fail_on=None):
        self.calls = []
        self.fail_on = fail_on
        self.lock = threading.Lock()

    def kind(self, args):
        if "-dump_attachment:t:0" in args:
            return "dump"
        if "-attach" in args:
            return "mux"
        if "concat" in args:
            return "encode"
        if "-ss" in args:
            return "extract"
        return "decode"

    def run(self, args, token=None, progress=None, phase=Phase.ZIPPING, track=None, message=""):
        if token is not None:
            token.raise_if_cancelled()
        kind = self.kind(args)
        with self.lock:
            self.calls.append((kind, list(args)))
        if kind == self.fail_on:
            raise SubprocessFailure(f"fake {kind} failure", returncode=1, stderr="boom")
        getattr(self, f"_{kind}")(args)
        if progress:
            progress(ProgressEvent(message=message, frame_count=1, phase=phase, track=track))

    def _encode(self, args):
        manifest = Path(_arg(args, "-i")).read_text(encoding="utf-8")
        Path(args[-1]).write_text(manifest, encoding="utf-8")

    def _mux(self, args):
        inputs = [args[i + 1] for i, a in enumerate(args) if a == "-i"]
        archive = {
            "tracks": [Path(p).read_text(encoding="utf-8") for p in inputs],
            "index": Path(_arg(args, "-attach")).read_text(encoding="utf-8"),
        }
        Path(args[-1]).write_text(json.dumps(archive), encoding="utf-8")

    @staticmethod
    def _sources(archive_path, track):
        archive = json.loads(Path(archive_path).read_text(encoding="utf-8"))
        lines = archive["tracks"][track].splitlines()
        return [_unquote(line) for line in lines if line.startswith("file ")]

    def _dump(self, args):
        archive = json.loads(Path(_arg(args, "-i")).read_text(encoding="utf-8"))
        Path(_arg(args, "-dump_attachment:t:0")).write_text(archive["index"], encoding="utf-8")

    def _decode(self, args):
        track = int(_arg(args, "-map").split(":")[-1])
        pattern = args[-1]
        for number, source in enumerate(self._sources(_arg(args, "-i"), track), start=1):
            shutil.copyfile(source, pattern % number)

    def _extract(self, args):
        track = int(_arg(args, "-map").split(":")[-1])
        start = int(_arg(args, "-ss"))
        length = int(_arg(args, "-t"))
        pattern = args[-1]
        sources = self._sources(_arg(args, "-i"), track)
        for i in range(start, min(start + length, len(sources))):
            PILImage.open(sources[i]).convert("RGB").save(pattern % i, "JPEG")

    def count(self, kind):
        return sum(1 for k, _ in self.calls if k == kind)


class BlockingEngine(FakeEngine):
    """Blocks every call of ``block`` kind until its token is cancelled or it is released."""

    def __init__(self, block="encode"):
        super().__init__()
        self.block = block
        self.started = threading.Event()
        self.release = threading.Event()

    def run(self, args, token=None, progress=None, phase=Phase.ZIPPING, track=None, message=""):
        if self.kind(args) == self.block and not self.release.is_set():
            self.started.set()
            while not self.release.wait(0.01):
                if token is not None and token.cancelled:
                    raise Cancelled("ffmpeg was stopped")
        super().run(args, token=token, progress=progress, phase=phase, track=track, message=message)


def make_image(path: Path, fmt: str = "JPEG", size=(64, 48), mode="RGB", color=(200, 30, 30), **save_args) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    PILImage.new(mode, size, color if mode != "RGBA" else color + (255,)).save(path, fmt, **save_args)
    return path
