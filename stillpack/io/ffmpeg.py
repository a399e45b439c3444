"""Locates ffmpeg and runs it as a child process, streaming progress."""

import collections
import logging
import os
import shutil
import subprocess
import threading
from pathlib import Path
from typing import Callable, Deque, Dict, Optional, Sequence

from stillpack.errors import Cancelled, EngineNotFound, SubprocessFailure
from stillpack.models import Phase, ProgressEvent
from stillpack.tasks import CancelToken

log = logging.getLogger(__name__)

# Common installation locations, checked after PATH
COMMON_FFMPEG_PATHS = [
    # Windows
    r"C:\Program Files\ffmpeg\bin\ffmpeg.exe",
    r"C:\ffmpeg\bin\ffmpeg.exe",
    # macOS (Homebrew)
    "/usr/local/bin/ffmpeg",
    "/opt/homebrew/bin/ffmpeg",
    # Linux
    "/usr/bin/ffmpeg",
]

# Lines of ffmpeg's error output kept for the failure message
STDERR_TAIL_LINES = 20

ProgressCallback = Callable[[ProgressEvent], None]


def _is_executable(path: Path) -> bool:
    """Check if a file is executable (has .exe extension on Windows)."""
    if os.name == 'nt':
        return path.suffix.lower() == '.exe'
    return os.access(path, os.X_OK)


def find_ffmpeg(configured: str = "") -> str:
    """
    Finds the ffmpeg binary.

    A configured path must exist and be executable; otherwise PATH and the
    usual install locations are searched.

    Raises:
        EngineNotFound: if no usable binary is found.
    """
    if configured:
        path = Path(configured).expanduser()
        if not path.is_file():
            raise EngineNotFound(f"Configured ffmpeg not found: {configured}")
        if not _is_executable(path):
            raise EngineNotFound(f"Configured ffmpeg is not executable: {configured}")
        return str(path)

    found = shutil.which("ffmpeg")
    if found:
        return found

    for candidate in COMMON_FFMPEG_PATHS:
        if Path(candidate).is_file():
            return candidate

    raise EngineNotFound("ffmpeg not found on PATH; set [core] ffmpeg in stillpack.ini")


def _to_int(value: Optional[str]) -> int:
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return 0


def _to_float(value: Optional[str]) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def _parse_bitrate(value: Optional[str]) -> float:
    """'1234.5kbits/s' -> 1234.5; 'N/A' -> 0.0"""
    if not value:
        return 0.0
    return _to_float(value.strip().removesuffix("kbits/s"))


class ProgressParser:
    """Folds ``-progress`` key=value lines into one event per block."""

    def __init__(self, phase: Phase, track: Optional[int] = None, message: str = ""):
        self.phase = phase
        self.track = track
        self.message = message
        self._fields: Dict[str, str] = {}

    def feed(self, line: str) -> Optional[ProgressEvent]:
        key, sep, value = line.strip().partition("=")
        if not sep:
            return None
        if key != "progress":
            self._fields[key] = value.strip()
            return None

        fields, self._fields = self._fields, {}
        return ProgressEvent(
            message=self.message,
            frame_count=_to_int(fields.get("frame")),
            current_fps=_to_float(fields.get("fps")),
            current_kbps=_parse_bitrate(fields.get("bitrate")),
            target_size=_to_int(fields.get("total_size")),
            timemark=fields.get("out_time", ""),
            phase=self.phase,
            track=self.track,
        )


def _drain(stream, tail: Deque[str]):
    for line in stream:
        line = line.rstrip()
        if line:
            tail.append(line)


class FfmpegEngine:
    """Runs ffmpeg invocations; one blocking call per invocation."""

    def __init__(self, ffmpeg_path: Optional[str] = None):
        self._ffmpeg_path = ffmpeg_path

    @property
    def executable(self) -> str:
        if self._ffmpeg_path is None:
            from stillpack.config import config
            self._ffmpeg_path = find_ffmpeg(config.get("core", "ffmpeg", fallback=""))
            log.info("Using ffmpeg at %s", self._ffmpeg_path)
        return self._ffmpeg_path

    def build_command(self, args: Sequence[str]) -> list:
        return [
            self.executable,
            "-hide_banner",
            "-nostdin",
            "-y",
            "-loglevel", "error",
            "-progress", "pipe:1",
            "-nostats",
            *args,
        ]

    def run(
        self,
        args: Sequence[str],
        token: Optional[CancelToken] = None,
        progress: Optional[ProgressCallback] = None,
        phase: Phase = Phase.ZIPPING,
        track: Optional[int] = None,
        message: str = "",
    ) -> None:
        """
        Runs ffmpeg with ``args`` until it exits.

        Progress blocks are delivered to ``progress`` as they arrive. Cancelling
        ``token`` kills the process.

        Raises:
            Cancelled: if ``token`` was cancelled.
            SubprocessFailure: if ffmpeg could not start or exited non-zero.
        """
        if token is not None:
            token.raise_if_cancelled()

        cmd = self.build_command(args)
        log.debug("Command: %s", " ".join(cmd))

        try:
            # SECURITY: Explicitly disable shell execution
            proc = subprocess.Popen(
                cmd,
                shell=False,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                encoding="utf-8",
                errors="replace",  # Handle non-UTF8 bytes gracefully
            )
        except (OSError, subprocess.SubprocessError) as e:
            raise SubprocessFailure(f"Failed to start ffmpeg: {e}") from e

        stderr_tail: Deque[str] = collections.deque(maxlen=STDERR_TAIL_LINES)
        reader = threading.Thread(target=_drain, args=(proc.stderr, stderr_tail), name="ffmpeg-stderr", daemon=True)
        reader.start()
        unregister = token.on_cancel(proc.kill) if token is not None else (lambda: None)
        parser = ProgressParser(phase, track, message)

        try:
            for line in proc.stdout:
                event = parser.feed(line)
                if event is not None:
                    log.debug("%s: frame=%d fps=%.1f time=%s", message or phase.value, event.frame_count, event.current_fps, event.timemark)
                    if progress:
                        progress(event)
            returncode = proc.wait()
        finally:
            unregister()
            if proc.poll() is None:
                proc.kill()
                proc.wait()
            reader.join(timeout=5)
            proc.stdout.close()
            proc.stderr.close()

        if token is not None and token.cancelled:
            raise Cancelled("ffmpeg was stopped")

        if returncode != 0:
            stderr = "\n".join(stderr_tail)
            log.error("ffmpeg exited with code %d: %s", returncode, stderr)
            raise SubprocessFailure(
                f"ffmpeg exited with code {returncode}: {stderr or 'no error output'}",
                returncode=returncode,
                stderr=stderr,
            )
