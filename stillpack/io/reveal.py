"""Shows a finished archive or output folder in the platform file browser."""

import logging
import subprocess
import sys
from pathlib import Path
from typing import List, Union

log = logging.getLogger(__name__)


def reveal_command(path: Path) -> List[str]:
    """Builds the file-browser command that highlights ``path``."""
    if sys.platform == "win32":
        if path.is_file():
            return ["explorer", f"/select,{path}"]
        return ["explorer", str(path)]
    if sys.platform == "darwin":
        if path.is_file():
            return ["open", "-R", str(path)]
        return ["open", str(path)]
    # xdg-open cannot select a file; open its folder instead
    return ["xdg-open", str(path.parent if path.is_file() else path)]


def reveal_in_file_browser(path: Union[str, Path]) -> bool:
    """Opens the file browser at ``path``.

    Returns:
        True if the browser was launched, False otherwise.
    """
    path = Path(path)
    if not path.exists():
        log.warning(f"Nothing to reveal, path does not exist: {path}")
        return False

    args = reveal_command(path)
    log.info(f"Revealing {path}")
    try:
        # SECURITY: Explicitly disable shell execution
        subprocess.Popen(
            args,
            shell=False,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            close_fds=True,
        )
        return True
    except (OSError, subprocess.SubprocessError) as e:
        log.exception(f"Failed to open file browser for {path}: {e}")
        return False
