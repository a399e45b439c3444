"""Scans directories for packable images."""

import logging
import os
import re
import time
from pathlib import Path
from typing import Iterable, List

from stillpack.models import Image

log = logging.getLogger(__name__)

IMAGE_EXTENSIONS = {".jpg", ".jpeg", ".png", ".webp"}

def natural_sort_key(name: str):
    """'img10' sorts after 'img9'."""
    return [int(c) if c.isdigit() else c.lower() for c in re.split(r'(\d+)', name)]

def find_images(directory: Path) -> List[Image]:
    """Finds all images below ``directory``, depth first, in natural name order.

    Relative paths start with the name of ``directory`` itself, so unpacking
    into a folder recreates the scanned folder inside it.
    """
    t_start = time.perf_counter()
    directory = Path(directory).resolve()
    log.info("Scanning directory for images: %s", directory)

    images = list(_scan(directory, directory.parent))

    elapsed = time.perf_counter() - t_start
    log.info("Found %d images in %.3fs", len(images), elapsed)
    return images

def _scan(current: Path, base: Path) -> Iterable[Image]:
    try:
        entries = sorted(os.scandir(current), key=lambda e: natural_sort_key(e.name))
    except OSError:
        log.exception("Error scanning directory %s", current)
        return

    for entry in entries:
        if entry.is_dir(follow_symlinks=False):
            yield from _scan(Path(entry.path), base)
        elif entry.is_file() and Path(entry.name).suffix.lower() in IMAGE_EXTENSIONS:
            path = Path(entry.path)
            yield Image(
                file_name=entry.name,
                absolute_path=path,
                relative_path=path.relative_to(base).as_posix(),
            )

def collect_images(paths: Iterable[Path]) -> List[Image]:
    """Expands a mix of files and directories into one image list.

    Loose files are placed at the top level of the archive.
    """
    images: List[Image] = []
    for p in paths:
        p = Path(p)
        if p.is_dir():
            images.extend(find_images(p))
        elif p.is_file() and p.suffix.lower() in IMAGE_EXTENSIONS:
            p = p.resolve()
            images.append(Image(file_name=p.name, absolute_path=p, relative_path=p.name))
        else:
            log.warning("Skipping %s: not a directory or a supported image", p)
    return images
