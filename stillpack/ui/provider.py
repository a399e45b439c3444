"""QML image provider serving archive preview frames."""

import logging
from pathlib import Path
from typing import Optional

from PySide6.QtCore import QSize, Qt
from PySide6.QtGui import QImage
from PySide6.QtQuick import QQuickImageProvider

from stillpack.errors import FrameUnavailable
from stillpack.imaging.preview import PreviewCache

log = logging.getLogger(__name__)


class PreviewImageProvider(QQuickImageProvider):
    """Answers ``image://preview/<track>/<index>/<total>`` for the current archive."""

    def __init__(self, preview_cache: PreviewCache):
        super().__init__(QQuickImageProvider.ImageType.Image)
        self.preview_cache = preview_cache
        self.archive: Optional[Path] = None
        self.content_hash: Optional[str] = None
        self.placeholder = QImage(256, 256, QImage.Format.Format_RGB888)
        self.placeholder.fill(Qt.GlobalColor.darkGray)

    def set_archive(self, archive: Optional[Path]):
        self.archive = Path(archive) if archive else None
        self.content_hash = None
        if self.archive is not None:
            try:
                self.content_hash = self.preview_cache.content_hash(self.archive)
            except OSError as e:
                log.error(f"Cannot hash archive {self.archive}: {e}")

    @staticmethod
    def parse_id(id: str):
        parts = id.split("/")
        track, index = int(parts[0]), int(parts[1])
        total = int(parts[2]) if len(parts) > 2 and parts[2] else 0
        return track, index, total

    def requestImage(self, id: str, size: QSize, requestedSize: QSize) -> QImage:
        """Handles image requests from QML."""
        if not id or self.archive is None:
            return self.placeholder

        try:
            track, index, total = self.parse_id(id)
            width = max(requestedSize.width(), 0) if requestedSize is not None else 0
            height = max(requestedSize.height(), 0) if requestedSize is not None else 0
            frame = self.preview_cache.load_frame(
                self.archive,
                self.content_hash,
                track=track,
                index=index,
                total_frames=total,
                display_width=width,
                display_height=height,
            )
        except (ValueError, IndexError) as e:
            log.error(f"Invalid preview ID requested from QML: {id}. Error: {e}")
            return self.placeholder
        except FrameUnavailable as e:
            log.warning(f"Preview frame {id} unavailable: {e}")
            return self.placeholder

        qimg = QImage(
            frame.buffer,
            frame.width,
            frame.height,
            frame.bytes_per_line,
            QImage.Format.Format_RGB888,
        )
        # QImage does not own the buffer; keep it alive with the image
        qimg.original_buffer = frame.buffer
        if size is not None:
            size.setWidth(frame.width)
            size.setHeight(frame.height)
        return qimg
