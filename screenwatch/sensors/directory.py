"""Directory-backed frame source.

Picks up the newest image written by an external capture process (a webcam
snapshot cron job, ffmpeg, etc.). This keeps camera drivers out of the
monitoring process: the hub only ever reads files.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Protocol

from screenwatch.exceptions import CaptureError
from screenwatch.models import Frame

logger = logging.getLogger(__name__)

IMAGE_SUFFIXES = (".jpg", ".jpeg", ".png")


class FrameSource(Protocol):
    """External camera / capture source."""

    async def capture(self) -> Frame:
        """Capture one frame. Raises on failure."""
        ...


@dataclass
class DirectoryConfig:
    """Configuration for the directory frame source."""

    frames_dir: Path
    # Frames older than this are treated as a dead camera
    max_age_seconds: float = 120.0


class DirectoryFrameSource:
    """Serves the most recent image file in a directory as the current frame."""

    def __init__(self, config: DirectoryConfig) -> None:
        self.config = config

    def _latest_image(self) -> Optional[Path]:
        if not self.config.frames_dir.is_dir():
            return None
        images = [
            p for p in self.config.frames_dir.iterdir()
            if p.is_file() and p.suffix.lower() in IMAGE_SUFFIXES
        ]
        if not images:
            return None
        return max(images, key=lambda p: p.stat().st_mtime)

    def _read_latest(self) -> Frame:
        path = self._latest_image()
        if path is None:
            raise CaptureError(f"No frames in {self.config.frames_dir}")

        age = time.time() - path.stat().st_mtime
        if age > self.config.max_age_seconds:
            raise CaptureError(f"Latest frame {path.name} is stale ({age:.0f}s old)")

        try:
            data = path.read_bytes()
        except OSError as e:
            raise CaptureError(f"Failed to read {path}: {e}") from e

        logger.debug(f"Frame captured: {path.name} ({len(data)} bytes)")
        return Frame(data=data, source=str(path))

    async def capture(self) -> Frame:
        return await asyncio.to_thread(self._read_latest)
