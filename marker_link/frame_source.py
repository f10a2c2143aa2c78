"""Frame source abstraction for point-cloud input.

Live acquisition belongs to the sensor driver; this module replays frames
recorded as .npz files so the pipeline can run offline.
"""

from __future__ import annotations

import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

import numpy as np

from .link_types import PointCloudFrame


class FrameSource(ABC):
    """Abstract base class for frame sources."""

    @abstractmethod
    def start(self) -> None:
        """Start the frame source. Called before any read() calls."""
        ...

    @abstractmethod
    def read(self) -> Optional[PointCloudFrame]:
        """Return the next frame, or None when the source is exhausted."""
        ...

    @abstractmethod
    def stop(self) -> None:
        """Stop the frame source and release resources."""
        ...


class RecordedFrameSource(FrameSource):
    """
    Replays `*.npz` frames from a directory in name order.

    Each file holds `points` (H, W, 3) and optionally `image` (H, W, 3),
    `stamp` (seconds) and `frame_id`.
    """

    def __init__(self, directory: str | Path, frame_id: str = "camera_rgb_optical_frame"):
        self.directory = Path(directory)
        self.frame_id = frame_id
        self._files: list[Path] = []
        self._pos = 0

    def start(self) -> None:
        if not self.directory.is_dir():
            raise FileNotFoundError(f"Frames directory not found: {self.directory}")
        self._files = sorted(self.directory.glob("*.npz"))
        self._pos = 0

    def read(self) -> Optional[PointCloudFrame]:
        if self._pos >= len(self._files):
            return None
        path = self._files[self._pos]
        self._pos += 1

        with np.load(path, allow_pickle=False) as data:
            points = np.asarray(data["points"], dtype=float)
            image = np.asarray(data["image"]) if "image" in data.files else None
            stamp = float(data["stamp"]) if "stamp" in data.files else time.time()
            frame_id = str(data["frame_id"]) if "frame_id" in data.files else self.frame_id

        if points.ndim == 3:
            height, width = points.shape[:2]
        else:
            height, width = 0, 0
        return PointCloudFrame(self._pos, frame_id, stamp, width, height, points, image)

    def stop(self) -> None:
        self._files = []
        self._pos = 0
