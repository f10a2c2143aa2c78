"""Frame ingest with one-shot camera parameter setup."""

from __future__ import annotations

import logging
from typing import Callable, Optional

from .link_types import CameraIntrinsics, PointCloudFrame

# No distortion correction, unit scale.
DEFAULT_K1 = 0.0
DEFAULT_SCALE = 1.0


def derive_intrinsics(width: int, height: int) -> CameraIntrinsics:
    return CameraIntrinsics(
        xsize=int(width),
        ysize=int(height),
        cx=int(width) // 2,
        cy=int(height) // 2,
        k1=DEFAULT_K1,
        scale=DEFAULT_SCALE,
    )


class FrameIngest:
    def __init__(
        self,
        on_configured: Optional[Callable[[CameraIntrinsics], None]] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.on_configured = on_configured
        self.logger = logger or logging.getLogger(__name__)
        self._intrinsics: Optional[CameraIntrinsics] = None
        self.configured = False

    @property
    def intrinsics(self) -> Optional[CameraIntrinsics]:
        return self._intrinsics

    def ingest(self, frame: PointCloudFrame) -> bool:
        """Accept a frame for processing, calibrating on the first good one."""
        if frame.width == 0 or frame.height == 0:
            self.logger.error("Deformed cloud! Size = %d, %d.", frame.width, frame.height)
            return False

        shape = getattr(frame.points, "shape", ())
        if len(shape) != 3 or shape[0] != frame.height or shape[1] != frame.width:
            self.logger.error(
                "Cloud size %dx%d does not match point grid %s",
                frame.width, frame.height, shape,
            )
            return False

        if not self.configured:
            self._intrinsics = derive_intrinsics(frame.width, frame.height)
            self.logger.info("*** Camera Parameter ***")
            self.logger.info(
                "size=%dx%d center=(%d, %d) k1=%.1f scale=%.1f",
                self._intrinsics.xsize, self._intrinsics.ysize,
                self._intrinsics.cx, self._intrinsics.cy,
                self._intrinsics.k1, self._intrinsics.scale,
            )
            if self.on_configured is not None:
                self.on_configured(self._intrinsics)
            self.configured = True

        return True
