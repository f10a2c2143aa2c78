from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional

import numpy as np


@dataclass
class PointCloudFrame:
    seq: int
    frame_id: str
    stamp: float
    width: int
    height: int
    points: Any  # (H, W, 3) float ndarray, NaN where the sensor dropped out
    image: Any = None  # (H, W, 3) BGR ndarray aligned with points


@dataclass
class Detection:
    marker_id: int
    vertices: Any  # (4, 2) pixel coordinates in detector order
    cf: float
    dir: int = 0


@dataclass
class PatternEntry:
    id: int
    name: str
    width: float  # side length in metres
    pattern: str = ""
    center: tuple[float, float] = (0.0, 0.0)
    visible: bool = False


@dataclass
class Pose:
    position: np.ndarray
    orientation: np.ndarray  # quaternion x, y, z, w

    def __post_init__(self):
        self.position = np.asarray(self.position, dtype=float).reshape(3)
        self.orientation = np.asarray(self.orientation, dtype=float).reshape(4)


@dataclass
class ResolvedMarker:
    index: int  # position in the catalog
    entry: PatternEntry
    detection: Detection
    pose: Optional[Pose] = None
    world_pose: Optional[Pose] = None


@dataclass(frozen=True)
class CameraIntrinsics:
    xsize: int
    ysize: int
    cx: int
    cy: int
    k1: float = 0.0
    scale: float = 1.0


@dataclass(frozen=True)
class TelemetryMessage:
    name: str
    x: int
    y: int
    theta: int

    def encode(self) -> str:
        return ";".join([self.name, str(self.x), str(self.y), str(self.theta)])


@dataclass
class FrameReport:
    """What one frame produced; returned by MarkerPipeline.process."""

    seq: int
    accepted: bool
    detections: int = 0
    markers: list[ResolvedMarker] = field(default_factory=list)
    messages: list[TelemetryMessage] = field(default_factory=list)
