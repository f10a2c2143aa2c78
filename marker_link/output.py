from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Optional

import numpy as np

from .link_types import PointCloudFrame, Pose, ResolvedMarker
from .services.csv_writer import CsvWriter
from .transforms import pose_to_matrix, matrix_to_pose
from .world import TransformBuffer

BLUE = (0.0, 0.0, 1.0, 1.0)
RED = (1.0, 0.0, 0.0, 1.0)
GREEN = (0.0, 1.0, 0.0, 1.0)


@dataclass
class MarkerPose:
    id: int
    name: str
    confidence: float
    pose: Pose


@dataclass
class MarkerList:
    frame_id: str
    stamp: float
    markers: list[MarkerPose] = field(default_factory=list)


@dataclass
class VisualMarker:
    frame_id: str
    stamp: float
    id: int
    pose: Pose
    scale: tuple[float, float, float]
    color: tuple[float, float, float, float]
    ns: str = "basic_shapes"
    type: str = "cube"
    action: str = "add"


def marker_color(index: int) -> tuple[float, float, float, float]:
    if index == 0:
        return BLUE
    if index == 1:
        return RED
    return GREEN


class PoseSink(ABC):
    def open(self) -> None:
        return None

    def begin_frame(self, frame: PointCloudFrame) -> None:
        return None

    @abstractmethod
    def write_marker(self, frame: PointCloudFrame, marker: ResolvedMarker) -> None: ...

    def end_frame(self, frame: PointCloudFrame) -> None:
        return None

    def close(self) -> None:
        return None


class MarkerListOutput(PoseSink):
    """Collects every resolved pose of a frame and hands the list on once."""

    def __init__(self, consumer: Optional[Callable[[MarkerList], None]] = None):
        self.consumer = consumer
        self._current: Optional[MarkerList] = None

    def begin_frame(self, frame: PointCloudFrame) -> None:
        self._current = MarkerList(frame.frame_id, frame.stamp)

    def write_marker(self, frame: PointCloudFrame, marker: ResolvedMarker) -> None:
        if self._current is None or marker.pose is None:
            return
        self._current.markers.append(
            MarkerPose(marker.entry.id, marker.entry.name, marker.detection.cf, marker.pose)
        )

    def end_frame(self, frame: PointCloudFrame) -> None:
        if self._current is None:
            return
        self.emit(self._current)
        self._current = None

    def emit(self, markers: MarkerList) -> None:
        if self.consumer is not None:
            self.consumer(markers)


class CsvMarkerListOutput(MarkerListOutput):
    def __init__(self, csv_path: str | Path):
        super().__init__()
        self.csv_path = Path(csv_path)
        self._writer: Optional[CsvWriter] = None

    def open(self) -> None:
        self.csv_path.parent.mkdir(parents=True, exist_ok=True)
        self._writer = CsvWriter(str(self.csv_path))
        self._writer.open()

    def emit(self, markers: MarkerList) -> None:
        if self._writer is None:
            return
        for m in markers.markers:
            self._writer.append(
                markers.stamp, markers.frame_id, m.id, m.name, m.confidence,
                m.pose.position, m.pose.orientation,
            )

    def close(self) -> None:
        if self._writer is not None:
            self._writer.close()
            self._writer = None


class TransformOutput(PoseSink):
    """Broadcasts camera -> marker transforms, child frame named after the pattern."""

    def __init__(self, buffer: TransformBuffer):
        self.buffer = buffer

    def write_marker(self, frame: PointCloudFrame, marker: ResolvedMarker) -> None:
        if marker.pose is None:
            return
        self.buffer.set_transform(
            frame.frame_id, marker.entry.name, pose_to_matrix(marker.pose), frame.stamp
        )


class VisualMarkerOutput(PoseSink):
    def __init__(self, consumer: Optional[Callable[[VisualMarker], None]] = None,
                 logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger(__name__)
        self.consumer = consumer

    @staticmethod
    def build(frame: PointCloudFrame, marker: ResolvedMarker) -> VisualMarker:
        w = marker.entry.width
        offset = np.eye(4)
        offset[2, 3] = 0.25 * w
        # cube centre sits on the marker normal, in the camera frame
        pose = matrix_to_pose(pose_to_matrix(marker.pose) @ offset)
        return VisualMarker(
            frame_id=frame.frame_id,
            stamp=frame.stamp,
            id=marker.entry.id,
            pose=pose,
            scale=(1.0 * w, 1.0 * w, 0.5 * w),
            color=marker_color(marker.index),
        )

    def write_marker(self, frame: PointCloudFrame, marker: ResolvedMarker) -> None:
        if marker.pose is None:
            return
        shape = self.build(frame, marker)
        if self.consumer is not None:
            self.consumer(shape)
        self.logger.debug("Published visual marker %d", shape.id)
