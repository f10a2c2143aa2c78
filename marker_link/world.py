"""Camera-to-world re-expression of marker poses.

`TransformBuffer` is the in-process stand-in for a tf listener: producers
register parent<-child transforms (static or timestamped) and consumers look
them up with a bounded wait. A missing transform is an ordinary outcome,
reported as a `TransformUnavailable` value rather than raised.
"""

from __future__ import annotations

import bisect
import logging
import threading
from dataclasses import dataclass, field
from typing import Optional, Union

import numpy as np

from .link_types import Pose
from .transforms import invert_transform, normalize_quaternion, transform_pose


def _frame(name: str) -> str:
    return name.lstrip("/")


@dataclass
class _Edge:
    static: Optional[np.ndarray] = None
    stamps: list[float] = field(default_factory=list)
    matrices: list[np.ndarray] = field(default_factory=list)

    def at(self, stamp: float) -> Optional[np.ndarray]:
        if self.static is not None:
            return self.static
        if not self.stamps:
            return None
        if stamp == 0:
            return self.matrices[-1]
        if stamp > self.stamps[-1] or stamp < self.stamps[0]:
            return None
        i = bisect.bisect_left(self.stamps, stamp)
        if i == len(self.stamps):
            i -= 1
        elif i > 0 and (stamp - self.stamps[i - 1]) <= (self.stamps[i] - stamp):
            i -= 1
        return self.matrices[i]


@dataclass(frozen=True)
class TransformUnavailable:
    target_frame: str
    source_frame: str
    stamp: float
    reason: str


class TransformBuffer:
    def __init__(self, cache_time: float = 10.0):
        self.cache_time = cache_time
        self._edges: dict[tuple[str, str], _Edge] = {}
        self._cond = threading.Condition()

    def set_transform(self, parent: str, child: str, matrix, stamp: float = 0.0,
                      static: bool = False) -> None:
        """Record the transform mapping `child` coordinates into `parent`."""
        key = (_frame(parent), _frame(child))
        T = np.asarray(matrix, dtype=float).reshape(4, 4).copy()
        with self._cond:
            edge = self._edges.setdefault(key, _Edge())
            if static:
                edge.static = T
            else:
                i = bisect.bisect_right(edge.stamps, stamp)
                edge.stamps.insert(i, stamp)
                edge.matrices.insert(i, T)
                horizon = edge.stamps[-1] - self.cache_time
                while edge.stamps and edge.stamps[0] < horizon:
                    edge.stamps.pop(0)
                    edge.matrices.pop(0)
            self._cond.notify_all()

    def _resolve(self, target: str, source: str, stamp: float) -> Optional[np.ndarray]:
        if target == source:
            return np.eye(4)
        edge = self._edges.get((target, source))
        if edge is not None:
            T = edge.at(stamp)
            if T is not None:
                return T
        edge = self._edges.get((source, target))
        if edge is not None:
            T = edge.at(stamp)
            if T is not None:
                return invert_transform(T)
        return None

    def lookup(self, target: str, source: str, stamp: float = 0.0,
               timeout: float = 0.0) -> Optional[np.ndarray]:
        """Return T_target_source, waiting up to `timeout` seconds; None if unavailable."""
        target, source = _frame(target), _frame(source)
        found: list[np.ndarray] = []

        def _ready() -> bool:
            T = self._resolve(target, source, stamp)
            if T is None:
                return False
            found.append(T)
            return True

        with self._cond:
            if timeout > 0:
                self._cond.wait_for(_ready, timeout=timeout)
            else:
                _ready()
        return found[-1].copy() if found else None


class WorldTransformer:
    def __init__(self, buffer: TransformBuffer, world_frame: str = "world",
                 timeout: float = 1.0, logger: Optional[logging.Logger] = None):
        self.buffer = buffer
        self.world_frame = _frame(world_frame)
        self.timeout = timeout
        self.logger = logger or logging.getLogger(__name__)

    def to_world(self, pose: Pose, source_frame: str,
                 stamp: float) -> Union[Pose, TransformUnavailable]:
        normalized = Pose(pose.position, normalize_quaternion(pose.orientation))
        T = self.buffer.lookup(self.world_frame, source_frame, stamp, self.timeout)
        if T is None:
            return TransformUnavailable(
                self.world_frame,
                _frame(source_frame),
                stamp,
                f"no transform from {_frame(source_frame)} to {self.world_frame} "
                f"within {self.timeout:.2f}s",
            )
        return transform_pose(T, normalized)
