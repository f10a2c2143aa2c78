import math

import numpy as np
import pytest

from marker_link.bluetooth import BluetoothAdapter, DeviceInfo, DeviceSelector
from marker_link.errors import LinkConnectError, SendError
from marker_link.link_types import Detection, PatternEntry, PointCloudFrame

# Synthetic cloud: a fronto-parallel plane 1 m in front of the sensor,
# 5 mm per pixel, optical centre at the image centre.
PIXEL_PITCH = 0.005
PLANE_DEPTH = 1.0


def planar_points(width: int, height: int, pitch: float = PIXEL_PITCH,
                  depth: float = PLANE_DEPTH) -> np.ndarray:
    u, v = np.meshgrid(np.arange(width), np.arange(height))
    points = np.zeros((height, width, 3))
    points[..., 0] = (u - width // 2) * pitch
    points[..., 1] = (v - height // 2) * pitch
    points[..., 2] = depth
    return points


def make_frame(width: int = 64, height: int = 48, seq: int = 1, stamp: float = 100.0,
               frame_id: str = "camera") -> PointCloudFrame:
    points = planar_points(width, height)
    image = np.zeros((height, width, 3), dtype=np.uint8)
    return PointCloudFrame(seq, frame_id, stamp, width, height, points, image)


def square_vertices(u0: float, v0: float, side_px: float = 20.0) -> np.ndarray:
    """Upper-left, upper-right, lower-right, lower-left in image coordinates."""
    return np.array([
        [u0, v0],
        [u0 + side_px, v0],
        [u0 + side_px, v0 + side_px],
        [u0, v0 + side_px],
    ])


def yaw_quaternion(yaw: float) -> list:
    return [0.0, 0.0, math.sin(yaw / 2.0), math.cos(yaw / 2.0)]


class FakeDetector:
    def __init__(self, batches=None):
        self.batches = list(batches or [])
        self.configure_calls = []
        self.detect_calls = 0

    def configure(self, intrinsics):
        self.configure_calls.append(intrinsics)

    def detect(self, image):
        self.detect_calls += 1
        if self.batches:
            return self.batches.pop(0)
        return []


class FakeAdapter(BluetoothAdapter):
    def __init__(self, scans=None, fail_connect=False, fail_send=False):
        self.scans = list(scans or [])
        self.fail_connect = fail_connect
        self.fail_send = fail_send
        self.connected_to = None
        self.sent = []
        self.disconnects = 0
        self.states_seen = []
        self.session = None

    def discover(self, timeout):
        if self.session is not None:
            self.states_seen.append(self.session.state)
        if self.scans:
            return self.scans.pop(0)
        return []

    def connect(self, address):
        if self.fail_connect:
            raise LinkConnectError(f"refused by {address}")
        self.connected_to = address

    def send(self, channel, payload):
        if self.fail_send:
            raise SendError("link dropped")
        self.sent.append((channel, payload))

    def disconnect(self):
        self.disconnects += 1
        self.connected_to = None


class ScriptedSelector(DeviceSelector):
    def __init__(self, choices):
        self.choices = list(choices)
        self.offered = []

    def choose_device(self, candidates):
        self.offered.append(list(candidates))
        return self.choices.pop(0) if self.choices else None


NXT = DeviceInfo("00:16:53:09:BD:4B", "NXT")


@pytest.fixture
def catalog():
    return [
        PatternEntry(1, "alpha", 0.1),
        PatternEntry(2, "beta", 0.1),
        PatternEntry(3, "gamma", 0.1),
    ]


@pytest.fixture
def frame():
    return make_frame()


@pytest.fixture
def detection_pair():
    return [
        Detection(1, square_vertices(10, 10), 0.8),
        Detection(2, square_vertices(40, 20), 0.7),
    ]
