from __future__ import annotations

import logging
import math
from typing import Optional

from .errors import LinkError
from .link_types import Pose, TelemetryMessage
from .transforms import yaw_from_quaternion

FIELD_SEPARATOR = ";"

# Digits kept before truncation; drops rounding noise from quaternion round trips.
SNAP_DIGITS = 9


def _truncate(value: float) -> int:
    return int(round(value, SNAP_DIGITS))


def quantize_planar(name: str, x: float, y: float, yaw: float) -> TelemetryMessage:
    """Metres to centimetres and radians to degrees, truncating toward zero."""
    return TelemetryMessage(
        name,
        _truncate(x * 100),
        _truncate(y * 100),
        _truncate(yaw * (180.0 / math.pi)),
    )


def quantize(name: str, world_pose: Pose) -> TelemetryMessage:
    return quantize_planar(
        name,
        float(world_pose.position[0]),
        float(world_pose.position[1]),
        yaw_from_quaternion(world_pose.orientation),
    )


def parse_message(text: str) -> TelemetryMessage:
    fields = text.split(FIELD_SEPARATOR)
    if len(fields) != 4:
        raise ValueError(f"expected 4 fields, got {len(fields)}: {text!r}")
    name, x, y, theta = fields
    return TelemetryMessage(name, int(x, 10), int(y, 10), int(theta, 10))


class TelemetryPublisher:
    """Hands encoded messages to the Bluetooth session; delivery is best effort."""

    def __init__(self, session, channel: int = 0, logger: Optional[logging.Logger] = None):
        self.session = session
        self.channel = channel
        self.logger = logger or logging.getLogger(__name__)
        self.sent = 0
        self.failed = 0

    def publish(self, message: TelemetryMessage) -> bool:
        text = message.encode()
        self.logger.info("Sending...%s", text)
        try:
            self.session.send(self.channel, text)
        except LinkError as exc:
            self.failed += 1
            self.logger.error("Bluetooth send failed for %s: %s", message.name, exc)
            return False
        self.sent += 1
        return True
