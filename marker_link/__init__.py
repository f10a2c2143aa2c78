"""Marker pose telemetry over a Bluetooth link."""

from .config import LinkConfig
from .worker import LinkWorker, MarkerPipeline

__all__ = ["LinkConfig", "LinkWorker", "MarkerPipeline"]
