from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Optional, Sequence

from .calibration import FrameIngest
from .errors import DetectionError, EstimationError
from .frame_source import FrameSource
from .link_types import FrameReport, PatternEntry, PointCloudFrame
from .output import PoseSink
from .resolver import resolve
from .strategies.estimate_svd import PoseEstimator
from .telemetry import TelemetryPublisher, quantize
from .world import TransformUnavailable, WorldTransformer


@dataclass
class SessionSummary:
    frames_processed: int
    frames_rejected: int
    messages_sent: int
    send_failures: int
    avg_fps: float


class MarkerPipeline:
    """Runs one frame through detection, resolution, pose, world transform and sinks."""

    def __init__(
        self,
        catalog: Sequence[PatternEntry],
        detector,
        estimator: Optional[PoseEstimator] = None,
        world: Optional[WorldTransformer] = None,
        publisher: Optional[TelemetryPublisher] = None,
        sinks: Optional[list[PoseSink]] = None,
        ingest: Optional[FrameIngest] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.catalog = list(catalog)
        self.detector = detector
        self.estimator = estimator or PoseEstimator()
        self.world = world
        self.publisher = publisher
        self.sinks = sinks or []
        self.logger = logger or logging.getLogger(__name__)
        self.ingest = ingest or FrameIngest(on_configured=detector.configure, logger=self.logger)

    def process(self, frame: PointCloudFrame) -> FrameReport:
        report = FrameReport(frame.seq, accepted=False)
        if not self.ingest.ingest(frame):
            return report
        report.accepted = True

        try:
            detections = self.detector.detect(frame.image)
        except DetectionError as exc:
            self.logger.warning("marker detection failed on frame %d: %s", frame.seq, exc)
            detections = []
        report.detections = len(detections)

        for sink in self.sinks:
            sink.begin_frame(frame)

        for marker in resolve(self.catalog, detections):
            try:
                marker.pose = self.estimator.estimate(marker, frame)
            except EstimationError as exc:
                self.logger.debug("skipping %s on frame %d: %s", marker.entry.name, frame.seq, exc)
                continue
            report.markers.append(marker)

            if self.publisher is not None and self.world is not None:
                result = self.world.to_world(marker.pose, frame.frame_id, frame.stamp)
                if isinstance(result, TransformUnavailable):
                    self.logger.warning("could not perform the transformation: %s", result.reason)
                else:
                    marker.world_pose = result
                    message = quantize(marker.entry.name, result)
                    self.publisher.publish(message)
                    report.messages.append(message)

            for sink in self.sinks:
                sink.write_marker(frame, marker)

        for sink in self.sinks:
            sink.end_frame(frame)

        return report


class LinkWorker:
    def __init__(self, pipeline: MarkerPipeline, source: FrameSource,
                 max_frames: Optional[int] = None, logger: Optional[logging.Logger] = None):
        self.pipeline = pipeline
        self.source = source
        self.max_frames = max_frames
        self.logger = logger or logging.getLogger(__name__)
        self._stop_event = threading.Event()

    def stop(self) -> None:
        self._stop_event.set()

    def run(self) -> SessionSummary:
        for sink in self.pipeline.sinks:
            sink.open()

        self.source.start()
        t0 = time.time()
        frames = 0
        rejected = 0

        try:
            while not self._stop_event.is_set():
                if self.max_frames and frames >= self.max_frames:
                    break
                frame = self.source.read()
                if frame is None:
                    break

                report = self.pipeline.process(frame)
                frames += 1
                if not report.accepted:
                    rejected += 1
                    continue
                self.logger.debug(
                    "frame=%d dets=%d markers=%d messages=%d",
                    frame.seq, report.detections, len(report.markers), len(report.messages),
                )
        finally:
            try:
                self.source.stop()
            finally:
                for sink in self.pipeline.sinks:
                    sink.close()

        publisher = self.pipeline.publisher
        sent = publisher.sent if publisher is not None else 0
        failed = publisher.failed if publisher is not None else 0
        avg = frames / max(1e-6, (time.time() - t0))
        self.logger.info(
            "summary frames=%d rejected=%d sent=%d send_failures=%d avg_fps=%.2f",
            frames, rejected, sent, failed, avg,
        )
        return SessionSummary(frames, rejected, sent, failed, avg)
