import argparse
import logging
import signal
import sys
from typing import Optional

from .bluetooth import AddressSelector, BluetoothSession, ConsoleSelector, SerialBluetoothAdapter
from .config import CONNECT_FAILURE_POLICIES, LinkConfig, load_config
from .errors import LinkConnectError
from .frame_source import RecordedFrameSource
from .link_types import Pose
from .logging_utils import add_file_handler, setup_logger
from .output import CsvMarkerListOutput, MarkerListOutput, PoseSink, TransformOutput, VisualMarkerOutput
from .services.catalog import load_catalog
from .strategies.detect_aruco import ArucoPatternDetector
from .strategies.estimate_svd import PoseEstimator
from .telemetry import TelemetryPublisher
from .transforms import pose_to_matrix
from .worker import LinkWorker, MarkerPipeline
from .world import TransformBuffer, WorldTransformer


def _build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(description="Publish marker poses to a robot over Bluetooth")
    ap.add_argument("--config", help="Path to JSON/YAML config")

    ap.add_argument("--frames-dir")
    ap.add_argument("--pattern-list")
    ap.add_argument("--data-directory")
    ap.add_argument("--threshold", type=int)
    ap.add_argument("--dict")
    ap.add_argument("--camera-frame")
    ap.add_argument("--world-frame")
    ap.add_argument("--transform-timeout", type=float)
    ap.add_argument("--max-frames", type=int)
    ap.add_argument("--marker-list-csv")
    ap.add_argument("--device-address")
    ap.add_argument("--port-pattern")
    ap.add_argument("--on-connect-failure", choices=CONNECT_FAILURE_POLICIES)
    ap.add_argument("--no-bluetooth", action="store_true")
    ap.add_argument("--no-tf", action="store_true")
    ap.add_argument("--no-visual-markers", action="store_true")
    ap.add_argument("--no-marker-list", action="store_true")
    ap.add_argument("--log-file")
    ap.add_argument("--verbose", action="store_true")

    return ap


def _apply_args(cfg: LinkConfig, args: argparse.Namespace) -> LinkConfig:
    cfg.apply_overrides(
        frames_dir=args.frames_dir,
        marker_pattern_list=args.pattern_list,
        marker_data_directory=args.data_directory,
        threshold=args.threshold,
        aruco_dict=args.dict,
        camera_frame=args.camera_frame,
        world_frame=args.world_frame,
        transform_timeout_sec=args.transform_timeout,
        max_frames=args.max_frames,
        marker_list_csv=args.marker_list_csv,
        device_address=args.device_address,
        port_pattern=args.port_pattern,
        on_connect_failure=args.on_connect_failure,
        publish_to_bluetooth=False if args.no_bluetooth else None,
        publish_tf=False if args.no_tf else None,
        publish_visual_markers=False if args.no_visual_markers else None,
        publish_ar_pose_markers=False if args.no_marker_list else None,
    )
    return cfg


def build_buffer(cfg: LinkConfig) -> TransformBuffer:
    buffer = TransformBuffer()
    if cfg.camera_to_world is not None:
        pose = Pose(cfg.camera_to_world["translation"], cfg.camera_to_world["rotation"])
        buffer.set_transform(cfg.world_frame, cfg.camera_frame, pose_to_matrix(pose), static=True)
    return buffer


def build_sinks(cfg: LinkConfig, buffer: TransformBuffer, logger: logging.Logger) -> list[PoseSink]:
    sinks: list[PoseSink] = []
    if cfg.publish_ar_pose_markers:
        if cfg.marker_list_csv:
            sinks.append(CsvMarkerListOutput(cfg.marker_list_csv))
        else:
            sinks.append(MarkerListOutput(
                lambda ml: logger.debug("Published %d ar pose marker(s)", len(ml.markers))
            ))
    if cfg.publish_tf:
        sinks.append(TransformOutput(buffer))
    if cfg.publish_visual_markers:
        sinks.append(VisualMarkerOutput(logger=logger))
    return sinks


def build_pipeline(cfg: LinkConfig, buffer: TransformBuffer, logger: logging.Logger) -> MarkerPipeline:
    detector = ArucoPatternDetector(cfg.aruco_dict, cfg.threshold, logger=logger)
    catalog = load_catalog(cfg.marker_pattern_list, cfg.marker_data_directory, detector.load_pattern)
    logger.debug("Objectfile num = %d", len(catalog))
    return MarkerPipeline(
        catalog,
        detector,
        estimator=PoseEstimator(),
        world=WorldTransformer(buffer, cfg.world_frame, cfg.transform_timeout_sec, logger=logger),
        sinks=build_sinks(cfg, buffer, logger),
        logger=logger,
    )


def build_session(cfg: LinkConfig, logger: logging.Logger) -> BluetoothSession:
    bt = cfg.bluetooth
    adapter = SerialBluetoothAdapter(bt.port_pattern, bt.baudrate)
    if bt.device_address:
        selector = AddressSelector(bt.device_address)
    else:
        selector = ConsoleSelector()
    return BluetoothSession(adapter, selector, bt.scan_timeout_sec, bt.max_scans, logger=logger)


def open_link(cfg: LinkConfig, logger: logging.Logger) -> Optional[BluetoothSession]:
    """Pair with the robot; raises LinkConnectError when the policy is to exit."""
    session = build_session(cfg, logger)
    try:
        session.open()
    except LinkConnectError:
        session.close()
        if cfg.bluetooth.on_connect_failure == "exit":
            raise
        logger.warning("continuing without bluetooth telemetry")
        return None
    return session


def main(argv: Optional[list[str]] = None) -> int:
    ap = _build_parser()
    args = ap.parse_args(argv)

    cfg = load_config(args.config) if args.config else LinkConfig()
    cfg = _apply_args(cfg, args)

    logger = setup_logger(cfg.node_name, logging.DEBUG if args.verbose else logging.INFO)
    if args.log_file:
        add_file_handler(logger, cfg.node_name, args.log_file)
    cfg.log_summary(logger)

    if not cfg.frames_dir:
        logger.error("no frames directory configured (use --frames-dir or frames_dir)")
        return 2

    buffer = build_buffer(cfg)
    pipeline = build_pipeline(cfg, buffer, logger)

    session = None
    if cfg.publish_to_bluetooth:
        try:
            session = open_link(cfg, logger)
        except LinkConnectError as exc:
            logger.error("%s", exc)
            return 1
        if session is not None:
            pipeline.publisher = TelemetryPublisher(session, cfg.bluetooth.channel, logger=logger)

    source = RecordedFrameSource(cfg.frames_dir, frame_id=cfg.camera_frame)
    worker = LinkWorker(pipeline, source, max_frames=cfg.max_frames, logger=logger)

    def _handle_signal(_sig, _frame):
        worker.stop()

    signal.signal(signal.SIGINT, _handle_signal)
    if hasattr(signal, "SIGTERM"):
        signal.signal(signal.SIGTERM, _handle_signal)

    try:
        summary = worker.run()
    finally:
        if session is not None:
            session.close()
    print(summary)
    return 0


if __name__ == "__main__":
    sys.exit(main())
