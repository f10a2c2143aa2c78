from __future__ import annotations

import json
import logging
from dataclasses import dataclass, asdict, field
from pathlib import Path
from typing import Any, Optional

PACKAGE_DIR = Path(__file__).resolve().parent

CONNECT_FAILURE_POLICIES = ("exit", "continue")


@dataclass
class BluetoothConfig:
    """Settings for the link to the robot."""

    port_pattern: str = "rfcomm"  # matched against port device/description
    device_address: Optional[str] = None  # None -> interactive selection
    baudrate: int = 115200
    scan_timeout_sec: float = 8.0
    max_scans: Optional[int] = None
    channel: int = 0  # NXT mailbox
    on_connect_failure: str = "exit"  # "exit" or "continue"

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class LinkConfig:
    node_name: str = "ar_kinect_bluetooth"
    publish_to_bluetooth: bool = True
    publish_tf: bool = True
    publish_visual_markers: bool = True
    publish_ar_pose_markers: bool = True
    threshold: int = 100
    marker_pattern_list: str = str(PACKAGE_DIR / "data" / "objects_kinect")
    marker_data_directory: str = str(PACKAGE_DIR)
    aruco_dict: str = "4x4_50"
    camera_frame: str = "camera_rgb_optical_frame"
    world_frame: str = "world"
    transform_timeout_sec: float = 1.0
    camera_to_world: Optional[dict[str, list[float]]] = None
    frames_dir: Optional[str] = None
    max_frames: Optional[int] = None
    marker_list_csv: Optional[str] = None
    bluetooth: BluetoothConfig = field(default_factory=BluetoothConfig)

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)

    def apply_overrides(self, **kwargs: Any) -> "LinkConfig":
        for key, value in kwargs.items():
            if value is None:
                continue
            if hasattr(self, key):
                setattr(self, key, value)
            elif hasattr(self.bluetooth, key):
                setattr(self.bluetooth, key, value)
        return self

    def log_summary(self, logger: logging.Logger) -> None:
        logger.info("\tPublish to bluetooth: %d", self.publish_to_bluetooth)
        logger.info("\tPublish transforms: %d", self.publish_tf)
        logger.info("\tPublish visual markers: %d", self.publish_visual_markers)
        logger.info("\tPublish ar pose markers: %d", self.publish_ar_pose_markers)
        logger.info("\tThreshold: %d", self.threshold)
        logger.info("Marker Pattern Filename: %s", self.marker_pattern_list)
        logger.info("Marker Data Directory: %s", self.marker_data_directory)
        logger.info("World frame: %s (lookup timeout %.2fs)",
                    self.world_frame, self.transform_timeout_sec)
        if self.publish_to_bluetooth:
            logger.info("Bluetooth: %s", self.bluetooth.as_dict())


def _optional_int(value: Any) -> Optional[int]:
    return None if value is None else int(value)


def _normalize_camera_to_world(value: Any) -> Optional[dict[str, list[float]]]:
    if value is None:
        return None
    if not isinstance(value, dict):
        raise ValueError("camera_to_world must be a mapping with translation and rotation")
    translation = [float(v) for v in value.get("translation", [0.0, 0.0, 0.0])]
    rotation = [float(v) for v in value.get("rotation", [0.0, 0.0, 0.0, 1.0])]
    if len(translation) != 3:
        raise ValueError("camera_to_world.translation must have 3 values")
    if len(rotation) != 4:
        raise ValueError("camera_to_world.rotation must be a quaternion x, y, z, w")
    return {"translation": translation, "rotation": rotation}


def _load_yaml(path: Path) -> dict[str, Any]:
    try:
        import yaml  # type: ignore
    except Exception as exc:  # pragma: no cover - optional dependency
        raise RuntimeError(
            "YAML config requested but PyYAML is not installed. "
            "Install with: pip install pyyaml"
        ) from exc
    with path.open("r", encoding="utf-8") as fp:
        data = yaml.safe_load(fp) or {}
    if not isinstance(data, dict):
        raise ValueError("YAML config root must be a mapping")
    return data


def _load_bluetooth(raw: dict[str, Any]) -> BluetoothConfig:
    bt = BluetoothConfig()
    bt.port_pattern = str(raw.get("port_pattern", bt.port_pattern))
    bt.device_address = raw.get("device_address", bt.device_address)
    if bt.device_address is not None:
        bt.device_address = str(bt.device_address)
    bt.baudrate = int(raw.get("baudrate", bt.baudrate))
    bt.scan_timeout_sec = float(raw.get("scan_timeout_sec", bt.scan_timeout_sec))
    bt.max_scans = _optional_int(raw.get("max_scans", bt.max_scans))
    bt.channel = int(raw.get("channel", bt.channel))
    bt.on_connect_failure = str(raw.get("on_connect_failure", bt.on_connect_failure))
    if bt.on_connect_failure not in CONNECT_FAILURE_POLICIES:
        raise ValueError(
            f"bluetooth.on_connect_failure must be one of {CONNECT_FAILURE_POLICIES}"
        )
    return bt


def load_config(path: str | Path) -> LinkConfig:
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(f"Config not found: {p}")

    if p.suffix.lower() in {".yaml", ".yml"}:
        raw = _load_yaml(p)
    else:
        with p.open("r", encoding="utf-8") as fp:
            raw = json.load(fp)

    if not isinstance(raw, dict):
        raise ValueError("Config root must be a JSON/YAML object")

    cfg = LinkConfig()
    cfg.node_name = str(raw.get("node_name", cfg.node_name))
    cfg.publish_to_bluetooth = bool(raw.get("publish_to_bluetooth", cfg.publish_to_bluetooth))
    cfg.publish_tf = bool(raw.get("publish_tf", cfg.publish_tf))
    cfg.publish_visual_markers = bool(raw.get("publish_visual_markers", cfg.publish_visual_markers))
    cfg.publish_ar_pose_markers = bool(raw.get("publish_ar_pose_markers", cfg.publish_ar_pose_markers))
    cfg.threshold = int(raw.get("threshold", cfg.threshold))
    cfg.marker_pattern_list = str(raw.get("marker_pattern_list", cfg.marker_pattern_list))
    cfg.marker_data_directory = str(raw.get("marker_data_directory", cfg.marker_data_directory))
    cfg.aruco_dict = str(raw.get("aruco_dict", cfg.aruco_dict))
    cfg.camera_frame = str(raw.get("camera_frame", cfg.camera_frame))
    cfg.world_frame = str(raw.get("world_frame", cfg.world_frame))
    cfg.transform_timeout_sec = float(raw.get("transform_timeout_sec", cfg.transform_timeout_sec))
    cfg.camera_to_world = _normalize_camera_to_world(raw.get("camera_to_world"))
    cfg.frames_dir = raw.get("frames_dir", cfg.frames_dir)
    cfg.max_frames = _optional_int(raw.get("max_frames", cfg.max_frames))
    cfg.marker_list_csv = raw.get("marker_list_csv", cfg.marker_list_csv)

    bt_raw = raw.get("bluetooth")
    if bt_raw is not None:
        if not isinstance(bt_raw, dict):
            raise ValueError("bluetooth must be a mapping")
        cfg.bluetooth = _load_bluetooth(bt_raw)

    return cfg
