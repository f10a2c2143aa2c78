import json
import logging

import pytest

from marker_link.config import PACKAGE_DIR, LinkConfig, load_config


def test_defaults_point_at_bundled_catalog():
    cfg = LinkConfig()
    assert cfg.node_name == "ar_kinect_bluetooth"
    assert cfg.threshold == 100
    assert cfg.publish_to_bluetooth and cfg.publish_tf
    assert cfg.marker_pattern_list == str(PACKAGE_DIR / "data" / "objects_kinect")
    assert cfg.bluetooth.channel == 0
    assert cfg.bluetooth.on_connect_failure == "exit"


def test_load_json_config(tmp_path):
    p = tmp_path / "link.json"
    p.write_text(json.dumps({
        "threshold": 80,
        "publish_visual_markers": False,
        "world_frame": "map",
        "camera_to_world": {"translation": [1, 2, 0], "rotation": [0, 0, 0, 1]},
        "max_frames": "10",
        "bluetooth": {"device_address": "/dev/rfcomm1", "max_scans": 3, "on_connect_failure": "continue"},
    }))

    cfg = load_config(p)

    assert cfg.threshold == 80
    assert cfg.publish_visual_markers is False
    assert cfg.world_frame == "map"
    assert cfg.camera_to_world == {"translation": [1.0, 2.0, 0.0], "rotation": [0.0, 0.0, 0.0, 1.0]}
    assert cfg.max_frames == 10
    assert cfg.bluetooth.device_address == "/dev/rfcomm1"
    assert cfg.bluetooth.max_scans == 3
    assert cfg.bluetooth.on_connect_failure == "continue"


def test_load_yaml_config(tmp_path):
    p = tmp_path / "link.yaml"
    p.write_text(
        "node_name: bench\n"
        "publish_to_bluetooth: false\n"
        "aruco_dict: 5x5_100\n"
        "bluetooth:\n"
        "  baudrate: 9600\n"
        "  port_pattern: usb\n"
    )

    cfg = load_config(p)

    assert cfg.node_name == "bench"
    assert cfg.publish_to_bluetooth is False
    assert cfg.aruco_dict == "5x5_100"
    assert cfg.bluetooth.baudrate == 9600
    assert cfg.bluetooth.port_pattern == "usb"


def test_missing_config_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_config(tmp_path / "nope.json")


@pytest.mark.parametrize("raw", [
    {"bluetooth": {"on_connect_failure": "retry"}},
    {"bluetooth": "rfcomm0"},
    {"camera_to_world": {"translation": [1, 2]}},
    {"camera_to_world": {"rotation": [0, 0, 1]}},
])
def test_invalid_config_values(tmp_path, raw):
    p = tmp_path / "bad.json"
    p.write_text(json.dumps(raw))
    with pytest.raises(ValueError):
        load_config(p)


def test_apply_overrides_skips_none_and_reaches_bluetooth():
    cfg = LinkConfig().apply_overrides(threshold=None, world_frame="map",
                                       device_address="/dev/rfcomm0")
    assert cfg.threshold == 100
    assert cfg.world_frame == "map"
    assert cfg.bluetooth.device_address == "/dev/rfcomm0"


def test_log_summary_echoes_settings(caplog):
    logger = logging.getLogger("marker_link.test_config")
    cfg = LinkConfig(publish_tf=False, threshold=90)

    with caplog.at_level(logging.INFO, logger="marker_link.test_config"):
        cfg.log_summary(logger)

    assert "\tPublish to bluetooth: 1" in caplog.messages
    assert "\tPublish transforms: 0" in caplog.messages
    assert "\tThreshold: 90" in caplog.messages
    assert any(m.startswith("Marker Pattern Filename: ") for m in caplog.messages)
