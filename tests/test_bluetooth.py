from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest
import serial

from marker_link.bluetooth import (
    AddressSelector,
    BluetoothSession,
    ConsoleSelector,
    DeviceInfo,
    SerialBluetoothAdapter,
    SessionState,
    encode_mailbox_message,
)
from marker_link.errors import LinkConnectError, LinkError, SendError

from conftest import NXT, FakeAdapter, ScriptedSelector

OTHER = DeviceInfo("00:11:22:33:44:55", "phone")


def _session(adapter, choices, **kwargs):
    session = BluetoothSession(adapter, ScriptedSelector(choices), **kwargs)
    adapter.session = session
    return session


def test_empty_discovery_awaits_selection_then_rescans():
    adapter = FakeAdapter(scans=[[], [NXT]])
    session = _session(adapter, [None, NXT.address])

    session.open()

    assert adapter.states_seen == [SessionState.SCANNING, SessionState.SCANNING]
    assert session.transitions == [
        SessionState.DISCONNECTED,
        SessionState.SCANNING,
        SessionState.AWAITING_SELECTION,
        SessionState.SCANNING,
        SessionState.AWAITING_SELECTION,
        SessionState.CONNECTING,
        SessionState.CONNECTED,
    ]
    assert session.selector.offered == [[], [NXT]]
    assert session.device == NXT
    assert adapter.connected_to == NXT.address


def test_scan_with_no_devices_lands_in_awaiting_selection():
    session = _session(FakeAdapter(), [])

    assert session.scan() == []
    assert session.state is SessionState.AWAITING_SELECTION
    assert session.select() is None

    session.scan()
    assert session.state is SessionState.AWAITING_SELECTION


def test_connect_failure_is_terminal_for_sends():
    adapter = FakeAdapter(scans=[[NXT]], fail_connect=True)
    session = _session(adapter, [NXT.address])

    with pytest.raises(LinkConnectError):
        session.open()

    assert session.state is SessionState.FAILED
    assert session.transitions[-2:] == [SessionState.CONNECTING, SessionState.FAILED]
    assert session.accepts_sends is False
    for _ in range(3):
        with pytest.raises(LinkError):
            session.send(0, "alpha;1;2;3")
    assert adapter.sent == []


def test_open_send_close():
    adapter = FakeAdapter(scans=[[OTHER, NXT]])
    session = _session(adapter, [NXT.address])

    with session:
        assert session.accepts_sends
        session.send(0, "alpha;1;2;3")

    assert adapter.sent == [(0, "alpha;1;2;3")]
    assert adapter.disconnects == 1
    assert session.state is SessionState.DISCONNECTED

    session.close()
    assert adapter.disconnects == 1
    with pytest.raises(LinkError):
        session.send(0, "late")


def test_send_error_propagates_from_adapter():
    adapter = FakeAdapter(scans=[[NXT]], fail_send=True)
    session = _session(adapter, [NXT.address])
    session.open()

    with pytest.raises(SendError):
        session.send(0, "alpha;1;2;3")
    assert session.state is SessionState.CONNECTED


def test_max_scans_bounds_selection_loop():
    adapter = FakeAdapter(scans=[[NXT], [NXT]])
    session = _session(adapter, [None, None, None], max_scans=2)

    with pytest.raises(LinkConnectError):
        session.open()

    assert session.state is SessionState.FAILED
    assert len(session.selector.offered) == 2


def test_unknown_address_triggers_rescan(caplog):
    adapter = FakeAdapter(scans=[[NXT], [NXT]])
    session = _session(adapter, [OTHER.address, NXT.address])

    with caplog.at_level("WARNING"):
        session.open()

    assert session.device == NXT
    assert "was not discovered" in caplog.text


def test_discovery_error_counts_as_empty_scan(caplog):
    adapter = FakeAdapter()
    adapter.discover = MagicMock(side_effect=LinkError("adapter off"))
    session = _session(adapter, [])

    with caplog.at_level("WARNING"):
        assert session.scan() == []

    assert session.state is SessionState.AWAITING_SELECTION
    assert "discovery failed" in caplog.text


def test_scan_rejected_while_connected():
    adapter = FakeAdapter(scans=[[NXT]])
    session = _session(adapter, [NXT.address])
    session.open()

    with pytest.raises(LinkError):
        session.scan()


def test_encode_mailbox_message_layout():
    frame = encode_mailbox_message(0, "a;1;2;3")

    assert frame[:2] == (12).to_bytes(2, "little")
    assert frame[2:6] == bytes([0x80, 0x09, 0, 8])
    assert frame[6:] == b"a;1;2;3\x00"


@pytest.mark.parametrize("mailbox,text", [(10, "x"), (-1, "x"), (0, "x" * 59)])
def test_encode_mailbox_message_rejects_bad_input(mailbox, text):
    with pytest.raises(ValueError):
        encode_mailbox_message(mailbox, text)


def test_console_selector_menu():
    lines = []
    selector = ConsoleSelector(input_fn=lambda prompt: "2", output_fn=lines.append)

    assert selector.choose_device([OTHER, NXT]) == NXT.address
    assert "   (0) search again for bluetooth devices" in lines
    assert f"   (2) {NXT.address} --- NXT" in lines


@pytest.mark.parametrize("answer", ["0", "3", "abc", ""])
def test_console_selector_rescan_on_zero_or_invalid(answer):
    selector = ConsoleSelector(input_fn=lambda prompt: answer, output_fn=lambda s: None)
    assert selector.choose_device([OTHER, NXT]) is None


def test_address_selector_waits_for_known_device():
    selector = AddressSelector(NXT.address)
    assert selector.choose_device([OTHER]) is None
    assert selector.choose_device([OTHER, NXT]) == NXT.address


def _port(device, description="n/a", hwid="n/a"):
    return SimpleNamespace(device=device, description=description, hwid=hwid)


@patch("marker_link.bluetooth.list_ports.comports")
def test_serial_adapter_discovers_rfcomm_ports(mock_comports):
    mock_comports.return_value = [_port("/dev/ttyS0"), _port("/dev/rfcomm0", "NXT")]
    adapter = SerialBluetoothAdapter()

    found = adapter.discover(timeout=0.0)

    assert found == [DeviceInfo("/dev/rfcomm0", "NXT")]


@patch("marker_link.bluetooth.list_ports.comports", return_value=[])
def test_serial_adapter_discovery_times_out_empty(mock_comports):
    adapter = SerialBluetoothAdapter(poll_interval=0.01)
    assert adapter.discover(timeout=0.03) == []
    assert mock_comports.call_count >= 1


@patch("marker_link.bluetooth.serial.Serial")
def test_serial_adapter_writes_framed_message(mock_serial):
    adapter = SerialBluetoothAdapter(baudrate=9600)
    adapter.connect("/dev/rfcomm0")
    adapter.send(0, "alpha;1;2;3")
    adapter.disconnect()

    mock_serial.assert_called_once()
    assert mock_serial.call_args.args[0] == "/dev/rfcomm0"
    assert mock_serial.call_args.kwargs["baudrate"] == 9600
    port = mock_serial.return_value
    port.write.assert_called_once_with(encode_mailbox_message(0, "alpha;1;2;3"))
    port.close.assert_called_once()
    assert adapter.conn is None


@patch("marker_link.bluetooth.serial.Serial", side_effect=serial.SerialException("busy"))
def test_serial_adapter_connect_failure(mock_serial):
    adapter = SerialBluetoothAdapter()
    with pytest.raises(LinkConnectError):
        adapter.connect("/dev/rfcomm0")
    assert adapter.conn is None


def test_serial_adapter_send_without_port():
    with pytest.raises(SendError):
        SerialBluetoothAdapter().send(0, "x")
