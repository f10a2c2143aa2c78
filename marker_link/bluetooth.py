"""Bluetooth link to the robot.

The session walks discovery -> selection -> connect, then carries
fire-and-forget messages until it is closed. Transport and device choice are
pluggable: `BluetoothAdapter` talks to the hardware, `DeviceSelector`
decides which discovered device to use (or asks for another scan).
"""

from __future__ import annotations

import logging
import struct
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional, Sequence

import serial
from serial.tools import list_ports

from .errors import LinkConnectError, LinkError, SendError

# NXT direct command: no reply requested, MessageWrite opcode.
NXT_DIRECT_COMMAND_NO_REPLY = 0x80
NXT_MESSAGE_WRITE = 0x09
NXT_MAX_MAILBOX = 9
NXT_MAX_MESSAGE_BYTES = 58  # excluding the NUL terminator


def encode_mailbox_message(mailbox: int, text: str) -> bytes:
    """
    Frame `text` as an NXT MessageWrite for Bluetooth.

    Layout: 2-byte little-endian length, 0x80, 0x09, mailbox, size, payload, NUL.
    """
    if not 0 <= mailbox <= NXT_MAX_MAILBOX:
        raise ValueError(f"mailbox must be 0..{NXT_MAX_MAILBOX}, got {mailbox}")
    payload = text.encode("ascii") + b"\x00"
    if len(payload) > NXT_MAX_MESSAGE_BYTES + 1:
        raise ValueError(f"message too long for NXT mailbox ({len(payload) - 1} bytes)")
    body = bytes([NXT_DIRECT_COMMAND_NO_REPLY, NXT_MESSAGE_WRITE, mailbox, len(payload)]) + payload
    return struct.pack("<H", len(body)) + body


class SessionState(Enum):
    DISCONNECTED = "disconnected"
    SCANNING = "scanning"
    AWAITING_SELECTION = "awaiting_selection"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    FAILED = "failed"


@dataclass(frozen=True)
class DeviceInfo:
    address: str
    name: str


class BluetoothAdapter(ABC):
    @abstractmethod
    def discover(self, timeout: float) -> list[DeviceInfo]: ...

    @abstractmethod
    def connect(self, address: str) -> None: ...

    @abstractmethod
    def send(self, channel: int, payload: str) -> None: ...

    @abstractmethod
    def disconnect(self) -> None: ...


class SerialBluetoothAdapter(BluetoothAdapter):
    """NXT over an RFCOMM-bound serial port (e.g. /dev/rfcomm0)."""

    def __init__(self, port_pattern: str = "rfcomm", baudrate: int = 115200,
                 write_timeout: float = 1.0, poll_interval: float = 0.5):
        self.port_pattern = port_pattern.lower()
        self.baudrate = baudrate
        self.write_timeout = write_timeout
        self.poll_interval = poll_interval
        self.conn: Optional[serial.Serial] = None

    def _matches(self, port) -> bool:
        if not self.port_pattern:
            return True
        text = f"{port.device} {port.description or ''} {port.hwid or ''}".lower()
        return self.port_pattern in text

    def discover(self, timeout: float) -> list[DeviceInfo]:
        deadline = time.monotonic() + max(0.0, timeout)
        while True:
            try:
                ports = list_ports.comports()
            except OSError as exc:
                raise LinkError(f"port enumeration failed: {exc}") from exc
            found = [DeviceInfo(p.device, p.description or p.device) for p in ports if self._matches(p)]
            if found or time.monotonic() >= deadline:
                return found
            time.sleep(self.poll_interval)

    def connect(self, address: str) -> None:
        try:
            self.conn = serial.Serial(
                address,
                baudrate=self.baudrate,
                timeout=1.0,
                write_timeout=self.write_timeout,
            )
        except (serial.SerialException, OSError) as exc:
            self.conn = None
            raise LinkConnectError(f"could not open {address}: {exc}") from exc

    def send(self, channel: int, payload: str) -> None:
        if self.conn is None:
            raise SendError("serial port is not open")
        try:
            frame = encode_mailbox_message(channel, payload)
        except (ValueError, UnicodeEncodeError) as exc:
            raise SendError(str(exc)) from exc
        try:
            self.conn.write(frame)
        except (serial.SerialException, OSError) as exc:
            raise SendError(str(exc)) from exc

    def disconnect(self) -> None:
        if self.conn is not None:
            try:
                self.conn.close()
            finally:
                self.conn = None


class DeviceSelector(ABC):
    @abstractmethod
    def choose_device(self, candidates: Sequence[DeviceInfo]) -> Optional[str]:
        """Return the address to connect to, or None to scan again."""


class ConsoleSelector(DeviceSelector):
    """Interactive menu; option 0 (or anything invalid) searches again."""

    def __init__(self, input_fn: Callable[[str], str] = input,
                 output_fn: Callable[[str], None] = print):
        self.input_fn = input_fn
        self.output_fn = output_fn

    def choose_device(self, candidates: Sequence[DeviceInfo]) -> Optional[str]:
        self.output_fn("Available bluetooth devices:\n")
        self.output_fn("   (0) search again for bluetooth devices")
        for i, dev in enumerate(candidates, 1):
            self.output_fn(f"   ({i}) {dev.address} --- {dev.name}")
        answer = self.input_fn(f"\nPlease select an option (0 - {len(candidates)}): ")
        try:
            choice = int(answer.strip())
        except ValueError:
            return None
        if choice <= 0 or choice > len(candidates):
            return None
        return candidates[choice - 1].address


class AddressSelector(DeviceSelector):
    """Pick a known address once it shows up in discovery."""

    def __init__(self, address: str):
        self.address = address

    def choose_device(self, candidates: Sequence[DeviceInfo]) -> Optional[str]:
        for dev in candidates:
            if dev.address == self.address:
                return dev.address
        return None


class BluetoothSession:
    def __init__(
        self,
        adapter: BluetoothAdapter,
        selector: DeviceSelector,
        scan_timeout: float = 8.0,
        max_scans: Optional[int] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.adapter = adapter
        self.selector = selector
        self.scan_timeout = scan_timeout
        self.max_scans = max_scans
        self.logger = logger or logging.getLogger(__name__)
        self.state = SessionState.DISCONNECTED
        self.transitions: list[SessionState] = [self.state]
        self.candidates: list[DeviceInfo] = []
        self.device: Optional[DeviceInfo] = None
        self._lock = threading.Lock()

    def _transition(self, state: SessionState) -> None:
        self.logger.debug("bluetooth session %s -> %s", self.state.value, state.value)
        self.state = state
        self.transitions.append(state)

    @property
    def accepts_sends(self) -> bool:
        return self.state is SessionState.CONNECTED

    def scan(self) -> list[DeviceInfo]:
        if self.state not in (SessionState.DISCONNECTED, SessionState.AWAITING_SELECTION):
            raise LinkError(f"cannot scan in state {self.state.value}")
        self._transition(SessionState.SCANNING)
        self.logger.info("Pending for bluetooth devices ...")
        try:
            found = list(self.adapter.discover(self.scan_timeout))
        except LinkError as exc:
            self.logger.warning("bluetooth discovery failed: %s", exc)
            found = []
        self.candidates = found
        self.logger.info("found %d bluetooth device(s)", len(found))
        self._transition(SessionState.AWAITING_SELECTION)
        return found

    def select(self) -> Optional[DeviceInfo]:
        if self.state is not SessionState.AWAITING_SELECTION:
            raise LinkError(f"cannot select a device in state {self.state.value}")
        address = self.selector.choose_device(list(self.candidates))
        if address is None:
            return None
        for dev in self.candidates:
            if dev.address == address:
                return dev
        self.logger.warning("selected address %s was not discovered; scanning again", address)
        return None

    def connect(self, device: DeviceInfo) -> None:
        self._transition(SessionState.CONNECTING)
        self.logger.info("try to connect to bluetooth device: %s (%s) ...", device.address, device.name)
        try:
            self.adapter.connect(device.address)
        except LinkError as exc:
            self._transition(SessionState.FAILED)
            self.logger.error("could not connect to device %s: %s", device.address, exc)
            raise LinkConnectError(f"could not connect to device {device.address}") from exc
        self.device = device
        self._transition(SessionState.CONNECTED)
        self.logger.info("connected")

    def open(self) -> "BluetoothSession":
        if self.state is SessionState.CONNECTED:
            return self
        if self.state is not SessionState.DISCONNECTED:
            raise LinkError(f"cannot open session in state {self.state.value}")

        scans = 0
        while True:
            self.scan()
            scans += 1
            device = self.select()
            if device is not None:
                break
            if self.max_scans is not None and scans >= self.max_scans:
                self._transition(SessionState.FAILED)
                self.logger.error("no bluetooth device selected after %d scan(s)", scans)
                raise LinkConnectError(f"no device selected after {scans} scan(s)")

        self.connect(device)
        return self

    def send(self, channel: int, message: str) -> None:
        with self._lock:
            if self.state is not SessionState.CONNECTED:
                raise LinkError("session not connected")
            self.adapter.send(channel, message)

    def close(self) -> None:
        if self.state is SessionState.DISCONNECTED:
            return
        with self._lock:
            if self.state in (SessionState.CONNECTED, SessionState.CONNECTING, SessionState.FAILED):
                try:
                    self.adapter.disconnect()
                except LinkError as exc:
                    self.logger.warning("bluetooth disconnect failed: %s", exc)
            self.device = None
            self._transition(SessionState.DISCONNECTED)
        self.logger.info("bluetooth session closed")

    def __enter__(self) -> "BluetoothSession":
        try:
            return self.open()
        except BaseException:
            self.close()
            raise

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
