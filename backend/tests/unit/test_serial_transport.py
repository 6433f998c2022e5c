"""
Unit tests for SerialTransport.

pyserial's Serial is replaced by an in-memory fake so the reader thread
and line splitting can be exercised without hardware.
"""

import threading
import time
from types import SimpleNamespace

import pytest
import serial

import core.serial_transport as serial_transport
from core.errors import TransportError
from core.serial_transport import SerialTransport
from core.transport import SerialOptions


class FakeSerial:
    """Stand-in for serial.Serial fed by the test."""

    def __init__(self, **kwargs):
        self.kwargs = kwargs
        self.written = bytearray()
        self.closed = False
        self.fail_read = None
        self.fail_close = None
        self._incoming = bytearray()
        self.read_sizes = []
        self._lock = threading.Lock()

    def reset_input_buffer(self):
        pass

    @property
    def in_waiting(self):
        with self._lock:
            return len(self._incoming)

    def read(self, size=1):
        if self.fail_read:
            raise self.fail_read
        self.read_sizes.append(size)
        with self._lock:
            data = bytes(self._incoming[:size])
            del self._incoming[:size]
        if not data:
            time.sleep(0.005)
        return data

    def write(self, data):
        self.written.extend(data)
        return len(data)

    def flush(self):
        pass

    def close(self):
        if self.fail_close:
            raise self.fail_close
        self.closed = True

    def push(self, data: bytes):
        with self._lock:
            self._incoming.extend(data)


@pytest.fixture
def fake_serial(monkeypatch):
    created = []

    def factory(**kwargs):
        port = FakeSerial(**kwargs)
        created.append(port)
        return port

    monkeypatch.setattr(serial_transport.serial, "Serial", factory)
    return created


@pytest.fixture
def opened(fake_serial):
    transport = SerialTransport()
    lines = []
    errors = []
    transport.on_line(lines.append)
    transport.on_error(errors.append)
    transport.open("/dev/ttyFAKE")
    yield transport, fake_serial[0], lines, errors
    transport.close()


class TestOpen:

    def test_passes_options(self, fake_serial):
        transport = SerialTransport()
        transport.open("/dev/ttyFAKE", SerialOptions(baud_rate=9600, parity="even"))
        try:
            kwargs = fake_serial[0].kwargs
            assert kwargs["port"] == "/dev/ttyFAKE"
            assert kwargs["baudrate"] == 9600
            assert kwargs["bytesize"] == 8
            assert kwargs["parity"] == serial.PARITY_EVEN
            assert transport.is_open
        finally:
            transport.close()

    def test_unknown_parity(self, fake_serial):
        with pytest.raises(TransportError):
            SerialTransport().open("/dev/ttyFAKE", SerialOptions(parity="sometimes"))
        assert fake_serial == []

    def test_open_failure(self, monkeypatch):
        def refuse(**kwargs):
            raise serial.SerialException("could not open port")

        monkeypatch.setattr(serial_transport.serial, "Serial", refuse)
        transport = SerialTransport()

        with pytest.raises(TransportError) as exc:
            transport.open("/dev/ttyMISSING")

        assert "could not open port" in str(exc.value)
        assert not transport.is_open


class TestLines:

    def test_write_appends_newline(self, opened):
        transport, port, _, _ = opened
        transport.write_line("G1 X10")
        assert bytes(port.written) == b"G1 X10\n"

    def test_write_non_ascii(self, opened):
        transport, _, _, _ = opened
        with pytest.raises(TransportError):
            transport.write_line("G1 Xµ")

    def test_write_when_closed(self):
        with pytest.raises(TransportError):
            SerialTransport().write_line("G28")

    def test_splits_and_trims(self, opened, wait_until):
        _, port, lines, _ = opened
        port.push(b"FIRMWARE_NAME:Marlin\r\n\r\n  ok  \n")
        wait_until(lambda: len(lines) == 2)
        assert lines == ["FIRMWARE_NAME:Marlin", "ok"]

    def test_partial_lines_are_buffered(self, opened, wait_until):
        _, port, lines, _ = opened
        port.push(b"Err")
        time.sleep(0.05)
        assert lines == []

        port.push(b"or: halted\n")
        wait_until(lambda: lines == ["Error: halted"])

    def test_burst_read_in_bounded_chunks(self, opened, wait_until):
        _, port, lines, _ = opened
        port.push(b"echo:busy processing\n" * 1000)

        wait_until(lambda: len(lines) == 1000)

        assert max(port.read_sizes) == serial_transport.READ_CHUNK_SIZE


class TestFailures:

    def test_read_failure_reported_once(self, opened, wait_until):
        transport, port, _, errors = opened
        port.fail_read = serial.SerialException("device disconnected")

        wait_until(lambda: errors)
        time.sleep(0.05)

        assert len(errors) == 1
        assert isinstance(errors[0], TransportError)
        assert not transport.is_open

    def test_close_failure(self, fake_serial):
        transport = SerialTransport()
        transport.open("/dev/ttyFAKE")
        fake_serial[0].fail_close = OSError("io error")

        with pytest.raises(TransportError):
            transport.close()

    def test_close_twice(self, fake_serial):
        transport = SerialTransport()
        transport.open("/dev/ttyFAKE")
        transport.close()
        transport.close()
        assert fake_serial[0].closed


class TestListPorts:

    def test_list_ports(self, monkeypatch):
        port = SimpleNamespace(
            device="/dev/ttyUSB0",
            description="USB Serial",
            hwid="USB VID:PID=1A86:7523",
            manufacturer="QinHeng",
            serial_number=None,
        )
        monkeypatch.setattr(serial_transport.serial.tools.list_ports, "comports", lambda: [port])

        assert SerialTransport.list_ports() == [{
            "device": "/dev/ttyUSB0",
            "description": "USB Serial",
            "hwid": "USB VID:PID=1A86:7523",
            "manufacturer": "QinHeng",
            "serial_number": None,
        }]
