"""
Serial Transport - Single responsibility: serial line I/O

A background reader thread splits the byte stream on newlines and hands
each decoded line to subscribers in arrival order. Correlating lines to
commands is not done here.
"""

import threading
from typing import Callable, Optional

import serial
import serial.tools.list_ports

from .errors import TransportError
from .logger import log_critical, log_link, log_serial, log_warn
from .transport import CallbackRegistry, ErrorCallback, LineCallback, SerialOptions


PARITIES = {
    "none": serial.PARITY_NONE,
    "even": serial.PARITY_EVEN,
    "odd": serial.PARITY_ODD,
    "mark": serial.PARITY_MARK,
    "space": serial.PARITY_SPACE,
}
READ_CHUNK_SIZE = 4096


class SerialTransport:
    """
    Line transport over a pyserial port.

    Writes are serialized with a lock; reads happen on a daemon thread.
    A read failure while open is reported once through on_error and stops
    the reader.
    """

    def __init__(self):
        self._serial: Optional[serial.Serial] = None
        self._port: Optional[str] = None
        self._active = False
        self._reader_thread: Optional[threading.Thread] = None
        self._write_lock = threading.Lock()
        self._buffer = bytearray()
        self._lines = CallbackRegistry()
        self._errors = CallbackRegistry()

    @staticmethod
    def list_ports() -> list[dict]:
        """List available serial ports"""
        return [
            {
                "device": port.device,
                "description": port.description,
                "hwid": port.hwid,
                "manufacturer": port.manufacturer,
                "serial_number": port.serial_number,
            }
            for port in serial.tools.list_ports.comports()
        ]

    def open(self, port: str, options: Optional[SerialOptions] = None) -> None:
        """Open serial port and start the reader thread"""
        options = options or SerialOptions()
        parity = PARITIES.get(options.parity.lower())
        if parity is None:
            raise TransportError(f"Unknown parity '{options.parity}'")

        try:
            self._serial = serial.Serial(
                port=port,
                baudrate=options.baud_rate,
                bytesize=options.data_bits,
                stopbits=options.stop_bits,
                parity=parity,
                timeout=options.read_timeout,
            )
            self._serial.reset_input_buffer()
        except (serial.SerialException, ValueError) as e:
            self._serial = None
            raise TransportError(f"Failed to open {port}: {e}") from e

        self._port = port
        self._buffer.clear()
        self._active = True
        self._reader_thread = threading.Thread(
            target=self._reader_loop,
            daemon=True,
            name=f"StageReader[{port}]",
        )
        self._reader_thread.start()
        log_link(f"Opened {port} @ {options.baud_rate} baud")

    def close(self) -> None:
        """Stop the reader and close the port"""
        self._active = False

        reader = self._reader_thread
        if reader and reader.is_alive() and reader is not threading.current_thread():
            reader.join(timeout=1.0)
        self._reader_thread = None

        port, self._serial = self._serial, None
        if port is None:
            return
        try:
            port.close()
        except (serial.SerialException, OSError) as e:
            raise TransportError(f"Failed to close {self._port}: {e}") from e
        log_link(f"Closed {self._port}")

    def write_line(self, text: str) -> None:
        """Write one command line"""
        if not self._serial or not self._active:
            raise TransportError("Port is not open")

        with self._write_lock:
            try:
                self._serial.write(f"{text}\n".encode("ascii"))
                self._serial.flush()
            except UnicodeEncodeError as e:
                raise TransportError(f"Command is not ASCII: {text!r}") from e
            except (serial.SerialException, OSError) as e:
                raise TransportError(f"Write failed: {e}") from e
        log_serial(">>>", text)

    def on_line(self, callback: LineCallback) -> Callable[[], None]:
        return self._lines.add(callback)

    def on_error(self, callback: ErrorCallback) -> Callable[[], None]:
        return self._errors.add(callback)

    @property
    def is_open(self) -> bool:
        return self._active and self._serial is not None

    # Internal methods

    def _reader_loop(self) -> None:
        """Read bytes, split into lines, dispatch in arrival order"""
        while self._active:
            port = self._serial
            if port is None:
                break
            try:
                chunk = port.read(min(port.in_waiting, READ_CHUNK_SIZE) or 1)
            except (serial.SerialException, OSError, TypeError) as e:
                # TypeError: pyserial closing the fd under a blocked read
                if self._active:
                    self._fail(e)
                break

            if chunk:
                self._buffer.extend(chunk)
                self._drain_lines()

    def _drain_lines(self) -> None:
        while True:
            idx = self._buffer.find(b"\n")
            if idx == -1:
                return
            raw = bytes(self._buffer[:idx])
            del self._buffer[:idx + 1]

            line = raw.decode("ascii", errors="replace").strip()
            if not line:
                continue
            log_serial("<<<", line)
            for callback in self._lines.snapshot():
                try:
                    callback(line)
                except Exception as e:
                    log_critical(f"Line callback failed: {e}")

    def _fail(self, error: Exception) -> None:
        """Report a fatal read error once"""
        log_critical(f"Serial read error on {self._port}: {error}")
        self._active = False
        for callback in self._errors.snapshot():
            try:
                callback(TransportError(str(error)))
            except Exception as e:
                log_warn(f"Error callback failed: {e}")
