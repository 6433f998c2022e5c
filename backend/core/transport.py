"""
Transport layer - line-oriented communication with the stage.

Provides:
- LineTransport protocol (interface)
- MockTransport, a simulated G-code stage for tests and the 'mock' port
- (SerialTransport in serial_transport.py for production)

Transports deliver complete, trimmed lines to subscribers in arrival
order and report asynchronous failures through on_error callbacks.
"""

from __future__ import annotations

import re
import threading
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Protocol

from .errors import TransportError
from .types import ORIGIN, Position


LineCallback = Callable[[str], None]
ErrorCallback = Callable[[Exception], None]


@dataclass
class SerialOptions:
    """Serial line settings for the stage controller board"""
    baud_rate: int = 115200
    data_bits: int = 8
    stop_bits: float = 1
    parity: str = "none"
    read_timeout: float = 0.1


class LineTransport(Protocol):
    """Protocol for a line-oriented connection to the stage."""

    def open(self, port: str, options: Optional[SerialOptions] = None) -> None:
        """Open the connection. Raises TransportError on failure."""
        ...

    def close(self) -> None:
        """Close the connection. Safe to call twice. Raises TransportError."""
        ...

    def write_line(self, text: str) -> None:
        """Write text plus line terminator. Raises TransportError."""
        ...

    def on_line(self, callback: LineCallback) -> Callable[[], None]:
        """Subscribe to inbound lines. Returns an unsubscribe function."""
        ...

    def on_error(self, callback: ErrorCallback) -> Callable[[], None]:
        """Subscribe to asynchronous transport errors."""
        ...

    @property
    def is_open(self) -> bool:
        ...


class CallbackRegistry:
    """Subscriber list shared by transports."""

    def __init__(self):
        self._callbacks: List[Callable] = []
        self._lock = threading.Lock()

    def add(self, callback: Callable) -> Callable[[], None]:
        with self._lock:
            self._callbacks.append(callback)

        def unsubscribe():
            with self._lock:
                if callback in self._callbacks:
                    self._callbacks.remove(callback)

        return unsubscribe

    def snapshot(self) -> List[Callable]:
        with self._lock:
            return list(self._callbacks)

    def clear(self) -> None:
        with self._lock:
            self._callbacks.clear()


class MockTransport:
    """
    Simulated G-code stage for testing without hardware.

    Replies synchronously from inside write_line, tracks positioning mode
    and position, and lets tests inject device errors, silence, write
    failures and asynchronous transport errors.
    """

    def __init__(self, auto_reply: bool = True, firmware: str = "MockStage 1.0"):
        self.sent_commands: List[str] = []
        self.position: Position = ORIGIN
        self.relative_mode: bool = False
        self.auto_reply = auto_reply
        self.firmware = firmware
        self.fail_open: Optional[str] = None
        self.fail_writes: Optional[str] = None
        self.fail_close: Optional[str] = None
        self.opened_with: Optional[tuple] = None
        self._replies: Dict[str, List[str]] = {}
        self._open = False
        self._lines = CallbackRegistry()
        self._errors = CallbackRegistry()

    # === LineTransport ===

    def open(self, port: str, options: Optional[SerialOptions] = None) -> None:
        if self.fail_open:
            raise TransportError(self.fail_open)
        self.opened_with = (port, options or SerialOptions())
        self._open = True

    def close(self) -> None:
        if self.fail_close:
            self._open = False
            raise TransportError(self.fail_close)
        self._open = False

    def write_line(self, text: str) -> None:
        if not self._open:
            raise TransportError("Port is not open")
        if self.fail_writes:
            raise TransportError(self.fail_writes)
        self.sent_commands.append(text)
        for line in self._respond(text):
            self.feed(line)

    def on_line(self, callback: LineCallback) -> Callable[[], None]:
        return self._lines.add(callback)

    def on_error(self, callback: ErrorCallback) -> Callable[[], None]:
        return self._errors.add(callback)

    @property
    def is_open(self) -> bool:
        return self._open

    # === Test hooks ===

    def feed(self, line: str) -> None:
        """Deliver an inbound line as if the stage had sent it."""
        for callback in self._lines.snapshot():
            callback(line)

    def emit_error(self, error: Exception) -> None:
        """Simulate an asynchronous transport failure (cable pulled)."""
        self._open = False
        for callback in self._errors.snapshot():
            callback(error)

    def reply_to(self, prefix: str, *lines: str) -> None:
        """Override the reply for commands starting with prefix."""
        self._replies[prefix.upper()] = list(lines)

    def clear_history(self) -> None:
        """Clear sent commands history."""
        self.sent_commands.clear()

    # === Simulation ===

    def _respond(self, gcode: str) -> List[str]:
        """Lines the simulated stage answers with. Scripted replies win."""
        code = gcode.strip().upper()
        for prefix, lines in self._replies.items():
            if code.startswith(prefix):
                return list(lines)
        if not self.auto_reply:
            return []

        word = code.split(" ", 1)[0]
        if word in ("G0", "G1"):
            self._simulate_move(code)
            return ["ok"]
        if word == "G28":
            self._simulate_home(code)
            return ["ok"]
        if word == "G90":
            self.relative_mode = False
            return ["ok"]
        if word == "G91":
            self.relative_mode = True
            return ["ok"]
        if word == "M114":
            p = self.position
            return [f"X:{p.x:.2f} Y:{p.y:.2f} Z:{p.z:.2f} E:0.00 Count X:0 Y:0 Z:0", "ok"]
        if word == "M115":
            return [f"FIRMWARE_NAME:{self.firmware}", "ok"]
        return ["ok"]

    def _simulate_move(self, gcode: str) -> None:
        """Parse G0/G1 and update simulated position."""
        values = {}
        for axis in ("X", "Y", "Z"):
            match = re.search(rf"{axis}([-+\d.]+)", gcode)
            if match:
                values[axis.lower()] = float(match.group(1))

        if self.relative_mode:
            self.position = self.position.offset(
                values.get("x"), values.get("y"), values.get("z"))
        else:
            self.position = self.position.with_axes(
                values.get("x"), values.get("y"), values.get("z"))

    def _simulate_home(self, gcode: str) -> None:
        axes = [a for a in ("X", "Y", "Z") if a in gcode]
        if not axes:
            self.position = ORIGIN
            return
        self.position = self.position.with_axes(
            0.0 if "X" in axes else None,
            0.0 if "Y" in axes else None,
            0.0 if "Z" in axes else None,
        )
