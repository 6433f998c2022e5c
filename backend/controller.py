"""
Stage Controller - Main facade for the system.

Provides the operations callers use: connection, homing, speed, absolute
and relative moves, raw commands. Keeps the client-side state the wire
protocol does not: the speed appended to moves and a cache of the last
commanded position.
"""

from __future__ import annotations

import re
import threading
from typing import Any, Callable, Dict, List, Optional

from core.errors import StageError
from core.gcode import GCodeBuilder
from core.logger import log_info, log_move, log_ok, log_pos
from core.serial_transport import SerialTransport
from core.session import StageSession
from core.transcript import CommandResult, TranscriptLine
from core.transport import SerialOptions
from core.types import ORIGIN, MotionParameters, Position


POSITION_REPORT = re.compile(r"X:\s*([-+\d.]+)\s+Y:\s*([-+\d.]+)\s+Z:\s*([-+\d.]+)")


class StageController:
    """
    High-level API for the 3-axis stage.

    - Connection lifecycle (delegated to StageSession)
    - Homing
    - Absolute and relative moves with the current speed
    - Raw command passthrough
    - Cached position, history and error feed
    """

    def __init__(self, session: Optional[StageSession] = None):
        self._session = session or StageSession()
        self._builder = GCodeBuilder()
        self._params = MotionParameters()
        self._position: Position = ORIGIN
        self._last_report: Optional[str] = None
        self._state_lock = threading.Lock()
        self._session.on_line(self._watch_reports)

    # =========================================================================
    # Properties
    # =========================================================================

    @property
    def session(self) -> StageSession:
        return self._session

    @property
    def position(self) -> Position:
        """Last commanded position (not read back from the stage)."""
        return self._position

    @property
    def is_connected(self) -> bool:
        return self._session.is_connected

    @staticmethod
    def list_ports() -> List[dict]:
        """Serial ports visible to the OS."""
        return SerialTransport.list_ports()

    # =========================================================================
    # Connection
    # =========================================================================

    def connect(self, port: str, options: Optional[SerialOptions] = None) -> None:
        """Open port and handshake. Position cache starts at origin."""
        self._session.connect(port, options)
        self._set_position(ORIGIN)

    def disconnect(self) -> None:
        self._session.disconnect()

    def on_error(self, callback: Callable[[StageError], None]) -> Callable[[], None]:
        """Errors not tied to the command a caller is waiting on."""
        return self._session.on_error(callback)

    # =========================================================================
    # Homing
    # =========================================================================

    def set_home(self, x: bool = True, y: bool = True, z: bool = True) -> None:
        """Home the selected axes (G28 X0 Y0 Z0)."""
        if not (x or y or z):
            raise ValueError("At least one axis must be selected")
        log_move(f"Setting home for axes {''.join(a for a, on in zip('XYZ', (x, y, z)) if on)}")
        self._run(self._builder.set_home(x, y, z))
        self._set_position(self._position.with_axes(
            0.0 if x else None, 0.0 if y else None, 0.0 if z else None))

    def go_home(self) -> None:
        """Move to home position (G28)."""
        log_move("Going to home position")
        self._run(self._builder.go_home())
        self._set_position(ORIGIN)
        log_ok("Homing complete")

    # =========================================================================
    # Speed
    # =========================================================================

    def set_speed(self, speed: float) -> None:
        """
        Store the speed used for following moves (mm/min).

        Sends nothing; 0 leaves the F parameter off.
        """
        self._params = self._builder.with_speed(self._params, speed)
        log_info(f"Speed set to {self._params.speed:g} mm/min")

    def get_speed(self) -> float:
        return self._params.speed

    # =========================================================================
    # Movement
    # =========================================================================

    def absolute_move(
        self,
        x: Optional[float] = None,
        y: Optional[float] = None,
        z: Optional[float] = None,
        rapid: bool = False,
    ) -> Position:
        """
        Move to absolute coordinates. Omitted axes keep their value.

        Returns the new cached position.
        """
        command = self._builder.move(x, y, z, self._params, rapid)
        log_move(f"Absolute move to {_axes(x, y, z)}")
        self._run(command)
        return self._set_position(self._position.with_axes(x, y, z))

    def relative_move(
        self,
        dx: Optional[float] = None,
        dy: Optional[float] = None,
        dz: Optional[float] = None,
        rapid: bool = False,
    ) -> Position:
        """
        Move by the given distances (G91 / move / G90).

        Returns the new cached position.
        """
        command = self._builder.move(dx, dy, dz, self._params, rapid)
        link = self._session.require_link()
        link.sequencer.relative_move(
            command,
            on_moved=lambda: self._set_position(self._position.offset(dx, dy, dz)),
        )
        return self._position

    # =========================================================================
    # Raw commands & queries
    # =========================================================================

    def send_command(self, text: str, timeout: Optional[float] = None) -> None:
        """Send free-form G-code and wait for it to resolve."""
        self._run(self._builder.raw(text), timeout)

    def query_position(self) -> Optional[Position]:
        """
        Send M114. The report line arrives after the call returns, so this
        gives back the most recent report seen, if any.
        """
        self._run(self._builder.position_query())
        return self.reported_position()

    def reported_position(self) -> Optional[Position]:
        """Position from the last M114-style report line seen."""
        report = self._last_report
        if report is None:
            return None
        match = POSITION_REPORT.search(report)
        return Position(*(float(v) for v in match.groups())) if match else None

    # =========================================================================
    # Status & History
    # =========================================================================

    def status(self) -> Dict[str, Any]:
        """Get current controller status."""
        reported = self.reported_position()
        return {
            "state": self._session.state.value,
            "connected": self.is_connected,
            "port": self._session.port,
            "position": self._position.to_dict(),
            "reported_position": reported.to_dict() if reported else None,
            "speed": self._params.speed,
            "busy": self._is_busy(),
        }

    def history(self, limit: Optional[int] = None) -> List[CommandResult]:
        """Command outcomes, oldest first."""
        return self._session.transcript.results(limit)

    def transcript(self, limit: Optional[int] = None) -> List[TranscriptLine]:
        """Raw lines sent and received, oldest first."""
        return self._session.transcript.lines(limit)

    # =========================================================================
    # Internals
    # =========================================================================

    def _run(self, command, timeout: Optional[float] = None) -> None:
        self._session.require_link().sequencer.run(command, timeout)

    def _watch_reports(self, line: str) -> None:
        if POSITION_REPORT.search(line):
            self._last_report = line
            log_pos(f"Reported: {line}")

    def _set_position(self, position: Position) -> Position:
        with self._state_lock:
            self._position = position
        return position

    def _is_busy(self) -> bool:
        link = self._session.link
        return link is not None and link.correlator.is_busy


def _axes(x: Optional[float], y: Optional[float], z: Optional[float]) -> str:
    parts = [f"{name}={value:g}" for name, value in (("X", x), ("Y", y), ("Z", z)) if value is not None]
    return " ".join(parts) if parts else "(none)"
