"""
Core immutable types for the stage controller.

All commands are frozen dataclasses that render themselves to G-code.
Formatting of numbers lives in gcode.py so every command renders
coordinates the same way.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, replace
from enum import Enum
from typing import Optional, Protocol


# =============================================================================
# Connection & Line Types
# =============================================================================


class ConnectionState(Enum):
    """Session lifecycle. Owned by StageSession."""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class LineKind(Enum):
    """Classification of an inbound line."""
    COMPLETION = "completion"
    ERROR = "error"
    INFO = "info"


COMPLETION_MARKER = "ok"
ERROR_PREFIX = "Error:"


def classify_line(line: str) -> LineKind:
    """Classify a trimmed inbound line."""
    if line == COMPLETION_MARKER:
        return LineKind.COMPLETION
    if line.startswith(ERROR_PREFIX):
        return LineKind.ERROR
    return LineKind.INFO


def error_message(line: str) -> str:
    """Text after the 'Error:' prefix, trimmed."""
    return line[len(ERROR_PREFIX):].strip()


# =============================================================================
# Position Types
# =============================================================================


@dataclass(frozen=True)
class Position:
    """
    Immutable 3D position in mm.

    Only a cache of the last commanded target; the stage itself is the
    source of truth.
    """
    x: float = 0.0
    y: float = 0.0
    z: float = 0.0

    def with_axes(
        self,
        x: Optional[float] = None,
        y: Optional[float] = None,
        z: Optional[float] = None,
    ) -> Position:
        """New position with the given axes replaced; None keeps the axis."""
        return Position(
            self.x if x is None else x,
            self.y if y is None else y,
            self.z if z is None else z,
        )

    def offset(
        self,
        dx: Optional[float] = None,
        dy: Optional[float] = None,
        dz: Optional[float] = None,
    ) -> Position:
        """New position moved by the given deltas."""
        return Position(
            self.x + (dx or 0.0),
            self.y + (dy or 0.0),
            self.z + (dz or 0.0),
        )

    def distance_to(self, other: Position) -> float:
        """Euclidean distance to another position."""
        return math.sqrt(
            (self.x - other.x) ** 2 +
            (self.y - other.y) ** 2 +
            (self.z - other.z) ** 2
        )

    def to_dict(self) -> dict:
        """Serialize to dictionary."""
        return {"x": self.x, "y": self.y, "z": self.z}

    @classmethod
    def from_dict(cls, d: dict) -> Position:
        """Deserialize from dictionary."""
        return cls(x=d["x"], y=d["y"], z=d["z"])


ORIGIN = Position(0.0, 0.0, 0.0)


@dataclass(frozen=True)
class MotionParameters:
    """
    Client-side motion parameters.

    The firmware keeps no persistent speed register we rely on, so the
    speed is appended to every move instead of being sent on its own.
    """
    speed: float = 0.0

    def with_speed(self, speed: float) -> MotionParameters:
        return replace(self, speed=speed)


# =============================================================================
# Command Protocol & Types
# =============================================================================


class Command(Protocol):
    """Protocol for all G-code commands."""

    expects_ack: bool

    def to_gcode(self) -> str:
        """Convert to G-code string."""
        ...


@dataclass(frozen=True)
class MoveCommand:
    """
    Linear move (G1) or rapid move (G0).

    Axes not specified are left out of the G-code (stage keeps its value).
    Used for both absolute and relative moves; the positioning mode is
    switched separately with PositioningModeCommand.
    """
    x: Optional[float] = None
    y: Optional[float] = None
    z: Optional[float] = None
    speed: float = 0.0
    rapid: bool = False
    expects_ack: bool = True

    def __post_init__(self):
        if self.x is None and self.y is None and self.z is None:
            raise ValueError("MoveCommand requires at least one axis (x, y, or z)")
        for name, value in (("x", self.x), ("y", self.y), ("z", self.z), ("speed", self.speed)):
            if value is not None and not math.isfinite(value):
                raise ValueError(f"{name} must be a finite number, got {value!r}")

    def to_gcode(self) -> str:
        from .gcode import format_number

        parts = ["G0" if self.rapid else "G1"]
        if self.x is not None:
            parts.append(f"X{format_number(self.x)}")
        if self.y is not None:
            parts.append(f"Y{format_number(self.y)}")
        if self.z is not None:
            parts.append(f"Z{format_number(self.z)}")
        if self.speed > 0:
            parts.append(f"F{format_number(self.speed)}")
        return " ".join(parts)


@dataclass(frozen=True)
class GoHomeCommand:
    """Home all axes (G28)."""
    expects_ack: bool = True

    def to_gcode(self) -> str:
        return "G28"


@dataclass(frozen=True)
class SetHomeCommand:
    """Home the selected axes (G28 X0 Y0 Z0)."""
    x: bool = True
    y: bool = True
    z: bool = True
    expects_ack: bool = True

    def to_gcode(self) -> str:
        parts = ["G28"]
        if self.x:
            parts.append("X0")
        if self.y:
            parts.append("Y0")
        if self.z:
            parts.append("Z0")
        return " ".join(parts)


@dataclass(frozen=True)
class PositioningModeCommand:
    """Switch between absolute (G90) and relative (G91) positioning."""
    relative: bool
    expects_ack: bool = True

    def to_gcode(self) -> str:
        return "G91" if self.relative else "G90"


@dataclass(frozen=True)
class FirmwareInfoCommand:
    """Firmware info query (M115). Used as the startup handshake."""
    expects_ack: bool = True

    def to_gcode(self) -> str:
        return "M115"


@dataclass(frozen=True)
class PositionQueryCommand:
    """
    Position query (M114).

    Answered in the same turn with a position report; resolved as soon as
    it is written instead of waiting for 'ok'.
    """
    expects_ack: bool = False

    def to_gcode(self) -> str:
        return "M114"


@dataclass(frozen=True)
class RawCommand:
    """Free-form command text typed by the caller."""
    text: str
    expects_ack: bool = True

    def __post_init__(self):
        if not self.text or not self.text.strip():
            raise ValueError("Command text must not be empty")
        if "\n" in self.text or "\r" in self.text:
            raise ValueError("Command text must be a single line")

    def to_gcode(self) -> str:
        return self.text.strip()
