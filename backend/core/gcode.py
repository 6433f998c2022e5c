"""
G-Code Builder - Single responsibility: turning motion intents into G-code

Pure mapping, no I/O. The numeric grammar the stage accepts is an optional
sign, digits and at most one decimal point, so numbers are never rendered
in exponent notation.
"""

import math
import re
from decimal import Decimal
from typing import Optional

from .types import (
    FirmwareInfoCommand,
    GoHomeCommand,
    MotionParameters,
    MoveCommand,
    PositioningModeCommand,
    PositionQueryCommand,
    RawCommand,
    SetHomeCommand,
)


NUMBER_PATTERN = re.compile(r"^[+-]?(\d+\.?\d*|\.\d+)$")

# Commands answered in the same turn, without a trailing 'ok' we wait for
NO_ACK_PREFIXES = ("M114",)


def format_number(value: float) -> str:
    """
    Render a coordinate or speed for the wire.

    Integral values drop the decimal point (12.0 -> "12"), others use the
    shortest decimal that parses back to the same float (12.5 -> "12.5").
    """
    value = float(value)
    if not math.isfinite(value):
        raise ValueError(f"Cannot format non-finite value {value!r}")
    if value == 0:
        return "0"
    text = format(Decimal(repr(value)), "f")
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text


def parse_number(text: str) -> float:
    """Parse a number the way the stage firmware does."""
    if not NUMBER_PATTERN.match(text):
        raise ValueError(f"Not a valid stage number: {text!r}")
    return float(text)


def expects_ack(command_text: str) -> bool:
    """Whether raw command text is resolved by an 'ok' line."""
    head = command_text.strip().upper()
    return not head.startswith(NO_ACK_PREFIXES)


class GCodeBuilder:
    """Builds G-code commands from structured intents"""

    @staticmethod
    def set_home(x: bool = True, y: bool = True, z: bool = True) -> SetHomeCommand:
        """G28 with the selected axes"""
        return SetHomeCommand(x=x, y=y, z=z)

    @staticmethod
    def go_home() -> GoHomeCommand:
        """G28 - home all axes"""
        return GoHomeCommand()

    @staticmethod
    def move(x: Optional[float] = None,
             y: Optional[float] = None,
             z: Optional[float] = None,
             params: MotionParameters = MotionParameters(),
             rapid: bool = False) -> MoveCommand:
        """
        Build a G0/G1 move.

        Works for absolute and relative moves alike; the positioning mode
        decides how the stage reads the values.
        """
        return MoveCommand(x=x, y=y, z=z, speed=params.speed, rapid=rapid)

    @staticmethod
    def relative_mode() -> PositioningModeCommand:
        """Set relative positioning"""
        return PositioningModeCommand(relative=True)

    @staticmethod
    def absolute_mode() -> PositioningModeCommand:
        """Set absolute positioning"""
        return PositioningModeCommand(relative=False)

    @staticmethod
    def firmware_info() -> FirmwareInfoCommand:
        """M115 - startup handshake"""
        return FirmwareInfoCommand()

    @staticmethod
    def position_query() -> PositionQueryCommand:
        """M114 - query current position"""
        return PositionQueryCommand()

    @staticmethod
    def raw(text: str) -> RawCommand:
        """Free-form command, classified by its code"""
        return RawCommand(text=text, expects_ack=expects_ack(text))

    @staticmethod
    def with_speed(params: MotionParameters, speed: float) -> MotionParameters:
        """
        Speed update. Produces no wire command; the value rides along on
        the next move as F<speed>.
        """
        speed = float(speed)
        if not math.isfinite(speed) or speed < 0:
            raise ValueError(f"Speed must be a finite number >= 0, got {speed!r}")
        return params.with_speed(speed)
