"""
Unit tests for G-code building and number formatting.
"""

import math

import pytest

from core.gcode import GCodeBuilder, expects_ack, format_number, parse_number
from core.types import MotionParameters


class TestFormatNumber:

    @pytest.mark.parametrize("value,expected", [
        (0, "0"),
        (-0.0, "0"),
        (12.0, "12"),
        (12.5, "12.5"),
        (-3, "-3"),
        (0.1, "0.1"),
        (1e-7, "0.0000001"),
        (1e20, "100000000000000000000"),
        (1000, "1000"),
    ])
    def test_formats(self, value, expected):
        assert format_number(value) == expected

    def test_never_uses_exponent(self):
        assert "e" not in format_number(1.5e-10).lower()

    @pytest.mark.parametrize("value", [math.inf, -math.inf, math.nan])
    def test_rejects_non_finite(self, value):
        with pytest.raises(ValueError):
            format_number(value)


class TestParseNumber:

    @pytest.mark.parametrize("text,expected", [
        ("12", 12.0),
        ("-3.5", -3.5),
        ("+2", 2.0),
        (".5", 0.5),
        ("5.", 5.0),
    ])
    def test_parses(self, text, expected):
        assert parse_number(text) == expected

    @pytest.mark.parametrize("text", ["", "1e5", "1.2.3", "abc", "--1", "."])
    def test_rejects(self, text):
        with pytest.raises(ValueError):
            parse_number(text)


class TestExpectsAck:

    def test_regular_commands(self):
        assert expects_ack("G28")
        assert expects_ack("G1 X10")

    def test_position_query(self):
        assert not expects_ack("M114")
        assert not expects_ack("  m114 ")


class TestGCodeBuilder:

    def test_move_uses_speed(self):
        cmd = GCodeBuilder.move(x=12.5, y=-3, params=MotionParameters(speed=1000))
        assert cmd.to_gcode() == "G1 X12.5 Y-3 F1000"

    def test_move_rapid(self):
        assert GCodeBuilder.move(z=1, rapid=True).to_gcode() == "G0 Z1"

    def test_home_commands(self):
        assert GCodeBuilder.go_home().to_gcode() == "G28"
        assert GCodeBuilder.set_home().to_gcode() == "G28 X0 Y0 Z0"
        assert GCodeBuilder.set_home(x=False, y=False).to_gcode() == "G28 Z0"

    def test_modes(self):
        assert GCodeBuilder.relative_mode().to_gcode() == "G91"
        assert GCodeBuilder.absolute_mode().to_gcode() == "G90"

    def test_raw_classifies_ack(self):
        assert GCodeBuilder.raw("M115").expects_ack
        assert not GCodeBuilder.raw("M114").expects_ack

    def test_with_speed(self):
        assert GCodeBuilder.with_speed(MotionParameters(), 2500).speed == 2500

    @pytest.mark.parametrize("speed", [-1, math.inf, math.nan])
    def test_with_speed_rejects(self, speed):
        with pytest.raises(ValueError):
            GCodeBuilder.with_speed(MotionParameters(), speed)
