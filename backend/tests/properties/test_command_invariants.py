"""
Property-Based Tests for Command Invariants.

These tests verify that command rendering and reply correlation hold
for ANY input, not just hand-picked examples.
"""

from hypothesis import given, settings, HealthCheck
from hypothesis import strategies as st

from core.correlator import CommandCorrelator
from core.errors import DeviceReportedError
from core.gcode import NUMBER_PATTERN, format_number, parse_number
from core.types import MoveCommand


# =============================================================================
# Hypothesis Strategies
# =============================================================================


finite_floats = st.floats(allow_nan=False, allow_infinity=False, min_value=-1e6, max_value=1e6)
optional_axis = st.one_of(st.none(), finite_floats)


@st.composite
def move_command(draw: st.DrawFn) -> MoveCommand:
    """A move with at least one axis set."""
    x, y, z = draw(optional_axis), draw(optional_axis), draw(optional_axis)
    if x is None and y is None and z is None:
        x = draw(finite_floats)
    speed = draw(st.floats(min_value=0, max_value=1e5))
    return MoveCommand(x=x, y=y, z=z, speed=speed, rapid=draw(st.booleans()))


inbound_line = st.one_of(
    st.just("ok"),
    st.builds(lambda m: f"Error: {m}", st.text(alphabet="abc XYZ", max_size=10)),
    st.sampled_from(["echo:busy", "X:1.00 Y:2.00 Z:3.00", "OK", "okay", "start"]),
)


# =============================================================================
# Number Formatting
# =============================================================================


class TestNumberFormatting:

    @given(value=st.floats(allow_nan=False, allow_infinity=False))
    def test_format_parses_back(self, value):
        """Every finite float survives format/parse unchanged."""
        text = format_number(value)
        assert parse_number(text) == value

    @given(value=st.floats(allow_nan=False, allow_infinity=False))
    def test_format_matches_device_grammar(self, value):
        """No exponents, no stray characters."""
        assert NUMBER_PATTERN.match(format_number(value))


# =============================================================================
# Move Rendering
# =============================================================================


class TestMoveRendering:

    @given(cmd=move_command())
    def test_only_given_axes_rendered(self, cmd):
        words = cmd.to_gcode().split(" ")
        letters = [w[0] for w in words[1:]]

        for axis, value in (("X", cmd.x), ("Y", cmd.y), ("Z", cmd.z)):
            assert (axis in letters) == (value is not None)
        assert ("F" in letters) == (cmd.speed > 0)

    @given(cmd=move_command())
    def test_rendered_values_round_trip(self, cmd):
        words = cmd.to_gcode().split(" ")
        assert words[0] == ("G0" if cmd.rapid else "G1")

        values = {w[0]: parse_number(w[1:]) for w in words[1:]}
        for axis, value in (("X", cmd.x), ("Y", cmd.y), ("Z", cmd.z)):
            if value is not None:
                assert values[axis] == value

    @given(cmd=move_command())
    def test_single_line(self, cmd):
        assert "\n" not in cmd.to_gcode()


# =============================================================================
# Correlation
# =============================================================================


class TestExactlyOnceResolution:

    @settings(max_examples=50, suppress_health_check=[HealthCheck.too_slow])
    @given(lines=st.lists(inbound_line, max_size=8))
    def test_each_command_resolves_once(self, lines):
        """
        Whatever lines follow the command, exactly one result is recorded
        and the correlator ends up idle.
        """
        orphans = []

        def write_line(text):
            for line in lines:
                corr.handle_line(line)

        corr = CommandCorrelator(write_line=write_line, is_connected=lambda: True)
        corr.subscribe_errors(orphans.append)

        first_marker = next(
            (l for l in lines if l == "ok" or l.startswith("Error:")), None)
        try:
            corr.issue("G28", timeout=0.01)
            outcome = "ok"
        except DeviceReportedError:
            outcome = "error"
        except Exception as e:
            outcome = type(e).__name__

        results = corr.transcript.results()
        assert len(results) == 1
        assert not corr.is_busy

        if first_marker is None:
            assert outcome == "CommandTimeout"
        elif first_marker == "ok":
            assert outcome == "ok"
        else:
            assert outcome == "error"

        # Every error line after the resolving one is reported out of band
        markers = [l for l in lines if l == "ok" or l.startswith("Error:")]
        late_errors = [l for l in markers[1:] if l.startswith("Error:")]
        assert len(orphans) == len(late_errors)
