"""
Move Sequencer - multi-command operations that look atomic to the caller.

A relative move is three wire commands: G91, the move, G90. Each one is
awaited before the next is sent. If the move fails, or G91 itself goes
unanswered, G90 is still attempted so the stage is not left in relative
mode; the caller always sees the first failure. A G91 the stage rejects
with an error skips the rest.
"""

from __future__ import annotations

from typing import Callable, Optional, TYPE_CHECKING

from .errors import CommandTimeout, StageError, TransportError
from .gcode import GCodeBuilder
from .logger import log_critical, log_move, log_warn
from .types import Command, MoveCommand

if TYPE_CHECKING:
    from .correlator import CommandCorrelator


class MoveSequencer:
    """Runs command sequences through one correlator"""

    def __init__(self, correlator: "CommandCorrelator", command_timeout: float):
        self._correlator = correlator
        self.command_timeout = command_timeout

    def run(self, command: Command, timeout: Optional[float] = None) -> None:
        """Issue a single command and wait for it."""
        self._correlator.issue(
            command.to_gcode(),
            timeout or self.command_timeout,
            expects_ack=command.expects_ack,
        )

    def relative_move(
        self,
        move: MoveCommand,
        on_moved: Optional[Callable[[], None]] = None,
    ) -> None:
        """
        G91 → move → G90.

        Raises the first failure. on_moved runs once the move itself has
        completed, before the mode is restored.
        """
        log_move(f"Relative move: {move.to_gcode()}")

        try:
            self.run(GCodeBuilder.relative_mode())
        except StageError as mode_error:
            # An unanswered G91 may still have been applied
            if self._mode_unknown(mode_error):
                self._restore_absolute(mode_error)
            raise

        try:
            self.run(move)
        except StageError as move_error:
            self._restore_absolute(move_error)
            raise

        if on_moved:
            on_moved()
        self.run(GCodeBuilder.absolute_mode())

    def _mode_unknown(self, error: StageError) -> bool:
        """A rejected G91 left the stage absolute; a lost one may not have"""
        if isinstance(error, CommandTimeout):
            return True
        return isinstance(error, TransportError) and self._correlator.is_connected

    def _restore_absolute(self, cause: StageError) -> None:
        """Best-effort G90 after a failed relative move"""
        log_warn(f"Relative move failed ({cause}), restoring absolute mode")
        try:
            self.run(GCodeBuilder.absolute_mode())
        except StageError as restore_error:
            log_critical(f"Failed to restore absolute positioning: {restore_error}")
            self._correlator.publish_error(restore_error)
