"""
Command Correlator - matches unframed reply lines to the one command in flight.

The stage's 'ok' and 'Error:' lines carry no command identifier, so the
only thing tying a reply to a command is order: exactly one command may
be outstanding at a time. The correlator owns that single slot.

Three sources race to resolve the slot: an 'ok' line, an 'Error:' line
(both from the transport reader thread) and the timeout timer. Disconnect
and transport errors can also abort it. All of them go through _resolve(),
which clears the slot under a lock only if it still holds the same
PendingCommand, so whichever fires first wins and the rest are no-ops.
"""

from __future__ import annotations

import math
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, List, Optional

from .errors import (
    Busy,
    CommandTimeout,
    DeviceReportedError,
    NotConnected,
    StageError,
    TransportError,
)
from .logger import log_critical, log_info, log_ok, log_warn
from .transcript import CommandResult, Transcript
from .types import LineKind, classify_line, error_message


ErrorObserver = Callable[[StageError], None]
LineObserver = Callable[[str], None]


@dataclass(eq=False)
class PendingCommand:
    """The single command awaiting resolution."""
    command: str
    timeout: float
    issued_at: datetime = field(default_factory=datetime.now)
    started: float = field(default_factory=time.monotonic)
    done: threading.Event = field(default_factory=threading.Event)
    timer: Optional[threading.Timer] = None
    error: Optional[StageError] = None

    @property
    def elapsed(self) -> float:
        return time.monotonic() - self.started


class CommandCorrelator:
    """
    Serializes command issuance and resolves each command exactly once.

    Idle when _pending is None, awaiting otherwise. The correlator never
    queues: a second issue() while awaiting fails with Busy.
    """

    def __init__(
        self,
        write_line: Callable[[str], None],
        is_connected: Callable[[], bool],
        transcript: Optional[Transcript] = None,
    ):
        self._write_line = write_line
        self._is_connected = is_connected
        self._transcript = transcript or Transcript()
        self._pending: Optional[PendingCommand] = None
        # Trailing 'ok' lines still owed by commands resolved on write
        self._owed_acks = 0
        self._lock = threading.Lock()
        self._line_observers: List[LineObserver] = []
        self._error_observers: List[ErrorObserver] = []
        self._observer_lock = threading.Lock()

    # =========================================================================
    # Properties
    # =========================================================================

    @property
    def is_busy(self) -> bool:
        return self._pending is not None

    @property
    def pending_command(self) -> Optional[str]:
        pending = self._pending
        return pending.command if pending else None

    @property
    def is_connected(self) -> bool:
        return self._is_connected()

    @property
    def transcript(self) -> Transcript:
        return self._transcript

    # =========================================================================
    # Issuing
    # =========================================================================

    def issue(self, command: str, timeout: float, expects_ack: bool = True) -> None:
        """
        Send one command and block until it resolves.

        Returns on 'ok'. Raises DeviceReportedError, CommandTimeout,
        TransportError or Disconnected otherwise. Raises NotConnected or
        Busy without touching the wire.

        Commands with expects_ack=False resolve as soon as the write
        succeeds. The 'ok' the stage still sends for them is discarded
        instead of completing the next command.
        """
        if not command or "\n" in command or "\r" in command:
            raise ValueError(f"Command must be a single non-empty line: {command!r}")
        if timeout is None or not math.isfinite(timeout) or timeout <= 0:
            raise ValueError(f"Timeout must be a positive number of seconds, got {timeout!r}")

        pending = self._claim(command, timeout)

        pending.timer = threading.Timer(timeout, self._on_timeout, args=(pending,))
        pending.timer.daemon = True
        pending.timer.start()

        self._transcript.record_sent(command)
        try:
            self._write_line(command)
        except TransportError as e:
            self._resolve(pending, e)
        except Exception as e:
            self._resolve(pending, TransportError(str(e)))
        else:
            if not expects_ack:
                self._resolve(pending, None, ack_owed=True)

        pending.done.wait()
        if pending.error is not None:
            raise pending.error

    def _claim(self, command: str, timeout: float) -> PendingCommand:
        """Take the slot or fail fast"""
        with self._lock:
            if not self._is_connected():
                raise NotConnected()
            if self._pending is not None:
                log_warn(f"Busy: '{command}' rejected, '{self._pending.command}' in flight")
                raise Busy(self._pending.command)
            pending = PendingCommand(command=command, timeout=timeout)
            self._pending = pending
            return pending

    # =========================================================================
    # Inbound lines
    # =========================================================================

    def handle_line(self, line: str) -> None:
        """
        Classify one inbound line. Called by the transport reader in
        arrival order.
        """
        line = line.strip()
        if not line:
            return
        self._transcript.record_received(line)

        kind = classify_line(line)
        if kind is LineKind.COMPLETION:
            pending = self._take_completion()
            if pending is not None:
                self._resolve(pending, None)
        elif kind is LineKind.ERROR:
            error = DeviceReportedError(error_message(line))
            pending = self._pending
            if pending is None or not self._resolve(pending, error):
                log_warn(f"Device error with no command pending: {error.message}")
                self.publish_error(error)

        self._notify_lines(line)

    # =========================================================================
    # Resolution
    # =========================================================================

    def abort(self, error: StageError) -> bool:
        """
        Resolve whatever is pending with error.

        Used by disconnect and transport failures. Returns False if nothing
        was pending.
        """
        pending = self._pending
        if pending is None:
            return False
        return self._resolve(pending, error)

    def _on_timeout(self, pending: PendingCommand) -> None:
        """Timer thread entry. No-op if pending already resolved."""
        self._resolve(pending, CommandTimeout(pending.command, pending.timeout))

    def _take_completion(self) -> Optional[PendingCommand]:
        """Command an 'ok' belongs to, or None if the ok was owed earlier"""
        with self._lock:
            if self._owed_acks:
                self._owed_acks -= 1
                log_info("Discarded trailing 'ok' of an earlier command")
                return None
            return self._pending

    def _resolve(
        self,
        pending: PendingCommand,
        error: Optional[StageError],
        ack_owed: bool = False,
    ) -> bool:
        """
        Clear the slot and wake the caller.

        The only place the slot is cleared. Returns False when pending is no
        longer the current command, which makes late callers no-ops.
        ack_owed records that the stage will still send an 'ok' for it.
        """
        with self._lock:
            if self._pending is not pending:
                return False
            self._pending = None
            if ack_owed:
                self._owed_acks += 1
            if pending.timer is not None:
                pending.timer.cancel()
            pending.error = error

        self._record(pending, error)
        pending.done.set()
        return True

    def _record(self, pending: PendingCommand, error: Optional[StageError]) -> None:
        self._transcript.record_result(CommandResult(
            gcode=pending.command,
            issued_at=pending.issued_at,
            duration=pending.elapsed,
            success=error is None,
            error=str(error) if error else None,
            error_type=type(error).__name__ if error else None,
        ))
        if error is None:
            log_ok(f"'{pending.command}' completed in {pending.elapsed:.3f}s")
        else:
            log_critical(f"'{pending.command}' failed: {error}")

    # =========================================================================
    # Observers
    # =========================================================================

    def subscribe_lines(self, callback: LineObserver) -> Callable[[], None]:
        """Every inbound line, after correlation."""
        return self._subscribe(self._line_observers, callback)

    def subscribe_errors(self, callback: ErrorObserver) -> Callable[[], None]:
        """Errors not tied to a pending command."""
        return self._subscribe(self._error_observers, callback)

    def publish_error(self, error: StageError) -> None:
        """Push an out-of-band error to error observers"""
        with self._observer_lock:
            observers = list(self._error_observers)
        for callback in observers:
            try:
                callback(error)
            except Exception as e:
                log_critical(f"Error observer failed: {e}")

    def _subscribe(self, observers: list, callback: Callable) -> Callable[[], None]:
        with self._observer_lock:
            observers.append(callback)

        def unsubscribe():
            with self._observer_lock:
                if callback in observers:
                    observers.remove(callback)

        return unsubscribe

    def _notify_lines(self, line: str) -> None:
        with self._observer_lock:
            observers = list(self._line_observers)
        for callback in observers:
            try:
                callback(line)
            except Exception as e:
                log_critical(f"Line observer failed: {e}")
