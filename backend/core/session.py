"""
Session - Single responsibility: connection lifecycle and startup handshake

Every connect() builds a fresh StageLink (transport + correlator +
sequencer). disconnect() and transport failures tear it down; a link is
never reopened in place.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Callable, List, Optional

from .correlator import CommandCorrelator
from .errors import (
    AlreadyConnected,
    Disconnected,
    NotConnected,
    StageError,
    TransportError,
)
from .gcode import GCodeBuilder
from .logger import log_critical, log_link, log_ok, log_warn
from .sequencer import MoveSequencer
from .transcript import Transcript
from .transport import LineTransport, SerialOptions
from .types import ConnectionState


TransportFactory = Callable[[str], LineTransport]
ErrorObserver = Callable[[StageError], None]


@dataclass
class SessionSettings:
    """Timing settings (seconds)"""
    startup_delay: float = 2.0  # Boards reset when the port opens
    handshake_timeout: float = 5.0
    command_timeout: float = 30.0


def default_transport_factory(port: str) -> LineTransport:
    """'mock' gets the simulated stage, anything else a serial port"""
    if port == "mock":
        from .transport import MockTransport
        return MockTransport()
    from .serial_transport import SerialTransport
    return SerialTransport()


class StageLink:
    """One open connection. Discarded after disconnect."""

    def __init__(self, port: str, transport: LineTransport, correlator: CommandCorrelator,
                 sequencer: MoveSequencer):
        self.port = port
        self.transport = transport
        self.correlator = correlator
        self.sequencer = sequencer
        self.unsubscribers: List[Callable[[], None]] = []

    def detach(self) -> None:
        for unsubscribe in self.unsubscribers:
            unsubscribe()
        self.unsubscribers.clear()


class StageSession:
    """
    Owns ConnectionState and the current StageLink.

    Out-of-band errors (device errors with nothing pending, transport
    failures, failed compensation) go to on_error observers, which outlive
    individual links.
    """

    def __init__(
        self,
        transport_factory: TransportFactory = default_transport_factory,
        settings: Optional[SessionSettings] = None,
        transcript: Optional[Transcript] = None,
    ):
        self._transport_factory = transport_factory
        self.settings = settings or SessionSettings()
        self.transcript = transcript or Transcript()
        self._state = ConnectionState.DISCONNECTED
        self._link: Optional[StageLink] = None
        self._lock = threading.RLock()
        self._error_observers: List[ErrorObserver] = []
        self._line_observers: List[Callable[[str], None]] = []

    # =========================================================================
    # Properties
    # =========================================================================

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state is ConnectionState.CONNECTED

    @property
    def port(self) -> Optional[str]:
        link = self._link
        return link.port if link else None

    @property
    def link(self) -> Optional[StageLink]:
        return self._link

    @property
    def transport(self) -> Optional[LineTransport]:
        link = self._link
        return link.transport if link else None

    def require_link(self) -> StageLink:
        """Current link, or NotConnected"""
        link = self._link
        if link is None or not self.is_connected:
            raise NotConnected()
        return link

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def connect(self, port: str, options: Optional[SerialOptions] = None) -> None:
        """
        Open the port and run the M115 handshake.

        Returns once the stage has answered the handshake. Raises
        AlreadyConnected, TransportError, or the handshake's failure.
        A disconnect() while connecting aborts the attempt with
        Disconnected.
        """
        with self._lock:
            if self._state is not ConnectionState.DISCONNECTED:
                raise AlreadyConnected()
            link = self._build_link(port)
            # Registered before open so disconnect() can abort the attempt
            self._link = link
            self._state = ConnectionState.CONNECTING

        log_link(f"Connecting to {port}")
        try:
            link.transport.open(port, options)
        except StageError:
            self._abandon(link)
            raise
        except Exception as e:
            self._abandon(link)
            raise TransportError(f"Failed to open {port}: {e}") from e

        with self._lock:
            current = self._link is link
            if current:
                self._state = ConnectionState.CONNECTED
        if not current:
            self._close_quietly(link)
            raise Disconnected()
        log_link(f"Port {port} open")

        if self.settings.startup_delay > 0:
            time.sleep(self.settings.startup_delay)
        if self._link is not link:
            raise Disconnected()

        try:
            handshake = GCodeBuilder.firmware_info()
            link.sequencer.run(handshake, timeout=self.settings.handshake_timeout)
        except StageError as e:
            log_critical(f"Handshake with {port} failed: {e}")
            self._teardown(link, Disconnected(handshake.to_gcode()), close_errors="log")
            raise

        log_ok(f"Connected to stage on {port}")

    def disconnect(self) -> None:
        """
        Abort any pending command, close the port, drop the link.

        No-op when already disconnected.
        """
        link = self._link
        if link is None:
            return

        self._teardown(link, Disconnected(link.correlator.pending_command), close_errors="raise")
        log_link("Disconnected")

    def _handle_transport_error(self, link: StageLink, error: Exception) -> None:
        """Reader-thread callback: drop to DISCONNECTED right away"""
        if not isinstance(error, TransportError):
            error = TransportError(str(error))
        log_critical(f"Transport failure on {link.port}: {error}")

        if self._teardown(link, error, close_errors="log"):
            self._publish_error(error)

    def _teardown(self, link: StageLink, pending_error: StageError, close_errors: str) -> bool:
        """
        Detach link and resolve its pending command with pending_error.

        Returns False if link was already torn down.
        """
        with self._lock:
            if self._link is not link:
                return False
            self._link = None
            self._state = ConnectionState.DISCONNECTED

        link.detach()
        link.correlator.abort(pending_error)

        try:
            link.transport.close()
        except TransportError as e:
            if close_errors == "raise":
                raise
            log_warn(f"Error closing {link.port}: {e}")
        return True

    def _build_link(self, port: str) -> StageLink:
        transport = self._transport_factory(port)
        correlator = CommandCorrelator(
            write_line=transport.write_line,
            is_connected=lambda: self._link is link and self.is_connected,
            transcript=self.transcript,
        )
        sequencer = MoveSequencer(correlator, self.settings.command_timeout)
        link = StageLink(port, transport, correlator, sequencer)

        link.unsubscribers.append(transport.on_line(correlator.handle_line))
        link.unsubscribers.append(
            transport.on_error(lambda error: self._handle_transport_error(link, error)))
        link.unsubscribers.append(correlator.subscribe_errors(self._publish_error))
        link.unsubscribers.append(correlator.subscribe_lines(self._publish_line))
        return link

    def _abandon(self, link: StageLink) -> None:
        """Drop a link whose port never opened"""
        with self._lock:
            if self._link is not link:
                return
            self._link = None
            self._state = ConnectionState.DISCONNECTED
        link.detach()

    def _close_quietly(self, link: StageLink) -> None:
        try:
            link.transport.close()
        except TransportError as e:
            log_warn(f"Error closing {link.port}: {e}")

    # =========================================================================
    # Error channel
    # =========================================================================

    def on_error(self, callback: ErrorObserver) -> Callable[[], None]:
        """Subscribe to errors not tied to a pending command"""
        with self._lock:
            self._error_observers.append(callback)

        def unsubscribe():
            with self._lock:
                if callback in self._error_observers:
                    self._error_observers.remove(callback)

        return unsubscribe

    def _publish_error(self, error: StageError) -> None:
        with self._lock:
            observers = list(self._error_observers)
        for callback in observers:
            try:
                callback(error)
            except Exception as e:
                log_critical(f"Error observer failed: {e}")

    def on_line(self, callback: Callable[[str], None]) -> Callable[[], None]:
        """Subscribe to every inbound line, across reconnects"""
        with self._lock:
            self._line_observers.append(callback)

        def unsubscribe():
            with self._lock:
                if callback in self._line_observers:
                    self._line_observers.remove(callback)

        return unsubscribe

    def _publish_line(self, line: str) -> None:
        with self._lock:
            observers = list(self._line_observers)
        for callback in observers:
            try:
                callback(line)
            except Exception as e:
                log_critical(f"Line observer failed: {e}")
