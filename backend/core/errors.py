"""
Stage errors - every failure a caller of the stage client can see.
"""

from typing import Optional


class StageError(Exception):
    """Base class for all stage client failures"""
    pass


class NotConnected(StageError):
    """Raised when a command is issued while the session is not connected"""

    def __init__(self, message: str = "Not connected to stage"):
        super().__init__(message)


class AlreadyConnected(StageError):
    """Raised by connect() when the session is not disconnected"""

    def __init__(self, message: str = "Already connected to stage"):
        super().__init__(message)


class Busy(StageError):
    """Raised when a command is issued while another one is still pending"""

    def __init__(self, pending_command: Optional[str] = None):
        self.pending_command = pending_command
        detail = f" (waiting on '{pending_command}')" if pending_command else ""
        super().__init__(f"Another command is in flight{detail}")


class TransportError(StageError):
    """Serial transport failure: open, write, read or close"""

    def __init__(self, detail: str):
        self.detail = detail
        super().__init__(f"Transport error: {detail}")


class DeviceReportedError(StageError):
    """The stage answered the pending command with an 'Error:' line"""

    def __init__(self, message: str):
        self.message = message
        super().__init__(f"Device error: {message}")


class CommandTimeout(StageError):
    """No completion or error marker arrived before the deadline"""

    def __init__(self, command: str, duration: float):
        self.command = command
        self.duration = duration
        super().__init__(f"Command '{command}' timed out after {duration:g}s")


class Disconnected(StageError):
    """The pending command was aborted by an explicit disconnect"""

    def __init__(self, command: Optional[str] = None):
        self.command = command
        what = f"'{command}'" if command else "Command"
        super().__init__(f"{what} aborted by disconnect")
