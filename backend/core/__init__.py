"""Core infrastructure layer - transport, correlation, sequencing, session"""

from .correlator import CommandCorrelator
from .gcode import GCodeBuilder
from .session import SessionSettings, StageSession
from .transport import MockTransport, SerialOptions

__all__ = [
    'CommandCorrelator', 'GCodeBuilder', 'SessionSettings', 'StageSession',
    'MockTransport', 'SerialOptions',
]
