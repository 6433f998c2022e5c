"""
Structured logging for the stage controller.

Prefixes:
  ⚡ CRITICAL - Failed commands, transport faults
  ⚠️  WARN     - Busy rejections, orphan device errors, mode restores
  ✓  OK       - Completed commands
  →  MOVE     - Movement commands
  ⬡  SERIAL   - Raw serial I/O ('>>>' sent, '<<<' received)
  🔌 LINK     - Connection lifecycle
  📍 POS      - Position reports from the stage

The reader thread, timeout timers and callers all log, so lines are
printed under a lock to keep them whole.
"""

import threading
from datetime import datetime
from enum import Enum
from typing import Optional


class LogLevel(Enum):
    CRITICAL = "⚡ CRITICAL"
    WARN = "⚠️  WARN    "
    OK = "✓  OK      "
    MOVE = "→  MOVE    "
    SERIAL = "⬡  SERIAL  "
    LINK = "🔌 LINK    "
    POS = "📍 POS     "
    INFO = "ℹ  INFO    "


_print_lock = threading.Lock()
_muted: set = set()


def mute(*levels: LogLevel) -> None:
    """Stop printing the given levels (e.g. SERIAL on a chatty stage)."""
    _muted.update(levels)


def unmute(*levels: LogLevel) -> None:
    _muted.difference_update(levels)


def log(level: LogLevel, message: str, data: Optional[dict] = None):
    """Log a message with structured prefix."""
    if level in _muted:
        return
    timestamp = datetime.now().strftime("%H:%M:%S.%f")[:-3]

    line = f"[{timestamp}] {level.value} | {message}"
    if data:
        line += f" | {data}"

    with _print_lock:
        print(line, flush=True)


# Convenience functions
def log_critical(msg: str, data: Optional[dict] = None):
    log(LogLevel.CRITICAL, msg, data)

def log_warn(msg: str, data: Optional[dict] = None):
    log(LogLevel.WARN, msg, data)

def log_ok(msg: str, data: Optional[dict] = None):
    log(LogLevel.OK, msg, data)

def log_move(msg: str, data: Optional[dict] = None):
    log(LogLevel.MOVE, msg, data)

def log_serial(direction: str, line: str):
    log(LogLevel.SERIAL, f"{direction} {line}")

def log_link(msg: str, data: Optional[dict] = None):
    log(LogLevel.LINK, msg, data)

def log_pos(msg: str, data: Optional[dict] = None):
    log(LogLevel.POS, msg, data)

def log_info(msg: str, data: Optional[dict] = None):
    log(LogLevel.INFO, msg, data)
