"""
Command transcript.

In-memory, bounded audit of everything that crossed the wire and of how
each command resolved. Nothing is persisted.
"""

from __future__ import annotations

import threading
from collections import deque
from dataclasses import dataclass
from datetime import datetime
from typing import Deque, List, Optional


@dataclass(frozen=True)
class TranscriptLine:
    """One line sent ('>>>') or received ('<<<')."""
    direction: str
    text: str
    timestamp: datetime

    def __str__(self) -> str:
        return f"[{self.timestamp:%H:%M:%S}] {self.direction} {self.text}"


@dataclass(frozen=True)
class CommandResult:
    """
    How one issued command resolved.

    error is None on success, otherwise the message of the failure the
    caller received.
    """
    gcode: str
    issued_at: datetime
    duration: float
    success: bool
    error: Optional[str] = None
    error_type: Optional[str] = None

    def __str__(self) -> str:
        status = "✓" if self.success else "✗"
        outcome = "ok" if self.success else f"{self.error_type}: {self.error}"
        return f"[{self.issued_at:%H:%M:%S}] {status} {self.gcode} → {outcome}"

    def to_dict(self) -> dict:
        return {
            "gcode": self.gcode,
            "issued_at": self.issued_at.isoformat(),
            "duration": round(self.duration, 4),
            "success": self.success,
            "error": self.error,
            "error_type": self.error_type,
        }


class Transcript:
    """Thread-safe ring buffers of lines and command results."""

    def __init__(self, max_lines: int = 1000, max_results: int = 500):
        self._lines: Deque[TranscriptLine] = deque(maxlen=max_lines)
        self._results: Deque[CommandResult] = deque(maxlen=max_results)
        self._lock = threading.Lock()

    def record_sent(self, text: str) -> None:
        self._append_line(">>>", text)

    def record_received(self, text: str) -> None:
        self._append_line("<<<", text)

    def _append_line(self, direction: str, text: str) -> None:
        with self._lock:
            self._lines.append(TranscriptLine(direction, text, datetime.now()))

    def record_result(self, result: CommandResult) -> None:
        with self._lock:
            self._results.append(result)

    def lines(self, limit: Optional[int] = None) -> List[TranscriptLine]:
        with self._lock:
            items = list(self._lines)
        return _tail(items, limit)

    def results(self, limit: Optional[int] = None) -> List[CommandResult]:
        """
        Get command results, oldest first.

        Args:
            limit: Optional max number of recent entries to return.
        """
        with self._lock:
            items = list(self._results)
        return _tail(items, limit)

    def last_result(self) -> Optional[CommandResult]:
        with self._lock:
            return self._results[-1] if self._results else None

    def clear(self) -> None:
        with self._lock:
            self._lines.clear()
            self._results.clear()


def _tail(items: list, limit: Optional[int]) -> list:
    if limit is None:
        return items
    return items[-limit:] if limit > 0 else []
