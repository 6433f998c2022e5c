"""
API Dependencies - Dependency injection for FastAPI

One StageController per process. Errors the stage reports outside of a
request (device errors with nothing pending, lost connection, failed mode
restore) are kept in a bounded feed for the UI to poll.
"""

from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Deque, Dict, List, Optional

from fastapi import HTTPException

from core.errors import StageError
from core.session import SessionSettings, StageSession
from controller import StageController


MAX_ERRORS = 100


@dataclass
class AppState:
    """Application state container."""
    settings: SessionSettings = field(default_factory=SessionSettings)
    controller: Optional[StageController] = None
    errors: Deque[Dict[str, Any]] = field(default_factory=lambda: deque(maxlen=MAX_ERRORS))

    def __post_init__(self):
        if self.controller is None:
            self.controller = StageController(StageSession(settings=self.settings))
        self.controller.on_error(self.record_error)

    @property
    def is_connected(self) -> bool:
        return self.controller.is_connected

    def record_error(self, error: StageError) -> None:
        self.errors.append({
            "error": type(error).__name__,
            "detail": str(error),
            "timestamp": datetime.now().isoformat(),
        })

    def get_errors(self, limit: int = 50) -> List[Dict[str, Any]]:
        items = list(self.errors)
        return items[-limit:] if limit > 0 else []

    def get_status(self) -> Dict[str, Any]:
        """Get current status for API."""
        return self.controller.status()

    def get_command_history(self, limit: int = 50) -> List[Dict[str, Any]]:
        """Get recent command history."""
        return [r.to_dict() for r in self.controller.history(limit)]


# Global instance
_app_state: Optional[AppState] = None


def get_app_state() -> AppState:
    """Get the global app state instance."""
    global _app_state
    if _app_state is None:
        _app_state = AppState()
    return _app_state


def set_app_state(state: Optional[AppState]) -> None:
    """Replace the global app state (tests, shutdown)."""
    global _app_state
    _app_state = state


def require_connection() -> StageController:
    """Get controller, raising error if not connected."""
    state = get_app_state()
    if not state.is_connected:
        raise HTTPException(status_code=400, detail="Not connected to stage")
    return state.controller
