"""
Connection Routes - Ports, connect/disconnect, status, history, error feed
"""

from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from core.transport import SerialOptions
from ..dependencies import get_app_state, AppState

router = APIRouter(tags=["connection"])


class SerialOptionsModel(BaseModel):
    baud_rate: int = 115200
    data_bits: int = Field(8, ge=5, le=8)
    stop_bits: float = 1
    parity: str = "none"


class ConnectRequest(BaseModel):
    port: str
    options: Optional[SerialOptionsModel] = None


@router.get("/ports")
def get_ports(state: AppState = Depends(get_app_state)):
    """List available serial ports."""
    return {"ports": state.controller.list_ports()}


@router.get("/status")
def get_status(state: AppState = Depends(get_app_state)):
    """Get current connection status and stage state."""
    return state.get_status()


@router.get("/history")
def get_history(limit: int = 50, state: AppState = Depends(get_app_state)):
    """Get recent command history."""
    return {"history": state.get_command_history(limit)}


@router.get("/errors")
def get_errors(limit: int = 50, state: AppState = Depends(get_app_state)):
    """Errors reported outside of any request."""
    return {"errors": state.get_errors(limit)}


@router.post("/connect")
def connect(req: ConnectRequest, state: AppState = Depends(get_app_state)):
    """Connect to the stage and run the startup handshake."""
    options = SerialOptions(**req.options.model_dump()) if req.options else None
    state.controller.connect(req.port, options)
    return {"success": True, "message": f"Connected to {req.port}", "status": state.get_status()}


@router.post("/disconnect")
def disconnect(state: AppState = Depends(get_app_state)):
    """Disconnect from the stage."""
    state.controller.disconnect()
    return {"success": True}
