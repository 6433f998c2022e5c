"""
Movement Routes - Home, speed, absolute/relative moves, raw commands
"""

from typing import Optional

from fastapi import APIRouter
from pydantic import BaseModel, Field

from ..dependencies import require_connection, get_app_state

router = APIRouter(tags=["movement"])


class SetHomeRequest(BaseModel):
    x: bool = True
    y: bool = True
    z: bool = True


class SpeedRequest(BaseModel):
    speed: float = Field(..., ge=0)


class AbsoluteMoveRequest(BaseModel):
    x: Optional[float] = None
    y: Optional[float] = None
    z: Optional[float] = None
    rapid: bool = False


class RelativeMoveRequest(BaseModel):
    dx: Optional[float] = None
    dy: Optional[float] = None
    dz: Optional[float] = None
    rapid: bool = False


class CommandRequest(BaseModel):
    command: str = Field(..., min_length=1)
    timeout: Optional[float] = Field(None, gt=0)


@router.post("/home/set")
def set_home(req: SetHomeRequest):
    """Home the selected axes (G28 X0 Y0 Z0)."""
    ctrl = require_connection()
    ctrl.set_home(req.x, req.y, req.z)
    return {"success": True, "position": ctrl.position.to_dict()}


@router.post("/home")
def go_home():
    """
    Move to home position.

    Sends G28.
    """
    ctrl = require_connection()
    ctrl.go_home()
    return {"success": True, "position": ctrl.position.to_dict()}


@router.get("/speed")
def get_speed():
    """Speed appended to moves (mm/min, 0 = firmware default)."""
    return {"speed": get_app_state().controller.get_speed()}


@router.post("/speed")
def set_speed(req: SpeedRequest):
    """Set the speed used by following moves. Sends nothing."""
    ctrl = get_app_state().controller
    ctrl.set_speed(req.speed)
    return {"success": True, "speed": ctrl.get_speed()}


@router.post("/move/absolute")
def absolute_move(req: AbsoluteMoveRequest):
    """Move to absolute coordinates; omitted axes stay put."""
    ctrl = require_connection()
    position = ctrl.absolute_move(req.x, req.y, req.z, rapid=req.rapid)
    return {"success": True, "position": position.to_dict()}


@router.post("/move/relative")
def relative_move(req: RelativeMoveRequest):
    """Move by distances (G91, move, G90)."""
    ctrl = require_connection()
    position = ctrl.relative_move(req.dx, req.dy, req.dz, rapid=req.rapid)
    return {"success": True, "position": position.to_dict()}


@router.post("/command")
def send_command(req: CommandRequest):
    """Send raw G-code and wait for it to complete."""
    ctrl = require_connection()
    ctrl.send_command(req.command, req.timeout)
    return {"success": True}


@router.get("/position")
def get_position():
    """Cached position plus the last position report seen."""
    ctrl = get_app_state().controller
    reported = ctrl.reported_position()
    return {
        "success": True,
        "position": ctrl.position.to_dict(),
        "reported": reported.to_dict() if reported else None,
    }
