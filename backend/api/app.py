"""
FastAPI App Factory - Creates and configures the app
"""

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from core.errors import (
    AlreadyConnected,
    Busy,
    CommandTimeout,
    DeviceReportedError,
    Disconnected,
    NotConnected,
    StageError,
    TransportError,
)
from .routes import connection_router, movement_router


# Most specific first
ERROR_STATUS = (
    (NotConnected, 400),
    (AlreadyConnected, 409),
    (Busy, 409),
    (Disconnected, 409),
    (DeviceReportedError, 422),
    (TransportError, 502),
    (CommandTimeout, 504),
)


def status_for(exc: StageError) -> int:
    for error_type, status in ERROR_STATUS:
        if isinstance(exc, error_type):
            return status
    return 500


def create_app() -> FastAPI:
    """Create and configure the FastAPI application"""

    app = FastAPI(
        title="Stage Controller API",
        description="REST API for the 3-axis G-code positioning stage",
        version="1.0.0",
    )

    # CORS - must be added first
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["http://localhost:5173", "http://127.0.0.1:5173"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(StageError)
    async def stage_error_handler(request: Request, exc: StageError):
        return JSONResponse(
            status_code=status_for(exc),
            content={"detail": str(exc), "error": type(exc).__name__},
        )

    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError):
        return JSONResponse(
            status_code=400,
            content={"detail": str(exc), "error": "ValueError"},
        )

    # Global exception handler to ensure CORS headers on errors
    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        return JSONResponse(
            status_code=500,
            content={"detail": str(exc)},
        )

    # Register routers with /api prefix
    app.include_router(connection_router, prefix="/api")
    app.include_router(movement_router, prefix="/api")

    return app
