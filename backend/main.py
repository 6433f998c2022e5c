"""
Stage Controller - Main Entry Point

Run with: uvicorn main:app --reload --port 8000
"""

import os
import sys
from pathlib import Path

# Add backend to path for imports
backend_path = Path(__file__).parent
sys.path.insert(0, str(backend_path))

import uvicorn
from fastapi import FastAPI
from fastapi.staticfiles import StaticFiles

from api.app import create_app
from api.dependencies import get_app_state
from core.errors import StageError
from core.logger import LogLevel, mute


def create_full_app() -> FastAPI:
    """Create the full application with static file serving"""

    app = create_app()

    # === Health Check ===

    @app.get("/health")
    def health_check():
        """Health check endpoint"""
        state = get_app_state()
        return {
            "status": "ok",
            "version": "1.0.0",
            "connected": state.is_connected,
        }

    # === Startup/Shutdown Events ===

    @app.on_event("startup")
    async def startup_event():
        """Initialize on startup"""
        if os.environ.get("STAGE_QUIET_SERIAL"):
            mute(LogLevel.SERIAL)

        state = get_app_state()
        print("=" * 50)
        print("  Stage Controller v1.0")
        print("=" * 50)
        print()
        print("Timing:")
        print(f"  Startup delay: {state.settings.startup_delay:.1f}s")
        print(f"  Handshake timeout: {state.settings.handshake_timeout:.1f}s")
        print(f"  Command timeout: {state.settings.command_timeout:.1f}s")
        print()
        print("API ready at http://localhost:8000")
        print("Docs at http://localhost:8000/docs")
        print()

    @app.on_event("shutdown")
    async def shutdown_event():
        """Cleanup on shutdown"""
        state = get_app_state()
        if state.is_connected:
            print("[SHUTDOWN] Disconnecting from stage...")
            try:
                state.controller.disconnect()
            except StageError as e:
                print(f"[SHUTDOWN] Error during cleanup: {e}")

    # Mount frontend (if exists)
    frontend_path = backend_path.parent / "frontend" / "build"
    if frontend_path.exists():
        app.mount("/", StaticFiles(directory=str(frontend_path), html=True), name="frontend")

    return app


# Create app instance
app = create_full_app()


# === Run directly ===

if __name__ == "__main__":
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
    )
