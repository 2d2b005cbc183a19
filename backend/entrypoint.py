"""
Entrypoint for running the backend server under uvicorn.
"""
import uvicorn

from wishsync.core.config import settings
from wishsync.main import app

if __name__ == "__main__":
    uvicorn.run(
        app,
        host="0.0.0.0",
        port=8000,
        ws_ping_interval=settings.ws_ping_interval_seconds,
        ws_ping_timeout=settings.ws_ping_timeout_seconds,
    )
