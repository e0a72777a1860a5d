"""Minimal HTTP status endpoint for the hosting platform's health checks."""

from __future__ import annotations

import logging
import threading
import time
from datetime import datetime, timezone
from zoneinfo import ZoneInfo

import uvicorn
from fastapi import FastAPI

logger = logging.getLogger(__name__)


def create_health_app(tz: ZoneInfo, started_at: float | None = None) -> FastAPI:
    started = time.monotonic() if started_at is None else started_at
    app = FastAPI(title="Insurance Tracker", docs_url=None, redoc_url=None)

    @app.get("/")
    def status():
        now = datetime.now(timezone.utc).astimezone(tz)
        return {
            "status": "online",
            "bot": "Insurance Tracker",
            "serverTime": now.strftime("%Y-%m-%d %H:%M:%S"),
            "uptime": round(time.monotonic() - started, 3),
        }

    return app


class HealthServer:
    """Runs uvicorn on a daemon thread beside the Socket Mode loop."""

    def __init__(self, app: FastAPI, port: int, host: str = "0.0.0.0") -> None:
        config = uvicorn.Config(app, host=host, port=port, log_level="warning")
        self._server = uvicorn.Server(config)
        self._thread = threading.Thread(target=self._server.run, name="health-server", daemon=True)
        self.port = port

    def start(self) -> None:
        logger.info("Health endpoint listening on port %d", self.port)
        self._thread.start()

    def stop(self) -> None:
        logger.info("Stopping health endpoint")
        self._server.should_exit = True
