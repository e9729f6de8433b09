"""Health check HTTP server for container orchestration."""

from __future__ import annotations

import json
import logging
import threading
from datetime import UTC, datetime
from http.server import BaseHTTPRequestHandler, HTTPServer

logger = logging.getLogger(__name__)

# Global state for health checks; only the scheduler thread writes to it
service_state: dict = {
    "service": None,
    "status": "starting",
    "last_run": None,
    "last_status": None,
    "last_error": None,
    "cycles_completed": 0,
    "cycles_failed": 0,
}

_READY_STATES = ("ready", "running", "idle")


def reset_state(service: str | None = None) -> None:
    service_state.update(
        service=service,
        status="starting",
        last_run=None,
        last_status=None,
        last_error=None,
        cycles_completed=0,
        cycles_failed=0,
    )


def set_status(status: str) -> None:
    service_state["status"] = status


def record_cycle(status: str, message: str) -> None:
    """Record the outcome of one cycle."""
    service_state["last_run"] = datetime.now(UTC).isoformat(timespec="seconds")
    service_state["last_status"] = status
    if status == "success":
        service_state["cycles_completed"] += 1
        service_state["last_error"] = None
    else:
        service_state["cycles_failed"] += 1
        service_state["last_error"] = message
    service_state["status"] = "idle"


class HealthHandler(BaseHTTPRequestHandler):
    """HTTP handler for health check endpoints."""

    def log_message(self, format, *args):
        pass  # Suppress default request logging

    def do_GET(self):
        if self.path in ("/health", "/"):
            self._respond(200, {"healthy": True, **service_state})
        elif self.path == "/ready":
            if service_state["status"] in _READY_STATES:
                self._respond(200, {"ready": True})
            else:
                self._respond(503, {"ready": False, "status": service_state["status"]})
        elif self.path == "/live":
            self._respond(200, {"alive": True})
        else:
            self._respond(404, {"error": "not found"})

    def _respond(self, code: int, data: dict):
        self.send_response(code)
        self.send_header("Content-Type", "application/json")
        self.end_headers()
        self.wfile.write(json.dumps(data).encode())


def start_health_server(port: int, host: str = "0.0.0.0") -> HTTPServer:
    """Start health check HTTP server in a daemon thread."""
    server = HTTPServer((host, port), HealthHandler)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    logger.info(f"Health server started on port {server.server_port}")
    return server
