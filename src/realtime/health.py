"""Health check endpoints for the realtime transport.

Exposes the read-only health snapshot over HTTP for local dashboards and
debugging tools.
"""

import logging
import time

from aiohttp import web

from src.realtime.lifecycle import RealtimeWebRTCTransport

logger = logging.getLogger(__name__)


class HealthCheckHandler:
    """Health check handler for one transport.

    Provides:
    - /health: 200 when the control channel is open, else 503
    - /liveness: 200 while the process runs
    - /health/snapshot: the full health snapshot
    """

    def __init__(self, transport: RealtimeWebRTCTransport) -> None:
        self.transport = transport
        self.start_time = time.time()

    async def health_check(self, request: web.Request) -> web.Response:
        """Health check endpoint.

        Response format:
        {
            "status": "healthy" | "unhealthy",
            "uptime_seconds": float,
            "phase": str,
            "mode": str,
            "channel_open": bool
        }
        """
        healthy = self.transport.is_connected
        snapshot = self.transport.health

        response_data = {
            "status": "healthy" if healthy else "unhealthy",
            "uptime_seconds": time.time() - self.start_time,
            "phase": snapshot["phase"],
            "mode": snapshot["mode"],
            "channel_open": healthy,
        }

        logger.debug("Health check performed", extra={"status": response_data["status"]})

        return web.json_response(response_data, status=200 if healthy else 503)

    async def liveness_check(self, request: web.Request) -> web.Response:
        """Liveness check endpoint.

        Returns OK if the process is running, even when disconnected.
        """
        return web.json_response(
            {
                "status": "alive",
                "uptime_seconds": time.time() - self.start_time,
            },
            status=200,
        )

    async def snapshot(self, request: web.Request) -> web.Response:
        """Full health snapshot (pc, ice, dc, mode, phase, commit/reply times)."""
        return web.json_response(self.transport.health, status=200)


def setup_health_routes(app: web.Application, transport: RealtimeWebRTCTransport) -> None:
    """Set up health check routes on application.

    Args:
        app: aiohttp Application instance
        transport: Transport whose health is reported
    """
    handler = HealthCheckHandler(transport)

    app.router.add_get("/health", handler.health_check)
    app.router.add_get("/liveness", handler.liveness_check)
    app.router.add_get("/health/snapshot", handler.snapshot)

    logger.info("Health check endpoints configured: /health, /liveness, /health/snapshot")
