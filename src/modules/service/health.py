from typing import Any, Dict, Optional

from aiohttp import web

from ..logging import BaseLogger
from ..resilience.circuit_breaker import BreakerPhase
from .config import HealthServerConfig
from .service import ResilienceService


class HealthServer:
    """HTTP endpoints for liveness, readiness and Prometheus metrics."""

    def __init__(self, service: ResilienceService, config: HealthServerConfig, logger: BaseLogger):
        self.service = service
        self.config = config
        self.logger = logger
        self._runner: Optional[web.AppRunner] = None

    def create_app(self) -> web.Application:
        app = web.Application()
        app.router.add_get("/health", self.handle_health)
        app.router.add_get("/ready", self.handle_ready)
        app.router.add_get("/metrics", self.handle_metrics)
        return app

    def health_report(self) -> Dict[str, Any]:
        states = self.service.get_all_circuit_breaker_states()
        shutting_down = self.service.is_shutdown_in_progress()

        if shutting_down:
            status = "shutting_down"
        elif any(state.phase != BreakerPhase.CLOSED for state in states.values()):
            status = "degraded"
        else:
            status = "healthy"

        return {
            "status": status,
            "service": self.service.config.name,
            "shutting_down": shutting_down,
            "circuit_breakers": {key: state.to_dict() for key, state in states.items()},
        }

    async def handle_health(self, request: web.Request) -> web.Response:
        return web.json_response(self.health_report())

    async def handle_ready(self, request: web.Request) -> web.Response:
        if self.service.is_shutdown_in_progress():
            return web.json_response({"ready": False}, status=503)
        return web.json_response({"ready": True})

    async def handle_metrics(self, request: web.Request) -> web.Response:
        response = web.Response(body=self.service.metrics.render())
        response.headers["Content-Type"] = self.service.metrics.content_type
        return response

    async def start(self) -> None:
        self._runner = web.AppRunner(self.create_app())
        await self._runner.setup()
        site = web.TCPSite(self._runner, self.config.host, self.config.port)
        await site.start()
        self.logger.log_info(f"Health server listening on {self.config.host}:{self.config.port}")

    async def stop(self) -> None:
        if self._runner is not None:
            await self._runner.cleanup()
            self._runner = None
            self.logger.log_info("Health server stopped")
