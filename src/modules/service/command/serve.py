from typing import Any, Callable, Optional

from ...logging import BaseLogger
from ..config import ServiceConfig
from ..health import HealthServer
from ..probe import ProbeGroup
from ..service import ResilienceService

# Cleanup order: stop accepting traffic, then stop outbound work
HEALTH_SERVER_PRIORITY = 0
PROBES_PRIORITY = 10


class ServeCommand:
    """Command class for running the service until it is told to stop."""

    def __init__(
        self,
        logger: BaseLogger,
        config: ServiceConfig,
        terminate: Optional[Callable[[int], Any]] = None,
    ):
        """
        Initialize the serve command.

        Args:
            logger: Logger instance
            config: Validated service configuration
            terminate: Overrides how a hung shutdown terminates the process
        """
        self.logger = logger
        self.config = config
        self.service = ResilienceService(config, logger, terminate=terminate)
        self.health_server = HealthServer(self.service, config.health, logger)
        self.probes = ProbeGroup(config.probes, self.service, logger)

    def _register_handlers(self) -> None:
        timeout = self.config.shutdown.handler_timeout
        if self.config.health.enabled:
            self.service.register_shutdown_handler(
                "health_server", HEALTH_SERVER_PRIORITY, self.health_server.stop, timeout
            )
        self.service.register_shutdown_handler(
            "dependency_probes", PROBES_PRIORITY, self.probes.stop, timeout
        )

    async def _serve(self) -> None:
        self._register_handlers()
        if self.config.health.enabled:
            await self.health_server.start()
        await self.probes.start()
        self.logger.log_info(f"Service {self.config.name} running, press Ctrl+C to stop")
        await self.service.coordinator.wait_for_shutdown()

    def run(self) -> int:
        """Run until a signal or fatal error triggers shutdown. Returns the exit code."""
        return self.service.coordinator.run_async_with_signals(self._serve())
