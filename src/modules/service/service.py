from typing import Any, Callable, Dict, Optional, TypeVar, Union

from ..logging import BaseLogger
from ..resilience.circuit_breaker import BreakerState, CircuitBreakerRegistry
from ..resilience.config import RetryConfig
from ..resilience.executor import Operation, ResilientExecutor
from ..shutdown.coordinator import ShutdownCoordinator, ShutdownSummary
from .config import ServiceConfig
from .metrics import ResilienceMetrics

T = TypeVar('T')


class ResilienceService:
    """Owns the breaker registry, executor and shutdown coordinator of one hosting service.

    Nothing here is global: two services in the same process have separate
    breakers and separate handler lists.
    """

    def __init__(
        self,
        config: ServiceConfig,
        logger: BaseLogger,
        terminate: Optional[Callable[[int], Any]] = None,
    ):
        """
        Args:
            config: Service configuration
            logger: Logger shared by all components
            terminate: Overrides how the watchdog terminates the process
        """
        self.config = config
        self.logger = logger
        self.registry = CircuitBreakerRegistry(config.circuit_breaker, logger)
        self.metrics = ResilienceMetrics(
            breaker_states=self.registry.get_all_states,
            shutting_down=self.is_shutdown_in_progress,
        )
        self.executor = ResilientExecutor(
            self.registry,
            logger,
            defaults=config.retry,
            on_attempt=self.metrics.record_attempt,
        )

        coordinator_options: Dict[str, Any] = {
            "grace_period": config.shutdown.grace_period,
            "default_handler_timeout": config.shutdown.default_handler_timeout,
            "on_summary": self.metrics.record_shutdown,
        }
        if terminate is not None:
            coordinator_options["terminate"] = terminate
        self.coordinator = ShutdownCoordinator(logger, **coordinator_options)

    def register_shutdown_handler(
        self,
        name: str,
        priority: int,
        action: Callable[[], Any],
        timeout: Optional[float] = None,
    ) -> None:
        self.coordinator.register_handler(name, action, priority=priority, timeout=timeout)

    async def execute_with_retry(
        self,
        operation: Operation[T],
        config: Union[RetryConfig, Dict[str, Any], None] = None,
        key: Optional[str] = None,
        **overrides: Any,
    ) -> T:
        return await self.executor.execute_with_retry(operation, config, key, **overrides)

    def get_circuit_breaker_state(self, key: str) -> Optional[BreakerState]:
        return self.registry.get_state(key)

    def get_all_circuit_breaker_states(self) -> Dict[str, BreakerState]:
        return self.registry.get_all_states()

    def is_shutdown_in_progress(self) -> bool:
        return self.coordinator.is_shutdown_in_progress()

    async def trigger_shutdown(self, reason: str) -> ShutdownSummary:
        return await self.coordinator.trigger(reason)
