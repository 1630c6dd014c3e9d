import asyncio
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar, Union

from .circuit_breaker import CircuitBreakerRegistry
from .config import DEFAULT_OPERATION_KEY, RetryConfig
from .errors import CircuitOpenError
from ..logging import BaseLogger

T = TypeVar('T')

Operation = Callable[[], Awaitable[T]]
AttemptListener = Callable[[str, str], None]


class ResilientExecutor:
    """Runs fallible async operations with exponential backoff and a per-key circuit breaker."""

    def __init__(
        self,
        registry: CircuitBreakerRegistry,
        logger: BaseLogger,
        defaults: Optional[RetryConfig] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        on_attempt: Optional[AttemptListener] = None,
    ):
        """Initialize the executor.

        Args:
            registry: Circuit breaker registry consulted and updated per operation key
            logger: Logger instance for retry and breaker events
            defaults: Retry policy used when a call does not override it
            sleep: Coroutine used to wait between attempts
            on_attempt: Optional callback receiving (key, outcome) after every attempt,
                where outcome is "success", "failure" or "rejected"
        """
        self.registry = registry
        self.logger = logger
        self.defaults = defaults or RetryConfig()
        self._sleep = sleep
        self._on_attempt = on_attempt

    async def execute_with_retry(
        self,
        operation: Operation[T],
        config: Union[RetryConfig, Dict[str, Any], None] = None,
        key: Optional[str] = None,
        **overrides: Any,
    ) -> T:
        """Execute `operation` with retries.

        Args:
            operation: Zero-argument callable returning an awaitable
            config: Partial retry policy merged over the executor defaults
            key: Operation key scoping circuit breaker state
            **overrides: Individual RetryConfig fields, applied after `config`

        Returns:
            The operation's result

        Raises:
            CircuitOpenError: If the breaker for `key` is open; the operation is not invoked
            Exception: The last error raised by the operation once attempts are exhausted
                or `should_retry` rejected it
        """
        policy = self.defaults.merged(config)
        if overrides:
            policy = policy.merged(overrides)
        breaker_key = key or DEFAULT_OPERATION_KEY

        if self.registry.is_open(breaker_key):
            self._notify(breaker_key, "rejected")
            state = self.registry.get_state(breaker_key)
            raise CircuitOpenError(breaker_key, state.next_attempt_time if state else None)

        for attempt in range(1, policy.max_attempts + 1):
            try:
                result = await operation()
            except Exception as err:
                self.logger.log_warning(
                    f"Attempt {attempt}/{policy.max_attempts} failed for {breaker_key}: {err}"
                )
                self.registry.record_failure(breaker_key)
                self._notify(breaker_key, "failure")

                if attempt == policy.max_attempts:
                    raise

                if policy.should_retry is not None and not policy.should_retry(err):
                    self.logger.log_info("Error not retryable, stopping attempts")
                    raise

                delay = policy.delay_for(attempt)
                self.logger.log_debug(f"Waiting {delay}s before retry")
                await self._sleep(delay)
                continue

            self.registry.reset_on_success(breaker_key)
            self._notify(breaker_key, "success")
            if attempt > 1:
                self.logger.log_info(f"Operation succeeded on attempt {attempt}")
            return result

        raise RuntimeError(f"No attempts were made for {breaker_key}")

    def _notify(self, key: str, outcome: str) -> None:
        if self._on_attempt is not None:
            self._on_attempt(key, outcome)
