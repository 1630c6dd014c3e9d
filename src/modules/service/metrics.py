from typing import Callable, Dict

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, generate_latest
from prometheus_client.exposition import CONTENT_TYPE_LATEST

from ..resilience.circuit_breaker import BreakerPhase, BreakerState
from ..shutdown.coordinator import ShutdownSummary

PHASE_VALUES: Dict[BreakerPhase, int] = {
    BreakerPhase.CLOSED: 0,
    BreakerPhase.HALF_OPEN: 1,
    BreakerPhase.OPEN: 2,
}


class ResilienceMetrics:
    """Prometheus metrics for circuit breakers, retries and shutdown."""

    content_type = CONTENT_TYPE_LATEST

    def __init__(
        self,
        breaker_states: Callable[[], Dict[str, BreakerState]],
        shutting_down: Callable[[], bool],
        prefix: str = "lifeline",
    ):
        """
        Args:
            breaker_states: Returns a snapshot of every circuit breaker, read on each scrape
            shutting_down: Returns whether shutdown is in progress
            prefix: Metric name prefix
        """
        self._breaker_states = breaker_states
        self._shutting_down = shutting_down
        self.registry = CollectorRegistry()

        self.breaker_phase = Gauge(
            f'{prefix}_circuit_breaker_state',
            'Circuit breaker phase (0=closed, 1=half-open, 2=open)',
            ['key'],
            registry=self.registry
        )
        self.breaker_failures = Gauge(
            f'{prefix}_circuit_breaker_failures',
            'Consecutive failures recorded by the circuit breaker',
            ['key'],
            registry=self.registry
        )
        self.attempts_total = Counter(
            f'{prefix}_operation_attempts_total',
            'Operation attempts made by the resilient executor',
            ['key', 'outcome'],
            registry=self.registry
        )
        self.shutdown_in_progress = Gauge(
            f'{prefix}_shutdown_in_progress',
            'Whether a graceful shutdown is running',
            registry=self.registry
        )
        self.shutdown_handler_duration = Histogram(
            f'{prefix}_shutdown_handler_duration_seconds',
            'Duration of shutdown handlers in seconds',
            ['handler', 'outcome'],
            registry=self.registry
        )

    def record_attempt(self, key: str, outcome: str) -> None:
        self.attempts_total.labels(key=key, outcome=outcome).inc()

    def record_shutdown(self, summary: ShutdownSummary) -> None:
        for outcome in summary.outcomes:
            if outcome.success:
                label = "completed"
            elif outcome.timed_out:
                label = "timeout"
            else:
                label = "failed"
            self.shutdown_handler_duration.labels(
                handler=outcome.name,
                outcome=label
            ).observe(outcome.duration)

    def refresh(self) -> None:
        """Copy the current breaker and shutdown state into the gauges."""
        for key, state in self._breaker_states().items():
            self.breaker_phase.labels(key=key).set(PHASE_VALUES[state.phase])
            self.breaker_failures.labels(key=key).set(state.failure_count)
        self.shutdown_in_progress.set(1 if self._shutting_down() else 0)

    def render(self) -> bytes:
        self.refresh()
        return generate_latest(self.registry)
