import time
from dataclasses import dataclass, replace
from enum import Enum
from typing import Callable, Dict, Optional

from .config import CircuitBreakerConfig
from ..logging import BaseLogger


class BreakerPhase(str, Enum):
    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"


@dataclass
class BreakerState:
    """Circuit breaker state for a single operation key. Times are POSIX seconds."""
    phase: BreakerPhase = BreakerPhase.CLOSED
    failure_count: int = 0
    last_failure_time: float = 0.0
    next_attempt_time: float = 0.0

    @property
    def is_clean(self) -> bool:
        return self.phase == BreakerPhase.CLOSED and self.failure_count == 0

    def to_dict(self) -> Dict[str, object]:
        return {
            "phase": self.phase.value,
            "failure_count": self.failure_count,
            "last_failure_time": self.last_failure_time,
            "next_attempt_time": self.next_attempt_time,
        }


class CircuitBreakerRegistry:
    """Owns the circuit breaker state of every operation key.

    Entries are created lazily on the first failure for a key and live as long
    as the registry. Every method is synchronous, so within a single event
    loop no two of them interleave mid-update. Calls that share a key share
    one breaker, which tracks the health of an operation class rather than of
    a single call.
    """

    def __init__(
        self,
        config: Optional[CircuitBreakerConfig] = None,
        logger: Optional[BaseLogger] = None,
        clock: Callable[[], float] = time.time,
    ):
        """
        Args:
            config: Failure threshold and cooldown, defaults to 5 failures / 60 seconds
            logger: Optional logger for state transitions
            clock: Time source returning seconds, injectable for tests
        """
        self.config = config or CircuitBreakerConfig()
        self.logger = logger
        self._clock = clock
        self._breakers: Dict[str, BreakerState] = {}

    @property
    def threshold(self) -> int:
        return self.config.threshold

    @property
    def cooldown(self) -> float:
        return self.config.cooldown

    def is_open(self, key: str) -> bool:
        """Check whether calls for `key` must be rejected.

        An open breaker whose cooldown has elapsed moves to HALF_OPEN and lets
        the call through as a trial.
        """
        breaker = self._breakers.get(key)
        if breaker is None or breaker.phase == BreakerPhase.CLOSED:
            return False

        if breaker.phase == BreakerPhase.OPEN:
            if self._clock() >= breaker.next_attempt_time:
                breaker.phase = BreakerPhase.HALF_OPEN
                self._log_info(f"Circuit breaker moving to HALF_OPEN: {key}")
                return False
            return True

        # HALF_OPEN: the trial is already permitted
        return False

    def record_failure(self, key: str) -> None:
        breaker = self._breakers.setdefault(key, BreakerState())
        now = self._clock()
        breaker.failure_count += 1
        breaker.last_failure_time = now

        if breaker.failure_count >= self.threshold:
            breaker.phase = BreakerPhase.OPEN
            breaker.next_attempt_time = now + self.cooldown
            if self.logger:
                self.logger.log_warning(
                    f"Circuit breaker opened for: {key} "
                    f"({breaker.failure_count} failures, retry after {self.cooldown}s)"
                )

    def reset_on_success(self, key: str) -> None:
        breaker = self._breakers.get(key)
        if breaker is None or breaker.is_clean:
            return
        was_closed = breaker.phase == BreakerPhase.CLOSED
        self._breakers[key] = BreakerState()
        if not was_closed:
            self._log_info(f"Circuit breaker reset: {key}")

    def get_state(self, key: str) -> Optional[BreakerState]:
        breaker = self._breakers.get(key)
        return replace(breaker) if breaker is not None else None

    def get_all_states(self) -> Dict[str, BreakerState]:
        return {key: replace(breaker) for key, breaker in self._breakers.items()}

    def _log_info(self, message: str) -> None:
        if self.logger:
            self.logger.log_info(message)
