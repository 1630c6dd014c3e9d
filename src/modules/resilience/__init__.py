"""Retry with exponential backoff and per-operation circuit breakers."""

from .circuit_breaker import BreakerPhase, BreakerState, CircuitBreakerRegistry
from .config import DEFAULT_OPERATION_KEY, CircuitBreakerConfig, RetryConfig
from .errors import CircuitOpenError, ConfigError, HandlerTimeoutError, LifelineError
from .executor import ResilientExecutor

__all__ = [
    'BreakerPhase',
    'BreakerState',
    'CircuitBreakerRegistry',
    'CircuitBreakerConfig',
    'CircuitOpenError',
    'ConfigError',
    'DEFAULT_OPERATION_KEY',
    'HandlerTimeoutError',
    'LifelineError',
    'ResilientExecutor',
    'RetryConfig',
]
