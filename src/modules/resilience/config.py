from typing import Any, Callable, Dict, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator


# Key used for circuit breaker state when the caller does not name the operation
DEFAULT_OPERATION_KEY = "default"


class RetryConfig(BaseModel):
    """Retry policy for ResilientExecutor. Delays are in seconds."""

    model_config = ConfigDict(arbitrary_types_allowed=True, frozen=True)

    max_attempts: int = Field(default=3, ge=1)
    base_delay: float = Field(default=1.0, gt=0)
    max_delay: float = Field(default=30.0, gt=0)
    backoff_factor: float = Field(default=2.0, ge=1)
    should_retry: Optional[Callable[[BaseException], bool]] = Field(default=None, exclude=True)

    @model_validator(mode='after')
    def validate_delays(self) -> 'RetryConfig':
        if self.max_delay < self.base_delay:
            raise ValueError("max_delay must be greater than or equal to base_delay")
        return self

    def delay_for(self, attempt: int) -> float:
        """Backoff delay to wait after the given 1-indexed failed attempt."""
        return min(self.base_delay * (self.backoff_factor ** (attempt - 1)), self.max_delay)

    def merged(self, overrides: Union['RetryConfig', Dict[str, Any], None]) -> 'RetryConfig':
        """Return a new config with `overrides` applied on top of this one.

        A RetryConfig override only contributes the fields that were set
        explicitly when it was built, so partially specified configs merge
        the same way a dict of overrides does.
        """
        if overrides is None:
            return self
        if isinstance(overrides, RetryConfig):
            updates = {name: getattr(overrides, name) for name in overrides.model_fields_set}
        else:
            updates = dict(overrides)
        values = {name: getattr(self, name) for name in type(self).model_fields}
        values.update(updates)
        return RetryConfig.model_validate(values)


class CircuitBreakerConfig(BaseModel):
    threshold: int = Field(default=5, ge=1)       # failures before the circuit opens
    cooldown: float = Field(default=60.0, gt=0)   # seconds the circuit stays open
