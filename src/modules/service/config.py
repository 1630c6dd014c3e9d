from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator
from pydantic_core import ErrorDetails
import yaml

from ..resilience.config import CircuitBreakerConfig, RetryConfig
from ..resilience.errors import ConfigError
from ..shutdown.coordinator import DEFAULT_GRACE_PERIOD


class ShutdownConfig(BaseModel):
    grace_period: Optional[float] = Field(default=DEFAULT_GRACE_PERIOD, gt=0)  # seconds before a hung exit is forced
    default_handler_timeout: Optional[float] = Field(default=None, gt=0)
    handler_timeout: float = Field(default=5.0, gt=0)  # timeout of the built-in cleanup handlers

class HealthServerConfig(BaseModel):
    enabled: bool = True
    host: str = "127.0.0.1"
    port: int = Field(default=8080, ge=0, le=65535)

class ProbeConfig(BaseModel):
    name: str
    url: str
    interval: float = Field(default=10.0, gt=0)  # seconds between checks
    timeout: float = Field(default=5.0, gt=0)    # request timeout in seconds
    retry: Optional[RetryConfig] = None

    @field_validator('url')
    @classmethod
    def validate_url(cls, value: str) -> str:
        if not value.startswith(("http://", "https://")):
            raise ValueError("url must start with http:// or https://")
        return value

class ServiceConfig(BaseModel):
    name: str = "lifeline"
    health: HealthServerConfig = HealthServerConfig()
    shutdown: ShutdownConfig = ShutdownConfig()
    retry: RetryConfig = RetryConfig()
    circuit_breaker: CircuitBreakerConfig = CircuitBreakerConfig()
    probes: List[ProbeConfig] = []

    @model_validator(mode='after')
    def validate_probe_names(self) -> 'ServiceConfig':
        names = [probe.name for probe in self.probes]
        duplicates = sorted({name for name in names if names.count(name) > 1})
        if duplicates:
            raise ValueError(f"Duplicate probe names: {', '.join(duplicates)}")
        return self


def _build_validation_error_message(errors: List[ErrorDetails]) -> str:
    """Build a readable message from a list of Pydantic validation errors."""
    messages = []
    for error in errors:
        field_path = " -> ".join(str(loc) for loc in error['loc'])
        msg = error['msg']
        messages.append(f"Error in field '{field_path}': {msg}")

    return "\n".join(messages)


def parse_service_config(yaml_content: str) -> ServiceConfig:
    """
    Validate YAML content and create a ServiceConfig instance.

    An empty document yields the default configuration.

    Raises:
        ConfigError: If the YAML content is invalid
    """
    try:
        data: Optional[Dict[str, Any]] = yaml.safe_load(yaml_content)
        return ServiceConfig.model_validate(data or {})
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML format: {str(e)}")
    except ValidationError as e:
        raise ConfigError(_build_validation_error_message(e.errors()))


def load_service_config(path: str) -> ServiceConfig:
    try:
        with open(path, "r") as f:
            content = f.read()
    except OSError as e:
        raise ConfigError(f"Cannot read config file {path}: {str(e)}")
    return parse_service_config(content)
