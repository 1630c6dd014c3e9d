"""Hosting layer: service façade, health endpoints, metrics and dependency probes."""

from .config import ServiceConfig, load_service_config, parse_service_config
from .service import ResilienceService

__all__ = ['ResilienceService', 'ServiceConfig', 'load_service_config', 'parse_service_config']
