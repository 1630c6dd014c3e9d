"""Shutdown coordination module for managing graceful shutdown of application components."""

from .coordinator import (
    FORCED_EXIT_CODE,
    NORMAL_EXIT_CODE,
    HandlerOutcome,
    ShutdownCoordinator,
    ShutdownHandler,
    ShutdownSummary,
)
from .deadline import run_with_deadline
from .signals import (
    SignalTriggerSource,
    TriggerSource,
    UncaughtErrorTriggerSource,
    UnhandledAsyncErrorTriggerSource,
    default_trigger_sources,
)

__all__ = [
    'FORCED_EXIT_CODE',
    'NORMAL_EXIT_CODE',
    'HandlerOutcome',
    'ShutdownCoordinator',
    'ShutdownHandler',
    'ShutdownSummary',
    'SignalTriggerSource',
    'TriggerSource',
    'UncaughtErrorTriggerSource',
    'UnhandledAsyncErrorTriggerSource',
    'default_trigger_sources',
    'run_with_deadline',
]
