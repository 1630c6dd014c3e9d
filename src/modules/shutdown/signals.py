"""Trigger sources that start a coordinated shutdown.

The coordinator never subscribes to process events on its own; the hosting
application attaches the sources it wants with ShutdownCoordinator.attach.
"""

from asyncio import AbstractEventLoop
from abc import ABC, abstractmethod
import signal
import sys
import threading
import types
from typing import Any, Callable, Dict, List, Optional, Sequence, Type, TYPE_CHECKING, Union

if TYPE_CHECKING:
    from .coordinator import ShutdownCoordinator

# Type for signal handlers
SignalHandlerType = Union[Callable[[int, Optional[types.FrameType]], Any], int, None]


class TriggerSource(ABC):
    """Something that can decide the process has to shut down."""

    name: str = "trigger"

    def __init__(self) -> None:
        self._coordinator: Optional['ShutdownCoordinator'] = None
        self._loop: Optional[AbstractEventLoop] = None

    def install(self, coordinator: 'ShutdownCoordinator', loop: AbstractEventLoop) -> None:
        self._coordinator = coordinator
        self._loop = loop
        self._install(loop)

    def uninstall(self) -> None:
        if self._coordinator is None or self._loop is None:
            return
        self._uninstall(self._loop)
        self._coordinator = None
        self._loop = None

    @abstractmethod
    def _install(self, loop: AbstractEventLoop) -> None:
        pass

    @abstractmethod
    def _uninstall(self, loop: AbstractEventLoop) -> None:
        pass

    def _fire(self, reason: str) -> None:
        """Request shutdown from the loop thread."""
        if self._coordinator is not None:
            self._coordinator.request_shutdown(reason)

    def _fire_threadsafe(self, reason: str) -> None:
        if self._loop is None or self._loop.is_closed():
            return
        self._loop.call_soon_threadsafe(self._fire, reason)


class SignalTriggerSource(TriggerSource):
    """Starts the shutdown on SIGINT and SIGTERM."""

    name = "signals"

    def __init__(self, signals: Sequence[signal.Signals] = (signal.SIGINT, signal.SIGTERM)):
        super().__init__()
        self.signals = tuple(signals)
        self._loop_handlers: List[signal.Signals] = []
        self._original_handlers: Dict[signal.Signals, SignalHandlerType] = {}

    def _install(self, loop: AbstractEventLoop) -> None:
        for sig in self.signals:
            try:
                loop.add_signal_handler(sig, self._handle_loop_signal, sig)
                self._loop_handlers.append(sig)
            except (NotImplementedError, RuntimeError):
                # No loop signal support (e.g. Windows), fall back to signal.signal
                self._original_handlers[sig] = signal.getsignal(sig)
                signal.signal(sig, self._handle_signal)

    def _uninstall(self, loop: AbstractEventLoop) -> None:
        while self._loop_handlers:
            sig = self._loop_handlers.pop()
            if not loop.is_closed():
                loop.remove_signal_handler(sig)
        for sig, original in self._original_handlers.items():
            if original is not None:
                signal.signal(sig, original)
        self._original_handlers.clear()

    def _handle_loop_signal(self, sig: signal.Signals) -> None:
        self._log_received(sig.name)
        self._fire(sig.name)

    def _handle_signal(self, sig_num: int, frame: Optional[types.FrameType]) -> None:
        sig_name = signal.Signals(sig_num).name
        self._log_received(sig_name)
        self._fire_threadsafe(sig_name)

    def _log_received(self, sig_name: str) -> None:
        if self._coordinator is not None:
            self._coordinator.logger.log_info(
                f"Received {sig_name} signal, initiating graceful shutdown..."
            )


class UncaughtErrorTriggerSource(TriggerSource):
    """Starts the shutdown when an exception escapes the main thread or any other thread."""

    name = "uncaught_exception"

    def __init__(self) -> None:
        super().__init__()
        self._original_excepthook: Optional[Callable[..., Any]] = None
        self._original_threading_excepthook: Optional[Callable[..., Any]] = None

    def _install(self, loop: AbstractEventLoop) -> None:
        self._original_excepthook = sys.excepthook
        self._original_threading_excepthook = threading.excepthook
        sys.excepthook = self._handle_exception
        threading.excepthook = self._handle_thread_exception

    def _uninstall(self, loop: AbstractEventLoop) -> None:
        if self._original_excepthook is not None:
            sys.excepthook = self._original_excepthook
        if self._original_threading_excepthook is not None:
            threading.excepthook = self._original_threading_excepthook

    def _handle_exception(
        self,
        exc_type: Type[BaseException],
        exc_value: BaseException,
        exc_traceback: Optional[types.TracebackType],
    ) -> None:
        if self._coordinator is not None:
            self._coordinator.logger.log_exception(
                "Uncaught exception, shutting down gracefully", exc_value
            )
        self._fire_threadsafe(self.name)

    def _handle_thread_exception(self, args: Any) -> None:
        if args.exc_type is SystemExit:
            return
        thread_name = args.thread.name if args.thread is not None else "unknown"
        if self._coordinator is not None and args.exc_value is not None:
            self._coordinator.logger.log_exception(
                f"Uncaught exception in thread {thread_name}, shutting down gracefully",
                args.exc_value,
            )
        self._fire_threadsafe(self.name)


class UnhandledAsyncErrorTriggerSource(TriggerSource):
    """Starts the shutdown when the event loop reports an error nobody handled,
    such as a failed task that was never awaited."""

    name = "unhandled_async_error"

    def __init__(self) -> None:
        super().__init__()
        self._original_handler: Optional[Callable[[AbstractEventLoop, Dict[str, Any]], Any]] = None

    def _install(self, loop: AbstractEventLoop) -> None:
        self._original_handler = loop.get_exception_handler()
        loop.set_exception_handler(self._handle_exception)

    def _uninstall(self, loop: AbstractEventLoop) -> None:
        if not loop.is_closed():
            loop.set_exception_handler(self._original_handler)

    def _handle_exception(self, loop: AbstractEventLoop, context: Dict[str, Any]) -> None:
        error = context.get("exception")
        if not isinstance(error, Exception):
            # Diagnostics without a failed operation, such as unclosed sessions, are not fatal
            if self._original_handler is not None:
                self._original_handler(loop, context)
            else:
                loop.default_exception_handler(context)
            return

        message = context.get("message", "Unhandled error in event loop")
        if self._coordinator is not None:
            self._coordinator.logger.log_exception(
                f"Unhandled async error, shutting down gracefully: {message}", error
            )
        # Errors raised while the shutdown is already running are only logged
        if self._coordinator is not None and not self._coordinator.is_shutting_down:
            self._fire_threadsafe(self.name)


def default_trigger_sources() -> List[TriggerSource]:
    return [
        SignalTriggerSource(),
        UncaughtErrorTriggerSource(),
        UnhandledAsyncErrorTriggerSource(),
    ]
