"""Shutdown coordinator for managing graceful shutdown of application components."""

import asyncio
from asyncio import AbstractEventLoop, Future, Task
import functools
import inspect
import os
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Coroutine, List, Optional, Set, TYPE_CHECKING

from ..logging import BaseLogger
from ..resilience.errors import HandlerTimeoutError
from .deadline import run_with_deadline

if TYPE_CHECKING:
    from .signals import TriggerSource

DEFAULT_GRACE_PERIOD = 30.0
NORMAL_EXIT_CODE = 0
FORCED_EXIT_CODE = 1


@dataclass
class ShutdownHandler:
    """Handler for shutdown operations."""
    name: str
    handler: Callable[[], Any]
    priority: int = 0
    timeout: Optional[float] = None


@dataclass
class HandlerOutcome:
    """Result of running a single shutdown handler."""
    name: str
    success: bool
    duration: float
    error: Optional[str] = None
    timed_out: bool = False


@dataclass
class ShutdownSummary:
    """Result of a complete shutdown run."""
    reason: str
    total: int
    outcomes: List[HandlerOutcome] = field(default_factory=list)
    duration: float = 0.0
    error: Optional[str] = None  # failure of the orchestration itself

    @property
    def completed(self) -> int:
        return sum(1 for outcome in self.outcomes if outcome.success)

    @property
    def failed(self) -> List[HandlerOutcome]:
        return [outcome for outcome in self.outcomes if not outcome.success]


class ShutdownCoordinator:
    """Coordinates graceful shutdown of application components.

    Handlers run one at a time in ascending priority, ties in registration
    order. A failing or timed-out handler is logged and the sequence moves on.
    Once the pass is over a watchdog thread is armed that terminates the
    process with exit code 1 unless the host disarms it within the grace
    period, and the normal exit code 0 is published to the host.

    Example:
        coordinator = ShutdownCoordinator(logger)
        coordinator.register_handler("http", server.stop, priority=0, timeout=5)
        coordinator.register_handler("db", pool.close, priority=10)
        sys.exit(coordinator.run_async_with_signals(main()))
    """

    def __init__(
        self,
        logger: BaseLogger,
        grace_period: Optional[float] = DEFAULT_GRACE_PERIOD,
        default_handler_timeout: Optional[float] = None,
        terminate: Callable[[int], Any] = os._exit,
        on_summary: Optional[Callable[[ShutdownSummary], None]] = None,
    ):
        """
        Initialize the shutdown coordinator.

        Args:
            logger: Logger instance for logging shutdown events
            grace_period: Seconds the host has to exit after the handler pass before the
                process is forcibly terminated; None disables the watchdog
            default_handler_timeout: Timeout for handlers that do not declare their own
            terminate: Called with the exit code when the watchdog fires
            on_summary: Optional callback receiving the summary of the run
        """
        self._handlers: List[ShutdownHandler] = []
        self._is_shutting_down = False
        self.logger = logger
        self.grace_period = grace_period
        self.default_handler_timeout = default_handler_timeout
        self._terminate = terminate
        self._on_summary = on_summary
        self._completion: Optional[Future[ShutdownSummary]] = None
        self._triggered = asyncio.Event()
        self._shutdown_complete = asyncio.Event()
        self._abandoned: Set[Future[Any]] = set()
        self._sources: List['TriggerSource'] = []
        self._watchdog: Optional[threading.Timer] = None
        self._exit_code: Optional[int] = None
        self._main_task: Optional[Task[Any]] = None

    @property
    def is_shutting_down(self) -> bool:
        """Check if shutdown is in progress."""
        return self._is_shutting_down

    def is_shutdown_in_progress(self) -> bool:
        return self._is_shutting_down

    @property
    def exit_code(self) -> Optional[int]:
        """Exit code requested by the completed run, None while no run has finished."""
        return self._exit_code

    @property
    def handlers(self) -> List[ShutdownHandler]:
        return list(self._handlers)

    @property
    def abandoned_actions(self) -> Set[Future[Any]]:
        """Timed-out handler actions that were cancelled but have not finished yet."""
        return set(self._abandoned)

    def register_handler(
        self,
        name: str,
        handler: Callable[[], Any],
        priority: int = 0,
        timeout: Optional[float] = None,
    ) -> None:
        """Register a shutdown handler.

        Handlers registered once shutdown has begun may not execute.

        Args:
            name: Name of the handler used in logs, names need not be unique
            handler: Callable to execute during shutdown, may return an awaitable
            priority: Priority of the handler (lower numbers execute first)
            timeout: Seconds the handler may take before it is abandoned
        """
        if self._is_shutting_down:
            self.logger.log_warning(
                f"Shutdown already in progress, handler {name} may not execute"
            )

        self._handlers.append(ShutdownHandler(name, handler, priority, timeout))

        # list.sort is stable, equal priorities keep registration order
        self._handlers.sort(key=lambda h: h.priority)
        self.logger.log_debug(f"Registered shutdown handler: {name} (priority: {priority})")

    def attach(self, source: 'TriggerSource', loop: Optional[AbstractEventLoop] = None) -> None:
        """Subscribe a trigger source so it can start the shutdown."""
        source.install(self, loop or asyncio.get_running_loop())
        self._sources.append(source)

    def detach_all(self) -> None:
        while self._sources:
            source = self._sources.pop()
            try:
                source.uninstall()
            except Exception as e:
                self.logger.log_warning(f"Error detaching trigger source {source.name}: {str(e)}")

    def request_shutdown(self, reason: str) -> 'Future[ShutdownSummary]':
        """
        Start the shutdown unless one is already running.

        Must be called from the event loop thread. Every call returns the same
        future, which completes with the summary of the single run.
        """
        if self._completion is not None:
            self.logger.log_warning(f"Shutdown already in progress, ignoring trigger: {reason}")
            return self._completion

        self._is_shutting_down = True
        self.logger.log_info(f"Received shutdown trigger: {reason}")
        self._completion = asyncio.get_running_loop().create_task(self._run(reason))
        self._triggered.set()
        return self._completion

    async def trigger(self, reason: str) -> ShutdownSummary:
        """Start the shutdown, or join the one in progress, and wait for it to finish.

        Cancelling the caller does not cancel the shutdown itself.
        """
        return await asyncio.shield(self.request_shutdown(reason))

    async def wait_for_shutdown(self) -> None:
        """Wait until a shutdown run has completed."""
        await self._shutdown_complete.wait()

    async def _run(self, reason: str) -> ShutdownSummary:
        loop = asyncio.get_running_loop()
        start_time = loop.time()
        summary = ShutdownSummary(reason=reason, total=len(self._handlers))

        try:
            self.logger.log_info("Starting graceful shutdown...")
            for handler in list(self._handlers):
                summary.outcomes.append(await self._execute_handler(handler))

            summary.duration = loop.time() - start_time
            self.logger.log_info(
                f"Graceful shutdown completed: {summary.completed}/{summary.total} handlers "
                f"({_ms(summary.duration)}ms)"
            )
            if self._on_summary is not None:
                self._on_summary(summary)
        except Exception as e:
            summary.duration = loop.time() - start_time
            summary.error = str(e)
            self.logger.log_exception("Error during graceful shutdown", e)
        finally:
            self._finish()

        return summary

    async def _execute_handler(self, handler: ShutdownHandler) -> HandlerOutcome:
        loop = asyncio.get_running_loop()
        start_time = loop.time()
        timeout = handler.timeout if handler.timeout is not None else self.default_handler_timeout

        try:
            self.logger.log_info(f"Executing shutdown handler: {handler.name}")
            result = handler.handler()
            if inspect.isawaitable(result):
                if timeout is not None:
                    await run_with_deadline(
                        result,
                        timeout,
                        lambda: HandlerTimeoutError(handler.name, timeout),
                        functools.partial(self._track_abandoned, handler.name),
                    )
                else:
                    await result
        except HandlerTimeoutError as e:
            duration = loop.time() - start_time
            self.logger.log_error(
                f"Shutdown handler timed out: {handler.name} exceeded {e.timeout}s "
                f"({_ms(duration)}ms)"
            )
            return HandlerOutcome(handler.name, False, duration, str(e), timed_out=True)
        except asyncio.CancelledError as e:
            current = asyncio.current_task()
            if current is not None and current.cancelling():
                raise
            # Cancellation raised by the handler's own work, e.g. awaiting a task it cancelled
            duration = loop.time() - start_time
            self.logger.log_exception(
                f"Shutdown handler failed: {handler.name} - cancelled ({_ms(duration)}ms)", e
            )
            return HandlerOutcome(handler.name, False, duration, "cancelled")
        except Exception as e:
            duration = loop.time() - start_time
            self.logger.log_exception(
                f"Shutdown handler failed: {handler.name} - {str(e)} ({_ms(duration)}ms)", e
            )
            return HandlerOutcome(handler.name, False, duration, str(e))

        duration = loop.time() - start_time
        self.logger.log_info(f"Shutdown handler completed: {handler.name} ({_ms(duration)}ms)")
        return HandlerOutcome(handler.name, True, duration)

    def _track_abandoned(self, name: str, action: Future[Any]) -> None:
        self._abandoned.add(action)
        action.add_done_callback(functools.partial(self._on_abandoned_done, name))

    def _on_abandoned_done(self, name: str, action: Future[Any]) -> None:
        self._abandoned.discard(action)
        if action.cancelled():
            self.logger.log_debug(f"Abandoned shutdown handler cancelled: {name}")
        elif action.exception() is not None:
            self.logger.log_warning(
                f"Abandoned shutdown handler failed after timeout: {name} - {action.exception()}"
            )
        else:
            self.logger.log_debug(f"Abandoned shutdown handler finished after timeout: {name}")

    def _finish(self) -> None:
        self._arm_watchdog()
        self._exit_code = NORMAL_EXIT_CODE
        self._shutdown_complete.set()

    def _arm_watchdog(self) -> None:
        if self.grace_period is None or self._watchdog is not None:
            return
        # A thread keeps counting even when the event loop itself is blocked
        self._watchdog = threading.Timer(self.grace_period, self._force_exit)
        self._watchdog.daemon = True
        self._watchdog.start()

    def disarm_watchdog(self) -> None:
        """Cancel the forced-termination timer once the host has exited normally."""
        if self._watchdog is not None:
            self._watchdog.cancel()
            self._watchdog = None

    def _force_exit(self) -> None:
        self.logger.log_warning("Force exiting after shutdown timeout")
        self._terminate(FORCED_EXIT_CODE)

    def run_async_with_signals(
        self,
        coroutine: Coroutine[Any, Any, Any],
        sources: Optional[List['TriggerSource']] = None,
    ) -> int:
        """
        Run the application coroutine until it finishes or a shutdown completes.

        A new event loop is created and the trigger sources are attached to it.
        When the coroutine returns or raises, a shutdown is triggered as well.

        Args:
            coroutine: The application's main coroutine
            sources: Trigger sources to attach, defaults to signals plus error observers

        Returns:
            The exit code for the process
        """
        if sources is None:
            from .signals import default_trigger_sources
            sources = default_trigger_sources()

        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)

        try:
            for source in sources:
                self.attach(source, loop)
            loop.run_until_complete(self._supervise(coroutine))
        finally:
            self.detach_all()

            # Clean up any pending tasks
            try:
                pending = asyncio.all_tasks(loop)
                for task in pending:
                    task.cancel()
                if pending:
                    loop.run_until_complete(
                        asyncio.gather(*pending, return_exceptions=True)
                    )
            except Exception as e:
                self.logger.log_warning(f"Error cleaning up pending tasks: {str(e)}")

            # Close the loop properly
            try:
                loop.run_until_complete(loop.shutdown_asyncgens())
                loop.close()
            except Exception as e:
                self.logger.log_warning(f"Error closing event loop: {str(e)}")
            asyncio.set_event_loop(None)

            self.disarm_watchdog()

        return self._exit_code if self._exit_code is not None else NORMAL_EXIT_CODE

    async def _supervise(self, coroutine: Coroutine[Any, Any, Any]) -> None:
        main_task = asyncio.ensure_future(coroutine)
        self._main_task = main_task
        triggered = asyncio.ensure_future(self._triggered.wait())

        try:
            await asyncio.wait({main_task, triggered}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            triggered.cancel()

        if self._completion is not None:
            await asyncio.shield(self._completion)
        elif main_task.cancelled():
            await self.trigger("main_cancelled")
        else:
            error = main_task.exception()
            if error is not None:
                self.logger.log_exception("Uncaught exception, shutting down gracefully", error)
                await self.trigger("uncaught_exception")
            else:
                await self.trigger("main_completed")

        if not main_task.done():
            main_task.cancel()
        await asyncio.gather(main_task, return_exceptions=True)
        self._main_task = None


def _ms(seconds: float) -> int:
    return int(seconds * 1000)
