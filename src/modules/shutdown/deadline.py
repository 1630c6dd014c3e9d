"""Race an awaitable against a deadline without leaving the loser unobserved."""

import asyncio
from typing import Awaitable, Callable, Optional, TypeVar

T = TypeVar('T')


async def run_with_deadline(
    awaitable: Awaitable[T],
    timeout: float,
    on_timeout: Callable[[], BaseException],
    on_abandoned: Optional[Callable[['asyncio.Future[T]'], None]] = None,
) -> T:
    """Await `awaitable` for at most `timeout` seconds.

    Unlike asyncio.wait_for this does not wait for the cancelled action to
    unwind: an action that ignores cancellation cannot stall the caller.

    Args:
        awaitable: The action to run
        timeout: Deadline in seconds
        on_timeout: Builds the exception raised when the deadline passes
        on_abandoned: Receives the action's future after it was cancelled so the
            caller can keep track of it until it actually finishes

    Returns:
        The action's result

    Raises:
        Whatever `on_timeout` builds, or the action's own exception
    """
    action = asyncio.ensure_future(awaitable)
    try:
        done, _ = await asyncio.wait({action}, timeout=timeout)
    except asyncio.CancelledError:
        action.cancel()
        raise

    if action in done:
        return action.result()

    action.cancel()
    if on_abandoned is not None:
        on_abandoned(action)
    raise on_timeout()
