"""
Retry helper for asynchronous server operations.
"""

import logging
import time
from typing import Any, Callable, Optional

from ..cli.errors import AzdoError, TransientError
from .text import format_duration

logger = logging.getLogger(__name__)

BASE_DELAY = 2.0
MAX_DELAY = 30.0


class PollError(AzdoError):
    """Polling gave up; last_error holds the final transient failure."""

    def __init__(self, message: str, last_error: Optional[BaseException] = None):
        super().__init__(message)
        self.last_error = last_error


def _backoff(attempt: int) -> float:
    # 2s, 4s, 8s, ... for attempt 1, 2, 3
    return min(BASE_DELAY * (2 ** (attempt - 1)), MAX_DELAY)


def poll(fn: Callable[[], Any], tries: int = 0, delay: float = 0.0, timeout: float = 0.0,
         context=None, sleep: Optional[Callable[[float], None]] = None,
         clock: Callable[[], float] = time.monotonic) -> Any:
    """
    Call fn until it returns without raising TransientError.

    Args:
        fn: Nullary function; raise TransientError to be retried
        tries: Maximum attempts, 0 for unlimited
        delay: Fixed wait between attempts in seconds, 0 for exponential backoff
        timeout: Overall deadline in seconds, 0 for none
        context: Optional RunContext checked before every attempt
        sleep: Replacement for the wait between attempts
        clock: Monotonic clock used for the deadline

    Returns:
        Whatever fn returns on success

    Raises:
        PollError: Attempts exhausted or deadline reached
    """
    if tries == 0 and timeout == 0:
        tries = 1

    start = clock()
    attempt = 0
    last_error = None
    while True:
        if context is not None:
            context.check()
        if timeout and clock() - start >= timeout:
            raise _timed_out(timeout, last_error)
        try:
            return fn()
        except TransientError as e:
            last_error = e
        attempt += 1
        logger.debug("Attempt %d failed: %s", attempt, last_error)
        if tries and attempt >= tries:
            raise PollError(f"after {attempt} attempts, last error: {last_error}", last_error) from last_error

        wait = delay if delay > 0 else _backoff(attempt)
        if timeout:
            remaining = timeout - (clock() - start)
            if remaining <= 0:
                raise _timed_out(timeout, last_error)
            wait = min(wait, remaining)
        if sleep is not None:
            sleep(wait)
        elif context is not None:
            context.wait(wait)
        else:
            time.sleep(wait)


def _timed_out(timeout: float, last_error: Optional[BaseException]) -> PollError:
    message = f"timed out after {format_duration(timeout)}"
    if last_error is not None:
        message = f"{message}, last error: {last_error}"
    error = PollError(message, last_error)
    error.__cause__ = last_error
    return error
