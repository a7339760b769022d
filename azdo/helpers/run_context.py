import threading
import time
from typing import Optional

from ..cli.errors import CancelError


class RunContext:
    """
    Cancellation and deadline handle for one CLI invocation.

    Args:
        timeout: Seconds until the context expires; None means cancellable only
        clock: Monotonic clock, replaceable in tests
    """

    def __init__(self, timeout: Optional[float] = None, clock=time.monotonic):
        self._clock = clock
        self._event = threading.Event()
        self._reason = None
        self.timeout = timeout
        self._deadline = clock() + timeout if timeout else None

    def cancel(self, reason: str = "context canceled"):
        if self._reason is None:
            self._reason = reason
        self._event.set()

    def remaining(self) -> Optional[float]:
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - self._clock())

    def done(self) -> bool:
        if self._event.is_set():
            return True
        return self._deadline is not None and self._clock() >= self._deadline

    def err(self) -> Optional[str]:
        if self._event.is_set():
            return self._reason
        if self._deadline is not None and self._clock() >= self._deadline:
            return "context deadline exceeded"
        return None

    def check(self):
        reason = self.err()
        if reason:
            raise CancelError(reason)

    def wait(self, seconds: float):
        """Sleep for up to seconds, waking early when cancelled."""
        remaining = self.remaining()
        if remaining is not None:
            seconds = min(seconds, remaining)
        if seconds > 0:
            self._event.wait(seconds)
        self.check()
