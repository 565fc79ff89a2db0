"""
Cancellation - Cooperative cancellation and deadlines for orchestration runs

Every suspension point of a run (retry backoff, poll interval, verification
backoff) waits on a token instead of calling ``time.sleep`` directly, so a
cancel request or an expired run deadline interrupts it promptly.
"""

import threading
import time
from typing import Callable, Optional

from ..errors import RunCancelled


class CancellationToken:
    """A cancel flag combined with an optional absolute deadline."""

    def __init__(
        self,
        timeout: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._event = threading.Event()
        self._clock = clock
        self._deadline = clock() + timeout if timeout is not None else None
        self.reason: Optional[str] = None

    def cancel(self, reason: str = "cancelled") -> None:
        self.reason = reason
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def expired(self) -> bool:
        return self._deadline is not None and self._clock() >= self._deadline

    def remaining(self) -> Optional[float]:
        """Seconds left before the deadline, or None when unbounded."""
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - self._clock())

    def check(self) -> None:
        """Raise RunCancelled if the token was cancelled or has expired."""
        if self.cancelled:
            raise RunCancelled(f"Run cancelled: {self.reason}")
        if self.expired:
            raise RunCancelled("Run deadline exceeded")

    def wait(self, seconds: float) -> None:
        """Sleep for ``seconds`` unless cancelled first."""
        self.check()
        remaining = self.remaining()
        if remaining is not None and seconds > remaining:
            self._event.wait(remaining)
            self.check()
            raise RunCancelled("Run deadline exceeded")
        if seconds > 0:
            self._event.wait(seconds)
        self.check()

    @property
    def done(self) -> bool:
        return self.cancelled or self.expired

    def recovery(self, timeout: Optional[float]) -> "CancellationToken":
        """A fresh token for cleanup work that must run even after this one is done.

        Once this token is cancelled or expired the recovery token is bounded
        by ``timeout``; otherwise it is unbounded.
        """
        return CancellationToken(timeout=timeout if self.done else None, clock=self._clock)


def ensure_token(token: Optional[CancellationToken]) -> CancellationToken:
    """Return ``token`` or a fresh unbounded one."""
    return token if token is not None else CancellationToken()
