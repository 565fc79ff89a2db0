"""
Retry - Bounded exponential backoff for control-plane calls
"""

import logging
from dataclasses import dataclass
from typing import Callable, Optional, Tuple, Type, TypeVar

from ..errors import TransientError
from .cancellation import CancellationToken, ensure_token

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff: base_delay * factor**n, capped at max_delay."""

    base_delay: float = 1.0
    factor: float = 2.0
    max_delay: float = 30.0
    max_attempts: int = 5

    @classmethod
    def from_config(cls, config: Optional[dict]) -> "RetryPolicy":
        config = config or {}
        return cls(
            base_delay=float(config.get("base_delay", cls.base_delay)),
            factor=float(config.get("factor", cls.factor)),
            max_delay=float(config.get("max_delay", cls.max_delay)),
            max_attempts=int(config.get("max_attempts", cls.max_attempts)),
        )

    def delay(self, attempt: int, retry_after: Optional[float] = None) -> float:
        """Backoff before retry number ``attempt`` (1-based)."""
        delay = min(self.base_delay * (self.factor ** (attempt - 1)), self.max_delay)
        if retry_after is not None and retry_after > delay:
            return min(retry_after, self.max_delay)
        return delay


def call_with_retry(
    func: Callable[[], T],
    policy: RetryPolicy,
    description: str,
    token: Optional[CancellationToken] = None,
    retry_on: Tuple[Type[BaseException], ...] = (TransientError,),
) -> T:
    """
    Call ``func`` until it succeeds or ``policy.max_attempts`` is reached.

    Only exceptions listed in ``retry_on`` are retried; anything else
    propagates immediately. The last retryable error is re-raised on
    exhaustion.
    """
    token = ensure_token(token)
    attempt = 1
    while True:
        token.check()
        try:
            return func()
        except retry_on as e:
            if attempt >= policy.max_attempts:
                logger.error(f"{description} failed after {attempt} attempts: {e}")
                raise
            delay = policy.delay(attempt, getattr(e, "retry_after", None))
            logger.warning(
                f"{description} failed (attempt {attempt}/{policy.max_attempts}): {e}; "
                f"retrying in {delay:.1f}s"
            )
            token.wait(delay)
            attempt += 1
