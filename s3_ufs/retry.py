from __future__ import annotations
"""Bounded retry with exponential backoff for transient store failures."""
from dataclasses import dataclass, field
import logging
import random
import time
from typing import Callable, TypeVar

from .errors import TransientTransportError

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class RetryPolicy:
    """Attempts an operation up to ``max_attempts`` times.

    Only :class:`TransientTransportError` is retried. Any other exception, and
    the last transient failure once the attempts are exhausted, propagates to
    the caller.
    """

    max_attempts: int = 3
    base_delay_ms: int = 50
    max_delay_ms: int = 3000
    jitter: bool = True
    sleep: Callable[[float], None] = field(default=time.sleep, repr=False, compare=False)

    @classmethod
    def no_retry(cls) -> RetryPolicy:
        return cls(max_attempts=1)

    @classmethod
    def from_settings(cls, settings) -> RetryPolicy:
        return cls(
            max_attempts=settings.retry_max_attempts,
            base_delay_ms=settings.retry_base_delay_ms,
            max_delay_ms=settings.retry_max_delay_ms,
        )

    def run(self, operation: Callable[[], T], *, description: str = "") -> T:
        attempts = max(int(self.max_attempts), 1)
        attempt = 1
        while True:
            try:
                return operation()
            except TransientTransportError as exc:
                if attempt >= attempts:
                    LOGGER.debug("Giving up on %s after %d attempts", description or "operation", attempt)
                    raise
                delay = self._delay_seconds(attempt)
                LOGGER.debug(
                    "Attempt %d/%d of %s failed (%s), retrying in %.3fs",
                    attempt,
                    attempts,
                    description or "operation",
                    exc,
                    delay,
                )
                self.sleep(delay)
                attempt += 1

    def _delay_seconds(self, attempt: int) -> float:
        backoff = min(self.base_delay_ms * (2 ** (attempt - 1)), self.max_delay_ms)
        if self.jitter:
            backoff = random.uniform(0, backoff)
        return backoff / 1000.0
