"""
Shared retry policy.

One object describes how many attempts an operation gets, how long to wait between
them, and which error kinds are worth retrying. Scrapers use it per page, sinks per
post, and the orchestrator around each stage call.
"""
from __future__ import annotations

import logging
import random
import time
from typing import Callable, Optional, Tuple, Type, TypeVar

from common.errors import TransientSourceError

_LOG = logging.getLogger(__name__)

T = TypeVar("T")


class RetryPolicy:
    def __init__(
        self,
        max_attempts: int = 3,
        base_delay: float = 0.5,
        max_delay: float = 30.0,
        exponential_base: float = 2.0,
        jitter: float = 0.0,
        retryable: Tuple[Type[BaseException], ...] = (TransientSourceError,),
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.exponential_base = exponential_base
        self.jitter = jitter
        self.retryable = retryable

    @classmethod
    def none(cls) -> "RetryPolicy":
        return cls(max_attempts=1)

    def get_delay(self, attempt: int) -> float:
        """Delay before retry number `attempt` (1-based)."""
        delay = self.base_delay * (self.exponential_base ** (attempt - 1))
        delay = min(delay, self.max_delay)
        if self.jitter:
            delay += random.uniform(0, self.jitter)
        return delay

    def is_retryable(self, exc: BaseException) -> bool:
        return isinstance(exc, self.retryable)

    def call(
        self,
        fn: Callable[[], T],
        *,
        sleep: Callable[[float], None] = time.sleep,
        on_retry: Optional[Callable[[int, BaseException, float], None]] = None,
    ) -> T:
        """Run fn, retrying retryable errors. The last error is re-raised."""
        attempt = 1
        while True:
            try:
                return fn()
            except Exception as e:
                if not self.is_retryable(e) or attempt >= self.max_attempts:
                    raise
                delay = self.get_delay(attempt)
                _LOG.warning("retry %d/%d in %.2fs after %s", attempt, self.max_attempts - 1, delay, e)
                if on_retry:
                    on_retry(attempt, e, delay)
                sleep(delay)
                attempt += 1
