from __future__ import annotations

import logging
import random
import time
from typing import Callable, Tuple, Type, TypeVar

from .errors import ApiConnectionError

logger = logging.getLogger(__name__)

T = TypeVar("T")

MAX_ATTEMPTS = 2
MIN_BACKOFF = 0.05  # seconds
MAX_BACKOFF = 0.5


class RetryExecutor:
    """Bounded retry: ``max_attempts`` tries, uniform random sleep between them.

    Only exceptions of ``retry_on`` are retried; anything else propagates on the
    first attempt. When attempts run out the last exception is re-raised as is.
    """

    def __init__(self,
                 max_attempts: int = MAX_ATTEMPTS,
                 min_backoff: float = MIN_BACKOFF,
                 max_backoff: float = MAX_BACKOFF,
                 retry_on: Tuple[Type[BaseException], ...] = (ApiConnectionError,),
                 sleep: Callable[[float], None] = time.sleep,
                 rand: Callable[[float, float], float] = random.uniform) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if min_backoff < 0 or max_backoff < min_backoff:
            raise ValueError("backoff bounds must satisfy 0 <= min <= max")
        self.max_attempts = max_attempts
        self.min_backoff = min_backoff
        self.max_backoff = max_backoff
        self.retry_on = retry_on
        self._sleep = sleep
        self._rand = rand

    def is_retryable(self, exc: BaseException) -> bool:
        return isinstance(exc, self.retry_on)

    def backoff(self) -> float:
        return self._rand(self.min_backoff, self.max_backoff)

    def execute(self, action: Callable[[], T]) -> T:
        attempt = 0
        while True:
            attempt += 1
            logger.debug("Attempt %d/%d", attempt, self.max_attempts)
            try:
                return action()
            except Exception as exc:
                if not self.is_retryable(exc) or attempt >= self.max_attempts:
                    raise
                delay = self.backoff()
                logger.warning("Attempt %d/%d failed (%s). Retrying in %.0f ms",
                               attempt, self.max_attempts, exc, delay * 1000)
                self._sleep(delay)
