import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Tuple, Type, TypeVar

from services.errors import BookingError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded retry: ``max_attempts`` calls in total, delay doubling from ``backoff_seconds``."""

    max_attempts: int = 3
    backoff_seconds: float = 1.0
    multiplier: float = 2.0
    sleep: Callable[[float], None] = field(default=time.sleep, compare=False, repr=False)

    def delay(self, attempt: int) -> float:
        return self.backoff_seconds * (self.multiplier ** (attempt - 1))

    def call(
        self,
        op_name: str,
        func: Callable[[], T],
        retry_on: Tuple[Type[BaseException], ...] = (BookingError,),
    ) -> T:
        """
        Run ``func`` until it succeeds, fails with a non-retryable error, or
        attempts run out. Only errors matching ``retry_on`` whose ``retryable``
        flag is set are retried; the last error is re-raised.
        """
        attempt = 1
        while True:
            try:
                return func()
            except retry_on as exc:
                if attempt >= self.max_attempts or not getattr(exc, "retryable", False):
                    raise

                delay = self.delay(attempt)
                logger.warning(
                    "Transient failure in %s (attempt %d/%d), retrying in %.2fs: %s",
                    op_name,
                    attempt,
                    self.max_attempts,
                    delay,
                    exc,
                )
                self.sleep(delay)
                attempt += 1
