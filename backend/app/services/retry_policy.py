"""Bounded retry policy with linear backoff."""

from __future__ import annotations

from dataclasses import dataclass, field
import logging
import time
from typing import Callable, Optional, Tuple, Type, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """Run an operation up to ``max_attempts`` times.

    Between attempts the policy sleeps ``attempt * base_delay`` seconds
    (1x, 2x, ...). It never sleeps after the final attempt.
    """

    max_attempts: int = 3
    base_delay: float = 1.0
    retry_on: Tuple[Type[BaseException], ...] = (Exception,)
    sleeper: Callable[[float], None] = field(default=time.sleep, compare=False, repr=False)

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.base_delay < 0:
            raise ValueError("base_delay must not be negative")

    def delay(self, attempt: int) -> float:
        return attempt * self.base_delay

    def run(
        self,
        op_name: str,
        func: Callable[[], T],
        *,
        on_retry: Optional[Callable[[int, BaseException], None]] = None,
    ) -> T:
        """Call ``func`` until it returns, re-raising the last error when attempts run out.

        Exceptions outside ``retry_on`` propagate immediately.
        """
        attempt = 1
        while True:
            try:
                return func()
            except self.retry_on as exc:
                if attempt >= self.max_attempts:
                    raise

                delay = self.delay(attempt)
                logger.warning(
                    "Operation failed, retrying",
                    extra={
                        "event": "retry",
                        "op": op_name,
                        "attempt": attempt,
                        "delay": delay,
                        "error": str(exc),
                    },
                )
                if on_retry is not None:
                    on_retry(attempt, exc)
                self.sleeper(delay)
                attempt += 1
