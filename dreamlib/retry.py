# dreamlib/retry.py
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional, TypeVar

T = TypeVar("T")

log = logging.getLogger("retry")


class RetryExhausted(Exception):
    """Raised when a RetryPolicy gives up. Carries the last underlying error."""

    def __init__(self, attempts: int, last_error: Optional[BaseException], aborted: bool = False):
        self.attempts = attempts
        self.last_error = last_error
        self.aborted = aborted
        reason = "non-retryable error" if aborted else f"{attempts} attempt(s)"
        super().__init__(f"gave up after {reason}: {last_error}")


class EmptyResult(Exception):
    """An attempt completed but produced nothing usable."""


def exponential(base: float = 1.0, *, offset: int = 0) -> Callable[[int, BaseException], float]:
    """backoff(n) = base * 2 ** (n + offset), n = number of failed attempts so far."""

    def _delay(failed_attempts: int, _err: BaseException) -> float:
        return float(base) * (2 ** (failed_attempts + offset))

    return _delay


def _always(_err: BaseException) -> bool:
    return True


@dataclass
class RetryPolicy:
    """
    Bounded retry with a per-stage backoff and retryable predicate.

    backoff(failed_attempts, error) -> seconds to wait before the next attempt.
    No wait happens after the final attempt.
    """
    max_attempts: int
    backoff: Callable[[int, BaseException], float]
    retryable: Callable[[BaseException], bool] = _always
    sleep: Callable[[float], None] = time.sleep
    name: str = "operation"

    def run(
        self,
        fn: Callable[[int], T],
        *,
        on_failure: Optional[Callable[[int, BaseException], None]] = None,
    ) -> T:
        """
        Call fn(attempt) with attempt = 1..max_attempts until it returns.
        Raises RetryExhausted when attempts run out or the error is not retryable.
        """
        last_error: Optional[BaseException] = None
        for attempt in range(1, int(self.max_attempts) + 1):
            try:
                return fn(attempt)
            except Exception as e:
                last_error = e
                if on_failure is not None:
                    on_failure(attempt, e)
                if not self.retryable(e):
                    log.warning("%s attempt %d/%d failed (not retryable): %s",
                                self.name, attempt, self.max_attempts, e)
                    raise RetryExhausted(attempt, e, aborted=True) from e
                log.warning("%s attempt %d/%d failed: %s", self.name, attempt, self.max_attempts, e)
                if attempt < self.max_attempts:
                    delay = float(self.backoff(attempt, e))
                    if delay > 0:
                        self.sleep(delay)
        raise RetryExhausted(int(self.max_attempts), last_error)
