# dreamlib/race.py
from __future__ import annotations

import queue
import threading
from typing import Callable, TypeVar

T = TypeVar("T")


class DeadlineExceeded(TimeoutError):
    pass


def first_settled(fn: Callable[[], T], *, timeout_seconds: float, name: str = "race") -> T:
    """
    Race fn() against a deadline; whichever settles first decides the outcome.

    fn runs on a daemon thread. If the deadline wins, that thread is abandoned,
    not cancelled: it may still finish later, and its result or error is dropped.
    Anything fn touches must tolerate completing after the caller moved on.
    """
    settled: "queue.Queue[tuple[bool, object]]" = queue.Queue(maxsize=1)

    def _runner() -> None:
        try:
            value = fn()
        except BaseException as e:  # delivered to the waiting caller, or dropped
            outcome = (False, e)
        else:
            outcome = (True, value)
        try:
            settled.put_nowait(outcome)
        except queue.Full:
            pass

    t = threading.Thread(target=_runner, name=f"{name}-branch", daemon=True)
    t.start()

    try:
        ok, payload = settled.get(timeout=max(0.0, float(timeout_seconds)))
    except queue.Empty:
        raise DeadlineExceeded(f"{name}: no result within {timeout_seconds:.1f}s") from None

    if ok:
        return payload  # type: ignore[return-value]
    raise payload  # type: ignore[misc]
