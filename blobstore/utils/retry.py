"""
Exponential backoff with jitter, shared by the HTTP transport (transient
failures) and the retriever (restarts after a stale pointer read).

    full  : sleep U(0, cap)
    equal : sleep cap/2 + U(0, cap/2)

where cap = min(base * 2**(attempt-1), max_delay).
"""

from __future__ import annotations

import random
import time
from typing import Any, Callable, Literal, Optional, Sequence, Tuple, Type, TypeVar, Union

__all__ = ["RetryError", "backoff_delay", "retry_call"]

T = TypeVar("T")

JitterMode = Literal["full", "equal"]


class RetryError(RuntimeError):
    """All attempts failed; `last_exception` is what the final one raised."""

    def __init__(self, last_exception: BaseException, attempts: int) -> None:
        super().__init__(f"gave up after {attempts} attempts: {last_exception!r}")
        self.last_exception = last_exception
        self.attempts = attempts


def backoff_delay(attempt: int, *, base: float, max_delay: float, jitter: JitterMode = "full") -> float:
    """Delay in seconds before retry number `attempt` (1-based)."""
    cap = min(base * (2 ** (max(attempt, 1) - 1)), max_delay)
    if jitter == "full":
        return random.uniform(0.0, cap)
    if jitter == "equal":
        half = cap / 2
        return half + random.uniform(0.0, half)
    raise ValueError(f"unknown jitter mode: {jitter}")


def retry_call(
    fn: Callable[..., T],
    *args: Any,
    retries: int = 3,
    base: float = 0.25,
    max_delay: float = 3.0,
    jitter: JitterMode = "equal",
    exceptions: Union[Type[BaseException], Sequence[Type[BaseException]]] = Exception,
    on_retry: Optional[Callable[[int, BaseException, float], None]] = None,
    sleep: Callable[[float], None] = time.sleep,
    **kwargs: Any,
) -> T:
    """
    Call `fn(*args, **kwargs)`, retrying up to `retries` more times on `exceptions`.

    Anything else propagates untouched. `on_retry(attempt, exc, delay)` runs
    before each sleep.
    """
    retry_on: Tuple[Type[BaseException], ...] = (exceptions,) if isinstance(exceptions, type) else tuple(exceptions)
    for attempt in range(1, retries + 2):
        try:
            return fn(*args, **kwargs)
        except retry_on as exc:
            if attempt > retries:
                raise RetryError(exc, attempts=attempt) from exc
            delay = backoff_delay(attempt, base=base, max_delay=max_delay, jitter=jitter)
            if on_retry is not None:
                on_retry(attempt, exc, delay)
            sleep(delay)
    raise AssertionError("unreachable")
