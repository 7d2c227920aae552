"""Backoff-and-retry for outbound calls (feeds, the reasoning service, SMTP)."""
from __future__ import annotations

import functools
import random
import time
from typing import Any, Callable, Tuple, Type

from jobscan.log import get_logger

log = get_logger(__name__)


def _backoff(attempt: int, base: float, factor: float, cap: float, jitter: bool) -> float:
    delay = min(base * factor ** (attempt - 1), cap)
    return delay * (0.5 + random.random()) if jitter else delay


def retry(
    *,
    max_attempts: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 30.0,
    backoff_factor: float = 2.0,
    jitter: bool = True,
    retryable: Tuple[Type[BaseException], ...] = (Exception,),
    give_up_after: float | None = None,
) -> Callable:
    """Retry the decorated call on ``retryable`` errors.

    ``give_up_after`` bounds the total seconds spent waiting between attempts.
    When the next wait would cross it, the current error is re-raised instead.
    """

    def decorator(fn: Callable) -> Callable:
        name = fn.__qualname__

        @functools.wraps(fn)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            started = time.monotonic()
            attempt = 0
            while True:
                attempt += 1
                try:
                    return fn(*args, **kwargs)
                except retryable as exc:
                    if attempt >= max_attempts:
                        log.warning("%s failed after %d attempts: %s", name, attempt, exc)
                        raise
                    wait = _backoff(attempt, base_delay, backoff_factor, max_delay, jitter)
                    spent = time.monotonic() - started
                    if give_up_after is not None and spent + wait > give_up_after:
                        log.warning("%s out of retry budget after %.1fs: %s", name, spent, exc)
                        raise
                    log.debug("%s attempt %d/%d failed (%s); next try in %.1fs",
                              name, attempt, max_attempts, exc, wait)
                    time.sleep(wait)

        return wrapper

    return decorator
