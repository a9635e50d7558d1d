"""
Bounded retry helper.

Every wait in the driver (block device appearance, stack transitions, service
convergence, upgrade confirmation) goes through poll_until(): the check is
run at a fixed interval until it returns True or the bound is exhausted.
There is no exponential growth of the interval.
"""

from __future__ import annotations

import logging
import time
from typing import Callable, Optional

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL_SECONDS = 1.0


class WaitTimeoutError(TimeoutError):
    """The polled condition never became true within its bound."""


def poll_until(
    check: Callable[[], bool],
    message: str,
    timeout: Optional[float] = None,
    max_attempts: Optional[int] = None,
    interval: float = DEFAULT_INTERVAL_SECONDS,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> None:
    """
    Run check() until it returns True.

    Args:
        check: Predicate to poll; exceptions it raises propagate immediately
        message: Error message used when the bound is exhausted
        timeout: Wall-clock ceiling in seconds
        max_attempts: Maximum number of check() calls
        interval: Fixed sleep between attempts in seconds
        sleep: Sleep function (injected by tests)
        clock: Monotonic clock (injected by tests)

    Raises:
        WaitTimeoutError: Neither bound allowed another attempt
    """
    if timeout is None and max_attempts is None:
        raise ValueError("poll_until needs a timeout or max_attempts bound")

    deadline = clock() + timeout if timeout is not None else None
    attempts = 0

    while True:
        attempts += 1
        if check():
            return

        if max_attempts is not None and attempts >= max_attempts:
            break
        if deadline is not None and clock() + interval > deadline:
            break

        logger.debug(f"Condition not met yet (attempt {attempts}): {message}")
        sleep(interval)

    raise WaitTimeoutError(message)


def backoff(
    timeout: float,
    message: str,
    check: Callable[[], bool],
    interval: float = DEFAULT_INTERVAL_SECONDS,
    sleep: Callable[[float], None] = time.sleep,
) -> None:
    """Poll check() at a fixed interval until it passes or timeout seconds elapse."""
    poll_until(check, message, timeout=timeout, interval=interval, sleep=sleep)
