"""Bounded polling with backoff.

Used both for waiting on an interface to appear and for confirming that
a rule change is visible in the filter table. There is no cancellation:
the timeout is the only way a wait ends without success.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Iterator

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BackoffPolicy:
    """Delay schedule between attempts.

    factor=1.0 gives a constant interval.
    """

    initial: float
    factor: float = 1.0
    max_delay: float | None = None

    def delays(self) -> Iterator[float]:
        delay = self.initial
        while True:
            if self.max_delay is not None:
                delay = min(delay, self.max_delay)
            yield delay
            delay = delay * self.factor


def wait_until(
    predicate: Callable[[], bool],
    timeout: float,
    policy: BackoffPolicy,
    *,
    description: str = "condition",
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> bool:
    """Poll `predicate` until it returns True or `timeout` seconds pass.

    The predicate is always evaluated at least once, and once more after
    the final sleep.

    Returns:
        True if the predicate succeeded, False on timeout
    """
    deadline = clock() + timeout
    attempts = 0
    for delay in policy.delays():
        attempts += 1
        if predicate():
            return True
        remaining = deadline - clock()
        if remaining <= 0:
            logger.debug(f"Gave up waiting for {description} after {attempts} attempts ({timeout}s)")
            return False
        sleep(min(delay, remaining))
    return False  # pragma: no cover - delays() is infinite
