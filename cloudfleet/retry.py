"""Retry and polling primitives.

Vendor operations are asynchronous: a create or an action returns
immediately and the resource converges later. Adapters wait for that with
``poll`` and retry transient transport failures with ``retry_call``. Both
take a ``BackoffPolicy`` and a ``Clock`` so tests can run them without
real delays.
"""

from __future__ import annotations

import logging
import math
import random
import time
from dataclasses import dataclass
from typing import Callable, TypeVar

from .errors import CloudTimeoutError

log = logging.getLogger(__name__)

T = TypeVar("T")


class Clock:
    """Wall-clock time source."""

    def time(self) -> float:
        return time.time()

    def sleep(self, seconds: float) -> None:
        if seconds > 0:
            time.sleep(seconds)


@dataclass(frozen=True, slots=True)
class BackoffPolicy:
    """Bounded fixed-interval backoff with optional jitter.

    Attributes:
        max_attempts: Total number of attempts, including the first one
        interval: Seconds to wait between attempts
        jitter: Upper bound of random seconds added to each wait
    """

    max_attempts: int
    interval: float
    jitter: float = 0.0

    def delay(self) -> float:
        if self.jitter > 0:
            return self.interval + random.uniform(0, self.jitter)
        return self.interval

    @classmethod
    def for_timeout(cls, timeout: float, interval: float) -> BackoffPolicy:
        """Policy that polls every ``interval`` seconds for about ``timeout`` seconds."""
        if interval <= 0:
            return cls(max_attempts=1, interval=0)
        return cls(max_attempts=max(1, math.ceil(timeout / interval)), interval=interval)


def poll(
    fetch: Callable[[], T],
    is_done: Callable[[T], bool],
    policy: BackoffPolicy,
    clock: Clock,
    description: str,
    provider: str = "unknown",
) -> T:
    """Call ``fetch`` until ``is_done`` accepts its result.

    ``is_done`` may raise to abort early (e.g. on a vendor-reported failure).

    Args:
        fetch: Reads the current state
        is_done: Predicate on the state
        policy: Attempt budget and interval
        clock: Time source
        description: Human-readable subject used in logs and errors
        provider: Vendor tag for the timeout error

    Returns:
        The accepted state

    Raises:
        CloudTimeoutError: If the budget is exhausted
    """
    for attempt in range(1, policy.max_attempts + 1):
        value = fetch()
        if is_done(value):
            return value
        log.debug(f"Waiting for {description} (attempt {attempt}/{policy.max_attempts})")
        if attempt < policy.max_attempts:
            clock.sleep(policy.delay())

    raise CloudTimeoutError(
        f"Timed out waiting for {description}; the operation may still complete",
        provider=provider,
    )


def retry_call(
    fn: Callable[[], T],
    policy: BackoffPolicy,
    clock: Clock,
    is_transient: Callable[[Exception], bool],
    description: str = "request",
) -> T:
    """Invoke ``fn``, retrying while it raises transient errors.

    The last exception propagates once the attempt budget is spent.
    Non-transient errors propagate immediately.
    """
    attempt = 1
    while True:
        try:
            return fn()
        except Exception as e:
            if attempt >= policy.max_attempts or not is_transient(e):
                raise
            delay = policy.delay()
            log.warning(
                f"Transient failure on {description} "
                f"(attempt {attempt}/{policy.max_attempts}), retrying in {delay:.1f}s: {e}"
            )
            clock.sleep(delay)
            attempt += 1
