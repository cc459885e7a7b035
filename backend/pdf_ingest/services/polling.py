"""
Poll-with-timeout primitive.

Used for the "wait for remote indexing" step. Interval, deadline, terminal
predicate, clock and sleep are all parameters, so tests drive it with a fake
clock instead of real time.

    outcome = await poll_until(
        lambda: store.describe(file_id),
        is_terminal=lambda state: state.status != IndexStatus.PROCESSING,
        interval=2.0,
        timeout=300.0,
    )
    if outcome.timed_out: ...
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class PollOutcome(Generic[T]):
    value:     T | None   # last observed value (None if never probed)
    timed_out: bool
    attempts:  int
    elapsed:   float      # seconds, measured on the injected clock


async def poll_until(
    probe:       Callable[[], Awaitable[T]],
    is_terminal: Callable[[T], bool],
    interval:    float,
    timeout:     float,
    clock:       Callable[[], float] = time.monotonic,
    sleep:       Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> PollOutcome[T]:
    """
    Call `probe` until `is_terminal(value)` or `timeout` seconds elapse.

    The probe runs at least once. Sleeps never overshoot the deadline, and a
    final probe is made at the deadline so a state that turned terminal
    during the last interval is not reported as a timeout. Exceptions
    raised by `probe` propagate.
    """
    if interval <= 0:
        raise ValueError("interval must be positive")

    start = clock()
    deadline = start + timeout
    attempts = 0
    value: T | None = None

    while True:
        value = await probe()
        attempts += 1
        now = clock()

        if is_terminal(value):
            return PollOutcome(value=value, timed_out=False, attempts=attempts, elapsed=now - start)

        if now >= deadline:
            logger.warning(
                "Poll timeout | attempts=%d elapsed=%.1fs timeout=%.1fs",
                attempts, now - start, timeout,
            )
            return PollOutcome(value=value, timed_out=True, attempts=attempts, elapsed=now - start)

        await sleep(min(interval, deadline - now))
