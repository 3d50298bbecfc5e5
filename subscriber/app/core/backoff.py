"""Backoff utilities.

`exponential_backoff` yields the current delay for the caller to attempt an
operation, then sleeps before the next attempt. Connect loops iterate it and
``break`` on success.

With `jitter` > 0 each sleep is drawn from ``[delay * (1 - jitter), delay]`` so
that several subscribers polling the same service do not retry in lockstep.
"""
from __future__ import annotations

import asyncio
import random
from typing import AsyncIterator


async def exponential_backoff(
    initial_delay: float,
    max_delay: float,
    multiplier: float,
    max_attempts: int,
    *,
    jitter: float = 0.0,
) -> AsyncIterator[float]:
    if not 0.0 <= jitter <= 1.0:
        raise ValueError(f"jitter must be within [0, 1], got {jitter}")
    delay = initial_delay
    for attempt in range(1, max_attempts + 1):
        yield delay
        if attempt < max_attempts:
            delay = min(delay * multiplier, max_delay)
            await asyncio.sleep(delay * (1.0 - random.uniform(0.0, jitter)) if jitter else delay)
