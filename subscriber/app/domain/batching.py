"""Size/time window batching (tumbling windows).

`grouped_within` groups elements of an async iterator into lists that are
emitted when either `max_batch_size` elements are buffered or
`max_batch_delay` seconds have passed since the first buffered element
arrived. The delay timer only runs while the buffer is non-empty, so an idle
source never produces an empty batch.

Upstream reads happen in a helper task that survives a timer flush: the
element being awaited when the timer fires is not lost, it lands in the next
window.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, AsyncIterator, TypeVar

from loguru import logger

from subscriber.app.core import SERVICE_NAME
from subscriber.app.domain.errors import BatchConfigurationError

T = TypeVar("T")


def _log(event: str, **kwargs: Any) -> None:
    logger.bind(service_name=SERVICE_NAME, event=event, **kwargs).info("")


@dataclass(frozen=True, init=False)
class BatchPolicy:
    """Flush policy: whichever of `max_batch_size` or `max_batch_delay` (seconds) is hit first."""

    max_batch_size: int
    max_batch_delay: float

    def __init__(self, max_batch_size: int, max_batch_delay: float | timedelta) -> None:
        if isinstance(max_batch_delay, timedelta):
            max_batch_delay = max_batch_delay.total_seconds()
        if isinstance(max_batch_size, bool) or not isinstance(max_batch_size, int):
            raise BatchConfigurationError("max_batch_size must be an int")
        if max_batch_size <= 0:
            raise BatchConfigurationError(f"max_batch_size must be positive, got {max_batch_size}")
        if max_batch_delay <= 0:
            raise BatchConfigurationError(f"max_batch_delay must be positive, got {max_batch_delay}")
        object.__setattr__(self, "max_batch_size", max_batch_size)
        object.__setattr__(self, "max_batch_delay", float(max_batch_delay))


async def _next(iterator: AsyncIterator[T]) -> T:
    return await iterator.__anext__()


async def grouped_within(source: AsyncIterator[T], policy: BatchPolicy) -> AsyncIterator[list[T]]:
    loop = asyncio.get_running_loop()
    iterator = source.__aiter__()
    buffer: list[T] = []
    deadline: float | None = None
    pending: asyncio.Task[T] | None = None
    failure: BaseException | None = None

    try:
        while True:
            if deadline is not None and loop.time() >= deadline:
                batch, buffer, deadline = buffer, [], None
                yield batch
                continue

            if pending is None:
                pending = asyncio.create_task(_next(iterator))
            timeout = None if deadline is None else deadline - loop.time()
            done, _ = await asyncio.wait({pending}, timeout=timeout)
            if not done:
                continue

            task, pending = pending, None
            try:
                item = task.result()
            except StopAsyncIteration:
                break
            except Exception as exc:
                failure = exc
                break

            buffer.append(item)
            if len(buffer) == 1:
                deadline = loop.time() + policy.max_batch_delay
            if len(buffer) >= policy.max_batch_size:
                batch, buffer, deadline = buffer, [], None
                yield batch

        if buffer:
            batch, buffer = buffer, []
            yield batch
        if failure is not None:
            raise failure
    finally:
        if pending is not None and not pending.done():
            pending.cancel()
        if buffer:
            _log("batch_discarded", discarded=len(buffer))
