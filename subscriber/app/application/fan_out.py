"""Broadcast one async source to several independent consumers (alsoTo).

A single pump task reads the source and puts every element into one bounded
queue per branch. Each branch buffers up to `buffer_size` elements on its own,
so a slow branch only holds back the others once its buffer is full.

Upstream completion and upstream failure are forwarded to every branch after
the elements that preceded them. The pump itself never raises the upstream
error; it records it on `error` and each branch iterator re-raises it.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, AsyncIterator, Generic, TypeVar

from loguru import logger

from subscriber.app.core import SERVICE_NAME

T = TypeVar("T")

_END = object()


@dataclass(frozen=True)
class _Failure:
    error: Exception


def _log(event: str, **kwargs: Any) -> None:
    logger.bind(service_name=SERVICE_NAME, event=event, **kwargs).info("")


class Broadcast(Generic[T]):
    def __init__(self, source: AsyncIterator[T], *, branches: int, buffer_size: int) -> None:
        if branches < 1:
            raise ValueError(f"branches must be positive, got {branches}")
        if buffer_size < 1:
            raise ValueError(f"buffer_size must be positive, got {buffer_size}")
        self._source = source
        self._queues: list[asyncio.Queue[Any]] = [
            asyncio.Queue(maxsize=buffer_size) for _ in range(branches)
        ]
        self._error: Exception | None = None
        self._forwarded = 0

    @property
    def error(self) -> Exception | None:
        """Upstream failure, once the source has raised."""
        return self._error

    @property
    def forwarded(self) -> int:
        return self._forwarded

    def branch(self, index: int) -> AsyncIterator[T]:
        return self._drain(self._queues[index])

    async def _drain(self, queue: asyncio.Queue[Any]) -> AsyncIterator[T]:
        while True:
            item = await queue.get()
            if item is _END:
                return
            if isinstance(item, _Failure):
                raise item.error
            yield item

    async def _put_all(self, item: Any) -> None:
        for queue in self._queues:
            await queue.put(item)

    async def run(self) -> None:
        """Pump the source into every branch until it completes or fails."""
        try:
            async for item in self._source:
                await self._put_all(item)
                self._forwarded += 1
        except Exception as exc:
            self._error = exc
            logger.warning("upstream failed after {} messages: {}", self._forwarded, exc)
            _log("upstream_failed", forwarded=self._forwarded, error=str(exc))
            await self._put_all(_Failure(exc))
            return
        _log("upstream_completed", forwarded=self._forwarded)
        await self._put_all(_END)
