"""In-memory subscription for tests and local mode.

Behaves like a pull subscription with an ack deadline: every delivery gets a fresh
ack token, unacknowledged deliveries are redelivered (with a new token) once their
deadline expires, and acknowledging an expired or unknown token is rejected.
Publishing and subscribing share the same object so both sides can be wired
without a broker.
"""
from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass
from typing import Any, AsyncIterator, Iterable

from loguru import logger

from subscriber.app.core import SERVICE_NAME
from subscriber.app.domain.errors import AcknowledgementError
from subscriber.app.domain.models import AcknowledgeBatch, PublishBatch, ReceivedMessage

_END = object()


@dataclass(frozen=True)
class _Failure:
    error: Exception


@dataclass(frozen=True)
class _Pending:
    message_id: str
    payload: bytes


@dataclass(frozen=True)
class _Delivery:
    message_id: str
    payload: bytes
    deadline: float


def _log(event: str, **kwargs: Any) -> None:
    logger.bind(service_name=SERVICE_NAME, event=event, **kwargs).info("")


class InMemorySubscription:
    def __init__(self, *, ack_deadline_seconds: float = 10.0) -> None:
        if ack_deadline_seconds <= 0:
            raise ValueError("ack_deadline_seconds must be positive")
        self._ack_deadline = float(ack_deadline_seconds)
        self._queue: asyncio.Queue[Any] = asyncio.Queue()
        self._outstanding: dict[str, _Delivery] = {}
        self._next_id = 0
        self._redelivery_task: asyncio.Task[None] | None = None
        self._connected = False
        self.acknowledged: list[str] = []
        self.redelivered = 0

    @property
    def ready(self) -> bool:
        return self._connected

    @property
    def outstanding(self) -> int:
        return len(self._outstanding)

    async def connect(self) -> None:
        self._connected = True
        if self._redelivery_task is None or self._redelivery_task.done():
            self._redelivery_task = asyncio.create_task(self._redelivery_loop())

    async def close(self) -> None:
        self._connected = False
        if self._redelivery_task is not None and not self._redelivery_task.done():
            self._redelivery_task.cancel()
            try:
                await self._redelivery_task
            except asyncio.CancelledError:
                pass
        self._redelivery_task = None

    def enqueue(self, payload: bytes) -> str:
        self._next_id += 1
        message_id = str(self._next_id)
        self._queue.put_nowait(_Pending(message_id=message_id, payload=bytes(payload)))
        return message_id

    async def publish(self, batch: PublishBatch) -> list[str]:
        return [self.enqueue(message.payload) for message in batch.messages]

    def complete(self) -> None:
        """End the subscription stream once the already-enqueued messages are delivered."""
        self._queue.put_nowait(_END)

    def fail(self, error: Exception) -> None:
        """Fail the subscription stream once the already-enqueued messages are delivered."""
        self._queue.put_nowait(_Failure(error))

    async def messages(self) -> AsyncIterator[ReceivedMessage]:
        loop = asyncio.get_running_loop()
        while True:
            item = await self._queue.get()
            if item is _END:
                return
            if isinstance(item, _Failure):
                raise item.error
            token = uuid.uuid4().hex
            self._outstanding[token] = _Delivery(
                message_id=item.message_id,
                payload=item.payload,
                deadline=loop.time() + self._ack_deadline,
            )
            yield ReceivedMessage(id=item.message_id, payload=item.payload, ack_token=token)

    def acknowledge_tokens(self, tokens: Iterable[str]) -> list[str]:
        """Settle outstanding deliveries. Returns the tokens that were unknown or already expired."""
        unknown: list[str] = []
        for token in tokens:
            delivery = self._outstanding.pop(token, None)
            if delivery is None:
                unknown.append(token)
                continue
            self.acknowledged.append(delivery.message_id)
        return unknown

    def redeliver_expired(self) -> int:
        now = asyncio.get_running_loop().time()
        expired = [token for token, d in self._outstanding.items() if d.deadline <= now]
        for token in expired:
            delivery = self._outstanding.pop(token)
            self._queue.put_nowait(_Pending(message_id=delivery.message_id, payload=delivery.payload))
        if expired:
            self.redelivered += len(expired)
            _log("messages_redelivered", count=len(expired))
        return len(expired)

    async def _redelivery_loop(self) -> None:
        interval = self._ack_deadline / 2
        while True:
            await asyncio.sleep(interval)
            self.redeliver_expired()


class InMemoryAcknowledgementSink:
    """Acknowledges batches against an InMemorySubscription and records what it received."""

    def __init__(self, subscription: InMemorySubscription) -> None:
        self._subscription = subscription
        self.batches: list[AcknowledgeBatch] = []

    async def acknowledge(self, batch: AcknowledgeBatch) -> None:
        self.batches.append(batch)
        unknown = self._subscription.acknowledge_tokens(batch.tokens)
        if unknown:
            logger.warning("{} of {} ack tokens were unknown or expired", len(unknown), len(batch))
            raise AcknowledgementError(
                f"{len(unknown)} unknown or expired ack tokens", batch=batch
            )
