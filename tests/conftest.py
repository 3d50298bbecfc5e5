from __future__ import annotations

import asyncio
from typing import Any, AsyncIterator, Iterable

import pytest

from subscriber.app.domain.errors import AcknowledgementError
from subscriber.app.domain.models import AcknowledgeBatch, PublishBatch, ReceivedMessage


def make_messages(count: int, *, prefix: str = "m") -> list[ReceivedMessage]:
    return [
        ReceivedMessage(id=f"{prefix}{i}", payload=f"payload-{i}".encode(), ack_token=f"ack-{prefix}{i}")
        for i in range(count)
    ]


async def iterate(
    items: Iterable[Any],
    *,
    delay: float = 0.0,
    error: Exception | None = None,
    hold: asyncio.Event | None = None,
) -> AsyncIterator[Any]:
    """Async source over `items`: optional per-item delay, then optional failure, or hold open until `hold` is set."""
    for item in items:
        if delay:
            await asyncio.sleep(delay)
        yield item
    if hold is not None:
        await hold.wait()
    if error is not None:
        raise error


async def next_item(stream: AsyncIterator[Any]) -> Any:
    """Coroutine wrapper so `stream.__anext__()` can run as a task."""
    return await stream.__anext__()


class FakeSource:
    """Implements SubscriptionSource for tests; messages() replays the given async iterator once."""

    def __init__(self, messages: AsyncIterator[ReceivedMessage]) -> None:
        self._messages = messages
        self.connected = False
        self.closed = False

    async def connect(self) -> None:
        self.connected = True

    def messages(self) -> AsyncIterator[ReceivedMessage]:
        return self._messages

    async def close(self) -> None:
        self.closed = True


class FakeAckSink:
    """Implements AcknowledgementSink for tests; records batches and the loop time they arrived."""

    def __init__(
        self,
        *,
        fail_on_calls: Iterable[int] = (),
        delay: float = 0.0,
        raise_with: type[Exception] = AcknowledgementError,
    ) -> None:
        self.batches: list[AcknowledgeBatch] = []
        self.received_at: list[float] = []
        self.calls = 0
        self._fail_on_calls = set(fail_on_calls)
        self._delay = delay
        self._raise_with = raise_with
        self.batch_arrived = asyncio.Event()

    @property
    def tokens(self) -> list[str]:
        return [token for batch in self.batches for token in batch.tokens]

    async def acknowledge(self, batch: AcknowledgeBatch) -> None:
        self.calls += 1
        if self._delay:
            await asyncio.sleep(self._delay)
        if self.calls in self._fail_on_calls:
            raise self._raise_with(f"ack call {self.calls} rejected")
        self.batches.append(batch)
        self.received_at.append(asyncio.get_running_loop().time())
        self.batch_arrived.set()


class CapturingProcessingSink:
    """Implements ProcessingSink for tests; optional per-message latency and failing ids."""

    def __init__(self, *, delay: float = 0.0, fail_ids: Iterable[str] = ()) -> None:
        self.messages: list[ReceivedMessage] = []
        self._delay = delay
        self._fail_ids = set(fail_ids)
        self.closed = False

    async def process(self, message: ReceivedMessage) -> None:
        if self._delay:
            await asyncio.sleep(self._delay)
        if message.id in self._fail_ids:
            raise RuntimeError(f"cannot process {message.id}")
        self.messages.append(message)

    async def close(self) -> None:
        self.closed = True


class FakePublisher:
    """Implements MessagePublisher for tests; assigns sequential ids."""

    def __init__(self, *, raise_on_publish: Exception | None = None) -> None:
        self.batches: list[PublishBatch] = []
        self._raise_on_publish = raise_on_publish
        self._next_id = 0

    @property
    def ready(self) -> bool:
        return True

    async def connect(self) -> None:
        return

    async def publish(self, batch: PublishBatch) -> list[str]:
        if self._raise_on_publish is not None:
            raise self._raise_on_publish
        self.batches.append(batch)
        ids = []
        for _ in batch.messages:
            self._next_id += 1
            ids.append(str(self._next_id))
        return ids

    async def close(self) -> None:
        return


@pytest.fixture()
def ack_sink() -> FakeAckSink:
    return FakeAckSink()


@pytest.fixture()
def processing_sink() -> CapturingProcessingSink:
    return CapturingProcessingSink()
