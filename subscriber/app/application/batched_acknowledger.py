from __future__ import annotations

import asyncio
from typing import Any, AsyncIterator

from loguru import logger

from subscriber.app.core import SERVICE_NAME
from subscriber.app.domain.batching import BatchPolicy, grouped_within
from subscriber.app.domain.errors import AcknowledgementError, BatchConfigurationError
from subscriber.app.domain.models import AcknowledgeBatch, AcknowledgerStats, ReceivedMessage
from subscriber.app.ports.acknowledgement_sink import AcknowledgementSink


def _log(event: str, **kwargs: Any) -> None:
    logger.bind(service_name=SERVICE_NAME, event=event, **kwargs).info("")


class BatchedAcknowledger:
    """
    Groups ack tokens of received messages and hands each group to an acknowledgement sink once.

    Batches go through a bounded outbox drained in order by a single sender task. A full
    outbox suspends batching, which in turn stops reading messages, so a slow sink
    backpressures the subscription instead of queuing without bound.

    A batch the sink rejects is counted, logged and put on the `errors` channel. Its tokens
    are not retried: the subscription redelivers them once their ack deadline expires. With
    fail_on_ack_error=True the first rejection also ends run() with that error.

    On upstream failure the partial batch is flushed and sent before the error is re-raised.
    On cancellation buffered and queued tokens are dropped without a flush.
    """

    def __init__(
        self,
        ack_sink: AcknowledgementSink,
        policy: BatchPolicy,
        *,
        max_pending_batches: int = 1,
        fail_on_ack_error: bool = False,
        errors: asyncio.Queue[Exception] | None = None,
    ) -> None:
        if max_pending_batches <= 0:
            raise BatchConfigurationError(
                f"max_pending_batches must be positive, got {max_pending_batches}"
            )
        self._ack_sink = ack_sink
        self._policy = policy
        self._max_pending_batches = int(max_pending_batches)
        self._fail_on_ack_error = fail_on_ack_error
        self._errors = errors
        self._stats = AcknowledgerStats()
        self._tokens_seen = 0
        self._fatal: AcknowledgementError | None = None

    @property
    def policy(self) -> BatchPolicy:
        return self._policy

    @property
    def stats(self) -> AcknowledgerStats:
        return self._stats

    async def _tokens(self, messages: AsyncIterator[ReceivedMessage]) -> AsyncIterator[str]:
        async for message in messages:
            self._tokens_seen += 1
            yield message.ack_token

    async def run(self, messages: AsyncIterator[ReceivedMessage]) -> AcknowledgerStats:
        outbox: asyncio.Queue[AcknowledgeBatch | None] = asyncio.Queue(
            maxsize=self._max_pending_batches
        )
        sender = asyncio.create_task(self._send_loop(outbox))
        batcher = asyncio.create_task(self._batch_loop(messages, outbox))
        upstream_error: Exception | None = None
        try:
            done, _ = await asyncio.wait({sender, batcher}, return_when=asyncio.FIRST_COMPLETED)
            if batcher in done:
                upstream_error = batcher.result()
                await sender
            else:
                # Sender only stops before the end-of-stream marker on a fatal ack failure.
                await self._cancel(batcher)
                sender.result()
        except asyncio.CancelledError:
            _log("acknowledger_cancelled")
            await self._cancel(batcher, sender)
            raise
        finally:
            self._stats.tokens_discarded = (
                self._tokens_seen - self._stats.tokens_acknowledged - self._stats.tokens_failed
            )
            if self._stats.tokens_discarded:
                _log("tokens_discarded", discarded=self._stats.tokens_discarded)

        if upstream_error is not None:
            raise upstream_error
        if self._fatal is not None:
            raise self._fatal
        return self._stats

    async def _cancel(self, *tasks: asyncio.Task[Any]) -> None:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    async def _batch_loop(
        self,
        messages: AsyncIterator[ReceivedMessage],
        outbox: asyncio.Queue[AcknowledgeBatch | None],
    ) -> Exception | None:
        """Feed batches to the outbox, then the end marker. Returns the upstream error, if any."""
        batches = grouped_within(self._tokens(messages), self._policy)
        upstream_error: Exception | None = None
        try:
            async for tokens in batches:
                batch = AcknowledgeBatch.of(tokens)
                _log("batch_flushed", size=len(batch))
                await outbox.put(batch)
        except Exception as exc:
            upstream_error = exc
        finally:
            await batches.aclose()
        await outbox.put(None)
        return upstream_error

    async def _send_loop(self, outbox: asyncio.Queue[AcknowledgeBatch | None]) -> None:
        while True:
            batch = await outbox.get()
            if batch is None:
                return
            try:
                await self._ack_sink.acknowledge(batch)
            except Exception as exc:
                await self._on_ack_failure(batch, exc)
                if self._fatal is not None:
                    return
                continue
            self._stats.batches_sent += 1
            self._stats.tokens_acknowledged += len(batch)
            _log("batch_acknowledged", size=len(batch))

    async def _on_ack_failure(self, batch: AcknowledgeBatch, exc: Exception) -> None:
        if isinstance(exc, AcknowledgementError):
            error = exc
            if error.batch is None:
                error.batch = batch
        else:
            error = AcknowledgementError(f"acknowledge failed: {exc}", batch=batch)
            error.__cause__ = exc
        self._stats.batches_failed += 1
        self._stats.tokens_failed += len(batch)
        logger.warning("acknowledge of {} tokens failed: {}", len(batch), exc)
        _log("batch_ack_failed", size=len(batch), error=str(exc))
        if self._errors is not None:
            await self._errors.put(error)
        if self._fail_on_ack_error:
            self._fatal = error
