"""
Subscription pipeline: source.alsoTo(batched acknowledger).to(processing sink).

Every delivered message is broadcast to two branches that run concurrently:
  - the BatchedAcknowledger, which batches ack tokens and sends them to the ack sink;
  - the processing sink, which receives each message unchanged, in arrival order.

Termination:
  - Source completes: both branches drain, the acknowledger flushes its partial batch,
    run() returns the acknowledger stats.
  - Source fails: both branches drain, the acknowledger flushes and sends its partial
    batch, then run() raises UpstreamError.
  - Acknowledger fails on its own (fail_on_ack_error): the other tasks are cancelled and
    run() raises the AcknowledgementError.
  - stop(): all tasks are cancelled, buffered tokens are discarded, run() returns.

Processing sink errors are per message: logged, put on the errors channel, and the
processing branch moves on to the next message.
"""
from __future__ import annotations

import asyncio
from typing import Any, AsyncIterator

from loguru import logger

from subscriber.app.application.batched_acknowledger import BatchedAcknowledger
from subscriber.app.application.fan_out import Broadcast
from subscriber.app.constants import PIPELINE_STATE
from subscriber.app.core import SERVICE_NAME
from subscriber.app.domain.errors import UpstreamError
from subscriber.app.domain.models import AcknowledgerStats, ReceivedMessage
from subscriber.app.ports.processing_sink import ProcessingSink
from subscriber.app.ports.subscription_source import SubscriptionSource

ACK_BRANCH = 0
PROCESSING_BRANCH = 1


def _log(event: str, **kwargs: Any) -> None:
    logger.bind(service_name=SERVICE_NAME, event=event, **kwargs).info("")


class SubscriptionPipeline:
    def __init__(
        self,
        source: SubscriptionSource,
        acknowledger: BatchedAcknowledger,
        processing_sink: ProcessingSink,
        *,
        buffer_size: int = 1000,
        errors: asyncio.Queue[Exception] | None = None,
    ) -> None:
        self._source = source
        self._acknowledger = acknowledger
        self._processing_sink = processing_sink
        self._buffer_size = int(buffer_size)
        self._errors = errors
        self._state = PIPELINE_STATE.IDLE
        self._tasks: list[asyncio.Task[Any]] = []
        self._stopping = False
        self.processed = 0
        self.processing_failures = 0

    @property
    def state(self) -> str:
        return self._state

    @property
    def acknowledger(self) -> BatchedAcknowledger:
        return self._acknowledger

    async def _process(self, messages: AsyncIterator[ReceivedMessage]) -> None:
        async for message in messages:
            try:
                await self._processing_sink.process(message)
                self.processed += 1
            except Exception as exc:
                self.processing_failures += 1
                logger.exception("message processing failed: {}", exc)
                _log("processing_failed", message_id=message.id, error=str(exc))
                if self._errors is not None:
                    await self._errors.put(exc)

    async def run(self) -> AcknowledgerStats:
        if self._state == PIPELINE_STATE.RUNNING:
            raise RuntimeError("pipeline already running")
        broadcast: Broadcast[ReceivedMessage] = Broadcast(
            self._source.messages(), branches=2, buffer_size=self._buffer_size
        )
        pump = asyncio.create_task(broadcast.run(), name="subscription-fan-out")
        ack = asyncio.create_task(
            self._acknowledger.run(broadcast.branch(ACK_BRANCH)), name="batched-acknowledger"
        )
        processing = asyncio.create_task(
            self._process(broadcast.branch(PROCESSING_BRANCH)), name="processing-sink"
        )
        self._tasks = [pump, ack, processing]
        self._state = PIPELINE_STATE.RUNNING
        self._stopping = False
        _log("pipeline_started", buffer_size=self._buffer_size)

        try:
            _, pending = await asyncio.wait(self._tasks, return_when=asyncio.FIRST_EXCEPTION)
            if pending and broadcast.error is None:
                # A branch failed by itself; upstream is still live.
                await self._cancel(pending)
            elif pending:
                await asyncio.wait(pending)
        except asyncio.CancelledError:
            await self._cancel(self._tasks)
            self._state = PIPELINE_STATE.CANCELLED
            _log("pipeline_stopped", state=self._state)
            raise

        failures = [t.exception() for t in self._tasks if not t.cancelled() and t.exception()]
        if self._stopping:
            self._state = PIPELINE_STATE.CANCELLED
            _log("pipeline_stopped", state=self._state)
            return self._acknowledger.stats
        if broadcast.error is not None:
            self._state = PIPELINE_STATE.FAILED
            _log("pipeline_stopped", state=self._state, error=str(broadcast.error))
            raise UpstreamError(f"subscription failed: {broadcast.error}") from broadcast.error
        if failures:
            self._state = PIPELINE_STATE.FAILED
            _log("pipeline_stopped", state=self._state, error=str(failures[0]))
            raise failures[0]

        self._state = PIPELINE_STATE.COMPLETED
        _log(
            "pipeline_stopped",
            state=self._state,
            forwarded=broadcast.forwarded,
            processed=self.processed,
        )
        return self._acknowledger.stats

    async def _cancel(self, tasks: Any) -> None:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    def stop(self) -> None:
        """Cancel a running pipeline. Unflushed ack tokens are discarded."""
        if self._state != PIPELINE_STATE.RUNNING:
            return
        self._stopping = True
        for task in self._tasks:
            if not task.done():
                task.cancel()
