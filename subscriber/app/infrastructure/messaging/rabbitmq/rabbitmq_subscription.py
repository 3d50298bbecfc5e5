"""
RabbitMQ subscription: connection lifecycle, queue declaration, and delivery stream.

Lifecycle:
  DISCONNECTED -> CONNECTING (backoff) -> CONNECTED -> CHANNEL_OPEN ->
  QUEUE_DECLARED -> READY -> CONSUMING (once messages() is iterated).
  On broker disconnect: CONSUMING -> RECONNECTING (backoff) -> CONNECTED -> ... -> CONSUMING
  (re-subscribes with the stored handler). If reconnecting gives up, the delivery
  stream fails with UpstreamError.
  On shutdown: CLOSING -> cancel consumer, end the delivery stream, close channel/connection -> CLOSED.

Ack tokens:
  A token is "<generation>.<delivery_tag>". The generation is bumped on every reconnect
  because delivery tags restart per channel; tokens of a previous channel are unknown
  to the new one and are reported as such. The broker redelivers those messages.

Concurrency:
  - Connection close callback may run from another thread; we schedule _reconnect_loop
    on the event loop via call_soon_threadsafe(create_task(...)).
  - close() and _reconnect_loop both acquire _lock around teardown and re-subscribe
    respectively, so we never close the channel while consume() is in progress, and
    reconnect re-checks _closing under the lock before subscribing.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, AsyncIterator, Awaitable, Callable, Iterable

import aio_pika
from aio_pika.abc import AbstractIncomingMessage
from loguru import logger

from subscriber.app.config.settings import Settings
from subscriber.app.core import SERVICE_NAME
from subscriber.app.core.backoff import exponential_backoff
from subscriber.app.domain.errors import UpstreamError
from subscriber.app.domain.models import ReceivedMessage
from subscriber.app.infrastructure.messaging.rabbitmq.constants import ConsumerState

_END = object()


@dataclass(frozen=True)
class _Failure:
    error: Exception


def _log(event: str, **kwargs: Any) -> None:
    logger.bind(service_name=SERVICE_NAME, event=event, **kwargs).info("")


class RabbitMQSubscription:
    """SubscriptionSource implementation over a durable RabbitMQ queue."""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings
        self._state = ConsumerState.DISCONNECTED
        self._connection: aio_pika.abc.AbstractRobustConnection | None = None
        self._channel: aio_pika.abc.AbstractChannel | None = None
        self._queue: aio_pika.abc.AbstractQueue | None = None
        self._lock = asyncio.Lock()
        self._reconnect_task: asyncio.Task[None] | None = None
        self._closing = False
        self._loop: asyncio.AbstractEventLoop | None = None
        self._handler: Callable[[AbstractIncomingMessage], Awaitable[None]] | None = None
        self._consumer_tag: str | None = None
        self._generation = 0
        self._in_flight: dict[str, AbstractIncomingMessage] = {}
        # Bounded by the broker: at most prefetch_count unacked deliveries are pushed.
        self._deliveries: asyncio.Queue[Any] = asyncio.Queue()

    @property
    def state(self) -> ConsumerState:
        return self._state

    @property
    def in_flight(self) -> int:
        return len(self._in_flight)

    def _set_state(self, state: ConsumerState) -> None:
        self._state = state

    def _build_amqp_url(self) -> str:
        return (
            f"amqp://{self._settings.broker_user}:{self._settings.broker_password}"
            f"@{self._settings.broker_host}:{self._settings.broker_port}/"
        )

    def _register_close_callback(self, connection: Any) -> None:
        conn = getattr(connection, "connection", connection)
        if callable(getattr(conn, "add_close_callback", None)):
            conn.add_close_callback(self._on_connection_closed)

    def _on_connection_closed(self, *args: Any, **kwargs: Any) -> None:
        if self._closing:
            return
        self._set_state(ConsumerState.RECONNECTING)
        _log("broker_disconnect_detected", in_flight=len(self._in_flight))
        if (self._reconnect_task is None or self._reconnect_task.done()) and self._loop:
            def schedule() -> None:
                self._reconnect_task = asyncio.create_task(self._reconnect_loop())
            self._loop.call_soon_threadsafe(schedule)

    async def _open_channel_and_declare(self) -> None:
        if not self._connection:
            return
        self._set_state(ConsumerState.CHANNEL_OPEN)
        self._channel = await self._connection.channel()
        await self._channel.set_qos(prefetch_count=self._settings.prefetch_count)
        self._queue = await self._channel.declare_queue(
            self._settings.queue_name,
            durable=True,
            arguments={
                "x-max-length": self._settings.queue_max_length,
                "x-overflow": "reject-publish",
            },
        )
        self._generation += 1
        self._in_flight.clear()
        self._set_state(ConsumerState.QUEUE_DECLARED)
        self._set_state(ConsumerState.READY)

    async def _close_channel_and_connection(self) -> None:
        self._queue = None
        self._consumer_tag = None
        if self._channel:
            try:
                await self._channel.close()
            except Exception as e:
                logger.warning("channel close failed (continuing to close connection): {}", e)
            self._channel = None
        if self._connection:
            try:
                await self._connection.close()
            except Exception as e:
                logger.warning("connection close failed: {}", e)
            self._connection = None

    async def connect(self) -> None:
        self._set_state(ConsumerState.CONNECTING)
        _log("rmq_connecting")
        attempt = 0
        async for delay in exponential_backoff(
            self._settings.initial_backoff_seconds,
            self._settings.max_backoff_seconds,
            self._settings.backoff_multiplier,
            self._settings.max_connection_attempts,
        ):
            attempt += 1
            _log("rmq_connect_attempt", attempt=attempt, delay=delay)
            try:
                self._connection = await aio_pika.connect_robust(self._build_amqp_url())
                self._loop = asyncio.get_running_loop()
                self._register_close_callback(self._connection)
                break
            except Exception as e:
                logger.warning("rmq connect failed: {}", e)
                if attempt >= self._settings.max_connection_attempts:
                    _log("rmq_connect_failed", attempt=attempt)
                    self._set_state(ConsumerState.DISCONNECTED)
                    raise
        self._set_state(ConsumerState.CONNECTED)
        _log("rmq_connected")
        await self._open_channel_and_declare()

    async def _on_message(self, raw_message: AbstractIncomingMessage) -> None:
        token = f"{self._generation}.{raw_message.delivery_tag}"
        self._in_flight[token] = raw_message
        message = ReceivedMessage(
            id=raw_message.message_id or token,
            payload=raw_message.body,
            ack_token=token,
        )
        self._deliveries.put_nowait(message)

    async def _subscribe(self) -> None:
        async with self._lock:
            if self._queue is None:
                raise RuntimeError("subscription not connected")
            self._handler = self._on_message
            self._consumer_tag = await self._queue.consume(self._on_message, no_ack=False)
            self._set_state(ConsumerState.CONSUMING)
            _log("rmq_consuming", queue=self._settings.queue_name, generation=self._generation)

    async def messages(self) -> AsyncIterator[ReceivedMessage]:
        await self._subscribe()
        while True:
            item = await self._deliveries.get()
            if item is _END:
                return
            if isinstance(item, _Failure):
                raise item.error
            yield item

    async def ack_tokens(self, tokens: Iterable[str]) -> tuple[list[str], list[str]]:
        """Ack each token's delivery. Returns (unknown tokens, tokens whose ack failed)."""
        unknown: list[str] = []
        failed: list[str] = []
        for token in tokens:
            raw_message = self._in_flight.pop(token, None)
            if raw_message is None:
                unknown.append(token)
                continue
            try:
                await raw_message.ack()
            except Exception as e:
                logger.warning("ack failed for delivery {}: {}", token, e)
                failed.append(token)
        return unknown, failed

    async def _reconnect_loop(self) -> None:
        self._set_state(ConsumerState.RECONNECTING)
        attempt = 0
        async for delay in exponential_backoff(
            self._settings.initial_backoff_seconds,
            self._settings.max_backoff_seconds,
            self._settings.backoff_multiplier,
            self._settings.max_connection_attempts,
        ):
            if self._closing:
                return
            attempt += 1
            _log("rmq_reconnect_attempt", attempt=attempt, delay=delay)
            try:
                self._connection = await aio_pika.connect_robust(self._build_amqp_url())
                if self._loop is None:
                    self._loop = asyncio.get_running_loop()
                self._register_close_callback(self._connection)
                self._set_state(ConsumerState.CONNECTED)
                await self._open_channel_and_declare()
                async with self._lock:
                    if self._closing:
                        return
                    if self._handler is not None and self._queue is not None:
                        self._consumer_tag = await self._queue.consume(self._handler, no_ack=False)
                        self._set_state(ConsumerState.CONSUMING)
                _log("rmq_reconnected", generation=self._generation)
                return
            except Exception as e:
                logger.warning("reconnect failed: {}", e)
        _log("rmq_reconnect_exhausted", max_attempts=self._settings.max_connection_attempts)
        self._set_state(ConsumerState.DISCONNECTED)
        self._deliveries.put_nowait(_Failure(UpstreamError("broker connection lost")))

    async def close(self) -> None:
        self._closing = True
        self._set_state(ConsumerState.CLOSING)
        _log("consumer_shutdown", in_flight=len(self._in_flight))
        if self._reconnect_task is not None and not self._reconnect_task.done():
            self._reconnect_task.cancel()
            try:
                await self._reconnect_task
            except asyncio.CancelledError:
                pass
        async with self._lock:
            if self._queue is not None and self._consumer_tag is not None:
                try:
                    await self._queue.cancel(self._consumer_tag)
                except Exception as e:
                    logger.warning("consumer cancel failed: {}", e)
            await self._close_channel_and_connection()
        self._in_flight.clear()
        self._deliveries.put_nowait(_END)
        self._set_state(ConsumerState.CLOSED)
