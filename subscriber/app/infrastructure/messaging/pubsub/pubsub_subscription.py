"""Pub/Sub pull subscription source, acknowledgement sink and publisher."""
from __future__ import annotations

import asyncio
from typing import Any, AsyncIterator

from loguru import logger

from subscriber.app.config.settings import Settings
from subscriber.app.core import SERVICE_NAME
from subscriber.app.core.backoff import exponential_backoff
from subscriber.app.domain.errors import UpstreamError
from subscriber.app.domain.models import AcknowledgeBatch, PublishBatch, ReceivedMessage
from subscriber.app.infrastructure.messaging.pubsub.pubsub_client import PubSubClient

# Fraction of each pull retry delay that is randomised.
_PULL_RETRY_JITTER = 0.2


def _log(event: str, **kwargs: Any) -> None:
    logger.bind(service_name=SERVICE_NAME, event=event, **kwargs).info("")


class PubSubSubscriptionSource:
    """Polls subscriptions.pull; sleeps with growing delay while the subscription is empty."""

    def __init__(self, client: PubSubClient, settings: Settings) -> None:
        self._client = client
        self._settings = settings
        self._closed = False

    async def connect(self) -> None:
        self._closed = False
        _log("pubsub_subscription_ready", subscription=self._client.subscription_url)

    async def _pull_with_retry(self) -> list[ReceivedMessage]:
        attempt = 0
        async for delay in exponential_backoff(
            self._settings.initial_backoff_seconds,
            self._settings.max_backoff_seconds,
            self._settings.backoff_multiplier,
            self._settings.max_connection_attempts,
            jitter=_PULL_RETRY_JITTER,
        ):
            attempt += 1
            try:
                return await self._client.pull(self._settings.pubsub_max_messages)
            except UpstreamError as exc:
                logger.warning("pubsub pull failed (attempt {}): {}", attempt, exc)
                _log("pubsub_pull_failed", attempt=attempt, delay=delay)
                if attempt >= self._settings.max_connection_attempts:
                    raise
        raise UpstreamError("pubsub pull failed")

    async def messages(self) -> AsyncIterator[ReceivedMessage]:
        idle_delay = self._settings.pubsub_idle_poll_seconds
        while not self._closed:
            received = await self._pull_with_retry()
            if not received:
                await asyncio.sleep(idle_delay)
                idle_delay = min(idle_delay * self._settings.backoff_multiplier, self._settings.max_backoff_seconds)
                continue
            idle_delay = self._settings.pubsub_idle_poll_seconds
            for message in received:
                yield message

    async def close(self) -> None:
        self._closed = True


class PubSubAcknowledgementSink:
    def __init__(self, client: PubSubClient) -> None:
        self._client = client

    async def acknowledge(self, batch: AcknowledgeBatch) -> None:
        await self._client.acknowledge(batch.tokens)


class PubSubPublisher:
    """MessagePublisher implementation over topics.publish."""

    def __init__(self, client: PubSubClient) -> None:
        self._client = client
        self._ready = False

    @property
    def ready(self) -> bool:
        return self._ready

    async def connect(self) -> None:
        self._ready = True

    async def publish(self, batch: PublishBatch) -> list[str]:
        if not self._ready:
            _log("publish_rejected", reason="publisher_not_ready")
            raise RuntimeError("publisher_not_ready")
        return await self._client.publish(batch.messages)

    async def close(self) -> None:
        self._ready = False
