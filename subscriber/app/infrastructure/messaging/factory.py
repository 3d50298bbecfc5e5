"""Subscription factory: selects implementation from config. Only place that imports concrete adapters."""
from __future__ import annotations

from dataclasses import dataclass

from subscriber.app.config.settings import Settings
from subscriber.app.constants import BACKEND
from subscriber.app.infrastructure.messaging.inmemory.in_memory_subscription import (
    InMemoryAcknowledgementSink,
    InMemorySubscription,
)
from subscriber.app.infrastructure.messaging.pubsub.pubsub_client import PubSubClient
from subscriber.app.infrastructure.messaging.pubsub.pubsub_subscription import (
    PubSubAcknowledgementSink,
    PubSubPublisher,
    PubSubSubscriptionSource,
)
from subscriber.app.infrastructure.messaging.rabbitmq.rabbitmq_ack_sink import RabbitMQAcknowledgementSink
from subscriber.app.infrastructure.messaging.rabbitmq.rabbitmq_subscription import RabbitMQSubscription
from subscriber.app.ports.acknowledgement_sink import AcknowledgementSink
from subscriber.app.ports.http_client import AbstractHttpClient
from subscriber.app.ports.message_publisher import MessagePublisher
from subscriber.app.ports.subscription_source import SubscriptionSource


@dataclass(frozen=True)
class SubscriptionBackend:
    """Source and ack sink of one subscription; publisher where the backend can publish."""

    source: SubscriptionSource
    ack_sink: AcknowledgementSink
    publisher: MessagePublisher | None = None


def create_subscription_backend(
    settings: Settings,
    *,
    http_client: AbstractHttpClient | None = None,
) -> SubscriptionBackend:
    backend = settings.subscription_backend.strip().lower()

    if backend == BACKEND.RABBITMQ:
        subscription = RabbitMQSubscription(settings)
        return SubscriptionBackend(subscription, RabbitMQAcknowledgementSink(subscription))

    if backend == BACKEND.PUBSUB:
        if http_client is None:
            raise ValueError("pubsub backend requires an http client")
        client = PubSubClient(http_client, settings)
        return SubscriptionBackend(
            PubSubSubscriptionSource(client, settings),
            PubSubAcknowledgementSink(client),
            PubSubPublisher(client),
        )

    if backend == BACKEND.INMEMORY:
        if settings.inmemory_ack_deadline_seconds <= settings.max_batch_delay_seconds:
            # Deliveries would expire and be redelivered before their ack window flushes.
            raise ValueError(
                "inmemory_ack_deadline_seconds must exceed max_batch_delay_seconds, "
                f"got {settings.inmemory_ack_deadline_seconds} <= {settings.max_batch_delay_seconds}"
            )
        in_memory = InMemorySubscription(ack_deadline_seconds=settings.inmemory_ack_deadline_seconds)
        return SubscriptionBackend(in_memory, InMemoryAcknowledgementSink(in_memory), in_memory)

    raise ValueError(f"Unsupported subscription backend: {backend}")
