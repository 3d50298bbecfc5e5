"""Unit tests for backend factories and the subscriber composition root."""
from __future__ import annotations

import asyncio

import pytest

from subscriber.app.config.settings import Settings
from subscriber.app.composition import SubscriberDependencies, create_subscriber_dependencies
from subscriber.app.domain.errors import BatchConfigurationError
from subscriber.app.domain.models import OutgoingMessage, PublishBatch
from subscriber.app.infrastructure.messaging.factory import create_subscription_backend
from subscriber.app.infrastructure.messaging.inmemory.in_memory_subscription import InMemorySubscription
from subscriber.app.infrastructure.messaging.pubsub.pubsub_subscription import PubSubSubscriptionSource
from subscriber.app.infrastructure.messaging.rabbitmq.rabbitmq_subscription import RabbitMQSubscription
from subscriber.app.infrastructure.processing.factory import create_processing_sink
from subscriber.app.infrastructure.processing.logging_sink import LoggingProcessingSink


def _settings(monkeypatch, **env: str) -> Settings:
    for key, value in env.items():
        monkeypatch.setenv(key, value)
    return Settings(_env_file=None)


def test_rabbitmq_backend_is_default(monkeypatch):
    backend = create_subscription_backend(_settings(monkeypatch))

    assert isinstance(backend.source, RabbitMQSubscription)
    assert backend.publisher is None


def test_inmemory_backend_publishes_into_its_own_subscription(monkeypatch):
    backend = create_subscription_backend(_settings(monkeypatch, SUBSCRIPTION_BACKEND="InMemory"))

    assert isinstance(backend.source, InMemorySubscription)
    assert backend.publisher is backend.source


def test_pubsub_backend_requires_http_client(monkeypatch):
    settings = _settings(monkeypatch, SUBSCRIPTION_BACKEND="pubsub")

    with pytest.raises(ValueError):
        create_subscription_backend(settings)


def test_pubsub_backend_built_with_http_client(monkeypatch):
    class _NoHttp:
        async def post_json(self, *args, **kwargs):
            return {}

        async def close(self):
            return None

    backend = create_subscription_backend(
        _settings(monkeypatch, SUBSCRIPTION_BACKEND="pubsub"), http_client=_NoHttp()
    )

    assert isinstance(backend.source, PubSubSubscriptionSource)
    assert backend.publisher is not None


def test_unsupported_subscription_backend_rejected(monkeypatch):
    with pytest.raises(ValueError, match="Unsupported subscription backend: kafka"):
        create_subscription_backend(_settings(monkeypatch, SUBSCRIPTION_BACKEND="kafka"))


@pytest.mark.asyncio
async def test_processing_factory_log_and_unsupported(monkeypatch):
    assert isinstance(await create_processing_sink(_settings(monkeypatch)), LoggingProcessingSink)

    with pytest.raises(ValueError, match="Unsupported processing backend: s3"):
        await create_processing_sink(_settings(monkeypatch, PROCESSING_BACKEND="s3"))


def test_invalid_batch_size_fails_before_connecting(monkeypatch):
    settings = _settings(monkeypatch, MAX_BATCH_SIZE="0")

    with pytest.raises(BatchConfigurationError):
        SubscriberDependencies(settings=settings)


def test_properties_raise_before_connect(monkeypatch):
    deps = create_subscriber_dependencies(_settings(monkeypatch))

    assert deps.policy.max_batch_size == 1000
    with pytest.raises(RuntimeError):
        deps.pipeline
    with pytest.raises(RuntimeError):
        deps.backend


@pytest.mark.asyncio
async def test_inmemory_dependencies_run_pipeline_end_to_end(monkeypatch):
    settings = _settings(
        monkeypatch,
        SUBSCRIPTION_BACKEND="inmemory",
        PROCESSING_BACKEND="log",
        MAX_BATCH_SIZE="4",
        MAX_BATCH_DELAY_SECONDS="5",
    )
    deps = SubscriberDependencies(settings=settings)
    await deps.connect()
    try:
        publisher = deps.backend.publisher
        await publisher.publish(PublishBatch.of([OutgoingMessage(f"m{i}".encode()) for i in range(6)]))
        deps.backend.source.complete()

        stats = await deps.pipeline.run()

        assert stats.tokens_acknowledged == 6
        assert stats.batches_sent == 2
        assert deps.processing_sink.count == 6
        assert deps.backend.source.outstanding == 0
    finally:
        await deps.close()

    with pytest.raises(RuntimeError):
        deps.backend


def test_default_inmemory_ack_deadline_outlasts_batch_delay(monkeypatch):
    settings = _settings(monkeypatch)

    assert settings.inmemory_ack_deadline_seconds > settings.max_batch_delay_seconds


def test_inmemory_ack_deadline_not_above_batch_delay_rejected(monkeypatch):
    settings = _settings(
        monkeypatch,
        SUBSCRIPTION_BACKEND="inmemory",
        INMEMORY_ACK_DEADLINE_SECONDS="10",
        MAX_BATCH_DELAY_SECONDS="60",
    )

    with pytest.raises(ValueError, match="must exceed max_batch_delay_seconds"):
        create_subscription_backend(settings)


@pytest.mark.asyncio
async def test_idle_inmemory_message_processed_and_acked_once(monkeypatch):
    settings = _settings(
        monkeypatch,
        SUBSCRIPTION_BACKEND="inmemory",
        PROCESSING_BACKEND="log",
        MAX_BATCH_SIZE="100",
        MAX_BATCH_DELAY_SECONDS="0.05",
        INMEMORY_ACK_DEADLINE_SECONDS="0.3",
        FAIL_ON_ACK_ERROR="true",
    )
    deps = SubscriberDependencies(settings=settings)
    await deps.connect()
    try:
        subscription = deps.backend.source
        subscription.enqueue(b"only")
        run = asyncio.create_task(deps.pipeline.run())
        await asyncio.sleep(0.5)
        subscription.complete()
        stats = await asyncio.wait_for(run, timeout=2.0)

        assert stats.tokens_acknowledged == 1
        assert stats.batches_failed == 0
        assert subscription.redelivered == 0
        assert deps.processing_sink.count == 1
        assert deps.errors.empty()
    finally:
        await deps.close()
