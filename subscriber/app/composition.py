"""Subscriber composition root: build and lifecycle-manage concrete dependencies.

Composition may: import concrete classes, call factories, store interface types,
manage high-level lifecycle.
"""
from __future__ import annotations

import asyncio
from typing import Any

from loguru import logger

from subscriber.app.application.batched_acknowledger import BatchedAcknowledger
from subscriber.app.application.subscription_pipeline import SubscriptionPipeline
from subscriber.app.config.settings import Settings
from subscriber.app.constants import BACKEND
from subscriber.app.core import SERVICE_NAME
from subscriber.app.domain.batching import BatchPolicy
from subscriber.app.infrastructure.http.factory import create_http_client
from subscriber.app.infrastructure.messaging.factory import SubscriptionBackend, create_subscription_backend
from subscriber.app.infrastructure.processing.factory import create_processing_sink
from subscriber.app.ports.http_client import AbstractHttpClient
from subscriber.app.ports.processing_sink import ProcessingSink


def _log(event: str, **kwargs: Any) -> None:
    logger.bind(service_name=SERVICE_NAME, event=event, **kwargs).info("")


class SubscriberDependencies:
    """Holds wired subscriber dependencies and their lifecycle."""

    def __init__(self, *, settings: Settings) -> None:
        self._settings = settings
        # Built eagerly so a bad batch configuration fails before any connection is opened.
        self._policy = BatchPolicy(settings.max_batch_size, settings.max_batch_delay_seconds)
        self._errors: asyncio.Queue[Exception] = asyncio.Queue()
        self._http_client: AbstractHttpClient | None = None
        self._backend: SubscriptionBackend | None = None
        self._processing_sink: ProcessingSink | None = None
        self._pipeline: SubscriptionPipeline | None = None
        self._connected = False

    @property
    def settings(self) -> Settings:
        return self._settings

    @property
    def policy(self) -> BatchPolicy:
        return self._policy

    @property
    def errors(self) -> asyncio.Queue[Exception]:
        """Failure channel: ack batch rejections and processing errors."""
        return self._errors

    @property
    def backend(self) -> SubscriptionBackend:
        if self._backend is None:
            raise RuntimeError("subscription backend is not initialized")
        return self._backend

    @property
    def processing_sink(self) -> ProcessingSink:
        if self._processing_sink is None:
            raise RuntimeError("processing_sink is not initialized")
        return self._processing_sink

    @property
    def pipeline(self) -> SubscriptionPipeline:
        if self._pipeline is None:
            raise RuntimeError("pipeline is not initialized")
        return self._pipeline

    async def connect(self) -> None:
        if self._settings.subscription_backend.strip().lower() == BACKEND.PUBSUB:
            self._http_client = create_http_client(self._settings)
        self._backend = create_subscription_backend(self._settings, http_client=self._http_client)
        await self._backend.source.connect()
        if self._backend.publisher is not None and self._backend.publisher is not self._backend.source:
            await self._backend.publisher.connect()

        self._processing_sink = await create_processing_sink(self._settings)

        acknowledger = BatchedAcknowledger(
            self._backend.ack_sink,
            self._policy,
            max_pending_batches=self._settings.max_pending_batches,
            fail_on_ack_error=self._settings.fail_on_ack_error,
            errors=self._errors,
        )
        self._pipeline = SubscriptionPipeline(
            self._backend.source,
            acknowledger,
            self._processing_sink,
            buffer_size=self._settings.branch_buffer_size,
            errors=self._errors,
        )
        self._connected = True
        _log(
            "dependencies_connected",
            subscription_backend=self._settings.subscription_backend,
            processing_backend=self._settings.processing_backend,
            max_batch_size=self._policy.max_batch_size,
            max_batch_delay=self._policy.max_batch_delay,
        )

    async def close(self) -> None:
        if self._pipeline is not None:
            self._pipeline.stop()
            self._pipeline = None

        if self._backend is not None:
            if self._backend.publisher is not None and self._backend.publisher is not self._backend.source:
                try:
                    await self._backend.publisher.close()
                except Exception as exc:
                    logger.warning("publisher close failed: {}", exc)
            try:
                await self._backend.source.close()
            except Exception as exc:
                logger.warning("subscription close failed: {}", exc)
            self._backend = None

        if self._http_client is not None:
            try:
                await self._http_client.close()
            except Exception as exc:
                logger.warning("http client close failed: {}", exc)
            self._http_client = None

        if self._processing_sink is not None:
            try:
                await self._processing_sink.close()
            except Exception as exc:
                logger.warning("processing sink close failed: {}", exc)
            self._processing_sink = None

        self._connected = False


def create_subscriber_dependencies(settings: Settings | None = None) -> SubscriberDependencies:
    return SubscriberDependencies(settings=settings or Settings())
