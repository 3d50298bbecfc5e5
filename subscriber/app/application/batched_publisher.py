from __future__ import annotations

from typing import Any, AsyncIterator

from loguru import logger

from subscriber.app.core import SERVICE_NAME
from subscriber.app.domain.batching import BatchPolicy, grouped_within
from subscriber.app.domain.models import OutgoingMessage, PublishBatch
from subscriber.app.ports.message_publisher import MessagePublisher


def _log(event: str, **kwargs: Any) -> None:
    logger.bind(service_name=SERVICE_NAME, event=event, **kwargs).info("")


class BatchedPublisher:
    """Publishes outgoing messages in size/time windows, one publish request per window.

    A rejected publish request ends run() with the publisher's error; nothing after it is sent.
    """

    def __init__(self, publisher: MessagePublisher, policy: BatchPolicy) -> None:
        self._publisher = publisher
        self._policy = policy

    async def run(self, messages: AsyncIterator[OutgoingMessage]) -> list[list[str]]:
        published: list[list[str]] = []
        batches = grouped_within(messages, self._policy)
        try:
            async for group in batches:
                batch = PublishBatch.of(group)
                try:
                    message_ids = await self._publisher.publish(batch)
                except Exception as exc:
                    logger.exception("publish of {} messages failed: {}", len(batch), exc)
                    raise
                _log("batch_published", size=len(batch), message_ids=len(message_ids))
                published.append(message_ids)
        finally:
            await batches.aclose()
        return published
