"""AcknowledgementSink over a RabbitMQSubscription: acks every delivery named by the batch."""
from __future__ import annotations

from subscriber.app.domain.errors import AcknowledgementError
from subscriber.app.domain.models import AcknowledgeBatch
from subscriber.app.infrastructure.messaging.rabbitmq.rabbitmq_subscription import RabbitMQSubscription


class RabbitMQAcknowledgementSink:
    def __init__(self, subscription: RabbitMQSubscription) -> None:
        self._subscription = subscription

    async def acknowledge(self, batch: AcknowledgeBatch) -> None:
        unknown, failed = await self._subscription.ack_tokens(batch.tokens)
        if unknown or failed:
            raise AcknowledgementError(
                f"{len(unknown)} unknown and {len(failed)} failed of {len(batch)} ack tokens",
                batch=batch,
            )
