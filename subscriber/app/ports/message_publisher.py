"""Port: messaging publish contract. Implementations live in infrastructure."""
from __future__ import annotations

from typing import Protocol

from subscriber.app.domain.models import PublishBatch


class MessagePublisher(Protocol):
    """Interface for publishing batches of messages."""

    async def connect(self) -> None: ...

    async def publish(self, batch: PublishBatch) -> list[str]:
        """Publish all messages of the batch; return the ids assigned by the service."""
        ...

    async def close(self) -> None: ...

    @property
    def ready(self) -> bool: ...
