"""Port: subscription source. Implementations live in infrastructure."""
from __future__ import annotations

from typing import AsyncIterator, Protocol

from subscriber.app.domain.models import ReceivedMessage


class SubscriptionSource(Protocol):
    async def connect(self) -> None: ...

    def messages(self) -> AsyncIterator[ReceivedMessage]:
        """Yield delivered messages until the subscription ends. Raises on upstream failure."""
        ...

    async def close(self) -> None: ...
