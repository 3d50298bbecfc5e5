"""Port: processing sink receiving every delivered message unchanged."""
from __future__ import annotations

from typing import Protocol

from subscriber.app.domain.models import ReceivedMessage


class ProcessingSink(Protocol):
    async def process(self, message: ReceivedMessage) -> None: ...

    async def close(self) -> None:
        """Release resources (e.g. DB client). No-op allowed if nothing to close."""
        ...
