"""Port: acknowledgement sink. Implementations live in infrastructure."""
from __future__ import annotations

from typing import Protocol

from subscriber.app.domain.models import AcknowledgeBatch


class AcknowledgementSink(Protocol):
    """Accepts acknowledge batches. Raises AcknowledgementError when a batch is rejected."""

    async def acknowledge(self, batch: AcknowledgeBatch) -> None: ...
