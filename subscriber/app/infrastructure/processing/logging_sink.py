"""Processing sink that only logs each message. Default when no processing backend is configured."""
from __future__ import annotations

from typing import Any

from loguru import logger

from subscriber.app.core import SERVICE_NAME
from subscriber.app.domain.models import ReceivedMessage


def _log(event: str, **kwargs: Any) -> None:
    logger.bind(service_name=SERVICE_NAME, event=event, **kwargs).info("")


class LoggingProcessingSink:
    def __init__(self) -> None:
        self.count = 0

    async def process(self, message: ReceivedMessage) -> None:
        self.count += 1
        _log("message_received", message_id=message.id, size=len(message.payload))

    async def close(self) -> None:
        return
