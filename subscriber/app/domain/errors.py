"""Domain errors raised by the batching, acknowledgement and publish paths."""
from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from subscriber.app.domain.models import AcknowledgeBatch


class SubscriberError(Exception):
    """Base for subscriber failures."""


class BatchConfigurationError(SubscriberError, ValueError):
    """Raised when a batch policy is built with a non-positive size or delay."""


class AcknowledgementError(SubscriberError):
    """Raised by an acknowledgement sink that could not acknowledge a batch.

    The batch is attached so callers can log which tokens were affected. Tokens
    of a failed batch are never retried here; the subscription redelivers them.
    """

    def __init__(self, message: str, *, batch: AcknowledgeBatch | None = None) -> None:
        super().__init__(message)
        self.batch = batch


class UpstreamError(SubscriberError):
    """Raised when the subscription source fails."""


class PublishError(SubscriberError):
    """Raised when a publish batch is rejected."""
