"""Domain models."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class ReceivedMessage:
    """A message delivered by a subscription, with the token used to acknowledge it."""

    id: str
    payload: bytes
    ack_token: str

    def __post_init__(self) -> None:
        if not isinstance(self.payload, (bytes, bytearray)):
            raise TypeError("message.payload must be bytes")
        if not isinstance(self.ack_token, str) or not self.ack_token:
            raise TypeError("message.ack_token must be a non-empty str")

    def to_document(self) -> dict[str, Any]:
        """Serialisable dict for persistence. Transport-agnostic (used by processing adapters)."""
        return {
            "message_id": self.id,
            "payload": bytes(self.payload),
            "ack_token": self.ack_token,
        }


@dataclass(frozen=True)
class AcknowledgeBatch:
    """Ordered, non-empty group of ack tokens flushed together."""

    tokens: tuple[str, ...]
    created_at: datetime = field(default_factory=_utcnow)

    def __post_init__(self) -> None:
        if not self.tokens:
            raise ValueError("acknowledge batch must not be empty")

    @staticmethod
    def of(tokens: list[str] | tuple[str, ...]) -> "AcknowledgeBatch":
        return AcknowledgeBatch(tokens=tuple(tokens))

    def __len__(self) -> int:
        return len(self.tokens)


@dataclass(frozen=True)
class OutgoingMessage:
    """Message to publish to a topic."""

    payload: bytes
    attributes: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class PublishBatch:
    """Ordered, non-empty group of outgoing messages published in one request."""

    messages: tuple[OutgoingMessage, ...]
    created_at: datetime = field(default_factory=_utcnow)

    def __post_init__(self) -> None:
        if not self.messages:
            raise ValueError("publish batch must not be empty")

    @staticmethod
    def of(messages: list[OutgoingMessage] | tuple[OutgoingMessage, ...]) -> "PublishBatch":
        return PublishBatch(messages=tuple(messages))

    def __len__(self) -> int:
        return len(self.messages)


@dataclass
class AcknowledgerStats:
    """Running counters of a BatchedAcknowledger."""

    batches_sent: int = 0
    tokens_acknowledged: int = 0
    batches_failed: int = 0
    tokens_failed: int = 0
    tokens_discarded: int = 0
