"""MongoDB processing sink: stores every received message, keyed by message id."""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from motor.motor_asyncio import AsyncIOMotorCollection

from subscriber.app.domain.models import ReceivedMessage
from subscriber.app.infrastructure.persistence.mongo.connection import close_mongo_client


class MongoProcessingSink:
    """
    Upserts one document per message id. A redelivered message (same id, new ack token)
    updates the existing document and bumps `delivery_count` instead of inserting a duplicate.
    """

    def __init__(self, collection: AsyncIOMotorCollection, *, client: Any | None = None) -> None:
        self._collection = collection
        self._client = client

    async def ensure_indexes(self) -> None:
        """Infrastructure bootstrap: create indexes. Not part of the port."""
        await self._collection.create_index("message_id", unique=True, name="uq_message_id")
        await self._collection.create_index("received_at", name="idx_received_at")

    async def process(self, message: ReceivedMessage) -> None:
        now = datetime.now(timezone.utc)
        document = message.to_document()
        await self._collection.update_one(
            {"message_id": message.id},
            {
                "$setOnInsert": {
                    "message_id": message.id,
                    "first_received_at": now,
                },
                "$set": {
                    "payload": document["payload"],
                    "last_ack_token": document["ack_token"],
                    "received_at": now,
                },
                "$inc": {"delivery_count": 1},
            },
            upsert=True,
        )

    async def get_by_id(self, message_id: str) -> dict[str, Any] | None:
        return await self._collection.find_one({"message_id": message_id})

    async def close(self) -> None:
        """Close underlying Mongo client when owned by this adapter."""
        if self._client is not None:
            await close_mongo_client(self._client)
