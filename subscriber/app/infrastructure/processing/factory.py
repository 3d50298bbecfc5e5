"""Processing sink factory: selects and assembles processing adapters."""
from __future__ import annotations

from subscriber.app.config.settings import Settings
from subscriber.app.constants import BACKEND
from subscriber.app.infrastructure.persistence.mongo.connection import create_mongo_client, message_collection
from subscriber.app.infrastructure.persistence.mongo.mongo_processing_sink import MongoProcessingSink
from subscriber.app.infrastructure.processing.logging_sink import LoggingProcessingSink
from subscriber.app.ports.processing_sink import ProcessingSink


async def create_processing_sink(settings: Settings) -> ProcessingSink:
    """Select processing adapter from configuration and return port type."""
    backend = settings.processing_backend.strip().lower()

    if backend == BACKEND.MONGO:
        mongo_client = await create_mongo_client(settings)
        sink = MongoProcessingSink(
            message_collection(mongo_client, settings),
            client=mongo_client,
        )
        await sink.ensure_indexes()
        return sink

    if backend == BACKEND.LOG:
        return LoggingProcessingSink()

    raise ValueError(f"Unsupported processing backend: {backend}")
