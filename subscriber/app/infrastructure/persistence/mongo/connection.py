"""Mongo client for the processing sink: connect with backoff, then hand out the message collection."""
from __future__ import annotations

import inspect
from typing import Any
from urllib.parse import quote_plus

from loguru import logger
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorCollection

from subscriber.app.config.settings import Settings
from subscriber.app.core import SERVICE_NAME
from subscriber.app.core.backoff import exponential_backoff


def _log(event: str, **kwargs: Any) -> None:
    logger.bind(service_name=SERVICE_NAME, event=event, **kwargs).info("")


def build_mongo_uri(settings: Settings) -> str:
    """Credentials are percent-escaped; a user without a password connects anonymously."""
    host = f"{settings.database_host}:{settings.database_port}"
    if settings.database_user and settings.database_password:
        credentials = f"{quote_plus(settings.database_user)}:{quote_plus(settings.database_password)}"
        return f"mongodb://{credentials}@{host}"
    return f"mongodb://{host}"


async def close_mongo_client(client: Any) -> None:
    res = client.close()
    if inspect.isawaitable(res):
        await res


def message_collection(client: AsyncIOMotorClient, settings: Settings) -> AsyncIOMotorCollection:
    return client[settings.database_name][settings.database_collection]


async def create_mongo_client(settings: Settings) -> AsyncIOMotorClient:
    """Return a client that answered a ping. Stored datetimes are read back timezone-aware."""
    _log("mongo_connecting", host=settings.database_host, database=settings.database_name)
    attempt = 0
    async for delay in exponential_backoff(
        settings.initial_backoff_seconds,
        settings.max_backoff_seconds,
        settings.backoff_multiplier,
        settings.max_connection_attempts,
    ):
        attempt += 1
        client = AsyncIOMotorClient(
            build_mongo_uri(settings),
            serverSelectionTimeoutMS=settings.database_connection_timeout_ms,
            appname=SERVICE_NAME,
            tz_aware=True,
        )
        try:
            await client.admin.command("ping")
        except Exception as exc:
            logger.warning("mongo ping failed (attempt {}, next delay {}s): {}", attempt, delay, exc)
            await close_mongo_client(client)
            if attempt >= settings.max_connection_attempts:
                _log("mongo_connect_failed", attempt=attempt)
                raise
            continue
        _log("mongo_connected", attempt=attempt)
        return client
    raise RuntimeError("mongo connect failed: no connection attempts configured")
