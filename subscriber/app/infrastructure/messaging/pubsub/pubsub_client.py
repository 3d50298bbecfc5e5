"""Thin Google Cloud Pub/Sub REST (v1) client over the HTTP port.

Covers the three calls the subscriber needs: subscriptions.pull,
subscriptions.acknowledge and topics.publish. Message data travels base64
encoded in both directions. Credentials are either an OAuth2 access token
(sent as a bearer token) or an API key (sent as the `key` query parameter);
the emulator needs neither.
"""
from __future__ import annotations

import base64
import binascii
from typing import Any, Iterable

from subscriber.app.config.settings import Settings
from subscriber.app.domain.errors import AcknowledgementError, PublishError, UpstreamError
from subscriber.app.domain.models import OutgoingMessage, ReceivedMessage
from subscriber.app.ports.http_client import AbstractHttpClient, HttpClientError


class PubSubClient:
    def __init__(self, http_client: AbstractHttpClient, settings: Settings) -> None:
        self._http = http_client
        self._base_url = settings.pubsub_base_url.rstrip("/")
        self._project_id = settings.pubsub_project_id
        self._subscription = settings.pubsub_subscription
        self._topic = settings.pubsub_topic
        self._access_token = settings.pubsub_access_token
        self._api_key = settings.pubsub_api_key
        self._timeout = settings.pubsub_request_timeout_seconds

    @property
    def subscription_url(self) -> str:
        return f"{self._base_url}/v1/projects/{self._project_id}/subscriptions/{self._subscription}"

    @property
    def topic_url(self) -> str:
        return f"{self._base_url}/v1/projects/{self._project_id}/topics/{self._topic}"

    def _headers(self) -> dict[str, str] | None:
        if self._access_token:
            return {"Authorization": f"Bearer {self._access_token}"}
        return None

    def _params(self) -> dict[str, str] | None:
        if self._api_key:
            return {"key": self._api_key}
        return None

    async def _post(self, url: str, payload: dict[str, Any]) -> dict[str, Any]:
        return await self._http.post_json(
            url,
            payload,
            timeout_seconds=self._timeout,
            headers=self._headers(),
            params=self._params(),
        )

    async def pull(self, max_messages: int) -> list[ReceivedMessage]:
        try:
            body = await self._post(f"{self.subscription_url}:pull", {"maxMessages": int(max_messages)})
        except HttpClientError as exc:
            raise UpstreamError(f"pubsub pull failed: {exc}") from exc
        return [_to_received_message(item) for item in body.get("receivedMessages", [])]

    async def acknowledge(self, ack_ids: Iterable[str]) -> None:
        try:
            await self._post(f"{self.subscription_url}:acknowledge", {"ackIds": list(ack_ids)})
        except HttpClientError as exc:
            raise AcknowledgementError(f"pubsub acknowledge failed: {exc}") from exc

    async def publish(self, messages: Iterable[OutgoingMessage]) -> list[str]:
        payload = {
            "messages": [
                {
                    "data": base64.b64encode(message.payload).decode("ascii"),
                    "attributes": dict(message.attributes),
                }
                for message in messages
            ]
        }
        try:
            body = await self._post(f"{self.topic_url}:publish", payload)
        except HttpClientError as exc:
            raise PublishError(f"pubsub publish failed: {exc}") from exc
        return [str(message_id) for message_id in body.get("messageIds", [])]


def _to_received_message(item: dict[str, Any]) -> ReceivedMessage:
    message = item.get("message") or {}
    try:
        payload = base64.b64decode(message.get("data", ""), validate=True)
    except (binascii.Error, ValueError) as exc:
        raise UpstreamError(f"invalid base64 data in message {message.get('messageId')}") from exc
    ack_id = item.get("ackId")
    if not isinstance(ack_id, str) or not ack_id:
        raise UpstreamError(f"missing ackId for message {message.get('messageId')}")
    return ReceivedMessage(
        id=str(message.get("messageId", "")),
        payload=payload,
        ack_token=ack_id,
    )
