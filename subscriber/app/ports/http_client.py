"""HTTP client port: contract for performing JSON POST requests.

Messaging adapters depend on this port; infrastructure (e.g. httpx)
implements it. Keeps adapters free of a concrete HTTP library.
"""
from __future__ import annotations

from typing import Any, Mapping, Protocol, runtime_checkable


class HttpClientError(Exception):
    """Base for HTTP client failures (status, network, etc.)."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class HttpClientTimeoutError(HttpClientError):
    """Raised when the request times out."""


@runtime_checkable
class AbstractHttpClient(Protocol):
    """Port: perform JSON POST requests. Implementations live in infrastructure."""

    async def post_json(
        self,
        url: str,
        payload: Mapping[str, Any],
        *,
        timeout_seconds: float,
        headers: dict[str, str] | None = None,
        params: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        """POST `payload` as JSON and return the decoded JSON body ({} when empty).

        Raises HttpClientTimeoutError on timeout and HttpClientError on any other
        transport failure or non-2xx status.
        """
        ...

    async def close(self) -> None:
        """Release resources (e.g. connection pool). No-op allowed if nothing to close."""
        ...
