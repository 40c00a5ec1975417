"""
HTTP transport.

A thin layer over ``httpx.AsyncClient`` that turns failures without a
response into ``TransportError``. Status handling is left to callers.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, Optional

import httpx
import structlog

from .exceptions import TransportError

logger = structlog.get_logger(__name__)


@dataclass
class TransportResponse:
    """A fully read HTTP response."""

    status: int
    headers: Dict[str, str] = field(default_factory=dict)
    body: bytes = b""
    reason: str = ""

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    def json(self) -> Any:
        return json.loads(self.body)


class StreamHandle:
    """An open streaming response."""

    def __init__(self, response: httpx.Response):
        self._response = response
        self.status = response.status_code
        self.headers = {k.lower(): v for k, v in response.headers.items()}
        self.reason = response.reason_phrase
        self._closed = False

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    async def read(self) -> TransportResponse:
        """Read the remaining body, used for error responses."""
        try:
            body = await self._response.aread()
        except httpx.HTTPError as e:
            raise TransportError(f"Failed to read response body: {e}", cause=e) from e
        finally:
            await self.aclose()
        return TransportResponse(self.status, self.headers, body, self.reason)

    async def iter_bytes(self) -> AsyncIterator[bytes]:
        try:
            async for chunk in self._response.aiter_bytes():
                yield chunk
        except httpx.HTTPError as e:
            raise TransportError(f"Stream interrupted: {e}", cause=e) from e

    async def aclose(self) -> None:
        if not self._closed:
            self._closed = True
            await self._response.aclose()


class HTTPTransport:
    """
    Async HTTP transport.

    Example:
        transport = HTTPTransport(timeout=60)
        response = await transport.request("POST", url, headers=..., json_body=...)
    """

    def __init__(
        self,
        timeout: float = 60.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self._timeout = timeout
        self._client = client
        self._owns_client = client is None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=httpx.Timeout(self._timeout))
        return self._client

    async def request(
        self,
        method: str,
        url: str,
        headers: Optional[Dict[str, str]] = None,
        json_body: Optional[Dict[str, Any]] = None,
    ) -> TransportResponse:
        client = self._get_client()
        try:
            response = await client.request(method, url, headers=headers, json=json_body)
        except httpx.TimeoutException as e:
            raise TransportError(f"Request timed out: {e}", cause=e) from e
        except httpx.RequestError as e:
            raise TransportError(f"Request failed: {e}", cause=e) from e

        logger.debug("http_response", method=method, status=response.status_code)

        return TransportResponse(
            status=response.status_code,
            headers={k.lower(): v for k, v in response.headers.items()},
            body=response.content,
            reason=response.reason_phrase,
        )

    async def open_stream(
        self,
        method: str,
        url: str,
        headers: Optional[Dict[str, str]] = None,
        json_body: Optional[Dict[str, Any]] = None,
    ) -> StreamHandle:
        client = self._get_client()
        request = client.build_request(method, url, headers=headers, json=json_body)
        try:
            response = await client.send(request, stream=True)
        except httpx.TimeoutException as e:
            raise TransportError(f"Request timed out: {e}", cause=e) from e
        except httpx.RequestError as e:
            raise TransportError(f"Request failed: {e}", cause=e) from e

        logger.debug("http_stream_opened", method=method, status=response.status_code)
        return StreamHandle(response)

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
