"""
HTTP transport for the Tripo3D API.

One authenticated round trip per call, no retries. Failures come back as
one of three distinct kinds: NetworkFailure, HttpError or DecodeFailure.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, Optional

import httpx

from tripo3d.config import ClientConfig
from tripo3d.errors import AuthenticationMissing, DecodeFailure, HttpError, NetworkFailure


logger = logging.getLogger(__name__)


def _error_from_response(resp: httpx.Response) -> HttpError:
    """Build an HttpError using the server's message when it sent one."""
    code = None
    message = resp.text or resp.reason_phrase
    try:
        body = resp.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        if isinstance(body.get("code"), int):
            code = body["code"]
        if body.get("message"):
            message = str(body["message"])
            if body.get("suggestion"):
                message += f" ({body['suggestion']})"
    return HttpError(resp.status_code, message, code)


class HttpTransport:
    """Async client for the Tripo3D REST endpoints."""

    def __init__(
        self,
        config: ClientConfig,
        http_transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = config.api_key
        self._client = httpx.AsyncClient(
            base_url=config.base_url,
            timeout=config.request_timeout,
            transport=http_transport,
        )

    def _headers(self) -> Dict[str, str]:
        if not self.api_key:
            raise AuthenticationMissing()
        return {"Authorization": f"Bearer {self.api_key}"}

    async def request(
        self,
        method: str,
        path: str,
        *,
        json: Optional[Dict[str, Any]] = None,
        data: Optional[Dict[str, Any]] = None,
        files: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """
        Send a request relative to the base URL and return the decoded JSON object.
        """
        headers = self._headers()
        logger.debug("%s %s", method, path)
        try:
            resp = await self._client.request(
                method,
                path.lstrip("/"),
                headers=headers,
                json=json,
                data=data,
                files=files,
            )
        except httpx.HTTPError as exc:
            raise NetworkFailure(f"{method} {path} failed: {exc}") from exc

        if not resp.is_success:
            raise _error_from_response(resp)

        try:
            body = resp.json()
        except ValueError as exc:
            raise DecodeFailure(f"{method} {path} returned invalid JSON: {exc}") from exc
        if not isinstance(body, dict):
            raise DecodeFailure(f"{method} {path} returned {type(body).__name__}, expected an object")
        return body

    @asynccontextmanager
    async def stream(self, url: str) -> AsyncIterator[httpx.Response]:
        """
        Open a streaming GET on an absolute (signed) URL.

        No Authorization header is sent; signed URLs carry their own credentials.
        """
        try:
            async with self._client.stream("GET", url) as resp:
                if not resp.is_success:
                    await resp.aread()
                    raise _error_from_response(resp)
                yield resp
        except httpx.HTTPError as exc:
            raise NetworkFailure(f"GET {url} failed: {exc}") from exc

    async def close(self) -> None:
        """Close HTTP client."""
        if self._client:
            await self._client.aclose()

    async def __aenter__(self) -> "HttpTransport":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()
