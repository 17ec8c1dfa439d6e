"""
Live task updates over WebSocket.

The server pushes one text frame per status change:

    {"event": "update" | "finalized", "data": {<task object>}}

Watching is an alternative to polling when the caller wants every update as
soon as it happens.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import AsyncIterator, Callable, Optional

import aiohttp

from tripo3d.config import ClientConfig
from tripo3d.errors import DecodeFailure, HttpError, NetworkFailure, ValidationFailure
from tripo3d.schema import Task, unwrap_envelope


logger = logging.getLogger(__name__)

SessionFactory = Callable[[], aiohttp.ClientSession]


def decode_frame(text: str) -> Task:
    """Decode one text frame into a task snapshot."""
    try:
        body = json.loads(text)
    except ValueError as exc:
        raise DecodeFailure(f"Invalid JSON frame from task watch: {exc}") from exc
    return Task.from_payload(unwrap_envelope(body))


class TaskWatcher:
    """Opens task watch streams for one client configuration."""

    def __init__(
        self,
        config: ClientConfig,
        session_factory: Optional[SessionFactory] = None,
        heartbeat: float = 30.0,
    ):
        self.config = config
        self.heartbeat = heartbeat
        self._session_factory = session_factory or self._default_session

    def _default_session(self) -> aiohttp.ClientSession:
        timeout = aiohttp.ClientTimeout(total=None, sock_connect=self.config.request_timeout)
        return aiohttp.ClientSession(timeout=timeout)

    def _headers(self) -> dict:
        return {"Authorization": f"Bearer {self.config.api_key}"}

    async def _stream(self, url: str, stop_on_terminal: bool) -> AsyncIterator[Task]:
        logger.debug("Opening task watch %s", url)
        try:
            async with self._session_factory() as session:
                async with session.ws_connect(
                    url,
                    headers=self._headers(),
                    heartbeat=self.heartbeat,
                ) as ws:
                    async for msg in ws:
                        if msg.type == aiohttp.WSMsgType.TEXT:
                            task = decode_frame(msg.data)
                            yield task
                            if stop_on_terminal and task.is_terminal:
                                return
                        elif msg.type == aiohttp.WSMsgType.ERROR:
                            raise NetworkFailure(f"Task watch failed: {ws.exception()}")
                        elif msg.type in (aiohttp.WSMsgType.CLOSE, aiohttp.WSMsgType.CLOSED):
                            return
                        # binary, ping and pong frames carry no task data
        except aiohttp.WSServerHandshakeError as exc:
            raise HttpError(exc.status, exc.message or "WebSocket handshake rejected") from exc
        except aiohttp.ClientError as exc:
            raise NetworkFailure(f"Task watch {url} failed: {exc}") from exc

    def watch_task(self, task_id: str) -> AsyncIterator[Task]:
        """Yield snapshots of one task; the stream ends once the task is terminal."""
        if not task_id:
            raise ValidationFailure("task_id must not be empty")
        url = f"{self.config.ws_base_url}task/watch/{task_id}"
        return self._stream(url, stop_on_terminal=True)

    def watch_all(self, since: Optional[datetime] = None) -> AsyncIterator[Task]:
        """
        Yield updates for every task of the account until the server closes.

        With `since`, updates from that point in time onwards are replayed first.
        """
        url = f"{self.config.ws_base_url}task/watch/all"
        if since is not None:
            if since.tzinfo is None:
                since = since.replace(tzinfo=timezone.utc)
            url += "/" + since.isoformat()
        return self._stream(url, stop_on_terminal=False)
