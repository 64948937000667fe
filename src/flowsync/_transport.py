"""Stream link interface and the WebSocket implementation."""

from __future__ import annotations

import logging
from typing import Protocol

import aiohttp

from flowsync.exceptions import SyncConnectionError

_logger = logging.getLogger(__name__)


class StreamLink(Protocol):
    """One physical connection to the update stream.

    A link is opened once and closed once; the connector builds a fresh link
    for every (re)connection attempt. Having a protocol here makes it easy to
    pass in-memory test doubles while keeping the production links concrete.
    """

    @property
    def endpoint(self) -> str: ...

    async def open(self) -> None:
        """Connect. Raises :class:`SyncConnectionError` on failure."""
        ...

    async def receive(self) -> str | bytes | None:
        """Next raw payload, or ``None`` once the peer closed the link."""
        ...

    async def send(self, text: str) -> None: ...

    async def close(self) -> None: ...


class WebSocketLink:
    """aiohttp WebSocket link carrying one JSON message per text frame."""

    def __init__(
        self,
        url: str,
        *,
        session: aiohttp.ClientSession | None = None,
        heartbeat: float | None = 20.0,
    ) -> None:
        self._url = url
        self._heartbeat = heartbeat
        self._external_session = session is not None
        self._http_session = session
        self._ws: aiohttp.ClientWebSocketResponse | None = None

    @property
    def endpoint(self) -> str:
        return self._url

    async def open(self) -> None:
        if self._http_session is None:
            self._http_session = aiohttp.ClientSession()
        _logger.debug("WebSocket connect %s", self._url)
        try:
            self._ws = await self._http_session.ws_connect(self._url, heartbeat=self._heartbeat)
        except (aiohttp.ClientError, OSError, TimeoutError) as exc:
            await self._close_session()
            raise SyncConnectionError(
                f"WebSocket connect to {self._url} failed: {exc}",
                endpoint=self._url,
            ) from exc

    async def receive(self) -> str | bytes | None:
        ws = self._require_ws()
        while True:
            msg = await ws.receive()
            if msg.type == aiohttp.WSMsgType.TEXT:
                return str(msg.data)
            if msg.type == aiohttp.WSMsgType.BINARY:
                return bytes(msg.data)
            if msg.type == aiohttp.WSMsgType.ERROR:
                raise SyncConnectionError(
                    f"WebSocket error on {self._url}: {ws.exception()}",
                    endpoint=self._url,
                )
            if msg.type in (aiohttp.WSMsgType.CLOSE, aiohttp.WSMsgType.CLOSING, aiohttp.WSMsgType.CLOSED):
                _logger.debug("WebSocket closed by peer code=%s", ws.close_code)
                return None
            # PING/PONG are answered by aiohttp itself.

    async def send(self, text: str) -> None:
        ws = self._require_ws()
        try:
            await ws.send_str(text)
        except (aiohttp.ClientError, ConnectionResetError) as exc:
            raise SyncConnectionError(f"WebSocket send failed: {exc}", endpoint=self._url) from exc

    async def close(self) -> None:
        ws = self._ws
        self._ws = None
        try:
            if ws is not None and not ws.closed:
                await ws.close()
        finally:
            await self._close_session()

    async def _close_session(self) -> None:
        if not self._external_session and self._http_session is not None:
            await self._http_session.close()
            self._http_session = None

    def _require_ws(self) -> aiohttp.ClientWebSocketResponse:
        if self._ws is None:
            raise SyncConnectionError("WebSocket link is not open", endpoint=self._url)
        return self._ws
