"""Transport connector: connection lifecycle and reconnection policy.

The connector owns one logical connection. It builds a fresh
:class:`~flowsync._transport.StreamLink` for every attempt, delivers raw
payloads in arrival order, and retries on a fixed interval until the
configured cap is exhausted. Everything runs in one background task, so
message delivery and reconnection never overlap.
"""

from __future__ import annotations

import asyncio
import contextlib
import dataclasses
import logging
from collections.abc import Awaitable, Callable
from enum import StrEnum

from flowsync._transport import StreamLink
from flowsync.config import ReconnectPolicy
from flowsync.exceptions import FlowSyncError, SyncConnectionError

_logger = logging.getLogger(__name__)


class ConnectionStatus(StrEnum):
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    DISCONNECTED = "disconnected"
    """Retry cap exhausted; the connector stopped trying."""
    CLOSED = "closed"
    """Torn down by the owner."""


@dataclasses.dataclass(frozen=True)
class ConnectionState:
    """Status plus the retry attempt it belongs to and the last error."""

    status: ConnectionStatus
    attempt: int = 0
    error: str | None = None


MessageHandler = Callable[[str | bytes], None]
ReconnectHook = Callable[[StreamLink], Awaitable[None]]
StatusListener = Callable[[ConnectionState], None]


class StreamConnector:
    """Keep a stream link open and feed its payloads to *on_message*.

    Parameters
    ----------
    link_factory
        Builds an unopened link for each connection attempt.
    on_message
        Called synchronously for every raw payload, in arrival order.
        Exceptions are logged and the payload dropped.
    policy
        Fixed-interval, capped reconnection policy.
    on_reconnect
        Awaited after every successful *re*connect, before the first payload
        of the new link is delivered.
    on_status
        Called for every status transition and every retry attempt.
    """

    def __init__(
        self,
        link_factory: Callable[[], StreamLink],
        *,
        on_message: MessageHandler,
        policy: ReconnectPolicy | None = None,
        on_reconnect: ReconnectHook | None = None,
        on_status: StatusListener | None = None,
    ) -> None:
        self._link_factory = link_factory
        self._on_message: MessageHandler | None = on_message
        self._policy = policy or ReconnectPolicy()
        self._on_reconnect = on_reconnect
        self._on_status = on_status
        self._state = ConnectionState(ConnectionStatus.DISCONNECTED)
        self._task: asyncio.Task[None] | None = None
        self._link: StreamLink | None = None
        self._closed = False
        self._retries = 0
        self._has_connected = False

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def status(self) -> ConnectionStatus:
        return self._state.status

    @property
    def connected(self) -> bool:
        return self._state.status == ConnectionStatus.CONNECTED

    def _set_state(self, state: ConnectionState) -> None:
        self._state = state
        listener = self._on_status
        if listener is None:
            return
        try:
            listener(state)
        except Exception:
            _logger.warning("Connection status listener failed", exc_info=True)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Start connecting in the background (idempotent)."""
        if self._closed:
            raise FlowSyncError("Connector is closed")
        if self._task is not None:
            return
        self._set_state(ConnectionState(ConnectionStatus.CONNECTING))
        self._task = asyncio.get_running_loop().create_task(self._run(), name="flowsync-connector")

    async def wait_stopped(self) -> None:
        """Wait until the connector gives up or is closed."""
        task = self._task
        if task is None:
            return
        with contextlib.suppress(asyncio.CancelledError):
            await task

    async def close(self) -> None:
        """Stop the connection; no callback fires after this returns."""
        if self._closed:
            return
        self._closed = True
        task = self._task
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        link = self._link
        self._link = None
        if link is not None:
            await self._close_link(link)
        self._set_state(ConnectionState(ConnectionStatus.CLOSED))
        self._on_message = None
        self._on_reconnect = None
        self._on_status = None

    # ------------------------------------------------------------------
    # Connection loop
    # ------------------------------------------------------------------

    async def _run(self) -> None:
        while not self._closed:
            link = self._link_factory()
            self._link = link
            try:
                await link.open()
            except SyncConnectionError as exc:
                self._link = None
                _logger.warning("Connection to %s failed: %s", link.endpoint, exc)
                if not await self._backoff(str(exc)):
                    return
                continue

            reconnected = self._has_connected
            self._has_connected = True
            self._set_state(ConnectionState(ConnectionStatus.CONNECTED))
            _logger.info("Connected to %s", link.endpoint)

            error: str | None = None
            try:
                if reconnected:
                    await self._run_reconnect_hook(link)
                await self._pump(link)
            except SyncConnectionError as exc:
                error = str(exc)
                _logger.warning("Connection to %s lost: %s", link.endpoint, exc)
            finally:
                self._link = None
                await self._close_link(link)

            if self._closed:
                return
            if not await self._backoff(error or "closed by peer"):
                return

    async def _run_reconnect_hook(self, link: StreamLink) -> None:
        hook = self._on_reconnect
        if hook is None:
            return
        try:
            await hook(link)
        except SyncConnectionError:
            raise
        except Exception:
            _logger.warning("Reconnect hook failed", exc_info=True)

    async def _pump(self, link: StreamLink) -> None:
        while not self._closed:
            payload = await link.receive()
            if payload is None:
                _logger.debug("Link %s closed by peer", link.endpoint)
                return
            # Connect-then-drop cycles count toward the retry cap until a payload arrives.
            self._retries = 0
            handler = self._on_message
            if self._closed or handler is None:
                return
            try:
                handler(payload)
            except Exception:
                _logger.warning("Message handler failed; payload dropped", exc_info=True)

    async def _backoff(self, error: str) -> bool:
        """Schedule the next attempt; ``False`` once the retry cap is exhausted."""
        self._retries += 1
        if self._retries > self._policy.max_retries:
            _logger.warning("Giving up after %d reconnection attempts: %s", self._policy.max_retries, error)
            self._set_state(
                ConnectionState(ConnectionStatus.DISCONNECTED, attempt=self._policy.max_retries, error=error)
            )
            return False
        self._set_state(ConnectionState(ConnectionStatus.RECONNECTING, attempt=self._retries, error=error))
        await asyncio.sleep(self._policy.interval_seconds)
        return not self._closed

    @staticmethod
    async def _close_link(link: StreamLink) -> None:
        try:
            await link.close()
        except Exception:
            _logger.debug("Link close failed", exc_info=True)
