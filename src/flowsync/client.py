"""High-level synchronization client.

:class:`FlowSyncClient` owns the whole pipeline::

    StreamConnector -> EventNormalizer -> WorldStore -> subscribers
                                                    \\-> IncidentAlertDispatcher

It is an explicitly scoped object: construct it, use it inside
``async with`` (or call :meth:`start` / :meth:`close`), and independent
instances never share state.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from typing import Any

import aiohttp

from flowsync._connector import ConnectionState, ConnectionStatus, StatusListener, StreamConnector
from flowsync._mqtt import MqttLink
from flowsync._redact import redact_for_log
from flowsync._transport import StreamLink, WebSocketLink
from flowsync.config import TRANSPORT_MQTT, SyncConfig
from flowsync.effects import AlertSink, IncidentAlertDispatcher
from flowsync.exceptions import FlowSyncError, MalformedPayloadError, UnknownEventTypeError
from flowsync.ingestion.decoder import EventNormalizer
from flowsync.models.entities import EntityKind
from flowsync.state.events import ApplyOutcome
from flowsync.state.snapshot import WorldSnapshot
from flowsync.state.store import Listener, WorldStore

_logger = logging.getLogger(__name__)


class FlowSyncClient:
    """Async client keeping a world snapshot in sync with the update stream.

    Usage::

        async with FlowSyncClient(SyncConfig(url="ws://sim:8000/ws")) as client:
            client.subscribe(on_change, EntityKind.UNIT)
            ...
            snapshot = client.snapshot()
    """

    def __init__(
        self,
        config: SyncConfig,
        *,
        alert_sink: AlertSink | None = None,
        session: aiohttp.ClientSession | None = None,
        link_factory: Callable[[], StreamLink] | None = None,
    ) -> None:
        self._config = config
        self._external_session = session is not None
        self._http_session = session
        self._link_factory = link_factory
        self._normalizer = EventNormalizer(config.protocol)
        self._store = WorldStore(
            tombstone_limit=config.tombstone_limit,
            clear_on_resync=config.clear_on_resync,
        )
        self._dispatcher = IncidentAlertDispatcher(alert_sink)
        self._dispatcher.attach(self._store)
        self._connector: StreamConnector | None = None
        self._status_listeners: list[StatusListener] = []
        self._closed = False

    # ------------------------------------------------------------------
    # Context manager lifecycle
    # ------------------------------------------------------------------

    async def __aenter__(self) -> FlowSyncClient:
        await self.start()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.close()

    async def start(self) -> None:
        """Open the stream in the background."""
        if self._closed:
            raise FlowSyncError("Client is closed")
        if self._connector is not None:
            return
        if self._link_factory is None and self._config.transport != TRANSPORT_MQTT and self._http_session is None:
            self._http_session = aiohttp.ClientSession()
        self._connector = StreamConnector(
            self._link_factory or self._build_link,
            on_message=self.feed,
            policy=self._config.reconnect,
            on_reconnect=self._on_reconnect,
            on_status=self._on_status,
        )
        self._connector.start()

    async def wait_stopped(self) -> None:
        """Wait until the connector gives up (retry cap) or is closed."""
        if self._connector is not None:
            await self._connector.wait_stopped()

    async def close(self) -> None:
        """Tear down the pipeline.

        Closes the transport, ends active alerts, and drops every listener;
        no callback fires after this returns.
        """
        if self._closed:
            return
        self._closed = True
        connector = self._connector
        if connector is not None:
            await connector.close()
        self._dispatcher.reset()
        self._dispatcher.detach()
        self._store.clear_listeners()
        self._status_listeners.clear()
        if not self._external_session and self._http_session is not None:
            await self._http_session.close()
            self._http_session = None

    # ------------------------------------------------------------------
    # Ingestion
    # ------------------------------------------------------------------

    def feed(self, raw: str | bytes | bytearray | Mapping[str, Any]) -> ApplyOutcome | None:
        """Decode one raw payload and apply it.

        Returns the store outcome, or ``None`` when the payload was dropped
        (undecodable, or the client is closed).
        """
        if self._closed:
            return None
        try:
            event = self._normalizer.normalize(raw)
        except UnknownEventTypeError as exc:
            _logger.debug("Dropping payload with unknown type %r", exc.tag)
            return None
        except MalformedPayloadError as exc:
            _logger.warning("Dropping malformed payload: %s payload=%s", exc, redact_for_log(exc.payload))
            return None
        return self._store.apply(event)

    def _build_link(self) -> StreamLink:
        config = self._config
        if config.transport == TRANSPORT_MQTT:
            return MqttLink(
                config.url,
                config.mqtt_topic,
                username=config.mqtt_username,
                password=config.mqtt_password,
                keepalive=config.mqtt_keepalive,
                request_topic=config.mqtt_request_topic,
                logger=_logger,
            )
        return WebSocketLink(config.url, session=self._http_session, heartbeat=config.heartbeat_seconds)

    async def _on_reconnect(self, link: StreamLink) -> None:
        self._store.resync()
        message = self._config.resync_message
        if message:
            _logger.debug("Requesting full resync from %s", link.endpoint)
            await link.send(message)

    def _on_status(self, state: ConnectionState) -> None:
        _logger.debug("Connection status %s attempt=%s", state.status.value, state.attempt)
        for listener in list(self._status_listeners):
            try:
                listener(state)
            except Exception:
                _logger.warning("Status listener failed", exc_info=True)

    # ------------------------------------------------------------------
    # Consumer API
    # ------------------------------------------------------------------

    def snapshot(self) -> WorldSnapshot:
        return self._store.snapshot()

    def subscribe(self, listener: Listener, kind: EntityKind | None = None) -> Callable[[], None]:
        """Subscribe to state changes; returns an unsubscribe callable."""
        return self._store.subscribe(listener, kind)

    def add_status_listener(self, listener: StatusListener) -> Callable[[], None]:
        """Observe connection status transitions; returns an unsubscribe callable."""
        self._status_listeners.append(listener)

        def _remove() -> None:
            self._status_listeners = [cand for cand in self._status_listeners if cand is not listener]

        return _remove

    def connection_status(self) -> ConnectionStatus:
        if self._connector is None:
            return ConnectionStatus.CLOSED if self._closed else ConnectionStatus.DISCONNECTED
        return self._connector.status

    def is_incident_active(self, incident_id: str) -> bool:
        return self._dispatcher.is_active(incident_id)

    def active_incidents(self) -> frozenset[str]:
        return self._dispatcher.active_ids()

    @property
    def store(self) -> WorldStore:
        return self._store

    @property
    def normalizer(self) -> EventNormalizer:
        return self._normalizer

    @property
    def config(self) -> SyncConfig:
        return self._config
