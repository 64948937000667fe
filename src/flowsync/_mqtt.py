"""MQTT stream link.

paho-mqtt runs its network loop on its own thread. Every callback only hands
work to the asyncio loop through ``call_soon_threadsafe``, so the pipeline
still sees one message at a time on the loop thread.
"""

from __future__ import annotations

import asyncio
import functools
import logging
from typing import Any, cast

import paho.mqtt.client as mqtt

from flowsync.exceptions import SyncConnectionError

_DEFAULT_PORT = 1883
_DEFAULT_TLS_PORT = 8883


def parse_broker(raw_broker: str) -> tuple[str, int, bool]:
    """Split ``mqtt[s]://host:port/...`` into ``(host, port, tls)``."""
    value = raw_broker.strip()
    if not value:
        raise ValueError("Broker value is empty")

    tls = False
    if "://" in value:
        scheme, value = value.split("://", 1)
        tls = scheme.lower() in {"mqtts", "ssl", "tls"}
    if "/" in value:
        value = value.split("/", 1)[0]

    host, _, maybe_port = value.rpartition(":")
    if host and maybe_port.isdigit():
        return host, int(maybe_port), tls
    return value, _DEFAULT_TLS_PORT if tls else _DEFAULT_PORT, tls


class MqttLink:
    """Single-topic MQTT subscription exposed as a :class:`StreamLink`.

    paho's own reconnect is disabled; the connector decides when to retry.
    """

    def __init__(
        self,
        broker: str,
        topic: str,
        *,
        client_id: str = "",
        username: str | None = None,
        password: str | None = None,
        keepalive: int = 60,
        qos: int = 0,
        request_topic: str | None = None,
        connect_timeout: float = 10.0,
        logger: logging.Logger | None = None,
    ) -> None:
        self._host, self._port, self._tls = parse_broker(broker)
        self._topic = topic
        self._client_id = client_id
        self._username = username
        self._password = password
        self._keepalive = keepalive
        self._qos = qos
        self._request_topic = request_topic
        self._connect_timeout = connect_timeout
        self._logger = logger or logging.getLogger(__name__)
        self._client: mqtt.Client | None = None
        self._queue: asyncio.Queue[bytes | None] | None = None

    @property
    def endpoint(self) -> str:
        return f"{self._host}:{self._port}/{self._topic}"

    async def open(self) -> None:
        loop = asyncio.get_running_loop()
        queue: asyncio.Queue[bytes | None] = asyncio.Queue()
        connected: asyncio.Future[None] = loop.create_future()

        def _resolve(error: Exception | None) -> None:
            if connected.done():
                return
            if error is None:
                connected.set_result(None)
            else:
                connected.set_exception(error)

        client = mqtt.Client(
            callback_api_version=cast(Any, mqtt).CallbackAPIVersion.VERSION2,
            client_id=self._client_id,
            protocol=mqtt.MQTTv5,
            reconnect_on_failure=False,
        )
        client.enable_logger(self._logger)
        if self._username is not None:
            client.username_pw_set(self._username, self._password)
        if self._tls:
            client.tls_set()

        def on_connect(
            c: mqtt.Client,
            _userdata: Any,
            _flags: Any,
            reason_code: Any,
            _properties: Any,
        ) -> None:
            if reason_code.value != 0:
                error = SyncConnectionError(f"MQTT connect refused: {reason_code}", endpoint=self.endpoint)
                loop.call_soon_threadsafe(_resolve, error)
                return
            self._logger.debug("MQTT subscribing topic=%s", self._topic)
            c.subscribe(self._topic, qos=self._qos)
            loop.call_soon_threadsafe(_resolve, None)

        def on_message(_c: mqtt.Client, _userdata: Any, msg: mqtt.MQTTMessage) -> None:
            loop.call_soon_threadsafe(queue.put_nowait, bytes(msg.payload))

        def on_disconnect(
            _client: mqtt.Client,
            _userdata: Any,
            _disconnect_flags: Any,
            reason_code: Any,
            _properties: Any,
        ) -> None:
            self._logger.debug("MQTT disconnected: %s", reason_code)
            error = SyncConnectionError(f"MQTT disconnected: {reason_code}", endpoint=self.endpoint)
            loop.call_soon_threadsafe(_resolve, error)
            loop.call_soon_threadsafe(queue.put_nowait, None)

        client.on_connect = on_connect
        client.on_message = on_message
        client.on_disconnect = on_disconnect

        self._logger.debug("MQTT connect host=%s port=%s tls=%s", self._host, self._port, self._tls)
        try:
            await loop.run_in_executor(
                None,
                functools.partial(client.connect, self._host, self._port, keepalive=self._keepalive),
            )
        except OSError as exc:
            raise SyncConnectionError(f"MQTT connect to {self.endpoint} failed: {exc}", endpoint=self.endpoint) from exc

        client.loop_start()
        self._client = client
        self._queue = queue
        try:
            await asyncio.wait_for(connected, self._connect_timeout)
        except TimeoutError as exc:
            await self.close()
            raise SyncConnectionError(f"MQTT CONNACK timeout from {self.endpoint}", endpoint=self.endpoint) from exc
        except SyncConnectionError:
            await self.close()
            raise

    async def receive(self) -> bytes | None:
        queue = self._queue
        if queue is None:
            raise SyncConnectionError("MQTT link is not open", endpoint=self.endpoint)
        return await queue.get()

    async def send(self, text: str) -> None:
        client = self._client
        if client is None:
            raise SyncConnectionError("MQTT link is not open", endpoint=self.endpoint)
        if self._request_topic is None:
            self._logger.debug("No MQTT request topic configured; dropping outbound message")
            return
        info = client.publish(self._request_topic, text, qos=self._qos)
        if info.rc != mqtt.MQTT_ERR_SUCCESS:
            raise SyncConnectionError(f"MQTT publish failed rc={info.rc}", endpoint=self.endpoint)

    async def close(self) -> None:
        client = self._client
        self._client = None
        if client is None:
            return
        loop = asyncio.get_running_loop()
        try:
            client.disconnect()
        finally:
            await loop.run_in_executor(None, client.loop_stop)
            self._logger.debug("MQTT network loop stopped")
