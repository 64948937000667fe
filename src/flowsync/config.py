"""Client configuration for flowsync."""

from __future__ import annotations

import dataclasses
import os
from collections.abc import Mapping
from types import MappingProxyType
from typing import Any

from flowsync.exceptions import FlowSyncConfigError
from flowsync.models.updates import UpdateKind

TRANSPORT_WEBSOCKET = "websocket"
TRANSPORT_MQTT = "mqtt"

DEFAULT_TYPE_TAGS: Mapping[str, UpdateKind] = MappingProxyType(
    {
        "vehicle_update": UpdateKind.UNIT_UPSERT,
        "signal_update": UpdateKind.SIGNAL_PHASE,
        "emergency_start": UpdateKind.INCIDENT_START,
        "emergency_end": UpdateKind.INCIDENT_END,
    }
)

# Canonical field name -> wire field name.
DEFAULT_FIELDS: Mapping[str, str] = MappingProxyType(
    {
        "id": "id",
        "position": "position",
        "speed": "speed",
        "unit_class": "vehicle_class",
        "heading": "heading",
        "phase": "phase",
        "waypoints": "route",
        "unit_id": "vehicle_id",
    }
)


def _env_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "y", "on"}:
        return True
    if normalized in {"0", "false", "no", "n", "off"}:
        return False
    return default


@dataclasses.dataclass(frozen=True)
class ReconnectPolicy:
    """Fixed-interval reconnection with a capped retry count.

    Parameters
    ----------
    interval_seconds : float
        Delay before each reconnection attempt.
    max_retries : int
        Consecutive failed attempts tolerated before the connector gives up
        and reports a persistent ``disconnected`` status. The counter resets
        on every successful connect.
    """

    interval_seconds: float = 2.0
    max_retries: int = 5

    def __post_init__(self) -> None:
        if self.interval_seconds < 0:
            raise FlowSyncConfigError("interval_seconds must be >= 0")
        if self.max_retries < 0:
            raise FlowSyncConfigError("max_retries must be >= 0")


@dataclasses.dataclass(frozen=True)
class ProtocolConfig:
    """Wire protocol details owned by the server.

    Parameters
    ----------
    type_field : str
        Name of the discriminator field in every message.
    data_field : str or None
        Optional envelope key; when present and an object, its keys are
        merged over the top-level message before field lookup.
    type_tags : Mapping[str, UpdateKind]
        Discriminator value -> update kind. Unlisted tags are rejected as
        unknown types.
    fields : Mapping[str, str]
        Canonical field name -> wire field name. Missing entries fall back to
        :data:`DEFAULT_FIELDS`.
    """

    type_field: str = "type"
    data_field: str | None = "data"
    type_tags: Mapping[str, UpdateKind] = dataclasses.field(default_factory=lambda: DEFAULT_TYPE_TAGS)
    fields: Mapping[str, str] = dataclasses.field(default_factory=lambda: DEFAULT_FIELDS)

    def __post_init__(self) -> None:
        if not self.type_field:
            raise FlowSyncConfigError("type_field must be non-empty")
        try:
            tags = {str(tag): UpdateKind(kind) for tag, kind in self.type_tags.items()}
        except ValueError as exc:
            raise FlowSyncConfigError(f"Invalid update kind in type_tags: {exc}") from exc
        unknown = set(self.fields) - set(DEFAULT_FIELDS)
        if unknown:
            raise FlowSyncConfigError(f"Unknown canonical field names: {sorted(unknown)}")
        object.__setattr__(self, "type_tags", MappingProxyType(tags))
        object.__setattr__(self, "fields", MappingProxyType({**DEFAULT_FIELDS, **self.fields}))

    def wire_name(self, canonical: str) -> str:
        """Return the wire field name for a canonical field."""
        return self.fields[canonical]


@dataclasses.dataclass(frozen=True)
class SyncConfig:
    """Pipeline configuration.

    Parameters
    ----------
    url : str
        Stream endpoint. ``ws://``/``wss://`` for WebSocket, ``mqtt://host:port``
        or ``mqtts://host:port`` for MQTT.
    transport : str
        ``"websocket"`` or ``"mqtt"``.
    mqtt_topic : str
        Topic subscribed to when ``transport="mqtt"``.
    mqtt_request_topic : str or None
        Topic outbound messages (the resync request) are published to.
    mqtt_username, mqtt_password : str or None
        Optional broker credentials.
    mqtt_keepalive : int
        MQTT keepalive in seconds.
    heartbeat_seconds : float or None
        WebSocket ping interval; ``None`` disables heartbeats.
    reconnect : ReconnectPolicy
        Reconnection policy.
    protocol : ProtocolConfig
        Wire field names and type tags.
    resync_message : str or None
        Text sent on the link after every reconnect to request a full state
        refresh. ``None`` sends nothing.
    clear_on_resync : bool
        Drop every stored entity after a reconnect gap instead of keeping
        the last known state until it is refreshed.
    tombstone_limit : int
        Number of ended incident ids remembered for end-dominance checks.
    """

    url: str
    transport: str = TRANSPORT_WEBSOCKET
    mqtt_topic: str = "flowsync/updates"
    mqtt_request_topic: str | None = None
    mqtt_username: str | None = None
    mqtt_password: str | None = None
    mqtt_keepalive: int = 60
    heartbeat_seconds: float | None = 20.0
    reconnect: ReconnectPolicy = dataclasses.field(default_factory=ReconnectPolicy)
    protocol: ProtocolConfig = dataclasses.field(default_factory=ProtocolConfig)
    resync_message: str | None = None
    clear_on_resync: bool = False
    tombstone_limit: int = 1024

    def __post_init__(self) -> None:
        if self.transport not in (TRANSPORT_WEBSOCKET, TRANSPORT_MQTT):
            raise FlowSyncConfigError(f"Unsupported transport: {self.transport!r}")
        if self.tombstone_limit < 0:
            raise FlowSyncConfigError("tombstone_limit must be >= 0")

    @classmethod
    def from_env(cls, **overrides: Any) -> SyncConfig:
        """Create configuration from ``FLOWSYNC_*`` environment variables.

        Explicit keyword arguments override environment values.

        Raises
        ------
        FlowSyncConfigError
            When no URL is given by ``FLOWSYNC_URL`` or ``url=``, or a
            numeric variable cannot be parsed.
        """
        env = os.environ

        _ENV_CONFIG_MAP = {
            "FLOWSYNC_URL": "url",
            "FLOWSYNC_TRANSPORT": "transport",
            "FLOWSYNC_MQTT_TOPIC": "mqtt_topic",
            "FLOWSYNC_MQTT_REQUEST_TOPIC": "mqtt_request_topic",
            "FLOWSYNC_MQTT_USERNAME": "mqtt_username",
            "FLOWSYNC_MQTT_PASSWORD": "mqtt_password",
            "FLOWSYNC_RESYNC_MESSAGE": "resync_message",
        }
        config_kwargs: dict[str, Any] = {}
        for env_key, field_name in _ENV_CONFIG_MAP.items():
            val = env.get(env_key)
            if val is not None:
                config_kwargs[field_name] = val

        try:
            keepalive_env = env.get("FLOWSYNC_MQTT_KEEPALIVE")
            if keepalive_env is not None:
                config_kwargs["mqtt_keepalive"] = int(keepalive_env)

            heartbeat_env = env.get("FLOWSYNC_HEARTBEAT")
            if heartbeat_env is not None:
                heartbeat = float(heartbeat_env)
                config_kwargs["heartbeat_seconds"] = heartbeat if heartbeat > 0 else None

            limit_env = env.get("FLOWSYNC_TOMBSTONE_LIMIT")
            if limit_env is not None:
                config_kwargs["tombstone_limit"] = int(limit_env)

            # Reconnect policy is nested, handle separately
            if "reconnect" not in overrides:
                policy_kwargs: dict[str, Any] = {}
                interval_env = env.get("FLOWSYNC_RECONNECT_INTERVAL")
                if interval_env is not None:
                    policy_kwargs["interval_seconds"] = float(interval_env)
                retries_env = env.get("FLOWSYNC_RECONNECT_MAX_RETRIES")
                if retries_env is not None:
                    policy_kwargs["max_retries"] = int(retries_env)
                if policy_kwargs:
                    config_kwargs["reconnect"] = ReconnectPolicy(**policy_kwargs)
        except ValueError as exc:
            raise FlowSyncConfigError(f"Invalid numeric FLOWSYNC_* variable: {exc}") from exc

        if "protocol" not in overrides:
            protocol_kwargs: dict[str, Any] = {}
            type_field = env.get("FLOWSYNC_TYPE_FIELD")
            if type_field is not None:
                protocol_kwargs["type_field"] = type_field
            data_field = env.get("FLOWSYNC_DATA_FIELD")
            if data_field is not None:
                protocol_kwargs["data_field"] = data_field or None
            if protocol_kwargs:
                config_kwargs["protocol"] = ProtocolConfig(**protocol_kwargs)

        if "clear_on_resync" not in overrides:
            config_kwargs["clear_on_resync"] = _env_bool(env.get("FLOWSYNC_CLEAR_ON_RESYNC"), False)

        config_kwargs.update(overrides)

        if not config_kwargs.get("url"):
            raise FlowSyncConfigError("FLOWSYNC_URL is not set")
        return cls(**config_kwargs)
