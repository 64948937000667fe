"""flowsync - real-time world state synchronization for traffic simulations."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("flowsync")
except PackageNotFoundError:
    __version__ = "0+local"
from flowsync._connector import ConnectionState, ConnectionStatus, StreamConnector
from flowsync._mqtt import MqttLink
from flowsync._transport import StreamLink, WebSocketLink
from flowsync.client import FlowSyncClient
from flowsync.config import ProtocolConfig, ReconnectPolicy, SyncConfig
from flowsync.effects import AlertSink, IncidentAlertDispatcher, LoggingAlertSink
from flowsync.exceptions import (
    DecodeError,
    FlowSyncConfigError,
    FlowSyncError,
    MalformedPayloadError,
    SyncConnectionError,
    UnknownEventTypeError,
)
from flowsync.ingestion import EventNormalizer
from flowsync.models import (
    EntityKind,
    IncidentEnd,
    IncidentRoute,
    IncidentStart,
    MovingUnit,
    Position,
    SignalController,
    SignalPhase,
    SignalPhaseChange,
    UnitClass,
    UnitUpsert,
    UpdateEvent,
    UpdateKind,
)
from flowsync.state import ApplyOutcome, ChangeKind, StateChange, WorldSnapshot, WorldStore

__all__ = [
    "__version__",
    "AlertSink",
    "ApplyOutcome",
    "ChangeKind",
    "ConnectionState",
    "ConnectionStatus",
    "DecodeError",
    "EntityKind",
    "EventNormalizer",
    "FlowSyncClient",
    "FlowSyncConfigError",
    "FlowSyncError",
    "IncidentAlertDispatcher",
    "IncidentEnd",
    "IncidentRoute",
    "IncidentStart",
    "LoggingAlertSink",
    "MalformedPayloadError",
    "MovingUnit",
    "MqttLink",
    "Position",
    "ProtocolConfig",
    "ReconnectPolicy",
    "SignalController",
    "SignalPhase",
    "SignalPhaseChange",
    "StateChange",
    "StreamConnector",
    "StreamLink",
    "SyncConfig",
    "SyncConnectionError",
    "UnitClass",
    "UnitUpsert",
    "UnknownEventTypeError",
    "UpdateEvent",
    "UpdateKind",
    "WebSocketLink",
    "WorldSnapshot",
    "WorldStore",
]
