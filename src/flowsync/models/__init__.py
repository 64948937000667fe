"""Pydantic models for tracked entities and update events."""

from flowsync.models._base import FlowBaseModel, Position
from flowsync.models.entities import (
    Entity,
    EntityKind,
    IncidentRoute,
    MovingUnit,
    SignalController,
    SignalPhase,
    UnitClass,
)
from flowsync.models.updates import (
    UPDATE_TYPES,
    IncidentEnd,
    IncidentStart,
    SignalPhaseChange,
    UnitUpsert,
    UpdateEvent,
    UpdateKind,
)

__all__ = [
    "UPDATE_TYPES",
    "Entity",
    "EntityKind",
    "FlowBaseModel",
    "IncidentEnd",
    "IncidentRoute",
    "IncidentStart",
    "MovingUnit",
    "Position",
    "SignalController",
    "SignalPhase",
    "SignalPhaseChange",
    "UnitClass",
    "UnitUpsert",
    "UpdateEvent",
    "UpdateKind",
]
