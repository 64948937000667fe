"""Typed update events produced by the event normalizer.

Every successfully decoded message becomes exactly one of
:class:`UnitUpsert`, :class:`SignalPhaseChange`, :class:`IncidentStart` or
:class:`IncidentEnd`. Only the world store is allowed to merge them.
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum
from typing import Any, ClassVar

from pydantic import Field, field_validator

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


def _numeric_id(value: Any) -> Any:
    """Render wire-side numeric ids as strings (``12`` and ``12.0`` become ``"12"``)."""
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        return str(int(value)) if value.is_integer() else str(value)
    return value


class UpdateKind(StrEnum):
    UNIT_UPSERT = "unit_upsert"
    SIGNAL_PHASE = "signal_phase"
    INCIDENT_START = "incident_start"
    INCIDENT_END = "incident_end"


# Envelope fields that never reach the entity.
_ENVELOPE_FIELDS = frozenset({"entity_id", "arrival_index", "received_at", "raw"})


class UpdateEvent(FlowBaseModel):
    """Fields shared by every update event."""

    kind: ClassVar[UpdateKind]
    entity_kind: ClassVar[EntityKind]
    entity_type: ClassVar[type[Entity]]

    entity_id: str
    arrival_index: int = Field(ge=1)
    """Locally assigned, strictly increasing ordering key."""

    received_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    raw: dict[str, Any] = Field(default_factory=dict)
    """Decoded payload as received (diagnostics only)."""

    @field_validator("entity_id", mode="before")
    @classmethod
    def _normalize_entity_id(cls, value: Any) -> Any:
        value = _numeric_id(value)
        if isinstance(value, str):
            value = value.strip()
            if not value:
                raise ValueError("entity_id must be non-empty")
        return value

    @field_validator("received_at")
    @classmethod
    def _ensure_tz_aware(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value

    @property
    def key(self) -> tuple[EntityKind, str]:
        return (self.entity_kind, self.entity_id)

    def entity_patch(self) -> dict[str, Any]:
        """Entity fields carried by this event.

        Optional fields the event did not carry are left out, so merging the
        patch keeps the stored value for them.
        """
        patch: dict[str, Any] = {}
        for name in type(self).model_fields:
            if name in _ENVELOPE_FIELDS:
                continue
            value = getattr(self, name)
            if value is not None:
                patch[name] = value
        return patch

    def build_entity(self) -> Entity:
        """Create a new entity from this event."""
        return self.entity_type(
            id=self.entity_id,
            arrival_index=self.arrival_index,
            updated_at=self.received_at,
            **self.entity_patch(),
        )

    def merge_into(self, entity: Entity) -> Entity:
        """Return *entity* with this event's fields applied."""
        update = self.entity_patch()
        update["arrival_index"] = self.arrival_index
        update["updated_at"] = self.received_at
        return entity.model_copy(update=update)


class UnitUpsert(UpdateEvent):
    """Position/speed refresh for a moving unit."""

    kind: ClassVar[UpdateKind] = UpdateKind.UNIT_UPSERT
    entity_kind: ClassVar[EntityKind] = EntityKind.UNIT
    entity_type: ClassVar[type[Entity]] = MovingUnit

    position: Position
    speed: float = Field(ge=0)
    unit_class: UnitClass | None = None
    heading: float | None = None

    @field_validator("unit_class", mode="before")
    @classmethod
    def _coerce_unit_class(cls, value: Any) -> Any:
        if isinstance(value, str):
            return UnitClass(value)
        return value


class SignalPhaseChange(UpdateEvent):
    """Phase change for a signal controller."""

    kind: ClassVar[UpdateKind] = UpdateKind.SIGNAL_PHASE
    entity_kind: ClassVar[EntityKind] = EntityKind.SIGNAL
    entity_type: ClassVar[type[Entity]] = SignalController

    phase: SignalPhase
    position: Position | None = None

    @field_validator("phase", mode="before")
    @classmethod
    def _coerce_phase(cls, value: Any) -> Any:
        if isinstance(value, str):
            return SignalPhase(value)
        return value


class IncidentStart(UpdateEvent):
    """An emergency incident became active (or its route changed)."""

    kind: ClassVar[UpdateKind] = UpdateKind.INCIDENT_START
    entity_kind: ClassVar[EntityKind] = EntityKind.INCIDENT
    entity_type: ClassVar[type[Entity]] = IncidentRoute

    waypoints: tuple[Position, ...]
    unit_id: str | None = None

    @field_validator("unit_id", mode="before")
    @classmethod
    def _coerce_unit_id(cls, value: Any) -> Any:
        return _numeric_id(value)


class IncidentEnd(UpdateEvent):
    """An emergency incident finished; removes the incident."""

    kind: ClassVar[UpdateKind] = UpdateKind.INCIDENT_END
    entity_kind: ClassVar[EntityKind] = EntityKind.INCIDENT
    entity_type: ClassVar[type[Entity]] = IncidentRoute


UPDATE_TYPES: dict[UpdateKind, type[UpdateEvent]] = {
    UpdateKind.UNIT_UPSERT: UnitUpsert,
    UpdateKind.SIGNAL_PHASE: SignalPhaseChange,
    UpdateKind.INCIDENT_START: IncidentStart,
    UpdateKind.INCIDENT_END: IncidentEnd,
}
