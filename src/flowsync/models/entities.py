"""Tracked entity models held by the world store."""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum
from typing import ClassVar

from pydantic import Field, field_validator

from flowsync.models._base import FlowBaseModel, Position


class EntityKind(StrEnum):
    UNIT = "unit"
    SIGNAL = "signal"
    INCIDENT = "incident"


class UnitClass(StrEnum):
    """Moving unit class tag.

    Matching is case-insensitive; ``emergency`` is accepted for ``priority``.
    """

    STANDARD = "standard"
    PRIORITY = "priority"

    @classmethod
    def _missing_(cls, value: object) -> UnitClass | None:
        if not isinstance(value, str):
            return None
        normalized = value.strip().lower()
        if normalized == "emergency":
            return cls.PRIORITY
        for member in cls:
            if member.value == normalized:
                return member
        return None


_PHASE_ALIASES: dict[str, str] = {
    "red": "stop",
    "yellow": "caution",
    "amber": "caution",
    "green": "go",
}


class SignalPhase(StrEnum):
    """Signal controller phase.

    Traffic-light colour names are accepted as aliases
    (``red``/``yellow``/``amber``/``green``), case-insensitively.
    """

    STOP = "stop"
    CAUTION = "caution"
    GO = "go"

    @classmethod
    def _missing_(cls, value: object) -> SignalPhase | None:
        if not isinstance(value, str):
            return None
        normalized = value.strip().lower()
        normalized = _PHASE_ALIASES.get(normalized, normalized)
        for member in cls:
            if member.value == normalized:
                return member
        return None


class Entity(FlowBaseModel):
    """Fields shared by every tracked entity."""

    kind: ClassVar[EntityKind]

    id: str
    """Identifier, unique within the entity kind."""

    arrival_index: int
    """Arrival index of the last event applied to this entity."""

    updated_at: datetime
    """Local observation time of the last applied event (UTC)."""

    @field_validator("id")
    @classmethod
    def _normalize_id(cls, value: str) -> str:
        entity_id = value.strip()
        if not entity_id:
            raise ValueError("id must be non-empty")
        return entity_id


class MovingUnit(Entity):
    """A vehicle moving through the simulation."""

    kind: ClassVar[EntityKind] = EntityKind.UNIT

    position: Position
    speed: float = Field(ge=0)
    unit_class: UnitClass = UnitClass.STANDARD
    heading: float | None = None
    """Heading in degrees, when the server reports it."""

    @property
    def is_priority(self) -> bool:
        return self.unit_class == UnitClass.PRIORITY


class SignalController(Entity):
    """A traffic signal and its current phase."""

    kind: ClassVar[EntityKind] = EntityKind.SIGNAL

    position: Position | None = None
    phase: SignalPhase


class IncidentRoute(Entity):
    """An active emergency incident and the route its responder follows.

    Ended incidents are removed from the store, so ``active`` is ``True``
    for every stored instance.
    """

    kind: ClassVar[EntityKind] = EntityKind.INCIDENT

    waypoints: tuple[Position, ...] = ()
    active: bool = True
    unit_id: str | None = None
