"""Immutable point-in-time view of the world store."""

from __future__ import annotations

import dataclasses
from collections.abc import Iterator, Mapping
from types import MappingProxyType

from flowsync.models.entities import Entity, EntityKind, IncidentRoute, MovingUnit, SignalController


def _empty() -> Mapping[str, Entity]:
    return MappingProxyType({})


@dataclasses.dataclass(frozen=True)
class WorldSnapshot:
    """Read-only world state.

    The mappings are read-only views over copies taken when the snapshot was
    built, and entities are frozen models, so a snapshot never changes after
    it is returned, whatever the store does next.
    """

    units: Mapping[str, MovingUnit] = dataclasses.field(default_factory=_empty)  # type: ignore[assignment]
    signals: Mapping[str, SignalController] = dataclasses.field(default_factory=_empty)  # type: ignore[assignment]
    incidents: Mapping[str, IncidentRoute] = dataclasses.field(default_factory=_empty)  # type: ignore[assignment]
    version: int = 0
    """Number of state changes applied before this snapshot was taken."""
    last_arrival_index: int = 0
    """Highest arrival index the store has accepted."""

    @classmethod
    def build(
        cls,
        entities: Mapping[EntityKind, Mapping[str, Entity]],
        *,
        version: int,
        last_arrival_index: int,
    ) -> WorldSnapshot:
        def _frozen(kind: EntityKind) -> Mapping[str, Entity]:
            return MappingProxyType(dict(entities.get(kind, {})))

        return cls(
            units=_frozen(EntityKind.UNIT),  # type: ignore[arg-type]
            signals=_frozen(EntityKind.SIGNAL),  # type: ignore[arg-type]
            incidents=_frozen(EntityKind.INCIDENT),  # type: ignore[arg-type]
            version=version,
            last_arrival_index=last_arrival_index,
        )

    def entities(self, kind: EntityKind) -> Mapping[str, Entity]:
        if kind == EntityKind.UNIT:
            return self.units
        if kind == EntityKind.SIGNAL:
            return self.signals
        return self.incidents

    def get(self, kind: EntityKind, entity_id: str) -> Entity | None:
        return self.entities(kind).get(entity_id)

    def __iter__(self) -> Iterator[Entity]:
        for kind in EntityKind:
            yield from self.entities(kind).values()

    def __len__(self) -> int:
        return len(self.units) + len(self.signals) + len(self.incidents)
