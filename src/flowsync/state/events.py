"""Store outcomes and change notifications."""

from __future__ import annotations

import dataclasses
from enum import StrEnum

from flowsync.models.entities import Entity, EntityKind
from flowsync.models.updates import UpdateEvent


class ApplyOutcome(StrEnum):
    APPLIED = "applied"
    STALE = "stale"
    """Older than (or as old as) what the store already holds; ignored."""
    NOOP = "noop"
    """Nothing to change, e.g. an end for an incident that is not stored."""


class ChangeKind(StrEnum):
    CREATED = "created"
    UPDATED = "updated"
    REMOVED = "removed"


@dataclasses.dataclass(frozen=True)
class StateChange:
    """Notification delivered to store subscribers after a state change.

    ``entity`` is the stored entity after the change; for removals it is the
    entity that was removed. ``previous`` is ``None`` for creations.
    ``event`` is ``None`` when the change did not come from an update event
    (resync clearing, idle expiry).
    """

    change: ChangeKind
    entity_kind: EntityKind
    entity_id: str
    entity: Entity
    previous: Entity | None = None
    event: UpdateEvent | None = None
