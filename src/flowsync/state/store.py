"""Deterministic in-memory world store.

This is the only component allowed to merge update events.
"""

from __future__ import annotations

import dataclasses
import logging
from collections import OrderedDict
from collections.abc import Callable, Iterable
from datetime import UTC, datetime

from flowsync.models.entities import Entity, EntityKind
from flowsync.models.updates import IncidentEnd, UpdateEvent
from flowsync.state.events import ApplyOutcome, ChangeKind, StateChange
from flowsync.state.policy import is_dominated_by_end, is_idle, should_accept_update
from flowsync.state.snapshot import WorldSnapshot

_logger = logging.getLogger(__name__)

Listener = Callable[[StateChange], None]


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclasses.dataclass
class StoreStats:
    applied: int = 0
    stale: int = 0
    noop: int = 0
    removed: int = 0
    resyncs: int = 0
    expired: int = 0


class WorldStore:
    """In-memory store for merged world state.

    This store is deterministic: given the same sequence of update events,
    it produces the same snapshots regardless of wall-clock timing.

    There is exactly one writer (the pipeline calling :meth:`apply`). Readers
    get immutable :class:`WorldSnapshot` instances and never a reference to
    the live mappings.
    """

    def __init__(
        self,
        *,
        clock: Callable[[], datetime] = _utcnow,
        tombstone_limit: int = 1024,
        clear_on_resync: bool = False,
    ) -> None:
        self._clock = clock
        self._tombstone_limit = tombstone_limit
        self._clear_on_resync = clear_on_resync
        self._entities: dict[EntityKind, dict[str, Entity]] = {kind: {} for kind in EntityKind}
        # incident id -> highest end arrival index seen, oldest first
        self._ended: OrderedDict[str, int] = OrderedDict()
        self._listeners: list[tuple[EntityKind | None, Listener]] = []
        self._version = 0
        self._last_index = 0
        self._snapshot: WorldSnapshot | None = None
        self.stats = StoreStats()

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def apply(self, event: UpdateEvent) -> ApplyOutcome:
        """Apply a normalized update event."""
        if isinstance(event, IncidentEnd):
            return self._apply_end(event)
        return self._apply_upsert(event)

    def _apply_upsert(self, event: UpdateEvent) -> ApplyOutcome:
        bucket = self._entities[event.entity_kind]
        existing = bucket.get(event.entity_id)

        if existing is None and event.entity_kind == EntityKind.INCIDENT:
            # A start that arrives after its own end must not resurrect it.
            if is_dominated_by_end(end_index=self._ended.get(event.entity_id), incoming_index=event.arrival_index):
                self.stats.stale += 1
                return ApplyOutcome.STALE

        if existing is not None and not should_accept_update(
            stored_index=existing.arrival_index,
            incoming_index=event.arrival_index,
        ):
            self.stats.stale += 1
            _logger.debug(
                "Stale %s for %s/%s: index %s <= %s",
                event.kind.value,
                event.entity_kind.value,
                event.entity_id,
                event.arrival_index,
                existing.arrival_index,
            )
            return ApplyOutcome.STALE

        if existing is None:
            entity = event.build_entity()
            change = ChangeKind.CREATED
            if event.entity_kind == EntityKind.INCIDENT:
                self._ended.pop(event.entity_id, None)
        else:
            entity = event.merge_into(existing)
            change = ChangeKind.UPDATED
        bucket[event.entity_id] = entity

        self.stats.applied += 1
        self._mark_changed(event.arrival_index)
        self._notify(
            StateChange(
                change=change,
                entity_kind=event.entity_kind,
                entity_id=event.entity_id,
                entity=entity,
                previous=existing,
                event=event,
            )
        )
        return ApplyOutcome.APPLIED

    def _apply_end(self, event: IncidentEnd) -> ApplyOutcome:
        self._remember_end(event.entity_id, event.arrival_index)

        # Ends are authoritative once observed: no index comparison.
        removed = self._entities[EntityKind.INCIDENT].pop(event.entity_id, None)
        if removed is None:
            self.stats.noop += 1
            return ApplyOutcome.NOOP

        self.stats.applied += 1
        self.stats.removed += 1
        self._mark_changed(event.arrival_index)
        self._notify(
            StateChange(
                change=ChangeKind.REMOVED,
                entity_kind=EntityKind.INCIDENT,
                entity_id=event.entity_id,
                entity=removed,
                previous=removed,
                event=event,
            )
        )
        return ApplyOutcome.APPLIED

    def _remember_end(self, entity_id: str, arrival_index: int) -> None:
        if self._tombstone_limit <= 0:
            return
        previous = self._ended.pop(entity_id, None)
        self._ended[entity_id] = arrival_index if previous is None else max(previous, arrival_index)
        while len(self._ended) > self._tombstone_limit:
            self._ended.popitem(last=False)

    def _mark_changed(self, arrival_index: int | None = None) -> None:
        self._version += 1
        if arrival_index is not None:
            self._last_index = max(self._last_index, arrival_index)
        self._snapshot = None

    def _remove_where(self, kinds: Iterable[EntityKind], predicate: Callable[[Entity], bool]) -> list[Entity]:
        removed: list[Entity] = []
        for kind in kinds:
            bucket = self._entities[kind]
            for entity_id in [eid for eid, entity in bucket.items() if predicate(entity)]:
                entity = bucket.pop(entity_id)
                removed.append(entity)
                self.stats.removed += 1
                self._mark_changed()
                self._notify(
                    StateChange(
                        change=ChangeKind.REMOVED,
                        entity_kind=kind,
                        entity_id=entity_id,
                        entity=entity,
                        previous=entity,
                    )
                )
        return removed

    def resync(self) -> None:
        """Record a gap in the event stream (the transport reconnected).

        Stored state is kept until the server refreshes it, unless the store
        was built with ``clear_on_resync=True``.
        """
        self.stats.resyncs += 1
        _logger.debug("Stream resync #%s (clear=%s)", self.stats.resyncs, self._clear_on_resync)
        if self._clear_on_resync:
            self.clear()

    def clear(self) -> None:
        """Remove every entity, notifying subscribers of each removal."""
        self._remove_where(EntityKind, lambda _entity: True)

    def expire_idle(
        self,
        max_age_seconds: float,
        *,
        kinds: Iterable[EntityKind] = (EntityKind.UNIT, EntityKind.SIGNAL),
    ) -> list[Entity]:
        """Remove entities not refreshed within *max_age_seconds*.

        Never called by the pipeline itself; consumers opt in.
        """
        now = self._clock()
        removed = self._remove_where(kinds, lambda entity: is_idle(now, entity.updated_at, max_age_seconds))
        self.stats.expired += len(removed)
        return removed

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    def subscribe(self, listener: Listener, kind: EntityKind | None = None) -> Callable[[], None]:
        """Register *listener* for changes of *kind* (all kinds when ``None``).

        Returns a callable that unsubscribes; calling it more than once is
        harmless.
        """
        entry = (kind, listener)
        self._listeners.append(entry)

        def _unsubscribe() -> None:
            self._listeners = [cand for cand in self._listeners if cand is not entry]

        return _unsubscribe

    def clear_listeners(self) -> None:
        self._listeners = []

    def _notify(self, change: StateChange) -> None:
        for kind, listener in list(self._listeners):
            if kind is not None and kind != change.entity_kind:
                continue
            try:
                listener(change)
            except Exception:
                _logger.warning(
                    "Store listener failed for %s %s/%s",
                    change.change.value,
                    change.entity_kind.value,
                    change.entity_id,
                    exc_info=True,
                )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def snapshot(self) -> WorldSnapshot:
        """Return an immutable view of the current state."""
        snapshot = self._snapshot
        if snapshot is None:
            snapshot = WorldSnapshot.build(
                self._entities,
                version=self._version,
                last_arrival_index=self._last_index,
            )
            self._snapshot = snapshot
        return snapshot

    def get(self, kind: EntityKind, entity_id: str) -> Entity | None:
        return self._entities[kind].get(entity_id)

    @property
    def version(self) -> int:
        return self._version

    def __len__(self) -> int:
        return sum(len(bucket) for bucket in self._entities.values())
