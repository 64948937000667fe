from __future__ import annotations

import itertools
from datetime import UTC, datetime, timedelta

import pytest

from flowsync.models.entities import EntityKind, MovingUnit, SignalPhase
from flowsync.models.updates import IncidentEnd, IncidentStart, SignalPhaseChange, UnitUpsert
from flowsync.state.events import ApplyOutcome, ChangeKind, StateChange
from flowsync.state.store import WorldStore


def _dt(seconds: float = 0.0) -> datetime:
    return datetime(2026, 1, 1, tzinfo=UTC) + timedelta(seconds=seconds)


def _unit(entity_id: str, pos: tuple[float, float], speed: float, idx: int, **kwargs: object) -> UnitUpsert:
    return UnitUpsert(entity_id=entity_id, position=pos, speed=speed, arrival_index=idx, **kwargs)


def _start(entity_id: str, idx: int) -> IncidentStart:
    return IncidentStart(entity_id=entity_id, waypoints=[(0, 0), (5, 5)], arrival_index=idx)


def _end(entity_id: str, idx: int) -> IncidentEnd:
    return IncidentEnd(entity_id=entity_id, arrival_index=idx)


def test_stale_upsert_does_not_overwrite_newer_state() -> None:
    store = WorldStore()

    assert store.apply(_unit("7", (0, 0), 10, 1)) == ApplyOutcome.APPLIED
    assert store.apply(_unit("7", (1, 1), 12, 3)) == ApplyOutcome.APPLIED
    assert store.apply(_unit("7", (9, 9), 1, 2)) == ApplyOutcome.STALE

    unit = store.snapshot().units["7"]
    assert unit.position.as_tuple() == (1.0, 1.0)
    assert unit.speed == 12
    assert unit.arrival_index == 3
    assert store.stats.stale == 1


def test_highest_arrival_index_wins_for_every_delivery_order() -> None:
    events = [_unit("u1", (float(i), 0.0), float(i), i) for i in range(1, 5)]

    for order in itertools.permutations(events):
        store = WorldStore()
        for event in order:
            store.apply(event)
        unit = store.snapshot().units["u1"]
        assert unit.arrival_index == 4
        assert unit.position.x == 4.0


def test_duplicate_event_is_idempotent() -> None:
    store = WorldStore()
    event = _unit("7", (2, 3), 5, 1)

    store.apply(event)
    first = store.snapshot()
    assert store.apply(event) == ApplyOutcome.STALE

    assert store.snapshot() == first
    assert len(store) == 1


def test_partial_update_keeps_fields_it_does_not_carry() -> None:
    store = WorldStore()
    store.apply(SignalPhaseChange(entity_id="s1", phase="go", position=(4, 4), arrival_index=1))
    store.apply(SignalPhaseChange(entity_id="s1", phase="red", arrival_index=2))

    signal = store.snapshot().signals["s1"]
    assert signal.phase == SignalPhase.STOP
    assert signal.position is not None
    assert signal.position.as_tuple() == (4.0, 4.0)


def test_unit_class_kept_when_later_upsert_omits_it() -> None:
    store = WorldStore()
    store.apply(_unit("amb", (0, 0), 30, 1, unit_class="priority"))
    store.apply(_unit("amb", (1, 0), 31, 2))

    unit = store.get(EntityKind.UNIT, "amb")
    assert isinstance(unit, MovingUnit)
    assert unit.is_priority


def test_same_id_in_different_kinds_does_not_collide() -> None:
    store = WorldStore()
    store.apply(_unit("1", (0, 0), 1, 1))
    store.apply(SignalPhaseChange(entity_id="1", phase="go", arrival_index=2))
    store.apply(_start("1", 3))

    snapshot = store.snapshot()
    assert len(snapshot) == 3
    assert {entity.kind for entity in snapshot} == set(EntityKind)


def test_end_removes_incident_regardless_of_index() -> None:
    store = WorldStore()
    store.apply(_start("inc-1", 9))

    assert store.apply(_end("inc-1", 4)) == ApplyOutcome.APPLIED
    assert "inc-1" not in store.snapshot().incidents


def test_late_start_after_end_does_not_resurrect_incident() -> None:
    store = WorldStore()
    store.apply(_start("inc-1", 3))
    store.apply(_end("inc-1", 5))

    assert store.apply(_start("inc-1", 4)) == ApplyOutcome.STALE
    assert "inc-1" not in store.snapshot().incidents


def test_end_observed_before_start_blocks_older_start() -> None:
    store = WorldStore()

    assert store.apply(_end("inc-1", 7)) == ApplyOutcome.NOOP
    assert store.apply(_start("inc-1", 5)) == ApplyOutcome.STALE
    assert len(store) == 0


def test_newer_start_after_end_recreates_incident() -> None:
    store = WorldStore()
    store.apply(_start("inc-1", 1))
    store.apply(_end("inc-1", 2))

    assert store.apply(_start("inc-1", 3)) == ApplyOutcome.APPLIED
    assert store.snapshot().incidents["inc-1"].active is True


def test_tombstones_are_bounded() -> None:
    store = WorldStore(tombstone_limit=2)
    store.apply(_end("a", 1))
    store.apply(_end("b", 2))
    store.apply(_end("c", 3))

    # "a" was evicted, so its late start is accepted again.
    assert store.apply(_start("a", 1)) == ApplyOutcome.APPLIED
    assert store.apply(_start("c", 2)) == ApplyOutcome.STALE


def test_subscribers_notified_only_on_change() -> None:
    store = WorldStore()
    seen: list[StateChange] = []
    store.subscribe(seen.append)

    store.apply(_unit("7", (0, 0), 1, 2))
    store.apply(_unit("7", (0, 0), 1, 1))  # stale
    store.apply(_end("missing", 3))  # unknown key
    store.apply(_unit("7", (1, 0), 1, 4))

    assert [change.change for change in seen] == [ChangeKind.CREATED, ChangeKind.UPDATED]
    assert seen[1].previous is not None
    assert seen[1].previous.arrival_index == 2


def test_subscription_filtered_by_kind_and_unsubscribe() -> None:
    store = WorldStore()
    incidents: list[str] = []
    unsubscribe = store.subscribe(lambda change: incidents.append(change.entity_id), EntityKind.INCIDENT)

    store.apply(_unit("7", (0, 0), 1, 1))
    store.apply(_start("inc-1", 2))
    unsubscribe()
    unsubscribe()
    store.apply(_start("inc-2", 3))

    assert incidents == ["inc-1"]


def test_failing_listener_does_not_block_others() -> None:
    store = WorldStore()
    seen: list[str] = []

    def _boom(_change: StateChange) -> None:
        raise RuntimeError("listener bug")

    store.subscribe(_boom)
    store.subscribe(lambda change: seen.append(change.entity_id))

    assert store.apply(_unit("7", (0, 0), 1, 1)) == ApplyOutcome.APPLIED
    assert seen == ["7"]


def test_snapshot_is_immutable_and_isolated_from_later_applies() -> None:
    store = WorldStore()
    store.apply(_unit("7", (0, 0), 1, 1))
    before = store.snapshot()

    store.apply(_unit("8", (0, 0), 1, 2))
    store.apply(_unit("7", (5, 5), 2, 3))

    assert set(before.units) == {"7"}
    assert before.units["7"].speed == 1
    assert before.version == 1
    assert store.snapshot().version == 3
    assert store.snapshot().last_arrival_index == 3
    with pytest.raises(TypeError):
        before.units["9"] = before.units["7"]  # type: ignore[index]


def test_snapshot_cached_until_next_change() -> None:
    store = WorldStore()
    store.apply(_unit("7", (0, 0), 1, 1))

    assert store.snapshot() is store.snapshot()
    cached = store.snapshot()
    store.apply(_unit("7", (0, 0), 1, 1))  # stale, no change
    assert store.snapshot() is cached


def test_resync_keeps_state_by_default() -> None:
    store = WorldStore()
    store.apply(_unit("7", (0, 0), 1, 1))

    store.resync()

    assert store.stats.resyncs == 1
    assert len(store) == 1


def test_resync_can_clear_state() -> None:
    store = WorldStore(clear_on_resync=True)
    removed: list[str] = []
    store.apply(_unit("7", (0, 0), 1, 1))
    store.apply(_start("inc-1", 2))
    store.subscribe(lambda change: removed.append(change.entity_id))

    store.resync()

    assert len(store) == 0
    assert sorted(removed) == ["7", "inc-1"]


def test_expire_idle_removes_only_stale_units_and_signals() -> None:
    now = _dt(100)
    store = WorldStore(clock=lambda: now)
    store.apply(UnitUpsert(entity_id="old", position=(0, 0), speed=1, arrival_index=1, received_at=_dt(0)))
    store.apply(UnitUpsert(entity_id="fresh", position=(0, 0), speed=1, arrival_index=2, received_at=_dt(95)))
    store.apply(IncidentStart(entity_id="inc", waypoints=[], arrival_index=3, received_at=_dt(0)))

    removed = store.expire_idle(30)

    assert [entity.id for entity in removed] == ["old"]
    assert set(store.snapshot().units) == {"fresh"}
    assert "inc" in store.snapshot().incidents
    assert store.stats.expired == 1
