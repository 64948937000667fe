from __future__ import annotations

import itertools

from flowsync.effects import IncidentAlertDispatcher
from flowsync.models.entities import IncidentRoute
from flowsync.models.updates import IncidentEnd, IncidentStart, UnitUpsert, UpdateEvent
from flowsync.state.store import WorldStore


class _RecordingSink:
    def __init__(self) -> None:
        self.calls: list[tuple[str, str]] = []

    def begin_alert(self, incident: IncidentRoute) -> None:
        self.calls.append(("begin", incident.id))

    def end_alert(self, incident_id: str) -> None:
        self.calls.append(("end", incident_id))


class _FailingSink(_RecordingSink):
    def begin_alert(self, incident: IncidentRoute) -> None:
        super().begin_alert(incident)
        raise RuntimeError("audio device unavailable")


def _wired(sink: _RecordingSink) -> tuple[WorldStore, IncidentAlertDispatcher]:
    store = WorldStore()
    dispatcher = IncidentAlertDispatcher(sink)
    dispatcher.attach(store)
    return store, dispatcher


def _start(entity_id: str, idx: int) -> IncidentStart:
    return IncidentStart(entity_id=entity_id, waypoints=[(0, 0)], arrival_index=idx)


def _end(entity_id: str, idx: int) -> IncidentEnd:
    return IncidentEnd(entity_id=entity_id, arrival_index=idx)


def test_duplicate_start_triggers_single_begin_then_single_end() -> None:
    sink = _RecordingSink()
    store, dispatcher = _wired(sink)

    store.apply(_start("inc-1", 5))
    store.apply(_start("inc-1", 6))
    assert dispatcher.is_active("inc-1")
    store.apply(_end("inc-1", 7))

    assert sink.calls == [("begin", "inc-1"), ("end", "inc-1")]
    assert not dispatcher.is_active("inc-1")


def test_at_most_one_begin_and_end_for_any_interleaving() -> None:
    events: list[UpdateEvent] = [_start("inc-1", 1), _start("inc-1", 2), _end("inc-1", 3), _end("inc-1", 3)]

    for order in itertools.permutations(events):
        sink = _RecordingSink()
        store, dispatcher = _wired(sink)
        for event in order:
            store.apply(event)

        begins = [call for call in sink.calls if call[0] == "begin"]
        ends = [call for call in sink.calls if call[0] == "end"]
        assert len(begins) <= 1
        assert len(ends) == len(begins)
        assert sink.calls[: len(begins)] == begins
        assert not dispatcher.is_active("inc-1")


def test_non_incident_changes_ignored() -> None:
    sink = _RecordingSink()
    store, dispatcher = _wired(sink)

    store.apply(UnitUpsert(entity_id="amb-1", position=(0, 0), speed=50, unit_class="priority", arrival_index=1))

    assert sink.calls == []
    assert dispatcher.active_ids() == frozenset()


def test_sink_failure_does_not_break_pipeline_or_flag() -> None:
    sink = _FailingSink()
    store, dispatcher = _wired(sink)

    store.apply(_start("inc-1", 1))
    store.apply(_start("inc-2", 2))

    assert dispatcher.active_ids() == frozenset({"inc-1", "inc-2"})
    assert len(store.snapshot().incidents) == 2


def test_reset_ends_active_alerts_and_detach_stops_tracking() -> None:
    sink = _RecordingSink()
    store, dispatcher = _wired(sink)
    store.apply(_start("b", 1))
    store.apply(_start("a", 2))

    dispatcher.reset()
    dispatcher.detach()
    store.apply(_start("c", 3))

    assert sink.calls == [("begin", "b"), ("begin", "a"), ("end", "a"), ("end", "b")]
    assert not dispatcher.is_active("c")
