from __future__ import annotations

from datetime import UTC, datetime

import pytest
from pydantic import ValidationError

from flowsync._mqtt import parse_broker
from flowsync.models import (
    EntityKind,
    IncidentRoute,
    IncidentStart,
    MovingUnit,
    Position,
    SignalController,
    SignalPhase,
    SignalPhaseChange,
    UnitClass,
    UnitUpsert,
)


@pytest.mark.parametrize(
    "value",
    [
        [1.5, -2],
        (1.5, -2),
        {"x": 1.5, "y": -2},
        {"lat": -2, "lng": 1.5},
        {"lat": -2, "lon": 1.5},
    ],
)
def test_position_accepts_common_shapes(value: object) -> None:
    assert Position.model_validate(value).as_tuple() == (1.5, -2.0)


@pytest.mark.parametrize("value", [[1], [1, 2, 3], {"x": 1}, {"x": float("inf"), "y": 0}, "1,2"])
def test_position_rejects_invalid_shapes(value: object) -> None:
    with pytest.raises(ValidationError):
        Position.model_validate(value)


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("go", SignalPhase.GO),
        ("GREEN", SignalPhase.GO),
        (" red ", SignalPhase.STOP),
        ("yellow", SignalPhase.CAUTION),
        ("Caution", SignalPhase.CAUTION),
    ],
)
def test_signal_phase_aliases(raw: str, expected: SignalPhase) -> None:
    assert SignalPhase(raw) is expected


def test_unit_class_aliases() -> None:
    assert UnitClass("Priority") is UnitClass.PRIORITY
    assert UnitClass("emergency") is UnitClass.PRIORITY
    with pytest.raises(ValueError):
        UnitClass("tank")


def test_entity_kinds_and_builders() -> None:
    received = datetime(2026, 1, 1, tzinfo=UTC)
    upsert = UnitUpsert(entity_id=" 42 ", position=(0, 0), speed=3, arrival_index=1, received_at=received)

    unit = upsert.build_entity()

    assert isinstance(unit, MovingUnit)
    assert unit.id == "42"
    assert unit.kind == EntityKind.UNIT
    assert unit.unit_class == UnitClass.STANDARD
    assert unit.updated_at == received
    assert upsert.key == (EntityKind.UNIT, "42")


def test_merge_into_keeps_absent_optional_fields() -> None:
    start = IncidentStart(entity_id="inc", waypoints=[(0, 0)], unit_id="amb-1", arrival_index=1)
    incident = start.build_entity()

    updated = IncidentStart(entity_id="inc", waypoints=[(0, 0), (1, 1)], arrival_index=2).merge_into(incident)

    assert isinstance(updated, IncidentRoute)
    assert updated.unit_id == "amb-1"
    assert len(updated.waypoints) == 2
    assert updated.arrival_index == 2
    assert incident.arrival_index == 1


def test_signal_change_builds_controller_without_position() -> None:
    signal = SignalPhaseChange(entity_id="s", phase="go", arrival_index=3).build_entity()

    assert isinstance(signal, SignalController)
    assert signal.position is None


def test_models_are_frozen() -> None:
    unit = UnitUpsert(entity_id="1", position=(0, 0), speed=1, arrival_index=1).build_entity()

    with pytest.raises(ValidationError):
        unit.speed = 5  # type: ignore[misc]


def test_naive_received_at_assumed_utc() -> None:
    event = UnitUpsert(entity_id="1", position=(0, 0), speed=1, arrival_index=1, received_at=datetime(2026, 1, 1))

    assert event.received_at.tzinfo is UTC


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("mqtt://broker.local:1884", ("broker.local", 1884, False)),
        ("mqtts://broker.local", ("broker.local", 8883, True)),
        ("broker.local", ("broker.local", 1883, False)),
        ("tcp://10.0.0.2:1883/ignored", ("10.0.0.2", 1883, False)),
    ],
)
def test_parse_broker(raw: str, expected: tuple[str, int, bool]) -> None:
    assert parse_broker(raw) == expected
