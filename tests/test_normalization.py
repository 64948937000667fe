from __future__ import annotations

import json

import pytest

from flowsync.config import ProtocolConfig
from flowsync.exceptions import MalformedPayloadError, UnknownEventTypeError
from flowsync.ingestion.decoder import EventNormalizer
from flowsync.models.entities import SignalPhase, UnitClass
from flowsync.models.updates import IncidentEnd, IncidentStart, SignalPhaseChange, UnitUpsert, UpdateKind


def _vehicle(**overrides: object) -> str:
    payload: dict[str, object] = {"type": "vehicle_update", "id": "car-1", "position": [3, 4], "speed": 12.5}
    payload.update(overrides)
    return json.dumps(payload)


def test_vehicle_update_decoded_with_increasing_arrival_index() -> None:
    normalizer = EventNormalizer()

    first = normalizer.normalize(_vehicle())
    second = normalizer.normalize(_vehicle(speed=14))

    assert isinstance(first, UnitUpsert)
    assert first.kind == UpdateKind.UNIT_UPSERT
    assert first.entity_id == "car-1"
    assert first.position.as_tuple() == (3.0, 4.0)
    assert first.unit_class is None
    assert (first.arrival_index, second.arrival_index) == (1, 2)
    assert normalizer.last_arrival_index == 2


def test_arrival_index_ignores_payload_sequence_fields() -> None:
    normalizer = EventNormalizer()

    event = normalizer.normalize(_vehicle(seq=999, arrival_index=42))

    assert event.arrival_index == 1


def test_nested_data_envelope_merged_over_top_level() -> None:
    normalizer = EventNormalizer()
    raw = json.dumps(
        {
            "type": "vehicle_update",
            "data": {"id": 7, "position": {"x": 1, "y": 2}, "speed": "3.5", "vehicle_class": "EMERGENCY"},
        }
    )

    event = normalizer.normalize(raw)

    assert isinstance(event, UnitUpsert)
    assert event.entity_id == "7"
    assert event.speed == 3.5
    assert event.unit_class == UnitClass.PRIORITY


def test_bare_coordinates_folded_into_position() -> None:
    normalizer = EventNormalizer()

    event = normalizer.normalize({"type": "vehicle_update", "id": "a", "lat": 52.1, "lng": 4.3, "speed": 0})

    assert isinstance(event, UnitUpsert)
    assert event.position.as_tuple() == (4.3, 52.1)


def test_signal_phase_aliases_accepted() -> None:
    normalizer = EventNormalizer()

    event = normalizer.normalize(b'{"type": "signal_update", "id": "sig-3", "phase": "Amber"}')

    assert isinstance(event, SignalPhaseChange)
    assert event.phase == SignalPhase.CAUTION
    assert event.position is None


def test_incident_start_and_end() -> None:
    normalizer = EventNormalizer()

    start = normalizer.normalize(
        '{"type": "emergency_start", "id": "inc-1", "route": [[0, 0], [1, 1], [2, 1]], "vehicle_id": 12}'
    )
    end = normalizer.normalize('{"type": "emergency_end", "id": "inc-1"}')

    assert isinstance(start, IncidentStart)
    assert len(start.waypoints) == 3
    assert start.unit_id == "12"
    assert isinstance(end, IncidentEnd)
    assert end.arrival_index == 2


def test_custom_protocol_field_names_and_tags() -> None:
    protocol = ProtocolConfig(
        type_field="event",
        data_field="payload",
        type_tags={"carMoved": UpdateKind.UNIT_UPSERT, "lightChanged": "signal_phase"},
        fields={"id": "vehicleId", "position": "pos", "speed": "velocity", "phase": "state"},
    )
    normalizer = EventNormalizer(protocol)

    unit = normalizer.normalize({"event": "carMoved", "payload": {"vehicleId": "v9", "pos": [1, 2], "velocity": 4}})
    signal = normalizer.normalize({"event": "lightChanged", "vehicleId": "s1", "state": "green"})

    assert isinstance(unit, UnitUpsert)
    assert unit.entity_id == "v9"
    assert isinstance(signal, SignalPhaseChange)
    assert signal.phase == SignalPhase.GO
    with pytest.raises(UnknownEventTypeError):
        normalizer.normalize({"event": "vehicle_update", "vehicleId": "v9", "pos": [1, 2], "velocity": 4})


def test_unknown_type_rejected_without_consuming_index() -> None:
    normalizer = EventNormalizer()

    with pytest.raises(UnknownEventTypeError) as excinfo:
        normalizer.normalize('{"type": "weather_update", "id": "w"}')
    event = normalizer.normalize(_vehicle())

    assert excinfo.value.tag == "weather_update"
    assert event.arrival_index == 1
    assert normalizer.stats.unknown_type == 1
    assert normalizer.stats.decoded == 1


@pytest.mark.parametrize(
    "raw",
    [
        _vehicle(speed=None),
        _vehicle(position="--"),
        _vehicle(speed=-1),
        _vehicle(position=[1, 2, 3]),
        _vehicle(id=""),
        '{"type": "signal_update", "id": "s1", "phase": "purple"}',
        '{"type": "emergency_start", "id": "inc-1"}',
        '{"id": "car-1", "position": [0, 0], "speed": 1}',
        "not json",
        "[1, 2, 3]",
        "",
        b"\xff\xfe",
        _vehicle(speed=None).replace("null", "9" * 5000),
        "[" * 100_000 + "]" * 100_000,
        '{"type": "vehicle_update", "id": ' + "[" * 100_000 + "]" * 100_000 + "}",
    ],
)
def test_malformed_payloads_rejected(raw: str | bytes) -> None:
    normalizer = EventNormalizer()

    with pytest.raises(MalformedPayloadError):
        normalizer.normalize(raw)

    assert normalizer.stats.malformed == 1
    assert normalizer.last_arrival_index == 0


def test_numeric_ids_of_any_size_become_strings() -> None:
    normalizer = EventNormalizer()
    huge = "7" * 400

    unit = normalizer.normalize(_vehicle(id=int(huge)))
    start = normalizer.normalize('{"type": "emergency_start", "id": 5.0, "route": [], "vehicle_id": 12.0}')
    other = normalizer.normalize('{"type": "emergency_start", "id": "inc-2", "route": [], "vehicle_id": 3.5}')

    assert unit.entity_id == huge
    assert isinstance(start, IncidentStart)
    assert start.entity_id == "5"
    assert start.unit_id == "12"
    assert isinstance(other, IncidentStart)
    assert other.unit_id == "3.5"
    assert normalizer.stats.malformed == 0
