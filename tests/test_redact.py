from __future__ import annotations

from flowsync._redact import redact_for_log


def test_redact_for_log_redacts_sensitive_keys() -> None:
    payload = {
        "type": "vehicle_update",
        "password": "pw",
        "auth": {"token": "abc", "user": "sim"},
        "nested": [{"apiKey": "k"}],
    }

    redacted = redact_for_log(payload)
    assert redacted["password"] == "<redacted>"
    assert redacted["auth"]["token"] == "<redacted>"
    assert redacted["auth"]["user"] == "sim"
    assert redacted["nested"][0]["apiKey"] == "<redacted>"
    assert redacted["type"] == "vehicle_update"


def test_redact_for_log_truncates_long_strings() -> None:
    long_value = "x" * 600
    redacted = redact_for_log({"value": long_value}, max_string=10)
    assert redacted["value"].startswith("x" * 10)
    assert "<truncated>" in redacted["value"]


def test_redact_for_log_bounds_collections() -> None:
    route = [[i, i] for i in range(100)]

    redacted = redact_for_log({"route": route}, max_items=5)

    assert len(redacted["route"]) == 6
    assert redacted["route"][-1] == "<95 more>"
    assert redact_for_log(b"\x00\x01") == "<bytes:2b>"
