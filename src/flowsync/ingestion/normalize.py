"""Normalization helpers.

Centralizes defensive parsing of raw stream payloads so the decoder only
deals with plain dicts keyed by canonical field names.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from typing import Any

from flowsync.exceptions import MalformedPayloadError


def decode_json_object(raw: str | bytes | bytearray | Mapping[str, Any]) -> dict[str, Any]:
    """Decode a raw payload into a JSON object.

    Raises
    ------
    MalformedPayloadError
        For invalid UTF-8, invalid JSON, or JSON that is not an object.
    """
    if isinstance(raw, Mapping):
        return dict(raw)

    if isinstance(raw, (bytes, bytearray)):
        try:
            text = bytes(raw).decode("utf-8")
        except UnicodeDecodeError as exc:
            raise MalformedPayloadError("Payload is not valid UTF-8", payload=raw) from exc
    elif isinstance(raw, str):
        text = raw
    else:
        raise MalformedPayloadError(f"Unsupported payload type {type(raw).__name__}", payload=raw)

    # Handle a UTF-8 BOM (observed from some browser-side relays)
    text = text.lstrip("\ufeff").strip()
    if not text:
        raise MalformedPayloadError("Empty payload", payload=raw)

    try:
        parsed = json.loads(text)
    except json.JSONDecodeError as exc:
        raise MalformedPayloadError(f"Invalid JSON: {exc.msg}", payload=raw) from exc
    except (ValueError, RecursionError) as exc:
        # Oversized integer literals and pathological nesting
        raise MalformedPayloadError(f"Undecodable JSON: {exc}", payload=raw) from exc

    if not isinstance(parsed, dict):
        raise MalformedPayloadError("Payload is not a JSON object", payload=raw)
    return parsed


def merge_envelope(payload: dict[str, Any], data_field: str | None) -> dict[str, Any]:
    """Merge a nested ``data`` object over the top-level message."""
    if not data_field:
        return payload
    nested = payload.get(data_field)
    if not isinstance(nested, dict):
        return payload
    merged = {key: value for key, value in payload.items() if key != data_field}
    merged.update(nested)
    return merged


def safe_str(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text if text else None


def canonicalize(payload: Mapping[str, Any], fields: Mapping[str, str]) -> dict[str, Any]:
    """Rename wire keys to canonical field names.

    Only keys listed in *fields* are carried over. When no position field is
    present, bare ``x``/``y`` or ``lat``/``lng`` keys are folded into one.
    """
    canonical: dict[str, Any] = {}
    for name, wire in fields.items():
        if wire in payload:
            canonical[name] = payload[wire]

    if "position" not in canonical:
        if "x" in payload and "y" in payload:
            canonical["position"] = {"x": payload["x"], "y": payload["y"]}
        elif "lat" in payload and ("lng" in payload or "lon" in payload):
            canonical["position"] = {"lat": payload["lat"], "lng": payload.get("lng", payload.get("lon"))}
    return canonical
