"""Event normalizer.

Turns one raw stream payload into one typed :class:`UpdateEvent`:

- decode the payload into a JSON object
- resolve the discriminator tag to an :class:`UpdateKind`
- rename configured wire fields to canonical names
- validate through the Pydantic update model
- stamp a locally assigned arrival index

The arrival index, not anything inside the payload, is the ordering key the
world store uses, since the transport makes no ordering guarantee beyond
"as received".
"""

from __future__ import annotations

import dataclasses
import logging
from collections.abc import Mapping
from datetime import UTC, datetime
from typing import Any

from pydantic import ValidationError

from flowsync._redact import redact_for_log
from flowsync.config import ProtocolConfig
from flowsync.exceptions import MalformedPayloadError, UnknownEventTypeError
from flowsync.ingestion.normalize import canonicalize, decode_json_object, merge_envelope, safe_str
from flowsync.models.updates import UPDATE_TYPES, UpdateEvent

_logger = logging.getLogger(__name__)


@dataclasses.dataclass
class NormalizerStats:
    decoded: int = 0
    unknown_type: int = 0
    malformed: int = 0


def _describe_validation_error(exc: ValidationError) -> str:
    parts = []
    for error in exc.errors():
        location = ".".join(str(item) for item in error.get("loc", ())) or "<payload>"
        parts.append(f"{location}: {error.get('msg', 'invalid')}")
    return "; ".join(parts)


class EventNormalizer:
    """Validate and classify raw payloads into update events.

    One instance owns one arrival-index sequence. Indices start at 1, are
    strictly increasing, and are only consumed by payloads that decode
    successfully.
    """

    def __init__(self, protocol: ProtocolConfig | None = None) -> None:
        self._protocol = protocol or ProtocolConfig()
        self._last_index = 0
        self.stats = NormalizerStats()

    @property
    def last_arrival_index(self) -> int:
        return self._last_index

    def normalize(
        self,
        raw: str | bytes | bytearray | Mapping[str, Any],
        *,
        received_at: datetime | None = None,
    ) -> UpdateEvent:
        """Decode *raw* into an update event.

        Raises
        ------
        UnknownEventTypeError
            The discriminator is missing a mapping in ``ProtocolConfig.type_tags``.
        MalformedPayloadError
            The payload is not a JSON object, has no discriminator, or fails
            validation for its update kind.
        """
        try:
            event = self._decode(raw, received_at or datetime.now(UTC))
        except UnknownEventTypeError:
            self.stats.unknown_type += 1
            raise
        except MalformedPayloadError:
            self.stats.malformed += 1
            raise

        self._last_index = event.arrival_index
        self.stats.decoded += 1
        return event

    def _decode(
        self,
        raw: str | bytes | bytearray | Mapping[str, Any],
        received_at: datetime,
    ) -> UpdateEvent:
        protocol = self._protocol
        payload = decode_json_object(raw)

        tag = safe_str(payload.get(protocol.type_field))
        if tag is None:
            raise MalformedPayloadError(
                f"Missing discriminator field {protocol.type_field!r}",
                payload=payload,
            )
        kind = protocol.type_tags.get(tag)
        if kind is None:
            raise UnknownEventTypeError(f"Unknown event type {tag!r}", tag=tag, payload=payload)

        body = canonicalize(merge_envelope(payload, protocol.data_field), protocol.fields)
        candidate: dict[str, Any] = {
            key: value for key, value in body.items() if key != "id"
        }
        candidate["entity_id"] = body.get("id")
        candidate["arrival_index"] = self._last_index + 1
        candidate["received_at"] = received_at
        candidate["raw"] = payload

        model = UPDATE_TYPES[kind]
        try:
            event = model.model_validate(candidate)
        except ValidationError as exc:
            raise MalformedPayloadError(
                f"Invalid {tag!r} payload: {_describe_validation_error(exc)}",
                payload=payload,
            ) from exc

        if _logger.isEnabledFor(logging.DEBUG):
            _logger.debug(
                "Decoded %s id=%s index=%s payload=%s",
                kind.value,
                event.entity_id,
                event.arrival_index,
                redact_for_log(payload),
            )
        return event
