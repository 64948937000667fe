"""Custom exception hierarchy for flowsync."""

from __future__ import annotations

from typing import Any


class FlowSyncError(Exception):
    """Base exception for all flowsync errors."""


class FlowSyncConfigError(FlowSyncError):
    """Invalid or missing configuration."""


class DecodeError(FlowSyncError):
    """An inbound payload could not be turned into an update event.

    Decode errors are never fatal: the pipeline drops the payload with a
    diagnostic and keeps consuming the stream.
    """

    def __init__(self, message: str, *, payload: Any = None) -> None:
        self.payload = payload
        super().__init__(message)


class UnknownEventTypeError(DecodeError):
    """The payload's type tag is not mapped to any known update kind."""

    def __init__(self, message: str, *, tag: str | None = None, payload: Any = None) -> None:
        self.tag = tag
        super().__init__(message, payload=payload)


class MalformedPayloadError(DecodeError):
    """Required fields are missing or invalid, or the payload is not a JSON object."""


class SyncConnectionError(FlowSyncError):
    """Stream-level failure (connect refused, handshake failed, link dropped)."""

    def __init__(self, message: str, *, endpoint: str = "") -> None:
        self.endpoint = endpoint
        super().__init__(message)
