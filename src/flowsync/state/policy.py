"""Deterministic merge policy.

This module intentionally contains *no* payload parsing. The ingestion
layer is responsible for producing validated events with arrival indices.
"""

from __future__ import annotations

from datetime import datetime


def should_accept_update(*, stored_index: int | None, incoming_index: int) -> bool:
    """Decide whether an upsert/set/start may overwrite stored state.

    Only a strictly greater arrival index wins; ties keep the stored value,
    so duplicates of an applied event are no-ops.
    """
    if stored_index is None:
        return True
    return incoming_index > stored_index


def is_dominated_by_end(*, end_index: int | None, incoming_index: int) -> bool:
    """Whether an ended incident blocks a start that arrived out of order."""
    if end_index is None:
        return False
    return incoming_index <= end_index


def is_idle(now: datetime, updated_at: datetime, max_age_seconds: float) -> bool:
    return (now - updated_at).total_seconds() > max_age_seconds
