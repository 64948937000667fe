"""State/store layer.

This package is the single source of truth for how normalized update
events are merged into a deterministic world snapshot.
"""

from flowsync.state.events import ApplyOutcome, ChangeKind, StateChange
from flowsync.state.snapshot import WorldSnapshot
from flowsync.state.store import StoreStats, WorldStore

__all__ = [
    "ApplyOutcome",
    "ChangeKind",
    "StateChange",
    "StoreStats",
    "WorldSnapshot",
    "WorldStore",
]
