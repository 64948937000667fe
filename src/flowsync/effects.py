"""Incident alert side effects.

The dispatcher owns only the trigger policy: which incident transitions
begin or end an alert, exactly once each. What an alert *does* (a siren
loop, a flashing overlay) belongs to the injected :class:`AlertSink`.

Alerts are level-triggered: consumers that animate continuously poll
:meth:`IncidentAlertDispatcher.is_active` instead of tracking start/stop
calls themselves.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Protocol

from flowsync.models.entities import EntityKind, IncidentRoute
from flowsync.state.events import ChangeKind, StateChange
from flowsync.state.store import WorldStore

_logger = logging.getLogger(__name__)


class AlertSink(Protocol):
    """Side-effect capability injected into the dispatcher."""

    def begin_alert(self, incident: IncidentRoute) -> None: ...

    def end_alert(self, incident_id: str) -> None: ...


class LoggingAlertSink:
    """Default sink: records alert transitions in the log."""

    def __init__(self, logger: logging.Logger | None = None) -> None:
        self._logger = logger or _logger

    def begin_alert(self, incident: IncidentRoute) -> None:
        self._logger.info(
            "Incident %s alert started (%d waypoints, unit=%s)",
            incident.id,
            len(incident.waypoints),
            incident.unit_id,
        )

    def end_alert(self, incident_id: str) -> None:
        self._logger.info("Incident %s alert ended", incident_id)


class IncidentAlertDispatcher:
    """Trigger one begin and one end alert per incident lifetime."""

    def __init__(self, sink: AlertSink | None = None) -> None:
        self._sink: AlertSink = sink if sink is not None else LoggingAlertSink()
        self._active: set[str] = set()
        self._unsubscribe: Callable[[], None] | None = None

    def attach(self, store: WorldStore) -> None:
        """Subscribe to incident changes on *store*."""
        self.detach()
        self._unsubscribe = store.subscribe(self.handle_change, EntityKind.INCIDENT)

    def detach(self) -> None:
        unsubscribe = self._unsubscribe
        self._unsubscribe = None
        if unsubscribe is not None:
            unsubscribe()

    def handle_change(self, change: StateChange) -> None:
        if change.entity_kind != EntityKind.INCIDENT:
            return
        if change.change == ChangeKind.REMOVED:
            self._end(change.entity_id)
            return
        if isinstance(change.entity, IncidentRoute):
            self._begin(change.entity)

    def _begin(self, incident: IncidentRoute) -> None:
        if incident.id in self._active:
            return
        self._active.add(incident.id)
        try:
            self._sink.begin_alert(incident)
        except Exception:
            _logger.warning("Alert sink failed to begin alert for %s", incident.id, exc_info=True)

    def _end(self, incident_id: str) -> None:
        if incident_id not in self._active:
            return
        self._active.discard(incident_id)
        try:
            self._sink.end_alert(incident_id)
        except Exception:
            _logger.warning("Alert sink failed to end alert for %s", incident_id, exc_info=True)

    def is_active(self, incident_id: str) -> bool:
        return incident_id in self._active

    def active_ids(self) -> frozenset[str]:
        return frozenset(self._active)

    def reset(self) -> None:
        """End every active alert."""
        for incident_id in sorted(self._active):
            self._end(incident_id)
