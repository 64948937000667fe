#!/usr/bin/env python3
"""Passive stream probe for flowsync.

Connects to a simulation update stream (WebSocket or MQTT), runs the full
synchronization pipeline, and prints every state change, connection status
transition and incident alert. Use this to check a server's wire format
against the configured field names before wiring a renderer to it.

Configuration comes from ``FLOWSYNC_*`` environment variables; command-line
flags override them.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
import time
from dataclasses import dataclass
from pathlib import Path

# Allow running from repo root without installing the package.
_repo = Path(__file__).resolve().parent.parent
_src = _repo / "src"
if _src.is_dir():
    sys.path.insert(0, str(_src))

from flowsync import (  # noqa: E402
    ConnectionState,
    ConnectionStatus,
    FlowSyncClient,
    FlowSyncConfigError,
    IncidentRoute,
    ReconnectPolicy,
    StateChange,
    SyncConfig,
)

_LOG = logging.getLogger("stream_probe")


@dataclass
class ProbeStats:
    started_at: float
    alerts_started: int = 0
    alerts_ended: int = 0


class _PrintingAlertSink:
    def __init__(self, stats: ProbeStats) -> None:
        self._stats = stats

    def begin_alert(self, incident: IncidentRoute) -> None:
        self._stats.alerts_started += 1
        print(f"[probe] ALERT begin incident={incident.id} waypoints={len(incident.waypoints)}")

    def end_alert(self, incident_id: str) -> None:
        self._stats.alerts_ended += 1
        print(f"[probe] ALERT end   incident={incident_id}")


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Passive probe for a flowsync update stream.",
    )
    parser.add_argument("--url", help="Stream URL (overrides FLOWSYNC_URL).")
    parser.add_argument(
        "--transport",
        choices=("websocket", "mqtt"),
        help="Transport (overrides FLOWSYNC_TRANSPORT).",
    )
    parser.add_argument("--topic", help="MQTT topic (overrides FLOWSYNC_MQTT_TOPIC).")
    parser.add_argument(
        "--duration",
        type=int,
        default=0,
        help="Maximum runtime in seconds (0 = run until Ctrl+C).",
    )
    parser.add_argument(
        "--max-retries",
        type=int,
        help="Reconnection attempts before giving up.",
    )
    parser.add_argument(
        "--quiet",
        action="store_true",
        help="Only print status transitions, alerts and the summary.",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable debug logs.",
    )
    return parser.parse_args()


def _build_config(args: argparse.Namespace) -> SyncConfig:
    overrides: dict[str, object] = {}
    if args.url:
        overrides["url"] = args.url
    if args.transport:
        overrides["transport"] = args.transport
    if args.topic:
        overrides["mqtt_topic"] = args.topic
    if args.max_retries is not None:
        overrides["reconnect"] = ReconnectPolicy(max_retries=args.max_retries)
    return SyncConfig.from_env(**overrides)


def _print_change(change: StateChange) -> None:
    entity = change.entity.model_dump(exclude={"updated_at"})
    print(f"[probe] {change.change.value:<7} {change.entity_kind.value}/{change.entity_id} {entity}")


def _print_status(state: ConnectionState) -> None:
    suffix = f" attempt={state.attempt}" if state.attempt else ""
    error = f" error={state.error}" if state.error else ""
    print(f"[probe] status={state.status.value}{suffix}{error}")


def _print_summary(client: FlowSyncClient, stats: ProbeStats) -> None:
    runtime = time.time() - stats.started_at
    snapshot = client.snapshot()
    decode = client.normalizer.stats
    store = client.store.stats
    print("[probe] Summary")
    print(f"[probe]   runtime_s      : {runtime:.1f}")
    print(f"[probe]   decoded        : {decode.decoded}")
    print(f"[probe]   unknown_type   : {decode.unknown_type}")
    print(f"[probe]   malformed      : {decode.malformed}")
    print(f"[probe]   stale          : {store.stale}")
    print(f"[probe]   resyncs        : {store.resyncs}")
    print(f"[probe]   units          : {len(snapshot.units)}")
    print(f"[probe]   signals        : {len(snapshot.signals)}")
    print(f"[probe]   incidents      : {len(snapshot.incidents)}")
    print(f"[probe]   alerts         : {stats.alerts_started} started / {stats.alerts_ended} ended")


async def _run(config: SyncConfig, args: argparse.Namespace) -> int:
    stats = ProbeStats(started_at=time.time())
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:  # pragma: no cover - Windows
            pass

    async with FlowSyncClient(config, alert_sink=_PrintingAlertSink(stats)) as client:
        client.add_status_listener(_print_status)
        if not args.quiet:
            client.subscribe(_print_change)

        waiters = [asyncio.create_task(stop.wait()), asyncio.create_task(client.wait_stopped())]
        timeout = args.duration if args.duration > 0 else None
        _done, pending = await asyncio.wait(waiters, timeout=timeout, return_when=asyncio.FIRST_COMPLETED)
        for task in pending:
            task.cancel()
        _print_summary(client, stats)
        return 1 if client.connection_status() == ConnectionStatus.DISCONNECTED else 0


def _main() -> int:
    args = _parse_args()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )

    try:
        config = _build_config(args)
    except FlowSyncConfigError as exc:
        print(f"[probe] Invalid configuration: {exc}", file=sys.stderr)
        return 2

    _LOG.debug("Probing %s via %s", config.url, config.transport)
    return asyncio.run(_run(config, args))


if __name__ == "__main__":
    raise SystemExit(_main())
