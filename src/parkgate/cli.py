"""Command-line front end for parkgate.

Subcommands:

* ``run``     connect to the broker and log occupancy changes
* ``status``  print the persisted occupancy snapshot
* ``reset``   clear the persisted occupancy
* ``replay``  push a distance sequence through an offline tracker
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import signal
import sys
from typing import Any

from parkgate.config import ParkGateConfig
from parkgate.exceptions import ParkGateError
from parkgate.models.lane import Lane, SensorReading
from parkgate.models.occupancy import OccupancyEvent, OccupancyRecord, OccupancySnapshot
from parkgate.service import ParkingGateService
from parkgate.storage import JsonFileStore, MemoryStore
from parkgate.tracker import OccupancyTracker

_LOG = logging.getLogger("parkgate")


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="parkgate",
        description="Parking gate occupancy tracker fed by MQTT distance sensors.",
    )
    parser.add_argument("--broker-url", help="MQTT broker URL (default: PARKGATE_BROKER_URL or public HiveMQ).")
    parser.add_argument("--state-path", help="Occupancy JSON file (default: PARKGATE_STATE_PATH).")
    parser.add_argument("--capacity", type=int, help="Lot capacity in vehicles.")
    parser.add_argument("--threshold", type=float, help="Gate proximity threshold in centimetres.")
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable debug logs.",
    )

    sub = parser.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="Track occupancy from the live feed.")
    run.add_argument(
        "--duration",
        type=float,
        default=0,
        help="Maximum runtime in seconds (0 = run until Ctrl+C).",
    )

    sub.add_parser("status", help="Print the persisted occupancy snapshot.")
    sub.add_parser("reset", help="Reset persisted occupancy to zero.")

    replay = sub.add_parser("replay", help="Replay distances through an in-memory tracker.")
    replay.add_argument("lane", choices=[lane.value for lane in Lane])
    replay.add_argument("distances", nargs="+", type=float, help="Distance readings in centimetres.")
    replay.add_argument("--count", type=int, default=0, help="Starting vehicle count.")

    return parser.parse_args(argv)


def _build_config(args: argparse.Namespace) -> ParkGateConfig:
    overrides: dict[str, Any] = {}
    if args.broker_url:
        overrides["broker_url"] = args.broker_url
    if args.state_path:
        overrides["state_path"] = args.state_path
    if args.capacity is not None:
        overrides["capacity"] = args.capacity
    if args.threshold is not None:
        overrides["threshold_cm"] = args.threshold
    return ParkGateConfig.from_env(**overrides)


def _print_snapshot(snapshot: OccupancySnapshot) -> None:
    print(json.dumps(snapshot.model_dump(mode="json"), indent=2, sort_keys=True))


def _log_event(event: OccupancyEvent) -> None:
    _LOG.info("%s count=%s last_entry_at=%s", event.kind, event.count, event.last_entry_at)


async def _run(config: ParkGateConfig, duration: float) -> int:
    async with ParkingGateService(config, on_event=_log_event) as service:
        loop = asyncio.get_running_loop()
        stop = asyncio.Event()
        for signum in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(signum, stop.set)
            except NotImplementedError:  # pragma: no cover - Windows
                pass

        snapshot = service.snapshot()
        _LOG.info(
            "Tracking %s/%s vehicles; topics %s, %s",
            snapshot.count,
            snapshot.capacity,
            config.entry_topic,
            config.exit_topic,
        )
        try:
            if duration > 0:
                await asyncio.wait_for(stop.wait(), timeout=duration)
            else:
                await stop.wait()
        except TimeoutError:
            _LOG.info("Reached --duration=%ss, stopping.", duration)
        await service.flush()
        _print_snapshot(service.snapshot())
    return 0


def _replay(config: ParkGateConfig, lane: Lane, distances: list[float], count: int) -> int:
    store = MemoryStore(OccupancyRecord(count=count))
    tracker = OccupancyTracker(config, store)
    for index, distance in enumerate(distances):
        gate = tracker.on_reading(SensorReading(lane=lane, distance_cm=distance))
        print(f"[{index}] {lane.value} distance={distance:g} open={gate.is_open} count={tracker.count}")
    _print_snapshot(tracker.snapshot())
    return 0


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        config = _build_config(args)
        if args.command == "run":
            return asyncio.run(_run(config, args.duration))
        if args.command == "status":
            _print_snapshot(OccupancyTracker(config, JsonFileStore(config.state_path)).snapshot())
            return 0
        if args.command == "reset":
            _print_snapshot(OccupancyTracker(config, JsonFileStore(config.state_path)).reset())
            return 0
        return _replay(config, Lane(args.lane), args.distances, args.count)
    except ParkGateError as exc:
        print(f"parkgate: {exc}", file=sys.stderr)
        return 2
