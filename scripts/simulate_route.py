#!/usr/bin/env python3
"""Replay a bus route through a full tracking session.

This script wires the whole pipeline in one process:

1) a replay provider walking the configured stops,
2) a tracking session publishing into an in-memory store,
3) a route subscriber and a fleet subscriber printing what they receive.

Use it to eyeball derived speeds and subscription behaviour without a GPS
device or a broker.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
import time
from pathlib import Path

# Allow running from repo root without installing the package.
_repo = Path(__file__).resolve().parent.parent
_src = _repo / "src"
if _src.is_dir():
    sys.path.insert(0, str(_src))

from pylivetrack import (  # noqa: E402
    Identity,
    InMemoryLiveStore,
    LiveLocationRecord,
    LiveTrackError,
    Publisher,
    Sampler,
    SubscriptionEngine,
    TrackerConfig,
    TrackingSession,
    TrackingSessionMachine,
)
from pylivetrack.providers import ReplayLocationProvider  # noqa: E402

_LOG = logging.getLogger("simulate_route")

# Stops served by the demo route, in driving order.
_STOPS: list[tuple[str, float, float]] = [
    ("Gandhipuram Bus Stop", 11.0168, 76.9558),
    ("RS Puram Junction", 11.0045, 76.9612),
    ("Peelamedu", 10.9965, 76.9749),
    ("VSB College", 10.9932, 76.9806),
]


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Replay a route through a live tracking session.")
    parser.add_argument("--route", default="route1", help="Route id to publish.")
    parser.add_argument("--vehicle", default="BUS-12", help="Vehicle id.")
    parser.add_argument("--driver", default="driver-1", help="Driver id.")
    parser.add_argument(
        "--interval",
        type=float,
        default=1.0,
        help="Seconds between replayed fixes.",
    )
    parser.add_argument(
        "--laps",
        type=int,
        default=1,
        help="How many times to drive the stop list.",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable debug logs.",
    )
    return parser.parse_args()


def _print_route(record: LiveLocationRecord | None) -> None:
    if record is None:
        print("[route] no active vehicle")
        return
    sample = record.latest
    print(
        f"[route] {record.vehicle_id} @ {sample.latitude:.4f},{sample.longitude:.4f}"
        f" speed={sample.speed_kmh:.1f} km/h heading={sample.heading_deg:.0f}"
    )


def _print_fleet(records: list[LiveLocationRecord]) -> None:
    routes = ", ".join(record.route_id for record in records) or "-"
    print(f"[fleet] active routes: {routes}")


def _print_state(session: TrackingSession) -> None:
    print(f"[driver] state={session.state}")


async def _run(args: argparse.Namespace) -> int:
    steps = [{"lat": lat, "lng": lng, "accuracy": 5.0} for _name, lat, lng in _STOPS] * max(1, args.laps)
    provider = ReplayLocationProvider(steps, interval_s=args.interval)
    store = InMemoryLiveStore()
    engine = SubscriptionEngine(store)
    config = TrackerConfig.from_env()
    identity = Identity(driver_id=args.driver, vehicle_id=args.vehicle, route_id=args.route)

    route_handle = engine.subscribe_route(args.route, _print_route)
    fleet_handle = engine.subscribe_fleet(_print_fleet)

    async with TrackingSessionMachine(Sampler(provider), Publisher(store), identity, config) as machine:
        machine.add_state_listener(_print_state)
        machine.add_error_listener(lambda exc: print(f"[driver] error: {exc}", file=sys.stderr))
        try:
            await machine.start()
        except LiveTrackError as exc:
            print(f"[driver] start failed: {exc}", file=sys.stderr)
            return 2

        started = time.monotonic()
        while provider.active_watches:
            await asyncio.sleep(args.interval / 2)
        _LOG.debug("Replay finished after %.1fs", time.monotonic() - started)

        await machine.stop()
        await engine.drain()

    engine.unsubscribe(route_handle)
    engine.unsubscribe(fleet_handle)
    await engine.close()
    return 0


def _main() -> int:
    args = _parse_args()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )
    return asyncio.run(_run(args))


if __name__ == "__main__":
    raise SystemExit(_main())
