# main.py
# Entry point: simulates a GPS feed driving a TrackingSession.
# In production, replace the simulated source with a real geolocation feed.
#
# Usage:
#   nav-track --origin 40.0 -74.0 --destination 40.01 -74.0 --mode walking --map session.html

import argparse
import asyncio
import logging
import sys
from typing import List, Optional

from .formatting import format_distance, format_duration, format_eta
from .geo_utils import point_along
from .geolocation import SimulatedGeolocationSource
from .models import Coord, PositionFix, SessionSnapshot, TravelMode
from .nav_config import OSRM_BASE_URL, NavConfig
from .renderer import FoliumMapRenderer
from .routing_client import OSRMClient
from .session import TrackingSession


def simulated_fixes(origin: Coord, destination: Coord, count: int, interval_s: float) -> List[PositionFix]:
    """Evenly spaced fixes on the straight line from origin to destination."""
    fixes = []
    for i in range(count):
        c = point_along(origin, destination, i / max(1, count - 1))
        fixes.append(PositionFix(c.lat, c.lon, i * interval_s * 1000.0))
    return fixes


def print_snapshot(snapshot: SessionSnapshot) -> None:
    progress = snapshot.progress
    if progress is None:
        print(f"  [{snapshot.state.name}] fixes={snapshot.fix_count}")
        return
    print(
        f"  [{snapshot.state.name}] {progress.fraction_complete:6.1%} done, "
        f"{format_distance(progress.remaining_distance_m)} / "
        f"{format_duration(progress.remaining_time_s)} left, "
        f"ETA {format_eta(progress.eta)}, heading {progress.bearing_deg:.0f}°"
    )
    if snapshot.warning:
        print(f"  ⚠  {snapshot.warning}")


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Simulate a live navigation session.")
    parser.add_argument("--origin", nargs=2, type=float, metavar=("LAT", "LON"),
                        default=[40.0, -74.0])
    parser.add_argument("--destination", nargs=2, type=float, metavar=("LAT", "LON"),
                        default=[40.01, -74.0])
    parser.add_argument("--mode", choices=[m.value for m in TravelMode], default="driving")
    parser.add_argument("--fixes", type=int, default=8, help="number of simulated fixes")
    parser.add_argument("--interval", type=float, default=0.5,
                        help="seconds between simulated fixes")
    parser.add_argument("--base-url", default=OSRM_BASE_URL,
                        help="OSRM-compatible routing service")
    parser.add_argument("--map", dest="map_file", help="save an HTML map of the session")
    parser.add_argument("--log-dir", help="write the JSON session log to this directory")
    parser.add_argument("--log-level", default="INFO",
                        choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    return parser.parse_args(argv)


async def run(args: argparse.Namespace) -> None:
    config = NavConfig(
        routing_base_url=args.base_url,
        log_dir=args.log_dir,
        rotate_marker=True,
        show_turn_icons=True,
        distance_marker_interval_m=1000.0,
    )
    origin = Coord(*args.origin)
    destination = Coord(*args.destination)

    source = SimulatedGeolocationSource()
    renderer = FoliumMapRenderer()
    client = OSRMClient(config)
    session = TrackingSession(
        source, client, config,
        renderer=renderer,
        mode=TravelMode(args.mode),
    )

    try:
        session.start()
        fixes = simulated_fixes(origin, destination, args.fixes, args.interval)
        source.emit_fix(fixes[0].lat, fixes[0].lon, fixes[0].timestamp_ms)
        session.set_destination(destination)
        await session.wait_for_route()

        for instruction in session.instructions:
            print(f"  → {instruction.text} ({format_distance(instruction.distance_m)})")

        print("\n--- GPS Loop Active ---")
        for fix in fixes[1:]:
            await asyncio.sleep(args.interval)
            source.emit_fix(fix.lat, fix.lon, fix.timestamp_ms)
            await session.wait_for_route()
            print_snapshot(session.snapshot())

        if args.map_file:
            renderer.save(args.map_file)
        summary = session.stop()
        print("\n--- Session complete ---")
        print(f"    Travelled {format_distance(summary.distance_m)} "
              f"in {format_duration(summary.elapsed_s)} ({summary.fix_count} fixes)")
    finally:
        await session.aclose()
        await client.aclose()


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)

    # ------------------------------------------------------------------
    # Logging setup: configure once here, all modules inherit
    # ------------------------------------------------------------------
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )

    asyncio.run(run(args))
    return 0


if __name__ == "__main__":
    sys.exit(main())
