import asyncio
import sys
from pathlib import Path

import pytest

PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_ROOT = PROJECT_ROOT / "src"
if str(SRC_ROOT) not in sys.path:
    sys.path.insert(0, str(SRC_ROOT))

from navigation.tracking.geo_utils import distance_between, point_along
from navigation.tracking.models import Coord, RawStep, Route, TravelMode


def line_route(origin, destination, mode=TravelMode.DRIVING, points=11):
    """Straight-line Route with evenly spaced geometry and a few typical steps."""
    geometry = tuple(point_along(origin, destination, i / (points - 1)) for i in range(points))
    distance = distance_between(origin, destination)
    steps = (
        RawStep("Head <b>north</b>", "depart", None, distance * 0.6, 60.0, "Main Street"),
        RawStep("", "turn", "left", 4.0, 1.0, "Alley"),
        RawStep("", "turn", "slight right", distance * 0.4, 40.0, "Oak Avenue"),
        RawStep("", "arrive", None, 0.0, 0.0, None),
    )
    return Route(
        geometry=geometry,
        distance_m=distance,
        duration_s=distance / 10.0,
        steps=steps,
        mode=mode,
    )


class FakeRoutingClient:
    """
    RoutingClient double.

    Auto mode returns line_route() (or raises `error`); manual mode parks every
    call on a future the test resolves itself.
    """

    def __init__(self, error=None, manual=False, points=11):
        self.error = error
        self.manual = manual
        self.points = points
        self.calls = []
        self.futures = []

    async def fetch_route(self, waypoints, mode):
        self.calls.append((list(waypoints), mode))
        if self.manual:
            fut = asyncio.get_running_loop().create_future()
            self.futures.append(fut)
            return await fut
        if self.error is not None:
            raise self.error
        return line_route(waypoints[0], waypoints[-1], mode, self.points)


@pytest.fixture
def origin():
    return Coord(40.0, -74.0)


@pytest.fixture
def destination():
    return Coord(40.01, -74.0)


@pytest.fixture
def fake_client():
    return FakeRoutingClient()
