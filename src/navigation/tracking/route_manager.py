# route_manager.py
# Acquires and caches the active route.
# Every request gets a sequence number; only the latest one may apply its result.

import logging
from typing import Optional, Sequence

from .errors import InvalidWaypointError, RouteServiceError, StaleResponseError
from .geo_utils import distance_between, validate_coordinate
from .models import Coord, Route, RouteOutcome, RouteOutcomeStatus, TravelMode
from .nav_config import NavConfig
from .routing_client import RoutingClient

logger = logging.getLogger(__name__)


def straight_line_route(origin: Coord, destination: Coord, mode: TravelMode,
                        config: Optional[NavConfig] = None) -> Route:
    """Fallback route: the direct line between two points at the mode's nominal speed."""
    config = config or NavConfig()
    distance = distance_between(origin, destination)
    speed_ms = config.nominal_speed_kmh(mode.value) * 1000 / 3600
    return Route(
        geometry=(origin, destination),
        distance_m=distance,
        duration_s=distance / speed_ms if speed_ms > 0 else 0.0,
        mode=mode,
        is_fallback=True,
    )


class RouteManager:
    """
    Owns the active Route for one session.

    Usage:
        manager = RouteManager(OSRMClient(config), config)
        outcome = await manager.request_route([here, there], TravelMode.WALKING)
        if outcome.status is RouteOutcomeStatus.FALLBACK:
            draw(outcome.fallback_route)

    Args:
        client: RoutingClient used for the HTTP request.
        config: NavConfig instance.
    """

    def __init__(self, client: RoutingClient, config: Optional[NavConfig] = None) -> None:
        self.client = client
        self.config = config or NavConfig()
        self._active: Optional[Route] = None
        self._sequence: int = 0
        self._pending: int = 0

    # ------------------------------------------------------------------
    # Requests
    # ------------------------------------------------------------------

    async def request_route(self, waypoints: Sequence[Coord], mode: TravelMode) -> RouteOutcome:
        """
        Fetch a route through the given waypoints.

        Args:
            waypoints: Two or more coordinates; first is the live position,
                       last is the destination.
            mode:      Travel profile.

        Returns:
            RouteOutcome: APPLIED, FALLBACK (previous route kept, straight
            line offered) or STALE (superseded, nothing changed).

        Raises:
            InvalidWaypointError: Fewer than two waypoints, or any waypoint
                non-finite / out of range. Nothing is sent.
        """
        waypoints = list(waypoints)
        if len(waypoints) < 2:
            raise InvalidWaypointError(f"At least two waypoints required, got {len(waypoints)}")
        for wp in waypoints:
            if not isinstance(wp, Coord):
                raise InvalidWaypointError(f"Waypoint must be a Coord, got {wp!r}")
            validate_coordinate(wp.lat, wp.lon, InvalidWaypointError)

        self._sequence += 1
        sequence = self._sequence
        self._pending += 1
        logger.info(f"Route request #{sequence}: {len(waypoints)} waypoints, {mode.value}")

        try:
            route = await self.client.fetch_route(waypoints, mode)
            error = None
        except RouteServiceError as e:
            route, error = None, e
        finally:
            self._pending -= 1

        try:
            self._check_current(sequence)
        except StaleResponseError as e:
            logger.debug(f"Discarding response: {e}")
            return RouteOutcome(status=RouteOutcomeStatus.STALE, sequence=sequence)

        if error is not None:
            logger.warning(
                f"Route request #{sequence} failed ({error}); "
                f"{'keeping previous route' if self._active else 'no previous route'}, "
                f"offering straight line"
            )
            return RouteOutcome(
                status=RouteOutcomeStatus.FALLBACK,
                sequence=sequence,
                route=self._active,
                error=error,
                fallback_route=straight_line_route(waypoints[0], waypoints[-1], mode, self.config),
            )

        self._active = route
        logger.info(
            f"Route #{sequence} active: {route.distance_m:.0f} m, {route.duration_s:.0f} s"
        )
        return RouteOutcome(status=RouteOutcomeStatus.APPLIED, sequence=sequence, route=route)

    def _check_current(self, sequence: int) -> None:
        if sequence != self._sequence:
            raise StaleResponseError(sequence, self._sequence)

    def invalidate(self) -> None:
        """Make every in-flight request stale without touching the active route."""
        self._sequence += 1

    def clear(self) -> None:
        """Drop the active route and ignore anything still in flight."""
        self.invalidate()
        self._active = None

    # ------------------------------------------------------------------
    # Read-only properties
    # ------------------------------------------------------------------

    @property
    def active_route(self) -> Optional[Route]:
        return self._active

    @property
    def latest_sequence(self) -> int:
        return self._sequence

    @property
    def has_pending(self) -> bool:
        return self._pending > 0
