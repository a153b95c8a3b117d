# routing_client.py
# The OSRM adapter / client.
# Sole responsibility: talk to the routing service over HTTP and return a Route.
# Encapsulates every service-specific detail:
#   coordinate formatting (lon,lat), URL construction, retries,
#   and parsing the JSON response into internal models.
# It contains no re-route policy and no request sequencing.

import asyncio
import logging
from typing import Any, Dict, List, Optional, Protocol, Sequence

import httpx

from .errors import RouteServiceError
from .models import Coord, RawStep, Route, TravelMode
from .nav_config import NavConfig

logger = logging.getLogger(__name__)


class RoutingClient(Protocol):
    """Anything that can turn waypoints into a Route (or raise RouteServiceError)."""

    async def fetch_route(self, waypoints: Sequence[Coord], mode: TravelMode) -> Route:
        ...


# ---------------------------------------------------------------------------
# Response parsing
# ---------------------------------------------------------------------------

def format_coordinates(coords: Sequence[Coord]) -> str:
    """Convert (lat, lon) coordinates to OSRM's 'lon,lat;lon,lat;...'."""
    return ";".join(f"{c.lon},{c.lat}" for c in coords)


def _parse_step(step: Dict[str, Any]) -> RawStep:
    maneuver = step.get("maneuver") or {}
    return RawStep(
        instruction=maneuver.get("instruction") or "",
        maneuver_type=maneuver.get("type") or "",
        modifier=maneuver.get("modifier"),
        distance_m=float(step.get("distance", 0.0)),
        duration_s=float(step.get("duration", 0.0)),
        road_name=step.get("name") or None,
    )


def parse_route_response(data: Dict[str, Any], mode: TravelMode) -> Route:
    """
    Normalize an OSRM /route response into a Route.

    Geometry arrives as GeoJSON (lon, lat) pairs and is swapped to (lat, lon).
    Steps from every leg are concatenated in order.

    Raises:
        RouteServiceError: Non-"Ok" code, zero routes, or malformed body.
    """
    if not isinstance(data, dict):
        raise RouteServiceError("InvalidResponse", "Response body is not a JSON object")

    code = data.get("code", "Ok")
    if code != "Ok":
        raise RouteServiceError(code, data.get("message", "Unknown error"))

    routes = data.get("routes") or []
    if not isinstance(routes, list):
        raise RouteServiceError("InvalidResponse", "'routes' is not a list")
    if not routes:
        raise RouteServiceError("NoRoute", "Routing service returned zero routes")

    try:
        route = routes[0]  # take the first route (the service may return alternatives)
        geometry = tuple(
            Coord(float(lat), float(lon)) for lon, lat in route["geometry"]["coordinates"]
        )
        steps = tuple(
            _parse_step(step)
            for leg in route.get("legs", [])
            for step in leg.get("steps", [])
        )
        return Route(
            geometry=geometry,
            distance_m=float(route["distance"]),
            duration_s=float(route["duration"]),
            steps=steps,
            mode=mode,
        )
    except (AttributeError, KeyError, TypeError, ValueError) as e:
        raise RouteServiceError("InvalidResponse", f"Malformed route: {e!r}") from e


def _error_from_response(response: httpx.Response) -> RouteServiceError:
    """Build a RouteServiceError from an HTTP error, using the body's code/message when present."""
    code, message = f"HTTP{response.status_code}", response.reason_phrase
    try:
        body = response.json()
        if isinstance(body, dict):
            code = body.get("code", code)
            message = body.get("message", message)
    except ValueError:
        pass
    return RouteServiceError(code, message, status_code=response.status_code)


def _is_retryable(status_code: Optional[int]) -> bool:
    return status_code is not None and (status_code == 429 or status_code >= 500)


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------

class OSRMClient:
    """
    Async OSRM adapter.

    Sole responsibility:
    - Talk to OSRM via HTTP
    - Convert internal (lat, lon) → OSRM (lon,lat)
    - Return a normalized Route

    Args:
        config:    NavConfig (base URL, timeout, retry policy).
        transport: Optional httpx transport (tests pass httpx.MockTransport).
    """

    def __init__(
        self,
        config: Optional[NavConfig] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.config = config or NavConfig()
        if not self.config.routing_base_url:
            raise ValueError("Routing base URL not set.")
        self._http = httpx.AsyncClient(
            base_url=self.config.routing_base_url,
            timeout=self.config.request_timeout_s,
            transport=transport,
        )

    def route_path(self, waypoints: Sequence[Coord], mode: TravelMode) -> str:
        return f"/route/v1/{mode.value}/{format_coordinates(waypoints)}"

    async def fetch_route(self, waypoints: Sequence[Coord], mode: TravelMode) -> Route:
        """
        Call the /route endpoint and return the first route.

        Retries up to config.route_max_retries times with exponential backoff
        on 429 (rate limit) and 5xx responses.

        Raises:
            RouteServiceError: On network errors, HTTP errors after retries,
                or an unusable response body.
        """
        if len(waypoints) < 2:
            raise ValueError("At least two waypoints are required to compute a route.")

        path = self.route_path(waypoints, mode)
        params = {
            "overview": "full",
            "geometries": "geojson",
            "steps": "true",
        }

        attempt = 0
        while True:
            try:
                response = await self._http.get(path, params=params)
            except httpx.HTTPError as e:
                logger.warning(f"Routing request failed: {e!r}")
                raise RouteServiceError("NetworkError", str(e) or type(e).__name__) from e

            if response.is_success:
                break

            error = _error_from_response(response)
            if _is_retryable(response.status_code) and attempt < self.config.route_max_retries:
                delay = self.config.route_retry_base_delay_s * (2 ** attempt)
                logger.warning(
                    f"Routing service returned {response.status_code}, retrying in {delay:.1f}s "
                    f"(attempt {attempt + 1} of {self.config.route_max_retries + 1})"
                )
                await asyncio.sleep(delay)
                attempt += 1
                continue
            raise error

        try:
            data = response.json()
        except ValueError as e:
            raise RouteServiceError("InvalidResponse", "Response body is not JSON") from e

        route = parse_route_response(data, mode)
        logger.debug(
            f"Route fetched: {route.distance_m:.0f} m, {route.duration_s:.0f} s, "
            f"{len(route.geometry)} points, {len(route.steps)} steps"
        )
        return route

    async def aclose(self) -> None:
        await self._http.aclose()
