# models.py
# Shared data structures and enums used across all modules.

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional, Tuple

from .errors import GeolocationError, RouteServiceError


# ---------------------------------------------------------------------------
# Coordinates and fixes
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Coord:
    """Immutable geographic coordinate."""
    lat: float
    lon: float

    def to_dict(self) -> dict:
        return {"lat": self.lat, "lon": self.lon}


@dataclass(frozen=True)
class PositionFix:
    """A single reported position. Immutable once recorded."""
    lat: float
    lon: float
    timestamp_ms: float

    @property
    def coord(self) -> Coord:
        return Coord(self.lat, self.lon)


class TravelMode(Enum):
    """Travel profile. Values are the routing-service profile names."""
    DRIVING = "driving"
    WALKING = "walking"
    CYCLING = "cycling"


# ---------------------------------------------------------------------------
# Routes and instructions
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class RawStep:
    """A maneuver step exactly as the routing service described it."""
    instruction: str
    maneuver_type: str           # "depart" | "turn" | "arrive" | ...
    modifier: Optional[str]      # "left" | "slight right" | ... (None when absent)
    distance_m: float
    duration_s: float
    road_name: Optional[str] = None


@dataclass(frozen=True)
class Route:
    """A complete route. Replaced wholesale, never mutated."""
    geometry: Tuple[Coord, ...]
    distance_m: float
    duration_s: float
    steps: Tuple[RawStep, ...] = ()
    mode: TravelMode = TravelMode.DRIVING
    is_fallback: bool = False

    @property
    def origin(self) -> Optional[Coord]:
        return self.geometry[0] if self.geometry else None

    @property
    def destination(self) -> Optional[Coord]:
        return self.geometry[-1] if self.geometry else None

    def to_dict(self) -> dict:
        return {
            "mode": self.mode.value,
            "distance_m": self.distance_m,
            "duration_s": self.duration_s,
            "is_fallback": self.is_fallback,
            "geometry": [c.to_dict() for c in self.geometry],
            "step_count": len(self.steps),
        }


@dataclass(frozen=True)
class Instruction:
    """A single cleaned-up turn-by-turn instruction."""
    text: str
    distance_m: float
    duration_s: float
    maneuver_type: str
    modifier: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "text": self.text,
            "distance_m": self.distance_m,
            "duration_s": self.duration_s,
            "maneuver_type": self.maneuver_type,
            "modifier": self.modifier,
        }


class RouteOutcomeStatus(Enum):
    APPLIED  = "applied"     # new route is now active
    FALLBACK = "fallback"    # service failed, straight-line path offered
    STALE    = "stale"       # superseded by a newer request, nothing applied


@dataclass(frozen=True)
class RouteOutcome:
    """Returned by RouteManager.request_route() for every request."""
    status: RouteOutcomeStatus
    sequence: int
    route: Optional[Route] = None
    error: Optional[RouteServiceError] = None
    fallback_route: Optional[Route] = None


# ---------------------------------------------------------------------------
# Progress
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Eta:
    """Time left until arrival, either live (from speed) or estimated (from the route)."""
    seconds: float
    is_estimate: bool
    arrival_at: datetime

    @property
    def hours(self) -> int:
        return divmod(int(round(self.seconds / 60)), 60)[0]

    @property
    def minutes(self) -> int:
        return divmod(int(round(self.seconds / 60)), 60)[1]


@dataclass(frozen=True)
class ProgressState:
    """Returned by ProgressEstimator.update() on every fix and timer tick."""
    fraction_complete: float
    remaining_distance_m: float
    remaining_time_s: float
    eta: Eta
    current_speed_kmh: float
    bearing_deg: float
    matched_index: Optional[int] = None

    def to_dict(self) -> dict:
        return {
            "fraction_complete": self.fraction_complete,
            "remaining_distance_m": self.remaining_distance_m,
            "remaining_time_s": self.remaining_time_s,
            "eta_s": self.eta.seconds,
            "eta_is_estimate": self.eta.is_estimate,
            "arrival_at": self.eta.arrival_at.isoformat(),
            "current_speed_kmh": self.current_speed_kmh,
            "bearing_deg": self.bearing_deg,
            "matched_index": self.matched_index,
        }


# ---------------------------------------------------------------------------
# Session
# ---------------------------------------------------------------------------

class SessionState(Enum):
    IDLE                    = "idle"
    TRACKING_NO_DESTINATION = "tracking_no_destination"
    TRACKING_WITH_ROUTE     = "tracking_with_route"


@dataclass(frozen=True)
class TravelSummary:
    """Reported when a session stops."""
    distance_m: float
    fix_count: int
    elapsed_s: float


@dataclass(frozen=True)
class SessionSnapshot:
    """Read-only view of a TrackingSession for the presentation layer."""
    state: SessionState
    mode: TravelMode
    position: Optional[Coord] = None
    bearing_deg: float = 0.0
    speed_kmh: float = 0.0
    destination: Optional[Coord] = None
    route: Optional[Route] = None
    fallback_route: Optional[Route] = None
    route_pending: bool = False
    instructions: Tuple[Instruction, ...] = ()
    progress: Optional[ProgressState] = None
    fix_count: int = 0
    warning: Optional[str] = None
    error: Optional[GeolocationError] = None
    icons: Tuple[str, ...] = ()

    def to_dict(self) -> dict:
        return {
            "state": self.state.value,
            "mode": self.mode.value,
            "position": self.position.to_dict() if self.position else None,
            "bearing_deg": self.bearing_deg,
            "speed_kmh": self.speed_kmh,
            "destination": self.destination.to_dict() if self.destination else None,
            "route_distance_m": self.route.distance_m if self.route else None,
            "route_is_fallback": self.route.is_fallback if self.route else None,
            "fallback_distance_m": self.fallback_route.distance_m if self.fallback_route else None,
            "route_pending": self.route_pending,
            "instructions": [i.to_dict() for i in self.instructions],
            "progress": self.progress.to_dict() if self.progress else None,
            "fix_count": self.fix_count,
            "warning": self.warning,
            "error": str(self.error) if self.error else None,
        }
