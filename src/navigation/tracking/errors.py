# errors.py
# Exception taxonomy for the tracking engine.
# Input errors are rejected at the boundary; service errors become fallbacks.

from enum import Enum
from typing import Optional


class NavigationError(Exception):
    """Base class for every error raised by the tracking engine."""
    pass


# ---------------------------------------------------------------------------
# Input validation
# ---------------------------------------------------------------------------

class InvalidCoordinateError(NavigationError, ValueError):
    """A coordinate is non-finite or out of range."""
    pass


class InvalidFixError(InvalidCoordinateError):
    """A position fix was rejected; the movement history is unchanged."""
    pass


class InvalidWaypointError(InvalidCoordinateError):
    """A route waypoint was rejected before contacting the routing service."""
    pass


# ---------------------------------------------------------------------------
# Geolocation
# ---------------------------------------------------------------------------

class GeolocationErrorCode(Enum):
    PERMISSION_DENIED    = "permission_denied"
    POSITION_UNAVAILABLE = "position_unavailable"
    TIMEOUT              = "timeout"


class GeolocationError(NavigationError):
    """The geolocation source failed. Tracking halts, no automatic retry."""

    def __init__(self, code: GeolocationErrorCode, message: str = "") -> None:
        self.code = code
        self.message = message or code.value.replace("_", " ")
        super().__init__(f"{self.code.value}: {self.message}")


# ---------------------------------------------------------------------------
# Routing service
# ---------------------------------------------------------------------------

class RouteServiceError(NavigationError):
    """
    The routing service could not deliver a usable route.

    Args:
        code:        Service code ("NoRoute", "InvalidResponse", "NetworkError", ...).
        message:     Human-readable detail.
        status_code: HTTP status, when the failure came with one.
    """

    def __init__(self, code: str, message: str = "", status_code: Optional[int] = None) -> None:
        self.code = code
        self.message = message
        self.status_code = status_code
        super().__init__(f"{code}: {message}" if message else code)


class StaleResponseError(NavigationError):
    """A route response arrived after a newer request superseded it."""

    def __init__(self, sequence: int, latest: int) -> None:
        self.sequence = sequence
        self.latest = latest
        super().__init__(f"Route response #{sequence} superseded by #{latest}")
