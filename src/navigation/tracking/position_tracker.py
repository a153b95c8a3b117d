# position_tracker.py
# Ingests raw position fixes and derives speed and heading.
# Call ingest() on every fix; the movement history only ever grows.

import logging
from dataclasses import dataclass
from typing import List, Optional, Tuple

from .errors import InvalidFixError
from .geo_utils import (
    calculate_bearing,
    haversine_distance,
    is_finite_number,
    validate_coordinate,
)
from .models import PositionFix

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TrackerUpdate:
    """Returned by PositionTracker.ingest() for every accepted fix."""
    history: Tuple[PositionFix, ...]
    speed_kmh: float
    bearing_deg: float


class PositionTracker:
    """
    Append-only movement history with instantaneous speed and bearing.

    Usage:
        tracker = PositionTracker()

        # Inside the geolocation callback:
        update = tracker.ingest(PositionFix(lat, lon, timestamp_ms))
    """

    def __init__(self) -> None:
        self._history: List[PositionFix] = []
        self._speed_kmh: float = 0.0
        self._bearing_deg: float = 0.0

    # ------------------------------------------------------------------
    # Core method: call on every fix
    # ------------------------------------------------------------------

    def ingest(self, fix: PositionFix) -> TrackerUpdate:
        """
        Validate a fix, update speed / bearing and append it to the history.

        Args:
            fix: Raw position fix.

        Returns:
            TrackerUpdate with the history snapshot, speed and bearing.

        Raises:
            InvalidFixError: Coordinates or timestamp are non-finite or out of range.
                The history is left untouched.
        """
        validate_coordinate(fix.lat, fix.lon, InvalidFixError)
        if not is_finite_number(fix.timestamp_ms):
            raise InvalidFixError(f"Fix timestamp must be finite, got {fix.timestamp_ms!r}")

        prev = self.last_fix
        if prev is not None:
            dist = haversine_distance(prev.lat, prev.lon, fix.lat, fix.lon)
            elapsed_s = (fix.timestamp_ms - prev.timestamp_ms) / 1000.0
            if elapsed_s > 0:
                self._speed_kmh = dist / elapsed_s * 3.6
            else:
                logger.debug(f"Non-positive fix interval ({elapsed_s:.3f} s), keeping speed.")
            self._bearing_deg = calculate_bearing(prev.lat, prev.lon, fix.lat, fix.lon)

        self._history.append(fix)
        return TrackerUpdate(
            history=self.history,
            speed_kmh=self._speed_kmh,
            bearing_deg=self._bearing_deg,
        )

    def reset(self) -> None:
        """Clear the history. Only used when a session restarts."""
        self._history = []
        self._speed_kmh = 0.0
        self._bearing_deg = 0.0

    def total_distance(self) -> float:
        """Distance travelled over the whole history, in metres."""
        return sum(
            haversine_distance(a.lat, a.lon, b.lat, b.lon)
            for a, b in zip(self._history, self._history[1:])
        )

    # ------------------------------------------------------------------
    # Read-only properties
    # ------------------------------------------------------------------

    @property
    def history(self) -> Tuple[PositionFix, ...]:
        return tuple(self._history)

    @property
    def last_fix(self) -> Optional[PositionFix]:
        return self._history[-1] if self._history else None

    @property
    def fix_count(self) -> int:
        return len(self._history)

    @property
    def speed_kmh(self) -> float:
        return self._speed_kmh

    @property
    def bearing_deg(self) -> float:
        return self._bearing_deg
