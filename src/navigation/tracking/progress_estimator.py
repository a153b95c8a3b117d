# progress_estimator.py
# Matches the live position to the route geometry and derives
# completion fraction, remaining distance / time and ETA.

from datetime import datetime, timedelta
from typing import Optional

from .geo_utils import nearest_point_index
from .models import Coord, Eta, ProgressState, Route
from .nav_config import NavConfig


class ProgressEstimator:
    """
    Stateless apart from the optional monotonic clamp.

    Usage:
        estimator = ProgressEstimator(config)
        state = estimator.update(position, route, speed_kmh, bearing_deg)
    """

    def __init__(self, config: Optional[NavConfig] = None) -> None:
        self.config = config or NavConfig()
        self._best_route: Optional[Route] = None
        self._best_index: int = 0

    def reset(self) -> None:
        """Forget the best-so-far match (new route or cleared destination)."""
        self._best_route = None
        self._best_index = 0

    def match(self, position: Coord, route: Route) -> Optional[int]:
        """Geometry index closest to position; None for an empty geometry."""
        index, _ = nearest_point_index(route.geometry, position)
        if index is None or not self.config.monotonic_progress:
            return index

        if self._best_route is not route:
            self._best_route = route
            self._best_index = 0
        self._best_index = max(self._best_index, index)
        return self._best_index

    def update(
        self,
        position: Coord,
        route: Route,
        speed_kmh: float = 0.0,
        bearing_deg: float = 0.0,
        now: Optional[datetime] = None,
    ) -> ProgressState:
        """
        Recompute progress for the current position.

        Args:
            position:    Latest live coordinate.
            route:       Active (or fallback) route.
            speed_kmh:   Current speed from the PositionTracker.
            bearing_deg: Current heading from the PositionTracker.
            now:         Reference time for the arrival clock (defaults to now).

        Returns:
            ProgressState.
        """
        index = self.match(position, route)
        points = len(route.geometry)
        if index is None or points <= 1:
            fraction = 0.0
        else:
            fraction = min(1.0, max(0.0, index / (points - 1)))

        remaining_m = route.distance_m * (1.0 - fraction)
        remaining_s = route.duration_s * (1.0 - fraction)

        if speed_kmh > 0:
            eta_s = remaining_m / 1000.0 / speed_kmh * 3600.0
            is_estimate = False
        else:
            eta_s = remaining_s
            is_estimate = True

        now = now or datetime.now()
        return ProgressState(
            fraction_complete=fraction,
            remaining_distance_m=remaining_m,
            remaining_time_s=remaining_s,
            eta=Eta(
                seconds=eta_s,
                is_estimate=is_estimate,
                arrival_at=now + timedelta(seconds=eta_s),
            ),
            current_speed_kmh=speed_kmh,
            bearing_deg=bearing_deg,
            matched_index=index,
        )
