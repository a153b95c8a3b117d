# nav_config.py
# All tuneable constants in one place.
# Pass a NavConfig instance to every module that needs settings.

import os
from dataclasses import dataclass, field
from typing import Dict, Optional


# ---------------------------------------------------------------------------
# Defaults
# ---------------------------------------------------------------------------

OSRM_BASE_URL: str = "https://router.project-osrm.org"

REROUTE_THRESHOLD_M: float = 50.0       # displacement from last routed origin
MIN_STEP_DISTANCE_M: float = 10.0       # shorter steps are service artifacts
PROGRESS_INTERVAL_S: float = 5.0        # progress timer period
DEBOUNCE_WINDOW_S: float = 0.2          # destination drag debounce

WALKING_SPEED_KMH: float = 5.0  # km/h

# Nominal speeds used only for straight-line fallback durations
NOMINAL_SPEEDS_KMH: Dict[str, float] = {
    "driving": 50.0,
    "walking": WALKING_SPEED_KMH,
    "cycling": 15.0,
}


# ---------------------------------------------------------------------------
# Main config
# ---------------------------------------------------------------------------

@dataclass
class NavConfig:
    # Routing service
    routing_base_url: str = OSRM_BASE_URL
    request_timeout_s: float = 10.0
    route_max_retries: int = 2             # retries on 429 / 5xx only
    route_retry_base_delay_s: float = 0.5  # doubled on each retry

    # Re-route policy
    reroute_threshold_m: float = REROUTE_THRESHOLD_M

    # Instructions
    min_step_distance_m: float = MIN_STEP_DISTANCE_M

    # Progress tracking
    progress_interval_s: float = PROGRESS_INTERVAL_S
    monotonic_progress: bool = False       # never let the matched index move backwards
    nominal_speeds_kmh: Dict[str, float] = field(
        default_factory=lambda: dict(NOMINAL_SPEEDS_KMH)
    )

    # Geolocation
    high_accuracy: bool = True
    geolocation_timeout_ms: int = 10_000

    # User interaction
    debounce_window_s: float = DEBOUNCE_WINDOW_S

    # Optional presentation features
    rotate_marker: bool = False
    show_turn_icons: bool = False
    distance_marker_interval_m: Optional[float] = None   # None disables distance markers
    fit_padding_px: int = 40
    default_zoom: int = 16

    # Logging
    log_dir: Optional[str] = None          # None disables the JSON session log
    route_filename: str = "active_route.json"
    events_filename: str = "nav_session.jsonl"

    @property
    def route_filepath(self) -> str:
        return os.path.join(self.log_dir or ".", self.route_filename)

    @property
    def events_filepath(self) -> str:
        return os.path.join(self.log_dir or ".", self.events_filename)

    def nominal_speed_kmh(self, profile: str) -> float:
        return self.nominal_speeds_kmh.get(profile, WALKING_SPEED_KMH)
