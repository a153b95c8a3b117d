# session.py
# Public entry point for the tracking engine.
# Owns one navigation session's state; delegates the maths to specialist modules.

import asyncio
import logging
from typing import Callable, Dict, List, Optional

from .errors import GeolocationError, InvalidFixError, InvalidWaypointError, NavigationError
from .geo_utils import distance_between, points_every, validate_coordinate
from .geolocation import FixFailed, FixReceived, GeolocationEvent, GeolocationSource, Subscription, WatchOptions
from .instruction_processor import InstructionProcessor, icon_name
from .models import (
    Coord,
    Instruction,
    PositionFix,
    ProgressState,
    Route,
    RouteOutcome,
    RouteOutcomeStatus,
    SessionSnapshot,
    SessionState,
    TravelMode,
    TravelSummary,
)
from .nav_config import NavConfig
from .nav_logger import NavLogger
from .position_tracker import PositionTracker
from .progress_estimator import ProgressEstimator
from .renderer import MapRenderer
from .route_manager import RouteManager
from .routing_client import RoutingClient
from .scheduler import DebouncedTask, PeriodicTask

logger = logging.getLogger(__name__)


class TrackingSession:
    """
    One live navigation session.

    Typical lifecycle (inside a running asyncio loop):
        session = TrackingSession(gps_source, OSRMClient(config), config)
        session.start()
        session.set_destination(Coord(40.01, -74.0))
        ...                       # fixes arrive through the geolocation source
        summary = session.stop()

    States:
        IDLE → TRACKING_NO_DESTINATION        start()
        TRACKING_NO_DESTINATION → WITH_ROUTE  set_destination()
        WITH_ROUTE → WITH_ROUTE               mode / destination change, drift > threshold
        WITH_ROUTE → WITH_ROUTE               progress tick after a failed request (retry)
        WITH_ROUTE → TRACKING_NO_DESTINATION  clear_destination()
        any → IDLE                            stop() or a geolocation error

    Args:
        geolocation: Source of position fixes.
        client:      Routing client handed to the RouteManager.
        config:      Optional NavConfig; defaults to NavConfig().
        renderer:    Optional map surface to draw on.
        on_change:   Optional listener receiving a snapshot after every change.
        mode:        Initial travel mode.
    """

    def __init__(
        self,
        geolocation: GeolocationSource,
        client: RoutingClient,
        config: Optional[NavConfig] = None,
        renderer: Optional[MapRenderer] = None,
        on_change: Optional[Callable[[SessionSnapshot], None]] = None,
        mode: TravelMode = TravelMode.DRIVING,
    ) -> None:
        self.config = config or NavConfig()
        self.on_change = on_change
        self._geolocation = geolocation
        self._renderer = renderer

        # Specialist modules
        self._tracker    = PositionTracker()
        self._routes     = RouteManager(client, self.config)
        self._processor  = InstructionProcessor(self.config)
        self._estimator  = ProgressEstimator(self.config)
        self._nav_logger = NavLogger(self.config) if self.config.log_dir else None

        self._timer = PeriodicTask(self.config.progress_interval_s, self._on_tick, name="progress-timer")
        self._debounce = DebouncedTask(self.config.debounce_window_s, self._apply_moved_destination)

        self._state = SessionState.IDLE
        self._mode = mode
        self._subscription: Optional[Subscription] = None
        self._destination: Optional[Coord] = None
        self._routed_origin: Optional[Coord] = None
        self._route_task: Optional[asyncio.Task] = None
        self._route: Optional[Route] = None
        self._fallback: Optional[Route] = None
        self._instructions: List[Instruction] = []
        self._progress: Optional[ProgressState] = None
        self._warning: Optional[str] = None
        self._retry_needed = False
        self._error: Optional[GeolocationError] = None
        self._layers: Dict[str, List[int]] = {}

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Subscribe to the geolocation source and begin tracking."""
        if self._state is not SessionState.IDLE:
            logger.warning("Session already tracking, start() ignored.")
            return

        self._tracker.reset()
        self._warning = None
        self._error = None
        options = WatchOptions(
            high_accuracy=self.config.high_accuracy,
            timeout_ms=self.config.geolocation_timeout_ms,
        )
        self._subscription = self._geolocation.subscribe(self.handle_event, options)
        self._state = SessionState.TRACKING_NO_DESTINATION
        logger.info(f"Tracking started ({self._mode.value}).")
        self._emit("start")

    def stop(self) -> TravelSummary:
        """
        End the session and release every resource it holds.

        Returns:
            TravelSummary over the whole movement history.
        """
        history = self._tracker.history
        elapsed_s = (history[-1].timestamp_ms - history[0].timestamp_ms) / 1000.0 if history else 0.0
        summary = TravelSummary(
            distance_m=self._tracker.total_distance(),
            fix_count=len(history),
            elapsed_s=elapsed_s,
        )

        was_active = self._state is not SessionState.IDLE
        self._release()
        self._state = SessionState.IDLE
        if was_active:
            logger.info(
                f"Tracking stopped: {summary.distance_m:.0f} m over {summary.fix_count} fixes "
                f"in {summary.elapsed_s:.0f} s."
            )
            self._emit("stop")
        return summary

    async def aclose(self) -> None:
        """Stop (if needed) and wait for the cancelled route request to unwind."""
        task = self._route_task
        self.stop()
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)

    def _release(self) -> None:
        if self._subscription is not None:
            self._geolocation.unsubscribe(self._subscription)
            self._subscription = None
        self._debounce.cancel()
        self._discard_route()
        self._destination = None
        self._remove_layers("destination")
        self._remove_layers("position")

    def _discard_route(self) -> None:
        """Cancel the pending request and forget route, instructions and progress."""
        self._timer.cancel()
        if self._route_task is not None:
            self._route_task.cancel()
            self._route_task = None
        self._routes.clear()
        self._estimator.reset()
        self._routed_origin = None
        self._route = None
        self._retry_needed = False
        self._fallback = None
        self._instructions = []
        self._progress = None
        self._remove_layers("route")

    # ------------------------------------------------------------------
    # User commands
    # ------------------------------------------------------------------

    def set_destination(self, destination: Coord) -> None:
        """
        Route to destination from the live position.

        The request is deferred until the first fix if none has arrived yet.

        Raises:
            InvalidWaypointError: destination is not a valid coordinate.
            NavigationError:      The session is not tracking.
        """
        self._require_tracking()
        self._validate_destination(destination)

        self._destination = destination
        self._state = SessionState.TRACKING_WITH_ROUTE
        self._replace_layers("destination", [self._draw_marker(destination, "Destination", icon="flag")])
        logger.info(f"Destination set: {destination}")
        self._reroute("destination")
        self._emit("destination")

    def move_destination(self, destination: Coord) -> None:
        """Debounced set_destination() for drag interactions."""
        self._require_tracking()
        self._validate_destination(destination)
        self._debounce.schedule(destination)

    def _apply_moved_destination(self, destination: Coord) -> None:
        if self._state is not SessionState.IDLE:
            self.set_destination(destination)

    def clear_destination(self) -> None:
        """Drop the destination together with route, instructions and progress."""
        if self._state is SessionState.IDLE:
            return
        self._debounce.cancel()
        self._discard_route()
        self._destination = None
        self._remove_layers("destination")
        self._state = SessionState.TRACKING_NO_DESTINATION
        logger.info("Destination cleared.")
        self._emit("clear")

    def set_mode(self, mode: TravelMode) -> None:
        """Change travel mode; re-routes when a destination is set."""
        if mode is self._mode:
            return
        logger.info(f"Travel mode: {self._mode.value} → {mode.value}")
        self._mode = mode
        if self._destination is not None:
            self._reroute("mode")
        self._emit("mode")

    def _require_tracking(self) -> None:
        if self._state is SessionState.IDLE:
            raise NavigationError("Session is not tracking; call start() first.")

    @staticmethod
    def _validate_destination(destination: Coord) -> None:
        if not isinstance(destination, Coord):
            raise InvalidWaypointError(f"Destination must be a Coord, got {destination!r}")
        validate_coordinate(destination.lat, destination.lon, InvalidWaypointError)

    # ------------------------------------------------------------------
    # Geolocation events (single channel)
    # ------------------------------------------------------------------

    def handle_event(self, event: GeolocationEvent) -> None:
        """Entry point for the geolocation subscription."""
        if self._state is SessionState.IDLE:
            return
        if isinstance(event, FixReceived):
            self._on_fix(event.fix)
        elif isinstance(event, FixFailed):
            self._on_geolocation_error(event.error)

    def _on_fix(self, fix: PositionFix) -> None:
        try:
            update = self._tracker.ingest(fix)
        except InvalidFixError as e:
            logger.warning(f"Fix rejected: {e}")
            return

        position = fix.coord
        if len(update.history) == 1 and self._renderer is not None:
            self._renderer.set_view(position, self.config.default_zoom)
        heading = update.bearing_deg if self.config.rotate_marker else None
        self._replace_layers("position", [
            self._draw_marker(position, "You", heading=heading, icon="user"),
            *self._draw_polyline([f.coord for f in update.history], color="#888888"),
        ])

        if self._should_reroute(position):
            self._reroute("displacement")
        self._refresh_progress()
        self._emit("fix")

    def _on_geolocation_error(self, error: GeolocationError) -> None:
        logger.error(f"Geolocation failed, tracking halted: {error}")
        self.stop()
        # Kept after stop() so the presentation layer can show it
        self._error = error
        self._emit("error")

    # ------------------------------------------------------------------
    # Re-route policy
    # ------------------------------------------------------------------

    def _should_reroute(self, position: Coord) -> bool:
        if self._destination is None:
            return False
        if self._routed_origin is None:
            return True
        return distance_between(self._routed_origin, position) > self.config.reroute_threshold_m

    def _reroute(self, reason: str) -> None:
        """Issue a route request from the live position, superseding any pending one."""
        last = self._tracker.last_fix
        if last is None or self._destination is None:
            logger.debug(f"Re-route ({reason}) deferred until the first fix.")
            return

        if self._route_task is not None:
            self._route_task.cancel()
            self._routes.invalidate()
        origin = last.coord
        self._routed_origin = origin
        logger.info(f"Re-route ({reason}) from {origin}")
        self._route_task = asyncio.get_running_loop().create_task(
            self._fetch_route([origin, self._destination], self._mode)
        )

    async def _fetch_route(self, waypoints: List[Coord], mode: TravelMode) -> None:
        try:
            outcome = await self._routes.request_route(waypoints, mode)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.exception("Route request crashed; keeping previous state")
            if self._route_task is asyncio.current_task():
                self._route_task = None
                self._retry_needed = True
                self._warning = f"Routing failed unexpectedly ({e!r}); will retry."
                self._timer.start()
                self._emit("route")
            return
        self._apply_outcome(outcome)

    def _apply_outcome(self, outcome: RouteOutcome) -> None:
        if outcome.status is RouteOutcomeStatus.STALE or self._state is SessionState.IDLE:
            return
        self._route_task = None

        if outcome.status is RouteOutcomeStatus.APPLIED:
            self._set_route(outcome.route)
            self._fallback = None
            self._warning = None
            self._retry_needed = False
            if self._nav_logger is not None:
                self._nav_logger.save_route(outcome.route, self._instructions)
        else:
            self._fallback = outcome.fallback_route
            self._retry_needed = True
            self._warning = f"Routing unavailable ({outcome.error}); showing straight line."
            if self._route is None or self._route.is_fallback:
                self._set_route(outcome.fallback_route)

        self._refresh_progress()
        self._emit("route")

    def _set_route(self, route: Route) -> None:
        self._route = route
        self._instructions = self._processor.process(route.steps)
        self._estimator.reset()

        layers = self._draw_polyline(route.geometry, color="#2E86AB", dashed=route.is_fallback)
        interval = self.config.distance_marker_interval_m
        if interval:
            for dist, coord in points_every(route.geometry, interval):
                layers.append(self._draw_marker(coord, f"{dist / 1000:g} km", icon="map-marker"))
        self._replace_layers("route", layers)
        if self._renderer is not None:
            self._renderer.fit_bounds(route.geometry, self.config.fit_padding_px)

        self._timer.start()

    # ------------------------------------------------------------------
    # Progress
    # ------------------------------------------------------------------

    def _refresh_progress(self) -> None:
        last = self._tracker.last_fix
        if self._route is None or last is None:
            return
        self._progress = self._estimator.update(
            last.coord,
            self._route,
            speed_kmh=self._tracker.speed_kmh,
            bearing_deg=self._tracker.bearing_deg,
        )

    def _on_tick(self) -> None:
        if self._state is SessionState.IDLE or self._destination is None:
            return
        # Last request failed: ask the service again from the live position
        pending = self._route_task is not None and not self._route_task.done()
        if self._retry_needed and not pending:
            self._reroute("retry")
        self._refresh_progress()
        self._emit("tick")

    # ------------------------------------------------------------------
    # Drawing helpers (no-ops without a renderer)
    # ------------------------------------------------------------------

    def _draw_marker(self, coord: Coord, label: str, heading: Optional[float] = None,
                     icon: Optional[str] = None) -> Optional[int]:
        if self._renderer is None:
            return None
        return self._renderer.draw_marker(coord, label, heading=heading, icon=icon)

    def _draw_polyline(self, coords, color: str, dashed: bool = False) -> List[int]:
        if self._renderer is None or len(coords) < 2:
            return []
        return [self._renderer.draw_polyline(coords, color=color, dashed=dashed)]

    def _replace_layers(self, name: str, layer_ids: List[Optional[int]]) -> None:
        self._remove_layers(name)
        self._layers[name] = [i for i in layer_ids if i is not None]

    def _remove_layers(self, name: str) -> None:
        for layer_id in self._layers.pop(name, []):
            self._renderer.remove_layer(layer_id)

    # ------------------------------------------------------------------
    # Snapshot
    # ------------------------------------------------------------------

    def snapshot(self) -> SessionSnapshot:
        """Read-only view of the current session state."""
        last = self._tracker.last_fix
        icons = ()
        if self.config.show_turn_icons:
            icons = tuple(icon_name(i) for i in self._instructions)
        return SessionSnapshot(
            state=self._state,
            mode=self._mode,
            position=last.coord if last else None,
            bearing_deg=self._tracker.bearing_deg,
            speed_kmh=self._tracker.speed_kmh,
            destination=self._destination,
            route=self._route,
            fallback_route=self._fallback,
            route_pending=self._route_task is not None and not self._route_task.done(),
            instructions=tuple(self._instructions),
            progress=self._progress,
            fix_count=self._tracker.fix_count,
            warning=self._warning,
            error=self._error,
            icons=icons,
        )

    def _emit(self, event: str) -> None:
        if self._nav_logger is None and self.on_change is None:
            return
        snapshot = self.snapshot()
        if self._nav_logger is not None:
            self._nav_logger.log_event(event, snapshot)
        if self.on_change is not None:
            try:
                self.on_change(snapshot)
            except Exception:
                logger.exception(f"on_change listener failed on '{event}'")

    async def wait_for_route(self) -> None:
        """Wait until no route request is pending (re-routes issued meanwhile included)."""
        while self._route_task is not None and not self._route_task.done():
            await asyncio.gather(self._route_task, return_exceptions=True)

    # ------------------------------------------------------------------
    # Convenience read-only properties
    # ------------------------------------------------------------------

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def mode(self) -> TravelMode:
        return self._mode

    @property
    def history(self):
        return self._tracker.history

    @property
    def instructions(self) -> List[Instruction]:
        return list(self._instructions)

    @property
    def progress(self) -> Optional[ProgressState]:
        return self._progress
