import asyncio

import httpx
import pytest
from conftest import FakeRoutingClient, line_route

from navigation.tracking.errors import (
    GeolocationError,
    GeolocationErrorCode,
    InvalidWaypointError,
    NavigationError,
    RouteServiceError,
)
from navigation.tracking.geo_utils import distance_between, haversine_distance
from navigation.tracking.geolocation import FixReceived, SimulatedGeolocationSource
from navigation.tracking.models import Coord, PositionFix, SessionState, TravelMode
from navigation.tracking.nav_config import NavConfig
from navigation.tracking.renderer import FoliumMapRenderer
from navigation.tracking.routing_client import OSRMClient
from navigation.tracking.session import TrackingSession


def make_session(client=None, on_change=None, **config_overrides):
    source = SimulatedGeolocationSource()
    renderer = FoliumMapRenderer()
    session = TrackingSession(
        source,
        client or FakeRoutingClient(),
        NavConfig(**config_overrides),
        renderer=renderer,
        on_change=on_change,
    )
    return session, source, renderer


async def routed_session(client=None, **config_overrides):
    """Session tracking from (40.0, -74.0) with a resolved route to (40.01, -74.0)."""
    session, source, renderer = make_session(client, **config_overrides)
    session.start()
    source.emit_fix(40.0, -74.0, 0)
    session.set_destination(Coord(40.01, -74.0))
    await session.wait_for_route()
    return session, source, renderer


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_start_subscribes_once():
    session, source, _ = make_session(high_accuracy=False, geolocation_timeout_ms=3000)
    assert session.state is SessionState.IDLE

    session.start()
    session.start()
    assert session.state is SessionState.TRACKING_NO_DESTINATION
    assert source.subscriber_count == 1
    assert source.last_options.high_accuracy is False
    assert source.last_options.timeout_ms == 3000
    await session.aclose()


@pytest.mark.asyncio
async def test_fixes_without_destination_track_only(fake_client):
    session, source, _ = make_session(fake_client)
    session.start()
    source.emit_fix(40.0, -74.0, 0)
    source.emit_fix(40.001, -74.0, 10_000)

    snap = session.snapshot()
    assert snap.position == Coord(40.001, -74.0)
    assert snap.fix_count == 2
    assert snap.bearing_deg == pytest.approx(0.0)
    assert snap.speed_kmh > 0
    assert snap.progress is None
    assert fake_client.calls == []
    await session.aclose()


@pytest.mark.asyncio
async def test_invalid_fix_is_dropped():
    session, source, _ = make_session()
    session.start()
    source.emit_fix(40.0, -74.0, 0)
    source.emit_fix(95.0, -74.0, 1000)
    assert session.snapshot().fix_count == 1
    assert session.state is SessionState.TRACKING_NO_DESTINATION
    await session.aclose()


@pytest.mark.asyncio
async def test_stop_reports_distance_travelled_and_releases():
    session, source, _ = make_session()
    session.start()
    for i, lon in enumerate([0.0, 0.001, 0.002]):
        source.emit_fix(0.0, lon, i * 1000)

    summary = session.stop()

    reference = haversine_distance(0, 0, 0, 0.001) + haversine_distance(0, 0.001, 0, 0.002)
    assert abs(summary.distance_m - reference) < 1.0
    assert summary.fix_count == 3
    assert summary.elapsed_s == 2.0
    assert session.state is SessionState.IDLE
    assert source.subscriber_count == 0

    # late events are ignored
    session.handle_event(FixReceived(PositionFix(0.0, 0.003, 3000)))
    assert session.snapshot().fix_count == 3


@pytest.mark.asyncio
async def test_restart_clears_history():
    session, source, _ = make_session()
    session.start()
    source.emit_fix(0.0, 0.0, 0)
    session.stop()
    session.start()
    assert session.history == ()
    assert source.subscriber_count == 1
    await session.aclose()


@pytest.mark.asyncio
async def test_geolocation_error_halts_tracking():
    session, source, _ = await routed_session()
    error = GeolocationError(GeolocationErrorCode.PERMISSION_DENIED)
    source.emit_error(error)

    snap = session.snapshot()
    assert snap.state is SessionState.IDLE
    assert snap.error is error
    assert snap.route is None
    assert source.subscriber_count == 0
    await session.aclose()


# ---------------------------------------------------------------------------
# Destination
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_set_destination_requires_tracking():
    session, _, _ = make_session()
    with pytest.raises(NavigationError):
        session.set_destination(Coord(40.01, -74.0))


@pytest.mark.asyncio
async def test_invalid_destination_is_rejected(fake_client):
    session, _, _ = make_session(fake_client)
    session.start()
    with pytest.raises(InvalidWaypointError):
        session.set_destination(Coord(40.0, 200.0))
    assert session.state is SessionState.TRACKING_NO_DESTINATION
    assert fake_client.calls == []
    await session.aclose()


@pytest.mark.asyncio
async def test_route_request_waits_for_first_fix(fake_client):
    session, source, _ = make_session(fake_client)
    session.start()
    session.set_destination(Coord(40.01, -74.0))
    assert session.state is SessionState.TRACKING_WITH_ROUTE
    assert fake_client.calls == []

    source.emit_fix(40.0, -74.0, 0)
    await session.wait_for_route()

    assert fake_client.calls == [([Coord(40.0, -74.0), Coord(40.01, -74.0)], TravelMode.DRIVING)]
    snap = session.snapshot()
    assert snap.route is not None and not snap.route.is_fallback
    assert snap.progress.fraction_complete == pytest.approx(0.0)
    # depart and slight-right kept, the 4 m turn and the arrival dropped
    assert [i.maneuver_type for i in snap.instructions] == ["depart", "turn"]
    assert snap.instructions[0].text == "Head north"
    await session.aclose()


@pytest.mark.asyncio
async def test_progress_follows_fixes():
    session, source, _ = await routed_session()
    source.emit_fix(40.0003, -74.0, 5_000)
    assert session.progress.fraction_complete == pytest.approx(0.0)
    source.emit_fix(40.0004, -74.0, 10_000)
    assert session.progress.matched_index == 0
    assert session.progress.current_speed_kmh > 0
    await session.aclose()


@pytest.mark.asyncio
async def test_clear_destination_discards_route(fake_client):
    session, source, renderer = await routed_session(fake_client)
    session.clear_destination()

    snap = session.snapshot()
    assert snap.state is SessionState.TRACKING_NO_DESTINATION
    assert snap.route is None
    assert snap.progress is None
    assert snap.instructions == ()
    assert snap.destination is None
    assert [l for l in renderer.layers_of("polyline") if l.options["color"] == "#2E86AB"] == []

    # no destination, no re-route however far we move
    calls_before = len(fake_client.calls)
    source.emit_fix(40.1, -74.0, 60_000)
    assert len(fake_client.calls) == calls_before
    await session.aclose()


@pytest.mark.asyncio
async def test_move_destination_is_debounced(fake_client):
    session, source, _ = await routed_session(fake_client, debounce_window_s=0.01)
    session.move_destination(Coord(40.02, -74.0))
    session.move_destination(Coord(40.03, -74.0))
    session.move_destination(Coord(40.04, -74.0))
    assert len(fake_client.calls) == 1

    await asyncio.sleep(0.05)
    await session.wait_for_route()
    assert len(fake_client.calls) == 2
    assert fake_client.calls[-1][0][-1] == Coord(40.04, -74.0)
    assert session.snapshot().destination == Coord(40.04, -74.0)
    await session.aclose()


# ---------------------------------------------------------------------------
# Re-route policy
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_reroute_only_beyond_displacement_threshold(fake_client):
    session, source, _ = await routed_session(fake_client)
    assert len(fake_client.calls) == 1

    source.emit_fix(40.0004, -74.0, 5_000)     # ~44 m from the routed origin
    await session.wait_for_route()
    assert len(fake_client.calls) == 1

    source.emit_fix(40.0005, -74.0, 10_000)    # ~56 m
    await session.wait_for_route()
    assert len(fake_client.calls) == 2
    assert fake_client.calls[1][0][0] == Coord(40.0005, -74.0)
    await session.aclose()


@pytest.mark.asyncio
async def test_mode_change_reroutes(fake_client):
    session, _, _ = await routed_session(fake_client)
    session.set_mode(TravelMode.DRIVING)
    assert len(fake_client.calls) == 1

    session.set_mode(TravelMode.CYCLING)
    await session.wait_for_route()
    assert fake_client.calls[-1][1] is TravelMode.CYCLING
    assert session.snapshot().route.mode is TravelMode.CYCLING
    assert session.mode is TravelMode.CYCLING
    await session.aclose()


@pytest.mark.asyncio
async def test_previous_route_used_until_new_one_resolves():
    client = FakeRoutingClient(manual=True)
    session, source, _ = make_session(client)
    session.start()
    source.emit_fix(40.0, -74.0, 0)
    session.set_destination(Coord(40.01, -74.0))
    await asyncio.sleep(0)
    route_a = line_route(Coord(40.0, -74.0), Coord(40.01, -74.0))
    client.futures[0].set_result(route_a)
    await session.wait_for_route()

    source.emit_fix(40.002, -74.0, 20_000)     # ~222 m, triggers a re-route
    snap = session.snapshot()
    assert snap.route_pending
    assert snap.route is route_a
    assert snap.progress.matched_index == 2

    await asyncio.sleep(0)
    route_b = line_route(Coord(40.002, -74.0), Coord(40.01, -74.0))
    client.futures[1].set_result(route_b)
    await session.wait_for_route()
    assert session.snapshot().route is route_b
    await session.aclose()


@pytest.mark.asyncio
async def test_superseded_request_is_cancelled():
    client = FakeRoutingClient(manual=True)
    session, source, _ = make_session(client)
    session.start()
    source.emit_fix(40.0, -74.0, 0)
    session.set_destination(Coord(40.01, -74.0))
    await asyncio.sleep(0)

    source.emit_fix(40.001, -74.0, 10_000)     # ~111 m, supersedes the first request
    await asyncio.sleep(0)
    assert client.futures[0].cancelled()

    route_b = line_route(Coord(40.001, -74.0), Coord(40.01, -74.0))
    client.futures[1].set_result(route_b)
    await session.wait_for_route()
    assert session.snapshot().route is route_b
    await session.aclose()


# ---------------------------------------------------------------------------
# Fallback
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_zero_routes_falls_back_to_straight_line():
    client = FakeRoutingClient(error=RouteServiceError("NoRoute", "Routing service returned zero routes"))
    session, _, renderer = await routed_session(client)

    snap = session.snapshot()
    origin, destination = Coord(40.0, -74.0), Coord(40.01, -74.0)
    assert snap.state is SessionState.TRACKING_WITH_ROUTE
    assert snap.route.is_fallback
    assert snap.route.distance_m == pytest.approx(distance_between(origin, destination))
    assert snap.fallback_route is snap.route
    assert "NoRoute" in snap.warning
    assert snap.instructions == ()
    assert snap.progress.fraction_complete == 0.0
    assert any(l.options["dashed"] for l in renderer.layers_of("polyline"))
    await session.aclose()


@pytest.mark.asyncio
async def test_failed_reroute_keeps_previous_route(fake_client):
    session, _, _ = await routed_session(fake_client)
    good = session.snapshot().route

    fake_client.error = RouteServiceError("NetworkError", "unreachable")
    session.set_mode(TravelMode.WALKING)
    await session.wait_for_route()

    snap = session.snapshot()
    assert snap.route is good
    assert snap.fallback_route.is_fallback
    assert snap.warning is not None
    assert snap.state is SessionState.TRACKING_WITH_ROUTE
    await session.aclose()


@pytest.mark.asyncio
async def test_malformed_service_body_falls_back():
    body = {"code": "Ok", "routes": [{
        "distance": 1000.0,
        "duration": 90.0,
        "geometry": {"coordinates": [[-74.0, 40.0], [-74.0, 40.01]]},
        "legs": [None],
    }]}
    client = OSRMClient(
        NavConfig(routing_base_url="http://osrm.test"),
        transport=httpx.MockTransport(lambda request: httpx.Response(200, json=body)),
    )
    try:
        session, _, _ = await routed_session(client)
        snap = session.snapshot()
        assert snap.route.is_fallback
        assert snap.fallback_route is snap.route
        assert "InvalidResponse" in snap.warning
        assert not snap.route_pending
        await session.aclose()
    finally:
        await client.aclose()


@pytest.mark.asyncio
async def test_unexpected_client_error_is_reported_and_retried():
    client = FakeRoutingClient(error=RuntimeError("parser bug"))
    session, _, _ = await routed_session(client, progress_interval_s=0.01)

    snap = session.snapshot()
    assert snap.state is SessionState.TRACKING_WITH_ROUTE
    assert not snap.route_pending
    assert "parser bug" in snap.warning

    client.error = None
    await asyncio.sleep(0.05)
    await session.wait_for_route()
    snap = session.snapshot()
    assert snap.route is not None and not snap.route.is_fallback
    assert snap.warning is None
    await session.aclose()


@pytest.mark.asyncio
async def test_progress_tick_retries_after_service_failure():
    client = FakeRoutingClient(error=RouteServiceError("NetworkError", "down"))
    session, _, _ = await routed_session(client, progress_interval_s=0.01)
    assert session.snapshot().route.is_fallback

    # still failing: each tick asks again, the straight line stays
    await asyncio.sleep(0.05)
    await session.wait_for_route()
    assert len(client.calls) > 1
    assert session.snapshot().route.is_fallback

    client.error = None
    await asyncio.sleep(0.05)
    await session.wait_for_route()
    snap = session.snapshot()
    assert not snap.route.is_fallback
    assert snap.fallback_route is None
    assert snap.warning is None

    # routed: ticks only refresh progress
    calls = len(client.calls)
    await asyncio.sleep(0.05)
    assert len(client.calls) == calls
    await session.aclose()


# ---------------------------------------------------------------------------
# Timer, resources, presentation
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_progress_timer_refreshes_without_fixes():
    snapshots = []
    session, _, _ = make_session(on_change=snapshots.append, progress_interval_s=0.01)
    session.start()
    session.handle_event(FixReceived(PositionFix(40.0, -74.0, 0)))
    session.set_destination(Coord(40.01, -74.0))
    await session.wait_for_route()

    count = len(snapshots)
    await asyncio.sleep(0.05)
    assert len(snapshots) > count

    session.clear_destination()
    count = len(snapshots)
    await asyncio.sleep(0.05)
    assert len(snapshots) == count
    await session.aclose()


@pytest.mark.asyncio
async def test_stop_cancels_pending_request():
    client = FakeRoutingClient(manual=True)
    session, source, _ = make_session(client)
    session.start()
    source.emit_fix(40.0, -74.0, 0)
    session.set_destination(Coord(40.01, -74.0))
    await asyncio.sleep(0)

    await session.aclose()
    assert client.futures[0].cancelled()
    assert session.snapshot().route is None
    assert session.state is SessionState.IDLE


@pytest.mark.asyncio
async def test_listener_errors_do_not_break_session():
    def broken(snapshot):
        raise RuntimeError("ui crashed")

    session, source, _ = make_session(on_change=broken)
    session.start()
    source.emit_fix(40.0, -74.0, 0)
    assert session.snapshot().fix_count == 1
    await session.aclose()


@pytest.mark.asyncio
async def test_renderer_feature_flags():
    session, source, renderer = await routed_session(
        rotate_marker=True,
        show_turn_icons=True,
        distance_marker_interval_m=500.0,
    )
    source.emit_fix(40.0001, -74.0001, 2_000)

    you = [l for l in renderer.layers_of("marker") if l.options["label"] == "You"]
    assert len(you) == 1
    assert you[0].options["heading"] == pytest.approx(session.snapshot().bearing_deg)
    km_markers = [l for l in renderer.layers_of("marker") if l.options["label"].endswith("km")]
    assert [l.options["label"] for l in km_markers] == ["0.5 km", "1 km"]
    assert renderer.bounds is not None
    assert session.snapshot().icons == ("depart", "turn-slight-right")

    session.stop()
    assert renderer.layers == {}
