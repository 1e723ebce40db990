"""Tests for the position reconciler, driven tick by tick with explicit timestamps."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from dronetrack.core.geo import interpolate
from dronetrack.core.models import Coordinate
from dronetrack.core.phases import DeliveryPhase, PhaseStateMachine, get_preset
from dronetrack.core.reconciler import (
    DeliverySession,
    PositionReconciler,
    infer_phase,
    recently_assigned,
)

HUB = Coordinate(10.7587229, 106.682131)
RESTAURANT = Coordinate(10.7769, 106.7009)
CUSTOMER = Coordinate(10.7500, 106.6500)


def make_reconciler(restaurant: Coordinate | None = RESTAURANT) -> PositionReconciler:
    session = DeliverySession(
        order_id="order-1",
        machine=PhaseStateMachine(get_preset("simulator")),
        hub=HUB,
        restaurant=restaurant,
        customer=CUSTOMER,
    )
    return PositionReconciler(session, freshness_window=3.0, tick_seconds=1.0, clock=lambda: 0.0)


def on_segment(point: Coordinate, a: Coordinate, b: Coordinate) -> bool:
    lo_lat, hi_lat = sorted((a.latitude, b.latitude))
    lo_lng, hi_lng = sorted((a.longitude, b.longitude))
    return lo_lat - 1e-9 <= point.latitude <= hi_lat + 1e-9 and lo_lng - 1e-9 <= point.longitude <= hi_lng + 1e-9


def test_begin_to_restaurant_starts_at_hub():
    rec = make_reconciler()
    rec.begin(DeliveryPhase.TO_RESTAURANT, reported=CUSTOMER, now=0)
    assert rec.session.drone == HUB
    assert list(rec.session.path) == [HUB]


def test_begin_to_customer_starts_at_restaurant():
    rec = make_reconciler()
    rec.begin(DeliveryPhase.TO_CUSTOMER, reported=HUB, now=0)
    assert rec.session.drone == RESTAURANT
    assert list(rec.session.path) == [RESTAURANT]


def test_fresh_realtime_update_wins():
    rec = make_reconciler()
    rec.begin(DeliveryPhase.TO_RESTAURANT, now=0)
    rec.tick(now=1)
    rec.tick(now=2)

    pushed = interpolate(HUB, RESTAURANT, 0.6)
    rec.push_realtime(pushed, at=2.5)
    result = rec.tick(now=3)

    assert result.source == "realtime"
    assert rec.session.drone == pushed
    assert rec.session.path[-1] == pushed
    assert rec.session.phase_progress == pytest.approx(0.6, abs=0.01)
    assert rec.is_fresh(now=3)


def test_realtime_position_taken_exactly_even_off_segment():
    rec = make_reconciler()
    rec.begin(DeliveryPhase.TO_RESTAURANT, now=0)
    off = Coordinate(HUB.latitude + 0.001, HUB.longitude - 0.002)
    rec.push_realtime(off, at=0.5)
    rec.tick(now=1)
    assert rec.session.drone == off


def test_realtime_arrival_advances_phase():
    rec = make_reconciler()
    rec.begin(DeliveryPhase.TO_RESTAURANT, now=0)
    rec.push_realtime(RESTAURANT, at=1)
    result = rec.tick(now=1)
    assert result.entered is DeliveryPhase.PICKING_UP
    assert rec.session.phase_progress == 0.0
    assert rec.session.drone == RESTAURANT


def test_stale_realtime_falls_back_to_local_animation():
    rec = make_reconciler()
    rec.begin(DeliveryPhase.TO_RESTAURANT, now=0)
    rec.push_realtime(interpolate(HUB, RESTAURANT, 0.1), at=0)
    assert rec.tick(now=1).source == "realtime"

    now = 6.0
    previous = rec.session.overall_progress
    while True:
        result = rec.tick(now=now)
        if result.entered is not None:
            break
        assert result.source == "local"
        assert rec.session.overall_progress > previous
        previous = rec.session.overall_progress
        now += 1
    assert result.entered is DeliveryPhase.PICKING_UP
    assert rec.session.drone == RESTAURANT


def test_local_animation_stays_on_segment_and_path_ends_on_drone():
    rec = make_reconciler()
    rec.begin(DeliveryPhase.TO_RESTAURANT, now=0)
    for t in range(1, 20):
        rec.tick(now=t)
        assert on_segment(rec.session.drone, HUB, RESTAURANT)
        assert rec.session.path[-1] == rec.session.drone


def test_full_local_run_reaches_completed():
    rec = make_reconciler()
    rec.begin(DeliveryPhase.TO_RESTAURANT, now=0)
    entered = []
    for t in range(1, 100):
        result = rec.tick(now=t)
        if result.entered is not None:
            entered.append(result.entered)
        if rec.session.phase is DeliveryPhase.COMPLETED:
            break

    assert entered == [
        DeliveryPhase.PICKING_UP,
        DeliveryPhase.TO_CUSTOMER,
        DeliveryPhase.DELIVERING,
        DeliveryPhase.COMPLETED,
    ]
    # 20 + 5 + 30 + 3 one-second ticks.
    assert t == 58
    assert rec.session.drone == CUSTOMER
    assert rec.session.overall_progress == 100.0
    assert rec.tick(now=100).source == "idle"


def test_stationary_phase_holds_position():
    rec = make_reconciler()
    rec.begin(DeliveryPhase.TO_RESTAURANT, now=0)
    rec.force(DeliveryPhase.PICKING_UP, now=0)
    rec.place(RESTAURANT)
    for t in range(1, 5):
        result = rec.tick(now=t)
        assert result.source == "hold"
        assert rec.session.drone == RESTAURANT
        assert rec.session.overall_progress == 30.0
    assert rec.tick(now=5).entered is DeliveryPhase.TO_CUSTOMER


def test_realtime_push_during_hold_does_not_move_drone():
    rec = make_reconciler()
    rec.begin(DeliveryPhase.TO_CUSTOMER, now=0)
    rec.force(DeliveryPhase.DELIVERING, now=0)
    rec.place(CUSTOMER)
    rec.push_realtime(HUB, at=0.5)
    rec.tick(now=1)
    assert rec.session.drone == CUSTOMER


def test_missing_waypoint_is_a_no_op():
    rec = make_reconciler(restaurant=None)
    rec.begin(DeliveryPhase.TO_RESTAURANT, now=0)
    before = rec.session.drone
    for t in range(1, 5):
        assert rec.tick(now=t).source == "pending"
    assert rec.session.drone == before
    assert rec.session.phase_progress == 0.0
    assert rec.session.phase is DeliveryPhase.TO_RESTAURANT


def test_idle_session_does_not_tick():
    rec = make_reconciler()
    assert rec.tick(now=1).source == "idle"
    assert rec.session.overall_progress == 0.0


def test_path_keeps_most_recent_fifty():
    rec = make_reconciler()
    rec.begin(DeliveryPhase.TO_RESTAURANT, now=0)
    pushed = [Coordinate(HUB.latitude + 0.0001 * i, HUB.longitude) for i in range(1, 61)]
    for i, coord in enumerate(pushed):
        rec.push_realtime(coord, at=float(i))
    assert len(rec.session.path) == 50
    assert list(rec.session.path) == pushed[-50:]


def test_near_duplicate_points_are_not_appended():
    rec = make_reconciler()
    rec.begin(DeliveryPhase.TO_RESTAURANT, now=0)
    nudged = Coordinate(HUB.latitude + 0.000001, HUB.longitude)
    rec.push_realtime(nudged, at=0)
    assert len(rec.session.path) == 1
    assert rec.session.path[-1] == nudged == rec.session.drone


def test_force_to_customer_resets_path():
    rec = make_reconciler()
    rec.begin(DeliveryPhase.TO_RESTAURANT, now=0)
    for t in range(1, 6):
        rec.tick(now=t)
    assert rec.force(DeliveryPhase.TO_CUSTOMER, now=6) is True
    assert list(rec.session.path) == [RESTAURANT]
    assert rec.session.drone == RESTAURANT
    assert rec.session.phase_progress == 0.0


def test_force_backwards_is_ignored():
    rec = make_reconciler()
    rec.begin(DeliveryPhase.TO_CUSTOMER, now=0)
    rec.tick(now=1)
    drone = rec.session.drone
    assert rec.force(DeliveryPhase.TO_RESTAURANT, now=2) is False
    assert rec.session.phase is DeliveryPhase.TO_CUSTOMER
    assert rec.session.drone == drone


def test_overall_progress_split():
    rec = make_reconciler()
    s = rec.session
    rec.begin(DeliveryPhase.TO_RESTAURANT, now=0)
    s.phase_progress = 0.5
    assert s.overall_progress == 15.0
    rec.force(DeliveryPhase.TO_CUSTOMER, now=0)
    s.phase_progress = 0.5
    assert s.overall_progress == 65.0


def test_snapshot_dict():
    rec = make_reconciler()
    rec.begin(DeliveryPhase.TO_RESTAURANT, now=0)
    data = rec.session.to_dict(realtime_active=False)
    assert data["phase"] == "to_restaurant"
    assert data["drone"] == HUB.to_dict()
    assert data["path"] == [HUB.to_dict()]
    assert data["waypoints"]["restaurant"] == RESTAURANT.to_dict()
    assert data["realtime_active"] is False


# -- phase inference on reconnect ------------------------------------------


def test_drone_at_hub_while_delivering_is_flying_to_restaurant():
    assert infer_phase("delivering", HUB, HUB, RESTAURANT) is DeliveryPhase.TO_RESTAURANT


def test_drone_at_restaurant_is_flying_to_customer():
    assert infer_phase("picked_up", RESTAURANT, HUB, RESTAURANT) is DeliveryPhase.TO_CUSTOMER


def test_recent_assignment_means_to_restaurant():
    just_left = interpolate(RESTAURANT, CUSTOMER, 0.05)
    assert infer_phase("delivering", just_left, HUB, RESTAURANT) is DeliveryPhase.TO_CUSTOMER
    assert infer_phase("delivering", just_left, HUB, RESTAURANT,
                       recently_assigned=True) is DeliveryPhase.TO_RESTAURANT


def test_nearer_waypoint_decides_midway():
    near_hub = interpolate(HUB, RESTAURANT, 0.2)
    assert infer_phase("delivering", near_hub, HUB, RESTAURANT) is DeliveryPhase.TO_RESTAURANT


def test_status_only_inference():
    assert infer_phase("delivered", None, HUB, RESTAURANT) is DeliveryPhase.COMPLETED
    assert infer_phase("ready", None, HUB, RESTAURANT, has_drone=False) is DeliveryPhase.IDLE
    assert infer_phase("ready", RESTAURANT, HUB, RESTAURANT) is DeliveryPhase.TO_RESTAURANT
    assert infer_phase("preparing", None, HUB, RESTAURANT) is DeliveryPhase.TO_RESTAURANT


def test_recently_assigned_window():
    now = datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)
    assert recently_assigned(now - timedelta(seconds=30), now, 120) is True
    assert recently_assigned(now - timedelta(minutes=5), now, 120) is False
    assert recently_assigned(None, now, 120) is False
