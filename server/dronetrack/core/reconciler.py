"""Position reconciler — decides where the drone is, once per tick.

Two sources compete for the displayed drone position:

1. Realtime pushes from whoever is actually flying the drone (the delivery
   simulator, an admin action). While one arrived within the freshness
   window it is ground truth and progress is derived from how far along the
   segment it sits.
2. A local animation that advances phase progress by elapsed ticks and
   eases the drone along the straight segment. It only runs while realtime
   has gone quiet.

The reconciler is synchronous and takes explicit timestamps, so tests can
drive it tick by tick. Scheduling lives in the tracking controller.
"""

from __future__ import annotations

import time
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable

import structlog

from dronetrack.core.geo import distance_km, distance_m, ease_in_out, interpolate, planar_distance_deg
from dronetrack.core.models import Coordinate, DeliveryEstimate
from dronetrack.core.phases import DeliveryPhase, PhaseStateMachine

log = structlog.get_logger()

# Overall progress share of the hub → restaurant leg; restaurant → customer
# makes up the rest.
RESTAURANT_LEG_SHARE = 30.0

# Realtime progress at or above this counts as arrived.
ARRIVAL_THRESHOLD = 0.999

# Sentinel distance used when a position is unknown.
_FAR = 999.0


@dataclass
class DeliverySession:
    """Mutable tracking state for one order. Owned by one controller."""
    order_id: str
    machine: PhaseStateMachine = field(default_factory=PhaseStateMachine)
    drone_id: str | None = None
    order_status: str = "pending"
    phase_started_at: float = 0.0
    phase_progress: float = 0.0
    hub: Coordinate | None = None
    restaurant: Coordinate | None = None
    customer: Coordinate | None = None
    drone: Coordinate | None = None
    path: deque[Coordinate] = field(default_factory=lambda: deque(maxlen=50))
    last_realtime_update_at: float | None = None
    eta_minutes: float | None = None
    estimate: DeliveryEstimate | None = None

    @property
    def phase(self) -> DeliveryPhase:
        return self.machine.phase

    def segment(self) -> tuple[Coordinate | None, Coordinate | None]:
        """(start, target) for the current phase; (None, None) when it has no target."""
        if self.phase is DeliveryPhase.TO_RESTAURANT:
            return self.hub, self.restaurant
        if self.phase is DeliveryPhase.TO_CUSTOMER:
            return self.restaurant, self.customer
        return None, None

    @property
    def overall_progress(self) -> float:
        p = min(max(self.phase_progress, 0.0), 1.0)
        phase = self.phase
        if phase is DeliveryPhase.IDLE:
            value = 0.0
        elif phase is DeliveryPhase.TO_RESTAURANT:
            value = p * RESTAURANT_LEG_SHARE
        elif phase is DeliveryPhase.PICKING_UP:
            value = RESTAURANT_LEG_SHARE
        elif phase is DeliveryPhase.TO_CUSTOMER:
            value = RESTAURANT_LEG_SHARE + p * (100.0 - RESTAURANT_LEG_SHARE)
        else:
            value = 100.0
        return min(max(value, 0.0), 100.0)

    def to_dict(self, realtime_active: bool = False) -> dict:
        def coord(c: Coordinate | None) -> dict | None:
            return c.to_dict() if c is not None else None

        return {
            "order_id": self.order_id,
            "drone_id": self.drone_id,
            "phase": self.phase.value,
            "order_status": self.order_status,
            "drone": coord(self.drone),
            "path": [c.to_dict() for c in self.path],
            "overall_progress": round(self.overall_progress, 2),
            "phase_progress": round(self.phase_progress, 4),
            "eta_minutes": round(self.eta_minutes, 2) if self.eta_minutes is not None else None,
            "realtime_active": realtime_active,
            "waypoints": {
                "hub": coord(self.hub),
                "restaurant": coord(self.restaurant),
                "customer": coord(self.customer),
            },
            "estimate": self.estimate.to_dict() if self.estimate else None,
        }


@dataclass(frozen=True)
class TickResult:
    """What one tick did. ``source`` is realtime, local, hold, pending or idle."""
    source: str
    entered: DeliveryPhase | None = None


def infer_phase(
    status: str,
    drone_position: Coordinate | None,
    hub: Coordinate | None,
    restaurant: Coordinate | None,
    *,
    has_drone: bool = True,
    epsilon_deg: float = 0.001,
    recently_assigned: bool = False,
) -> DeliveryPhase:
    """Best-effort guess of the current phase when joining a delivery midway.

    Compares the drone's last reported position with the hub and restaurant
    (planar degrees, ``epsilon_deg`` ≈ a hundred metres). Position wins over
    a naive status mapping: a "delivering" order whose drone still sits at
    the hub is flying to the restaurant. This is state recovery, not a
    guarantee; a drone halfway along either leg can be misread.
    """
    if status == "delivered":
        return DeliveryPhase.COMPLETED
    if not has_drone:
        return DeliveryPhase.IDLE
    if status not in ("picked_up", "delivering"):
        return DeliveryPhase.TO_RESTAURANT

    to_hub = planar_distance_deg(drone_position, hub) if drone_position and hub else _FAR
    to_restaurant = (
        planar_distance_deg(drone_position, restaurant) if drone_position and restaurant else _FAR
    )

    if to_restaurant < epsilon_deg:
        return DeliveryPhase.TO_CUSTOMER
    if to_hub < epsilon_deg or recently_assigned:
        return DeliveryPhase.TO_RESTAURANT
    return DeliveryPhase.TO_CUSTOMER if to_restaurant < to_hub else DeliveryPhase.TO_RESTAURANT


def recently_assigned(assigned_at: datetime | None, now: datetime, window_seconds: float) -> bool:
    if assigned_at is None:
        return False
    return (now - assigned_at).total_seconds() < window_seconds


class PositionReconciler:
    """Merges realtime pushes with local animation into one drone position."""

    def __init__(
        self,
        session: DeliverySession,
        *,
        freshness_window: float = 3.0,
        tick_seconds: float = 1.0,
        min_step_m: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.session = session
        self._freshness_window = freshness_window
        self._tick_seconds = tick_seconds
        self._min_step_m = min_step_m
        self._clock = clock
        self._remote: Coordinate | None = None

    # -- position bookkeeping ---------------------------------------------

    def _record(self, coord: Coordinate) -> None:
        """Set the drone position and keep the trail ending on it."""
        s = self.session
        s.drone = coord
        if s.path and distance_m(s.path[-1], coord) < self._min_step_m:
            s.path[-1] = coord
        else:
            s.path.append(coord)

    def _reset_path(self, coord: Coordinate) -> None:
        self.session.path.clear()
        self._record(coord)

    def place(self, coord: Coordinate) -> None:
        """Put the drone somewhere without touching phase state."""
        self._record(coord)

    def is_fresh(self, now: float | None = None) -> bool:
        last = self.session.last_realtime_update_at
        if last is None or self._remote is None:
            return False
        now = self._clock() if now is None else now
        return now - last <= self._freshness_window

    # -- inputs -----------------------------------------------------------

    def push_realtime(self, coord: Coordinate, at: float | None = None) -> None:
        """Record an authoritative position. Last write wins."""
        s = self.session
        self._remote = coord
        s.last_realtime_update_at = self._clock() if at is None else at
        if s.phase.is_flight:
            self._record(coord)

    def begin(self, phase: DeliveryPhase, reported: Coordinate | None = None, now: float | None = None) -> None:
        """Enter the phase a session starts (or resumes) in and place the drone."""
        now = self._clock() if now is None else now
        s = self.session
        s.machine.force(phase)
        s.phase_progress = 0.0
        s.phase_started_at = now

        if s.phase is DeliveryPhase.TO_RESTAURANT and s.hub is not None:
            start = s.hub
        elif s.phase is DeliveryPhase.TO_CUSTOMER and s.restaurant is not None:
            start = s.restaurant
        elif reported is not None:
            start = reported
        else:
            start = s.hub
        if start is not None:
            self._reset_path(start)
        log.info("tracking_phase_begun", order=s.order_id, phase=s.phase.value)

    def force(self, phase: DeliveryPhase, now: float | None = None) -> bool:
        """Apply an externally signalled phase. Never moves backwards."""
        s = self.session
        if not s.machine.force(phase):
            return False
        s.phase_progress = 0.0
        s.phase_started_at = self._clock() if now is None else now

        if phase is DeliveryPhase.TO_RESTAURANT and s.hub is not None:
            self._reset_path(s.hub)
        elif phase is DeliveryPhase.TO_CUSTOMER and s.restaurant is not None:
            self._reset_path(s.restaurant)
        return True

    # -- the tick ---------------------------------------------------------

    def tick(self, now: float | None = None) -> TickResult:
        now = self._clock() if now is None else now
        s = self.session
        phase = s.phase

        if not phase.is_timed:
            return TickResult("idle")

        if phase.is_flight:
            start, target = s.segment()
            if start is None or target is None:
                # Waypoints not resolved yet; nothing to move along.
                return TickResult("pending")

            if self.is_fresh(now):
                self._record(self._remote)
                total = distance_km(start, target)
                if total <= 0:
                    progress = 1.0
                else:
                    progress = min(max(distance_km(start, self._remote) / total, 0.0), 1.0)
                if progress >= ARRIVAL_THRESHOLD:
                    progress = 1.0
                s.phase_progress = progress
                source = "realtime"
            else:
                self._advance_progress(phase)
                self._record(interpolate(start, target, ease_in_out(s.phase_progress)))
                source = "local"
        else:
            # picking_up / delivering: the drone holds position for the phase's duration.
            self._advance_progress(phase)
            source = "hold"

        entered = None
        if s.phase_progress >= 1.0:
            entered = s.machine.advance()
            s.phase_progress = 0.0
            s.phase_started_at = now
            log.info("tracking_phase_advanced", order=s.order_id,
                     phase=entered.value, source=source)

        return TickResult(source, entered)

    def _advance_progress(self, phase: DeliveryPhase) -> None:
        progress = self.session.phase_progress + self._step(phase)
        # Absorb float drift so N ticks of 1/N land exactly on 1.0.
        self.session.phase_progress = 1.0 if progress >= 1.0 - 1e-9 else progress

    def _step(self, phase: DeliveryPhase) -> float:
        duration = self.session.machine.duration(phase)
        if duration <= 0:
            return 1.0
        return self._tick_seconds / duration
