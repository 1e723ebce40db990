"""Tracking session controller — one live delivery view per order.

Owns the DeliverySession for an order and everything that feeds it:

- the order subscription (status changes, drone assignment),
- the drone position subscription (authoritative positions),
- the drone events subscription (landing),
- the 1-second position tick and the 30-second ETA timer.

All of it runs as tasks on one event loop. Ticks never await anything, so a
slow store write can't stall the drone on the map; writes triggered by a
tick (delivery completion) run as separate fire-and-forget tasks.

External calls are wrapped: after the initial order fetch, a failing store,
geocoder or subscription degrades the view (stale or fallback values) but
never ends the session. The session ends on stop() or once the delivery is
completed or cancelled.
"""

from __future__ import annotations

import asyncio
import time
from collections import deque
from dataclasses import replace
from datetime import datetime, timezone
from typing import TYPE_CHECKING, AsyncIterator, Callable

import structlog

from dronetrack.config import TrackingConfig, WaypointConfig
from dronetrack.core.models import Coordinate, DroneEvent, DroneRecord, OrderRecord, resolve_reference
from dronetrack.core.phases import DeliveryPhase, PhaseDurations, PhaseStateMachine, get_preset
from dronetrack.core.reconciler import (
    DeliverySession,
    PositionReconciler,
    TickResult,
    infer_phase,
    recently_assigned,
)

if TYPE_CHECKING:
    from dronetrack.bus.base import RealtimeBus, Subscription
    from dronetrack.core.calculator import DeliveryCalculator
    from dronetrack.core.stats import TrackingStats
    from dronetrack.geocode.base import Geocoder
    from dronetrack.store.base import DroneStore, OrderStore, RestaurantStore

log = structlog.get_logger()

# A partial order update with one of these statuses but no drone reference
# can't be trusted on its own; the full order is re-fetched first.
REFETCH_STATUSES = frozenset({"ready", "delivering", "picked_up"})

# Snapshots buffered per listener before the oldest is dropped.
LISTENER_BACKLOG = 32


class SessionLoadError(Exception):
    """The initial order fetch failed, so the session never started."""


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TrackingSessionController:
    """Runs one order's tracking session. ``start`` once, ``stop`` any number of times."""

    def __init__(
        self,
        *,
        orders: OrderStore,
        drones: DroneStore,
        restaurants: RestaurantStore,
        bus: RealtimeBus,
        calculator: DeliveryCalculator,
        geocoder: Geocoder | None = None,
        tracking: TrackingConfig | None = None,
        waypoints: WaypointConfig | None = None,
        durations: PhaseDurations | None = None,
        stats: TrackingStats | None = None,
        clock: Callable[[], float] = time.monotonic,
        wall_clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._orders = orders
        self._drones = drones
        self._restaurants = restaurants
        self._bus = bus
        self._calculator = calculator
        self._geocoder = geocoder
        self._tracking = tracking or TrackingConfig()
        self._waypoints = waypoints or WaypointConfig()
        self._durations = durations or get_preset(self._tracking.phase_preset)
        self._stats = stats
        self._clock = clock
        self._wall_clock = wall_clock

        self._order: OrderRecord | None = None
        self._session: DeliverySession | None = None
        self._reconciler: PositionReconciler | None = None
        self._attached_drone: str | None = None
        self._position_sub: Subscription | None = None
        self._subscriptions: list[Subscription] = []
        self._tasks: list[asyncio.Task] = []
        self._background: set[asyncio.Task] = set()
        self._listeners: set[asyncio.Queue] = set()
        self._stop_callbacks: list[Callable[[TrackingSessionController], None]] = []
        self._started = False
        self._live = False
        self._stopped = False

    # -- public surface ---------------------------------------------------

    @property
    def order_id(self) -> str | None:
        return self._order.order_id if self._order else None

    @property
    def session(self) -> DeliverySession:
        if self._session is None:
            raise RuntimeError("session not started")
        return self._session

    @property
    def running(self) -> bool:
        return self._live and not self._stopped

    def add_stop_callback(self, callback: Callable[[TrackingSessionController], None]) -> None:
        """Call ``callback(self)`` once the session stops, however it stops."""
        self._stop_callbacks.append(callback)

    async def start(self, order_id: str) -> TrackingSessionController:
        """Load the order, resolve waypoints, subscribe and start the timers.

        Returns the controller itself as the session handle. Raises
        ``ValueError`` for an empty id and ``SessionLoadError`` when the
        order can't be fetched.
        """
        if not order_id:
            raise ValueError("order_id is required")
        if self._started or self._stopped:
            raise RuntimeError("session already started or stopped")

        try:
            order = await self._orders.get_order(order_id)
        except Exception as exc:
            log.warning("session_load_failed", order=order_id, exc_info=True)
            if self._stats is not None:
                self._stats.record_session_failed()
            raise SessionLoadError(f"unable to load order {order_id}") from exc

        self._started = True
        self._order = order
        self._session = DeliverySession(
            order_id=order_id,
            machine=PhaseStateMachine(self._durations),
            order_status=order.status,
            path=deque(maxlen=self._tracking.path_max_points),
        )
        self._reconciler = PositionReconciler(
            self._session,
            freshness_window=self._tracking.freshness_window_seconds,
            tick_seconds=self._tracking.tick_interval_seconds,
            min_step_m=self._tracking.path_min_step_m,
            clock=self._clock,
        )

        # Subscribe before the slower lookups so no update slips between them;
        # the queues hold anything that arrives until the consumers start.
        order_sub = self._subscribe(self._bus.subscribe_to_order, order_id)
        events_sub = self._subscribe(self._bus.subscribe_to_drone_events, order_id)

        await self._resolve_waypoints()
        await self._estimate()
        if order.drone_id:
            await self._attach_drone(order.drone_id)
        elif order.status == "delivered":
            self._reconciler.begin(DeliveryPhase.COMPLETED)
        self._refresh_eta()

        if self._stopped:
            # stop() ran while the lookups above were in flight.
            log.info("session_start_abandoned", order=order_id)
            return self

        if order_sub is not None:
            self._spawn(self._consume_orders(order_sub), "orders")
        if events_sub is not None:
            self._spawn(self._consume_events(events_sub), "events")
        self._spawn(self._run_ticks(), "ticks")
        self._spawn(self._run_eta(), "eta")

        self._live = True
        if self._stats is not None:
            self._stats.record_session_started()
        log.info("session_started", order=order_id, status=order.status,
                 drone=order.drone_id, phase=self._session.phase.value)
        if self._is_finished():
            await self.stop()
            return self
        self._publish()
        return self

    async def stop(self) -> None:
        """Detach every subscription and cancel every timer. Idempotent."""
        if self._stopped:
            return
        self._stopped = True

        for sub in self._subscriptions:
            sub.close()
        self._subscriptions.clear()
        self._position_sub = None

        current = asyncio.current_task()
        pending = [t for t in self._tasks if t is not current]
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        self._tasks.clear()

        for queue in list(self._listeners):
            self._offer(queue, None)

        if self._live and self._stats is not None:
            self._stats.record_session_stopped()
        log.info("session_stopped", order=self.order_id)

        for callback in self._stop_callbacks:
            callback(self)

    def snapshot(self) -> dict:
        """Current session state as a JSON-serializable dict."""
        return self.session.to_dict(realtime_active=self._reconciler.is_fresh())

    async def updates(self) -> AsyncIterator[dict]:
        """Yield the current snapshot, then one per change, until the session stops."""
        queue: asyncio.Queue = asyncio.Queue(maxsize=LISTENER_BACKLOG)
        self._listeners.add(queue)
        try:
            if self._session is not None:
                queue.put_nowait(self.snapshot())
            if self._stopped:
                queue.put_nowait(None)
            while True:
                item = await queue.get()
                if item is None:
                    return
                yield item
        finally:
            self._listeners.discard(queue)

    def tick(self) -> TickResult:
        """Run one reconciler tick and publish the result."""
        if self._order is not None and self._order.status == "cancelled":
            return TickResult("idle")

        result = self._reconciler.tick()
        if self._stats is not None:
            self._stats.record_tick(result.source)
        if result.entered is DeliveryPhase.COMPLETED:
            self._on_completed()
            self._finish_if_done()
        if result.source != "idle":
            self._publish()
        return result

    # -- task plumbing ----------------------------------------------------

    def _subscribe(self, factory: Callable[[str], Subscription], key: str) -> Subscription | None:
        if self._stopped:
            return None
        try:
            sub = factory(key)
        except Exception:
            # Subscription drop: the session keeps running without that stream.
            log.warning("subscribe_failed", key=key, exc_info=True)
            return None
        self._subscriptions.append(sub)
        return sub

    def _spawn(self, coro, name: str) -> asyncio.Task | None:
        if self._stopped:
            coro.close()
            return None
        task = asyncio.create_task(coro, name=f"tracking-{self.order_id}-{name}")
        self._tasks.append(task)
        return task

    def _fire_and_forget(self, coro) -> None:
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    def _offer(self, queue: asyncio.Queue, item: dict | None) -> None:
        if queue.full():
            queue.get_nowait()
        queue.put_nowait(item)

    def _publish(self) -> None:
        if not self._listeners or self._session is None:
            return
        snap = self.snapshot()
        for queue in list(self._listeners):
            self._offer(queue, snap)

    def _is_finished(self) -> bool:
        return self._session.phase is DeliveryPhase.COMPLETED or self._order.status == "cancelled"

    def _finish_if_done(self) -> None:
        """A completed or cancelled delivery has nothing left to follow: stop it."""
        if not self._live or self._stopped or not self._is_finished():
            return
        log.info("session_finished", order=self.order_id, phase=self._session.phase.value,
                 status=self._order.status)
        self._fire_and_forget(self.stop())

    # -- timers -----------------------------------------------------------

    async def _run_ticks(self) -> None:
        interval = self._tracking.tick_interval_seconds
        while True:
            await asyncio.sleep(interval)
            if self._is_finished():
                log.debug("tick_loop_finished", order=self.order_id)
                return
            try:
                self.tick()
            except Exception:
                log.error("tick_failed", order=self.order_id, exc_info=True)

    async def _run_eta(self) -> None:
        # start() has already computed the first value.
        interval = self._tracking.eta_refresh_seconds
        while True:
            await asyncio.sleep(interval)
            if self._order.is_terminal:
                log.debug("eta_loop_finished", order=self.order_id)
                return
            self._refresh_eta()
            self._publish()

    def _refresh_eta(self) -> None:
        if self._session.phase is DeliveryPhase.COMPLETED:
            self._session.eta_minutes = 0.0
            return
        eta_at = self._order.estimated_delivery_time
        if eta_at is None:
            return
        remaining = (eta_at - self._wall_clock()).total_seconds()
        self._session.eta_minutes = max(0.0, remaining / 60.0)

    # -- consumers --------------------------------------------------------

    async def _consume_orders(self, sub: Subscription) -> None:
        async for update in sub:
            try:
                await self._on_order_update(update)
            except Exception:
                log.error("order_update_failed", order=self.order_id, exc_info=True)

    async def _consume_positions(self, sub: Subscription) -> None:
        async for position in sub:
            coord = Coordinate.maybe(position.get("latitude"), position.get("longitude"))
            if coord is None:
                continue
            self._reconciler.push_realtime(coord)
            if self._stats is not None:
                self._stats.record_realtime_update()
            self._publish()

    async def _consume_events(self, sub: Subscription) -> None:
        async for payload in sub:
            event = DroneEvent.from_payload(payload)
            if self._stats is not None:
                self._stats.record_drone_event()
            log.debug("drone_event_received", order=self.order_id, event_type=event.event_type)
            if event.event_type == "landing":
                self._session.eta_minutes = 0.0
                self._publish()

    # -- order handling ---------------------------------------------------

    async def _on_order_update(self, update: dict) -> None:
        status = update.get("status")
        refetched = False
        if not resolve_reference(update.get("drone_id")) and status in REFETCH_STATUSES:
            # Realtime payloads may omit the drone; only the stored order is trusted.
            try:
                order = await self._orders.get_order(self._order.order_id)
                refetched = True
                log.info("order_refetched", order=order.order_id, status=order.status,
                         drone=order.drone_id)
            except Exception:
                log.warning("order_refetch_failed", order=self.order_id, exc_info=True)
                order = self._order.merged(update)
        else:
            order = self._order.merged(update)

        if self._stats is not None:
            self._stats.record_order_update(refetched=refetched)

        self._order = order
        self._session.order_status = order.status
        inferred = False
        if order.drone_id and order.drone_id != self._attached_drone:
            # An idle session infers its phase from this same status on attach.
            inferred = self._session.phase is DeliveryPhase.IDLE
            await self._attach_drone(order.drone_id)
        if not inferred:
            self._apply_status(order)

        if self._session.restaurant is None or self._session.customer is None:
            await self._resolve_waypoints()
            await self._estimate()
        self._refresh_eta()
        self._publish()
        self._finish_if_done()

    def _apply_status(self, order: OrderRecord) -> None:
        status = order.status
        if status in ("ready", "preparing"):
            if order.drone_id:
                self._reconciler.force(DeliveryPhase.TO_RESTAURANT)
        elif status == "picked_up":
            log.info("order_picked_up", order=order.order_id)
        elif status == "delivering":
            self._reconciler.force(DeliveryPhase.TO_CUSTOMER)
        elif status == "delivered":
            self._reconciler.force(DeliveryPhase.COMPLETED)
            self._detach_position()
        elif status == "cancelled":
            log.info("order_cancelled", order=order.order_id)
            self._detach_position()

    # -- waypoints --------------------------------------------------------

    async def _resolve_waypoints(self) -> None:
        s = self._session
        order = self._order

        if s.restaurant is None and order.restaurant_id:
            try:
                restaurant = await self._restaurants.get_restaurant(order.restaurant_id)
                s.restaurant = restaurant.coordinate
            except Exception:
                log.warning("restaurant_lookup_failed", order=order.order_id,
                            restaurant=order.restaurant_id, exc_info=True)

        if s.customer is None:
            s.customer = await self._resolve_customer(order)

    async def _resolve_customer(self, order: OrderRecord) -> Coordinate:
        if order.delivery_coordinate is not None:
            return order.delivery_coordinate

        if order.delivery_address and self._geocoder is not None:
            try:
                return await self._geocoder.geocode(order.delivery_address)
            except Exception:
                log.warning("customer_geocoding_failed", order=order.order_id, exc_info=True)
                if self._stats is not None:
                    self._stats.record_geocode_failure()

        w = self._waypoints
        log.info("customer_fallback_location", order=order.order_id)
        return Coordinate(w.fallback_latitude, w.fallback_longitude)

    async def _estimate(self) -> None:
        s = self._session
        if s.estimate is not None or s.restaurant is None:
            return
        if self._order.delivery_coordinate is not None:
            s.estimate = self._calculator.calculate(s.restaurant, self._order.delivery_coordinate)
        elif self._order.delivery_address:
            s.estimate = await self._calculator.calculate_from_address(
                s.restaurant, self._order.delivery_address,
            )

    def _resolve_hub(self, drone: DroneRecord | None) -> Coordinate:
        if drone is not None:
            if drone.hub is not None:
                return drone.hub.coordinate
            if drone.home_coordinate is not None:
                return drone.home_coordinate
            if drone.current_coordinate is not None:
                return drone.current_coordinate

        w = self._waypoints
        restaurant = self._session.restaurant
        if restaurant is not None:
            return Coordinate(restaurant.latitude + w.hub_offset_deg,
                              restaurant.longitude - w.hub_offset_deg)
        return Coordinate(w.hub_latitude, w.hub_longitude)

    # -- drone ------------------------------------------------------------

    async def _attach_drone(self, drone_id: str) -> None:
        """Load the assigned drone, work out where the delivery stands, follow it."""
        s = self._session
        self._attached_drone = drone_id
        s.drone_id = drone_id

        try:
            drone = await self._drones.get_drone(drone_id)
        except Exception:
            log.warning("drone_lookup_failed", drone=drone_id, exc_info=True)
            drone = None

        s.hub = self._resolve_hub(drone)
        reported = drone.current_coordinate if drone is not None else None

        if s.phase is DeliveryPhase.IDLE:
            phase = infer_phase(
                self._order.status,
                reported,
                s.hub,
                s.restaurant,
                epsilon_deg=self._tracking.reconnect_epsilon_deg,
                recently_assigned=recently_assigned(
                    self._order.assigned_at,
                    self._wall_clock(),
                    self._tracking.recent_assignment_seconds,
                ),
            )
            self._reconciler.begin(phase, reported)
            log.info("session_phase_inferred", order=s.order_id, status=self._order.status,
                     phase=phase.value)

        if self._order.is_terminal:
            return

        self._detach_position()
        sub = self._subscribe(self._bus.subscribe_to_drone_position, drone_id)
        if sub is not None:
            self._position_sub = sub
            if self._started and not self._stopped:
                self._spawn(self._consume_positions(sub), "positions")

    def _detach_position(self) -> None:
        sub = self._position_sub
        if sub is None:
            return
        self._position_sub = None
        sub.close()
        if sub in self._subscriptions:
            self._subscriptions.remove(sub)

    # -- completion -------------------------------------------------------

    def _on_completed(self) -> None:
        """Local state flips to delivered at once; persisting it is best-effort."""
        self._order = replace(self._order, status="delivered")
        self._session.order_status = "delivered"
        self._session.eta_minutes = 0.0
        self._detach_position()
        if self._stats is not None:
            self._stats.record_delivery_completed()
        log.info("delivery_completed", order=self.order_id, drone=self._attached_drone)
        self._fire_and_forget(self._persist_completion(self._order.order_id, self._attached_drone))

    async def _persist_completion(self, order_id: str, drone_id: str | None) -> None:
        try:
            await self._orders.update_order_status(order_id, "delivered")
        except Exception:
            log.warning("completion_write_failed", order=order_id, target="order", exc_info=True)
            if self._stats is not None:
                self._stats.record_side_effect_failure()

        if drone_id is None:
            return
        try:
            await self._drones.update_drone(drone_id, {"status": "available", "assigned_order_id": None})
        except Exception:
            log.warning("completion_write_failed", drone=drone_id, target="drone", exc_info=True)
            if self._stats is not None:
                self._stats.record_side_effect_failure()
