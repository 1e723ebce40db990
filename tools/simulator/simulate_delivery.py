#!/usr/bin/env python3
"""dronetrack delivery simulator.

Flies one drone through a full delivery against a running server, the way
the admin dashboard's simulator does: hub → restaurant → customer on a fixed
schedule, one position write per second, with the order status moved along
as the drone goes.

    to_restaurant 20s → picking_up 5s → to_customer 30s → delivering 3s

Status writes: picked_up on reaching the restaurant, delivering on leaving
it, delivered at the end. The drone is then freed (available, no order).

Usage:
    # Seed a demo order, drone and restaurant, then fly it
    python -m tools.simulator.simulate_delivery --server http://localhost:8000 --seed

    # Fly an existing order
    python -m tools.simulator.simulate_delivery --order order-1 --drone drone-1 \
        --restaurant 10.7769,106.7009 --customer 10.7626,106.6602

    # Faster run for demos
    python -m tools.simulator.simulate_delivery --seed --speed 4
"""

from __future__ import annotations

import argparse
import asyncio
import random
import time
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta, timezone

import httpx

from dronetrack.core.phases import PRESETS

# Seconds per phase, in flight order. Stationary phases keep the drone where it is.
PHASE_DURATIONS = asdict(PRESETS["simulator"])

# Order status written when the drone leaves each phase.
STATUS_ON_EXIT = {
    "to_restaurant": "picked_up",
    "picking_up": "delivering",
    "delivering": "delivered",
}

DEFAULT_HUB = (10.7587229, 106.682131)


@dataclass
class SimDelivery:
    order_id: str
    drone_id: str
    hub: tuple[float, float]
    restaurant: tuple[float, float]
    customer: tuple[float, float]
    positions_sent: int = 0
    errors: int = 0


def interpolate(a: tuple[float, float], b: tuple[float, float], progress: float) -> tuple[float, float]:
    """Straight-line point between two lat/lon pairs, progress in [0, 1]."""
    return (a[0] + (b[0] - a[0]) * progress, a[1] + (b[1] - a[1]) * progress)


def parse_point(value: str) -> tuple[float, float]:
    lat, lon = value.split(",")
    return (float(lat), float(lon))


async def seed_delivery(client: httpx.AsyncClient, server: str, sim: SimDelivery) -> None:
    """Create the restaurant, drone and order the simulation needs."""
    now = datetime.now(timezone.utc)
    eta = now + timedelta(seconds=sum(PHASE_DURATIONS.values()))

    await client.put(f"{server}/api/v1/restaurants/sim-restaurant", json={
        "name": "Simulated Kitchen",
        "latitude": sim.restaurant[0],
        "longitude": sim.restaurant[1],
    })
    await client.put(f"{server}/api/v1/drones/{sim.drone_id}", json={
        "status": "busy",
        "current_latitude": sim.hub[0],
        "current_longitude": sim.hub[1],
        "home_latitude": sim.hub[0],
        "home_longitude": sim.hub[1],
        "battery_level": 100,
        "assigned_order_id": sim.order_id,
    })
    resp = await client.put(f"{server}/api/v1/orders/{sim.order_id}", json={
        "status": "ready",
        "restaurant_id": "sim-restaurant",
        "drone_id": sim.drone_id,
        "delivery_latitude": sim.customer[0],
        "delivery_longitude": sim.customer[1],
        "estimated_delivery_time": eta.isoformat(),
        "assigned_at": now.isoformat(),
    })
    resp.raise_for_status()
    print(f"Seeded order {sim.order_id} with drone {sim.drone_id}")


async def send_position(client: httpx.AsyncClient, server: str, sim: SimDelivery,
                        position: tuple[float, float]) -> None:
    try:
        resp = await client.post(
            f"{server}/api/v1/drones/{sim.drone_id}/position",
            json={"latitude": position[0], "longitude": position[1]},
        )
        if resp.status_code == 200:
            sim.positions_sent += 1
        else:
            sim.errors += 1
    except httpx.RequestError:
        sim.errors += 1


async def update_order_status(client: httpx.AsyncClient, server: str, sim: SimDelivery,
                              status: str) -> None:
    try:
        resp = await client.patch(f"{server}/api/v1/orders/{sim.order_id}", json={"status": status})
        resp.raise_for_status()
        print(f"  order → {status}")
    except httpx.HTTPError as exc:
        sim.errors += 1
        print(f"  order status update failed: {exc}")


async def free_drone(client: httpx.AsyncClient, server: str, sim: SimDelivery) -> None:
    try:
        resp = await client.patch(f"{server}/api/v1/drones/{sim.drone_id}", json={
            "status": "available",
            "assigned_order_id": None,
            "battery_level": random.randint(40, 80),
        })
        resp.raise_for_status()
        print(f"  drone {sim.drone_id} freed")
    except httpx.HTTPError as exc:
        sim.errors += 1
        print(f"  freeing drone failed: {exc}")


async def run_delivery(client: httpx.AsyncClient, server: str, sim: SimDelivery, speed: float) -> None:
    """Fly every phase in order, writing one position per (scaled) second."""
    interval = 1.0 / speed
    position = sim.hub

    for phase, duration in PHASE_DURATIONS.items():
        print(f"Phase {phase} ({duration}s)")
        if phase == "to_restaurant":
            segment = (sim.hub, sim.restaurant)
        elif phase == "to_customer":
            segment = (sim.restaurant, sim.customer)
        else:
            segment = None

        if phase == "delivering":
            await client.post(
                f"{server}/api/v1/drones/{sim.drone_id}/events",
                json={"event_type": "landing", "order_id": sim.order_id,
                      "latitude": position[0], "longitude": position[1]},
            )

        steps = max(1, round(duration))
        for second in range(1, steps + 1):
            if segment is not None:
                position = interpolate(segment[0], segment[1], second / steps)
            await send_position(client, server, sim, position)
            await asyncio.sleep(interval)

        status = STATUS_ON_EXIT.get(phase)
        if status is not None:
            await update_order_status(client, server, sim, status)

    await free_drone(client, server, sim)


async def run_simulation(args: argparse.Namespace) -> None:
    sim = SimDelivery(
        order_id=args.order,
        drone_id=args.drone,
        hub=args.hub,
        restaurant=args.restaurant,
        customer=args.customer,
    )

    total = sum(PHASE_DURATIONS.values())
    print(f"Starting delivery simulation: order {sim.order_id}, drone {sim.drone_id}")
    print(f"  Hub: {sim.hub[0]:.4f}, {sim.hub[1]:.4f}")
    print(f"  Restaurant: {sim.restaurant[0]:.4f}, {sim.restaurant[1]:.4f}")
    print(f"  Customer: {sim.customer[0]:.4f}, {sim.customer[1]:.4f}")
    print(f"  Duration: {total}s at {args.speed}x")
    print(f"  Server: {args.server}")
    print()

    start = time.monotonic()
    async with httpx.AsyncClient(timeout=10.0) as client:
        if args.seed:
            await seed_delivery(client, args.server, sim)
        await run_delivery(client, args.server, sim, args.speed)

        elapsed = time.monotonic() - start
        print(f"\nSimulation complete in {elapsed:.1f}s")
        print(f"  Positions sent: {sim.positions_sent}")
        print(f"  Errors: {sim.errors}")

        try:
            resp = await client.get(f"{args.server}/api/v1/stats")
            if resp.status_code == 200:
                stats = resp.json()
                print("\nServer stats:")
                print(f"  Realtime updates: {stats['realtime_updates']}")
                print(f"  Ticks: {stats['ticks']}")
                print(f"  Deliveries completed: {stats['deliveries_completed']}")
        except httpx.HTTPError:
            print("\nServer stats unavailable")


def main():
    parser = argparse.ArgumentParser(description="dronetrack delivery simulator")
    parser.add_argument("--server", default="http://localhost:8000", help="Server URL")
    parser.add_argument("--order", default="sim-order", help="Order id")
    parser.add_argument("--drone", default="sim-drone", help="Drone id")
    parser.add_argument("--hub", type=str, default=f"{DEFAULT_HUB[0]},{DEFAULT_HUB[1]}",
                        help="Hub lat,lon")
    parser.add_argument("--restaurant", type=str, default="10.7769,106.7009",
                        help="Restaurant lat,lon")
    parser.add_argument("--customer", type=str, default="10.762622,106.660172",
                        help="Customer lat,lon")
    parser.add_argument("--speed", type=float, default=1.0,
                        help="Time multiplier (default: real time)")
    parser.add_argument("--seed", action="store_true",
                        help="Create the order, drone and restaurant first")

    args = parser.parse_args()
    args.hub = parse_point(args.hub)
    args.restaurant = parse_point(args.restaurant)
    args.customer = parse_point(args.customer)

    asyncio.run(run_simulation(args))


if __name__ == "__main__":
    main()
