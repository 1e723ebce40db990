"""Shared test fixtures."""

from __future__ import annotations

import asyncio

import pytest
from httpx import ASGITransport, AsyncClient

import dronetrack.main as main_module
from dronetrack.bus.asyncio_bus import AsyncioRealtimeBus
from dronetrack.config import AppConfig
from dronetrack.core.calculator import DeliveryCalculator
from dronetrack.core.models import Coordinate
from dronetrack.core.stats import TrackingStats
from dronetrack.geocode.offline import OfflineGeocoder
from dronetrack.store.memory_store import MemoryDocumentStore

HUB = Coordinate(10.7587229, 106.682131)
RESTAURANT = Coordinate(10.7769, 106.7009)
CUSTOMER = Coordinate(10.7500, 106.6500)


async def settle() -> None:
    """Let consumer tasks process whatever has been published."""
    for _ in range(10):
        await asyncio.sleep(0)


class FakeClock:
    """Monotonic clock the tests move by hand."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def seed_delivery(store: MemoryDocumentStore, *, status: str = "ready", drone_at: Coordinate = HUB,
                  with_drone: bool = True, **order_fields) -> None:
    """Restaurant, hub, drone and order "order-1" in the given status."""
    store.put("hubs", "hub-1", {"name": "Hub", "latitude": HUB.latitude, "longitude": HUB.longitude})
    store.put("restaurants", "rest-1", {
        "name": "Pho Corner",
        "latitude": RESTAURANT.latitude,
        "longitude": RESTAURANT.longitude,
    })
    store.put("drones", "drone-1", {
        "status": "busy",
        "current_latitude": drone_at.latitude,
        "current_longitude": drone_at.longitude,
        "hub": "hub-1",
        "battery_level": 90,
        "assigned_order_id": "order-1",
    })
    order = {
        "status": status,
        "restaurant_id": "rest-1",
        "drone_id": "drone-1" if with_drone else None,
        "delivery_address": "227 Nguyen Van Cu",
        "delivery_latitude": CUSTOMER.latitude,
        "delivery_longitude": CUSTOMER.longitude,
    }
    order.update(order_fields)
    store.put("orders", "order-1", order)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture(autouse=True)
def _init_server():
    """Initialize server singletons for every test."""
    config = AppConfig()
    config.logging.level = "warning"
    # Long intervals: tests drive ticks by hand.
    config.tracking.tick_interval_seconds = 3600.0
    config.tracking.eta_refresh_seconds = 3600.0

    stats = TrackingStats()
    bus = AsyncioRealtimeBus()
    store = MemoryDocumentStore(bus=bus)
    geocoder = OfflineGeocoder({"227 Nguyen Van Cu": CUSTOMER})
    calculator = DeliveryCalculator(config.pricing, geocoder=geocoder, stats=stats)

    # Patch module-level singletons
    main_module._config = config
    main_module._stats = stats
    main_module._bus = bus
    main_module._store = store
    main_module._geocoder = geocoder
    main_module._calculator = calculator
    main_module._registry = main_module.make_registry(config, store, bus, calculator, geocoder, stats)

    yield

    # Cleanup
    main_module._config = None
    main_module._stats = None
    main_module._bus = None
    main_module._store = None
    main_module._geocoder = None
    main_module._calculator = None
    main_module._registry = None


@pytest.fixture
async def client():
    from dronetrack.main import app

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
        await main_module.get_registry().close_all()
