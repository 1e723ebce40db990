"""Tests for the in-memory document store and record normalization."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from dronetrack.bus.asyncio_bus import AsyncioRealtimeBus
from dronetrack.core.models import OrderRecord, parse_timestamp, resolve_reference
from dronetrack.store.base import DocumentNotFound
from dronetrack.store.memory_store import MemoryDocumentStore


@pytest.mark.parametrize("value, expected", [
    ("drone-1", "drone-1"),
    ({"id": "drone-1"}, "drone-1"),
    ({"$id": "drone-1", "name": "Falcon"}, "drone-1"),
    ([{"$id": "drone-1"}], "drone-1"),
    (["drone-1", "drone-2"], "drone-1"),
    ([], None),
    ("", None),
    (None, None),
    (42, None),
])
def test_resolve_reference(value, expected):
    assert resolve_reference(value) == expected


def test_parse_timestamp():
    assert parse_timestamp("2025-03-01T12:00:00Z") == datetime(2025, 3, 1, 12, tzinfo=timezone.utc)
    assert parse_timestamp("2025-03-01T12:00:00").tzinfo is not None
    assert parse_timestamp("not a date") is None
    assert parse_timestamp(None) is None


def test_order_from_document_normalizes_fields():
    order = OrderRecord.from_document({
        "id": "order-1",
        "status": "ready",
        "drone_id": {"$id": "drone-1"},
        "restaurant_id": ["rest-1"],
        "delivery_latitude": "10.75",
        "delivery_longitude": 106.65,
        "estimated_delivery_time": "2025-03-01T12:30:00Z",
    })
    assert order.drone_id == "drone-1"
    assert order.restaurant_id == "rest-1"
    assert order.delivery_coordinate.latitude == 10.75
    assert order.estimated_delivery_time.minute == 30


def test_merged_keeps_fields_missing_from_update():
    order = OrderRecord(order_id="order-1", status="ready", drone_id="drone-1")
    merged = order.merged({"status": "delivering", "drone_id": None})
    assert merged.status == "delivering"
    assert merged.drone_id == "drone-1"


@pytest.mark.asyncio
async def test_get_unknown_order_raises():
    store = MemoryDocumentStore()
    with pytest.raises(DocumentNotFound):
        await store.get_order("nope")


@pytest.mark.asyncio
async def test_drone_hub_loaded_by_id():
    store = MemoryDocumentStore()
    store.put("hubs", "hub-1", {"name": "Hub", "latitude": 10.1, "longitude": 106.1})
    store.put("drones", "drone-1", {"hub": {"$id": "hub-1"}})
    drone = await store.get_drone("drone-1")
    assert drone.hub.hub_id == "hub-1"
    assert drone.hub.coordinate.latitude == 10.1


@pytest.mark.asyncio
async def test_embedded_hub_used_as_is():
    store = MemoryDocumentStore()
    store.put("drones", "drone-1", {"hub": {"id": "hub-x", "latitude": 10.2, "longitude": 106.2}})
    drone = await store.get_drone("drone-1")
    assert drone.hub.coordinate.longitude == 106.2


@pytest.mark.asyncio
async def test_dangling_hub_reference_dropped():
    store = MemoryDocumentStore()
    store.put("drones", "drone-1", {"hub": "hub-gone", "home_latitude": 10.0, "home_longitude": 106.0})
    drone = await store.get_drone("drone-1")
    assert drone.hub is None
    assert drone.home_coordinate is not None


@pytest.mark.asyncio
async def test_order_patch_publishes_only_changes():
    bus = AsyncioRealtimeBus()
    store = MemoryDocumentStore(bus=bus)
    store.put("orders", "order-1", {"status": "ready", "drone_id": "drone-1"})
    sub = bus.subscribe_to_order("order-1")

    await store.update_order_status("order-1", "delivering")
    async for update in sub:
        assert update == {"status": "delivering"}
        break
    assert store.get("orders", "order-1")["drone_id"] == "drone-1"


@pytest.mark.asyncio
async def test_drone_update_publishes_position():
    bus = AsyncioRealtimeBus()
    store = MemoryDocumentStore(bus=bus)
    store.put("drones", "drone-1", {"status": "busy"})
    sub = bus.subscribe_to_drone_position("drone-1")

    await store.update_drone("drone-1", {"current_latitude": 10.5, "current_longitude": 106.5})
    async for position in sub:
        assert position["latitude"] == 10.5
        break


@pytest.mark.asyncio
async def test_update_unknown_drone_raises():
    store = MemoryDocumentStore()
    with pytest.raises(DocumentNotFound):
        await store.update_drone("ghost", {"status": "available"})


def test_load_seed(tmp_path):
    seed = tmp_path / "seed.yaml"
    seed.write_text(
        "restaurants:\n"
        "  - id: rest-1\n"
        "    latitude: 10.7769\n"
        "    longitude: 106.7009\n"
        "orders:\n"
        "  - id: order-1\n"
        "    status: ready\n"
        "  - status: orphan\n"
    )
    store = MemoryDocumentStore()
    assert store.load_seed(seed) == 2
    assert store.count("orders") == 1
    assert store.count("restaurants") == 1
