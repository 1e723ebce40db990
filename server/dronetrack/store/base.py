"""Store interfaces (ports) for the order, drone and restaurant documents.

Implementations normalize raw documents into core records on the way out,
so relationship fields are always plain ids by the time the core sees them.
"""

from __future__ import annotations

from typing import Protocol, TYPE_CHECKING

if TYPE_CHECKING:
    from dronetrack.core.models import DroneRecord, OrderRecord, RestaurantRecord


class DocumentNotFound(Exception):
    """No document with the requested id."""

    def __init__(self, collection: str, doc_id: str) -> None:
        super().__init__(f"{collection}/{doc_id} not found")
        self.collection = collection
        self.doc_id = doc_id


class OrderStore(Protocol):
    """Port: reads orders and writes their status."""

    async def get_order(self, order_id: str) -> OrderRecord: ...

    async def update_order_status(self, order_id: str, status: str) -> None: ...


class DroneStore(Protocol):
    """Port: reads drones (with their hub) and patches drone fields."""

    async def get_drone(self, drone_id: str) -> DroneRecord: ...

    async def update_drone(self, drone_id: str, fields: dict) -> None: ...


class RestaurantStore(Protocol):
    """Port: reads restaurant locations."""

    async def get_restaurant(self, restaurant_id: str) -> RestaurantRecord: ...
