"""Document write endpoints.

Stand-in for the hosted document database's write API: admin tools and the
delivery simulator create orders, drones, hubs and restaurants here, move
drones and raise drone events. Every write is broadcast on the realtime bus
by the store, which is what running tracking sessions react to.
"""

from __future__ import annotations

from datetime import datetime
from typing import Literal, Optional

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from dronetrack.store.base import DocumentNotFound

router = APIRouter(prefix="/api/v1")

OrderStatus = Literal["pending", "preparing", "ready", "picked_up", "delivering", "delivered", "cancelled"]


class OrderDocument(BaseModel):
    status: OrderStatus = "pending"
    restaurant_id: Optional[str] = None
    drone_id: Optional[str] = None
    delivery_address: str = ""
    delivery_latitude: Optional[float] = None
    delivery_longitude: Optional[float] = None
    estimated_delivery_time: Optional[datetime] = None
    assigned_at: Optional[datetime] = None


class OrderPatch(BaseModel):
    status: Optional[OrderStatus] = None
    restaurant_id: Optional[str] = None
    drone_id: Optional[str] = None
    delivery_address: Optional[str] = None
    delivery_latitude: Optional[float] = None
    delivery_longitude: Optional[float] = None
    estimated_delivery_time: Optional[datetime] = None
    assigned_at: Optional[datetime] = None


class DroneDocument(BaseModel):
    status: str = "available"
    current_latitude: Optional[float] = None
    current_longitude: Optional[float] = None
    home_latitude: Optional[float] = None
    home_longitude: Optional[float] = None
    hub: Optional[str] = None
    battery_level: Optional[float] = Field(default=None, ge=0, le=100)
    assigned_order_id: Optional[str] = None


class DronePatch(BaseModel):
    status: Optional[str] = None
    hub: Optional[str] = None
    battery_level: Optional[float] = Field(default=None, ge=0, le=100)
    assigned_order_id: Optional[str] = None


class PositionUpdate(BaseModel):
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)
    battery_level: Optional[float] = Field(default=None, ge=0, le=100)


class DroneEventIn(BaseModel):
    event_type: str
    order_id: str
    latitude: Optional[float] = None
    longitude: Optional[float] = None


class PlaceDocument(BaseModel):
    name: str = ""
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)


def _not_found(exc: DocumentNotFound) -> JSONResponse:
    return JSONResponse({"error": str(exc)}, status_code=404)


@router.put("/orders/{order_id}")
async def put_order(order_id: str, body: OrderDocument) -> dict:
    from dronetrack.main import get_store

    return get_store().put("orders", order_id, body.model_dump())


@router.patch("/orders/{order_id}")
async def patch_order(order_id: str, body: OrderPatch):
    """Apply a partial update. Only the fields sent are broadcast."""
    from dronetrack.main import get_store

    try:
        return get_store().patch("orders", order_id, body.model_dump(exclude_unset=True))
    except DocumentNotFound as exc:
        return _not_found(exc)


@router.put("/drones/{drone_id}")
async def put_drone(drone_id: str, body: DroneDocument) -> dict:
    from dronetrack.main import get_store

    return get_store().put("drones", drone_id, body.model_dump())


@router.patch("/drones/{drone_id}")
async def patch_drone(drone_id: str, body: DronePatch):
    from dronetrack.main import get_store

    try:
        return get_store().patch("drones", drone_id, body.model_dump(exclude_unset=True))
    except DocumentNotFound as exc:
        return _not_found(exc)


@router.post("/drones/{drone_id}/position")
async def update_position(drone_id: str, body: PositionUpdate):
    """Move a drone. Sessions following it get the position pushed."""
    from dronetrack.main import get_store

    fields = {"current_latitude": body.latitude, "current_longitude": body.longitude}
    if body.battery_level is not None:
        fields["battery_level"] = body.battery_level
    try:
        await get_store().update_drone(drone_id, fields)
    except DocumentNotFound as exc:
        return _not_found(exc)
    return {"ok": True}


@router.post("/drones/{drone_id}/events")
async def post_drone_event(drone_id: str, body: DroneEventIn) -> dict:
    from dronetrack.main import get_store

    event = body.model_dump()
    event["drone_id"] = drone_id
    return get_store().add_drone_event(event)


@router.put("/restaurants/{restaurant_id}")
async def put_restaurant(restaurant_id: str, body: PlaceDocument) -> dict:
    from dronetrack.main import get_store

    return get_store().put("restaurants", restaurant_id, body.model_dump())


@router.put("/hubs/{hub_id}")
async def put_hub(hub_id: str, body: PlaceDocument) -> dict:
    from dronetrack.main import get_store

    return get_store().put("hubs", hub_id, body.model_dump())
