"""dronetrack — core internal data models.

These are plain dataclasses with no framework dependencies.
Store documents are converted to these at the store boundary, so the core
never has to care how the document store shaped a field.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any

# Order statuses after which nothing about the delivery changes any more.
TERMINAL_STATUSES = frozenset({"delivered", "cancelled"})


def resolve_reference(value: Any) -> str | None:
    """Normalize a relationship field to a plain document id.

    The document store hands relationships back as a bare id, an embedded
    document (``{"id": ...}`` or ``{"$id": ...}``), or a list of either.
    """
    if value is None:
        return None
    if isinstance(value, str):
        return value or None
    if isinstance(value, dict):
        ref = value.get("id") or value.get("$id")
        return str(ref) if ref else None
    if isinstance(value, (list, tuple)):
        return resolve_reference(value[0]) if value else None
    return None


def parse_timestamp(value: Any) -> datetime | None:
    """Parse an ISO-8601 string (or pass through a datetime) as UTC-aware."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        try:
            dt = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except ValueError:
            return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def _float_or_none(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


@dataclass(frozen=True)
class Coordinate:
    latitude: float
    longitude: float

    @classmethod
    def maybe(cls, latitude: Any, longitude: Any) -> Coordinate | None:
        """Build a coordinate only when both parts are present and numeric."""
        lat = _float_or_none(latitude)
        lng = _float_or_none(longitude)
        if lat is None or lng is None:
            return None
        return cls(lat, lng)

    def to_dict(self) -> dict:
        return {"latitude": self.latitude, "longitude": self.longitude}


@dataclass(frozen=True)
class DeliveryEstimate:
    distance_km: float
    delivery_minutes: float
    total_minutes: float
    shipping_cost: int

    @property
    def formatted_distance(self) -> str:
        return f"{self.distance_km} km"

    @property
    def formatted_time(self) -> str:
        minutes = self.total_minutes
        return f"{int(minutes) if float(minutes).is_integer() else minutes} min"

    @property
    def formatted_cost(self) -> str:
        return f"{self.shipping_cost:,} VND".replace(",", ".")

    def to_dict(self) -> dict:
        return {
            "distance_km": self.distance_km,
            "delivery_minutes": self.delivery_minutes,
            "total_minutes": self.total_minutes,
            "shipping_cost": self.shipping_cost,
            "formatted_distance": self.formatted_distance,
            "formatted_time": self.formatted_time,
            "formatted_cost": self.formatted_cost,
        }


@dataclass(frozen=True)
class OrderRecord:
    order_id: str
    status: str = "pending"
    restaurant_id: str | None = None
    drone_id: str | None = None
    delivery_address: str = ""
    delivery_latitude: float | None = None
    delivery_longitude: float | None = None
    estimated_delivery_time: datetime | None = None
    assigned_at: datetime | None = None

    @classmethod
    def from_document(cls, doc: dict) -> OrderRecord:
        return cls(
            order_id=str(doc.get("id", "")),
            status=doc.get("status") or "pending",
            restaurant_id=resolve_reference(doc.get("restaurant_id")),
            drone_id=resolve_reference(doc.get("drone_id")),
            delivery_address=doc.get("delivery_address") or "",
            delivery_latitude=_float_or_none(doc.get("delivery_latitude")),
            delivery_longitude=_float_or_none(doc.get("delivery_longitude")),
            estimated_delivery_time=parse_timestamp(doc.get("estimated_delivery_time")),
            assigned_at=parse_timestamp(doc.get("assigned_at")),
        )

    def merged(self, partial: dict) -> OrderRecord:
        """Return a copy with the fields present in a partial update applied."""
        changes: dict[str, Any] = {}
        if partial.get("status"):
            changes["status"] = partial["status"]
        if "restaurant_id" in partial and resolve_reference(partial["restaurant_id"]):
            changes["restaurant_id"] = resolve_reference(partial["restaurant_id"])
        if "drone_id" in partial and resolve_reference(partial["drone_id"]):
            changes["drone_id"] = resolve_reference(partial["drone_id"])
        if partial.get("delivery_address"):
            changes["delivery_address"] = partial["delivery_address"]
        for key in ("delivery_latitude", "delivery_longitude"):
            if key in partial and _float_or_none(partial[key]) is not None:
                changes[key] = _float_or_none(partial[key])
        for key in ("estimated_delivery_time", "assigned_at"):
            if key in partial and parse_timestamp(partial[key]) is not None:
                changes[key] = parse_timestamp(partial[key])
        return replace(self, **changes)

    @property
    def delivery_coordinate(self) -> Coordinate | None:
        return Coordinate.maybe(self.delivery_latitude, self.delivery_longitude)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


@dataclass(frozen=True)
class HubRecord:
    hub_id: str
    name: str
    latitude: float
    longitude: float

    @classmethod
    def from_document(cls, doc: dict) -> HubRecord | None:
        coord = Coordinate.maybe(doc.get("latitude"), doc.get("longitude"))
        if coord is None:
            return None
        return cls(
            hub_id=str(doc.get("id", "")),
            name=doc.get("name") or "Drone Hub",
            latitude=coord.latitude,
            longitude=coord.longitude,
        )

    @property
    def coordinate(self) -> Coordinate:
        return Coordinate(self.latitude, self.longitude)


@dataclass(frozen=True)
class DroneRecord:
    drone_id: str
    status: str = "available"
    current_latitude: float | None = None
    current_longitude: float | None = None
    home_latitude: float | None = None
    home_longitude: float | None = None
    hub: HubRecord | None = None
    battery_level: float | None = None

    @classmethod
    def from_document(cls, doc: dict, hub: HubRecord | None = None) -> DroneRecord:
        return cls(
            drone_id=str(doc.get("id", "")),
            status=doc.get("status") or "available",
            current_latitude=_float_or_none(doc.get("current_latitude")),
            current_longitude=_float_or_none(doc.get("current_longitude")),
            home_latitude=_float_or_none(doc.get("home_latitude")),
            home_longitude=_float_or_none(doc.get("home_longitude")),
            hub=hub,
            battery_level=_float_or_none(doc.get("battery_level")),
        )

    @property
    def current_coordinate(self) -> Coordinate | None:
        return Coordinate.maybe(self.current_latitude, self.current_longitude)

    @property
    def home_coordinate(self) -> Coordinate | None:
        return Coordinate.maybe(self.home_latitude, self.home_longitude)


@dataclass(frozen=True)
class RestaurantRecord:
    restaurant_id: str
    name: str = ""
    latitude: float | None = None
    longitude: float | None = None

    @classmethod
    def from_document(cls, doc: dict) -> RestaurantRecord:
        return cls(
            restaurant_id=str(doc.get("id", "")),
            name=doc.get("name") or "",
            latitude=_float_or_none(doc.get("latitude")),
            longitude=_float_or_none(doc.get("longitude")),
        )

    @property
    def coordinate(self) -> Coordinate | None:
        return Coordinate.maybe(self.latitude, self.longitude)


@dataclass(frozen=True)
class DroneEvent:
    event_type: str
    order_id: str | None = None
    drone_id: str | None = None
    latitude: float | None = None
    longitude: float | None = None

    @classmethod
    def from_payload(cls, payload: dict) -> DroneEvent:
        return cls(
            event_type=payload.get("event_type") or "",
            order_id=resolve_reference(payload.get("order_id")),
            drone_id=resolve_reference(payload.get("drone_id")),
            latitude=_float_or_none(payload.get("latitude")),
            longitude=_float_or_none(payload.get("longitude")),
        )
