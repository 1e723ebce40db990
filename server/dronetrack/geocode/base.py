"""Geocoder interface (port) for address ↔ coordinate lookups."""

from __future__ import annotations

from typing import Protocol, TYPE_CHECKING

if TYPE_CHECKING:
    from dronetrack.core.models import Coordinate


class GeocodingError(Exception):
    """The address (or coordinate) could not be resolved."""


class Geocoder(Protocol):
    """Port: resolves free-form addresses to coordinates and back."""

    async def geocode(self, address: str) -> Coordinate: ...

    async def reverse_geocode(self, coordinate: Coordinate) -> str: ...
