"""Offline geocoder: a fixed address book, no network.

Used when no geocoding backend is configured. Unknown addresses fail, which
sends callers down their fallback paths.
"""

from __future__ import annotations

from dronetrack.core.geo import distance_m
from dronetrack.core.models import Coordinate
from dronetrack.geocode.base import GeocodingError

# A reverse lookup only matches a known address within this many metres.
REVERSE_MATCH_RADIUS_M = 50.0


class OfflineGeocoder:
    def __init__(self, addresses: dict[str, Coordinate] | None = None) -> None:
        self._addresses = {self._key(a): c for a, c in (addresses or {}).items()}
        self._labels = {self._key(a): a for a in (addresses or {})}

    @staticmethod
    def _key(address: str) -> str:
        return " ".join(address.lower().split())

    def add(self, address: str, coordinate: Coordinate) -> None:
        self._addresses[self._key(address)] = coordinate
        self._labels[self._key(address)] = address

    async def geocode(self, address: str) -> Coordinate:
        coord = self._addresses.get(self._key(address))
        if coord is None:
            raise GeocodingError(f"address not in offline address book: {address!r}")
        return coord

    async def reverse_geocode(self, coordinate: Coordinate) -> str:
        best_key, best_dist = None, REVERSE_MATCH_RADIUS_M
        for key, coord in self._addresses.items():
            d = distance_m(coordinate, coord)
            if d <= best_dist:
                best_key, best_dist = key, d
        if best_key is None:
            raise GeocodingError("no known address near coordinate")
        return self._labels[best_key]

    async def aclose(self) -> None:
        return None
