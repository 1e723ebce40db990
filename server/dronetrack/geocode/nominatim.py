"""Nominatim (OpenStreetMap) implementation of Geocoder over HTTP."""

from __future__ import annotations

import httpx
import structlog

from dronetrack.core.models import Coordinate
from dronetrack.geocode.base import GeocodingError

log = structlog.get_logger()


class NominatimGeocoder:
    """Geocoder backed by a Nominatim search/reverse endpoint."""

    def __init__(
        self,
        base_url: str = "https://nominatim.openstreetmap.org",
        timeout_seconds: float = 5.0,
        user_agent: str = "dronetrack/0.1",
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            base_url=base_url,
            timeout=timeout_seconds,
            headers={"user-agent": user_agent},
        )

    async def geocode(self, address: str) -> Coordinate:
        if not address.strip():
            raise GeocodingError("empty address")
        try:
            resp = await self._client.get(
                "/search", params={"q": address, "format": "json", "limit": 1},
            )
            resp.raise_for_status()
            results = resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise GeocodingError(f"geocoding request failed: {exc}") from exc

        if not results:
            raise GeocodingError(f"no match for address {address!r}")

        coord = Coordinate.maybe(results[0].get("lat"), results[0].get("lon"))
        if coord is None:
            raise GeocodingError("geocoder returned a result without coordinates")
        log.debug("address_geocoded", lat=coord.latitude, lng=coord.longitude)
        return coord

    async def reverse_geocode(self, coordinate: Coordinate) -> str:
        try:
            resp = await self._client.get(
                "/reverse",
                params={
                    "lat": coordinate.latitude,
                    "lon": coordinate.longitude,
                    "format": "json",
                },
            )
            resp.raise_for_status()
            data = resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise GeocodingError(f"reverse geocoding request failed: {exc}") from exc

        address = data.get("display_name") if isinstance(data, dict) else None
        if not address:
            raise GeocodingError("no address for coordinate")
        return address

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
