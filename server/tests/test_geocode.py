"""Tests for the geocoder adapters."""

from __future__ import annotations

import httpx
import pytest

from dronetrack.core.models import Coordinate
from dronetrack.geocode.base import GeocodingError
from dronetrack.geocode.nominatim import NominatimGeocoder
from dronetrack.geocode.offline import OfflineGeocoder

SCHOOL = Coordinate(10.762622, 106.660172)


def nominatim(handler) -> NominatimGeocoder:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="https://geo.test")
    return NominatimGeocoder(client=client)


@pytest.mark.asyncio
async def test_offline_lookup_ignores_case_and_spacing():
    geocoder = OfflineGeocoder({"227 Nguyen Van Cu, District 5": SCHOOL})
    assert await geocoder.geocode("227 nguyen van cu,  district 5") == SCHOOL


@pytest.mark.asyncio
async def test_offline_unknown_address_fails():
    with pytest.raises(GeocodingError):
        await OfflineGeocoder().geocode("nowhere")


@pytest.mark.asyncio
async def test_offline_reverse_matches_nearby_point():
    geocoder = OfflineGeocoder()
    geocoder.add("227 Nguyen Van Cu", SCHOOL)
    near = Coordinate(SCHOOL.latitude + 0.0001, SCHOOL.longitude)
    assert await geocoder.reverse_geocode(near) == "227 Nguyen Van Cu"
    with pytest.raises(GeocodingError):
        await geocoder.reverse_geocode(Coordinate(0, 0))


@pytest.mark.asyncio
async def test_nominatim_geocode():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/search"
        assert request.url.params["q"] == "227 Nguyen Van Cu"
        return httpx.Response(200, json=[{"lat": "10.762622", "lon": "106.660172"}])

    coord = await nominatim(handler).geocode("227 Nguyen Van Cu")
    assert coord == SCHOOL


@pytest.mark.asyncio
async def test_nominatim_no_match():
    geocoder = nominatim(lambda request: httpx.Response(200, json=[]))
    with pytest.raises(GeocodingError):
        await geocoder.geocode("atlantis")


@pytest.mark.asyncio
async def test_nominatim_http_error():
    geocoder = nominatim(lambda request: httpx.Response(503))
    with pytest.raises(GeocodingError):
        await geocoder.geocode("227 Nguyen Van Cu")


@pytest.mark.asyncio
async def test_nominatim_empty_address():
    geocoder = nominatim(lambda request: httpx.Response(200, json=[]))
    with pytest.raises(GeocodingError):
        await geocoder.geocode("   ")


@pytest.mark.asyncio
async def test_nominatim_reverse():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/reverse"
        return httpx.Response(200, json={"display_name": "227 Nguyen Van Cu, Ho Chi Minh City"})

    address = await nominatim(handler).reverse_geocode(SCHOOL)
    assert address.startswith("227 Nguyen Van Cu")
