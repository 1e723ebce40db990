"""Delivery calculator — distance, time and shipping cost for an order.

Flat per-kilometre rates with floors: anything under the minimum distance is
billed and timed as the minimum distance.
"""

from __future__ import annotations

import math
from typing import TYPE_CHECKING

import structlog

from dronetrack.config import PricingConfig
from dronetrack.core.geo import distance_km
from dronetrack.core.models import Coordinate, DeliveryEstimate

if TYPE_CHECKING:
    from dronetrack.core.stats import TrackingStats
    from dronetrack.geocode.base import Geocoder

log = structlog.get_logger()


def _ceil(value: float) -> int:
    # Round off float noise first: 6.3 * 3000 must be 18900, not 18901.
    return math.ceil(round(value, 6))


class DeliveryCalculator:
    """Computes DeliveryEstimate values from waypoints or a delivery address."""

    def __init__(
        self,
        pricing: PricingConfig | None = None,
        geocoder: Geocoder | None = None,
        stats: TrackingStats | None = None,
    ) -> None:
        self._pricing = pricing or PricingConfig()
        self._geocoder = geocoder
        self._stats = stats

    def calculate(self, restaurant: Coordinate, customer: Coordinate) -> DeliveryEstimate:
        p = self._pricing
        distance = round(distance_km(restaurant, customer), 1)
        effective = max(distance, p.min_distance_km)

        delivery_minutes = max(_ceil(effective * p.time_per_km_minutes), p.min_delivery_minutes)
        shipping_cost = max(_ceil(effective * p.cost_per_km), p.min_cost)

        return DeliveryEstimate(
            distance_km=max(distance, p.min_distance_km),
            delivery_minutes=delivery_minutes,
            total_minutes=p.preparation_minutes + delivery_minutes,
            shipping_cost=int(shipping_cost),
        )

    def fallback(self) -> DeliveryEstimate:
        """Minimum-distance estimate, used when the customer cannot be located."""
        p = self._pricing
        return DeliveryEstimate(
            distance_km=p.min_distance_km,
            delivery_minutes=p.min_delivery_minutes,
            total_minutes=p.preparation_minutes + p.min_delivery_minutes,
            shipping_cost=int(p.min_cost),
        )

    async def calculate_from_address(self, restaurant: Coordinate, address: str) -> DeliveryEstimate:
        """Geocode ``address`` and calculate; degrade to the fallback estimate on failure."""
        if self._geocoder is None:
            log.debug("estimate_without_geocoder")
            return self.fallback()

        try:
            customer = await self._geocoder.geocode(address)
        except Exception:
            log.warning("estimate_geocoding_failed", exc_info=True)
            if self._stats is not None:
                self._stats.record_geocode_failure()
            return self.fallback()

        return self.calculate(restaurant, customer)
