"""Delivery estimate endpoint."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from dronetrack.core.models import Coordinate

router = APIRouter(prefix="/api/v1")


class Point(BaseModel):
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)

    def to_coordinate(self) -> Coordinate:
        return Coordinate(self.latitude, self.longitude)


class EstimateRequest(BaseModel):
    restaurant: Point
    customer: Optional[Point] = None
    address: Optional[str] = None


@router.post("/delivery/estimate")
async def estimate(body: EstimateRequest) -> JSONResponse:
    """Distance, time and shipping cost from a restaurant to a customer.

    Give the customer either as a point or as an address. An address that
    can't be geocoded yields the minimum-distance estimate.
    """
    from dronetrack.main import get_calculator

    calculator = get_calculator()
    restaurant = body.restaurant.to_coordinate()

    if body.customer is not None:
        result = calculator.calculate(restaurant, body.customer.to_coordinate())
    elif body.address:
        result = await calculator.calculate_from_address(restaurant, body.address)
    else:
        return JSONResponse({"error": "customer or address is required"}, status_code=422)

    return JSONResponse(result.to_dict())
