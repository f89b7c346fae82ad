"""
Public map lookups backed by the geocoding adapter.

Used by clients to preview addresses, coordinates and distances before they
submit a parcel request.
"""

from fastapi import APIRouter, Depends, Query

from courier_backend.app.core.dependencies import get_geocoder
from courier_backend.app.core.exceptions import BadRequestError
from courier_backend.app.schemas.maps import CoordinatePair, StraightLineDistance
from courier_backend.app.services.geocoding import (
    GeocodeFailure,
    GeocodeResult,
    GeocodingService,
    RouteEstimate,
    haversine_km,
)

router = APIRouter(prefix="/maps", tags=["Maps"])


def _unwrap(result):
    if isinstance(result, GeocodeFailure):
        raise BadRequestError(
            f"Could not geocode '{result.address}'",
            details={"reason": result.reason},
        )
    return result


@router.get("/geocode", response_model=GeocodeResult)
async def geocode(
    address: str = Query(..., min_length=5, max_length=500),
    geocoder: GeocodingService = Depends(get_geocoder)
):
    return _unwrap(await geocoder.resolve(address))


@router.get("/reverse-geocode", response_model=GeocodeResult)
async def reverse_geocode(
    latitude: float = Query(..., ge=-90, le=90),
    longitude: float = Query(..., ge=-180, le=180),
    geocoder: GeocodingService = Depends(get_geocoder)
):
    """Canonical address for a coordinate pair."""
    return _unwrap(await geocoder.reverse(latitude, longitude))


@router.get("/distance", response_model=RouteEstimate)
async def driving_distance(
    origin: str = Query(..., min_length=5, max_length=500),
    destination: str = Query(..., min_length=5, max_length=500),
    geocoder: GeocodingService = Depends(get_geocoder)
):
    """Driving distance and duration between two addresses."""
    route = await geocoder.route(origin, destination)
    if route is None:
        raise BadRequestError(
            "Could not compute a route",
            details={"origin": origin, "destination": destination},
        )
    return route


@router.post("/haversine-distance", response_model=StraightLineDistance)
async def straight_line_distance(pair: CoordinatePair):
    """Great-circle distance; needs no provider call."""
    return StraightLineDistance(
        distance_km=round(haversine_km(pair.lat1, pair.lng1, pair.lat2, pair.lng2), 2)
    )
