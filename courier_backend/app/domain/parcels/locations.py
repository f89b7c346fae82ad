"""
Best-effort location resolution for parcels.
"""

from dataclasses import dataclass
from typing import Optional

from courier_backend.app.services.geocoding import GeocodeResult, GeocodingService


@dataclass(frozen=True)
class ResolvedLocation:
    location: str
    latitude: Optional[float] = None
    longitude: Optional[float] = None


async def resolve_location(
    geocoder: GeocodingService,
    raw: str,
    latitude: Optional[float] = None,
    longitude: Optional[float] = None,
) -> ResolvedLocation:
    """
    Resolve ``raw`` into a canonical address with coordinates.

    Caller-supplied coordinates win and skip the provider. On geocoding
    failure the raw text is kept and the coordinates stay empty.
    """
    if latitude is not None and longitude is not None:
        return ResolvedLocation(raw, latitude, longitude)

    result = await geocoder.resolve(raw)
    if isinstance(result, GeocodeResult):
        return ResolvedLocation(result.formatted_address, result.latitude, result.longitude)
    return ResolvedLocation(raw)
