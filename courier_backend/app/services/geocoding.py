"""
Geocoding and routing adapter for the Google Maps web services.

Every public call is best-effort: provider errors, timeouts, quota problems and
empty results come back as a ``GeocodeFailure`` (or ``None`` / an empty
polyline for routing) instead of an exception, so parcel workflows can carry on
with the raw address text.
"""

import asyncio
import logging
import math
from typing import Any, Dict, List, Optional, Tuple, Union

import httpx
from pydantic import BaseModel

from courier_backend.app.core.config import settings
from courier_backend.app.core.reliability import (
    CircuitBreaker,
    CircuitOpenError,
    geocoding_circuit_breaker,
    with_timeout,
)

logger = logging.getLogger(__name__)

EARTH_RADIUS_KM = 6371.0


class GeocodeResult(BaseModel):
    address: str
    latitude: float
    longitude: float
    formatted_address: str
    place_id: Optional[str] = None


class GeocodeFailure(BaseModel):
    address: str
    reason: str


class RouteEstimate(BaseModel):
    distance_km: float
    duration_hours: int


class ProviderError(Exception):
    """Non-OK answer from the maps provider."""


class GeocodingService:
    """
    Thin async client over the Geocoding and Directions JSON APIs.

    Args:
        api_key: Provider key; an empty key disables all lookups
        base_url: Provider base URL
        timeout: Upper bound in seconds for each provider call
        transport: Optional httpx transport (tests use ``httpx.MockTransport``)
        breaker: Circuit breaker shared across calls
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        breaker: Optional[CircuitBreaker] = None,
    ):
        self.api_key = settings.google_maps_api_key if api_key is None else api_key
        self.base_url = base_url or settings.google_maps_base_url
        self.timeout = timeout or settings.geocoding_timeout_seconds
        self.transport = transport
        self.breaker = breaker or geocoding_circuit_breaker
        if not self.api_key:
            logger.warning("Google Maps API key is not configured; geocoding disabled")

    @property
    def enabled(self) -> bool:
        return bool(self.api_key)

    async def _fetch(self, path: str, params: Dict[str, Any]) -> Dict[str, Any]:
        async with httpx.AsyncClient(
            base_url=self.base_url, timeout=self.timeout, transport=self.transport
        ) as client:
            response = await client.get(path, params={**params, "key": self.api_key})
            response.raise_for_status()
            data = response.json()
        if data.get("status") != "OK":
            raise ProviderError(data.get("status") or "UNKNOWN_ERROR")
        return data

    async def _fetch_bounded(self, path: str, params: Dict[str, Any]) -> Dict[str, Any]:
        return await with_timeout(self._fetch(path, params), self.timeout)

    async def _get_json(self, path: str, params: Dict[str, Any]) -> Dict[str, Any]:
        # Timeout inside the breaker so a hung provider counts as a failure
        return await self.breaker.call(self._fetch_bounded, path, params)

    async def resolve(self, address: str) -> Union[GeocodeResult, GeocodeFailure]:
        """Resolve free-text ``address`` to coordinates and a canonical address."""
        if not self.enabled:
            return GeocodeFailure(address=address, reason="NOT_CONFIGURED")
        if not address or not address.strip():
            return GeocodeFailure(address=address, reason="EMPTY_ADDRESS")

        try:
            data = await self._get_json("/geocode/json", {"address": address})
            result = data["results"][0]
            location = result["geometry"]["location"]
            return GeocodeResult(
                address=address,
                latitude=location["lat"],
                longitude=location["lng"],
                formatted_address=result.get("formatted_address") or address,
                place_id=result.get("place_id"),
            )
        except Exception as exc:
            reason = _failure_reason(exc)
            logger.warning("Failed to geocode address '%s': %s", address, reason)
            return GeocodeFailure(address=address, reason=reason)

    async def reverse(self, latitude: float, longitude: float) -> Union[GeocodeResult, GeocodeFailure]:
        """Resolve a coordinate pair to its canonical address."""
        label = f"{latitude},{longitude}"
        if not self.enabled:
            return GeocodeFailure(address=label, reason="NOT_CONFIGURED")

        try:
            data = await self._get_json("/geocode/json", {"latlng": label})
            result = data["results"][0]
            return GeocodeResult(
                address=result["formatted_address"],
                latitude=latitude,
                longitude=longitude,
                formatted_address=result["formatted_address"],
                place_id=result.get("place_id"),
            )
        except Exception as exc:
            reason = _failure_reason(exc)
            logger.warning("Failed to reverse geocode %s: %s", label, reason)
            return GeocodeFailure(address=label, reason=reason)

    async def route(self, origin: str, destination: str) -> Optional[RouteEstimate]:
        """Driving distance (km) and duration (whole hours, rounded up), or None."""
        if not self.enabled or not origin or not destination:
            return None

        try:
            data = await self._get_json(
                "/directions/json",
                {"origin": origin, "destination": destination, "units": "metric"},
            )
            leg = data["routes"][0]["legs"][0]
            return RouteEstimate(
                distance_km=leg["distance"]["value"] / 1000,
                duration_hours=math.ceil(leg["duration"]["value"] / 3600),
            )
        except Exception as exc:
            logger.warning(
                "Failed to fetch route between '%s' and '%s': %s",
                origin, destination, _failure_reason(exc),
            )
            return None

    async def route_polyline(self, origin: str, destination: str) -> List[Tuple[float, float]]:
        """Decoded overview polyline between two addresses; empty on failure."""
        if not self.enabled or not origin or not destination:
            return []

        try:
            data = await self._get_json(
                "/directions/json",
                {"origin": origin, "destination": destination, "units": "metric"},
            )
            encoded = data["routes"][0]["overview_polyline"]["points"]
            if not isinstance(encoded, str):
                raise ProviderError("INVALID_POLYLINE")
            return decode_polyline(encoded)
        except Exception as exc:
            logger.warning("Failed to fetch route polyline: %s", _failure_reason(exc))
            return []


def _failure_reason(exc: Exception) -> str:
    if isinstance(exc, ProviderError):
        return str(exc)
    if isinstance(exc, CircuitOpenError):
        return "CIRCUIT_OPEN"
    if isinstance(exc, (asyncio.TimeoutError, httpx.TimeoutException)):
        return "TIMEOUT"
    if isinstance(exc, httpx.HTTPError):
        return "NETWORK_ERROR"
    if isinstance(exc, (KeyError, IndexError, TypeError, ValueError)):
        return "MALFORMED_RESPONSE"
    return type(exc).__name__


def decode_polyline(encoded: str) -> List[Tuple[float, float]]:
    """Decode a Google encoded polyline into ``(lat, lng)`` pairs."""
    points = []
    index = lat = lng = 0

    while index < len(encoded):
        deltas = []
        for _ in range(2):
            shift = result = 0
            while True:
                b = ord(encoded[index]) - 63
                index += 1
                result |= (b & 0x1F) << shift
                shift += 5
                if b < 0x20:
                    break
            deltas.append(~(result >> 1) if result & 1 else result >> 1)
        lat += deltas[0]
        lng += deltas[1]
        points.append((lat / 1e5, lng / 1e5))

    return points


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance between two coordinates in kilometres."""
    d_lat = math.radians(lat2 - lat1)
    d_lon = math.radians(lon2 - lon1)
    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(d_lon / 2) ** 2
    )
    return EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


geocoding_service = GeocodingService()
