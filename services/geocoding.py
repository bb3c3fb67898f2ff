import logging
import httpx

from models import Location, LocationInput

logger = logging.getLogger(__name__)


class NominatimGeocoder:
    """Forward and reverse geocoding against a Nominatim server.

    Lookups that fail or find nothing return None; callers decide what a
    missing result means.
    """

    def __init__(self, base_url: str, timeout: float = 5, user_agent: str = "school-ride-service", transport=None):
        self._client = httpx.AsyncClient(
            base_url=base_url,
            timeout=timeout,
            headers={"User-Agent": user_agent},
            transport=transport,
        )

    async def geocode(self, address: str) -> Location | None:
        try:
            response = await self._client.get("/search", params={"q": address, "format": "json", "limit": 1})
            response.raise_for_status()
            results = response.json()
            if not results:
                return None
            first = results[0]
            return Location(
                address=first.get("display_name") or address,
                latitude=float(first["lat"]),
                longitude=float(first["lon"]),
            )
        except (httpx.HTTPError, AttributeError, KeyError, TypeError, ValueError) as e:
            logger.warning(f"Geocoding error for '{address}': {type(e).__name__} - {e}")
            return None

    async def reverse_geocode(self, latitude: float, longitude: float) -> str | None:
        try:
            response = await self._client.get("/reverse", params={"lat": latitude, "lon": longitude, "format": "json"})
            response.raise_for_status()
            result = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"Reverse geocoding error for ({latitude}, {longitude}): {type(e).__name__} - {e}")
            return None
        return result.get("display_name") if isinstance(result, dict) else None

    async def close(self):
        await self._client.aclose()


async def resolve_location(location: LocationInput, geocoder) -> Location | None:
    """Fill in whichever of coordinates or address the client left out"""
    if location.latitude is not None and location.longitude is not None:
        address = location.address
        if not address and geocoder is not None:
            address = await geocoder.reverse_geocode(location.latitude, location.longitude)
        return Location(address=address or "", latitude=location.latitude, longitude=location.longitude)

    if geocoder is None:
        return None
    resolved = await geocoder.geocode(location.address)
    if resolved is None:
        return None
    return Location(address=location.address, latitude=resolved.latitude, longitude=resolved.longitude)
