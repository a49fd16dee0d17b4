"""
Nominatim geocoding provider.

Follows the public usage policy: an identifying User-Agent and at most one
request per second (enforced by the provider's rate limiter).
"""

from typing import Any, Dict, List, Optional

from chatmap.models import BoundingBox, Location
from chatmap.providers.base import GeoProvider, ProviderMetadata
from chatmap.providers.utils import request_json


def _parse_result(item: Dict[str, Any]) -> Optional[Location]:
    try:
        return Location(float(item["lat"]), float(item["lon"]), item.get("display_name") or "")
    except (KeyError, TypeError, ValueError):
        return None


class NominatimGeoProvider(GeoProvider):
    """Forward and reverse geocoding against a Nominatim instance."""

    name = "nominatim"

    def __init__(
        self,
        base_url: str = "https://nominatim.openstreetmap.org",
        user_agent: str = "ChatMap/1.0",
        timeout: float = 60.0,
        **kwargs,
    ):
        super().__init__(**kwargs)
        self.base_url = base_url.rstrip("/")
        self.user_agent = user_agent
        self.timeout = timeout

    @property
    def _headers(self) -> Dict[str, str]:
        return {
            "User-Agent": self.user_agent,
            "Accept": "application/json",
            "Accept-Language": "en",
        }

    async def _get(self, path: str, params: Dict[str, Any]) -> Any:
        session = await self._get_session()
        url = f"{self.base_url}/{path}"
        clean = {k: v for k, v in params.items() if v is not None}
        return await self._call(
            lambda: request_json(
                session, "GET", url, self.name,
                params=clean, headers=self._headers, timeout=self.timeout,
            )
        )

    async def geocode(
        self,
        query: str,
        limit: int = 5,
        country_code: Optional[str] = None,
        bounds: Optional[BoundingBox] = None,
    ) -> List[Location]:
        params: Dict[str, Any] = {
            "q": query,
            "format": "jsonv2",
            "limit": max(1, min(int(limit), 50)),
            "addressdetails": 0,
            "countrycodes": country_code.lower() if country_code else None,
        }
        if bounds is not None:
            # viewbox is min_lon,min_lat,max_lon,max_lat
            params["viewbox"] = f"{bounds.west},{bounds.south},{bounds.east},{bounds.north}"
            params["bounded"] = 1

        data = await self._get("search", params)
        if not isinstance(data, list):
            self.logger.warning("Unexpected Nominatim search payload: %s", type(data).__name__)
            return []
        results = [loc for loc in (_parse_result(item) for item in data) if loc is not None]
        self.logger.debug("Geocoded %r -> %d result(s)", query, len(results))
        return results

    async def reverse_geocode(self, location: Location) -> Optional[str]:
        data = await self._get("reverse", {
            "lat": location.lat,
            "lon": location.lng,
            "format": "jsonv2",
            "zoom": 18,
        })
        if not isinstance(data, dict) or data.get("error"):
            return None
        return data.get("display_name")

    async def probe(self) -> None:
        await self._get("status", {"format": "json"})

    async def get_metadata(self) -> ProviderMetadata:
        return ProviderMetadata(
            name=self.name,
            version="1.0",
            description="OpenStreetMap Nominatim geocoder",
            capabilities=["geocode", "reverse_geocode"],
            rate_limit=60,
        )
