"""
Free-text geocoding with a result cache in front of the geocoder.
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from chatmap.cache import GeocodeCache
from chatmap.models import BoundingBox, Location
from chatmap.providers.base import GeoProvider
from chatmap.usecases.types import (
    ExecutionTracker,
    UseCase,
    UseCaseResult,
    ValidationError,
    validate_positive_int,
)


@dataclass
class GeocodeRequest:
    address: str
    country_code: Optional[str] = None
    bounds: Optional[BoundingBox] = None
    max_results: int = 5


@dataclass
class GeocodeResult:
    query: str
    locations: List[Location]

    @property
    def best(self) -> Optional[Location]:
        return self.locations[0] if self.locations else None

    def to_dict(self) -> Dict[str, Any]:
        return {'query': self.query, 'locations': [loc.to_dict() for loc in self.locations]}


async def resolve_address(
    geocoder: GeoProvider,
    cache: Optional[GeocodeCache],
    address: str,
    tracker: ExecutionTracker,
    limit: int = 5,
    country_code: Optional[str] = None,
    bounds: Optional[BoundingBox] = None,
) -> List[Location]:
    """Cached lookup; only geocoder calls count towards the tracker."""
    use_cache = cache is not None and bounds is None
    if use_cache:
        cached = await cache.get(address, country_code)
        if cached is not None:
            tracker.cache_hit = True
            return cached[:limit]
    locations = await tracker.call(geocoder.geocode(address, limit, country_code, bounds))
    if use_cache and locations:
        await cache.set(address, locations, country_code)
    return locations


class Geocode(UseCase[GeocodeRequest, GeocodeResult]):

    name = "geocode"

    def __init__(self, geocoder: GeoProvider, cache: Optional[GeocodeCache] = None):
        super().__init__()
        self.geocoder = geocoder
        self.cache = cache

    async def _run(self, request: GeocodeRequest, tracker: ExecutionTracker) -> UseCaseResult[GeocodeResult]:
        address = (request.address or "").strip()
        if len(address) < 2:
            raise ValidationError("address must be at least 2 characters", "address")
        if request.country_code is not None and len(request.country_code) != 2:
            raise ValidationError("country_code must be an ISO 3166-1 alpha-2 code", "country_code")
        limit = validate_positive_int(request.max_results, "max_results", 50)

        locations = await resolve_address(
            self.geocoder, self.cache, address, tracker, limit, request.country_code, request.bounds,
        )
        result = GeocodeResult(address, locations)
        if not locations:
            return tracker.ok(result, advisory=f"No location found for '{address}'")
        return tracker.ok(result)
