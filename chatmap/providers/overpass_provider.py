"""
Overpass API POI provider.

Builds Overpass QL queries from POI types and maps OSM elements onto POI
objects. Ways and relations are returned with their computed centre.
"""

import re
from typing import Any, Dict, List, Optional

from chatmap.models import BoundingBox, POI, POIType
from chatmap.providers.base import POIProvider, ProviderMetadata
from chatmap.providers.utils import request_json


# Overpass tag filters per POI type
POI_TAG_FILTERS: Dict[POIType, str] = {
    POIType.RESTAURANT: '[amenity=restaurant]',
    POIType.CAFE: '[amenity=cafe]',
    POIType.GROCERY: '[shop~"supermarket|convenience|grocery"]',
    POIType.PHARMACY: '[amenity=pharmacy]',
    POIType.HOSPITAL: '[amenity=hospital]',
    POIType.SCHOOL: '[amenity=school]',
    POIType.PARK: '[leisure=park]',
    POIType.GYM: '[leisure~"fitness_centre|sports_centre"]',
    POIType.BANK: '[amenity=bank]',
    POIType.ATM: '[amenity=atm]',
    POIType.GAS_STATION: '[amenity=fuel]',
    POIType.SHOPPING: '[shop]',
    POIType.ENTERTAINMENT: '[amenity~"cinema|theatre|nightclub"]',
    POIType.TRANSPORT: '[amenity~"bus_station|train_station"]',
    POIType.ACCOMMODATION: '[tourism~"hotel|hostel|motel"]',
    POIType.OTHER: '[amenity]',
}

CUISINE_TYPES = (POIType.RESTAURANT, POIType.CAFE)

_CUISINE_SAFE = re.compile(r'[^a-z0-9_ ;|-]')


def build_query(
    bbox: BoundingBox,
    poi_type: POIType,
    cuisine: Optional[str] = None,
    max_results: int = 100,
    timeout: int = 25,
) -> str:
    """Overpass QL for `poi_type` inside `bbox`.

    The cuisine filter only applies to restaurant-like types and is matched
    case-insensitively.
    """
    tag_filter = POI_TAG_FILTERS.get(poi_type, POI_TAG_FILTERS[POIType.OTHER])
    if cuisine and poi_type in CUISINE_TYPES:
        cleaned = _CUISINE_SAFE.sub('', cuisine.strip().lower())
        if cleaned and cleaned != 'none':
            tag_filter += f'[cuisine~"{cleaned}",i]'
    area = bbox.to_overpass()
    return (
        f'[out:json][timeout:{timeout}];'
        f'(node{tag_filter}({area});way{tag_filter}({area}););'
        f'out center {int(max_results)};'
    )


def element_to_poi(element: Dict[str, Any], poi_type: POIType) -> Optional[POI]:
    """Convert an Overpass element to a POI; None when it has no position."""
    if element.get('type') == 'node':
        lat, lng = element.get('lat'), element.get('lon')
    else:
        center = element.get('center') or {}
        lat, lng = center.get('lat'), center.get('lon')
    if lat is None or lng is None:
        return None
    tags = {str(k): str(v) for k, v in (element.get('tags') or {}).items()}
    name = tags.get('name') or tags.get('name:en') or tags.get('operator') or f"Unnamed {poi_type.value}"
    return POI(
        id=f"osm-{element.get('type')}-{element.get('id')}",
        name=name,
        type=poi_type,
        lat=float(lat),
        lng=float(lng),
        tags=tags,
    )


class OverpassPOIProvider(POIProvider):
    """POI search against an Overpass API interpreter endpoint."""

    name = "overpass"

    def __init__(
        self,
        endpoint: str = "https://overpass-api.de/api/interpreter",
        timeout: float = 30.0,
        **kwargs,
    ):
        super().__init__(**kwargs)
        self.endpoint = endpoint
        self.timeout = timeout

    async def _query(self, query: str) -> Dict[str, Any]:
        session = await self._get_session()
        return await self._call(
            lambda: request_json(
                session, "POST", self.endpoint, self.name,
                data={"data": query}, timeout=self.timeout,
            )
        )

    async def find_pois(
        self,
        bbox: BoundingBox,
        poi_type: POIType,
        cuisine: Optional[str] = None,
        max_results: int = 100,
    ) -> List[POI]:
        poi_type = POIType.parse(poi_type)
        query = build_query(bbox, poi_type, cuisine, max_results)
        self.logger.debug("Overpass query: %s", query)
        data = await self._query(query)

        pois: List[POI] = []
        seen = set()
        for element in data.get('elements') or []:
            poi = element_to_poi(element, poi_type)
            if poi is None or poi.id in seen:
                continue
            seen.add(poi.id)
            pois.append(poi)
        return pois

    async def probe(self) -> None:
        await self._query('[out:json][timeout:5];node(1);out;')

    async def get_metadata(self) -> ProviderMetadata:
        return ProviderMetadata(
            name=self.name,
            version="0.7",
            description="OpenStreetMap Overpass API",
            capabilities=["find_pois"],
            rate_limit=120,
        )
