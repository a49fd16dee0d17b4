"""
Geocode result cache backed by Redis, with a process-local fallback.

Keys are `geocode:{sha1 of normalised query}`; values are JSON lists of
locations. Redis failures never fail a lookup, they only cost a cache miss.
"""

import hashlib
import json
import logging
import time
from typing import Dict, List, Optional, Tuple

from chatmap.models import Location


logger = logging.getLogger(__name__)


def build_cache_key(query: str, country_code: Optional[str] = None) -> str:
    normalized = " ".join(query.lower().split())
    if country_code:
        normalized = f"{normalized}|{country_code.lower()}"
    return "geocode:" + hashlib.sha1(normalized.encode("utf-8")).hexdigest()


class GeocodeCache:

    def __init__(self, redis_client=None, ttl: int = 7200, clock=time.time):
        self.redis = redis_client
        self.ttl = ttl
        self._clock = clock
        self._memory: Dict[str, Tuple[float, str]] = {}

    async def get(self, query: str, country_code: Optional[str] = None) -> Optional[List[Location]]:
        key = build_cache_key(query, country_code)
        raw = None
        if self.redis is not None:
            try:
                raw = await self.redis.get(key)
            except Exception as e:
                logger.debug("Redis get %s failed: %s", key, e)
        if raw is None:
            entry = self._memory.get(key)
            if entry and entry[0] > self._clock():
                raw = entry[1]
            elif entry:
                self._memory.pop(key, None)
        if raw is None:
            return None
        try:
            items = json.loads(raw)
            return [Location(i["lat"], i["lng"], i.get("display_name", "")) for i in items]
        except (ValueError, KeyError, TypeError) as e:
            logger.warning("Discarding corrupt geocode cache entry %s: %s", key, e)
            return None

    async def set(self, query: str, locations: List[Location], country_code: Optional[str] = None) -> None:
        key = build_cache_key(query, country_code)
        raw = json.dumps([loc.to_dict() for loc in locations])
        if self.redis is not None:
            try:
                await self.redis.setex(key, self.ttl, raw)
                return
            except Exception as e:
                logger.debug("Redis setex %s failed, using memory: %s", key, e)
        self._memory[key] = (self._clock() + self.ttl, raw)
