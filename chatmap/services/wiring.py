"""
Explicit construction of the service graph.

`build_services(config)` creates the shared HTTP session, the providers, the
cache and metrics, every use case and the orchestrator, and hands them back
in one Services object. Nothing here is a module-level singleton; the HTTP
app builds one Services per process at startup and closes it at shutdown.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from chatmap.agents.classifier import QueryClassifier
from chatmap.agents.memory import MemoryStore
from chatmap.agents.orchestrator import AgentOrchestrator, UseCaseSet
from chatmap.cache import GeocodeCache
from chatmap.config import Config
from chatmap.metrics import Metrics
from chatmap.providers.container import ProviderContainer, build_container
from chatmap.usecases.enroute import FindPOIEnroute
from chatmap.usecases.geocode import Geocode
from chatmap.usecases.near_poi import FindPOIsNearPOI
from chatmap.usecases.nearest import FindNearestPOI
from chatmap.usecases.route import GetRoute
from chatmap.usecases.within_time import FindPOIsWithinTime


logger = logging.getLogger(__name__)


@dataclass
class Services:
    config: Config
    container: ProviderContainer
    cache: Optional[GeocodeCache]
    metrics: Metrics
    use_cases: UseCaseSet
    classifier: QueryClassifier
    orchestrator: AgentOrchestrator

    async def close(self) -> None:
        await self.container.close_all()


def build_use_cases(config: Config, container: ProviderContainer, cache: Optional[GeocodeCache]) -> UseCaseSet:
    uc = config.usecase_config
    geo = container.get_geo_provider()
    pois = container.get_poi_provider()
    isochrones = container.get_isochrone_provider()
    routing = container.get_routing_provider()
    if geo is None or pois is None or isochrones is None or routing is None:
        raise ValueError("container is missing a geocoding, POI, isochrone or routing provider")

    nearest = FindNearestPOI(
        pois,
        routing=routing,
        initial_radius=uc.nearest_initial_radius,
        expansion_factor=uc.nearest_expansion_factor,
        max_expansions=uc.nearest_max_expansions,
        max_alternatives=uc.nearest_max_alternatives,
    )
    return UseCaseSet(
        within_time=FindPOIsWithinTime(
            isochrones, pois, routing=routing,
            min_minutes=uc.min_time_minutes, max_minutes=uc.max_time_minutes,
        ),
        nearest=nearest,
        near_poi=FindPOIsNearPOI(
            pois, nearest, routing=routing,
            min_minutes=uc.min_time_minutes, max_minutes=uc.max_time_minutes,
        ),
        enroute=FindPOIEnroute(
            pois, routing, geocoder=geo, cache=cache,
            corridor_meters=uc.enroute_corridor_meters,
            max_candidates=uc.enroute_max_candidates,
            min_total_minutes=uc.enroute_min_total_time,
            max_total_minutes=uc.enroute_max_total_time,
        ),
        geocode=Geocode(geo, cache=cache),
        route=GetRoute(routing, geocoder=geo, cache=cache),
    )


def build_services(
    config: Config,
    redis_client=None,
    container: Optional[ProviderContainer] = None,
    memory: Optional[MemoryStore] = None,
) -> Services:
    """Wire everything from configuration.

    Args:
        config: Loaded configuration
        redis_client: Optional redis.asyncio client for cache and metrics
        container: Pre-built providers (tests); built from config otherwise
        memory: Optional user preference store
    """
    container = container or build_container(config)
    cache = None
    if config.cache_config.enabled:
        cache = GeocodeCache(redis_client, ttl=config.cache_config.ttl_geocode)
    metrics = Metrics(redis_client)
    use_cases = build_use_cases(config, container, cache)
    classifier = QueryClassifier(llm=container.get_llm_provider())
    orchestrator = AgentOrchestrator(
        classifier,
        use_cases,
        memory=memory,
        metrics=metrics,
        low_confidence_threshold=config.usecase_config.low_confidence_threshold,
    )
    logger.info("Services ready: providers=%s, llm=%s, redis=%s",
                container.list_providers(), classifier.llm is not None, redis_client is not None)
    return Services(config, container, cache, metrics, use_cases, classifier, orchestrator)
