"""
Provider container for dependency injection and provider lifecycle.

The container is constructed explicitly (see `build_container`) and handed
to whoever needs providers; there is no process-wide instance.
"""

from typing import Dict, List, Optional, Type, TypeVar
import logging

from chatmap.config import Config
from chatmap.providers.base import (
    GeoProvider,
    HealthCheckResult,
    IsochroneProvider,
    LLMProvider,
    POIProvider,
    Provider,
    ProviderStatus,
    RoutingProvider,
)
from chatmap.providers.groq_provider import GroqLLMProvider
from chatmap.providers.nominatim_provider import NominatimGeoProvider
from chatmap.providers.ors_provider import ORSProvider
from chatmap.providers.overpass_provider import OverpassPOIProvider
from chatmap.services.session_manager import SessionManager
from chatmap.utils.async_utils import RetryPolicy
from chatmap.utils.rate_limiter import RateLimiterRegistry

P = TypeVar('P', bound=Provider)


class ProviderContainer:
    """Registry of named provider instances plus the resources they share."""

    def __init__(
        self,
        session_manager: Optional[SessionManager] = None,
        limiters: Optional[RateLimiterRegistry] = None,
    ):
        self.logger = logging.getLogger(__name__)
        self.session_manager = session_manager
        self.limiters = limiters or RateLimiterRegistry()
        self._providers: Dict[str, Provider] = {}

    def register(self, name: str, instance: Provider) -> None:
        self._providers[name] = instance
        self.logger.info(f"Registered provider: {name}")

    def get(self, name: str) -> Optional[Provider]:
        return self._providers.get(name)

    def _first_of(self, kind: Type[P], name: Optional[str] = None) -> Optional[P]:
        if name:
            provider = self.get(name)
            return provider if isinstance(provider, kind) else None
        for provider in self._providers.values():
            if isinstance(provider, kind):
                return provider
        return None

    def get_geo_provider(self, name: Optional[str] = None) -> Optional[GeoProvider]:
        return self._first_of(GeoProvider, name)

    def get_isochrone_provider(self, name: Optional[str] = None) -> Optional[IsochroneProvider]:
        return self._first_of(IsochroneProvider, name)

    def get_poi_provider(self, name: Optional[str] = None) -> Optional[POIProvider]:
        return self._first_of(POIProvider, name)

    def get_routing_provider(self, name: Optional[str] = None) -> Optional[RoutingProvider]:
        return self._first_of(RoutingProvider, name)

    def get_llm_provider(self, name: Optional[str] = None) -> Optional[LLMProvider]:
        return self._first_of(LLMProvider, name)

    async def health_check_all(self) -> Dict[str, HealthCheckResult]:
        """Run health checks on all registered providers."""
        results = {}
        for name, provider in self._providers.items():
            try:
                result = await provider.health_check()
            except Exception as e:
                self.logger.error(f"Health check failed for {name}: {e}")
                result = HealthCheckResult(
                    status=ProviderStatus.UNHEALTHY,
                    latency_ms=0,
                    message=f"Health check error: {str(e)}"
                )
            results[name] = result
        return results

    def list_providers(self) -> List[str]:
        return list(self._providers.keys())

    async def close_all(self) -> None:
        """Release the shared HTTP session."""
        if self.session_manager is not None:
            await self.session_manager.close()
            self.logger.info("Closed shared HTTP session")


def build_container(config: Config, session_manager: Optional[SessionManager] = None) -> ProviderContainer:
    """Wire the production providers from configuration.

    Providers of the same service share one rate limiter from the registry.
    """
    session_manager = session_manager or SessionManager(
        timeout=config.get_timeout('api'),
        user_agent=config.provider_config.user_agent,
    )
    container = ProviderContainer(session_manager=session_manager)
    pc = config.provider_config
    retry = config.retry_config

    def on_retry(service):
        log = logging.getLogger(f"chatmap.retry.{service}")

        def _log(error, attempt, delay):
            log.warning("%s request failed (attempt %d), retrying in %.2fs: %s",
                        service, attempt, delay, error)
        return _log

    container.register("nominatim", NominatimGeoProvider(
        base_url=pc.nominatim_url,
        user_agent=pc.user_agent,
        timeout=config.get_timeout('geocode'),
        session_manager=session_manager,
        rate_limiter=container.limiters.get(
            "nominatim", interval=pc.nominatim_interval,
            max_requests=pc.nominatim_max_requests, window=pc.nominatim_window,
        ),
        retry_policy=RetryPolicy.from_config(
            retry, max_retries=pc.nominatim_max_retries, on_retry=on_retry("nominatim"),
        ),
    ))

    container.register("ors", ORSProvider(
        api_key=pc.ors_api_key,
        base_url=pc.ors_url,
        timeout=max(config.get_timeout('isochrone'), config.get_timeout('routing')),
        session_manager=session_manager,
        rate_limiter=container.limiters.get(
            "ors", interval=pc.ors_interval,
            max_requests=pc.ors_max_requests, window=pc.ors_window,
        ),
        retry_policy=RetryPolicy.from_config(
            retry, max_retries=pc.ors_max_retries, on_retry=on_retry("ors"),
        ),
    ))

    container.register("overpass", OverpassPOIProvider(
        endpoint=pc.overpass_url,
        timeout=config.get_timeout('poi'),
        session_manager=session_manager,
        rate_limiter=container.limiters.get(
            "overpass", interval=pc.overpass_interval,
            max_requests=pc.overpass_max_requests, window=pc.overpass_window,
        ),
        retry_policy=RetryPolicy.from_config(
            retry, max_retries=pc.overpass_max_retries,
            initial_delay=pc.overpass_initial_delay, on_retry=on_retry("overpass"),
        ),
    ))

    if pc.groq_api_key:
        container.register("groq", GroqLLMProvider(
            api_key=pc.groq_api_key,
            model=pc.groq_model,
            url=pc.groq_url,
            timeout=config.get_timeout('llm'),
            session_manager=session_manager,
            rate_limiter=container.limiters.get("groq", interval=pc.groq_interval),
            retry_policy=RetryPolicy.from_config(
                retry, max_retries=pc.groq_max_retries, on_retry=on_retry("groq"),
            ),
        ))

    return container
