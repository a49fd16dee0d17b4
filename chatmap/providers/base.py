"""
Provider base interfaces and abstract classes.

Every external service (geocoding, isochrones, POIs, routing, LLM) sits
behind one of the abstract interfaces below. Concrete providers issue their
HTTP calls through `Provider._call`, which applies rate-limit admission and
then retry-with-backoff, so use cases only ever see typed results or a
ProviderError.
"""

from abc import ABC, abstractmethod
from typing import Optional, List, Dict, Any, Sequence, Callable, Awaitable, TypeVar
from dataclasses import dataclass
from enum import Enum
import time
import logging

import aiohttp

from chatmap.models import (
    BoundingBox,
    Isochrone,
    Location,
    MatrixResult,
    POI,
    POIType,
    RouteResult,
    TransportMode,
)
from chatmap.utils.async_utils import RetryPolicy, with_retry
from chatmap.utils.rate_limiter import RateLimiter

T = TypeVar('T')


class ProviderStatus(Enum):
    """Provider health status."""
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"
    UNKNOWN = "unknown"


@dataclass
class HealthCheckResult:
    """Result of a provider health check."""
    status: ProviderStatus
    latency_ms: float
    message: str
    details: Optional[Dict[str, Any]] = None

    @property
    def is_healthy(self) -> bool:
        return self.status == ProviderStatus.HEALTHY

    def to_dict(self) -> Dict[str, Any]:
        return {
            'status': self.status.value,
            'latency_ms': round(self.latency_ms, 1),
            'message': self.message,
            'details': self.details or {},
        }


@dataclass
class ProviderMetadata:
    """Metadata about a provider."""
    name: str
    version: str
    description: str
    capabilities: List[str]
    rate_limit: Optional[int] = None  # requests per minute


class ProviderError(Exception):
    """Base exception for provider errors.

    `retryable` is None when the error carries no opinion; the retry
    predicate then falls back to `status_code`.
    """

    default_retryable: Optional[bool] = None

    def __init__(
        self,
        message: str,
        provider_name: Optional[str] = None,
        details: Optional[Dict] = None,
        status_code: Optional[int] = None,
        retryable: Optional[bool] = None,
    ):
        super().__init__(message)
        self.provider_name = provider_name
        self.details = details or {}
        self.status_code = status_code
        self.retryable = self.default_retryable if retryable is None else retryable


class ProviderNotAvailableError(ProviderError):
    """Raised when a provider cannot be used at all (missing key, no session)."""
    default_retryable = False


class ProviderRateLimitError(ProviderError):
    """Raised when provider rate limit is exceeded."""
    default_retryable = True


class ProviderTimeoutError(ProviderError):
    """Raised when provider request times out."""
    default_retryable = True


class Provider(ABC):
    """Base provider interface.

    Args:
        session: Pre-built aiohttp session (takes precedence)
        session_manager: Shared SessionManager used when no session is given
        rate_limiter: Limiter guarding this provider's service
        retry_policy: Backoff policy applied inside each admitted slot
    """

    name = "provider"

    def __init__(
        self,
        session: Optional[aiohttp.ClientSession] = None,
        session_manager=None,
        rate_limiter: Optional[RateLimiter] = None,
        retry_policy: Optional[RetryPolicy] = None,
    ):
        self.logger = logging.getLogger(self.__class__.__name__)
        self._session = session
        self._session_manager = session_manager
        self.rate_limiter = rate_limiter or RateLimiter(name=self.name)
        self.retry_policy = retry_policy or RetryPolicy()

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is not None:
            return self._session
        if self._session_manager is not None:
            return await self._session_manager.get_session()
        raise ProviderNotAvailableError("No HTTP session configured", provider_name=self.name)

    async def _call(self, operation: Callable[[], Awaitable[T]]) -> T:
        """Rate-limit admission, then retry-with-backoff around `operation`."""
        return await self.rate_limiter.execute(lambda: with_retry(operation, self.retry_policy))

    @abstractmethod
    async def get_metadata(self) -> ProviderMetadata:
        pass

    async def probe(self) -> None:
        """Cheap connectivity check; raise on failure."""
        raise NotImplementedError

    async def health_check(self) -> HealthCheckResult:
        """Check provider health via `probe`.

        Providers that cannot be probed report UNKNOWN; unconfigured ones
        report DEGRADED.
        """
        start_time = time.time()
        try:
            await self.probe()
        except NotImplementedError:
            return HealthCheckResult(
                status=ProviderStatus.UNKNOWN,
                latency_ms=0.0,
                message=f"Provider {self.name} has no health probe",
            )
        except ProviderNotAvailableError as e:
            return HealthCheckResult(
                status=ProviderStatus.DEGRADED,
                latency_ms=(time.time() - start_time) * 1000,
                message=str(e),
            )
        except Exception as e:
            latency_ms = (time.time() - start_time) * 1000
            return HealthCheckResult(
                status=ProviderStatus.UNHEALTHY,
                latency_ms=latency_ms,
                message=f"Provider health check failed: {str(e)}",
                details={"error": str(e)}
            )
        latency_ms = (time.time() - start_time) * 1000
        return HealthCheckResult(
            status=ProviderStatus.HEALTHY,
            latency_ms=latency_ms,
            message=f"Provider {self.name} is healthy",
            details={"latency_ms": latency_ms}
        )


class GeoProvider(Provider):
    """Geocoding provider interface."""

    @abstractmethod
    async def geocode(
        self,
        query: str,
        limit: int = 5,
        country_code: Optional[str] = None,
        bounds: Optional[BoundingBox] = None,
    ) -> List[Location]:
        """Resolve free text to candidate locations, best match first.

        Returns:
            Possibly empty list of locations

        Raises:
            ProviderError: If the service fails after retries
        """
        pass

    @abstractmethod
    async def reverse_geocode(self, location: Location) -> Optional[str]:
        pass


class IsochroneProvider(Provider):
    """Reachability polygon provider interface."""

    @abstractmethod
    async def isochrone(
        self,
        location: Location,
        ranges_seconds: Sequence[float],
        transport: TransportMode,
    ) -> Isochrone:
        pass


class POIProvider(Provider):
    """Points-of-interest provider interface."""

    @abstractmethod
    async def find_pois(
        self,
        bbox: BoundingBox,
        poi_type: POIType,
        cuisine: Optional[str] = None,
        max_results: int = 100,
    ) -> List[POI]:
        """Find POIs of `poi_type` inside `bbox`, in source ranking order."""
        pass


class RoutingProvider(Provider):
    """Directions and travel-time matrix provider interface."""

    @abstractmethod
    async def route(self, waypoints: Sequence[Location], transport: TransportMode) -> RouteResult:
        pass

    @abstractmethod
    async def matrix(
        self,
        locations: Sequence[Location],
        transport: TransportMode,
        sources: Optional[Sequence[int]] = None,
        destinations: Optional[Sequence[int]] = None,
    ) -> MatrixResult:
        pass


class LLMProvider(Provider):
    """Chat-completion provider interface."""

    @abstractmethod
    async def chat(
        self,
        messages: List[Dict[str, str]],
        temperature: float = 0.1,
        max_tokens: int = 512,
    ) -> str:
        pass
