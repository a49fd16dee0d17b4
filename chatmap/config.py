"""
Centralized configuration management with validation and type conversion.

All tunables (service endpoints, API keys, timeouts, rate limits, retry
policy, use-case defaults) are read from environment variables in one place.
A `.env` file in the working directory is honoured via python-dotenv.
"""

import os
import logging
from typing import Optional, Dict, Any
from dataclasses import dataclass
from enum import Enum

from dotenv import load_dotenv


logger = logging.getLogger(__name__)


class Environment(Enum):
    """Application environment types."""
    DEVELOPMENT = "development"
    TESTING = "testing"
    STAGING = "staging"
    PRODUCTION = "production"


@dataclass
class TimeoutConfig:
    """Per-attempt timeouts (seconds) for each external service."""
    geocode: float = 60.0
    isochrone: float = 30.0
    routing: float = 30.0
    poi: float = 30.0
    llm: float = 30.0
    api: float = 30.0

    def get(self, operation: str) -> float:
        """Get timeout for a specific operation, falling back to `api`."""
        return getattr(self, operation, self.api)


@dataclass
class RedisConfig:
    """Redis configuration."""
    url: str
    socket_timeout: float = 5.0
    socket_connect_timeout: float = 5.0


@dataclass
class ProviderConfig:
    """Endpoints, credentials and client-side limits for external services."""
    user_agent: str = "ChatMap/1.0"

    # Nominatim (geocoding)
    nominatim_url: str = "https://nominatim.openstreetmap.org"
    nominatim_interval: float = 1.0
    nominatim_max_requests: int = 1
    nominatim_window: float = 1.0
    nominatim_max_retries: int = 1

    # OpenRouteService (isochrones, directions, matrix)
    ors_url: str = "https://api.openrouteservice.org"
    ors_api_key: Optional[str] = None
    ors_interval: float = 0.5
    ors_max_requests: int = 40
    ors_window: float = 60.0
    ors_max_retries: int = 3

    # Overpass (POIs)
    overpass_url: str = "https://overpass-api.de/api/interpreter"
    overpass_interval: float = 0.5
    overpass_max_requests: int = 2
    overpass_window: float = 1.0
    overpass_max_retries: int = 3
    overpass_initial_delay: float = 2.0

    # Groq (optional LLM classifier backend)
    groq_url: str = "https://api.groq.com/openai/v1/chat/completions"
    groq_api_key: Optional[str] = None
    groq_model: str = "llama-3.1-8b-instant"
    groq_interval: float = 0.2
    groq_max_retries: int = 2


@dataclass
class RetryConfig:
    """Default backoff policy for adapter calls."""
    max_retries: int = 3
    initial_delay: float = 1.0
    max_delay: float = 10.0
    backoff_multiplier: float = 2.0
    jitter: bool = True


@dataclass
class UseCaseConfig:
    """Defaults and bounds shared by the spatial use cases."""
    within_time_max_results: int = 50
    min_time_minutes: int = 1
    max_time_minutes: int = 120
    nearest_initial_radius: float = 1000.0
    nearest_expansion_factor: float = 2.0
    nearest_max_expansions: int = 3
    nearest_max_alternatives: int = 3
    near_poi_max_time: int = 15
    near_poi_max_results: int = 20
    enroute_max_detour: int = 10
    enroute_min_total_time: int = 5
    enroute_max_total_time: int = 180
    enroute_corridor_meters: float = 2000.0
    enroute_max_candidates: int = 5
    low_confidence_threshold: float = 0.5


@dataclass
class CacheConfig:
    """Cache configuration."""
    ttl_geocode: int = 7200  # 2 hours
    enabled: bool = True


@dataclass
class LoggingConfig:
    """Logging configuration."""
    level: str = "INFO"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    file: Optional[str] = None
    max_bytes: int = 10485760  # 10MB
    backup_count: int = 5


class Config:
    """Centralized configuration with validation and type conversion."""

    def __init__(self):
        """Initialize configuration from environment variables."""
        self.environment = self._get_environment()
        self.debug = self._get_bool("DEBUG", False)
        self.host = self._get_str("HOST", "0.0.0.0")
        self.port = self._get_int("PORT", 5010)

        self.redis_url: Optional[str] = self._get_optional("REDIS_URL")

        self.timeout_config = TimeoutConfig(
            geocode=self._get_float("TIMEOUT_GEOCODE", 60.0),
            isochrone=self._get_float("TIMEOUT_ISOCHRONE", 30.0),
            routing=self._get_float("TIMEOUT_ROUTING", 30.0),
            poi=self._get_float("TIMEOUT_POI", 30.0),
            llm=self._get_float("TIMEOUT_LLM", 30.0),
            api=self._get_float("TIMEOUT_API", 30.0),
        )

        self.redis_config = RedisConfig(
            url=self.redis_url or "",
            socket_timeout=self._get_float("REDIS_SOCKET_TIMEOUT", 5.0),
            socket_connect_timeout=self._get_float("REDIS_SOCKET_CONNECT_TIMEOUT", 5.0),
        )

        self.provider_config = ProviderConfig(
            user_agent=self._get_str("USER_AGENT", "ChatMap/1.0"),
            nominatim_url=self._get_str("NOMINATIM_URL", "https://nominatim.openstreetmap.org"),
            nominatim_interval=self._get_float("NOMINATIM_RATE_LIMIT_INTERVAL", 1.0),
            nominatim_max_requests=self._get_int("NOMINATIM_MAX_REQUESTS", 1),
            nominatim_window=self._get_float("NOMINATIM_WINDOW", 1.0),
            nominatim_max_retries=self._get_int("NOMINATIM_MAX_RETRIES", 1),
            ors_url=self._get_str("ORS_URL", "https://api.openrouteservice.org"),
            ors_api_key=self._get_optional("ORS_API_KEY"),
            ors_interval=self._get_float("ORS_RATE_LIMIT_INTERVAL", 0.5),
            ors_max_requests=self._get_int("ORS_MAX_REQUESTS", 40),
            ors_window=self._get_float("ORS_WINDOW", 60.0),
            ors_max_retries=self._get_int("ORS_MAX_RETRIES", 3),
            overpass_url=self._get_str("OVERPASS_URL", "https://overpass-api.de/api/interpreter"),
            overpass_interval=self._get_float("OVERPASS_RATE_LIMIT_INTERVAL", 0.5),
            overpass_max_requests=self._get_int("OVERPASS_MAX_REQUESTS", 2),
            overpass_window=self._get_float("OVERPASS_WINDOW", 1.0),
            overpass_max_retries=self._get_int("OVERPASS_MAX_RETRIES", 3),
            overpass_initial_delay=self._get_float("OVERPASS_INITIAL_DELAY", 2.0),
            groq_url=self._get_str("GROQ_CHAT_URL", "https://api.groq.com/openai/v1/chat/completions"),
            groq_api_key=self._get_optional("GROQ_API_KEY"),
            groq_model=self._get_str("GROQ_MODEL", "llama-3.1-8b-instant"),
            groq_interval=self._get_float("GROQ_RATE_LIMIT_INTERVAL", 0.2),
            groq_max_retries=self._get_int("GROQ_MAX_RETRIES", 2),
        )

        self.retry_config = RetryConfig(
            max_retries=self._get_int("RETRY_MAX_RETRIES", 3),
            initial_delay=self._get_float("RETRY_INITIAL_DELAY", 1.0),
            max_delay=self._get_float("RETRY_MAX_DELAY", 10.0),
            backoff_multiplier=self._get_float("RETRY_BACKOFF_MULTIPLIER", 2.0),
            jitter=self._get_bool("RETRY_JITTER", True),
        )

        self.usecase_config = UseCaseConfig(
            within_time_max_results=self._get_int("WITHIN_TIME_MAX_RESULTS", 50),
            nearest_initial_radius=self._get_float("NEAREST_INITIAL_RADIUS", 1000.0),
            nearest_expansion_factor=self._get_float("NEAREST_EXPANSION_FACTOR", 2.0),
            nearest_max_expansions=self._get_int("NEAREST_MAX_EXPANSIONS", 3),
            near_poi_max_time=self._get_int("NEAR_POI_MAX_TIME", 15),
            enroute_max_detour=self._get_int("ENROUTE_MAX_DETOUR", 10),
            enroute_corridor_meters=self._get_float("ENROUTE_CORRIDOR_METERS", 2000.0),
            enroute_max_candidates=self._get_int("ENROUTE_MAX_CANDIDATES", 5),
            low_confidence_threshold=self._get_float("LOW_CONFIDENCE_THRESHOLD", 0.5),
        )

        self.cache_config = CacheConfig(
            ttl_geocode=self._get_int("CACHE_TTL_GEOCODE", 7200),
            enabled=self._get_bool("CACHE_ENABLED", True),
        )

        self.logging_config = LoggingConfig(
            level=self._get_str("LOG_LEVEL", "INFO"),
            format=self._get_str("LOG_FORMAT", "%(asctime)s - %(name)s - %(levelname)s - %(message)s"),
            file=self._get_optional("LOG_FILE"),
            max_bytes=self._get_int("LOG_MAX_BYTES", 10485760),
            backup_count=self._get_int("LOG_BACKUP_COUNT", 5),
        )

        self.cors_origins = self._get_list("CORS_ORIGINS", ["http://localhost:5173"])

        self._validate()

    def _get_environment(self) -> Environment:
        """Get application environment."""
        env_str = self._get_str("ENVIRONMENT", "development").lower()
        try:
            return Environment(env_str)
        except ValueError:
            raise ValueError(f"Invalid environment: {env_str}")

    def _get_optional(self, key: str, default: Optional[str] = None) -> Optional[str]:
        """Get optional environment variable; empty strings count as unset."""
        return os.getenv(key) or default

    def _get_str(self, key: str, default: str) -> str:
        return os.getenv(key, default)

    def _get_int(self, key: str, default: int) -> int:
        """Get integer environment variable with default.

        Raises:
            ValueError: If value cannot be converted to int
        """
        value = os.getenv(key)
        if value is None or value == "":
            return default
        try:
            return int(value)
        except ValueError:
            raise ValueError(f"Invalid integer for {key}: {value}")

    def _get_float(self, key: str, default: float) -> float:
        """Get float environment variable with default.

        Raises:
            ValueError: If value cannot be converted to float
        """
        value = os.getenv(key)
        if value is None or value == "":
            return default
        try:
            return float(value)
        except ValueError:
            raise ValueError(f"Invalid float for {key}: {value}")

    def _get_bool(self, key: str, default: bool) -> bool:
        value = os.getenv(key)
        if value is None:
            return default
        return value.lower() in ('1', 'true', 'yes', 'on')

    def _get_list(self, key: str, default: list) -> list:
        value = os.getenv(key)
        if value is None:
            return default
        return [item.strip() for item in value.split(',') if item.strip()]

    def _validate(self):
        """Validate configuration values."""
        for attr_name in ['geocode', 'isochrone', 'routing', 'poi', 'llm', 'api']:
            timeout = getattr(self.timeout_config, attr_name)
            if timeout <= 0:
                raise ValueError(f"Invalid timeout for {attr_name}: {timeout}")

        if self.retry_config.max_retries < 0:
            raise ValueError(f"Invalid retry count: {self.retry_config.max_retries}")

        if not 0 <= self.usecase_config.low_confidence_threshold <= 1:
            raise ValueError(
                f"Invalid confidence threshold: {self.usecase_config.low_confidence_threshold}"
            )

        if self.redis_url and not self.redis_url.startswith(('redis://', 'rediss://')):
            raise ValueError(f"Invalid Redis URL: {self.redis_url}")

        # Optional API keys only degrade features
        if not self.provider_config.ors_api_key:
            logger.warning("ORS_API_KEY not set - isochrones fall back to radius estimates, routing disabled")
        if not self.provider_config.groq_api_key:
            logger.info("GROQ_API_KEY not set - query classification is rule-based only")

    def get_timeout(self, operation: str) -> float:
        """Get timeout in seconds for a specific operation."""
        return self.timeout_config.get(operation)

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to a dictionary for debugging (no secrets)."""
        return {
            'environment': self.environment.value,
            'debug': self.debug,
            'redis': bool(self.redis_url),
            'timeout_config': {
                'geocode': self.timeout_config.geocode,
                'isochrone': self.timeout_config.isochrone,
                'routing': self.timeout_config.routing,
                'poi': self.timeout_config.poi,
                'llm': self.timeout_config.llm,
            },
            'providers': {
                'nominatim': self.provider_config.nominatim_url,
                'ors': bool(self.provider_config.ors_api_key),
                'overpass': self.provider_config.overpass_url,
                'groq': bool(self.provider_config.groq_api_key),
            },
            'retry_config': {
                'max_retries': self.retry_config.max_retries,
                'initial_delay': self.retry_config.initial_delay,
                'max_delay': self.retry_config.max_delay,
            },
        }


_config: Optional[Config] = None


def get_config() -> Config:
    """Get the process configuration, loading `.env` and building it on first use."""
    global _config
    if _config is None:
        load_dotenv()
        _config = Config()
    return _config


def reset_config() -> None:
    """Drop the cached configuration (useful for testing)."""
    global _config
    _config = None


def setup_logging(config: Optional[Config] = None):
    """Set up logging based on configuration."""
    from logging.handlers import RotatingFileHandler

    config = config or get_config()

    logging.basicConfig(
        level=getattr(logging, config.logging_config.level.upper(), logging.INFO),
        format=config.logging_config.format,
    )

    if config.logging_config.file:
        file_handler = RotatingFileHandler(
            config.logging_config.file,
            maxBytes=config.logging_config.max_bytes,
            backupCount=config.logging_config.backup_count,
        )
        file_handler.setFormatter(logging.Formatter(config.logging_config.format))
        logging.getLogger().addHandler(file_handler)

    logging.getLogger('aiohttp').setLevel(logging.WARNING)
    logging.getLogger('asyncio').setLevel(logging.WARNING)

    if config.debug:
        logging.getLogger().setLevel(logging.DEBUG)
