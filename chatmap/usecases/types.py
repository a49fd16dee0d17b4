"""
Result envelope, error taxonomy and shared plumbing for the use cases.

Use cases never raise for expected failure modes: they return a
UseCaseResult whose `success` flag callers branch on. Every result carries
metadata (execution time, number of adapter calls, warnings, cache hit).
"""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Dict, Generic, List, Optional, TypeVar

from chatmap.models import Location, POIType, TransportMode
from chatmap.providers.base import ProviderError, ProviderTimeoutError

T = TypeVar('T')
R = TypeVar('R')


class ErrorCode(str, Enum):
    VALIDATION_ERROR = "VALIDATION_ERROR"
    NO_RESULTS_FOUND = "NO_RESULTS_FOUND"
    TIME_CONSTRAINT_EXCEEDED = "TIME_CONSTRAINT_EXCEEDED"
    UPSTREAM_SERVICE_ERROR = "UPSTREAM_SERVICE_ERROR"
    TIMEOUT_ERROR = "TIMEOUT_ERROR"
    CLASSIFICATION_LOW_CONFIDENCE = "CLASSIFICATION_LOW_CONFIDENCE"


class ValidationError(ValueError):
    """Caller-supplied input is malformed or out of range."""

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field


@dataclass
class UseCaseError:
    code: ErrorCode
    message: str
    details: Dict[str, Any] = field(default_factory=dict)
    retryable: bool = False

    def to_dict(self) -> Dict[str, Any]:
        data = {'code': self.code.value, 'message': self.message, 'retryable': self.retryable}
        if self.details:
            data['details'] = self.details
        return data


@dataclass
class UseCaseMetadata:
    execution_time_ms: float = 0.0
    api_calls_count: int = 0
    warnings: List[str] = field(default_factory=list)
    cache_hit: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            'execution_time_ms': round(self.execution_time_ms, 1),
            'api_calls_count': self.api_calls_count,
            'warnings': list(self.warnings),
            'cache_hit': self.cache_hit,
        }


@dataclass
class UseCaseResult(Generic[T]):
    success: bool
    data: Optional[T] = None
    error: Optional[UseCaseError] = None
    metadata: UseCaseMetadata = field(default_factory=UseCaseMetadata)
    advisory: Optional[str] = None  # set on empty-but-successful results

    @property
    def is_empty(self) -> bool:
        return self.success and self.advisory is not None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {'success': self.success, 'metadata': self.metadata.to_dict()}
        if self.data is not None:
            data['data'] = self.data.to_dict() if hasattr(self.data, 'to_dict') else self.data
        if self.error is not None:
            data['error'] = self.error.to_dict()
        if self.advisory is not None:
            data['advisory'] = {'code': ErrorCode.NO_RESULTS_FOUND.value, 'message': self.advisory}
        return data


class ExecutionTracker:
    """Accumulates timing, adapter call count and warnings for one execution."""

    def __init__(self, clock=time.perf_counter):
        self._clock = clock
        self._start = clock()
        self.api_calls = 0
        self.warnings: List[str] = []
        self.cache_hit = False

    async def call(self, awaitable: Awaitable[R]) -> R:
        """Await one adapter call, counting it whether or not it succeeds."""
        self.api_calls += 1
        return await awaitable

    def warn(self, message: str) -> None:
        self.warnings.append(message)

    def absorb(self, metadata: UseCaseMetadata) -> None:
        """Fold in the metadata of a nested use-case execution."""
        self.api_calls += metadata.api_calls_count
        self.warnings.extend(metadata.warnings)
        self.cache_hit = self.cache_hit or metadata.cache_hit

    def metadata(self) -> UseCaseMetadata:
        return UseCaseMetadata(
            execution_time_ms=(self._clock() - self._start) * 1000,
            api_calls_count=self.api_calls,
            warnings=list(self.warnings),
            cache_hit=self.cache_hit,
        )

    def ok(self, data: T, advisory: Optional[str] = None) -> UseCaseResult[T]:
        return UseCaseResult(success=True, data=data, metadata=self.metadata(), advisory=advisory)

    def fail(self, error: UseCaseError) -> UseCaseResult:
        return UseCaseResult(success=False, error=error, metadata=self.metadata())


def error_from_exception(error: BaseException) -> UseCaseError:
    """Translate an exception into the closed error taxonomy."""
    if isinstance(error, ValidationError):
        details = {'field': error.field} if error.field else {}
        return UseCaseError(ErrorCode.VALIDATION_ERROR, str(error), details)
    if isinstance(error, (ProviderTimeoutError, asyncio.TimeoutError, TimeoutError)):
        details = {}
        if isinstance(error, ProviderError) and error.provider_name:
            details['provider'] = error.provider_name
        return UseCaseError(ErrorCode.TIMEOUT_ERROR, str(error) or "Upstream request timed out",
                            details, retryable=True)
    if isinstance(error, ProviderError):
        details = {'provider': error.provider_name}
        if error.status_code is not None:
            details['status_code'] = error.status_code
        return UseCaseError(ErrorCode.UPSTREAM_SERVICE_ERROR, str(error), details,
                            retryable=bool(error.retryable))
    return UseCaseError(
        ErrorCode.UPSTREAM_SERVICE_ERROR,
        f"Unexpected failure: {error}",
        {'exception': type(error).__name__},
    )


class UseCase(ABC, Generic[R, T]):
    """Base class: turns exceptions raised by `_run` into error results."""

    name = "use-case"

    def __init__(self):
        self.logger = logging.getLogger(self.__class__.__name__)

    async def execute(self, request: R) -> UseCaseResult[T]:
        tracker = ExecutionTracker()
        try:
            return await self._run(request, tracker)
        except asyncio.CancelledError:
            raise
        except (ValidationError, ProviderError, asyncio.TimeoutError) as e:
            self.logger.warning("%s failed: %s", self.name, e)
            return tracker.fail(error_from_exception(e))
        except Exception as e:
            self.logger.exception("%s failed unexpectedly", self.name)
            return tracker.fail(error_from_exception(e))

    @abstractmethod
    async def _run(self, request: R, tracker: ExecutionTracker) -> UseCaseResult[T]:
        pass


# --- validation helpers -----------------------------------------------------

def validate_location(location: Any, field_name: str = "location") -> Location:
    if isinstance(location, dict):
        try:
            location = Location.from_dict(location)
        except ValueError as e:
            raise ValidationError(str(e), field_name)
    if not isinstance(location, Location):
        raise ValidationError(f"{field_name} is required", field_name)
    if not location.is_valid():
        raise ValidationError(
            f"Invalid coordinates for {field_name}: lat must be in [-90, 90], lng in [-180, 180]",
            field_name,
        )
    return location


def validate_time(value: Any, minimum: float, maximum: float, field_name: str = "time_minutes") -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValidationError(f"{field_name} must be a number", field_name)
    if value < minimum or value > maximum:
        raise ValidationError(f"{field_name} must be between {minimum} and {maximum} minutes", field_name)
    return value


def validate_positive_int(value: Any, field_name: str, maximum: Optional[int] = None) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise ValidationError(f"{field_name} must be a positive integer", field_name)
    if maximum is not None and value > maximum:
        raise ValidationError(f"{field_name} must be at most {maximum}", field_name)
    return value


def parse_transport(value: Any, field_name: str = "transport") -> TransportMode:
    try:
        return TransportMode.parse(value)
    except ValueError as e:
        raise ValidationError(str(e), field_name)


def parse_poi_type(value: Any, field_name: str = "poi_type") -> POIType:
    if value is None:
        raise ValidationError(f"{field_name} is required", field_name)
    try:
        return POIType.parse(value)
    except ValueError as e:
        raise ValidationError(str(e), field_name)
