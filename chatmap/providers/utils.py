"""
Shared utilities for provider modules.
"""
import asyncio
import json
import logging
from typing import Optional, Dict, Any

import aiohttp

from chatmap.providers.base import (
    ProviderError,
    ProviderRateLimitError,
    ProviderTimeoutError,
)


logger = logging.getLogger(__name__)


def raise_for_provider_status(status: int, body: str, provider_name: str, url: str) -> None:
    """Map a non-2xx HTTP status onto the provider error hierarchy.

    429 and 5xx are transient; every other 4xx is permanent.
    """
    if 200 <= status < 300:
        return
    snippet = (body or "")[:300]
    details = {"url": url, "body": snippet}
    if status == 429:
        raise ProviderRateLimitError(
            f"{provider_name} rate limit exceeded", provider_name, details, status_code=status
        )
    if status >= 500:
        raise ProviderError(
            f"{provider_name} server error {status}", provider_name, details,
            status_code=status, retryable=True,
        )
    raise ProviderError(
        f"{provider_name} rejected request with {status}: {snippet}", provider_name, details,
        status_code=status, retryable=False,
    )


async def request_json(
    session: aiohttp.ClientSession,
    method: str,
    url: str,
    provider_name: str,
    params: Optional[Dict[str, Any]] = None,
    json_data: Optional[Any] = None,
    data: Optional[Any] = None,
    headers: Optional[Dict[str, str]] = None,
    timeout: float = 30.0,
) -> Any:
    """
    Single HTTP request returning parsed JSON.

    Unlike a tuple-returning helper this raises, so that the retry layer can
    decide what to do with the failure.

    Raises:
        ProviderTimeoutError: Request exceeded `timeout`
        ProviderRateLimitError: Service answered 429
        ProviderError: Any other transport, status or decoding failure
    """
    kwargs: Dict[str, Any] = {
        "params": params,
        "headers": headers,
        "timeout": aiohttp.ClientTimeout(total=timeout),
    }
    if json_data is not None:
        kwargs["json"] = json_data
    if data is not None:
        kwargs["data"] = data

    request = getattr(session, method.lower())
    try:
        async with request(url, **kwargs) as resp:
            if resp.status < 200 or resp.status >= 300:
                body = await resp.text()
                raise_for_provider_status(resp.status, body, provider_name, url)
            try:
                return await resp.json(content_type=None)
            except (json.JSONDecodeError, aiohttp.ContentTypeError, ValueError) as e:
                raise ProviderError(
                    f"{provider_name} returned invalid JSON", provider_name,
                    {"url": url, "error": str(e)}, status_code=resp.status, retryable=False,
                )
    except asyncio.TimeoutError:
        logger.warning(f"HTTP {method} {url} timed out after {timeout}s")
        raise ProviderTimeoutError(
            f"{provider_name} timed out after {timeout}s", provider_name, {"url": url}
        )
    except (aiohttp.ClientConnectionError, aiohttp.ClientPayloadError) as e:
        logger.warning(f"HTTP {method} {url} failed: {e}")
        raise ProviderError(
            f"{provider_name} connection failed: {e}", provider_name, {"url": url}, retryable=True
        )
    except aiohttp.ClientError as e:
        logger.error(f"HTTP {method} {url} failed: {e}")
        raise ProviderError(
            f"{provider_name} request failed: {e}", provider_name, {"url": url}, retryable=False
        )
