"""
Shared aiohttp session for all providers of one service container.

Nominatim, Overpass, ORS and Groq are a handful of hosts, so a single pooled
session with per-host limits serves all of them. The container creates the
manager and closes it at shutdown; providers only borrow the session.
"""

import asyncio
from typing import Optional

import aiohttp


class SessionManager:
    """Lazily opened session; reopened transparently if something closed it.

    Args:
        timeout: Default total timeout in seconds (providers pass their own per request)
        user_agent: Sent on every request; Nominatim rejects anonymous clients
        pool_size: Connection pool size across hosts
        per_host: Connection cap per upstream host
    """

    def __init__(
        self,
        timeout: float = 30.0,
        user_agent: str = "ChatMap/1.0",
        pool_size: int = 50,
        per_host: int = 10,
    ):
        self.timeout = timeout
        self.user_agent = user_agent
        self.pool_size = pool_size
        self.per_host = per_host
        self._session: Optional[aiohttp.ClientSession] = None
        self._lock = asyncio.Lock()

    async def get_session(self) -> aiohttp.ClientSession:
        async with self._lock:
            if self._session is None or self._session.closed:
                self._session = self._open()
            return self._session

    def _open(self) -> aiohttp.ClientSession:
        connector = aiohttp.TCPConnector(
            limit=self.pool_size,
            limit_per_host=self.per_host,
            ttl_dns_cache=300,
        )
        return aiohttp.ClientSession(
            connector=connector,
            timeout=aiohttp.ClientTimeout(total=self.timeout, sock_connect=min(self.timeout, 10.0)),
            headers={'User-Agent': self.user_agent, 'Accept': 'application/json'},
        )

    async def close(self) -> None:
        async with self._lock:
            session, self._session = self._session, None
        if session is not None and not session.closed:
            await session.close()
