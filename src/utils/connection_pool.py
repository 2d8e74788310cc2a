"""Shared aiohttp session for content oracle requests."""

import asyncio
import logging

import aiohttp

logger = logging.getLogger(__name__)

USER_AGENT = "SubtitlePostProcess/1.0"


class GlobalConnectionPool:
    """Lazily created, process-wide HTTP session with pooled connections.

    Per-request timeouts are passed by callers; the session-level timeout
    only bounds requests that do not set one.
    """

    def __init__(
        self,
        pool_limit: int = 20,
        host_limit: int = 8,
        dns_ttl_sec: int = 300,
        keepalive_timeout_sec: int = 60,
        total_timeout_sec: int = 300,
        connect_timeout_sec: int = 30,
    ):
        self.pool_limit = pool_limit
        self.host_limit = host_limit
        self.dns_ttl_sec = dns_ttl_sec
        self.keepalive_timeout_sec = keepalive_timeout_sec
        self.total_timeout_sec = total_timeout_sec
        self.connect_timeout_sec = connect_timeout_sec

        self._session: aiohttp.ClientSession | None = None
        self._session_lock = asyncio.Lock()

    async def get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            async with self._session_lock:
                if self._session is None or self._session.closed:
                    self._session = self._create_session()

        return self._session

    def _create_session(self) -> aiohttp.ClientSession:
        connector = aiohttp.TCPConnector(
            limit=self.pool_limit,
            limit_per_host=self.host_limit,
            ttl_dns_cache=self.dns_ttl_sec,
            keepalive_timeout=self.keepalive_timeout_sec,
        )
        timeout = aiohttp.ClientTimeout(
            total=self.total_timeout_sec,
            connect=self.connect_timeout_sec,
        )
        logger.debug("Created new HTTP session with connection pooling")
        return aiohttp.ClientSession(
            connector=connector,
            timeout=timeout,
            headers={"User-Agent": USER_AGENT},
        )

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()
            logger.debug("Closed HTTP connection pool")
        self._session = None


_global_pool: GlobalConnectionPool | None = None


async def get_http_session() -> aiohttp.ClientSession:
    """Get the process-wide HTTP session, creating it on first use."""
    global _global_pool
    if _global_pool is None:
        _global_pool = GlobalConnectionPool()
    return await _global_pool.get_session()


async def close_global_pool() -> None:
    global _global_pool
    if _global_pool is not None:
        await _global_pool.close()
        _global_pool = None
