"""Shared HTTP client pool for the image hosts.

Hey future me - ImgBB and Catbox uploads go through ONE shared httpx.AsyncClient instead of
a client per provider instance. Providers get rebuilt on every config reload, and without
the pool each reload would leave a fresh connection pool behind. MusicBrainz and CAA keep
their own clients because they need a base_url and a strict User-Agent.

Usage:
    client = await HttpClientPool.get_client()
    response = await client.post("https://api.imgbb.com/1/upload", data=...)

lifecycle.py calls HttpClientPool.close() on shutdown.
"""

import asyncio
import logging
from typing import ClassVar

import httpx

from presencesync import __version__

logger = logging.getLogger(__name__)


class HttpClientPool:
    """Lazily created, process-wide httpx.AsyncClient."""

    _client: ClassVar[httpx.AsyncClient | None] = None
    _lock: ClassVar[asyncio.Lock | None] = None

    # uploads of a 500px JPEG finish well within this, a stuck host must not block a lane
    DEFAULT_CONNECT_TIMEOUT: ClassVar[float] = 10.0
    DEFAULT_TIMEOUT: ClassVar[float] = 30.0
    DEFAULT_MAX_KEEPALIVE: ClassVar[int] = 5
    DEFAULT_MAX_CONNECTIONS: ClassVar[int] = 10

    @classmethod
    def _ensure_lock(cls) -> asyncio.Lock:
        # created lazily, asyncio.Lock wants to live in the running loop
        if cls._lock is None:
            cls._lock = asyncio.Lock()
        return cls._lock

    @classmethod
    async def get_client(cls, timeout: float | None = None) -> httpx.AsyncClient:
        """Get the shared client, creating it on first use.

        Args:
            timeout: Total request timeout in seconds (first call only)
        """
        async with cls._ensure_lock():
            if cls._client is None:
                effective_timeout = timeout or cls.DEFAULT_TIMEOUT
                cls._client = httpx.AsyncClient(
                    timeout=httpx.Timeout(effective_timeout, connect=cls.DEFAULT_CONNECT_TIMEOUT),
                    limits=httpx.Limits(
                        max_keepalive_connections=cls.DEFAULT_MAX_KEEPALIVE,
                        max_connections=cls.DEFAULT_MAX_CONNECTIONS,
                    ),
                    headers={"User-Agent": f"presencesync/{__version__}"},
                    http2=True,
                    follow_redirects=True,
                )
                logger.debug("HTTP client pool initialized (timeout=%.1fs)", effective_timeout)
            return cls._client

    @classmethod
    async def close(cls) -> None:
        """Close the shared client; the next get_client() builds a new one."""
        async with cls._ensure_lock():
            if cls._client is not None:
                await cls._client.aclose()
                cls._client = None
                logger.debug("HTTP client pool closed")

    @classmethod
    def is_initialized(cls) -> bool:
        return cls._client is not None
