"""Cover Art Archive client.

Hey future me - CAA hosts the artwork for MusicBrainz releases and release groups. We never
download the image: `/release/{mbid}/front-250` answers with a redirect to archive.org and
the redirect target IS the public URL the display fetches. So requests go out with
follow_redirects=False and we just read the Location header.

    /release-group/{mbid}/front-{size}  → "best" release of the group
    /release/{mbid}/front-{size}        → that exact edition
    size None                           → /front (original resolution)

GOTCHA: Not all releases have artwork! 404 is normal, not an error.
"""

import asyncio
import logging
from typing import Any, Literal

import httpx

from presencesync import __version__

logger = logging.getLogger(__name__)

EntityKind = Literal["release", "release-group"]


class CoverArtArchiveClient:
    """Resolves front cover URLs for MusicBrainz ids."""

    API_BASE_URL = "https://coverartarchive.org"

    # CAA has no strict rate limit like MB, but let's be nice.
    RATE_LIMIT_DELAY = 0.2

    def __init__(
        self,
        timeout: float = 30.0,
        rate_limit_delay: float = RATE_LIMIT_DELAY,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._timeout = timeout
        self._rate_limit_delay = rate_limit_delay
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self._last_request_time: float = 0.0
        self._rate_limit_lock = asyncio.Lock()

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.API_BASE_URL,
                headers={"User-Agent": f"presencesync/{__version__}"},
                timeout=httpx.Timeout(self._timeout, connect=10.0),
                follow_redirects=False,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _rate_limited_request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        async with self._rate_limit_lock:
            loop = asyncio.get_running_loop()
            time_since_last = loop.time() - self._last_request_time
            if time_since_last < self._rate_limit_delay:
                await asyncio.sleep(self._rate_limit_delay - time_since_last)

            client = await self._get_client()
            response = await client.request(method, url, **kwargs)

            self._last_request_time = loop.time()
            return response

    async def front_cover_url(
        self, kind: EntityKind, mbid: str, size: int | None = 250
    ) -> str | None:
        """Public URL of the front cover, None if CAA has no artwork.

        Raises:
            httpx.HTTPError: network failure or an unexpected status
        """
        suffix = f"front-{size}" if size else "front"
        response = await self._rate_limited_request("GET", f"/{kind}/{mbid}/{suffix}")

        if response.status_code == 404:
            logger.debug("No artwork in CAA for %s %s", kind, mbid)
            return None
        if response.is_redirect:
            location = response.headers.get("Location")
            if location:
                return location
        response.raise_for_status()
        # 200 without redirect happens when CAA serves the image itself
        return str(response.url)
