"""MusicBrainz search client with rate limiting."""

import asyncio
import json
import logging
from typing import Any, cast

import httpx

from presencesync import __version__
from presencesync.domain.exceptions import ProviderError

logger = logging.getLogger(__name__)


def lucene_quote(value: str) -> str:
    """Quote a value for a Lucene field query (artist:"AC/DC")."""
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


class MusicBrainzClient:
    """HTTP client for the MusicBrainz search API."""

    API_BASE_URL = "https://musicbrainz.org/ws/2"
    RATE_LIMIT_DELAY = 1.0  # 1 request per second as per MusicBrainz guidelines

    # Hey future me, MusicBrainz is STRICT about rate limiting - 1 req/sec, NO EXCEPTIONS!
    # Several player lanes can search at the same time, the lock serializes them. Tests pass
    # rate_limit_delay=0 and a MockTransport.
    def __init__(
        self,
        contact: str,
        timeout: float = 30.0,
        rate_limit_delay: float = RATE_LIMIT_DELAY,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._contact = contact
        self._timeout = timeout
        self._rate_limit_delay = rate_limit_delay
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self._last_request_time: float = 0.0
        self._rate_limit_lock = asyncio.Lock()

    # Listen future me, MusicBrainz REQUIRES "AppName/Version ( contact )" as User-Agent,
    # with exactly those spaces and parens, or they answer 403.
    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.API_BASE_URL,
                headers={
                    "User-Agent": f"presencesync/{__version__} ( {self._contact} )",
                    "Accept": "application/json",
                },
                timeout=httpx.Timeout(self._timeout, connect=10.0),
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    # _last_request_time is updated AFTER the response arrives, so slow responses don't
    # let the next request in early.
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

    async def _search(self, entity: str, query: str, limit: int) -> list[dict[str, Any]]:
        logger.debug("MusicBrainz %s search: %s", entity, query)
        response = await self._rate_limited_request(
            "GET", f"/{entity}", params={"query": query, "fmt": "json", "limit": limit}
        )
        response.raise_for_status()
        try:
            data = response.json()
        except json.JSONDecodeError as e:
            # maintenance pages come back as 200 text/html
            raise ProviderError(
                f"MusicBrainz returned invalid JSON: {e}", provider="musicbrainz"
            ) from e
        # release-group → "release-groups", release → "releases", recording → "recordings"
        return cast(list[dict[str, Any]], data.get(f"{entity}s", []))

    async def search_release_groups(
        self, album: str, artist: str | None = None, limit: int = 5
    ) -> list[dict[str, Any]]:
        """Search release groups (abstract albums) by title and artist.

        Raises:
            httpx.HTTPError: If the request fails
        """
        parts = [f"releasegroup:{lucene_quote(album)}"]
        if artist:
            parts.append(f"artist:{lucene_quote(artist)}")
        return await self._search("release-group", " AND ".join(parts), limit)

    async def search_releases(
        self, album: str, artist: str | None = None, limit: int = 5
    ) -> list[dict[str, Any]]:
        """Search concrete releases by title and artist."""
        parts = [f"release:{lucene_quote(album)}"]
        if artist:
            parts.append(f"artist:{lucene_quote(artist)}")
        return await self._search("release", " AND ".join(parts), limit)

    async def search_recordings(
        self,
        title: str,
        artist: str | None = None,
        duration_ms: int | None = None,
        limit: int = 5,
    ) -> list[dict[str, Any]]:
        """Search recordings; results carry their releases (with release groups).

        duration_ms narrows the search to recordings within ±3 s of the track length.
        """
        parts = [f"recording:{lucene_quote(title)}"]
        if artist:
            parts.append(f"artist:{lucene_quote(artist)}")
        if duration_ms:
            low = max(duration_ms - 3000, 0)
            parts.append(f"dur:[{low} TO {duration_ms + 3000}]")
        return await self._search("recording", " AND ".join(parts), limit)
