"""Cover Art Resolver - cache → extractor → providers.

Hey future me - this is the registry/fallback loop for artwork URLs.

FLOW:
    PresenceSessionManager
        │
        └─► CoverArtResolver.resolve(metadata)
                │
                ├─► ArtUrlCache.get() → hit? return immediately
                │
                ├─► ArtSourceExtractor.extract()
                │       └─► DirectUrl? → cache as "metadata", return (no provider calls)
                │
                ├─► providers in configured order
                │       ├─► supports(source) false → skip
                │       ├─► process() → CoverResult → cache + return
                │       └─► any provider error / timeout → log, next provider
                │
                └─► None (no art, perfectly normal)

A config reload swaps providers and extractor via apply(), the cache stays as it is.
"""

import asyncio
import logging
from collections.abc import Sequence

import httpx

from presencesync.application.cache import ArtUrlCache
from presencesync.application.services.art_sources import ArtSourceExtractor
from presencesync.domain.exceptions import CacheError, ProviderError
from presencesync.domain.ports import ICoverArtProvider
from presencesync.domain.value_objects import DirectUrl, TrackMetadata

logger = logging.getLogger(__name__)

METADATA_PROVIDER = "metadata"


class CoverArtResolver:
    """Resolves a public artwork URL for a track."""

    def __init__(
        self,
        cache: ArtUrlCache,
        extractor: ArtSourceExtractor,
        providers: Sequence[ICoverArtProvider] = (),
        provider_timeout: float = 30.0,
    ) -> None:
        self._cache = cache
        self._extractor = extractor
        self._providers = list(providers)
        self._provider_timeout = provider_timeout

    @property
    def cache(self) -> ArtUrlCache:
        return self._cache

    @property
    def providers(self) -> list[ICoverArtProvider]:
        return list(self._providers)

    async def apply(
        self, extractor: ArtSourceExtractor, providers: Sequence[ICoverArtProvider]
    ) -> None:
        """Swap extractor and providers after a config reload, closing the old providers."""
        old = self._providers
        self._extractor = extractor
        self._providers = list(providers)
        for provider in old:
            if provider not in self._providers:
                await provider.close()

    async def resolve(self, metadata: TrackMetadata) -> str | None:
        try:
            cached = await self._cache.get(metadata)
        except CacheError as e:
            logger.warning("Cover cache read failed: %s", e.message)
            cached = None
        if cached is not None:
            logger.debug("Cover art cache hit (%s): %s", cached.provider, cached.url)
            return cached.url

        source = await self._extractor.extract(metadata)

        if isinstance(source, DirectUrl):
            await self._store(metadata, source.url, METADATA_PROVIDER, None)
            return source.url

        for provider in self._providers:
            if not provider.supports(source):
                logger.debug(
                    "Skipping %s (unsupported source %s)",
                    provider.name,
                    source.kind if source else "none",
                )
                continue
            try:
                result = await asyncio.wait_for(
                    provider.process(source, metadata), timeout=self._provider_timeout
                )
            except ProviderError as e:
                logger.warning("Cover provider %s failed: %s", provider.name, e.message)
                continue
            except httpx.HTTPError as e:
                logger.warning("Cover provider %s HTTP error: %s", provider.name, e)
                continue
            except TimeoutError:
                logger.warning(
                    "Cover provider %s timed out after %.0fs", provider.name, self._provider_timeout
                )
                continue
            except Exception as e:
                # one broken provider must not cost the track its presence
                logger.exception("Cover provider %s crashed: %s", provider.name, e)
                continue

            if result is None:
                logger.debug("No cover art from %s for %r", provider.name, metadata.title)
                continue

            logger.info("Cover art for %r provided by %s", metadata.title, result.provider)
            await self._store(metadata, result.url, result.provider, result.expiration)
            return result.url

        logger.debug("No cover art found for %r", metadata.title)
        return None

    async def sweep_cache(self) -> int:
        return await self._cache.sweep()

    async def close(self) -> None:
        for provider in self._providers:
            await provider.close()

    async def _store(
        self, metadata: TrackMetadata, url: str, provider: str, expiration: int | None
    ) -> None:
        try:
            await self._cache.store(metadata, url, provider, expiration)
        except CacheError as e:
            # a failed write only costs a repeated lookup next time
            logger.warning("Cover cache write failed: %s", e.message)
