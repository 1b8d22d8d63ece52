"""Artwork URL cache.

Hey future me - this caches RESOLVED URLs only (url + which provider produced it), never
image bytes. Two layers:

    ArtUrlCache (key derivation from TrackMetadata, TTL policy)
        └─► BaseCache backend
                ├─► FileCache     one JSON file per key under $XDG_CACHE_HOME/presencesync/cover_art/
                └─► InMemoryCache persist_cache = false, tests

Keys are deterministic: the same album always maps to the same file, so every track of an
album shares one upload. Tracks without album fall back to a per-track key.
"""

import asyncio
import hashlib
import json
import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from presencesync.application.cache.base_cache import BaseCache, CacheEntry, Clock
from presencesync.domain.exceptions import CacheError
from presencesync.domain.value_objects import TrackMetadata

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CachedArt:
    url: str
    provider: str


class FileCache(BaseCache[str, CachedArt]):
    """On-disk cache, one JSON document per key.

    File layout: {"key", "url", "provider", "stored_at", "ttl_seconds", "expires_at"}.
    Corrupt files are treated as misses and removed.
    """

    def __init__(self, cache_dir: Path, clock: Clock = time.time) -> None:
        self._dir = cache_dir
        self._clock = clock
        self._lock = asyncio.Lock()

    @property
    def directory(self) -> Path:
        return self._dir

    def _path(self, key: str) -> Path:
        return self._dir / f"{key}.json"

    # -------------------------------------------------------------------------
    # Blocking helpers, always called through asyncio.to_thread
    # -------------------------------------------------------------------------

    def _read_entry(self, path: Path) -> CacheEntry[CachedArt] | None:
        try:
            raw = json.loads(path.read_text(encoding="utf-8"))
            return CacheEntry(
                key=raw["key"],
                value=CachedArt(url=raw["url"], provider=raw["provider"]),
                stored_at=float(raw["stored_at"]),
                ttl_seconds=int(raw["ttl_seconds"]),
            )
        except FileNotFoundError:
            return None
        except (OSError, ValueError, KeyError, TypeError) as e:
            logger.warning("Removing corrupt cache entry %s: %s", path.name, e)
            path.unlink(missing_ok=True)
            return None

    def _write_entry(self, entry: CacheEntry[CachedArt]) -> None:
        self._dir.mkdir(parents=True, exist_ok=True)
        document = {
            "key": entry.key,
            "url": entry.value.url,
            "provider": entry.value.provider,
            "stored_at": entry.stored_at,
            "ttl_seconds": entry.ttl_seconds,
            "expires_at": entry.expires_at,
        }
        path = self._path(entry.key)
        tmp = path.with_suffix(".tmp")
        tmp.write_text(json.dumps(document), encoding="utf-8")
        tmp.replace(path)

    def _sweep_sync(self, now: float) -> int:
        if not self._dir.is_dir():
            return 0
        removed = 0
        for path in self._dir.glob("*.json"):
            entry = self._read_entry(path)
            if entry is None:
                # corrupt file, _read_entry already unlinked it
                removed += 1
            elif entry.is_expired(now):
                path.unlink(missing_ok=True)
                removed += 1
        return removed

    # -------------------------------------------------------------------------
    # BaseCache API
    # -------------------------------------------------------------------------

    async def get(self, key: str) -> CachedArt | None:
        async with self._lock:
            path = self._path(key)
            entry = await asyncio.to_thread(self._read_entry, path)
            if entry is None:
                return None
            if entry.is_expired(self._clock()):
                await asyncio.to_thread(path.unlink, True)
                return None
            return entry.value

    async def set(self, key: str, value: CachedArt, ttl_seconds: int = 86400) -> None:
        entry = CacheEntry(key=key, value=value, stored_at=self._clock(), ttl_seconds=ttl_seconds)
        async with self._lock:
            try:
                await asyncio.to_thread(self._write_entry, entry)
            except OSError as e:
                raise CacheError(f"Cannot write cache entry {key}: {e}") from e

    async def delete(self, key: str) -> bool:
        async with self._lock:
            path = self._path(key)
            exists = await asyncio.to_thread(path.exists)
            if exists:
                await asyncio.to_thread(path.unlink, True)
            return exists

    async def clear(self) -> None:
        async with self._lock:
            for path in await asyncio.to_thread(lambda: list(self._dir.glob("*.json"))):
                await asyncio.to_thread(path.unlink, True)

    async def sweep(self) -> int:
        async with self._lock:
            return await asyncio.to_thread(self._sweep_sync, self._clock())


def _digest(*parts: str) -> str:
    return hashlib.sha256("\x1f".join(parts).encode("utf-8")).hexdigest()


class ArtUrlCache:
    """Resolved artwork URLs keyed by album (or track)."""

    def __init__(self, backend: BaseCache[str, CachedArt], ttl_seconds: int = 86400) -> None:
        self._backend = backend
        self.ttl_seconds = ttl_seconds

    @staticmethod
    def make_key(metadata: TrackMetadata) -> str:
        """Deterministic cache key for a track's artwork."""
        if metadata.album:
            artists = metadata.album_artists or metadata.artists
            return "album-" + _digest(
                metadata.album.casefold(), *sorted(a.casefold() for a in artists)
            )
        return "track-" + _digest(
            (metadata.title or "").casefold(),
            *sorted(a.casefold() for a in metadata.artists),
            metadata.track_id or metadata.url or "",
        )

    async def get(self, metadata: TrackMetadata) -> CachedArt | None:
        return await self._backend.get(self.make_key(metadata))

    async def store(
        self, metadata: TrackMetadata, url: str, provider: str, expiration: int | None = None
    ) -> None:
        # never keep a URL longer than the host keeps the upload
        ttl = self.ttl_seconds if not expiration else min(self.ttl_seconds, expiration)
        await self._backend.set(self.make_key(metadata), CachedArt(url=url, provider=provider), ttl)

    async def sweep(self) -> int:
        removed = await self._backend.sweep()
        if removed:
            logger.info("Cover cache sweep removed %d expired entries", removed)
        return removed

    def describe(self) -> dict[str, Any]:
        backend = self._backend
        location = str(backend.directory) if isinstance(backend, FileCache) else "memory"
        return {
            "backend": type(backend).__name__,
            "location": location,
            "ttl_seconds": self.ttl_seconds,
        }
