"""Caching layer - resolved artwork URLs survive restarts and skip repeat uploads."""

from presencesync.application.cache.art_url_cache import ArtUrlCache, CachedArt, FileCache
from presencesync.application.cache.base_cache import BaseCache, CacheEntry, InMemoryCache

__all__ = [
    "ArtUrlCache",
    "BaseCache",
    "CacheEntry",
    "CachedArt",
    "FileCache",
    "InMemoryCache",
]
