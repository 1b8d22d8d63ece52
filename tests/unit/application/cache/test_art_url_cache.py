"""Tests for the artwork URL cache and its file backend."""

import json
from pathlib import Path

import pytest

from presencesync.application.cache import ArtUrlCache, CachedArt, FileCache, InMemoryCache
from presencesync.domain.value_objects import TrackMetadata


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def file_cache(tmp_path: Path, clock: FakeClock) -> FileCache:
    return FileCache(tmp_path / "cover_art", clock)


class TestMakeKey:
    """Test cache key derivation."""

    def test_deterministic(self) -> None:
        """Test equal metadata gives equal keys."""
        a = TrackMetadata(title="One", artists=("X",), album="Album")
        b = TrackMetadata(title="One", artists=("X",), album="Album")
        assert ArtUrlCache.make_key(a) == ArtUrlCache.make_key(b)

    def test_album_tracks_share_key(self) -> None:
        """Test every track of an album maps to the same key."""
        a = TrackMetadata(title="One", artists=("X",), album="Album")
        b = TrackMetadata(title="Two", artists=("X",), album="Album")
        assert ArtUrlCache.make_key(a) == ArtUrlCache.make_key(b)
        assert ArtUrlCache.make_key(a).startswith("album-")

    def test_artist_order_and_case_ignored(self) -> None:
        """Test artist order and letter case don't change the key."""
        a = TrackMetadata(album="Album", artists=("B", "a"))
        b = TrackMetadata(album="ALBUM", artists=("A", "b"))
        assert ArtUrlCache.make_key(a) == ArtUrlCache.make_key(b)

    def test_album_artists_preferred(self) -> None:
        """Test album artists win over track artists for album keys."""
        a = TrackMetadata(album="Comp", artists=("Guest",), album_artists=("Various",))
        b = TrackMetadata(album="Comp", artists=("Other",), album_artists=("Various",))
        assert ArtUrlCache.make_key(a) == ArtUrlCache.make_key(b)

    def test_track_key_without_album(self) -> None:
        """Test tracks without album get distinct per-track keys."""
        a = TrackMetadata(title="One", artists=("X",), track_id="/t/1")
        b = TrackMetadata(title="One", artists=("X",), track_id="/t/2")
        assert ArtUrlCache.make_key(a).startswith("track-")
        assert ArtUrlCache.make_key(a) != ArtUrlCache.make_key(b)


class TestFileCache:
    """Test the on-disk backend."""

    async def test_roundtrip_and_layout(self, file_cache: FileCache) -> None:
        """Test an entry is written as one JSON document per key."""
        await file_cache.set("album-abc", CachedArt("https://img/a.jpg", "imgbb"), 3600)

        assert await file_cache.get("album-abc") == CachedArt("https://img/a.jpg", "imgbb")
        document = json.loads((file_cache.directory / "album-abc.json").read_text())
        assert document["url"] == "https://img/a.jpg"
        assert document["provider"] == "imgbb"
        assert document["expires_at"] == document["stored_at"] + 3600

    async def test_expiry_boundary(self, file_cache: FileCache, clock: FakeClock) -> None:
        """Test the entry is valid at the boundary second and gone after it."""
        await file_cache.set("k", CachedArt("https://img/a.jpg", "catbox"), 100)

        clock.now += 100
        assert await file_cache.get("k") is not None
        clock.now += 1
        assert await file_cache.get("k") is None
        assert not (file_cache.directory / "k.json").exists()

    async def test_survives_new_instance(self, tmp_path: Path, clock: FakeClock) -> None:
        """Test entries persist across cache instances (restarts)."""
        await FileCache(tmp_path, clock).set("k", CachedArt("https://img/a.jpg", "imgbb"))
        assert await FileCache(tmp_path, clock).get("k") == CachedArt(
            "https://img/a.jpg", "imgbb"
        )

    async def test_corrupt_file_is_miss(self, file_cache: FileCache) -> None:
        """Test unparsable files are treated as misses and removed."""
        file_cache.directory.mkdir(parents=True)
        path = file_cache.directory / "bad.json"
        path.write_text("{not json")

        assert await file_cache.get("bad") is None
        assert not path.exists()

    async def test_sweep(self, file_cache: FileCache, clock: FakeClock) -> None:
        """Test sweep removes expired and corrupt entries only."""
        await file_cache.set("old", CachedArt("https://img/1.jpg", "imgbb"), 10)
        await file_cache.set("new", CachedArt("https://img/2.jpg", "imgbb"), 1000)
        (file_cache.directory / "broken.json").write_text("[]")

        clock.now += 50
        assert await file_cache.sweep() == 2
        assert await file_cache.get("new") is not None

    async def test_sweep_without_directory(self, tmp_path: Path) -> None:
        """Test sweeping a cache that never wrote anything is a no-op."""
        assert await FileCache(tmp_path / "missing").sweep() == 0

    async def test_delete_and_clear(self, file_cache: FileCache) -> None:
        """Test delete and clear remove files."""
        await file_cache.set("a", CachedArt("https://img/1.jpg", "imgbb"))
        await file_cache.set("b", CachedArt("https://img/2.jpg", "imgbb"))

        assert await file_cache.delete("a") is True
        assert await file_cache.delete("a") is False
        await file_cache.clear()
        assert list(file_cache.directory.glob("*.json")) == []


class TestArtUrlCache:
    """Test TTL policy and metadata keyed access."""

    async def test_store_and_get(self, clock: FakeClock) -> None:
        """Test storing twice is idempotent and readable by metadata."""
        cache = ArtUrlCache(InMemoryCache(clock), ttl_seconds=3600)
        metadata = TrackMetadata(title="T", artists=("A",), album="Album")

        await cache.store(metadata, "https://img/a.jpg", "musicbrainz")
        await cache.store(metadata, "https://img/a.jpg", "musicbrainz")

        assert await cache.get(metadata) == CachedArt("https://img/a.jpg", "musicbrainz")

    async def test_ttl_capped_by_expiration(self, clock: FakeClock) -> None:
        """Test a host expiration shorter than the TTL wins."""
        cache = ArtUrlCache(InMemoryCache(clock), ttl_seconds=86400)
        metadata = TrackMetadata(album="Album")

        await cache.store(metadata, "https://litter/a.jpg", "litterbox", expiration=3600)

        clock.now += 3601
        assert await cache.get(metadata) is None

    async def test_longer_expiration_keeps_ttl(self, clock: FakeClock) -> None:
        """Test an expiration longer than the TTL does not extend it."""
        cache = ArtUrlCache(InMemoryCache(clock), ttl_seconds=100)
        metadata = TrackMetadata(album="Album")

        await cache.store(metadata, "https://img/a.jpg", "imgbb", expiration=10_000)

        clock.now += 101
        assert await cache.get(metadata) is None

    async def test_sweep_delegates(self, clock: FakeClock) -> None:
        """Test sweep returns the backend's count."""
        cache = ArtUrlCache(InMemoryCache(clock), ttl_seconds=10)
        await cache.store(TrackMetadata(album="A"), "https://img/a.jpg", "imgbb")
        clock.now += 11
        assert await cache.sweep() == 1

    def test_describe(self, tmp_path: Path) -> None:
        """Test describe reports backend and location."""
        assert ArtUrlCache(InMemoryCache()).describe()["location"] == "memory"
        info = ArtUrlCache(FileCache(tmp_path), ttl_seconds=5).describe()
        assert info == {"backend": "FileCache", "location": str(tmp_path), "ttl_seconds": 5}
