"""HTTP clients for external services (MusicBrainz, Cover Art Archive, shared pool)."""

from presencesync.infrastructure.integrations.coverartarchive_client import (
    CoverArtArchiveClient,
)
from presencesync.infrastructure.integrations.http_pool import HttpClientPool
from presencesync.infrastructure.integrations.musicbrainz_client import MusicBrainzClient

__all__ = ["CoverArtArchiveClient", "HttpClientPool", "MusicBrainzClient"]
